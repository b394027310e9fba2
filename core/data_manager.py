from sqlalchemy.orm import Session, joinedload
from core import models
from features.booking.config import BOOKING_NUMBER_COUNTER, format_booking_number
from features.booking.values import CatalogAccessory, HeaderDef, PriceEntry, SalesEntity, UserRef
from typing import Dict, Iterable, List, Optional, Tuple
import pandas as pd


# --- SHARED ACCESS LOGIC ---
def get_user_accessible_branches(db: Session, access_list: List[str]) -> List[models.Branch]:
    """Returns Branch objects based on user access permissions."""
    if not access_list:
        return []
    if "ALL" in access_list:
        return db.query(models.Branch).filter(models.Branch.is_active == True).all()
    else:
        return db.query(models.Branch).filter(models.Branch.Branch_ID.in_(access_list)).all()


def get_all_branches(db: Session) -> List[models.Branch]:
    return db.query(models.Branch).all()


def get_active_subdealers(db: Session) -> List[models.Subdealer]:
    return db.query(models.Subdealer).filter(models.Subdealer.is_active == True).order_by(models.Subdealer.name).all()


# --- USERS ---

def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.username == username).first()


def get_user_by_id(db: Session, user_id) -> Optional[models.User]:
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return db.query(models.User).filter(models.User.id == user_id).first()


def to_user_ref(user: models.User) -> UserRef:
    return UserRef(
        id=user.id,
        roles=tuple(user.roles),
        is_active=user.is_active,
        branch_id=user.Branch_ID,
        subdealer_id=user.subdealer_id,
    )


def get_subdealer_user_refs(db: Session, subdealer_id: int) -> List[UserRef]:
    users = db.query(models.User).filter(models.User.subdealer_id == subdealer_id).order_by(models.User.id).all()
    return [to_user_ref(u) for u in users]


def get_sales_executives(db: Session, branch_id: str) -> List[models.User]:
    users = db.query(models.User).filter(
        models.User.Branch_ID == branch_id,
        models.User.status == "ACTIVE",
    ).order_by(models.User.full_name).all()
    return [u for u in users if models.UserRole.SALES_EXECUTIVE.value in u.roles]


# --- CATALOG ---

def get_vehicle_model(db: Session, model_id) -> Optional[models.VehicleModel]:
    try:
        model_id = int(model_id)
    except (TypeError, ValueError):
        return None
    return db.query(models.VehicleModel).options(joinedload(models.VehicleModel.colors)) \
        .filter(models.VehicleModel.id == model_id).first()


def get_active_models(db: Session) -> List[models.VehicleModel]:
    return db.query(models.VehicleModel).filter(models.VehicleModel.status == "active") \
        .order_by(models.VehicleModel.model_name).all()


def get_headers_for_model_type(db: Session, model_type: str) -> List[HeaderDef]:
    rows = db.query(models.PriceHeader).filter(models.PriceHeader.type == model_type) \
        .order_by(models.PriceHeader.priority).all()
    return [
        HeaderDef(
            id=h.id,
            header_key=h.header_key,
            priority=h.priority or 0,
            is_mandatory=bool(h.is_mandatory),
            is_discount=bool(h.is_discount),
            gst_rate=h.gst_rate or 0.0,
        )
        for h in rows
    ]


def get_price_matrix(db: Session, model_id: int) -> List[PriceEntry]:
    rows = db.query(models.ModelPrice).filter(models.ModelPrice.model_id == model_id).all()
    return [
        PriceEntry(
            header_id=p.header_id,
            value=p.value,
            branch_id=p.branch_id,
            subdealer_id=p.subdealer_id,
            metadata=dict(p.price_metadata or {}),
        )
        for p in rows
    ]


def get_accessory_catalog(db: Session, accessory_ids: Optional[Iterable[int]] = None) -> Dict[int, CatalogAccessory]:
    query = db.query(models.Accessory).options(joinedload(models.Accessory.applicable_models))
    if accessory_ids is not None:
        query = query.filter(models.Accessory.id.in_(list(accessory_ids)))
    return {
        a.id: CatalogAccessory(
            id=a.id,
            name=a.name,
            price=a.price,
            status=a.status,
            applicable_model_ids=frozenset(m.id for m in a.applicable_models),
        )
        for a in query.all()
    }


def get_accessories_for_model(db: Session, model_id: int) -> List[CatalogAccessory]:
    catalog = get_accessory_catalog(db)
    return [a for a in catalog.values() if a.is_active and model_id in a.applicable_model_ids]


# --- EXCHANGE & FINANCE PARTNERS ---

def get_broker(db: Session, broker_id, lock: bool = False) -> Optional[models.Broker]:
    query = db.query(models.Broker).filter(models.Broker.id == broker_id)
    if lock:
        return query.with_for_update().first()
    return query.first()


def get_all_brokers(db: Session) -> List[models.Broker]:
    return db.query(models.Broker).order_by(models.Broker.name).all()


def get_finance_provider(db: Session, financer_id) -> Optional[models.FinanceProvider]:
    return db.query(models.FinanceProvider).filter(
        models.FinanceProvider.id == financer_id,
        models.FinanceProvider.is_active == True,
    ).first()


def get_finance_providers(db: Session) -> List[models.FinanceProvider]:
    return db.query(models.FinanceProvider).filter(models.FinanceProvider.is_active == True) \
        .order_by(models.FinanceProvider.name).all()


def get_financer_rate(db: Session, financer_id, entity: SalesEntity) -> Optional[models.FinancerRate]:
    query = db.query(models.FinancerRate).filter(
        models.FinancerRate.finance_provider_id == financer_id,
        models.FinancerRate.is_active == True,
    )
    if entity.entity_type == 'branch':
        query = query.filter(models.FinancerRate.branch_id == str(entity.entity_id))
    else:
        query = query.filter(models.FinancerRate.subdealer_id == int(entity.entity_id))
    return query.first()


# --- SEQUENCING ---

def next_booking_number(db: Session) -> Tuple[str, int]:
    """Takes the counter row lock for the rest of the caller's transaction."""
    counter = db.query(models.SequenceCounter) \
        .filter(models.SequenceCounter.name == BOOKING_NUMBER_COUNTER) \
        .with_for_update().first()
    if counter is None:
        counter = models.SequenceCounter(name=BOOKING_NUMBER_COUNTER, last_number=0)
        db.add(counter)
    counter.last_number = (counter.last_number or 0) + 1
    db.flush()
    return format_booking_number(counter.last_number), counter.last_number


# --- BOOKINGS ---

def get_booking(db: Session, booking_id, lock: bool = False) -> Optional[models.Booking]:
    query = db.query(models.Booking).filter(models.Booking.id == booking_id)
    if lock:
        return query.with_for_update().first()
    return query.first()


def find_booking_by_chassis(db: Session, chassis_number: str, exclude_id: Optional[int] = None
                            ) -> Optional[models.Booking]:
    query = db.query(models.Booking).filter(models.Booking.chassis_number == chassis_number)
    if exclude_id is not None:
        query = query.filter(models.Booking.id != exclude_id)
    return query.first()


def get_bookings(db: Session, status: Optional[str] = None, branch_ids: Optional[List[str]] = None,
                 subdealer_id: Optional[int] = None, limit: int = 100) -> List[models.Booking]:
    """Subdealer users see their own subdealer; everyone else sees their branches. No access means nothing."""
    query = db.query(models.Booking).options(
        joinedload(models.Booking.model), joinedload(models.Booking.color)
    ).order_by(models.Booking.created_at.desc())
    if status:
        query = query.filter(models.Booking.status == status)
    if subdealer_id:
        query = query.filter(models.Booking.subdealer_id == subdealer_id)
    elif not branch_ids:
        return []
    elif "ALL" not in branch_ids:
        query = query.filter(models.Booking.branch_id.in_(branch_ids))
    return query.limit(limit).all()


def get_all_bookings_for_dashboard(db: Session, branch_id_filter: str = None,
                                   subdealer_id: Optional[int] = None) -> pd.DataFrame:
    query = db.query(models.Booking).order_by(models.Booking.created_at.desc())
    if subdealer_id:
        query = query.filter(models.Booking.subdealer_id == subdealer_id)
    elif branch_id_filter:
        query = query.filter(models.Booking.branch_id == branch_id_filter)

    bookings = query.all()
    rows = [
        {
            'id': b.id,
            'booking_number': b.booking_number,
            'created_at': b.created_at,
            'booking_type': b.booking_type,
            'branch_id': b.branch_id,
            'subdealer_id': b.subdealer_id,
            'status': b.status,
            'payment_type': (b.payment or {}).get('type'),
            'total_amount': float(b.total_amount or 0),
            'discounted_amount': float(b.discounted_amount or 0),
            'has_chassis': bool(b.chassis_number),
        }
        for b in bookings
    ]
    df = pd.DataFrame(rows, columns=[
        'id', 'booking_number', 'created_at', 'booking_type', 'branch_id', 'subdealer_id', 'status',
        'payment_type', 'total_amount', 'discounted_amount', 'has_chassis',
    ])
    branches = {b.Branch_ID: b.Branch_Name for b in get_all_branches(db)}
    df['Branch_Name'] = df['branch_id'].map(branches)
    df['created_at'] = pd.to_datetime(df['created_at'])
    return df


def get_audit_entries(db: Session, entity_id: Optional[str] = None, limit: int = 50) -> List[models.AuditLog]:
    query = db.query(models.AuditLog).order_by(models.AuditLog.id.desc())
    if entity_id is not None:
        query = query.filter(models.AuditLog.entity_id == str(entity_id))
    return query.limit(limit).all()
