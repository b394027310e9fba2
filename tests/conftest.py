import os
from datetime import timedelta
from decimal import Decimal

# Keep core.database off Streamlit secrets during tests.
os.environ.setdefault("DEALER_DB_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core import data_manager, models
from core.database import Base
from core.models import ModelType, UserRole
from features.booking.collaborators import (
    BookingCollaborators, BookingDocumentStatusLookup, DbAuditSink, PdfDocumentRenderer, TokenCodeGenerator
)
from features.booking.config import ACCESSORIES_TOTAL_HEADER_KEY, HYPOTHECATION_HEADER_KEY
from utils import get_current_ist_time


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def collaborators(session_factory, tmp_path):
    return BookingCollaborators(
        audit=DbAuditSink(session_factory),
        renderer=PdfDocumentRenderer(str(tmp_path / "forms")),
        document_status=BookingDocumentStatusLookup(),
        codes=TokenCodeGenerator(),
    )


def _make_user(db, username, roles, branch_id=None, subdealer_id=None, status="ACTIVE"):
    hashed, salt = models.User.hash_password("secret")
    user = models.User(
        username=username,
        full_name=username.title(),
        hashed_password=hashed,
        salt=salt,
        role=",".join(roles),
        status=status,
        Branch_ID=branch_id,
        subdealer_id=subdealer_id,
    )
    db.add(user)
    return user


@pytest.fixture
def catalog(db):
    """
    One ICE model priced for branch BR01 and subdealer 1:

        TAX 1000 (18%, mandatory, discountable)
        REG 500 (5%, mandatory, discountable)
        HPA 300
        INSURANCE 700 (optional, not discountable)
        ACCESSORIES TOTAL 1200 (BR01 only)
    """
    db.add_all([
        models.Branch(Branch_ID="BR01", Branch_Name="Main Branch"),
        models.Branch(Branch_ID="BR02", Branch_Name="North Branch"),
        models.Branch(Branch_ID="BR09", Branch_Name="Closed Branch", is_active=False),
    ])
    subdealer = models.Subdealer(id=1, name="City Motors")
    lonely_subdealer = models.Subdealer(id=2, name="No Users Motors")
    db.add_all([subdealer, lonely_subdealer])
    db.flush()

    users = {
        'exec1': _make_user(db, "exec1", [UserRole.SALES_EXECUTIVE.value], branch_id="BR01"),
        'exec2': _make_user(db, "exec2", [UserRole.SALES_EXECUTIVE.value], branch_id="BR02"),
        'inactive_exec': _make_user(db, "gone", [UserRole.SALES_EXECUTIVE.value], branch_id="BR01",
                                    status="INACTIVE"),
        'manager': _make_user(db, "manager", [UserRole.MANAGER.value], branch_id="BR01"),
        'admin': _make_user(db, "admin", [UserRole.ADMIN.value]),
        'sub_user': _make_user(db, "subuser", [UserRole.SUBDEALER.value], subdealer_id=1),
    }

    red = models.Color(id=1, name="Red", code="RD")
    blue = models.Color(id=2, name="Blue", code="BL")
    activa = models.VehicleModel(id=1, model_name="Activa", type=ModelType.ICE.value, status="active",
                                 model_discount=0, colors=[red])
    csd_model = models.VehicleModel(id=2, model_name="Activa CSD", type=ModelType.CSD.value, status="active",
                                    model_discount=0, colors=[red, blue])
    retired = models.VehicleModel(id=3, model_name="Dio", type=ModelType.ICE.value, status="inactive",
                                  colors=[red])
    db.add_all([red, blue, activa, csd_model, retired])

    headers = {
        'tax': models.PriceHeader(id=1, header_key="TAX", type="ICE", priority=1, is_mandatory=True,
                                  is_discount=True, gst_rate=18.0),
        'reg': models.PriceHeader(id=2, header_key="REG", type="ICE", priority=2, is_mandatory=True,
                                  is_discount=True, gst_rate=5.0),
        'hpa': models.PriceHeader(id=3, header_key=HYPOTHECATION_HEADER_KEY, type="ICE", priority=3,
                                  is_mandatory=False, is_discount=False, gst_rate=0.0),
        'insurance': models.PriceHeader(id=4, header_key="INSURANCE", type="ICE", priority=4,
                                        is_mandatory=False, is_discount=False, gst_rate=18.0),
        'acc_total': models.PriceHeader(id=5, header_key=ACCESSORIES_TOTAL_HEADER_KEY, type="ICE", priority=5,
                                        is_mandatory=False, is_discount=False, gst_rate=0.0),
    }
    db.add_all(headers.values())

    branch_prices = [(1, "1000"), (2, "500"), (3, "300"), (4, "700"), (5, "1200")]
    for header_id, value in branch_prices:
        db.add(models.ModelPrice(model_id=1, header_id=header_id, branch_id="BR01", value=Decimal(value)))
    for header_id, value in [(1, "900"), (2, "450"), (3, "300")]:
        db.add(models.ModelPrice(model_id=1, header_id=header_id, subdealer_id=1, value=Decimal(value)))

    guard = models.Accessory(id=1, name="Leg Guard", price=Decimal("500"), applicable_models=[activa])
    mat = models.Accessory(id=2, name="Floor Mat", price=Decimal("300"), applicable_models=[activa])
    helmet = models.Accessory(id=3, name="Helmet", price=Decimal("400"), applicable_models=[csd_model])
    old = models.Accessory(id=4, name="Old Cover", price=Decimal("100"), status="inactive",
                           applicable_models=[activa])
    db.add_all([guard, mat, helmet, old])

    now = get_current_ist_time()
    db.add_all([
        models.Broker(id=1, name="Trusted Broker", otp_required=True, otp="123456",
                      otp_expires_at=now + timedelta(minutes=10)),
        models.Broker(id=2, name="Walk-in Broker", otp_required=False),
        models.Broker(id=3, name="Expired Broker", otp_required=True, otp="999999",
                      otp_expires_at=now - timedelta(minutes=1)),
    ])

    db.add(models.FinanceProvider(id=1, name="HDFC"))
    db.add(models.FinanceProvider(id=2, name="No Rate Finance"))
    db.add(models.FinancerRate(finance_provider_id=1, branch_id="BR01", gc_rate=2.0))

    db.commit()
    return {
        'users': {k: data_manager.to_user_ref(u) for k, u in users.items()},
        'user_ids': {k: u.id for k, u in users.items()},
    }


@pytest.fixture
def actors(catalog):
    return catalog['users']


@pytest.fixture
def booking_payload():
    def build(**overrides):
        payload = {
            'model_id': 1,
            'model_color': 1,
            'customer_type': 'B2C',
            'rto_type': 'MH',
            'customer_details': {'salutation': 'Mr.', 'name': 'Ravi Kumar', 'mobile1': '9876543210'},
            'payment': {'type': 'CASH'},
            'branch': 'BR01',
            'hpa': False,
            'optional_components': [],
            'accessories': {'selected': [{'id': 1}, {'id': 2}]},
            'discount': {'type': 'FIXED', 'value': 400},
        }
        payload.update(overrides)
        return payload
    return build
