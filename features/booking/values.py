"""
Immutable value objects the booking core works on.

The orchestration layer resolves ORM rows into these before calling the
pricing, accessory, discount and routing functions, and serializes them back
into the JSON columns of ``Booking``. Recomputations build new tuples; nothing
here is patched in place.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from core.models import ApprovalStatus, BookingType, DiscountType, PaymentType
from features.booking.config import HYPOTHECATION_HEADER_KEY
from utils import to_money


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# --- PRICE MATRIX ---

@dataclass(frozen=True)
class HeaderDef:
    id: int
    header_key: str
    priority: int = 0
    is_mandatory: bool = False
    is_discount: bool = False
    gst_rate: float = 0.0


@dataclass(frozen=True)
class PriceEntry:
    """One cell of a model's price matrix: value of a header for a branch or a subdealer."""
    header_id: int
    value: Decimal
    branch_id: Optional[str] = None
    subdealer_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SalesEntity:
    entity_type: str  # 'branch' or 'subdealer'
    entity_id: Union[str, int]

    @property
    def booking_type(self) -> BookingType:
        return BookingType.BRANCH if self.entity_type == 'branch' else BookingType.SUBDEALER

    def owns(self, entry: PriceEntry) -> bool:
        if self.entity_type == 'branch':
            return entry.branch_id is not None and str(entry.branch_id) == str(self.entity_id)
        return entry.subdealer_id is not None and str(entry.subdealer_id) == str(self.entity_id)


@dataclass(frozen=True)
class PriceComponent:
    header_id: int
    header_key: str
    original_value: Decimal
    discounted_value: Decimal
    is_discountable: bool
    is_mandatory: bool
    gst_rate: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_hypothecation(self) -> bool:
        return self.header_key == HYPOTHECATION_HEADER_KEY

    @property
    def is_discount_eligible(self) -> bool:
        return self.is_discountable and not self.is_hypothecation

    @property
    def discount_taken(self) -> Decimal:
        return self.original_value - self.discounted_value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'header_id': self.header_id,
            'header_key': self.header_key,
            'original_value': str(self.original_value),
            'discounted_value': str(self.discounted_value),
            'is_discountable': self.is_discountable,
            'is_mandatory': self.is_mandatory,
            'gst_rate': self.gst_rate,
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceComponent":
        return cls(
            header_id=data['header_id'],
            header_key=data['header_key'],
            original_value=to_money(data['original_value']),
            discounted_value=to_money(data['discounted_value']),
            is_discountable=bool(data.get('is_discountable')),
            is_mandatory=bool(data.get('is_mandatory')),
            gst_rate=float(data.get('gst_rate') or 0.0),
            metadata=dict(data.get('metadata') or {}),
        )


# --- ACCESSORIES ---

@dataclass(frozen=True)
class CatalogAccessory:
    id: int
    name: str
    price: Decimal
    status: str = 'active'
    applicable_model_ids: FrozenSet[int] = frozenset()

    @property
    def is_active(self) -> bool:
        return (self.status or '').lower() == 'active'


@dataclass(frozen=True)
class AccessoryLine:
    accessory_id: Optional[int]
    price: Decimal
    discount: Decimal = Decimal("0.00")
    name: Optional[str] = None

    @property
    def is_balance_line(self) -> bool:
        return self.accessory_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accessory': self.accessory_id,
            'name': self.name,
            'price': str(self.price),
            'discount': str(self.discount),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessoryLine":
        return cls(
            accessory_id=data.get('accessory'),
            price=to_money(data['price']),
            discount=to_money(data.get('discount')),
            name=data.get('name'),
        )


@dataclass(frozen=True)
class AccessoryBundle:
    lines: Tuple[AccessoryLine, ...]
    total: Decimal

    @property
    def itemized_total(self) -> Decimal:
        return sum((l.price for l in self.lines if not l.is_balance_line), Decimal("0.00"))


# --- DISCOUNTS ---

@dataclass(frozen=True)
class Discount:
    amount: Decimal
    type: DiscountType = DiscountType.FIXED
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    is_model_discount: bool = False
    applied_on: Optional[datetime] = None
    approval_note: str = ''
    approved_by: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'amount': str(self.amount),
            'type': self.type.value,
            'approval_status': self.approval_status.value,
            'is_model_discount': self.is_model_discount,
            'applied_on': _iso(self.applied_on),
            'approval_note': self.approval_note,
            'approved_by': self.approved_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Discount":
        return cls(
            amount=to_money(data['amount']),
            type=DiscountType(data.get('type', DiscountType.FIXED.value)),
            approval_status=ApprovalStatus(data.get('approval_status', ApprovalStatus.PENDING.value)),
            is_model_discount=bool(data.get('is_model_discount')),
            applied_on=_parse_dt(data.get('applied_on')),
            approval_note=data.get('approval_note') or '',
            approved_by=data.get('approved_by'),
        )


# --- PAYMENT (tagged variant) ---

@dataclass(frozen=True)
class CashPayment:
    type: PaymentType = PaymentType.CASH

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type.value}


@dataclass(frozen=True)
class FinancePayment:
    financer_id: int
    scheme: Optional[str] = None
    emi_plan: Optional[str] = None
    gc_applicable: bool = False
    gc_amount: Decimal = Decimal("0.00")
    type: PaymentType = PaymentType.FINANCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'financer': self.financer_id,
            'scheme': self.scheme,
            'emi_plan': self.emi_plan,
            'gc_applicable': self.gc_applicable,
            'gc_amount': str(self.gc_amount),
        }


Payment = Union[CashPayment, FinancePayment]


def payment_from_dict(data: Optional[Dict[str, Any]]) -> Payment:
    if not data or str(data.get('type') or '').upper() != PaymentType.FINANCE.value:
        return CashPayment()
    return FinancePayment(
        financer_id=data['financer'],
        scheme=data.get('scheme'),
        emi_plan=data.get('emi_plan'),
        gc_applicable=bool(data.get('gc_applicable')),
        gc_amount=to_money(data.get('gc_amount')),
    )


# --- EXCHANGE ---

@dataclass(frozen=True)
class ExchangeDetails:
    broker_id: int
    price: Decimal
    vehicle_number: Optional[str] = None
    chassis_number: Optional[str] = None
    otp_verified: bool = False
    status: str = 'PENDING'

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['price'] = str(self.price)
        return data


# --- CHASSIS & CLAIMS ---

@dataclass(frozen=True)
class ChassisChange:
    number: str
    changed_at: datetime
    changed_by: Optional[int]
    reason: str
    status_at_change: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'number': self.number,
            'changed_at': _iso(self.changed_at),
            'changed_by': self.changed_by,
            'reason': self.reason,
            'status_at_change': self.status_at_change,
        }


@dataclass(frozen=True)
class ClaimDocument:
    path: str
    original_name: str
    size: int = 0
    mimetype: Optional[str] = None


@dataclass(frozen=True)
class ClaimDetails:
    price_claim: Decimal
    description: str
    documents: Tuple[ClaimDocument, ...] = ()
    created_at: Optional[datetime] = None
    created_by: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'has_claim': True,
            'price_claim': str(self.price_claim),
            'description': self.description,
            'documents': [asdict(d) for d in self.documents],
            'created_at': _iso(self.created_at),
            'created_by': self.created_by,
        }


# --- PEOPLE ---

@dataclass(frozen=True)
class UserRef:
    id: int
    roles: Tuple[str, ...] = ()
    is_active: bool = True
    branch_id: Optional[str] = None
    subdealer_id: Optional[int] = None

    def has_role(self, role: str) -> bool:
        return role in self.roles
