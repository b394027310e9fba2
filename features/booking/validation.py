from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from core import models
from core.exceptions import InvalidFieldError, MissingFieldError, ReferenceNotFoundError
from core.models import CustomerType, ModelType, PaymentType, RtoType
from features.booking.config import REQUIRED_CREATE_FIELDS, VALID_SALUTATIONS
from utils import to_money

UPDATABLE_FIELDS = frozenset({
    'model_id', 'model_color', 'customer_type', 'rto_type', 'hpa', 'optional_components',
    'accessories', 'discount', 'customer_details', 'gstin', 'payment',
})


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip()) or value == {}


def normalize_choice(value, default: Optional[str] = None) -> Optional[str]:
    """Enum-valued inputs arrive in any case ('finance', 'Percentage')."""
    if _blank(value):
        return default
    return str(value).strip().upper()


def parse_money(field_name: str, value) -> Decimal:
    try:
        amount = to_money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidFieldError(field_name, f"Invalid amount for {field_name}: {value}")
    if not amount.is_finite():
        raise InvalidFieldError(field_name, f"Invalid amount for {field_name}: {value}")
    return amount


def parse_id(field_name: str, value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidFieldError(field_name, f"Invalid {field_name}: {value}")


def _check_enum(enum_cls, field_name: str, value) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidFieldError(field_name, f"Invalid {field_name}: {value}. Must be one of {allowed}")


def validate_customer_details(details: Dict[str, Any]) -> None:
    if not isinstance(details, dict):
        raise InvalidFieldError('customer_details', "Customer details must be an object")
    missing = [k for k in ('salutation', 'name', 'mobile1') if _blank(details.get(k))]
    if missing:
        raise MissingFieldError([f"customer_details.{k}" for k in missing],
                                [f"customer {k} is required" for k in missing])
    if details['salutation'] not in VALID_SALUTATIONS:
        raise InvalidFieldError('customer_details.salutation',
                                f"Invalid salutation. Must be one of: {', '.join(VALID_SALUTATIONS)}")


def validate_payment(payment: Dict[str, Any]) -> None:
    if not isinstance(payment, dict):
        raise InvalidFieldError('payment', "Payment details must be an object")
    payment_type = _check_enum(PaymentType, 'payment.type', normalize_choice(payment.get('type')))
    if payment_type == PaymentType.FINANCE.value and _blank(payment.get('financer_id')):
        raise MissingFieldError(['payment.financer_id'], ["Financer is required for finance payments"])


def validate_gstin(customer_type: str, gstin: Optional[str]) -> None:
    if customer_type == CustomerType.B2B.value and _blank(gstin):
        raise MissingFieldError(['gstin'], ["GSTIN is required for B2B customers"])


def validate_create_payload(payload: Dict[str, Any]) -> None:
    """Shape checks that need no database lookup."""
    missing = [(f, msg) for f, msg in REQUIRED_CREATE_FIELDS if _blank(payload.get(f))]
    if missing:
        raise MissingFieldError([f for f, _ in missing], [msg for _, msg in missing])

    customer_type = _check_enum(CustomerType, 'customer_type', payload['customer_type'])
    _check_enum(RtoType, 'rto_type', payload['rto_type'])
    validate_customer_details(payload['customer_details'])
    validate_payment(payload['payment'])
    validate_gstin(customer_type, payload.get('gstin'))


def validate_update_payload(payload: Dict[str, Any]) -> None:
    unknown = sorted(set(payload) - UPDATABLE_FIELDS)
    if unknown:
        raise InvalidFieldError(unknown[0], f"Fields cannot be updated: {', '.join(unknown)}")
    if 'customer_type' in payload:
        _check_enum(CustomerType, 'customer_type', payload['customer_type'])
    if 'rto_type' in payload:
        _check_enum(RtoType, 'rto_type', payload['rto_type'])
    if 'customer_details' in payload:
        validate_customer_details(payload['customer_details'])
    if 'payment' in payload:
        validate_payment(payload['payment'])


def validate_vehicle_selection(model: Optional[models.VehicleModel], model_id, color_id,
                               customer_type: str) -> None:
    """Model must exist and be active, CSD customers need a CSD model, and the color must belong to the model."""
    if model is None:
        raise ReferenceNotFoundError('model', model_id, "Invalid model selected")
    if (model.status or '').lower() != 'active':
        raise ReferenceNotFoundError('model', model_id, f"Model {model.model_name} is not active")
    if customer_type == CustomerType.CSD.value and model.type != ModelType.CSD.value:
        raise InvalidFieldError('model_id', "CSD customers can only book CSD models")
    if not any(str(c.id) == str(color_id) for c in model.colors):
        raise ReferenceNotFoundError('color', color_id, "Selected color is not available for this model")
