"""
Typed exceptions for the booking core.

Every error carries a machine-readable ``code`` and the ``http_status`` the
outer layer should answer with, plus structured attributes (offending headers,
ids, field names) so callers never have to parse messages.

    BookingError (base, 500)
    |
    +-- ValidationError (400)
    |   +-- MissingFieldError
    |   +-- InvalidFieldError
    |   +-- InvalidChassisNumberError
    |   +-- ClaimValidationError
    |
    +-- ReferenceNotFoundError (404 for bookings, 400 for referenced rows)
    |   +-- BookingNotFoundError
    |   +-- InvalidAccessoryError
    |
    +-- BusinessRuleError (400)
    |   +-- NoPriceDataError
    |   +-- NoDiscountableComponentsError
    |   +-- DiscountCapExceededError
    |   +-- AmbiguousChannelError
    |   +-- NoSubdealerUserError
    |   +-- InvalidSalesExecutiveError
    |   +-- ExchangeNotAllowedError
    |   +-- BookingLockedError
    |   +-- InvalidTransitionError
    |   +-- ChassisAllocationError
    |   +-- OtpVerificationError
    |
    +-- AllocationRaceError (400)
    |   +-- DuplicateChassisNumberError
    |   +-- OtpAlreadyConsumedError
    |
    +-- PermissionDeniedError (403)
"""

from typing import Iterable, Optional


class BookingError(Exception):
    code: str = "BOOKING_ERROR"
    http_status: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"success": False, "code": self.code, "message": self.message}


# --- Input validation ---

class ValidationError(BookingError):
    code = "VALIDATION_ERROR"
    http_status = 400


class MissingFieldError(ValidationError):
    code = "MISSING_FIELD"

    def __init__(self, fields: Iterable[str], messages: Iterable[str]):
        self.fields = list(fields)
        super().__init__(f"Missing required fields: {', '.join(messages)}")


class InvalidFieldError(ValidationError):
    code = "INVALID_FIELD"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class InvalidChassisNumberError(ValidationError):
    code = "INVALID_CHASSIS_NUMBER"

    def __init__(self, chassis_number: Optional[str]):
        self.chassis_number = chassis_number
        super().__init__("Chassis number must be exactly 17 alphanumeric characters")


class ClaimValidationError(ValidationError):
    code = "INVALID_CLAIM"


# --- Referential ---

class ReferenceNotFoundError(BookingError):
    code = "REFERENCE_NOT_FOUND"
    http_status = 400

    def __init__(self, entity: str, reference, message: Optional[str] = None):
        self.entity = entity
        self.reference = reference
        super().__init__(message or f"Invalid {entity} selected: {reference}")


class BookingNotFoundError(ReferenceNotFoundError):
    code = "BOOKING_NOT_FOUND"
    http_status = 404

    def __init__(self, reference):
        super().__init__("booking", reference, f"Booking not found: {reference}")


class InvalidAccessoryError(ReferenceNotFoundError):
    code = "INVALID_ACCESSORY"

    def __init__(self, ids: Iterable, message: str):
        self.ids = list(ids)
        super().__init__("accessory", self.ids, message)


# --- Business rules ---

class BusinessRuleError(BookingError):
    code = "BUSINESS_RULE_VIOLATION"
    http_status = 400


class NoPriceDataError(BusinessRuleError):
    code = "NO_PRICE_DATA"

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"No valid price components found for this model and {entity_type}")


class NoDiscountableComponentsError(BusinessRuleError):
    code = "NO_DISCOUNTABLE_COMPONENTS"

    def __init__(self):
        super().__init__("No discountable components available")


class DiscountCapExceededError(BusinessRuleError):
    code = "DISCOUNT_CAP_EXCEEDED"

    def __init__(self, headers: Iterable[str]):
        self.headers = list(headers)
        super().__init__(f"Discount cannot exceed 95% for: {', '.join(self.headers)}")


class AmbiguousChannelError(BusinessRuleError):
    code = "AMBIGUOUS_CHANNEL"


class NoSubdealerUserError(BusinessRuleError):
    code = "NO_SUBDEALER_USER"

    def __init__(self, subdealer_id):
        self.subdealer_id = subdealer_id
        super().__init__("No active subdealer user found for this subdealer")


class InvalidSalesExecutiveError(BusinessRuleError):
    code = "INVALID_SALES_EXECUTIVE"

    def __init__(self, executive_id, message: str):
        self.executive_id = executive_id
        super().__init__(message)


class ExchangeNotAllowedError(BusinessRuleError):
    code = "EXCHANGE_NOT_ALLOWED"

    def __init__(self):
        super().__init__("Exchange is not allowed for subdealer bookings")


class BookingLockedError(BusinessRuleError):
    code = "BOOKING_LOCKED"

    def __init__(self, booking_number: Optional[str], status: str):
        self.booking_number = booking_number
        self.status = status
        super().__init__(f"Booking cannot be modified in its current status ({status})")


class InvalidTransitionError(BusinessRuleError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Booking cannot move from {current} to {target}")


class ChassisAllocationError(BusinessRuleError):
    code = "CHASSIS_ALLOCATION_REFUSED"


class OtpVerificationError(BusinessRuleError):
    code = "OTP_VERIFICATION_FAILED"


# --- Allocation races ---

class AllocationRaceError(BookingError):
    code = "ALLOCATION_RACE"
    http_status = 400


class DuplicateChassisNumberError(AllocationRaceError):
    code = "DUPLICATE_CHASSIS_NUMBER"

    def __init__(self, chassis_number: str):
        self.chassis_number = chassis_number
        super().__init__(f"Chassis number {chassis_number} is already allocated to another booking")


class OtpAlreadyConsumedError(AllocationRaceError):
    code = "OTP_ALREADY_CONSUMED"

    def __init__(self, broker_id):
        self.broker_id = broker_id
        super().__init__("OTP was already used for this broker; request a fresh OTP")


# --- Authorization ---

class PermissionDeniedError(BookingError):
    code = "PERMISSION_DENIED"
    http_status = 403

    def __init__(self, roles: Iterable[str], action: str):
        self.roles = list(roles)
        self.action = action
        super().__init__(f"Roles {', '.join(self.roles) or '(none)'} may not perform {action}")
