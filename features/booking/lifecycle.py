"""
Booking status state machine and the chassis-allocation side state.

    PENDING_APPROVAL --> APPROVED --> COMPLETED
           |   |            |
           |   +--> REJECTED
           |                |
           +----------------+--> CANCELLED

COMPLETED, CANCELLED and REJECTED are terminal. APPROVED, COMPLETED and
CANCELLED bookings are locked: their price, discount and accessory arrays may
not be replaced any more.

The functions here mutate the ``Booking`` row they are given by assigning new
values (never appending to a loaded JSON list) and leave committing to the
caller.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, Optional, Sequence

from core import models
from core.exceptions import (
    BookingLockedError, ChassisAllocationError, ClaimValidationError, InvalidChassisNumberError,
    InvalidFieldError, InvalidTransitionError
)
from core.models import ApprovalStatus, BookingStatus
from features.booking.config import (
    CHASSIS_NUMBER_PATTERN, MAX_CLAIM_DOCUMENTS, normalize_chassis_number
)
from features.booking.discounts import BookingTotals
from features.booking.values import (
    AccessoryBundle, ChassisChange, ClaimDetails, ClaimDocument, Discount, PriceComponent
)
from features.booking.validation import parse_money
from utils import get_current_ist_time, to_money

log = logging.getLogger(__name__)

ALLOWED_STATUS_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING_APPROVAL: frozenset({
        BookingStatus.APPROVED, BookingStatus.REJECTED, BookingStatus.CANCELLED,
    }),
    BookingStatus.APPROVED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_STATUS_TRANSITIONS.items() if not targets)
LOCKED_STATUSES = frozenset({BookingStatus.APPROVED, BookingStatus.COMPLETED, BookingStatus.CANCELLED})
NO_ALLOCATION_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.REJECTED})


def current_status(booking: models.Booking) -> BookingStatus:
    return BookingStatus(booking.status or BookingStatus.PENDING_APPROVAL.value)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_STATUS_TRANSITIONS.get(current, frozenset())


def transition(booking: models.Booking, target: BookingStatus) -> BookingStatus:
    current = current_status(booking)
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    booking.status = target.value
    log.info("Booking %s: %s -> %s", booking.booking_number, current.value, target.value)
    return current


def is_editable(booking: models.Booking) -> bool:
    return current_status(booking) not in LOCKED_STATUSES


def ensure_editable(booking: models.Booking) -> None:
    if not is_editable(booking):
        raise BookingLockedError(booking.booking_number, booking.status)


# --- PRICING STATE ---

def load_discounts(booking: models.Booking) -> list:
    return [Discount.from_dict(d) for d in (booking.discounts or [])]


def load_components(booking: models.Booking) -> list:
    return [PriceComponent.from_dict(c) for c in (booking.price_components or [])]


def apply_pricing(booking: models.Booking, components: Sequence[PriceComponent], bundle: AccessoryBundle,
                  discounts: Sequence[Discount], totals: BookingTotals, rto_amount: Decimal,
                  hypothecation_charges: Decimal) -> None:
    """Replaces the whole pricing state of an editable booking in one step."""
    ensure_editable(booking)
    booking.price_components = [c.to_dict() for c in components]
    booking.accessories = [line.to_dict() for line in bundle.lines]
    booking.accessories_total = bundle.total
    booking.discounts = [d.to_dict() for d in discounts]
    booking.rto_amount = to_money(rto_amount)
    booking.hypothecation_charges = to_money(hypothecation_charges)
    booking.total_amount = totals.total_amount
    booking.discounted_amount = totals.discounted_amount


def _stamp_discounts(booking: models.Booking, status: ApprovalStatus, actor_id: Optional[int], note: str) -> None:
    booking.discounts = [
        {**d, 'approval_status': status.value, 'approved_by': actor_id, 'approval_note': note}
        for d in (booking.discounts or [])
    ]


# --- STATUS TRANSITIONS ---

def approve(booking: models.Booking, actor_id: int, note: Optional[str] = None,
            now: Optional[datetime] = None) -> None:
    """Approves the booking together with every discount it carries; never one without the other."""
    transition(booking, BookingStatus.APPROVED)
    booking.approved_by = actor_id
    booking.approved_at = now or get_current_ist_time()
    booking.status_note = note
    _stamp_discounts(booking, ApprovalStatus.APPROVED, actor_id, note or 'Approved')


def reject(booking: models.Booking, actor_id: int, note: Optional[str] = None) -> None:
    transition(booking, BookingStatus.REJECTED)
    booking.approved_by = actor_id
    booking.status_note = note
    _stamp_discounts(booking, ApprovalStatus.REJECTED, actor_id, note or 'Rejected')


def complete(booking: models.Booking) -> None:
    transition(booking, BookingStatus.COMPLETED)


def cancel(booking: models.Booking, reason: Optional[str] = None) -> None:
    transition(booking, BookingStatus.CANCELLED)
    booking.status_note = reason


# --- CHASSIS ALLOCATION ---

def validate_chassis_number(raw) -> str:
    number = normalize_chassis_number(raw)
    if not CHASSIS_NUMBER_PATTERN.match(number):
        raise InvalidChassisNumberError(raw)
    return number


def _claim_document(raw) -> ClaimDocument:
    if isinstance(raw, ClaimDocument):
        return raw
    if not isinstance(raw, dict) or _blank_str(raw.get('path')) or _blank_str(raw.get('original_name')):
        raise InvalidFieldError('documents', "Each claim document needs a path and an original_name")
    try:
        size = int(raw.get('size') or 0)
    except (TypeError, ValueError):
        raise InvalidFieldError('documents', f"Invalid document size: {raw.get('size')}")
    return ClaimDocument(
        path=str(raw['path']),
        original_name=str(raw['original_name']),
        size=size,
        mimetype=raw.get('mimetype'),
    )


def _blank_str(value) -> bool:
    return value is None or not str(value).strip()


def build_claim(price_claim, description: Optional[str], documents: Iterable = (),
                actor_id: Optional[int] = None, now: Optional[datetime] = None) -> ClaimDetails:
    docs = list(documents or [])
    if price_claim in (None, "") or not (description or "").strip():
        raise ClaimValidationError("Both priceClaim and description are required when hasClaim is true")
    if len(docs) > MAX_CLAIM_DOCUMENTS:
        raise ClaimValidationError(f"Maximum {MAX_CLAIM_DOCUMENTS} documents allowed for claims")
    return ClaimDetails(
        price_claim=parse_money('price_claim', price_claim),
        description=description.strip(),
        documents=tuple(_claim_document(d) for d in docs),
        created_at=now or get_current_ist_time(),
        created_by=actor_id,
    )


def allocate_chassis(booking: models.Booking, chassis_number, actor_id: Optional[int],
                     reason: Optional[str] = None, claim: Optional[ClaimDetails] = None,
                     now: Optional[datetime] = None) -> bool:
    """
    Sets or changes the booking's chassis number. Returns True for a first allocation.

    After the first allocation exactly one change is allowed, and only with a
    reason; the replaced number goes to the history with the status it was
    replaced in. Uniqueness across bookings is the caller's concern.
    """
    number = validate_chassis_number(chassis_number)
    status = current_status(booking)
    if status in NO_ALLOCATION_STATUSES:
        raise ChassisAllocationError(f"Chassis number cannot be allocated to a {status.value} booking")

    now = now or get_current_ist_time()
    previous = booking.chassis_number
    is_initial = not previous

    if not is_initial:
        if not (reason or "").strip():
            raise ChassisAllocationError("Reason is required for chassis number change after allocation")
        if not booking.chassis_number_change_allowed:
            raise ChassisAllocationError("No more chassis number changes allowed for this booking")
        if previous == number:
            raise ChassisAllocationError(f"Chassis number {number} is already allocated to this booking")

        change = ChassisChange(
            number=previous,
            changed_at=now,
            changed_by=actor_id,
            reason=reason.strip(),
            status_at_change=status.value,
        )
        booking.chassis_number_history = list(booking.chassis_number_history or []) + [change.to_dict()]

    if claim is not None:
        booking.claim_details = claim.to_dict()

    booking.chassis_number = number
    booking.chassis_number_change_allowed = is_initial
    log.info("Booking %s: chassis %s %s", booking.booking_number, number,
             "allocated" if is_initial else f"replaces {previous}")
    return is_initial
