from typing import Dict, FrozenSet, Iterable

from core.exceptions import PermissionDeniedError
from core.models import BookingStatus, UserRole

# Which roles may move a booking into which status.
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[BookingStatus]] = {
    UserRole.ADMIN.value: frozenset(BookingStatus),
    UserRole.MANAGER.value: frozenset({
        BookingStatus.PENDING_APPROVAL, BookingStatus.APPROVED, BookingStatus.REJECTED, BookingStatus.COMPLETED, BookingStatus.CANCELLED,
    }),
    UserRole.SALES_EXECUTIVE.value: frozenset({BookingStatus.PENDING_APPROVAL, BookingStatus.CANCELLED}),
    UserRole.SUBDEALER.value: frozenset({BookingStatus.PENDING_APPROVAL, BookingStatus.CANCELLED}),
}

# Chassis allocation is not a status change but is gated the same way.
CHASSIS_ALLOCATION_ROLES = frozenset({UserRole.ADMIN.value, UserRole.MANAGER.value})


def allowed_statuses(roles: Iterable[str]) -> FrozenSet[BookingStatus]:
    allowed = frozenset()
    for role in roles:
        allowed |= ALLOWED_TRANSITIONS.get(role, frozenset())
    return allowed


def authorize(roles: Iterable[str], target: BookingStatus) -> None:
    """The single authorization check for status changes (PENDING_APPROVAL stands for create/update)."""
    roles = list(roles)
    if target not in allowed_statuses(roles):
        raise PermissionDeniedError(roles, f"move booking to {target.value}")


def authorize_chassis_allocation(roles: Iterable[str]) -> None:
    roles = list(roles)
    if not CHASSIS_ALLOCATION_ROLES.intersection(roles):
        raise PermissionDeniedError(roles, "allocate chassis number")
