from dataclasses import dataclass
from typing import Optional, Sequence

from core.exceptions import (
    AmbiguousChannelError, ExchangeNotAllowedError, InvalidSalesExecutiveError, NoSubdealerUserError
)
from core.models import BookingType, UserRole
from features.booking.validation import parse_id
from features.booking.values import SalesEntity, UserRef


@dataclass(frozen=True)
class UserAssignment:
    sales_executive_id: Optional[int] = None
    subdealer_user_id: Optional[int] = None


def resolve_channel(branch_id=None, subdealer_id=None) -> SalesEntity:
    """A booking belongs to exactly one branch or one subdealer."""
    has_branch = branch_id not in (None, "")
    has_subdealer = subdealer_id not in (None, "")
    if has_branch and has_subdealer:
        raise AmbiguousChannelError("Cannot select both branch and subdealer")
    if not has_branch and not has_subdealer:
        raise AmbiguousChannelError("Either branch or subdealer selection is required")
    if has_branch:
        return SalesEntity('branch', str(branch_id))
    return SalesEntity('subdealer', parse_id('subdealer', subdealer_id))


def assign_responsible_user(entity: SalesEntity, requesting_user_id: int,
                            subdealer_users: Sequence[UserRef] = (),
                            requested_executive_id=None,
                            requested_executive: Optional[UserRef] = None) -> UserAssignment:
    """
    Picks who the booking is attributed to.

    SUBDEALER bookings go to the active SUBDEALER-role user of that subdealer.
    BRANCH bookings go to the requested sales executive when one is named (it
    must be active and belong to the branch), otherwise to the requesting user.
    """
    if entity.booking_type == BookingType.SUBDEALER:
        for user in subdealer_users:
            if (user.is_active and user.has_role(UserRole.SUBDEALER.value)
                    and str(user.subdealer_id) == str(entity.entity_id)):
                return UserAssignment(subdealer_user_id=user.id)
        raise NoSubdealerUserError(entity.entity_id)

    if requested_executive_id in (None, ""):
        return UserAssignment(sales_executive_id=requesting_user_id)

    if requested_executive is None or not requested_executive.is_active:
        raise InvalidSalesExecutiveError(requested_executive_id, "Invalid or inactive sales executive selected")
    if str(requested_executive.branch_id) != str(entity.entity_id):
        raise InvalidSalesExecutiveError(requested_executive_id, "Sales executive must belong to the selected branch")
    return UserAssignment(sales_executive_id=requested_executive.id)


def ensure_exchange_allowed(entity: SalesEntity, exchange_requested: bool) -> None:
    if exchange_requested and entity.booking_type == BookingType.SUBDEALER:
        raise ExchangeNotAllowedError()
