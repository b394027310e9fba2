"""
Discount allocation across a booking's price components.

A discount instruction (fixed rupees or a percentage of the eligible total) is
spread over the discountable components, highest GST rate first, so the lines
that carry the most tax absorb the discount before anything else. No single
component may lose more than 95% of its original value in one pass, and every
pass is followed by a cap check because later instructions run on the already
discounted components.
"""

import logging
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Iterable, List, Sequence, Tuple

from core.exceptions import DiscountCapExceededError, NoDiscountableComponentsError
from core.models import DiscountType
from features.booking.config import MAX_DISCOUNT_RATIO, MIN_RETAINED_RATIO
from features.booking.values import Discount, PriceComponent
from utils import PAISE, to_money

log = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class BookingTotals:
    total_amount: Decimal
    total_discount: Decimal
    discounted_amount: Decimal


def max_discount_for(component: PriceComponent) -> Decimal:
    """Largest discount one pass may take from a component (rounded down so 5% always stays)."""
    return (component.original_value * MAX_DISCOUNT_RATIO).quantize(PAISE, rounding=ROUND_DOWN)


def discount_pool(eligible: Sequence[PriceComponent], amount: Decimal, discount_type: DiscountType) -> Decimal:
    if discount_type == DiscountType.PERCENTAGE:
        eligible_total = sum((c.original_value for c in eligible), ZERO)
        return (eligible_total * amount / Decimal(100)).quantize(PAISE, rounding=ROUND_HALF_UP)
    return to_money(amount)


def allocate(components: Sequence[PriceComponent], amount, discount_type: DiscountType = DiscountType.FIXED
             ) -> Tuple[PriceComponent, ...]:
    """
    Spreads one discount instruction over the eligible components.

    Returns a new tuple in the input order. Fixed components (not discountable,
    or the hypothecation line) and components past the point where the pool
    runs out come back unchanged.
    """
    amount = to_money(amount)
    discount_type = DiscountType(discount_type)
    components = tuple(components)

    eligible_idx = [i for i, c in enumerate(components) if c.is_discount_eligible]
    if not eligible_idx and amount > 0:
        raise NoDiscountableComponentsError()
    if amount <= 0:
        return components

    # sorted() is stable: equal GST rates keep their original order
    ordered = sorted(eligible_idx, key=lambda i: -(components[i].gst_rate or 0.0))
    pool = discount_pool([components[i] for i in eligible_idx], amount, discount_type)

    result: List[PriceComponent] = list(components)
    for i in ordered:
        if pool <= 0:
            break
        component = components[i]
        take = min(pool, max_discount_for(component))
        result[i] = replace(component, discounted_value=component.discounted_value - take)
        pool -= take

    if pool > 0:
        log.warning("Discount pool not fully absorbed; %s left after capping every eligible component", pool)

    return tuple(result)


def validate_limits(components: Iterable[PriceComponent]) -> None:
    """Raises DiscountCapExceededError naming every component discounted past 95%."""
    violations = [
        c.header_key for c in components
        if c.is_discount_eligible and c.discounted_value < c.original_value * MIN_RETAINED_RATIO
    ]
    if violations:
        raise DiscountCapExceededError(violations)


def apply_discounts(components: Sequence[PriceComponent], discounts: Iterable[Discount]
                    ) -> Tuple[PriceComponent, ...]:
    """Applies each instruction in order on the output of the previous one, checking the cap after every pass."""
    current = tuple(components)
    for discount in discounts:
        current = allocate(current, discount.amount, discount.type)
        validate_limits(current)
    return current


def total_discount(components: Iterable[PriceComponent]) -> Decimal:
    return sum((c.discount_taken for c in components if c.is_discount_eligible), ZERO)


def compute_totals(components: Sequence[PriceComponent], accessories_total, rto_amount) -> BookingTotals:
    """Derives the booking totals from the final component set; never from partially updated values."""
    components_total = sum((c.discounted_value for c in components), ZERO)
    total_amount = components_total + to_money(accessories_total) + to_money(rto_amount)
    discount = total_discount(components)
    return BookingTotals(
        total_amount=total_amount,
        total_discount=discount,
        discounted_amount=total_amount - discount,
    )
