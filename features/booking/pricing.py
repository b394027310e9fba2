import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from core.exceptions import NoPriceDataError
from features.booking.config import ACCESSORIES_TOTAL_HEADER_KEY, HYPOTHECATION_HEADER_KEY
from features.booking.values import HeaderDef, PriceComponent, PriceEntry, SalesEntity
from utils import to_money

log = logging.getLogger(__name__)


def lookup_price(price_matrix: Sequence[PriceEntry], header_id: int, entity: SalesEntity) -> Optional[PriceEntry]:
    """Finds the matrix cell for (header, entity); None when the entity has no price for the header."""
    for entry in price_matrix:
        if entry.header_id == header_id and entity.owns(entry):
            return entry
    return None


def find_header(headers: Sequence[HeaderDef], header_key: str) -> Optional[HeaderDef]:
    return next((h for h in headers if h.header_key == header_key), None)


def selectable_optional_headers(headers: Sequence[HeaderDef]) -> List[HeaderDef]:
    """Optional headers a customer can tick. HPA has its own switch and ACCESSORIES TOTAL is a floor."""
    return [
        h for h in sorted(headers, key=lambda h: h.priority)
        if not h.is_mandatory and h.header_key not in (HYPOTHECATION_HEADER_KEY, ACCESSORIES_TOTAL_HEADER_KEY)
    ]


def get_accessories_floor(headers: Sequence[HeaderDef], price_matrix: Sequence[PriceEntry],
                          entity: SalesEntity) -> Optional[Decimal]:
    """Entity-specific ACCESSORIES TOTAL value, or None when the header is not configured for the model type."""
    header = find_header(headers, ACCESSORIES_TOTAL_HEADER_KEY)
    if header is None:
        return None
    entry = lookup_price(price_matrix, header.id, entity)
    return to_money(entry.value) if entry else Decimal("0.00")


def resolve_price_components(headers: Sequence[HeaderDef], price_matrix: Sequence[PriceEntry],
                             entity: SalesEntity, selected_optional: Iterable = (),
                             hpa: bool = False) -> Tuple[PriceComponent, ...]:
    """
    Turns the price matrix into the ordered line items of a booking.

    Headers are walked by priority. A header with no price for the entity is
    skipped. The hypothecation line is always emitted at its full original value
    but only charged when ``hpa`` is set. Mandatory headers are always emitted;
    optional ones only when the customer selected them. The ACCESSORIES TOTAL
    header is the accessory floor and is handled by the accessory bundler.
    """
    selected = {str(s) for s in (selected_optional or ())}
    components: List[PriceComponent] = []

    for header in sorted(headers, key=lambda h: h.priority):
        if header.header_key == ACCESSORIES_TOTAL_HEADER_KEY:
            continue

        entry = lookup_price(price_matrix, header.id, entity)
        if entry is None:
            continue

        value = to_money(entry.value)
        metadata = dict(entry.metadata or {})

        if header.header_key == HYPOTHECATION_HEADER_KEY:
            components.append(PriceComponent(
                header_id=header.id,
                header_key=header.header_key,
                original_value=value,
                discounted_value=value if hpa else Decimal("0.00"),
                is_discountable=False,
                is_mandatory=False,
                gst_rate=header.gst_rate or 0.0,
                metadata=metadata,
            ))
        elif header.is_mandatory or str(header.id) in selected:
            components.append(PriceComponent(
                header_id=header.id,
                header_key=header.header_key,
                original_value=value,
                discounted_value=value,
                is_discountable=bool(header.is_discount),
                is_mandatory=bool(header.is_mandatory),
                gst_rate=header.gst_rate or 0.0,
                metadata=metadata,
            ))

    if not components:
        raise NoPriceDataError(entity.entity_type)

    log.debug("Resolved %d price components for %s %s", len(components), entity.entity_type, entity.entity_id)
    return tuple(components)


def hypothecation_charge(components: Sequence[PriceComponent]) -> Decimal:
    """Charged hypothecation amount (zero when HPA is not flagged or not priced)."""
    return sum((c.discounted_value for c in components if c.is_hypothecation), Decimal("0.00"))


def base_amount(components: Sequence[PriceComponent]) -> Decimal:
    return sum((c.discounted_value for c in components), Decimal("0.00"))
