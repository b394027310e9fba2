from decimal import Decimal
from typing import Iterable, Mapping, Optional

from core.exceptions import InvalidAccessoryError
from features.booking.values import AccessoryBundle, AccessoryLine, CatalogAccessory
from utils import to_money


def bundle_accessories(selected_ids: Iterable, catalog: Mapping[int, CatalogAccessory],
                       model_id: int, floor: Optional[Decimal]) -> AccessoryBundle:
    """
    Reconciles the customer's accessory picks with the catalog floor for the entity.

    Every pick must be an active catalog entry that lists the model as
    applicable. The bundle total is max(itemized sum, floor); when the floor is
    higher an unnamed balance line makes the lines add up to the total exactly.
    """
    ids = [_as_id(i) for i in (selected_ids or [])]
    if not ids:
        return AccessoryBundle(lines=(), total=Decimal("0.00"))

    resolved = [catalog.get(i) for i in ids]
    missing = [i for i, acc in zip(ids, resolved) if acc is None or not acc.is_active]
    if missing:
        raise InvalidAccessoryError(missing, f"Invalid accessory IDs: {', '.join(str(i) for i in missing)}")

    incompatible = [acc for acc in resolved if model_id not in acc.applicable_model_ids]
    if incompatible:
        raise InvalidAccessoryError(
            [acc.id for acc in incompatible],
            f"Incompatible accessories: {', '.join(acc.name for acc in incompatible)}",
        )

    lines = [AccessoryLine(accessory_id=acc.id, price=to_money(acc.price), name=acc.name) for acc in resolved]
    itemized = sum((l.price for l in lines), Decimal("0.00"))
    floor = to_money(floor) if floor is not None else Decimal("0.00")

    if floor > itemized:
        lines.append(AccessoryLine(accessory_id=None, price=floor - itemized))

    return AccessoryBundle(lines=tuple(lines), total=max(itemized, floor))


def _as_id(raw):
    if isinstance(raw, Mapping):
        raw = raw.get('id')
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise InvalidAccessoryError([raw], f"Invalid accessory ID: {raw}")
