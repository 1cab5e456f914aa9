# -*- Mode: Python; coding: utf-8; indent-tabs-mode: nil; tab-width: 4 -*-
"""Display order of lists.

The order is kept apart from the lists database, in the key-value store,
and reconciled against the live list names whenever either changes.
"""

import json
import logging
from typing import Iterable, List, Optional, Sequence

from swatchbook.storage.kvstore import KeyValueStore, LIST_ORDER_KEY

logger = logging.getLogger(__name__)


def reconcile_order(persisted: Optional[Sequence[str]], names: Iterable[str]) -> List[str]:
    """Intersect a stored order with the current list names.

    Names no longer present are dropped, names missing from the stored
    order are appended in their natural order. Applying the function to
    its own output returns the same list.

    Args:
        persisted: Previously stored order, or None.
        names: Current list names in natural key order.

    Returns:
        Reconciled display order.
    """
    current = list(dict.fromkeys(names))
    if not persisted:
        return current

    current_set = set(current)
    kept = [name for name in dict.fromkeys(persisted) if name in current_set]
    kept_set = set(kept)
    return kept + [name for name in current if name not in kept_set]


def load_order(kv: KeyValueStore, names: Iterable[str]) -> List[str]:
    """Read the stored order and reconcile it with the given names.

    A missing or corrupt stored value falls back to natural key order.
    """
    names = list(names)
    raw = kv.get_item(LIST_ORDER_KEY)
    if raw is None:
        return reconcile_order(None, names)

    try:
        persisted = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Ignoring corrupt list order: {e}")
        return reconcile_order(None, names)

    if not isinstance(persisted, list) or not all(isinstance(n, str) for n in persisted):
        logger.warning("Ignoring list order that is not a list of names")
        return reconcile_order(None, names)

    return reconcile_order(persisted, names)


def save_order(kv: KeyValueStore, order: Sequence[str]) -> bool:
    return kv.set_item(LIST_ORDER_KEY, json.dumps(list(order), ensure_ascii=False))


def move_name(order: Sequence[str], name: str, new_position: int) -> List[str]:
    """Move a name to a new position, clamped to the list bounds.

    Unknown names leave the order unchanged.
    """
    result = list(order)
    if name not in result:
        return result
    result.remove(name)
    new_position = max(0, min(new_position, len(result)))
    result.insert(new_position, name)
    return result


def rename_in_order(order: Sequence[str], old_name: str, new_name: str) -> List[str]:
    return [new_name if name == old_name else name for name in order]
