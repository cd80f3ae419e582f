"""Map free-text product references from the assistant onto catalog collections.

Resolution is deliberately closed-world: exact match after the static alias
table, then substring containment, then give up. There is no similarity
scoring, so a paraphrase that is not covered ends up unresolved instead of
being priced as the wrong product.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backend.app.models import ColorConfig, OrderLine
from backend.shared.normalize import normalize_carat, normalize_product_name, normalize_query
from backend.store.collections import COLLECTIONS, CollectionDefinition, find_collection

_MIN_REVERSE_CONTAINMENT = 3
_PRODUCT_KEYS = ("product", "collection", "collectionId", "name")
_CONFIG_KEYS = (
    ("housing", "housing"),
    ("housingType", "housing_type"),
    ("multiAttached", "multi_attached"),
    ("shape", "shape"),
    ("size", "size"),
)


def _catalog_keys() -> List[Tuple[str, CollectionDefinition]]:
    keys: List[Tuple[str, CollectionDefinition]] = []
    for collection in COLLECTIONS:
        keys.append((normalize_query(collection.id), collection))
        keys.append((normalize_query(collection.label), collection))
    return keys


def _contains_key(text: str, key: str) -> bool:
    pattern = rf"(?<![A-Z0-9]){re.escape(key)}(?![A-Z0-9])"
    return re.search(pattern, text) is not None


def resolve_collection(free_text: Optional[str]) -> Optional[str]:
    """Return the collection id *free_text* refers to, or None."""

    name = normalize_product_name(free_text)
    if not name:
        return None

    keys = _catalog_keys()
    for key, collection in keys:
        if key == name:
            return collection.id

    # The text names a collection ("CUTY bracelet 0.10ct"): longest key wins.
    best: Optional[Tuple[str, CollectionDefinition]] = None
    for key, collection in keys:
        if _contains_key(name, key) and (best is None or len(key) > len(best[0])):
            best = (key, collection)
    if best is not None:
        return best[1].id

    # The text is a fragment of a label ("SHAPY SHINE"): only when unambiguous.
    if len(name) < _MIN_REVERSE_CONTAINMENT:
        return None
    matches = {collection.id for key, collection in keys if name in key}
    if len(matches) == 1:
        return matches.pop()
    return None


def resolve_carat_index(collection_id: Optional[str], carat_text: Any) -> int:
    """Index of *carat_text* in the collection's carat list, 0 when unresolved."""

    collection = find_collection(collection_id) if collection_id else None
    if collection is None:
        resolved_id = resolve_collection(collection_id)
        collection = find_collection(resolved_id) if resolved_id else None
    if collection is None or carat_text is None:
        return 0

    literal = str(carat_text).strip()
    if literal in collection.carats:
        return collection.carats.index(literal)

    wanted = normalize_carat(carat_text)
    if wanted is None:
        return 0
    for idx, carat in enumerate(collection.carats):
        if normalize_carat(carat) == wanted:
            return idx
    return 0


def _positive_number(*values: Any) -> Optional[float]:
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number) and number > 0:
            return number
    return None


def _product_name(raw: Dict[str, Any]) -> Optional[str]:
    for key in _PRODUCT_KEYS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _shared_fields(raw: Dict[str, Any]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    for wire, attr in _CONFIG_KEYS:
        value = raw.get(wire)
        if attr == "multi_attached":
            fields[attr] = value if isinstance(value, bool) else None
        else:
            fields[attr] = value if isinstance(value, str) and value.strip() else None
    return fields


def _color_entries(raw: Dict[str, Any], minimum: int) -> List[Tuple[str, float]]:
    """(color name, qty) pairs for one AI line."""

    colors = raw.get("colors")
    if isinstance(colors, list) and colors:
        shared = _positive_number(raw.get("qtyPerColor"), raw.get("qty")) or minimum
        entries: List[Tuple[str, float]] = []
        for color in colors:
            if isinstance(color, dict):
                name = color.get("colorName") or color.get("name") or color.get("color")
                qty = _positive_number(color.get("qty"), color.get("qtyPerColor")) or shared
            else:
                name, qty = color, shared
            if name is None or not str(name).strip():
                continue
            entries.append((str(name).strip(), qty))
        if entries:
            return entries

    name = raw.get("colorName") or raw.get("color") or "Unknown"
    qty = _positive_number(raw.get("qty"), raw.get("totalQty")) or minimum
    return [(str(name).strip() or "Unknown", qty)]


def expand_suggestion_lines(ai_lines: Optional[Iterable[Any]]) -> List[OrderLine]:
    """Turn AI-proposed quote lines into builder order lines.

    Lines are grouped by resolved collection in first-seen order, whatever
    line boundaries the model used. Each color becomes its own config.
    """

    grouped: Dict[str, List[ColorConfig]] = {}
    for raw in ai_lines or []:
        if not isinstance(raw, dict):
            continue
        collection_id = resolve_collection(_product_name(raw))
        if collection_id is None:
            continue
        collection = find_collection(collection_id)
        if raw.get("carat") is None and isinstance(raw.get("caratIdx"), int):
            carat_idx = raw["caratIdx"]
        else:
            carat_idx = resolve_carat_index(collection_id, raw.get("carat"))
        shared = _shared_fields(raw)
        configs = grouped.setdefault(collection_id, [])
        for color_name, qty in _color_entries(raw, collection.min_per_color):
            configs.append(
                ColorConfig(
                    id=len(configs) + 1,
                    color_name=color_name,
                    carat_idx=carat_idx,
                    qty=qty,
                    **shared,
                )
            )

    return [
        OrderLine(uid=uid, collection_id=collection_id, color_configs=configs)
        for uid, (collection_id, configs) in enumerate(grouped.items(), start=1)
    ]


def unresolved_products(ai_lines: Optional[Iterable[Any]]) -> List[str]:
    """Product names from *ai_lines* that match no collection, first-seen order."""

    missing: List[str] = []
    for raw in ai_lines or []:
        if not isinstance(raw, dict):
            continue
        name = _product_name(raw)
        if name is None:
            continue
        if resolve_collection(name) is None and name.strip() not in missing:
            missing.append(name.strip())
    return missing
