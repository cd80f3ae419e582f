"""Deterministic pricing of builder order lines.

``calculate_quote`` runs on every edit in the builder, so it never raises for
malformed input: every defect is clamped and reported as a warning string.
"""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Tuple

from backend.app.error_messages import (
    below_minimum_order_warning,
    below_minimum_per_color_warning,
    carat_out_of_range_warning,
    quantity_clamped_warning,
)
from backend.app.models import ColorConfig, OrderLine, PricedQuoteLine, Quote
from backend.store.collections import (
    DISCOUNT_PERCENT,
    DISCOUNT_THRESHOLD_EUR,
    MINIMUM_ORDER_EUR,
    CollectionDefinition,
    find_collection,
)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _resolve_carat_index(raw: Optional[int], collection: CollectionDefinition) -> Tuple[int, bool]:
    if raw is None:
        return 0, False
    bounded = max(0, min(int(raw), len(collection.prices) - 1))
    return bounded, bounded != raw


def _resolve_quantity(raw) -> Tuple[int, bool, Optional[float]]:
    """Return (qty, clamped, raw value worth reporting)."""
    if raw is None:
        return 1, True, None
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return 1, True, None
    if not math.isfinite(number):
        return 1, True, None
    rounded = round_half_up(number)
    if number <= 0 or rounded < 1:
        return 1, True, raw
    return rounded, False, raw


def _price_config(
    collection: CollectionDefinition, cfg: ColorConfig, warnings: List[str]
) -> PricedQuoteLine:
    carat_idx, carat_clamped = _resolve_carat_index(cfg.carat_idx, collection)
    if carat_clamped:
        warnings.append(
            carat_out_of_range_warning(collection.label, cfg.carat_idx, collection.carats[carat_idx])
        )

    qty, qty_clamped, reported = _resolve_quantity(cfg.qty)
    if qty_clamped:
        warnings.append(quantity_clamped_warning(collection.label, cfg.color_name, reported))

    if qty < collection.min_per_color:
        warnings.append(
            below_minimum_per_color_warning(collection.label, cfg.color_name, qty, collection.min_per_color)
        )

    unit = collection.prices[carat_idx]
    retail_unit = collection.retail[carat_idx]
    return PricedQuoteLine(
        product=collection.label,
        carat=collection.carats[carat_idx],
        housing=cfg.housing or None,
        shape=cfg.shape or None,
        size=cfg.size or None,
        color_name=cfg.color_name,
        qty=qty,
        unit_b2b=unit,
        line_total=qty * unit,
        retail_unit=retail_unit,
        retail_total=qty * retail_unit,
    )


def calculate_quote(lines: Iterable[OrderLine]) -> Quote:
    priced: List[PricedQuoteLine] = []
    warnings: List[str] = []

    for line in lines or []:
        collection = find_collection(line.collection_id)
        if collection is None:
            continue
        for cfg in line.color_configs:
            priced.append(_price_config(collection, cfg, warnings))

    subtotal = sum(pl.line_total for pl in priced)
    total_pieces = sum(pl.qty for pl in priced)
    total_retail = sum(pl.retail_total for pl in priced)
    discount_percent = DISCOUNT_PERCENT if subtotal >= DISCOUNT_THRESHOLD_EUR else 0
    discount_amount = round_half_up(subtotal * discount_percent / 100)

    if 0 < subtotal < MINIMUM_ORDER_EUR:
        warnings.append(below_minimum_order_warning())

    return Quote(
        lines=tuple(priced),
        subtotal=subtotal,
        discount_percent=discount_percent,
        discount_amount=discount_amount,
        total=subtotal - discount_amount,
        total_pieces=total_pieces,
        total_retail=total_retail,
        minimum_met=subtotal >= MINIMUM_ORDER_EUR,
        warnings=tuple(warnings),
    )
