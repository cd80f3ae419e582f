from .collections import (
    COLLECTIONS,
    CORD_COLORS,
    DISCOUNT_PERCENT,
    DISCOUNT_THRESHOLD_EUR,
    HOUSING,
    MINIMUM_ORDER_EUR,
    CollectionDefinition,
    ColorEntry,
    HousingOptions,
    color_names,
    find_collection,
    housing_options,
    line_missing_fields,
    missing_fields,
    palette_for,
)

__all__ = [
    "COLLECTIONS",
    "CORD_COLORS",
    "DISCOUNT_PERCENT",
    "DISCOUNT_THRESHOLD_EUR",
    "HOUSING",
    "MINIMUM_ORDER_EUR",
    "CollectionDefinition",
    "ColorEntry",
    "HousingOptions",
    "color_names",
    "find_collection",
    "housing_options",
    "line_missing_fields",
    "missing_fields",
    "palette_for",
]
