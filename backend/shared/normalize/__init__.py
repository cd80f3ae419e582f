"""Utility helpers for product-name normalization and alias handling."""

from .text import (
    default_aliases,
    load_aliases,
    normalize_carat,
    normalize_product_name,
    normalize_query,
)

__all__ = [
    "default_aliases",
    "load_aliases",
    "normalize_carat",
    "normalize_product_name",
    "normalize_query",
]
