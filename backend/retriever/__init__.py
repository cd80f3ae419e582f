"""Catalog lookup for product references coming from the assistant."""

from .resolver import (
    expand_suggestion_lines,
    resolve_carat_index,
    resolve_collection,
    unresolved_products,
)

__all__ = [
    "expand_suggestion_lines",
    "resolve_carat_index",
    "resolve_collection",
    "unresolved_products",
]
