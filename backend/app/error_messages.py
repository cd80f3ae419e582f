"""Stable, human-readable wording for quote warnings and chat notices.

Quote warnings are asserted on verbatim by tests and shown as-is by the
builder UI, so every string is built here and nowhere else.
"""

from __future__ import annotations

from typing import Iterable, Optional

from backend.store.collections import MINIMUM_ORDER_EUR


def _bullet_list(items: Iterable[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def _fmt_number(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _subject(label: str, color_name: Optional[str]) -> str:
    return f"{label} {color_name or ''}".strip()


def carat_out_of_range_warning(label: str, raw_idx: int, carat: str) -> str:
    return f"{label}: carat index {raw_idx} out of range, using {carat} ct"


def quantity_clamped_warning(label: str, color_name: Optional[str], raw_qty) -> str:
    if raw_qty is None:
        return f"{_subject(label, color_name)}: quantity missing, set to 1"
    return f"{_subject(label, color_name)}: quantity was {_fmt_number(raw_qty)}, set to 1"


def below_minimum_per_color_warning(label: str, color_name: Optional[str], qty: int, minimum: int) -> str:
    return f"{_subject(label, color_name)}: {qty} pcs is below minimum {minimum} per color"


def below_minimum_order_warning(minimum: int = MINIMUM_ORDER_EUR) -> str:
    return f"Below minimum order of €{minimum}"


def unknown_products_notice(unknown_products: list[str]) -> str:
    """Appended to an AI reply when none of its proposed products exist in the catalog."""
    cleaned = [p.strip() for p in unknown_products if p and p.strip()]
    if not cleaned:
        return "Some suggested products are not in the LoveLab catalog, so no quote was built."
    return (
        "These suggested products are not in the LoveLab catalog:\n"
        f"{_bullet_list(cleaned)}\n\n"
        "Please pick products from the collection list."
    )


def ai_error_message(detail: str) -> str:
    return f"Sorry, the assistant could not answer right now.\n\n({detail})"
