"""Normalization primitives for product names and carat strings coming from the assistant."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from functools import lru_cache
from pathlib import Path
import re
from typing import Dict, List, Optional

import yaml

ALIASES_PATH = Path(__file__).resolve().parent / "aliases.yaml"

_RE_WHITESPACE = re.compile(r"\s+")
_RE_CARAT_SUFFIX = re.compile(r"\s*(?:ct|cts|carat|carats|kt)\.?$", re.IGNORECASE)


def normalize_query(text: Optional[str]) -> str:
    """Return *text* trimmed, upper-cased and with whitespace collapsed.

    Collection ids and labels are upper-case ASCII, so this is the only
    normalization applied before exact and containment matching. Empty or
    non-string inputs yield an empty string.
    """

    if not text or not isinstance(text, str):
        return ""
    return _RE_WHITESPACE.sub(" ", text.strip()).upper()


def load_aliases(path: str | Path) -> Dict[str, str]:
    """Load an alias table and invert it to ``{variant: canonical}``.

    The YAML schema is ``{canonical: [variant, ...]}``. Keys and variants are
    normalized via :func:`normalize_query`; empty entries are ignored.
    """

    loaded = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(loaded, dict):
        raise ValueError("aliases YAML must define a mapping")

    inverted: Dict[str, str] = {}
    for canon_raw, variants in loaded.items():
        canon = normalize_query(str(canon_raw))
        if not canon:
            continue
        if variants is None:
            values: List[str] = []
        elif isinstance(variants, list):
            values = [str(item) for item in variants]
        else:
            values = [str(variants)]
        for variant in values:
            key = normalize_query(variant)
            if key:
                inverted[key] = canon
    return inverted


@lru_cache(maxsize=1)
def default_aliases() -> Dict[str, str]:
    return load_aliases(ALIASES_PATH)


def normalize_product_name(text: Optional[str], aliases: Optional[Dict[str, str]] = None) -> str:
    name = normalize_query(text)
    if not name:
        return ""
    table = default_aliases() if aliases is None else aliases
    return table.get(name, name)


def normalize_carat(value) -> Optional[str]:
    """Render a carat value the way the catalog spells it (``0.1`` -> ``"0.10"``).

    Returns None for anything that is not a plain positive number.
    """

    if value is None or isinstance(value, bool):
        return None
    text = _RE_CARAT_SUFFIX.sub("", str(value).strip()).replace(",", ".")
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite() or number <= 0:
        return None
    return f"{number:.2f}"
