from __future__ import annotations

import pytest

from backend.app.services.quote_engine import calculate_quote
from backend.retriever import (
    expand_suggestion_lines,
    resolve_carat_index,
    resolve_collection,
    unresolved_products,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("CUTY", "CUTY"),
        ("cuty", "CUTY"),
        ("m3", "M3"),
        ("Multi Three", "M3"),
        ("HOLY (D VVS)", "HOLY"),
        ("HOLY(DVVS)", "HOLY"),
        ("SHAPY SPARKLE ROUND(G/H VS)", "SSRG"),
        ("SHAPY SPARKLE ROUND(D VVS)", "SSRD"),
        ("CUTY bracelet 0.10ct", "CUTY"),
        ("shapy sparkle rnd d vvs 0.50", "SSRD"),
        ("SHAPY SHINE", "SSF"),
    ],
)
def test_resolve_collection(text, expected):
    assert resolve_collection(text) == expected


@pytest.mark.parametrize("text", ["SHAPY", "MULTI", "Tennis necklace", "", None, "M"])
def test_resolve_collection_gives_up(text):
    assert resolve_collection(text) is None


def test_resolve_carat_index():
    assert resolve_carat_index("CUTY", "0.20") == 2
    assert resolve_carat_index("CUTY", 0.1) == 1
    assert resolve_carat_index("CUTY", "0.1ct") == 1
    assert resolve_carat_index("M3", "0.9") == 3
    assert resolve_carat_index("MULTI THREE", "0.60") == 2


def test_resolve_carat_index_defaults_to_first():
    assert resolve_carat_index("CUTY", "5.00") == 0
    assert resolve_carat_index("CUTY", None) == 0
    assert resolve_carat_index("CUTY", "large") == 0
    assert resolve_carat_index("NOPE", "0.20") == 0


def _ai_lines():
    return [
        {
            "product": "CUTY",
            "carat": "0.20",
            "housing": "White",
            "size": "M",
            "colors": ["Black", "Red"],
            "qtyPerColor": 3,
            "lineTotal": 99999,
        },
        {"product": "CUBIX", "carat": "0.10", "housing": "White Gold", "colorName": "Navy", "qty": 4},
        {"product": "cuty", "carat": "0.20", "colors": ["Navy Blue"], "qty": 2},
        {"product": "Tennis necklace", "colors": ["Gold"]},
        "not a line",
    ]


def test_expand_groups_by_collection_in_first_seen_order():
    lines = expand_suggestion_lines(_ai_lines())
    assert [ln.collection_id for ln in lines] == ["CUTY", "CUBIX"]
    cuty, cubix = lines
    assert [(c.color_name, c.qty) for c in cuty.color_configs] == [("Black", 3), ("Red", 3), ("Navy Blue", 2)]
    assert all(c.carat_idx == 2 for c in cuty.color_configs)
    assert cuty.color_configs[0].housing == "White"
    assert cuty.color_configs[0].size == "M"
    assert cuty.color_configs[2].housing is None
    assert [(c.color_name, c.qty, c.carat_idx) for c in cubix.color_configs] == [("Navy", 4, 1)]


def test_unresolved_products_are_reported_once():
    lines = _ai_lines() + [{"product": "Tennis necklace"}]
    assert unresolved_products(lines) == ["Tennis necklace"]


def test_expanded_lines_reprice_to_engine_totals():
    lines = expand_suggestion_lines(_ai_lines()[:2])
    quote = calculate_quote(lines)
    assert quote.subtotal == 3 * 65 + 3 * 65 + 4 * 34


def test_single_color_falls_back_to_collection_minimum():
    lines = expand_suggestion_lines([{"product": "HOLY (D VVS)", "carat": "0.70", "color": "Black"}])
    cfg = lines[0].color_configs[0]
    assert (cfg.color_name, cfg.qty, cfg.carat_idx) == ("Black", 2, 1)


def test_single_line_without_color_or_qty():
    cfg = expand_suggestion_lines([{"product": "CUTY"}])[0].color_configs[0]
    assert cfg.color_name == "Unknown"
    assert cfg.qty == 1
    assert cfg.carat_idx == 0


def test_total_qty_and_per_color_entries():
    lines = expand_suggestion_lines(
        [
            {"product": "MULTI FOUR", "colorName": "Red", "totalQty": 6},
            {"product": "MATCHY FANCY", "housingType": "bezel", "multiAttached": "yes", "colors": [{"name": "Black", "qty": 5}, "Ivory"]},
        ]
    )
    assert lines[0].color_configs[0].qty == 6
    mf = lines[1].color_configs
    assert [(c.color_name, c.qty) for c in mf] == [("Black", 5), ("Ivory", 2)]
    assert mf[0].housing_type == "bezel"
    assert mf[0].multi_attached is None


def test_expand_tolerates_garbage():
    assert expand_suggestion_lines(None) == []
    assert expand_suggestion_lines([1, None, "CUTY", {"qty": 3}]) == []
    assert unresolved_products(None) == []
