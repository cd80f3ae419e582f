"""Static LoveLab catalog: collections, cord palettes and housing taxonomy.

Carat, wholesale and retail tables are index-aligned; every consumer that
needs a price must index with the same ``caratIdx`` used to pick the carat.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class ColorEntry:
    name: str
    hex: str


@dataclass(frozen=True)
class CollectionDefinition:
    id: str
    label: str
    carats: Tuple[str, ...]
    prices: Tuple[int, ...]
    retail: Tuple[int, ...]
    min_per_color: int
    cord: str
    housing: Optional[str] = None
    shapes: Tuple[str, ...] = field(default_factory=tuple)
    sizes: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not (len(self.carats) == len(self.prices) == len(self.retail)):
            raise ValueError(f"{self.id}: carats, prices and retail must have the same length")
        if not self.carats:
            raise ValueError(f"{self.id}: at least one carat is required")
        if any(p < 0 for p in self.prices) or any(r < 0 for r in self.retail):
            raise ValueError(f"{self.id}: prices must be non-negative")

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "label": self.label,
            "carats": list(self.carats),
            "prices": list(self.prices),
            "retail": list(self.retail),
            "minC": self.min_per_color,
            "cord": self.cord,
            "housing": self.housing,
            "shapes": list(self.shapes),
            "sizes": list(self.sizes),
        }


# ---------- Housing ----------
HOUSING: Dict[str, object] = {
    "standard": ("Yellow", "White", "Rose"),
    "goldMetal": ("White Gold", "Yellow Gold", "Rose Gold"),
    "multiThree": {
        "attached": ("WWW", "YYY", "PPP"),
        "notAttached": ("WWW", "YYY", "PPP", "WYP"),
    },
    "matchy": {
        "bezel": (
            "White + White",
            "Yellow + Yellow",
            "Pink + Pink",
            "White + Yellow",
            "White + Pink",
            "Yellow + Pink",
        ),
        "prong": ("White", "Yellow"),
    },
    "shapyShine": {
        "bezel": ("Yellow", "White", "Rose"),
        "prong": ("Yellow", "White", "Rose"),
    },
}

SIZES_NYLON = ("XS", "S", "M", "L", "XL")
SIZES_SILK = ("S/M", "L/XL")

SHAPES_HOLY = ("Cross", "Hamsa", "Star of David", "Greek Cross")
SHAPES_MATCHY = ("Pear", "Heart", "Emerald")
SHAPES_SHAPY_SHINE = ("Heart", "Pear", "Marquise", "Oval", "Emerald", "Cushion", "Long Cushion")
SHAPES_SHAPY_SPARKLE = (
    "Round", "Pear", "Oval", "Heart", "Princess", "Cushion", "Marquise", "Emerald", "Long Cushion",
)

# ---------- Collections ----------
COLLECTIONS: Tuple[CollectionDefinition, ...] = (
    CollectionDefinition("CUTY", "CUTY", ("0.05", "0.10", "0.20", "0.30"), (20, 30, 65, 90), (75, 120, 315, 430), 1, "nylon", "standard", sizes=SIZES_NYLON),
    CollectionDefinition("CUBIX", "CUBIX", ("0.05", "0.10", "0.20"), (24, 34, 70), (95, 145, 340), 1, "nylon", "goldMetal", sizes=SIZES_SILK),
    CollectionDefinition("M3", "MULTI THREE", ("0.15", "0.30", "0.60", "0.90"), (55, 85, 165, 240), (260, 400, 800, 1150), 2, "nylon", "multiThree", sizes=SIZES_NYLON),
    CollectionDefinition("M4", "MULTI FOUR", ("0.20", "0.40"), (75, 100), (360, 500), 2, "nylon", "goldMetal", sizes=SIZES_NYLON),
    CollectionDefinition("M5", "MULTI FIVE", ("0.25", "0.50"), (85, 120), (400, 580), 2, "nylon", "goldMetal", sizes=SIZES_NYLON),
    CollectionDefinition("MF", "MATCHY FANCY", ("0.60", "1.00"), (180, 290), (550, 885), 2, "nylon", "matchy", SHAPES_MATCHY, SIZES_NYLON),
    CollectionDefinition("SSF", "SHAPY SHINE FANCY", ("0.10", "0.30", "0.50"), (50, 90, 145), (180, 330, 450), 2, "shine", "shapyShine", SHAPES_SHAPY_SHINE, SIZES_NYLON),
    CollectionDefinition("SSPF", "SHAPY SPARKLE FANCY", ("0.70", "1.00"), (225, 300), (550, 850), 2, "silk", None, SHAPES_SHAPY_SPARKLE, SIZES_SILK),
    CollectionDefinition("SSRG", "SHAPY SPARKLE RND G/H", ("0.50", "0.70", "1.00"), (115, 145, 205), (290, 360, 500), 2, "silk", None, SHAPES_SHAPY_SPARKLE, SIZES_SILK),
    CollectionDefinition("SSRD", "SHAPY SPARKLE RND D VVS", ("0.50", "0.70", "1.00"), (180, 200, 285), (550, 650, 850), 2, "silk", None, SHAPES_SHAPY_SPARKLE, SIZES_SILK),
    CollectionDefinition("HOLY", "HOLY (D VVS)", ("0.50", "0.70", "1.00"), (260, 425, 550), (650, 1000, 1325), 2, "holy", "standard", SHAPES_HOLY, SIZES_NYLON),
)

COLLECTIONS_BY_ID: Dict[str, CollectionDefinition] = {c.id: c for c in COLLECTIONS}
COLLECTIONS_BY_LABEL: Dict[str, CollectionDefinition] = {c.label: c for c in COLLECTIONS}

MINIMUM_ORDER_EUR = 800
DISCOUNT_THRESHOLD_EUR = 1600
DISCOUNT_PERCENT = 10


def _palette(*pairs: Tuple[str, str]) -> Tuple[ColorEntry, ...]:
    return tuple(ColorEntry(name, hex_) for name, hex_ in pairs)


CORD_COLORS: Dict[str, Tuple[ColorEntry, ...]] = {
    "nylon": _palette(
        ("Red", "#E5010B"), ("Bordeaux", "#A52A4A"), ("Dark Pink", "#E388A1"),
        ("Light Pink", "#F9C8D5"), ("Fluo Pink", "#FF1583"), ("Orange", "#FF8C00"),
        ("Gold", "#CFA962"), ("Yellow", "#FFDD00"), ("Fluo Yellow", "#FDFD2A"),
        ("Green", "#008447"), ("Turquoise", "#008B8B"), ("Light Blue", "#A3D5E4"),
        ("Navy Blue", "#000080"), ("Lilac", "#C4A5D1"),
        ("Purple", "#5F3C96"), ("Brown", "#442E2D"), ("Black", "#000000"),
        ("Silver Grey", "#C4C4C4"), ("White", "#FFFFFF"), ("Ivory", "#FCF8ED"),
    ),
    "shine": _palette(
        ("Dark Pink", "#FFA2D0"), ("Light Pink", "#F5CDD1"), ("Lilac", "#A08A97"),
        ("Purple", "#463678"), ("Red", "#FF0000"), ("Bordeaux", "#770116"),
        ("Turq Blue", "#3B6E8E"), ("Navy", "#2B3F61"), ("Light Blue", "#7DAFE9"),
        ("Ivory", "#FCFAEC"), ("Black", "#000000"), ("Brown", "#411900"),
        ("Green", "#008000"), ("Yellow", "#FEE900"), ("Orange", "#FF6700"),
        ("Yellow Gold", "#E2B741"), ("Grey", "#8B8B8B"), ("Fluo Pink", "#FF3988"),
        ("Fluo Yellow", "#EBEE16"), ("White", "#FFFFFF"),
    ),
    "silk": _palette(
        ("Light Blue", "#A3D5E4"), ("Baby Pink", "#F9C8D5"), ("Champagne", "#F5DEB3"),
        ("Lavendel", "#C4A5D1"), ("Old Pink", "#D4A5A5"), ("Mint Green", "#98D8C8"),
        ("Peach", "#FFDAB9"), ("Olive Green", "#808000"), ("Silver Grey", "#C4C4C4"),
        ("Gold", "#CFA962"), ("Lila", "#CC99CC"), ("Pink", "#FF85A2"),
        ("Red", "#E5010B"), ("Jeans Blue", "#5B7DB1"), ("Royal Blue", "#4169E1"),
        ("Navy Blue", "#000080"), ("Green", "#008447"), ("Grey", "#808080"),
        ("Brown", "#442E2D"), ("Black", "#000000"),
    ),
    "holy": _palette(
        ("Brown", "#411900"), ("Grey", "#8B8B8B"), ("Green", "#008000"),
        ("Ivory", "#FDF7E7"), ("Royal Blue", "#000080"), ("Pink", "#FF69B4"),
        ("Black", "#000000"), ("Red", "#FF0000"),
    ),
}


def find_collection(id_or_label: Optional[str]) -> Optional[CollectionDefinition]:
    """Exact lookup by id first, then by label. Fuzzy input belongs to the resolver."""
    if not id_or_label:
        return None
    return COLLECTIONS_BY_ID.get(id_or_label) or COLLECTIONS_BY_LABEL.get(id_or_label)


def palette_for(collection: CollectionDefinition) -> Tuple[ColorEntry, ...]:
    return CORD_COLORS.get(collection.cord, ())


def color_names(collection: CollectionDefinition) -> List[str]:
    return [entry.name for entry in palette_for(collection)]


@dataclass(frozen=True)
class HousingOptions:
    type_choices: Tuple[str, ...] = ()
    options: Tuple[str, ...] = ()
    needs_type: bool = False
    needs_attached: bool = False
    bezel_only: bool = False


def _is_bezel_only(carats: Optional[Sequence[str]]) -> bool:
    # SHAPY SHINE at 0.10 ct only comes in a bezel setting.
    if not carats:
        return False
    return all(str(ct) == "0.10" for ct in carats)


def housing_options(
    collection: CollectionDefinition,
    housing_type: Optional[str] = None,
    multi_attached: Optional[bool] = None,
    carats: Optional[Sequence[str]] = None,
) -> HousingOptions:
    tag = collection.housing
    if not tag:
        return HousingOptions()
    if tag in ("standard", "goldMetal"):
        return HousingOptions(options=tuple(HOUSING[tag]))  # type: ignore[arg-type]
    if tag == "multiThree":
        table = HOUSING["multiThree"]  # type: ignore[index]
        if multi_attached is True:
            options = table["attached"]
        elif multi_attached is False:
            options = table["notAttached"]
        else:
            options = ()
        return HousingOptions(options=tuple(options), needs_attached=True)
    if tag == "matchy":
        table = HOUSING["matchy"]  # type: ignore[index]
        options = table.get(housing_type or "", ())
        return HousingOptions(type_choices=("bezel", "prong"), options=tuple(options), needs_type=True)
    if tag == "shapyShine":
        table = HOUSING["shapyShine"]  # type: ignore[index]
        bezel_only = _is_bezel_only(carats)
        effective = housing_type or ("bezel" if bezel_only else None)
        if bezel_only and effective == "prong":
            effective = None
        options = table.get(effective or "", ())
        return HousingOptions(
            type_choices=("bezel",) if bezel_only else ("bezel", "prong"),
            options=tuple(options),
            needs_type=not bezel_only,
            bezel_only=bezel_only,
        )
    return HousingOptions()


def missing_fields(collection: CollectionDefinition, config) -> List[str]:
    """Fields a color config still needs before it can be ordered."""
    missing: List[str] = []
    if getattr(config, "carat_idx", None) is None:
        missing.append("carat")
    if collection.housing and not getattr(config, "housing", None):
        missing.append("housing")
    if collection.shapes and not getattr(config, "shape", None):
        missing.append("shape")
    if collection.sizes and not getattr(config, "size", None):
        missing.append("size")
    return missing


def line_missing_fields(line) -> List[str]:
    collection_id = getattr(line, "collection_id", None)
    if not collection_id:
        return ["collection"]
    configs: Iterable = getattr(line, "color_configs", None) or []
    configs = list(configs)
    if not configs:
        return ["colors"]
    collection = find_collection(collection_id)
    if collection is None:
        return []

    incomplete = [cfg for cfg in configs if missing_fields(collection, cfg)]
    if not incomplete:
        return []
    ordered: List[str] = []
    for cfg in incomplete:
        for name in missing_fields(collection, cfg):
            if name not in ordered:
                ordered.append(name)
    suffix = f"{len(incomplete)} color{'s' if len(incomplete) > 1 else ''}"
    return [f"{name} ({suffix})" for name in ordered]
