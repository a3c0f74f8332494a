"""
Key Classifier - Maps raw attribute labels to canonical record fields
=====================================================================
Labels come from table cells, definition terms, label elements and the
technical specification list of the embedded product payload, in German or
English. The rules form an ordered decision table: the first matching
predicate wins, so more specific rules must stay above the generic ones
they overlap with (material classification before material).
"""

from typing import Callable, List, Optional, Tuple


DIMENSION_KEYWORDS = ("abmess", "größe", "groesse", "dimension")
WEIGHT_KEYWORDS = ("gewicht", "weight")
WEIGHT_UNIT_QUALIFIERS = ("einheit", "unit")
MATERIAL_KEYWORDS = ("werkstoff", "material")
ADDITIONAL_NUMBER_MARKERS = ("additional material", "weitere")
ALTERNATE_NUMBER_KEYWORDS = (
    "weitere artikelnummer",
    "additional article number",
    "additional material",
    "alternative artikelnummer",
    "alternate",
    "part number",
)
COMMODITY_CODE_KEYWORDS = (
    "statistische warennummer",
    "warennummer",
    "statistical",
    "commodity",
    "import",
    "zolltarif",
)
ORIGIN_KEYWORDS = ("ursprungsland", "herkunft", "origin")
AVAILABILITY_KEYWORDS = ("verfügbar", "availability", "stock", "lager")

# Assessment code attached to classifications marked as not weldable
NOT_WELDABLE_CODE = "OHNE/N/N/N/N"
NOT_WELDABLE_MARKERS = ("nicht schweiss", "nicht schweiß", "not weldable")


def _contains_any(label: str, keywords) -> bool:
    return any(kw in label for kw in keywords)


def is_dimension_label(label: str) -> bool:
    return _contains_any(label, DIMENSION_KEYWORDS)


def is_weight_label(label: str) -> bool:
    return _contains_any(label, WEIGHT_KEYWORDS) and not _contains_any(label, WEIGHT_UNIT_QUALIFIERS)


def is_material_classification_label(label: str) -> bool:
    if "materialklassifizierung" in label or "werkstoffklassifizierung" in label:
        return True
    if "material" in label and ("classification" in label or "klassifizierung" in label):
        return True
    return "werkstoff" in label and "klassifizierung" in label


def is_material_label(label: str) -> bool:
    if is_material_classification_label(label):
        return False
    # "Additional material numbers" lists other parts, not a material
    if _contains_any(label, ADDITIONAL_NUMBER_MARKERS):
        return False
    return _contains_any(label, MATERIAL_KEYWORDS)


def is_alternate_number_label(label: str) -> bool:
    return _contains_any(label, ALTERNATE_NUMBER_KEYWORDS)


def is_commodity_code_label(label: str) -> bool:
    return _contains_any(label, COMMODITY_CODE_KEYWORDS)


def is_origin_label(label: str) -> bool:
    return _contains_any(label, ORIGIN_KEYWORDS)


def is_availability_label(label: str) -> bool:
    return _contains_any(label, AVAILABILITY_KEYWORDS)


# Evaluated top to bottom; order is significant
CLASSIFICATION_RULES: List[Tuple[Callable[[str], bool], str]] = [
    (is_dimension_label, "dimensions"),
    (is_weight_label, "weight"),
    (is_material_classification_label, "material_classification"),
    (is_material_label, "material"),
    (is_alternate_number_label, "alternate_article_numbers"),
    (is_commodity_code_label, "statistical_commodity_code"),
    (is_origin_label, "country_of_origin"),
    (is_availability_label, "availability"),
]

# Terms that make a loose label/value construct worth classifying
RELEVANT_TERMS = (
    DIMENSION_KEYWORDS + WEIGHT_KEYWORDS + MATERIAL_KEYWORDS + ALTERNATE_NUMBER_KEYWORDS
    + COMMODITY_CODE_KEYWORDS + ORIGIN_KEYWORDS + AVAILABILITY_KEYWORDS
    + ("artikelnummer", "article", "klassifizierung", "classification", "weitere", "additional")
)


def normalize_label(raw_label: str) -> str:
    """Lower-case, trim and collapse whitespace; drop a trailing colon."""
    label = " ".join((raw_label or "").split()).lower()
    return label.rstrip(":").strip()


def classify_key(raw_label: str) -> Optional[str]:
    """Return the canonical field name for a label, or None if unrecognized."""
    label = normalize_label(raw_label)
    if not label:
        return None
    for predicate, field_name in CLASSIFICATION_RULES:
        if predicate(label):
            return field_name
    return None


def is_relevant_label(raw_label: str) -> bool:
    label = normalize_label(raw_label)
    return any(term in label for term in RELEVANT_TERMS)


def assess_classification(value: str) -> Optional[str]:
    """Return the derived assessment code for a material classification value."""
    if not value:
        return None
    lower = value.lower()
    if any(marker in lower for marker in NOT_WELDABLE_MARKERS):
        return NOT_WELDABLE_CODE
    return None
