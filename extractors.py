"""
Extractors - Field extraction strategies for a product page
===========================================================
Each extractor reads one representation of the product attributes and writes
into the staging record through CanonicalRecord.set_if_unset, so a field that
is already filled is never touched again.

Tiers (lower = more trusted, applied first):
  1 STRUCTURAL        tables, definition lists, label/value siblings, page metadata
  2 STRUCTURED_DATA   the embedded window.initialData product payload
  3 TEXTUAL_FALLBACK  free-text patterns, generic HTML scan, single-element details
"""

import logging
import re
from abc import ABC, abstractmethod
from collections import namedtuple
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Iterator, List, Optional

from dimension_parser import normalize_dimensions
from document_access import DocumentAccessor
from key_classifier import classify_key, is_relevant_label, normalize_label
from record import CanonicalRecord
from site_profile import MOBASE, SiteProfile

logger = logging.getLogger(__name__)

RawPair = namedtuple("RawPair", ["label", "value"])

MIN_LABEL_LENGTH = 3
MAX_LABEL_LENGTH = 80
EMPTY_VALUES = ("", "-")


class ExtractionTier(IntEnum):
    STRUCTURAL = 1
    STRUCTURED_DATA = 2
    TEXTUAL_FALLBACK = 3


def apply_value(record: CanonicalRecord, field_name: str, value: Any, source: str) -> bool:
    """Write a value for a known field, normalizing dimensions first."""
    if value is None:
        return False
    value = str(value).strip()
    if field_name == "dimensions":
        value = normalize_dimensions(value)
    written = record.set_if_unset(field_name, value)
    if written:
        logger.debug(f"  ✓ [{source}] {field_name} = {value!r}")
    return written


def apply_pair(record: CanonicalRecord, pair: RawPair, source: str) -> bool:
    """Classify a raw label/value pair and write it if its field is still unset."""
    field_name = classify_key(pair.label)
    if field_name is None:
        logger.debug(f"  ? [{source}] unknown key {pair.label!r} = {pair.value!r}")
        return False
    return apply_value(record, field_name, pair.value, source)


def is_usable_pair(label: str, value: str) -> bool:
    return len(label) >= MIN_LABEL_LENGTH and value not in EMPTY_VALUES


# =============================================================================
# EXTRACTOR BASE CLASSES
# =============================================================================

class Extractor(ABC):
    """Base class for all extraction strategies."""

    name: str = "base"
    tier: ExtractionTier = ExtractionTier.STRUCTURAL

    def __init__(self, profile: SiteProfile = MOBASE):
        self.profile = profile

    @abstractmethod
    def extract(self, document: DocumentAccessor, record: CanonicalRecord) -> int:
        """Fill unset fields of `record` from `document`; return the number written."""
        pass

    def __repr__(self):
        return f"{type(self).__name__}(tier={int(self.tier)})"


class PairExtractor(Extractor):
    """Extractor that yields raw label/value pairs for the key classifier."""

    @abstractmethod
    def pairs(self, document: DocumentAccessor) -> Iterator[RawPair]:
        pass

    def extract(self, document: DocumentAccessor, record: CanonicalRecord) -> int:
        written = 0
        seen = 0
        for pair in self.pairs(document):
            seen += 1
            if apply_pair(record, pair, self.name):
                written += 1
        logger.debug(f"{self.name}: {seen} pairs, {written} fields filled")
        return written


# =============================================================================
# TIER 1: STRUCTURAL
# =============================================================================

class TableExtractor(PairExtractor):
    """Two-cell table rows: label cell, value cell."""

    name = "table"

    def pairs(self, document: DocumentAccessor) -> Iterator[RawPair]:
        tables = document.query_all("table")
        logger.debug(f"Analyzing {len(tables)} tables")
        for table in tables:
            for row in document.query_all("tr", root=table):
                cells = document.query_all("td, th", root=row)
                if len(cells) < 2:
                    continue
                label = normalize_label(document.text_of(cells[0]))
                value = document.text_of(cells[1])
                if is_usable_pair(label, value):
                    yield RawPair(label, value)


class DefinitionListExtractor(PairExtractor):
    """dt/dd pairs of definition lists, matched by position."""

    name = "definition_list"

    def pairs(self, document: DocumentAccessor) -> Iterator[RawPair]:
        for dl in document.query_all("dl"):
            terms = document.query_all("dt", root=dl)
            definitions = document.query_all("dd", root=dl)
            for term, definition in zip(terms, definitions):
                label = normalize_label(document.text_of(term))
                value = document.text_of(definition)
                if is_usable_pair(label, value):
                    yield RawPair(label, value)


class LabelValueExtractor(PairExtractor):
    """
    Label elements followed by a value element, e.g.
    <span class="label">Gewicht</span><span class="value">1,2 kg</span>

    Selector candidates are tried in order; the first one that finds any
    label elements is the only one used.
    """

    name = "label_value"

    def pairs(self, document: DocumentAccessor) -> Iterator[RawPair]:
        for selector in self.profile.label_selectors:
            labels = document.query_all(selector)
            if not labels:
                continue
            logger.debug(f"Found {len(labels)} labels for {selector!r}")
            for label_node in labels:
                label = normalize_label(document.text_of(label_node))
                if not is_relevant_label(label):
                    continue
                sibling = document.next_sibling(label_node)
                if sibling is None:
                    continue
                value = document.text_of(sibling)
                if is_usable_pair(label, value):
                    yield RawPair(label, value)
            return


class PageMetadataExtractor(Extractor):
    """Page title and meta description."""

    name = "page_metadata"

    def extract(self, document: DocumentAccessor, record: CanonicalRecord) -> int:
        written = 0
        title = document.page_title()
        if title and "404" not in title and "Not Found" not in title:
            written += record.set_if_unset("title", self.profile.clean_title(title))
        written += record.set_if_unset("description", document.meta_description())
        return written


# =============================================================================
# TIER 2: STRUCTURED DATA
# =============================================================================

# Direct product properties -> record field, used when the technical specification list has gaps
DIRECT_PROPERTY_FIELDS = [
    ("weight", "weight"),
    ("dimensions", "dimensions"),
    ("basicMaterial", "material"),
    ("materialClassification", "material_classification"),
    ("importCodeNumber", "statistical_commodity_code"),
    ("additionalMaterialNumbers", "alternate_article_numbers"),
]


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(_as_text(v) for v in value if _as_text(v))
    if isinstance(value, dict):
        return _as_text(value.get("value") or value.get("name"))
    return str(value).strip()


@dataclass
class ProductPayload:
    """Product data embedded in the page's initial data object."""

    name: str = ""
    description: str = ""
    code: str = ""
    url: str = ""
    technical_specs: List[RawPair] = field(default_factory=list)
    direct_properties: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_initial_data(cls, initial_data: Any,
                          payload_key: str = "product/dataProduct") -> Optional["ProductPayload"]:
        """Build a payload from window.initialData; None if the product path is missing."""
        if not isinstance(initial_data, dict):
            return None
        entry = initial_data.get(payload_key)
        data = entry.get("data") if isinstance(entry, dict) else None
        product = data.get("product") if isinstance(data, dict) else None
        if not isinstance(product, dict):
            return None

        specs = []
        localizations = product.get("localizations")
        if isinstance(localizations, dict):
            for spec in localizations.get("technicalSpecifications") or []:
                if not isinstance(spec, dict):
                    continue
                key = _as_text(spec.get("key"))
                value = _as_text(spec.get("value"))
                if key and value:
                    specs.append(RawPair(normalize_label(key), value))

        return cls(
            name=_as_text(product.get("name")),
            description=_as_text(product.get("description")),
            code=_as_text(product.get("code")),
            url=_as_text(product.get("url")),
            technical_specs=specs,
            direct_properties={
                prop: _as_text(product.get(prop)) for prop, _ in DIRECT_PROPERTY_FIELDS
            },
        )


class StructuredDataExtractor(Extractor):
    """
    Technical specifications from the embedded product payload.

    Name, description and canonical product link are taken over as-is from
    the payload; technical fields only fill gaps left by tier 1.
    """

    name = "structured_data"
    tier = ExtractionTier.STRUCTURED_DATA

    def read_payload(self, document: DocumentAccessor) -> Optional[ProductPayload]:
        initial_data = document.read_global(self.profile.payload_global)
        return ProductPayload.from_initial_data(initial_data, self.profile.payload_key)

    def extract(self, document: DocumentAccessor, record: CanonicalRecord) -> int:
        payload = self.read_payload(document)
        if payload is None:
            logger.info(f"  No window.{self.profile.payload_global} product data, skipping")
            return 0

        logger.debug(f"  Product payload {payload.code or '?'} with {len(payload.technical_specs)} technical specs")
        if payload.code and payload.code != record.identifier:
            logger.warning(f"  Payload describes {payload.code}, not {record.identifier}")
        written = 0
        written += record.overwrite("title", payload.name)
        written += record.overwrite("description", payload.description)
        if payload.url:
            written += record.overwrite("product_link", self.profile.absolute_url(payload.url))

        for pair in payload.technical_specs:
            written += apply_pair(record, pair, self.name)

        for prop, field_name in DIRECT_PROPERTY_FIELDS:
            value = payload.direct_properties.get(prop)
            if value and apply_value(record, field_name, value, f"{self.name}.{prop}"):
                written += 1
        return written


# =============================================================================
# TIER 3: TEXTUAL FALLBACK
# =============================================================================

# (field, pattern) over the body text; group 1 is the value
TEXT_PATTERNS = [
    ("dimensions", re.compile(r"(?:abmessung(?:en)?|dimensions?|größe)[:\s]*([0-9x×,.\s]+(?:mm|cm|m)?)", re.IGNORECASE)),
    ("weight", re.compile(r"(?:gewicht|weight)[:\s]*([0-9.,]+\s*(?:kg|g))", re.IGNORECASE)),
    ("material", re.compile(r"(?:werkstoff|material)(?![a-zäöüß])[:\s]*([a-z0-9\s\-\.]+?)(?:\n|$)", re.IGNORECASE)),
    ("alternate_article_numbers", re.compile(r"(?:weitere\s+artikelnummer|article\s+number)[:\s]*([a-z0-9\-]+)", re.IGNORECASE)),
    ("material_classification", re.compile(r"(?:materialklassifizierung|classification)[:\s]*([^0-9\n]+)", re.IGNORECASE)),
    ("statistical_commodity_code", re.compile(r"(?:statistische\s+warennummer|commodity\s+code)[:\s]*([0-9]+)", re.IGNORECASE)),
]


class FreeTextPatternExtractor(Extractor):
    """Labeled regular expressions over the rendered body text."""

    name = "free_text"
    tier = ExtractionTier.TEXTUAL_FALLBACK

    def extract(self, document: DocumentAccessor, record: CanonicalRecord) -> int:
        text = document.body_text()
        if not text:
            return 0
        written = 0
        for field_name, pattern in TEXT_PATTERNS:
            if not record.is_unset(field_name):
                continue
            match = pattern.search(text)
            if match and match.group(1) and match.group(1).strip():
                written += apply_value(record, field_name, match.group(1), self.name)
        return written


class HtmlFallbackExtractor(PairExtractor):
    """
    Generic last-resort scan: table rows, definition lists and any element
    hinting at specs/details whose text reads "label: value".
    """

    name = "html_fallback"
    tier = ExtractionTier.TEXTUAL_FALLBACK

    SPEC_SELECTOR = '[class*="spec"], [class*="detail"], [data-spec]'

    def pairs(self, document: DocumentAccessor) -> Iterator[RawPair]:
        for row in document.query_all("table tr"):
            cells = document.query_all("td, th", root=row)
            if len(cells) >= 2:
                yield from self._checked(normalize_label(document.text_of(cells[0])),
                                         document.text_of(cells[1]))

        for dl in document.query_all("dl"):
            terms = document.query_all("dt", root=dl)
            definitions = document.query_all("dd", root=dl)
            for term, definition in zip(terms, definitions):
                yield from self._checked(normalize_label(document.text_of(term)),
                                         document.text_of(definition))

        for element in document.query_all(self.SPEC_SELECTOR):
            text = document.text_of(element)
            if ":" not in text:
                continue
            label, value = text.split(":", 1)
            yield from self._checked(normalize_label(label), value.strip())

    @staticmethod
    def _checked(label: str, value: str) -> Iterator[RawPair]:
        if label and len(label) <= MAX_LABEL_LENGTH and value not in EMPTY_VALUES:
            yield RawPair(label, value)


class ProductDetailExtractor(Extractor):
    """Single elements whose selector names the field (e.g. .weight, h1)."""

    name = "product_detail"
    tier = ExtractionTier.TEXTUAL_FALLBACK

    def extract(self, document: DocumentAccessor, record: CanonicalRecord) -> int:
        written = 0
        for field_name, selectors in self.profile.detail_selectors.items():
            if not record.is_unset(field_name):
                continue
            for selector in selectors:
                nodes = document.query_all(selector)
                text = document.text_of(nodes[0]) if nodes else ""
                if text:
                    written += apply_value(record, field_name, text, self.name)
                    break
        return written


def default_extractors(profile: SiteProfile = MOBASE) -> List[Extractor]:
    """All extractors in the order they run."""
    return [
        TableExtractor(profile),
        DefinitionListExtractor(profile),
        LabelValueExtractor(profile),
        PageMetadataExtractor(profile),
        StructuredDataExtractor(profile),
        FreeTextPatternExtractor(profile),
        HtmlFallbackExtractor(profile),
        ProductDetailExtractor(profile),
    ]
