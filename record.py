"""
Canonical Record - Output data model for a single product lookup
================================================================
Holds the closed vocabulary of attribute fields, their "not found" sentinels,
and the fill-only-if-missing primitive every extractor writes through.

A record is created once per lookup, filled by the merge engine and frozen
before it is handed back to the caller.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Dict


NOT_FOUND = "Nicht gefunden"
NOT_ASSESSED = "Nicht bewertet"
UNKNOWN_AVAILABILITY = "Unbekannt"
STATUS_PENDING = "Wird verarbeitet..."
NO_ERROR = "Kein Fehler"

STATUS_SUCCESS = "Erfolgreich"
STATUS_LOW_DATA = "Teilweise erfolgreich - Wenig Daten gefunden"
TITLE_FAILED = "Scraping fehlgeschlagen"

# Attribute name -> serialized key
SERIALIZED_KEYS = {
    "identifier": "identifier",
    "source_url": "sourceUrl",
    "title": "title",
    "description": "description",
    "material": "material",
    "alternate_article_numbers": "alternateArticleNumbers",
    "dimensions": "dimensions",
    "weight": "weight",
    "material_classification": "materialClassification",
    "material_classification_assessment": "materialClassificationAssessment",
    "statistical_commodity_code": "statisticalCommodityCode",
    "product_link": "productLink",
    "country_of_origin": "countryOfOrigin",
    "availability": "availability",
    "status": "status",
    "error_type": "errorType",
    "scrape_timestamp": "scrapeTimestamp",
}

# Column names of the CSV export
LEGACY_COLUMNS = {
    "identifier": "Artikelnummer",
    "source_url": "URL",
    "title": "Produkttitel",
    "description": "Produktbeschreibung",
    "material": "Werkstoff",
    "alternate_article_numbers": "Weitere Artikelnummer",
    "dimensions": "Abmessung",
    "weight": "Gewicht",
    "material_classification": "Materialklassifizierung",
    "material_classification_assessment": "Materialklassifizierung Bewertung",
    "statistical_commodity_code": "Statistische Warennummer",
    "product_link": "Produktlink",
    "country_of_origin": "Ursprungsland",
    "availability": "Verfügbarkeit",
    "status": "Status",
    "error_type": "ErrorType",
    "scrape_timestamp": "scrapeTime",
}

CSV_FIELDNAMES = ["Herstellerartikelnummer"] + list(LEGACY_COLUMNS.values())

# Fields that count towards the completeness check
CORE_TECHNICAL_FIELDS = ("material", "material_classification", "weight", "dimensions")


class FrozenRecordError(AttributeError):
    """Raised when a finalized record is modified."""


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CanonicalRecord:
    """Staging and result record for one product lookup."""

    identifier: str
    source_url: str
    title: str = NOT_FOUND
    description: str = NOT_FOUND
    material: str = NOT_FOUND
    alternate_article_numbers: str = NOT_FOUND
    dimensions: str = NOT_FOUND
    weight: str = NOT_FOUND
    material_classification: str = NOT_FOUND
    material_classification_assessment: str = NOT_ASSESSED
    statistical_commodity_code: str = NOT_FOUND
    product_link: str = ""
    country_of_origin: str = NOT_FOUND
    availability: str = UNKNOWN_AVAILABILITY
    status: str = STATUS_PENDING
    error_type: str = NO_ERROR
    scrape_timestamp: str = field(default_factory=_utc_now)

    def __post_init__(self):
        if not self.product_link:
            self.product_link = self.source_url
        object.__setattr__(self, "_frozen", False)

    def __setattr__(self, name, value):
        if getattr(self, "_frozen", False):
            raise FrozenRecordError(f"Record {self.identifier} is finalized; cannot set '{name}'")
        super().__setattr__(name, value)

    @classmethod
    def for_article(cls, article_number: str, base_url: str) -> "CanonicalRecord":
        """Create a fresh record for an article number on the catalog."""
        url = f"{base_url}{article_number}"
        return cls(identifier=article_number, source_url=url)

    # -------------------------------------------------------------------------
    # Fill policy
    # -------------------------------------------------------------------------

    @staticmethod
    def sentinel(name: str) -> str:
        """Return the 'not found' value of a technical or metadata field."""
        if name == "material_classification_assessment":
            return NOT_ASSESSED
        if name == "availability":
            return UNKNOWN_AVAILABILITY
        if name in SERIALIZED_KEYS:
            return NOT_FOUND
        raise KeyError(f"Unknown record field '{name}'")

    def is_unset(self, name: str) -> bool:
        value = getattr(self, name)
        return not value or value == self.sentinel(name)

    def set_if_unset(self, name: str, value) -> bool:
        """
        Write value into field `name` only while the field still holds its
        sentinel. Empty values are ignored. Returns True if the field was written.
        """
        if value is None:
            return False
        value = str(value).strip()
        if not value or not self.is_unset(name):
            return False
        setattr(self, name, value)
        return True

    def overwrite(self, name: str, value) -> bool:
        """Unconditionally write a non-empty value (textual metadata only)."""
        if value is None:
            return False
        value = str(value).strip()
        if not value:
            return False
        setattr(self, name, value)
        return True

    def has_core_data(self) -> bool:
        return any(not self.is_unset(name) for name in CORE_TECHNICAL_FIELDS)

    def finalize(self) -> "CanonicalRecord":
        """Freeze the record; further writes raise FrozenRecordError."""
        object.__setattr__(self, "_frozen", True)
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, str]:
        return {SERIALIZED_KEYS[f.name]: getattr(self, f.name) for f in fields(self)}

    def to_legacy_row(self) -> Dict[str, str]:
        """Row keyed by the German CSV column names."""
        row = {"Herstellerartikelnummer": self.identifier}
        for f in fields(self):
            row[LEGACY_COLUMNS[f.name]] = getattr(self, f.name)
        return row
