"""
Merge Engine - Runs the extractors in tier order and finalizes the record
=========================================================================
States: PENDING -> STRUCTURAL_PASS -> STRUCTURED_DATA_PASS ->
        TEXTUAL_FALLBACK_PASS -> DONE

Every pass runs, even if the record already looks complete; later passes can
only fill fields earlier passes left unset (the structured-data payload may
still replace title, description and product link).

extract_attributes() is the entry point for callers. It never raises: a
failing accessor is recorded in the record's status/error_type fields.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from document_access import DocumentAccessor
from extractors import ExtractionTier, Extractor, default_extractors
from key_classifier import assess_classification
from record import (
    STATUS_LOW_DATA,
    STATUS_SUCCESS,
    TITLE_FAILED,
    CanonicalRecord,
)
from site_profile import MOBASE, SiteProfile

logger = logging.getLogger(__name__)


class MergeState(Enum):
    PENDING = "pending"
    STRUCTURAL_PASS = "structural_pass"
    STRUCTURED_DATA_PASS = "structured_data_pass"
    TEXTUAL_FALLBACK_PASS = "textual_fallback_pass"
    DONE = "done"


PASS_STATES = {
    ExtractionTier.STRUCTURAL: MergeState.STRUCTURAL_PASS,
    ExtractionTier.STRUCTURED_DATA: MergeState.STRUCTURED_DATA_PASS,
    ExtractionTier.TEXTUAL_FALLBACK: MergeState.TEXTUAL_FALLBACK_PASS,
}


@dataclass
class MergeRun:
    """Progress of one extraction pass over one document."""

    record: CanonicalRecord
    state: MergeState = MergeState.PENDING
    filled: Dict[str, int] = field(default_factory=dict)

    def advance(self, state: MergeState):
        logger.debug(f"[{self.record.identifier}] {self.state.value} -> {state.value}")
        self.state = state


class MergeEngine:
    """Applies a fixed, tier-ordered list of extractors to a staging record."""

    def __init__(self, extractors: Optional[List[Extractor]] = None,
                 profile: SiteProfile = MOBASE):
        if extractors is None:
            extractors = default_extractors(profile)
        # sorted() is stable: extractors keep their order within a tier
        self.extractors = sorted(extractors, key=lambda e: e.tier)

    def extractors_for(self, tier: ExtractionTier) -> List[Extractor]:
        return [e for e in self.extractors if e.tier == tier]

    def run(self, document: DocumentAccessor, record: CanonicalRecord) -> MergeRun:
        run = MergeRun(record)
        for tier in ExtractionTier:
            run.advance(PASS_STATES[tier])
            for extractor in self.extractors_for(tier):
                filled = extractor.extract(document, record)
                run.filled[extractor.name] = filled
                if filled:
                    logger.info(f"  ✓ {extractor.name}: {filled} fields")
        self.post_process(record)
        run.advance(MergeState.DONE)
        return run

    @staticmethod
    def post_process(record: CanonicalRecord):
        """Derive dependent fields and the completeness status."""
        if not record.is_unset("material_classification"):
            code = assess_classification(record.material_classification)
            if code:
                record.set_if_unset("material_classification_assessment", code)

        if record.has_core_data():
            record.status = STATUS_SUCCESS
            logger.info(f"✓ [{record.identifier}] Data found")
        else:
            record.status = STATUS_LOW_DATA
            logger.warning(f"✗ [{record.identifier}] Little data extracted")


def mark_failed(record: CanonicalRecord, error: BaseException):
    """Encode an exception into the record's status fields."""
    record.status = f"Fehler: {error}"
    record.title = TITLE_FAILED
    record.error_type = type(error).__name__


def status_record(article_number: str, status: str,
                  profile: SiteProfile = MOBASE) -> CanonicalRecord:
    """Finalized record for a lookup that never reached a document (404, no response)."""
    record = CanonicalRecord.for_article(article_number, profile.base_url)
    record.status = status
    return record.finalize()


def failed_record(article_number: str, error: BaseException,
                  profile: SiteProfile = MOBASE) -> CanonicalRecord:
    record = CanonicalRecord.for_article(article_number, profile.base_url)
    mark_failed(record, error)
    return record.finalize()


def extract_attributes(document: Optional[DocumentAccessor], article_number: str,
                       profile: SiteProfile = MOBASE,
                       engine: Optional[MergeEngine] = None) -> CanonicalRecord:
    """
    Build the canonical record for one product page.

    A missing document yields a record with every technical field at its
    sentinel and a low-data status. Accessor failures are caught and
    reported through status/error_type; the record is always returned.
    """
    record = CanonicalRecord.for_article(article_number, profile.base_url)
    if document is None:
        logger.warning(f"No document for {article_number}")
        MergeEngine.post_process(record)
        return record.finalize()

    engine = engine or MergeEngine(profile=profile)
    try:
        engine.run(document, record)
    except Exception as e:
        logger.error(f"✗ Extraction failed for {article_number}: {type(e).__name__}: {e}")
        logger.debug("Extraction traceback", exc_info=True)
        mark_failed(record, e)
    return record.finalize()
