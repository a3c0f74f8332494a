import csv

import pytest

from main import save_to_csv
from record import (
    CSV_FIELDNAMES,
    NO_ERROR,
    NOT_ASSESSED,
    NOT_FOUND,
    STATUS_PENDING,
    UNKNOWN_AVAILABILITY,
    CanonicalRecord,
    FrozenRecordError,
)

BASE_URL = "https://www.mymobase.com/de/p/"

RECORD_KEYS = {
    "identifier", "sourceUrl", "title", "description", "material",
    "alternateArticleNumbers", "dimensions", "weight", "materialClassification",
    "materialClassificationAssessment", "statisticalCommodityCode", "productLink",
    "countryOfOrigin", "availability", "status", "errorType", "scrapeTimestamp",
}


def make_record():
    return CanonicalRecord.for_article("A2V00001234567", BASE_URL)


def test_new_record_has_every_field_at_its_sentinel():
    data = make_record().to_dict()

    assert set(data) == RECORD_KEYS
    assert data["identifier"] == "A2V00001234567"
    assert data["sourceUrl"] == BASE_URL + "A2V00001234567"
    assert data["productLink"] == data["sourceUrl"]
    assert data["material"] == NOT_FOUND
    assert data["materialClassificationAssessment"] == NOT_ASSESSED
    assert data["availability"] == UNKNOWN_AVAILABILITY
    assert data["status"] == STATUS_PENDING
    assert data["errorType"] == NO_ERROR
    assert all(value is not None for value in data.values())


def test_set_if_unset_writes_once():
    record = make_record()

    assert record.set_if_unset("weight", " 1,2 kg ")
    assert not record.set_if_unset("weight", "9 kg")
    assert record.weight == "1,2 kg"


def test_set_if_unset_ignores_empty_values():
    record = make_record()

    assert not record.set_if_unset("material", "")
    assert not record.set_if_unset("material", "   ")
    assert not record.set_if_unset("material", None)
    assert record.is_unset("material")


def test_overwrite_replaces_value():
    record = make_record()
    record.set_if_unset("title", "Seitentitel")

    assert record.overwrite("title", "Produktname")
    assert record.title == "Produktname"
    assert not record.overwrite("title", "")
    assert record.title == "Produktname"


def test_unknown_field_has_no_sentinel():
    with pytest.raises(KeyError):
        CanonicalRecord.sentinel("color")


def test_finalized_record_is_immutable():
    record = make_record().finalize()

    assert record.frozen
    with pytest.raises(FrozenRecordError):
        record.material = "S235"
    with pytest.raises(FrozenRecordError):
        record.set_if_unset("weight", "1 kg")


def test_has_core_data():
    record = make_record()
    record.set_if_unset("country_of_origin", "DE")
    assert not record.has_core_data()

    record.set_if_unset("dimensions", "120×45 mm")
    assert record.has_core_data()


def test_legacy_row_uses_german_columns():
    record = make_record()
    record.set_if_unset("material", "S235JR")
    row = record.to_legacy_row()

    assert set(row) == set(CSV_FIELDNAMES)
    assert row["Herstellerartikelnummer"] == "A2V00001234567"
    assert row["Werkstoff"] == "S235JR"
    assert row["Verfügbarkeit"] == UNKNOWN_AVAILABILITY


def test_save_to_csv(tmp_path):
    record = make_record()
    record.set_if_unset("weight", "2 kg")
    out = tmp_path / "vergleich.csv"

    save_to_csv([record.finalize()], str(out))

    with open(out, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert len(rows) == 1
    assert rows[0]["Gewicht"] == "2 kg"
    assert rows[0]["Abmessung"] == NOT_FOUND
