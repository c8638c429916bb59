import json
from datetime import date, datetime, timezone

import pytest

from drugbind.history_store import HistoryStore, RecordNotFoundError
from drugbind.models import HistoryFilters, PredictionUpdateRequest


def _ts(year, month, day, hour=12):
    return datetime(year, month, day, hour, tzinfo=timezone.utc).timestamp()


def _store(tmp_path):
    return HistoryStore(tmp_path / "state" / "prediction_history.json")


def _seed(store):
    return [
        store.add_prediction(source="single", drug_name="Aspirin", smiles="CC(=O)O", protein_name="COX-1",
                             fasta="MKT", predicted_pk=5.1, confidence_score=0.62, timestamp=_ts(2024, 2, 1)),
        store.add_prediction(source="batch", drug_name="Gefitinib", smiles="COc1cc", protein_name="EGFR",
                             fasta="MRP", predicted_pk=8.3, confidence_score=0.91, timestamp=_ts(2024, 2, 3)),
        store.add_prediction(source="batch", drug_name="Imatinib", smiles="Cc1ccc", protein_name="ABL1",
                             fasta="MLE", predicted_pk=7.4, confidence_score=0.85, timestamp=_ts(2024, 2, 5, 23)),
    ]


def test_records_persist_across_instances(tmp_path):
    store = _store(tmp_path)
    created = _seed(store)
    reopened = _store(tmp_path)
    assert [record.id for record in reopened.export_all()] == [record.id for record in created]
    assert reopened.get(created[1].id).protein_name == "EGFR"


def test_list_is_newest_first(tmp_path):
    store = _store(tmp_path)
    _seed(store)
    assert [record.drug_name for record in store.list_predictions()] == ["Imatinib", "Gefitinib", "Aspirin"]


def test_filters_combine(tmp_path):
    store = _store(tmp_path)
    _seed(store)

    batch_only = store.list_predictions(HistoryFilters(source="batch"))
    assert {record.drug_name for record in batch_only} == {"Gefitinib", "Imatinib"}

    search = store.list_predictions(HistoryFilters(search_query="egfr"))
    assert [record.drug_name for record in search] == ["Gefitinib"]

    high_pk = store.list_predictions(HistoryFilters(pk_min=7.0, confidence_max=0.9))
    assert [record.drug_name for record in high_pk] == ["Imatinib"]


def test_end_date_is_inclusive(tmp_path):
    store = _store(tmp_path)
    _seed(store)
    window = store.list_predictions(HistoryFilters(start_date=date(2024, 2, 3), end_date=date(2024, 2, 5)))
    assert [record.drug_name for record in window] == ["Imatinib", "Gefitinib"]


def test_update_favorite_and_notes(tmp_path):
    store = _store(tmp_path)
    record = _seed(store)[0]

    updated = store.update(record.id, PredictionUpdateRequest(notes="recheck", tags=[" lead ", "", "cox"]))
    assert updated.notes == "recheck"
    assert updated.tags == ["lead", "cox"]

    assert store.toggle_favorite(record.id).is_favorite is True
    assert store.list_predictions(HistoryFilters(favorites_only=True))[0].id == record.id
    assert store.toggle_favorite(record.id).is_favorite is False
    assert store.update_notes(record.id, "").notes == ""


def test_missing_records_raise(tmp_path):
    store = _store(tmp_path)
    with pytest.raises(RecordNotFoundError):
        store.get("nope")
    with pytest.raises(RecordNotFoundError):
        store.toggle_favorite("nope")
    assert store.delete("nope") is False


def test_delete_and_clear(tmp_path):
    store = _store(tmp_path)
    records = _seed(store)
    assert store.delete(records[0].id) is True
    assert len(store.export_all()) == 2
    assert store.clear() == 2
    assert store.export_all() == []


def test_malformed_entries_are_skipped(tmp_path):
    path = tmp_path / "history.json"
    good = {
        "id": "ok",
        "timestamp": 1.0,
        "source": "single",
        "drug_name": "d",
        "smiles": "C",
        "protein_name": "p",
        "fasta": "MKT",
        "predicted_pk": 5.0,
        "confidence_score": 0.5,
    }
    path.write_text(json.dumps([good, {"id": "bad", "source": "other"}, "junk"]))
    assert [record.id for record in HistoryStore(path).export_all()] == ["ok"]


def test_unreadable_file_is_treated_as_empty(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("{not json")
    assert HistoryStore(path).export_all() == []
