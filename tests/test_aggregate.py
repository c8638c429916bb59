from datetime import datetime, timezone

import pytest

from drugbind.aggregate import compute_stats, finalize
from drugbind.batch import BatchResult, BatchRow, RowFailure, RowSuccess
from drugbind.models import PredictionRecord


def _ts(year, month, day, hour=12, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp()


def _record(protein, timestamp, *, pk=7.0, confidence=0.8, source="batch", record_id=None):
    return PredictionRecord(
        id=record_id or f"{protein}-{timestamp}",
        timestamp=timestamp,
        source=source,
        drug_name="Aspirin",
        smiles="CCO",
        protein_name=protein,
        fasta="MKT",
        predicted_pk=pk,
        confidence_score=confidence,
    )


def test_empty_history_yields_zero_values():
    stats = compute_stats([])
    assert stats.total_predictions == 0
    assert stats.average_pk == 0.0
    assert stats.average_confidence == 0.0
    assert stats.most_tested_protein == ""
    assert stats.predictions_by_day == []
    assert stats.predictions_by_source.single == 0
    assert stats.predictions_by_source.batch == 0


def test_averages_and_source_counts():
    records = [
        _record("EGFR", _ts(2024, 3, 1), pk=6.0, confidence=0.6, source="single"),
        _record("EGFR", _ts(2024, 3, 1, 13), pk=8.0, confidence=0.8),
        _record("COX-2", _ts(2024, 3, 2), pk=7.0, confidence=1.0),
    ]
    stats = compute_stats(records)
    assert stats.total_predictions == 3
    assert stats.average_pk == pytest.approx(7.0)
    assert stats.average_confidence == pytest.approx(0.8)
    assert stats.most_tested_protein == "EGFR"
    assert stats.predictions_by_source.single == 1
    assert stats.predictions_by_source.batch == 2


def test_most_tested_tie_goes_to_first_seen():
    records = [
        _record("ZAP70", _ts(2024, 1, 2)),
        _record("ABL1", _ts(2024, 1, 3)),
        _record("ABL1", _ts(2024, 1, 4)),
        _record("ZAP70", _ts(2024, 1, 5)),
    ]
    assert compute_stats(records).most_tested_protein == "ZAP70"


def test_most_tested_tie_with_same_first_seen_is_lexical():
    stamp = _ts(2024, 1, 2)
    records = [_record("KRAS", stamp, record_id="a"), _record("BRAF", stamp, record_id="b")]
    assert compute_stats(records).most_tested_protein == "BRAF"


def test_days_are_bucketed_in_utc_and_sorted():
    records = [
        _record("EGFR", _ts(2024, 5, 2, 0, 5)),
        _record("EGFR", _ts(2024, 5, 1, 23, 55)),
        _record("EGFR", _ts(2024, 5, 1, 0, 0)),
    ]
    days = [(entry.date, entry.count) for entry in compute_stats(records).predictions_by_day]
    assert days == [("2024-05-01", 2), ("2024-05-02", 1)]


def _terminal(index, outcome):
    row = BatchRow(id=f"r{index}", drug_name=f"drug{index}", smiles="CCO", protein_name="EGFR", fasta="MKT")
    result = BatchResult(row=row, index=index)
    result.mark_processing(0.0)
    if isinstance(outcome, RowSuccess):
        result.mark_success(outcome, 1.0)
    else:
        result.mark_failed(outcome, 1.0)
    return result


def test_finalize_builds_records_for_successes_only():
    results = [
        _terminal(0, RowSuccess(predicted_pk=6.2, confidence=0.71, prediction_id="abc")),
        _terminal(1, RowFailure("Prediction timed out after 60s", kind="timeout")),
        _terminal(2, RowSuccess(predicted_pk=8.4, confidence=0.9)),
    ]
    summary = finalize(results, batch_id="job-1", now=1_700_000_000.0)

    assert (summary.total, summary.successful, summary.failed) == (3, 2, 1)
    assert summary.success_rate == pytest.approx(2 / 3)
    assert [record.predicted_pk for record in summary.records] == [6.2, 8.4]
    assert all(record.source == "batch" for record in summary.records)
    assert all(record.batch_id == "job-1" for record in summary.records)
    assert all(record.timestamp == 1_700_000_000.0 for record in summary.records)
    assert len({record.id for record in summary.records}) == 2
    assert summary.failures[0].row_id == "r1"
    assert summary.failures[0].kind == "timeout"

    payload = summary.to_dict()
    assert payload["failures"][0]["error"].startswith("Prediction timed out")
    assert payload["success_rate"] == pytest.approx(0.6667)


def test_finalize_of_empty_batch():
    summary = finalize([])
    assert summary.total == 0
    assert summary.success_rate == 0.0
    assert summary.records == []


def test_finalize_stamps_each_record_with_its_completion_time():
    before_midnight = _terminal(0, RowSuccess(predicted_pk=6.0, confidence=0.7))
    after_midnight = _terminal(1, RowSuccess(predicted_pk=7.0, confidence=0.8))
    before_midnight.timestamp = _ts(2024, 7, 1, 23, 59)
    after_midnight.timestamp = _ts(2024, 7, 2, 0, 1)

    summary = finalize([before_midnight, after_midnight])

    assert [record.timestamp for record in summary.records] == [before_midnight.timestamp, after_midnight.timestamp]
    days = [(entry.date, entry.count) for entry in compute_stats(summary.records).predictions_by_day]
    assert days == [("2024-07-01", 1), ("2024-07-02", 1)]


def test_finalize_scores_drug_likeness_from_smiles():
    summary = finalize([_terminal(0, RowSuccess(predicted_pk=6.0, confidence=0.7))])
    score = summary.records[0].drug_likeness_score
    assert score is not None
    assert 0.0 <= score <= 1.0
