"""CSV export for batch results and prediction history."""

from __future__ import annotations

import csv
import io
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import PredictionRecord


RESULT_COLUMNS = [
    ("Drug Name", "drug_name"),
    ("Protein Name", "protein_name"),
    ("SMILES", "smiles"),
    ("FASTA", "fasta"),
    ("Predicted pK", "predicted_pk"),
    ("Confidence", "confidence"),
    ("Status", "status"),
    ("Error", "error"),
    ("Timestamp", "timestamp"),
]

HISTORY_COLUMNS = [
    "id",
    "timestamp",
    "source",
    "drug_name",
    "smiles",
    "protein_name",
    "fasta",
    "predicted_pk",
    "confidence_score",
    "is_favorite",
    "notes",
    "tags",
]


def _iso(timestamp: Optional[float]) -> str:
    if timestamp is None:
        return ""
    return datetime.fromtimestamp(float(timestamp), tz=timezone.utc).isoformat(timespec="seconds")


def _format_result_value(key: str, value: Any) -> str:
    if key == "predicted_pk":
        return f"{value:.2f}" if value is not None else "N/A"
    if key == "confidence":
        return f"{value * 100:.1f}%" if value is not None else "N/A"
    if key == "timestamp":
        return _iso(value)
    return "" if value is None else str(value)


def results_to_csv(results: Iterable[Dict[str, Any]]) -> str:
    """Render serialized batch results (``BatchResult.to_dict``) as CSV text."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow([header for header, _ in RESULT_COLUMNS])
    for row in results:
        writer.writerow([_format_result_value(key, row.get(key)) for _, key in RESULT_COLUMNS])
    return buffer.getvalue()


def records_to_csv(records: Sequence[PredictionRecord], columns: Optional[List[str]] = None) -> str:
    columns = columns or HISTORY_COLUMNS
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction="ignore")
    writer.writeheader()
    for record in records:
        data = record.model_dump()
        data["timestamp"] = _iso(record.timestamp)
        data["tags"] = ";".join(record.tags)
        writer.writerow({key: data.get(key) for key in columns})
    return buffer.getvalue()


__all__ = ["RESULT_COLUMNS", "HISTORY_COLUMNS", "records_to_csv", "results_to_csv"]
