"""Batch finalization and history statistics."""

from __future__ import annotations

import math
import uuid
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from .batch import BatchResult, RowStatus, RowSuccess
from .druglikeness import drug_likeness_score
from .models import DayCount, HistoryStats, PredictionRecord, SourceCounts


@dataclass
class RowFailureReport:
    row_id: str
    drug_name: str
    protein_name: str
    error: str
    kind: str


@dataclass
class BatchSummary:
    total: int
    successful: int
    failed: int
    records: List[PredictionRecord] = field(default_factory=list)
    failures: List[RowFailureReport] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        return self.successful / self.total if self.total else 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": round(self.success_rate, 4),
            "failures": [asdict(failure) for failure in self.failures],
        }


def finalize(results: Sequence[BatchResult], *, batch_id: Optional[str] = None,
             now: Optional[float] = None) -> BatchSummary:
    """Split terminal results into history records and a failure report.

    Rows that are not terminal are counted in ``total`` only. Records carry
    the time their row finished unless ``now`` pins a single timestamp.
    """
    summary = BatchSummary(total=len(results), successful=0, failed=0)
    for result in results:
        if result.status is RowStatus.SUCCESS and isinstance(result.outcome, RowSuccess):
            summary.successful += 1
            outcome = result.outcome
            summary.records.append(
                PredictionRecord(
                    id=uuid.uuid4().hex,
                    timestamp=result.timestamp if now is None else now,
                    source="batch",
                    drug_name=result.row.drug_name,
                    smiles=result.row.smiles,
                    protein_name=result.row.protein_name,
                    fasta=result.row.fasta,
                    predicted_pk=outcome.predicted_pk,
                    confidence_score=outcome.confidence,
                    drug_likeness_score=drug_likeness_score(result.row.smiles),
                    atom_importance=outcome.atom_importance,
                    residue_importance=outcome.residue_importance,
                    batch_id=batch_id,
                )
            )
        elif result.status is RowStatus.FAILED:
            summary.failed += 1
            summary.failures.append(
                RowFailureReport(
                    row_id=result.id,
                    drug_name=result.row.drug_name,
                    protein_name=result.row.protein_name,
                    error=result.error or "Unknown error",
                    kind=getattr(result.outcome, "kind", "prediction"),
                )
            )
    return summary


def _utc_day(timestamp: float) -> Optional[str]:
    try:
        return datetime.fromtimestamp(float(timestamp), tz=timezone.utc).date().isoformat()
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _finite(value: object) -> Optional[float]:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _most_tested(records: Sequence[PredictionRecord]) -> str:
    counts: Counter = Counter()
    first_seen: Dict[str, float] = {}
    for record in records:
        name = (record.protein_name or "").strip()
        if not name:
            continue
        counts[name] += 1
        stamp = _finite(record.timestamp)
        stamp = math.inf if stamp is None else stamp
        first_seen[name] = min(first_seen.get(name, math.inf), stamp)
    if not counts:
        return ""
    # Highest count; ties go to the protein tested first, then lexical order.
    return min(counts, key=lambda name: (-counts[name], first_seen[name], name))


def compute_stats(records: Iterable[PredictionRecord]) -> HistoryStats:
    """Summarize a record collection. Pure; empty input yields zero values."""
    items = list(records)
    if not items:
        return HistoryStats()

    pks = [value for value in (_finite(r.predicted_pk) for r in items) if value is not None]
    confidences = [value for value in (_finite(r.confidence_score) for r in items) if value is not None]

    by_day: Counter = Counter()
    for record in items:
        day = _utc_day(record.timestamp)
        if day:
            by_day[day] += 1

    sources = SourceCounts(
        single=sum(1 for r in items if r.source == "single"),
        batch=sum(1 for r in items if r.source == "batch"),
    )

    return HistoryStats(
        total_predictions=len(items),
        average_pk=_mean(pks),
        average_confidence=_mean(confidences),
        most_tested_protein=_most_tested(items),
        predictions_by_day=[DayCount(date=day, count=by_day[day]) for day in sorted(by_day)],
        predictions_by_source=sources,
    )


__all__ = ["BatchSummary", "RowFailureReport", "compute_stats", "finalize"]
