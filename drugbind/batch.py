"""Batch rows, per-row lifecycle records and progress snapshots."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class RowStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in {RowStatus.SUCCESS, RowStatus.FAILED}


@dataclass(frozen=True)
class BatchRow:
    id: str
    drug_name: str
    smiles: str
    protein_name: str
    fasta: str
    priority: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "drug_name": self.drug_name,
            "smiles": self.smiles,
            "protein_name": self.protein_name,
            "fasta": self.fasta,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class RowSuccess:
    predicted_pk: float
    confidence: float
    prediction_id: Optional[str] = None
    atom_importance: Optional[List[Dict[str, Any]]] = None
    residue_importance: Optional[List[Dict[str, Any]]] = None


@dataclass(frozen=True)
class RowFailure:
    error: str
    kind: str = "prediction"


RowOutcome = Union[RowSuccess, RowFailure]


class InvalidTransition(RuntimeError):
    pass


@dataclass
class BatchResult:
    """Lifecycle record for one row. Only the scheduler calls the ``mark_*`` methods."""

    row: BatchRow
    index: int
    status: RowStatus = RowStatus.PENDING
    outcome: Optional[RowOutcome] = None
    timestamp: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def id(self) -> str:
        return self.row.id

    @property
    def predicted_pk(self) -> Optional[float]:
        return self.outcome.predicted_pk if isinstance(self.outcome, RowSuccess) else None

    @property
    def confidence(self) -> Optional[float]:
        return self.outcome.confidence if isinstance(self.outcome, RowSuccess) else None

    @property
    def error(self) -> Optional[str]:
        return self.outcome.error if isinstance(self.outcome, RowFailure) else None

    def mark_processing(self, started_at: float) -> None:
        if self.status is not RowStatus.PENDING:
            raise InvalidTransition(f"{self.id}: cannot start from {self.status.value}")
        self.status = RowStatus.PROCESSING
        self.started_at = started_at
        self.timestamp = time.time()

    def mark_success(self, outcome: RowSuccess, finished_at: float) -> None:
        if self.status is not RowStatus.PROCESSING:
            raise InvalidTransition(f"{self.id}: cannot succeed from {self.status.value}")
        self._settle(RowStatus.SUCCESS, outcome, finished_at)

    def mark_failed(self, outcome: RowFailure, finished_at: float) -> None:
        # Pending rows fail directly when a run is cancelled before dispatch.
        if self.status.terminal:
            raise InvalidTransition(f"{self.id}: already {self.status.value}")
        self._settle(RowStatus.FAILED, outcome, finished_at)

    def _settle(self, status: RowStatus, outcome: RowOutcome, finished_at: float) -> None:
        self.status = status
        self.outcome = outcome
        self.finished_at = finished_at
        self.timestamp = time.time()

    def to_dict(self) -> Dict[str, Any]:
        payload = self.row.to_dict()
        payload.update(
            {
                "index": self.index,
                "status": self.status.value,
                "predicted_pk": self.predicted_pk,
                "confidence": self.confidence,
                "error": self.error,
                "error_kind": self.outcome.kind if isinstance(self.outcome, RowFailure) else None,
                "timestamp": self.timestamp,
            }
        )
        return payload


@dataclass(frozen=True)
class BatchProgress:
    total: int
    completed: int
    successful: int
    failed: int
    percentage: float
    eta: int
    current_item: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.completed >= self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "successful": self.successful,
            "failed": self.failed,
            "percentage": self.percentage,
            "eta": self.eta,
            "current_item": self.current_item,
        }


@dataclass
class ParsedBatchData:
    rows: List[BatchRow] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


__all__ = [
    "BatchProgress",
    "BatchResult",
    "BatchRow",
    "InvalidTransition",
    "ParsedBatchData",
    "RowFailure",
    "RowOutcome",
    "RowStatus",
    "RowSuccess",
]
