"""Tracking of batch prediction runs, kept in memory and mirrored to JSON files."""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)

MAX_RESTORED_JOBS = 200
INTERRUPTED_MESSAGE = "Interrupted by server restart"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def finished(self) -> bool:
        return self in {JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.CANCELED}

    @classmethod
    def parse(cls, value: Any) -> "JobStatus":
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class JobRecord:
    job_id: str
    kind: str
    label: str
    status: JobStatus = JobStatus.PENDING
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    snapshot: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    results: List[Dict[str, Any]] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def progress(self) -> Optional[float]:
        """Completed fraction of the batch, from the latest snapshot."""
        if not self.snapshot:
            return 1.0 if self.status is JobStatus.SUCCESS else None
        total = self.snapshot.get("total") or 0
        completed = self.snapshot.get("completed") or 0
        if not total:
            return 1.0
        return max(0.0, min(1.0, completed / total))

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["progress"] = self.progress
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], *, fallback_id: str, fallback_created: float) -> "JobRecord":
        job_id = str(payload.get("job_id") or fallback_id)
        status = JobStatus.parse(payload.get("status", JobStatus.PENDING.value))
        message = payload.get("message")
        # A batch that was live when the process stopped cannot resume.
        if not status.finished:
            status = JobStatus.FAILED
            message = INTERRUPTED_MESSAGE
        snapshot = payload.get("snapshot")
        return cls(
            job_id=job_id,
            kind=str(payload.get("kind") or "unknown"),
            label=str(payload.get("label") or job_id),
            status=status,
            created_at=_optional_float(payload.get("created_at")) or fallback_created,
            started_at=_optional_float(payload.get("started_at")),
            finished_at=_optional_float(payload.get("finished_at")),
            snapshot=snapshot if isinstance(snapshot, dict) else None,
            message=message,
            details=dict(payload.get("details") or {}),
            results=list(payload.get("results") or []),
            logs=[str(line) for line in payload.get("logs") or []],
        )


class JobStore:
    """Thread-safe registry of job records.

    The batch thread writes snapshots while API handlers read, so every access
    goes through one re-entrant lock. With ``persist_dir`` set, each job is
    mirrored to ``<job_id>.json`` and reloaded on the next start.
    """

    def __init__(self, persist_dir: Optional[Path] = None) -> None:
        self._lock = threading.RLock()
        self._jobs: Dict[str, JobRecord] = {}
        self._persist_dir = persist_dir
        if persist_dir is not None:
            persist_dir.mkdir(parents=True, exist_ok=True)
            self._load_persisted(persist_dir)

    def create_job(self, kind: str, label: str, *, job_id: Optional[str] = None,
                   details: Optional[Dict[str, Any]] = None) -> JobRecord:
        record = JobRecord(job_id=job_id or uuid.uuid4().hex, kind=kind, label=label,
                           details=dict(details or {}))
        with self._lock:
            self._jobs[record.job_id] = record
            self._persist(record)
        return record

    def update(self, job_id: str, *, status: Optional[JobStatus] = None,
               message: Optional[str] = None, snapshot: Optional[Dict[str, Any]] = None,
               results: Optional[List[Dict[str, Any]]] = None, append_log: Optional[str] = None,
               details: Optional[Dict[str, Any]] = None, flush: bool = True) -> JobRecord:
        """Apply the given changes; ``flush=False`` keeps the change in memory only."""
        with self._lock:
            record = self._jobs[job_id]
            if status is not None:
                self._transition(record, status)
            if message is not None:
                record.message = message
            if snapshot is not None:
                record.snapshot = dict(snapshot)
            if results is not None:
                record.results = list(results)
            if append_log:
                record.logs.append(append_log)
            if details:
                record.details.update(details)
            if flush:
                self._persist(record)
            return record

    def append_log(self, job_id: str, line: str) -> None:
        self.update(job_id, append_log=line)

    def get(self, job_id: str) -> JobRecord:
        with self._lock:
            return self._jobs[job_id]

    def list_jobs(self) -> List[JobRecord]:
        """All known jobs, newest first."""
        with self._lock:
            return sorted(self._jobs.values(), key=lambda rec: rec.created_at, reverse=True)

    @staticmethod
    def _transition(record: JobRecord, status: JobStatus) -> None:
        now = time.time()
        record.status = status
        if status is JobStatus.RUNNING and record.started_at is None:
            record.started_at = now
        if status.finished:
            record.finished_at = now

    def _persist(self, record: JobRecord) -> None:
        if self._persist_dir is None:
            return
        path = self._persist_dir / f"{record.job_id}.json"
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(record.to_dict(), indent=2))
        tmp.replace(path)

    def _load_persisted(self, directory: Path) -> None:
        records: List[JobRecord] = []
        for path in sorted(directory.glob("*.json")):
            try:
                payload = json.loads(path.read_text())
            except (OSError, ValueError):
                logger.warning("Skipping unreadable job file %s", path)
                continue
            if not isinstance(payload, dict):
                continue
            records.append(JobRecord.from_dict(payload, fallback_id=path.stem,
                                               fallback_created=path.stat().st_mtime))
        records.sort(key=lambda rec: rec.created_at, reverse=True)
        for record in records[:MAX_RESTORED_JOBS]:
            self._jobs[record.job_id] = record
        if records:
            logger.info("Restored %d job records from %s", min(len(records), MAX_RESTORED_JOBS), directory)


_default_store: Optional[JobStore] = None


def get_job_store(persist_dir: Optional[Path] = None) -> JobStore:
    global _default_store
    if _default_store is None:
        _default_store = JobStore(persist_dir=persist_dir)
    return _default_store


__all__ = [
    "INTERRUPTED_MESSAGE",
    "JobRecord",
    "JobStatus",
    "JobStore",
    "get_job_store",
]
