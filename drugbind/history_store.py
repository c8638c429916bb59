"""Persistent prediction history backed by a JSON file."""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .models import HistoryFilters, PredictionRecord, PredictionUpdateRequest


logger = logging.getLogger(__name__)


class RecordNotFoundError(KeyError):
    pass


def _day_start(value) -> float:
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp()


class HistoryStore:
    """Single-user store: every write rewrites the file, last write wins."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # -- raw file access ---------------------------------------------------
    def _read_raw(self) -> List[Dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text())
        except (OSError, ValueError):
            logger.warning("History file %s is unreadable; treating as empty", self._path)
            return []
        if isinstance(data, dict):
            return list(data.get("predictions", []))
        if isinstance(data, list):
            return data
        return []

    def _write_raw(self, entries: Iterable[Dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [entry for entry in entries]
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=False))
        tmp.replace(self._path)

    def _load(self) -> List[PredictionRecord]:
        records: List[PredictionRecord] = []
        for entry in self._read_raw():
            try:
                records.append(PredictionRecord.model_validate(entry))
            except ValidationError:
                logger.debug("Skipping malformed history entry %r", entry.get("id") if isinstance(entry, dict) else entry)
                continue
        return records

    # -- writes --------------------------------------------------------------
    def add(self, record: PredictionRecord) -> PredictionRecord:
        return self.add_many([record])[0]

    def add_many(self, records: Iterable[PredictionRecord]) -> List[PredictionRecord]:
        new = list(records)
        if not new:
            return []
        with self._lock:
            raw = self._read_raw()
            raw.extend(record.model_dump() for record in new)
            self._write_raw(raw)
        return new

    def add_prediction(self, *, source: str, drug_name: str, smiles: str, protein_name: str,
                       fasta: str, predicted_pk: float, confidence_score: float,
                       timestamp: Optional[float] = None, **extra: Any) -> PredictionRecord:
        record = PredictionRecord(
            id=uuid.uuid4().hex,
            timestamp=time.time() if timestamp is None else timestamp,
            source=source,
            drug_name=drug_name,
            smiles=smiles,
            protein_name=protein_name,
            fasta=fasta,
            predicted_pk=predicted_pk,
            confidence_score=confidence_score,
            **extra,
        )
        return self.add(record)

    def update(self, record_id: str, request: PredictionUpdateRequest) -> PredictionRecord:
        changes = request.model_dump(exclude_none=True)
        if "tags" in changes:
            changes["tags"] = [tag.strip() for tag in changes["tags"] if tag and tag.strip()]
        return self._mutate(record_id, lambda entry: entry.update(changes))

    def toggle_favorite(self, record_id: str) -> PredictionRecord:
        return self._mutate(record_id, lambda entry: entry.update(is_favorite=not entry.get("is_favorite", False)))

    def update_notes(self, record_id: str, notes: str) -> PredictionRecord:
        return self._mutate(record_id, lambda entry: entry.update(notes=notes))

    def _mutate(self, record_id: str, change) -> PredictionRecord:
        with self._lock:
            raw = self._read_raw()
            for entry in raw:
                if isinstance(entry, dict) and str(entry.get("id")) == record_id:
                    change(entry)
                    record = PredictionRecord.model_validate(entry)
                    self._write_raw(raw)
                    return record
        raise RecordNotFoundError(record_id)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            raw = self._read_raw()
            kept = [entry for entry in raw if not (isinstance(entry, dict) and str(entry.get("id")) == record_id)]
            if len(kept) == len(raw):
                return False
            self._write_raw(kept)
        return True

    def clear(self) -> int:
        with self._lock:
            count = len(self._read_raw())
            self._write_raw([])
        return count

    # -- reads ---------------------------------------------------------------
    def get(self, record_id: str) -> PredictionRecord:
        with self._lock:
            for record in self._load():
                if record.id == record_id:
                    return record
        raise RecordNotFoundError(record_id)

    def export_all(self) -> List[PredictionRecord]:
        with self._lock:
            return self._load()

    def list_predictions(self, filters: Optional[HistoryFilters] = None) -> List[PredictionRecord]:
        """Return matching records, newest first."""
        with self._lock:
            records = self._load()
        if filters is not None:
            records = [record for record in records if _matches(record, filters)]
        records.sort(key=lambda record: record.timestamp, reverse=True)
        return records


def _matches(record: PredictionRecord, filters: HistoryFilters) -> bool:
    if filters.source != "all" and record.source != filters.source:
        return False
    if filters.favorites_only and not record.is_favorite:
        return False
    if filters.start_date and record.timestamp < _day_start(filters.start_date):
        return False
    # End date is inclusive: anything before the next UTC midnight.
    if filters.end_date and record.timestamp >= _day_start(filters.end_date) + 86400:
        return False
    if filters.pk_min is not None and record.predicted_pk < filters.pk_min:
        return False
    if filters.pk_max is not None and record.predicted_pk > filters.pk_max:
        return False
    if filters.confidence_min is not None and record.confidence_score < filters.confidence_min:
        return False
    if filters.confidence_max is not None and record.confidence_score > filters.confidence_max:
        return False
    if filters.search_query:
        needle = filters.search_query.strip().lower()
        haystack = (record.drug_name, record.protein_name, record.smiles, record.notes)
        if needle and not any(needle in (value or "").lower() for value in haystack):
            return False
    return True


_default_store: Optional[HistoryStore] = None


def get_history_store(path: Optional[Path] = None) -> HistoryStore:
    global _default_store
    if _default_store is None:
        if path is None:
            from .config import load_config

            path = load_config().paths.history_path
        _default_store = HistoryStore(path)
    return _default_store


__all__ = [
    "HistoryStore",
    "RecordNotFoundError",
    "get_history_store",
]
