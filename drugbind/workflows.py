"""High-level workflow helpers invoked by API endpoints and the CLI."""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Dict, Optional, Sequence

from .aggregate import finalize
from .batch import BatchRow, ParsedBatchData
from .config import BatchSettings, load_config
from .druglikeness import drug_likeness_score
from .errors import PredictionError, PredictionTimeout
from .history_store import HistoryStore, get_history_store
from .job_store import JobStatus, JobStore, get_job_store
from .models import (
    BatchInputRequest,
    BatchRunRequest,
    SinglePredictionRequest,
    SinglePredictionResponse,
)
from .predictor import PredictionClient, build_predictor
from .scheduler import BatchScheduler, CancellationToken, check_prediction
from .validation import parse_batch_table, validate_row, validate_rows


logger = logging.getLogger(__name__)

BATCH_JOB_KIND = "batch_prediction"

_executor: ThreadPoolExecutor | None = None
_active_tokens: Dict[str, CancellationToken] = {}
_active_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        cfg = load_config()
        _executor = ThreadPoolExecutor(max_workers=max(1, cfg.background_concurrency),
                                       thread_name_prefix="drugbind-batch")
    return _executor


def parse_batch_input(request: BatchInputRequest) -> ParsedBatchData:
    if request.rows:
        return validate_rows([row.model_dump() for row in request.rows])
    if request.csv_text and request.csv_text.strip():
        return parse_batch_table(request.csv_text)
    return ParsedBatchData(errors=["No rows provided"])


def settings_for_request(request: BatchRunRequest, base: Optional[BatchSettings] = None) -> BatchSettings:
    settings = base or load_config().batch
    overrides = {}
    if request.max_concurrent is not None:
        overrides["max_concurrent"] = request.max_concurrent
    if request.row_timeout_seconds is not None:
        overrides["row_timeout_seconds"] = request.row_timeout_seconds
    return replace(settings, **overrides) if overrides else settings


def run_batch_job(job_id: str, rows: Sequence[BatchRow], *, job_store: JobStore, history_store: HistoryStore,
                  predictor: PredictionClient, settings: BatchSettings, cancel_token: CancellationToken,
                  save_to_history: bool = True) -> None:
    """Drive one batch to completion on a private event loop and record the outcome."""
    job_store.update(job_id, status=JobStatus.RUNNING, message=f"Processing {len(rows)} rows")
    batch = BatchScheduler(predictor, settings).start(rows, cancel_token=cancel_token)
    # Only the final snapshot is written to disk; intermediate ones stay in memory.
    batch.subscribe(lambda snapshot: job_store.update(job_id, snapshot=snapshot.to_dict(), flush=snapshot.done))

    results = asyncio.run(batch.execute())
    summary = finalize(results, batch_id=job_id)
    saved = 0
    if save_to_history and summary.records:
        saved = len(history_store.add_many(summary.records))
    for failure in summary.failures:
        job_store.append_log(job_id, f"{failure.row_id} ({failure.drug_name} / {failure.protein_name}): {failure.error}")

    cancelled = cancel_token.cancelled
    message = f"{summary.successful} of {summary.total} predictions succeeded"
    if cancelled:
        message = f"Cancelled · {message}"
    job_store.update(
        job_id,
        status=JobStatus.CANCELED if cancelled else JobStatus.SUCCESS,
        message=message,
        snapshot=batch.progress.to_dict(),
        results=[result.to_dict() for result in results],
        details={"summary": summary.to_dict(), "saved_records": saved},
    )
    logger.info("Batch job %s: %s", job_id, message)


def submit_batch_run(rows: Sequence[BatchRow], *, label: Optional[str] = None,
                     settings: Optional[BatchSettings] = None, save_to_history: bool = True,
                     job_store: JobStore | None = None, history_store: HistoryStore | None = None,
                     predictor: PredictionClient | None = None) -> str:
    cfg = load_config()
    store = job_store or get_job_store(cfg.paths.jobs_dir)
    history = history_store or get_history_store(cfg.paths.history_path)
    client = predictor or build_predictor(cfg.predictor)
    run_settings = settings or cfg.batch
    token = CancellationToken()

    job = store.create_job(
        BATCH_JOB_KIND,
        label or f"Batch of {len(rows)} predictions",
        details={
            "total_rows": len(rows),
            "priority_rows": sum(1 for row in rows if row.priority),
            "max_concurrent": run_settings.max_concurrent,
            "row_timeout_seconds": run_settings.row_timeout_seconds,
        },
    )
    with _active_lock:
        _active_tokens[job.job_id] = token

    def _run() -> None:
        try:
            run_batch_job(job.job_id, rows, job_store=store, history_store=history, predictor=client,
                          settings=run_settings, cancel_token=token, save_to_history=save_to_history)
        except Exception as exc:  # pragma: no cover
            logger.exception("Batch job %s crashed", job.job_id)
            store.update(job.job_id, status=JobStatus.FAILED, message=str(exc))
        finally:
            with _active_lock:
                _active_tokens.pop(job.job_id, None)

    _get_executor().submit(_run)
    return job.job_id


def cancel_batch_run(job_id: str, *, job_store: JobStore | None = None) -> bool:
    """Raise the cancellation flag of a live batch; False when it is not running."""
    with _active_lock:
        token = _active_tokens.get(job_id)
    if token is None:
        return False
    token.cancel()
    store = job_store or get_job_store(load_config().paths.jobs_dir)
    store.append_log(job_id, "Cancellation requested")
    return True


async def run_single_prediction(request: SinglePredictionRequest, *, predictor: PredictionClient,
                                settings: BatchSettings,
                                history_store: HistoryStore | None = None) -> SinglePredictionResponse:
    checked = validate_row(
        {
            "drug_name": request.drug_name or "Custom molecule",
            "protein_name": request.protein_name or "Custom protein",
            "smiles": request.smiles,
            "fasta": request.fasta,
        },
        row_number=1,
    )
    if checked.row is None:
        raise ValueError("; ".join(error.split(": ", 1)[-1] for error in checked.errors))
    row = checked.row

    timeout = settings.row_timeout_seconds
    try:
        prediction = await asyncio.wait_for(predictor.predict(row.smiles, row.fasta), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise PredictionTimeout(f"Prediction timed out after {timeout:g}s") from exc
    except PredictionError:
        raise
    except Exception as exc:
        logger.debug("Unexpected predictor error for single prediction", exc_info=True)
        raise PredictionError(str(exc) or type(exc).__name__) from exc
    outcome = check_prediction(prediction, settings)
    likeness = drug_likeness_score(row.smiles)

    record = None
    if request.save_to_history and history_store is not None:
        record = history_store.add_prediction(
            source="single",
            drug_name=row.drug_name,
            smiles=row.smiles,
            protein_name=row.protein_name,
            fasta=row.fasta,
            predicted_pk=outcome.predicted_pk,
            confidence_score=outcome.confidence,
            drug_likeness_score=likeness,
            atom_importance=outcome.atom_importance,
            residue_importance=outcome.residue_importance,
        )
    return SinglePredictionResponse(
        predicted_pk=outcome.predicted_pk,
        confidence_score=outcome.confidence,
        prediction_id=outcome.prediction_id,
        drug_likeness_score=likeness,
        reasoning=prediction.reasoning,
        record=record,
    )


__all__ = [
    "BATCH_JOB_KIND",
    "cancel_batch_run",
    "parse_batch_input",
    "run_batch_job",
    "run_single_prediction",
    "settings_for_request",
    "submit_batch_run",
]
