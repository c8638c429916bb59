"""FastAPI application entrypoint for the DrugBind batch backend."""

from __future__ import annotations

import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Response

from .aggregate import compute_stats
from .config import load_config
from .druglikeness import assess
from .errors import PredictionError, PredictionTimeout
from .export import records_to_csv, results_to_csv
from .history_store import RecordNotFoundError, get_history_store
from .job_store import JobRecord, JobStatus, get_job_store
from .logging_utils import configure_logging
from .models import (
    BatchInputRequest,
    BatchProgressModel,
    BatchResultsResponse,
    BatchRunRequest,
    BatchRunResponse,
    BatchValidationResponse,
    DrugLikenessRequest,
    HistoryFilters,
    HistoryStats,
    JobStatusResponse,
    JobSummary,
    PredictionRecord,
    PredictionUpdateRequest,
    SinglePredictionRequest,
    SinglePredictionResponse,
)
from .predictor import build_predictor
from .workflows import (
    BATCH_JOB_KIND,
    cancel_batch_run,
    parse_batch_input,
    run_single_prediction,
    settings_for_request,
    submit_batch_run,
)

app = FastAPI(title="DrugBind Batch API", version="0.1.0")

cfg = load_config()
configure_logging(cfg.log_dir, cfg.log_level)
store = get_job_store(cfg.paths.jobs_dir)
history = get_history_store(cfg.paths.history_path)
predictor = build_predictor(cfg.predictor)


def _job_or_404(job_id: str) -> JobRecord:
    try:
        return store.get(job_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc


def _job_status_response(record: JobRecord) -> JobStatusResponse:
    return JobStatusResponse(
        job_id=record.job_id,
        kind=record.kind,
        label=record.label,
        status=record.status.value,
        message=record.message,
        progress=record.progress,
        snapshot=BatchProgressModel(**record.snapshot) if record.snapshot else None,
        logs=list(record.logs),
        details=dict(record.details),
    )


# -- batch ------------------------------------------------------------------
@app.post("/api/batch/validate", response_model=BatchValidationResponse)
def validate_batch(request: BatchInputRequest) -> BatchValidationResponse:
    parsed = parse_batch_input(request)
    message = f"Parsed {len(parsed.rows)} valid rows"
    if parsed.errors:
        message = f"{message} · {len(parsed.errors)} errors"
    if parsed.warnings:
        message = f"{message} · {len(parsed.warnings)} warnings"
    return BatchValidationResponse(
        rows=[row.to_dict() for row in parsed.rows],
        errors=parsed.errors,
        warnings=parsed.warnings,
        total_rows=len(parsed.rows),
        message=message,
    )


@app.post("/api/batch/run", response_model=BatchRunResponse)
def run_batch(request: BatchRunRequest) -> BatchRunResponse:
    parsed = parse_batch_input(request)
    if not parsed.rows:
        detail = "; ".join(parsed.errors) or "No valid rows to process"
        raise HTTPException(status_code=400, detail=detail)
    try:
        settings = settings_for_request(request, cfg.batch)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    job_id = submit_batch_run(
        parsed.rows,
        label=request.label,
        settings=settings,
        save_to_history=request.save_to_history,
        job_store=store,
        history_store=history,
        predictor=predictor,
    )
    return BatchRunResponse(
        job_id=job_id,
        message=f"Batch queued with {len(parsed.rows)} rows",
        total_rows=len(parsed.rows),
        errors=parsed.errors,
        warnings=parsed.warnings,
    )


@app.get("/api/jobs", response_model=List[JobSummary])
def list_jobs() -> List[JobSummary]:
    return [
        JobSummary(
            job_id=record.job_id,
            kind=record.kind,
            label=record.label,
            status=record.status.value,
            created_at=record.created_at,
            started_at=record.started_at,
            finished_at=record.finished_at,
        )
        for record in store.list_jobs()
    ]


@app.get("/api/jobs/{job_id}", response_model=JobStatusResponse)
def get_job(job_id: str) -> JobStatusResponse:
    return _job_status_response(_job_or_404(job_id))


@app.post("/api/jobs/{job_id}/cancel", response_model=JobStatusResponse)
def cancel_job(job_id: str) -> JobStatusResponse:
    record = _job_or_404(job_id)
    if record.kind != BATCH_JOB_KIND:
        raise HTTPException(status_code=400, detail="Only batch jobs can be cancelled")
    if not cancel_batch_run(job_id, job_store=store) and not record.status.finished:
        raise HTTPException(status_code=409, detail="Job is not running in this process")
    return _job_status_response(store.get(job_id))


@app.get("/api/batch/{job_id}/results", response_model=BatchResultsResponse)
def batch_results(job_id: str) -> BatchResultsResponse:
    record = _job_or_404(job_id)
    return BatchResultsResponse(job_id=job_id, status=record.status.value, results=list(record.results))


@app.get("/api/batch/{job_id}/results.csv")
def batch_results_csv(job_id: str) -> Response:
    record = _job_or_404(job_id)
    if not record.status.finished:
        raise HTTPException(status_code=409, detail="Batch is still running")
    stamp = datetime.date.today().isoformat()
    return Response(
        content=results_to_csv(record.results),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="batch_results_{stamp}.csv"'},
    )


# -- single prediction --------------------------------------------------------
@app.post("/api/predict", response_model=SinglePredictionResponse)
async def predict(request: SinglePredictionRequest) -> SinglePredictionResponse:
    try:
        return await run_single_prediction(request, predictor=predictor, settings=cfg.batch, history_store=history)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PredictionTimeout as exc:
        raise HTTPException(status_code=504, detail=str(exc)) from exc
    except PredictionError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


# -- drug-likeness ---------------------------------------------------------------
@app.post("/api/drug-likeness")
def drug_likeness(request: DrugLikenessRequest) -> dict:
    report = assess(request.smiles.strip())
    if report is None:
        raise HTTPException(status_code=400, detail="SMILES could not be parsed")
    return report.to_dict()


# -- history --------------------------------------------------------------------
@app.get("/api/history", response_model=List[PredictionRecord])
def list_history(
    search: Optional[str] = Query(None),
    source: str = Query("all", pattern="^(all|single|batch)$"),
    favorites_only: bool = Query(False),
    start_date: Optional[datetime.date] = Query(None),
    end_date: Optional[datetime.date] = Query(None),
    pk_min: Optional[float] = Query(None),
    pk_max: Optional[float] = Query(None),
    confidence_min: Optional[float] = Query(None),
    confidence_max: Optional[float] = Query(None),
) -> List[PredictionRecord]:
    filters = HistoryFilters(
        search_query=search,
        source=source,
        favorites_only=favorites_only,
        start_date=start_date,
        end_date=end_date,
        pk_min=pk_min,
        pk_max=pk_max,
        confidence_min=confidence_min,
        confidence_max=confidence_max,
    )
    return history.list_predictions(filters)


@app.get("/api/history/stats", response_model=HistoryStats)
def history_stats() -> HistoryStats:
    return compute_stats(history.export_all())


@app.get("/api/history/export.csv")
def export_history_csv() -> Response:
    stamp = datetime.date.today().isoformat()
    return Response(
        content=records_to_csv(history.list_predictions()),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="drugbind-history-{stamp}.csv"'},
    )


@app.get("/api/history/{record_id}", response_model=PredictionRecord)
def get_history_record(record_id: str) -> PredictionRecord:
    try:
        return history.get(record_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Prediction not found") from exc


@app.patch("/api/history/{record_id}", response_model=PredictionRecord)
def update_history_record(record_id: str, request: PredictionUpdateRequest) -> PredictionRecord:
    try:
        return history.update(record_id, request)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Prediction not found") from exc


@app.post("/api/history/{record_id}/favorite", response_model=PredictionRecord)
def toggle_history_favorite(record_id: str) -> PredictionRecord:
    try:
        return history.toggle_favorite(record_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Prediction not found") from exc


@app.delete("/api/history/{record_id}")
def delete_history_record(record_id: str) -> dict:
    if not history.delete(record_id):
        raise HTTPException(status_code=404, detail="Prediction not found")
    return {"deleted": record_id}


@app.delete("/api/history")
def clear_history() -> dict:
    return {"deleted": history.clear()}


__all__ = ["app"]
