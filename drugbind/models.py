"""Pydantic models shared across FastAPI endpoints and the history store."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


PredictionSource = Literal["single", "batch"]
JobState = Literal["pending", "running", "success", "failed", "canceled"]


class PredictionRecord(BaseModel):
    id: str
    timestamp: float
    source: PredictionSource
    drug_name: str
    smiles: str
    protein_name: str
    fasta: str
    predicted_pk: float
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    drug_likeness_score: Optional[float] = None
    is_favorite: bool = False
    notes: str = ""
    tags: List[str] = Field(default_factory=list)
    atom_importance: Optional[List[Dict[str, Any]]] = None
    residue_importance: Optional[List[Dict[str, Any]]] = None
    batch_id: Optional[str] = None


class PredictionUpdateRequest(BaseModel):
    is_favorite: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=5000)
    tags: Optional[List[str]] = None


class HistoryFilters(BaseModel):
    search_query: Optional[str] = None
    start_date: Optional[date] = Field(None, description="Inclusive UTC start date")
    end_date: Optional[date] = Field(None, description="Inclusive UTC end date")
    pk_min: Optional[float] = None
    pk_max: Optional[float] = None
    confidence_min: Optional[float] = None
    confidence_max: Optional[float] = None
    source: Literal["all", "single", "batch"] = "all"
    favorites_only: bool = False


class DayCount(BaseModel):
    date: str
    count: int


class SourceCounts(BaseModel):
    single: int = 0
    batch: int = 0


class HistoryStats(BaseModel):
    total_predictions: int = 0
    average_pk: float = 0.0
    average_confidence: float = 0.0
    most_tested_protein: str = ""
    predictions_by_day: List[DayCount] = Field(default_factory=list)
    predictions_by_source: SourceCounts = Field(default_factory=SourceCounts)


class BatchRowInput(BaseModel):
    id: Optional[str] = None
    drug_name: Optional[str] = None
    smiles: Optional[str] = None
    protein_name: Optional[str] = None
    fasta: Optional[str] = None
    priority: Optional[bool] = False


class BatchInputRequest(BaseModel):
    rows: List[BatchRowInput] = Field(default_factory=list)
    csv_text: Optional[str] = Field(None, description="CSV/TSV table with a header row; used when rows is empty")


class BatchValidationResponse(BaseModel):
    rows: List[Dict[str, Any]]
    errors: List[str]
    warnings: List[str]
    total_rows: int
    message: str


class BatchRunRequest(BatchInputRequest):
    label: Optional[str] = Field(None, max_length=120)
    max_concurrent: Optional[int] = Field(None, ge=1, le=32)
    row_timeout_seconds: Optional[float] = Field(None, gt=0, le=3600)
    save_to_history: bool = True


class BatchRunResponse(BaseModel):
    job_id: str
    message: str
    total_rows: int
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class BatchProgressModel(BaseModel):
    total: int
    completed: int
    successful: int
    failed: int
    percentage: float
    eta: int
    current_item: Optional[str] = None


class JobStatusResponse(BaseModel):
    job_id: str
    kind: str
    label: str
    status: JobState
    message: Optional[str] = None
    progress: Optional[float] = None
    snapshot: Optional[BatchProgressModel] = None
    logs: List[str] = Field(default_factory=list)
    details: Dict[str, object] = Field(default_factory=dict)


class JobSummary(BaseModel):
    job_id: str
    kind: str
    label: str
    status: JobState
    created_at: float
    started_at: Optional[float] = None
    finished_at: Optional[float] = None


class BatchResultsResponse(BaseModel):
    job_id: str
    status: JobState
    results: List[Dict[str, Any]]


class SinglePredictionRequest(BaseModel):
    smiles: str = Field(..., min_length=1)
    fasta: str = Field(..., min_length=1)
    drug_name: Optional[str] = Field(None, max_length=200)
    protein_name: Optional[str] = Field(None, max_length=200)
    save_to_history: bool = True


class SinglePredictionResponse(BaseModel):
    predicted_pk: float
    confidence_score: float
    prediction_id: Optional[str] = None
    drug_likeness_score: Optional[float] = None
    reasoning: Optional[str] = None
    record: Optional[PredictionRecord] = None


class DrugLikenessRequest(BaseModel):
    smiles: str = Field(..., min_length=1)


__all__ = [
    "BatchInputRequest",
    "BatchProgressModel",
    "BatchResultsResponse",
    "BatchRowInput",
    "BatchRunRequest",
    "BatchRunResponse",
    "BatchValidationResponse",
    "DayCount",
    "DrugLikenessRequest",
    "HistoryFilters",
    "HistoryStats",
    "JobStatusResponse",
    "JobSummary",
    "PredictionRecord",
    "PredictionSource",
    "PredictionUpdateRequest",
    "SinglePredictionRequest",
    "SinglePredictionResponse",
    "SourceCounts",
]
