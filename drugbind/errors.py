"""Exception taxonomy shared by the batch pipeline."""

from __future__ import annotations


class DrugBindError(RuntimeError):
    pass


class PredictionError(DrugBindError):
    """Prediction backend failed or returned an unusable answer."""

    kind = "prediction"


class PredictionTimeout(PredictionError):
    kind = "timeout"


class BatchCancelledError(DrugBindError):
    kind = "cancelled"


__all__ = [
    "DrugBindError",
    "PredictionError",
    "PredictionTimeout",
    "BatchCancelledError",
]
