"""Progress and ETA estimation for a batch run."""

from __future__ import annotations

import time
from typing import Optional, Sequence

from .batch import BatchProgress, BatchResult, RowStatus


def estimate(start_time: float, results: Sequence[BatchResult], now: Optional[float] = None) -> BatchProgress:
    """Project the current result list onto a :class:`BatchProgress` snapshot.

    ``start_time`` and ``now`` share the scheduler's monotonic clock. An empty
    batch reports 100%. ETA is the mean duration of completed rows times the
    rows still outstanding; before the first completion there is no sample and
    the ETA is reported as 0.
    """
    now = time.monotonic() if now is None else now
    total = len(results)
    successful = 0
    failed = 0
    current: Optional[BatchResult] = None
    for result in results:
        if result.status is RowStatus.SUCCESS:
            successful += 1
        elif result.status is RowStatus.FAILED:
            failed += 1
        elif result.status is RowStatus.PROCESSING:
            if current is None or (result.started_at or 0.0) > (current.started_at or 0.0):
                current = result
    completed = successful + failed

    if total == 0:
        percentage = 100.0
    else:
        percentage = min(100.0, completed / total * 100.0)

    remaining = total - completed
    if completed == 0 or remaining <= 0:
        eta = 0
    else:
        elapsed = max(0.0, now - start_time)
        eta = max(0, round(elapsed / completed * remaining))

    return BatchProgress(
        total=total,
        completed=completed,
        successful=successful,
        failed=failed,
        percentage=round(percentage, 2),
        eta=eta,
        current_item=current.id if current is not None else None,
    )


__all__ = ["estimate"]
