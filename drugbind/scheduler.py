"""Bounded-concurrency batch scheduler for affinity predictions.

Rows are pulled by a fixed pool of worker coroutines from a priority queue
keyed by ``(tier, input index)`` so priority rows go first and input order is
kept within a tier. Every row transition recomputes a progress snapshot and
pushes it to the run's event stream and to any subscribers.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import threading
import time
from typing import AsyncIterator, Callable, List, Optional, Sequence, Set, Tuple

from .batch import BatchProgress, BatchResult, BatchRow, RowFailure, RowStatus, RowSuccess
from .config import BatchSettings
from .errors import BatchCancelledError, PredictionError, PredictionTimeout
from .predictor import Prediction, PredictionClient
from .progress import estimate


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BatchProgress], None]

CANCELLED_IN_FLIGHT = "Batch run cancelled while the prediction was in flight"
CANCELLED_PENDING = "Batch run cancelled before this row was processed"


class CancellationToken:
    """Cancellation flag that can be raised from any thread."""

    def __init__(self) -> None:
        self._flag = threading.Event()
        self._lock = threading.Lock()
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []

    @property
    def cancelled(self) -> bool:
        return self._flag.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._flag.is_set():
                return
            self._flag.set()
            waiters = list(self._waiters)
        for loop, event in waiters:
            # The loop may already have shut down if its run finished first.
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(event.set)

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        event = asyncio.Event()
        entry = (loop, event)
        with self._lock:
            if self._flag.is_set():
                return
            self._waiters.append(entry)
        try:
            await event.wait()
        finally:
            with self._lock:
                self._waiters.remove(entry)


def check_prediction(prediction: Prediction, settings: BatchSettings) -> RowSuccess:
    """Reject predictions outside the physically plausible range."""
    try:
        pk = float(prediction.pk)
        confidence = float(prediction.confidence)
    except (TypeError, ValueError) as exc:
        raise PredictionError("Prediction contained non-numeric values") from exc
    if not (math.isfinite(pk) and math.isfinite(confidence)):
        raise PredictionError("Prediction contained non-finite values")
    if not settings.pk_min <= pk <= settings.pk_max:
        raise PredictionError(
            f"Predicted pK {pk:.2f} outside plausible range [{settings.pk_min:g}, {settings.pk_max:g}]"
        )
    if not 0.0 <= confidence <= 1.0:
        raise PredictionError(f"Confidence {confidence:.3f} outside [0, 1]")
    return RowSuccess(
        predicted_pk=pk,
        confidence=confidence,
        prediction_id=prediction.prediction_id,
        atom_importance=list(prediction.atom_importances) or None,
        residue_importance=list(prediction.residue_importances) or None,
    )


class BatchRun:
    """One pass of the pipeline over a fixed set of rows.

    Iterate the run (``async for progress in run``) to drive it; the stream
    ends once every row is terminal. ``results`` keeps input order.
    """

    def __init__(self, rows: Sequence[BatchRow], predictor: PredictionClient, settings: BatchSettings,
                 cancel_token: CancellationToken, clock: Callable[[], float]) -> None:
        self.results: List[BatchResult] = [BatchResult(row=row, index=idx) for idx, row in enumerate(rows)]
        self.settings = settings
        self.cancel_token = cancel_token
        self._predictor = predictor
        self._clock = clock
        self._subscribers: List[ProgressCallback] = []
        self._events: Optional[asyncio.Queue] = None
        self._started = False
        self.start_time = clock()
        self.progress: BatchProgress = estimate(self.start_time, self.results, self.start_time)

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def subscribe(self, callback: ProgressCallback) -> None:
        self._subscribers.append(callback)

    def cancel(self) -> None:
        self.cancel_token.cancel()

    def __aiter__(self) -> AsyncIterator[BatchProgress]:
        return self.stream()

    async def stream(self) -> AsyncIterator[BatchProgress]:
        if self._started:
            raise RuntimeError("Batch run already started")
        self._started = True
        self._events = asyncio.Queue()
        driver = asyncio.create_task(self._drive(), name="batch-driver")
        try:
            while True:
                snapshot = await self._events.get()
                if snapshot is None:
                    break
                yield snapshot
            await driver
        finally:
            if not driver.done():
                self.cancel_token.cancel()
                await asyncio.gather(driver, return_exceptions=True)

    async def execute(self) -> List[BatchResult]:
        async for _ in self.stream():
            pass
        return self.results

    # -- driving -----------------------------------------------------------
    async def _drive(self) -> None:
        assert self._events is not None
        try:
            self.start_time = self._clock()
            queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
            for result in self.results:
                queue.put_nowait((0 if result.row.priority else 1, result.index))
            logger.info(
                "Starting batch of %d rows (max_concurrent=%d, timeout=%gs)",
                len(self.results), self.settings.max_concurrent, self.settings.row_timeout_seconds,
            )
            self._emit()

            pool_size = max(1, min(self.settings.max_concurrent, len(self.results)))
            workers = [asyncio.create_task(self._worker(queue), name=f"batch-worker-{n}") for n in range(pool_size)]
            await self._await_workers(workers)

            if self.cancel_token.cancelled:
                self._fail_pending()
            summary = self.progress
            logger.info(
                "Batch finished: %d succeeded, %d failed of %d%s",
                summary.successful, summary.failed, summary.total,
                " (cancelled)" if self.cancel_token.cancelled else "",
            )
        finally:
            self._events.put_nowait(None)

    async def _await_workers(self, workers: List[asyncio.Task]) -> None:
        cancel_waiter = asyncio.create_task(self.cancel_token.wait(), name="batch-cancel-waiter")
        remaining: Set[asyncio.Task] = set(workers)
        try:
            while remaining and not self.cancel_token.cancelled:
                done, _ = await asyncio.wait(remaining | {cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
                remaining -= done
            if remaining:
                if self.settings.cancel_mode == "abandon":
                    for task in remaining:
                        task.cancel()
                await asyncio.gather(*remaining, return_exceptions=True)
        finally:
            cancel_waiter.cancel()
            await asyncio.gather(cancel_waiter, return_exceptions=True)
        for task in workers:
            if task.done() and not task.cancelled() and task.exception() is not None:
                raise task.exception()

    async def _worker(self, queue: asyncio.PriorityQueue) -> None:
        while not self.cancel_token.cancelled:
            try:
                _, index = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await self._process(self.results[index])

    async def _process(self, result: BatchResult) -> None:
        row = result.row
        timeout = self.settings.row_timeout_seconds
        result.mark_processing(self._clock())
        self._emit()
        try:
            prediction = await asyncio.wait_for(self._predictor.predict(row.smiles, row.fasta), timeout=timeout)
            outcome = check_prediction(prediction, self.settings)
        except asyncio.CancelledError:
            result.mark_failed(RowFailure(CANCELLED_IN_FLIGHT, kind=BatchCancelledError.kind), self._clock())
            self._emit()
            raise
        except asyncio.TimeoutError:
            self._fail(result, PredictionTimeout(f"Prediction timed out after {timeout:g}s"))
            return
        except PredictionError as exc:
            self._fail(result, exc)
            return
        except Exception as exc:
            logger.debug("Unexpected predictor error for %s", row.id, exc_info=True)
            self._fail(result, PredictionError(str(exc) or type(exc).__name__))
            return
        result.mark_success(outcome, self._clock())
        logger.debug("%s: pK %.2f (confidence %.2f)", row.id, outcome.predicted_pk, outcome.confidence)
        self._emit()

    def _fail(self, result: BatchResult, exc: PredictionError) -> None:
        logger.warning("%s (%s / %s) failed: %s", result.id, result.row.drug_name, result.row.protein_name, exc)
        result.mark_failed(RowFailure(str(exc), kind=exc.kind), self._clock())
        self._emit()

    def _fail_pending(self) -> None:
        for result in self.results:
            if result.status is RowStatus.PENDING:
                result.mark_failed(RowFailure(CANCELLED_PENDING, kind=BatchCancelledError.kind), self._clock())
                self._emit()

    def _emit(self) -> None:
        snapshot = estimate(self.start_time, self.results, self._clock())
        self.progress = snapshot
        if self._events is not None:
            self._events.put_nowait(snapshot)
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Progress subscriber raised; continuing batch")


class BatchScheduler:
    def __init__(self, predictor: PredictionClient, settings: Optional[BatchSettings] = None, *,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self._predictor = predictor
        self._settings = settings or BatchSettings()
        self._clock = clock

    @property
    def settings(self) -> BatchSettings:
        return self._settings

    def start(self, rows: Sequence[BatchRow], *, cancel_token: Optional[CancellationToken] = None) -> BatchRun:
        seen: Set[str] = set()
        for row in rows:
            if row.id in seen:
                raise ValueError(f"Duplicate row id in batch: {row.id}")
            seen.add(row.id)
        return BatchRun(rows, self._predictor, self._settings, cancel_token or CancellationToken(), self._clock)

    async def run(self, rows: Sequence[BatchRow], *, cancel_token: Optional[CancellationToken] = None,
                  on_progress: Optional[ProgressCallback] = None) -> List[BatchResult]:
        batch = self.start(rows, cancel_token=cancel_token)
        if on_progress is not None:
            batch.subscribe(on_progress)
        return await batch.execute()


__all__ = [
    "BatchRun",
    "BatchScheduler",
    "CancellationToken",
    "check_prediction",
]
