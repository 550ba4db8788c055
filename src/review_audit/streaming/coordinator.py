"""Streaming coordinator: applies snapshots in arrival order and keeps metrics fresh.

One asyncio task receives snapshots and recomputation requests. The metrics
themselves are derived in a ``concurrent.futures`` executor from immutable
``ComputeRequest`` values, so the worker holds no state between calls and
can be a process pool or a thread pool interchangeably.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import AsyncIterable, Callable

from review_audit.config import AppConfig, ConvergenceConfig
from review_audit.errors import FormatError
from review_audit.io.codec import decode, decode_request
from review_audit.pipeline.bundle import MetricsBundle
from review_audit.pipeline.compute import (
    AnalysisOptions,
    ComputeRequest,
    ComputeResponse,
    TimelinePoint,
    compute_request,
)
from review_audit.snapshot import Snapshot

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoordinatorState:
    """Everything observers may read; replaced as one value on every change."""

    snapshot: Snapshot | None = None
    metrics: MetricsBundle | None = None
    convergence: float = 0.0
    timeline: tuple[TimelinePoint, ...] = ()
    is_streaming: bool = False
    generation: int = 0
    snapshots_received: int = 0
    decode_failures: int = 0


def target_sample_size(population_total: float, config: ConvergenceConfig) -> float:
    return min(config.max_target, max(config.min_target, population_total * config.target_fraction))


def sample_progress(snapshot: Snapshot, config: ConvergenceConfig) -> float:
    target = target_sample_size(float(snapshot.population_total), config)
    return min(1.0, snapshot.sampled_total / target)


def update_convergence(
    current: MetricsBundle,
    previous: MetricsBundle | None,
    snapshot: Snapshot,
    previous_score: float,
    config: ConvergenceConfig | None = None,
) -> float:
    """Next convergence score after ``current`` replaces ``previous``.

    While the headline ratios still move the score stays at half the sample
    progress; once they settle it eases toward the sample progress.
    """
    config = config or ConvergenceConfig()
    progress = sample_progress(snapshot, config)
    if previous is None:
        return progress * config.moving_cap
    drift = abs(current.median_ratio - previous.median_ratio) + abs(
        current.positive_ratio - previous.positive_ratio
    )
    if drift >= config.drift_threshold:
        return progress * config.moving_cap
    return previous_score + (progress - previous_score) * config.smoothing


def should_finalize(snapshot: Snapshot, score: float, config: ConvergenceConfig) -> bool:
    return snapshot.sample_rate > config.finalize_coverage or score > config.finalize_convergence


class StreamingCoordinator:
    """Owns the latest snapshot, the latest metrics and the convergence score.

    ``on_snapshot`` may be called at any rate; bursts are coalesced by a
    debounce before one recomputation is dispatched. A dispatched
    computation is never cancelled. Results are tagged with a generation
    number and only applied when newer than the last applied one, so a slow
    computation can never overwrite a newer one.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        options: AnalysisOptions | None = None,
        executor: Executor | None = None,
        on_update: Callable[[CoordinatorState], None] | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self._options = options or AnalysisOptions()
        self._on_update = on_update
        self._lock = threading.RLock()
        self._state = CoordinatorState()
        self._requested = 0
        self._debounce_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[bool]] = set()
        self._owns_executor = executor is None
        self._executor = executor or self._make_executor()

    def _make_executor(self) -> Executor:
        streaming = self.config.streaming
        if streaming.executor == "thread":
            return ThreadPoolExecutor(
                max_workers=streaming.max_workers, thread_name_prefix="review-audit"
            )
        return ProcessPoolExecutor(max_workers=streaming.max_workers)

    async def __aenter__(self) -> StreamingCoordinator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._cancel_debounce()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    @property
    def state(self) -> CoordinatorState:
        with self._lock:
            return self._state

    @property
    def options(self) -> AnalysisOptions:
        with self._lock:
            return self._options

    def _publish(self, state: CoordinatorState) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(state)
        except Exception:
            LOGGER.exception("State listener failed")

    async def on_message(self, payload: bytes) -> Snapshot | None:
        """Decode one wire message and apply it; malformed bytes keep the last good state."""
        if self.config.streaming.decode_in_executor:
            loop = asyncio.get_running_loop()
            decode_task = functools.partial(decode_request, config=self.config.projection)
            response = await loop.run_in_executor(self._executor, decode_task, payload)
            snapshot, error = response.snapshot, response.error
        else:
            try:
                snapshot, error = decode(payload, self.config.projection), None
            except FormatError as exc:
                snapshot, error = None, str(exc)
        if snapshot is None:
            LOGGER.warning("Dropping undecodable snapshot (%d bytes): %s", len(payload), error)
            with self._lock:
                self._state = replace(self._state, decode_failures=self._state.decode_failures + 1)
            return None
        self.on_snapshot(snapshot)
        return snapshot

    def on_snapshot(self, snapshot: Snapshot) -> None:
        """Replace the current snapshot and schedule a debounced recomputation."""
        with self._lock:
            self._state = replace(
                self._state,
                snapshot=snapshot,
                is_streaming=True,
                snapshots_received=self._state.snapshots_received + 1,
            )
            state = self._state
        self._publish(state)
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced())

    async def _debounced(self) -> None:
        await asyncio.sleep(self.config.streaming.debounce_seconds)
        # Past the sleep the computation runs in its own task; a newer snapshot
        # only cancels a debounce that is still waiting.
        task = asyncio.get_running_loop().create_task(self._recompute())
        self._inflight.add(task)
        task.add_done_callback(self._computation_done)

    def _computation_done(self, task: asyncio.Task[bool]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Background recomputation failed", exc_info=exc)

    async def _cancel_debounce(self) -> None:
        task, self._debounce_task = self._debounce_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def request_recompute(self, options: AnalysisOptions | None = None) -> bool:
        """Recompute immediately, optionally switching the analysis options first."""
        if options is not None:
            with self._lock:
                self._options = options
        return await self._recompute()

    async def _recompute(self, timeline_months: int | None = None, final: bool = False) -> bool:
        with self._lock:
            snapshot = self._state.snapshot
            if snapshot is None:
                return False
            self._requested += 1
            request = ComputeRequest(
                snapshot=snapshot,
                options=self._options,
                config=self.config,
                generation=self._requested,
                timeline_months=timeline_months,
            )
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(self._executor, compute_request, request)
        return self._apply(response, snapshot, final)

    def _apply(self, response: ComputeResponse, snapshot: Snapshot, final: bool) -> bool:
        with self._lock:
            if response.generation <= self._state.generation:
                LOGGER.debug(
                    "Discarding stale metrics for generation %d (applied %d)",
                    response.generation,
                    self._state.generation,
                )
                return False
            if not response.ok or response.result is None:
                LOGGER.warning(
                    "Metrics computation failed for generation %d: %s",
                    response.generation,
                    response.error,
                )
                return False

            previous = self._state
            convergence_config = self.config.convergence
            score = update_convergence(
                response.result,
                previous.metrics,
                snapshot,
                previous.convergence,
                convergence_config,
            )
            if final and should_finalize(snapshot, previous.convergence, convergence_config):
                score = 1.0
            self._state = replace(
                previous,
                metrics=response.result,
                convergence=score,
                timeline=response.timeline if response.timeline is not None else previous.timeline,
                is_streaming=previous.is_streaming and not final,
                generation=response.generation,
            )
            state = self._state
        self._publish(state)
        return True

    async def on_stream_end(self) -> CoordinatorState:
        """Run the one authoritative recomputation and the tag timeline."""
        await self._cancel_debounce()
        applied = await self._recompute(
            timeline_months=self.config.streaming.timeline_window_months, final=True
        )
        if not applied:
            with self._lock:
                self._state = replace(self._state, is_streaming=False)
                state = self._state
            self._publish(state)
        LOGGER.info(
            "Stream closed after %d snapshots (%d undecodable), convergence %.2f",
            self.state.snapshots_received,
            self.state.decode_failures,
            self.state.convergence,
        )
        return self.state

    async def run(self, messages: AsyncIterable[bytes]) -> CoordinatorState:
        """Consume a push channel of wire messages until it is exhausted."""
        try:
            async for payload in messages:
                await self.on_message(payload)
        except (ConnectionError, OSError):
            LOGGER.warning("Snapshot channel closed unexpectedly", exc_info=True)
        return await self.on_stream_end()
