from __future__ import annotations

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from review_audit.config import AppConfig, ProjectionConfig, StreamingConfig
from review_audit.io.codec import encode
from review_audit.pipeline.bundle import MetricsBundle
from review_audit.pipeline.compute import AnalysisOptions, ComputeRequest, ComputeResponse
from review_audit.streaming.coordinator import CoordinatorState, StreamingCoordinator


def _config(**streaming: object) -> AppConfig:
    values = {"debounce_seconds": 0.01, "executor": "thread", "max_workers": 2, **streaming}
    return AppConfig(streaming=StreamingConfig(**values))


async def _messages(*payloads: bytes):
    for payload in payloads:
        yield payload
        await asyncio.sleep(0)


def test_stream_end_runs_final_computation_and_timeline(make_snapshot) -> None:
    partial = make_snapshot([45] * 6, [5] * 6, game_total_positive=540, game_total_negative=60)
    full = make_snapshot([90] * 6, [10] * 6)
    seen: list[CoordinatorState] = []

    async def scenario() -> CoordinatorState:
        async with StreamingCoordinator(_config(), on_update=seen.append) as coordinator:
            return await coordinator.run(_messages(encode(partial), encode(full)))

    state = asyncio.run(scenario())

    assert state.snapshots_received == 2
    assert state.decode_failures == 0
    assert state.is_streaming is False
    assert state.metrics is not None
    assert state.metrics.verdict is not None
    assert state.metrics.verdict.primary_tag == "HEALTHY"
    assert len(state.timeline) == 4
    assert state.convergence == 1.0
    assert state.snapshot is not None
    assert state.snapshot.sampled_total == 600
    assert seen[-1] == state


@pytest.mark.parametrize("decode_in_executor", [False, True])
def test_undecodable_message_keeps_last_good_state(make_snapshot, decode_in_executor) -> None:
    good = make_snapshot([90] * 6, [10] * 6)

    async def scenario() -> CoordinatorState:
        config = _config(decode_in_executor=decode_in_executor)
        async with StreamingCoordinator(config) as coordinator:
            first = await coordinator.on_message(encode(good))
            dropped = await coordinator.on_message(b"\x07not a snapshot")
            assert first is not None
            assert dropped is None
            return coordinator.state

    state = asyncio.run(scenario())

    assert state.decode_failures == 1
    assert state.snapshots_received == 1
    assert state.snapshot is not None
    assert state.snapshot.months[0] == "2020-01"


def test_slow_stale_result_is_discarded(make_snapshot, monkeypatch) -> None:
    def _fake_compute(request: ComputeRequest) -> ComputeResponse:
        if request.options.is_free:
            time.sleep(0.2)
        return ComputeResponse(
            ok=True,
            generation=request.generation,
            result=MetricsBundle(is_free=request.options.is_free),
        )

    monkeypatch.setattr("review_audit.streaming.coordinator.compute_request", _fake_compute)
    snapshot = make_snapshot([90] * 6, [10] * 6)

    async def scenario() -> tuple[list[bool], CoordinatorState]:
        executor = ThreadPoolExecutor(max_workers=2)
        try:
            coordinator = StreamingCoordinator(
                _config(debounce_seconds=30.0), executor=executor
            )
            coordinator.on_snapshot(snapshot)
            applied = await asyncio.gather(
                coordinator.request_recompute(AnalysisOptions(is_free=True)),
                coordinator.request_recompute(AnalysisOptions(is_free=False)),
            )
            state = coordinator.state
            await coordinator.close()
            return list(applied), state
        finally:
            executor.shutdown(wait=True)

    applied, state = asyncio.run(scenario())

    assert applied == [False, True]
    assert state.generation == 2
    assert state.metrics is not None
    assert state.metrics.is_free is False


def test_recompute_without_snapshot_is_a_no_op() -> None:
    async def scenario() -> tuple[bool, CoordinatorState]:
        async with StreamingCoordinator(_config()) as coordinator:
            return await coordinator.request_recompute(), await coordinator.on_stream_end()

    applied, state = asyncio.run(scenario())

    assert applied is False
    assert state.metrics is None
    assert state.is_streaming is False


def test_failing_listener_does_not_break_the_stream(make_snapshot) -> None:
    def _listener(_state: CoordinatorState) -> None:
        raise RuntimeError("listener exploded")

    async def scenario() -> CoordinatorState:
        async with StreamingCoordinator(_config(), on_update=_listener) as coordinator:
            return await coordinator.run(_messages(encode(make_snapshot([90] * 3, [10] * 3))))

    state = asyncio.run(scenario())

    assert state.metrics is not None
    assert state.snapshots_received == 1


def test_snapshot_burst_does_not_cancel_running_computations(make_snapshot, monkeypatch) -> None:
    dispatched: list[int] = []

    def _slow_compute(request: ComputeRequest) -> ComputeResponse:
        dispatched.append(request.generation)
        time.sleep(0.1)
        return ComputeResponse(ok=True, generation=request.generation, result=MetricsBundle())

    monkeypatch.setattr("review_audit.streaming.coordinator.compute_request", _slow_compute)
    snapshot = make_snapshot([90] * 6, [10] * 6)
    published: list[CoordinatorState] = []

    async def scenario() -> CoordinatorState:
        config = _config(debounce_seconds=0.02, max_workers=4)
        async with StreamingCoordinator(config, on_update=published.append) as coordinator:
            # Each snapshot lands after the previous debounce fired but before its
            # computation finished.
            for _ in range(8):
                coordinator.on_snapshot(snapshot)
                await asyncio.sleep(0.06)
            return await coordinator.on_stream_end()

    state = asyncio.run(scenario())

    applied_while_streaming = [
        s.generation for s in published if s.is_streaming and s.metrics is not None
    ]
    assert applied_while_streaming
    assert applied_while_streaming == sorted(applied_while_streaming)
    assert len(dispatched) == 9
    assert state.generation == 9
    assert state.is_streaming is False


def test_executor_decode_uses_the_configured_projection(make_snapshot) -> None:
    payload = encode(
        make_snapshot([40, 50, 60], [4, 5, 6], game_total_positive=200, game_total_negative=20)
    )

    async def projected_totals(decode_in_executor: bool) -> list[float]:
        config = AppConfig(
            projection=ProjectionConfig(high_coverage_threshold=0.5),
            streaming=StreamingConfig(
                executor="thread", debounce_seconds=30.0, decode_in_executor=decode_in_executor
            ),
        )
        async with StreamingCoordinator(config) as coordinator:
            snapshot = await coordinator.on_message(payload)
        assert snapshot is not None
        assert snapshot.projected_monthly is not None
        return snapshot.projected_monthly["projected_total"].tolist()

    inline = asyncio.run(projected_totals(False))
    in_executor = asyncio.run(projected_totals(True))

    assert inline == [44.0, 55.0, 66.0]
    assert in_executor == inline
