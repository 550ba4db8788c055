from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator

import typer

from review_audit.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from review_audit.detectors.spikes import SpikeReport
from review_audit.errors import EmptyDataError, FormatError
from review_audit.features.projection import get_projected_monthly
from review_audit.io.codec import decode
from review_audit.io.write import table_path, write_summary, write_table
from review_audit.logging import configure_logging
from review_audit.paths import OutputPaths, build_output_paths
from review_audit.pipeline.bundle import MetricsBundle
from review_audit.pipeline.compute import (
    AnalysisOptions,
    compute,
    compute_timeline,
    timeline_frame,
)
from review_audit.snapshot import MonthFilter, Snapshot
from review_audit.streaming.coordinator import CoordinatorState, StreamingCoordinator

app = typer.Typer(no_args_is_help=True, add_completion=False)


def _load_app_config(config_path: Path | None) -> AppConfig:
    cfg = load_config(config_path)
    configure_logging(cfg.logging.level)
    return cfg


def _read_snapshot(path: Path, cfg: AppConfig, param_hint: str = "--snapshot") -> Snapshot:
    try:
        return decode(path.read_bytes(), cfg.projection)
    except FormatError as exc:
        raise typer.BadParameter(f"{path.name}: {exc}", param_hint=param_hint) from exc


def _require_months(snapshot: Snapshot, minimum: int = 1) -> None:
    if snapshot.month_count < minimum:
        raise EmptyDataError(
            f"Snapshot has {snapshot.month_count} months; at least {minimum} required"
        )


def _options(
    from_month: str | None,
    to_month: str | None,
    free: bool,
    sexual: bool,
    hide_prediction: bool,
) -> AnalysisOptions:
    window = None
    if from_month or to_month:
        window = MonthFilter(from_month=from_month, to_month=to_month)
    return AnalysisOptions(
        timeline_filter=window,
        is_free=free,
        is_sexual=sexual,
        hide_prediction=hide_prediction,
    )


def _write_metrics(metrics: MetricsBundle, paths: OutputPaths, fmt: str) -> None:
    report = SpikeReport(
        negative_spikes=metrics.negative_spikes,
        positive_spikes=metrics.positive_spikes,
        all_spikes=metrics.negative_spikes + metrics.positive_spikes,
    )
    write_table(report.to_frame(), table_path(paths.tables, "spikes", fmt), fmt)
    write_summary(metrics.to_dict(), paths.summary / "metrics.json")
    verdict = metrics.verdict.to_dict() if metrics.verdict else {}
    write_summary(verdict, paths.summary / "verdict.json")


def _verdict_line(metrics: MetricsBundle | None) -> str:
    verdict = metrics.verdict if metrics else None
    if verdict is None:
        return "Verdict: NEUTRAL (tags: none)"
    tags = ", ".join(verdict.tag_ids) if verdict.tags else "none"
    return f"Verdict: {verdict.primary_tag} (tags: {tags})"


@app.command()
def inspect(
    snapshot: Path = typer.Argument(..., exists=True, readable=True, resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
) -> None:
    """Decode one snapshot file and print its header facts."""
    cfg = _load_app_config(config)
    decoded = _read_snapshot(snapshot, cfg, param_hint="SNAPSHOT")
    for key, value in decoded.summary().items():
        typer.echo(f"{key}: {value}")


@app.command()
def analyze(
    snapshot: Path = typer.Option(..., exists=True, readable=True, resolve_path=True),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    from_month: str | None = typer.Option(
        None, "--from", help="First month (YYYY-MM) of the analysis window."
    ),
    to_month: str | None = typer.Option(
        None, "--to", help="Last month (YYYY-MM) of the analysis window."
    ),
    free: bool = typer.Option(False, "--free", help="Free product; refund metrics are skipped."),
    sexual: bool = typer.Option(False, "--sexual", help="Product carries sexual content."),
    hide_prediction: bool = typer.Option(
        False, "--hide-prediction", help="Use sampled counts instead of projected counts."
    ),
) -> None:
    """Compute metrics and the tag verdict for one snapshot."""
    cfg = _load_app_config(config)
    decoded = _read_snapshot(snapshot, cfg)
    try:
        _require_months(decoded)
    except EmptyDataError as exc:
        raise typer.BadParameter(str(exc), param_hint="--snapshot") from exc
    options = _options(from_month, to_month, free, sexual, hide_prediction)
    metrics = compute(decoded, options, cfg)

    paths = build_output_paths(out)
    fmt = cfg.outputs.tables_format
    monthly = get_projected_monthly(decoded, options.timeline_filter, options.use_prediction)
    write_table(monthly, table_path(paths.tables, "projected_monthly", fmt), fmt)
    _write_metrics(metrics, paths, fmt)
    typer.echo(_verdict_line(metrics))


@app.command()
def timeline(
    snapshot: Path = typer.Option(..., exists=True, readable=True, resolve_path=True),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    window: int | None = typer.Option(
        None, min=1, help="Months per sliding window; defaults to streaming.timeline_window_months."
    ),
    free: bool = typer.Option(False, "--free"),
    sexual: bool = typer.Option(False, "--sexual"),
    hide_prediction: bool = typer.Option(False, "--hide-prediction"),
) -> None:
    """Re-run the verdict over every sliding window of months."""
    cfg = _load_app_config(config)
    decoded = _read_snapshot(snapshot, cfg)
    window_months = window or cfg.streaming.timeline_window_months
    try:
        _require_months(decoded, window_months)
    except EmptyDataError as exc:
        raise typer.BadParameter(str(exc), param_hint="--window") from exc

    options = _options(None, None, free, sexual, hide_prediction)
    points = compute_timeline(decoded, window_months, options, cfg)
    paths = build_output_paths(out)
    fmt = cfg.outputs.tables_format
    write_table(timeline_frame(points), table_path(paths.tables, "timeline", fmt), fmt)
    typer.echo(f"Timeline complete. Windows: {len(points)}")


async def _stream_files(files: list[Path], delay: float) -> AsyncIterator[bytes]:
    for path in files:
        yield path.read_bytes()
        if delay > 0:
            await asyncio.sleep(delay)


async def _replay(
    files: list[Path], cfg: AppConfig, options: AnalysisOptions, delay: float
) -> CoordinatorState:
    async with StreamingCoordinator(cfg, options) as coordinator:
        return await coordinator.run(_stream_files(files, delay))


@app.command()
def replay(
    snapshots: Path = typer.Option(
        ...,
        exists=True,
        file_okay=False,
        dir_okay=True,
        readable=True,
        resolve_path=True,
        help="Directory of encoded snapshots, replayed in file name order.",
    ),
    out: Path = typer.Option(Path("out"), resolve_path=True),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, exists=True, readable=True, resolve_path=True),
    pattern: str = typer.Option("*.bin", help="Glob selecting snapshot files."),
    delay: float = typer.Option(0.0, min=0.0, help="Seconds to wait between snapshots."),
    free: bool = typer.Option(False, "--free"),
    sexual: bool = typer.Option(False, "--sexual"),
    hide_prediction: bool = typer.Option(False, "--hide-prediction"),
) -> None:
    """Stream a directory of snapshots through the coordinator and write the final state."""
    cfg = _load_app_config(config)
    files = sorted(path for path in snapshots.glob(pattern) if path.is_file())
    if not files:
        raise typer.BadParameter(f"No files matching {pattern!r}", param_hint="--snapshots")

    options = _options(None, None, free, sexual, hide_prediction)
    state = asyncio.run(_replay(files, cfg, options, delay))

    paths = build_output_paths(out)
    fmt = cfg.outputs.tables_format
    if state.metrics is not None:
        _write_metrics(state.metrics, paths, fmt)
    write_table(
        timeline_frame(list(state.timeline)), table_path(paths.tables, "timeline", fmt), fmt
    )
    write_summary(
        {
            "snapshots_received": state.snapshots_received,
            "decode_failures": state.decode_failures,
            "generation": state.generation,
            "convergence": state.convergence,
            "is_streaming": state.is_streaming,
        },
        paths.summary / "stream.json",
    )
    typer.echo(
        f"Replay complete. Snapshots: {state.snapshots_received}, "
        f"undecodable: {state.decode_failures}, convergence: {state.convergence:.2f}"
    )
    typer.echo(_verdict_line(state.metrics))
