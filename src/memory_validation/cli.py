"""CLI entry point for the memory validation engine."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from memory_validation.core.engine import ValidationEngine
from memory_validation.metrics.quality import QualityMonitor
from memory_validation.modules.calibration import CalibrationEngine
from memory_validation.modules.review_queue import ReviewerExpertise
from memory_validation.schemas import (
    MemoryRecord,
    ProposalStatus,
    SamplingStrategy,
    ThresholdConfig,
    ValidationFeedback,
)
from memory_validation.utils.config import load_threshold_config, save_threshold_config
from memory_validation.utils.logging import SessionLogger, create_session_logger

app = typer.Typer(
    name="memory-validation",
    help="Confidence-based validation of emotionally-scored memories",
    add_completion=False,
)

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _session_logger(log_dir: Optional[Path], verbose: bool) -> SessionLogger | None:
    if log_dir is None:
        return None
    session_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    logger = create_session_logger(session_id=session_id, runs_dir=log_dir)
    if verbose:
        typer.echo(f"Session log: {logger.logs_dir}")
    return logger


def read_jsonl(path: Path) -> list[dict[str, Any]]:
    """Read a JSONL file, exiting with status 1 if it cannot be read."""
    rows: list[dict[str, Any]] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    rows.append(json.loads(line))
                except json.JSONDecodeError as e:
                    typer.echo(f"Error: {path}:{line_no}: invalid JSON ({e.msg})", err=True)
                    raise typer.Exit(1)
    except OSError as e:
        typer.echo(f"Error: cannot read {path}: {e}", err=True)
        raise typer.Exit(1)
    return rows


def _load_config(path: Optional[Path]) -> ThresholdConfig:
    if path is None:
        return ThresholdConfig()
    try:
        return load_threshold_config(path)
    except OSError as e:
        typer.echo(f"Error: cannot read config {path}: {e}", err=True)
        raise typer.Exit(1)
    except (ValidationError, json.JSONDecodeError) as e:
        typer.echo(f"Error: invalid config {path}: {e}", err=True)
        raise typer.Exit(1)


def _load_feedback(path: Path) -> list[ValidationFeedback]:
    feedback: list[ValidationFeedback] = []
    for i, row in enumerate(read_jsonl(path), start=1):
        try:
            feedback.append(ValidationFeedback.model_validate(row))
        except ValidationError as e:
            typer.echo(f"Error: feedback item {i} is invalid: {e.error_count()} error(s)", err=True)
            raise typer.Exit(1)
    return feedback


def _load_records(path: Path) -> list[MemoryRecord]:
    records: list[MemoryRecord] = []
    for i, row in enumerate(read_jsonl(path), start=1):
        try:
            records.append(MemoryRecord.model_validate(row))
        except ValidationError as e:
            typer.echo(f"Error: record {i} is invalid: {e.error_count()} error(s)", err=True)
            raise typer.Exit(1)
    return records


def _close(logger: SessionLogger | None) -> None:
    if logger is not None:
        logger.close()


# =============================================================================
# COMMANDS
# =============================================================================

@app.command()
def evaluate(
    records_path: Path = typer.Argument(..., help="JSONL file of memory records"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="ThresholdConfig JSON file",
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-w", help="Worker pool size (overrides --throughput)",
    ),
    throughput: Optional[float] = typer.Option(
        None, "--throughput", "-t", help="Target records per second",
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write decisions as JSONL",
    ),
    log_dir: Optional[Path] = typer.Option(
        None, "--log-dir", help="Write a session log under this directory",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Evaluate a batch of records and summarise the verdicts.

    Examples:

        memory-validation evaluate records.jsonl --throughput 2000 -o decisions.jsonl
    """
    setup_logging(verbose)
    config = _load_config(config_path)
    rows = read_jsonl(records_path)
    logger = _session_logger(log_dir, verbose)

    try:
        engine = ValidationEngine(
            config=config,
            max_workers=workers,
            throughput_target=throughput,
            logger=logger,
        )
        result = engine.process_batch(rows)
    finally:
        _close(logger)

    table = Table(title=f"Batch {result.batch_id[:8]} (config v{result.config_version})")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("records", str(result.total_records))
    table.add_row("processed", str(result.processed))
    table.add_row("errors", str(len(result.errors)))
    for outcome, count in result.counts.items():
        table.add_row(outcome, f"{count} ({result.ratios()[outcome]:.1%})")
    table.add_row("avg confidence", f"{result.average_confidence:.3f}")
    table.add_row("workers", str(result.workers))
    table.add_row("duration", f"{result.duration_ms:.1f} ms")
    console.print(table)

    for error in result.errors:
        console.print(
            f"[red]error[/red] #{error.index} {escape(str(error.record_id))}: "
            f"{escape(error.error_type)}: {escape(error.message)}"
        )
    if result.distribution_flagged:
        for reason in result.distribution_reasons:
            console.print(f"[yellow]distribution flagged:[/yellow] {escape(reason)}")

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            for decision in result.decisions:
                f.write(decision.model_dump_json() + "\n")
        typer.echo(f"Wrote {len(result.decisions)} decisions to {output}")


@app.command()
def queue(
    records_path: Path = typer.Argument(..., help="JSONL file of memory records"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="ThresholdConfig JSON file",
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Entries to show (0 = all)"),
    minutes: Optional[float] = typer.Option(
        None, "--minutes", "-m", min=0, help="Plan a review session of this many minutes",
    ),
    expertise: ReviewerExpertise = typer.Option(
        ReviewerExpertise.INTERMEDIATE, "--expertise", case_sensitive=False,
        help="Reviewer expertise for session planning",
    ),
    log_dir: Optional[Path] = typer.Option(
        None, "--log-dir", help="Write a session log under this directory",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Evaluate records and print the ordered review queue.

    With --minutes, only the entries one session can cover are shown.
    """
    setup_logging(verbose)
    config = _load_config(config_path)
    rows = read_jsonl(records_path)
    logger = _session_logger(log_dir, verbose)

    try:
        engine = ValidationEngine(config=config, logger=logger)
        result = engine.process_batch(rows)
        review = engine.review_queue(result.decisions)
        plan = None
        if minutes is not None:
            plan = engine.plan_review_session(minutes, expertise)
    finally:
        _close(logger)

    if plan is not None:
        entries = plan.entries if limit <= 0 else plan.entries[:limit]
        title = (
            f"Session plan ({plan.strategy}): {len(plan)} of {len(review)} records, "
            f"~{plan.estimated_minutes:.0f} min"
        )
    else:
        entries = review.entries if limit <= 0 else review.top(limit)
        title = f"Review queue ({len(review)} records)"
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Record")
    table.add_column("Bucket")
    table.add_column("Priority")
    table.add_column("Sig", justify="right")
    table.add_column("Urg", justify="right")
    table.add_column("Conf", justify="right")
    table.add_column("Focus")
    for entry in entries:
        d = entry.decision
        table.add_row(
            str(entry.rank),
            escape(d.record_id),
            entry.bucket.value,
            d.priority.value,
            f"{d.significance.overall:.1f}",
            f"{d.significance.urgency:.1f}",
            f"{d.confidence:.3f}",
            escape("; ".join(entry.focus_areas)),
        )
    console.print(table)
    if result.errors:
        typer.echo(f"{len(result.errors)} record(s) could not be evaluated")


@app.command()
def quality(
    feedback_path: Path = typer.Argument(..., help="JSONL file of reviewer feedback"),
    window: int = typer.Option(1000, "--window", help="Sliding window size"),
    log_dir: Optional[Path] = typer.Option(
        None, "--log-dir", help="Write a session log under this directory",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Compute quality metrics and alerts from reviewer feedback."""
    setup_logging(verbose)
    feedback = _load_feedback(feedback_path)
    logger = _session_logger(log_dir, verbose)

    try:
        monitor = QualityMonitor(window_size=window, logger=logger)
        monitor.record_many(feedback)
        metrics, alerts = monitor.evaluate()
    finally:
        _close(logger)

    table = Table(title=f"Quality ({metrics.sample_size} feedback items)")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("accuracy", f"{metrics.accuracy:.1%}")
    table.add_row("auto-approve accuracy", f"{metrics.auto_approve_accuracy:.1%}")
    table.add_row("false-positive rate", f"{metrics.false_positive_rate:.1%}")
    table.add_row("false-negative rate", f"{metrics.false_negative_rate:.1%}")
    table.add_row("review-time reduction", f"{metrics.review_time_reduction:.1%}")
    table.add_row("calibration score", f"{metrics.calibration_score:.3f}")
    console.print(table)

    if not alerts:
        typer.echo("No alerts")
    for alert in alerts:
        colour = "red" if alert.severity.value == "high" else "yellow"
        console.print(
            f"[{colour}]{alert.severity.value.upper()}[/{colour}] "
            f"{escape(alert.message)} -> {escape(alert.recommendation)}"
        )


@app.command()
def calibrate(
    feedback_path: Path = typer.Argument(..., help="JSONL file of reviewer feedback"),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="ThresholdConfig JSON file",
    ),
    apply: bool = typer.Option(False, "--apply", help="Apply the proposal if conditions allow"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the resulting config as JSON",
    ),
    log_dir: Optional[Path] = typer.Option(
        None, "--log-dir", help="Write a session log under this directory",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Propose (and optionally apply) a threshold calibration."""
    setup_logging(verbose)
    config = _load_config(config_path)
    feedback = _load_feedback(feedback_path)
    logger = _session_logger(log_dir, verbose)

    try:
        monitor = QualityMonitor(logger=logger)
        monitor.record_many(feedback)
        engine = CalibrationEngine(config=config, quality_monitor=monitor, logger=logger)
        proposal = engine.propose(feedback)
        if apply:
            proposal = engine.apply(proposal)
        active = engine.snapshot()
    finally:
        _close(logger)

    table = Table(title=f"Calibration: {proposal.status.value}")
    table.add_column("Threshold")
    table.add_column("Current", justify="right")
    table.add_column("Proposed", justify="right")
    table.add_column("Delta", justify="right")
    for name in ("auto_approve", "review_required", "auto_reject"):
        table.add_row(
            name,
            f"{getattr(proposal.current_config, name):.3f}",
            f"{getattr(proposal.proposed_config, name):.3f}",
            f"{proposal.deltas.get(name, 0.0):+.3f}",
        )
    console.print(table)
    for reason in proposal.reasons:
        typer.echo(f"  - {reason}")
    if proposal.bias.detected:
        typer.echo(f"Bias: {proposal.bias.direction.value} ({proposal.bias.magnitude:.1%})")
    typer.echo(f"Improvement potential: {proposal.improvement_potential:.3f}")

    if output is not None:
        target = active if proposal.status == ProposalStatus.APPLIED else proposal.proposed_config
        save_threshold_config(target, output)
        typer.echo(f"Wrote config v{target.version} to {output}")


@app.command()
def sample(
    records_path: Path = typer.Argument(..., help="JSONL file of memory records"),
    size: Optional[int] = typer.Option(
        None, "--size", "-n", min=0, help="Sample size (default: chosen from the population)",
    ),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for a reproducible draw"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the sampled records as JSONL",
    ),
    log_dir: Optional[Path] = typer.Option(
        None, "--log-dir", help="Write a session log under this directory",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Draw a stratified spot-check sample and report its coverage."""
    setup_logging(verbose)
    records = _load_records(records_path)
    logger = _session_logger(log_dir, verbose)

    try:
        engine = ValidationEngine(logger=logger)
        strategy = None
        if size is not None:
            strategy = SamplingStrategy(target_size=size, seed=seed)
        result = engine.sample_for_validation(records, strategy=strategy, seed=seed)
    finally:
        _close(logger)

    coverage = result.coverage
    table = Table(
        title=(
            f"Sample ({result.strategy.name}): {result.sample_size} of "
            f"{result.population_size} records"
        )
    )
    table.add_column("Dimension")
    table.add_column("Score", justify="right")
    table.add_column("Detail")
    table.add_row(
        "mood",
        f"{coverage.emotional.coverage:.2f}",
        escape(", ".join(coverage.emotional.descriptors_represented) or "-"),
    )
    table.add_row(
        "time",
        f"{coverage.temporal.score:.2f}",
        f"{coverage.temporal.distribution.value}, {len(coverage.temporal.gaps)} gap(s)",
    )
    table.add_row(
        "relationship",
        f"{coverage.relationship.coverage:.2f}",
        escape(", ".join(coverage.relationship.types_represented) or "-"),
    )
    table.add_row(
        "quality",
        f"{coverage.quality.score:.2f}",
        f"high={coverage.quality.high} medium={coverage.quality.medium} low={coverage.quality.low}",
    )
    table.add_row("overall", f"{coverage.overall_score:.2f}", "")
    console.print(table)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            for record in result.records:
                f.write(record.model_dump_json() + "\n")
        typer.echo(f"Wrote {result.sample_size} records to {output}")


@app.command()
def version() -> None:
    """Show version information."""
    from memory_validation import __version__
    typer.echo(f"memory-validation v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
