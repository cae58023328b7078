"""
CLI interface for usage-lens.

Provides command-line access to the statistics engine.
"""

import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional, TypeVar

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from usage_lens.config.loader import DatabaseConfig, Settings, load_settings
from usage_lens.core.metrics import Granularity, TrendMetric
from usage_lens.core.results import ModelLensGroupBy
from usage_lens.core.statistics import StatisticsService
from usage_lens.core.time_range import TimeRange
from usage_lens.demo.seed_demo_data import seed_demo_data
from usage_lens.storage.repository import initialize_schema

app = typer.Typer(help="Usage statistics for coding-assistant sessions.")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

E = TypeVar("E")


def _configure_logging(level: int) -> None:
    """Route the package's log records to stderr through rich."""
    package_logger = logging.getLogger("usage_lens")
    for handler in list(package_logger.handlers):
        if isinstance(handler, RichHandler):
            package_logger.removeHandler(handler)
    package_logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    package_logger.setLevel(level)


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_CODE_FAIL)


def _parse(kind: str, value: str, parser: Callable[[str], E]) -> E:
    try:
        return parser(value)
    except ValueError:
        _fail(f"Invalid {kind}: {value}")


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _service(ctx: typer.Context) -> StatisticsService:
    """Statistics service for the configured store; exits when there is no store yet."""
    settings = _settings(ctx)
    if not Path(settings.database.path).exists():
        console.print("\n[bold yellow]No usage data found[/]")
        console.print(f"\nNo database at {settings.database.path}. To get started:")
        console.print("1. Run `usage-lens init` to create the database")
        console.print("2. Point your ingestion pipeline at it, or run `usage-lens seed-demo`")
        console.print("3. Run this command again\n")
        sys.exit(EXIT_CODE_PASS)
    return StatisticsService(db_path=settings.database.path, settings=settings)


def _format_currency(amount: float) -> str:
    return f"${amount:,.2f}"


def _format_tokens(count: float) -> str:
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return f"{count:,.0f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML configuration file"),
    db: Optional[str] = typer.Option(None, "--db", help="Path to the usage database"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (DEBUG, INFO, ...)"),
):
    """usage-lens CLI."""
    try:
        settings = load_settings(config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(str(e))

    if db:
        settings = replace(settings, database=DatabaseConfig(path=db))

    level = settings.logging.numeric_level
    if log_level:
        level = getattr(logging, log_level.upper(), None)
        if not isinstance(level, int):
            _fail(f"Invalid log level: {log_level}")
    _configure_logging(level)

    ctx.obj = {"settings": settings}
    if ctx.invoked_subcommand is None:
        console.print("usage-lens - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage database."""
    path = _settings(ctx).database.path
    try:
        initialize_schema(path)
        console.print(f"[green]✓[/] Database initialized at {path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("seed-demo")
def seed_demo(
    ctx: typer.Context,
    days: int = typer.Option(30, "--days", "-d", help="Number of past days to fill"),
    rollups: bool = typer.Option(True, "--rollups/--no-rollups", help="Also build the rollup tables"),
):
    """Insert reproducible demo sessions into the database."""
    if days <= 0:
        _fail("--days must be positive")
    path = _settings(ctx).database.path
    try:
        count = seed_demo_data(path, days=days, with_rollups=rollups)
    except Exception as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Inserted {count} demo messages into {path}")


@app.command()
def overview(
    ctx: typer.Context,
    range_: str = typer.Option("last7d", "--range", "-r", help="today, last24h, last7d, last30d or all"),
):
    """Show totals for a time range."""
    time_range = _parse("range", range_, TimeRange.parse)
    stats = _service(ctx).get_overview_stats(time_range)

    table = Table(title=f"Overview ({time_range.kind.value})")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Sessions", f"{stats.total_sessions:,}")
    table.add_row("Messages", f"{stats.total_messages:,}")
    table.add_row("Cost", _format_currency(stats.total_cost))
    table.add_row("Input tokens", _format_tokens(stats.input_tokens))
    table.add_row("Output tokens", _format_tokens(stats.output_tokens))
    table.add_row("Reasoning tokens", _format_tokens(stats.reasoning_tokens))
    table.add_row("Cache read", _format_tokens(stats.cache_read))
    table.add_row("Cache write", _format_tokens(stats.cache_write))
    console.print(table)


@app.command()
def trend(
    ctx: typer.Context,
    range_: str = typer.Option("last7d", "--range", "-r", help="today, last24h, last7d, last30d or all"),
    metric: str = typer.Option("messages", "--metric", "-m", help="messages, tokens, cost or sessions"),
    granularity: str = typer.Option("daily", "--granularity", "-g", help="hourly, daily, weekly or monthly"),
):
    """Show a gap-filled trend series."""
    time_range = _parse("range", range_, TimeRange.parse)
    trend_metric = _parse("metric", metric, lambda v: TrendMetric(v.lower()))
    bucket_size = _parse("granularity", granularity, lambda v: Granularity(v.lower()))

    points = _service(ctx).get_trend_data(time_range, trend_metric, bucket_size)
    table = Table(title=f"{trend_metric.value.title()} ({time_range.kind.value}, {bucket_size.value})")
    table.add_column("Bucket")
    table.add_column("Value", justify="right")
    for point in points:
        value = _format_currency(point.value) if trend_metric == TrendMetric.COST else f"{point.value:,.0f}"
        table.add_row(point.label, value if point.has_data else f"[dim]{value}[/]")
    console.print(table)


@app.command("top-projects")
def top_projects(
    ctx: typer.Context,
    range_: str = typer.Option("last7d", "--range", "-r", help="today, last24h, last7d, last30d or all"),
    limit: int = typer.Option(5, "--limit", "-n", help="Number of projects to show"),
):
    """Rank projects by input tokens."""
    time_range = _parse("range", range_, TimeRange.parse)
    if limit <= 0:
        _fail("--limit must be positive")
    projects = _service(ctx).get_top_projects_optimized(time_range, limit)

    table = Table(title=f"Top projects ({time_range.kind.value})")
    table.add_column("Project")
    table.add_column("Sessions", justify="right")
    table.add_column("Messages", justify="right")
    table.add_column("Input", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Active days", justify="right")
    for project in projects:
        table.add_row(
            project.label,
            f"{project.session_count:,}",
            f"{project.message_count:,}",
            _format_tokens(project.input_tokens),
            _format_currency(project.cost),
            str(project.active_days),
        )
    console.print(table)


@app.command("top-models")
def top_models(
    ctx: typer.Context,
    range_: str = typer.Option("last7d", "--range", "-r", help="today, last24h, last7d, last30d or all"),
    limit: int = typer.Option(5, "--limit", "-n", help="Number of models to show"),
):
    """Rank models by input tokens."""
    time_range = _parse("range", range_, TimeRange.parse)
    if limit <= 0:
        _fail("--limit must be positive")
    models = _service(ctx).get_top_models_optimized(time_range, limit)

    table = Table(title=f"Top models ({time_range.kind.value})")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Messages", justify="right")
    table.add_column("Input", justify="right")
    table.add_column("Cost", justify="right")
    for model in models:
        table.add_row(
            model.provider_id,
            model.model_id,
            f"{model.message_count:,}",
            _format_tokens(model.input_tokens),
            _format_currency(model.cost),
        )
    console.print(table)


@app.command()
def anomalies(
    ctx: typer.Context,
    range_: str = typer.Option("last30d", "--range", "-r", help="today, last24h, last7d, last30d or all"),
):
    """Check whether the latest active day is unusual."""
    time_range = _parse("range", range_, TimeRange.parse)
    stats = _service(ctx).get_anomaly_stats(time_range)

    table = Table(title=f"Anomalies ({time_range.kind.value})")
    table.add_column("Metric")
    table.add_column("Latest", justify="right")
    table.add_column("Mean", justify="right")
    table.add_column("Threshold", justify="right")
    table.add_column("Verdict")
    for name, metric in (
        ("Messages", stats.messages),
        ("Sessions", stats.sessions),
        ("Cost", stats.cost),
        ("Net code output", stats.net_code_output),
    ):
        verdict = "[bold red]ANOMALY[/]" if metric.is_anomaly else "[green]normal[/]"
        table.add_row(
            name,
            f"{metric.current:,.2f}",
            f"{metric.mean:,.2f}",
            f"{metric.threshold:,.2f}",
            verdict,
        )
    console.print(table)


@app.command()
def rhythm(
    ctx: typer.Context,
    range_: str = typer.Option("last30d", "--range", "-r", help="today, last24h, last7d, last30d or all"),
):
    """Show when during the day and week you work."""
    time_range = _parse("range", range_, TimeRange.parse)
    insights = _service(ctx).get_rhythm_insights(time_range)

    table = Table(title=f"Rhythm ({time_range.kind.value})")
    table.add_column("Metric")
    table.add_column("Messages", justify="right")
    table.add_column("Sessions", justify="right")
    table.add_row("Peak hour", f"{insights.peak_hour}:00", f"{insights.session_peak_hour}:00")
    table.add_row(
        "Night owl ratio",
        f"{insights.night_owl_ratio:.1%}",
        f"{insights.session_night_owl_ratio:.1%}",
    )
    table.add_row(
        "Weekend ratio",
        f"{insights.weekend_ratio:.1%}",
        f"{insights.session_weekend_ratio:.1%}",
    )
    table.add_row("Total", f"{insights.total_messages:,}", f"{insights.total_sessions:,}")
    console.print(table)


@app.command("model-lens")
def model_lens(
    ctx: typer.Context,
    group_by: str = typer.Option("model", "--group-by", help="model or provider"),
):
    """Show all-time throughput per model or provider."""
    grouping = _parse("group-by", group_by, lambda v: ModelLensGroupBy(v.lower()))
    rows = _service(ctx).get_model_lens_rows(grouping)

    table = Table(title=f"Model lens (by {grouping.value})")
    table.add_column("Name")
    if grouping == ModelLensGroupBy.MODEL:
        table.add_column("Provider")
    table.add_column("Input", justify="right")
    table.add_column("Output tok/s", justify="right")
    table.add_column("Timed messages", justify="right")
    for row in rows:
        cells = [row.dimension_name]
        if grouping == ModelLensGroupBy.MODEL:
            cells.append(row.provider_id)
        cells += [
            _format_tokens(row.input_tokens),
            f"{row.output_tps:,.1f}",
            f"{row.valid_duration_message_ratio:.0%}",
        ]
        table.add_row(*cells)
    console.print(table)


if __name__ == "__main__":
    app()
