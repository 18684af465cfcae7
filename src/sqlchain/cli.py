import asyncio
import functools
import importlib.metadata
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.traceback import Traceback

from .config import SettingsResolver
from .data.command_schemas import CommandsConfig
from .data.plan_schemas import ExecutionPlanConfig
from .engine.exceptions import PlanValidationError
from .engine.executor import ExecutionEngine
from .engine.runner.catalog import load_commands_config, load_plan_config
from .engine.runner.sqlalchemy_runner import SqlCommandRunner
from .reporting import RichConsoleReporter
from .state import APP_STATE

console = Console()
logger = structlog.get_logger(__name__)

LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "information": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# .NET-style date tokens that may appear in a plan's timestampFormat.
_DOTNET_DATE_TOKENS = [
    ("yyyy", "%Y"),
    ("MM", "%m"),
    ("dd", "%d"),
    ("HH", "%H"),
    ("mm", "%M"),
    ("ss", "%S"),
]


def to_strftime(fmt: str) -> str:
    """Accepts strftime formats as-is and translates the common .NET date tokens."""
    if "%" in fmt:
        return fmt
    for token, directive in _DOTNET_DATE_TOKENS:
        fmt = fmt.replace(token, directive)
    return fmt


def version_callback(value: bool):
    """Prints the application version and exits."""
    if value:
        try:
            version = importlib.metadata.version("sqlchain")
            console.print(f"sqlchain version: {version}")
        except importlib.metadata.PackageNotFoundError:
            console.print("sqlchain version: unknown (package not installed)")
        raise typer.Exit()


def setup_logging(verbose: bool):
    log_level = logging.DEBUG if verbose else LOG_LEVELS.get(
        APP_STATE.log_level.lower(), logging.INFO
    )
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processor=structlog.dev.ConsoleRenderer(),
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)
    if not verbose:
        logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


def apply_plan_log_level(level_name: str):
    """Applies a plan's logLevel unless --verbose already forced DEBUG."""
    if APP_STATE.verbose_mode:
        return
    level = LOG_LEVELS.get(level_name.lower())
    if level is None:
        logger.warning("cli.log_level.unknown", log_level=level_name)
        return
    APP_STATE.log_level = level_name
    logging.getLogger().setLevel(level)


def handle_exceptions(func):
    """A decorator to catch and format exceptions for all CLI commands."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        error_console = Console(stderr=True)
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            error_console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
            if APP_STATE.verbose_mode:
                error_console.print(
                    Traceback.from_exception(
                        type(e), e, e.__traceback__, show_locals=True
                    )
                )
            raise typer.Exit(code=1)

    return wrapper


app = typer.Typer(
    name="sqlchain",
    help="Runs execution plans: ordered, parameterized SQL commands whose results feed later commands.",
    no_args_is_help=True,
    rich_markup_mode="markdown",
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose DEBUG logging."
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the application's version and exit.",
    ),
):
    """Main Typer callback to process global options before any command runs."""
    APP_STATE.verbose_mode = verbose
    setup_logging(verbose)


def _load_catalog(
    resolver: SettingsResolver, commands_file: Optional[Path]
) -> CommandsConfig:
    override = str(commands_file.expanduser().resolve()) if commands_file else None
    return load_commands_config(resolver.resolve_commands_path(override))


@app.command()
@handle_exceptions
def run(
    plan_path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Path to the execution plan (.json or .yaml)."
    ),
    commands_file: Optional[Path] = typer.Option(
        None, "--commands", "-c", help="Command catalog file. Defaults to the one in appsettings."
    ),
    connection: Optional[str] = typer.Option(
        None,
        "--connection",
        help="SQLAlchemy URL or 'Server=...;' connection string. Overrides configuration.",
    ),
    report_path: Optional[Path] = typer.Option(
        None, "--report", "-r", help="Write the JSON run report to this file."
    ),
    continue_on_error: Optional[bool] = typer.Option(
        None,
        "--continue-on-error/--stop-on-error",
        help="Override the plan's continueOnError setting.",
    ),
):
    """Executes an execution plan and prints progress, results and a summary."""
    plan_config = load_plan_config(plan_path)
    settings = plan_config.global_settings
    apply_plan_log_level(settings.log_level)

    plan = plan_config.execution_plan
    if continue_on_error is not None:
        plan = plan.model_copy(update={"continue_on_error": continue_on_error})

    resolver = SettingsResolver()
    catalog = _load_catalog(resolver, commands_file)
    runner = SqlCommandRunner(
        resolver.resolve_connection_string(connection),
        catalog,
        timeout=settings.timeout,
    )
    reporter = RichConsoleReporter(
        console=console, timestamp_format=to_strftime(settings.timestamp_format)
    )
    engine = ExecutionEngine(runner, reporter)

    result = asyncio.run(engine.run(plan))

    if report_path:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(
            result.model_dump_json(indent=2, by_alias=True), encoding="utf-8"
        )
        console.print(f"Report written to [dim]{escape(str(report_path))}[/dim]")

    if not result.success:
        raise typer.Exit(code=1)


@app.command("commands")
@handle_exceptions
def list_commands(
    commands_file: Optional[Path] = typer.Option(
        None, "--commands", "-c", help="Command catalog file. Defaults to the one in appsettings."
    ),
):
    """Lists the commands available in the command catalog."""
    catalog = _load_catalog(SettingsResolver(), commands_file)

    table = Table(title="Available SQL Commands", box=box.ROUNDED, title_justify="left")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Parameters", overflow="fold")
    for command in catalog.commands:
        table.add_row(
            escape(command.name),
            command.type,
            escape(", ".join(f"{p.name}:{p.type}" for p in command.parameters)),
        )
    console.print(table)


def collect_plan_problems(
    plan_config: ExecutionPlanConfig, catalog: Optional[CommandsConfig]
) -> List[str]:
    """
    Statically checks a plan: every parameter spec must parse and, when a
    catalog is given, every enabled step must name a known command and
    declare all of its required parameters.
    """
    problems: List[str] = []
    for index, step in enumerate(plan_config.execution_plan.enabled_steps(), start=1):
        label = f"Step {index} ({step.command_name})"
        try:
            step.parameter_specs()
        except PlanValidationError as e:
            problems.append(f"{label}: {e}")

        if catalog is None:
            continue
        command = catalog.get(step.command_name)
        if command is None:
            problems.append(f"{label}: command not found in catalog.")
            continue
        missing = [p.name for p in command.parameters if p.name not in step.parameters]
        if missing:
            problems.append(f"{label}: missing parameters {', '.join(missing)}.")
    return problems


@app.command()
@handle_exceptions
def validate(
    plan_path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="Path to the execution plan (.json or .yaml)."
    ),
    commands_file: Optional[Path] = typer.Option(
        None, "--commands", "-c", help="Also check steps against this command catalog."
    ),
):
    """Validates a plan without connecting to the database."""
    plan_config = load_plan_config(plan_path)
    catalog = _load_catalog(SettingsResolver(), commands_file) if commands_file else None
    plan = plan_config.execution_plan

    table = Table(
        title=f"Plan: {escape(plan.name)}", box=box.ROUNDED, title_justify="left"
    )
    table.add_column("#", justify="right")
    table.add_column("Command", style="cyan")
    table.add_column("Parameters")
    table.add_column("Stores As")
    for index, step in enumerate(plan.enabled_steps(), start=1):
        mapping = step.output_mapping
        table.add_row(
            str(index),
            escape(step.command_name),
            escape(", ".join(step.parameters)),
            escape(mapping.result_key) if mapping.store_results else "",
        )
    console.print(table)

    skipped = len(plan.commands) - len(plan.enabled_steps())
    if skipped:
        console.print(f"[dim]{skipped} disabled step(s) will be skipped.[/dim]")

    problems = collect_plan_problems(plan_config, catalog)
    if problems:
        for problem in problems:
            console.print(f"[red]❌ {escape(problem)}[/red]")
        raise typer.Exit(code=1)
    console.print("[bold green]✓ Plan is valid.[/bold green]")
