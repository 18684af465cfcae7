from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .data.plan_schemas import CommandStep, ExecutionPlan
from .data.report_schemas import CommandResult, ExecutionResult
from .engine.table import TabularResult

INDENT = "        "


class Reporter(ABC):
    """
    Receives progress events from the execution engine. The engine decides
    what happened; the reporter decides how it looks.
    """

    @abstractmethod
    def plan_started(self, plan: ExecutionPlan, total: int):
        pass

    @abstractmethod
    def step_started(self, step: CommandStep, index: int, total: int):
        pass

    @abstractmethod
    def parameter_resolved(self, name: str, source: str, value: Any):
        pass

    @abstractmethod
    def parameters_resolved(self, step: CommandStep, values: Dict[str, Any]):
        pass

    @abstractmethod
    def results_stored(self, result_key: str):
        pass

    @abstractmethod
    def display_results(self, table: TabularResult, max_rows: int):
        pass

    @abstractmethod
    def export_completed(self, path: str):
        pass

    @abstractmethod
    def export_failed(self, path: str, error: str):
        pass

    @abstractmethod
    def step_succeeded(self, result: CommandResult):
        pass

    @abstractmethod
    def step_failed(self, result: CommandResult):
        pass

    @abstractmethod
    def run_stopped(self, step: CommandStep):
        pass

    @abstractmethod
    def run_summary(self, result: ExecutionResult):
        pass


class NullReporter(Reporter):
    """Discards every event."""

    def plan_started(self, plan, total):
        pass

    def step_started(self, step, index, total):
        pass

    def parameter_resolved(self, name, source, value):
        pass

    def parameters_resolved(self, step, values):
        pass

    def results_stored(self, result_key):
        pass

    def display_results(self, table, max_rows):
        pass

    def export_completed(self, path):
        pass

    def export_failed(self, path, error):
        pass

    def step_succeeded(self, result):
        pass

    def step_failed(self, result):
        pass

    def run_stopped(self, step):
        pass

    def run_summary(self, result):
        pass


def _display(value: Any) -> str:
    return "NULL" if value is None else escape(str(value))


class RichConsoleReporter(Reporter):
    """Renders engine events to the terminal using rich."""

    def __init__(
        self,
        console: Optional[Console] = None,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
    ):
        self.console = console or Console()
        self.timestamp_format = timestamp_format

    def plan_started(self, plan: ExecutionPlan, total: int):
        self.console.print(
            f"\n🚀 [bold magenta]Executing Plan: {escape(plan.name)}[/bold magenta]"
        )
        if plan.description:
            self.console.print(f"   [cyan]{escape(plan.description)}[/cyan]")
        self.console.print()
        self.console.print(f"[cyan]📊 Total commands to execute: {total}[/cyan]\n")

    def step_started(self, step: CommandStep, index: int, total: int):
        self.console.print(
            f"[cyan][{index}/{total}] Executing: [bold]{escape(step.command_name)}[/bold][/cyan]"
        )
        if step.description:
            self.console.print(f"{INDENT}Description: {escape(step.description)}")

    def parameter_resolved(self, name: str, source: str, value: Any):
        self.console.print(
            f"{INDENT}[cyan]📎 Resolved {escape(name)} from {escape(source)} = {_display(value)}[/cyan]",
            highlight=False,
        )

    def parameters_resolved(self, step: CommandStep, values: Dict[str, Any]):
        if values:
            rendered = ", ".join(f"{escape(k)}={_display(v)}" for k, v in values.items())
            self.console.print(f"{INDENT}Parameters: {rendered}", highlight=False)

    def results_stored(self, result_key: str):
        self.console.print(
            f"{INDENT}[green]✓ Results stored as: {escape(result_key)}[/green]"
        )

    def display_results(self, table: TabularResult, max_rows: int):
        if table.row_count == 0:
            self.console.print(f"{INDENT}[yellow]No results returned[/yellow]")
            return

        shown = min(table.row_count, max_rows)
        view = Table(
            title=f"Results ({shown} of {table.row_count} rows)",
            box=box.ROUNDED,
            title_justify="left",
        )
        for column in table.columns:
            view.add_column(str(column), style="cyan", overflow="fold")
        for row in table.rows[:shown]:
            view.add_row(*(_display(v) for v in row))
        self.console.print(view)

        if table.row_count > max_rows:
            self.console.print(
                f"{INDENT}[yellow]... and {table.row_count - max_rows} more rows[/yellow]"
            )

    def export_completed(self, path: str):
        self.console.print(f"{INDENT}[green]✓ Exported to: {escape(path)}[/green]")

    def export_failed(self, path: str, error: str):
        self.console.print(
            f"{INDENT}[red]❌ Export to {escape(path)} failed: {escape(error)}[/red]"
        )

    def step_succeeded(self, result: CommandResult):
        self.console.print(
            f"{INDENT}[green]✓ Success - {result.rows_affected} rows affected[/green]\n"
        )

    def step_failed(self, result: CommandResult):
        self.console.print(f"{INDENT}[red]❌ Error:[/red] {escape(result.error_message)}\n")

    def run_stopped(self, step: CommandStep):
        self.console.print(
            f"\n[bold red]⚠ Execution stopped due to error in command: {escape(step.command_name)}[/bold red]"
        )

    def _format_time(self, value) -> str:
        return value.strftime(self.timestamp_format) if value else "-"

    def run_summary(self, result: ExecutionResult):
        self.console.print()
        self.console.rule("[bold magenta]EXECUTION SUMMARY[/bold magenta]", style="magenta")
        self.console.print(f"Plan Name:        {escape(result.plan_name)}")
        self.console.print(f"Start Time:       {self._format_time(result.start_time)}")
        self.console.print(f"End Time:         {self._format_time(result.end_time)}")
        self.console.print(f"Duration:         {result.duration_seconds:.2f} seconds")
        self.console.print(f"Total Commands:   {len(result.command_results)}")
        self.console.print(f"[green]✓ Successful:     {result.succeeded}[/green]")
        failed_style = "red" if result.failed else "default"
        self.console.print(f"[{failed_style}]❌ Failed:         {result.failed}[/{failed_style}]")

        if result.command_results:
            details = Table(title="Command Details", box=box.SIMPLE, title_justify="left")
            details.add_column("", width=2)
            details.add_column("Command", style="bold")
            details.add_column("Duration", justify="right")
            details.add_column("Rows", justify="right")
            details.add_column("Error", style="red", overflow="fold")
            for cmd in result.command_results:
                details.add_row(
                    "[green]✓[/green]" if cmd.success else "[red]❌[/red]",
                    escape(cmd.command_name),
                    f"{cmd.duration_seconds * 1000:.0f}ms",
                    str(cmd.rows_affected),
                    escape(cmd.error_message),
                )
            self.console.print(details)
        self.console.rule(style="magenta")
