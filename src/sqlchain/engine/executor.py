import asyncio
from datetime import datetime
from typing import Optional

import structlog

from ..data.plan_schemas import CommandStep, ExecutionPlan
from ..data.report_schemas import CommandResult, ExecutionResult
from ..reporting import NullReporter, Reporter
from ..state import APP_STATE
from .export import export_to_csv
from .resolver import ParameterResolver
from .results_store import ResultsStore
from .runner.base import CommandRunner
from .table import TabularResult

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now().astimezone()


class ExecutionEngine:
    """
    Runs the enabled steps of an execution plan strictly in declaration
    order, feeding results captured by earlier steps into the parameters of
    later ones.

    Steps never run concurrently: a step may depend on any result stored
    before it.
    """

    def __init__(
        self,
        runner: CommandRunner,
        reporter: Optional[Reporter] = None,
        resolver: Optional[ParameterResolver] = None,
    ):
        self.runner = runner
        self.reporter = reporter or NullReporter()
        self.resolver = resolver or ParameterResolver(self.reporter)

    async def run(
        self, plan: ExecutionPlan, store: Optional[ResultsStore] = None
    ) -> ExecutionResult:
        """
        Executes the plan and returns its report.

        A failing step is recorded and, unless `plan.continue_on_error` is
        set, ends the run. The report is always returned, even when every
        step fails.

        Args:
            plan: The plan to execute.
            store: The results store for this run. A fresh one is created
                when omitted; it is discarded when the run ends.
        """
        store = ResultsStore() if store is None else store
        steps = plan.enabled_steps()
        log = logger.bind(plan_name=plan.name)

        report = ExecutionResult(plan_name=plan.name, start_time=_now())
        log.info(
            "engine.run.begin",
            step_count=len(steps),
            skipped=len(plan.commands) - len(steps),
            continue_on_error=plan.continue_on_error,
        )
        self.reporter.plan_started(plan, len(steps))

        for index, step in enumerate(steps, start=1):
            command_result = await self._execute_step(
                plan, step, index, len(steps), store
            )
            report.command_results.append(command_result)

            if not command_result.success and not plan.continue_on_error:
                log.warning("engine.run.stopped", command=step.command_name)
                self.reporter.run_stopped(step)
                break

        report.end_time = _now()
        log.info(
            "engine.run.complete",
            succeeded=report.succeeded,
            failed=report.failed,
            duration_seconds=report.duration_seconds,
        )
        self.reporter.run_summary(report)
        return report

    async def _execute_step(
        self,
        plan: ExecutionPlan,
        step: CommandStep,
        index: int,
        total: int,
        store: ResultsStore,
    ) -> CommandResult:
        log = logger.bind(command=step.command_name, position=index)
        command_result = CommandResult(command_name=step.command_name, start_time=_now())
        self.reporter.step_started(step, index, total)
        log.info("engine.step.begin")

        try:
            parameters = self.resolver.resolve_all(step.parameters, store)
            self.reporter.parameters_resolved(step, parameters)

            outcome = await self.runner.execute(step.command_name, parameters)

            table = outcome if isinstance(outcome, TabularResult) else None
            command_result.rows_affected = (
                table.row_count if table is not None else int(outcome)
            )
            command_result.success = True

            await self._handle_output(plan, step, table, store)
        except Exception as e:
            command_result.success = False
            command_result.error_message = str(e) or type(e).__name__
            command_result.end_time = _now()
            log.error(
                "engine.step.failed",
                error=command_result.error_message,
                error_type=type(e).__name__,
                exc_info=APP_STATE.verbose_mode,
            )
            self.reporter.step_failed(command_result)
            return command_result

        command_result.end_time = _now()
        log.info("engine.step.success", rows_affected=command_result.rows_affected)
        self.reporter.step_succeeded(command_result)
        return command_result

    async def _handle_output(
        self,
        plan: ExecutionPlan,
        step: CommandStep,
        table: Optional[TabularResult],
        store: ResultsStore,
    ):
        mapping = step.output_mapping
        if mapping.store_results:
            if store.store(mapping.result_key, table):
                self.reporter.results_stored(mapping.result_key)
            else:
                logger.debug(
                    "engine.step.store_skipped",
                    command=step.command_name,
                    result_key=mapping.result_key,
                    has_table=table is not None,
                )

        if table is None:
            return

        options = step.output_options
        if options.display_results and plan.output_results:
            self.reporter.display_results(table, options.max_rows)

        if options.export_to_file and options.export_path:
            await self._export(step, table, options.export_path)

    async def _export(self, step: CommandStep, table: TabularResult, export_path: str):
        """Best-effort export: failures are reported and logged, never raised."""
        try:
            path = await asyncio.to_thread(export_to_csv, table, export_path)
        except (OSError, ValueError) as e:
            logger.error(
                "engine.export.failed",
                command=step.command_name,
                path=export_path,
                error=str(e),
            )
            self.reporter.export_failed(export_path, str(e))
            return
        self.reporter.export_completed(str(path))
