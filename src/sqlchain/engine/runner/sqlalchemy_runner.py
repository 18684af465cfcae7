import asyncio
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Tuple, Union

import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.sql.elements import TextClause
from sqlalchemy.types import (
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    Numeric,
    TypeEngine,
    Unicode,
    Uuid,
)

from ...data.command_schemas import CommandsConfig, SqlCommandConfig
from ...state import APP_STATE
from ..exceptions import (
    CommandExecutionError,
    CommandNotFoundError,
    MissingParameterError,
    RunnerError,
    UnsupportedParameterTypeError,
)
from ..table import TabularResult
from .base import CommandRunner

logger = structlog.get_logger(__name__)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
        raise ValueError(f"'{value}' is not a boolean")
    return bool(value)


def _to_datetime(value: Any) -> datetime:
    return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))


def _to_uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


# Declared type name -> (SQLAlchemy type factory, value coercion)
PARAMETER_TYPES: Dict[str, Tuple[Callable[[], TypeEngine], Callable[[Any], Any]]] = {
    "int": (Integer, int),
    "string": (Unicode, str),
    "datetime": (DateTime, _to_datetime),
    "decimal": (lambda: Numeric(asdecimal=True), lambda v: Decimal(str(v))),
    "bit": (Boolean, _to_bool),
    "bigint": (BigInteger, int),
    "uniqueidentifier": (Uuid, _to_uuid),
}


def bind_name(parameter_name: str) -> str:
    """Catalog names may carry a SQL Server style '@' prefix; bind names never do."""
    return parameter_name.lstrip("@")


class SqlCommandRunner(CommandRunner):
    """
    Executes catalog commands against any SQLAlchemy-compatible database using
    its asyncio interface.

    Every call creates its own engine and connection and disposes of them
    afterwards.
    """

    def __init__(
        self,
        connection_url: str,
        catalog: CommandsConfig,
        timeout: float = 30,
    ):
        self.connection_url = connection_url
        self.catalog = catalog
        self.timeout = timeout

    def list_commands(self) -> List[SqlCommandConfig]:
        return list(self.catalog.commands)

    def _get_command(self, command_name: str) -> SqlCommandConfig:
        command = self.catalog.get(command_name)
        if command is None:
            raise CommandNotFoundError(
                f"Command '{command_name}' not found in configuration."
            )
        return command

    def _build_statement(
        self, command: SqlCommandConfig, parameters: Dict[str, Any]
    ) -> Tuple[TextClause, Dict[str, Any]]:
        """
        Builds the executable statement and its bind values. Only parameters
        declared by the command are bound; each must be present in `parameters`.
        """
        binds = []
        values: Dict[str, Any] = {}
        for param in command.parameters:
            if param.name not in parameters:
                raise MissingParameterError(
                    f"Required parameter '{param.name}' not provided for command '{command.name}'."
                )
            type_entry = PARAMETER_TYPES.get(param.type.lower())
            if type_entry is None:
                raise UnsupportedParameterTypeError(
                    f"Unsupported parameter type: {param.type}. Supported types are: "
                    f"{', '.join(PARAMETER_TYPES)}."
                )
            type_factory, coerce = type_entry
            name = bind_name(param.name)
            raw_value = parameters[param.name]
            try:
                values[name] = None if raw_value is None else coerce(raw_value)
            except (ValueError, TypeError, ArithmeticError) as e:
                raise CommandExecutionError(
                    f"Value '{raw_value}' for parameter '{param.name}' is not a valid {param.type}: {e}"
                ) from e
            binds.append(bindparam(name, type_=type_factory()))

        if command.type == "storedprocedure":
            arguments = ", ".join(
                f"@{bind_name(p.name)} = :{bind_name(p.name)}"
                for p in command.parameters
            )
            sql = f"EXEC {command.sql} {arguments}".rstrip()
        else:
            sql = command.sql

        stmt = text(sql)
        if binds:
            try:
                stmt = stmt.bindparams(*binds)
            except ArgumentError as e:
                raise CommandExecutionError(
                    f"Command '{command.name}' does not match its declared parameters: {e}"
                ) from e
        return stmt, values

    async def _run(
        self,
        engine: AsyncEngine,
        command: SqlCommandConfig,
        stmt: TextClause,
        values: Dict[str, Any],
    ) -> Union[TabularResult, int]:
        async with engine.connect() as conn:
            result = await conn.execute(stmt, values)
            if command.returns_rows:
                if result.returns_rows:
                    columns = list(result.keys())
                    rows = [tuple(row) for row in result.all()]
                else:
                    columns, rows = [], []
                await conn.commit()
                return TabularResult(name=command.name, columns=columns, rows=rows)

            row_count = result.rowcount
            await conn.commit()
            return max(row_count, 0)

    async def execute(
        self, command_name: str, parameters: Dict[str, Any]
    ) -> Union[TabularResult, int]:
        command = self._get_command(command_name)
        stmt, values = self._build_statement(command, parameters or {})
        log = logger.bind(command=command_name, command_type=command.type)
        log.info("runner.execute.begin", params=values)

        try:
            engine = create_async_engine(self.connection_url)
        except Exception as e:
            raise CommandExecutionError(
                f"Could not create a database engine for command '{command_name}': {e}"
            ) from e

        try:
            outcome = await asyncio.wait_for(
                self._run(engine, command, stmt, values), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            log.error("runner.execute.timeout", timeout=self.timeout)
            raise CommandExecutionError(
                f"Command '{command_name}' did not finish within {self.timeout} seconds."
            ) from None
        except RunnerError:
            raise
        except Exception as e:
            log.error(
                "runner.execute.failed", error=str(e), exc_info=APP_STATE.verbose_mode
            )
            raise CommandExecutionError(
                f"Command '{command_name}' failed: {e}"
            ) from e
        finally:
            await engine.dispose()

        if isinstance(outcome, TabularResult):
            log.info("runner.execute.success", row_count=outcome.row_count)
        else:
            log.info("runner.execute.success_no_rows", rows_affected=outcome)
        return outcome
