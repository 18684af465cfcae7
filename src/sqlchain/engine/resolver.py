from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import structlog

from ..data.plan_schemas import (
    AggregateParameter,
    ExpressionParameter,
    FromPreviousCommandParameter,
    ParameterSpec,
    StaticParameter,
    parse_parameter_spec,
)
from . import expression
from .exceptions import ConversionError, PlanValidationError, ResultLookupError
from .results_store import ResultsStore

if TYPE_CHECKING:
    from ..reporting import Reporter

logger = structlog.get_logger(__name__)

TRANSFORMS: Dict[str, Callable[[str], str]] = {
    "uppercase": str.upper,
    "lowercase": str.lower,
    "trim": str.strip,
    "trimstart": str.lstrip,
    "trimend": str.rstrip,
    "identity": lambda value: value,
}


def apply_transform(value: str, transform: str) -> str:
    """Applies a named string transform. Unknown names leave the value unchanged."""
    func = TRANSFORMS.get(transform.lower())
    if func is None:
        logger.debug("resolver.transform.unknown", transform=transform)
        return value
    return func(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _to_decimal(value: Any, source: str) -> Decimal:
    if isinstance(value, bool):
        raise ConversionError(f"Value '{value}' in {source} is not numeric.")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ConversionError(f"Value '{value}' in {source} is not numeric.") from None
    if not number.is_finite():
        raise ConversionError(f"Value '{value}' in {source} is not a finite number.")
    return number


def _ordered_extreme(values: List[Any], pick: Callable) -> Any:
    """min/max using numeric order for numeric columns and lexical order otherwise."""
    if all(_is_number(v) for v in values):
        return pick(values)
    if len({type(v) for v in values}) == 1:
        try:
            return pick(values)
        except TypeError:
            pass
    return pick(values, key=str)


class ParameterResolver:
    """
    Converts declared parameter specs into concrete values, reading prior
    results from a ResultsStore. The store is never modified here.
    """

    def __init__(self, reporter: Optional["Reporter"] = None):
        self.reporter = reporter

    def resolve_all(
        self, parameters: Dict[str, Any], store: ResultsStore
    ) -> Dict[str, Any]:
        """Resolves every parameter of a step, in declaration order."""
        return {
            name: self.resolve(name, raw, store) for name, raw in parameters.items()
        }

    def resolve(self, param_name: str, spec: Any, store: ResultsStore) -> Any:
        """
        Resolves one parameter.

        Args:
            param_name: The parameter name, used in messages.
            spec: A ParameterSpec, or the raw plan value to parse into one.
            store: The results captured so far in this run.

        Raises:
            PlanValidationError: Unknown kind or aggregate function, empty expression.
            ResultLookupError: A referenced result, row or column does not exist.
            ConversionError: A numeric aggregate met a non-numeric value.
        """
        spec = parse_parameter_spec(param_name, spec)

        if isinstance(spec, StaticParameter):
            return spec.value
        if isinstance(spec, FromPreviousCommandParameter):
            return self._resolve_from_previous(param_name, spec, store)
        if isinstance(spec, ExpressionParameter):
            return self._resolve_expression(param_name, spec, store)
        if isinstance(spec, AggregateParameter):
            return self._resolve_aggregate(param_name, spec, store)
        raise PlanValidationError(
            f"Unknown parameter type: {getattr(spec, 'type', type(spec).__name__)}"
        )

    def _announce(self, param_name: str, source: str, value: Any):
        logger.debug(
            "resolver.parameter.resolved",
            parameter=param_name,
            source=source,
            value=value,
        )
        if self.reporter:
            self.reporter.parameter_resolved(param_name, source, value)

    def _lookup_cell(
        self, store: ResultsStore, command: str, column: str, row: int
    ) -> Any:
        table = store.get(command)
        if table.row_count == 0:
            raise ResultLookupError(f"No rows in stored results for command: {command}")
        if row >= table.row_count:
            raise ResultLookupError(
                f"SourceRow {row} is out of range for command: {command}. Available rows: {table.row_count}"
            )
        if not table.has_column(column):
            raise ResultLookupError(
                f"Column '{column}' not found in results from command: {command}"
            )
        return table.rows[row][column]

    def _resolve_from_previous(
        self,
        param_name: str,
        spec: FromPreviousCommandParameter,
        store: ResultsStore,
    ) -> Any:
        value = self._lookup_cell(
            store, spec.source_command, spec.source_column, spec.source_row
        )
        if spec.transform and value is not None:
            value = apply_transform(str(value), spec.transform)

        self._announce(
            param_name,
            f"{spec.source_command}.{spec.source_column}[{spec.source_row}]",
            value,
        )
        return value

    def _resolve_expression(
        self, param_name: str, spec: ExpressionParameter, store: ResultsStore
    ) -> str:
        if not spec.expression:
            raise PlanValidationError(
                f"Expression cannot be empty (parameter '{param_name}')."
            )

        def lookup(placeholder: expression.Placeholder) -> Any:
            return self._lookup_cell(
                store, placeholder.command, placeholder.column, placeholder.row
            )

        value = expression.evaluate(spec.expression, lookup)
        self._announce(param_name, spec.expression, value)
        return value

    def _resolve_aggregate(
        self, param_name: str, spec: AggregateParameter, store: ResultsStore
    ) -> Any:
        table = store.get(spec.source_command)
        if not table.has_column(spec.source_column):
            raise ResultLookupError(
                f"Column '{spec.source_column}' not found in results from command: {spec.source_command}"
            )

        source = f"{spec.source_command}.{spec.source_column}"
        function = spec.aggregate_function.lower()
        values = [v for v in table.column_values(spec.source_column) if v is not None]

        if function == "count":
            result: Any = len(values)
        elif function in ("sum", "avg"):
            numbers = [_to_decimal(v, source) for v in values]
            if function == "sum":
                result = sum(numbers, Decimal(0))
            elif not numbers:
                raise ResultLookupError(
                    f"Cannot compute AVG({source}): no non-null values."
                )
            else:
                result = sum(numbers, Decimal(0)) / len(numbers)
        elif function in ("min", "max"):
            if values:
                result = _ordered_extreme(values, min if function == "min" else max)
            else:
                result = None
        else:
            raise PlanValidationError(
                f"Unknown aggregate function: {spec.aggregate_function}"
            )

        self._announce(param_name, f"{function.upper()}({source})", result)
        return result
