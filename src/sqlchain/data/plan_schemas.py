import json
from typing import Any, Dict, List, Literal, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..engine.exceptions import PlanValidationError


class CamelModel(BaseModel):
    """Accepts both the camelCase keys of plan files and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Parameter specifications ---


def normalize_literal(value: Any) -> Any:
    """
    Normalizes a plan literal to str, int, float, bool or None.
    Objects and arrays are passed on as their JSON text.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return json.dumps(value)


class StaticParameter(CamelModel):
    """A literal value, passed to the command as-is."""

    type: Literal["static"] = "static"
    value: Any = None

    @field_validator("value", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return normalize_literal(value)


class FromPreviousCommandParameter(CamelModel):
    """A single cell read from a stored result, optionally transformed."""

    type: Literal["frompreviouscommand"] = "frompreviouscommand"
    source_command: str = Field(
        ..., min_length=1, description="Result key of the stored result to read."
    )
    source_column: str = ""
    source_row: int = Field(0, ge=0)
    transform: str = Field(
        "",
        description="uppercase, lowercase, trim, trimStart, trimEnd or identity. Unknown names are ignored.",
    )


class ExpressionParameter(CamelModel):
    """Text with `{command.column[row]}` placeholders and an optional outer CONCAT()."""

    type: Literal["expression"] = "expression"
    expression: str = ""


class AggregateParameter(CamelModel):
    """A scalar computed over one column of a stored result."""

    type: Literal["aggregate"] = "aggregate"
    source_command: str = Field(..., min_length=1)
    source_column: str = ""
    aggregate_function: str = Field("", description="count, sum, avg, min or max.")


ParameterSpec = Union[
    StaticParameter,
    FromPreviousCommandParameter,
    ExpressionParameter,
    AggregateParameter,
]

PARAMETER_KINDS: Dict[str, Type[BaseModel]] = {
    "static": StaticParameter,
    "frompreviouscommand": FromPreviousCommandParameter,
    "expression": ExpressionParameter,
    "aggregate": AggregateParameter,
}


def parse_parameter_spec(name: str, raw: Any) -> ParameterSpec:
    """
    Turns a raw plan parameter value into a typed ParameterSpec.

    A bare literal (anything that is not an object carrying a `type` field)
    becomes a StaticParameter. Objects with a `type` are dispatched on it,
    case-insensitively.

    Raises:
        PlanValidationError: If the kind is unknown or its fields are invalid.
    """
    if isinstance(raw, BaseModel):
        return raw
    if not isinstance(raw, dict) or "type" not in raw:
        return StaticParameter(value=raw)

    kind = str(raw["type"])
    model_cls = PARAMETER_KINDS.get(kind.lower())
    if model_cls is None:
        raise PlanValidationError(f"Unknown parameter type: {kind}")
    try:
        return model_cls.model_validate({**raw, "type": kind.lower()})
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise PlanValidationError(
            f"Invalid '{kind}' parameter '{name}': {details}"
        ) from e


# --- Plan structure ---


class OutputOptions(CamelModel):
    display_results: bool = True
    max_rows: int = Field(100, ge=0)
    export_to_file: bool = False
    export_path: str = ""


class OutputMapping(CamelModel):
    store_results: bool = False
    result_key: str = ""


class CommandStep(CamelModel):
    """One command invocation within a plan."""

    command_name: str = Field(..., min_length=1)
    enabled: bool = True
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=dict,
        description="Raw parameter values; each is parsed into a ParameterSpec when the step runs.",
    )
    output_options: OutputOptions = Field(default_factory=OutputOptions)
    output_mapping: OutputMapping = Field(default_factory=OutputMapping)

    def parameter_specs(self) -> Dict[str, ParameterSpec]:
        return {
            name: parse_parameter_spec(name, raw)
            for name, raw in self.parameters.items()
        }


class ExecutionPlan(CamelModel):
    name: str = ""
    description: str = ""
    continue_on_error: bool = False
    output_results: bool = True
    commands: List[CommandStep] = Field(default_factory=list)

    def enabled_steps(self) -> List[CommandStep]:
        return [step for step in self.commands if step.enabled]


class GlobalSettings(CamelModel):
    timeout: int = Field(30, gt=0, description="Seconds allowed for each command.")
    log_level: str = "Info"
    timestamp_format: str = "%Y-%m-%d %H:%M:%S"


class ExecutionPlanConfig(CamelModel):
    """The root model of a plan file."""

    execution_plan: ExecutionPlan
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)
