import json
from pathlib import Path
from typing import Any, Union

import structlog
import yaml
from pydantic import ValidationError

from ...data.command_schemas import CommandsConfig
from ...data.plan_schemas import ExecutionPlanConfig
from ..exceptions import PlanValidationError

logger = structlog.get_logger(__name__)


def read_document(path: Union[str, Path]) -> Any:
    """Reads a JSON or YAML document, choosing the parser by file extension."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    with open(path, "r", encoding="utf-8-sig") as f:
        content = f.read()
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            return yaml.safe_load(content)
        return json.loads(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise PlanValidationError(f"Could not parse '{path.name}': {e}") from e


def load_commands_config(path: Union[str, Path]) -> CommandsConfig:
    """Loads and validates a command catalog (commands.json or .yaml)."""
    log = logger.bind(path=str(path))
    raw = read_document(path)
    try:
        config = CommandsConfig.model_validate(raw or {})
    except ValidationError as e:
        raise PlanValidationError(f"Invalid schema in '{Path(path).name}': {e}") from e

    names = [c.name for c in config.commands]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise PlanValidationError(
            f"Duplicate command names in '{Path(path).name}': {', '.join(duplicates)}"
        )
    if not config.commands:
        raise PlanValidationError(f"No commands found in '{Path(path).name}'.")

    log.info("catalog.loaded", command_count=len(config.commands))
    return config


def load_plan_config(path: Union[str, Path]) -> ExecutionPlanConfig:
    """Loads and validates an execution plan file."""
    log = logger.bind(path=str(path))
    raw = read_document(path)
    try:
        config = ExecutionPlanConfig.model_validate(raw or {})
    except ValidationError as e:
        raise PlanValidationError(f"Invalid schema in '{Path(path).name}': {e}") from e

    log.info(
        "plan.loaded",
        plan_name=config.execution_plan.name,
        step_count=len(config.execution_plan.commands),
    )
    return config
