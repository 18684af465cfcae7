from datetime import datetime
from typing import List, Optional

from pydantic import Field, computed_field

from .plan_schemas import CamelModel


def _seconds_between(start: Optional[datetime], end: Optional[datetime]) -> float:
    if start is None or end is None:
        return 0.0
    return (end - start).total_seconds()


class CommandResult(CamelModel):
    """The outcome of one attempted step."""

    command_name: str
    success: bool = False
    rows_affected: int = 0
    error_message: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @computed_field
    @property
    def duration_seconds(self) -> float:
        return _seconds_between(self.start_time, self.end_time)


class ExecutionResult(CamelModel):
    """The report of one plan run. Steps appear in the order they were attempted."""

    plan_name: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    command_results: List[CommandResult] = Field(default_factory=list)

    @computed_field
    @property
    def duration_seconds(self) -> float:
        return _seconds_between(self.start_time, self.end_time)

    @computed_field
    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.command_results if r.success)

    @computed_field
    @property
    def failed(self) -> int:
        return sum(1 for r in self.command_results if not r.success)

    @property
    def success(self) -> bool:
        return self.failed == 0
