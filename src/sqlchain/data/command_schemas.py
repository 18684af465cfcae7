from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class CaseInsensitiveModel(BaseModel):
    """Matches catalog keys regardless of case ("Name", "name", "NAME")."""

    @model_validator(mode="before")
    @classmethod
    def _lower_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                (k.lower() if isinstance(k, str) else k): v for k, v in data.items()
            }
        return data


class SqlParameterConfig(CaseInsensitiveModel):
    """A parameter a catalog command requires, with its declared database type."""

    name: str = Field(..., min_length=1)
    type: str = Field(
        ...,
        description="int, string, datetime, decimal, bit, bigint or uniqueidentifier.",
    )


class SqlCommandConfig(CaseInsensitiveModel):
    """A named SQL command in the command catalog."""

    name: str = Field(..., min_length=1)
    type: Literal["query", "nonquery", "storedprocedure"] = Field(
        "query",
        description="'query' returns rows; 'nonquery' and 'storedprocedure' return a row count.",
    )
    sql: str = Field(..., min_length=1)
    parameters: List[SqlParameterConfig] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, value):
        return value.lower() if isinstance(value, str) else value

    @property
    def returns_rows(self) -> bool:
        return self.type == "query"


class CommandsConfig(CaseInsensitiveModel):
    """The root model of a commands catalog file."""

    commands: List[SqlCommandConfig] = Field(default_factory=list)

    def get(self, name: str) -> Optional[SqlCommandConfig]:
        return next((c for c in self.commands if c.name == name), None)
