"""
Custom exceptions raised while loading and executing an execution plan.
"""


class SqlChainError(Exception):
    """Base exception for all sqlchain errors."""

    pass


class ConfigurationError(SqlChainError):
    """Application settings are missing or unusable (e.g., no connection string)."""

    pass


class PlanValidationError(SqlChainError):
    """A plan, parameter spec or command catalog is malformed."""

    pass


class ResultLookupError(SqlChainError, LookupError):
    """A referenced command, column or row is not present in the results store."""

    pass


class ConversionError(SqlChainError, ValueError):
    """A stored value could not be converted for a numeric aggregate."""

    pass


class RunnerError(SqlChainError):
    """Base exception for failures raised by a command runner."""

    pass


class CommandNotFoundError(RunnerError):
    """The requested command name is not present in the command catalog."""

    pass


class MissingParameterError(RunnerError):
    """A parameter declared by the command was not supplied."""

    pass


class UnsupportedParameterTypeError(RunnerError):
    """A command parameter declares a type name with no database mapping."""

    pass


class CommandExecutionError(RunnerError):
    """The database rejected the command, or it did not finish in time."""

    pass
