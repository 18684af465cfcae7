from abc import ABC, abstractmethod
from typing import Any, Dict, List, Union

from ...data.command_schemas import SqlCommandConfig
from ..table import TabularResult


class CommandRunner(ABC):
    """The "contract" between the execution engine and whatever executes commands."""

    @abstractmethod
    async def execute(
        self, command_name: str, parameters: Dict[str, Any]
    ) -> Union[TabularResult, int]:
        """
        Executes a named command.

        Returns:
            A TabularResult for commands that produce rows, otherwise the
            number of rows affected. Never both.

        Raises:
            CommandNotFoundError: If `command_name` is unknown.
            MissingParameterError: If a required parameter is not supplied.
            RunnerError: For any other execution failure.
        """
        raise NotImplementedError

    @abstractmethod
    def list_commands(self) -> List[SqlCommandConfig]:
        raise NotImplementedError
