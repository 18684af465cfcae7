from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from sqlchain import config as sqlchain_config
from sqlchain import utils
from sqlchain.engine.results_store import ResultsStore
from sqlchain.engine.runner.base import CommandRunner
from sqlchain.engine.table import TabularResult


class FakeRunner(CommandRunner):
    """
    An in-memory CommandRunner. `outcomes` maps a command name to what the
    command returns: a TabularResult, a row count, or an exception to raise.
    Unknown commands return 0 rows affected.
    """

    def __init__(self, outcomes: Optional[Dict[str, Any]] = None):
        self.outcomes = outcomes or {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def execute(self, command_name, parameters):
        self.calls.append((command_name, dict(parameters)))
        outcome = self.outcomes.get(command_name, 0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def list_commands(self):
        return []

    @property
    def called_commands(self) -> List[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def isolated_sqlchain_home(tmp_path: Path, monkeypatch) -> Path:
    """
    Provides an empty home directory for settings, catalogs and .env files,
    with the connection string environment variable cleared.
    """
    home = tmp_path / "sqlchain-home"
    home.mkdir()
    monkeypatch.setattr(utils, "SQLCHAIN_HOME", home)
    monkeypatch.setattr(sqlchain_config, "SQLCHAIN_HOME", home)
    monkeypatch.delenv(sqlchain_config.CONNECTION_ENV_VAR, raising=False)
    yield home


@pytest.fixture
def users_table() -> TabularResult:
    return TabularResult(
        name="GetUsers",
        columns=["Id", "Name", "Email"],
        rows=[(1, "foo", "foo@example.com"), (2, "bar", None)],
    )


@pytest.fixture
def populated_store(users_table: TabularResult) -> ResultsStore:
    """A store with a handful of results covering the usual lookup shapes."""
    store = ResultsStore()
    store.store("users", users_table)
    store.store(
        "orders",
        TabularResult(
            name="GetOrders",
            columns=["OrderId", "Amount", "Code"],
            rows=[(10, 3, "b"), (11, None, "a"), (12, 7, "c"), (13, 5, None)],
        ),
    )
    store.store("empty", TabularResult(name="GetNothing", columns=["Id"], rows=[]))
    store.store(
        "nulls",
        TabularResult(name="GetNulls", columns=["Value"], rows=[(None,), (None,)]),
    )
    store.store(
        "mixed",
        TabularResult(name="GetMixed", columns=["Value"], rows=[("12",), ("abc",)]),
    )
    return store
