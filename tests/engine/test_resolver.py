from decimal import Decimal

import pytest
from pytest_mock import MockerFixture

from conftest import FakeRunner
from sqlchain.data.plan_schemas import ExecutionPlan, FromPreviousCommandParameter
from sqlchain.engine.exceptions import (
    ConversionError,
    PlanValidationError,
    ResultLookupError,
)
from sqlchain.engine.executor import ExecutionEngine
from sqlchain.engine.resolver import ParameterResolver, apply_transform
from sqlchain.engine.results_store import ResultsStore
from sqlchain.engine.table import TabularResult
from sqlchain.reporting import Reporter


@pytest.fixture
def resolver() -> ParameterResolver:
    return ParameterResolver()


def from_previous(command, column, row=0, transform=""):
    return {
        "type": "fromPreviousCommand",
        "sourceCommand": command,
        "sourceColumn": column,
        "sourceRow": row,
        "transform": transform,
    }


def aggregate(command, column, function):
    return {
        "type": "aggregate",
        "sourceCommand": command,
        "sourceColumn": column,
        "aggregateFunction": function,
    }


# --- static ---


@pytest.mark.parametrize("literal", [42, "abc", 1.5, True, None])
def test_bare_literals_pass_through(resolver, populated_store, literal):
    assert resolver.resolve("p", literal, populated_store) == literal


def test_explicit_static_parameter(resolver, populated_store):
    assert resolver.resolve("p", {"type": "Static", "value": "x"}, populated_store) == "x"


def test_object_without_type_is_passed_as_json_text(resolver, populated_store):
    assert resolver.resolve("p", {"a": 1}, populated_store) == '{"a": 1}'


# --- fromPreviousCommand ---


def test_from_previous_reads_the_requested_cell(resolver, populated_store):
    value = resolver.resolve("p", from_previous("users", "Name", 1), populated_store)
    assert value == "bar"


def test_from_previous_applies_uppercase_transform(resolver, populated_store):
    spec = from_previous("users", "Name", 0, transform="uppercase")
    assert resolver.resolve("p", spec, populated_store) == "FOO"


def test_from_previous_accepts_a_typed_spec(resolver, populated_store):
    spec = FromPreviousCommandParameter(source_command="users", source_column="Id")
    assert resolver.resolve("p", spec, populated_store) == 1


def test_null_cell_skips_the_transform(resolver, populated_store):
    spec = from_previous("users", "Email", 1, transform="uppercase")
    assert resolver.resolve("p", spec, populated_store) is None


def test_unknown_transform_is_identity(resolver, populated_store):
    spec = from_previous("users", "Name", 0, transform="reverse")
    assert resolver.resolve("p", spec, populated_store) == "foo"


def test_transform_stringifies_non_text_values(resolver, populated_store):
    spec = from_previous("users", "Id", 1, transform="trim")
    assert resolver.resolve("p", spec, populated_store) == "2"


@pytest.mark.parametrize(
    "transform, expected",
    [
        ("uppercase", "  MIXED CASE  "),
        ("lowercase", "  mixed case  "),
        ("trim", "MiXed Case"),
        ("trimStart", "MiXed Case  "),
        ("TRIMEND", "  MiXed Case"),
        ("identity", "  MiXed Case  "),
    ],
)
def test_apply_transform(transform, expected):
    assert apply_transform("  MiXed Case  ", transform) == expected


def test_from_previous_missing_result_key(resolver, populated_store):
    with pytest.raises(ResultLookupError, match="No stored results found for command: missing"):
        resolver.resolve("p", from_previous("missing", "Id"), populated_store)


def test_lookup_errors_are_lookup_errors(resolver, populated_store):
    with pytest.raises(LookupError):
        resolver.resolve("p", from_previous("missing", "Id"), populated_store)


def test_from_previous_empty_result(resolver, populated_store):
    with pytest.raises(ResultLookupError, match="No rows"):
        resolver.resolve("p", from_previous("empty", "Id"), populated_store)


def test_from_previous_row_out_of_range(resolver, populated_store):
    with pytest.raises(ResultLookupError, match="out of range"):
        resolver.resolve("p", from_previous("users", "Name", 2), populated_store)


def test_from_previous_missing_column(resolver, populated_store):
    with pytest.raises(ResultLookupError, match="Column 'Phone' not found"):
        resolver.resolve("p", from_previous("users", "Phone"), populated_store)


def test_negative_row_is_rejected(resolver, populated_store):
    with pytest.raises(PlanValidationError):
        resolver.resolve("p", from_previous("users", "Name", -1), populated_store)


# --- expression ---


def test_expression_substitutes_placeholders(resolver, populated_store):
    spec = {"type": "expression", "expression": "{users.Name[0]}-{users.Name[1]}"}
    assert resolver.resolve("p", spec, populated_store) == "foo-bar"


def test_expression_concat(resolver, populated_store):
    spec = {"type": "expression", "expression": "CONCAT('a', 'b', 'c')"}
    assert resolver.resolve("p", spec, populated_store) == "abc"


def test_expression_concat_with_placeholders(resolver, populated_store):
    spec = {"type": "expression", "expression": "CONCAT('id-', {users.Id[1]})"}
    assert resolver.resolve("p", spec, populated_store) == "id-2"


def test_expression_null_cell_becomes_empty_text(resolver, populated_store):
    spec = {"type": "expression", "expression": "<{users.Email[1]}>"}
    assert resolver.resolve("p", spec, populated_store) == "<>"


def test_expression_missing_reference_fails(resolver, populated_store):
    spec = {"type": "expression", "expression": "{users.Name[5]}"}
    with pytest.raises(ResultLookupError):
        resolver.resolve("p", spec, populated_store)


def test_empty_expression_is_invalid(resolver, populated_store):
    with pytest.raises(PlanValidationError, match="Expression cannot be empty"):
        resolver.resolve("p", {"type": "expression"}, populated_store)


# --- aggregate ---


def test_count_ignores_nulls(resolver, populated_store):
    assert resolver.resolve("p", aggregate("orders", "Amount", "count"), populated_store) == 3


def test_count_over_empty_result_is_zero(resolver, populated_store):
    assert resolver.resolve("p", aggregate("empty", "Id", "COUNT"), populated_store) == 0


def test_sum_and_avg_are_decimal(resolver, populated_store):
    total = resolver.resolve("p", aggregate("orders", "Amount", "sum"), populated_store)
    mean = resolver.resolve("p", aggregate("orders", "Amount", "avg"), populated_store)
    assert total == Decimal(15)
    assert mean == Decimal(5)
    assert isinstance(total, Decimal)


def test_sum_of_only_nulls_is_zero(resolver, populated_store):
    assert resolver.resolve("p", aggregate("nulls", "Value", "sum"), populated_store) == 0


def test_numeric_min_and_max(resolver, populated_store):
    assert resolver.resolve("p", aggregate("orders", "Amount", "min"), populated_store) == 3
    assert resolver.resolve("p", aggregate("orders", "Amount", "Max"), populated_store) == 7


def test_text_min_and_max_use_lexical_order(resolver, populated_store):
    assert resolver.resolve("p", aggregate("orders", "Code", "min"), populated_store) == "a"
    assert resolver.resolve("p", aggregate("orders", "Code", "max"), populated_store) == "c"


def test_avg_over_no_values_fails(resolver, populated_store):
    with pytest.raises(ResultLookupError, match="no non-null values"):
        resolver.resolve("p", aggregate("nulls", "Value", "avg"), populated_store)


@pytest.mark.parametrize("function", ["min", "max"])
def test_min_and_max_over_no_values_are_null(resolver, populated_store, function):
    assert resolver.resolve("p", aggregate("nulls", "Value", function), populated_store) is None


@pytest.mark.asyncio
async def test_null_min_is_passed_to_the_command(populated_store):
    runner = FakeRunner()
    plan = ExecutionPlan.model_validate(
        {
            "commands": [
                {
                    "commandName": "Use",
                    "parameters": {"@Min": aggregate("nulls", "Value", "min")},
                }
            ]
        }
    )

    report = await ExecutionEngine(runner).run(plan, populated_store)

    assert report.success
    assert runner.calls == [("Use", {"@Min": None})]


def test_sum_over_text_is_a_conversion_error(resolver, populated_store):
    with pytest.raises(ConversionError, match="abc"):
        resolver.resolve("p", aggregate("mixed", "Value", "sum"), populated_store)


def test_unknown_aggregate_function(resolver, populated_store):
    with pytest.raises(PlanValidationError, match="Unknown aggregate function: median"):
        resolver.resolve("p", aggregate("orders", "Amount", "median"), populated_store)


def test_aggregate_missing_column(resolver, populated_store):
    with pytest.raises(ResultLookupError, match="Column 'Tax' not found"):
        resolver.resolve("p", aggregate("orders", "Tax", "sum"), populated_store)


# --- dispatch ---


def test_unknown_parameter_kind(resolver, populated_store):
    with pytest.raises(PlanValidationError, match="Unknown parameter type: inputKey"):
        resolver.resolve("p", {"type": "inputKey", "key": "x"}, populated_store)


def test_resolve_all_keeps_declaration_order(resolver, populated_store):
    resolved = resolver.resolve_all(
        {"b": 1, "a": from_previous("users", "Name"), "c": "x"}, populated_store
    )
    assert list(resolved) == ["b", "a", "c"]
    assert resolved == {"b": 1, "a": "foo", "c": "x"}


def test_resolution_does_not_modify_the_store(resolver, populated_store):
    before = list(populated_store)
    resolver.resolve("p", aggregate("orders", "Amount", "sum"), populated_store)
    assert list(populated_store) == before


def test_resolved_values_are_reported(populated_store, mocker: MockerFixture):
    reporter = mocker.MagicMock(spec=Reporter)
    resolver = ParameterResolver(reporter)

    resolver.resolve("UserName", from_previous("users", "Name", 1), populated_store)
    resolver.resolve("Literal", 5, ResultsStore())

    reporter.parameter_resolved.assert_called_once_with(
        "UserName", "users.Name[1]", "bar"
    )


def test_repeated_column_name_reads_the_first_column(resolver):
    store = ResultsStore()
    store.store(
        "joined",
        TabularResult(name="GetJoined", columns=["Id", "Id"], rows=[(1, 2)]),
    )
    assert resolver.resolve("p", from_previous("joined", "Id"), store) == 1
