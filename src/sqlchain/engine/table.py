from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence, Union


class Row:
    """A single result row, indexable by column name or by position."""

    __slots__ = ("_values", "_index")

    def __init__(self, values: Sequence[Any], index: Mapping[str, int]):
        self._values = tuple(values)
        self._index = index

    def __getitem__(self, key: Union[str, int]) -> Any:
        if isinstance(key, str):
            try:
                return self._values[self._index[key]]
            except KeyError:
                raise KeyError(f"Column '{key}' is not part of this row.") from None
        return self._values[key]

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Row):
            return self._values == other._values
        if isinstance(other, (tuple, list)):
            return self._values == tuple(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"Row{self._values!r}"

    def as_dict(self) -> Dict[str, Any]:
        return {name: self._values[pos] for name, pos in self._index.items()}


@dataclass
class TabularResult:
    """
    An in-memory, named result set with ordered columns and ordered rows.

    `None` is the null marker for a cell. A column missing from `columns` is
    absent, which is different from a null cell.
    """

    name: str
    columns: List[str]
    rows: List[Row] = field(default_factory=list)

    def __post_init__(self):
        self.columns = list(self.columns)
        # A repeated column name resolves to its first occurrence.
        self._index: Dict[str, int] = {}
        for pos, column in enumerate(self.columns):
            self._index.setdefault(column, pos)
        self.rows = [
            row if isinstance(row, Row) else Row(row, self._index) for row in self.rows
        ]
        for row in self.rows:
            if len(row) != len(self.columns):
                raise ValueError(
                    f"Row width {len(row)} does not match {len(self.columns)} columns in '{self.name}'."
                )

    @classmethod
    def from_records(
        cls, name: str, records: Iterable[Mapping[str, Any]], columns: Sequence[str] = ()
    ) -> "TabularResult":
        """Builds a result from dict-like records; column order follows `columns` or the first record."""
        records = list(records)
        if not columns and records:
            columns = list(records[0].keys())
        return cls(
            name=name,
            columns=list(columns),
            rows=[tuple(record.get(c) for c in columns) for record in records],
        )

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def has_column(self, column: str) -> bool:
        return column in self._index

    def column_values(self, column: str) -> List[Any]:
        pos = self._index[column]
        return [row[pos] for row in self.rows]

    def to_records(self) -> List[Dict[str, Any]]:
        return [row.as_dict() for row in self.rows]

    def __len__(self) -> int:
        return len(self.rows)
