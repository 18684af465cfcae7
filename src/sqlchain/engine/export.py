from pathlib import Path
from typing import Any, Union

import structlog

from .table import TabularResult

logger = structlog.get_logger(__name__)


def _quote(value: Any) -> str:
    return f'"{"" if value is None else value}"'


def export_to_csv(table: TabularResult, export_path: Union[str, Path]) -> Path:
    """
    Writes a result as comma-delimited text: a header of column names, then
    one line per row with every cell wrapped in double quotes. Cell contents
    are not escaped further. Missing parent directories are created.
    """
    path = Path(export_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    lines = [",".join(table.columns)]
    lines.extend(",".join(_quote(value) for value in row) for row in table.rows)

    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write("\n".join(lines) + "\n")

    logger.info("export.csv.written", path=str(path), rows=table.row_count)
    return path
