from typing import Dict, Iterator, Optional

import structlog

from .exceptions import ResultLookupError
from .table import TabularResult

logger = structlog.get_logger(__name__)


class ResultsStore:
    """
    Holds the tabular results captured during one plan run, keyed by result key.

    A store lives exactly as long as the run that owns it. Only the execution
    engine writes to it; resolvers read from it.
    """

    def __init__(self):
        self._results: Dict[str, TabularResult] = {}

    def store(self, key: str, table: Optional[TabularResult]) -> bool:
        """Stores `table` under `key`. Empty keys and missing tables are ignored."""
        if not key or table is None:
            logger.debug("results_store.store.skipped", result_key=key)
            return False
        if key in self._results:
            logger.debug("results_store.store.overwrite", result_key=key)
        self._results[key] = table
        logger.debug("results_store.store.saved", result_key=key, rows=table.row_count)
        return True

    def get(self, key: str) -> TabularResult:
        try:
            return self._results[key]
        except KeyError:
            raise ResultLookupError(
                f"No stored results found for command: {key}"
            ) from None

    def __contains__(self, key: object) -> bool:
        return key in self._results

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)
