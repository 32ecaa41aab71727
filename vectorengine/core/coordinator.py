"""
Multi-database search - one query fanned out across several named databases.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional, Sequence

from ..api.schemas import MultiSearchOptions, coerce
from ..util.logging import logger
from ..vector.types import SearchResult
from . import config
from .errors import EngineError
from .permissions import AccessAction


class MultiDatabaseSearch:
    """
    Runs a query against each named database and merges the results.

    Each database returns its own top_k; the merge is a stable sort on score,
    so equal scores keep the order of the input names and, within a database,
    its own tie order. A missing or failing database contributes no results,
    and so does one the acting user may not read.
    """

    def __init__(self, registry, max_workers: Optional[int] = None, user: Optional[str] = None):
        self.registry = registry
        self.user = user
        self.max_workers = max_workers or config.get_multi_search_workers()

    def _search_one(self, name: str, query: Any, options: MultiSearchOptions) -> List[SearchResult]:
        if self.user is None:
            store = self.registry.get_store(name)
        else:
            store = self.registry.authorize(name, self.user, AccessAction.READ)
        results = store.search(query, options.top_k, options.to_search_options())
        for result in results:
            result.source_database_name = name
        return results

    def search_multiple_databases(self, names: Sequence[str], query: Any, options: Any = None) -> List[SearchResult]:
        """
        Search several databases and return one globally ranked list.

        Args:
            names: Database names; duplicates are searched once
            query: Query vector
            options: MultiSearchOptions or mapping with top_k, threshold, filter

        Returns:
            At most top_k results sorted by score, each tagged with
            source_database_name. Never raises.
        """
        start_time = time.time()
        try:
            search_options = coerce(MultiSearchOptions, options)
            unique_names = list(dict.fromkeys(names or []))
        except (EngineError, TypeError) as e:
            logger.warning(f"Multi-database search rejected arguments: {e}")
            return []

        if not unique_names or search_options.top_k == 0:
            return []

        per_database = []
        workers = min(self.max_workers, len(unique_names))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="multi-search") as executor:
            futures = [
                (name, executor.submit(self._search_one, name, query, search_options))
                for name in unique_names
            ]
            for name, future in futures:
                try:
                    per_database.append(future.result())
                except Exception as e:
                    logger.log_operation("search.database", "failed", {
                        "database": name,
                        "error": f"{type(e).__name__}: {e}",
                    }, level=logging.WARNING)
                    per_database.append([])

        merged = [result for results in per_database for result in results]
        merged.sort(key=lambda result: result.score, reverse=True)
        merged = merged[:search_options.top_k]

        logger.log_search(unique_names, search_options.top_k, len(merged), start_time, time.time())
        return merged
