from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import column as sql_column
from sqlalchemy.orm import Query

from datagrid.core.errors import SortColumnNotFoundError
from datagrid.schemas.grid import GridSettings, SortClause
from datagrid.services.sources import DataSource

_LOG = logging.getLogger("datagrid.sorting")


def _sort_parts(sort: Any) -> tuple[str | None, str | None]:
    if isinstance(sort, SortClause):
        return sort.column, sort.direction
    if isinstance(sort, Mapping):
        return sort.get("column"), sort.get("direction")
    return None, None


def is_descending(direction: str | None) -> bool:
    return str(direction or "").strip().lower() == "desc"


class SortCompiler:
    def __init__(self, source: DataSource, settings: GridSettings):
        self.source = source
        self.settings = settings

    def calculate_sort_column(self, column: str | None, query: Query | None = None) -> str | None:
        """Return the real column behind a requested sort column.

        Columns missing from the settings are still accepted when the query
        already selects them; anything else is an error.
        """
        if not column:
            return None

        real = self.settings.real_column(column)
        if real is not None:
            return real

        query = query if query is not None else self.source.query
        for name in self.source.selected_column_names(query):
            if name == column or name.endswith(f".{column}"):
                return column

        raise SortColumnNotFoundError(column)

    def apply(self, query: Query, sorts: Iterable[Any]) -> tuple[Query, list[dict[str, Any]]]:
        applied: list[dict[str, Any]] = []
        for sort in sorts:
            column, direction = _sort_parts(sort)
            real = self.calculate_sort_column(column, query)
            if not real:
                _LOG.debug("sort entry without column skipped: %r", sort)
                continue

            custom = self.settings.sort_callable(real)
            if custom is not None:
                query = custom(query, direction)
            else:
                expr = self.source.column_expression(real)
                if expr is None:
                    # Matched a selected label above; quoted, never raw text.
                    expr = sql_column(real)
                query = query.order_by(expr.desc() if is_descending(direction) else expr.asc())

            applied.append({"column": column, "direction": direction})
        return query, applied
