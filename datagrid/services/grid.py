from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy.orm import Query

from datagrid.core.config import settings as app_settings
from datagrid.core.errors import DataGridError
from datagrid.schemas.grid import GridParameters, GridSettings
from datagrid.services.filter_parser import ColumnFilter, FilterParser, GlobalFilter
from datagrid.services.hydration import hydrate_rows
from datagrid.services.pagination import calculate_pages, calculate_pagination
from datagrid.services.predicates import PredicateCompiler, WhereGroup
from datagrid.services.request_provider import GridRequestProvider, RequestProvider
from datagrid.services.sorting import SortCompiler
from datagrid.services.sources import RELATION_SEPARATOR, DataSource, resolve_data_source

_LOG = logging.getLogger("datagrid.grid")


class GridState(enum.IntEnum):
    CREATED = 0
    SOURCE_VALIDATED = 1
    SELECTED = 2
    FILTERED = 3
    COUNTED = 4
    SORTED = 5
    PAGINATED = 6
    HYDRATED = 7


class DataGrid:
    """Runs one grid request against a data source.

    Stages run once each, in order: select, filters, total count, filtered
    count, sort, pagination, hydration. :meth:`run` does all of them.
    The query is generative, so every stage stores the query it produced.
    """

    def __init__(
        self,
        source: Any,
        settings: GridSettings | Mapping[str, Any] | None = None,
        request_provider: RequestProvider | None = None,
    ):
        self.state = GridState.CREATED
        self.settings = GridSettings.coerce(settings)
        self.request_provider = request_provider if request_provider is not None else GridRequestProvider()
        self.source: DataSource = resolve_data_source(source)
        self.query: Query = self.source.query
        self.parameters = GridParameters()
        self.results: list[Any] = []

        self.predicates = PredicateCompiler(self.source, self.settings)
        self.sorter = SortCompiler(self.source, self.settings)
        self._unfiltered: Query = self.query
        self._counted_total = False
        self.state = GridState.SOURCE_VALIDATED

    def _enter(self, state: GridState) -> None:
        if self.state != state - 1:
            raise DataGridError(f"Stage [{state.name}] cannot run after [{self.state.name}].")

    def _leave(self, state: GridState) -> None:
        self.state = state
        _LOG.debug("grid %s reached %s", self.source.describe(), state.name)

    def supports_regex_filters(self) -> bool:
        return self.predicates.supports_regex

    def get_filters(self) -> tuple[list[ColumnFilter], list[GlobalFilter]]:
        parser = FilterParser(self.settings, supports_regex=self.supports_regex_filters())
        return parser.parse(self.request_provider.get_filters())

    def calculate_sort_column(self, column: str | None) -> str | None:
        return self.sorter.calculate_sort_column(column, self.query)

    def global_filter(self, group: WhereGroup, operator: str, value: str) -> None:
        self.predicates.global_filter(group, operator, value)

    def calculate_pagination(self, filtered_count: int, method: str | None, threshold: int, throttle: int) -> tuple[int, int]:
        return calculate_pagination(filtered_count, method, threshold, throttle)

    def calculate_pages(
        self, filtered_count: int, page: int | None, per_page: int, pages: int | None = None
    ) -> tuple[int, int | None, int | None]:
        return calculate_pages(filtered_count, page, per_page, pages)

    def prepare_select(self) -> None:
        self._enter(GridState.SELECTED)
        expressions = []
        for real, alias in self.settings.columns:
            if alias in self.source.appends or alias in self.source.attributes:
                continue
            label = alias
            if real == alias:
                label = real.split(RELATION_SEPARATOR)[-1].rsplit(".", 1)[-1]
            expr = self.source.column_expression(real)
            if expr is None:
                _LOG.debug("column %r not found on %s, not selected", real, self.source.describe())
                continue
            expressions.append(expr.label(label))

        self.query = self.source.select(self.query, expressions)
        self._unfiltered = self.query
        self._leave(GridState.SELECTED)

    def prepare_filters(self) -> None:
        self._enter(GridState.FILTERED)
        applied: list[dict[str, Any]] = []
        column_filters, global_filters = self.get_filters()

        for column, operator, value in column_filters:
            if not self.predicates.is_filterable(column):
                _LOG.debug("unknown filter column %r skipped", column)
                continue
            applied.append({"column": column, "operator": operator, "value": value})
            self.query = self.predicates.apply_column_filter(self.query, column, operator, value)

        for operator, value in global_filters:
            applied.append({"operator": operator, "value": value})
            self.query = self.predicates.apply_global(self.query, operator, value)

        self.parameters.filters = applied
        self._leave(GridState.FILTERED)

    def prepare_total_count(self) -> None:
        # Counted on the query as it was before any filter was applied.
        if self.state != GridState.FILTERED or self._counted_total:
            raise DataGridError(f"Stage [total count] cannot run after [{self.state.name}].")
        self.parameters.total = self.source.count(self._unfiltered)
        self._counted_total = True

    def prepare_filtered_count(self) -> None:
        self._enter(GridState.COUNTED)
        if not self._counted_total:
            raise DataGridError("Stage [filtered count] needs the total count first.")
        total = self.parameters.total
        self.parameters.filtered = self.source.count(self.query) if self.parameters.filters else total
        self._leave(GridState.COUNTED)

    def prepare_sort(self) -> None:
        self._enter(GridState.SORTED)
        sorts = self.request_provider.get_sort() or list(self.settings.sort)
        self.query, applied = self.sorter.apply(self.query, sorts)
        if applied:
            self.parameters.sort = applied
        self._leave(GridState.SORTED)

    def prepare_pagination(self, paginate: bool = True) -> None:
        self._enter(GridState.PAGINATED)
        filtered = self.parameters.filtered
        if not filtered or not paginate:
            self._leave(GridState.PAGINATED)
            return

        provider = self.request_provider
        page = provider.get_page() or self.parameters.page
        method = provider.get_method() or self.parameters.method or provider.get_default_method()
        throttle = provider.get_throttle() or self.parameters.throttle or provider.get_default_throttle()
        threshold = provider.get_threshold() or self.parameters.threshold or provider.get_default_threshold()

        pages, per_page = self.calculate_pagination(filtered, method, threshold, throttle)
        page, previous_page, next_page = self.calculate_pages(filtered, page, per_page, pages)

        self.query = self.query.limit(per_page).offset((page - 1) * per_page)
        self.parameters = self.parameters.model_copy(
            update={
                "page": page,
                "pages": pages,
                "per_page": per_page,
                "previous_page": previous_page,
                "next_page": next_page,
                "method": method,
                "threshold": threshold,
                "throttle": throttle,
            }
        )
        self._leave(GridState.PAGINATED)

    def hydrate(self, max_results: int | None = None) -> list[Any]:
        self._enter(GridState.HYDRATED)
        max_results = max_results or app_settings.DATAGRID_MAX_RESULTS
        query = self.query
        if max_results:
            per_page = self.parameters.per_page
            query = query.limit(min(per_page, max_results) if per_page else max_results)

        self.results = hydrate_rows(query.all(), self.settings.transformer)
        self._leave(GridState.HYDRATED)
        return self.results

    def run(self, paginate: bool = True, max_results: int | None = None) -> "DataGrid":
        self.prepare_select()
        self.prepare_filters()
        self.prepare_total_count()
        self.prepare_filtered_count()
        self.prepare_sort()
        self.prepare_pagination(paginate)
        self.hydrate(max_results)
        _LOG.info(
            "grid %s: total=%s filtered=%s page=%s/%s rows=%s",
            self.source.describe(),
            self.parameters.total,
            self.parameters.filtered,
            self.parameters.page,
            self.parameters.pages,
            len(self.results),
        )
        return self

    def to_dict(self) -> dict[str, Any]:
        payload = self.parameters.model_dump()
        payload["rows"] = self.results
        return payload


class DataGridEnvironment:
    """Builds grids that share one default request provider."""

    def __init__(self, request_provider: RequestProvider | None = None):
        self.request_provider = request_provider if request_provider is not None else GridRequestProvider()

    def make(
        self,
        source: Any,
        settings: GridSettings | Mapping[str, Any] | None = None,
        request_provider: RequestProvider | None = None,
        *,
        paginate: bool = True,
        max_results: int | None = None,
    ) -> DataGrid:
        grid = DataGrid(source, settings, request_provider or self.request_provider)
        return grid.run(paginate=paginate, max_results=max_results)
