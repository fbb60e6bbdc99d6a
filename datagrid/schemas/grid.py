from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Method = Literal["single", "group", "infinite"]


def _as_sort_list(value):
    if value is None:
        return []
    if isinstance(value, (Mapping, SortClause)):
        return [value]
    return list(value)


class SortClause(BaseModel):
    column: Optional[str] = None
    direction: Optional[str] = None


class GridRequest(BaseModel):
    """Request body consumed by :class:`GridRequestProvider`."""

    page: Optional[int] = None
    method: Optional[Method] = None
    threshold: Optional[int] = None
    throttle: Optional[int] = None
    sort: List[SortClause] = []
    filters: List[Union[Dict[str, Any], str]] = []

    @field_validator("sort", mode="before")
    @classmethod
    def _single_sort(cls, value):
        return _as_sort_list(value)


class GridSettings(BaseModel):
    """Per-grid configuration.

    ``columns`` keeps the order it was given in. Each entry is normalized to a
    ``(real, alias)`` pair; an entry without an alias has ``real == alias``::

        GridSettings(columns={0: "foo", "bar.baz": "qux"})
        GridSettings(columns=["foo", ("bar.baz", "qux")])

    Custom callables receive the current query and must return the new one.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    columns: List[Tuple[str, str]] = []
    filters: Dict[str, Optional[Callable[..., Any]]] = {}
    sorts: Dict[str, Optional[Callable[..., Any]]] = {}
    sort: List[SortClause] = []
    global_: Optional[Callable[..., Any]] = Field(default=None, alias="global")
    transformer: Optional[Callable[[Any], Any]] = None

    @classmethod
    def coerce(cls, value: "GridSettings | Mapping[str, Any] | None") -> "GridSettings":
        if isinstance(value, cls):
            return value
        return cls.model_validate(dict(value or {}))

    @field_validator("columns", mode="before")
    @classmethod
    def _normalize_columns(cls, value):
        if value is None:
            return []
        if isinstance(value, Mapping):
            return [(str(v), str(v)) if isinstance(k, int) else (str(k), str(v)) for k, v in value.items()]
        pairs = []
        for item in value:
            if isinstance(item, str):
                pairs.append((item, item))
            elif isinstance(item, Mapping):
                pairs.extend((str(k), str(v)) for k, v in item.items())
            else:
                real, alias = item
                pairs.append((str(real), str(alias)))
        return pairs

    @field_validator("sort", mode="before")
    @classmethod
    def _single_sort(cls, value):
        return _as_sort_list(value)

    @property
    def exposed_names(self) -> list[str]:
        return [alias for _, alias in self.columns]

    @property
    def real_columns(self) -> list[str]:
        return [real for real, _ in self.columns]

    def real_column(self, name: str) -> Optional[str]:
        """Map an exposed name back to its real column, ``None`` when unknown."""
        for real, alias in self.columns:
            if alias == name:
                return real
        return None

    def filter_callable(self, column: str) -> Optional[Callable[..., Any]]:
        fn = self.filters.get(column)
        return fn if callable(fn) else None

    def sort_callable(self, column: str) -> Optional[Callable[..., Any]]:
        fn = self.sorts.get(column)
        return fn if callable(fn) else None


class GridParameters(BaseModel):
    """Facts derived while the grid runs.

    Pagination fields stay ``None`` when no page was computed (zero filtered
    rows or pagination disabled).
    """

    total: Optional[int] = None
    filtered: Optional[int] = None
    page: Optional[int] = None
    pages: Optional[int] = None
    per_page: Optional[int] = None
    previous_page: Optional[int] = None
    next_page: Optional[int] = None
    method: Optional[str] = None
    threshold: Optional[int] = None
    throttle: Optional[int] = None
    filters: List[Dict[str, Any]] = []
    sort: List[Dict[str, Any]] = []
