from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any, NamedTuple

from datagrid.schemas.grid import GridSettings

_LOG = logging.getLogger("datagrid.filters")

# Longest comparators first so ">=" is not read as ">".
_OPERATOR_RE = re.compile(r"^\|(>=|<=|<>|!=|>|<|=)(.*)\|$", re.DOTALL)
_REGEX_RE = re.compile(r"^/(.*)/$", re.DOTALL)


class ColumnFilter(NamedTuple):
    column: str
    operator: str
    value: str


class GlobalFilter(NamedTuple):
    operator: str
    value: str


def _scalar(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    return None


class FilterParser:
    """Splits raw request filters into column filters and global filters.

    Raw filters are a list whose items are either ``{column: value}`` mappings
    or bare strings; a bare string (or an integer key) is a global filter.
    Values may carry an operator: ``|>=5|``, or a regex: ``/^B.*$/`` when the
    database supports it. Anything else is a ``like`` filter.
    """

    def __init__(self, settings: GridSettings, supports_regex: bool = False):
        self.settings = settings
        self.supports_regex = supports_regex

    def extract_operator(self, value: str) -> tuple[str, str]:
        if self.supports_regex and len(value) > 1:
            matched = _REGEX_RE.match(value)
            if matched:
                return "regex", matched.group(1)
        matched = _OPERATOR_RE.match(value)
        if matched:
            return matched.group(1), matched.group(2).strip()
        return "like", value

    def resolve_column(self, key: str) -> str:
        real = self.settings.real_column(key)
        return real if real is not None else key

    def parse(self, raw_filters: Iterable[Any] | Mapping[Any, Any] | None) -> tuple[list[ColumnFilter], list[GlobalFilter]]:
        column_filters: list[ColumnFilter] = []
        global_filters: list[GlobalFilter] = []

        if raw_filters is None:
            return column_filters, global_filters
        entries = [raw_filters] if isinstance(raw_filters, Mapping) else raw_filters

        for entry in entries:
            if isinstance(entry, Mapping):
                pairs = list(entry.items())
            elif isinstance(entry, str):
                pairs = [(None, entry)]
            else:
                _LOG.debug("malformed filter entry %r skipped", entry)
                continue

            for key, raw_value in pairs:
                if isinstance(key, str):
                    value = _scalar(raw_value)
                    if value is None:
                        _LOG.debug("malformed value for filter %r skipped", key)
                        continue
                    operator, value = self.extract_operator(value)
                    column_filters.append(ColumnFilter(self.resolve_column(key), operator, value))
                elif isinstance(raw_value, str):
                    operator, value = self.extract_operator(raw_value)
                    global_filters.append(GlobalFilter(operator, value))
                else:
                    _LOG.debug("malformed global filter %r skipped", raw_value)

        return column_filters, global_filters
