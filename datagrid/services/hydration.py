from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import inspect
from sqlalchemy.engine import Row
from sqlalchemy.orm import InstanceState

_SCALARS = (str, bytes, int, float, bool, Decimal, date, datetime, UUID)


def _entity_to_dict(state: InstanceState) -> dict[str, Any]:
    # Loaded attributes only; unloaded ones would trigger a lazy load.
    loaded = state.dict
    return {
        attr.key: flatten_value(loaded[attr.key])
        for attr in state.mapper.column_attrs
        if attr.key in loaded
    }


def flatten_value(value: Any) -> Any:
    if value is None or isinstance(value, _SCALARS):
        return value
    if isinstance(value, Row):
        return {key: flatten_value(item) for key, item in value._asdict().items()}
    if isinstance(value, Mapping):
        return {key: flatten_value(item) for key, item in value.items()}
    state = inspect(value, raiseerr=False)
    if isinstance(state, InstanceState):
        return _entity_to_dict(state)
    if isinstance(value, (list, tuple, set)):
        return [flatten_value(item) for item in value]
    if hasattr(value, "__dict__"):
        return {key: flatten_value(item) for key, item in vars(value).items() if not key.startswith("_")}
    return value


def hydrate_row(row: Any, transformer: Callable[[Any], Any] | None = None) -> Any:
    if transformer is not None:
        return transformer(row)
    flattened = flatten_value(row)
    return flattened if isinstance(flattened, dict) else {"value": flattened}


def hydrate_rows(rows, transformer: Callable[[Any], Any] | None = None) -> list[Any]:
    return [hydrate_row(row, transformer) for row in rows]
