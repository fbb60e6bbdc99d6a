from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from datagrid.core.config import settings as app_settings
from datagrid.schemas.grid import GridRequest


@runtime_checkable
class RequestProvider(Protocol):
    """What the grid reads from an incoming request."""

    def get_page(self) -> int | None: ...

    def get_method(self) -> str | None: ...

    def get_threshold(self) -> int | None: ...

    def get_throttle(self) -> int | None: ...

    def get_sort(self) -> list[Any]: ...

    def get_filters(self) -> list[Any]: ...

    def get_default_method(self) -> str: ...

    def get_default_threshold(self) -> int: ...

    def get_default_throttle(self) -> int: ...


class GridRequestProvider:
    def __init__(
        self,
        request: GridRequest | Mapping[str, Any] | None = None,
        *,
        default_method: str | None = None,
        default_threshold: int | None = None,
        default_throttle: int | None = None,
    ):
        if request is None:
            request = GridRequest()
        elif not isinstance(request, GridRequest):
            request = GridRequest.model_validate(dict(request))
        self.request = request
        self.default_method = default_method or app_settings.DATAGRID_METHOD
        self.default_threshold = default_threshold if default_threshold is not None else app_settings.DATAGRID_THRESHOLD
        self.default_throttle = default_throttle if default_throttle is not None else app_settings.DATAGRID_THROTTLE

    def get_page(self) -> int | None:
        return self.request.page

    def get_method(self) -> str | None:
        return self.request.method

    def get_threshold(self) -> int | None:
        return self.request.threshold

    def get_throttle(self) -> int | None:
        return self.request.throttle

    def get_sort(self) -> list[Any]:
        return list(self.request.sort)

    def get_filters(self) -> list[Any]:
        return list(self.request.filters)

    def get_default_method(self) -> str:
        return self.default_method

    def get_default_threshold(self) -> int:
        return self.default_threshold

    def get_default_throttle(self) -> int:
        return self.default_throttle
