from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException

from datagrid.core.errors import DataGridError
from datagrid.schemas.grid import GridRequest, GridSettings
from datagrid.services.grid import DataGrid
from datagrid.services.request_provider import GridRequestProvider, RequestProvider

_LOG = logging.getLogger("datagrid.api")


def get_request_provider(body: GridRequest) -> GridRequestProvider:
    return GridRequestProvider(body)


def grid_response_or_400(
    source: Any,
    settings: GridSettings | Mapping[str, Any] | None,
    provider: RequestProvider | None = None,
    *,
    paginate: bool = True,
    max_results: int | None = None,
) -> dict[str, Any]:
    try:
        grid = DataGrid(source, settings, provider).run(paginate=paginate, max_results=max_results)
    except DataGridError as exc:
        _LOG.warning("grid request rejected: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return grid.to_dict()
