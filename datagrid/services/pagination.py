from __future__ import annotations

import logging
import math

from datagrid.core.errors import InvalidThrottleError

_LOG = logging.getLogger("datagrid.pagination")

METHOD_SINGLE = "single"
METHOD_GROUP = "group"
METHOD_INFINITE = "infinite"


def calculate_pagination(filtered_count: int, method: str | None, threshold: int, throttle: int) -> tuple[int, int]:
    """Return ``(pages, per_page)`` for ``filtered_count`` rows.

    ``single`` and ``infinite`` use a fixed page size of ``throttle``.
    ``group`` puts everything on one page below ``threshold`` and otherwise
    spreads the rows evenly over ``ceil(threshold / throttle)`` pages.
    """
    if isinstance(throttle, bool) or not isinstance(throttle, int) or throttle < 1:
        raise InvalidThrottleError(throttle)

    if method == METHOD_GROUP:
        if filtered_count < threshold:
            return 1, filtered_count
        pages = max(math.ceil(threshold / throttle), 1)
        return pages, math.ceil(filtered_count / pages)

    if method not in (METHOD_SINGLE, METHOD_INFINITE):
        _LOG.warning("unknown pagination method %r, falling back to %s", method, METHOD_SINGLE)
    return math.ceil(filtered_count / throttle), throttle


def calculate_pages(
    filtered_count: int, page: int | None, per_page: int, pages: int | None = None
) -> tuple[int, int | None, int | None]:
    """Return ``(page, previous_page, next_page)`` with ``page`` clamped into ``[1, pages]``.

    ``pages`` is the count from :func:`calculate_pagination`; the ``group``
    method can report more pages than ``filtered_count / per_page`` fills.
    Without it the count is derived from ``per_page``.
    """
    if pages is None:
        pages = math.ceil(filtered_count / per_page) if per_page > 0 else 0
    current = int(page or 1)
    if current > pages:
        current = pages
    if current < 1:
        current = 1

    previous_page = current - 1 if current - 1 > 0 else None
    next_page = current + 1 if current + 1 <= pages else None
    return current, previous_page, next_page
