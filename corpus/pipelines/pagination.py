"""Page/limit clamping shared by every paginated listing."""
from __future__ import annotations

import math

MAX_LIMIT = 100


def as_int(value: int | str | None) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def clamp_page(
    page: int | str | None,
    limit: int | str | None,
    *,
    default_limit: int = 20,
) -> tuple[int, int]:
    """Clamp to page >= 1 and 1 <= limit <= 100.

    Missing, zero or unparseable values fall back to page 1 and
    ``default_limit``.
    """
    page_value = as_int(page) or 1
    limit_value = as_int(limit) or default_limit
    return max(1, page_value), min(MAX_LIMIT, max(1, limit_value))


def clamp_limit(limit: int | str | None, *, default_limit: int = 10) -> int:
    return clamp_page(1, limit, default_limit=default_limit)[1]


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


def page_slice(items: list, page: int, limit: int) -> list:
    """Slice an already-ranked list."""
    start = (page - 1) * limit
    return items[start:start + limit]
