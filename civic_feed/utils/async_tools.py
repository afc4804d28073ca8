from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from ..errors import FeedError, SourceUnavailable

T = TypeVar("T")


async def with_deadline(awaitable: Awaitable[T], timeout_s: float, operation: str) -> T:
    """Await a content-source call, mapping timeouts and transport failures to SourceUnavailable."""

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise SourceUnavailable(f"{operation} timed out after {timeout_s:g}s") from exc
    except FeedError:
        raise
    except Exception as exc:  # pylint: disable=broad-except
        raise SourceUnavailable(f"{operation} failed: {exc}") from exc
