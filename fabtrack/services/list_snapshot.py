from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from services.backend_client import BackendError, BackendUnauthorized


LOGGER = logging.getLogger("fabtrack.portal")


@dataclass
class ListSnapshot:
    """Last-known-good copy of a backend list.

    A failed refresh keeps the previous rows and marks them stale; a list that
    never loaded stays empty with the error attached.
    """

    rows: list[Any] = field(default_factory=list)
    loaded: bool = False
    stale: bool = False
    error: str | None = None

    async def refresh(self, load: Callable[[], Awaitable[list[Any]]], fallback_error: str) -> bool:
        try:
            rows = await load()
        except BackendUnauthorized:
            raise
        except BackendError as exc:
            LOGGER.warning("List refresh failed: %s", exc.message)
            self.error = exc.message or fallback_error
            self.stale = self.loaded
            return False
        self.rows = list(rows)
        self.loaded = True
        self.stale = False
        self.error = None
        return True
