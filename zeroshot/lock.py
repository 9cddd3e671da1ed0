from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from zeroshot.errors import SessionBusy

logger = logging.getLogger(__name__)


class PipelineGuard:
    """Session-scoped single-flight guard.

    Only valid on a single event loop: the check and the set happen without an
    await in between. Held in process memory, so a crash releases it.
    """

    def __init__(self) -> None:
        self._holder: str | None = None

    @property
    def busy(self) -> bool:
        return self._holder is not None

    @contextmanager
    def acquire(self, *, session_id: int, reason: str) -> Iterator[None]:
        if self._holder is not None:
            raise SessionBusy(f"Session {session_id} is busy ({self._holder})")
        self._holder = reason
        logger.debug("session %s: guard acquired for %s", session_id, reason)
        try:
            yield
        finally:
            self._holder = None
            logger.debug("session %s: guard released after %s", session_id, reason)
