"""Access gate: which notebook a session has opened.

A session opens a notebook by selecting or creating it. Later requests must
present the session token; `require_access` turns a valid token into a
`NotebookAccess` capability that handlers pass on to the store.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict

from notetoself.core import ForbiddenError

logger = logging.getLogger("notetoself.access")

SELECTION_PATH = "/"


class NotebookAccess(BaseModel):
    """Proof that the caller opened `notebook_id`."""

    model_config = ConfigDict(frozen=True)

    notebook_id: int

    def check(self, notebook_id: int) -> None:
        if notebook_id != self.notebook_id:
            raise ForbiddenError(
                f"Session has not opened notebook {notebook_id}",
                hint="Select the notebook first",
                redirect=SELECTION_PATH,
            )


class SessionRegistry:
    """In-process map of session token -> opened notebook id.

    Entries expire `ttl_seconds` after they were last opened, and the oldest
    entry is evicted once `max_sessions` is reached.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 86400,
        max_sessions: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: dict[str, tuple[int, float]] = {}
        self._ttl = ttl_seconds
        self._max = max_sessions
        self._clock = clock

    def _expired(self, opened_at: float, now: float) -> bool:
        return now - opened_at >= self._ttl

    def _prune(self, now: float) -> None:
        # Insertion order is opening order, so expired entries sit at the front.
        for token, (_, opened_at) in list(self._sessions.items()):
            if not self._expired(opened_at, now):
                break
            del self._sessions[token]
        while len(self._sessions) >= self._max:
            oldest = next(iter(self._sessions))
            del self._sessions[oldest]
            logger.info("Evicted oldest session (cap %d)", self._max)

    def open(self, notebook_id: int, token: str | None = None) -> str:
        """Bind a token to a notebook, issuing a new token if none is given."""
        now = self._clock()
        if token is not None and self.lookup(token) is not None:
            del self._sessions[token]
        else:
            token = secrets.token_urlsafe(32)
        self._prune(now)
        self._sessions[token] = (notebook_id, now)
        logger.info("Session opened notebook %s", notebook_id)
        return token

    def lookup(self, token: str | None) -> int | None:
        if token is None:
            return None
        entry = self._sessions.get(token)
        if entry is None:
            return None
        notebook_id, opened_at = entry
        if self._expired(opened_at, self._clock()):
            del self._sessions[token]
            return None
        return notebook_id

    def close(self, token: str | None) -> None:
        if token is not None:
            self._sessions.pop(token, None)

    def __len__(self) -> int:
        return len(self._sessions)


def require_access(registry: SessionRegistry, token: str | None, notebook_id: int) -> NotebookAccess:
    """Grant access to notebook_id, or raise ForbiddenError."""
    opened = registry.lookup(token)
    if opened is None:
        raise ForbiddenError("No notebook opened in this session", hint="Select a notebook", redirect=SELECTION_PATH)
    access = NotebookAccess(notebook_id=opened)
    access.check(notebook_id)
    return access
