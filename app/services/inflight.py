# app/services/inflight.py
from contextlib import asynccontextmanager
from typing import Hashable, Set, Tuple


class ActionInProgress(RuntimeError):
    pass


class InFlightGuard:
    """
    Allows one running call per (action, subject). A second trigger for the
    same pair is rejected instead of queued; other subjects are unaffected.
    """

    def __init__(self):
        self._running: Set[Tuple[str, Hashable]] = set()

    def is_running(self, action: str, subject: Hashable) -> bool:
        return (action, subject) in self._running

    @asynccontextmanager
    async def hold(self, action: str, subject: Hashable):
        key = (action, subject)
        if key in self._running:
            raise ActionInProgress(f"{action} already in progress for {subject}")
        self._running.add(key)
        try:
            yield
        finally:
            self._running.discard(key)
