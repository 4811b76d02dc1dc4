# app/services/drafts.py
import asyncio
import logging
import os
from collections import defaultdict
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Dict, Optional, Tuple

from app.services.record_store import RecordStore, StoreError

logger = logging.getLogger(__name__)

DRAFT_DEBOUNCE_SECONDS = float(os.getenv("DRAFT_DEBOUNCE_SECONDS", "1.0"))

INSPECTION_FORM = "inspection_form"
SOP_FORM = "sop_form"

DraftKey = Tuple[int, str]
StoreFactory = Callable[[], AsyncContextManager[RecordStore]]


class DraftState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    SAVING = "saving"
    CLEARED = "cleared"


def store_factory_from_sessions(session_scope) -> StoreFactory:
    @asynccontextmanager
    async def _factory():
        async with session_scope() as s:
            yield RecordStore(s)
    return _factory


class DraftAutosaver:
    """
    Debounced persistence of in-progress form state per (user, form key).

    Each touch() replaces the pending save for its key; only the latest state
    is written once the key has been quiet for `debounce` seconds. Saves for
    the same key never overlap, and a save that has started is not cancelled.
    """

    def __init__(self, store_factory: StoreFactory, debounce: float = DRAFT_DEBOUNCE_SECONDS):
        self.store_factory = store_factory
        self.debounce = debounce
        self._timers: Dict[DraftKey, asyncio.Task] = {}
        self._pending: Dict[DraftKey, Dict[str, Any]] = {}
        self._states: Dict[DraftKey, DraftState] = {}
        self._locks: Dict[DraftKey, asyncio.Lock] = defaultdict(asyncio.Lock)

    def state(self, user_id: int, form_key: str) -> DraftState:
        return self._states.get((user_id, form_key), DraftState.IDLE)

    def pending(self, user_id: int, form_key: str) -> Optional[Dict[str, Any]]:
        return self._pending.get((user_id, form_key))

    def touch(self, user_id: int, form_key: str, data: Dict[str, Any]) -> DraftState:
        key = (user_id, form_key)
        self._cancel_timer(key)
        self._pending[key] = dict(data)
        if self._states.get(key) != DraftState.SAVING:
            self._states[key] = DraftState.EDITING
        self._timers[key] = asyncio.get_running_loop().create_task(self._save_later(key))
        return self.state(user_id, form_key)

    async def restore(self, user_id: int, form_key: str) -> Optional[Dict[str, Any]]:
        key = (user_id, form_key)
        if key in self._pending:
            return self._pending[key]
        async with self.store_factory() as store:
            data = await store.get_draft(user_id, form_key)
        if data is not None:
            self._states[key] = DraftState.EDITING
        return data

    async def clear(self, user_id: int, form_key: str) -> None:
        key = (user_id, form_key)
        self._cancel_timer(key)
        self._pending.pop(key, None)
        # waits out a save already in flight so it cannot resurrect the draft
        async with self._locks[key]:
            self._pending.pop(key, None)
            async with self.store_factory() as store:
                await store.clear_draft(user_id, form_key)
        self._forget(key)

    async def discard_all(self, user_id: int) -> DraftState:
        keys = [k for k in set(self._timers) | set(self._pending) | set(self._states) if k[0] == user_id]
        for key in keys:
            self._cancel_timer(key)
            self._pending.pop(key, None)
        for key in keys:
            async with self._locks[key]:
                self._pending.pop(key, None)
        async with self.store_factory() as store:
            await store.clear_user_drafts(user_id)
        for key in keys:
            self._forget(key)
        logger.info("Discarded drafts for user %s", user_id)
        return DraftState.CLEARED

    async def flush(self, user_id: Optional[int] = None) -> None:
        """Write pending drafts now, for one user or all of them (shutdown)."""
        keys = [k for k in list(self._pending) if user_id is None or k[0] == user_id]
        for key in keys:
            self._cancel_timer(key)
        for key in keys:
            await self._save(key)

    def _forget(self, key: DraftKey) -> None:
        # drop bookkeeping for a key with nothing left to save; state reads as IDLE again
        if key in self._timers or key in self._pending:
            return
        lock = self._locks.get(key)
        if lock is not None and lock.locked():
            return
        self._locks.pop(key, None)
        self._states.pop(key, None)

    def _cancel_timer(self, key: DraftKey) -> None:
        task = self._timers.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    async def _save_later(self, key: DraftKey) -> None:
        await asyncio.sleep(self.debounce)
        # past this point the save belongs to no timer and runs to completion
        self._timers.pop(key, None)
        await asyncio.shield(self._save(key))

    async def _save(self, key: DraftKey) -> None:
        async with self._locks[key]:
            data = self._pending.pop(key, None)
            if data is None:
                return
            self._states[key] = DraftState.SAVING
            user_id, form_key = key
            try:
                async with self.store_factory() as store:
                    await store.save_draft(user_id, form_key, data)
                logger.debug("Draft saved for user=%s form=%s", user_id, form_key)
            except StoreError:
                # keep the unsaved state so the next touch or flush retries it
                self._pending.setdefault(key, data)
                logger.exception("Draft autosave failed for user=%s form=%s", user_id, form_key)
            finally:
                if self._states.get(key) == DraftState.SAVING:
                    self._states[key] = DraftState.EDITING
