# app/deps.py
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_session
from app.models import PharmaSystem
from app.services.drafts import DraftAutosaver
from app.services.inflight import InFlightGuard
from app.services.record_store import RecordStore


async def get_store(session: AsyncSession = Depends(get_session)) -> RecordStore:
    return RecordStore(session)


def get_autosaver(request: Request) -> DraftAutosaver:
    return request.app.state.autosaver


def get_guard(request: Request) -> InFlightGuard:
    return request.app.state.inflight


async def load_system(system_id: int, session: AsyncSession) -> PharmaSystem:
    system = await session.get(PharmaSystem, system_id)
    if not system:
        raise HTTPException(404, "System not found")
    return system
