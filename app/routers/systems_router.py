# app/routers/systems_router.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.auth import get_current_active_user, get_session
from app.deps import load_system
from app.models import PharmaSystem, SystemType, ComplianceStatus, RiskLevel
from app.schemas import SystemCreate, SystemRead, ProgressUpdate
from app.services import lifecycle
from app.services.parameter_schema import ParameterField, fields_for

router = APIRouter(prefix="/systems", tags=["systems"])


async def _save(session: AsyncSession, system: PharmaSystem) -> PharmaSystem:
    session.add(system)
    await session.commit()
    await session.refresh(system)
    return system


@router.post("/", response_model=SystemRead)
async def create_system(payload: SystemCreate, session: AsyncSession = Depends(get_session), user=Depends(get_current_active_user)):
    system = PharmaSystem(
        name=payload.name,
        category=payload.category,
        location=payload.location,
        risk_level=payload.risk_level,
    )
    return await _save(session, system)


@router.get("/", response_model=list[SystemRead])
async def list_systems(
    category: Optional[SystemType] = None,
    status: Optional[ComplianceStatus] = None,
    risk_level: Optional[RiskLevel] = None,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_active_user),
):
    q = select(PharmaSystem)
    if category:
        q = q.where(PharmaSystem.category == category)
    if status:
        q = q.where(PharmaSystem.status == status)
    if risk_level:
        q = q.where(PharmaSystem.risk_level == risk_level)
    res = await session.execute(q.order_by(PharmaSystem.created_at.desc(), PharmaSystem.id.desc()))
    return res.scalars().all()


@router.get("/parameter-schema/{category:path}", response_model=list[ParameterField])
async def get_parameter_schema(category: SystemType, user=Depends(get_current_active_user)):
    return fields_for(category)


@router.get("/{system_id}", response_model=SystemRead)
async def get_system(system_id: int, session: AsyncSession = Depends(get_session), user=Depends(get_current_active_user)):
    return await load_system(system_id, session)


@router.post("/{system_id}/progress", response_model=SystemRead)
async def update_progress(
    system_id: int,
    payload: ProgressUpdate,
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_active_user),
):
    system = await load_system(system_id, session)
    try:
        lifecycle.apply_progress(system, payload.progress)
    except lifecycle.LifecycleError as e:
        raise HTTPException(422, str(e))
    return await _save(session, system)


@router.post("/{system_id}/deviations", response_model=SystemRead)
async def record_deviation(system_id: int, session: AsyncSession = Depends(get_session), user=Depends(get_current_active_user)):
    system = await load_system(system_id, session)
    lifecycle.record_deviation(system)
    return await _save(session, system)


@router.post("/{system_id}/deviations/close", response_model=SystemRead)
async def close_deviation(system_id: int, session: AsyncSession = Depends(get_session), user=Depends(get_current_active_user)):
    system = await load_system(system_id, session)
    try:
        lifecycle.close_deviation(system)
    except lifecycle.LifecycleError as e:
        raise HTTPException(422, str(e))
    return await _save(session, system)


@router.post("/{system_id}/advance-stage", response_model=SystemRead)
async def advance_stage(system_id: int, session: AsyncSession = Depends(get_session), user=Depends(get_current_active_user)):
    system = await load_system(system_id, session)
    try:
        lifecycle.advance_stage(system)
    except lifecycle.LifecycleError as e:
        raise HTTPException(422, str(e))
    return await _save(session, system)
