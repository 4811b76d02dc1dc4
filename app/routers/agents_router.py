# app/routers/agents_router.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_current_active_user, get_session
from app.deps import get_guard, load_system
from app.schemas import RiskAnalysisRequest, TextResult, TranslateRequest
from app.services.agent_services import CapabilityGateway, get_gateway
from app.services.inflight import ActionInProgress, InFlightGuard

router = APIRouter(prefix="/agent", tags=["agent"])


@router.post("/protocols/{system_id}", response_model=TextResult)
async def generate_protocols(
    system_id: int,
    session: AsyncSession = Depends(get_session),
    gateway: CapabilityGateway = Depends(get_gateway),
    guard: InFlightGuard = Depends(get_guard),
    user=Depends(get_current_active_user),
):
    system = await load_system(system_id, session)
    try:
        async with guard.hold("protocols", system.id):
            text = await gateway.generate_protocols(system.name, system.category.value, system.current_stage.value)
    except ActionInProgress as e:
        raise HTTPException(409, str(e))
    return {"text": text}


@router.post("/risk-analysis", response_model=TextResult)
async def analyze_risk(
    payload: RiskAnalysisRequest,
    gateway: CapabilityGateway = Depends(get_gateway),
    guard: InFlightGuard = Depends(get_guard),
    user=Depends(get_current_active_user),
):
    # the risk form is per user, so is the in-flight slot
    try:
        async with guard.hold("risk", user.id):
            text = await gateway.analyze_risk(payload.description, payload.category.value)
    except ActionInProgress as e:
        raise HTTPException(409, str(e))
    return {"text": text}


@router.post("/translate", response_model=TextResult)
async def translate(
    payload: TranslateRequest,
    gateway: CapabilityGateway = Depends(get_gateway),
    guard: InFlightGuard = Depends(get_guard),
    user=Depends(get_current_active_user),
):
    try:
        async with guard.hold("translate", user.id):
            text = await gateway.translate(payload.text, payload.target_language)
    except ActionInProgress as e:
        raise HTTPException(409, str(e))
    return {"text": text}
