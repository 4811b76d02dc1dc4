# app/routers/dashboard_router.py
from collections import Counter, defaultdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.auth import get_current_active_user, get_session
from app.models import ComplianceStatus, PharmaSystem
from app.schemas import CategoryProgress, DashboardSummary

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


def summarize(systems) -> DashboardSummary:
    total = len(systems)
    by_category = defaultdict(list)
    for s in systems:
        by_category[s.category].append(s.progress)
    return DashboardSummary(
        total_systems=total,
        compliant=sum(1 for s in systems if s.status == ComplianceStatus.COMPLIANT),
        total_deviations=sum(s.deviations_count for s in systems),
        avg_progress=round(sum(s.progress for s in systems) / total) if total else 0,
        by_status=dict(Counter(s.status.value for s in systems)),
        by_risk=dict(Counter(s.risk_level.value for s in systems)),
        by_category=[
            CategoryProgress(category=cat, count=len(values), avg_progress=round(sum(values) / len(values)))
            for cat, values in by_category.items()
        ],
    )


@router.get("/summary", response_model=DashboardSummary)
async def dashboard_summary(session: AsyncSession = Depends(get_session), user=Depends(get_current_active_user)):
    res = await session.execute(select(PharmaSystem))
    return summarize(res.scalars().all())
