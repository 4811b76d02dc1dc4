# app/routers/sop_router.py
import logging

from fastapi import APIRouter, UploadFile, File, Form, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_current_active_user, get_session, require_admin
from app.deps import get_autosaver, get_guard, get_store, load_system
from app.models import SOP, SOPCategory
from app.schemas import SOPRead
from app.services.agent_services import CapabilityGateway, get_gateway
from app.services.drafts import DraftAutosaver, SOP_FORM
from app.services.inflight import ActionInProgress, InFlightGuard
from app.services.record_store import RecordStore, StoreError
from app.services.storage import remove_upload, save_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sops"])

TEXT_EXTENSIONS = (".txt", ".md", ".csv")


def _sop_text(filename: str, data: bytes) -> str:
    # binary documents are not parsed; their content comes in through the form
    if filename.lower().endswith(TEXT_EXTENSIONS):
        return data.decode("utf-8", errors="replace")
    return ""


@router.post("/systems/{system_id}/sops", response_model=SOPRead)
async def upload_sop(
    system_id: int,
    file: UploadFile = File(...),
    title: str = Form(...),
    version: str = Form("1.0"),
    category: SOPCategory = Form(SOPCategory.OPERATION),
    content_text: str = Form(""),
    session: AsyncSession = Depends(get_session),
    store: RecordStore = Depends(get_store),
    gateway: CapabilityGateway = Depends(get_gateway),
    guard: InFlightGuard = Depends(get_guard),
    autosaver: DraftAutosaver = Depends(get_autosaver),
    user=Depends(get_current_active_user),
):
    system = await load_system(system_id, session)
    if not title.strip():
        raise HTTPException(422, {"message": "SOP title is required", "fields": {"title": "required"}})

    file_name = file.filename or "sop"
    data = await file.read()
    content = content_text.strip() or _sop_text(file_name, data) or title
    try:
        async with guard.hold("sop", system.id):
            analysis = await gateway.extract_sop_rules(title, category.value, content)
    except ActionInProgress as e:
        raise HTTPException(409, str(e))

    path = save_upload("sop", system.id, file_name, data)
    sop = SOP(
        system_id=system.id,
        title=title.strip(),
        version=version,
        category=category,
        file_name=file_name,
        filepath=path,
        uploaded_by=user.name,
        ai_compliance_status=analysis.status,
        ai_analysis_report=analysis.report,
        extracted_rules=analysis.rules,
    )
    try:
        sop = await store.put("sops", sop)
    except StoreError as e:
        remove_upload(path)
        raise HTTPException(503, str(e))

    await autosaver.clear(user.id, SOP_FORM)
    logger.info("SOP %s (%s) uploaded for system %s", sop.id, sop.category.value, system.id)
    return sop


@router.get("/systems/{system_id}/sops", response_model=list[SOPRead])
async def list_sops(
    system_id: int,
    session: AsyncSession = Depends(get_session),
    store: RecordStore = Depends(get_store),
    user=Depends(get_current_active_user),
):
    await load_system(system_id, session)
    try:
        return await store.list_by("sops", system_id)
    except StoreError as e:
        raise HTTPException(503, str(e))


@router.delete("/sops/{sop_id}")
async def delete_sop(
    sop_id: int,
    store: RecordStore = Depends(get_store),
    admin=Depends(require_admin),
):
    sop = await store.get("sops", sop_id)
    if not sop:
        raise HTTPException(404, "SOP not found")
    path = sop.filepath
    try:
        await store.delete("sops", sop_id)
    except StoreError as e:
        raise HTTPException(503, str(e))
    remove_upload(path)
    logger.info("SOP %s deleted by %s", sop_id, admin.username)
    return {"sop_id": sop_id, "deleted": True}
