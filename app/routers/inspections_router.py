# app/routers/inspections_router.py
import datetime as dt
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_current_active_user, get_session
from app.deps import get_autosaver, get_store, load_system
from app.models import InspectionRecord
from app.schemas import InspectionCreate, InspectionRead
from app.services.drafts import DraftAutosaver, INSPECTION_FORM
from app.services.parameter_schema import ParameterError, fields_for, validate_parameters
from app.services.record_store import RecordStore, StoreError
from app.services.spreadsheet import XLSX_MEDIA_TYPE, inspection_history_xlsx

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/systems/{system_id}/inspections", tags=["inspections"])


@router.post("/", response_model=InspectionRead)
async def create_inspection(
    system_id: int,
    payload: InspectionCreate,
    session: AsyncSession = Depends(get_session),
    store: RecordStore = Depends(get_store),
    autosaver: DraftAutosaver = Depends(get_autosaver),
    user=Depends(get_current_active_user),
):
    system = await load_system(system_id, session)

    missing = {}
    if payload.date is None:
        missing["date"] = "required"
    if not payload.inspector_name.strip():
        missing["inspector_name"] = "required"
    if missing:
        raise HTTPException(422, {"message": "Please fill in Date and Inspector Name", "fields": missing})

    try:
        parameters = validate_parameters(system.category, payload.parameters)
    except ParameterError as e:
        raise HTTPException(422, {"message": "Invalid inspection parameters", "fields": e.errors})

    record = InspectionRecord(
        system_id=system.id,
        date=payload.date,
        inspector_name=payload.inspector_name.strip(),
        notes=payload.notes,
        parameters=parameters,
        signature=payload.signature,
    )
    try:
        record = await store.put("inspections", record)
    except StoreError as e:
        raise HTTPException(503, str(e))

    await autosaver.clear(user.id, INSPECTION_FORM)
    logger.info("Inspection %s recorded for system %s by %s", record.id, system.id, record.inspector_name)
    return record


@router.get("/", response_model=list[InspectionRead])
async def list_inspections(
    system_id: int,
    start: Optional[dt.date] = None,
    end: Optional[dt.date] = None,
    session: AsyncSession = Depends(get_session),
    store: RecordStore = Depends(get_store),
    user=Depends(get_current_active_user),
):
    await load_system(system_id, session)
    try:
        return await store.filter_inspections(system_id, start, end)
    except StoreError as e:
        raise HTTPException(503, str(e))


@router.get("/export")
async def export_inspections(
    system_id: int,
    session: AsyncSession = Depends(get_session),
    store: RecordStore = Depends(get_store),
    user=Depends(get_current_active_user),
):
    system = await load_system(system_id, session)
    records = await store.list_by("inspections", system_id)
    content = inspection_history_xlsx(records, [f.name for f in fields_for(system.category)])
    filename = f"{system.name}_History.xlsx"
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
