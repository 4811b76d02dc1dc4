# app/routers/excel_router.py
import logging

from fastapi import APIRouter, UploadFile, File, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import get_current_active_user, get_session
from app.deps import get_guard, get_store, load_system
from app.models import ExcelReport
from app.schemas import Discrepancy, ExcelReportRead
from app.services.agent_services import CapabilityGateway, get_gateway
from app.services.inflight import ActionInProgress, InFlightGuard
from app.services.record_store import RecordStore, StoreError
from app.services.retention import is_expired
from app.services.spreadsheet import (
    XLSX_MEDIA_TYPE,
    SpreadsheetError,
    apply_corrections,
    check_extension,
    corrected_filename,
    reconcile,
    select_active_sop,
)
from app.services.storage import read_upload, remove_upload, save_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["excel"])


def _to_read(report: ExcelReport) -> ExcelReportRead:
    out = ExcelReportRead.model_validate(report)
    out.expired = is_expired(report.retention_date)
    return out


@router.post("/systems/{system_id}/excel", response_model=ExcelReportRead)
async def upload_spreadsheet(
    system_id: int,
    file: UploadFile = File(...),
    session: AsyncSession = Depends(get_session),
    store: RecordStore = Depends(get_store),
    gateway: CapabilityGateway = Depends(get_gateway),
    guard: InFlightGuard = Depends(get_guard),
    user=Depends(get_current_active_user),
):
    system = await load_system(system_id, session)
    file_name = file.filename or "upload.xlsx"
    data = await file.read()
    try:
        check_extension(file_name)
        sops = await store.list_by("sops", system.id)
        async with guard.hold("excel", system.id):
            analysis = await reconcile(gateway, file_name, data, select_active_sop(sops))
    except SpreadsheetError as e:
        raise HTTPException(400, str(e))
    except ActionInProgress as e:
        raise HTTPException(409, str(e))
    except StoreError as e:
        raise HTTPException(503, str(e))

    path = save_upload("excel", system.id, file_name, data)
    report = ExcelReport(
        system_id=system.id,
        file_name=file_name,
        filepath=path,
        total_formulas=analysis.total_formulas,
        discrepancies=[d.model_dump(mode="json", by_alias=True) for d in analysis.discrepancies],
        is_valid=analysis.is_valid,
        summary=analysis.summary,
        referenced_sop_title=analysis.referenced_sop_title,
    )
    try:
        report = await store.save_excel_report(report)
    except StoreError as e:
        remove_upload(path)
        raise HTTPException(503, str(e))
    logger.info("Excel report %s stored for system %s (valid=%s)", report.id, system.id, report.is_valid)
    return _to_read(report)


@router.get("/systems/{system_id}/excel", response_model=list[ExcelReportRead])
async def list_reports(
    system_id: int,
    session: AsyncSession = Depends(get_session),
    store: RecordStore = Depends(get_store),
    user=Depends(get_current_active_user),
):
    await load_system(system_id, session)
    try:
        reports = await store.list_by("excel_reports", system_id)
    except StoreError as e:
        raise HTTPException(503, str(e))
    return [_to_read(r) for r in reports]


@router.get("/excel/{report_id}/corrected")
async def download_corrected(
    report_id: int,
    store: RecordStore = Depends(get_store),
    user=Depends(get_current_active_user),
):
    report = await store.get("excel_reports", report_id)
    if not report:
        raise HTTPException(404, "Report not found")
    data = read_upload(report.filepath)
    if data is None:
        raise HTTPException(404, "Original spreadsheet is no longer stored")
    discrepancies = [Discrepancy.model_validate(d) for d in report.discrepancies]
    try:
        content = apply_corrections(data, discrepancies)
    except SpreadsheetError as e:
        raise HTTPException(400, str(e))
    filename = corrected_filename(report.file_name)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
