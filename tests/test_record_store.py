from contextlib import asynccontextmanager
from datetime import date, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.models import ExcelReport, InspectionRecord, PharmaSystem, SOP, SystemType
from app.services.record_store import RecordStore


@asynccontextmanager
async def store_on(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    Session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with Session() as s:
        system = PharmaSystem(name="HVAC-1", category=SystemType.HVAC)
        s.add(system)
        await s.commit()
        await s.refresh(system)
        yield RecordStore(s), system.id
    await engine.dispose()


@pytest.mark.asyncio
async def test_inspections_listed_newest_first_and_filtered(tmp_path):
    async with store_on(tmp_path) as (store, system_id):
        for d in (date(2024, 1, 5), date(2024, 3, 1), date(2024, 2, 10)):
            await store.put("inspections", InspectionRecord(system_id=system_id, date=d, inspector_name="QA"))
        listed = await store.list_by("inspections", system_id)
        assert [r.date for r in listed] == [date(2024, 3, 1), date(2024, 2, 10), date(2024, 1, 5)]

        window = await store.filter_inspections(system_id, date(2024, 2, 1), date(2024, 2, 29))
        assert [r.date for r in window] == [date(2024, 2, 10)]
        assert len(await store.filter_inspections(system_id, start=date(2024, 2, 10))) == 2


@pytest.mark.asyncio
async def test_listing_is_scoped_to_system(tmp_path):
    async with store_on(tmp_path) as (store, system_id):
        await store.put("inspections", InspectionRecord(system_id=system_id, date=date(2024, 1, 1), inspector_name="A"))
        assert await store.list_by("inspections", system_id + 1) == []


@pytest.mark.asyncio
async def test_excel_report_gets_retention_date(tmp_path):
    async with store_on(tmp_path) as (store, system_id):
        report = ExcelReport(system_id=system_id, file_name="calc.xlsx")
        saved = await store.save_excel_report(report, uploaded_at=datetime(2024, 8, 31, 9, 30))
        assert saved.retention_date == date(2025, 2, 28)
        assert (await store.get("excel_reports", saved.id)).retention_date == date(2025, 2, 28)


@pytest.mark.asyncio
async def test_delete_sop(tmp_path):
    async with store_on(tmp_path) as (store, system_id):
        sop = await store.put("sops", SOP(system_id=system_id, title="Cleaning", file_name="c.pdf", uploaded_by="QA"))
        assert await store.delete("sops", sop.id) is True
        assert await store.get("sops", sop.id) is None
        assert await store.delete("sops", sop.id) is False


@pytest.mark.asyncio
async def test_put_rejects_wrong_record_type(tmp_path):
    async with store_on(tmp_path) as (store, system_id):
        with pytest.raises(TypeError):
            await store.put("sops", InspectionRecord(system_id=system_id, date=date.today(), inspector_name="A"))
        with pytest.raises(ValueError):
            await store.list_by("nothing", system_id)


@pytest.mark.asyncio
async def test_drafts_upsert_and_clear(tmp_path):
    async with store_on(tmp_path) as (store, _):
        await store.save_draft(1, "inspection_form", {"notes": "a"})
        await store.save_draft(1, "inspection_form", {"notes": "ab"})
        await store.save_draft(1, "sop_form", {"title": "x"})
        await store.save_draft(2, "sop_form", {"title": "y"})
        assert await store.get_draft(1, "inspection_form") == {"notes": "ab"}

        await store.clear_draft(1, "inspection_form")
        assert await store.get_draft(1, "inspection_form") is None

        await store.clear_user_drafts(1)
        assert await store.get_draft(1, "sop_form") is None
        assert await store.get_draft(2, "sop_form") == {"title": "y"}
