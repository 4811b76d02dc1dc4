# app/services/record_store.py
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete as sa_delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel, select

from app.models import ExcelReport, InspectionRecord, SOP, UserDraft
from app.services.retention import retention_date

logger = logging.getLogger(__name__)

# collection -> (table, column listings are sorted on, newest first)
COLLECTIONS = {
    "inspections": (InspectionRecord, "date"),
    "excel_reports": (ExcelReport, "date"),
    "sops": (SOP, "upload_date"),
}


class StoreError(RuntimeError):
    """A write or read against the record store failed; nothing was persisted."""


class RecordStore:
    """
    Append-only record collections keyed by owning system, plus the per-user
    draft partition. One instance wraps one AsyncSession.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # -------------------------
    # Record collections
    # -------------------------

    def _table(self, collection: str):
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection: {collection}")

    async def _commit(self, what: str):
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Record store write failed (%s): %s", what, e)
            raise StoreError(f"Could not persist {what}") from e

    async def _execute(self, q, what: str):
        try:
            return await self.session.execute(q)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Record store read failed (%s): %s", what, e)
            raise StoreError(f"Could not read {what}") from e

    async def put(self, collection: str, record: SQLModel) -> SQLModel:
        table, _ = self._table(collection)
        if not isinstance(record, table):
            raise TypeError(f"{collection} holds {table.__name__} records")
        self.session.add(record)
        await self._commit(collection)
        await self.session.refresh(record)
        return record

    async def get(self, collection: str, record_id: int) -> Optional[SQLModel]:
        table, _ = self._table(collection)
        res = await self._execute(select(table).where(table.id == record_id), collection)
        return res.scalar_one_or_none()

    async def list_by(self, collection: str, system_id: int) -> List[SQLModel]:
        table, sort_field = self._table(collection)
        sort_col = getattr(table, sort_field)
        q = select(table).where(table.system_id == system_id).order_by(sort_col.desc(), table.id.desc())
        res = await self._execute(q, collection)
        return list(res.scalars().all())

    async def delete(self, collection: str, record_id: int) -> bool:
        record = await self.get(collection, record_id)
        if record is None:
            return False
        await self.session.delete(record)
        await self._commit(collection)
        return True

    async def filter_inspections(
        self, system_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[InspectionRecord]:
        records = await self.list_by("inspections", system_id)
        return [
            r for r in records
            if (start is None or r.date >= start) and (end is None or r.date <= end)
        ]

    async def save_excel_report(self, report: ExcelReport, uploaded_at: Optional[datetime] = None) -> ExcelReport:
        # retention is stamped before the first and only write
        report.date = uploaded_at or report.date or datetime.utcnow()
        report.retention_date = retention_date(report.date)
        return await self.put("excel_reports", report)

    # -------------------------
    # Draft partition
    # -------------------------

    async def _get_draft_row(self, user_id: int, form_key: str) -> Optional[UserDraft]:
        res = await self._execute(
            select(UserDraft).where(UserDraft.user_id == user_id, UserDraft.form_key == form_key), "draft"
        )
        return res.scalar_one_or_none()

    async def get_draft(self, user_id: int, form_key: str) -> Optional[Dict[str, Any]]:
        draft = await self._get_draft_row(user_id, form_key)
        return draft.data if draft else None

    async def save_draft(self, user_id: int, form_key: str, data: Dict[str, Any]) -> None:
        draft = await self._get_draft_row(user_id, form_key)
        if draft is None:
            draft = UserDraft(user_id=user_id, form_key=form_key)
        draft.data = dict(data)
        draft.updated_at = datetime.utcnow()
        self.session.add(draft)
        await self._commit("draft")

    async def clear_draft(self, user_id: int, form_key: str) -> None:
        await self._execute(
            sa_delete(UserDraft).where(UserDraft.user_id == user_id, UserDraft.form_key == form_key), "draft"
        )
        await self._commit("draft")

    async def clear_user_drafts(self, user_id: int) -> None:
        await self._execute(sa_delete(UserDraft).where(UserDraft.user_id == user_id), "drafts")
        await self._commit("drafts")
