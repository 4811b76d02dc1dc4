# app/services/retention.py
import os
from datetime import date, datetime
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

RETENTION_MONTHS = int(os.getenv("RETENTION_MONTHS", "6"))


def retention_date(uploaded_at: Union[datetime, date], months: int = RETENTION_MONTHS) -> date:
    """
    Calendar-month retention: 2024-08-31 + 6 months -> 2025-02-28.
    Computed once when a report is first written.
    """
    if isinstance(uploaded_at, datetime):
        uploaded_at = uploaded_at.date()
    return uploaded_at + relativedelta(months=months)


def is_expired(retention: Optional[date], today: Optional[date] = None) -> bool:
    # informational only, listings never drop expired reports
    if retention is None:
        return False
    return (today or date.today()) > retention
