from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
import datetime as dt
from enum import Enum

from app.models import (
    UserRole,
    SystemType,
    ValidationStage,
    ComplianceStatus,
    RiskLevel,
    SOPCategory,
)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserCreate(BaseModel):
    username: str
    password: str
    name: Optional[str] = None
    role: UserRole = UserRole.OPERATOR


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    name: str
    role: UserRole
    last_login: Optional[dt.datetime] = None


class PasswordChange(BaseModel):
    new_password: str = Field(min_length=4)
    user_id: Optional[int] = None  # admins may reset another user's password


# -------------------------
# Systems / inspections
# -------------------------

class SystemCreate(BaseModel):
    name: str = Field(min_length=1)
    category: SystemType
    location: str = ""
    risk_level: RiskLevel = RiskLevel.MEDIUM


class SystemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: SystemType
    location: str
    risk_level: RiskLevel
    current_stage: ValidationStage
    status: ComplianceStatus
    progress: int
    deviations_count: int
    last_validation_date: Optional[dt.date] = None


class ProgressUpdate(BaseModel):
    progress: int = Field(ge=0, le=100)


class RiskAnalysisRequest(BaseModel):
    description: str = Field(min_length=1)
    category: SystemType


class InspectionCreate(BaseModel):
    # blank values are rejected in the router with a field message
    date: Optional[dt.date] = None
    inspector_name: str = ""
    notes: str = ""
    parameters: Dict[str, str] = {}
    signature: Optional[str] = None


class InspectionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    system_id: int
    date: dt.date
    inspector_name: str
    notes: str
    parameters: Dict[str, str]
    signature: Optional[str] = None


class TextResult(BaseModel):
    text: str


class TranslateRequest(BaseModel):
    text: str
    target_language: str = "Persian (Farsi)"


# -------------------------
# Spreadsheet reconciliation
# -------------------------

class Severity(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class SpreadsheetCell(BaseModel):
    address: str
    formula: str
    value: Any = None


class Discrepancy(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str
    formula: str = ""
    value: Any = None
    reason: str
    severity: Severity
    suggested_formula: Optional[str] = Field(default=None, alias="suggestedFormula")
    suggested_value: Optional[str] = Field(default=None, alias="suggestedValue")

    @field_validator("formula", mode="before")
    @classmethod
    def _formula_text(cls, v):
        return "" if v is None else str(v)

    @field_validator("suggested_formula", "suggested_value", mode="before")
    @classmethod
    def _suggestion_text(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class SpreadsheetAnalysis(BaseModel):
    file_name: str
    total_formulas: int = 0
    discrepancies: List[Discrepancy] = []
    is_valid: bool = True
    summary: str = ""
    referenced_sop_title: Optional[str] = None


class ExcelReportRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    system_id: int
    file_name: str
    date: dt.datetime
    retention_date: Optional[dt.date] = None
    expired: bool = False
    total_formulas: int
    discrepancies: List[Discrepancy]
    is_valid: bool
    summary: str
    referenced_sop_title: Optional[str] = None


# -------------------------
# SOPs
# -------------------------

class SopAnalysis(BaseModel):
    status: str
    report: str
    rules: str


class SOPRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    system_id: int
    title: str
    version: str
    category: SOPCategory
    file_name: str
    upload_date: dt.datetime
    uploaded_by: str
    is_active: bool
    ai_compliance_status: Optional[str] = None
    ai_analysis_report: Optional[str] = None
    extracted_rules: Optional[str] = None


# -------------------------
# Drafts / dashboard
# -------------------------

class DraftRead(BaseModel):
    form_key: str
    state: str
    data: Optional[Dict[str, Any]] = None


class CategoryProgress(BaseModel):
    category: SystemType
    count: int
    avg_progress: int


class DashboardSummary(BaseModel):
    total_systems: int
    compliant: int
    total_deviations: int
    avg_progress: int
    by_status: Dict[str, int]
    by_risk: Dict[str, int]
    by_category: List[CategoryProgress]
