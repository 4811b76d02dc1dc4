from sqlmodel import SQLModel, Field, Column, JSON
from typing import Optional, List, Dict, Any
import datetime as dt
from enum import Enum


class UserRole(str, Enum):
    ADMIN = "Admin / QA Manager"
    OPERATOR = "Operator / Analyst"


class SystemType(str, Enum):
    WATER_SYSTEM = "Water System (WFI/PW)"
    HVAC = "HVAC / Air Handling"
    LAB_EQUIPMENT = "Lab Equipment (HPLC/TOC)"
    MONITORING = "Env. Monitoring (Fridge/Sensors)"
    SOFTWARE = "GAMP 5 Software"


class ValidationStage(str, Enum):
    # declaration order is lifecycle order
    URS = "URS (User Requirements)"
    IQ = "IQ (Installation Qualification)"
    OQ = "OQ (Operational Qualification)"
    PQ = "PQ (Performance Qualification)"
    VSR = "Validation Summary Report"


class ComplianceStatus(str, Enum):
    COMPLIANT = "Compliant"
    IN_PROGRESS = "In Progress"
    DEVIATION = "Deviation/Non-Compliant"
    NOT_STARTED = "Not Started"


class RiskLevel(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class SOPCategory(str, Enum):
    OPERATION = "Operation"
    VALIDATION = "Validation"
    MAINTENANCE = "Maintenance"
    SPREADSHEET_VALIDATION = "Spreadsheet Validation"
    SAFETY = "Safety"


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    hashed_password: str
    name: str = Field(default="Unknown")
    role: UserRole = Field(default=UserRole.OPERATOR)
    last_login: Optional[dt.datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class PharmaSystem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    category: SystemType
    location: str = ""
    risk_level: RiskLevel = Field(default=RiskLevel.MEDIUM)
    current_stage: ValidationStage = Field(default=ValidationStage.URS)
    status: ComplianceStatus = Field(default=ComplianceStatus.NOT_STARTED)
    progress: int = Field(default=0)
    deviations_count: int = Field(default=0)
    last_validation_date: Optional[dt.date] = None
    created_at: dt.datetime = Field(default_factory=dt.datetime.utcnow)


class InspectionRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    system_id: int = Field(foreign_key="pharmasystem.id", index=True)
    date: dt.date
    inspector_name: str
    notes: str = ""
    parameters: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))
    signature: Optional[str] = None  # data URL of the drawn signature
    created_at: dt.datetime = Field(default_factory=dt.datetime.utcnow)


class SOP(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    system_id: int = Field(foreign_key="pharmasystem.id", index=True)
    title: str
    version: str = "1.0"
    category: SOPCategory = Field(default=SOPCategory.OPERATION)
    file_name: str
    filepath: Optional[str] = None
    upload_date: dt.datetime = Field(default_factory=dt.datetime.utcnow)
    uploaded_by: str
    is_active: bool = Field(default=True)
    ai_compliance_status: Optional[str] = None
    ai_analysis_report: Optional[str] = None
    extracted_rules: Optional[str] = None


class ExcelReport(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    system_id: int = Field(foreign_key="pharmasystem.id", index=True)
    file_name: str
    filepath: Optional[str] = None
    date: dt.datetime = Field(default_factory=dt.datetime.utcnow)
    retention_date: Optional[dt.date] = None
    total_formulas: int = 0
    discrepancies: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    is_valid: bool = True
    summary: str = ""
    referenced_sop_title: Optional[str] = None


class UserDraft(SQLModel, table=True):
    user_id: int = Field(primary_key=True)
    form_key: str = Field(primary_key=True)
    data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: dt.datetime = Field(default_factory=dt.datetime.utcnow)
