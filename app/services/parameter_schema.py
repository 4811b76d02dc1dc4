# app/services/parameter_schema.py
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from app.models import SystemType


class _BaseField(BaseModel):
    name: str
    label: str
    unit: Optional[str] = None
    gamp_guideline: Optional[str] = None


class NumberField(_BaseField):
    input_type: Literal["number"] = "number"


class TextField(_BaseField):
    input_type: Literal["text"] = "text"


class ChoiceField(_BaseField):
    input_type: Literal["select"] = "select"
    options: List[str]


ParameterField = Annotated[Union[NumberField, TextField, ChoiceField], Field(discriminator="input_type")]


class ParameterError(ValueError):
    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))


SYSTEM_PARAMS: Dict[SystemType, List[ParameterField]] = {
    SystemType.WATER_SYSTEM: [
        NumberField(name="conductivity", label="Conductivity", unit="µS/cm",
                    gamp_guideline="Critical Quality Attribute (CQA) - Must be recorded."),
        NumberField(name="toc", label="TOC", unit="ppb",
                    gamp_guideline="Ensure value is within validated range."),
        NumberField(name="temp", label="Loop Temperature", unit="°C",
                    gamp_guideline="Verify sanitization cycles."),
        NumberField(name="flow", label="Flow Rate", unit="L/min",
                    gamp_guideline="Turbulent flow verification."),
    ],
    SystemType.HVAC: [
        NumberField(name="diff_pressure", label="Differential Pressure", unit="Pa",
                    gamp_guideline="Cascade verification between zones."),
        NumberField(name="temp", label="Temperature", unit="°C",
                    gamp_guideline="Critical Process Parameter (CPP)."),
        NumberField(name="humidity", label="Relative Humidity", unit="%",
                    gamp_guideline="Critical for product stability."),
        NumberField(name="hepa_integrity", label="HEPA Filter Integrity", unit="%",
                    gamp_guideline="Annual requalification data."),
    ],
    SystemType.LAB_EQUIPMENT: [
        ChoiceField(name="audit_trail", label="Audit Trail Review",
                    options=["Pass", "Fail", "Pass with minor findings"],
                    gamp_guideline="21 CFR Part 11: Check for unauthorized deletions."),
        NumberField(name="calibration_offset", label="Calibration Offset",
                    gamp_guideline="Traceability to NIST standards."),
        NumberField(name="system_suitability", label="System Suitability", unit="%",
                    gamp_guideline="Performance check before run."),
        ChoiceField(name="data_backup", label="Data Backup Verification",
                    options=["Verified", "Failed"],
                    gamp_guideline="Ensure raw data is secured."),
    ],
    SystemType.MONITORING: [
        NumberField(name="sensor_drift", label="Sensor Drift", unit="°C",
                    gamp_guideline="Compare against reference probe."),
        NumberField(name="battery", label="Battery Level", unit="%",
                    gamp_guideline="Risk of data loss if < 20%."),
        ChoiceField(name="alarm_test", label="Alarm Function Test", options=["Pass", "Fail"],
                    gamp_guideline="Challenge test High/Low limits."),
        NumberField(name="signal", label="Signal Strength", unit="dBm",
                    gamp_guideline="Connectivity check."),
    ],
    SystemType.SOFTWARE: [
        ChoiceField(name="access_review", label="User Access Review", options=["Completed", "Pending"],
                    gamp_guideline="Periodic review of active accounts."),
        ChoiceField(name="esignature", label="E-Signature Check", options=["Verified", "Issue Found"],
                    gamp_guideline="Unique ID/Password required."),
        NumberField(name="error_logs", label="Error Log Review", unit="Count",
                    gamp_guideline="Check for critical system errors."),
        ChoiceField(name="backup_restore", label="Backup & Restore Test", options=["Successful", "Failed"],
                    gamp_guideline="Disaster recovery verification."),
        TextField(name="reviewer_comment", label="Reviewer Comment"),
    ],
}


def fields_for(category: SystemType) -> List[ParameterField]:
    return SYSTEM_PARAMS[category]


def validate_parameters(category: SystemType, params: Dict[str, str]) -> Dict[str, str]:
    """
    Check an inspection's parameter map against the schema for the asset category.
    Missing fields are allowed, unknown names are not. Returns the map with
    surrounding whitespace stripped.
    """
    by_name = {f.name: f for f in fields_for(category)}
    errors: Dict[str, str] = {}
    cleaned: Dict[str, str] = {}
    for key, raw in params.items():
        field = by_name.get(key)
        if field is None:
            errors[key] = "unknown parameter"
            continue
        value = str(raw).strip()
        if value == "":
            continue
        if isinstance(field, NumberField):
            try:
                float(value)
            except ValueError:
                errors[key] = "must be numeric"
                continue
        elif isinstance(field, ChoiceField) and value not in field.options:
            errors[key] = f"must be one of {', '.join(field.options)}"
            continue
        cleaned[key] = value
    if errors:
        raise ParameterError(errors)
    return cleaned
