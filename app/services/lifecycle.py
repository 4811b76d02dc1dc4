# app/services/lifecycle.py
from datetime import date
from typing import List

from app.models import PharmaSystem, ComplianceStatus, ValidationStage

STAGE_ORDER: List[ValidationStage] = list(ValidationStage)


class LifecycleError(ValueError):
    pass


def status_for_progress(progress: int, current: ComplianceStatus) -> ComplianceStatus:
    """
    Derive compliance status from progress.
    0 is always Not Started; otherwise a standing Deviation is kept.
    """
    if progress < 0 or progress > 100:
        raise LifecycleError("Progress must be between 0 and 100")
    if progress == 0:
        return ComplianceStatus.NOT_STARTED
    if current == ComplianceStatus.DEVIATION:
        return ComplianceStatus.DEVIATION
    if progress == 100:
        return ComplianceStatus.COMPLIANT
    return ComplianceStatus.IN_PROGRESS


def apply_progress(system: PharmaSystem, progress: int) -> PharmaSystem:
    system.status = status_for_progress(progress, system.status)
    system.progress = progress
    if system.status == ComplianceStatus.COMPLIANT:
        system.last_validation_date = date.today()
    return system


def record_deviation(system: PharmaSystem) -> PharmaSystem:
    system.deviations_count += 1
    system.status = ComplianceStatus.DEVIATION
    return system


def close_deviation(system: PharmaSystem) -> PharmaSystem:
    if system.status != ComplianceStatus.DEVIATION:
        raise LifecycleError("No standing deviation to close")
    # re-derive as if no deviation were standing
    system.status = status_for_progress(system.progress, ComplianceStatus.IN_PROGRESS)
    if system.status == ComplianceStatus.COMPLIANT:
        system.last_validation_date = date.today()
    return system


def advance_stage(system: PharmaSystem) -> PharmaSystem:
    idx = STAGE_ORDER.index(system.current_stage)
    if idx == len(STAGE_ORDER) - 1:
        raise LifecycleError("System is already at the final validation stage")
    system.current_stage = STAGE_ORDER[idx + 1]
    return system
