from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone, tzinfo
from typing import Iterable, List, Optional

from .risk_engine import (
    CRITICAL,
    SAFE,
    consecutive_negative_days,
    count_negative,
    effective_alert_level,
    negative_percentage,
    sort_newest_first,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatientStatus:
    patient_id: str
    patient_name: str
    patient_email: str
    alert_level: str
    total_entries: int
    negative_count: int
    negative_percentage: int
    last_entry_at: Optional[datetime]
    consecutive_negative_days: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SelfAlert:
    level: str
    message: str
    consecutive_days: int

    def to_dict(self) -> dict:
        return asdict(self)


def compute_patient_status(
    patient_id: str,
    patient_name: str,
    patient_email: str,
    records,
    overrides,
    tz: Optional[tzinfo] = None,
) -> PatientStatus:
    entries = list(records.list_entries(patient_id))
    override = overrides.get_override(patient_id)
    newest = sort_newest_first(entries)
    return PatientStatus(
        patient_id=patient_id,
        patient_name=patient_name,
        patient_email=patient_email,
        alert_level=effective_alert_level(entries, override, tz),
        total_entries=len(entries),
        negative_count=count_negative(entries),
        negative_percentage=negative_percentage(entries),
        last_entry_at=newest[0].created_at if newest else None,
        consecutive_negative_days=consecutive_negative_days(entries, tz),
    )


def list_patient_statuses(patients: Iterable, records, overrides, tz: Optional[tzinfo] = None) -> List[PatientStatus]:
    return [
        compute_patient_status(str(patient.id), patient.name, patient.email, records, overrides, tz)
        for patient in patients
    ]


def list_at_risk_patients(patients: Iterable, records, overrides, tz: Optional[tzinfo] = None) -> List[PatientStatus]:
    return [
        status
        for status in list_patient_statuses(patients, records, overrides, tz)
        if status.alert_level != SAFE
    ]


def compose_self_alert_message(level: str, consecutive_days: int) -> str:
    if level == CRITICAL:
        return (
            f"We have noticed consistently negative emotions for {consecutive_days} days in a row. "
            "Your psychologist has been notified and is ready to help. "
            "Please don't hesitate to share how you feel."
        )
    return (
        f"Negative emotions were detected over the last {consecutive_days} days. "
        "Tell your diary how you feel; your psychologist is ready to support you."
    )


def compute_self_alert(patient_id: str, records, overrides, tz: Optional[tzinfo] = None) -> Optional[SelfAlert]:
    entries = list(records.list_entries(patient_id))
    if not entries:
        return None
    level = effective_alert_level(entries, overrides.get_override(patient_id), tz)
    if level == SAFE:
        return None
    days = consecutive_negative_days(entries, tz)
    return SelfAlert(level=level, message=compose_self_alert_message(level, days), consecutive_days=days)


def mark_patient_safe(patient_id: str, clinician_id: str, overrides, now: Optional[datetime] = None):
    issued_at = now or datetime.now(timezone.utc)
    override = overrides.set_override(patient_id, clinician_id, issued_at)
    logger.info("Patient %s marked safe by %s at %s", patient_id, clinician_id, issued_at.isoformat())
    return override


def remove_patient_override(patient_id: str, overrides) -> bool:
    removed = overrides.remove_override(patient_id)
    if removed:
        logger.info("Override removed for patient %s", patient_id)
    return removed
