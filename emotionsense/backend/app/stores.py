from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class EmotionRecord:
    label: str
    created_at: datetime


@dataclass(frozen=True)
class OverrideRecord:
    patient_id: str
    issued_at: datetime
    issued_by: str


class InMemoryRecordStore:
    def __init__(self) -> None:
        self._entries: Dict[str, List[EmotionRecord]] = {}

    def add_entry(self, patient_id: str, label: str, created_at: datetime) -> EmotionRecord:
        record = EmotionRecord(label=label, created_at=created_at)
        self._entries.setdefault(patient_id, []).append(record)
        return record

    def list_entries(self, patient_id: str) -> List[EmotionRecord]:
        return list(self._entries.get(patient_id, []))


class InMemoryOverrideStore:
    def __init__(self) -> None:
        self._overrides: Dict[str, OverrideRecord] = {}

    def get_override(self, patient_id: str) -> Optional[OverrideRecord]:
        return self._overrides.get(patient_id)

    def set_override(self, patient_id: str, clinician_id: str, now: datetime) -> OverrideRecord:
        override = OverrideRecord(patient_id=patient_id, issued_at=now, issued_by=clinician_id)
        self._overrides[patient_id] = override
        return override

    def remove_override(self, patient_id: str) -> bool:
        return self._overrides.pop(patient_id, None) is not None
