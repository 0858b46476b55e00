from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from programs.survey_plan.errors import SurveyNotFound
from schemas.survey import Survey, SurveyCreate, SurveyStructure, SurveyUpdate


class SurveyRecordStore(Protocol):
    """
    CRUD seam for survey records.

    Implementations are synchronous; the workflow calls them off the event loop. Failures of
    the backing service raise `StoreUnavailable`, unknown ids raise `SurveyNotFound`.
    """

    def create(self, survey: SurveyCreate, structure: Optional[SurveyStructure] = None) -> Survey: ...

    def get(self, survey_id: int) -> Optional[Survey]: ...

    def update(self, survey_id: int, changes: SurveyUpdate) -> Survey: ...

    def list(self) -> List[Survey]: ...

    def delete(self, survey_id: int) -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MemorySurveyStore:
    """In-process store. Data is lost on restart."""

    def __init__(self) -> None:
        self._surveys: List[Survey] = []
        self._next_id = 1
        self._lock = threading.Lock()

    def create(self, survey: SurveyCreate, structure: Optional[SurveyStructure] = None) -> Survey:
        now = _now()
        with self._lock:
            record = Survey(
                id=self._next_id,
                name=survey.name,
                language=survey.language,
                collection_mode=survey.collection_mode,
                status=survey.status,
                structure=structure,
                created_at=now,
                updated_at=now,
            )
            self._next_id += 1
            self._surveys.append(record)
        return record

    def get(self, survey_id: int) -> Optional[Survey]:
        with self._lock:
            for s in self._surveys:
                if s.id == survey_id:
                    return s
        return None

    def update(self, survey_id: int, changes: SurveyUpdate) -> Survey:
        with self._lock:
            for idx, existing in enumerate(self._surveys):
                if existing.id != survey_id:
                    continue
                updated = existing.model_copy(update={**changes.changes(), "updated_at": _now()})
                self._surveys[idx] = updated
                return updated
        raise SurveyNotFound(survey_id)

    def list(self) -> List[Survey]:
        # Newest first; ids break ties between records created in the same instant.
        with self._lock:
            items = list(self._surveys)
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(items, key=lambda s: (s.created_at or epoch, s.id), reverse=True)

    def delete(self, survey_id: int) -> None:
        with self._lock:
            for idx, existing in enumerate(self._surveys):
                if existing.id == survey_id:
                    del self._surveys[idx]
                    return
        raise SurveyNotFound(survey_id)


SEED_SURVEYS = (
    SurveyCreate(name="Employee Satisfaction Q1", language="English", collection_mode="web", status="active"),
    SurveyCreate(name="Customer Feedback 2024", language="Bilingual", collection_mode="field", status="draft"),
)


def seed_if_empty(store: SurveyRecordStore) -> int:
    """Insert the sample surveys when the store has none. Returns how many were created."""
    if store.list():
        return 0
    for item in SEED_SURVEYS:
        store.create(item)
    return len(SEED_SURVEYS)


__all__ = ["MemorySurveyStore", "SEED_SURVEYS", "SurveyRecordStore", "seed_if_empty"]
