"""
Plan approval workflow.

One `PlanSession` per survey id tracks where the wizard is:

    idle -> metadata_collected -> plan_requested -> plan_awaiting_review
         -> plan_approved -> persisted

`plan_rejected` is transient while a reject is in flight. It returns to
`plan_awaiting_review` with the regenerated plan, or ends in `max_attempts_exceeded` when
the server refuses further attempts.

Networked steps never cancel each other. Each one captures the session's generation
counter (and thread id) before awaiting and drops its result if a newer `generate`
superseded it in the meantime.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import anyio

from programs.survey_plan.builder import builder_view
from programs.survey_plan.errors import (
    InvalidPlanStructure,
    InvalidTransition,
    MaxAttemptsReached,
    StoreUnavailable,
    SurveyNotFound,
    SurveyPlanError,
    snippet,
)
from programs.survey_plan.fast_client import FastBackendClient
from programs.survey_plan.mirror import LocalMirror
from programs.survey_plan.normalizer import Invalid, normalize, structure_from_plan_specs
from programs.survey_plan.planner_client import PlannerClient
from programs.survey_plan.settings import SurveyPlanSettings
from programs.survey_plan.store import SurveyRecordStore
from schemas.planner import GenerateValidateFixResult, PlanMode, PlanThread, WizardGenerateRequest
from schemas.survey import Survey, SurveyCreate, SurveyStructure, SurveyUpdate

logger = logging.getLogger(__name__)


class PlanWorkflowState(str, Enum):
    IDLE = "idle"
    METADATA_COLLECTED = "metadata_collected"
    PLAN_REQUESTED = "plan_requested"
    PLAN_AWAITING_REVIEW = "plan_awaiting_review"
    PLAN_REJECTED = "plan_rejected"
    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"
    PLAN_APPROVED = "plan_approved"
    PERSISTED = "persisted"


_REVIEWABLE = {PlanWorkflowState.PLAN_AWAITING_REVIEW, PlanWorkflowState.MAX_ATTEMPTS_EXCEEDED}


@dataclass
class PlanSession:
    survey_id: int
    state: PlanWorkflowState = PlanWorkflowState.IDLE
    mode: PlanMode = "planner"
    survey_type: Optional[str] = None
    survey: Optional[Survey] = None
    thread: Optional[PlanThread] = None
    structure: Optional[SurveyStructure] = None
    generation: int = 0
    last_error: Optional[SurveyPlanError] = None
    max_attempts: Optional[MaxAttemptsReached] = None
    warnings: List[str] = field(default_factory=list)
    stored: Optional[bool] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def thread_id(self) -> Optional[str]:
        return self.thread.thread_id if self.thread is not None else None

    def snapshot(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "surveyId": self.survey_id,
            "state": self.state.value,
            "mode": self.mode,
            "surveyType": self.survey_type,
            "threadId": self.thread_id,
            "approvalStatus": self.thread.approval_status if self.thread else None,
            "attempt": self.thread.attempt if self.thread else None,
            "plan": self.thread.plan.model_dump(mode="json") if self.thread else None,
            "structure": self.structure.to_json() if self.structure is not None else None,
            "stored": self.stored,
            "warnings": list(self.warnings),
            "error": None,
            "maxAttempts": None,
        }
        if self.last_error is not None:
            out["error"] = {
                "error": self.last_error.code,
                "message": str(self.last_error),
                **self.last_error.details(),
            }
        if self.max_attempts is not None:
            out["maxAttempts"] = {
                "currentAttempt": self.max_attempts.current_attempt,
                "maxAttempts": self.max_attempts.max_attempts,
                "message": str(self.max_attempts),
            }
        return out


def _temporary_survey_id() -> int:
    return int(time.time() * 1000)


class SurveyPlanWorkflow:
    def __init__(
        self,
        *,
        store: SurveyRecordStore,
        mirror: LocalMirror,
        planner: PlannerClient,
        fast: FastBackendClient,
        settings: SurveyPlanSettings,
    ) -> None:
        self.store = store
        self.mirror = mirror
        self.planner = planner
        self.fast = fast
        self.settings = settings
        self._sessions: Dict[int, PlanSession] = {}

    # ------------------------------------------------------------------ sessions

    def session(self, survey_id: int) -> PlanSession:
        s = self._sessions.get(survey_id)
        if s is None:
            raise SurveyNotFound(survey_id)
        return s

    def _ensure_session(self, survey_id: int) -> PlanSession:
        s = self._sessions.get(survey_id)
        if s is None:
            s = PlanSession(survey_id=survey_id)
            self._sessions[survey_id] = s
        return s

    def _superseded(self, session: PlanSession, generation: int, thread_id: Optional[str] = None) -> bool:
        if session.generation != generation or (thread_id is not None and session.thread_id != thread_id):
            logger.warning(
                "discarding superseded result for survey %s (generation %s, now %s)",
                session.survey_id,
                generation,
                session.generation,
            )
            return True
        return False

    @asynccontextmanager
    async def _mutation(self, session: PlanSession) -> AsyncIterator[None]:
        if session.lock.locked():
            raise InvalidTransition("Another approve or reject is already in progress for this survey.")
        async with session.lock:
            yield

    # ------------------------------------------------------------------ metadata

    async def collect_metadata(
        self,
        metadata: SurveyCreate,
        survey_id: Optional[int] = None,
        survey_type: Optional[str] = None,
    ) -> Survey:
        """
        Create or update the survey record. Never blocked by the store.

        `survey_type` is remembered on the session and used by `generate` when the request
        does not name a type.
        """
        if survey_id is not None:
            changes = SurveyUpdate(
                name=metadata.name,
                language=metadata.language,
                collection_mode=metadata.collection_mode,
            )
            try:
                survey = await anyio.to_thread.run_sync(self.store.update, survey_id, changes)
            except (StoreUnavailable, SurveyNotFound) as e:
                logger.warning("survey %s metadata update failed, continuing locally: %s", survey_id, e)
                survey = self._local_survey(metadata, survey_id)
        else:
            survey = await self._create_survey(metadata)

        session = self._ensure_session(survey.id)
        session.survey = survey
        if survey_type:
            session.survey_type = survey_type
        if session.state == PlanWorkflowState.IDLE:
            session.state = PlanWorkflowState.METADATA_COLLECTED
        return survey

    async def _create_survey(self, metadata: SurveyCreate) -> Survey:
        try:
            return await anyio.to_thread.run_sync(self.store.create, metadata)
        except StoreUnavailable as e:
            survey = self._local_survey(metadata, _temporary_survey_id())
            logger.warning("survey create failed, using temporary id %s: %s", survey.id, e)
            return survey

    @staticmethod
    def _local_survey(metadata: SurveyCreate, survey_id: int) -> Survey:
        return Survey(
            id=survey_id,
            name=metadata.name,
            language=metadata.language,
            collection_mode=metadata.collection_mode,
            status=metadata.status,
        )

    # ------------------------------------------------------------------ generate

    async def generate(self, request: WizardGenerateRequest) -> PlanSession:
        if request.survey_id is not None:
            session = self._ensure_session(request.survey_id)
        else:
            survey = await self._create_survey(
                SurveyCreate(
                    name=request.name,
                    language=request.language,
                    collection_mode=request.collection_mode,
                )
            )
            session = self._ensure_session(survey.id)
            session.survey = survey

        if "type" in request.model_fields_set:
            session.survey_type = request.type
        elif session.survey_type:
            request = request.model_copy(update={"type": session.survey_type})

        session.generation += 1
        generation = session.generation
        session.mode = request.mode
        session.state = PlanWorkflowState.PLAN_REQUESTED
        session.last_error = None
        session.max_attempts = None
        session.warnings = []
        session.stored = None

        try:
            if request.mode == "fast":
                thread = None
                structure = await self.fast.generate_fast(request.fast_request())
            else:
                thread, structure = await self._request_planner_plan(request, session, generation)
        except SurveyPlanError as e:
            if session.generation == generation:
                session.last_error = e
            raise

        if thread is None and structure is None:
            return session
        if self._superseded(session, generation):
            return session

        session.thread = thread
        session.structure = structure
        if request.review_plan:
            session.state = PlanWorkflowState.PLAN_AWAITING_REVIEW
            return session

        session.state = PlanWorkflowState.PLAN_APPROVED
        await self._persist(session, structure, generation)
        return session

    async def _request_planner_plan(
        self, request: WizardGenerateRequest, session: PlanSession, generation: int
    ) -> Tuple[Optional[PlanThread], Optional[SurveyStructure]]:
        created = await self.planner.create_plan(request.create_plan_request())
        if self._superseded(session, generation):
            return None, None
        thread = await self.planner.get_plan(created.thread_id)
        structure = structure_from_plan_specs(thread.plan, suggested_name=thread.plan.title or None)
        if structure is None:
            raise InvalidPlanStructure(snippet(thread.model_dump(mode="json")))
        return thread, structure

    # ------------------------------------------------------------------ review

    async def approve(self, survey_id: int) -> PlanSession:
        session = self.session(survey_id)
        async with self._mutation(session):
            if session.state not in _REVIEWABLE:
                raise InvalidTransition(f"Cannot approve a plan in state '{session.state.value}'.")
            generation = session.generation

            if session.mode == "fast" or session.thread is None:
                session.state = PlanWorkflowState.PLAN_APPROVED
                await self._persist(session, session.structure, generation)
                return session

            thread_id = session.thread.thread_id
            try:
                approved = await self.planner.approve_plan(thread_id)
            except SurveyPlanError as e:
                if not self._superseded(session, generation, thread_id):
                    session.last_error = e
                raise
            if self._superseded(session, generation, thread_id):
                return session
            session.thread = approved
            session.last_error = None
            session.state = PlanWorkflowState.PLAN_APPROVED

            validated: Optional[GenerateValidateFixResult] = None
            try:
                validated = await self.planner.generate_validate_fix(thread_id, auto_fix=self.settings.auto_fix)
            except SurveyPlanError as e:
                logger.warning("generate-validate-fix failed for thread %s, approval kept: %s", thread_id, e)
                session.warnings.append(f"Question generation failed: {e}")
            if self._superseded(session, generation, thread_id):
                return session

            structure = self.final_structure(approved, validated) or session.structure
            if structure is None:
                raise InvalidPlanStructure(snippet(approved.model_dump(mode="json")))
            await self._persist(session, structure, generation)
            return session

    @staticmethod
    def final_structure(
        approved: PlanThread, validated: Optional[GenerateValidateFixResult] = None
    ) -> Optional[SurveyStructure]:
        """Validated rendered pages, else the approved thread's generated questions, else the plan specs."""
        title = approved.plan.title or None
        candidates: List[Any] = []
        if validated is not None:
            candidates.append({"rendered_pages": validated.rendered_pages})
        if approved.generated_questions is not None:
            candidates.append({"generated_questions": approved.generated_questions})
        for raw in candidates:
            result = normalize(raw)
            if not isinstance(result, Invalid):
                if title and not result.suggested_name:
                    result = result.model_copy(update={"suggested_name": title})
                return result
        return structure_from_plan_specs(approved.plan, suggested_name=title)

    async def reject(self, survey_id: int, feedback: str) -> PlanSession:
        text = str(feedback or "").strip()
        if not text:
            raise ValueError("Feedback is required to reject a plan.")
        session = self.session(survey_id)
        async with self._mutation(session):
            if session.state == PlanWorkflowState.MAX_ATTEMPTS_EXCEEDED and session.max_attempts is not None:
                reached = session.max_attempts
                raise MaxAttemptsReached(
                    thread_id=reached.thread_id,
                    current_attempt=reached.current_attempt,
                    max_attempts=reached.max_attempts,
                    message=str(reached),
                )
            if session.state != PlanWorkflowState.PLAN_AWAITING_REVIEW:
                raise InvalidTransition(f"Cannot reject a plan in state '{session.state.value}'.")
            if session.mode == "fast" or session.thread is None:
                raise InvalidTransition("Fast-mode plans cannot be regenerated with feedback; generate again.")

            generation = session.generation
            thread_id = session.thread.thread_id
            session.state = PlanWorkflowState.PLAN_REJECTED
            try:
                regenerated = await self.planner.reject_plan(thread_id, text)
            except MaxAttemptsReached as e:
                if not self._superseded(session, generation, thread_id):
                    session.state = PlanWorkflowState.MAX_ATTEMPTS_EXCEEDED
                    session.max_attempts = e
                    session.last_error = e
                raise
            except SurveyPlanError as e:
                if not self._superseded(session, generation, thread_id):
                    session.last_error = e
                raise
            finally:
                if session.state == PlanWorkflowState.PLAN_REJECTED and session.generation == generation:
                    session.state = PlanWorkflowState.PLAN_AWAITING_REVIEW
            if self._superseded(session, generation, thread_id):
                return session

            session.thread = regenerated
            session.state = PlanWorkflowState.PLAN_AWAITING_REVIEW
            structure = structure_from_plan_specs(regenerated.plan, suggested_name=regenerated.plan.title or None)
            if structure is None:
                err = InvalidPlanStructure(snippet(regenerated.model_dump(mode="json")))
                session.last_error = err
                raise err
            session.structure = structure
            session.last_error = None
            return session

    # ------------------------------------------------------------------ persistence

    async def _persist(self, session: PlanSession, structure: Optional[SurveyStructure], generation: int) -> None:
        if structure is None:
            raise InvalidPlanStructure()
        session.structure = structure
        self.mirror.write(session.survey_id, structure)
        try:
            survey = await anyio.to_thread.run_sync(
                self.store.update, session.survey_id, SurveyUpdate(structure=structure)
            )
        except (StoreUnavailable, SurveyNotFound) as e:
            logger.warning("survey %s structure not stored, kept in local mirror: %s", session.survey_id, e)
            session.warnings.append(f"Structure saved locally only: {e}")
            session.stored = False
        else:
            if session.generation == generation:
                session.survey = survey
            session.stored = True
        if session.generation == generation:
            session.state = PlanWorkflowState.PERSISTED

    async def create_survey(self, metadata: SurveyCreate) -> Survey:
        """Create a survey record; a store outage yields a local record with a temporary id."""
        return await self._create_survey(metadata)

    async def update_survey(self, survey_id: int, changes: SurveyUpdate) -> Survey:
        """Apply a partial update. The mirror gets any new structure before the store is tried."""
        if "structure" in changes.model_fields_set and changes.structure is not None:
            self.mirror.write(survey_id, changes.structure)
        try:
            survey = await anyio.to_thread.run_sync(self.store.update, survey_id, changes)
        except (StoreUnavailable, SurveyNotFound) as e:
            logger.warning("survey %s update not stored, continuing locally: %s", survey_id, e)
            session = self._sessions.get(survey_id)
            base = session.survey if session is not None else None
            if base is None:
                base = Survey(id=survey_id, name=changes.name or "Untitled Survey")
            survey = base.model_copy(update={k: v for k, v in changes.changes().items() if v is not None})
        session = self._sessions.get(survey_id)
        if session is not None:
            session.survey = survey
        return survey

    async def load_structure(self, survey_id: int) -> Tuple[Optional[Survey], Optional[SurveyStructure]]:
        """Store first; the mirror only when the store read fails or the record has no structure."""
        survey: Optional[Survey] = None
        try:
            survey = await anyio.to_thread.run_sync(self.store.get, survey_id)
        except StoreUnavailable as e:
            logger.warning("survey %s read failed, using local mirror: %s", survey_id, e)
        if survey is not None and survey.structure is not None:
            return survey, survey.structure
        return survey, self.mirror.read(survey_id)

    async def builder(self, survey_id: int) -> Dict[str, Any]:
        survey, structure = await self.load_structure(survey_id)
        if survey is None and structure is None:
            raise SurveyNotFound(survey_id)
        return builder_view(survey_id, survey, structure)

    async def delete_section(self, survey_id: int, index: int) -> SurveyStructure:
        survey, structure = await self.load_structure(survey_id)
        if structure is None:
            raise SurveyNotFound(survey_id)
        if index < 0 or index >= len(structure.sections):
            raise IndexError(f"Section {index} does not exist (survey has {len(structure.sections)}).")
        sections = [s for i, s in enumerate(structure.sections) if i != index]
        updated = structure.model_copy(update={"sections": sections})

        self.mirror.write(survey_id, updated)
        try:
            await anyio.to_thread.run_sync(self.store.update, survey_id, SurveyUpdate(structure=updated))
        except (StoreUnavailable, SurveyNotFound) as e:
            logger.warning("survey %s section delete not stored, kept in local mirror: %s", survey_id, e)
        session = self._sessions.get(survey_id)
        if session is not None and session.state == PlanWorkflowState.PERSISTED:
            session.structure = updated
        return updated


__all__ = ["PlanSession", "PlanWorkflowState", "SurveyPlanWorkflow"]
