"""
Client for the stateful planner service (`/survey-plan` thread resource).

Responses may wrap their payload under `data` or put fields at the root; every method
accepts both. Missing required fields are a `MalformedResponse`, never a silent default.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from pydantic import ValidationError

from programs.survey_plan.errors import MalformedResponse, MaxAttemptsReached, RemoteError, snippet
from programs.survey_plan.fetch import ResilientFetchClient
from programs.survey_plan.settings import SurveyPlanSettings
from schemas.planner import CreatePlanRequest, CreatePlanResult, GenerateValidateFixResult, PlanThread

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_ERROR_CODE = "MAX_PLAN_ATTEMPTS_REACHED"

_THREAD_FIELDS = ("thread_id", "plan", "approval_status", "attempt", "version", "generated_questions")
_GVF_FIELDS = ("thread_id", "rendered_pages", "validation", "saved", "error")


def _pick(raw: Any, fields: tuple[str, ...]) -> Dict[str, Any]:
    """Merge `data.<field>` and root `<field>`; the wrapper wins when both are present."""
    root = raw if isinstance(raw, dict) else {}
    data = root.get("data") if isinstance(root.get("data"), dict) else {}
    out: Dict[str, Any] = {}
    for field in fields:
        if data.get(field) is not None:
            out[field] = data[field]
        elif root.get(field) is not None:
            out[field] = root[field]
    return out


def _require(found: Dict[str, Any], required: tuple[str, ...], raw: Any, what: str) -> None:
    missing = [f for f in required if f not in found]
    if missing:
        raise MalformedResponse(f"Invalid {what} response: missing {', '.join(missing)}", raw)


def _thread_from(raw: Any, what: str) -> PlanThread:
    found = _pick(raw, _THREAD_FIELDS)
    _require(found, ("thread_id", "plan", "approval_status", "attempt", "version"), raw, what)
    try:
        return PlanThread.model_validate(found)
    except ValidationError as e:
        raise MalformedResponse(f"Invalid {what} response: {e.error_count()} field error(s)", raw) from e


def _max_attempts_from(err: RemoteError, thread_id: str) -> Optional[MaxAttemptsReached]:
    if err.status != 400:
        return None
    try:
        body = json.loads(err.body or "")
    except ValueError:
        return None
    detail = body.get("detail") if isinstance(body, dict) else None
    if not isinstance(detail, dict) or detail.get("error_code") != MAX_ATTEMPTS_ERROR_CODE:
        return None
    return MaxAttemptsReached(
        thread_id=str(detail.get("thread_id") or thread_id),
        current_attempt=detail.get("current_attempt"),
        max_attempts=detail.get("max_attempts"),
        message=str(detail.get("message") or ""),
    )


class PlannerClient:
    def __init__(self, fetch: ResilientFetchClient, settings: SurveyPlanSettings) -> None:
        self._fetch = fetch
        self._settings = settings

    def _thread_path(self, thread_id: str, *parts: str) -> str:
        return self._settings.plan_path(quote(str(thread_id), safe=""), *parts)

    async def create_plan(self, request: CreatePlanRequest) -> CreatePlanResult:
        body = request.model_dump(by_alias=True, exclude_none=True)
        raw = await self._fetch.request("POST", self._settings.plan_path(), body=body)

        data = raw.get("data") if isinstance(raw, dict) else None
        if isinstance(data, str) and data.strip():
            thread_id: Any = data
        else:
            thread_id = _pick(raw, ("thread_id",)).get("thread_id")
        if not thread_id:
            raise MalformedResponse("Invalid create plan response: missing thread_id", raw)

        message = _pick(raw, ("message",)).get("message")
        logger.info("planner created thread %s", thread_id)
        return CreatePlanResult(thread_id=str(thread_id), message=str(message) if message else None)

    async def get_plan(self, thread_id: str) -> PlanThread:
        raw = await self._fetch.request("GET", self._thread_path(thread_id))
        return _thread_from(raw, "get plan")

    async def approve_plan(self, thread_id: str) -> PlanThread:
        raw = await self._fetch.request("POST", self._thread_path(thread_id, "approve"), body={})
        return _thread_from(raw, "approve plan")

    async def reject_plan(self, thread_id: str, feedback: str) -> PlanThread:
        text = str(feedback or "").strip()
        if not text:
            raise ValueError("feedback is required to reject a plan")
        try:
            raw = await self._fetch.request("POST", self._thread_path(thread_id, "reject"), body={"feedback": text})
        except RemoteError as e:
            reached = _max_attempts_from(e, thread_id)
            if reached is not None:
                logger.info(
                    "planner thread %s hit max attempts (%s/%s)",
                    reached.thread_id,
                    reached.current_attempt,
                    reached.max_attempts,
                )
                raise reached from e
            raise
        return _thread_from(raw, "reject plan")

    async def generate_validate_fix(self, thread_id: str, auto_fix: bool = True) -> GenerateValidateFixResult:
        raw = await self._fetch.request(
            "POST",
            self._thread_path(thread_id, "generate-validate-fix"),
            body={},
            params={"auto_fix": "true" if auto_fix else "false"},
        )
        found = _pick(raw, _GVF_FIELDS)
        _require(found, ("thread_id", "rendered_pages"), raw, "generate-validate-fix")
        try:
            result = GenerateValidateFixResult.model_validate(found)
        except ValidationError as e:
            raise MalformedResponse(
                f"Invalid generate-validate-fix response: {snippet(str(e), 200)}", raw
            ) from e
        if result.validation is not None and not result.validation.passed:
            logger.warning(
                "generate-validate-fix for %s reported %d validation issue(s)",
                thread_id,
                result.validation.issue_count,
            )
        return result


__all__ = ["MAX_ATTEMPTS_ERROR_CODE", "PlannerClient"]
