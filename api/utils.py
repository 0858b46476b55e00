from __future__ import annotations

import time
import uuid
from typing import Any, Dict

from fastapi import Request

from programs.survey_plan.approval import SurveyPlanWorkflow


def new_request_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def error_body(error: str, message: str, request_id: str, **details: Any) -> Dict[str, Any]:
    return {"ok": False, "error": error, "message": message, "requestId": request_id, **details}


def get_workflow(request: Request) -> SurveyPlanWorkflow:
    return request.app.state.workflow
