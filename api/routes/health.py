from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> Dict[str, Any]:
    workflow = request.app.state.workflow
    return {
        "ok": True,
        "service": "survey-plan-service",
        "store": type(workflow.store).__name__,
        "plannerBaseUrl": workflow.settings.planner_base_url,
        "fastBaseUrl": workflow.settings.fast_base_url,
        "ts": int(time.time() * 1000),
    }
