from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

_REPO_ROOT = Path(__file__).resolve().parents[1]
_SRC = _REPO_ROOT / "src"
if _SRC.exists():
    sys.path.insert(0, str(_SRC))
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

import httpx  # noqa: E402
import pytest  # noqa: E402

from programs.survey_plan.approval import SurveyPlanWorkflow  # noqa: E402
from programs.survey_plan.fast_client import FastBackendClient  # noqa: E402
from programs.survey_plan.fetch import ResilientFetchClient  # noqa: E402
from programs.survey_plan.mirror import LocalMirror  # noqa: E402
from programs.survey_plan.planner_client import PlannerClient  # noqa: E402
from programs.survey_plan.settings import SurveyPlanSettings  # noqa: E402
from programs.survey_plan.store import MemorySurveyStore  # noqa: E402

PLANNER_BASE = "http://planner.test"
FAST_BASE = "http://fast.test/anomaly"

Handler = Callable[[httpx.Request], httpx.Response]


def plan_payload(
    thread_id: str = "t1",
    *,
    attempt: int = 1,
    status: str = "awaiting_approval",
    title: str = "Team Pulse",
    intents: Tuple[str, ...] = ("How satisfied are you with your team?", "What should we improve?"),
    generated_questions: Any = None,
) -> Dict[str, Any]:
    specs = []
    for idx, intent in enumerate(intents):
        specs.append(
            {
                "spec_id": f"q{idx + 1}",
                "question_type": "scale" if idx == 0 else "text_field",
                "language": "English",
                "intent": intent,
                "required": idx == 0,
                "options_hint": ["1", "2", "3", "4", "5"] if idx == 0 else [],
            }
        )
    out: Dict[str, Any] = {
        "thread_id": thread_id,
        "approval_status": status,
        "attempt": attempt,
        "version": attempt,
        "plan": {
            "title": title,
            "type": "employee",
            "language": "English",
            "pages": [{"name": "Engagement", "question_specs": specs}],
        },
    }
    if generated_questions is not None:
        out["generated_questions"] = generated_questions
    return out


class FakeRemote:
    """
    Routes httpx requests to handlers keyed by (method, path) and records every call.

    Paths are matched after stripping the `/anomaly` mount prefix and a trailing slash, so
    handlers do not depend on which URL variant was tried.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.calls: List[httpx.Request] = []

    def on(self, method: str, path: str, handler: Any) -> None:
        if not callable(handler):
            body = handler
            handler = lambda request, _b=body: httpx.Response(200, json=_b)  # noqa: E731
        self.routes[(method.upper(), path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path
        if path.startswith("/anomaly"):
            path = path[len("/anomaly"):]
        path = path.rstrip("/") or "/"
        handler = self.routes.get((request.method, path))
        if handler is None:
            return httpx.Response(404, json={"detail": "Not Found"})
        return handler(request)

    def paths(self) -> List[str]:
        return [f"{r.method} {r.url.path}" for r in self.calls]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def json_body(request: httpx.Request) -> Optional[Dict[str, Any]]:
    raw = request.content
    return json.loads(raw) if raw else None


@pytest.fixture
def settings() -> SurveyPlanSettings:
    return SurveyPlanSettings(planner_base_url=PLANNER_BASE, fast_base_url=FAST_BASE, timeout_sec=5)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


def build_workflow(
    remote: FakeRemote,
    settings: SurveyPlanSettings,
    *,
    store: Any = None,
    mirror: Optional[LocalMirror] = None,
) -> SurveyPlanWorkflow:
    http = httpx.AsyncClient(transport=remote.transport())
    return SurveyPlanWorkflow(
        store=store if store is not None else MemorySurveyStore(),
        mirror=mirror if mirror is not None else LocalMirror(),
        planner=PlannerClient(ResilientFetchClient(settings.planner_base_url, http=http), settings),
        fast=FastBackendClient(ResilientFetchClient(settings.fast_base_url, http=http), settings),
        settings=settings,
    )
