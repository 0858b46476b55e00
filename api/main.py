from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import (
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)


def _repo_root() -> Path:
    # `api/main.py` lives at `<repo>/api/main.py`
    return Path(__file__).resolve().parents[1]


def _ensure_src_on_path() -> None:
    src = _repo_root() / "src"
    if not src.is_dir():
        return
    s = str(src)
    if s not in sys.path:
        sys.path.insert(0, s)


_ensure_src_on_path()

from api.http_logging import install_http_logging  # noqa: E402
from api.routes import health, surveys, wizard  # noqa: E402
from api.supabase_client import create_survey_store  # noqa: E402
from api.utils import error_body, new_request_id  # noqa: E402
from programs.survey_plan.approval import SurveyPlanWorkflow  # noqa: E402
from programs.survey_plan.errors import (  # noqa: E402
    EndpointNotFound,
    InvalidPlanStructure,
    InvalidTransition,
    MalformedResponse,
    MaxAttemptsReached,
    RemoteError,
    StoreUnavailable,
    SurveyNotFound,
    SurveyPlanError,
)
from programs.survey_plan.fast_client import FastBackendClient  # noqa: E402
from programs.survey_plan.fetch import ResilientFetchClient  # noqa: E402
from programs.survey_plan.mirror import LocalMirror  # noqa: E402
from programs.survey_plan.planner_client import PlannerClient  # noqa: E402
from programs.survey_plan.settings import SurveyPlanSettings, env_bool  # noqa: E402
from programs.survey_plan.store import SurveyRecordStore, seed_if_empty  # noqa: E402

logger = logging.getLogger("api")

_STATUS_BY_ERROR = (
    (EndpointNotFound, HTTP_502_BAD_GATEWAY),
    (RemoteError, HTTP_502_BAD_GATEWAY),
    (MalformedResponse, HTTP_502_BAD_GATEWAY),
    (InvalidPlanStructure, HTTP_422_UNPROCESSABLE_ENTITY),
    (MaxAttemptsReached, HTTP_409_CONFLICT),
    (InvalidTransition, HTTP_409_CONFLICT),
    (SurveyNotFound, HTTP_404_NOT_FOUND),
    (StoreUnavailable, HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for_error(exc: SurveyPlanError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    settings: Optional[SurveyPlanSettings] = None,
    *,
    store: Optional[SurveyRecordStore] = None,
    mirror: Optional[LocalMirror] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    seed: Optional[bool] = None,
) -> FastAPI:
    # Load `.env` + `.env.local` when present (local dev convenience).
    load_dotenv(_repo_root() / ".env", override=False)
    load_dotenv(_repo_root() / ".env.local", override=False)

    settings = settings or SurveyPlanSettings.from_env()
    store = store if store is not None else create_survey_store()
    mirror = mirror if mirror is not None else LocalMirror(settings.mirror_dir)
    http = httpx.AsyncClient(timeout=httpx.Timeout(float(settings.timeout_sec)), transport=transport)

    workflow = SurveyPlanWorkflow(
        store=store,
        mirror=mirror,
        planner=PlannerClient(
            ResilientFetchClient(settings.planner_base_url, http=http, mount_prefix=settings.mount_prefix, label="planner"),
            settings,
        ),
        fast=FastBackendClient(
            ResilientFetchClient(settings.fast_base_url, http=http, mount_prefix=settings.mount_prefix, label="fast"),
            settings,
        ),
        settings=settings,
    )

    if seed is None:
        seed = env_bool("SURVEY_SEED_DATA", default=True)
    if seed:
        try:
            created = seed_if_empty(store)
        except StoreUnavailable as e:
            logger.warning("skipping seed data, store unavailable: %s", e)
        else:
            if created:
                logger.info("seeded %d sample surveys", created)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await http.aclose()

    app = FastAPI(title="survey-plan-service", lifespan=lifespan)
    app.state.settings = settings
    app.state.workflow = workflow
    install_http_logging(app)

    @app.exception_handler(SurveyPlanError)
    async def _survey_plan_error_handler(request: Request, exc: SurveyPlanError) -> JSONResponse:
        status = status_for_error(exc)
        request_id = new_request_id("plan")
        logger.warning(
            "%s %s requestId=%s path=%s msg=%s", status, exc.code, request_id, request.url.path, exc
        )
        return JSONResponse(status_code=status, content=error_body(exc.code, str(exc), request_id, **exc.details()))

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = new_request_id("val")
        # Keep server logs useful without dumping full bodies.
        logger.info("422 validation_error requestId=%s path=%s errors=%s", request_id, request.url.path, exc.errors())
        return JSONResponse(
            status_code=HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_body(
                "validation_error",
                "Request body did not match expected schema.",
                request_id,
                details=jsonable_errors(exc),
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        request_id = new_request_id("http")
        error = "not_found" if exc.status_code == HTTP_404_NOT_FOUND else "http_error"
        return JSONResponse(status_code=exc.status_code, content=error_body(error, str(exc.detail), request_id))

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = new_request_id("err")
        logger.exception("500 internal_error requestId=%s path=%s", request_id, request.url.path)
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("internal_error", "Unhandled server error.", request_id),
        )

    app.include_router(health.router)
    app.include_router(surveys.router)
    app.include_router(wizard.router)
    return app


def jsonable_errors(exc: RequestValidationError) -> Any:
    # `ctx` may hold exception instances, which JSONResponse cannot serialize.
    out = []
    for err in exc.errors():
        item: Dict[str, Any] = {k: v for k, v in err.items() if k != "ctx"}
        out.append(item)
    return out


app = create_app()
