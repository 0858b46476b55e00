from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict, Iterable, Optional, Tuple

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from programs.survey_plan.settings import env_bool, env_int

logger = logging.getLogger("api.http")

_SENSITIVE_KEYS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "apikey",
    "api_key",
    "token",
    "access_token",
    "password",
    "secret",
    "supabase_service_role_key",
}


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: ("***" if str(k).lower() in _SENSITIVE_KEYS else _redact(v)) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def _header(headers: Iterable[Tuple[bytes, bytes]], name: bytes) -> str:
    for k, v in headers:
        if k.lower() == name:
            return v.decode("latin-1", errors="replace")
    return ""


def _body_for_log(content_type: str, body: bytes) -> Any:
    if not body:
        return ""
    if "application/json" in (content_type or "").lower():
        try:
            return _redact(json.loads(body.decode("utf-8", errors="replace")))
        except ValueError:
            pass
    if (content_type or "").lower().startswith(("text/", "application/json")):
        return body.decode("utf-8", errors="replace")
    return "<binary>"


class _Capped:
    def __init__(self, limit: int) -> None:
        self.limit = max(0, limit)
        self.buf = bytearray()
        self.truncated = False

    def add(self, chunk: bytes) -> None:
        if not chunk or self.limit == 0 or self.truncated:
            return
        remaining = self.limit - len(self.buf)
        self.buf.extend(chunk[:remaining])
        if len(chunk) > remaining:
            self.truncated = True


class HttpLoggingMiddleware:
    """One JSON line per HTTP request: method, path, status, duration and capped bodies."""

    def __init__(self, app: ASGIApp, *, max_body_bytes: int) -> None:
        self.app = app
        self.max_body_bytes = max(0, max_body_bytes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        started_at = time.perf_counter()
        req_headers = list(scope.get("headers") or [])
        request_id = _header(req_headers, b"x-request-id") or uuid.uuid4().hex[:12]
        req_body = _Capped(self.max_body_bytes)
        res_body = _Capped(self.max_body_bytes)
        status: Optional[int] = None
        res_ct = ""

        async def receive_wrapped() -> Message:
            message = await receive()
            if message.get("type") == "http.request":
                req_body.add(message.get("body") or b"")
            return message

        async def send_wrapped(message: Message) -> None:
            nonlocal status, res_ct
            if message.get("type") == "http.response.start":
                status = int(message.get("status") or 0)
                res_ct = _header(message.get("headers") or [], b"content-type")
            elif message.get("type") == "http.response.body":
                res_body.add(message.get("body") or b"")
            await send(message)

        err: Optional[BaseException] = None
        try:
            await self.app(scope, receive_wrapped, send_wrapped)
        except BaseException as e:  # noqa: BLE001 - log then re-raise
            err = e
            raise
        finally:
            record: Dict[str, Any] = {
                "id": request_id,
                "method": str(scope.get("method") or "").upper(),
                "path": str(scope.get("path") or ""),
                "query": (scope.get("query_string") or b"").decode("latin-1", errors="ignore"),
                "status": status,
                "dur_ms": int((time.perf_counter() - started_at) * 1000),
            }
            if self.max_body_bytes:
                record["request"] = {
                    "body": _body_for_log(_header(req_headers, b"content-type"), bytes(req_body.buf)),
                    "truncated": req_body.truncated,
                }
                record["response"] = {
                    "body": _body_for_log(res_ct, bytes(res_body.buf)),
                    "truncated": res_body.truncated,
                }
            if err is not None:
                record["error"] = {"type": type(err).__name__, "message": str(err)}
            logger.info(json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str))


def install_http_logging(app: Any) -> None:
    """
    Enable request/response logging via env vars.

    - `SURVEY_HTTP_LOG=1` enables the middleware
    - `SURVEY_HTTP_LOG_BODY_MAX_BYTES=4096` caps body bytes captured per request/response (0 = no bodies)
    """
    if not env_bool("SURVEY_HTTP_LOG", default=False):
        return
    app.add_middleware(HttpLoggingMiddleware, max_body_bytes=env_int("SURVEY_HTTP_LOG_BODY_MAX_BYTES", 4096))
