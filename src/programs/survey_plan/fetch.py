"""
HTTP calls that tolerate mount-prefix ambiguity.

Some deployments serve the backend at the root, others under a sub-path (e.g. `/anomaly`).
A 404 is therefore ambiguous ("wrong prefix" or "wrong path") and we try the next URL
variant. Any other failure means we reached live logic, so we stop and surface it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx

from programs.survey_plan.errors import EndpointNotFound, MalformedResponse, RemoteError, SurveyPlanError
from programs.survey_plan.settings import DEFAULT_PLANNER_API_BASE_URL

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


@dataclass(frozen=True)
class Accept:
    body: Any


@dataclass(frozen=True)
class TryNext:
    status: int


@dataclass(frozen=True)
class Abort:
    error: SurveyPlanError


Outcome = Union[Accept, TryNext, Abort]


def join_url(base: str, path: str) -> str:
    trimmed_base = str(base or "").rstrip("/")
    trimmed_path = str(path or "").lstrip("/")
    return f"{trimmed_base}/{trimmed_path}"


def toggle_mount_prefix(base_url: str, mount_prefix: str) -> str:
    trimmed = str(base_url or "").rstrip("/")
    suffix = "/" + str(mount_prefix or "").strip("/")
    if suffix == "/":
        return trimmed
    if trimmed.lower().endswith(suffix.lower()):
        return trimmed[: -len(suffix)] or DEFAULT_PLANNER_API_BASE_URL
    return f"{trimmed}{suffix}"


def candidate_urls(base_url: str, path: str, mount_prefix: str) -> List[str]:
    """
    Fixed try order: base+path, base+path/, alt+path, alt+path/ (duplicates dropped).
    """
    clean_path = "/" + str(path or "").strip("/")
    alt_base = toggle_mount_prefix(base_url, mount_prefix)
    out: List[str] = []
    for base in (base_url, alt_base):
        for p in (clean_path, f"{clean_path}/"):
            url = join_url(base, p)
            if url not in out:
                out.append(url)
    return out


def classify(status: int, text: str, *, url: str = "") -> Outcome:
    if status == 404:
        return TryNext(status=status)
    if not 200 <= status < 300:
        return Abort(RemoteError(status, text or "", url=url))
    if not (text or "").strip():
        return Accept(body=None)
    try:
        return Accept(body=json.loads(text))
    except ValueError:
        return Abort(MalformedResponse(f"Remote service returned a non-JSON response from {url}.", text))


class ResilientFetchClient:
    """
    JSON-over-HTTP against one configured base URL.

    The `httpx.AsyncClient` is owned by the caller (created once at startup) so tests can
    inject an `httpx.MockTransport`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        http: httpx.AsyncClient,
        mount_prefix: str = "/anomaly",
        label: str = "remote",
    ) -> None:
        self.base_url = base_url
        self.mount_prefix = mount_prefix
        self.label = label
        self._http = http

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        urls = candidate_urls(self.base_url, path, self.mount_prefix)
        for url in urls:
            logger.debug("%s %s %s", self.label, method, url)
            try:
                resp = await self._http.request(method, url, json=body, params=params, headers=_JSON_HEADERS)
            except httpx.TimeoutException as e:
                raise RemoteError(None, f"request timed out ({type(e).__name__})", url=url) from e
            except httpx.RequestError as e:
                raise RemoteError(None, str(e) or type(e).__name__, url=url) from e

            outcome = classify(resp.status_code, resp.text, url=url)
            if isinstance(outcome, TryNext):
                logger.info("%s 404 at %s, trying next URL variant", self.label, url)
                continue
            if isinstance(outcome, Abort):
                logger.warning("%s %s %s failed: %s", self.label, method, url, outcome.error)
                raise outcome.error
            return outcome.body

        raise EndpointNotFound(urls)


__all__ = [
    "Abort",
    "Accept",
    "Outcome",
    "ResilientFetchClient",
    "TryNext",
    "candidate_urls",
    "classify",
    "join_url",
    "toggle_mount_prefix",
]
