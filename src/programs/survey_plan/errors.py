from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

SNIPPET_CHARS = 500


def snippet(value: Any, limit: int = SNIPPET_CHARS) -> str:
    """First `limit` characters of a value's JSON form (or its str when not serializable)."""
    if isinstance(value, str):
        text = value
    else:
        try:
            text = json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            text = str(value)
    return text[:limit]


class SurveyPlanError(Exception):
    """Base for every failure the plan workflow reports to callers."""

    code = "survey_plan_error"

    def details(self) -> Dict[str, Any]:
        return {}


class EndpointNotFound(SurveyPlanError):
    code = "endpoint_not_found"

    def __init__(self, tried_urls: List[str]) -> None:
        self.tried_urls = list(tried_urls)
        super().__init__(f"Endpoint not found (404). Tried: {', '.join(self.tried_urls)}")

    def details(self) -> Dict[str, Any]:
        return {"triedUrls": self.tried_urls}


class RemoteError(SurveyPlanError):
    """The endpoint was reached but the operation failed, or the request never completed."""

    code = "remote_error"

    def __init__(self, status: Optional[int], body: str, *, url: str = "") -> None:
        self.status = status
        self.body = body
        self.url = url
        if status is None:
            msg = f"Network failure calling {url or 'remote service'}: {body}"
        else:
            msg = f"Remote service error ({status}). {snippet(body, 300)}"
        super().__init__(msg)

    @property
    def is_network_failure(self) -> bool:
        return self.status is None

    def details(self) -> Dict[str, Any]:
        return {"status": self.status, "network": self.is_network_failure}


class MalformedResponse(SurveyPlanError):
    code = "malformed_response"

    def __init__(self, message: str, received: Any = None) -> None:
        self.received_snippet = snippet(received) if received is not None else ""
        super().__init__(message)

    def details(self) -> Dict[str, Any]:
        return {"received": self.received_snippet}


class InvalidPlanStructure(SurveyPlanError):
    code = "invalid_plan_structure"

    def __init__(self, received_snippet: str = "") -> None:
        self.received_snippet = received_snippet
        super().__init__("The generated plan does not have the expected structure. Please try again.")

    def details(self) -> Dict[str, Any]:
        return {"received": self.received_snippet}


class MaxAttemptsReached(SurveyPlanError):
    code = "max_plan_attempts_reached"

    def __init__(
        self,
        *,
        thread_id: str,
        current_attempt: Optional[int],
        max_attempts: Optional[int],
        message: str = "",
    ) -> None:
        self.thread_id = thread_id
        self.current_attempt = current_attempt
        self.max_attempts = max_attempts
        super().__init__(
            message or f"Maximum plan attempts reached ({current_attempt}/{max_attempts}). Start a new plan."
        )

    def details(self) -> Dict[str, Any]:
        return {
            "threadId": self.thread_id,
            "currentAttempt": self.current_attempt,
            "maxAttempts": self.max_attempts,
        }


class InvalidTransition(SurveyPlanError):
    code = "invalid_transition"


class StoreUnavailable(SurveyPlanError):
    code = "store_unavailable"


class SurveyNotFound(SurveyPlanError, LookupError):
    code = "survey_not_found"

    def __init__(self, survey_id: int) -> None:
        self.survey_id = survey_id
        super().__init__(f"Survey with id {survey_id} not found")


__all__ = [
    "EndpointNotFound",
    "InvalidPlanStructure",
    "InvalidTransition",
    "MalformedResponse",
    "MaxAttemptsReached",
    "RemoteError",
    "StoreUnavailable",
    "SurveyNotFound",
    "SurveyPlanError",
    "snippet",
]
