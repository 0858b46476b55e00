from __future__ import annotations

import logging

from programs.survey_plan.errors import MalformedResponse
from programs.survey_plan.fetch import ResilientFetchClient
from programs.survey_plan.normalizer import Invalid, normalize
from programs.survey_plan.settings import SurveyPlanSettings
from schemas.planner import GenerateSurveyRequest
from schemas.survey import SurveyStructure

logger = logging.getLogger(__name__)


class FastBackendClient:
    """
    One-shot generation against the external "fast" backend.

    Strict: whatever comes back must normalize to a structure with at least one question,
    otherwise the caller gets a `MalformedResponse`. There is no offline substitute.
    """

    def __init__(self, fetch: ResilientFetchClient, settings: SurveyPlanSettings) -> None:
        self._fetch = fetch
        self._settings = settings

    async def generate_fast(self, request: GenerateSurveyRequest) -> SurveyStructure:
        body = request.model_dump(by_alias=True, exclude_none=True)
        raw = await self._fetch.request("POST", self._settings.plan_path("fast"), body=body)
        result = normalize(raw)
        if isinstance(result, Invalid):
            raise MalformedResponse(
                f"Fast backend returned an unrecognized survey shape. Received: {result.received}",
                raw,
            )
        logger.info(
            "fast backend produced %d section(s), %d question(s)",
            len(result.sections),
            result.question_count(),
        )
        return result


__all__ = ["FastBackendClient"]
