import asyncio

import httpx
import pytest

from conftest import FAST_BASE, json_body
from programs.survey_plan.errors import EndpointNotFound, MalformedResponse
from programs.survey_plan.fast_client import FastBackendClient
from programs.survey_plan.fetch import ResilientFetchClient
from schemas.planner import GenerateSurveyRequest

FAST = "/api/upsert-survey/survey-plan/fast"


def _fast(remote, settings):
    http = httpx.AsyncClient(transport=remote.transport())
    return FastBackendClient(ResilientFetchClient(FAST_BASE, http=http), settings)


def _request():
    return GenerateSurveyRequest(prompt="Customer feedback for a coffee shop", title="Coffee", type="customer")


def test_rendered_pages_become_sections(remote, settings):
    remote.on(
        "POST",
        FAST,
        {"rendered_pages": [{"name": "P1", "questions": [{"question_text": "Q1?", "question_type": "text_area"}]}]},
    )
    structure = asyncio.run(_fast(remote, settings).generate_fast(_request()))
    assert structure.to_json() == {"sections": [{"title": "P1", "questions": [{"text": "Q1?", "type": "text_area"}]}]}

    sent = json_body(remote.calls[0])
    assert sent["numQuestions"] == 5
    assert sent["numPages"] == 1
    assert sent["language"] == "English"
    assert remote.calls[0].url.path == "/anomaly" + FAST


def test_unknown_shape_is_malformed(remote, settings):
    remote.on("POST", FAST, {"status": "ok", "payload": {"nothing": "here"}})
    with pytest.raises(MalformedResponse) as ei:
        asyncio.run(_fast(remote, settings).generate_fast(_request()))
    assert '"status"' in ei.value.received_snippet


def test_missing_endpoint_has_no_offline_substitute(settings):
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    client = FastBackendClient(ResilientFetchClient(FAST_BASE, http=http), settings)
    with pytest.raises(EndpointNotFound):
        asyncio.run(client.generate_fast(_request()))
