import json
import logging

import httpx
from fastapi.testclient import TestClient

from api.main import create_app
from conftest import plan_payload
from programs.survey_plan.errors import StoreUnavailable
from programs.survey_plan.mirror import LocalMirror
from programs.survey_plan.store import MemorySurveyStore

PLAN = "/api/upsert-survey/survey-plan"


class DownStore(MemorySurveyStore):
    def create(self, survey, structure=None):
        raise StoreUnavailable("store is down")

    def get(self, survey_id):
        raise StoreUnavailable("store is down")

    def update(self, survey_id, changes):
        raise StoreUnavailable("store is down")


def _client(remote, settings, *, seed=False, store=None, mirror=None):
    app = create_app(
        settings,
        store=store if store is not None else MemorySurveyStore(),
        mirror=mirror if mirror is not None else LocalMirror(),
        transport=remote.transport(),
        seed=seed,
    )
    return TestClient(app)


def test_health(remote, settings):
    res = _client(remote, settings).get("/health")
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["store"] == "MemorySurveyStore"


def test_seed_data(remote, settings):
    res = _client(remote, settings, seed=True).get("/api/surveys")
    assert res.status_code == 200
    assert {s["name"] for s in res.json()} == {"Employee Satisfaction Q1", "Customer Feedback 2024"}


def test_survey_crud(remote, settings):
    client = _client(remote, settings)

    res = client.post("/api/surveys", json={"name": "Pulse", "language": "Bilingual", "collectionMode": "field"})
    assert res.status_code == 201
    created = res.json()
    assert created["id"] == 1
    assert created["collectionMode"] == "field"
    assert created["structure"] is None

    res = client.put(
        "/api/surveys/1",
        json={"status": "active", "structure": {"sections": [{"title": "S", "questions": [{"text": "Q?", "type": "radio"}]}]}},
    )
    assert res.status_code == 200
    assert res.json()["status"] == "active"
    assert res.json()["name"] == "Pulse"

    res = client.get("/api/surveys/1")
    assert res.json()["structure"]["sections"][0]["title"] == "S"
    assert [s["id"] for s in client.get("/api/surveys").json()] == [1]

    assert client.delete("/api/surveys/1").status_code == 204
    res = client.get("/api/surveys/1")
    assert res.status_code == 404
    assert res.json()["ok"] is False
    assert res.json()["error"] == "survey_not_found"


def test_create_survey_validation(remote, settings):
    res = _client(remote, settings).post("/api/surveys", json={"name": "", "language": "French"})
    assert res.status_code == 422
    assert res.json()["error"] == "validation_error"


def test_wizard_planner_flow(remote, settings):
    remote.on("POST", PLAN, {"thread_id": "t1"})
    remote.on("GET", f"{PLAN}/t1", plan_payload("t1"))
    remote.on("POST", f"{PLAN}/t1/approve", plan_payload("t1", status="approved"))
    remote.on(
        "POST",
        f"{PLAN}/t1/generate-validate-fix",
        {"thread_id": "t1", "rendered_pages": [{"name": "Final", "questions": [
            {"question_text": "Rendered?", "question_type": "rating"},
        ]}]},
    )
    client = _client(remote, settings)

    res = client.post("/api/wizard/metadata", json={"name": "Team Pulse", "type": "employee", "collectionMode": "web"})
    assert res.status_code == 200
    survey_id = res.json()["survey"]["id"]
    assert res.json()["session"]["state"] == "metadata_collected"

    res = client.post(
        "/api/wizard/generate",
        json={"surveyId": survey_id, "name": "Team Pulse", "type": "employee",
              "prompt": "Engagement survey for a remote team", "numQuestions": 2},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["state"] == "plan_awaiting_review"
    assert body["threadId"] == "t1"
    assert body["approvalStatus"] == "awaiting_approval"
    assert len(body["structure"]["sections"][0]["questions"]) == 2

    assert client.get(f"/api/wizard/{survey_id}").json()["state"] == "plan_awaiting_review"

    res = client.post(f"/api/wizard/{survey_id}/approve")
    assert res.status_code == 200
    assert res.json()["state"] == "persisted"
    assert res.json()["stored"] is True

    view = client.get(f"/api/surveys/{survey_id}/builder").json()
    assert view["totalQuestions"] == 1
    assert view["pages"][0]["questions"][0]["type"] == "star_rating"

    res = client.post(f"/api/wizard/{survey_id}/approve")
    assert res.status_code == 409
    assert res.json()["error"] == "invalid_transition"


def test_wizard_errors_map_to_status_codes(remote, settings):
    remote.on("POST", PLAN, lambda request: httpx.Response(500, text="planner down"))
    client = _client(remote, settings)

    res = client.post("/api/wizard/generate", json={"surveyId": 3, "prompt": "A survey about commuting habits"})
    assert res.status_code == 502
    assert res.json()["error"] == "remote_error"
    assert res.json()["status"] == 500

    snap = client.get("/api/wizard/3").json()
    assert snap["state"] == "plan_requested"
    assert snap["error"]["error"] == "remote_error"

    res = client.post("/api/wizard/generate", json={"surveyId": 3, "prompt": "short"})
    assert res.status_code == 422

    res = client.post("/api/wizard/generate", json={"surveyId": 3, "prompt": "A survey about commuting", "numPages": 9})
    assert res.status_code == 422

    assert client.get("/api/wizard/404").status_code == 404


def test_wizard_reject_max_attempts_is_conflict(remote, settings):
    remote.on("POST", PLAN, {"thread_id": "t1"})
    remote.on("GET", f"{PLAN}/t1", plan_payload("t1", attempt=3))
    remote.on(
        "POST",
        f"{PLAN}/t1/reject",
        lambda request: httpx.Response(400, json={"detail": {
            "error_code": "MAX_PLAN_ATTEMPTS_REACHED", "thread_id": "t1",
            "current_attempt": 3, "max_attempts": 3, "message": "Maximum attempts reached"}}),
    )
    client = _client(remote, settings)
    survey_id = client.post(
        "/api/wizard/generate", json={"prompt": "A survey about commuting habits", "name": "Commute"}
    ).json()["surveyId"]

    res = client.post(f"/api/wizard/{survey_id}/reject", json={"feedback": ""})
    assert res.status_code == 422

    res = client.post(f"/api/wizard/{survey_id}/reject", json={"feedback": "Shorter"})
    assert res.status_code == 409
    body = res.json()
    assert body["error"] == "max_plan_attempts_reached"
    assert body["currentAttempt"] == 3
    assert body["maxAttempts"] == 3

    snap = client.get(f"/api/wizard/{survey_id}").json()
    assert snap["state"] == "max_attempts_exceeded"
    assert snap["structure"] is not None

    calls_before = len(remote.calls)
    res = client.post(f"/api/wizard/{survey_id}/reject", json={"feedback": "Once more"})
    assert res.status_code == 409
    body = res.json()
    assert body["error"] == "max_plan_attempts_reached"
    assert (body["currentAttempt"], body["maxAttempts"]) == (3, 3)
    assert len(remote.calls) == calls_before


def test_survey_edits_survive_store_outage(remote, settings):
    mirror = LocalMirror()
    client = _client(remote, settings, store=DownStore(), mirror=mirror)

    res = client.post("/api/surveys", json={"name": "Offline draft"})
    assert res.status_code == 201
    assert res.json()["id"] > 1_000_000_000_000
    assert res.json()["name"] == "Offline draft"

    res = client.put(
        "/api/surveys/42",
        json={"name": "Renamed", "structure": {"sections": [{"title": "S", "questions": [{"text": "Q?", "type": "radio"}]}]}},
    )
    assert res.status_code == 200
    assert res.json()["id"] == 42
    assert res.json()["name"] == "Renamed"
    assert res.json()["structure"]["sections"][0]["title"] == "S"

    saved = mirror.read(42)
    assert saved is not None
    assert saved.sections[0].questions[0].text == "Q?"

    res = client.get("/api/surveys/42")
    assert res.status_code == 200
    assert res.json()["structure"]["sections"][0]["title"] == "S"


def test_delete_section_route(remote, settings):
    client = _client(remote, settings)
    client.post("/api/surveys", json={"name": "Two pages"})
    client.put("/api/surveys/1", json={"structure": {"sections": [
        {"title": "A", "questions": [{"text": "Q1", "type": "radio"}]},
        {"title": "B", "questions": [{"text": "Q2", "type": "email"}]},
    ]}})

    res = client.delete("/api/surveys/1/sections/0")
    assert res.status_code == 200
    assert [s["title"] for s in res.json()["structure"]["sections"]] == ["B"]

    res = client.delete("/api/surveys/1/sections/3")
    assert res.status_code == 404
    assert res.json()["error"] == "not_found"


def test_http_log_line_redacts_secrets(remote, settings, monkeypatch, caplog):
    monkeypatch.setenv("SURVEY_HTTP_LOG", "1")
    monkeypatch.setenv("SURVEY_HTTP_LOG_BODY_MAX_BYTES", "4096")
    caplog.set_level(logging.INFO, logger="api.http")
    client = _client(remote, settings)

    res = client.post("/api/surveys", json={"name": "Logged", "password": "hunter2"})
    assert res.status_code == 201

    lines = [json.loads(r.getMessage()) for r in caplog.records if r.name == "api.http"]
    assert len(lines) == 1
    line = lines[0]
    assert (line["method"], line["path"], line["status"]) == ("POST", "/api/surveys", 201)
    assert line["request"]["body"] == {"name": "Logged", "password": "***"}
    assert line["response"]["body"]["name"] == "Logged"
    assert "hunter2" not in caplog.text


def test_http_log_is_off_by_default(remote, settings, monkeypatch, caplog):
    monkeypatch.delenv("SURVEY_HTTP_LOG", raising=False)
    caplog.set_level(logging.INFO, logger="api.http")
    _client(remote, settings).get("/health")
    assert [r for r in caplog.records if r.name == "api.http"] == []
