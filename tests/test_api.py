from __future__ import annotations

from fastapi.testclient import TestClient

from tinywords.app import create_app
from tinywords.storage.db import Database

API = "/api/v1"
HEADERS = {"X-Client-Timezone": "UTC"}


def _finish_plan(client, plan: dict) -> None:
    for item in plan["items"]:
        resp = client.patch(
            f"{API}/day-plans/{plan['plan_id']}/items/{item['plan_item_id']}",
            json={"recall_status": "success", "sentence_status": "done", "speech_status": "skipped"},
            headers=HEADERS,
        )
        assert resp.status_code == 200


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_today_plan_envelope_and_word_source(client):
    resp = client.get(f"{API}/day-plans/today", headers={**HEADERS, "X-Request-Id": "req-today"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["meta"]["request_id"] == "req-today"
    assert body["meta"]["word_source"] == "fallback"
    assert len(body["data"]["items"]) == 3
    assert body["data"]["status"] == "open"

    again = client.get(f"{API}/day-plans/today", headers=HEADERS).json()
    assert again["data"]["plan_id"] == body["data"]["plan_id"]
    assert "word_source" not in again["meta"]


def test_today_plan_not_found_without_create(client):
    resp = client.get(f"{API}/day-plans/today", params={"create_if_missing": "false"}, headers=HEADERS)
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


def test_patch_and_complete_flow(client):
    plan = client.get(f"{API}/day-plans/today", headers=HEADERS).json()["data"]

    early = client.post(f"{API}/day-plans/{plan['plan_id']}/complete", headers=HEADERS)
    assert early.status_code == 400
    assert early.json()["error"]["code"] == "VALIDATION_ERROR"

    _finish_plan(client, plan)
    done_headers = {**HEADERS, "X-Request-Id": "complete-1"}
    completed = client.post(f"{API}/day-plans/{plan['plan_id']}/complete", headers=done_headers)
    assert completed.status_code == 200
    data = completed.json()["data"]
    assert data["review_tasks_created"] == 3
    assert data["streak"]["current_streak"] == 1

    replay = client.post(f"{API}/day-plans/{plan['plan_id']}/complete", headers=done_headers)
    assert replay.json()["data"] == data


def test_step_regression_returns_conflict(client):
    plan = client.get(f"{API}/day-plans/today", headers=HEADERS).json()["data"]
    url = f"{API}/day-plans/{plan['plan_id']}/items/{plan['items'][0]['plan_item_id']}"
    assert client.patch(url, json={"recall_status": "success"}, headers=HEADERS).status_code == 200

    resp = client.patch(url, json={"recall_status": "fail"}, headers=HEADERS)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CONFLICT"


def test_invalid_body_is_validation_error(client):
    plan = client.get(f"{API}/day-plans/today", headers=HEADERS).json()["data"]
    url = f"{API}/day-plans/{plan['plan_id']}/items/{plan['items'][0]['plan_item_id']}"
    resp = client.patch(url, json={"recall_status": "great"}, headers=HEADERS)
    assert resp.status_code == 400
    error = resp.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["details"][0]["field"] == "recall_status"


def test_review_queue_and_submit(client):
    plan = client.get(f"{API}/day-plans/today", headers=HEADERS).json()["data"]
    _finish_plan(client, plan)
    client.post(f"{API}/day-plans/{plan['plan_id']}/complete", headers=HEADERS)

    queue = client.get(f"{API}/reviews/queue", headers=HEADERS).json()["data"]
    assert queue["summary"]["queued_total"] == 3
    review_id = queue["tasks"][0]["review_id"]

    submit_headers = {**HEADERS, "X-Request-Id": "submit-1"}
    first = client.post(f"{API}/reviews/{review_id}/submit", json={"result": "success"}, headers=submit_headers)
    assert first.status_code == 200
    assert first.json()["data"]["next_task"]["stage"] == "d3"

    replay = client.post(f"{API}/reviews/{review_id}/submit", json={"result": "success"}, headers=submit_headers)
    assert replay.json()["data"] == first.json()["data"]

    conflict = client.post(
        f"{API}/reviews/{review_id}/submit",
        json={"result": "success"},
        headers={**HEADERS, "X-Request-Id": "submit-2"},
    )
    assert conflict.status_code == 409

    missing = client.post(f"{API}/reviews/missing/submit", json={"result": "success"}, headers=HEADERS)
    assert missing.status_code == 404


def test_profile_roundtrip_and_validation(client):
    profile = client.get(f"{API}/users/me/profile", headers=HEADERS).json()["data"]
    assert profile["daily_target"] == 3

    updated = client.patch(f"{API}/users/me/profile", json={"daily_target": 5}, headers=HEADERS)
    assert updated.status_code == 200
    assert updated.json()["data"]["daily_target"] == 5

    bad = client.patch(f"{API}/users/me/profile", json={"daily_target": 7}, headers=HEADERS)
    assert bad.status_code == 400
    assert bad.json()["error"]["details"] == [{"field": "daily_target", "reason": "out_of_range"}]


def test_users_are_isolated_by_header(client):
    mine = client.get(f"{API}/day-plans/today", headers=HEADERS).json()["data"]
    theirs = client.get(f"{API}/day-plans/today", headers={**HEADERS, "X-User-Id": "user-2"}).json()["data"]
    assert mine["plan_id"] != theirs["plan_id"]

    resp = client.post(
        f"{API}/day-plans/{mine['plan_id']}/complete",
        headers={**HEADERS, "X-User-Id": "user-2"},
    )
    assert resp.status_code == 404


def test_history_and_reset(client):
    plan = client.get(f"{API}/day-plans/today", headers=HEADERS).json()["data"]
    _finish_plan(client, plan)
    client.post(f"{API}/day-plans/{plan['plan_id']}/complete", headers=HEADERS)

    history = client.get(f"{API}/history", headers=HEADERS).json()["data"]
    assert history["days"][0]["plan_date"] == plan["plan_date"]
    assert history["streak"]["current_streak_days"] == 1

    assert client.post(f"{API}/users/me/reset", headers=HEADERS).json()["data"] == {"reset": True}
    history = client.get(f"{API}/history", headers=HEADERS).json()["data"]
    assert history["days"] == []
    assert history["streak"]["current_streak_days"] == 0


def test_speech_attempt_endpoints(client):
    plan = client.get(f"{API}/day-plans/today", headers=HEADERS).json()["data"]
    created = client.post(
        f"{API}/speech-attempts",
        json={"plan_item_id": plan["items"][0]["plan_item_id"], "audio_uri": "local://clip", "duration_ms": 1200},
        headers=HEADERS,
    )
    assert created.status_code == 200
    speech_id = created.json()["data"]["speech_id"]

    scored = client.patch(f"{API}/speech/{speech_id}/score", json={"pronunciation_score": 92}, headers=HEADERS)
    assert scored.status_code == 200
    assert scored.json()["data"]["pronunciation_score"] == 92

    out_of_range = client.patch(f"{API}/speech/{speech_id}/score", json={"pronunciation_score": 101}, headers=HEADERS)
    assert out_of_range.status_code == 400

    missing_uri = client.post(
        f"{API}/speech-attempts",
        json={"plan_item_id": plan["items"][0]["plan_item_id"], "audio_uri": ""},
        headers=HEADERS,
    )
    assert missing_uri.status_code == 400


def test_apps_built_by_factory_keep_separate_stores(client, tmp_path, offline_supplier):
    plan = client.get(f"{API}/day-plans/today", headers=HEADERS).json()["data"]
    with TestClient(create_app(Database(tmp_path / "second.db"), offline_supplier)) as other:
        resp = other.get(f"{API}/day-plans/today", params={"create_if_missing": "false"}, headers=HEADERS)
        assert resp.status_code == 404
        created = other.get(f"{API}/day-plans/today", headers=HEADERS).json()["data"]
    assert created["plan_id"] != plan["plan_id"]
