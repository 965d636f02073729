from __future__ import annotations

import pytest

from tinywords.app import build_services
from tinywords.errors import NotFoundError, ValidationError
from tinywords.scheduler.day_plan import StepUpdate

ALL_DONE = StepUpdate(recall_status="success", sentence_status="done", speech_status="done")


@pytest.fixture()
def services(temp_db, offline_supplier):
    return build_services(temp_db, offline_supplier)


def _complete_day(services, ctx) -> dict:
    plan = services.day_plans.get_or_create_today(ctx).data
    for item in plan["items"]:
        services.day_plans.patch_item(ctx, plan["plan_id"], item["plan_item_id"], ALL_DONE)
    services.day_plans.complete(ctx, plan["plan_id"])
    return plan


def test_profile_defaults_are_created_on_first_read(services, make_ctx):
    profile = services.users.get_profile(make_ctx())
    assert profile["user_id"] == "user-1"
    assert profile["daily_target"] == 3
    assert profile["level"] == "A2"
    assert profile["learning_focus"] == "travel"
    assert profile["reminder_enabled"] is True
    assert profile["speech_required_for_completion"] is False


def test_patch_profile_updates_fields_and_records_events(services, temp_db, make_ctx):
    ctx = make_ctx()
    updated = services.users.patch_profile(ctx, {"daily_target": 4, "level": "B1", "reminder_enabled": False})
    assert updated["daily_target"] == 4
    assert updated["level"] == "B1"
    assert updated["reminder_enabled"] is False
    assert updated["learning_focus"] == "travel"

    events = temp_db.list_events(ctx.user_id, event_name="settings_updated")
    changed = {event["payload"]["field_name"]: event["payload"] for event in events}
    assert set(changed) == {"daily_target", "level", "reminder_enabled"}
    assert changed["daily_target"]["old_value"] == 3
    assert changed["daily_target"]["apply_timing"] == "next_dayplan"


@pytest.mark.parametrize("target", [2, 6, 0, True])
def test_patch_profile_rejects_out_of_range_target(services, make_ctx, target):
    ctx = make_ctx()
    with pytest.raises(ValidationError):
        services.users.patch_profile(ctx, {"daily_target": target, "level": "C1"})
    assert services.users.get_profile(ctx)["level"] == "A2"


def test_reset_wipes_learning_data(services, temp_db, make_ctx):
    ctx = make_ctx()
    _complete_day(services, ctx)
    services.users.reset_data(ctx)

    assert temp_db.list_day_plans(ctx.user_id) == []
    assert temp_db.list_review_tasks(ctx.user_id, status=None) == []
    assert temp_db.get_streak(ctx.user_id).current_streak == 0
    assert temp_db.list_events(ctx.user_id) == []
    with pytest.raises(NotFoundError):
        services.day_plans.get_or_create_today(ctx, create_if_missing=False)


def test_history_lists_days_newest_first(services, make_ctx):
    _complete_day(services, make_ctx("2026-02-14"))
    first_plan = services.day_plans.get_or_create_today(make_ctx("2026-02-15")).data

    review_ctx = make_ctx("2026-02-15")
    review_id = services.reviews.queue(review_ctx)["tasks"][0]["review_id"]
    services.reviews.submit(review_ctx, review_id, "success")

    history = services.history.history(make_ctx("2026-02-15"))
    assert [day["plan_date"] for day in history["days"]] == ["2026-02-15", "2026-02-14"]

    today, yesterday = history["days"]
    assert today["dayplan_status"] == "open"
    assert today["learning_target"] == first_plan["daily_target"]
    assert today["review_done"] == 1
    assert today["review_pending"] == 2
    assert yesterday["dayplan_status"] == "completed"
    assert yesterday["learning_done"] == 3
    assert yesterday["review_pending"] == 0
    assert history["streak"]["current_streak_days"] == 1
    assert history["streak"]["last_completed_date"] == "2026-02-14"


def test_speech_attempt_and_score(services, make_ctx):
    ctx = make_ctx()
    plan = services.day_plans.get_or_create_today(ctx).data
    item_id = plan["items"][0]["plan_item_id"]

    attempt = services.speech.create_attempt(ctx, plan_item_id=item_id, audio_uri="s3://bucket/a.m4a", duration_ms=1800)
    scored = services.speech.update_score(ctx, attempt["speech_id"], score=87.5, scoring_version="pron-v1")
    assert scored["pronunciation_score"] == 87.5
    assert scored["scoring_version"] == "pron-v1"

    view = services.day_plans.get_or_create_today(ctx).data
    assert view["speech_attempts"][item_id]["score"] == 87.5
    assert view["speech_attempts"][item_id]["duration_ms"] == 1800


@pytest.mark.parametrize("score", [-0.1, 100.5, float("nan")])
def test_score_out_of_range_is_rejected(services, make_ctx, score):
    ctx = make_ctx()
    plan = services.day_plans.get_or_create_today(ctx).data
    attempt = services.speech.create_attempt(
        ctx, plan_item_id=plan["items"][0]["plan_item_id"], audio_uri="local://a", duration_ms=10
    )
    with pytest.raises(ValidationError):
        services.speech.update_score(ctx, attempt["speech_id"], score=score)


def test_speech_attempt_validation(services, make_ctx):
    ctx = make_ctx()
    plan = services.day_plans.get_or_create_today(ctx).data
    item_id = plan["items"][0]["plan_item_id"]

    with pytest.raises(ValidationError):
        services.speech.create_attempt(ctx, plan_item_id=item_id, audio_uri="  ", duration_ms=10)
    with pytest.raises(ValidationError):
        services.speech.create_attempt(ctx, plan_item_id=item_id, audio_uri="local://a", duration_ms=-1)
    with pytest.raises(NotFoundError):
        services.speech.create_attempt(ctx, plan_item_id="missing", audio_uri="local://a", duration_ms=10)
    with pytest.raises(NotFoundError):
        services.speech.update_score(ctx, "missing", score=50)
