from __future__ import annotations

import pytest

from tinywords.scheduler.review_queue import (
    ReviewTask,
    is_overdue,
    queue_summary,
    sort_queue,
    stage_rank,
    submit_review,
)

TODAY = "2026-02-15"
SUBMITTED_AT = "2026-02-15T09:00:00+00:00"


def _factory(stage: str, due_date: str) -> ReviewTask:
    return ReviewTask(review_id=f"new-{stage}", item_id="li-1", due_date=due_date, stage=stage)


def test_sort_queue_puts_overdue_first_then_due_date_then_stage():
    tasks = [
        ReviewTask(review_id="a", item_id="1", due_date="2026-02-15", stage="d1"),
        ReviewTask(review_id="b", item_id="2", due_date="2026-02-14", stage="d3"),
        ReviewTask(review_id="c", item_id="3", due_date="2026-02-10", stage="d1"),
    ]
    assert [task.review_id for task in sort_queue(tasks, TODAY)] == ["c", "b", "a"]


def test_sort_queue_breaks_ties_by_stage_rank_and_is_stable():
    tasks = [
        ReviewTask(review_id="custom", item_id="1", due_date=TODAY, stage="custom"),
        ReviewTask(review_id="d7", item_id="2", due_date=TODAY, stage="d7"),
        ReviewTask(review_id="d1-first", item_id="3", due_date=TODAY, stage="d1"),
        ReviewTask(review_id="d3", item_id="4", due_date=TODAY, stage="d3"),
        ReviewTask(review_id="d1-second", item_id="5", due_date=TODAY, stage="d1"),
    ]
    ordered = [task.review_id for task in sort_queue(tasks, TODAY)]
    assert ordered == ["d1-first", "d1-second", "d3", "d7", "custom"]


def test_is_overdue_only_for_queued_tasks_before_today():
    assert is_overdue(ReviewTask("r", "1", "2026-02-14", "d1"), TODAY) is True
    assert is_overdue(ReviewTask("r", "1", TODAY, "d1"), TODAY) is False
    assert is_overdue(ReviewTask("r", "1", "2026-02-14", "d1", status="done"), TODAY) is False


def test_stage_rank_orders_known_stages_before_unknown():
    assert stage_rank("d1") < stage_rank("d3") < stage_rank("d7") < stage_rank("custom") < stage_rank("zzz")


def test_success_on_d1_spawns_d3_two_days_after_submission():
    task = ReviewTask(review_id="r1", item_id="li-1", due_date=TODAY, stage="d1")
    outcome = submit_review(task, "success", TODAY, SUBMITTED_AT, _factory)

    assert outcome.updated_task.status == "done"
    assert outcome.updated_task.completed_at == SUBMITTED_AT
    assert outcome.next_task_created is True
    assert outcome.next_task.stage == "d3"
    assert outcome.next_task.due_date == "2026-02-17"
    assert outcome.policy_version == "v1"


def test_hard_on_d3_spawns_d7_four_days_after_late_submission():
    task = ReviewTask(review_id="r1", item_id="li-1", due_date="2026-02-10", stage="d3")
    outcome = submit_review(task, "hard", TODAY, SUBMITTED_AT, _factory)

    assert outcome.updated_task.status == "done"
    assert outcome.next_task.stage == "d7"
    assert outcome.next_task.due_date == "2026-02-19"


def test_fail_requeues_for_tomorrow_without_spawning():
    task = ReviewTask(review_id="r1", item_id="li-1", due_date=TODAY, stage="d1")
    outcome = submit_review(task, "fail", TODAY, SUBMITTED_AT, _factory)

    assert outcome.updated_task.status == "queued"
    assert outcome.updated_task.stage == "d1"
    assert outcome.updated_task.due_date == "2026-02-16"
    assert outcome.next_task is None
    assert outcome.next_task_created is False


@pytest.mark.parametrize("stage", ["d7", "custom"])
def test_terminal_stages_spawn_nothing(stage):
    task = ReviewTask(review_id="r1", item_id="li-1", due_date=TODAY, stage=stage)
    outcome = submit_review(task, "success", TODAY, SUBMITTED_AT, _factory)
    assert outcome.updated_task.status == "done"
    assert outcome.next_task is None
    assert outcome.next_task_created is False


def test_unknown_result_is_rejected():
    task = ReviewTask(review_id="r1", item_id="li-1", due_date=TODAY, stage="d1")
    with pytest.raises(ValueError):
        submit_review(task, "maybe", TODAY, SUBMITTED_AT, _factory)


def test_queue_summary_counts():
    tasks = [
        ReviewTask("a", "1", "2026-02-13", "d1"),
        ReviewTask("b", "2", TODAY, "d1"),
        ReviewTask("c", "3", "2026-02-20", "d3"),
        ReviewTask("d", "4", "2026-02-10", "d1", status="done"),
    ]
    summary = queue_summary(tasks, TODAY)
    assert summary.queued_total == 3
    assert summary.overdue_count == 1
    assert summary.due_today_count == 1
