from __future__ import annotations

import sys
from dataclasses import dataclass, replace
from typing import Callable, Literal, Sequence

from tinywords.scheduler.dates import add_days, compare_local_date

ReviewStage = Literal["d1", "d3", "d7", "custom"]
ReviewStatus = Literal["queued", "done", "missed"]
ReviewOutcome = Literal["success", "hard", "fail"]

POLICY_VERSION = "v1"
STAGE_ORDER: tuple[str, ...] = ("d1", "d3", "d7", "custom")
REVIEW_RESULTS = {"success", "hard", "fail"}

# next stage -> days after the submission day
NEXT_STAGE = {"d1": "d3", "d3": "d7"}
NEXT_STAGE_OFFSET_DAYS = {"d3": 2, "d7": 4}
RETRY_OFFSET_DAYS = 1


@dataclass(frozen=True)
class ReviewTask:
    review_id: str
    item_id: str
    due_date: str
    stage: ReviewStage
    status: ReviewStatus = "queued"
    completed_at: str | None = None


@dataclass(frozen=True)
class SubmitReviewOutcome:
    updated_task: ReviewTask
    next_task: ReviewTask | None
    next_task_created: bool
    policy_version: str = POLICY_VERSION


@dataclass(frozen=True)
class QueueSummary:
    queued_total: int
    overdue_count: int
    due_today_count: int


TaskFactory = Callable[[str, str], ReviewTask]


def stage_rank(stage: str) -> int:
    try:
        return STAGE_ORDER.index(stage)
    except ValueError:
        return sys.maxsize


def next_stage(stage: str) -> str | None:
    return NEXT_STAGE.get(stage)


def is_overdue(task: ReviewTask, today: str) -> bool:
    return task.status == "queued" and compare_local_date(task.due_date, today) < 0


def sort_queue(tasks: Sequence[ReviewTask], today: str) -> list[ReviewTask]:
    # sorted() is stable, so equal keys keep their input order
    return sorted(
        tasks,
        key=lambda task: (0 if is_overdue(task, today) else 1, task.due_date, stage_rank(task.stage)),
    )


def queue_summary(tasks: Sequence[ReviewTask], today: str) -> QueueSummary:
    queued = [task for task in tasks if task.status == "queued"]
    return QueueSummary(
        queued_total=len(queued),
        overdue_count=sum(1 for task in queued if compare_local_date(task.due_date, today) < 0),
        due_today_count=sum(1 for task in queued if task.due_date == today),
    )


def submit_review(
    task: ReviewTask,
    result: str,
    today: str,
    submitted_at: str,
    task_factory: TaskFactory,
) -> SubmitReviewOutcome:
    """Apply one review result to a queued task.

    ``fail`` keeps the task queued for tomorrow. ``success`` and ``hard`` close it
    and, for d1/d3, ask ``task_factory(stage, due_date)`` for the next stage.
    Offsets anchor to ``today`` (the submission day), not the original due date.
    """
    if result not in REVIEW_RESULTS:
        raise ValueError(f"unknown review result: {result}")

    if result == "fail":
        return SubmitReviewOutcome(
            updated_task=replace(task, status="queued", due_date=add_days(today, RETRY_OFFSET_DAYS)),
            next_task=None,
            next_task_created=False,
        )

    done_task = replace(task, status="done", completed_at=submitted_at)
    following = next_stage(task.stage)
    if following is None:
        return SubmitReviewOutcome(updated_task=done_task, next_task=None, next_task_created=False)

    due_date = add_days(today, NEXT_STAGE_OFFSET_DAYS[following])
    return SubmitReviewOutcome(
        updated_task=done_task,
        next_task=task_factory(following, due_date),
        next_task_created=True,
    )
