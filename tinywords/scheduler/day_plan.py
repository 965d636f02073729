from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Literal

from tinywords.scheduler.dates import add_days

RecallStatus = Literal["pending", "success", "fail"]
StepStatus = Literal["pending", "done", "skipped"]
PlanStatus = Literal["open", "completed"]
CtaState = Literal["start", "continue", "done"]

ITEM_TYPES = {"vocab", "preposition", "idiom", "phrasal_verb", "collocation"}

# Step statuses only move up these ranks.
RECALL_RANK = {"pending": 0, "fail": 1, "success": 2}
STEP_RANK = {"pending": 0, "skipped": 1, "done": 2}


class StepRegressionError(ValueError):
    def __init__(self, step: str, current: str, requested: str) -> None:
        super().__init__(f"{step} status cannot move from {current} to {requested}")
        self.step = step
        self.current = current
        self.requested = requested


@dataclass(frozen=True)
class PlanItem:
    plan_item_id: str
    item_id: str
    lemma: str
    meaning: str
    item_type: str = "vocab"
    part_of_speech: str = ""
    example_en: str = ""
    example_translation: str = ""
    recall_status: RecallStatus = "pending"
    sentence_status: StepStatus = "pending"
    speech_status: StepStatus = "pending"
    is_completed: bool = False


@dataclass(frozen=True)
class DayPlan:
    plan_id: str
    plan_date: str
    daily_target: int
    status: PlanStatus = "open"
    completed_at: str | None = None
    items: tuple[PlanItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StepUpdate:
    """Partial update of an item's steps; ``None`` keeps the current value."""

    recall_status: RecallStatus | None = None
    sentence_status: StepStatus | None = None
    speech_status: StepStatus | None = None

    def is_empty(self) -> bool:
        return self.recall_status is None and self.sentence_status is None and self.speech_status is None

    def step_type(self) -> str:
        if self.recall_status is not None:
            return "recall"
        if self.sentence_status is not None:
            return "sentence"
        return "speech"


@dataclass(frozen=True)
class DayPlanProgress:
    total: int
    completed_count: int
    progress_percent: int
    steps_completed: int
    steps_total: int
    step_percent: int
    cta_state: CtaState


def is_item_completed(item: PlanItem) -> bool:
    speech_ok = item.speech_status in {"done", "skipped"}
    return item.recall_status == "success" and item.sentence_status == "done" and speech_ok


def sync_completion(item: PlanItem) -> PlanItem:
    return replace(item, is_completed=is_item_completed(item))


def apply_step_updates(item: PlanItem, update: StepUpdate) -> PlanItem:
    """Merge ``update`` into ``item`` and recompute completion.

    Raises ``StepRegressionError`` when a field would move to a lower rank.
    Re-sending the current value is accepted as a no-op.
    """
    recall = _merge_step("recall", item.recall_status, update.recall_status, RECALL_RANK)
    sentence = _merge_step("sentence", item.sentence_status, update.sentence_status, STEP_RANK)
    speech = _merge_step("speech", item.speech_status, update.speech_status, STEP_RANK)
    merged = replace(item, recall_status=recall, sentence_status=sentence, speech_status=speech)
    return sync_completion(merged)


def _merge_step(step: str, current: str, requested: str | None, ranks: dict[str, int]) -> str:
    if requested is None or requested == current:
        return current
    if requested not in ranks:
        raise ValueError(f"unknown {step} status: {requested}")
    if ranks[requested] < ranks[current]:
        raise StepRegressionError(step, current, requested)
    return requested


def count_completed_steps(item: PlanItem) -> int:
    count = 0
    if item.recall_status == "success":
        count += 1
    if item.sentence_status == "done":
        count += 1
    if item.speech_status in {"done", "skipped"}:
        count += 1
    return count


def can_complete(plan: DayPlan) -> bool:
    return all(item.is_completed for item in plan.items)


def complete_plan(plan: DayPlan, completed_at: str) -> DayPlan:
    # "not ready" is signalled by returning the plan unchanged
    if plan.status == "completed" or not can_complete(plan):
        return plan
    return replace(plan, status="completed", completed_at=completed_at)


def progress(plan: DayPlan) -> DayPlanProgress:
    completed_count = sum(1 for item in plan.items if item.is_completed)
    progress_percent = 0 if plan.daily_target < 1 else (completed_count * 100) // plan.daily_target
    steps_total = len(plan.items) * 3
    steps_completed = sum(count_completed_steps(item) for item in plan.items)
    step_percent = 0 if steps_total < 1 else (steps_completed * 100) // steps_total

    if plan.status == "completed":
        return DayPlanProgress(
            total=plan.daily_target,
            completed_count=completed_count,
            progress_percent=100,
            steps_completed=steps_completed,
            steps_total=steps_total,
            step_percent=100,
            cta_state="done",
        )

    return DayPlanProgress(
        total=plan.daily_target,
        completed_count=completed_count,
        progress_percent=progress_percent,
        steps_completed=steps_completed,
        steps_total=steps_total,
        step_percent=step_percent,
        cta_state="start" if steps_completed == 0 else "continue",
    )


def due_date_for_first_review(plan_date: str) -> str:
    return add_days(plan_date, 1)


def build_day_plan(plan_id: str, plan_date: str, daily_target: int, items: list[PlanItem]) -> DayPlan:
    fresh = tuple(
        sync_completion(
            replace(item, recall_status="pending", sentence_status="pending", speech_status="pending")
        )
        for item in items
    )
    return DayPlan(plan_id=plan_id, plan_date=plan_date, daily_target=daily_target, items=fresh)
