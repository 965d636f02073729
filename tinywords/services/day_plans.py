from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass

from loguru import logger

from tinywords.config import PlanDefaults
from tinywords.context import RequestContext
from tinywords.errors import ConflictError, InternalError, NotFoundError, ValidationError, field_error
from tinywords.scheduler.day_plan import (
    DayPlan,
    PlanItem,
    StepRegressionError,
    StepUpdate,
    apply_step_updates,
    build_day_plan,
    complete_plan,
    due_date_for_first_review,
    progress,
)
from tinywords.scheduler.review_queue import ReviewTask
from tinywords.scheduler.streak import StreakState, apply_day_completion
from tinywords.services.idempotency import IdempotencyStore, build_key
from tinywords.services.word_supplier import WordRequest, WordSupplier
from tinywords.storage.db import Database, new_id


@dataclass(frozen=True)
class TodayPlanResult:
    data: dict
    created: bool
    word_source: str | None = None


class DayPlanService:
    def __init__(
        self,
        db: Database,
        supplier: WordSupplier,
        idempotency: IdempotencyStore,
        defaults: PlanDefaults | None = None,
    ) -> None:
        self.db = db
        self.supplier = supplier
        self.idempotency = idempotency
        self.defaults = defaults or PlanDefaults()

    def get_or_create_today(self, ctx: RequestContext, *, create_if_missing: bool = True) -> TodayPlanResult:
        existing = self.db.get_day_plan_by_date(ctx.user_id, ctx.today)
        if existing is not None:
            return TodayPlanResult(data=self._plan_view(existing), created=False)
        if not create_if_missing:
            raise NotFoundError("today plan not found")

        profile = self.db.get_profile(ctx.user_id)
        request = WordRequest(
            count=int(profile["daily_target"]),
            level=str(profile["level"]),
            focus=str(profile["learning_focus"]),
            known_words=self.db.known_lemmas(ctx.user_id, self.defaults.known_words_limit),
            avoid_words=self.db.recent_lemmas(ctx.user_id, self.defaults.recent_words_limit),
        )
        batch = self.supplier.supply(request)
        if not batch.items:
            raise InternalError("no learning items available for today plan")

        source = "ai_generated" if batch.source == "ai" else "fallback"
        words = [asdict(word) for word in batch.items]
        try:
            with self.db.connect() as conn:
                rows = self.db.insert_learning_items(ctx.user_id, words, source=source, conn=conn)
                plan = build_day_plan(
                    plan_id=new_id(),
                    plan_date=ctx.today,
                    daily_target=request.count,
                    items=[
                        PlanItem(
                            plan_item_id=new_id(),
                            item_id=row["id"],
                            lemma=row["lemma"],
                            meaning=row["meaning"],
                            item_type=row["item_type"],
                            part_of_speech=row["part_of_speech"],
                            example_en=row["example_en"],
                            example_translation=row["example_translation"],
                        )
                        for row in rows
                    ],
                )
                self.db.insert_day_plan(ctx.user_id, plan, conn=conn)
                self.db.record_event(
                    user_id=ctx.user_id,
                    event_name="today_started",
                    entity_type="day_plan",
                    entity_id=plan.plan_id,
                    payload={"plan_id": plan.plan_id, "daily_target": plan.daily_target, "word_source": batch.source},
                    occurred_at=ctx.now_iso,
                    conn=conn,
                )
        except sqlite3.IntegrityError:
            # another request created today's plan first; our learning items rolled back
            winner = self.db.get_day_plan_by_date(ctx.user_id, ctx.today)
            if winner is None:
                raise
            logger.info("day plan for {} {} already created, returning existing", ctx.user_id, ctx.today)
            return TodayPlanResult(data=self._plan_view(winner), created=False)

        logger.info(
            "created day plan {} for {} on {} ({} items, source={})",
            plan.plan_id,
            ctx.user_id,
            plan.plan_date,
            len(plan.items),
            batch.source,
        )
        return TodayPlanResult(data=self._plan_view(plan), created=True, word_source=batch.source)

    def patch_item(
        self,
        ctx: RequestContext,
        plan_id: str,
        plan_item_id: str,
        update: StepUpdate,
        *,
        user_sentence: str | None = None,
    ) -> dict:
        if update.is_empty():
            raise ValidationError("at least one step status is required", details=field_error("body", "empty update"))
        sentence = None
        if user_sentence is not None:
            sentence = user_sentence.strip()
            if not sentence:
                raise ValidationError("user_sentence must not be empty", details=field_error("user_sentence", "empty"))

        plan = self.db.get_day_plan(ctx.user_id, plan_id)
        if plan is None:
            raise NotFoundError("plan not found")
        item = self.db.get_plan_item(plan_id, plan_item_id)
        if item is None:
            raise NotFoundError("plan item not found")

        try:
            merged = apply_step_updates(item, update)
        except StepRegressionError as exc:
            raise ConflictError(str(exc), details=field_error(f"{exc.step}_status", "regression")) from exc
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        if plan.status == "completed" and merged != item:
            raise ConflictError("plan is already completed")

        with self.db.connect() as conn:
            if merged != item and not self.db.update_plan_item(merged, previous=item, conn=conn):
                raise ConflictError("plan item was changed by another request, retry")
            if sentence and merged.sentence_status == "done":
                self.db.save_sentence_attempt(ctx.user_id, plan_item_id, sentence, conn=conn)
            if merged != item:
                self.db.record_event(
                    user_id=ctx.user_id,
                    event_name="word_step_completed",
                    entity_type="plan_item",
                    entity_id=plan_item_id,
                    payload={"plan_item_id": plan_item_id, "step_type": update.step_type()},
                    occurred_at=ctx.now_iso,
                    conn=conn,
                )
        return serialize_item(merged)

    def complete(self, ctx: RequestContext, plan_id: str) -> dict:
        key = build_key("POST", f"/day-plans/{plan_id}/complete", ctx.request_id)
        return self.idempotency.run(ctx, key, lambda conn: self._complete(ctx, plan_id, conn))

    def _complete(self, ctx: RequestContext, plan_id: str, conn: sqlite3.Connection) -> dict:
        plan = self.db.get_day_plan(ctx.user_id, plan_id, conn=conn)
        if plan is None:
            raise NotFoundError("plan not found")
        if plan.status == "completed":
            return _completion_view(plan, self.db.get_streak(ctx.user_id, conn=conn), 0)

        completed = complete_plan(plan, ctx.now_iso)
        if completed.status != "completed":
            raise ValidationError("plan is not ready to complete")

        if not self.db.mark_plan_completed(plan_id, ctx.now_iso, conn=conn):
            logger.info("plan {} completed concurrently, returning current state", plan_id)
            current = self.db.get_day_plan(ctx.user_id, plan_id, conn=conn)
            return _completion_view(current or completed, self.db.get_streak(ctx.user_id, conn=conn), 0)

        created = self._queue_first_reviews(ctx, completed, conn)
        streak = apply_day_completion(self.db.get_streak(ctx.user_id, conn=conn), completed.plan_date)
        self.db.save_streak(ctx.user_id, streak, updated_at=ctx.now_iso, conn=conn)
        self.db.record_event(
            user_id=ctx.user_id,
            event_name="today_completed",
            entity_type="day_plan",
            entity_id=plan_id,
            payload={"plan_id": plan_id, "completed_count": len(completed.items)},
            occurred_at=ctx.now_iso,
            conn=conn,
        )
        self.db.record_event(
            user_id=ctx.user_id,
            event_name="streak_updated",
            entity_type="streak",
            entity_id=ctx.user_id,
            payload={
                "date": completed.plan_date,
                "current": streak.current_streak,
                "best": streak.longest_streak,
            },
            occurred_at=ctx.now_iso,
            conn=conn,
        )

        logger.info("plan {} completed, {} review tasks queued, streak {}", plan_id, created, streak.current_streak)
        return _completion_view(completed, streak, created)

    def _queue_first_reviews(self, ctx: RequestContext, plan: DayPlan, conn: sqlite3.Connection) -> int:
        due_date = due_date_for_first_review(plan.plan_date)
        created = 0
        for item in plan.items:
            if not item.item_id:
                continue
            if self.db.has_queued_review(ctx.user_id, item.item_id, "d1", conn=conn):
                continue
            task = ReviewTask(review_id=new_id(), item_id=item.item_id, due_date=due_date, stage="d1")
            if self.db.insert_review_task(ctx.user_id, task, conn=conn):
                created += 1
        return created

    def _plan_view(self, plan: DayPlan) -> dict:
        item_ids = [item.plan_item_id for item in plan.items]
        view = serialize_plan(plan)
        view["speech_attempts"] = self.db.latest_speech_attempts(item_ids)
        view["saved_sentences"] = self.db.latest_sentences(item_ids)
        return view


def serialize_item(item: PlanItem) -> dict:
    return asdict(item)


def serialize_plan(plan: DayPlan) -> dict:
    return {
        "plan_id": plan.plan_id,
        "plan_date": plan.plan_date,
        "daily_target": plan.daily_target,
        "status": plan.status,
        "completed_at": plan.completed_at,
        "items": [serialize_item(item) for item in plan.items],
        "progress": asdict(progress(plan)),
    }


def serialize_streak(state: StreakState) -> dict:
    return asdict(state)


def _completion_view(plan: DayPlan, streak: StreakState, created: int) -> dict:
    return {
        "plan": serialize_plan(plan),
        "streak": serialize_streak(streak),
        "review_tasks_created": created,
    }
