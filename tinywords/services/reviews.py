from __future__ import annotations

import sqlite3
from dataclasses import asdict

from loguru import logger

from tinywords.context import RequestContext
from tinywords.errors import ConflictError, NotFoundError, ValidationError, field_error
from tinywords.scheduler.review_queue import (
    REVIEW_RESULTS,
    ReviewTask,
    queue_summary,
    sort_queue,
    submit_review,
)
from tinywords.services.idempotency import IdempotencyStore, build_key
from tinywords.storage.db import Database, new_id


class ReviewService:
    def __init__(self, db: Database, idempotency: IdempotencyStore) -> None:
        self.db = db
        self.idempotency = idempotency

    def queue(self, ctx: RequestContext) -> dict:
        tasks = sort_queue(self.db.list_review_tasks(ctx.user_id, status="queued"), ctx.today)
        items = self.db.get_learning_items(ctx.user_id, sorted({task.item_id for task in tasks}))

        enriched = []
        for task in tasks:
            item = items.get(task.item_id) or {}
            enriched.append(
                {
                    **asdict(task),
                    "lemma": item.get("lemma") or task.item_id,
                    "meaning": item.get("meaning") or "",
                    "item_type": item.get("item_type") or "vocab",
                    "example_en": item.get("example_en") or "",
                }
            )
        return {"summary": asdict(queue_summary(tasks, ctx.today)), "tasks": enriched}

    def submit(self, ctx: RequestContext, review_id: str, result: str) -> dict:
        if result not in REVIEW_RESULTS:
            raise ValidationError(f"unknown review result: {result}", details=field_error("result", "invalid"))
        key = build_key("POST", f"/reviews/{review_id}/submit", ctx.request_id)
        return self.idempotency.run(ctx, key, lambda conn: self._submit(ctx, review_id, result, conn))

    def _submit(self, ctx: RequestContext, review_id: str, result: str, conn: sqlite3.Connection) -> dict:
        task = self.db.get_review_task(ctx.user_id, review_id, conn=conn)
        if task is None:
            raise NotFoundError("review not found")
        if task.status != "queued":
            raise ConflictError("review already processed")

        def make_task(stage: str, due_date: str) -> ReviewTask:
            return ReviewTask(review_id=new_id(), item_id=task.item_id, due_date=due_date, stage=stage)

        outcome = submit_review(task, result, ctx.today, ctx.now_iso, make_task)
        completed_on = ctx.today if outcome.updated_task.status == "done" else None

        next_task = None
        if not self.db.update_review_task(ctx.user_id, outcome.updated_task, completed_on=completed_on, conn=conn):
            raise ConflictError("review already processed")
        candidate = outcome.next_task
        if candidate is not None:
            if self.db.has_queued_review(ctx.user_id, candidate.item_id, candidate.stage, conn=conn):
                logger.info("queued {} review for item {} already exists", candidate.stage, candidate.item_id)
            elif self.db.insert_review_task(ctx.user_id, candidate, conn=conn):
                next_task = candidate
        self.db.record_event(
            user_id=ctx.user_id,
            event_name="review_completed",
            entity_type="review_task",
            entity_id=review_id,
            payload={"review_id": review_id, "stage": task.stage, "result": result},
            occurred_at=ctx.now_iso,
            conn=conn,
        )

        return {
            "review": asdict(outcome.updated_task),
            "next_task_created": next_task is not None,
            "next_task": asdict(next_task) if next_task else None,
            "policy_version": outcome.policy_version,
        }
