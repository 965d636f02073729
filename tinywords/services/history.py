from __future__ import annotations

from tinywords.context import RequestContext
from tinywords.scheduler.day_plan import DayPlan
from tinywords.storage.db import Database

HISTORY_DAYS_LIMIT = 60


class HistoryService:
    def __init__(self, db: Database) -> None:
        self.db = db

    def history(self, ctx: RequestContext, *, limit: int = HISTORY_DAYS_LIMIT) -> dict:
        """Days with a plan, newest first, plus the streak summary."""
        days = [self._day_view(ctx, plan) for plan in self.db.list_day_plans(ctx.user_id, limit)]
        streak = self.db.get_streak(ctx.user_id)
        self.db.record_event(
            user_id=ctx.user_id,
            event_name="history_opened",
            payload={"record_count": len(days)},
            occurred_at=ctx.now_iso,
        )
        return {
            "streak": {
                "current_streak_days": streak.current_streak,
                "best_streak_days": streak.longest_streak,
                "last_completed_date": streak.last_completed_date,
            },
            "days": days,
        }

    def _day_view(self, ctx: RequestContext, plan: DayPlan) -> dict:
        pending = 0
        if plan.plan_date == ctx.today:
            pending = self.db.count_reviews_pending_through(ctx.user_id, plan.plan_date)
        return {
            "plan_date": plan.plan_date,
            "dayplan_status": plan.status,
            "learning_done": sum(1 for item in plan.items if item.is_completed),
            "learning_target": plan.daily_target,
            "review_done": self.db.count_reviews_done_on(ctx.user_id, plan.plan_date),
            "review_pending": pending,
            "items": [
                {
                    "lemma": item.lemma,
                    "meaning": item.meaning,
                    "item_type": item.item_type,
                    "recall_status": item.recall_status,
                    "sentence_status": item.sentence_status,
                    "speech_status": item.speech_status,
                    "is_completed": item.is_completed,
                }
                for item in plan.items
            ],
        }
