from __future__ import annotations

import math

from tinywords.context import RequestContext
from tinywords.errors import NotFoundError, ValidationError, field_error
from tinywords.storage.db import Database

MIN_SCORE = 0.0
MAX_SCORE = 100.0


class SpeechService:
    """Records speech attempts; scoring happens elsewhere and is written back here."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_attempt(self, ctx: RequestContext, *, plan_item_id: str, audio_uri: str, duration_ms: int) -> dict:
        audio_uri = (audio_uri or "").strip()
        if not audio_uri:
            raise ValidationError("audio_uri is required", details=field_error("audio_uri", "required"))
        if duration_ms < 0:
            raise ValidationError("duration_ms must not be negative", details=field_error("duration_ms", "out_of_range"))
        if not self.db.plan_item_exists(ctx.user_id, plan_item_id):
            raise NotFoundError("plan item not found")

        row = self.db.create_speech_attempt(ctx.user_id, plan_item_id, audio_uri, duration_ms)
        return {"speech_id": row["id"], "plan_item_id": row["plan_item_id"], "created_at": row["created_at"]}

    def update_score(
        self, ctx: RequestContext, speech_id: str, *, score: float, scoring_version: str | None = None
    ) -> dict:
        validate_score(score)
        row = self.db.update_speech_score(ctx.user_id, speech_id, score, scoring_version)
        if row is None:
            raise NotFoundError("speech not found")
        return {
            "speech_id": row["id"],
            "plan_item_id": row["plan_item_id"],
            "audio_uri": row["audio_uri"],
            "duration_ms": row["duration_ms"],
            "pronunciation_score": row["pronunciation_score"],
            "scoring_version": row["scoring_version"],
            "created_at": row["created_at"],
        }


def validate_score(score: float) -> None:
    value = float(score)
    if math.isnan(value) or value < MIN_SCORE or value > MAX_SCORE:
        raise ValidationError(
            "pronunciation_score must be 0..100",
            details=field_error("pronunciation_score", "out_of_range"),
        )
