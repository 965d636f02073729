from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class PlanItemPatchRequest(BaseModel):
    recall_status: Literal["pending", "success", "fail"] | None = None
    sentence_status: Literal["pending", "done", "skipped"] | None = None
    speech_status: Literal["pending", "done", "skipped"] | None = None
    user_sentence: str | None = None


class ReviewSubmitRequest(BaseModel):
    result: Literal["success", "hard", "fail"]


class ProfilePatchRequest(BaseModel):
    daily_target: int | None = None
    level: str | None = None
    learning_focus: str | None = None
    reminder_enabled: bool | None = None
    speech_required_for_completion: bool | None = None


class SpeechAttemptRequest(BaseModel):
    plan_item_id: str
    audio_uri: str
    duration_ms: int = Field(default=0)


class SpeechScoreRequest(BaseModel):
    pronunciation_score: float
    scoring_version: str | None = None
