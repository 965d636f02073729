from __future__ import annotations

from loguru import logger

from tinywords.config import ALLOWED_DAILY_TARGETS
from tinywords.context import RequestContext
from tinywords.errors import ValidationError, field_error
from tinywords.storage.db import PROFILE_FIELDS, Database


class UserService:
    def __init__(self, db: Database) -> None:
        self.db = db

    def get_profile(self, ctx: RequestContext) -> dict:
        return self.db.get_profile(ctx.user_id)

    def patch_profile(self, ctx: RequestContext, changes: dict) -> dict:
        """Apply a partial profile update.

        A new daily target takes effect from the next day plan; today's plan keeps
        the target it was built with.
        """
        changes = {key: value for key, value in changes.items() if key in PROFILE_FIELDS and value is not None}
        _validate_profile_changes(changes)

        current = self.db.get_profile(ctx.user_id)
        updated = self.db.update_profile(ctx.user_id, changes, updated_at=ctx.now_iso)

        for field_name in PROFILE_FIELDS:
            if field_name not in changes or current[field_name] == updated[field_name]:
                continue
            self.db.record_event(
                user_id=ctx.user_id,
                event_name="settings_updated",
                entity_type="user_profile",
                entity_id=ctx.user_id,
                payload={
                    "field_name": field_name,
                    "old_value": current[field_name],
                    "new_value": updated[field_name],
                    "apply_timing": "next_dayplan",
                },
                occurred_at=ctx.now_iso,
            )
        return updated

    def reset_data(self, ctx: RequestContext) -> dict:
        self.db.reset_user_data(ctx.user_id)
        logger.warning("learning data reset for user {}", ctx.user_id)
        return {"reset": True}


def _validate_profile_changes(changes: dict) -> None:
    if "daily_target" in changes:
        target = changes["daily_target"]
        if isinstance(target, bool) or not isinstance(target, int) or target not in ALLOWED_DAILY_TARGETS:
            raise ValidationError(
                "daily_target must be between 3 and 5",
                details=field_error("daily_target", "out_of_range"),
            )
    for key in ("level", "learning_focus"):
        if key in changes and not str(changes[key]).strip():
            raise ValidationError(f"{key} must not be empty", details=field_error(key, "required"))
