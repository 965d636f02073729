from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from tinywords.config import DEFAULT_USER_ID
from tinywords.scheduler.dates import today_for_timezone

UTC = timezone.utc


@dataclass(frozen=True)
class RequestContext:
    request_id: str
    now_iso: str
    today: str
    user_id: str


def build_context(
    *,
    request_id: str | None = None,
    user_id: str | None = None,
    timezone_name: str | None = None,
    now: datetime | None = None,
) -> RequestContext:
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return RequestContext(
        request_id=(request_id or "").strip() or str(uuid.uuid4()),
        now_iso=now.astimezone(UTC).isoformat(),
        today=today_for_timezone(timezone_name, now),
        user_id=(user_id or "").strip() or DEFAULT_USER_ID,
    )
