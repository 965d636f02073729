from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta
from typing import Callable

from loguru import logger

from tinywords.config import IDEMPOTENCY_TTL_SECONDS
from tinywords.context import RequestContext
from tinywords.storage.db import Database


def build_key(method: str, resource: str, request_id: str) -> str:
    return f"{method.upper()}:{resource}:{request_id}"


class IdempotencyStore:
    """Caches the response of a mutating call per (user, key) until it expires."""

    def __init__(self, db: Database, *, ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS) -> None:
        self.db = db
        self.ttl_seconds = max(1, int(ttl_seconds))

    def get(self, ctx: RequestContext, key: str) -> dict | None:
        return self.db.get_idempotent_response(ctx.user_id, key, now_iso=ctx.now_iso)

    def put(self, ctx: RequestContext, key: str, response: dict, *, conn: sqlite3.Connection | None = None) -> None:
        expires_at = (datetime.fromisoformat(ctx.now_iso) + timedelta(seconds=self.ttl_seconds)).isoformat()
        self.db.save_idempotent_response(ctx.user_id, key, response, expires_at=expires_at, conn=conn)

    def purge_expired(self, now_iso: str) -> int:
        removed = self.db.purge_expired_idempotency(now_iso=now_iso)
        if removed:
            logger.debug("purged {} expired idempotency records", removed)
        return removed

    def run(self, ctx: RequestContext, key: str, action: Callable[[sqlite3.Connection], dict]) -> dict:
        """Replay a cached response, or run ``action`` and cache its result.

        ``action`` gets the open connection; its writes and the cached
        response commit together or not at all.
        """
        cached = self.get(ctx, key)
        if cached is not None:
            logger.info("idempotent replay for key {}", key)
            return cached
        with self.db.connect() as conn:
            response = action(conn)
            self.put(ctx, key, response, conn=conn)
        return response
