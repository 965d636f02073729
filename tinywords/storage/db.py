from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Sequence

from tinywords.config import DB_PATH, PlanDefaults
from tinywords.scheduler.day_plan import DayPlan, PlanItem
from tinywords.scheduler.review_queue import ReviewTask
from tinywords.scheduler.streak import StreakState, state_from_row

UTC = timezone.utc
PROFILE_FIELDS = ("daily_target", "level", "learning_focus", "reminder_enabled", "speech_required_for_completion")


class Database:
    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path

    @contextmanager
    def connect(self):
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _session(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        # join the caller's transaction when one is passed in
        if conn is not None:
            yield conn
            return
        with self.connect() as own:
            yield own

    def initialize(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        with self.connect() as conn:
            conn.executescript(schema_path.read_text(encoding="utf-8"))

    # -- profiles -------------------------------------------------------

    def get_profile(self, user_id: str, *, conn: sqlite3.Connection | None = None) -> dict:
        defaults = PlanDefaults()
        with self._session(conn) as session:
            session.execute(
                """
                INSERT OR IGNORE INTO user_profiles (user_id, daily_target, level, learning_focus, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, defaults.daily_target, defaults.level, defaults.learning_focus, _iso_now()),
            )
            row = session.execute("SELECT * FROM user_profiles WHERE user_id = ?", (user_id,)).fetchone()
        return _decode_profile(row)

    def update_profile(self, user_id: str, fields: dict, *, updated_at: str) -> dict:
        current = self.get_profile(user_id)
        merged = {**current, **{key: value for key, value in fields.items() if key in PROFILE_FIELDS and value is not None}}
        with self.connect() as conn:
            conn.execute(
                """
                UPDATE user_profiles
                SET daily_target = ?,
                    level = ?,
                    learning_focus = ?,
                    reminder_enabled = ?,
                    speech_required_for_completion = ?,
                    updated_at = ?
                WHERE user_id = ?
                """,
                (
                    int(merged["daily_target"]),
                    str(merged["level"]),
                    str(merged["learning_focus"]),
                    int(bool(merged["reminder_enabled"])),
                    int(bool(merged["speech_required_for_completion"])),
                    updated_at,
                    user_id,
                ),
            )
        return self.get_profile(user_id)

    # -- learning items -------------------------------------------------

    def insert_learning_items(
        self, user_id: str, items: Sequence[dict], *, source: str, conn: sqlite3.Connection | None = None
    ) -> list[dict]:
        rows = []
        for item in items:
            rows.append(
                {
                    "id": uuid.uuid4().hex,
                    "user_id": user_id,
                    "item_type": item.get("item_type") or "vocab",
                    "lemma": str(item["lemma"]).strip(),
                    "meaning": str(item.get("meaning") or "").strip(),
                    "part_of_speech": str(item.get("part_of_speech") or "").strip(),
                    "example_en": str(item.get("example_en") or "").strip(),
                    "example_translation": str(item.get("example_translation") or "").strip(),
                    "source": source,
                }
            )
        with self._session(conn) as session:
            session.executemany(
                """
                INSERT INTO learning_items
                (id, user_id, item_type, lemma, meaning, part_of_speech, example_en, example_translation, source)
                VALUES (:id, :user_id, :item_type, :lemma, :meaning, :part_of_speech, :example_en, :example_translation, :source)
                """,
                rows,
            )
        return rows

    def get_learning_items(self, user_id: str, item_ids: Sequence[str]) -> dict[str, dict]:
        if not item_ids:
            return {}
        placeholders = ",".join(["?"] * len(item_ids))
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM learning_items WHERE user_id = ? AND id IN ({placeholders})",
                (user_id, *item_ids),
            ).fetchall()
        return {str(row["id"]): dict(row) for row in rows}

    def known_lemmas(self, user_id: str, limit: int = 200) -> list[str]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT lemma, MAX(created_at) AS last_seen
                FROM plan_items
                WHERE user_id = ? AND recall_status = 'success'
                GROUP BY lemma
                ORDER BY last_seen DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ).fetchall()
        return [str(row["lemma"]) for row in rows]

    def recent_lemmas(self, user_id: str, limit: int = 25) -> list[str]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT lemma
                FROM plan_items
                WHERE user_id = ?
                ORDER BY created_at DESC, order_num ASC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ).fetchall()
        return _dedupe([str(row["lemma"]) for row in rows])

    # -- day plans ------------------------------------------------------

    def insert_day_plan(self, user_id: str, plan: DayPlan, *, conn: sqlite3.Connection | None = None) -> None:
        """Insert a plan with its items in one transaction.

        Raises ``sqlite3.IntegrityError`` when (user, plan_date) already has a plan.
        """
        with self._session(conn) as session:
            session.execute(
                """
                INSERT INTO day_plans (id, user_id, plan_date, daily_target, status, completed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (plan.plan_id, user_id, plan.plan_date, plan.daily_target, plan.status, plan.completed_at),
            )
            session.executemany(
                """
                INSERT INTO plan_items
                (id, plan_id, user_id, learning_item_id, item_type, lemma, meaning, part_of_speech,
                 example_en, example_translation, recall_status, sentence_status, speech_status,
                 is_completed, order_num)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        item.plan_item_id,
                        plan.plan_id,
                        user_id,
                        item.item_id,
                        item.item_type,
                        item.lemma,
                        item.meaning,
                        item.part_of_speech,
                        item.example_en,
                        item.example_translation,
                        item.recall_status,
                        item.sentence_status,
                        item.speech_status,
                        int(item.is_completed),
                        order_num,
                    )
                    for order_num, item in enumerate(plan.items, start=1)
                ],
            )

    def get_day_plan_by_date(self, user_id: str, plan_date: str) -> DayPlan | None:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM day_plans WHERE user_id = ? AND plan_date = ?",
                (user_id, plan_date),
            ).fetchone()
            if row is None:
                return None
            return self._load_plan(conn, row)

    def get_day_plan(self, user_id: str, plan_id: str, *, conn: sqlite3.Connection | None = None) -> DayPlan | None:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT * FROM day_plans WHERE id = ? AND user_id = ?",
                (plan_id, user_id),
            ).fetchone()
            if row is None:
                return None
            return self._load_plan(session, row)

    def list_day_plans(self, user_id: str, limit: int = 60) -> list[DayPlan]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM day_plans
                WHERE user_id = ?
                ORDER BY plan_date DESC
                LIMIT ?
                """,
                (user_id, max(1, int(limit))),
            ).fetchall()
            return [self._load_plan(conn, row) for row in rows]

    def get_plan_item(self, plan_id: str, plan_item_id: str) -> PlanItem | None:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM plan_items WHERE id = ? AND plan_id = ?",
                (plan_item_id, plan_id),
            ).fetchone()
        return _decode_plan_item(row) if row else None

    def plan_item_exists(self, user_id: str, plan_item_id: str) -> bool:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM plan_items WHERE id = ? AND user_id = ?",
                (plan_item_id, user_id),
            ).fetchone()
        return row is not None

    def update_plan_item(
        self, item: PlanItem, *, previous: PlanItem, conn: sqlite3.Connection | None = None
    ) -> bool:
        """Write new step statuses only if the row still holds ``previous``'s statuses."""
        with self._session(conn) as session:
            cur = session.execute(
                """
                UPDATE plan_items
                SET recall_status = ?,
                    sentence_status = ?,
                    speech_status = ?,
                    is_completed = ?
                WHERE id = ?
                  AND recall_status = ?
                  AND sentence_status = ?
                  AND speech_status = ?
                """,
                (
                    item.recall_status,
                    item.sentence_status,
                    item.speech_status,
                    int(item.is_completed),
                    item.plan_item_id,
                    previous.recall_status,
                    previous.sentence_status,
                    previous.speech_status,
                ),
            )
        return cur.rowcount == 1

    def mark_plan_completed(self, plan_id: str, completed_at: str, *, conn: sqlite3.Connection) -> bool:
        cur = conn.execute(
            """
            UPDATE day_plans
            SET status = 'completed', completed_at = ?
            WHERE id = ? AND status = 'open'
            """,
            (completed_at, plan_id),
        )
        return cur.rowcount == 1

    def _load_plan(self, conn: sqlite3.Connection, row: sqlite3.Row) -> DayPlan:
        item_rows = conn.execute(
            "SELECT * FROM plan_items WHERE plan_id = ? ORDER BY order_num",
            (row["id"],),
        ).fetchall()
        return DayPlan(
            plan_id=str(row["id"]),
            plan_date=str(row["plan_date"])[:10],
            daily_target=int(row["daily_target"]),
            status=row["status"],
            completed_at=row["completed_at"],
            items=tuple(_decode_plan_item(item) for item in item_rows),
        )

    # -- attempts -------------------------------------------------------

    def save_sentence_attempt(
        self, user_id: str, plan_item_id: str, sentence: str, *, conn: sqlite3.Connection | None = None
    ) -> str:
        sentence_id = uuid.uuid4().hex
        with self._session(conn) as session:
            session.execute(
                """
                INSERT INTO sentence_attempts (id, user_id, plan_item_id, sentence_en, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (sentence_id, user_id, plan_item_id, sentence, _iso_now()),
            )
        return sentence_id

    def latest_sentences(self, plan_item_ids: Sequence[str]) -> dict[str, str]:
        if not plan_item_ids:
            return {}
        placeholders = ",".join(["?"] * len(plan_item_ids))
        with self.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT plan_item_id, sentence_en
                FROM sentence_attempts
                WHERE plan_item_id IN ({placeholders})
                ORDER BY created_at DESC, rowid DESC
                """,
                tuple(plan_item_ids),
            ).fetchall()
        latest: dict[str, str] = {}
        for row in rows:
            latest.setdefault(str(row["plan_item_id"]), str(row["sentence_en"]))
        return latest

    def create_speech_attempt(self, user_id: str, plan_item_id: str, audio_uri: str, duration_ms: int) -> dict:
        speech_id = uuid.uuid4().hex
        with self.connect() as conn:
            row = conn.execute(
                """
                INSERT INTO speech_attempts (id, user_id, plan_item_id, audio_uri, duration_ms, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                RETURNING *
                """,
                (speech_id, user_id, plan_item_id, audio_uri, int(duration_ms), _iso_now()),
            ).fetchone()
        return dict(row)

    def update_speech_score(self, user_id: str, speech_id: str, score: float, scoring_version: str | None) -> dict | None:
        with self.connect() as conn:
            cur = conn.execute(
                """
                UPDATE speech_attempts
                SET pronunciation_score = ?, scoring_version = ?
                WHERE id = ? AND user_id = ?
                """,
                (float(score), scoring_version, speech_id, user_id),
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM speech_attempts WHERE id = ?", (speech_id,)).fetchone()
        return dict(row) if row else None

    def latest_speech_attempts(self, plan_item_ids: Sequence[str]) -> dict[str, dict]:
        if not plan_item_ids:
            return {}
        placeholders = ",".join(["?"] * len(plan_item_ids))
        with self.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT id, plan_item_id, audio_uri, duration_ms, pronunciation_score
                FROM speech_attempts
                WHERE plan_item_id IN ({placeholders})
                ORDER BY created_at DESC, rowid DESC
                """,
                tuple(plan_item_ids),
            ).fetchall()
        latest: dict[str, dict] = {}
        for row in rows:
            latest.setdefault(
                str(row["plan_item_id"]),
                {
                    "speech_id": row["id"],
                    "score": row["pronunciation_score"],
                    "duration_ms": int(row["duration_ms"] or 0),
                    "audio_uri": row["audio_uri"],
                },
            )
        return latest

    # -- review tasks ---------------------------------------------------

    def has_queued_review(
        self, user_id: str, item_id: str, stage: str, *, conn: sqlite3.Connection | None = None
    ) -> bool:
        with self._session(conn) as session:
            row = session.execute(
                """
                SELECT 1 FROM review_tasks
                WHERE user_id = ? AND learning_item_id = ? AND stage = ? AND status = 'queued'
                LIMIT 1
                """,
                (user_id, item_id, stage),
            ).fetchone()
        return row is not None

    def insert_review_task(self, user_id: str, task: ReviewTask, *, conn: sqlite3.Connection | None = None) -> bool:
        # the partial unique index turns a duplicate queued task into an ignored insert
        with self._session(conn) as session:
            cur = session.execute(
                """
                INSERT OR IGNORE INTO review_tasks
                (id, user_id, learning_item_id, due_date, stage, status, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (task.review_id, user_id, task.item_id, task.due_date, task.stage, task.status, task.completed_at),
            )
        return cur.rowcount == 1

    def get_review_task(
        self, user_id: str, review_id: str, *, conn: sqlite3.Connection | None = None
    ) -> ReviewTask | None:
        with self._session(conn) as session:
            row = session.execute(
                "SELECT * FROM review_tasks WHERE id = ? AND user_id = ?",
                (review_id, user_id),
            ).fetchone()
        return _decode_review_task(row) if row else None

    def update_review_task(
        self, user_id: str, task: ReviewTask, *, completed_on: str | None = None, conn: sqlite3.Connection
    ) -> bool:
        cur = conn.execute(
            """
            UPDATE review_tasks
            SET due_date = ?, status = ?, completed_at = ?, completed_on = ?
            WHERE id = ? AND user_id = ? AND status = 'queued'
            """,
            (task.due_date, task.status, task.completed_at, completed_on, task.review_id, user_id),
        )
        return cur.rowcount == 1

    def list_review_tasks(self, user_id: str, *, status: str | None = "queued") -> list[ReviewTask]:
        clauses = ["user_id = ?"]
        params: list[object] = [user_id]
        if status:
            clauses.append("status = ?")
            params.append(status)
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM review_tasks WHERE {' AND '.join(clauses)} ORDER BY created_at ASC, rowid ASC",
                tuple(params),
            ).fetchall()
        return [_decode_review_task(row) for row in rows]

    # -- streak ---------------------------------------------------------

    def get_streak(self, user_id: str, *, conn: sqlite3.Connection | None = None) -> StreakState:
        with self._session(conn) as session:
            row = session.execute("SELECT * FROM streak_states WHERE user_id = ?", (user_id,)).fetchone()
        return state_from_row(dict(row) if row else None)

    def save_streak(
        self, user_id: str, state: StreakState, *, updated_at: str, conn: sqlite3.Connection | None = None
    ) -> None:
        with self._session(conn) as session:
            session.execute(
                """
                INSERT INTO streak_states (user_id, current_streak, longest_streak, last_completed_date, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id)
                DO UPDATE SET
                  current_streak = excluded.current_streak,
                  longest_streak = excluded.longest_streak,
                  last_completed_date = excluded.last_completed_date,
                  updated_at = excluded.updated_at
                """,
                (user_id, state.current_streak, state.longest_streak, state.last_completed_date, updated_at),
            )

    # -- events ---------------------------------------------------------

    def record_event(
        self,
        *,
        user_id: str,
        event_name: str,
        occurred_at: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        payload: dict | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._session(conn) as session:
            session.execute(
                """
                INSERT INTO activity_events (user_id, event_name, entity_type, entity_id, payload, occurred_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (user_id, event_name, entity_type, entity_id, _json_dumps(payload) if payload is not None else None, occurred_at),
            )

    def list_events(self, user_id: str, *, event_name: str | None = None, limit: int = 100) -> list[dict]:
        clauses = ["user_id = ?"]
        params: list[object] = [user_id]
        if event_name:
            clauses.append("event_name = ?")
            params.append(event_name)
        params.append(max(1, int(limit)))
        with self.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM activity_events
                WHERE {' AND '.join(clauses)}
                ORDER BY id ASC
                LIMIT ?
                """,
                tuple(params),
            ).fetchall()
        events: list[dict] = []
        for row in rows:
            obj = dict(row)
            obj["payload"] = _json_loads(obj.get("payload"))
            events.append(obj)
        return events

    # -- idempotency ----------------------------------------------------

    def get_idempotent_response(self, user_id: str, key: str, *, now_iso: str) -> dict | None:
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT response FROM idempotency_keys
                WHERE user_id = ? AND idem_key = ? AND expires_at > ?
                """,
                (user_id, key, now_iso),
            ).fetchone()
        if row is None:
            return None
        return _json_loads(row["response"])

    def save_idempotent_response(
        self, user_id: str, key: str, response: dict, *, expires_at: str, conn: sqlite3.Connection | None = None
    ) -> None:
        with self._session(conn) as session:
            session.execute(
                """
                INSERT INTO idempotency_keys (user_id, idem_key, response, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, idem_key)
                DO UPDATE SET response = excluded.response, expires_at = excluded.expires_at
                """,
                (user_id, key, _json_dumps(response), expires_at),
            )

    def purge_expired_idempotency(self, *, now_iso: str) -> int:
        with self.connect() as conn:
            cur = conn.execute("DELETE FROM idempotency_keys WHERE expires_at <= ?", (now_iso,))
        return int(cur.rowcount or 0)

    # -- history / reset ------------------------------------------------

    def count_reviews_done_on(self, user_id: str, local_date: str) -> int:
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS cnt FROM review_tasks
                WHERE user_id = ? AND status = 'done' AND completed_on = ?
                """,
                (user_id, local_date),
            ).fetchone()
        return int(row["cnt"] if row else 0)

    def count_reviews_pending_through(self, user_id: str, local_date: str) -> int:
        with self.connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS cnt FROM review_tasks
                WHERE user_id = ? AND status = 'queued' AND due_date <= ?
                """,
                (user_id, local_date),
            ).fetchone()
        return int(row["cnt"] if row else 0)

    def reset_user_data(self, user_id: str) -> None:
        with self.connect() as conn:
            conn.execute("DELETE FROM day_plans WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM review_tasks WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM learning_items WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM activity_events WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM idempotency_keys WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM streak_states WHERE user_id = ?", (user_id,))


def new_id() -> str:
    return uuid.uuid4().hex


def _json_dumps(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


def _json_loads(value: str | None) -> dict | None:
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _dedupe(values: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for value in values:
        lowered = value.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        unique.append(value)
    return unique


def _decode_profile(row: sqlite3.Row) -> dict:
    data = dict(row)
    data["daily_target"] = int(data["daily_target"])
    data["reminder_enabled"] = bool(data["reminder_enabled"])
    data["speech_required_for_completion"] = bool(data["speech_required_for_completion"])
    return data


def _decode_plan_item(row: sqlite3.Row) -> PlanItem:
    return PlanItem(
        plan_item_id=str(row["id"]),
        item_id=str(row["learning_item_id"] or ""),
        item_type=row["item_type"],
        lemma=row["lemma"],
        meaning=row["meaning"],
        part_of_speech=row["part_of_speech"] or "",
        example_en=row["example_en"] or "",
        example_translation=row["example_translation"] or "",
        recall_status=row["recall_status"],
        sentence_status=row["sentence_status"],
        speech_status=row["speech_status"],
        is_completed=bool(row["is_completed"]),
    )


def _decode_review_task(row: sqlite3.Row) -> ReviewTask:
    return ReviewTask(
        review_id=str(row["id"]),
        item_id=str(row["learning_item_id"]),
        due_date=str(row["due_date"])[:10],
        stage=row["stage"],
        status=row["status"],
        completed_at=row["completed_at"],
    )


def _iso_now() -> str:
    return datetime.now(UTC).isoformat()
