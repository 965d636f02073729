from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tinywords.app import create_app
from tinywords.context import build_context
from tinywords.services.word_supplier import WordSupplier
from tinywords.storage.db import Database

UTC = timezone.utc


@pytest.fixture()
def temp_db(tmp_path):
    db = Database(tmp_path / "tinywords_test.db")
    db.initialize()
    return db


@pytest.fixture()
def offline_supplier(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    return WordSupplier()


@pytest.fixture()
def make_ctx():
    def _make(today: str = "2026-02-15", *, request_id: str | None = None, user_id: str = "user-1"):
        now = datetime.fromisoformat(f"{today}T03:00:00+00:00")
        return build_context(request_id=request_id, user_id=user_id, timezone_name="UTC", now=now)

    return _make


@pytest.fixture()
def client(temp_db, offline_supplier):
    with TestClient(create_app(temp_db, offline_supplier)) as c:
        yield c
