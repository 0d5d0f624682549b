"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths for backend and root-level tool
    modules, required settings for app.config, and the in-memory Mongo
    fixture used by service and worker tests.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[2]
_TESTS_DIR = _THIS_FILE.parent

for candidate in (str(_BACKEND_DIR), str(_REPO_ROOT), str(_TESTS_DIR)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)

os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017/pronofoot_test")
os.environ.setdefault("JWT_SECRET", "test-secret")

from fake_mongo import FakeDB  # noqa: E402


@pytest.fixture
def fake_db(monkeypatch):
    import app.database as _db

    db = FakeDB()
    monkeypatch.setattr(_db, "db", db, raising=False)
    return db
