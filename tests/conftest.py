import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import db  # noqa: E402


@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "test.db")
    db.init_db()
    return db


@pytest.fixture
def clock():
    """Fixed clock reading 2024-06-15 10:30."""
    return lambda: datetime(2024, 6, 15, 10, 30)
