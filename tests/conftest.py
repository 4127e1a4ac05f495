import json
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DB_PATH = Path("/tmp/mangarec-test.db")
os.environ["MANGAREC_DB_PATH"] = str(TEST_DB_PATH)
os.environ["MANGAREC_SCHEDULER_ENABLED"] = "false"
os.environ["MANGAREC_GEMINI_API_KEY"] = ""
os.environ["MANGAREC_AVOID_GENRE_POLICY"] = "hint"


@pytest.fixture(autouse=True)
def clean_db():
    from mangarec.config import clear_settings_cache
    from mangarec.db import init_db, reset_engine

    for suffix in ("", "-wal", "-shm"):
        path = Path(str(TEST_DB_PATH) + suffix)
        if path.exists():
            path.unlink()

    clear_settings_cache()
    engine = reset_engine()
    SQLModel.metadata.drop_all(engine)
    init_db()
    yield
    clear_settings_cache()


@pytest.fixture
def client():
    from mangarec.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db_session():
    from mangarec.db import get_engine

    with Session(get_engine()) as session:
        yield session


@pytest.fixture
def gemini_key(monkeypatch):
    from mangarec.config import clear_settings_cache

    monkeypatch.setenv("MANGAREC_GEMINI_API_KEY", "test-key")
    clear_settings_cache()
    yield "test-key"
    clear_settings_cache()


@pytest.fixture
def add_manga(db_session):
    from mangarec.models import MangaEntry

    def _add(manga_id, popularity, genres=(), title=None, cover_image=None, description="A story."):
        entry = MangaEntry(
            id=manga_id,
            title=title or f"Title {manga_id}",
            description=description,
            cover_image=cover_image if cover_image is not None else f"covers/{manga_id}.jpg",
            popularity=popularity,
            genres_json=json.dumps(list(genres)),
        )
        db_session.add(entry)
        db_session.commit()
        return entry

    return _add


@pytest.fixture
def catalog(add_manga):
    """Twenty titles, m01 most popular, alternating genre tags."""
    genre_cycle = [["Action", "Fantasy"], ["Romance", "Drama"], ["Horror"], ["Action", "Comedy"]]
    return [add_manga(f"m{index:02d}", 1000 - index, genre_cycle[index % 4]) for index in range(1, 21)]


@pytest.fixture
def add_history(db_session):
    from mangarec.models import ReadingHistory, ReadingListEntry, UserFavorite

    def _add(user_id, read=(), favorites=(), listed=()):
        base = datetime(2025, 1, 1)
        for offset, manga_id in enumerate(read):
            db_session.add(ReadingHistory(user_id=user_id, manga_id=manga_id, read_at=base + timedelta(hours=offset)))
        for manga_id in favorites:
            db_session.add(UserFavorite(user_id=user_id, manga_id=manga_id))
        for manga_id in listed:
            db_session.add(ReadingListEntry(user_id=user_id, manga_id=manga_id, status="reading"))
        db_session.commit()

    return _add


class StubLLMClient:
    """Stands in for GeminiClient; returns canned text or raises."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def recommend(self, profile, candidates, cancel_event=None):
        self.calls.append({"profile": profile, "candidates": list(candidates)})
        if self.error is not None:
            raise self.error
        if callable(self.reply):
            return self.reply(candidates)
        return self.reply


def reply_for(candidates, count=5, match=90):
    return json.dumps(
        [
            {"id": candidate.id, "reason": f"Fits because of {candidate.title}", "match_percentage": match - index}
            for index, candidate in enumerate(list(candidates)[:count])
        ]
    )


@pytest.fixture
def stub_llm():
    return StubLLMClient
