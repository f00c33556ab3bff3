"""
Shared fixtures for the WaniKani cache tests.
Every test gets its own SQLite file; upstream calls go to FakeClient.
"""
import os

# Set test mode before importing anything
os.environ["TEST_MODE"] = "1"

from typing import Any, Dict, Generator, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from wanikani_cache import db
from wanikani_cache.errors import AuthError


def make_subject(
    subject_id: int,
    level: int = 1,
    obj: str = "vocabulary",
    characters: Optional[str] = None,
    parts_of_speech: Optional[List[str]] = None,
    sentences: Optional[List[Dict[str, str]]] = None,
) -> Dict[str, Any]:
    """A subject resource shaped like GET /subjects/:id."""
    return {
        "id": subject_id,
        "object": obj,
        "data": {
            "level": level,
            "slug": f"slug-{subject_id}",
            "characters": characters if characters is not None else f"字{subject_id}",
            "meanings": [{"meaning": f"meaning {subject_id}", "primary": True}],
            "readings": [{"reading": f"よみ{subject_id}", "primary": True}],
            "component_subject_ids": [1, 2],
            "amalgamation_subject_ids": [],
            "meaning_mnemonic": f"mnemonic {subject_id}",
            "meaning_hint": "",
            "reading_mnemonic": "",
            "reading_hint": "",
            "context_sentences": sentences if sentences is not None else [
                {"en": f"Sentence {subject_id}.", "ja": f"文{subject_id}。"}
            ],
            "parts_of_speech": parts_of_speech if parts_of_speech is not None else ["noun"],
        },
    }


def make_assignment(assignment_id: int, subject_id: int, srs_stage: Optional[int] = 1,
                    available_at: str = "2026-10-18T10:00:00.000000Z",
                    subject_type: str = "kanji") -> Dict[str, Any]:
    return {
        "id": assignment_id,
        "object": "assignment",
        "data": {
            "subject_id": subject_id,
            "subject_type": subject_type,
            "srs_stage": srs_stage,
            "available_at": available_at,
            "unlocked_at": "2026-01-01T00:00:00.000000Z" if srs_stage is not None else None,
            "started_at": "2026-01-02T00:00:00.000000Z" if srs_stage else None,
            "passed_at": "2026-02-01T00:00:00.000000Z" if srs_stage and srs_stage >= 5 else None,
            "burned_at": "2026-09-01T00:00:00.000000Z" if srs_stage == 9 else None,
        },
    }


class FakeClient:
    """Stand-in for WaniKaniClient that records every upstream call."""

    def __init__(self, token: Optional[str] = "test-token") -> None:
        self.token = token
        self.calls: List[Any] = []
        self.user: Dict[str, Any] = {
            "username": "koichi",
            "level": 5,
            "profile_url": "https://www.wanikani.com/users/koichi",
            "subscription": {"max_level_granted": 60},
        }
        self.review_assignments: List[Dict[str, Any]] = []
        self.subjects: List[Dict[str, Any]] = []
        self.assignments: Dict[int, Dict[str, Any]] = {}
        self.subject_failures: Dict[int, Exception] = {}
        self.subject_overrides: Dict[int, Any] = {}

    @property
    def has_credentials(self) -> bool:
        return bool(self.token)

    def require_credentials(self) -> None:
        if not self.token:
            raise AuthError("WANIKANI_API_TOKEN not set in environment")

    def fetch_user(self) -> Dict[str, Any]:
        self.calls.append("user")
        self.require_credentials()
        return self.user

    def fetch_review_assignments(self) -> List[Dict[str, Any]]:
        self.calls.append("reviews")
        self.require_credentials()
        return list(self.review_assignments)

    def fetch_subjects(self, levels: Any, types: Any = None) -> List[Dict[str, Any]]:
        self.calls.append(("subjects", list(levels), list(types or [])))
        self.require_credentials()
        return [
            s for s in self.subjects
            if s["data"]["level"] in levels and (not types or s["object"] in types)
        ]

    def fetch_assignments_for_subjects(self, subject_ids: Any) -> Dict[int, Dict[str, Any]]:
        ids = list(subject_ids)
        self.calls.append(("assignments", ids))
        return {i: self.assignments[i] for i in ids if i in self.assignments}

    def fetch_subject(self, subject_id: int) -> Dict[str, Any]:
        self.calls.append(("subject", subject_id))
        self.require_credentials()
        if subject_id in self.subject_failures:
            raise self.subject_failures[subject_id]
        if subject_id in self.subject_overrides:
            return self.subject_overrides[subject_id]
        return make_subject(subject_id)

    def subject_calls(self) -> List[int]:
        return [c[1] for c in self.calls if isinstance(c, tuple) and c[0] == "subject"]


@pytest.fixture
def temp_db(tmp_path: Any) -> Generator[Any, None, None]:
    """Setup transient SQLite DB for testing."""
    db_path = str(tmp_path / "test_cache.db")
    db.engine = create_engine(f"sqlite:///{db_path}")
    db.SessionLocal = sessionmaker(bind=db.engine, expire_on_commit=False)
    db.Base.metadata.create_all(bind=db.engine)
    yield db
    db.engine.dispose()


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def no_sleep() -> List[float]:
    """Collects pacing delays instead of sleeping."""
    return []
