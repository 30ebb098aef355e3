"""Test configuration and fixtures."""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from advance_weekly.db.base import create_db_engine, init_database
from advance_weekly.db.models import UserModel
from advance_weekly.db.repository import ScopedDataRepository
from advance_weekly.integrations.base import GenerationClient, IntegrationSource

# Friday of 2025-W30, 14:00 in New York
FIXED_NOW = datetime(2025, 7, 25, 18, 0, tzinfo=timezone.utc)

REFLECTION = "## Done\n\n- Shipped the importer\n\n## Next\n\n- Review\n\n## Notes\n\n- None"


class FakeGenerator(GenerationClient):
    """Returns canned text and records every prompt."""

    def __init__(self, response: str = REFLECTION, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.prompts: List[str] = []

    def generate(self, prompt, *, temperature=0.7, max_tokens=1500, context=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response


class FakeSource(IntegrationSource):
    def __init__(
        self,
        integration_type: str = "google_calendar",
        data: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
    ):
        self._type = integration_type
        self.data = data if data is not None else {
            "total_meetings": 2,
            "summary": "This week included 2 meetings.",
        }
        self.error = error
        self.calls: List[tuple] = []

    @property
    def integration_type(self) -> str:
        return self._type

    def fetch_weekly_data(self, credentials, week_start, week_end):
        self.calls.append((credentials["access_token"], week_start, week_end))
        if self.error is not None:
            raise self.error
        return self.data


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'advance_weekly_test.db'}")
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def make_user(session_factory):
    """Create a user row and return its id."""
    counter = {"n": 0}

    def _make(onboarded: bool = True, **fields: Any) -> str:
        counter["n"] += 1
        db = session_factory()
        try:
            user = UserModel(
                email=fields.pop("email", f"user{counter['n']}@example.com"),
                name=fields.pop("name", f"User {counter['n']}"),
                job_title=fields.pop("job_title", "Software Engineer"),
                seniority_level=fields.pop("seniority_level", "Senior"),
                onboarding_completed_at=FIXED_NOW if onboarded else None,
                **fields,
            )
            db.add(user)
            db.commit()
            return user.id
        finally:
            db.close()

    return _make


@pytest.fixture
def repo_for(session_factory):
    """Open repositories bound to a fixed clock; closed at teardown."""
    opened: List[ScopedDataRepository] = []

    def _open(owner_id: str, clock=lambda: FIXED_NOW) -> ScopedDataRepository:
        repo = ScopedDataRepository(owner_id, session_factory(), clock=clock)
        opened.append(repo)
        return repo

    yield _open
    for repo in opened:
        repo.close()


@pytest.fixture
def connect_calendar(repo_for):
    def _connect(owner_id: str, integration_type: str = "google_calendar") -> Dict[str, Any]:
        return repo_for(owner_id).upsert_integration(integration_type, f"token-{owner_id}")

    return _connect


@pytest.fixture
def week30():
    return date(2025, 7, 21), date(2025, 7, 25)
