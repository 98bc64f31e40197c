import os
import shutil
import tempfile
from pathlib import Path

import pytest


# Point the database at a throwaway SQLite file before importing epicrefine,
# since settings and the database_service singleton are built at import time.
_SESSION_DIR = Path(tempfile.mkdtemp(prefix="epicrefine_pytest_"))

os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_SESSION_DIR / 'epicrefine.db'}")

# No real LLM calls during tests
os.environ["OPENAI_API_KEY"] = ""

from epicrefine.core.conversation.repository import SqlAlchemyAnalysisRepository  # noqa: E402
from epicrefine.core.shared.database_service import DatabaseService  # noqa: E402

from fakes import InMemoryAnalysisRepository, ScriptedLLM  # noqa: E402


def pytest_sessionfinish(session, exitstatus):
    """Cleanup temporary test files after the test session."""
    try:
        shutil.rmtree(_SESSION_DIR, ignore_errors=True)
    except Exception:
        pass


@pytest.fixture
async def sql_database(tmp_path):
    """Fresh SQLite database with all tables created."""
    database = DatabaseService(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await database.init_db()
    yield database
    await database.close()


@pytest.fixture
def sql_repository(sql_database):
    return SqlAlchemyAnalysisRepository(sql_database)


@pytest.fixture
def fake_repository():
    return InMemoryAnalysisRepository()


@pytest.fixture(params=["memory", "sqlalchemy"])
def repository(request):
    """Run a test against both repository implementations."""
    if request.param == "memory":
        return request.getfixturevalue("fake_repository")
    return request.getfixturevalue("sql_repository")


@pytest.fixture
def scripted_llm():
    return ScriptedLLM()
