"""
Root conftest.py - Shared fixtures for all test types.

This file is automatically loaded by pytest and provides:
- A scratch repository root per test
- A fully wired GitStore on that root
- FastAPI test client
- Helpers to create gists with content
"""
import subprocess
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from gistvault.config import Settings
from gistvault.main import create_app
from gistvault.schemas.gist import FileEdit
from gistvault.services.forks import InMemoryMetadataStore
from gistvault.services.store import GitStore


# -----------------------------------------------------------------------------
# Store Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test scratch home directory."""
    return Settings(
        home_dir=tmp_path / "gistvault",
        git_timeout=30.0,
        truncate_limit=64,
        log_page_size=10,
        allow_push=True,
    )


@pytest.fixture
def metadata_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def git_store(settings, metadata_store) -> GitStore:
    """A GitStore whose repositories live under the test's tmp_path."""
    return GitStore.from_settings(settings, metadata_store=metadata_store)


@pytest.fixture
def scratch_entries(git_store):
    """Return a callable listing leftover temporary clones."""
    def _entries() -> list[Path]:
        scratch = git_store.resolver.scratch_dir
        if not scratch.exists():
            return []
        return list(scratch.iterdir())
    return _entries


# -----------------------------------------------------------------------------
# Gist Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def owner() -> str:
    return "alice"


@pytest.fixture
def gist_id() -> str:
    return "3f2a9c7be1d04c55"


@pytest_asyncio.fixture
async def empty_gist(git_store, owner, gist_id):
    """An initialized repository with no commits."""
    await git_store.repositories.init(owner, gist_id)
    return owner, gist_id


@pytest_asyncio.fixture
async def gist(git_store, empty_gist):
    """A repository with one commit containing two files."""
    owner, gist_id = empty_gist
    result = await git_store.writer.commit_files(
        owner,
        gist_id,
        [
            FileEdit(filename="hello.txt", content="hello"),
            FileEdit(filename="script.py", content="print('hi')\n"),
        ],
        author_name="alice",
    )
    assert result.ok, result
    return owner, gist_id


# -----------------------------------------------------------------------------
# HTTP Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def app(settings, git_store):
    return create_app(settings=settings, store=git_store)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# -----------------------------------------------------------------------------
# Marker-based fixtures
# -----------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _mark_test(request):
    """Automatically apply markers based on test location."""
    if "unit" in str(request.fspath):
        request.applymarker(pytest.mark.unit)
    elif "integration" in str(request.fspath):
        request.applymarker(pytest.mark.integration)


# -----------------------------------------------------------------------------
# Utility Fixtures
# -----------------------------------------------------------------------------

def run_git(args: list[str], cwd: Path | None = None, input: bytes | None = None) -> bytes:
    """Run git synchronously in tests and return stdout."""
    result = subprocess.run(
        ["git", *args], cwd=cwd, input=input, capture_output=True, check=True
    )
    return result.stdout


@pytest.fixture
def git():
    return run_git
