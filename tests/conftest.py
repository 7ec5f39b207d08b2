"""
Pytest configuration.

The project uses a ``src/`` layout (package code lives in ``src/sci_librarian``).
Tests normally run after ``pip install -e .``; when the package cannot be
imported that way (for example a hidden ``.pth`` file in a dot-prefixed
virtualenv), ``src/`` is added to ``sys.path`` instead.

Shared fixtures for settings, a file-backed record store and the in-memory
collaborators live here too.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def _ensure_src_on_path() -> None:
    try:
        import sci_librarian  # noqa: F401
        return
    except ModuleNotFoundError:
        pass

    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    sys.path.insert(0, str(src_dir))


_ensure_src_on_path()

from sci_librarian.config import Settings  # noqa: E402
from sci_librarian.fakes import InMemoryFileStore  # noqa: E402
from sci_librarian.models import RemoteEntry, Rule, RuleSet  # noqa: E402
from sci_librarian.storage import RecordStore  # noqa: E402


@pytest.fixture
def settings(mocker):
    """Settings built from a minimal, isolated environment."""
    mocker.patch.dict(
        os.environ,
        {
            "DROPBOX_TOKEN": "test_token",
            "LLM_API_KEY": "test_api_key",
            "MAX_RETRIES": "3",
        },
        clear=True,
    )
    return Settings()


@pytest.fixture
def store(tmp_path):
    record_store = RecordStore(f"sqlite:///{(tmp_path / 'state.db').as_posix()}")
    yield record_store
    record_store.close()


@pytest.fixture
def remote():
    return InMemoryFileStore()


@pytest.fixture
def rules():
    return RuleSet(
        [
            Rule(name="ml", description="Machine learning", target="/papers/ml"),
            Rule(name="bio", description="Biology", target="/papers/bio"),
        ]
    )


@pytest.fixture
def make_entry():
    """Factory for inbox entries named after an index."""

    def _make(index: int, content_hash: str | None = None) -> RemoteEntry:
        return RemoteEntry(
            id=f"id:{index}",
            name=f"paper {index}.pdf",
            path=f"/0_inbox/paper {index}.pdf",
            content_hash=content_hash or f"hash-{index}",
        )

    return _make
