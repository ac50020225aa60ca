"""
Shared pytest fixtures for the PasswordSaver test suite.

Every test gets its own in-memory or temporary-directory store so nothing
touches the real user-data directory.
"""

import pytest

from kvstore import FileKeyValueStore, MemoryKeyValueStore
from session import VaultSession
from storage import CredentialRecord


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest.fixture
def file_store(tmp_path):
    return FileKeyValueStore(str(tmp_path / "store"))


@pytest.fixture
def session(memory_store):
    return VaultSession(memory_store)


@pytest.fixture
def unlocked(session):
    """A session with PIN 1234 already set up."""
    session.setup("1234")
    return session


@pytest.fixture
def gmail():
    return CredentialRecord(
        id="1",
        app_name="Gmail",
        username="bob",
        email_or_phone="b@x.com",
        password="p@ss",
        created_at="2024-01-01T00:00:00Z",
    )


@pytest.fixture
def unicode_record():
    return CredentialRecord(
        id="2",
        app_name="Почта ✉",
        username="",
        email_or_phone="+81 90-0000-0000",
        password="密码\"'\\\n\t🔑",
        created_at="2024-02-29T12:34:56.789Z",
    )
