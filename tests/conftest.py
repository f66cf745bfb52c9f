"""Shared fixtures for the Fielsdown test suite."""

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from core.crypto_manager import CryptoManager
from core.db_manager import DBManager
from core.media_validator import MediaValidator
from logic.content_store import ContentStore
from logic.forum_api import ForumAPI
from logic.identity_directory import IdentityDirectory
from logic.mention_resolver import MentionResolver
from logic.session_gate import SessionGate
from logic.thread_engine import ThreadEngine


TEST_SECRET = b"fielsdown-test-secret-0123456789"


@pytest.fixture
def db_manager(tmp_path):
    """Create a temporary database for testing."""
    db_path = tmp_path / "test.db"
    manager = DBManager(db_path)
    manager.initialize_database()
    return manager


@pytest.fixture
def crypto_manager():
    """CryptoManager with a fixed secret."""
    return CryptoManager(TEST_SECRET)


@pytest.fixture
def directory(db_manager, crypto_manager):
    return IdentityDirectory(db_manager, crypto_manager)


@pytest.fixture
def gate(db_manager, crypto_manager, directory):
    return SessionGate(db_manager, crypto_manager, directory)


@pytest.fixture
def store(db_manager):
    return ContentStore(db_manager)


@pytest.fixture
def forum(directory, gate, store):
    """ForumAPI over the shared fixtures, anonymous writes disabled."""
    return ForumAPI(
        directory=directory,
        gate=gate,
        store=store,
        engine=ThreadEngine(),
        resolver=MentionResolver(directory),
        media_validator=MediaValidator(),
    )


@pytest.fixture
def anonymous_forum(db_manager, crypto_manager, directory, store):
    """ForumAPI that accepts writes without a session."""
    gate = SessionGate(db_manager, crypto_manager, directory, allow_anonymous=True)
    return ForumAPI(
        directory=directory,
        gate=gate,
        store=store,
        engine=ThreadEngine(),
        resolver=MentionResolver(directory),
        media_validator=MediaValidator(),
    )


@pytest.fixture
def failing_writes(monkeypatch):
    """Make every commit of a session that added a record fail like a lost disk.

    Read-only sessions still commit normally, so pre-write checks pass and the
    failure hits the append itself.
    """
    original_add = Session.add
    original_commit = Session.commit

    def add(self, instance, *args, **kwargs):
        self.info["wrote"] = True
        return original_add(self, instance, *args, **kwargs)

    def commit(self):
        if self.info.get("wrote"):
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
        return original_commit(self)

    monkeypatch.setattr(Session, "add", add)
    monkeypatch.setattr(Session, "commit", commit)
