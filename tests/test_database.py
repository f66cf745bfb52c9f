"""
Unit tests for database operations.

Tests the canonical schema, the append/read collection boundary,
constraint enforcement and transaction rollback behavior.
"""

import pytest
import uuid
from datetime import datetime, timedelta
from sqlalchemy.exc import IntegrityError

from core.db_manager import DBManager, MIGRATIONS
from core.error_handler import StorageUnavailable
from core.media_validator import MediaAttachment
from models.database import (
    Board,
    Comment,
    Identity,
    Post,
    SCHEMA_VERSION,
    SchemaMeta,
    UserSession,
    UNIT_BOARD,
    utcnow,
)


def make_board(name="Test Board", created_at=None):
    return Board(
        id=str(uuid.uuid4()),
        name=name,
        description="A test board",
        creator_handle="alice",
        created_at=created_at or utcnow(),
    )


def make_identity(handle="alice"):
    return Identity(
        handle_key=handle.lower(),
        handle=handle,
        credential_hash="scrypt$00$00",
        avatar_ref="https://example.org/a.png",
        bio="",
        created_at=utcnow(),
    )


class TestSchema:
    """Tests for schema creation and versioning."""

    def test_initialize_records_schema_version(self, db_manager):
        assert db_manager.get_schema_version() == SCHEMA_VERSION

    def test_reinitialize_is_idempotent(self, tmp_path):
        db_path = tmp_path / "test.db"
        first = DBManager(db_path)
        first.initialize_database()
        first.save_board(make_board())

        second = DBManager(db_path)
        second.initialize_database()

        assert second.get_schema_version() == SCHEMA_VERSION
        assert len(second.get_all_boards()) == 1

    def test_newer_schema_refused(self, tmp_path):
        db_path = tmp_path / "test.db"
        manager = DBManager(db_path)
        manager.initialize_database()
        with manager.get_session() as session:
            session.query(SchemaMeta).first().version = SCHEMA_VERSION + 1

        with pytest.raises(StorageUnavailable, match="newer"):
            DBManager(db_path).initialize_database()

    def test_registered_migration_runs(self, tmp_path, monkeypatch):
        db_path = tmp_path / "test.db"
        manager = DBManager(db_path)
        manager.initialize_database()
        with manager.get_session() as session:
            session.query(SchemaMeta).first().version = SCHEMA_VERSION - 1

        calls = []
        monkeypatch.setitem(MIGRATIONS, SCHEMA_VERSION - 1, lambda session: calls.append(session))

        upgraded = DBManager(db_path)
        upgraded.initialize_database()

        assert len(calls) == 1
        assert upgraded.get_schema_version() == SCHEMA_VERSION

    def test_missing_migration_refused(self, tmp_path):
        db_path = tmp_path / "test.db"
        manager = DBManager(db_path)
        manager.initialize_database()
        with manager.get_session() as session:
            session.query(SchemaMeta).first().version = SCHEMA_VERSION - 1

        with pytest.raises(StorageUnavailable, match="No migration"):
            DBManager(db_path).initialize_database()

    def test_uninitialized_manager_raises(self, tmp_path):
        manager = DBManager(tmp_path / "never.db")

        with pytest.raises(StorageUnavailable):
            manager.get_all_boards()


class TestCollectionBoundary:
    """Tests for the generic append/get_collection boundary."""

    def test_append_and_read_back(self, db_manager):
        now = utcnow()
        db_manager.append("boards", make_board("two", now))
        db_manager.append("boards", make_board("one", now - timedelta(hours=1)))

        boards = db_manager.get_collection("boards")

        # Oldest first
        assert [b.name for b in boards] == ["one", "two"]

    def test_empty_collection(self, db_manager):
        for name in ("boards", "posts", "comments", "identities", "sessions"):
            assert db_manager.get_collection(name) == []

    def test_unknown_collection(self, db_manager):
        with pytest.raises(KeyError):
            db_manager.get_collection("threads")

    def test_wrong_record_type(self, db_manager):
        with pytest.raises(TypeError):
            db_manager.append("posts", make_board())

    def test_failed_append_leaves_nothing(self, db_manager):
        board = make_board("unique")
        db_manager.append("boards", board)

        with pytest.raises(IntegrityError):
            db_manager.append("boards", make_board("unique"))

        assert len(db_manager.get_collection("boards")) == 1

    def test_storage_failure_surfaces(self, db_manager, failing_writes):
        with pytest.raises(StorageUnavailable):
            db_manager.append("boards", make_board("lost"))

        assert db_manager.get_collection("boards") == []

    def test_storage_failure_on_identity(self, db_manager, failing_writes):
        with pytest.raises(StorageUnavailable):
            db_manager.save_identity(make_identity())

        assert db_manager.get_identity("alice") is None


class TestBoardOperations:
    """Test operations for the Board model."""

    def test_save_board(self, db_manager):
        board = make_board()
        db_manager.save_board(board)

        retrieved = db_manager.get_board_by_id(board.id)
        assert retrieved is not None
        assert retrieved.name == "Test Board"
        assert retrieved.description == "A test board"

    def test_board_names_unique_case_sensitive(self, db_manager):
        db_manager.save_board(make_board("tech"))
        db_manager.save_board(make_board("Tech"))

        with pytest.raises(IntegrityError):
            db_manager.save_board(make_board("tech"))

        assert db_manager.get_board_by_name("Tech") is not None
        assert db_manager.get_board_by_name("TECH") is None

    def test_boards_newest_first(self, db_manager):
        now = utcnow()
        db_manager.save_board(make_board("old", now - timedelta(hours=2)))
        db_manager.save_board(make_board("new", now))
        db_manager.save_board(make_board("mid", now - timedelta(hours=1)))

        assert [b.name for b in db_manager.get_all_boards()] == ["new", "mid", "old"]

    def test_missing_board(self, db_manager):
        assert db_manager.get_board_by_id("missing") is None
        assert db_manager.get_board_by_name("missing") is None


class TestPostAndCommentOperations:
    """Test operations for the Post and Comment models."""

    def test_posts_for_board_newest_first(self, db_manager):
        board = make_board()
        db_manager.save_board(board)
        now = utcnow()
        for offset, content in ((3, "oldest"), (1, "newest"), (2, "middle")):
            db_manager.save_post(Post(
                id=str(uuid.uuid4()),
                board_id=board.id,
                author_handle="alice",
                content=content,
                created_at=now - timedelta(minutes=offset),
            ))

        posts = db_manager.get_posts_for_board(board.id)
        assert [p.content for p in posts] == ["newest", "middle", "oldest"]
        assert db_manager.get_posts_for_board("other") == []

    def test_post_media_round_trip(self, db_manager):
        post = Post(
            id=str(uuid.uuid4()),
            board_id="b",
            author_handle="alice",
            content="",
            created_at=utcnow(),
        )
        post.attach_media(MediaAttachment("video", "video/mp4", "https://example.org/v.mp4"))
        db_manager.save_post(post)

        stored = db_manager.get_post_by_id(post.id)
        assert stored.media == MediaAttachment("video", "video/mp4", "https://example.org/v.mp4")
        assert stored.media.is_video

    def test_post_without_media(self, db_manager):
        post = Post(id=str(uuid.uuid4()), board_id="b", author_handle="alice",
                    content="text", created_at=utcnow())
        db_manager.save_post(post)

        assert db_manager.get_post_by_id(post.id).media is None

    def test_comments_for_unit(self, db_manager):
        for unit_id in ("b1", "b1", "b2"):
            db_manager.save_comment(Comment(
                id=str(uuid.uuid4()),
                unit_kind=UNIT_BOARD,
                unit_id=unit_id,
                author_handle="alice",
                content="hi",
                created_at=utcnow(),
            ))

        assert len(db_manager.get_comments_for_unit(UNIT_BOARD, "b1")) == 2
        assert len(db_manager.get_comments_for_unit(UNIT_BOARD, "b2")) == 1
        assert db_manager.get_comments_for_unit("post", "b1") == []

    def test_count_by_author_ignores_case(self, db_manager):
        board = make_board()
        db_manager.save_board(board)
        db_manager.save_post(Post(id=str(uuid.uuid4()), board_id=board.id,
                                  author_handle="Alice", content="x", created_at=utcnow()))
        db_manager.save_comment(Comment(id=str(uuid.uuid4()), unit_kind=UNIT_BOARD,
                                        unit_id=board.id, author_handle="ALICE",
                                        content="y", created_at=utcnow()))

        assert db_manager.count_by_author("alice") == {"boards": 1, "posts": 1, "comments": 1}
        assert db_manager.count_by_author("bob") == {"boards": 0, "posts": 0, "comments": 0}


class TestIdentityAndSessionOperations:
    """Test operations for identities and login sessions."""

    def test_identity_key_unique(self, db_manager):
        db_manager.save_identity(make_identity("Alice"))

        with pytest.raises(IntegrityError):
            db_manager.save_identity(make_identity("ALICE"))

        assert db_manager.get_identity("alice").handle == "Alice"

    def test_update_profile_fields_only(self, db_manager):
        db_manager.save_identity(make_identity("alice"))

        updated = db_manager.update_identity_profile("alice", None, "new bio")

        assert updated.bio == "new bio"
        assert updated.avatar_ref == "https://example.org/a.png"
        assert db_manager.update_identity_profile("nobody", "x", "y") is None

    def test_session_lifecycle(self, db_manager):
        now = utcnow()
        db_manager.save_session(UserSession(id="s1", handle_key="alice", created_at=now,
                                            expires_at=now + timedelta(days=1)))

        assert db_manager.get_session_record("s1").handle_key == "alice"
        assert db_manager.delete_session("s1") is True
        assert db_manager.delete_session("s1") is False
        assert db_manager.get_session_record("s1") is None

    def test_delete_expired_sessions(self, db_manager):
        now = utcnow()
        db_manager.save_session(UserSession(id="old", handle_key="a", created_at=now,
                                            expires_at=now - timedelta(seconds=1)))
        db_manager.save_session(UserSession(id="live", handle_key="a", created_at=now,
                                            expires_at=now + timedelta(days=1)))

        assert db_manager.delete_expired_sessions() == 1
        assert db_manager.get_session_record("old") is None
        assert db_manager.get_session_record("live") is not None

    def test_session_expiry_check(self):
        now = datetime(2024, 1, 1)
        record = UserSession(id="s", handle_key="a", created_at=now,
                             expires_at=now + timedelta(hours=1))

        assert not record.is_expired(now)
        assert record.is_expired(now + timedelta(hours=1))
