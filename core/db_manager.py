"""
Database manager for the Fielsdown content platform.

This module provides the DBManager class, the persistence boundary of the
core. It owns the canonical schema, runs explicit schema migrations, and
exposes append/read operations over the boards, posts, comments, identities
and sessions collections. Every append is its own transaction.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, event, func
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.error_handler import StorageUnavailable
from models.database import (
    Base,
    SCHEMA_VERSION,
    SchemaMeta,
    Identity,
    UserSession,
    Board,
    Post,
    Comment,
    utcnow,
)


logger = logging.getLogger(__name__)


# Collection name -> (model, default ordering) for the generic boundary
COLLECTIONS = {
    "boards": (Board, Board.created_at.asc()),
    "posts": (Post, Post.created_at.asc()),
    "comments": (Comment, Comment.created_at.asc()),
    "identities": (Identity, Identity.created_at.asc()),
    "sessions": (UserSession, UserSession.created_at.asc()),
}

# Migration functions keyed by the version they upgrade *from*.
# Each receives a live Session and must leave the schema at version + 1.
MIGRATIONS: Dict[int, Callable[[Session], None]] = {}


class DBManager:
    """
    Manages database operations for the Fielsdown core.

    Provides methods for initializing the database, appending and reading
    records, and managing transactions with automatic rollback on errors.
    Driver failures surface as StorageUnavailable; IntegrityError is passed
    through so callers can map constraint violations to typed failures.
    """

    def __init__(self, db_path: Path):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self.engine = None
        self.SessionLocal = None

    def initialize_database(self):
        """
        Initialize the database by creating the schema if it doesn't exist.

        Creates all tables, brings the schema to SCHEMA_VERSION through the
        registered migrations, and sets up the session factory.

        Raises:
            StorageUnavailable: If the database cannot be opened or migrated
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create database directory: {e}")

        db_url = f"sqlite:///{self.db_path}"
        self.engine = create_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False}
        )

        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            # WAL lets readers proceed while another connection appends
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

        # Create session factory with expire_on_commit=False to avoid detached instance errors
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"Cannot create schema: {e}")

        self._migrate()

    def _migrate(self) -> None:
        """Bring the stored schema version up to SCHEMA_VERSION."""
        with self.get_session() as session:
            meta = session.query(SchemaMeta).first()
            if meta is None:
                session.add(SchemaMeta(id=1, version=SCHEMA_VERSION))
                logger.info(f"Initialized schema at version {SCHEMA_VERSION}")
                return

            if meta.version > SCHEMA_VERSION:
                raise StorageUnavailable(
                    f"Database schema version {meta.version} is newer than "
                    f"supported version {SCHEMA_VERSION}"
                )

            while meta.version < SCHEMA_VERSION:
                migration = MIGRATIONS.get(meta.version)
                if migration is None:
                    raise StorageUnavailable(
                        f"No migration registered from schema version {meta.version}"
                    )
                logger.info(f"Migrating schema from version {meta.version}")
                migration(session)
                meta.version += 1
                meta.migrated_at = utcnow()

    def get_schema_version(self) -> int:
        """Return the schema version recorded in the database."""
        with self.get_session() as session:
            meta = session.query(SchemaMeta).first()
            return meta.version if meta else 0

    @contextmanager
    def get_session(self) -> Session:
        """
        Context manager for database sessions with automatic rollback on error.

        Yields:
            Session: SQLAlchemy session object

        Raises:
            IntegrityError: On constraint violations (after rollback)
            StorageUnavailable: On any other driver failure (after rollback)
        """
        if self.SessionLocal is None:
            raise StorageUnavailable("Database not initialized")

        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except IntegrityError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Storage failure: {e}")
            raise StorageUnavailable(f"Storage operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Generic collection boundary
    # ------------------------------------------------------------------

    def append(self, collection: str, record) -> None:
        """
        Append a record to a collection as one atomic transaction.

        Args:
            collection: One of COLLECTIONS
            record: ORM instance of the collection's model

        Raises:
            KeyError: Unknown collection
            TypeError: Record does not belong to the collection
            IntegrityError: Constraint violation (duplicate key or name)
            StorageUnavailable: Persistence failure
        """
        model, _ = COLLECTIONS[collection]
        if not isinstance(record, model):
            raise TypeError(f"{type(record).__name__} cannot be appended to {collection}")

        with self.get_session() as session:
            session.add(record)
            session.flush()
            session.expunge(record)

    def get_collection(self, collection: str) -> list:
        """
        Read every record of a collection, oldest first.

        Args:
            collection: One of COLLECTIONS

        Returns:
            List of detached ORM instances (empty when nothing is stored)
        """
        model, ordering = COLLECTIONS[collection]
        with self.get_session() as session:
            records = session.query(model).order_by(ordering).all()
            session.expunge_all()
            return records

    # ------------------------------------------------------------------
    # Identity operations
    # ------------------------------------------------------------------

    def save_identity(self, identity: Identity) -> None:
        """
        Save a new identity.

        Raises:
            IntegrityError: If the handle key is already registered
        """
        self.append("identities", identity)

    def update_identity_profile(self, handle_key: str, avatar_ref: Optional[str],
                                bio: Optional[str]) -> Optional[Identity]:
        """
        Update the mutable profile fields of an identity.

        Only avatar_ref and bio may change; None leaves a field untouched.

        Returns:
            Updated Identity, or None if no such identity exists
        """
        with self.get_session() as session:
            identity = session.query(Identity).filter(
                Identity.handle_key == handle_key
            ).first()
            if identity is None:
                return None
            if avatar_ref is not None:
                identity.avatar_ref = avatar_ref
            if bio is not None:
                identity.bio = bio
            session.flush()
            session.expunge(identity)
            return identity

    def get_identity(self, handle_key: str) -> Optional[Identity]:
        """
        Retrieve an identity by its lower-cased handle.

        Returns:
            Identity object if found, None otherwise
        """
        with self.get_session() as session:
            identity = session.query(Identity).filter(
                Identity.handle_key == handle_key
            ).first()
            if identity:
                session.expunge(identity)
            return identity

    def get_all_identities(self) -> List[Identity]:
        """Return all identities, newest first."""
        with self.get_session() as session:
            identities = session.query(Identity).order_by(
                Identity.created_at.desc()
            ).all()
            session.expunge_all()
            return identities

    # ------------------------------------------------------------------
    # Session operations
    # ------------------------------------------------------------------

    def save_session(self, user_session: UserSession) -> None:
        """Save a new login session."""
        self.append("sessions", user_session)

    def get_session_record(self, session_id: str) -> Optional[UserSession]:
        """
        Retrieve a session by id without modifying it.

        Returns:
            UserSession object if found, None otherwise
        """
        with self.get_session() as session:
            record = session.query(UserSession).filter(
                UserSession.id == session_id
            ).first()
            if record:
                session.expunge(record)
            return record

    def delete_session(self, session_id: str) -> bool:
        """
        Delete a session (logout).

        Returns:
            True if a session was removed
        """
        with self.get_session() as session:
            deleted = session.query(UserSession).filter(
                UserSession.id == session_id
            ).delete(synchronize_session=False)
            return deleted > 0

    def delete_expired_sessions(self, now=None) -> int:
        """
        Delete every session whose expiry has passed.

        Returns:
            Number of sessions removed
        """
        now = now or utcnow()
        with self.get_session() as session:
            return session.query(UserSession).filter(
                UserSession.expires_at <= now
            ).delete(synchronize_session=False)

    # ------------------------------------------------------------------
    # Board operations
    # ------------------------------------------------------------------

    def save_board(self, board: Board) -> None:
        """
        Save a board to the database.

        Raises:
            IntegrityError: If a board with the same ID or name already exists
            StorageUnavailable: If database operation fails
        """
        self.append("boards", board)

    def get_all_boards(self) -> List[Board]:
        """
        Retrieve all boards from the database.

        Returns:
            List of Board objects, newest first
        """
        with self.get_session() as session:
            boards = session.query(Board).order_by(
                Board.created_at.desc(), Board.id.desc()
            ).all()
            session.expunge_all()
            return boards

    def get_board_by_id(self, board_id: str) -> Optional[Board]:
        """
        Retrieve a board by its ID.

        Returns:
            Board object if found, None otherwise
        """
        with self.get_session() as session:
            board = session.query(Board).filter(Board.id == board_id).first()
            if board:
                session.expunge(board)
            return board

    def get_board_by_name(self, name: str) -> Optional[Board]:
        """
        Retrieve a board by its exact (case-sensitive) name.

        Returns:
            Board object if found, None otherwise
        """
        with self.get_session() as session:
            board = session.query(Board).filter(Board.name == name).first()
            if board:
                session.expunge(board)
            return board

    # ------------------------------------------------------------------
    # Post operations
    # ------------------------------------------------------------------

    def save_post(self, post: Post) -> None:
        """
        Save a post to the database.

        Raises:
            IntegrityError: If post with same ID already exists
            StorageUnavailable: If database operation fails
        """
        self.append("posts", post)

    def get_posts_for_board(self, board_id: str) -> List[Post]:
        """
        Retrieve all posts for a specific board.

        Returns:
            List of Post objects ordered by creation time (newest first)
        """
        with self.get_session() as session:
            posts = session.query(Post).filter(
                Post.board_id == board_id
            ).order_by(Post.created_at.desc(), Post.id.desc()).all()
            session.expunge_all()
            return posts

    def get_post_by_id(self, post_id: str) -> Optional[Post]:
        """
        Retrieve a post by its ID.

        Returns:
            Post object if found, None otherwise
        """
        with self.get_session() as session:
            post = session.query(Post).filter(Post.id == post_id).first()
            if post:
                session.expunge(post)
            return post

    # ------------------------------------------------------------------
    # Comment operations
    # ------------------------------------------------------------------

    def save_comment(self, comment: Comment) -> None:
        """
        Save a comment to the database.

        Raises:
            IntegrityError: If comment with same ID already exists
            StorageUnavailable: If database operation fails
        """
        self.append("comments", comment)

    def get_comments_for_unit(self, unit_kind: str, unit_id: str) -> List[Comment]:
        """
        Retrieve all comments attached to one content unit, in no particular order.

        Args:
            unit_kind: 'board' or 'post'
            unit_id: Board or post identifier

        Returns:
            List of Comment objects
        """
        with self.get_session() as session:
            comments = session.query(Comment).filter(
                Comment.unit_kind == unit_kind,
                Comment.unit_id == unit_id
            ).all()
            session.expunge_all()
            return comments

    def get_comment_by_id(self, comment_id: str) -> Optional[Comment]:
        """
        Retrieve a comment by its ID.

        Returns:
            Comment object if found, None otherwise
        """
        with self.get_session() as session:
            comment = session.query(Comment).filter(Comment.id == comment_id).first()
            if comment:
                session.expunge(comment)
            return comment

    # ------------------------------------------------------------------
    # Author statistics
    # ------------------------------------------------------------------

    def count_by_author(self, handle: str) -> Dict[str, int]:
        """
        Count boards, posts and comments written under a handle.

        Args:
            handle: Author handle (compared case-insensitively)

        Returns:
            Dict with 'boards', 'posts' and 'comments' counts
        """
        key = handle.lower()
        with self.get_session() as session:
            return {
                "boards": session.query(func.count(Board.id)).filter(
                    func.lower(Board.creator_handle) == key
                ).scalar(),
                "posts": session.query(func.count(Post.id)).filter(
                    func.lower(Post.author_handle) == key
                ).scalar(),
                "comments": session.query(func.count(Comment.id)).filter(
                    func.lower(Comment.author_handle) == key
                ).scalar(),
            }
