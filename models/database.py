"""
SQLAlchemy database models for the Fielsdown content platform.

This module defines the canonical schema: Identity, UserSession, Board,
Post, Comment and SchemaMeta. Media attachments are embedded as columns on
posts and comments rather than stored in their own table.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, Text, Index
from sqlalchemy.orm import declarative_base

from core.media_validator import MediaAttachment

Base = declarative_base()

# Schema version written to schema_meta by DBManager.initialize_database
SCHEMA_VERSION = 1

UNIT_BOARD = "board"
UNIT_POST = "post"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back on read."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SchemaMeta(Base):
    """Single-row table recording the schema version of the database file."""
    __tablename__ = 'schema_meta'

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False)
    migrated_at = Column(DateTime, nullable=False, default=utcnow)


class Identity(Base):
    """
    A registered handle.

    ``handle`` keeps the casing chosen at registration; ``handle_key`` is the
    lower-cased form and carries the uniqueness constraint, which makes the
    registry case-insensitive.
    """
    __tablename__ = 'identities'

    handle_key = Column(String(20), primary_key=True)
    handle = Column(String(20), nullable=False)
    credential_hash = Column(String, nullable=False)
    avatar_ref = Column(String, nullable=False)
    bio = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Identity(handle={self.handle})>"


class UserSession(Base):
    """
    Server-side session record.

    The client only holds a signed token naming this row; the handle bound
    to the session is never taken from the client.
    """
    __tablename__ = 'sessions'

    id = Column(String, primary_key=True)  # random token id
    handle_key = Column(String(20), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)

    def is_expired(self, now: datetime = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def __repr__(self):
        return f"<UserSession(id={self.id[:8]}, handle_key={self.handle_key})>"


class Board(Base):
    """
    Represents a topic board.

    A board is a named container for posts. Names are unique with an exact,
    case-sensitive comparison. Boards are immutable once created.
    """
    __tablename__ = 'boards'

    id = Column(String, primary_key=True)  # UUID
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")
    creator_handle = Column(String(20), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Board(id={self.id}, name={self.name})>"


class _MediaColumns:
    """Embedded media attachment columns shared by posts and comments."""

    media_kind = Column(String(8), nullable=True)  # 'image' | 'video'
    media_mime_type = Column(String, nullable=True)
    media_ref = Column(Text, nullable=True)  # URI or data: URL

    @property
    def media(self):
        if self.media_kind is None:
            return None
        return MediaAttachment(
            mime_kind=self.media_kind,
            mime_type=self.media_mime_type,
            payload_ref=self.media_ref,
        )

    def attach_media(self, media) -> None:
        if media is None:
            return
        self.media_kind = media.mime_kind
        self.media_mime_type = media.mime_type
        self.media_ref = media.payload_ref


class Post(_MediaColumns, Base):
    """
    Represents a post inside a board.

    Posts belong to exactly one board and are immutable once created.
    """
    __tablename__ = 'posts'

    id = Column(String, primary_key=True)  # UUID
    board_id = Column(String, nullable=False, index=True)
    author_handle = Column(String(20), nullable=False)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Post(id={self.id}, author={self.author_handle})>"


class Comment(_MediaColumns, Base):
    """
    Represents a comment attached to a content unit (a board or a post).

    ``parent_id`` is None for top-level comments. When set, it must name a
    comment attached to the same unit; ContentStore checks this before the
    row is written. References are weak, so there is no foreign key.
    """
    __tablename__ = 'comments'
    __table_args__ = (
        Index('ix_comments_unit', 'unit_kind', 'unit_id'),
    )

    id = Column(String, primary_key=True)  # UUID
    unit_kind = Column(String(8), nullable=False)
    unit_id = Column(String, nullable=False)
    author_handle = Column(String(20), nullable=False)
    content = Column(Text, nullable=False, default="")
    parent_id = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Comment(id={self.id}, parent={self.parent_id})>"
