"""
Content Store for the Fielsdown content platform

Append-only record of boards, posts and comments. Validates references
and naming rules before each append; never updates or deletes content.
"""

import uuid
import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional

from sqlalchemy.exc import IntegrityError

from core.db_manager import DBManager
from core.error_handler import (
    DuplicateBoard,
    InvalidParent,
    StorageUnavailable,
    UnknownContentUnit,
)
from core.media_validator import MediaAttachment
from models.database import Board, Post, Comment, UNIT_BOARD, UNIT_POST, utcnow


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentUnit:
    """A board or post that comments attach to."""
    kind: str
    id: str

    @classmethod
    def board(cls, board_id: str) -> "ContentUnit":
        return cls(UNIT_BOARD, board_id)

    @classmethod
    def post(cls, post_id: str) -> "ContentUnit":
        return cls(UNIT_POST, post_id)

    @classmethod
    def of(cls, comment: Comment) -> "ContentUnit":
        return cls(comment.unit_kind, comment.unit_id)

    def __str__(self):
        return f"{self.kind}:{str(self.id)[:8]}"


@dataclass(frozen=True)
class AuthorStats:
    """Content counters shown on a profile."""
    board_count: int
    post_count: int
    comment_count: int


class ContentStore:
    """
    Manages board, post and comment records.

    Responsibilities:
    - Create boards with unique (case-sensitive) names
    - Create posts inside existing boards
    - Create comments whose parent lives on the same content unit
    - List boards and posts newest first, comments unordered
    """

    def __init__(
        self,
        db_manager: DBManager,
        max_content_length: int = 10000,
        max_board_name_length: int = 50
    ):
        """
        Initialize ContentStore.

        Args:
            db_manager: DBManager instance for database operations
            max_content_length: Longest accepted post/comment text
            max_board_name_length: Longest accepted board name
        """
        self.db = db_manager
        self.max_content_length = max_content_length
        self.max_board_name_length = max_board_name_length

    def create_board(self, name: str, description: str, creator: str) -> Board:
        """
        Create a new board.

        Args:
            name: Board name, unique under exact comparison
            description: Board description (may be empty)
            creator: Handle of the creating identity

        Returns:
            Board: Created board object

        Raises:
            ValueError: If the name is empty, too long, or has surrounding
                whitespace
            DuplicateBoard: If a board with the same name exists
            StorageUnavailable: If the append fails
        """
        name = name or ""
        if name != name.strip():
            raise ValueError("Board name must not start or end with whitespace")
        if not name or len(name) > self.max_board_name_length:
            raise ValueError(f"Board name must be 1-{self.max_board_name_length} characters")

        if self.db.get_board_by_name(name) is not None:
            raise DuplicateBoard(f"Board '{name}' already exists")

        board = Board(
            id=str(uuid.uuid4()),
            name=name,
            description=description or "",
            creator_handle=creator,
            created_at=utcnow(),
        )

        try:
            self.db.save_board(board)
        except IntegrityError:
            # A concurrent writer claimed the name between check and append
            raise DuplicateBoard(f"Board '{name}' already exists")
        except StorageUnavailable as e:
            logger.error(f"Failed to create board '{name}': {e}")
            raise

        logger.info(f"Created board '{name}' with ID {board.id[:8]}")
        return board

    def create_post(
        self,
        board_id: str,
        author: str,
        content: str,
        media: Optional[MediaAttachment] = None
    ) -> Post:
        """
        Create a post inside a board.

        Args:
            board_id: Board identifier
            author: Author handle or the anonymous sentinel
            content: Post text
            media: Optional validated attachment

        Returns:
            Post: Created post object

        Raises:
            UnknownContentUnit: If the board does not exist
            ValueError: If both text and media are empty, or text is too long
            StorageUnavailable: If the append fails
        """
        content = self._check_content(content, media)

        if self.db.get_board_by_id(board_id) is None:
            raise UnknownContentUnit(f"Board {str(board_id)[:8]} not found")

        post = Post(
            id=str(uuid.uuid4()),
            board_id=board_id,
            author_handle=author,
            content=content,
            created_at=utcnow(),
        )
        post.attach_media(media)

        try:
            self.db.save_post(post)
        except StorageUnavailable as e:
            logger.error(f"Failed to create post in board {str(board_id)[:8]}: {e}")
            raise

        logger.info(f"Created post {post.id[:8]} in board {str(board_id)[:8]}")
        return post

    def create_comment(
        self,
        unit: ContentUnit,
        author: str,
        content: str,
        parent_id: Optional[str] = None,
        media: Optional[MediaAttachment] = None
    ) -> Comment:
        """
        Create a comment on a content unit.

        Args:
            unit: Board or post the comment attaches to
            author: Author handle or the anonymous sentinel
            content: Comment text
            parent_id: Comment being replied to, None for a top-level comment
            media: Optional validated attachment

        Returns:
            Comment: Created comment object

        Raises:
            UnknownContentUnit: If the unit does not exist
            InvalidParent: If the parent is missing or attached to another unit
            ValueError: If both text and media are empty, or text is too long
            StorageUnavailable: If the append fails
        """
        content = self._check_content(content, media)

        if not self.unit_exists(unit):
            raise UnknownContentUnit(f"Content unit {unit} not found")

        if parent_id is not None:
            parent = self.db.get_comment_by_id(parent_id)
            if parent is None:
                raise InvalidParent(f"Parent comment {str(parent_id)[:8]} does not exist")
            if ContentUnit.of(parent) != unit:
                raise InvalidParent(
                    f"Parent comment {str(parent_id)[:8]} belongs to {ContentUnit.of(parent)}, not {unit}"
                )

        comment = Comment(
            id=str(uuid.uuid4()),
            unit_kind=unit.kind,
            unit_id=unit.id,
            author_handle=author,
            content=content,
            parent_id=parent_id,
            created_at=utcnow(),
        )
        comment.attach_media(media)

        try:
            self.db.save_comment(comment)
        except StorageUnavailable as e:
            logger.error(f"Failed to create comment on {unit}: {e}")
            raise

        logger.info(f"Created comment {comment.id[:8]} on {unit}")
        return comment

    def _check_content(self, content: Optional[str], media: Optional[MediaAttachment]) -> str:
        content = (content or "").strip()
        if not content and media is None:
            raise ValueError("Add text or media")
        if len(content) > self.max_content_length:
            raise ValueError(f"Content must be at most {self.max_content_length} characters")
        return content

    def unit_exists(self, unit: ContentUnit) -> bool:
        """Check that the board or post behind a unit exists."""
        if unit.kind == UNIT_BOARD:
            return self.db.get_board_by_id(unit.id) is not None
        if unit.kind == UNIT_POST:
            return self.db.get_post_by_id(unit.id) is not None
        return False

    def list_boards(self) -> List[Board]:
        """Return all boards, newest first."""
        boards = self.db.get_all_boards()
        logger.debug(f"Retrieved {len(boards)} boards")
        return boards

    def list_posts(self, board_id: str) -> List[Post]:
        """Return the posts of a board, newest first."""
        posts = self.db.get_posts_for_board(board_id)
        logger.debug(f"Retrieved {len(posts)} posts for board {str(board_id)[:8]}")
        return posts

    def list_comments(self, unit: ContentUnit) -> FrozenSet[Comment]:
        """
        Return the comments attached to a unit.

        The result is unordered; ThreadEngine decides the render order.
        """
        return frozenset(self.db.get_comments_for_unit(unit.kind, unit.id))

    def get_board(self, board_id: str) -> Optional[Board]:
        return self.db.get_board_by_id(board_id)

    def get_board_by_name(self, name: str) -> Optional[Board]:
        return self.db.get_board_by_name(name)

    def get_post(self, post_id: str) -> Optional[Post]:
        return self.db.get_post_by_id(post_id)

    def get_comment(self, comment_id: str) -> Optional[Comment]:
        return self.db.get_comment_by_id(comment_id)

    def author_stats(self, handle: str) -> AuthorStats:
        """Count the boards, posts and comments written under a handle."""
        counts = self.db.count_by_author(handle)
        return AuthorStats(
            board_count=counts["boards"],
            post_count=counts["posts"],
            comment_count=counts["comments"],
        )
