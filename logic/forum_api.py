"""
Forum API for the Fielsdown content platform

Write and read surface of the core. Writes pass through the SessionGate,
media validation and the ContentStore; comment reads come back in
ThreadEngine order; mention resolution is offered to the presentation layer.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from core.error_handler import UnknownContentUnit
from core.media_validator import MediaAttachment, MediaValidator
from logic.content_store import AuthorStats, ContentStore, ContentUnit
from logic.identity_directory import IdentityDirectory
from logic.mention_resolver import AnnotatedText, MentionResolver
from logic.session_gate import SessionGate, SessionStatus
from logic.thread_engine import ThreadEngine, ThreadEntry
from models.database import Board, Comment, Identity, Post


logger = logging.getLogger(__name__)


MediaPayload = Union[bytes, str, Path]


@dataclass
class Profile:
    """Public view of an identity."""
    handle: str
    avatar_ref: str
    bio: str
    created_at: object
    stats: AuthorStats


class ForumAPI:
    """
    Coordinates the core components behind one interface.

    Board creation always requires a session. Posts and comments require a
    session unless the SessionGate allows anonymous authorship, in which
    case they are recorded under the anonymous sentinel. Reads never require
    a session.
    """

    def __init__(
        self,
        directory: IdentityDirectory,
        gate: SessionGate,
        store: ContentStore,
        engine: ThreadEngine,
        resolver: MentionResolver,
        media_validator: MediaValidator
    ):
        self.directory = directory
        self.gate = gate
        self.store = store
        self.engine = engine
        self.resolver = resolver
        self.media = media_validator

    # ------------------------------------------------------------------
    # Identity and session
    # ------------------------------------------------------------------

    def register(self, handle: str, credential: str) -> Tuple[Identity, str]:
        """
        Register a handle and log it in.

        Returns:
            (Identity, session token)
        """
        identity = self.directory.register(handle, credential)
        return identity, self.gate.open_session(identity)

    def login(self, handle: str, credential: str) -> str:
        return self.gate.login(handle, credential)

    def logout(self, token: Optional[str]) -> bool:
        return self.gate.logout(token)

    def status(self, token: Optional[str]) -> SessionStatus:
        return self.gate.status(token)

    def update_profile(
        self,
        token: Optional[str],
        avatar_ref: Optional[str] = None,
        bio: Optional[str] = None
    ) -> Identity:
        """Edit the caller's own avatar and/or bio."""
        identity = self.gate.require_authenticated(token)
        return self.directory.update_profile(identity.handle, identity.handle, avatar_ref, bio)

    def get_profile(self, handle: str) -> Optional[Profile]:
        identity = self.directory.lookup(handle)
        if identity is None:
            return None
        return Profile(
            handle=identity.handle,
            avatar_ref=identity.avatar_ref,
            bio=identity.bio,
            created_at=identity.created_at,
            stats=self.store.author_stats(identity.handle),
        )

    def list_identities(self) -> List[Identity]:
        return self.directory.list_identities()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_board(self, token: Optional[str], name: str, description: str = "") -> Board:
        """
        Create a board as the session's identity.

        Raises:
            Unauthenticated: Without a valid session
            DuplicateBoard: If the name is taken
        """
        identity = self.gate.require_authenticated(token)
        return self.store.create_board(name, description, identity.handle)

    def create_post(
        self,
        token: Optional[str],
        board_id: str,
        content: str,
        media: Optional[MediaPayload] = None,
        media_type: Optional[str] = None
    ) -> Post:
        """
        Create a post in a board.

        Raises:
            Unauthenticated: Without a session when anonymous writes are disabled
            UnsupportedMedia: If the attachment is not an image or video
            UnknownContentUnit: If the board does not exist
        """
        author = self.gate.resolve_author(token)
        attachment = self._validate_media(media, media_type)
        return self.store.create_post(board_id, author, content, attachment)

    def create_comment(
        self,
        token: Optional[str],
        unit: ContentUnit,
        content: str,
        parent_id: Optional[str] = None,
        media: Optional[MediaPayload] = None,
        media_type: Optional[str] = None
    ) -> Comment:
        """
        Comment on a board or post, optionally replying to another comment.

        Raises:
            Unauthenticated: Without a session when anonymous writes are disabled
            UnsupportedMedia: If the attachment is not an image or video
            UnknownContentUnit: If the unit does not exist
            InvalidParent: If the parent is missing or on another unit
        """
        author = self.gate.resolve_author(token)
        attachment = self._validate_media(media, media_type)
        comment = self.store.create_comment(unit, author, content, parent_id, attachment)
        return comment

    def _validate_media(
        self,
        media: Optional[MediaPayload],
        media_type: Optional[str]
    ) -> Optional[MediaAttachment]:
        if media is None:
            return None
        return self.media.validate(media, media_type)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_boards(self) -> List[Board]:
        return self.store.list_boards()

    def get_board_by_name(self, name: str) -> Optional[Board]:
        return self.store.get_board_by_name(name)

    def list_posts_for_board(self, board_id: str) -> List[Post]:
        return self.store.list_posts(board_id)

    def list_comments_for_unit(self, unit: ContentUnit) -> List[ThreadEntry]:
        """
        Comments of a unit in render order.

        Raises:
            UnknownContentUnit: If the unit does not exist
        """
        if not self.store.unit_exists(unit):
            raise UnknownContentUnit(f"Content unit {unit} not found")
        return self.engine.ordered_for_unit(unit, self.store.list_comments(unit))

    def resolve_mentions(self, text: Union[str, AnnotatedText]) -> AnnotatedText:
        return self.resolver.resolve(text)
