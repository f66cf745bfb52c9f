"""
Legacy snapshot import for the Fielsdown content platform.

The first version of the site kept everything in browser storage under
separately versioned keys. This module reads a JSON export of those keys and
writes the records into the canonical schema. The import is explicit and
one-way: records that break the current rules are skipped and logged,
never patched up silently.

Snapshot layout::

    {
      "fielsdown_users_v1":    {"<lowercase handle>": {"username", "passwordHash",
                                                        "createdAt", "avatar", "bio"}},
      "fielsdown_boards_v1":   [{"name", "description", "creator", "createdAt"}],
      "fielsdown_posts_v2":    [{"id", "board", "author", "content",
                                 "mediaUrl", "mediaType", "createdAt"}],
      "fielsdown_comments_v3": [{"id", "board", "author", "content", "parentId",
                                 "mediaUrl", "mediaType", "createdAt"}]
    }

Legacy comments attach to boards by name. Legacy passwords are base64 of
the plain text and are re-hashed on import.
"""

import base64
import binascii
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from core.db_manager import DBManager
from core.error_handler import UnsupportedMedia
from core.media_validator import MediaAttachment, MediaValidator
from logic.identity_directory import IdentityDirectory
from models.database import (
    Board,
    Comment,
    Identity,
    Post,
    UNIT_BOARD,
    utcnow,
)


logger = logging.getLogger(__name__)


USERS_KEY = "fielsdown_users_v1"
BOARDS_KEY = "fielsdown_boards_v1"
POSTS_KEY = "fielsdown_posts_v2"
COMMENTS_KEY = "fielsdown_comments_v3"

# Namespace for ids derived from legacy records, so a repeated import maps
# every record to the id it received the first time
LEGACY_NAMESPACE = uuid.UUID("6f1c7d1e-4b5a-4f0e-9c3a-2d8e5b7a9f10")


class LegacyImportError(ValueError):
    """Raised when a snapshot cannot be read at all."""
    pass


@dataclass
class ImportReport:
    """Counts of imported and skipped records per collection."""
    imported: Dict[str, int] = field(default_factory=lambda: {
        "identities": 0, "boards": 0, "posts": 0, "comments": 0
    })
    skipped: Dict[str, int] = field(default_factory=lambda: {
        "identities": 0, "boards": 0, "posts": 0, "comments": 0
    })

    def summary(self) -> str:
        return ", ".join(
            f"{name}: {self.imported[name]} imported, {self.skipped[name]} skipped"
            for name in self.imported
        )


def parse_legacy_timestamp(value) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp as written by ``Date.toISOString()``.

    Returns:
        Naive UTC datetime, or None if the value is not a timestamp
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def decode_legacy_password(password_hash) -> Optional[str]:
    """Recover the plain text from a legacy base64 password field."""
    if not isinstance(password_hash, str) or not password_hash:
        return None
    try:
        return base64.b64decode(password_hash, validate=True).decode("latin-1")
    except (binascii.Error, ValueError):
        return None


def legacy_id(kind: str, *parts) -> str:
    """Derive a stable UUID for a legacy record."""
    return str(uuid.uuid5(LEGACY_NAMESPACE, "|".join([kind] + [str(p) for p in parts])))


class LegacyImporter:
    """
    Writes a legacy snapshot into the canonical schema.

    Import order is identities, boards, posts, comments, so every reference
    is checked against records that were already accepted. Replies are
    imported after their parents; replies whose parent never arrives are
    skipped.
    """

    def __init__(
        self,
        db_manager: DBManager,
        directory: IdentityDirectory,
        media_validator: MediaValidator
    ):
        """
        Initialize LegacyImporter.

        Args:
            db_manager: DBManager instance for persistence
            directory: IdentityDirectory whose handle rules, avatar default
                and credential hashing apply to imported users
            media_validator: MediaValidator for legacy attachments
        """
        self.db = db_manager
        self.directory = directory
        self.media = media_validator

    @staticmethod
    def load_snapshot(path: Path) -> dict:
        """
        Read a snapshot file.

        Raises:
            LegacyImportError: If the file is missing or not a JSON object
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                snapshot = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise LegacyImportError(f"Cannot read snapshot {path}: {e}")

        if not isinstance(snapshot, dict):
            raise LegacyImportError("Snapshot must be a JSON object")
        return snapshot

    def import_snapshot(self, snapshot: dict) -> ImportReport:
        """
        Import every collection of a snapshot.

        Args:
            snapshot: Mapping of legacy storage keys to their decoded values

        Returns:
            ImportReport with per-collection counts
        """
        report = ImportReport()

        self._import_identities(snapshot.get(USERS_KEY) or {}, report)
        boards_by_name = self._import_boards(snapshot.get(BOARDS_KEY) or [], report)
        self._import_posts(snapshot.get(POSTS_KEY) or [], boards_by_name, report)
        self._import_comments(snapshot.get(COMMENTS_KEY) or [], boards_by_name, report)

        logger.info(f"Legacy import finished: {report.summary()}")
        return report

    def _import_identities(self, users, report: ImportReport) -> None:
        if not isinstance(users, dict):
            logger.warning(f"{USERS_KEY} is not an object; skipped")
            return

        for key, record in users.items():
            if not isinstance(record, dict):
                report.skipped["identities"] += 1
                continue

            handle = record.get("username") or key
            if not self.directory.is_valid_handle(handle):
                logger.warning(f"Skipping legacy user with invalid handle {handle!r}")
                report.skipped["identities"] += 1
                continue
            if handle.lower() in self.directory.reserved_handles:
                logger.warning(f"Skipping legacy user with reserved handle {handle!r}")
                report.skipped["identities"] += 1
                continue

            password = decode_legacy_password(record.get("passwordHash"))
            if not password:
                logger.warning(f"Skipping legacy user '{handle}': unreadable password")
                report.skipped["identities"] += 1
                continue

            identity = Identity(
                handle_key=handle.lower(),
                handle=handle,
                credential_hash=self.directory.crypto.hash_credential(password),
                avatar_ref=record.get("avatar") or self.directory.default_avatar,
                bio=record.get("bio") or "",
                created_at=parse_legacy_timestamp(record.get("createdAt")) or utcnow(),
            )
            if self._append("identities", identity, f"user '{handle}'"):
                report.imported["identities"] += 1
            else:
                report.skipped["identities"] += 1

    def _import_boards(self, boards, report: ImportReport) -> Dict[str, Board]:
        boards_by_name = {board.name: board for board in self.db.get_all_boards()}

        for record in self._records(boards, BOARDS_KEY):
            name = record.get("name")
            if not isinstance(name, str) or not name or name != name.strip():
                logger.warning(f"Skipping legacy board with invalid name {name!r}")
                report.skipped["boards"] += 1
                continue
            if name in boards_by_name:
                logger.info(f"Legacy board '{name}' already present")
                report.skipped["boards"] += 1
                continue

            board = Board(
                id=legacy_id("board", name),
                name=name,
                description=record.get("description") or "",
                creator_handle=record.get("creator") or "",
                created_at=parse_legacy_timestamp(record.get("createdAt")) or utcnow(),
            )
            if self._append("boards", board, f"board '{name}'"):
                boards_by_name[name] = board
                report.imported["boards"] += 1
            else:
                report.skipped["boards"] += 1

        return boards_by_name

    def _import_posts(self, posts, boards_by_name: Dict[str, Board],
                      report: ImportReport) -> None:
        for record in self._records(posts, POSTS_KEY):
            board = boards_by_name.get(record.get("board"))
            if board is None:
                logger.warning(f"Skipping legacy post on unknown board {record.get('board')!r}")
                report.skipped["posts"] += 1
                continue

            media = self._media(record)
            content = (record.get("content") or "").strip()
            if not content and media is None:
                report.skipped["posts"] += 1
                continue

            post = Post(
                id=legacy_id("post", record.get("id") or "", board.name,
                             record.get("author"), record.get("createdAt")),
                board_id=board.id,
                author_handle=record.get("author") or "",
                content=content,
                created_at=parse_legacy_timestamp(record.get("createdAt")) or utcnow(),
            )
            post.attach_media(media)
            if self._append("posts", post, f"post in '{board.name}'"):
                report.imported["posts"] += 1
            else:
                report.skipped["posts"] += 1

    def _import_comments(self, comments, boards_by_name: Dict[str, Board],
                         report: ImportReport) -> None:
        all_records = self._records(comments, COMMENTS_KEY)
        records = [r for r in all_records if r.get("id")]
        report.skipped["comments"] += len(all_records) - len(records)

        # legacy id -> (board name, new id) of accepted comments
        accepted: Dict[str, tuple] = {}
        pending = sorted(records, key=lambda r: str(r.get("createdAt") or ""))

        # Parents precede replies in time, but repeat until nothing moves to be safe
        progress = True
        while pending and progress:
            progress = False
            waiting: List[dict] = []
            for record in pending:
                parent_key = record.get("parentId")
                if parent_key and parent_key not in accepted:
                    waiting.append(record)
                    continue
                if self._import_comment(record, boards_by_name, accepted, report):
                    progress = True
            pending = waiting

        for record in pending:
            logger.warning(
                f"Skipping legacy comment {record.get('id')}: parent "
                f"{record.get('parentId')} was not imported"
            )
            report.skipped["comments"] += 1

    def _import_comment(self, record: dict, boards_by_name: Dict[str, Board],
                        accepted: Dict[str, tuple], report: ImportReport) -> bool:
        board = boards_by_name.get(record.get("board"))
        if board is None:
            logger.warning(f"Skipping legacy comment on unknown board {record.get('board')!r}")
            report.skipped["comments"] += 1
            return False

        parent_id = None
        parent_key = record.get("parentId")
        if parent_key:
            parent_board, parent_id = accepted[parent_key]
            if parent_board != board.name:
                logger.warning(
                    f"Skipping legacy comment {record['id']}: parent is on board '{parent_board}'"
                )
                report.skipped["comments"] += 1
                return False

        media = self._media(record)
        content = (record.get("content") or "").strip()
        if not content and media is None:
            report.skipped["comments"] += 1
            return False

        comment = Comment(
            id=legacy_id("comment", board.name, record["id"]),
            unit_kind=UNIT_BOARD,
            unit_id=board.id,
            author_handle=record.get("author") or "",
            content=content,
            parent_id=parent_id,
            created_at=parse_legacy_timestamp(record.get("createdAt")) or utcnow(),
        )
        comment.attach_media(media)

        if self._append("comments", comment, f"comment {record['id']}"):
            report.imported["comments"] += 1
        else:
            report.skipped["comments"] += 1
        # A comment already present from an earlier import still anchors its replies
        accepted[record["id"]] = (board.name, comment.id)
        return True

    def _media(self, record: dict) -> Optional[MediaAttachment]:
        url = record.get("mediaUrl")
        if not url:
            return None
        try:
            return self.media.validate(url, record.get("mediaType"))
        except UnsupportedMedia as e:
            logger.warning(f"Dropping legacy attachment: {e}")
            return None

    @staticmethod
    def _records(value, key: str) -> List[dict]:
        if not isinstance(value, list):
            logger.warning(f"{key} is not a list; skipped")
            return []
        return [r for r in value if isinstance(r, dict)]

    def _append(self, collection: str, record, label: str) -> bool:
        try:
            self.db.append(collection, record)
        except IntegrityError:
            logger.info(f"Legacy {label} already imported")
            return False
        return True
