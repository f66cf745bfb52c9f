"""
Identity Directory for the Fielsdown content platform

Registry of handles. It is the single source of truth for handle validity
and case-insensitive uniqueness; other components query it instead of
repeating those checks.
"""

import logging
import re
import secrets
import string
import time
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from core.crypto_manager import CryptoManager
from core.db_manager import DBManager
from core.error_handler import (
    HandleTaken,
    InvalidCredential,
    InvalidHandle,
    Unauthenticated,
)
from models.database import Identity, utcnow


logger = logging.getLogger(__name__)


HANDLE_MIN_LENGTH = 3
HANDLE_MAX_LENGTH = 20
HANDLE_RE = re.compile(r"[A-Za-z0-9_]+")
DEFAULT_AVATAR = "https://static.cdninstagram.com/rsrc.php/v3/yo/r/qhYsMwhQJy-.png"

_ADJECTIVES = ['silent', 'crimson', 'neon', 'void', 'frost', 'ember', 'nova', 'zen', 'lunar', 'quantum']
_NOUNS = ['wolf', 'phoenix', 'ghost', 'pixel', 'cipher', 'echo', 'flare', 'raven', 'orbit', 'vortex']
_CREDENTIAL_ALPHABET = string.ascii_letters + string.digits + "!@#$%&*"


def _base36(number: int) -> str:
    digits = string.digits + string.ascii_lowercase
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


class IdentityDirectory:
    """
    Manages identity registration, authentication and profiles.

    Responsibilities:
    - Validate handles (3-20 characters of [A-Za-z0-9_])
    - Enforce case-insensitive uniqueness at registration
    - Verify credentials
    - Look up identities for author and mention validation
    - Let owners edit their avatar and bio
    """

    def __init__(
        self,
        db_manager: DBManager,
        crypto_manager: CryptoManager,
        default_avatar: str = DEFAULT_AVATAR,
        min_credential_length: int = 6,
        reserved_handles=("anonymous",)
    ):
        """
        Initialize IdentityDirectory.

        Args:
            db_manager: DBManager instance for persistence
            crypto_manager: CryptoManager instance for credential hashing
            default_avatar: Avatar assigned at registration
            min_credential_length: Shortest accepted password
            reserved_handles: Handles nobody may register, such as the
                anonymous author sentinel
        """
        self.db = db_manager
        self.crypto = crypto_manager
        self.default_avatar = default_avatar
        self.min_credential_length = min_credential_length
        self.reserved_handles = {h.lower() for h in reserved_handles}
        self._dummy_hash: Optional[str] = None

    @staticmethod
    def is_valid_handle(handle) -> bool:
        """Check the length and charset rules for a handle."""
        return (
            isinstance(handle, str)
            and HANDLE_MIN_LENGTH <= len(handle) <= HANDLE_MAX_LENGTH
            and HANDLE_RE.fullmatch(handle) is not None
        )

    def is_available(self, handle: str) -> bool:
        """Return True if handle is valid and not yet registered in any casing."""
        return (
            self.is_valid_handle(handle)
            and handle.lower() not in self.reserved_handles
            and self.lookup(handle) is None
        )

    def register(self, handle: str, credential: str) -> Identity:
        """
        Register a new identity.

        Args:
            handle: Requested handle; its casing is preserved for display
            credential: Plain-text password

        Returns:
            Identity: The created identity

        Raises:
            InvalidHandle: If the handle breaks the length or charset rules
            HandleTaken: If the handle exists in any casing
            ValueError: If the credential is too short
        """
        if not self.is_valid_handle(handle):
            raise InvalidHandle(
                f"Handle must be {HANDLE_MIN_LENGTH}-{HANDLE_MAX_LENGTH} "
                f"characters of latin letters, digits and _"
            )

        if not credential or len(credential) < self.min_credential_length:
            raise ValueError(
                f"Password must be at least {self.min_credential_length} characters"
            )

        if handle.lower() in self.reserved_handles or self.lookup(handle) is not None:
            raise HandleTaken(f"Handle '{handle}' is already taken")

        identity = Identity(
            handle_key=handle.lower(),
            handle=handle,
            credential_hash=self.crypto.hash_credential(credential),
            avatar_ref=self.default_avatar,
            bio="",
            created_at=utcnow(),
        )

        try:
            self.db.save_identity(identity)
        except IntegrityError:
            # Lost a race with a concurrent registration of the same handle
            raise HandleTaken(f"Handle '{handle}' is already taken")

        logger.info(f"Registered identity '{handle}'")
        return identity

    def authenticate(self, handle: str, credential: str) -> Identity:
        """
        Verify a handle/credential pair.

        Returns:
            Identity: The authenticated identity

        Raises:
            InvalidCredential: If the handle is unknown or the password is wrong
        """
        identity = self.lookup(handle) if handle else None

        if identity is None:
            # Burn the same KDF time as a real check
            self.crypto.verify_credential(credential or "", self._get_dummy_hash())
            logger.info("Authentication failed for unknown handle")
            raise InvalidCredential("Wrong handle or password")

        if not self.crypto.verify_credential(credential or "", identity.credential_hash):
            logger.info(f"Authentication failed for '{identity.handle}'")
            raise InvalidCredential("Wrong handle or password")

        return identity

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.crypto.hash_credential(secrets.token_hex(8))
        return self._dummy_hash

    def lookup(self, handle: str) -> Optional[Identity]:
        """
        Find an identity by handle, ignoring case.

        Returns:
            Identity if registered, None otherwise (including invalid handles)
        """
        if not self.is_valid_handle(handle):
            return None
        return self.db.get_identity(handle.lower())

    def update_profile(
        self,
        actor: str,
        handle: str,
        avatar_ref: Optional[str] = None,
        bio: Optional[str] = None
    ) -> Identity:
        """
        Edit the avatar and/or bio of an identity.

        Args:
            actor: Handle of the authenticated identity making the change
            handle: Identity to edit
            avatar_ref: New avatar URI (None keeps the current one)
            bio: New bio (None keeps the current one)

        Returns:
            Identity: The updated identity

        Raises:
            Unauthenticated: If actor is not the owner of handle
        """
        if not actor or actor.lower() != (handle or "").lower():
            raise Unauthenticated("Only the owner can edit a profile")

        if avatar_ref is not None:
            avatar_ref = avatar_ref.strip() or self.default_avatar

        identity = self.db.update_identity_profile(handle.lower(), avatar_ref, bio)
        if identity is None:
            raise Unauthenticated(f"Identity '{handle}' does not exist")

        logger.info(f"Updated profile of '{identity.handle}'")
        return identity

    def list_identities(self) -> List[Identity]:
        """Return every registered identity, newest first."""
        return self.db.get_all_identities()

    def generate_handle(self, attempts: int = 30) -> str:
        """
        Suggest a free handle such as ``novawolf1234``.

        Falls back to ``user_<base36 timestamp>`` if no free combination was
        found within the given number of attempts.
        """
        for _ in range(attempts):
            candidate = (
                f"{secrets.choice(_ADJECTIVES)}{secrets.choice(_NOUNS)}"
                f"{1000 + secrets.randbelow(9000)}"
            )
            if self.is_available(candidate):
                return candidate

        return f"user_{_base36(int(time.time() * 1000))[-8:]}"

    @staticmethod
    def generate_credential(length: int = 14) -> str:
        """Generate a random password."""
        return "".join(secrets.choice(_CREDENTIAL_ALPHABET) for _ in range(length))
