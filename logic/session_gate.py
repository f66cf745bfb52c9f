"""
Session Gate for the Fielsdown content platform

Resolves the acting identity from a session token and decides whether
write operations are permitted. Reading session state never mutates it;
only login, logout and the explicit expiry purge do.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from core.crypto_manager import CryptoManager
from core.db_manager import DBManager
from core.error_handler import StorageUnavailable, Unauthenticated
from logic.identity_directory import IdentityDirectory
from models.database import Identity, UserSession, utcnow


logger = logging.getLogger(__name__)


ANONYMOUS_HANDLE = "anonymous"


@dataclass
class SessionStatus:
    """Login status as reported to a front end."""
    is_logged_in: bool
    handle: Optional[str] = None
    avatar_ref: Optional[str] = None
    bio: Optional[str] = None


class SessionGate:
    """
    Issues, verifies and revokes session tokens.

    A token is only accepted when its HMAC verifies, a session row with that
    id exists, the row has not expired, and the identity it is bound to is
    still registered. Any failure degrades to "no session".
    """

    def __init__(
        self,
        db_manager: DBManager,
        crypto_manager: CryptoManager,
        directory: IdentityDirectory,
        session_ttl: timedelta = timedelta(days=30),
        allow_anonymous: bool = False,
        anonymous_handle: str = ANONYMOUS_HANDLE
    ):
        """
        Initialize SessionGate.

        Args:
            db_manager: DBManager instance for session records
            crypto_manager: CryptoManager instance for token signing
            directory: IdentityDirectory used to authenticate and resolve identities
            session_ttl: Lifetime of a new session
            allow_anonymous: Whether writes without a session are accepted
            anonymous_handle: Sentinel author recorded for anonymous writes
        """
        self.db = db_manager
        self.crypto = crypto_manager
        self.directory = directory
        self.session_ttl = session_ttl
        self.allow_anonymous = allow_anonymous
        self.anonymous_handle = anonymous_handle

    def login(self, handle: str, credential: str) -> str:
        """
        Authenticate and open a new session.

        Returns:
            str: Signed session token

        Raises:
            InvalidCredential: If authentication fails
        """
        identity = self.directory.authenticate(handle, credential)
        return self.open_session(identity)

    def open_session(self, identity: Identity) -> str:
        """
        Open a session for an already-authenticated identity.

        Returns:
            str: Signed session token
        """
        now = utcnow()
        session_id = self.crypto.new_session_id()
        self.db.save_session(UserSession(
            id=session_id,
            handle_key=identity.handle_key,
            created_at=now,
            expires_at=now + self.session_ttl,
        ))
        logger.info(f"Opened session {session_id[:8]} for '{identity.handle}'")
        return self.crypto.sign_session_id(session_id)

    def logout(self, token: Optional[str]) -> bool:
        """
        Revoke the session named by a token.

        Returns:
            True if a session was closed; False for unknown or invalid tokens
        """
        session_id = self.crypto.verify_token(token)
        if session_id is None:
            return False
        closed = self.db.delete_session(session_id)
        if closed:
            logger.info(f"Closed session {session_id[:8]}")
        return closed

    def current_identity(self, token: Optional[str]) -> Optional[Identity]:
        """
        Resolve the identity behind a token.

        Expired, malformed, forged or unknown tokens all yield None; this
        method never raises for bad session data and never writes.

        Returns:
            Identity or None
        """
        session_id = self.crypto.verify_token(token)
        if session_id is None:
            if token:
                logger.warning("Rejected session token with invalid signature")
            return None

        record = self.db.get_session_record(session_id)
        if record is None:
            logger.debug(f"Session {session_id[:8]} not found")
            return None

        if record.is_expired():
            logger.debug(f"Session {session_id[:8]} expired")
            return None

        identity = self.directory.lookup(record.handle_key)
        if identity is None:
            logger.warning(f"Session {session_id[:8]} bound to unknown identity")
        return identity

    def require_authenticated(self, token: Optional[str]) -> Identity:
        """
        Resolve the identity behind a token, insisting that one exists.

        Raises:
            Unauthenticated: If there is no valid session
        """
        identity = self.current_identity(token)
        if identity is None:
            raise Unauthenticated("A valid session is required")
        return identity

    def resolve_author(self, token: Optional[str]) -> str:
        """
        Decide which handle a write is attributed to.

        Returns:
            The session's handle, or the anonymous sentinel when there is no
            session and anonymous authorship is allowed

        Raises:
            Unauthenticated: If there is no session and anonymous writes are disabled
        """
        identity = self.current_identity(token)
        if identity is not None:
            return identity.handle
        if self.allow_anonymous:
            return self.anonymous_handle
        raise Unauthenticated("Anonymous writes are disabled; log in first")

    def status(self, token: Optional[str]) -> SessionStatus:
        """Report the login status for a token."""
        identity = self.current_identity(token)
        if identity is None:
            return SessionStatus(is_logged_in=False)
        return SessionStatus(
            is_logged_in=True,
            handle=identity.handle,
            avatar_ref=identity.avatar_ref,
            bio=identity.bio,
        )

    def purge_expired(self) -> int:
        """
        Delete expired sessions.

        Returns:
            Number of sessions removed
        """
        try:
            removed = self.db.delete_expired_sessions()
        except StorageUnavailable:
            logger.error("Failed to purge expired sessions")
            raise
        if removed:
            logger.info(f"Purged {removed} expired sessions")
        return removed
