"""
Cryptography Manager for the Fielsdown content platform

Handles the cryptographic operations behind identities and sessions:
- Credential hashing and verification (salted Scrypt)
- Session token issuing and verification (HMAC-SHA256)
- Server secret management
"""

import logging
import os
import secrets
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidKey, InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.backends import default_backend


logger = logging.getLogger(__name__)


SCRYPT_N = 2**14  # CPU/memory cost parameter
SCRYPT_R = 8      # Block size
SCRYPT_P = 1      # Parallelization parameter
SALT_SIZE = 16
SECRET_SIZE = 32
TOKEN_ID_SIZE = 32


class CryptoError(Exception):
    """Base exception for cryptographic errors"""
    pass


class CryptoManager:
    """
    Manages credential hashing and session token signing.

    Tokens have the form ``<session-id>.<hex hmac>``. The HMAC is keyed with
    the server secret, so a token can be rejected before any store lookup
    and a client cannot mint one for an arbitrary session id.
    """

    def __init__(self, secret: Optional[bytes] = None):
        """
        Initialize CryptoManager.

        Args:
            secret: Server secret for token signing. A random secret is
                generated when None; tokens then only verify in this process.
        """
        self.backend = default_backend()
        if secret is None:
            secret = os.urandom(SECRET_SIZE)
        if len(secret) < 16:
            raise CryptoError("Session secret must be at least 16 bytes")
        self._secret = secret

    @staticmethod
    def load_or_create_secret(path: Path) -> bytes:
        """
        Load the server secret from path, creating it on first use.

        Args:
            path: Location of the secret file

        Returns:
            bytes: Secret key material

        Raises:
            CryptoError: If the file cannot be read or written
        """
        try:
            if path.exists():
                secret = bytes.fromhex(path.read_text(encoding='ascii').strip())
                if len(secret) >= 16:
                    return secret
                raise CryptoError(f"Secret file {path} is too short")

            path.parent.mkdir(parents=True, exist_ok=True)
            secret = os.urandom(SECRET_SIZE)
            path.write_text(secret.hex(), encoding='ascii')
            try:
                os.chmod(path, 0o600)
            except OSError:
                logger.warning(f"Could not restrict permissions on {path}")
            logger.info(f"Created session secret at {path}")
            return secret

        except (OSError, ValueError) as e:
            raise CryptoError(f"Failed to load session secret: {e}")

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _scrypt(self, salt: bytes) -> Scrypt:
        return Scrypt(
            salt=salt,
            length=32,
            n=SCRYPT_N,
            r=SCRYPT_R,
            p=SCRYPT_P,
            backend=self.backend
        )

    def hash_credential(self, credential: str) -> str:
        """
        Hash a credential with a random salt.

        Args:
            credential: Plain-text password

        Returns:
            str: ``scrypt$<salt hex>$<key hex>``
        """
        salt = os.urandom(SALT_SIZE)
        key = self._scrypt(salt).derive(credential.encode('utf-8'))
        return f"scrypt${salt.hex()}${key.hex()}"

    def verify_credential(self, credential: str, credential_hash: str) -> bool:
        """
        Check a credential against a stored hash.

        Returns:
            bool: True if the credential matches; False for a mismatch or a
                malformed hash
        """
        try:
            scheme, salt_hex, key_hex = credential_hash.split("$")
            if scheme != "scrypt":
                return False
            self._scrypt(bytes.fromhex(salt_hex)).verify(
                credential.encode('utf-8'), bytes.fromhex(key_hex)
            )
            return True
        except (ValueError, InvalidKey):
            return False

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    def new_session_id(self) -> str:
        """Generate a random session identifier."""
        return secrets.token_hex(TOKEN_ID_SIZE)

    def _mac(self, session_id: str) -> hmac.HMAC:
        mac = hmac.HMAC(self._secret, hashes.SHA256(), backend=self.backend)
        mac.update(session_id.encode('utf-8'))
        return mac

    def sign_session_id(self, session_id: str) -> str:
        """
        Bind a session id to the server secret.

        Args:
            session_id: Session identifier

        Returns:
            str: Opaque token handed to the client
        """
        return f"{session_id}.{self._mac(session_id).finalize().hex()}"

    def verify_token(self, token: Optional[str]) -> Optional[str]:
        """
        Verify a session token's signature.

        Args:
            token: Token as presented by the client

        Returns:
            The session id if the signature is valid, None otherwise. Never
            raises for malformed input.
        """
        if not token or not isinstance(token, str) or token.count(".") != 1:
            return None

        session_id, tag_hex = token.split(".")
        if not session_id or not tag_hex:
            return None

        try:
            tag = bytes.fromhex(tag_hex)
        except ValueError:
            return None

        try:
            self._mac(session_id).verify(tag)
        except InvalidSignature:
            return None

        return session_id

