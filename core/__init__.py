"""
Core module for the Fielsdown content platform.

This module contains the core functionality including:
- Persistence (canonical schema, migrations, append/read boundary)
- Credential hashing and session token signing
- Media attachment validation
- Error taxonomy and central error handling
"""

__version__ = "0.1.0"

from core.error_handler import (
    BBSError,
    Unauthenticated,
    InvalidCredential,
    InvalidHandle,
    HandleTaken,
    DuplicateBoard,
    InvalidParent,
    UnknownContentUnit,
    UnsupportedMedia,
    StorageUnavailable,
)
from core.media_validator import MediaAttachment, MediaValidator

__all__ = [
    'BBSError',
    'Unauthenticated',
    'InvalidCredential',
    'InvalidHandle',
    'HandleTaken',
    'DuplicateBoard',
    'InvalidParent',
    'UnknownContentUnit',
    'UnsupportedMedia',
    'StorageUnavailable',
    'MediaAttachment',
    'MediaValidator',
]
