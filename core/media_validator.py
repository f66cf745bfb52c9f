"""
Media Validator for the Fielsdown content platform

Validates images and videos attached to posts and comments:
- Deriving the mime kind (image or video) from the content type
- Rejecting every other kind before anything is persisted
- Normalizing raw bytes into an embedded data: URL reference

No transcoding, resizing, or content scanning is performed.
"""

import base64
import logging
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from core.error_handler import UnsupportedMedia


logger = logging.getLogger(__name__)


# Constants
MAX_MEDIA_SIZE = 50 * 1024 * 1024  # 50 MB
SUPPORTED_KINDS = ("image", "video")

_DATA_URL_RE = re.compile(r"^data:([\w.+-]+/[\w.+-]+)?(;[^,]*)?,", re.IGNORECASE)


@dataclass(frozen=True)
class MediaAttachment:
    """An image or video attached to a post or comment."""
    mime_kind: str  # 'image' | 'video'
    mime_type: str
    payload_ref: str  # URI, path, or data: URL

    @property
    def is_image(self) -> bool:
        return self.mime_kind == "image"

    @property
    def is_video(self) -> bool:
        return self.mime_kind == "video"


def mime_kind_of(mime_type: Optional[str]) -> Optional[str]:
    """Return 'image' or 'video' for a mime type, None for anything else."""
    if not mime_type or "/" not in mime_type:
        return None
    kind = mime_type.split("/", 1)[0].strip().lower()
    return kind if kind in SUPPORTED_KINDS else None


class MediaValidator:
    """
    Validates attachments by their mime kind.

    Accepted payloads:
    - raw bytes (stored as a base64 data: URL)
    - a data: URL, as produced by browsers reading a picked file
    - any other string, treated as a URI or filesystem path
    """

    def __init__(self, max_size: int = MAX_MEDIA_SIZE):
        """
        Initialize MediaValidator.

        Args:
            max_size: Largest accepted byte payload
        """
        self.max_size = max_size

    def validate(
        self,
        payload: Union[bytes, bytearray, memoryview, str, Path],
        declared_mime_type: Optional[str] = None
    ) -> MediaAttachment:
        """
        Validate an attachment and return its MediaAttachment.

        Args:
            payload: Raw bytes (or a bytes-like buffer), data: URL, URI or path
            declared_mime_type: Content type reported by the uploader; when
                None it is derived from the data: URL header or the file name

        Returns:
            MediaAttachment: Validated attachment

        Raises:
            UnsupportedMedia: If the type is neither image/* nor video/*, the
                data: URL header contradicts the declared kind, or the
                payload is too large or empty
        """
        if isinstance(payload, (bytearray, memoryview)):
            payload = bytes(payload)

        if payload is None or (isinstance(payload, (bytes, str)) and len(payload) == 0):
            raise UnsupportedMedia("Empty media payload")

        if isinstance(payload, bytes):
            mime_type = declared_mime_type
            if len(payload) > self.max_size:
                raise UnsupportedMedia(
                    f"Media size {len(payload)} bytes exceeds maximum {self.max_size} bytes"
                )
            kind = self._require_kind(mime_type)
            encoded = base64.b64encode(payload).decode("ascii")
            payload_ref = f"data:{mime_type};base64,{encoded}"

        else:
            payload_ref = str(payload)
            embedded_type = self._data_url_type(payload_ref)

            if embedded_type is not None:
                mime_type = declared_mime_type or embedded_type
                if declared_mime_type and embedded_type and mime_kind_of(embedded_type) != mime_kind_of(declared_mime_type):
                    raise UnsupportedMedia(
                        f"Declared type {declared_mime_type} does not match "
                        f"embedded type {embedded_type}"
                    )
            else:
                mime_type = declared_mime_type or self._detect_mime_type(payload_ref)

            kind = self._require_kind(mime_type)

        logger.debug(f"Validated {kind} attachment ({mime_type})")
        return MediaAttachment(
            mime_kind=kind,
            mime_type=mime_type.strip().lower(),
            payload_ref=payload_ref,
        )

    def _require_kind(self, mime_type: Optional[str]) -> str:
        kind = mime_kind_of(mime_type)
        if kind is None:
            raise UnsupportedMedia(f"Unsupported media type: {mime_type or 'unknown'}")
        return kind

    def _data_url_type(self, ref: str) -> Optional[str]:
        """
        Extract the content type from a data: URL header.

        Returns:
            The embedded mime type, '' for a typeless data: URL, None when
            ref is not a data: URL at all
        """
        match = _DATA_URL_RE.match(ref)
        if not match:
            return None
        return match.group(1) or ""

    def _detect_mime_type(self, ref: str) -> Optional[str]:
        """
        Guess MIME type from a file name or URI.

        Args:
            ref: Path or URI

        Returns:
            MIME type string, or None when it cannot be guessed
        """
        mime_type, _ = mimetypes.guess_type(ref)
        return mime_type
