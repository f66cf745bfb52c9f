"""Tests for media attachment validation."""

import base64

import pytest

from core.error_handler import UnsupportedMedia
from core.media_validator import MediaAttachment, MediaValidator, mime_kind_of


@pytest.fixture
def validator():
    return MediaValidator(max_size=1024)


class TestMimeKind:
    """Tests for mime kind derivation."""

    @pytest.mark.parametrize("mime_type,kind", [
        ("image/png", "image"),
        ("IMAGE/JPEG", "image"),
        ("video/mp4", "video"),
        ("video/webm", "video"),
        ("audio/mpeg", None),
        ("application/pdf", None),
        ("text/html", None),
        ("image", None),
        ("", None),
        (None, None),
    ])
    def test_mime_kind_of(self, mime_type, kind):
        assert mime_kind_of(mime_type) == kind


class TestValidate:
    """Tests for MediaValidator.validate."""

    def test_bytes_become_data_url(self, validator):
        media = validator.validate(b"\x89PNG...", "image/png")

        assert media.mime_kind == "image"
        assert media.mime_type == "image/png"
        assert media.payload_ref == "data:image/png;base64," + base64.b64encode(b"\x89PNG...").decode()

    @pytest.mark.parametrize("buffer", [bytearray(b"\x89PNG\r\n"), memoryview(b"\x89PNG\r\n")])
    def test_bytes_like_become_data_url(self, validator, buffer):
        media = validator.validate(buffer, "image/png")

        assert media.payload_ref == "data:image/png;base64," + base64.b64encode(b"\x89PNG\r\n").decode()

    def test_empty_bytearray(self, validator):
        with pytest.raises(UnsupportedMedia):
            validator.validate(bytearray(), "image/png")

    def test_bytes_need_declared_type(self, validator):
        with pytest.raises(UnsupportedMedia):
            validator.validate(b"data")

    def test_bytes_too_large(self, validator):
        with pytest.raises(UnsupportedMedia, match="exceeds"):
            validator.validate(b"x" * 1025, "image/png")

    def test_data_url_type_used(self, validator):
        media = validator.validate("data:video/mp4;base64,AAAA")

        assert media == MediaAttachment("video", "video/mp4", "data:video/mp4;base64,AAAA")

    def test_data_url_kind_mismatch(self, validator):
        with pytest.raises(UnsupportedMedia, match="does not match"):
            validator.validate("data:image/png;base64,AAAA", "video/mp4")

    def test_typeless_data_url_with_declared_type(self, validator):
        media = validator.validate("data:;base64,AAAA", "image/gif")

        assert media.mime_kind == "image"

    def test_uri_type_guessed_from_name(self, validator):
        media = validator.validate("https://example.org/clip.mp4")

        assert media.is_video
        assert media.mime_type == "video/mp4"

    def test_path_type_guessed(self, validator, tmp_path):
        media = validator.validate(tmp_path / "photo.jpg")

        assert media.is_image
        assert media.payload_ref == str(tmp_path / "photo.jpg")

    def test_declared_type_wins_for_uri(self, validator):
        media = validator.validate("https://example.org/stream", "video/webm")

        assert media.mime_type == "video/webm"

    @pytest.mark.parametrize("payload,mime_type", [
        ("https://example.org/doc.pdf", None),
        ("https://example.org/song.mp3", None),
        ("https://example.org/unknown", None),
        ("data:text/html;base64,PGI+", None),
        ("https://example.org/pic.png", "application/octet-stream"),
    ])
    def test_unsupported(self, validator, payload, mime_type):
        with pytest.raises(UnsupportedMedia):
            validator.validate(payload, mime_type)

    @pytest.mark.parametrize("payload", [None, b"", ""])
    def test_empty_payload(self, validator, payload):
        with pytest.raises(UnsupportedMedia):
            validator.validate(payload, "image/png")
