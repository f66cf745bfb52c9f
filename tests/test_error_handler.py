"""Tests for the error taxonomy and ErrorHandler."""

import logging

import pytest

from core.error_handler import (
    AuthError,
    BBSError,
    DuplicateBoard,
    ErrorCategory,
    ErrorHandler,
    ErrorSeverity,
    HandleTaken,
    InvalidCredential,
    InvalidHandle,
    InvalidParent,
    StorageUnavailable,
    Unauthenticated,
    UnknownContentUnit,
    UnsupportedMedia,
    ValidationError,
    get_error_handler,
    set_error_handler,
)


@pytest.fixture
def handler():
    return ErrorHandler()


class TestTaxonomy:
    """Every failure carries its category."""

    @pytest.mark.parametrize("error_class,category", [
        (Unauthenticated, ErrorCategory.AUTH),
        (InvalidCredential, ErrorCategory.AUTH),
        (InvalidHandle, ErrorCategory.VALIDATION),
        (HandleTaken, ErrorCategory.VALIDATION),
        (DuplicateBoard, ErrorCategory.VALIDATION),
        (InvalidParent, ErrorCategory.VALIDATION),
        (UnknownContentUnit, ErrorCategory.VALIDATION),
        (UnsupportedMedia, ErrorCategory.MEDIA),
        (StorageUnavailable, ErrorCategory.STORAGE),
    ])
    def test_categories(self, error_class, category):
        error = error_class("boom")

        assert isinstance(error, BBSError)
        assert error.category == category
        assert str(error) == "boom"

    def test_hierarchy(self):
        assert issubclass(Unauthenticated, AuthError)
        assert issubclass(DuplicateBoard, ValidationError)
        assert not issubclass(UnsupportedMedia, ValidationError)


class TestErrorHandler:
    """Tests for categorization, messages and notifications."""

    def test_handle_typed_error(self, handler):
        context = handler.handle_error(DuplicateBoard("Board 'tech' already exists"),
                                       "create board", handle="alice")

        assert context.category == ErrorCategory.VALIDATION
        assert context.severity == ErrorSeverity.INFO
        assert context.user_message == "A board with that name already exists."
        assert context.operation == "create board"
        assert context.handle == "alice"

    @pytest.mark.parametrize("error,severity", [
        (StorageUnavailable("disk gone"), ErrorSeverity.CRITICAL),
        (Unauthenticated("no session"), ErrorSeverity.WARNING),
        (UnsupportedMedia("pdf"), ErrorSeverity.INFO),
        (RuntimeError("???"), ErrorSeverity.ERROR),
    ])
    def test_severity(self, handler, error, severity):
        assert handler.handle_error(error, "op").severity == severity

    def test_foreign_errors_categorized(self, handler):
        assert handler.handle_error(ValueError("bad"), "op").category == ErrorCategory.VALIDATION
        assert handler.handle_error(LookupError("no board"), "op").category == ErrorCategory.VALIDATION
        assert handler.handle_error(OSError("disk full"), "op").category == ErrorCategory.STORAGE
        assert handler.handle_error(RuntimeError("x"), "op").category == ErrorCategory.UNKNOWN

    def test_plain_validation_message_passes_through(self, handler):
        context = handler.handle_error(ValueError("Add text or media"), "post")

        assert context.user_message == "Add text or media"

    def test_auth_messages(self, handler):
        assert handler.handle_error(InvalidCredential("x"), "login").user_message == \
            "Wrong handle or password."
        assert handler.handle_error(Unauthenticated("x"), "post").user_message == \
            "You need to log in to do that."

    def test_notification_callback(self, handler):
        received = []
        handler.set_notification_callback(lambda title, content, severity: received.append(
            (title, content, severity)))

        handler.handle_error(HandleTaken("taken"), "register")
        handler.handle_error(HandleTaken("taken"), "register", show_notification=False)

        assert received == [("Rejected", "That handle is already taken.", ErrorSeverity.INFO)]

    def test_failing_callback_is_logged(self, handler, caplog):
        def broken(title, content, severity):
            raise RuntimeError("display gone")

        handler.set_notification_callback(broken)

        with caplog.at_level(logging.ERROR):
            handler.handle_error(InvalidParent("x"), "comment")

        assert any("Failed to show notification" in r.message for r in caplog.records)

    def test_error_count(self, handler):
        handler.handle_error(ValueError("a"), "op")
        handler.handle_error(ValueError("b"), "op")

        assert handler.get_error_count() == 2
        handler.reset_error_count()
        assert handler.get_error_count() == 0

    def test_global_handler(self):
        original = get_error_handler()
        replacement = ErrorHandler()
        try:
            set_error_handler(replacement)
            assert get_error_handler() is replacement
        finally:
            set_error_handler(original)
