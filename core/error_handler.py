"""
Error Handler for the Fielsdown content platform

Defines the typed failure taxonomy raised by the core and a centralized
handler that categorizes, logs, and turns failures into user-friendly text.
"""

import logging
import traceback
from enum import Enum
from typing import Optional, Callable
from dataclasses import dataclass


logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Error categories for classification."""
    AUTH = "auth"
    VALIDATION = "validation"
    MEDIA = "media"
    STORAGE = "storage"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Error severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Context information for an error."""
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    user_message: str
    technical_details: str
    handle: Optional[str] = None
    board_id: Optional[str] = None
    unit_id: Optional[str] = None


# Custom Exception Classes

class BBSError(Exception):
    """Base exception for Fielsdown errors."""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN):
        super().__init__(message)
        self.category = category


class AuthError(BBSError):
    """Identity and session errors."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH)


class Unauthenticated(AuthError):
    """No valid session exists where one is required."""
    pass


class InvalidCredential(AuthError):
    """Handle/credential pair did not authenticate."""
    pass


class ValidationError(BBSError):
    """Data validation errors, detected before any write."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.VALIDATION)


class InvalidHandle(ValidationError):
    """Handle violates the length or charset rules."""
    pass


class HandleTaken(ValidationError):
    """Handle already registered (case-insensitive match)."""
    pass


class DuplicateBoard(ValidationError):
    """A board with the exact same name already exists."""
    pass


class InvalidParent(ValidationError):
    """Comment parent is missing or belongs to another content unit."""
    pass


class UnknownContentUnit(ValidationError):
    """Referenced board or post does not exist."""
    pass


class UnsupportedMedia(BBSError):
    """Attachment is neither an image nor a video."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.MEDIA)


class StorageUnavailable(BBSError):
    """The persistence boundary failed."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.STORAGE)


class ErrorHandler:
    """
    Global error handler for the Fielsdown core.

    Provides centralized error handling with:
    - Error categorization (auth, validation, media, storage)
    - Severity classification
    - User-friendly error messages
    - Detailed logging for debugging
    - Notification callback for the front end

    Usage:
        error_handler = ErrorHandler()
        error_handler.set_notification_callback(print_error)

        try:
            forum.create_board(token, "tech")
        except BBSError as e:
            error_handler.handle_error(e, "create board")
    """

    def __init__(self):
        """Initialize error handler."""
        self._notification_callback: Optional[Callable] = None
        self._error_count = 0

    def set_notification_callback(self, callback: Callable):
        """
        Set callback for displaying notifications to user.

        Args:
            callback: Function(title: str, content: str, severity: ErrorSeverity)
        """
        self._notification_callback = callback

    def handle_error(
        self,
        error: Exception,
        context: str,
        handle: Optional[str] = None,
        board_id: Optional[str] = None,
        unit_id: Optional[str] = None,
        show_notification: bool = True
    ) -> ErrorContext:
        """
        Handle an error with appropriate categorization and response.

        Args:
            error: The exception that occurred
            context: Description of the operation that failed
            handle: Optional acting handle
            board_id: Optional board ID if error relates to a board
            unit_id: Optional content unit ID if error relates to comments
            show_notification: Whether to show user notification (default: True)

        Returns:
            ErrorContext with categorized error information
        """
        self._error_count += 1

        if isinstance(error, BBSError):
            category = error.category
        else:
            category = self._categorize_error(error)

        severity = self._determine_severity(error, category)
        user_message = self._generate_user_message(error, category, context)

        error_context = ErrorContext(
            category=category,
            severity=severity,
            operation=context,
            user_message=user_message,
            technical_details=self._get_technical_details(error),
            handle=handle,
            board_id=board_id,
            unit_id=unit_id
        )

        self._log_error(error_context)

        if show_notification and self._notification_callback:
            self._show_notification(error_context)

        return error_context

    def _categorize_error(self, error: Exception) -> ErrorCategory:
        """
        Categorize a foreign exception based on its type and message.

        Args:
            error: The exception to categorize

        Returns:
            ErrorCategory
        """
        error_type = type(error).__name__.lower()
        error_msg = str(error).lower()

        if any(keyword in error_type or keyword in error_msg for keyword in [
            'database', 'storage', 'disk', 'sqlite', 'integrity', 'operational'
        ]):
            return ErrorCategory.STORAGE

        if isinstance(error, (ValueError, LookupError)):
            return ErrorCategory.VALIDATION

        return ErrorCategory.UNKNOWN

    def _determine_severity(
        self,
        error: Exception,
        category: ErrorCategory
    ) -> ErrorSeverity:
        """Determine the severity of an error."""
        if category == ErrorCategory.STORAGE:
            return ErrorSeverity.CRITICAL

        # Rejected input is the caller's problem, not ours
        if category in (ErrorCategory.VALIDATION, ErrorCategory.MEDIA):
            return ErrorSeverity.INFO

        if category == ErrorCategory.AUTH:
            return ErrorSeverity.WARNING

        return ErrorSeverity.ERROR

    def _generate_user_message(
        self,
        error: Exception,
        category: ErrorCategory,
        context: str
    ) -> str:
        """
        Generate a user-friendly error message.

        Args:
            error: The exception
            category: Error category
            context: Operation context

        Returns:
            User-friendly error message
        """
        if category == ErrorCategory.AUTH:
            return self._generate_auth_message(error, context)
        elif category == ErrorCategory.VALIDATION:
            return self._generate_validation_message(error, context)
        elif category == ErrorCategory.MEDIA:
            return "Only images and videos can be attached."
        elif category == ErrorCategory.STORAGE:
            return "The content store is unavailable. Nothing was saved."
        else:
            return f"An error occurred during {context}. Please try again."

    def _generate_auth_message(self, error: Exception, context: str) -> str:
        """Generate user message for auth errors."""
        if isinstance(error, InvalidCredential):
            return "Wrong handle or password."
        return "You need to log in to do that."

    def _generate_validation_message(self, error: Exception, context: str) -> str:
        """Generate user message for validation errors."""
        if isinstance(error, HandleTaken):
            return "That handle is already taken."
        elif isinstance(error, InvalidHandle):
            return "Handles are 3-20 characters: latin letters, digits and _."
        elif isinstance(error, DuplicateBoard):
            return "A board with that name already exists."
        elif isinstance(error, InvalidParent):
            return "You can only reply to a comment in the same discussion."
        elif isinstance(error, UnknownContentUnit):
            return "That board or post does not exist."
        else:
            return str(error)

    def _get_technical_details(self, error: Exception) -> str:
        """Get technical details for logging."""
        details = [
            f"Exception Type: {type(error).__name__}",
            f"Message: {str(error)}",
            "Traceback:",
            traceback.format_exc()
        ]
        return "\n".join(details)

    def _log_error(self, error_context: ErrorContext):
        """
        Log error with appropriate level.

        Args:
            error_context: Error context information
        """
        log_message = (
            f"[{error_context.category.value.upper()}] "
            f"{error_context.operation}: {error_context.user_message}"
        )

        extra_info = []
        if error_context.handle:
            extra_info.append(f"handle={error_context.handle}")
        if error_context.board_id:
            extra_info.append(f"board_id={error_context.board_id}")
        if error_context.unit_id:
            extra_info.append(f"unit_id={error_context.unit_id}")

        if extra_info:
            log_message += f" ({', '.join(extra_info)})"

        if error_context.severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message)
            logger.critical(f"Technical details:\n{error_context.technical_details}")
        elif error_context.severity == ErrorSeverity.ERROR:
            logger.error(log_message)
            logger.debug(f"Technical details:\n{error_context.technical_details}")
        elif error_context.severity == ErrorSeverity.WARNING:
            logger.warning(log_message)
        else:
            logger.info(log_message)

    def _show_notification(self, error_context: ErrorContext):
        """Show notification to user."""
        title_map = {
            ErrorCategory.AUTH: "Login Required",
            ErrorCategory.VALIDATION: "Rejected",
            ErrorCategory.MEDIA: "Unsupported Media",
            ErrorCategory.STORAGE: "Storage Error",
            ErrorCategory.UNKNOWN: "Error"
        }

        title = title_map.get(error_context.category, "Error")

        try:
            self._notification_callback(
                title,
                error_context.user_message,
                error_context.severity
            )
        except Exception as e:
            logger.error(f"Failed to show notification: {e}")

    def get_error_count(self) -> int:
        """Get total number of errors handled."""
        return self._error_count

    def reset_error_count(self):
        """Reset error counter."""
        self._error_count = 0


# Global error handler instance
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        Global ErrorHandler instance
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def set_error_handler(handler: ErrorHandler):
    """
    Set the global error handler instance.

    Args:
        handler: ErrorHandler instance to use globally
    """
    global _global_error_handler
    _global_error_handler = handler
