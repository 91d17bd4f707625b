"""Custom exception classes for the application.

Every exception carries a stable ``code`` so stored check records and log
lines can be grouped without parsing messages.
"""


class StockWatchException(Exception):
    """Base exception for all StockWatch errors."""

    code = "INTERNAL"

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class ValidationError(StockWatchException):
    """Raised for malformed input before any network activity happens."""

    code = "VALIDATION"


class NotFoundError(StockWatchException):
    """Raised when a requested resource is not found."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} with identifier '{identifier}' not found")


class InternalError(StockWatchException):
    """Raised when an internal invariant is violated."""

    code = "INTERNAL"


class ExternalError(StockWatchException):
    """Raised for network, browser process and third-party API failures."""

    code = "EXTERNAL"


class HttpStatusError(ExternalError):
    """Raised when a page answers with a non-success status and no usable content."""

    code = "HTTP_STATUS"

    def __init__(self, status: int, url: str):
        self.status = status
        self.url = url
        super().__init__(f"HTTP {status} for {url}")


class BotProtectionError(ExternalError):
    """Raised when a challenge page blocks every tier the policy allows."""

    code = "BOT_PROTECTION"


class ManualVerificationTimeout(ExternalError):
    """Raised when nobody solved the challenge before the polling ceiling."""

    code = "MANUAL_VERIFICATION_TIMEOUT"

    def __init__(self, message: str = "Manual verification timed out. Please try again."):
        super().__init__(message)
