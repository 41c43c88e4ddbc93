"""
Application exceptions.

AI provider failures have their own hierarchy in
incident_intake.services.llm.errors.
"""
from typing import Optional


class IntakeError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class PersistenceError(IntakeError):
    """Repository/storage failure."""
    pass


class ExternalAPIError(IntakeError):
    """External API failure (WhatsApp, Graph API, ...)."""

    def __init__(
        self,
        message: str,
        service: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        self.service = service
        super().__init__(message, details, original_error)


class ValidationError(IntakeError):
    """Invalid input data."""
    pass


class NotFoundError(IntakeError):
    """Resource not found."""

    def __init__(
        self,
        resource: str,
        identifier: Optional[str] = None
    ):
        message = f"{resource} not found"
        details = {}
        if identifier:
            details["id"] = identifier
        super().__init__(message, details)


class ConfigurationError(IntakeError):
    """Missing or invalid configuration."""
    pass


class MediaRejectedError(ValidationError):
    """Media refused before or during download. Not retryable."""
    pass


class UnsupportedMediaTypeError(MediaRejectedError):
    """MIME type outside the allow-list."""

    def __init__(self, mime_type: str):
        super().__init__(
            f"Unsupported file type: {mime_type}",
            {"mime_type": mime_type},
        )
        self.mime_type = mime_type


class MediaTooLargeError(MediaRejectedError):
    """File exceeds the size ceiling."""

    def __init__(self, size: int, max_bytes: int):
        super().__init__(
            f"File too large: {size} bytes (max: {max_bytes})",
            {"size": size, "max_bytes": max_bytes},
        )
        self.size = size
        self.max_bytes = max_bytes


class MediaDownloadError(ExternalAPIError):
    """Network/HTTP failure while fetching media."""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None,
    ):
        self.retryable = retryable
        super().__init__(message, "whatsapp_media", details, original_error)
