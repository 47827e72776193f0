"""
Error taxonomy for the screenshot transcript pipeline.
"""
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Failure categories surfaced to callers."""
    INVALID_IMAGE = "InvalidImage"
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    PROVIDER_AUTH_ERROR = "ProviderAuthError"
    PROVIDER_PROCESSING_FAILED = "ProviderProcessingFailed"
    PROVIDER_REQUEST_ERROR = "ProviderRequestError"
    TIMEOUT = "Timeout"
    CANCELLED = "Cancelled"
    CONFIGURATION_ERROR = "ConfigurationError"
    # Informational only: OCR succeeded with zero lines. Never raised.
    NO_TEXT_DETECTED = "NoTextDetected"


class OCRPipelineError(Exception):
    """Base error for every hard failure of the pipeline."""

    kind: ErrorKind = ErrorKind.PROVIDER_REQUEST_ERROR
    retryable: bool = False

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        self.message = message
        self.original_error = original_error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"{self.kind.value}: {self.message}"
        if self.original_error is not None:
            msg += f" [Original: {type(self.original_error).__name__}: {self.original_error}]"
        return msg


class InvalidImageError(OCRPipelineError):
    """Corrupt, empty, undersized or oversized input."""
    kind = ErrorKind.INVALID_IMAGE


class UnsupportedFormatError(OCRPipelineError):
    """The image type is not accepted by us or by the provider."""
    kind = ErrorKind.UNSUPPORTED_FORMAT


class ProviderAuthError(OCRPipelineError):
    """Bad or missing provider credentials."""
    kind = ErrorKind.PROVIDER_AUTH_ERROR


class ProviderProcessingFailedError(OCRPipelineError):
    """The provider's OCR job reported ``failed``."""
    kind = ErrorKind.PROVIDER_PROCESSING_FAILED


class ProviderRequestError(OCRPipelineError):
    """Provider call failed for a reason outside the other categories."""
    kind = ErrorKind.PROVIDER_REQUEST_ERROR
    retryable = True


class OCRTimeoutError(OCRPipelineError):
    """Polling budget exhausted before the job finished."""
    kind = ErrorKind.TIMEOUT
    retryable = True


class OCRCancelledError(OCRPipelineError):
    """The caller aborted while the job was being polled."""
    kind = ErrorKind.CANCELLED


class ConfigurationError(OCRPipelineError, ValueError):
    """Deployment configuration is missing or invalid."""
    kind = ErrorKind.CONFIGURATION_ERROR
