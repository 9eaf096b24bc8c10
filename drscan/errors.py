"""
Error kinds raised by image intake and the remote classifier.

Every error carries a ``user_message`` that the analysis lifecycle shows
as-is in the error state.
"""
from typing import Optional


class AnalysisError(Exception):
    """Base class for failures that end an analysis attempt."""

    default_message = "Failed to analyze the image. Please try again."

    def __init__(self, user_message: Optional[str] = None, *, detail: Optional[str] = None):
        self.user_message = user_message or self.default_message
        self.detail = detail
        super().__init__(self.user_message if detail is None else f"{self.user_message} ({detail})")


class ValidationError(AnalysisError):
    """Uploaded file has the wrong type or is too large."""
    default_message = "Please upload a valid JPEG or PNG image."


class ReadError(AnalysisError):
    """Uploaded file could not be read."""
    default_message = "Failed to read the image file."


class FormatError(AnalysisError):
    """Image data URL is malformed or has an unsupported MIME type."""
    default_message = "Invalid image format."


class AnalysisTimeoutError(AnalysisError, TimeoutError):
    """Classifier did not answer within the timeout."""
    default_message = "Analysis timed out. Please try again."


class InvalidResponseError(AnalysisError):
    """Classifier answered with something other than a level 0-4."""
    default_message = "Invalid model response. Please try again."


class ConfigurationError(AnalysisError):
    """Classifier cannot be used because it is not configured."""
    default_message = "Gemini API key is not configured."


class RemoteServiceError(AnalysisError):
    """The remote model service rejected or failed the request."""
    default_message = "The analysis service returned an error. Please try again."


class UnauthenticatedError(RemoteServiceError):
    default_message = "API key is invalid or expired. Please check your configuration."


class PermissionDeniedError(RemoteServiceError):
    default_message = "Access denied. Please check your API key permissions."


class QuotaExceededError(RemoteServiceError):
    default_message = "API quota exceeded. Please try again later."


class ImageTooLargeError(RemoteServiceError):
    default_message = "Image size exceeds limits. Please use a smaller image (max 4MB)."


class NetworkError(RemoteServiceError):
    default_message = "Network error. Please check your internet connection."
