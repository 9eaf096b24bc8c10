"""
Remote diabetic retinopathy classifier backed by Google Gemini.

The model receives a fixed instruction prompt plus the retinal image and is
expected to answer with a single severity digit (0-4).

Required env (see drscan.config):
  - GEMINI_API_KEY
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
import time
from typing import Any, Awaitable, Callable, Optional, Tuple

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from drscan.config import ALLOWED_MIME_TYPES, DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS
from drscan.errors import (
    AnalysisTimeoutError,
    ConfigurationError,
    FormatError,
    ImageTooLargeError,
    InvalidResponseError,
    NetworkError,
    PermissionDeniedError,
    QuotaExceededError,
    RemoteServiceError,
    UnauthenticatedError,
)
from drscan.models import SEVERITY_LEVELS

logger = logging.getLogger(__name__)

CLASSIFICATION_PROMPT = """You are an expert ophthalmologist specializing in diabetic retinopathy (DR).
Analyze the retinal image and classify it into one of these categories:

0: No DR - No visible signs of diabetic retinopathy
1: Mild DR - Presence of microaneurysms only
2: Moderate DR - More than just microaneurysms but less than severe DR
3: Severe DR - Any of: >20 intraretinal hemorrhages, definite venous beading, prominent IRMA
4: Proliferative DR - Presence of neovascularization and/or vitreous/preretinal hemorrhage

Respond with ONLY the number (0-4) that corresponds to the DR severity level."""

_DATA_URL_RE = re.compile(r"^data:([A-Za-z+/-]+);base64,(.+)$", re.DOTALL)
_LEADING_INT_RE = re.compile(r"[+-]?\d+")

# (prompt, image bytes, mime type) -> free-text model answer
Backend = Callable[[str, bytes, str], Awaitable[Optional[str]]]


def parse_data_url(image_url: str) -> Tuple[str, bytes]:
    """
    Split a `data:<mime>;base64,<payload>` string.

    Returns:
        Tuple of (mime_type, decoded bytes)

    Raises:
        FormatError: If the string is malformed, the MIME type is not
            JPEG/PNG, or the payload is not valid base64
    """
    match = _DATA_URL_RE.match(image_url or "")
    if not match:
        raise FormatError()

    mime_type, payload = match.groups()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise FormatError("Unsupported image format. Please use JPEG or PNG.", detail=mime_type)

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FormatError(detail=f"bad base64 payload: {exc}") from exc
    return mime_type, data


def parse_severity(text: Optional[str]) -> int:
    """
    Read the severity level from the model's answer.

    Only a leading integer is considered, so "2" and "2." are level 2 while
    "Level 2" is rejected.

    Raises:
        InvalidResponseError: If no integer is found or it is outside 0-4
    """
    if text is None:
        raise InvalidResponseError("Failed to get a valid response from the AI model.")

    cleaned = text.strip()
    match = _LEADING_INT_RE.match(cleaned)
    if not match:
        raise InvalidResponseError(detail=f"unparseable answer {cleaned[:40]!r}")

    level = int(match.group())
    if level not in SEVERITY_LEVELS:
        raise InvalidResponseError(detail=f"level {level} out of range")
    return level


def map_api_error(exc: Exception) -> RemoteServiceError:
    """Translate a Gemini API error into the matching RemoteServiceError kind."""
    status = str(getattr(exc, "status", "") or "").upper()
    code = getattr(exc, "code", None)
    message = str(getattr(exc, "message", None) or exc)
    lowered = message.lower()

    if status == "UNAUTHENTICATED" or code == 401 or "api key not valid" in lowered:
        return UnauthenticatedError(detail=message)
    if status == "PERMISSION_DENIED" or code == 403:
        return PermissionDeniedError(detail=message)
    if status == "RESOURCE_EXHAUSTED" or code == 429:
        return QuotaExceededError(detail=message)
    if code == 413 or "too large" in lowered or "size" in lowered:
        return ImageTooLargeError(detail=message)
    return RemoteServiceError(detail=message)


class GeminiBackend:
    """Sends one generate-content request to Gemini through the async client."""

    def __init__(self, api_key: Optional[str], *, model_name: str = DEFAULT_MODEL,
                 client: Any = None) -> None:
        self._api_key = api_key
        self._client = client
        self._model_name = model_name
        logger.info("Initialising Gemini backend with model '%s'", model_name)

    def _new_client(self) -> Any:
        if not self._api_key:
            raise ConfigurationError()
        return genai.Client(api_key=self._api_key)

    @property
    def model_name(self) -> str:
        return self._model_name

    async def __call__(self, prompt: str, data: bytes, mime_type: str) -> Optional[str]:
        # a client made here is closed again: its async transport belongs to the running loop
        owned = self._client is None
        client = self._new_client() if owned else self._client
        contents = [prompt, types.Part.from_bytes(data=data, mime_type=mime_type)]
        try:
            response = await client.aio.models.generate_content(
                model=self._model_name,
                contents=contents,
            )
        except genai_errors.APIError as exc:
            logger.error("Gemini API error: %s", exc)
            raise map_api_error(exc) from exc
        except httpx.TimeoutException as exc:
            logger.error("Gemini request timed out: %s", exc)
            raise AnalysisTimeoutError(detail=str(exc)) from exc
        except httpx.TransportError as exc:
            logger.error("Gemini transport error: %s", exc)
            raise NetworkError(detail=str(exc)) from exc
        finally:
            if owned:
                await client.aio.aclose()

        if response is None:
            return None
        return response.text


class RetinopathyClassifier:
    """
    Classifies a retinal image data URL into a severity level.

    The request to the backend races a timer; when the timer wins the request
    is cancelled and its eventual answer is never looked at.
    """

    def __init__(self, backend: Backend, *, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
                 prompt: str = CLASSIFICATION_PROMPT) -> None:
        self._backend = backend
        self._timeout = timeout_seconds
        self._prompt = prompt

    @classmethod
    def from_settings(cls, settings) -> "RetinopathyClassifier":
        backend = GeminiBackend(settings.api_key, model_name=settings.model_name)
        return cls(backend, timeout_seconds=settings.timeout_seconds)

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def classify(self, image_url: str) -> int:
        """
        Send the image to the model and return the severity level.

        Args:
            image_url: `data:<mime>;base64,<payload>` string

        Returns:
            Severity level 0-4

        Raises:
            FormatError: Malformed or unsupported image data
            AnalysisTimeoutError: No answer within the timeout
            InvalidResponseError: Answer is not a level 0-4
            RemoteServiceError: Service-side failure (or a subkind)
        """
        mime_type, data = parse_data_url(image_url)
        logger.info("Requesting classification (%s, %d bytes, timeout %.0fs)",
                    mime_type, len(data), self._timeout)

        started = time.monotonic()
        try:
            text = await asyncio.wait_for(
                self._backend(self._prompt, data, mime_type),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Classification timed out after %.1fs", time.monotonic() - started)
            raise AnalysisTimeoutError() from exc

        logger.info("Model answered %r after %.1fs", (text or "")[:40], time.monotonic() - started)
        level = parse_severity(text)
        logger.info("Parsed severity level %d", level)
        return level
