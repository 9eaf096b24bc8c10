"""
Image upload intake, preview resources and display filters for the
diabetic retinopathy screening application.
"""
import base64
import io
import logging
import os
import tempfile
import weakref
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from drscan.classifier import parse_data_url
from drscan.config import ALLOWED_MIME_TYPES, MAX_UPLOAD_BYTES
from drscan.errors import ValidationError, ReadError
from drscan.models import ImageFilters

logger = logging.getLogger(__name__)


class ImageUploadHandler:
    """Handles upload validation and conversion of the file to a data URL."""

    SUPPORTED_MIME_TYPES = ALLOWED_MIME_TYPES
    SUPPORTED_EXTENSIONS = ['jpg', 'jpeg', 'png']
    MAX_FILE_SIZE = MAX_UPLOAD_BYTES

    @staticmethod
    def validate_image(uploaded_file) -> None:
        """
        Validate an uploaded image file before anything is sent anywhere.

        Args:
            uploaded_file: Streamlit UploadedFile (or any object with
                `type` and `size` attributes)

        Raises:
            ValidationError: If no file was given, the MIME type is not
                JPEG/PNG, or the file is larger than 4 MiB
        """
        if uploaded_file is None:
            raise ValidationError("No file selected.")

        mime_type = getattr(uploaded_file, 'type', None)
        if mime_type not in ImageUploadHandler.SUPPORTED_MIME_TYPES:
            raise ValidationError(detail=f"unsupported type {mime_type!r}")

        size = getattr(uploaded_file, 'size', None)
        if size is None:
            size = len(uploaded_file.getvalue())
        if size > ImageUploadHandler.MAX_FILE_SIZE:
            raise ValidationError("Image size must be less than 4MB.", detail=f"{size} bytes")

    @staticmethod
    def read_bytes(uploaded_file) -> bytes:
        """
        Read the full content of an uploaded file.

        Raises:
            ReadError: If the file cannot be read or is empty
        """
        try:
            if hasattr(uploaded_file, 'getvalue'):
                data = uploaded_file.getvalue()
            else:
                uploaded_file.seek(0)
                data = uploaded_file.read()
        except (OSError, ValueError) as exc:
            raise ReadError(detail=str(exc)) from exc

        if not isinstance(data, (bytes, bytearray)) or not data:
            raise ReadError("Failed to read image file.")
        return bytes(data)

    @staticmethod
    def read_as_data_url(uploaded_file) -> str:
        """
        Encode an uploaded file as `data:<mime>;base64,<payload>`.

        Args:
            uploaded_file: A file that already passed `validate_image`

        Returns:
            Data URL string

        Raises:
            ReadError: If the file cannot be read
        """
        data = ImageUploadHandler.read_bytes(uploaded_file)
        return encode_data_url(data, uploaded_file.type)


def encode_data_url(data: bytes, mime_type: str) -> str:
    payload = base64.b64encode(data).decode('ascii')
    return f"data:{mime_type};base64,{payload}"


def decode_data_url_image(image_url: str) -> Image.Image:
    """Decode a stored data URL back into a PIL image."""
    _, data = parse_data_url(image_url)
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


def _remove_preview_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove preview file %s: %s", path, exc)


class PreviewSlot:
    """
    Holds at most one temporary preview file for the image on display.

    Assigning a new preview releases the previous one; `clear` releases the
    current one. Can be used as a context manager.
    """

    _SUFFIXES = {'image/jpeg': '.jpg', 'image/png': '.png'}

    def __init__(self):
        self._path: Optional[str] = None
        self._finalizer: Optional[weakref.finalize] = None

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def is_set(self) -> bool:
        return self._path is not None

    def assign(self, data: bytes, mime_type: str) -> str:
        """
        Write `data` to a new temporary file and make it the current preview.

        Returns:
            Path of the new preview file
        """
        suffix = self._SUFFIXES.get(mime_type, '')
        fd, path = tempfile.mkstemp(prefix='drscan-preview-', suffix=suffix)
        with os.fdopen(fd, 'wb') as handle:
            handle.write(data)
        self.clear()
        self._path = path
        # removes the file if the slot is dropped or the process exits first
        self._finalizer = weakref.finalize(self, _remove_preview_file, path)
        return path

    def clear(self) -> None:
        """Release the current preview file, if any."""
        finalizer, self._finalizer = self._finalizer, None
        self._path = None
        if finalizer is not None:
            finalizer()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.clear()
        return False


class ImagePreprocessor:
    """Applies the brightness/contrast/saturation display filters."""

    @staticmethod
    def to_rgb_array(image: Image.Image) -> np.ndarray:
        """
        Convert a PIL image to an RGB uint8 array.

        Args:
            image: PIL Image object

        Returns:
            RGB image array
        """
        if image.mode != 'RGB':
            if image.mode == 'RGBA':
                # Create white background for transparent images
                background = Image.new('RGB', image.size, (255, 255, 255))
                background.paste(image, mask=image.split()[-1])
                image = background
            else:
                image = image.convert('RGB')
        return np.array(image)

    @staticmethod
    def apply_filters(image_array: np.ndarray, filters: ImageFilters) -> np.ndarray:
        """
        Apply brightness, contrast and saturation percentages, in that order.

        100% for all three returns an unchanged copy.

        Args:
            image_array: RGB image array (uint8)
            filters: Percentages, clamped to 50-150

        Returns:
            Filtered RGB image array (uint8)
        """
        filters = filters.clamped()
        if filters.is_default():
            return image_array.copy()

        result = image_array.astype(np.float32) / 255.0

        result = result * (filters.brightness / 100.0)

        contrast = filters.contrast / 100.0
        result = (result - 0.5) * contrast + 0.5

        result = np.clip(result, 0.0, 1.0)
        saturation = filters.saturation / 100.0
        if saturation != 1.0:
            gray = cv2.cvtColor(result, cv2.COLOR_RGB2GRAY)[:, :, np.newaxis]
            result = gray + (result - gray) * saturation

        return (np.clip(result, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)
