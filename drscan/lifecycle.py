"""
Analysis lifecycle: upload -> classification -> result -> history.

`AnalysisSession` is the state machine behind the page. It is driven from a
single thread; each call to `analyze` starts a new attempt, and completions of
older attempts are dropped by comparing request generations.
"""
from __future__ import annotations

import enum
import logging
from typing import Optional

from drscan.classifier import RetinopathyClassifier
from drscan.errors import AnalysisError
from drscan.history import HistoryCache
from drscan.image_handler import ImageUploadHandler, PreviewSlot, encode_data_url
from drscan.models import AnalysisResult, ImageFilters

logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


class AnalysisState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class AnalysisSession:
    """Holds the current image, result, error and display filters."""

    def __init__(self, classifier: RetinopathyClassifier, history: HistoryCache) -> None:
        self._classifier = classifier
        self._history = history
        self._preview = PreviewSlot()
        self._generation = 0

        self.state = AnalysisState.IDLE
        self.current_result: Optional[AnalysisResult] = None
        self.error_message: Optional[str] = None
        self.filters = ImageFilters()

    @property
    def history(self) -> HistoryCache:
        return self._history

    @property
    def preview_path(self) -> Optional[str]:
        return self._preview.path

    @property
    def is_loading(self) -> bool:
        return self.state is AnalysisState.LOADING

    @property
    def generation(self) -> int:
        return self._generation

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _fail(self, message: str) -> None:
        self.state = AnalysisState.ERROR
        self.error_message = message
        self.current_result = None
        self._preview.clear()

    async def analyze(self, uploaded_file) -> Optional[AnalysisResult]:
        """
        Run one analysis attempt for an uploaded file.

        Args:
            uploaded_file: Streamlit UploadedFile or compatible object

        Returns:
            The new AnalysisResult, or None if the attempt failed or was
            superseded by a newer one
        """
        try:
            ImageUploadHandler.validate_image(uploaded_file)
        except AnalysisError as exc:
            logger.info("Rejected upload: %s", exc)
            self._next_generation()
            self._fail(exc.user_message)
            return None

        generation = self._next_generation()
        self.state = AnalysisState.LOADING
        self.error_message = None
        self.current_result = None

        try:
            data = ImageUploadHandler.read_bytes(uploaded_file)
            self._preview.assign(data, uploaded_file.type)
            image_url = encode_data_url(data, uploaded_file.type)
            level = await self._classifier.classify(image_url)
            result = AnalysisResult.create(image_url, level)
        except AnalysisError as exc:
            if generation != self._generation:
                logger.info("Ignoring failure of superseded attempt %d: %s", generation, exc)
                return None
            logger.warning("Analysis attempt %d failed: %s", generation, exc)
            self._fail(exc.user_message)
            return None
        except Exception:
            if generation != self._generation:
                logger.exception("Superseded attempt %d failed unexpectedly", generation)
                return None
            logger.exception("Analysis attempt %d failed unexpectedly", generation)
            self._fail(UNEXPECTED_ERROR_MESSAGE)
            return None

        if generation != self._generation:
            logger.info("Discarding result of superseded attempt %d", generation)
            return None

        self.current_result = result
        self.state = AnalysisState.SUCCESS
        self._history.add(result)
        logger.info("Attempt %d finished: level %d (%s)", generation, result.level, result.label)
        return result

    def reset(self) -> None:
        """Clear the image, result and error, and restore default filters."""
        self._next_generation()
        self._preview.clear()
        self.current_result = None
        self.error_message = None
        self.filters.reset()
        self.state = AnalysisState.IDLE

    def select_from_history(self, result_id: str) -> AnalysisResult:
        """
        Show a stored result without contacting the classifier.

        Raises:
            KeyError: If no history entry has this id
        """
        result = self._history.get(result_id)
        if result is None:
            raise KeyError(result_id)

        self._next_generation()
        self._preview.clear()
        self.current_result = result
        self.error_message = None
        self.state = AnalysisState.SUCCESS
        return result

    def delete_from_history(self, result_id: str) -> bool:
        return self._history.delete(result_id)

    def close(self) -> None:
        self._preview.clear()
