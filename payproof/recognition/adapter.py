"""
Recognition Adapter Base.

Both recognizers share one contract: ``await recognize(images)`` always
returns a RecognitionResult and never raises. Backend calls block, so
they run in worker threads; each adapter enforces its own timeout and
retries transient errors with exponential backoff inside that budget.

Author: ML Engineering Team
"""

import asyncio
import dataclasses
import time
from abc import ABC, abstractmethod
from typing import Sequence

from payproof.input_handler.normalized_image import NormalizedImage
from payproof.utils.exceptions import RecognitionError, TransientRecognitionError
from payproof.utils.logger import get_logger
from .result import RecognitionFailure, RecognitionResult, RecognizerKind

logger = get_logger(__name__)


class RecognitionAdapter(ABC):
    """
    Timeout, retry and failure-absorption wrapper around a recognizer.

    Subclasses set ``kind`` and implement ``_recognize_sync``, which runs
    in a worker thread and may raise any RecognitionError subclass.

    Attributes:
        timeout: Total budget in seconds for one recognize() call
        max_retries: Retries allowed after the first attempt
        backoff_base: First retry delay in seconds
        backoff_max: Upper bound on a single retry delay

    Example:
        >>> result = await adapter.recognize(variants)
        >>> result.success, result.confidence
        (True, 0.91)
    """

    kind: RecognizerKind

    def __init__(
        self,
        timeout: float,
        max_retries: int = 2,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0
    ) -> None:
        self.timeout = float(timeout)
        self.max_retries = max(0, int(max_retries))
        self.backoff_base = float(backoff_base)
        self.backoff_max = float(backoff_max)

    @property
    def name(self) -> str:
        return self.kind.value

    async def recognize(self, images: Sequence[NormalizedImage]) -> RecognitionResult:
        """
        Run the recognizer within its timeout budget.

        Args:
            images: Variants produced by the image normalizer.

        Returns:
            A success variant, or a RecognitionFailure with confidence 0
            on timeout, quota exhaustion, malformed output or any other
            backend error.
        """
        start = time.monotonic()

        try:
            result = await asyncio.wait_for(
                self._recognize_with_retry(images, start),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} recognizer timed out after {self.timeout:.1f}s")
            return RecognitionFailure.of(
                self.kind, f"timed out after {self.timeout:.1f}s", time.monotonic() - start
            )
        except RecognitionError as e:
            logger.warning(f"{self.name} recognizer failed: {e}")
            return RecognitionFailure.of(self.kind, str(e), time.monotonic() - start)
        except Exception as e:
            logger.exception(f"{self.name} recognizer raised unexpectedly: {e}")
            return RecognitionFailure.of(self.kind, f"unexpected error: {e}", time.monotonic() - start)

        latency = time.monotonic() - start
        logger.info(
            f"{self.name} recognizer finished (confidence={result.confidence:.2f}, "
            f"latency={latency:.2f}s)"
        )
        return dataclasses.replace(result, latency=latency)

    async def _recognize_with_retry(
        self,
        images: Sequence[NormalizedImage],
        start: float
    ) -> RecognitionResult:
        attempt = 0
        while True:
            try:
                return await asyncio.to_thread(self._recognize_sync, images)
            except TransientRecognitionError as e:
                delay = self._backoff_delay(attempt)
                remaining = self.timeout - (time.monotonic() - start)
                if attempt >= self.max_retries or delay >= remaining:
                    raise
                attempt += 1
                logger.warning(
                    f"{self.name} recognizer transient error, retry {attempt}/{self.max_retries} "
                    f"in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    @abstractmethod
    def _recognize_sync(self, images: Sequence[NormalizedImage]) -> RecognitionResult:
        """Blocking recognition call; executed in a worker thread."""
