"""Retrying transfer of source videos from object storage."""

import asyncio
import logging
import math
import os
from typing import Awaitable, Callable, Optional

from app.core.config import settings
from app.core.metrics import SOURCE_DOWNLOAD_ATTEMPTS_TOTAL
from app.core.storage import StorageError, StorageService
from app.modules.transcoding.exceptions import DownloadExhaustedError

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior with optional backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)


# Fixed spacing between source download attempts
DOWNLOAD_RETRY_CONFIG = RetryConfig(
    max_attempts=settings.DOWNLOAD_MAX_ATTEMPTS,
    initial_delay=settings.DOWNLOAD_RETRY_DELAY_SECONDS,
    max_delay=settings.DOWNLOAD_RETRY_DELAY_SECONDS,
    backoff_multiplier=1.0,
)


class InvalidDownloadError(Exception):
    """The transfer finished but left no usable file."""


def _validate_download(destination: str) -> int:
    if not os.path.isfile(destination):
        raise InvalidDownloadError(f"{destination} was not created")
    size = os.path.getsize(destination)
    if size == 0:
        raise InvalidDownloadError(f"{destination} is empty")
    return size


async def download_with_retry(
    storage: StorageService,
    key: str,
    destination: str,
    config: RetryConfig = DOWNLOAD_RETRY_CONFIG,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """Download an object, retrying transient failures.

    A transfer that raises, or that leaves a missing or zero-byte file, counts
    as a failed attempt.

    Args:
        storage: Storage service to download from
        key: Object key
        destination: Local file path
        config: Attempt count and delays
        sleep: Awaitable used for the pause between attempts

    Returns:
        Size of the downloaded file in bytes

    Raises:
        DownloadExhaustedError: When every attempt failed
    """
    last_error: Optional[BaseException] = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            await storage.download(key, destination)
            size = _validate_download(destination)
        except (StorageError, InvalidDownloadError, OSError) as e:
            last_error = e
            SOURCE_DOWNLOAD_ATTEMPTS_TOTAL.labels(result="failed").inc()
            logger.warning(
                f"Download attempt {attempt}/{config.max_attempts} for {key} failed: {e}",
                extra={"key": key, "attempt": attempt},
            )
            if attempt < config.max_attempts:
                await sleep(config.calculate_delay(attempt))
            continue

        SOURCE_DOWNLOAD_ATTEMPTS_TOTAL.labels(result="succeeded").inc()
        logger.info(
            f"Downloaded {key} ({size} bytes) on attempt {attempt}",
            extra={"key": key, "attempt": attempt, "size": size},
        )
        return size

    raise DownloadExhaustedError(key, config.max_attempts, last_error)
