"""Completion callbacks to the party that requested a job."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

BACKEND_SECRET_HEADER = "X-Backend-Secret"


@dataclass
class CallbackResult:
    success: bool
    status_code: Optional[int] = None
    response_time_ms: Optional[int] = None
    error: Optional[str] = None


def build_callback_payload(
    status: str,
    movie_id: int,
    episode_id: int,
    job_id: str,
    error: Optional[str] = None,
) -> dict:
    """Body of the completion POST; ``error`` is only present on failure."""
    payload = {
        "status": status,
        "movieId": movie_id,
        "episodeId": episode_id,
        "jobId": job_id,
    }
    if error is not None:
        payload["error"] = error
    return payload


class CallbackNotifier:
    """Sends a single completion POST per job.

    Delivery problems are logged and returned, never raised and never retried;
    the job outcome is already persisted by the time a callback goes out.
    """

    def __init__(
        self,
        secret: str = settings.BACKEND_SECRET,
        timeout: float = settings.CALLBACK_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret = secret
        self.timeout = timeout
        self._transport = transport

    async def notify(self, url: str, payload: dict) -> CallbackResult:
        """POST the payload to the callback URL.

        Args:
            url: Callback endpoint
            payload: JSON body from build_callback_payload

        Returns:
            Delivery outcome
        """
        headers = {
            "Content-Type": "application/json",
            BACKEND_SECRET_HEADER: self.secret,
        }
        start_time = time.time()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException:
            result = CallbackResult(False, error=f"Request timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            result = CallbackResult(False, error=f"Request error: {e}")
        else:
            response_time_ms = int((time.time() - start_time) * 1000)
            if 200 <= response.status_code < 300:
                result = CallbackResult(True, response.status_code, response_time_ms)
            else:
                result = CallbackResult(
                    False,
                    response.status_code,
                    response_time_ms,
                    f"HTTP {response.status_code}: {response.text[:500]}",
                )

        if result.success:
            logger.info(
                f"Callback delivered to {url}",
                extra={"job_id": payload.get("jobId"), "status_code": result.status_code},
            )
        else:
            logger.warning(
                f"Callback to {url} failed: {result.error}",
                extra={"job_id": payload.get("jobId"), "status_code": result.status_code},
            )
        return result
