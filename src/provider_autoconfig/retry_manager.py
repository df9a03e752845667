"""
Retry Manager for the provider autoconfig system.

This module provides a bounded retry loop with linearly increasing backoff
for catalog HTTP calls:
- A small fixed number of attempts (3 by default)
- A short per-attempt timeout
- Transport failures and non-success responses are retried
- A non-success response on the final attempt is returned as-is
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx

from .audit_logger import AuditLogger, ComponentLogging
from .config import RetryConfig
from .enums import ErrorCode
from .exceptions import NetworkError


class RetryManager(ComponentLogging):
    """
    Manages retry logic with linear backoff.

    The delay before attempt ``n + 1`` is ``base_delay * n``.
    """

    COMPONENT = "RetryManager"

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the retry manager.

        Args:
            config: Retry configuration (attempt count, delays, per-attempt timeout)
            logger: Optional audit logger
        """
        self._config = config or RetryConfig()
        self._logger = logger

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate the wait time after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-indexed)

        Returns:
            The delay in seconds before the next attempt
        """
        return self._config.base_delay_seconds * attempt

    async def send_with_retry(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        content: Optional[str] = None,
    ) -> httpx.Response:
        """
        Send an HTTP request, retrying transport failures and non-success statuses.

        Args:
            client: The HTTP client to send with
            method: HTTP method
            url: Absolute request URL
            headers: Request headers
            content: Optional request body

        Returns:
            The first successful response, or the final response if every attempt
            returned a non-success status

        Raises:
            NetworkError: If the final attempt fails at the transport level
        """
        max_attempts = max(1, self._config.max_attempts)
        timeout = httpx.Timeout(self._config.per_attempt_timeout_seconds)

        for attempt in range(1, max_attempts + 1):
            try:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    content=content,
                    timeout=timeout,
                )
                if response.is_success or attempt == max_attempts:
                    return response

                self._log_debug(
                    f"Request returned {response.status_code} on attempt "
                    f"{attempt}/{max_attempts}, retrying",
                    {"url": url, "status_code": response.status_code},
                )
            except httpx.TransportError as e:
                code = (
                    ErrorCode.TIMEOUT.value
                    if isinstance(e, httpx.TimeoutException)
                    else ErrorCode.NETWORK_ERROR.value
                )
                if attempt == max_attempts:
                    raise NetworkError(
                        code=code,
                        message=f"Request to {url} failed after {attempt} attempts: {e}",
                        details={"url": url, "attempts": attempt},
                    ) from e

                self._log_debug(
                    f"Request failed on attempt {attempt}/{max_attempts}, retrying",
                    {"url": url, "error": str(e)},
                )

            await asyncio.sleep(self._calculate_delay(attempt))

        # Unreachable: the loop returns or raises on the final attempt
        raise NetworkError(
            code=ErrorCode.NETWORK_ERROR.value,
            message="Retry loop exited unexpectedly",
            details={"url": url},
        )
