"""
Status Reporter

Reports delivery status of GHL-originated messages back to GHL.

Reports run as background asyncio tasks so a slow or failing status update
never blocks or fails the send it belongs to. Each report retries retryable
failures with exponential backoff; the final failure is logged, not raised.
"""

import asyncio
import logging
from typing import Any

from messaging_ghl.contracts.ghl import MessageStatus
from messaging_ghl.errors import BridgeError
from messaging_ghl.platform.client import GhlClientFactory

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 1.0


class StatusReporter:
    """Fire-and-forget GHL message status updates."""

    def __init__(
        self,
        client_factory: GhlClientFactory,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_seconds: float = BACKOFF_SECONDS,
        initial_delay_seconds: float = 0.0,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        """
        Args:
            client_factory: Source of authenticated GHL clients
            max_attempts: Attempts per report, including the first
            backoff_seconds: Base delay, doubled after every failed attempt
            initial_delay_seconds: Wait before the first attempt
        """
        self.client_factory = client_factory
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.logger = logger or logging.getLogger(__name__)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        tenant_id: str,
        message_id: str,
        status: MessageStatus,
        error: dict[str, Any] | None = None,
    ) -> asyncio.Task:
        """Start a report in the background and return its task."""
        task = asyncio.create_task(
            self.report(tenant_id, message_id, status, error),
            name=f"ghl-status-{message_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled report to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def report(
        self,
        tenant_id: str,
        message_id: str,
        status: MessageStatus,
        error: dict[str, Any] | None = None,
    ) -> bool:
        """
        Send one status update, retrying retryable failures.

        Returns:
            True if GHL accepted the update
        """
        log_extra = {"tenant_id": tenant_id, "message_id": message_id, "status": status.value}

        if self.initial_delay_seconds > 0:
            await asyncio.sleep(self.initial_delay_seconds)

        for attempt in range(1, self.max_attempts + 1):
            try:
                client = await self.client_factory.create(tenant_id)
                await client.update_message_status(message_id, status, error=error)
                self.logger.info("Updated GHL message status", extra={**log_extra, "attempt": attempt})
                return True
            except BridgeError as e:
                if not e.retryable or attempt == self.max_attempts:
                    self.logger.error(
                        f"Failed to update GHL message status: {e}",
                        extra={**log_extra, "attempt": attempt, "code": e.code},
                    )
                    return False
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                self.logger.warning(
                    f"GHL status update failed, retrying in {delay}s: {e}",
                    extra={**log_extra, "attempt": attempt},
                )
                await asyncio.sleep(delay)
            except Exception:
                self.logger.exception("Unexpected error updating GHL message status", extra=log_extra)
                return False

        return False
