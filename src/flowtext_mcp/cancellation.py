"""Single-slot cooperative cancellation channel."""

from __future__ import annotations

import logging
from threading import Event

from flowtext_mcp.errors import RecognitionCancelled

logger = logging.getLogger(__name__)


class CancelToken:
    """Receiving side, polled by a backend at its check-points."""

    def __init__(self, event: Event) -> None:
        self._event = event

    def raise_if_cancelled(self, checkpoint: str | None = None) -> None:
        if self._event.is_set():
            logger.info("Cancellation observed at %s", checkpoint or "checkpoint")
            raise RecognitionCancelled(checkpoint)


class CancelHandle:
    """Sending side. Holds capacity for exactly one signal."""

    def __init__(self, event: Event) -> None:
        self._event = event

    def send(self) -> bool:
        """Send without blocking. Returns False if the slot was already full."""
        if self._event.is_set():
            return False
        self._event.set()
        return True


def cancel_channel() -> tuple[CancelHandle, CancelToken]:
    event = Event()
    return CancelHandle(event), CancelToken(event)
