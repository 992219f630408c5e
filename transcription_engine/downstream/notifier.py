"""Real-time event notifiers.

The real-time gateway owns client connections; the engine hands it events
addressed to a room through an internal endpoint.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import httpx

from transcription_engine.utils.errors import StorageError

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Delivers named events to a room of connected clients."""

    @abstractmethod
    async def emit(self, room: str, event: str, payload: dict[str, Any]) -> None:
        """Send an event to a room.

        Raises:
            StorageError: If the event could not be handed off.
        """

    async def aclose(self) -> None:
        """Release network resources held by the notifier."""


class NullNotifier(Notifier):
    """Notifier used when no gateway is configured; logs and drops events."""

    async def emit(self, room: str, event: str, payload: dict[str, Any]) -> None:
        logger.debug("Dropping event %s for room %s (no gateway configured)", event, room)


class HttpEventNotifier(Notifier):
    """Posts events to the real-time gateway's internal emit endpoint.

    Reads configuration from environment variables:
        REALTIME_GATEWAY_URL, INTERNAL_API_SECRET
    """

    def __init__(
        self,
        gateway_url: str | None = None,
        internal_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.gateway_url = (
            gateway_url or os.environ.get("REALTIME_GATEWAY_URL", "")
        ).rstrip("/")
        self.internal_secret = internal_secret or os.environ.get(
            "INTERNAL_API_SECRET", ""
        )
        if not self.gateway_url:
            raise StorageError("REALTIME_GATEWAY_URL is required", operation="init")
        self._client = client or httpx.AsyncClient(timeout=10.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def emit(self, room: str, event: str, payload: dict[str, Any]) -> None:
        url = f"{self.gateway_url}/internal/emit"
        try:
            response = await self._client.post(
                url,
                headers={"X-Internal-Secret": self.internal_secret},
                json={"room": room, "event": event, "payload": payload},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                f"Event emit failed for room '{room}': "
                f"HTTP {exc.response.status_code}",
                operation="emit",
            ) from exc
        except httpx.RequestError as exc:
            raise StorageError(
                f"Event emit failed for room '{room}': {exc}",
                operation="emit",
            ) from exc
