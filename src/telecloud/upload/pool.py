"""Client identity pool and storage channel registry.

:class:`ClientPool` spreads transfers across several bot identities so that
per-bot rate limits are shared out. It is a load-spreading cursor only; it
does no retrying and never blocks.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator
from typing import Any, Generic, TypeVar

from telecloud.models import ChannelId, normalize_channel_id

logger = logging.getLogger(__name__)

ClientT = TypeVar("ClientT")


class ClientPool(Generic[ClientT]):
    """Hands out client identities in strict round-robin order.

    The cursor is advanced under a lock so concurrent callers (scheduler
    workers, restore, the bot's forwarder) never observe the same slot twice
    in a row or skip one.

    Raises:
        ValueError: If constructed with no clients.
    """

    def __init__(self, clients: Iterable[ClientT]) -> None:
        self._clients: tuple[ClientT, ...] = tuple(clients)
        if not self._clients:
            raise ValueError("ClientPool requires at least one client identity")
        self._cursor = 0
        self._lock = threading.Lock()

    def next(self) -> ClientT:
        """Return the next identity, wrapping modulo the pool size."""
        with self._lock:
            client = self._clients[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._clients)
        return client

    @property
    def primary(self) -> ClientT:
        """First identity; used for operator-facing messages."""
        return self._clients[0]

    def __len__(self) -> int:
        return len(self._clients)

    def __iter__(self) -> Iterator[ClientT]:
        return iter(self._clients)

    async def close(self) -> None:
        """Close every identity that supports ``close()``."""
        for client in self._clients:
            closer = getattr(client, "close", None)
            if closer is None:
                continue
            try:
                await closer()
            except Exception as exc:
                logger.warning("Error closing client %r: %s", client, exc)


class ChannelRegistry:
    """Insertion-ordered, duplicate-free set of storage channel ids.

    Grows at runtime through the channel registration handshake.
    """

    def __init__(self, channel_ids: Iterable[Any] = ()) -> None:
        self._ids: dict[ChannelId, None] = {}
        self._lock = threading.Lock()
        for channel_id in channel_ids:
            self.add(channel_id)

    def add(self, channel_id: Any) -> bool:
        """Register *channel_id*; returns ``True`` if it was not already known."""
        normalized = normalize_channel_id(channel_id)
        with self._lock:
            if normalized in self._ids:
                return False
            self._ids[normalized] = None
        logger.info("Registered storage channel %s", normalized)
        return True

    def snapshot(self) -> tuple[ChannelId, ...]:
        """Stable copy of the current channels, in registration order."""
        with self._lock:
            return tuple(self._ids)

    def __contains__(self, channel_id: object) -> bool:
        return normalize_channel_id(channel_id) in self._ids

    def __iter__(self) -> Iterator[ChannelId]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._ids)
