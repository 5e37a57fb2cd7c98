"""Async view of the client store used by the hub for presence tracking."""
from __future__ import annotations

import asyncio
import logging
from typing import List

from usbhub.models.records import ConnectedClient
from usbhub.store import ClientStore

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Mirror of live connection identities, persisted through :class:`ClientStore`.

    Each call runs the blocking store operation in a worker thread. Nothing
    here holds state between calls, so concurrent connects and disconnects
    from different connections only meet inside the store's transactions.
    """

    def __init__(self, store: ClientStore) -> None:
        self.store = store

    async def upsert(self, client: ConnectedClient) -> ConnectedClient:
        stored = await asyncio.to_thread(self.store.upsert, client)
        logger.debug("Registry upsert %s as %r", stored.connection_id, stored.name)
        return stored

    async def remove(self, connection_id: str) -> bool:
        removed = await asyncio.to_thread(self.store.remove, connection_id)
        if not removed:
            logger.debug("Registry remove %s: no row present", connection_id)
        return removed

    async def list(self) -> List[ConnectedClient]:
        return await asyncio.to_thread(self.store.list)

    async def clear(self) -> int:
        return await asyncio.to_thread(self.store.clear)


__all__ = ["ConnectionRegistry"]
