"""Best-effort unicast delivery between live hub connections."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

RECEIVE_MESSAGE = "ReceiveMessage"


class Deliverable(Protocol):
    connection_id: str

    async def send_invocation(self, target: str, arguments: Sequence[Any]) -> None:
        ...


class MessageRouter:
    """Route directed messages to exactly one addressed connection.

    Delivery is fire-and-forget: an unknown target, or one that fails while
    closing, is logged at debug level and otherwise ignored.
    """

    def __init__(self) -> None:
        self._live: Dict[str, Deliverable] = {}

    def attach(self, connection: Deliverable) -> None:
        self._live[connection.connection_id] = connection

    def detach(self, connection_id: str) -> None:
        self._live.pop(connection_id, None)

    def get(self, connection_id: str) -> Optional[Deliverable]:
        return self._live.get(connection_id)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._live

    def __len__(self) -> int:
        return len(self._live)

    async def route(self, target_connection_id: str, sender: str, payload: str) -> bool:
        """Send ``ReceiveMessage(sender, payload)`` to the target; return whether it was live."""
        target = self._live.get(target_connection_id)
        if target is None:
            logger.debug("No live connection %s; message from %s dropped", target_connection_id, sender)
            return False
        try:
            await target.send_invocation(RECEIVE_MESSAGE, [sender, payload])
        except Exception as exc:
            logger.debug("Delivery to %s failed: %s", target_connection_id, exc)
            return False
        return True


__all__ = ["Deliverable", "MessageRouter", "RECEIVE_MESSAGE"]
