"""Hub orchestrator: connection lifecycle and inbound method dispatch."""
from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from usbhub.activity import ActivityLog
from usbhub.exceptions import ConnectionStateError, InvocationError, UnknownMethodError
from usbhub.models.records import ANONYMOUS_NAME, UNKNOWN_ADDRESS, ConnectedClient, utc_now
from usbhub.normalizer import EventNormalizer, NormalizedReport
from usbhub.registry import ConnectionRegistry
from usbhub.router import MessageRouter
from usbhub.store import EventStore

logger = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class HubConnection:
    """Per-connection state plus a serialized outbound channel."""

    def __init__(self, connection_id: str, send: Sender) -> None:
        self.connection_id = connection_id
        self.state = ConnectionState.CONNECTING
        self.client: Optional[ConnectedClient] = None
        self._send = send
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def send(self, message: Dict[str, Any]) -> None:
        async with self._lock:
            await self._send(message)

    async def send_invocation(self, target: str, arguments: Sequence[Any]) -> None:
        await self.send({"type": "invocation", "target": target, "arguments": list(arguments)})

    def __repr__(self) -> str:
        return f"<HubConnection {self.connection_id} {self.state.value}>"


def _saved(count: int) -> Dict[str, int]:
    return {"saved": count}


# lower-cased method name -> (handler attribute, argument count, result wrapper)
_METHODS: Dict[str, Tuple[str, int, Optional[Callable[[Any], Any]]]] = {
    "sendmessagetoclient": ("send_message_to_client", 3, None),
    "getconnectedclients": ("get_connected_clients", 0, None),
    "reportusbdevices": ("report_usb_devices", 1, _saved),
    "senddevicelist": ("send_device_list", 1, _saved),
}


class Hub:
    """Bind connection lifecycle and hub calls to the registry, router and stores."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: MessageRouter,
        events: EventStore,
        *,
        normalizer: Optional[EventNormalizer] = None,
        activity: Optional[ActivityLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.registry = registry
        self.router = router
        self.events = events
        self.normalizer = normalizer or EventNormalizer(clock)
        self.activity = activity
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def on_connected(
        self,
        connection: HubConnection,
        username: Optional[str] = None,
        remote_address: Optional[str] = None,
    ) -> ConnectedClient:
        if connection.state is not ConnectionState.CONNECTING:
            raise ConnectionStateError(connection.connection_id, connection.state.value, "connect")

        name = (username or "").strip() or ANONYMOUS_NAME
        address = (remote_address or "").strip() or UNKNOWN_ADDRESS
        client = await self.registry.upsert(
            ConnectedClient(
                connection_id=connection.connection_id,
                name=name,
                remote_address=address,
                connected_at=self._clock(),
            )
        )
        connection.client = client
        connection.state = ConnectionState.CONNECTED
        self.router.attach(connection)

        logger.info(
            "Client connected. Connection ID: %s, Name: %s, RemoteIp: %s",
            connection.connection_id,
            name,
            address,
        )
        await self._record("client_connected", connection, extra={"name": name, "remote_address": address})
        return client

    async def on_disconnected(self, connection: HubConnection, error: Optional[BaseException] = None) -> None:
        if connection.state is ConnectionState.DISCONNECTED:
            return
        connection.state = ConnectionState.DISCONNECTED
        self.router.detach(connection.connection_id)
        await self.registry.remove(connection.connection_id)

        if error is not None:
            logger.warning("Client disconnected. Connection ID: %s, Error: %s", connection.connection_id, error)
        else:
            logger.warning("Client disconnected. Connection ID: %s", connection.connection_id)
        await self._record(
            "client_disconnected",
            connection,
            message=str(error) if error is not None else None,
        )

    # ------------------------------------------------------------------
    # Hub methods
    # ------------------------------------------------------------------
    async def invoke(self, connection: HubConnection, target: str, arguments: Optional[Sequence[Any]] = None) -> Any:
        """Dispatch one inbound call by method name (case-insensitive)."""
        entry = _METHODS.get(str(target or "").lower())
        if entry is None:
            raise UnknownMethodError(str(target))
        attribute, arity, wrap = entry
        args = list(arguments or [])
        if len(args) != arity:
            raise InvocationError(f"{target} expects {arity} argument(s), got {len(args)}")
        result = await getattr(self, attribute)(connection, *args)
        return wrap(result) if wrap else result

    async def send_message_to_client(
        self,
        connection: HubConnection,
        target_connection_id: str,
        user: str,
        message: str,
    ) -> None:
        self._require_connected(connection, "send messages")
        target_connection_id = str(target_connection_id)
        logger.info("Direct message - From: %s, To: %s, Message: %s", user, target_connection_id, message)
        delivered = await self.router.route(target_connection_id, user, message)
        await self._record(
            "message_routed",
            connection,
            extra={"target": target_connection_id, "delivered": delivered},
        )

    async def get_connected_clients(self, connection: HubConnection) -> List[Dict[str, Any]]:
        self._require_connected(connection, "query presence")
        return [client.to_dict() for client in await self.registry.list()]

    async def report_usb_devices(self, connection: HubConnection, devices: Any) -> int:
        self._require_connected(connection, "report devices")
        report = self.normalizer.from_device_list(connection.connection_id, devices)
        return await self._persist(connection, report, "ReportUsbDevices")

    async def send_device_list(self, connection: HubConnection, json_payload: Any) -> int:
        self._require_connected(connection, "report devices")
        report = self.normalizer.from_device_list_json(connection.connection_id, json_payload)
        return await self._persist(connection, report, "SendDeviceList")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_connected(self, connection: HubConnection, action: str) -> None:
        if not connection.connected:
            raise ConnectionStateError(connection.connection_id, connection.state.value, action)

    async def _persist(self, connection: HubConnection, report: NormalizedReport, method: str) -> int:
        cid = connection.connection_id
        if report.dropped:
            logger.warning("Dropped %s report. Connection ID: %s, Reason: %s", method, cid, report.error)
            await self._record("report_dropped", connection, message=report.error, extra={"method": method})
            return 0
        if report.empty:
            logger.info("%s report had no valid entries; skipped saving. Connection ID: %s", method, cid)
            await self._record("report_empty", connection, count=0, extra={"method": method})
            return 0

        try:
            stored = await asyncio.to_thread(self.events.append_batch, report.events)
        except SQLAlchemyError as exc:
            logger.exception("Failed to save %d USB devices from %s. Connection ID: %s", len(report.events), method, cid)
            await self._record(
                "report_failed",
                connection,
                count=len(report.events),
                message=str(exc),
                extra={"method": method},
            )
            raise

        logger.info("Saved %d USB devices reported via %s. Connection ID: %s", len(stored), method, cid)
        await self._record("report_saved", connection, count=len(stored), extra={"method": method})
        return len(stored)

    async def _record(
        self,
        event: str,
        connection: HubConnection,
        *,
        count: Optional[int] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        if self.activity is None:
            return
        try:
            await self.activity.log_async(
                event,
                connection_id=connection.connection_id,
                count=count,
                message=message,
                extra=extra,
            )
        except Exception:  # pragma: no cover - I/O failure safeguard
            logger.debug("Activity logging failed for %s", event, exc_info=True)


__all__ = ["ConnectionState", "Hub", "HubConnection"]
