from __future__ import annotations
import contextlib, json, logging, secrets, time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.exc import SQLAlchemyError

from usbhub.activity import ActivityLog
from usbhub.config import HubSettings
from usbhub.exceptions import HubError, InvocationError
from usbhub.hub import Hub, HubConnection
from usbhub.registry import ConnectionRegistry
from usbhub.router import MessageRouter
from usbhub.store import ClientStore, Database, EventStore

logger = logging.getLogger("usbhub.api")


@dataclass
class HubRuntime:
    """Everything one running app needs, built once per app."""

    settings: HubSettings
    database: Database
    clients: ClientStore
    events: EventStore
    hub: Hub

    @classmethod
    def build(cls, settings: HubSettings) -> "HubRuntime":
        database = Database(settings.database_url)
        database.create_all()
        clients = ClientStore(database)
        events = EventStore(
            database,
            default_limit=settings.events_default_limit,
            max_limit=settings.events_max_limit,
        )
        activity = ActivityLog(settings.activity_log) if settings.activity_log else None
        hub = Hub(ConnectionRegistry(clients), MessageRouter(), events, activity=activity)
        if settings.purge_clients_on_startup:
            stale = clients.clear()
            if stale:
                logger.info("Removed %d stale client rows left by a previous run", stale)
        return cls(settings=settings, database=database, clients=clients, events=events, hub=hub)

    def close(self) -> None:
        self.database.dispose()


def get_runtime(app: FastAPI) -> HubRuntime:
    runtime: Optional[HubRuntime] = getattr(app.state, "runtime", None)
    if runtime is None:
        runtime = HubRuntime.build(app.state.settings)
        app.state.runtime = runtime
    return runtime


def _new_connection_id() -> str:
    return secrets.token_urlsafe(16)


async def _complete(connection: HubConnection, invocation_id: Any, *, result: Any = None, error: Optional[str] = None) -> None:
    message: dict = {"type": "completion", "invocationId": invocation_id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    await connection.send(message)


async def _handle_frame(hub: Hub, connection: HubConnection, text: str) -> None:
    """Decode one inbound text frame and run the invocation it carries."""
    try:
        frame = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as exc:
        await _complete(connection, None, error=f"invalid frame JSON: {exc}")
        return
    if not isinstance(frame, dict):
        await _complete(connection, None, error="frame must be a JSON object")
        return

    invocation_id = frame.get("invocationId")
    try:
        frame_type = frame.get("type") or "invocation"
        if frame_type != "invocation":
            raise InvocationError(f"unsupported frame type {frame_type!r}")
        arguments = frame.get("arguments")
        if arguments is not None and not isinstance(arguments, list):
            raise InvocationError("arguments must be a list")
        result = await hub.invoke(connection, frame.get("target"), arguments)
    except (HubError, SQLAlchemyError) as exc:
        if isinstance(exc, HubError):
            logger.warning("Rejected call from %s: %s", connection.connection_id, exc)
        if invocation_id is not None:
            await _complete(connection, invocation_id, error=str(exc))
        return
    if invocation_id is not None:
        await _complete(connection, invocation_id, result=result)


def create_app(settings: Optional[HubSettings] = None) -> FastAPI:
    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        get_runtime(app)
        try:
            yield
        finally:
            runtime = getattr(app.state, "runtime", None)
            if runtime is not None:
                runtime.close()
                app.state.runtime = None

    app = FastAPI(title="USB Hub", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings or HubSettings.from_env()
    app.state.runtime = None

    @app.get("/health")
    def health():
        return {"status": "ok", "time": time.time()}

    @app.get("/clients")
    def clients():
        return [client.to_dict() for client in get_runtime(app).clients.list()]

    @app.get("/events")
    def recent_events(
        limit: Optional[int] = Query(None, description="Number of events; clamped to the configured maximum"),
    ):
        return [event.to_dict() for event in get_runtime(app).events.recent(limit)]

    @app.delete("/events/{event_id}")
    def delete_event(event_id: int):
        removed = get_runtime(app).events.delete_by_id(event_id)
        return {"status": "deleted" if removed else "absent", "id": event_id}

    @app.websocket("/hub")
    async def hub_socket(ws: WebSocket, username: Optional[str] = Query(None)):
        runtime = get_runtime(app)
        await ws.accept()
        connection = HubConnection(_new_connection_id(), ws.send_json)
        remote_address = ws.client.host if ws.client else None
        try:
            await runtime.hub.on_connected(connection, username, remote_address)
        except Exception:
            logger.exception("Failed to register connection %s", connection.connection_id)
            await ws.close(code=1011)
            return

        error: Optional[BaseException] = None
        try:
            await connection.send({"type": "connected", "connectionId": connection.connection_id})
            while True:
                text = await ws.receive_text()
                await _handle_frame(runtime.hub, connection, text)
        except WebSocketDisconnect:
            pass
        except Exception as exc:
            error = exc
            logger.exception("Hub connection %s failed", connection.connection_id)
        finally:
            await runtime.hub.on_disconnected(connection, error)

    return app


app = create_app()
