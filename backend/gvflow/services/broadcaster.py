"""LiveClientBroadcaster pushes variable events to long-lived client connections."""

import asyncio
import inspect
import json
import logging
import random
import string
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from gvflow.identifiers import field_from_identifier
from gvflow.models.event import VariableEvent, VariableEventType
from gvflow.models.variable import Variable
from gvflow.services.event_bus import EventBus

logger = logging.getLogger(__name__)

ClientWriter = Callable[[str], Awaitable[None] | None]

# Per-client backlog before a queue-backed client is considered stuck
CLIENT_QUEUE_SIZE = 1000

# Longest a single client write may take before the client is marked dead
WRITE_TIMEOUT_SECONDS = 5.0


def _client_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"client_{int(time.time() * 1000)}_{suffix}"


def format_sse(message: dict[str, Any]) -> str:
    """Encode a message as a server-sent event frame."""
    return f"data: {json.dumps(message, ensure_ascii=False)}\n\n"


def short_form_id(variable: Variable) -> str:
    """``{type}_{entityId}_{field}`` id understood by older clients."""
    field_name = field_from_identifier(variable.identifier)
    return f"{variable.source.type.value}_{variable.source.id}_{field_name}"


@dataclass(eq=False)
class ClientConnection:
    """A connected client and its liveness bookkeeping."""

    id: str
    writer: ClientWriter
    connected_at: datetime = field(default_factory=datetime.now)
    last_activity_at: datetime = field(default_factory=datetime.now)
    is_active: bool = True
    queue: asyncio.Queue | None = None


class LiveClientBroadcaster:
    """Fan-out consumer of the event bus.

    Responsibilities:
    - Register and remove client connections
    - Serialize every variable event into a ``sync`` message for all clients
    - Push periodic ``keepalive`` messages
    - Evict dead or idle connections
    """

    def __init__(
        self,
        bus: EventBus,
        heartbeat_seconds: float = 15.0,
        cleanup_seconds: float = 60.0,
        idle_timeout_seconds: float = 180.0,
        write_timeout_seconds: float = WRITE_TIMEOUT_SECONDS,
    ):
        self._bus = bus
        self._clients: dict[str, ClientConnection] = {}
        self._heartbeat_seconds = heartbeat_seconds
        self._cleanup_seconds = cleanup_seconds
        self._idle_timeout = timedelta(seconds=idle_timeout_seconds)
        self._write_timeout = write_timeout_seconds
        self._heartbeat_task: asyncio.Task | None = None
        self._cleanup_task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def active_client_count(self) -> int:
        """Number of clients still considered live."""
        return sum(1 for c in self._clients.values() if c.is_active)

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Subscribe to the bus and start the heartbeat and cleanup timers."""
        if self._unsubscribe is None:
            self._unsubscribe = self._bus.subscribe_many(
                {event_type: self.handle_event for event_type in VariableEventType}
            )
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Started live client broadcaster")

    async def shutdown(self) -> None:
        """Stop timers, detach from the bus and close every connection."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        for task in (self._heartbeat_task, self._cleanup_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._heartbeat_task = None
        self._cleanup_task = None

        for client_id in list(self._clients):
            self.remove_client(client_id)

        logger.info("Live client broadcaster shutdown complete")

    # ==================== Clients ====================

    async def add_client(self, writer: ClientWriter | None = None) -> str:
        """Register a connection and greet it with a ``connected`` message.

        Args:
            writer: Callable receiving encoded frames. When omitted the client
                is queue-backed and read through ``stream``.

        Returns:
            The new client id.
        """
        client_id = _client_id()
        queue: asyncio.Queue | None = None
        if writer is None:
            queue = asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE)
            writer = queue.put_nowait

        client = ClientConnection(id=client_id, writer=writer, queue=queue)
        self._clients[client_id] = client
        logger.info(f"Client {client_id} connected (total clients: {len(self._clients)})")

        await self._write(
            client,
            {
                "type": "connected",
                "clientId": client_id,
                "timestamp": datetime.utcnow().isoformat(),
            },
        )
        return client_id

    def remove_client(self, client_id: str) -> bool:
        """Forget a connection, ending its stream if it is queue-backed."""
        client = self._clients.pop(client_id, None)
        if client is None:
            return False
        client.is_active = False
        if client.queue is not None:
            try:
                client.queue.put_nowait(None)
            except asyncio.QueueFull:
                pass
        logger.info(f"Client {client_id} disconnected (total clients: {len(self._clients)})")
        return True

    def get_client(self, client_id: str) -> ClientConnection | None:
        """Look up a connection by id."""
        return self._clients.get(client_id)

    async def stream(self, client_id: str) -> AsyncIterator[str]:
        """Yield the frames queued for a queue-backed client until it is removed."""
        client = self._clients.get(client_id)
        if client is None or client.queue is None:
            return
        try:
            while True:
                frame = await client.queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            self.remove_client(client_id)

    # ==================== Broadcasting ====================

    async def handle_event(self, event: VariableEvent) -> None:
        """Broadcast one ``sync`` message per variable carried by an event."""
        for variable in event.variables():
            await self.broadcast(
                {
                    "type": "sync",
                    "eventType": event.type.value,
                    "variableId": variable.identifier,
                    "variableType": variable.type.value,
                    "v3Id": short_form_id(variable),
                    "timestamp": event.timestamp,
                }
            )

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Write a message to every live client.

        Writes run concurrently and each is bounded by the write timeout, so a
        slow client never holds up the others.

        Returns:
            Number of clients the message was delivered to.
        """
        live = [c for c in self._clients.values() if c.is_active]
        results = await asyncio.gather(*(self._write(c, message) for c in live))
        return sum(1 for ok in results if ok)

    async def send_heartbeat(self) -> int:
        """Push a ``keepalive`` message to every live client."""
        return await self.broadcast(
            {
                "type": "keepalive",
                "timestamp": datetime.utcnow().isoformat(),
                "activeClients": self.active_client_count,
            }
        )

    async def cleanup_inactive_clients(self) -> int:
        """Remove clients marked dead or idle past the timeout.

        Returns:
            Number of clients removed.
        """
        now = datetime.now()
        stale = [
            cid
            for cid, c in self._clients.items()
            if not c.is_active or now - c.last_activity_at > self._idle_timeout
        ]
        for client_id in stale:
            self.remove_client(client_id)

        if stale:
            logger.info(f"Cleaned up {len(stale)} inactive client(s)")
        return len(stale)

    async def _write(self, client: ClientConnection, message: dict[str, Any]) -> bool:
        try:
            result = client.writer(format_sse(message))
            if inspect.isawaitable(result):
                await asyncio.wait_for(result, timeout=self._write_timeout)
        except Exception as e:
            client.is_active = False
            logger.warning(f"Write to client {client.id} failed, marking inactive: {e}")
            return False
        client.last_activity_at = datetime.now()
        return True

    async def _heartbeat_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._heartbeat_seconds)
                await self.send_heartbeat()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat task: {e}")

    async def _cleanup_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._cleanup_seconds)
                await self.cleanup_inactive_clients()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in client cleanup task: {e}")

    def get_stats(self) -> dict[str, Any]:
        """Get broadcaster statistics."""
        return {
            "total_clients": len(self._clients),
            "active_clients": self.active_client_count,
            "heartbeat_running": self._heartbeat_task is not None,
            "cleanup_running": self._cleanup_task is not None,
        }
