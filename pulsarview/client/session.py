"""
Shared machinery for producer and consumer sessions.

A session owns every streaming connection it opens, one per partition (or a
single one for unpartitioned topics), together with the reader task that
drains it. Nothing here reconnects on its own: after a transport failure the
session reports it and waits for an explicit ``reconnect``.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import time
from collections import deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from urllib.parse import quote, urlencode

from loguru import logger

from ..core.config import StreamEndpoint
from ..core.errors import PulsarViewError
from ..core.models import (
    PartitionedTopicMetadata,
    ReceivedMessage,
    StartPosition,
    SubscriptionType,
)
from ..core.topic_address import TopicAddress
from .transport import StreamConnection, StreamConnector, WebSocketStreamConnector

type PartitionKey = int | None
type EventListener = Callable[[SessionEvent], None]

STREAM_PREFIX = "/ws/v2"
EVENT_HISTORY_LIMIT = 100


class SessionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class SessionEventKind(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    MESSAGE_SENT = "message_sent"
    SEND_FAILED = "send_failed"
    ERROR = "error"
    STOPPED_ON_MATCH = "stopped_on_match"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    kind: SessionEventKind
    partition: PartitionKey = None
    detail: str = ""
    correlation_id: str | None = None
    message_id: str | None = None
    message: ReceivedMessage | None = None
    error: BaseException | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass(slots=True)
class SessionCounters:
    """Monotonic counters. Only ever updated between awaits."""

    sent: int = 0
    received: int = 0
    errors: int = 0
    lost: int = 0

    def snapshot(self) -> dict[str, int]:
        return {
            "sent": self.sent,
            "received": self.received,
            "errors": self.errors,
            "lost": self.lost,
        }


class SessionEventChannel:
    """Per-session observer list with a short history."""

    def __init__(self, max_history: int = EVENT_HISTORY_LIMIT) -> None:
        self._listeners: list[EventListener] = []
        self._history: deque[SessionEvent] = deque(maxlen=max_history)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: SessionEvent) -> None:
        self._history.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "Session event listener {} failed on {}: {}",
                    getattr(listener, "__name__", type(listener).__name__),
                    event.kind.value,
                    e,
                )

    def recent(self, limit: int = 10) -> list[SessionEvent]:
        return list(self._history)[-limit:]

    def count(self, kind: SessionEventKind) -> int:
        return sum(1 for e in self._history if e.kind is kind)


class PartitionMetadataSource(Protocol):
    async def get_partitioned_metadata(
        self, topic: TopicAddress | str
    ) -> PartitionedTopicMetadata: ...


# ==================== URLs and payloads ====================


def producer_url(base_url: str, address: TopicAddress) -> str:
    return f"{base_url.rstrip('/')}{STREAM_PREFIX}/producer/{address.rest_path()}"


def consumer_url(
    base_url: str,
    address: TopicAddress,
    subscription: str,
    start_position: StartPosition = StartPosition.LATEST,
    subscription_type: SubscriptionType | None = None,
) -> str:
    params = {"initialPosition": start_position.value}
    if subscription_type is not None:
        params["subscriptionType"] = subscription_type.value
    return (
        f"{base_url.rstrip('/')}{STREAM_PREFIX}/consumer/{address.rest_path()}/"
        f"{quote(subscription, safe='')}?{urlencode(params)}"
    )


def auth_headers(endpoint: StreamEndpoint) -> dict[str, str]:
    if endpoint.auth_token:
        return {"Authorization": f"Bearer {endpoint.auth_token}"}
    return {}


def encode_payload(payload: str | bytes) -> str:
    data = payload.encode("utf-8") if isinstance(payload, str) else payload
    return base64.b64encode(data).decode("ascii")


def decode_payload(data: str) -> str:
    """Base64-decode a payload and pretty-print it when it is JSON.

    Never fails: undecodable input is returned as received, and non-JSON text
    is returned as decoded.
    """
    try:
        text = base64.b64decode(data, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return data
    try:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
    except ValueError:
        return text


# ==================== Base session ====================


class MessagingSession:
    """State, counters, events and connection bookkeeping for one topic."""

    component = "MessagingSession"

    def __init__(
        self,
        endpoint: StreamEndpoint,
        metadata: PartitionMetadataSource,
        connector: StreamConnector | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.metadata = metadata
        self.connector: StreamConnector = connector or WebSocketStreamConnector()
        self.state = SessionState.IDLE
        self.partition_count = 0
        self.counters = SessionCounters()
        self.events = SessionEventChannel()
        self._connections: dict[PartitionKey, StreamConnection] = {}
        self._readers: dict[PartitionKey, asyncio.Task[None]] = {}
        self._closed = asyncio.Event()
        self._log = logger.bind(
            component=self.component, cluster=endpoint.cluster_name
        )

    @property
    def connections(self) -> dict[PartitionKey, StreamConnection]:
        """Snapshot of the open connections keyed by partition."""
        return dict(self._connections)

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    def _set_state(self, state: SessionState) -> None:
        if state is not self.state:
            self._log.debug("{} -> {}", self.state.value, state.value)
            self.state = state

    def _emit(self, kind: SessionEventKind, **kwargs: Any) -> None:
        self.events.emit(SessionEvent(kind, **kwargs))

    async def _resolve_partitions(self, address: TopicAddress) -> int:
        """Partition count, treating any lookup failure as unpartitioned."""
        try:
            metadata = await self.metadata.get_partitioned_metadata(address.base())
        except PulsarViewError as e:
            self._log.debug("Partition lookup failed for {}: {}", address, e)
            return 0
        return metadata.partitions

    async def _connect(self, url: str) -> StreamConnection:
        return await self.connector.connect(
            url, auth_headers(self.endpoint), self.endpoint.allow_insecure_tls
        )

    def _spawn_reader(
        self, key: PartitionKey, coro: Coroutine[Any, Any, None]
    ) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"{self.component}-reader-{key}")
        self._readers[key] = task
        task.add_done_callback(lambda t, k=key: self._reader_done(k, t))
        return task

    def _reader_done(self, key: PartitionKey, task: asyncio.Task[None]) -> None:
        if self._readers.get(key) is task:
            del self._readers[key]
        if not task.cancelled() and task.exception() is not None:
            self._log.error("Reader for partition {} failed: {}", key, task.exception())

    def _begin_closing(self) -> None:
        self._closed.clear()
        self._set_state(SessionState.CLOSING)

    def _finish_closing(self) -> None:
        self._set_state(SessionState.CLOSED)
        self._closed.set()

    async def _teardown(self) -> None:
        """Close every connection and stop every reader except the caller."""
        current = asyncio.current_task()
        readers = [t for t in self._readers.values() if t is not current]
        self._readers.clear()
        for task in readers:
            task.cancel()

        connections = list(self._connections.values())
        self._connections.clear()
        await asyncio.gather(*(c.close() for c in connections), return_exceptions=True)
        await asyncio.gather(*readers, return_exceptions=True)

    async def close(self) -> None:
        """Close every connection. Safe to call repeatedly and concurrently."""
        if self.state is SessionState.CLOSED:
            return
        if self.state is SessionState.CLOSING:
            await self._closed.wait()
            return

        self._begin_closing()
        self._before_teardown()
        await self._teardown()
        self._finish_closing()
        self._emit(SessionEventKind.DISCONNECTED, detail="closed")

    def _before_teardown(self) -> None:
        pass

    async def __aenter__(self) -> MessagingSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
