"""
Consumer session: one connection per partition, merged into one stream.

Every partition connection subscribes under the same subscription name and
runs its own reader. Messages are acknowledged as soon as they arrive, run
through the key filter and handed to the caller's sink in arrival order.
There is no ordering across partitions.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from ..core.cluster_registry import ClusterRegistry
from ..core.config import DEFAULT_HISTORY_LIMIT, ClusterName, StreamEndpoint
from ..core.errors import PulsarViewError, TransportError
from ..core.key_filter import KeyFilter, KeyFilterMode
from ..core.models import (
    AckFrame,
    ConsumeFrame,
    ReceivedMessage,
    StartPosition,
    SubscriptionType,
)
from ..core.topic_address import TopicAddress
from .session import (
    MessagingSession,
    PartitionKey,
    PartitionMetadataSource,
    SessionEventKind,
    SessionState,
    consumer_url,
    decode_payload,
)
from .transport import StreamConnection, StreamConnector

type MessageSink = Callable[[ReceivedMessage], None]


@dataclass(frozen=True, slots=True)
class ConsumerConfig:
    """What to consume.

    ``partitions`` None means every partition, unless ``topic`` itself names one.
    """

    topic: TopicAddress
    subscription: str
    start_position: StartPosition = StartPosition.LATEST
    subscription_type: SubscriptionType | None = None
    partitions: tuple[int, ...] | None = None

    def __post_init__(self) -> None:
        if not self.subscription.strip():
            raise ValueError("Subscription name is required")
        if self.partitions is not None:
            if any(p < 0 for p in self.partitions):
                raise ValueError(f"Partition indices must be >= 0: {self.partitions}")
            object.__setattr__(self, "partitions", tuple(sorted(set(self.partitions))))

    @property
    def selected_partitions(self) -> tuple[int, ...] | None:
        if self.partitions is not None:
            return self.partitions
        if self.topic.partition_index is not None:
            return (self.topic.partition_index,)
        return None


@dataclass(slots=True)
class _OpenResult:
    opened: dict[PartitionKey, StreamConnection] = field(default_factory=dict)
    failed: dict[PartitionKey, BaseException] = field(default_factory=dict)


class ConsumerSession(MessagingSession):
    component = "ConsumerSession"

    def __init__(
        self,
        endpoint: StreamEndpoint,
        metadata: PartitionMetadataSource,
        config: ConsumerConfig,
        connector: StreamConnector | None = None,
        on_message: MessageSink | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        super().__init__(endpoint, metadata, connector)
        self.config = config
        self.on_message = on_message
        self.filter = KeyFilter()
        self.history: deque[ReceivedMessage] = deque(maxlen=history_limit)

    @classmethod
    def for_cluster(
        cls,
        registry: ClusterRegistry,
        cluster: ClusterName,
        config: ConsumerConfig,
        connector: StreamConnector | None = None,
        on_message: MessageSink | None = None,
    ) -> ConsumerSession:
        return cls(
            registry.stream_endpoint(cluster),
            registry.resolve(cluster),
            config,
            connector,
            on_message,
            registry.settings.history_limit,
        )

    def configure_filter(
        self, pattern: str, mode: KeyFilterMode = KeyFilterMode.EXACT, auto_stop: bool = False
    ) -> bool:
        """Install a key filter; False if the pattern was rejected."""
        return self.filter.configure(pattern, mode, auto_stop)

    def selected_partitions(self) -> list[PartitionKey]:
        if self.partition_count == 0:
            return [None]
        selection = self.config.selected_partitions
        if selection is None:
            return list(range(self.partition_count))
        out_of_range = [p for p in selection if p >= self.partition_count]
        if out_of_range:
            raise ValueError(
                f"Partitions {out_of_range} out of range "
                f"(topic has {self.partition_count})"
            )
        return list(selection)

    async def open(self) -> None:
        """Open one connection per selected partition.

        Partitions that fail to connect are reported and skipped; the session
        opens as long as at least one connection succeeded.
        """
        if self.state in (SessionState.OPEN, SessionState.CONNECTING):
            return

        self._set_state(SessionState.CONNECTING)
        self.partition_count = await self._resolve_partitions(self.config.topic)
        try:
            selection = self.selected_partitions()
        except ValueError:
            self._set_state(SessionState.IDLE)
            raise

        result = await self._open_all(selection)

        if self.state is not SessionState.CONNECTING:
            # closed while connecting
            await asyncio.gather(
                *(c.close() for c in result.opened.values()), return_exceptions=True
            )
            return

        for key, error in result.failed.items():
            self.counters.errors += 1
            self._log.error("Partition {} failed to connect: {}", key, error)
            self._emit(SessionEventKind.ERROR, partition=key, detail=str(error), error=error)

        if not result.opened:
            self._set_state(SessionState.IDLE)
            raise next(iter(result.failed.values()))

        self._connections = dict(result.opened)
        self._set_state(SessionState.OPEN)
        self._log.info(
            "Consumer {} connected to {} ({} connection(s))",
            self.config.subscription,
            self.config.topic.base(),
            len(self._connections),
        )
        self._emit(SessionEventKind.CONNECTED, detail=f"{len(self._connections)} connection(s)")
        for key, connection in self._connections.items():
            self._spawn_reader(key, self._consume(key, connection))

    async def _open_all(self, selection: Iterable[PartitionKey]) -> _OpenResult:
        keys = list(selection)
        topic = self.config.topic.base()
        urls = [
            consumer_url(
                self.endpoint.base_url,
                self.config.topic if key is None else topic.partition(key),
                self.config.subscription,
                self.config.start_position,
                self.config.subscription_type,
            )
            for key in keys
        ]
        outcomes = await asyncio.gather(
            *(self._connect(url) for url in urls), return_exceptions=True
        )

        result = _OpenResult()
        for key, outcome in zip(keys, outcomes, strict=True):
            if isinstance(outcome, PulsarViewError):
                result.failed[key] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.opened[key] = outcome
        return result

    async def reconfigure(self, config: ConsumerConfig) -> None:
        """Swap subscription or partition selection and reconnect if open."""
        was_open = self.state is SessionState.OPEN
        if was_open:
            self._set_state(SessionState.CLOSING)
            await self._teardown()
            self._set_state(SessionState.IDLE)
            self._emit(SessionEventKind.DISCONNECTED, detail="reconfigure")
        self.config = config
        if was_open:
            await self.open()

    async def reconnect(self) -> None:
        if self.state is SessionState.OPEN:
            await self.reconfigure(self.config)
        else:
            await self.open()

    def export_messages(self) -> dict[str, Any]:
        """History as a JSON-ready document."""
        return {
            "topic": str(self.config.topic.base()),
            "subscription": self.config.subscription,
            "exportedAt": datetime.now(UTC).isoformat(),
            "count": len(self.history),
            "messages": [m.to_dict() for m in self.history],
        }

    def clear_history(self) -> None:
        self.history.clear()

    async def _consume(self, key: PartitionKey, connection: StreamConnection) -> None:
        while True:
            try:
                raw = await connection.receive()
            except TransportError as e:
                await self._partition_failed(key, connection, e)
                return
            if raw is None:
                await self._partition_failed(key, connection, None)
                return
            if self.state is not SessionState.OPEN:
                return
            await self._handle_frame(key, connection, raw)

    async def _handle_frame(
        self, key: PartitionKey, connection: StreamConnection, raw: str
    ) -> None:
        try:
            frame = ConsumeFrame.model_validate_json(raw)
        except ValidationError as e:
            self.counters.errors += 1
            self._log.warning("Dropping malformed frame on partition {}: {}", key, e)
            return

        try:
            await connection.send(AckFrame(message_id=frame.message_id).to_wire())
        except TransportError as e:
            await self._partition_failed(key, connection, e)
            return

        if self.state is not SessionState.OPEN:
            return

        matched = self.filter.matches(frame.key)
        message = ReceivedMessage(
            message_id=frame.message_id,
            payload=decode_payload(frame.payload),
            publish_time=frame.publish_time or "",
            properties=dict(frame.properties),
            key=frame.key,
            redelivery_count=frame.redelivery_count,
            partition=key,
            matched=matched,
            hidden=self.filter.should_hide(frame.key),
        )
        self.counters.received += 1
        self.history.append(message)
        self._deliver(message)

        if self.filter.should_stop(frame.key):
            await self._stop_on_match(message)

    def _deliver(self, message: ReceivedMessage) -> None:
        if self.on_message is None:
            return
        try:
            self.on_message(message)
        except Exception as e:
            self._log.error("Message sink failed on {}: {}", message.message_id, e)

    async def _stop_on_match(self, message: ReceivedMessage) -> None:
        if self.state is not SessionState.OPEN:
            return
        self._begin_closing()
        self._log.info(
            "Key {!r} matched on partition {}, stopping", message.key, message.partition
        )
        self._emit(
            SessionEventKind.STOPPED_ON_MATCH,
            partition=message.partition,
            message_id=message.message_id,
            message=message,
        )
        await self._teardown()
        self._finish_closing()

    async def _partition_failed(
        self,
        key: PartitionKey,
        connection: StreamConnection,
        error: TransportError | None,
    ) -> None:
        """Drop one partition connection; its siblings keep running."""
        if self.state is not SessionState.OPEN or self._connections.get(key) is not connection:
            return

        del self._connections[key]
        if self._readers.get(key) is asyncio.current_task():
            del self._readers[key]
        await connection.close()

        if error is not None:
            self.counters.errors += 1
            self._log.error("Partition {} connection failed: {}", key, error)
            self._emit(SessionEventKind.ERROR, partition=key, detail=str(error), error=error)
        self._emit(SessionEventKind.DISCONNECTED, partition=key, detail="partition closed")

        if not self._connections and self.state is SessionState.OPEN:
            self._set_state(SessionState.IDLE)
            self._emit(SessionEventKind.DISCONNECTED, detail="all partitions closed")
