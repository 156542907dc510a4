"""Producer session: one streaming connection, asynchronous ack accounting."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace

import ulid
from pydantic import ValidationError

from ..core.cluster_registry import ClusterRegistry
from ..core.config import ClusterName, StreamEndpoint
from ..core.errors import NotConnectedError, TransportError
from ..core.models import ProduceFrame, ProducerAck
from ..core.topic_address import TopicAddress
from .session import (
    MessagingSession,
    PartitionKey,
    PartitionMetadataSource,
    SessionEventKind,
    SessionState,
    encode_payload,
    producer_url,
)
from .transport import StreamConnection, StreamConnector


@dataclass(frozen=True, slots=True)
class ProducerConfig:
    """Target of a producer session.

    ``partition`` selects a partition of a partitioned topic. When it is None
    the partition named by ``topic`` is used, if any; otherwise the broker
    routes across partitions.
    """

    topic: TopicAddress
    partition: int | None = None

    def __post_init__(self) -> None:
        if self.partition is not None and self.partition < 0:
            raise ValueError(f"Partition index must be >= 0, got {self.partition}")

    @property
    def selected_partition(self) -> int | None:
        if self.partition is not None:
            return self.partition
        return self.topic.partition_index


class ProducerSession(MessagingSession):
    component = "ProducerSession"

    def __init__(
        self,
        endpoint: StreamEndpoint,
        metadata: PartitionMetadataSource,
        config: ProducerConfig,
        connector: StreamConnector | None = None,
    ) -> None:
        super().__init__(endpoint, metadata, connector)
        self.config = config
        self._pending: dict[str, PartitionKey] = {}

    @classmethod
    def for_cluster(
        cls,
        registry: ClusterRegistry,
        cluster: ClusterName,
        config: ProducerConfig,
        connector: StreamConnector | None = None,
    ) -> ProducerSession:
        return cls(
            registry.stream_endpoint(cluster),
            registry.resolve(cluster),
            config,
            connector,
        )

    @property
    def pending(self) -> int:
        """Sends still waiting for an acknowledgment."""
        return len(self._pending)

    @property
    def target(self) -> TopicAddress:
        """The physical topic the connection is (or will be) bound to."""
        if not self.partition_count:
            return self.config.topic
        topic = self.config.topic.base()
        partition = self.config.selected_partition
        return topic if partition is None else topic.partition(partition)

    async def open(self) -> None:
        if self.state in (SessionState.OPEN, SessionState.CONNECTING):
            return

        self._set_state(SessionState.CONNECTING)
        self.partition_count = await self._resolve_partitions(self.config.topic)
        partition = self.config.selected_partition
        if self.partition_count and partition is not None and partition >= self.partition_count:
            self._set_state(SessionState.IDLE)
            raise ValueError(
                f"Partition {partition} out of range "
                f"(topic has {self.partition_count})"
            )

        target = self.target
        url = producer_url(self.endpoint.base_url, target)
        try:
            connection = await self._connect(url)
        except TransportError as e:
            self._set_state(SessionState.IDLE)
            self.counters.errors += 1
            self._emit(SessionEventKind.ERROR, detail=str(e), error=e)
            raise

        if self.state is not SessionState.CONNECTING:
            # closed while connecting
            await connection.close()
            return

        key = target.partition_index
        self._connections = {key: connection}
        self._set_state(SessionState.OPEN)
        self._log.info("Producer connected to {}", target)
        self._emit(SessionEventKind.CONNECTED, partition=key)
        self._spawn_reader(key, self._read_acks(key, connection))

    async def send(
        self,
        payload: str | bytes,
        key: str | None = None,
        properties: Mapping[str, str] | None = None,
    ) -> str:
        """Send one message and return its correlation id.

        The outcome arrives later as a MESSAGE_SENT or SEND_FAILED event.
        """
        if self.state is not SessionState.OPEN or not self._connections:
            raise NotConnectedError(f"Producer is {self.state.value}, not open")

        partition, connection = next(iter(self._connections.items()))
        correlation_id = str(ulid.new())
        frame = ProduceFrame(
            payload=encode_payload(payload),
            properties=dict(properties or {}),
            key=key or None,
            correlation_id=correlation_id,
        )

        self._pending[correlation_id] = partition
        try:
            await connection.send(frame.to_wire())
        except TransportError as e:
            self._pending.pop(correlation_id, None)
            self._emit(
                SessionEventKind.SEND_FAILED,
                partition=partition,
                correlation_id=correlation_id,
                detail=str(e),
                error=e,
            )
            await self._connection_failed(connection, e)
            raise
        return correlation_id

    async def switch_partition(self, partition: int | None) -> None:
        """Rebind to another partition. Unacknowledged sends count as lost."""
        await self.reconfigure(
            replace(self.config, topic=self.config.topic.base(), partition=partition)
        )

    async def reconfigure(self, config: ProducerConfig) -> None:
        was_open = self.state is SessionState.OPEN
        if was_open:
            self._abandon_pending()
            await self._teardown()
            self._set_state(SessionState.IDLE)
            self._emit(SessionEventKind.DISCONNECTED, detail="reconfigure")
        self.config = config
        if was_open:
            await self.open()

    async def reconnect(self) -> None:
        """Explicit reconnect after a failure, or a fresh connection if open."""
        await self.reconfigure(self.config)
        if self.state is not SessionState.OPEN:
            await self.open()

    def _before_teardown(self) -> None:
        self._abandon_pending()

    def _abandon_pending(self) -> None:
        if self._pending:
            self._log.warning("Abandoning {} unacknowledged send(s)", len(self._pending))
            self.counters.lost += len(self._pending)
            self._pending.clear()

    async def _read_acks(self, partition: PartitionKey, connection: StreamConnection) -> None:
        while True:
            try:
                raw = await connection.receive()
            except TransportError as e:
                await self._connection_failed(connection, e)
                return
            if raw is None:
                await self._connection_failed(connection, None)
                return
            if self._connections.get(partition) is not connection:
                return
            self._handle_ack(partition, raw)

    def _handle_ack(self, partition: PartitionKey, raw: str) -> None:
        try:
            ack = ProducerAck.model_validate_json(raw)
        except ValidationError as e:
            self._log.warning("Malformed producer ack: {}", e)
            correlation_id = self._pop_pending(None)
            self.counters.errors += 1
            self._emit(
                SessionEventKind.SEND_FAILED,
                partition=partition,
                correlation_id=correlation_id,
                detail="malformed acknowledgment",
            )
            return

        correlation_id = self._pop_pending(ack.correlation_id)
        if ack.ok:
            self.counters.sent += 1
            self._emit(
                SessionEventKind.MESSAGE_SENT,
                partition=partition,
                correlation_id=correlation_id,
                message_id=ack.message_id,
            )
        else:
            self.counters.errors += 1
            self._emit(
                SessionEventKind.SEND_FAILED,
                partition=partition,
                correlation_id=correlation_id,
                detail=ack.error_msg or f"unexpected result {ack.result!r}",
            )

    def _pop_pending(self, correlation_id: str | None) -> str | None:
        # acks arrive in send order on one connection, so fall back to the oldest
        if correlation_id is not None and correlation_id in self._pending:
            del self._pending[correlation_id]
            return correlation_id
        if self._pending:
            oldest = next(iter(self._pending))
            del self._pending[oldest]
            return oldest
        return correlation_id

    async def _connection_failed(
        self, connection: StreamConnection, error: TransportError | None
    ) -> None:
        if self.state is not SessionState.OPEN or connection not in self._connections.values():
            return

        self._abandon_pending()
        self._set_state(SessionState.IDLE)
        await self._teardown()
        if error is not None:
            self.counters.errors += 1
            self._log.error("Producer connection failed: {}", error)
            self._emit(SessionEventKind.ERROR, detail=str(error), error=error)
        self._emit(SessionEventKind.DISCONNECTED, detail="connection lost")
