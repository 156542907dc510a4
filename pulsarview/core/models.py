"""
Data transfer objects for the admin REST surface and the streaming protocol.

Admin responses keep unknown fields (brokers add fields between releases).
Streaming frames use the broker's camelCase field names on the wire and
snake_case attributes in Python.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _AdminModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class _Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class SubscriptionType(Enum):
    EXCLUSIVE = "Exclusive"
    SHARED = "Shared"
    FAILOVER = "Failover"
    KEY_SHARED = "Key_Shared"


class StartPosition(Enum):
    EARLIEST = "Earliest"
    LATEST = "Latest"


# ==================== Admin models ====================


class PartitionedTopicMetadata(_AdminModel):
    partitions: int = Field(default=0, ge=0, description="0 means non-partitioned.")

    @property
    def is_partitioned(self) -> bool:
        return self.partitions > 0


class TenantInfo(_AdminModel):
    admin_roles: list[str] = Field(default_factory=list, alias="adminRoles")
    allowed_clusters: list[str] = Field(default_factory=list, alias="allowedClusters")


class ClusterInfo(_AdminModel):
    service_url: str | None = Field(default=None, alias="serviceUrl")
    service_url_tls: str | None = Field(default=None, alias="serviceUrlTls")
    broker_service_url: str | None = Field(default=None, alias="brokerServiceUrl")
    broker_service_url_tls: str | None = Field(
        default=None, alias="brokerServiceUrlTls"
    )
    peer_cluster_names: list[str] | None = Field(default=None, alias="peerClusterNames")


class ConsumerStats(_AdminModel):
    consumer_name: str | None = Field(default=None, alias="consumerName")
    address: str | None = None
    connected_since: str | None = Field(default=None, alias="connectedSince")
    msg_rate_out: float = Field(default=0.0, alias="msgRateOut")
    unacked_messages: int = Field(default=0, alias="unackedMessages")


class PublisherStats(_AdminModel):
    producer_id: int | None = Field(default=None, alias="producerId")
    producer_name: str | None = Field(default=None, alias="producerName")
    address: str | None = None
    msg_rate_in: float = Field(default=0.0, alias="msgRateIn")


class SubscriptionStats(_AdminModel):
    msg_rate_out: float = Field(default=0.0, alias="msgRateOut")
    msg_throughput_out: float = Field(default=0.0, alias="msgThroughputOut")
    msg_backlog: int = Field(default=0, alias="msgBacklog")
    unacked_messages: int = Field(default=0, alias="unackedMessages")
    type: SubscriptionType | None = None
    consumers: list[ConsumerStats] = Field(default_factory=list)
    is_durable: bool | None = Field(default=None, alias="isDurable")


class TopicStats(_AdminModel):
    msg_rate_in: float = Field(default=0.0, alias="msgRateIn")
    msg_rate_out: float = Field(default=0.0, alias="msgRateOut")
    msg_throughput_in: float = Field(default=0.0, alias="msgThroughputIn")
    msg_throughput_out: float = Field(default=0.0, alias="msgThroughputOut")
    average_msg_size: float = Field(default=0.0, alias="averageMsgSize")
    storage_size: int = Field(default=0, alias="storageSize")
    backlog_size: int = Field(default=0, alias="backlogSize")
    publishers: list[PublisherStats] = Field(default_factory=list)
    subscriptions: dict[str, SubscriptionStats] = Field(default_factory=dict)


class SchemaInfo(_AdminModel):
    name: str | None = None
    type: str
    schema_definition: str = Field(default="", alias="schema")
    properties: dict[str, str] = Field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SubscriptionSummary:
    """Read-only projection used to annotate subscriptions in listings."""

    name: str
    type: SubscriptionType | None
    backlog: int

    @classmethod
    def from_stats(cls, name: str, stats: SubscriptionStats | None) -> SubscriptionSummary:
        if stats is None:
            return cls(name=name, type=None, backlog=0)
        return cls(name=name, type=stats.type, backlog=stats.msg_backlog)


# ==================== Streaming frames ====================


class ProduceFrame(_Frame):
    """Outbound producer frame. The correlation id travels in ``context``."""

    payload: str = Field(description="Base64-encoded message body.")
    properties: dict[str, str] = Field(default_factory=dict)
    key: str | None = None
    correlation_id: str = Field(alias="context")


class ProducerAck(_Frame):
    """Inbound producer response: ``{result: ok, messageId}`` or ``{errorMsg}``."""

    result: str | None = None
    message_id: str | None = Field(default=None, alias="messageId")
    error_msg: str | None = Field(default=None, alias="errorMsg")
    correlation_id: str | None = Field(default=None, alias="context")

    @property
    def ok(self) -> bool:
        return self.result == "ok" and not self.error_msg


class ConsumeFrame(_Frame):
    """Inbound consumer frame carrying one message."""

    message_id: str = Field(alias="messageId")
    payload: str = ""
    publish_time: str | None = Field(default=None, alias="publishTime")
    properties: dict[str, str] = Field(default_factory=dict)
    key: str | None = None
    redelivery_count: int | None = Field(default=None, alias="redeliveryCount")


class AckFrame(_Frame):
    """Outbound consumer acknowledgment."""

    message_id: str = Field(alias="messageId")


@dataclass(frozen=True, slots=True)
class ReceivedMessage:
    """A consumed message as presented to the caller's sink."""

    message_id: str
    payload: str
    publish_time: str
    properties: dict[str, str]
    key: str | None
    redelivery_count: int | None
    partition: int | None
    matched: bool = False
    hidden: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "messageId": self.message_id,
            "payload": self.payload,
            "publishTime": self.publish_time,
            "properties": dict(self.properties),
            "key": self.key,
            "redeliveryCount": self.redelivery_count,
            "partition": self.partition,
        }


type AdminResult = dict[str, Any] | list[Any] | str | int | float | bool | None
type SubscriptionPosition = Literal["earliest", "latest"]
