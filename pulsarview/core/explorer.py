"""
Browsable cluster tree built from tagged node values.

Each node kind carries only the fields it needs and a ``kind`` tag.
:meth:`ClusterExplorer.children` dispatches on the node type; listing
failures turn into :class:`NoticeNode` entries instead of exceptions so a tree
view keeps rendering the parts the account can see.
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from .cluster_registry import ClusterRegistry
from .config import ClusterName
from .errors import FailureCategory, PulsarViewError, classify_failure
from .models import SubscriptionSummary
from .topic_address import TopicAddress


class NodeKind(Enum):
    CLUSTER = "cluster"
    TENANT = "tenant"
    NAMESPACE = "namespace"
    TOPIC = "topic"
    PARTITION = "partition"
    SUBSCRIPTION = "subscription"
    BROKER = "broker"
    NOTICE = "notice"


@dataclass(frozen=True, slots=True)
class ClusterNode:
    cluster: ClusterName
    kind: NodeKind = field(default=NodeKind.CLUSTER, init=False)

    @property
    def label(self) -> str:
        return self.cluster


@dataclass(frozen=True, slots=True)
class TenantNode:
    cluster: ClusterName
    tenant: str
    kind: NodeKind = field(default=NodeKind.TENANT, init=False)

    @property
    def label(self) -> str:
        return self.tenant


@dataclass(frozen=True, slots=True)
class NamespaceNode:
    cluster: ClusterName
    tenant: str
    namespace: str
    manual: bool = False
    kind: NodeKind = field(default=NodeKind.NAMESPACE, init=False)

    @property
    def label(self) -> str:
        return f"{self.namespace} (manual)" if self.manual else self.namespace


@dataclass(frozen=True, slots=True)
class TopicNode:
    cluster: ClusterName
    address: TopicAddress
    partition_count: int = 0
    kind: NodeKind = field(default=NodeKind.TOPIC, init=False)

    @property
    def label(self) -> str:
        if self.partition_count:
            return f"{self.address.local_name} [{self.partition_count} partitions]"
        return self.address.local_name


@dataclass(frozen=True, slots=True)
class PartitionNode:
    cluster: ClusterName
    address: TopicAddress
    kind: NodeKind = field(default=NodeKind.PARTITION, init=False)

    @property
    def label(self) -> str:
        return self.address.physical_name


@dataclass(frozen=True, slots=True)
class SubscriptionNode:
    cluster: ClusterName
    topic: TopicAddress
    subscription: SubscriptionSummary
    kind: NodeKind = field(default=NodeKind.SUBSCRIPTION, init=False)

    @property
    def label(self) -> str:
        sub = self.subscription
        sub_type = sub.type.value if sub.type else "?"
        return f"{sub.name} ({sub_type}, backlog {sub.backlog})"


@dataclass(frozen=True, slots=True)
class BrokerNode:
    cluster: ClusterName
    broker: str
    kind: NodeKind = field(default=NodeKind.BROKER, init=False)

    @property
    def label(self) -> str:
        return self.broker


@dataclass(frozen=True, slots=True)
class NoticeNode:
    """A leaf explaining why a listing is empty or incomplete."""

    cluster: ClusterName
    message: str
    category: FailureCategory = FailureCategory.OTHER
    suggestions: tuple[str, ...] = ()
    kind: NodeKind = field(default=NodeKind.NOTICE, init=False)

    @property
    def label(self) -> str:
        return self.message


type ExplorerNode = (
    ClusterNode
    | TenantNode
    | NamespaceNode
    | TopicNode
    | PartitionNode
    | SubscriptionNode
    | BrokerNode
    | NoticeNode
)


@dataclass(slots=True)
class ClusterExplorer:
    registry: ClusterRegistry

    async def children(self, node: ExplorerNode | None = None) -> list[ExplorerNode]:
        """Children of ``node``; the registered clusters for the root."""
        match node:
            case None:
                return [ClusterNode(name) for name in self.registry.cluster_names()]
            case ClusterNode(cluster=cluster):
                return await self._guarded(cluster, self._tenants(cluster))
            case TenantNode(cluster=cluster, tenant=tenant):
                return await self._guarded(cluster, self._namespaces(cluster, tenant))
            case NamespaceNode(cluster=cluster, tenant=tenant, namespace=namespace):
                return await self._guarded(
                    cluster, self._topics(cluster, tenant, namespace)
                )
            case TopicNode(cluster=cluster):
                return await self._guarded(cluster, self._topic_children(node))
            case _:
                return []

    async def brokers(self, cluster: ClusterName) -> list[ExplorerNode]:
        async def _list() -> list[ExplorerNode]:
            names = await self.registry.resolve(cluster).get_brokers()
            return [BrokerNode(cluster, b) for b in sorted(names)]

        return await self._guarded(cluster, _list())

    async def _tenants(self, cluster: ClusterName) -> list[ExplorerNode]:
        listing = await self.registry.list_tenants(cluster)
        nodes: list[ExplorerNode] = []
        if listing.restricted:
            nodes.append(
                NoticeNode(
                    cluster,
                    "Tenant listing not permitted; showing manually added namespaces",
                    FailureCategory.CREDENTIALS,
                    tuple(listing.suggested),
                )
            )
        nodes.extend(TenantNode(cluster, t) for t in listing.tenants)
        return nodes

    async def _namespaces(self, cluster: ClusterName, tenant: str) -> list[ExplorerNode]:
        manual = set(self.registry.get_manual_namespaces(cluster))
        names = await self.registry.list_namespaces(cluster, tenant)
        return [
            NamespaceNode(cluster, tenant, ns, manual=f"{tenant}/{ns}" in manual)
            for ns in names
        ]

    async def _topics(
        self, cluster: ClusterName, tenant: str, namespace: str
    ) -> list[ExplorerNode]:
        summaries = await self.registry.list_topics(cluster, tenant, namespace)
        return [TopicNode(cluster, s.address, s.partition_count) for s in summaries]

    async def _topic_children(self, node: TopicNode) -> list[ExplorerNode]:
        nodes: list[ExplorerNode] = [
            PartitionNode(node.cluster, node.address.partition(i))
            for i in range(node.partition_count)
        ]
        subscriptions = await self.registry.list_subscriptions(node.cluster, node.address)
        nodes.extend(SubscriptionNode(node.cluster, node.address, s) for s in subscriptions)
        return nodes

    async def _guarded(
        self, cluster: ClusterName, listing: Awaitable[list[ExplorerNode]]
    ) -> list[ExplorerNode]:
        try:
            return await listing
        except PulsarViewError as e:
            logger.warning("Listing failed on {}: {}", cluster, e)
            return [NoticeNode(cluster, str(e), classify_failure(e))]
