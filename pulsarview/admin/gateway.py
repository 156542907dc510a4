"""
HTTP client for the Pulsar admin REST API.

One request per logical operation, bounded by ``request_timeout``. Non-2xx
responses raise a classified :class:`HttpError`, timeouts raise
:class:`RequestTimeoutError` and unreachable endpoints raise
:class:`NetworkError`. Nothing is retried here; retries are the caller's call.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import aiohttp
from loguru import logger

from ..core.config import DEFAULT_REQUEST_TIMEOUT, DurationSeconds
from ..core.errors import (
    NetworkError,
    NotFoundError,
    PulsarViewError,
    RequestTimeoutError,
    ResourceNotFoundError,
    http_error_for,
)
from ..core.models import (
    AdminResult,
    ClusterInfo,
    PartitionedTopicMetadata,
    SchemaInfo,
    SubscriptionPosition,
    SubscriptionStats,
    TenantInfo,
    TopicStats,
)
from ..core.topic_address import TopicAddress

ADMIN_PREFIX = "/admin/v2"
HEALTH_PATH = f"{ADMIN_PREFIX}/brokers/health"
PEEK_HEADER_PREFIX = "X-Pulsar-"
PEEK_PROPERTY_PREFIX = "X-Pulsar-PROPERTY-"

_NO_BODY = object()


def _seg(value: str) -> str:
    return quote(value, safe="")


def _as_address(topic: TopicAddress | str) -> TopicAddress:
    return topic if isinstance(topic, TopicAddress) else TopicAddress.parse(topic)


def _force(force: bool) -> dict[str, str] | None:
    return {"force": "true"} if force else None


@dataclass(frozen=True, slots=True)
class RawResponse:
    status: int
    body: bytes
    headers: Mapping[str, str]

    @property
    def content_type(self) -> str:
        return next(
            (v for k, v in self.headers.items() if k.lower() == "content-type"), ""
        )


@dataclass(frozen=True, slots=True)
class PeekedMessage:
    """A message read from a subscription without consuming it."""

    position: int
    message_id: str | None
    payload: str
    properties: dict[str, str]
    headers: dict[str, str]


@dataclass(slots=True)
class AdminGateway:
    """Admin REST client bound to one cluster."""

    base_url: str
    auth_token: str | None = field(default=None, repr=False)
    request_timeout: DurationSeconds = DEFAULT_REQUEST_TIMEOUT
    allow_insecure_tls: bool = False
    name: str = ""
    _log: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self._log = logger.bind(component="AdminGateway", cluster=self.name or self.base_url)

    def set_auth_token(self, token: str | None) -> None:
        """Replace the bearer token without rebuilding the gateway."""
        self.auth_token = token

    # ==================== Cluster Operations ====================

    async def get_clusters(self) -> list[str]:
        return await self._get_list(f"{ADMIN_PREFIX}/clusters")

    async def get_cluster_info(self, cluster: str) -> ClusterInfo:
        data = await self._get(f"{ADMIN_PREFIX}/clusters/{_seg(cluster)}")
        return ClusterInfo.model_validate(data or {})

    # ==================== Tenant Operations ====================

    async def get_tenants(self) -> list[str]:
        return await self._get_list(f"{ADMIN_PREFIX}/tenants")

    async def get_tenant_info(self, tenant: str) -> TenantInfo:
        data = await self._get(f"{ADMIN_PREFIX}/tenants/{_seg(tenant)}")
        return TenantInfo.model_validate(data or {})

    async def create_tenant(self, tenant: str, info: TenantInfo) -> None:
        await self._request(
            "PUT",
            f"{ADMIN_PREFIX}/tenants/{_seg(tenant)}",
            body=info.model_dump(by_alias=True, exclude_none=True),
        )

    async def delete_tenant(self, tenant: str) -> None:
        await self._request("DELETE", f"{ADMIN_PREFIX}/tenants/{_seg(tenant)}")

    # ==================== Namespace Operations ====================

    async def get_namespaces(self, tenant: str) -> list[str]:
        """Namespaces of a tenant, as ``tenant/namespace`` paths."""
        return await self._get_list(f"{ADMIN_PREFIX}/namespaces/{_seg(tenant)}")

    async def get_namespace_policies(self, tenant: str, namespace: str) -> dict[str, Any]:
        data = await self._get(
            f"{ADMIN_PREFIX}/namespaces/{_seg(tenant)}/{_seg(namespace)}"
        )
        return data if isinstance(data, dict) else {}

    async def create_namespace(
        self, tenant: str, namespace: str, policies: dict[str, Any] | None = None
    ) -> None:
        await self._request(
            "PUT",
            f"{ADMIN_PREFIX}/namespaces/{_seg(tenant)}/{_seg(namespace)}",
            body=policies or {},
        )

    async def delete_namespace(
        self, tenant: str, namespace: str, force: bool = False
    ) -> None:
        await self._request(
            "DELETE",
            f"{ADMIN_PREFIX}/namespaces/{_seg(tenant)}/{_seg(namespace)}",
            params=_force(force),
        )

    # ==================== Topic Operations ====================

    async def get_topics(self, tenant: str, namespace: str) -> list[str]:
        """Union of the persistent and non-persistent listings.

        Either listing may fail on its own (non-persistent topics are often
        disabled); a failed listing counts as empty.
        """
        topics: list[str] = []
        for domain in ("persistent", "non-persistent"):
            try:
                topics.extend(
                    await self._get_list(
                        f"{ADMIN_PREFIX}/{domain}/{_seg(tenant)}/{_seg(namespace)}"
                    )
                )
            except PulsarViewError as e:
                self._log.debug(
                    "Ignoring {} topic listing failure for {}/{}: {}",
                    domain,
                    tenant,
                    namespace,
                    e,
                )
        return topics

    async def get_partitioned_topics(self, tenant: str, namespace: str) -> list[str]:
        return await self._get_list(
            f"{ADMIN_PREFIX}/persistent/{_seg(tenant)}/{_seg(namespace)}/partitioned"
        )

    async def get_partitioned_metadata(
        self, topic: TopicAddress | str
    ) -> PartitionedTopicMetadata:
        address = _as_address(topic).base()
        data = await self._get(f"{self._topic_path(address)}/partitions")
        return PartitionedTopicMetadata.model_validate(data or {})

    async def get_topic_stats(self, topic: TopicAddress | str) -> TopicStats:
        data = await self._get(f"{self._topic_path(_as_address(topic))}/stats")
        return TopicStats.model_validate(data or {})

    async def get_partitioned_topic_stats(self, topic: TopicAddress | str) -> TopicStats:
        """Stats aggregated across all partitions."""
        address = _as_address(topic).base()
        data = await self._get(f"{self._topic_path(address)}/partitioned-stats")
        return TopicStats.model_validate(data or {})

    async def get_topic_internal_stats(self, topic: TopicAddress | str) -> dict[str, Any]:
        data = await self._get(f"{self._topic_path(_as_address(topic))}/internalStats")
        return data if isinstance(data, dict) else {}

    async def create_topic(self, topic: TopicAddress | str) -> None:
        """Create a non-partitioned topic."""
        await self._request("PUT", self._topic_path(_as_address(topic)))

    async def create_partitioned_topic(
        self, topic: TopicAddress | str, partitions: int
    ) -> None:
        if partitions < 1:
            raise ValueError(f"Partition count must be >= 1, got {partitions}")
        address = _as_address(topic).base()
        await self._request(
            "PUT", f"{self._topic_path(address)}/partitions", body=partitions
        )

    async def delete_topic(self, topic: TopicAddress | str, force: bool = False) -> None:
        """Delete a topic, choosing the partitioned endpoint when needed.

        If the partition metadata cannot be fetched the plain delete is
        attempted anyway.
        """
        address = _as_address(topic)
        try:
            metadata = await self.get_partitioned_metadata(address)
        except PulsarViewError as e:
            self._log.debug(
                "Partition metadata unavailable for {}, deleting as non-partitioned: {}",
                address,
                e,
            )
            await self.delete_non_partitioned_topic(address, force)
            return

        if metadata.is_partitioned and address.partition_index is None:
            await self.delete_partitioned_topic(address, force)
        else:
            await self.delete_non_partitioned_topic(address, force)

    async def delete_non_partitioned_topic(
        self, topic: TopicAddress | str, force: bool = False
    ) -> None:
        await self._request(
            "DELETE", self._topic_path(_as_address(topic)), params=_force(force)
        )

    async def delete_partitioned_topic(
        self, topic: TopicAddress | str, force: bool = False
    ) -> None:
        address = _as_address(topic).base()
        await self._request(
            "DELETE", f"{self._topic_path(address)}/partitions", params=_force(force)
        )

    # ==================== Subscription Operations ====================

    async def get_subscriptions(self, topic: TopicAddress | str) -> list[str]:
        return await self._get_list(
            f"{self._topic_path(_as_address(topic))}/subscriptions"
        )

    async def get_subscription_stats(
        self, topic: TopicAddress | str, subscription: str
    ) -> SubscriptionStats:
        """Stats for one subscription.

        Uses the regular topic stats and retries once against the partitioned
        aggregate when the topic is unknown by that name (404).
        """
        address = _as_address(topic)
        try:
            stats = await self.get_topic_stats(address)
        except ResourceNotFoundError:
            stats = await self.get_partitioned_topic_stats(address)

        if subscription not in stats.subscriptions:
            raise NotFoundError(f"Subscription not found: {subscription} on {address}")
        return stats.subscriptions[subscription]

    async def create_subscription(
        self,
        topic: TopicAddress | str,
        subscription: str,
        position: SubscriptionPosition = "latest",
    ) -> None:
        await self._request(
            "PUT",
            self._subscription_path(topic, subscription),
            body={"messageId": "earliest" if position == "earliest" else "latest"},
        )

    async def delete_subscription(
        self, topic: TopicAddress | str, subscription: str, force: bool = False
    ) -> None:
        await self._request(
            "DELETE", self._subscription_path(topic, subscription), params=_force(force)
        )

    async def reset_subscription(
        self, topic: TopicAddress | str, subscription: str, timestamp_ms: int
    ) -> None:
        """Move the cursor to the first message published at or after ``timestamp_ms``."""
        await self._request(
            "POST",
            f"{self._subscription_path(topic, subscription)}/resetcursor/{int(timestamp_ms)}",
        )

    async def skip_messages(
        self, topic: TopicAddress | str, subscription: str, count: int
    ) -> None:
        await self._request(
            "POST", f"{self._subscription_path(topic, subscription)}/skip/{int(count)}"
        )

    async def skip_all_messages(
        self, topic: TopicAddress | str, subscription: str
    ) -> None:
        await self._request(
            "POST", f"{self._subscription_path(topic, subscription)}/skip_all"
        )

    async def peek_messages(
        self, topic: TopicAddress | str, subscription: str, count: int = 1
    ) -> list[PeekedMessage]:
        """Read up to ``count`` messages at the cursor without consuming them.

        The peek endpoint answers one position at a time with the raw body and
        ``X-Pulsar-*`` headers; peeking stops at the first position that
        does not exist.
        """
        base = f"{self._subscription_path(topic, subscription)}/position"
        peeked: list[PeekedMessage] = []
        for position in range(1, count + 1):
            try:
                response = await self._fetch("GET", f"{base}/{position}")
            except ResourceNotFoundError:
                break
            peeked.append(_peeked_from(position, response))
        return peeked

    # ==================== Broker Operations ====================

    async def get_brokers(self, cluster: str | None = None) -> list[str]:
        """Active brokers of one cluster, or of every cluster visible."""
        if cluster:
            return await self._get_list(f"{ADMIN_PREFIX}/brokers/{_seg(cluster)}")

        brokers: list[str] = []
        for name in await self.get_clusters():
            try:
                brokers.extend(
                    await self._get_list(f"{ADMIN_PREFIX}/brokers/{_seg(name)}")
                )
            except PulsarViewError as e:
                self._log.debug("Skipping brokers of cluster {}: {}", name, e)
        return brokers

    async def get_broker_stats(self) -> dict[str, Any]:
        data = await self._get(f"{ADMIN_PREFIX}/broker-stats/broker")
        return data if isinstance(data, dict) else {}

    async def get_broker_load_report(self) -> dict[str, Any]:
        data = await self._get(f"{ADMIN_PREFIX}/broker-stats/load-report")
        return data if isinstance(data, dict) else {}

    # ==================== Schema Operations ====================

    async def get_schema(self, topic: TopicAddress | str) -> SchemaInfo | None:
        """Schema of a topic, or None if it has none or it cannot be read."""
        address = _as_address(topic).base()
        try:
            data = await self._get(
                f"{ADMIN_PREFIX}/schemas/{_seg(address.tenant)}/"
                f"{_seg(address.namespace)}/{_seg(address.local_name)}/schema"
            )
            return SchemaInfo.model_validate(data) if data else None
        except PulsarViewError as e:
            self._log.debug("No schema for {}: {}", address, e)
            return None
        except ValueError as e:
            self._log.debug("Unexpected schema document for {}: {}", address, e)
            return None

    # ==================== Health Check ====================

    async def health_check(self) -> bool:
        """Single lightweight probe. Never authoritative, never retried."""
        try:
            await self._fetch("GET", HEALTH_PATH)
            return True
        except PulsarViewError as e:
            self._log.debug("Health check failed: {}", e)
            return False

    # ==================== Helper Methods ====================

    def _topic_path(self, address: TopicAddress) -> str:
        return f"{ADMIN_PREFIX}/{address.rest_path()}"

    def _subscription_path(self, topic: TopicAddress | str, subscription: str) -> str:
        return (
            f"{self._topic_path(_as_address(topic))}/subscription/{_seg(subscription)}"
        )

    async def _get(self, path: str) -> AdminResult:
        return await self._request("GET", path)

    async def _get_list(self, path: str) -> list[Any]:
        data = await self._request("GET", path)
        return list(data) if isinstance(data, list) else []

    async def _request(
        self,
        method: str,
        path: str,
        body: Any = _NO_BODY,
        params: dict[str, str] | None = None,
    ) -> AdminResult:
        """JSON request. An empty or non-JSON 2xx body yields None."""
        response = await self._fetch(method, path, body, params)
        if "application/json" not in response.content_type:
            return None
        text = response.body.decode("utf-8", errors="replace")
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            self._log.debug("Non-JSON body from {} {}", method, path)
            return None

    async def _fetch(
        self,
        method: str,
        path: str,
        body: Any = _NO_BODY,
        params: dict[str, str] | None = None,
    ) -> RawResponse:
        url = f"{self.base_url}{path}"
        headers = {"Accept": "application/json"}
        kwargs: dict[str, Any] = {}

        if body is not _NO_BODY:
            headers["Content-Type"] = "application/json"
            kwargs["data"] = json.dumps(body)
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        if params:
            kwargs["params"] = params
        if self.allow_insecure_tls:
            kwargs["ssl"] = False

        self._log.debug("{} {}", method, url)
        try:
            async with (
                aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.request_timeout)
                ) as session,
                session.request(method, url, headers=headers, **kwargs) as response,
            ):
                payload = await response.read()
                if not 200 <= response.status < 300:
                    raise http_error_for(
                        response.status,
                        payload.decode("utf-8", errors="replace"),
                        url,
                    )
                return RawResponse(response.status, payload, dict(response.headers))
        except TimeoutError as e:
            self._log.error("Request timed out: {} {}", method, url)
            raise RequestTimeoutError(method, url, self.request_timeout) from e
        except aiohttp.ClientError as e:
            self._log.error("Request failed: {} {}: {}", method, url, e)
            raise NetworkError(f"{method} {url} failed: {e}") from e


def _peeked_from(position: int, response: RawResponse) -> PeekedMessage:
    properties: dict[str, str] = {}
    pulsar_headers: dict[str, str] = {}
    for name, value in response.headers.items():
        if name.lower().startswith(PEEK_PROPERTY_PREFIX.lower()):
            properties[name[len(PEEK_PROPERTY_PREFIX) :]] = value
        elif name.lower().startswith(PEEK_HEADER_PREFIX.lower()):
            pulsar_headers[name] = value
    message_id = next(
        (v for k, v in pulsar_headers.items() if k.lower() == "x-pulsar-message-id"),
        None,
    )
    return PeekedMessage(
        position=position,
        message_id=message_id,
        payload=response.body.decode("utf-8", errors="replace"),
        properties=properties,
        headers=pulsar_headers,
    )
