"""
Cluster registry: the source of truth for configured clusters.

The registry owns one :class:`AdminGateway` per registered cluster, probes
connectivity when a cluster is added, persists definitions (never tokens)
through the configuration store and keeps tokens in the secret store.

Accounts with restricted permissions often cannot list tenants. The registry
tolerates that at add time and compensates with a manual namespace overlay:
``tenant/namespace`` paths registered by the user are merged into every
tenant and namespace listing.
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from loguru import logger

from ..admin.gateway import AdminGateway
from .config import ClientSettings, ClusterConnection, ClusterName, StreamEndpoint
from .errors import (
    ClusterAlreadyExistsError,
    NotFoundError,
    PulsarViewError,
    ResourceNotFoundError,
    is_permission_error,
)
from .models import ClusterInfo, SubscriptionSummary, TenantInfo, TopicStats
from .stores import (
    ConfigurationStore,
    InMemoryConfigurationStore,
    InMemorySecretStore,
    ManualNamespaces,
    SecretStore,
    token_key,
)
from .tokens import extract_tenant_info
from .topic_address import TopicAddress, TopicSummary, collapse_partitions

type GatewayFactory = Callable[[ClusterConnection, ClientSettings], AdminGateway]

EXPORT_VERSION = "1.0"
TOKEN_PLACEHOLDER = "${PULSAR_TOKEN}"

_NAMESPACE_PATH_RE = re.compile(r"^[^/\s]+/[^/\s]+$")
_PLACEHOLDER_RE = re.compile(r"^\$\{([^}]+)\}$")


def default_gateway_factory(
    connection: ClusterConnection, settings: ClientSettings
) -> AdminGateway:
    return AdminGateway(
        base_url=connection.web_service_url,
        auth_token=connection.auth_token,
        request_timeout=settings.request_timeout,
        allow_insecure_tls=connection.allow_insecure_tls,
        name=connection.name,
    )


@dataclass(frozen=True, slots=True)
class TenantListing:
    """Tenants visible on a cluster.

    ``restricted`` is set when the API refused the listing (401/403) and the
    result only contains tenants from the manual overlay. ``suggested`` then
    holds candidates decoded from the token claims.
    """

    tenants: list[str]
    restricted: bool = False
    suggested: list[str] = field(default_factory=list)


class ImportStrategy(Enum):
    APPEND = "append"  # add new clusters, keep existing ones untouched
    OVERWRITE = "overwrite"
    SKIP = "skip"


@dataclass(slots=True)
class ImportReport:
    added: list[ClusterName] = field(default_factory=list)
    updated: list[ClusterName] = field(default_factory=list)
    skipped: list[ClusterName] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def resolve_placeholder(
    value: str | None, environ: Mapping[str, str] | None = None
) -> tuple[str | None, str | None]:
    """Resolve a ``${NAME}`` token placeholder from the environment.

    Returns ``(value, missing_variable)``; plain values pass through.
    """
    if not value:
        return None, None
    match = _PLACEHOLDER_RE.match(value)
    if match is None:
        return value, None
    env = os.environ if environ is None else environ
    name = match.group(1)
    resolved = env.get(name)
    return (resolved, None) if resolved else (None, name)


@dataclass(slots=True)
class ClusterRegistry:
    """Registered clusters and their admin gateways."""

    config_store: ConfigurationStore = field(default_factory=InMemoryConfigurationStore)
    secret_store: SecretStore = field(default_factory=InMemorySecretStore)
    settings: ClientSettings = field(default_factory=ClientSettings)
    gateway_factory: GatewayFactory = default_gateway_factory

    _connections: dict[ClusterName, ClusterConnection] = field(
        default_factory=dict, init=False
    )
    _gateways: dict[ClusterName, AdminGateway] = field(default_factory=dict, init=False)
    _manual_namespaces: ManualNamespaces = field(default_factory=dict, init=False)
    _pending: set[ClusterName] = field(default_factory=set, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    # ==================== Lifecycle ====================

    async def load(self) -> list[ClusterName]:
        """Rebuild gateways from persisted definitions. No probing."""
        self.settings = ClientSettings.from_mapping(self.config_store.load_settings())
        self._manual_namespaces = self.config_store.load_manual_namespaces()

        loaded: list[ClusterName] = []
        for entry in self.config_store.load_clusters():
            try:
                connection = ClusterConnection.from_persisted(entry)
            except (KeyError, ValueError) as e:
                logger.warning("Skipping invalid persisted cluster {}: {}", entry, e)
                continue
            token = await self.secret_store.get(token_key(connection.name))
            connection = replace(connection, auth_token=token)
            self._connections[connection.name] = connection
            self._gateways[connection.name] = self.gateway_factory(
                connection, self.settings
            )
            loaded.append(connection.name)

        logger.info("Loaded {} cluster(s) from configuration", len(loaded))
        return loaded

    async def add_cluster(self, connection: ClusterConnection) -> AdminGateway:
        """Probe and register a cluster.

        Concurrent adds of the same name are rejected while the first one is
        still probing. A probe that only fails with 401/403 at the tenant
        listing is accepted with a warning; any other probe failure is
        re-raised unchanged and nothing is registered.
        """
        name = connection.name
        async with self._lock:
            if name in self._gateways or name in self._pending:
                raise ClusterAlreadyExistsError(f"Cluster already exists: {name}")
            self._pending.add(name)

        try:
            token = connection.auth_token or await self.secret_store.get(
                token_key(name)
            )
            connection = replace(connection, auth_token=token)
            gateway = self.gateway_factory(connection, self.settings)

            await self._probe(name, gateway)

            if token:
                await self.secret_store.set(token_key(name), token)
            async with self._lock:
                self._connections[name] = connection
                self._gateways[name] = gateway
                self._persist_clusters()
        finally:
            self._pending.discard(name)

        logger.info("Added cluster {} ({})", name, connection.web_service_url)
        return gateway

    async def remove_cluster(self, name: ClusterName) -> None:
        async with self._lock:
            if name not in self._gateways:
                raise NotFoundError(f"Cluster not found: {name}")
            del self._gateways[name]
            del self._connections[name]
            self._persist_clusters()

        await self.secret_store.delete(token_key(name))
        if self._manual_namespaces.pop(name, None) is not None:
            self.config_store.save_manual_namespaces(self._manual_namespaces)
        logger.info("Removed cluster {}", name)

    def resolve(self, name: ClusterName) -> AdminGateway:
        gateway = self._gateways.get(name)
        if gateway is None:
            raise NotFoundError(f"Cluster not found: {name}")
        return gateway

    def connection(self, name: ClusterName) -> ClusterConnection:
        connection = self._connections.get(name)
        if connection is None:
            raise NotFoundError(f"Cluster not found: {name}")
        return connection

    def has_cluster(self, name: ClusterName) -> bool:
        return name in self._gateways

    def cluster_names(self) -> list[ClusterName]:
        return sorted(self._gateways)

    async def update_auth_token(self, name: ClusterName, token: str | None) -> None:
        """Swap the token of a registered cluster without reconnecting."""
        gateway = self.resolve(name)
        gateway.set_auth_token(token)
        self._connections[name] = replace(self._connections[name], auth_token=token)
        if token:
            await self.secret_store.set(token_key(name), token)
        else:
            await self.secret_store.delete(token_key(name))

    def stream_endpoint(self, name: ClusterName) -> StreamEndpoint:
        connection = self.connection(name)
        return StreamEndpoint(
            base_url=connection.resolved_streaming_url,
            auth_token=self.resolve(name).auth_token,
            allow_insecure_tls=connection.allow_insecure_tls,
            cluster_name=name,
        )

    def update_settings(self, settings: ClientSettings) -> None:
        self.settings = settings
        self.config_store.save_settings(settings.to_dict())

    async def _probe(self, name: ClusterName, gateway: AdminGateway) -> None:
        if await gateway.health_check():
            return

        try:
            await gateway.get_clusters()
            return
        except PulsarViewError as e:
            logger.debug("Cluster listing probe failed for {}: {}", name, e)

        try:
            await gateway.get_tenants()
        except PulsarViewError as e:
            if not is_permission_error(e):
                raise
            logger.warning(
                "Connected to {} with restricted permissions ({}). "
                "Add namespaces manually to browse them.",
                name,
                e,
            )

    def _persist_clusters(self) -> None:
        self.config_store.save_clusters(
            [c.to_persisted() for c in self._connections.values()]
        )

    # ==================== Manual namespace overlay ====================

    def get_manual_namespaces(self, cluster: ClusterName) -> list[str]:
        return list(self._manual_namespaces.get(cluster, []))

    def add_manual_namespace(self, cluster: ClusterName, path: str) -> bool:
        """Register ``tenant/namespace``. Returns False if already present."""
        self.resolve(cluster)
        path = path.strip()
        if not _NAMESPACE_PATH_RE.match(path):
            raise ValueError(f"Namespace must look like tenant/namespace: {path!r}")

        entries = self._manual_namespaces.setdefault(cluster, [])
        if path in entries:
            return False
        entries.append(path)
        self.config_store.save_manual_namespaces(self._manual_namespaces)
        return True

    def remove_manual_namespace(self, cluster: ClusterName, path: str) -> bool:
        entries = self._manual_namespaces.get(cluster, [])
        if path not in entries:
            return False
        entries.remove(path)
        if not entries:
            del self._manual_namespaces[cluster]
        self.config_store.save_manual_namespaces(self._manual_namespaces)
        return True

    def _manual_tenants(self, cluster: ClusterName) -> set[str]:
        return {ns.split("/", 1)[0] for ns in self._manual_namespaces.get(cluster, [])}

    def _manual_namespaces_of(self, cluster: ClusterName, tenant: str) -> set[str]:
        prefix = f"{tenant}/"
        return {
            ns[len(prefix) :]
            for ns in self._manual_namespaces.get(cluster, [])
            if ns.startswith(prefix)
        }

    # ==================== Listings ====================

    async def list_tenants(self, cluster: ClusterName) -> TenantListing:
        gateway = self.resolve(cluster)
        manual = self._manual_tenants(cluster)
        try:
            discovered = await gateway.get_tenants()
        except PulsarViewError as e:
            if not is_permission_error(e):
                raise
            logger.warning("Tenant listing refused on {}: {}", cluster, e)
            tenants = sorted(manual)
            hints = (
                extract_tenant_info(gateway.auth_token).possible_tenants
                if gateway.auth_token
                else []
            )
            return TenantListing(
                tenants=tenants,
                restricted=True,
                suggested=[t for t in hints if t not in manual],
            )
        return TenantListing(tenants=sorted(set(discovered) | manual))

    async def list_namespaces(self, cluster: ClusterName, tenant: str) -> list[str]:
        """Short namespace names of a tenant, merged with the overlay."""
        gateway = self.resolve(cluster)
        manual = self._manual_namespaces_of(cluster, tenant)
        try:
            discovered = await gateway.get_namespaces(tenant)
        except PulsarViewError as e:
            if not is_permission_error(e):
                raise
            logger.warning("Namespace listing refused for {} on {}: {}", tenant, cluster, e)
            discovered = []

        prefix = f"{tenant}/"
        names = {ns[len(prefix) :] if ns.startswith(prefix) else ns for ns in discovered}
        return sorted(names | manual)

    async def list_topics(
        self, cluster: ClusterName, tenant: str, namespace: str
    ) -> list[TopicSummary]:
        """Logical topics of a namespace with partition sub-topics folded in."""
        gateway = self.resolve(cluster)
        listing = await gateway.get_topics(tenant, namespace)
        try:
            partitioned = await gateway.get_partitioned_topics(tenant, namespace)
        except PulsarViewError as e:
            logger.debug("Partitioned listing unavailable for {}/{}: {}", tenant, namespace, e)
            partitioned = []

        summaries = collapse_partitions(listing, partitioned)
        declared = {str(TopicAddress.parse(p).base()) for p in partitioned}
        unknown = [
            i
            for i, s in enumerate(summaries)
            if not s.is_partitioned and str(s.address) in declared
        ]
        if unknown:
            results = await asyncio.gather(
                *(gateway.get_partitioned_metadata(summaries[i].address) for i in unknown),
                return_exceptions=True,
            )
            for i, result in zip(unknown, results, strict=True):
                if isinstance(result, BaseException):
                    logger.debug(
                        "Partition metadata unavailable for {}: {}",
                        summaries[i].address,
                        result,
                    )
                    continue
                summaries[i] = TopicSummary(summaries[i].address, result.partitions)
        return summaries

    async def list_subscriptions(
        self, cluster: ClusterName, topic: TopicAddress | str
    ) -> list[SubscriptionSummary]:
        gateway = self.resolve(cluster)
        names = await gateway.get_subscriptions(topic)
        stats: TopicStats | None
        try:
            stats = await gateway.get_topic_stats(topic)
        except ResourceNotFoundError:
            stats = await self._partitioned_stats_or_none(gateway, topic)
        except PulsarViewError as e:
            logger.debug("Stats unavailable for {}: {}", topic, e)
            stats = None

        return [
            SubscriptionSummary.from_stats(
                name, stats.subscriptions.get(name) if stats else None
            )
            for name in sorted(names)
        ]

    async def _partitioned_stats_or_none(
        self, gateway: AdminGateway, topic: TopicAddress | str
    ) -> TopicStats | None:
        try:
            return await gateway.get_partitioned_topic_stats(topic)
        except PulsarViewError as e:
            logger.debug("Partitioned stats unavailable for {}: {}", topic, e)
            return None

    # ==================== Delegated operations ====================

    async def get_cluster_info(
        self, cluster: ClusterName, broker_cluster: str | None = None
    ) -> ClusterInfo:
        """Info of ``broker_cluster``, or of the first cluster the broker reports."""
        gateway = self.resolve(cluster)
        if broker_cluster is None:
            names = await gateway.get_clusters()
            if not names:
                raise NotFoundError(f"No clusters reported by {cluster}")
            broker_cluster = names[0]
        return await gateway.get_cluster_info(broker_cluster)

    async def create_tenant(
        self,
        cluster: ClusterName,
        tenant: str,
        admin_roles: Iterable[str] = (),
        allowed_clusters: Iterable[str] | None = None,
    ) -> None:
        gateway = self.resolve(cluster)
        if allowed_clusters is None:
            allowed = await gateway.get_clusters()
        else:
            allowed = list(allowed_clusters)
        await gateway.create_tenant(
            tenant,
            TenantInfo(admin_roles=list(admin_roles), allowed_clusters=allowed),
        )

    async def delete_tenant(self, cluster: ClusterName, tenant: str) -> None:
        await self.resolve(cluster).delete_tenant(tenant)

    async def create_namespace(
        self, cluster: ClusterName, tenant: str, namespace: str
    ) -> None:
        await self.resolve(cluster).create_namespace(tenant, namespace)

    async def delete_namespace(
        self, cluster: ClusterName, tenant: str, namespace: str, force: bool = False
    ) -> None:
        await self.resolve(cluster).delete_namespace(tenant, namespace, force)

    async def create_topic(
        self, cluster: ClusterName, topic: TopicAddress | str, partitions: int = 0
    ) -> None:
        gateway = self.resolve(cluster)
        if partitions > 0:
            await gateway.create_partitioned_topic(topic, partitions)
        else:
            await gateway.create_topic(topic)

    async def delete_topic(
        self, cluster: ClusterName, topic: TopicAddress | str, force: bool = False
    ) -> None:
        await self.resolve(cluster).delete_topic(topic, force)

    async def partition_count(self, cluster: ClusterName, topic: TopicAddress | str) -> int:
        """Partition count of a topic; 0 when unpartitioned or unknown."""
        try:
            metadata = await self.resolve(cluster).get_partitioned_metadata(topic)
        except PulsarViewError as e:
            logger.debug("Partition lookup failed for {}: {}", topic, e)
            return 0
        return metadata.partitions

    # ==================== Export / import ====================

    def export_configuration(
        self, include_secrets: bool = False, mask_secrets: bool = True
    ) -> dict[str, Any]:
        """Snapshot of clusters, overlay and settings.

        Tokens are only written when ``include_secrets`` is set; otherwise a
        ``${PULSAR_TOKEN}`` placeholder is written when ``mask_secrets`` is set
        and the token is omitted entirely when it is not.
        """
        clusters: list[dict[str, Any]] = []
        for name, connection in self._connections.items():
            entry = connection.to_persisted()
            token = self._gateways[name].auth_token
            if token:
                if include_secrets:
                    entry["authToken"] = token
                elif mask_secrets:
                    entry["authToken"] = TOKEN_PLACEHOLDER
            clusters.append(entry)

        return {
            "version": EXPORT_VERSION,
            "exportedAt": datetime.now(UTC).isoformat(),
            "clusters": clusters,
            "manualNamespaces": {
                k: list(v) for k, v in self._manual_namespaces.items()
            },
            "settings": self.settings.to_dict(),
        }

    async def import_configuration(
        self,
        document: Mapping[str, Any],
        strategy: ImportStrategy = ImportStrategy.APPEND,
        environ: Mapping[str, str] | None = None,
    ) -> ImportReport:
        """Import an exported document.

        Every imported cluster goes through :meth:`add_cluster`, probe
        included. Per-cluster failures are collected in the report and do not
        stop the import.
        """
        version = document.get("version")
        if version != EXPORT_VERSION:
            raise ValueError(f"Unsupported configuration version: {version!r}")

        report = ImportReport()
        for entry in document.get("clusters") or []:
            await self._import_cluster(entry, strategy, environ, report)

        overlay = document.get("manualNamespaces") or {}
        if overlay:
            for cluster, paths in overlay.items():
                entries = self._manual_namespaces.setdefault(str(cluster), [])
                for path in paths:
                    if path not in entries and _NAMESPACE_PATH_RE.match(str(path)):
                        entries.append(str(path))
            self.config_store.save_manual_namespaces(self._manual_namespaces)

        if settings := document.get("settings"):
            try:
                self.update_settings(
                    ClientSettings.from_mapping({**self.settings.to_dict(), **settings})
                )
            except (TypeError, ValueError) as e:
                report.errors.append(f"Invalid settings: {e}")

        logger.info(
            "Configuration imported: {} added, {} updated, {} skipped, {} failed",
            len(report.added),
            len(report.updated),
            len(report.skipped),
            len(report.errors),
        )
        return report

    async def _import_cluster(
        self,
        entry: Mapping[str, Any],
        strategy: ImportStrategy,
        environ: Mapping[str, str] | None,
        report: ImportReport,
    ) -> None:
        name = str(entry.get("name", ""))
        exists = self.has_cluster(name)
        if exists and strategy is not ImportStrategy.OVERWRITE:
            report.skipped.append(name)
            return

        token, missing = resolve_placeholder(entry.get("authToken"), environ)
        if missing:
            report.skipped.append(name)
            report.errors.append(
                f"Skipped cluster {name!r}: environment variable {missing} is not set"
            )
            return

        try:
            connection = replace(ClusterConnection.from_persisted(dict(entry)), auth_token=token)
            if exists:
                await self.remove_cluster(name)
            await self.add_cluster(connection)
        except (KeyError, ValueError, PulsarViewError) as e:
            logger.error("Failed to import cluster {}: {}", name, e)
            report.errors.append(f"Failed to import cluster {name!r}: {e}")
            return

        (report.updated if exists else report.added).append(name)
