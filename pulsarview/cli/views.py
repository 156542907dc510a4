"""Rich rendering helpers for the command line."""

from __future__ import annotations

import json
from collections.abc import Iterable

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..client.session import SessionCounters
from ..core.cluster_registry import ClusterRegistry, ImportReport, TenantListing
from ..core.errors import FailureCategory, classify_failure
from ..core.explorer import ClusterExplorer, ExplorerNode, NodeKind, NoticeNode
from ..core.models import ReceivedMessage, SubscriptionSummary
from ..core.topic_address import TopicSummary

NODE_STYLES = {
    NodeKind.CLUSTER: "bold blue",
    NodeKind.TENANT: "cyan",
    NodeKind.NAMESPACE: "green",
    NodeKind.TOPIC: "white",
    NodeKind.PARTITION: "dim",
    NodeKind.SUBSCRIPTION: "magenta",
    NodeKind.BROKER: "yellow",
    NodeKind.NOTICE: "yellow",
}

REMEDIATION = {
    FailureCategory.CREDENTIALS: "Check the auth token (--token or PULSAR_TOKEN).",
    FailureCategory.NETWORK: "Check connectivity and retry.",
}


class PulsarViewCLI:
    def __init__(self, registry: ClusterRegistry, console: Console | None = None) -> None:
        self.registry = registry
        self.console = console or Console()

    def display_error(self, error: Exception) -> None:
        self.console.print(f"[red]Error:[/red] {escape(str(error))}")
        hint = REMEDIATION.get(classify_failure(error))
        if hint:
            self.console.print(f"[yellow]{hint}[/yellow]")

    def display_clusters(self) -> None:
        names = self.registry.cluster_names()
        if not names:
            self.console.print("[yellow]No clusters configured[/yellow]")
            return

        table = Table(title="Clusters")
        table.add_column("Name", style="cyan")
        table.add_column("Web Service URL")
        table.add_column("Streaming URL")
        table.add_column("Auth")
        table.add_column("Manual namespaces", justify="right")
        for name in names:
            connection = self.registry.connection(name)
            table.add_row(
                name,
                connection.web_service_url,
                connection.resolved_streaming_url,
                connection.auth_mode.value,
                str(len(self.registry.get_manual_namespaces(name))),
            )
        self.console.print(table)

    def display_tenants(self, cluster: str, listing: TenantListing) -> None:
        if listing.restricted:
            self.console.print(
                f"[yellow]Tenant listing not permitted on {cluster}; "
                "showing manually added namespaces only[/yellow]"
            )
            if listing.suggested:
                self.console.print(
                    f"[dim]Token suggests tenants: {', '.join(listing.suggested)}[/dim]"
                )
        for tenant in listing.tenants:
            self.console.print(tenant)

    def display_topics(self, topics: Iterable[TopicSummary]) -> None:
        table = Table(title="Topics")
        table.add_column("Topic", style="cyan")
        table.add_column("Persistence")
        table.add_column("Partitions", justify="right")
        for summary in topics:
            table.add_row(
                summary.name,
                summary.address.persistence.value,
                str(summary.partition_count) if summary.is_partitioned else "-",
            )
        self.console.print(table)

    def display_subscriptions(self, subscriptions: Iterable[SubscriptionSummary]) -> None:
        table = Table(title="Subscriptions")
        table.add_column("Name", style="magenta")
        table.add_column("Type")
        table.add_column("Backlog", justify="right")
        for sub in subscriptions:
            table.add_row(sub.name, sub.type.value if sub.type else "-", str(sub.backlog))
        self.console.print(table)

    async def display_tree(self, root: ExplorerNode, depth: int) -> None:
        explorer = ClusterExplorer(self.registry)
        tree = Tree(f"[{NODE_STYLES[root.kind]}]{escape(root.label)}")
        await self._grow(explorer, tree, root, depth)
        self.console.print(tree)

    async def _grow(
        self, explorer: ClusterExplorer, tree: Tree, node: ExplorerNode, depth: int
    ) -> None:
        if depth <= 0:
            return
        for child in await explorer.children(node):
            branch = tree.add(f"[{NODE_STYLES[child.kind]}]{escape(child.label)}")
            if isinstance(child, NoticeNode):
                for suggestion in child.suggestions:
                    branch.add(f"[dim]suggested tenant: {suggestion}")
                continue
            await self._grow(explorer, branch, child, depth - 1)

    def display_message(self, message: ReceivedMessage) -> None:
        style = "dim" if message.hidden else ("bold green" if message.matched else "")
        partition = "-" if message.partition is None else str(message.partition)
        header = (
            f"{message.message_id} | partition {partition} | key {message.key or '-'}"
            f" | {message.publish_time}"
        )
        self.console.print(Panel(Text(message.payload), title=escape(header), style=style))

    def display_counters(self, counters: SessionCounters) -> None:
        self.console.print(
            " ".join(f"{k}={v}" for k, v in counters.snapshot().items())
        )

    def display_import_report(self, report: ImportReport) -> None:
        self.console.print(
            f"[green]{len(report.added)} added[/green], "
            f"{len(report.updated)} updated, {len(report.skipped)} skipped, "
            f"[red]{len(report.errors)} failed[/red]"
        )
        for error in report.errors:
            self.console.print(f"  [red]-[/red] {escape(error)}")

    def print_json(self, data: object) -> None:
        self.console.print_json(json.dumps(data, default=str))
