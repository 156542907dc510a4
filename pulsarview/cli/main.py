#!/usr/bin/env python3
"""
Command line entry point for pulsarview.

Cluster definitions, the manual namespace overlay and settings are kept in a
JSON file (``--config``). Tokens are never written there; pass them per
invocation with ``--token`` or the ``PULSAR_TOKEN`` environment variable.
"""

import asyncio
import json
import sys
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

import click
from rich.console import Console

from ..client.consumer import ConsumerConfig, ConsumerSession
from ..client.producer import ProducerConfig, ProducerSession
from ..client.session import SessionEvent, SessionEventKind
from ..core.cluster_registry import ClusterRegistry, ImportStrategy
from ..core.config import AuthMode, ClusterConnection
from ..core.errors import PulsarViewError
from ..core.explorer import ClusterNode
from ..core.key_filter import KeyFilterMode
from ..core.logging import configure_logging
from ..core.models import ReceivedMessage, StartPosition, SubscriptionType
from ..core.stores import DEFAULT_CONFIG_PATH, InMemorySecretStore, JsonFileConfigurationStore
from ..core.topic_address import TopicAddress
from .views import PulsarViewCLI

console = Console()

type Action = Callable[[ClusterRegistry, PulsarViewCLI], Awaitable[None]]

ACK_WAIT_SECONDS = 10.0

token_option = click.option(
    "--token",
    envvar="PULSAR_TOKEN",
    default=None,
    help="Bearer token for the cluster (env: PULSAR_TOKEN)",
)


def _run(
    ctx: click.Context,
    action: Action,
    cluster: str | None = None,
    token: str | None = None,
) -> None:
    async def _main() -> None:
        registry = ClusterRegistry(
            config_store=JsonFileConfigurationStore(ctx.obj["config"]),
            secret_store=InMemorySecretStore(),
        )
        view = PulsarViewCLI(registry, console)
        try:
            await registry.load()
            if cluster is not None and token:
                await registry.update_auth_token(cluster, token)
            await action(registry, view)
        except (PulsarViewError, ValueError) as e:
            view.display_error(e)
            sys.exit(1)

    asyncio.run(_main())


def _parse_properties(values: tuple[str, ...]) -> dict[str, str]:
    properties: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {item!r}")
        properties[key] = value
    return properties


def _split_namespace(path: str) -> tuple[str, str]:
    tenant, sep, namespace = path.partition("/")
    if not sep or not tenant or not namespace or "/" in namespace:
        raise click.BadParameter(f"expected tenant/namespace, got {path!r}")
    return tenant, namespace


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--debug-scope",
    multiple=True,
    help="Enable debug logs for one module only, e.g. client.consumer",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Configuration file",
)
@click.pass_context
def cli(
    ctx: click.Context, verbose: bool, debug_scope: tuple[str, ...], config_path: Path
) -> None:
    """Browse, produce to and consume from Pulsar clusters."""
    configure_logging(
        "DEBUG" if verbose else "WARNING", debug_scopes=debug_scope, colorize=True
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config_path


# ==================== Clusters ====================


@cli.group()
def cluster() -> None:
    """Manage configured clusters."""


@cluster.command("add")
@click.argument("name")
@click.argument("web_service_url")
@click.option("--streaming-url", default=None, help="Websocket base URL if not derived")
@click.option(
    "--auth",
    type=click.Choice([m.value for m in AuthMode]),
    default=None,
    help="Auth method (defaults to token when a token is given)",
)
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification")
@token_option
@click.pass_context
def cluster_add(
    ctx: click.Context,
    name: str,
    web_service_url: str,
    streaming_url: str | None,
    auth: str | None,
    insecure: bool,
    token: str | None,
) -> None:
    """Probe a cluster and add it to the configuration."""

    async def _add(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        mode = AuthMode(auth) if auth else (AuthMode.TOKEN if token else AuthMode.NONE)
        await registry.add_cluster(
            ClusterConnection(
                name=name,
                web_service_url=web_service_url,
                streaming_url=streaming_url,
                auth_mode=mode,
                auth_token=token,
                allow_insecure_tls=insecure,
            )
        )
        view.console.print(f"[green]Added cluster {name}[/green]")

    _run(ctx, _add)


@cluster.command("remove")
@click.argument("name")
@click.pass_context
def cluster_remove(ctx: click.Context, name: str) -> None:
    """Remove a cluster and its manual namespaces."""

    async def _remove(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        await registry.remove_cluster(name)
        view.console.print(f"[green]Removed cluster {name}[/green]")

    _run(ctx, _remove)


@cluster.command("list")
@click.pass_context
def cluster_list(ctx: click.Context) -> None:
    """List configured clusters."""

    async def _list(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        view.display_clusters()

    _run(ctx, _list)


@cluster.command("health")
@click.argument("name")
@token_option
@click.pass_context
def cluster_health(ctx: click.Context, name: str, token: str | None) -> None:
    """Run the broker health check once."""

    async def _health(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        healthy = await registry.resolve(name).health_check()
        if healthy:
            view.console.print(f"[green]{name} is healthy[/green]")
        else:
            view.console.print(f"[red]{name} did not pass the health check[/red]")
            sys.exit(1)

    _run(ctx, _health, name, token)


# ==================== Browsing ====================


@cli.command()
@click.argument("cluster_name")
@click.option("--depth", default=3, show_default=True, help="Levels to expand")
@token_option
@click.pass_context
def browse(ctx: click.Context, cluster_name: str, depth: int, token: str | None) -> None:
    """Print the tenant/namespace/topic tree of a cluster."""

    async def _browse(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        registry.resolve(cluster_name)
        await view.display_tree(ClusterNode(cluster_name), depth)

    _run(ctx, _browse, cluster_name, token)


@cli.command()
@click.argument("cluster_name")
@token_option
@click.pass_context
def tenants(ctx: click.Context, cluster_name: str, token: str | None) -> None:
    """List tenants, merged with manually added namespaces."""

    async def _tenants(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        view.display_tenants(cluster_name, await registry.list_tenants(cluster_name))

    _run(ctx, _tenants, cluster_name, token)


@cli.command()
@click.argument("cluster_name")
@click.argument("namespace_path")
@token_option
@click.pass_context
def topics(
    ctx: click.Context, cluster_name: str, namespace_path: str, token: str | None
) -> None:
    """List the topics of TENANT/NAMESPACE."""
    tenant, namespace = _split_namespace(namespace_path)

    async def _topics(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        view.display_topics(await registry.list_topics(cluster_name, tenant, namespace))

    _run(ctx, _topics, cluster_name, token)


@cli.command()
@click.argument("cluster_name")
@click.argument("topic")
@token_option
@click.pass_context
def subscriptions(
    ctx: click.Context, cluster_name: str, topic: str, token: str | None
) -> None:
    """List the subscriptions of a topic with type and backlog."""

    async def _subscriptions(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        view.display_subscriptions(
            await registry.list_subscriptions(cluster_name, TopicAddress.parse(topic))
        )

    _run(ctx, _subscriptions, cluster_name, token)


# ==================== Manual namespaces ====================


@cli.group()
def namespace() -> None:
    """Namespaces and the manual namespace overlay."""


@namespace.command("list")
@click.argument("cluster_name")
@click.argument("tenant")
@token_option
@click.pass_context
def namespace_list(
    ctx: click.Context, cluster_name: str, tenant: str, token: str | None
) -> None:
    """List namespaces of a tenant."""

    async def _list(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        for name in await registry.list_namespaces(cluster_name, tenant):
            view.console.print(name)

    _run(ctx, _list, cluster_name, token)


@namespace.command("add")
@click.argument("cluster_name")
@click.argument("namespace_path")
@click.pass_context
def namespace_add(ctx: click.Context, cluster_name: str, namespace_path: str) -> None:
    """Register TENANT/NAMESPACE that cannot be discovered."""

    async def _add(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        if registry.add_manual_namespace(cluster_name, namespace_path):
            view.console.print(f"[green]Added {namespace_path}[/green]")
        else:
            view.console.print(f"[yellow]{namespace_path} already registered[/yellow]")

    _run(ctx, _add)


@namespace.command("remove")
@click.argument("cluster_name")
@click.argument("namespace_path")
@click.pass_context
def namespace_remove(ctx: click.Context, cluster_name: str, namespace_path: str) -> None:
    """Remove a manually registered namespace."""

    async def _remove(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        if registry.remove_manual_namespace(cluster_name, namespace_path):
            view.console.print(f"[green]Removed {namespace_path}[/green]")
        else:
            view.console.print(f"[yellow]{namespace_path} was not registered[/yellow]")

    _run(ctx, _remove)


# ==================== Topics ====================


@cli.group()
def topic() -> None:
    """Create, delete and inspect topics."""


@topic.command("create")
@click.argument("cluster_name")
@click.argument("topic_name")
@click.option("--partitions", default=0, show_default=True, help="0 for unpartitioned")
@token_option
@click.pass_context
def topic_create(
    ctx: click.Context,
    cluster_name: str,
    topic_name: str,
    partitions: int,
    token: str | None,
) -> None:
    """Create a topic."""

    async def _create(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        address = TopicAddress.parse(topic_name)
        await registry.create_topic(cluster_name, address, partitions)
        view.console.print(f"[green]Created {address}[/green]")

    _run(ctx, _create, cluster_name, token)


@topic.command("delete")
@click.argument("cluster_name")
@click.argument("topic_name")
@click.option("--force", is_flag=True, help="Delete even with active clients")
@token_option
@click.pass_context
def topic_delete(
    ctx: click.Context, cluster_name: str, topic_name: str, force: bool, token: str | None
) -> None:
    """Delete a topic, partitioned or not."""

    async def _delete(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        address = TopicAddress.parse(topic_name)
        await registry.delete_topic(cluster_name, address, force)
        view.console.print(f"[green]Deleted {address}[/green]")

    _run(ctx, _delete, cluster_name, token)


@topic.command("stats")
@click.argument("cluster_name")
@click.argument("topic_name")
@token_option
@click.pass_context
def topic_stats(
    ctx: click.Context, cluster_name: str, topic_name: str, token: str | None
) -> None:
    """Print topic stats as JSON."""

    async def _stats(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        address = TopicAddress.parse(topic_name)
        gateway = registry.resolve(cluster_name)
        if await registry.partition_count(cluster_name, address):
            stats = await gateway.get_partitioned_topic_stats(address)
        else:
            stats = await gateway.get_topic_stats(address)
        view.print_json(stats.model_dump(by_alias=True))

    _run(ctx, _stats, cluster_name, token)


# ==================== Messaging ====================


@cli.command()
@click.argument("cluster_name")
@click.argument("topic_name")
@click.argument("messages", nargs=-1, required=True)
@click.option("--key", default=None, help="Message key")
@click.option("--partition", type=int, default=None, help="Target partition")
@click.option("--property", "properties", multiple=True, help="key=value, repeatable")
@token_option
@click.pass_context
def produce(
    ctx: click.Context,
    cluster_name: str,
    topic_name: str,
    messages: tuple[str, ...],
    key: str | None,
    partition: int | None,
    properties: tuple[str, ...],
    token: str | None,
) -> None:
    """Send MESSAGES to a topic and wait for their acknowledgments."""
    props = _parse_properties(properties)

    async def _produce(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        config = ProducerConfig(TopicAddress.parse(topic_name), partition)
        session = ProducerSession.for_cluster(registry, cluster_name, config)

        def _report(event: SessionEvent) -> None:
            if event.kind is SessionEventKind.MESSAGE_SENT:
                view.console.print(f"[green]sent[/green] {event.message_id}")
            elif event.kind is SessionEventKind.SEND_FAILED:
                view.console.print(f"[red]failed[/red] {event.detail}")

        session.events.subscribe(_report)
        async with session:
            await session.open()
            for message in messages:
                await session.send(message, key=key, properties=props)

            deadline = time.monotonic() + ACK_WAIT_SECONDS
            while session.pending and session.is_open and time.monotonic() < deadline:
                await asyncio.sleep(0.05)
        view.display_counters(session.counters)

    _run(ctx, _produce, cluster_name, token)


@cli.command()
@click.argument("cluster_name")
@click.argument("topic_name")
@click.argument("subscription")
@click.option("--earliest", is_flag=True, help="Start from the earliest message")
@click.option(
    "--type",
    "subscription_type",
    type=click.Choice([t.value for t in SubscriptionType]),
    default=None,
    help="Subscription type",
)
@click.option("--partition", "partitions", type=int, multiple=True, help="Repeatable")
@click.option("--key-filter", default=None, help="Highlight messages with this key")
@click.option("--regex", is_flag=True, help="Treat --key-filter as a regular expression")
@click.option("--stop-on-match", is_flag=True, help="Stop at the first matching key")
@click.option("--max-messages", type=int, default=None, help="Stop after N messages")
@click.option("--timeout", type=float, default=None, help="Stop after N seconds")
@click.option(
    "--export",
    "export_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write received messages to a JSON file on exit",
)
@token_option
@click.pass_context
def consume(
    ctx: click.Context,
    cluster_name: str,
    topic_name: str,
    subscription: str,
    earliest: bool,
    subscription_type: str | None,
    partitions: tuple[int, ...],
    key_filter: str | None,
    regex: bool,
    stop_on_match: bool,
    max_messages: int | None,
    timeout: float | None,
    export_path: Path | None,
    token: str | None,
) -> None:
    """Consume from a topic, fanning in every partition."""

    async def _consume(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        done = asyncio.Event()
        received = 0

        def _on_message(message: ReceivedMessage) -> None:
            nonlocal received
            view.display_message(message)
            received += 1
            if max_messages is not None and received >= max_messages:
                done.set()

        def _on_event(event: SessionEvent) -> None:
            if event.kind is SessionEventKind.STOPPED_ON_MATCH:
                view.console.print(
                    f"[bold green]Matched key {event.message.key if event.message else ''}"
                    ", stopping[/bold green]"
                )
                done.set()
            elif event.kind is SessionEventKind.ERROR:
                view.console.print(f"[red]{event.detail}[/red]")
            elif event.kind is SessionEventKind.DISCONNECTED and event.partition is None:
                done.set()

        config = ConsumerConfig(
            topic=TopicAddress.parse(topic_name),
            subscription=subscription,
            start_position=StartPosition.EARLIEST if earliest else StartPosition.LATEST,
            subscription_type=SubscriptionType(subscription_type) if subscription_type else None,
            partitions=partitions or None,
        )
        session = ConsumerSession.for_cluster(
            registry, cluster_name, config, on_message=_on_message
        )
        if key_filter:
            mode = KeyFilterMode.REGEX if regex else KeyFilterMode.EXACT
            if not session.configure_filter(key_filter, mode, stop_on_match):
                raise ValueError(session.filter.last_error or "invalid key filter")
        session.events.subscribe(_on_event)

        async with session:
            await session.open()
            try:
                await asyncio.wait_for(done.wait(), timeout)
            except TimeoutError:
                pass

        view.display_counters(session.counters)
        if export_path is not None:
            export_path.write_text(json.dumps(session.export_messages(), indent=2))
            view.console.print(f"Exported {len(session.history)} message(s) to {export_path}")

    _run(ctx, _consume, cluster_name, token)


# ==================== Configuration ====================


@cli.group()
def config() -> None:
    """Export and import the configuration."""


@config.command("export")
@click.argument("output_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--include-secrets", is_flag=True, help="Write tokens in clear text")
@click.option(
    "--no-placeholders", is_flag=True, help="Omit tokens instead of writing ${PULSAR_TOKEN}"
)
@click.pass_context
def config_export(
    ctx: click.Context, output_path: Path, include_secrets: bool, no_placeholders: bool
) -> None:
    """Write clusters, manual namespaces and settings to a file."""

    async def _export(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        document = registry.export_configuration(
            include_secrets=include_secrets, mask_secrets=not no_placeholders
        )
        output_path.write_text(json.dumps(document, indent=2))
        view.console.print(
            f"[green]Exported {len(document['clusters'])} cluster(s) to {output_path}[/green]"
        )

    _run(ctx, _export)


@config.command("import")
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in ImportStrategy]),
    default=ImportStrategy.APPEND.value,
    show_default=True,
    help="What to do with clusters that already exist",
)
@click.pass_context
def config_import(ctx: click.Context, input_path: Path, strategy: str) -> None:
    """Import a configuration exported by ``config export``."""

    async def _import(registry: ClusterRegistry, view: PulsarViewCLI) -> None:
        try:
            document = json.loads(input_path.read_text())
        except json.JSONDecodeError as e:
            raise ValueError(f"{input_path} is not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise ValueError(f"{input_path} does not hold a configuration object")
        report = await registry.import_configuration(document, ImportStrategy(strategy))
        view.display_import_report(report)

    _run(ctx, _import)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
