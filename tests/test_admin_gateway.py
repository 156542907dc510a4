"""
Admin gateway tests against a local aiohttp server.

Paths are matched in their raw, percent-encoded form so the tests also pin
down how names are encoded on the wire.
"""

import json

import pytest

from pulsarview.admin.gateway import HEALTH_PATH, AdminGateway
from pulsarview.core.errors import (
    AuthenticationError,
    AuthorizationError,
    HttpError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    ResourceNotFoundError,
)
from pulsarview.core.models import SubscriptionType, TenantInfo
from pulsarview.core.topic_address import TopicAddress
from tests.conftest import AdminStub


def gateway_for(stub: AdminStub, **kwargs) -> AdminGateway:
    return AdminGateway(base_url=stub.base_url, name="test", **kwargs)


class TestRequests:
    @pytest.mark.asyncio
    async def test_bearer_token_is_sent(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("GET", "/admin/v2/tenants", ["public"])
        gateway = gateway_for(admin_stub, auth_token="secret-token")

        assert await gateway.get_tenants() == ["public"]

        request = admin_stub.requests[-1]
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_no_authorization_header_without_token(
        self, admin_stub: AdminStub
    ) -> None:
        admin_stub.reply("GET", "/admin/v2/clusters", ["standalone"])
        await gateway_for(admin_stub).get_clusters()
        assert "Authorization" not in admin_stub.requests[-1].headers

    @pytest.mark.asyncio
    async def test_token_can_be_swapped(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("GET", "/admin/v2/clusters", ["standalone"])
        gateway = gateway_for(admin_stub, auth_token="old")
        gateway.set_auth_token("new")
        await gateway.get_clusters()
        assert admin_stub.requests[-1].headers["Authorization"] == "Bearer new"

    @pytest.mark.asyncio
    async def test_path_segments_are_percent_encoded(self, admin_stub: AdminStub) -> None:
        admin_stub.reply(
            "GET", "/admin/v2/persistent/my%20tenant/ns/a%20topic/subscriptions", ["s"]
        )
        gateway = gateway_for(admin_stub)

        subs = await gateway.get_subscriptions(TopicAddress.of("my tenant", "ns", "a topic"))

        assert subs == ["s"]

    @pytest.mark.asyncio
    async def test_empty_success_body_yields_none(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("PUT", "/admin/v2/namespaces/acme/orders", status=204)
        gateway = gateway_for(admin_stub)

        assert await gateway._request("PUT", "/admin/v2/namespaces/acme/orders") is None

    @pytest.mark.asyncio
    async def test_non_json_success_body_yields_none(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("GET", "/admin/v2/tenants", "plain", content_type="text/plain")
        assert await gateway_for(admin_stub).get_tenants() == []

    @pytest.mark.asyncio
    async def test_force_is_sent_as_query_parameter(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("DELETE", "/admin/v2/namespaces/acme/orders", status=204)
        await gateway_for(admin_stub).delete_namespace("acme", "orders", force=True)
        assert admin_stub.requests[-1].query == {"force": "true"}


class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "error_type"),
        [
            (401, AuthenticationError),
            (403, AuthorizationError),
            (404, ResourceNotFoundError),
            (500, HttpError),
        ],
    )
    async def test_status_codes_are_classified(
        self, admin_stub: AdminStub, status: int, error_type: type[HttpError]
    ) -> None:
        admin_stub.reply(
            "GET", "/admin/v2/tenants", "denied", status=status, content_type="text/plain"
        )

        with pytest.raises(error_type) as info:
            await gateway_for(admin_stub).get_tenants()

        assert info.value.status_code == status
        assert info.value.body == "denied"

    @pytest.mark.asyncio
    async def test_unknown_path_is_not_found(self, admin_stub: AdminStub) -> None:
        with pytest.raises(NotFoundError):
            await gateway_for(admin_stub).get_tenant_info("nobody")

    @pytest.mark.asyncio
    async def test_timeout(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("GET", "/admin/v2/clusters", ["slow"], delay=1.0)
        gateway = gateway_for(admin_stub, request_timeout=0.1)

        with pytest.raises(RequestTimeoutError) as info:
            await gateway.get_clusters()

        assert info.value.method == "GET"
        assert info.value.timeout == 0.1

    @pytest.mark.asyncio
    async def test_unreachable_endpoint_is_a_network_error(self) -> None:
        gateway = AdminGateway(base_url="http://127.0.0.1:1", request_timeout=5)
        with pytest.raises(NetworkError):
            await gateway.get_clusters()


class TestTopics:
    @pytest.mark.asyncio
    async def test_listing_unions_both_domains(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("GET", "/admin/v2/persistent/acme/orders", ["persistent://acme/orders/a"])
        admin_stub.reply(
            "GET", "/admin/v2/non-persistent/acme/orders", ["non-persistent://acme/orders/b"]
        )

        topics = await gateway_for(admin_stub).get_topics("acme", "orders")

        assert topics == ["persistent://acme/orders/a", "non-persistent://acme/orders/b"]

    @pytest.mark.asyncio
    async def test_failed_domain_listing_counts_as_empty(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("GET", "/admin/v2/persistent/acme/orders", ["persistent://acme/orders/a"])
        admin_stub.reply(
            "GET", "/admin/v2/non-persistent/acme/orders", "off", status=412,
            content_type="text/plain",
        )

        topics = await gateway_for(admin_stub).get_topics("acme", "orders")

        assert topics == ["persistent://acme/orders/a"]

    @pytest.mark.asyncio
    async def test_partition_metadata_uses_base_topic(self, admin_stub: AdminStub) -> None:
        admin_stub.reply(
            "GET", "/admin/v2/persistent/acme/orders/events/partitions", {"partitions": 4}
        )

        metadata = await gateway_for(admin_stub).get_partitioned_metadata(
            "persistent://acme/orders/events-partition-2"
        )

        assert metadata.partitions == 4
        assert metadata.is_partitioned

    @pytest.mark.asyncio
    async def test_create_partitioned_topic(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("PUT", "/admin/v2/persistent/acme/orders/events/partitions", status=204)

        await gateway_for(admin_stub).create_partitioned_topic("acme/orders/events", 3)

        request = admin_stub.requests[-1]
        assert json.loads(request.body) == 3
        assert request.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_create_partitioned_topic_rejects_zero(self, admin_stub: AdminStub) -> None:
        with pytest.raises(ValueError):
            await gateway_for(admin_stub).create_partitioned_topic("acme/orders/events", 0)
        assert admin_stub.requests == []

    @pytest.mark.asyncio
    async def test_delete_partitioned_topic(self, admin_stub: AdminStub) -> None:
        admin_stub.reply(
            "GET", "/admin/v2/persistent/acme/orders/events/partitions", {"partitions": 2}
        )
        admin_stub.reply(
            "DELETE", "/admin/v2/persistent/acme/orders/events/partitions", status=204
        )

        await gateway_for(admin_stub).delete_topic("acme/orders/events", force=True)

        assert admin_stub.paths("DELETE") == [
            "/admin/v2/persistent/acme/orders/events/partitions"
        ]
        assert admin_stub.requests[-1].query == {"force": "true"}

    @pytest.mark.asyncio
    async def test_delete_falls_back_when_metadata_fails(self, admin_stub: AdminStub) -> None:
        admin_stub.reply(
            "GET", "/admin/v2/persistent/acme/orders/events/partitions", "no", status=500,
            content_type="text/plain",
        )
        admin_stub.reply("DELETE", "/admin/v2/persistent/acme/orders/events", status=204)

        await gateway_for(admin_stub).delete_topic("acme/orders/events")

        assert admin_stub.paths("DELETE") == ["/admin/v2/persistent/acme/orders/events"]

    @pytest.mark.asyncio
    async def test_delete_single_partition_uses_plain_endpoint(
        self, admin_stub: AdminStub
    ) -> None:
        admin_stub.reply(
            "GET", "/admin/v2/persistent/acme/orders/events/partitions", {"partitions": 2}
        )
        admin_stub.reply(
            "DELETE", "/admin/v2/persistent/acme/orders/events-partition-1", status=204
        )

        await gateway_for(admin_stub).delete_topic("acme/orders/events-partition-1")

        assert admin_stub.paths("DELETE") == [
            "/admin/v2/persistent/acme/orders/events-partition-1"
        ]


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_stats_fall_back_to_partitioned_aggregate(
        self, admin_stub: AdminStub
    ) -> None:
        admin_stub.reply(
            "GET",
            "/admin/v2/persistent/acme/orders/events/partitioned-stats",
            {"subscriptions": {"audit": {"msgBacklog": 5, "type": "Shared"}}},
        )

        stats = await gateway_for(admin_stub).get_subscription_stats(
            "acme/orders/events", "audit"
        )

        assert stats.msg_backlog == 5
        assert stats.type is SubscriptionType.SHARED

    @pytest.mark.asyncio
    async def test_missing_subscription(self, admin_stub: AdminStub) -> None:
        admin_stub.reply(
            "GET", "/admin/v2/persistent/acme/orders/events/stats", {"subscriptions": {}}
        )
        with pytest.raises(NotFoundError):
            await gateway_for(admin_stub).get_subscription_stats(
                "acme/orders/events", "audit"
            )

    @pytest.mark.asyncio
    async def test_create_subscription_from_earliest(self, admin_stub: AdminStub) -> None:
        admin_stub.reply(
            "PUT", "/admin/v2/persistent/acme/orders/events/subscription/my%20sub", status=204
        )

        await gateway_for(admin_stub).create_subscription(
            "acme/orders/events", "my sub", "earliest"
        )

        assert json.loads(admin_stub.requests[-1].body) == {"messageId": "earliest"}

    @pytest.mark.asyncio
    async def test_peek_reads_until_the_first_missing_position(
        self, admin_stub: AdminStub
    ) -> None:
        base = "/admin/v2/persistent/acme/orders/events/subscription/audit/position"
        admin_stub.reply(
            "GET",
            f"{base}/1",
            "hello",
            content_type="text/plain",
            headers={"X-Pulsar-Message-ID": "12:3:-1", "X-Pulsar-PROPERTY-source": "test"},
        )

        peeked = await gateway_for(admin_stub).peek_messages(
            "acme/orders/events", "audit", count=3
        )

        assert len(peeked) == 1
        assert peeked[0].payload == "hello"
        assert peeked[0].message_id == "12:3:-1"
        assert peeked[0].properties == {"source": "test"}
        assert admin_stub.paths("GET") == [f"{base}/1", f"{base}/2"]

    @pytest.mark.asyncio
    async def test_cursor_operations(self, admin_stub: AdminStub) -> None:
        base = "/admin/v2/persistent/acme/orders/events/subscription/audit"
        for suffix in ("resetcursor/1700000000000", "skip/5", "skip_all"):
            admin_stub.reply("POST", f"{base}/{suffix}", status=204)
        gateway = gateway_for(admin_stub)

        await gateway.reset_subscription("acme/orders/events", "audit", 1_700_000_000_000)
        await gateway.skip_messages("acme/orders/events", "audit", 5)
        await gateway.skip_all_messages("acme/orders/events", "audit")

        assert admin_stub.paths("POST") == [
            f"{base}/resetcursor/1700000000000",
            f"{base}/skip/5",
            f"{base}/skip_all",
        ]

    @pytest.mark.asyncio
    async def test_delete_non_partitioned_topic_with_force(
        self, admin_stub: AdminStub
    ) -> None:
        admin_stub.reply("DELETE", "/admin/v2/persistent/acme/orders/events", status=204)

        await gateway_for(admin_stub).delete_non_partitioned_topic(
            "acme/orders/events", force=True
        )

        assert admin_stub.requests[-1].query == {"force": "true"}


class TestMisc:
    @pytest.mark.asyncio
    async def test_health_check(self, admin_stub: AdminStub) -> None:
        gateway = gateway_for(admin_stub)
        assert await gateway.health_check() is False

        admin_stub.reply("GET", HEALTH_PATH, "ok", content_type="text/plain")
        assert await gateway.health_check() is True

    @pytest.mark.asyncio
    async def test_create_tenant_body(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("PUT", "/admin/v2/tenants/acme", status=204)

        await gateway_for(admin_stub).create_tenant(
            "acme", TenantInfo(admin_roles=["ops"], allowed_clusters=["standalone"])
        )

        assert json.loads(admin_stub.requests[-1].body) == {
            "adminRoles": ["ops"],
            "allowedClusters": ["standalone"],
        }

    @pytest.mark.asyncio
    async def test_brokers_of_every_cluster(self, admin_stub: AdminStub) -> None:
        admin_stub.reply("GET", "/admin/v2/clusters", ["east", "west"])
        admin_stub.reply("GET", "/admin/v2/brokers/east", ["b1:8080"])

        brokers = await gateway_for(admin_stub).get_brokers()

        assert brokers == ["b1:8080"]

    @pytest.mark.asyncio
    async def test_missing_schema_is_none(self, admin_stub: AdminStub) -> None:
        assert await gateway_for(admin_stub).get_schema("acme/orders/events") is None

    @pytest.mark.asyncio
    async def test_schema(self, admin_stub: AdminStub) -> None:
        admin_stub.reply(
            "GET",
            "/admin/v2/schemas/acme/orders/events/schema",
            {"type": "JSON", "schema": "{}", "properties": {}},
        )
        schema = await gateway_for(admin_stub).get_schema("acme/orders/events")
        assert schema is not None
        assert schema.type == "JSON"

    @pytest.mark.asyncio
    async def test_broker_load_report_and_internal_stats(
        self, admin_stub: AdminStub
    ) -> None:
        admin_stub.reply("GET", "/admin/v2/broker-stats/load-report", {"cpu": {"usage": 3}})
        admin_stub.reply(
            "GET", "/admin/v2/persistent/acme/orders/events/internalStats", ["unexpected"]
        )
        gateway = gateway_for(admin_stub)

        assert await gateway.get_broker_load_report() == {"cpu": {"usage": 3}}
        assert await gateway.get_topic_internal_stats("acme/orders/events") == {}
