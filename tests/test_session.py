import base64
import json

from pulsarview.client.session import (
    SessionEvent,
    SessionEventChannel,
    SessionEventKind,
    auth_headers,
    consumer_url,
    decode_payload,
    encode_payload,
    producer_url,
)
from pulsarview.core.config import StreamEndpoint
from pulsarview.core.models import StartPosition, SubscriptionType
from pulsarview.core.topic_address import TopicAddress


def b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


class TestUrls:
    def test_producer_url(self) -> None:
        address = TopicAddress.parse("acme/orders/events").partition(2)
        assert (
            producer_url("ws://broker:8080/", address)
            == "ws://broker:8080/ws/v2/producer/persistent/acme/orders/events-partition-2"
        )

    def test_consumer_url(self) -> None:
        url = consumer_url(
            "wss://broker",
            TopicAddress.parse("non-persistent://acme/orders/events"),
            "my sub",
            StartPosition.EARLIEST,
            SubscriptionType.KEY_SHARED,
        )
        assert url == (
            "wss://broker/ws/v2/consumer/non-persistent/acme/orders/events/my%20sub"
            "?initialPosition=Earliest&subscriptionType=Key_Shared"
        )

    def test_consumer_url_without_type(self) -> None:
        url = consumer_url("ws://b", TopicAddress.parse("t/n/x"), "s")
        assert url.endswith("/s?initialPosition=Latest")

    def test_auth_headers(self) -> None:
        assert auth_headers(StreamEndpoint("ws://b", "tkn")) == {
            "Authorization": "Bearer tkn"
        }
        assert auth_headers(StreamEndpoint("ws://b")) == {}


class TestPayloads:
    def test_encode(self) -> None:
        assert encode_payload("hé") == b64("hé")
        assert encode_payload(b"\x00\x01") == "AAE="

    def test_json_is_pretty_printed(self) -> None:
        decoded = decode_payload(b64('{"id":1,"name":"café"}'))
        assert decoded == json.dumps({"id": 1, "name": "café"}, indent=2, ensure_ascii=False)

    def test_plain_text_is_returned_decoded(self) -> None:
        assert decode_payload(b64("hello")) == "hello"

    def test_invalid_base64_is_returned_raw(self) -> None:
        assert decode_payload("not base64!") == "not base64!"

    def test_binary_is_returned_raw(self) -> None:
        raw = base64.b64encode(b"\xff\xfe").decode()
        assert decode_payload(raw) == raw


class TestEventChannel:
    def test_listener_failure_does_not_stop_others(self) -> None:
        channel = SessionEventChannel()
        seen: list[SessionEventKind] = []

        def broken(event: SessionEvent) -> None:
            raise RuntimeError("listener bug")

        channel.subscribe(broken)
        channel.subscribe(lambda e: seen.append(e.kind))
        channel.emit(SessionEvent(SessionEventKind.CONNECTED))

        assert seen == [SessionEventKind.CONNECTED]
        assert channel.count(SessionEventKind.CONNECTED) == 1

    def test_unsubscribe(self) -> None:
        channel = SessionEventChannel()
        seen: list[SessionEvent] = []
        unsubscribe = channel.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        channel.emit(SessionEvent(SessionEventKind.ERROR))

        assert seen == []

    def test_history_is_bounded(self) -> None:
        channel = SessionEventChannel(max_history=3)
        for i in range(5):
            channel.emit(SessionEvent(SessionEventKind.MESSAGE_SENT, detail=str(i)))
        assert [e.detail for e in channel.recent()] == ["2", "3", "4"]
        assert [e.detail for e in channel.recent(1)] == ["4"]
