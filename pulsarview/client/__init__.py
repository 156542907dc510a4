"""
Streaming producer and consumer sessions.
"""

from .consumer import ConsumerConfig, ConsumerSession
from .producer import ProducerConfig, ProducerSession
from .session import (
    SessionCounters,
    SessionEvent,
    SessionEventKind,
    SessionState,
    decode_payload,
    encode_payload,
)
from .transport import StreamConnection, StreamConnector, WebSocketStreamConnector

__all__ = [
    "ConsumerConfig",
    "ConsumerSession",
    "ProducerConfig",
    "ProducerSession",
    "SessionCounters",
    "SessionEvent",
    "SessionEventKind",
    "SessionState",
    "StreamConnection",
    "StreamConnector",
    "WebSocketStreamConnector",
    "decode_payload",
    "encode_payload",
]
