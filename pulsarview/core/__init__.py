"""
pulsarview core: topic addressing, errors, models, configuration and the
cluster registry.
"""

from .config import AuthMode, ClientSettings, ClusterConnection, StreamEndpoint
from .errors import (
    AuthenticationError,
    AuthorizationError,
    ClusterAlreadyExistsError,
    FailureCategory,
    HttpError,
    NetworkError,
    NotConnectedError,
    NotFoundError,
    ParseError,
    PulsarViewError,
    RequestTimeoutError,
    ResourceNotFoundError,
    TransportError,
    classify_failure,
    is_permission_error,
)
from .key_filter import KeyFilter, KeyFilterMode
from .topic_address import (
    ParseConfidence,
    PersistenceMode,
    TopicAddress,
    TopicSummary,
    collapse_partitions,
)

__all__ = [
    "AuthMode",
    "AuthenticationError",
    "AuthorizationError",
    "ClientSettings",
    "ClusterAlreadyExistsError",
    "ClusterConnection",
    "FailureCategory",
    "HttpError",
    "KeyFilter",
    "KeyFilterMode",
    "NetworkError",
    "NotConnectedError",
    "NotFoundError",
    "ParseConfidence",
    "ParseError",
    "PersistenceMode",
    "PulsarViewError",
    "RequestTimeoutError",
    "ResourceNotFoundError",
    "StreamEndpoint",
    "TopicAddress",
    "TopicSummary",
    "TransportError",
    "classify_failure",
    "collapse_partitions",
    "is_permission_error",
]
