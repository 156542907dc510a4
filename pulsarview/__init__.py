"""
pulsarview - management and messaging client for Apache Pulsar style clusters.

## Layout

- **core**: topic addressing, errors, models, settings, stores and the
  cluster registry
- **admin**: the admin REST gateway, one per cluster
- **client**: producer and consumer sessions over the websocket API
- **cli**: the ``pulsarview`` command line

## Quick Start

```python
from pulsarview import ClusterConnection, ClusterRegistry, TopicAddress
from pulsarview.client import ConsumerConfig, ConsumerSession

registry = ClusterRegistry()
await registry.add_cluster(ClusterConnection("local", "http://localhost:8080"))

session = ConsumerSession.for_cluster(
    registry,
    "local",
    ConsumerConfig(TopicAddress.parse("orders"), "inspector"),
    on_message=print,
)
await session.open()
```
"""

from .admin.gateway import AdminGateway
from .core.cluster_registry import ClusterRegistry, ImportStrategy, TenantListing
from .core.config import AuthMode, ClientSettings, ClusterConnection
from .core.errors import (
    AuthenticationError,
    AuthorizationError,
    HttpError,
    NotConnectedError,
    NotFoundError,
    PulsarViewError,
    TransportError,
)
from .core.key_filter import KeyFilter, KeyFilterMode
from .core.topic_address import PersistenceMode, TopicAddress

__version__ = "0.3.0"

__all__ = [
    "AdminGateway",
    "AuthMode",
    "AuthenticationError",
    "AuthorizationError",
    "ClientSettings",
    "ClusterConnection",
    "ClusterRegistry",
    "HttpError",
    "ImportStrategy",
    "KeyFilter",
    "KeyFilterMode",
    "NotConnectedError",
    "NotFoundError",
    "PersistenceMode",
    "PulsarViewError",
    "TenantListing",
    "TopicAddress",
    "TransportError",
    "__version__",
]
