"""Admin REST client."""

from .gateway import AdminGateway, PeekedMessage

__all__ = ["AdminGateway", "PeekedMessage"]
