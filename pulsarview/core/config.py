import re
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

type DurationSeconds = float
type ClusterName = str

DEFAULT_REQUEST_TIMEOUT: DurationSeconds = 60.0
DEFAULT_CONNECT_TIMEOUT: DurationSeconds = 10.0
DEFAULT_HISTORY_LIMIT = 100


@dataclass(slots=True)
class ClientSettings:
    """pulsarview client settings."""

    request_timeout: DurationSeconds = DEFAULT_REQUEST_TIMEOUT
    connect_timeout: DurationSeconds = DEFAULT_CONNECT_TIMEOUT
    log_level: str = "INFO"
    history_limit: int = DEFAULT_HISTORY_LIMIT

    def __post_init__(self) -> None:
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.history_limit < 1:
            raise ValueError("history_limit must be at least 1")

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "ClientSettings":
        """Build settings from a persisted mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class AuthMode(Enum):
    NONE = "none"
    TOKEN = "token"
    OAUTH2 = "oauth2"
    TLS = "tls"


@dataclass(slots=True)
class ClusterConnection:
    """Connection definition for one cluster.

    The auth token is held in memory only. ``to_persisted`` never includes it;
    durable storage of secrets is the secret store's job.
    """

    name: ClusterName
    web_service_url: str
    streaming_url: str | None = None
    auth_mode: AuthMode = AuthMode.NONE
    auth_token: str | None = field(default=None, repr=False)
    allow_insecure_tls: bool = False

    def __post_init__(self) -> None:
        self.name = self.name.strip()
        self.web_service_url = self.web_service_url.strip().rstrip("/")
        if not self.name:
            raise ValueError("Cluster name is required")
        if not re.match(r"^https?://", self.web_service_url):
            raise ValueError(
                f"Web service URL must start with http:// or https://: {self.web_service_url}"
            )
        if self.streaming_url:
            self.streaming_url = self.streaming_url.strip().rstrip("/")

    @property
    def resolved_streaming_url(self) -> str:
        """Streaming base URL, derived from the web service URL when not set."""
        if self.streaming_url:
            return self.streaming_url
        return re.sub(r"^http", "ws", self.web_service_url)

    def to_persisted(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "webServiceUrl": self.web_service_url,
            "authMethod": self.auth_mode.value,
            "tlsAllowInsecure": self.allow_insecure_tls,
        }
        if self.streaming_url:
            data["streamingUrl"] = self.streaming_url
        return data

    @classmethod
    def from_persisted(cls, data: dict[str, Any]) -> "ClusterConnection":
        return cls(
            name=data["name"],
            web_service_url=data["webServiceUrl"],
            streaming_url=data.get("streamingUrl"),
            auth_mode=AuthMode(data.get("authMethod", "none")),
            allow_insecure_tls=bool(data.get("tlsAllowInsecure", False)),
        )


@dataclass(frozen=True, slots=True)
class StreamEndpoint:
    """What a messaging session needs to reach a cluster's streaming surface."""

    base_url: str
    auth_token: str | None = field(default=None, repr=False)
    allow_insecure_tls: bool = False
    cluster_name: ClusterName = ""
