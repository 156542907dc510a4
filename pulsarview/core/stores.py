"""
Collaborator interfaces for secrets and persisted configuration.

The registry only talks to the protocols defined here. Two concrete stores
ship with the package: an in-memory pair used by tests and short-lived
processes, and a JSON file store for the command line.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

type ManualNamespaces = dict[str, list[str]]

DEFAULT_CONFIG_PATH = Path("~/.config/pulsarview/config.json")


def token_key(cluster_name: str) -> str:
    """Secret store key for a cluster's auth token."""
    return f"pulsarview.cluster.{cluster_name}.token"


@runtime_checkable
class SecretStore(Protocol):
    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str) -> None: ...
    async def delete(self, key: str) -> None: ...


@runtime_checkable
class ConfigurationStore(Protocol):
    def load_clusters(self) -> list[dict[str, Any]]: ...
    def save_clusters(self, clusters: list[dict[str, Any]]) -> None: ...
    def load_manual_namespaces(self) -> ManualNamespaces: ...
    def save_manual_namespaces(self, namespaces: ManualNamespaces) -> None: ...
    def load_settings(self) -> dict[str, Any]: ...
    def save_settings(self, settings: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class InMemorySecretStore:
    """Secret store that never touches disk."""

    secrets: dict[str, str] = field(default_factory=dict)

    async def get(self, key: str) -> str | None:
        return self.secrets.get(key)

    async def set(self, key: str, value: str) -> None:
        self.secrets[key] = value

    async def delete(self, key: str) -> None:
        self.secrets.pop(key, None)


@dataclass(slots=True)
class InMemoryConfigurationStore:
    clusters: list[dict[str, Any]] = field(default_factory=list)
    manual_namespaces: ManualNamespaces = field(default_factory=dict)
    settings: dict[str, Any] = field(default_factory=dict)

    def load_clusters(self) -> list[dict[str, Any]]:
        return [dict(c) for c in self.clusters]

    def save_clusters(self, clusters: list[dict[str, Any]]) -> None:
        self.clusters = [dict(c) for c in clusters]

    def load_manual_namespaces(self) -> ManualNamespaces:
        return {k: list(v) for k, v in self.manual_namespaces.items()}

    def save_manual_namespaces(self, namespaces: ManualNamespaces) -> None:
        self.manual_namespaces = {k: list(v) for k, v in namespaces.items()}

    def load_settings(self) -> dict[str, Any]:
        return dict(self.settings)

    def save_settings(self, settings: dict[str, Any]) -> None:
        self.settings = dict(settings)


class JsonFileConfigurationStore:
    """Configuration persisted as one JSON document.

    Layout::

        {"clusters": [...], "manualNamespaces": {...}, "settings": {...}}
    """

    def __init__(self, path: Path | str = DEFAULT_CONFIG_PATH) -> None:
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error("Ignoring unreadable configuration {}: {}", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.error("Ignoring configuration {}: not a JSON object", self.path)
            return {}
        return data

    def _update(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # atomic replace
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load_clusters(self) -> list[dict[str, Any]]:
        clusters = self._read().get("clusters", [])
        return [c for c in clusters if isinstance(c, dict)]

    def save_clusters(self, clusters: list[dict[str, Any]]) -> None:
        self._update("clusters", clusters)

    def load_manual_namespaces(self) -> ManualNamespaces:
        raw = self._read().get("manualNamespaces", {})
        return {str(k): [str(ns) for ns in v] for k, v in raw.items()}

    def save_manual_namespaces(self, namespaces: ManualNamespaces) -> None:
        self._update("manualNamespaces", namespaces)

    def load_settings(self) -> dict[str, Any]:
        return dict(self._read().get("settings", {}))

    def save_settings(self, settings: dict[str, Any]) -> None:
        self._update("settings", settings)
