"""Command line tests for commands that only touch the configuration file."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from pulsarview.cli.main import cli


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "clusters": [
                    {
                        "name": "local",
                        "webServiceUrl": "http://localhost:8080",
                        "authMethod": "none",
                        "tlsAllowInsecure": False,
                    }
                ]
            }
        )
    )
    return path


def invoke(config_path: Path, *args: str):
    return CliRunner().invoke(cli, ["--config", str(config_path), *args], obj={})


def test_cluster_list(config_path: Path) -> None:
    result = invoke(config_path, "cluster", "list")
    assert result.exit_code == 0, result.output
    assert "local" in result.output


def test_cluster_list_empty(tmp_path: Path) -> None:
    result = invoke(tmp_path / "missing.json", "cluster", "list")
    assert result.exit_code == 0
    assert "No clusters configured" in result.output


def test_manual_namespace_round_trip(config_path: Path) -> None:
    added = invoke(config_path, "namespace", "add", "local", "acme/orders")
    assert added.exit_code == 0, added.output
    assert json.loads(config_path.read_text())["manualNamespaces"] == {
        "local": ["acme/orders"]
    }

    again = invoke(config_path, "namespace", "add", "local", "acme/orders")
    assert "already registered" in again.output

    removed = invoke(config_path, "namespace", "remove", "local", "acme/orders")
    assert removed.exit_code == 0
    assert json.loads(config_path.read_text())["manualNamespaces"] == {}


def test_malformed_namespace_is_an_error(config_path: Path) -> None:
    result = invoke(config_path, "namespace", "add", "local", "not-a-path")
    assert result.exit_code == 1
    assert "tenant/namespace" in result.output


def test_unknown_cluster_is_an_error(config_path: Path) -> None:
    result = invoke(config_path, "cluster", "remove", "elsewhere")
    assert result.exit_code == 1
    assert "elsewhere" in result.output


def test_remove_cluster(config_path: Path) -> None:
    result = invoke(config_path, "cluster", "remove", "local")
    assert result.exit_code == 0, result.output
    assert json.loads(config_path.read_text())["clusters"] == []


def test_export_never_writes_tokens_by_default(
    config_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("PULSAR_TOKEN", raising=False)
    output = tmp_path / "export.json"

    result = invoke(config_path, "config", "export", str(output))

    assert result.exit_code == 0, result.output
    document = json.loads(output.read_text())
    assert document["version"] == "1.0"
    assert [c["name"] for c in document["clusters"]] == ["local"]
    assert "authToken" not in document["clusters"][0]


def test_import_rejects_non_object(config_path: Path, tmp_path: Path) -> None:
    source = tmp_path / "import.json"
    source.write_text("[]")

    result = invoke(config_path, "config", "import", str(source))

    assert result.exit_code == 1


def test_bad_property_syntax(config_path: Path) -> None:
    result = invoke(
        config_path, "produce", "local", "t/n/x", "hello", "--property", "novalue"
    )
    assert result.exit_code == 2
    assert "key=value" in result.output
