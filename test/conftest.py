"""
Pytest configuration and fixtures for bolter tests.

Every test runs against an isolated environment: no user config file, no
Docker login state, and a temporary cache directory.
"""

import base64
import json
import os
from pathlib import Path

import pytest

from bolter import operations
from bolter.config import BolterConfig

from fakes import FakeRegistry, write_binary


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "posix_only: marks tests that need POSIX exec/permissions"
    )
    config.addinivalue_line(
        "markers", "end_to_end: marks push-then-pull/run scenarios"
    )


def pytest_collection_modifyitems(config, items):
    """Skip POSIX-only tests elsewhere."""
    if os.name == "posix":
        return
    skip_posix = pytest.mark.skip(reason="requires a POSIX platform")
    for item in items:
        if "posix_only" in item.keywords:
            item.add_marker(skip_posix)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep user configuration and credentials out of every test."""
    monkeypatch.setenv("BOLTER_CONFIG", str(tmp_path / "no-such-config.yaml"))
    monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path / "docker"))
    for name in ("BOLTER_REGISTRY", "BOLTER_CACHE_DIR", "BOLTER_INSECURE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def registry(monkeypatch) -> FakeRegistry:
    """Fake registry wired in as the client every operation opens."""
    fake = FakeRegistry()
    monkeypatch.setattr(operations, "RegistryClient", fake.client)
    return fake


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def config(cache_dir) -> BolterConfig:
    return BolterConfig(cache_dir=cache_dir)


@pytest.fixture
def make_binary(tmp_path):
    """Write a binary under the test's temp dir and return its path."""
    def _make(name: str, content: bytes, executable: bool = False) -> Path:
        return write_binary(tmp_path / "bin" / name, content, executable)
    return _make


@pytest.fixture
def docker_config(tmp_path):
    """Write ``$DOCKER_CONFIG/config.json`` from a {key: "user:pass"} map."""
    def _write(entries) -> Path:
        path = tmp_path / "docker" / "config.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        auths = {
            key: {"auth": base64.b64encode(value.encode()).decode()}
            for key, value in entries.items()
        }
        path.write_text(json.dumps({"auths": auths}))
        return path
    return _write
