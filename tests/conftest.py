"""Pytest configuration and fixtures."""

import hashlib
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from config import Config, ObjectStoreConfig, SyncConfig, VaultConfig
from models import CatalogError, ObjectStoreError, PluginDescriptor
from stores.base import ObjectStore, PluginCatalog
from stores.filesystem import LocalPluginDirectory

PLUGIN_BYTES = b"#!/bin/sh\necho vault-plugin-auth-foo\n"


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeObjectStore(ObjectStore):
    """In-memory object store; downloads write real files."""

    def __init__(self):
        self.objects: Dict[str, Tuple[str, bytes, Optional[str]]] = {}
        self.downloads: List[str] = []
        self.failing_downloads: set = set()
        self.list_error: Optional[Exception] = None

    @property
    def location(self) -> str:
        return "s3://test-bucket"

    def publish(self, name: str, plugin_type: str, data: bytes, digest=None):
        """Publish a plugin; digest overrides the metadata sum (to fake corruption)."""
        self.objects[name] = (plugin_type, data, digest)
        return PluginDescriptor(name, plugin_type, digest or sha256(data))

    def unpublish(self, name: str):
        del self.objects[name]

    async def list_plugins(self):
        if self.list_error:
            raise self.list_error
        return [
            PluginDescriptor(name, plugin_type, digest or sha256(data))
            for name, (plugin_type, data, digest) in self.objects.items()
        ]

    async def download(self, name: str, destination: Path) -> None:
        self.downloads.append(name)
        if name in self.failing_downloads:
            raise ObjectStoreError(f"failed to download s3://test-bucket/{name}")
        Path(destination).write_bytes(self.objects[name][1])


class FakeCatalog(PluginCatalog):
    """In-memory plugin catalog recording every call."""

    def __init__(self):
        self.entries: Dict[Tuple[str, str], str] = {}
        self.calls: List[tuple] = []
        self.failing: set = set()
        self.login_error: Optional[Exception] = None
        self.closed = False

    def _record(self, op: str, *args):
        self.calls.append((op,) + args)
        if op in self.failing:
            raise CatalogError(f"{op} failed")

    def writes(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("register", "reload")]

    async def login(self, role: str, jwt_path: str) -> None:
        self.calls.append(("login", role, jwt_path))
        if self.login_error:
            raise self.login_error

    async def read_plugin(self, plugin):
        self._record("read", str(plugin))
        digest = self.entries.get((plugin.type, plugin.name))
        return plugin.with_digest(digest) if digest else None

    async def register_plugin(self, plugin):
        self._record("register", {"sha256": plugin.digest, "command": plugin.name})
        self.entries[(plugin.type, plugin.name)] = plugin.digest

    async def reload_plugin(self, plugin):
        self._record("reload", {"plugin": plugin.name})

    async def revoke_self(self):
        self._record("revoke")

    async def close(self):
        self.closed = True


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def plugin_dir(tmp_path):
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
def directory(plugin_dir):
    return LocalPluginDirectory(str(plugin_dir))


@pytest.fixture
def token_file(tmp_path):
    path = tmp_path / "token"
    path.write_text("eyJhbGciOiJSUzI1NiJ9.test.jwt\n")
    return path


@pytest.fixture
def sample_config(plugin_dir, token_file):
    """Valid configuration pointing at temporary paths."""
    return Config(
        object_store=ObjectStoreConfig(bucket="test-bucket"),
        vault=VaultConfig(
            address="http://127.0.0.1:8200",
            auth_path="auth/kubernetes",
            auth_role="vault-plugin-manager",
            max_retries=2,
            token_path=str(token_file),
            retry_wait_min=0,
            retry_wait_max=0,
        ),
        sync=SyncConfig(plugin_path=str(plugin_dir), interval=0.05),
    )
