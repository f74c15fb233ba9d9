"""Unit tests for reconciler.py - Three-way plugin reconciliation."""

import os
import stat
from unittest.mock import AsyncMock

import pytest

from conftest import PLUGIN_BYTES, sha256
from models import (
    CatalogError,
    FilesystemError,
    IntegrityError,
    ObjectStoreError,
    PluginDescriptor,
)
from reconciler import (
    PluginStatus,
    ReconcileAction,
    ReconcileResult,
    Reconciler,
    needs_download,
    needs_registration,
)

DIGEST_A = "a" * 64
DIGEST_B = "b" * 64


class TestDecisions:
    """Tests for the pure decision helpers."""

    def test_needs_download_when_missing(self):
        """Test that a missing local file needs a download."""
        remote = PluginDescriptor("foo", "auth", DIGEST_A)
        assert needs_download(remote, None) is True

    def test_needs_download_when_different(self):
        """Test that a different local file needs a download."""
        remote = PluginDescriptor("foo", "auth", DIGEST_A)
        assert needs_download(remote, remote.with_digest(DIGEST_B)) is True

    def test_no_download_when_equal(self):
        """Test that a matching local file needs no download."""
        remote = PluginDescriptor("foo", "auth", DIGEST_A)
        assert needs_download(remote, remote.with_digest(DIGEST_A)) is False

    def test_needs_registration(self):
        """Test catalog comparison against the local file."""
        local = PluginDescriptor("foo", "auth", DIGEST_A)
        assert needs_registration(local, None) is True
        assert needs_registration(local, local.with_digest(DIGEST_B)) is True
        assert needs_registration(local, local) is False


class TestReconcileResult:
    """Tests for result dataclasses."""

    def test_default_values(self):
        result = ReconcileResult(PluginDescriptor("foo", "auth", DIGEST_A))
        assert result.action is ReconcileAction.NONE
        assert result.changed is False

    def test_plugin_status_to_dict(self):
        remote = PluginDescriptor("foo", "auth", DIGEST_A)
        status = PluginStatus(
            remote=remote, local=None, catalog=None, action=ReconcileAction.DOWNLOADED
        )
        assert status.in_sync is False
        assert status.to_dict() == {
            "name": "foo",
            "type": "auth",
            "remote_sha256": DIGEST_A,
            "local_sha256": None,
            "catalog_sha256": None,
            "action": "downloaded",
        }


@pytest.mark.asyncio
class TestReconciler:
    """Tests for Reconciler.reconcile against fake stores and a real directory."""

    @pytest.fixture
    def reconciler(self, object_store, directory, catalog):
        return Reconciler(object_store, directory, catalog)

    async def test_missing_plugin_is_downloaded_and_registered(
        self, reconciler, object_store, catalog, plugin_dir
    ):
        """Test download, chmod, register and reload of a new plugin."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)

        result = await reconciler.reconcile(remote)

        assert result.action is ReconcileAction.DOWNLOADED
        assert result.descriptor == remote
        assert object_store.downloads == ["auth-foo"]

        path = plugin_dir / "auth-foo"
        assert path.read_bytes() == PLUGIN_BYTES
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o755

        assert catalog.writes() == [
            ("register", {"sha256": sha256(PLUGIN_BYTES), "command": "auth-foo"}),
            ("reload", {"plugin": "auth-foo"}),
        ]

    async def test_scenario_missing_file_with_short_digest(self, directory, catalog):
        """Test the register/reload payloads for a plugin published as abc123."""
        remote = PluginDescriptor("auth-foo", "auth", "abc123")
        store = AsyncMock()
        store.location = "s3://test-bucket"
        directory.read_local = AsyncMock(side_effect=[None, remote])
        directory.set_executable = AsyncMock()
        reconciler = Reconciler(store, directory, catalog)

        result = await reconciler.reconcile(remote)

        assert result.action is ReconcileAction.DOWNLOADED
        store.download.assert_awaited_once_with(
            "auth-foo", directory.path_for("auth-foo")
        )
        directory.set_executable.assert_awaited_once_with("auth-foo")
        assert catalog.writes() == [
            ("register", {"sha256": "abc123", "command": "auth-foo"}),
            ("reload", {"plugin": "auth-foo"}),
        ]

    async def test_in_sync_plugin_does_nothing(
        self, reconciler, object_store, catalog, plugin_dir
    ):
        """Test that a plugin matching on disk and in Vault triggers no action."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)
        (plugin_dir / "auth-foo").write_bytes(PLUGIN_BYTES)
        catalog.entries[("auth", "auth-foo")] = remote.digest

        result = await reconciler.reconcile(remote)

        assert result.action is ReconcileAction.NONE
        assert object_store.downloads == []
        assert catalog.writes() == []

    async def test_stale_catalog_is_reregistered(
        self, reconciler, object_store, catalog, plugin_dir
    ):
        """Test that a stale catalog digest is fixed without downloading."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)
        (plugin_dir / "auth-foo").write_bytes(PLUGIN_BYTES)
        catalog.entries[("auth", "auth-foo")] = DIGEST_B

        result = await reconciler.reconcile(remote)

        assert result.action is ReconcileAction.REGISTERED
        assert object_store.downloads == []
        assert catalog.writes() == [
            ("register", {"sha256": remote.digest, "command": "auth-foo"}),
            ("reload", {"plugin": "auth-foo"}),
        ]

    async def test_unregistered_plugin_is_registered(
        self, reconciler, object_store, catalog, plugin_dir
    ):
        """Test that a current file without catalog entry is registered."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)
        (plugin_dir / "auth-foo").write_bytes(PLUGIN_BYTES)

        result = await reconciler.reconcile(remote)

        assert result.action is ReconcileAction.REGISTERED
        assert catalog.entries[("auth", "auth-foo")] == remote.digest

    async def test_changed_plugin_is_replaced(
        self, reconciler, object_store, catalog, plugin_dir
    ):
        """Test that new bytes in the object store overwrite the local file."""
        (plugin_dir / "auth-foo").write_bytes(b"old version")
        catalog.entries[("auth", "auth-foo")] = sha256(b"old version")
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)

        result = await reconciler.reconcile(remote)

        assert result.action is ReconcileAction.DOWNLOADED
        assert (plugin_dir / "auth-foo").read_bytes() == PLUGIN_BYTES
        assert catalog.entries[("auth", "auth-foo")] == remote.digest

    async def test_reconcile_is_idempotent(self, reconciler, object_store, catalog):
        """Test that a second pass without changes issues no writes."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)
        await reconciler.reconcile(remote)
        catalog.calls.clear()
        object_store.downloads.clear()

        result = await reconciler.reconcile(remote)

        assert result.action is ReconcileAction.NONE
        assert object_store.downloads == []
        assert catalog.writes() == []

    async def test_integrity_mismatch_blocks_registration(
        self, reconciler, object_store, catalog
    ):
        """Test that a download not matching the published digest is not registered."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES, digest=DIGEST_A)

        with pytest.raises(IntegrityError) as exc_info:
            await reconciler.reconcile(remote)

        assert DIGEST_A in str(exc_info.value)
        assert object_store.downloads == ["auth-foo"]
        assert catalog.writes() == []

    async def test_download_failure(self, reconciler, object_store, catalog):
        """Test that a failed download propagates and nothing is registered."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)
        object_store.failing_downloads.add("auth-foo")

        with pytest.raises(ObjectStoreError):
            await reconciler.reconcile(remote)
        assert catalog.writes() == []

    async def test_register_failure_skips_reload(
        self, reconciler, object_store, catalog
    ):
        """Test that reload is not attempted after a failed registration."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)
        catalog.failing.add("register")

        with pytest.raises(CatalogError):
            await reconciler.reconcile(remote)
        assert [c[0] for c in catalog.writes()] == ["register"]

    async def test_unreadable_local_file(
        self, reconciler, object_store, catalog, plugin_dir
    ):
        """Test that a local read error other than not-found fails the plugin."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)
        (plugin_dir / "auth-foo").mkdir()

        with pytest.raises(FilesystemError):
            await reconciler.reconcile(remote)
        assert object_store.downloads == []

    async def test_inspect_has_no_side_effects(
        self, reconciler, object_store, catalog, plugin_dir
    ):
        """Test that inspect reports the pending action without performing it."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)
        (plugin_dir / "auth-foo").write_bytes(PLUGIN_BYTES)
        catalog.entries[("auth", "auth-foo")] = DIGEST_B

        status = await reconciler.inspect(remote)

        assert status.action is ReconcileAction.REGISTERED
        assert status.local == remote
        assert status.catalog.digest == DIGEST_B
        assert object_store.downloads == []
        assert catalog.writes() == []

    async def test_inspect_missing_file(self, reconciler, object_store):
        """Test that inspect reports a download for a missing file."""
        remote = object_store.publish("auth-foo", "auth", PLUGIN_BYTES)

        status = await reconciler.inspect(remote)

        assert status.action is ReconcileAction.DOWNLOADED
        assert status.local is None
        assert status.catalog is None
