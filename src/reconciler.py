"""
Plugin Reconciler - three-way sync of a single plugin.

Compares the published copy (object store), the local executable and the
catalog entry, and performs only the actions needed to make all three agree:

- local file missing or different: download, chmod, verify, register, reload
- local file current but catalog stale or missing: register, reload
- everything matches: nothing

The reconciler only adds and updates. Plugins that disappear from the object
store are left on disk and in the catalog.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models import IntegrityError, PluginDescriptor
from stores.base import ObjectStore, PluginCatalog
from stores.filesystem import LocalPluginDirectory

logger = logging.getLogger(__name__)


class ReconcileAction(Enum):
    """What a reconciliation did (or would do) for a plugin."""

    NONE = "none"
    REGISTERED = "registered"
    DOWNLOADED = "downloaded"


@dataclass
class ReconcileResult:
    """Result from reconciling one plugin."""

    descriptor: PluginDescriptor
    action: ReconcileAction = ReconcileAction.NONE

    @property
    def changed(self) -> bool:
        return self.action is not ReconcileAction.NONE


@dataclass
class PluginStatus:
    """Three-way view of a plugin, gathered without side effects."""

    remote: PluginDescriptor
    local: Optional[PluginDescriptor]
    catalog: Optional[PluginDescriptor]
    action: ReconcileAction

    @property
    def in_sync(self) -> bool:
        return self.action is ReconcileAction.NONE

    def to_dict(self):
        return {
            "name": self.remote.name,
            "type": self.remote.type,
            "remote_sha256": self.remote.digest,
            "local_sha256": self.local.digest if self.local else None,
            "catalog_sha256": self.catalog.digest if self.catalog else None,
            "action": self.action.value,
        }


def needs_download(
    remote: PluginDescriptor, local: Optional[PluginDescriptor]
) -> bool:
    """The local file is missing or differs from the published plugin."""
    return not remote.same_digest(local)


def needs_registration(
    local: PluginDescriptor, registered: Optional[PluginDescriptor]
) -> bool:
    """The catalog entry is missing or points to other bytes than the local file."""
    return not local.same_digest(registered)


class Reconciler:
    """
    Reconciles plugins between an object store, a local plugin directory and
    a plugin catalog.

    The catalog must already be logged in. Plugins are reconciled one at a
    time; a reconciler holds no state between calls.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        directory: LocalPluginDirectory,
        catalog: PluginCatalog,
    ):
        self.object_store = object_store
        self.directory = directory
        self.catalog = catalog

    async def reconcile(self, remote: PluginDescriptor) -> ReconcileResult:
        """
        Bring one plugin in sync with its published copy.

        Args:
            remote: Descriptor of the plugin as listed by the object store

        Returns:
            ReconcileResult describing the action taken

        Raises:
            PluginSyncError: If any step fails. IntegrityError means the
                downloaded file did not match and nothing was registered.
        """
        local = await self.directory.read_local(remote)

        if needs_download(remote, local):
            local = await self._download(remote)
            await self._register(local)
            return ReconcileResult(local, ReconcileAction.DOWNLOADED)

        logger.info("Read plugin info from Vault")
        registered = await self.catalog.read_plugin(local)
        if registered is None:
            logger.info(f"Plugin {local} not registered")
        elif not needs_registration(local, registered):
            logger.info(f"Plugin {local} already registered")
            return ReconcileResult(local, ReconcileAction.NONE)

        await self._register(local)
        return ReconcileResult(local, ReconcileAction.REGISTERED)

    async def inspect(self, remote: PluginDescriptor) -> PluginStatus:
        """Gather the three-way state of a plugin without changing anything."""
        local = await self.directory.read_local(remote)
        registered = await self.catalog.read_plugin(local or remote)

        if needs_download(remote, local):
            action = ReconcileAction.DOWNLOADED
        elif needs_registration(local, registered):
            action = ReconcileAction.REGISTERED
        else:
            action = ReconcileAction.NONE

        return PluginStatus(
            remote=remote, local=local, catalog=registered, action=action
        )

    async def _download(self, remote: PluginDescriptor) -> PluginDescriptor:
        path = self.directory.path_for(remote.name)
        logger.info(
            f"Downloading {self.object_store.location}/{remote.name} to {path}"
        )
        await self.object_store.download(remote.name, path)
        await self.directory.set_executable(remote.name)

        logger.info("Read downloaded plugin from filesystem")
        local = await self.directory.read_local(remote)
        if not remote.same_digest(local):
            found = local.digest if local else "no file"
            raise IntegrityError(
                f"sha256 mismatch for downloaded plugin {remote} at {path}: "
                f"expected {remote.digest}, got {found}"
            )
        return local

    async def _register(self, plugin: PluginDescriptor) -> None:
        logger.info(f"Register plugin {plugin} at Vault")
        await self.catalog.register_plugin(plugin)

        logger.info(f"Reload plugin {plugin} in Vault")
        await self.catalog.reload_plugin(plugin)
