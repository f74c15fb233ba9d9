"""
Plugin Sync Session - one full pass over all published plugins.

A session is built at the start of every cycle and closed at its end, so the
Vault token and HTTP connections never outlive the cycle that created them.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from config import Config
from models import PluginDescriptor, PluginSyncError, SessionError
from reconciler import PluginStatus, ReconcileResult, Reconciler
from stores.base import ObjectStore, PluginCatalog
from stores.filesystem import LocalPluginDirectory
from stores.s3 import S3ObjectStore
from stores.vault import RetryPolicy, VaultPluginCatalog

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Outcome of one sync cycle."""

    listed: List[PluginDescriptor] = field(default_factory=list)
    results: List[ReconcileResult] = field(default_factory=list)
    failures: List[Tuple[PluginDescriptor, Exception]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures

    @property
    def changed(self) -> List[ReconcileResult]:
        return [r for r in self.results if r.changed]


class SyncSession:
    """
    Clients and settings for one sync cycle.

    Use as an async context manager; leaving the context closes the catalog
    client (and revokes its token when configured to).
    """

    def __init__(
        self,
        config: Config,
        object_store: ObjectStore,
        directory: LocalPluginDirectory,
        catalog: PluginCatalog,
    ):
        self.config = config
        self.object_store = object_store
        self.directory = directory
        self.catalog = catalog
        self.reconciler = Reconciler(object_store, directory, catalog)
        self._logged_in = False

    async def __aenter__(self) -> "SyncSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        try:
            if self._logged_in and self.config.vault.revoke_token:
                logger.info("Revoke Vault token")
                await self.catalog.revoke_self()
        except PluginSyncError as e:
            logger.error(f"Failed to revoke Vault token: {e}")
        finally:
            self._logged_in = False
            await self.catalog.close()

    async def _prepare(self) -> List[PluginDescriptor]:
        """List the published plugins, then log into Vault."""
        logger.info(f"Get list from {self.object_store.location}")
        plugins = await self.object_store.list_plugins()

        logger.info("Log into Vault")
        await self.catalog.login(
            self.config.vault.auth_role, self.config.vault.token_path
        )
        self._logged_in = True
        return plugins

    async def sync_plugins(self) -> CycleReport:
        """
        Run one sync cycle.

        Per-plugin errors are logged and recorded in the report; they never
        stop the remaining plugins from being synced.

        Raises:
            ObjectStoreError: If the plugins cannot be listed
            AuthenticationError: If logging into Vault fails
        """
        report = CycleReport(listed=await self._prepare())

        for plugin in report.listed:
            logger.info(f"Sync plugin {plugin}")
            try:
                result = await self.reconciler.reconcile(plugin)
            except PluginSyncError as e:
                logger.error(f"Failed to sync plugin {plugin}: {e}")
                report.failures.append((plugin, e))
            except Exception as e:
                logger.error(f"Failed to sync plugin {plugin}: {e}", exc_info=True)
                report.failures.append((plugin, e))
            else:
                report.results.append(result)

        logger.info(
            f"Synced {len(report.listed)} plugin(s): "
            f"{len(report.changed)} changed, {len(report.failures)} failed"
        )
        return report

    async def status(self) -> List[PluginStatus]:
        """
        Compare every published plugin with its local and catalog copies.

        Nothing is downloaded, registered or reloaded.
        """
        plugins = await self._prepare()
        return [await self.reconciler.inspect(plugin) for plugin in plugins]


def build_session(
    config: Config,
    object_store: Optional[ObjectStore] = None,
    catalog: Optional[PluginCatalog] = None,
) -> SyncSession:
    """
    Build a sync session from configuration.

    Raises:
        SessionError: If a client cannot be created
    """
    vault = config.vault
    try:
        if object_store is None:
            object_store = S3ObjectStore(
                bucket=config.object_store.bucket,
                region=config.object_store.region,
                endpoint_url=config.object_store.endpoint_url,
            )
        if catalog is None:
            catalog = VaultPluginCatalog(
                address=vault.address,
                retry_policy=RetryPolicy(
                    max_retries=vault.max_retries,
                    wait_min=vault.retry_wait_min,
                    wait_max=vault.retry_wait_max,
                ),
                timeout=vault.timeout,
                auth_path=vault.auth_path,
            )
    except SessionError:
        raise
    except Exception as e:
        raise SessionError(f"failed to create plugin sync session: {e}") from e

    return SyncSession(
        config=config,
        object_store=object_store,
        directory=LocalPluginDirectory(config.sync.plugin_path),
        catalog=catalog,
    )
