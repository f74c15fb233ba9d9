"""
Store Base - Abstract interfaces for the remote plugin stores.

The reconciler only talks to these interfaces, so the S3 and Vault
implementations can be swapped for fakes in tests.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from models import PluginDescriptor


class ObjectStore(ABC):
    """
    Abstract base class for the store plugins are published to.

    Every published object carries the plugin type and its sha256 sum as
    metadata.
    """

    @property
    @abstractmethod
    def location(self) -> str:
        """Human readable location of the store (e.g. 's3://bucket')."""
        pass

    @abstractmethod
    async def list_plugins(self) -> List[PluginDescriptor]:
        """
        List all published plugins in store order.

        Raises:
            ObjectStoreError: If the listing fails or an object lacks metadata
        """
        pass

    @abstractmethod
    async def download(self, name: str, destination: Path) -> None:
        """
        Download a plugin to the destination path, overwriting any existing file.

        Raises:
            ObjectStoreError: If the download fails
            FilesystemError: If the destination cannot be written
        """
        pass


class PluginCatalog(ABC):
    """
    Abstract base class for the plugin catalog of the secret-management service.

    A catalog instance carries its own access token, obtained by login().
    """

    @abstractmethod
    async def login(self, role: str, jwt_path: str) -> None:
        """
        Authenticate with the identity token found at jwt_path.

        Raises:
            AuthenticationError: If the token cannot be read or login fails
        """
        pass

    @abstractmethod
    async def read_plugin(
        self, plugin: PluginDescriptor
    ) -> Optional[PluginDescriptor]:
        """
        Read the catalog entry for a plugin.

        Returns:
            The registered descriptor, or None if the plugin is not registered
        """
        pass

    @abstractmethod
    async def register_plugin(self, plugin: PluginDescriptor) -> None:
        """Write (or overwrite) the catalog entry for a plugin."""
        pass

    @abstractmethod
    async def reload_plugin(self, plugin: PluginDescriptor) -> None:
        """Reload all mounts backed by the plugin."""
        pass

    async def revoke_self(self) -> None:
        """Revoke the access token obtained by login(). Optional."""

    async def close(self) -> None:
        """Release any resources held by the catalog client."""
