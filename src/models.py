"""
Core plugin types and exceptions.

This module contains the shared types used by the stores, the reconciler
and the sync cycle.
"""

import re
from dataclasses import dataclass, replace
from typing import Optional

# Plugin types understood by the Vault plugin catalog
PLUGIN_TYPES = ("auth", "database", "secret")

CATALOG_PATH = "sys/plugins/catalog"

_HEX_RE = re.compile(r"^[0-9a-f]+$")


class PluginSyncError(Exception):
    """Base class for all errors raised while syncing plugins."""


class ConfigurationError(PluginSyncError):
    """Raised when the configuration is missing or invalid."""


class SessionError(PluginSyncError):
    """Raised when a sync session or one of its clients cannot be built."""


class ObjectStoreError(PluginSyncError):
    """Raised when listing or downloading from the object store fails."""


class FilesystemError(PluginSyncError):
    """Raised when a local plugin file cannot be read or modified."""


class CatalogError(PluginSyncError):
    """Raised when a request to the Vault plugin catalog fails."""


class AuthenticationError(CatalogError):
    """Raised when logging into Vault fails."""


class IntegrityError(PluginSyncError):
    """Raised when a downloaded plugin does not match its published digest."""


def normalize_digest(digest: str) -> str:
    return digest.strip().lower()


@dataclass(frozen=True)
class PluginDescriptor:
    """
    Identity and integrity of a plugin version.

    The same descriptor is used for the object store copy, the local file and
    the Vault catalog entry. Two descriptors describe the same version only
    if name, type and digest all match.
    """

    name: str
    type: str
    digest: str

    def __post_init__(self):
        if not self.name:
            raise ValueError("Plugin name must not be empty")
        if "/" in self.name or self.name in (".", ".."):
            raise ValueError(f"Plugin name must be a plain file name: {self.name!r}")
        if self.type not in PLUGIN_TYPES:
            raise ValueError(
                f"Plugin type must be one of {', '.join(PLUGIN_TYPES)}: {self.type!r}"
            )
        digest = normalize_digest(self.digest)
        if not _HEX_RE.match(digest):
            raise ValueError(
                f"Plugin digest must be a hex encoded sha256 sum: {self.digest!r}"
            )
        object.__setattr__(self, "digest", digest)

    def __str__(self) -> str:
        return f"{self.type}/{self.name}"

    @property
    def catalog_path(self) -> str:
        """Vault path of the catalog entry for this plugin."""
        return f"{CATALOG_PATH}/{self.type}/{self.name}"

    def with_digest(self, digest: str) -> "PluginDescriptor":
        return replace(self, digest=digest)

    def same_digest(self, other: Optional["PluginDescriptor"]) -> bool:
        return other is not None and other.digest == self.digest
