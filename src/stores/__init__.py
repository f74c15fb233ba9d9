"""
Stores - accessors for the three places a plugin lives.

- ObjectStore: the authoritative published copy (S3)
- LocalPluginDirectory: the executables on the local filesystem
- PluginCatalog: the Vault plugin catalog
"""

from stores.base import ObjectStore, PluginCatalog
from stores.filesystem import LocalPluginDirectory

__all__ = [
    "ObjectStore",
    "PluginCatalog",
    "LocalPluginDirectory",
]
