"""
Local plugin directory - reads and prepares plugin executables on disk.
"""

import asyncio
import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

from models import FilesystemError, PluginDescriptor

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
EXECUTABLE_MODE = 0o755


def sha256_file(path: Path) -> str:
    """Compute the hex encoded sha256 sum of a file's full contents."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class LocalPluginDirectory:
    """
    The directory the secret-management service loads plugin executables from.

    The directory is owned exclusively by this process, so no locking is done.
    """

    def __init__(self, plugin_path: str):
        self.plugin_path = Path(plugin_path)

    def path_for(self, name: str) -> Path:
        return self.plugin_path / name

    def ensure_exists(self) -> None:
        """Create the plugin directory if it does not exist yet."""
        try:
            self.plugin_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"could not create plugin directory {self.plugin_path}: {e}"
            ) from e

    async def read_local(
        self, remote: PluginDescriptor
    ) -> Optional[PluginDescriptor]:
        """
        Describe the local copy of a plugin.

        Args:
            remote: Descriptor of the published plugin; provides name and type

        Returns:
            Descriptor with the digest of the local file, or None if the file
            does not exist

        Raises:
            FilesystemError: If the file exists but cannot be read
        """
        path = self.path_for(remote.name)
        try:
            digest = await asyncio.to_thread(sha256_file, path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise FilesystemError(
                f"failed to calculate sha256 of executable {path}: {e}"
            ) from e

        return PluginDescriptor(name=path.name, type=remote.type, digest=digest)

    async def set_executable(self, name: str) -> None:
        """
        Make a plugin file executable.

        Raises:
            FilesystemError: If the permissions cannot be changed
        """
        path = self.path_for(name)
        try:
            await asyncio.to_thread(os.chmod, path, EXECUTABLE_MODE)
        except OSError as e:
            raise FilesystemError(f"failed to chmod {path}: {e}") from e
        logger.debug(f"Set mode {oct(EXECUTABLE_MODE)} on {path}")
