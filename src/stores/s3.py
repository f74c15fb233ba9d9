"""
S3 Object Store - lists and downloads published plugins from an S3 bucket.

Each plugin is a single object whose key is the plugin name. The plugin
type and sha256 sum are stored as user metadata (``x-amz-meta-type`` and
``x-amz-meta-sha256sum``).
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from models import (
    FilesystemError,
    ObjectStoreError,
    PluginDescriptor,
    SessionError,
)
from stores.base import ObjectStore

logger = logging.getLogger(__name__)

TYPE_METADATA_KEY = "Type"
SHA256_METADATA_KEY = "Sha256sum"

CHUNK_SIZE = 1024 * 1024


def _metadata_value(metadata: Dict[str, str], key: str) -> Optional[str]:
    """Look up a user metadata value; boto3 lowercases metadata keys."""
    wanted = key.lower()
    for k, v in metadata.items():
        if k.lower() == wanted:
            return v
    return None


class S3ObjectStore(ObjectStore):
    """Object store backed by an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        region: str,
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ):
        self.bucket = bucket
        if client is None:
            try:
                session = boto3.session.Session(region_name=region)
                client = session.client("s3", endpoint_url=endpoint_url)
            except (BotoCoreError, ValueError) as e:
                raise SessionError(f"failed to create S3 client: {e}") from e
        self.client = client

    @property
    def location(self) -> str:
        return f"s3://{self.bucket}"

    async def list_plugins(self) -> List[PluginDescriptor]:
        try:
            return await asyncio.to_thread(self._list_plugins)
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(
                f"failed to list plugins from {self.location}: {e}"
            ) from e

    def _list_plugins(self) -> List[PluginDescriptor]:
        plugins = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket):
            for item in page.get("Contents", []):
                key = item["Key"]
                if key.endswith("/"):
                    logger.debug(f"Skipping directory marker {self.location}/{key}")
                    continue
                plugins.append(self._describe(key))
        return plugins

    def _describe(self, key: str) -> PluginDescriptor:
        try:
            head = self.client.head_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(
                f"failed to get head object for plugin {key}: {e}"
            ) from e

        metadata = head.get("Metadata", {})
        plugin_type = _metadata_value(metadata, TYPE_METADATA_KEY)
        if not plugin_type:
            raise ObjectStoreError(
                f"expected '{TYPE_METADATA_KEY}' in metadata for plugin: {key}"
            )
        digest = _metadata_value(metadata, SHA256_METADATA_KEY)
        if not digest:
            raise ObjectStoreError(
                f"expected '{SHA256_METADATA_KEY}' in metadata for plugin: {key}"
            )

        try:
            return PluginDescriptor(name=key, type=plugin_type, digest=digest)
        except ValueError as e:
            raise ObjectStoreError(f"invalid metadata for plugin {key}: {e}") from e

    async def download(self, name: str, destination: Path) -> None:
        try:
            await asyncio.to_thread(self._download, name, Path(destination))
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(
                f"failed to download {self.location}/{name}: {e}"
            ) from e
        except OSError as e:
            raise FilesystemError(
                f"failed to write {self.location}/{name} to {destination}: {e}"
            ) from e

    def _download(self, name: str, destination: Path) -> None:
        # Replace atomically; the destination may be a running executable
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", suffix=".download", dir=destination.parent
        )
        try:
            with os.fdopen(fd, "wb") as f:
                response = self.client.get_object(Bucket=self.bucket, Key=name)
                body = response["Body"]
                try:
                    for chunk in body.iter_chunks(CHUNK_SIZE):
                        f.write(chunk)
                finally:
                    body.close()
            os.replace(tmp_name, destination)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
