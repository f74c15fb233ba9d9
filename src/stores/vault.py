"""
Vault Plugin Catalog - registers and reloads plugins through the Vault HTTP API.

Vault may still be booting when the sidecar starts, so every request is
retried on any unexpected response (not only 5xx), bounded by a
configurable number of retries.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp
from pydantic import BaseModel, ValidationError

from models import (
    AuthenticationError,
    CatalogError,
    PluginDescriptor,
    SessionError,
)
from stores.base import PluginCatalog

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({200, 201, 202, 204})

RELOAD_PATH = "sys/plugins/reload/backend"
REVOKE_SELF_PATH = "auth/token/revoke-self"


# Response models


class AuthInfo(BaseModel):
    client_token: str
    lease_duration: int = 0
    renewable: bool = False


class LoginResponse(BaseModel):
    """Response of a login request to an auth method."""

    auth: AuthInfo


class CatalogEntry(BaseModel):
    name: Optional[str] = None
    sha256: str = ""
    command: str = ""
    builtin: bool = False


class CatalogEntryResponse(BaseModel):
    """Response of a read on sys/plugins/catalog/:type/:name."""

    data: Optional[CatalogEntry] = None


@dataclass
class RetryPolicy:
    """
    Bounded retry for Vault requests.

    A request is attempted at most max_retries + 1 times. The wait before
    retry n is a random value between wait_min and wait_max, times n.
    """

    max_retries: int = 8
    wait_min: float = 1.0
    wait_max: float = 1.5

    def should_retry(self, status: Optional[int]) -> bool:
        """Any transport error or unexpected status is retried."""
        return status not in SUCCESS_STATUSES

    def wait_time(self, retry: int) -> float:
        return random.uniform(self.wait_min, self.wait_max) * retry


class VaultPluginCatalog(PluginCatalog):
    """
    Plugin catalog backed by a Vault server.

    Holds one aiohttp ClientSession and one access token; both live as long
    as the sync session that created the catalog.
    """

    def __init__(
        self,
        address: str,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 60.0,
        auth_path: str = "",
    ):
        if not address.startswith(("http://", "https://")):
            raise SessionError(f"invalid Vault address: {address!r}")
        self.address = address.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.auth_path = auth_path
        self.token: Optional[str] = None
        self._session: Optional[aiohttp.ClientSession] = None

    def _url(self, path: str) -> str:
        return f"{self.address}/v1/{path.strip('/')}"

    def _get_headers(self) -> Dict[str, str]:
        headers = {}
        if self.token:
            headers["X-Vault-Token"] = self.token
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        allow_missing: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Send a request to Vault, retrying per the retry policy.

        Args:
            method: HTTP method
            path: Vault API path without the /v1 prefix
            payload: JSON body
            allow_missing: Return None on 404 instead of retrying

        Returns:
            Decoded JSON body, or None for empty and missing responses

        Raises:
            CatalogError: If no attempt succeeded
        """
        url = self._url(path)
        session = self._get_session()
        attempts = self.retry_policy.max_retries + 1
        last_error = ""

        for attempt in range(attempts):
            if attempt > 0:
                await asyncio.sleep(self.retry_policy.wait_time(attempt))

            try:
                async with session.request(
                    method, url, headers=self._get_headers(), json=payload
                ) as response:
                    status = response.status
                    if allow_missing and status == 404:
                        return None
                    if not self.retry_policy.should_retry(status):
                        if status == 204:
                            return None
                        try:
                            return await response.json(content_type=None)
                        except ValueError as e:
                            raise CatalogError(
                                f"invalid JSON response from {method} {url}: {e}"
                            ) from e
                    last_error = (
                        f"unexpected status code: {status} - {await response.text()}"
                    )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = f"{type(e).__name__}: {e}"

            logger.warning(
                f"{method} {url} failed (attempt {attempt + 1}/{attempts}): "
                f"{last_error}"
            )

        raise CatalogError(
            f"{method} {url}: giving up after {attempts} attempt(s): {last_error}"
        )

    async def login(self, role: str, jwt_path: str) -> None:
        try:
            jwt = (await asyncio.to_thread(Path(jwt_path).read_text)).strip()
        except OSError as e:
            raise AuthenticationError(
                f"failed to read service account token {jwt_path}: {e}"
            ) from e

        login_path = f"{self.auth_path.strip('/')}/login"
        try:
            body = await self._request("POST", login_path, {"role": role, "jwt": jwt})
            response = LoginResponse.model_validate(body)
        except CatalogError as e:
            raise AuthenticationError(
                f"failed to write vault-path: {login_path}: {e}"
            ) from e
        except ValidationError as e:
            raise AuthenticationError(
                f"unexpected login response from vault-path {login_path}: {e}"
            ) from e

        self.token = response.auth.client_token
        logger.debug(
            f"Logged into Vault with role {role}, "
            f"lease duration {response.auth.lease_duration}s"
        )

    async def read_plugin(
        self, plugin: PluginDescriptor
    ) -> Optional[PluginDescriptor]:
        vault_path = plugin.catalog_path
        try:
            body = await self._request("GET", vault_path, allow_missing=True)
            entry = CatalogEntryResponse.model_validate(body or {}).data
        except CatalogError as e:
            raise CatalogError(f"failed to read vault-path: {vault_path}: {e}") from e
        except ValidationError as e:
            raise CatalogError(
                f"unexpected catalog entry at vault-path {vault_path}: {e}"
            ) from e

        if entry is None or not entry.sha256:
            # Builtin entries have no sha256
            return None
        try:
            return plugin.with_digest(entry.sha256)
        except ValueError:
            logger.warning(
                f"Ignoring malformed sha256 {entry.sha256!r} at vault-path {vault_path}"
            )
            return None

    async def register_plugin(self, plugin: PluginDescriptor) -> None:
        vault_path = plugin.catalog_path
        payload = {"sha256": plugin.digest, "command": plugin.name}
        try:
            await self._request("POST", vault_path, payload)
        except CatalogError as e:
            raise CatalogError(f"failed to write vault-path: {vault_path}: {e}") from e

    async def reload_plugin(self, plugin: PluginDescriptor) -> None:
        try:
            await self._request("POST", RELOAD_PATH, {"plugin": plugin.name})
        except CatalogError as e:
            raise CatalogError(f"failed to write vault-path: {RELOAD_PATH}: {e}") from e

    async def revoke_self(self) -> None:
        try:
            await self._request("POST", REVOKE_SELF_PATH)
        except CatalogError as e:
            raise CatalogError(
                f"failed to write vault-path: {REVOKE_SELF_PATH}: {e}"
            ) from e
        self.token = None

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
