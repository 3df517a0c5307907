"""WebDAV client for the single remote snapshot file.

Talks to one configured endpoint that holds exactly one JSON file, the
canonical remote Snapshot.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator
from urllib.parse import urlparse

import httpx

from ..codec import encode_bytes
from ..config import SyncConfig
from ..errors import ConfigurationError, ConnectivityError, ParseError, ProtocolError
from ..models import Snapshot

logger = logging.getLogger(__name__)

DEFAULT_FILE_NAME = "caffeine-tracker-data.json"
USER_AGENT = "CaffeineTracker/1.0 (WebDAVClient)"

# Settings that only make sense on the device that owns them
DEVICE_LOCAL_SETTINGS = (
    "webdavPassword",
    "themeMode",
    "webdavEnabled",
    "webdavServer",
    "webdavUsername",
)


@dataclass
class ConnectionTestResult:
    """Outcome of a connectivity probe."""

    success: bool
    message: str


def _status_message(response: httpx.Response, action: str) -> str:
    if response.status_code == 401:
        return "Authentication failed (401): check username and password"
    if response.status_code == 403:
        return f"Permission denied (403): no {action} access"
    if response.status_code == 507:
        return "Insufficient storage (507): the server is full"
    return f"{action.capitalize()} failed: {response.status_code} {response.reason_phrase}"


class WebDAVClient:
    """Async client for probing, downloading and uploading the remote snapshot.

    The Basic credential is computed once and sent with every request.
    """

    def __init__(
        self,
        server: str,
        username: str,
        password: str,
        file_name: str = DEFAULT_FILE_NAME,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            server: Base URL of the WebDAV collection.
            username: Account name.
            password: Account password.
            file_name: Name of the remote snapshot file.
            timeout: Per-request timeout in seconds.
            http_client: Optional shared client (tests inject a mock transport).
        """
        self.server = server if not server or server.endswith("/") else f"{server}/"
        self.username = username
        self.password = password
        self.file_name = file_name
        self.timeout = timeout
        self._http_client = http_client
        self._auth_header = (
            "Basic " + encode_bytes(f"{username}:{password}".encode("utf-8"))
            if username and password
            else None
        )

        logger.debug(
            f"WebDAVClient created for {self.server[:30] or '<unset>'}, "
            f"auth={'yes' if self._auth_header else 'no'}"
        )

    @classmethod
    def from_config(
        cls, config: SyncConfig, http_client: httpx.AsyncClient | None = None
    ) -> "WebDAVClient":
        return cls(
            server=config.server,
            username=config.username,
            password=config.password,
            file_name=config.file_name,
            timeout=config.timeout_seconds,
            http_client=http_client,
        )

    @property
    def file_url(self) -> str:
        return f"{self.server}{self.file_name}"

    def is_configured(self) -> bool:
        return bool(self.server and self.username and self.password and self._auth_header)

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError("WebDAV is not configured (server, username or password missing)")
        if urlparse(self.server).scheme not in ("http", "https"):
            raise ConfigurationError("Server URL must start with http:// or https://")

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT, "Authorization": self._auth_header or ""}
        if extra:
            headers.update(extra)
        return headers

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                yield client

    async def _request(
        self,
        method: str,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Send one request to the snapshot file URL.

        Raises:
            ConnectivityError: On transport failure or timeout.
        """
        logger.debug(f"{method} {self.file_url}")
        try:
            async with self._client() as client:
                response = await asyncio.wait_for(
                    client.request(
                        method,
                        self.file_url,
                        headers=self._headers(headers),
                        content=content,
                        timeout=httpx.Timeout(self.timeout),
                    ),
                    timeout=self.timeout,
                )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise ConnectivityError(f"{method} request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ConnectivityError(f"{method} request failed: {e}") from e

        logger.debug(f"{method} -> {response.status_code}")
        return response

    async def test_connection(self) -> ConnectionTestResult:
        """Probe the endpoint with a zero-depth PROPFIND.

        A missing file counts as success. Never raises.
        """
        try:
            self._require_configured()
        except ConfigurationError as e:
            return ConnectionTestResult(success=False, message=str(e))

        try:
            response = await self._request("PROPFIND", headers={"Depth": "0"})
        except ConnectivityError as e:
            logger.warning(f"Connection test failed: {e}")
            return ConnectionTestResult(success=False, message=f"Connection error: {e}")

        if response.is_success or response.status_code == 404:
            return ConnectionTestResult(
                success=True,
                message=f"Connected ({response.status_code} {response.reason_phrase})",
            )

        return ConnectionTestResult(
            success=False, message=_status_message(response, "connection")
        )

    async def file_exists(self) -> bool:
        """Check whether the remote snapshot exists. Never raises."""
        try:
            self._require_configured()
            response = await self._request("HEAD")
        except (ConfigurationError, ConnectivityError) as e:
            logger.warning(f"Existence check failed: {e}")
            return False
        return response.is_success

    async def download(self) -> Snapshot | None:
        """Fetch and parse the remote snapshot.

        Returns:
            The remote Snapshot, or None if the file does not exist yet.

        Raises:
            ConfigurationError: If credentials are missing.
            ConnectivityError: On transport failure.
            ProtocolError: On any non-success status other than 404.
            ParseError: If the body is not a valid snapshot.
        """
        self._require_configured()
        response = await self._request("GET")

        if response.status_code == 404:
            logger.info("Remote file not found, treating as first sync")
            return None
        if not response.is_success:
            raise ProtocolError(
                _status_message(response, "download"), status_code=response.status_code
            )

        text = response.text
        if not text.strip():
            logger.warning("Remote file is empty")
            return None

        try:
            data = json.loads(text)
        except ValueError as e:
            raise ParseError(f"Downloaded data is not valid JSON: {e}") from e

        snapshot = Snapshot.from_dict(data)
        logger.info(
            f"Downloaded snapshot: {len(snapshot.records)} records, "
            f"{len(snapshot.drinks)} drinks, syncTimestamp={snapshot.sync_timestamp}"
        )
        return snapshot

    def _upload_payload(self, snapshot: Snapshot) -> dict[str, Any]:
        payload = snapshot.to_dict()
        payload["webdavPassword"] = None
        for key in DEVICE_LOCAL_SETTINGS:
            payload["userSettings"].pop(key, None)
        return payload

    async def upload(self, snapshot: Snapshot) -> None:
        """Write the snapshot as the canonical remote file.

        The sync credential and device-local settings are never uploaded.

        Raises:
            ConfigurationError: If credentials are missing.
            ConnectivityError: On transport failure.
            ProtocolError: On a non-success status.
        """
        self._require_configured()
        body = json.dumps(
            self._upload_payload(snapshot), indent=2, ensure_ascii=False
        ).encode("utf-8")

        response = await self._request(
            "PUT",
            headers={"Content-Type": "application/json; charset=utf-8"},
            content=body,
        )
        if not response.is_success:
            raise ProtocolError(
                _status_message(response, "upload"), status_code=response.status_code
            )

        logger.info(f"Uploaded snapshot ({len(body)} bytes)")

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()

    async def __aenter__(self) -> "WebDAVClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
