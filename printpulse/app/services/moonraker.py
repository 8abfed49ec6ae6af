"""Moonraker (Klipper) HTTP API client.

Only read-only endpoints are used: object queries, the object catalog,
file metadata and ranged file downloads. The consolidated status query is
the only call that raises; every enrichment lookup returns None on any
failure so a missing sensor or file never breaks a status update.
"""

import asyncio
import logging
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

STATUS_OBJECTS = ("display_status", "print_stats", "virtual_sdcard", "extruder", "heater_bed", "toolhead")


class MoonrakerError(Exception):
    """Base class for telemetry fetch failures."""

    kind = "connection"
    retryable = False


class PrinterUnreachableError(MoonrakerError):
    """Transport failure: DNS, refused connection, timeout."""

    kind = "unreachable"
    retryable = True


class PrinterAuthenticationError(MoonrakerError):
    """HTTP 401/403 - needs a configuration change, not a retry."""

    kind = "authentication"

    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class PrinterApiNotFoundError(MoonrakerError):
    """HTTP 404 - wrong address or no Moonraker behind it."""

    kind = "not_found"


class PrinterConnectionError(MoonrakerError):
    """Any other failure: unexpected status code, malformed response."""


def build_base_url(address: str) -> str:
    """Accept ``host``, ``host:port`` or a full URL."""
    address = address.strip().rstrip("/")
    if not address.startswith(("http://", "https://")):
        address = f"http://{address}"
    return address


class MoonrakerClient:
    """Client for one printer's Moonraker API."""

    def __init__(
        self,
        address: str,
        timeout: float = 5.0,
        lookup_timeout: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the Moonraker client.

        Args:
            address: Printer address (e.g., 192.168.1.40, voron.local:7125, http://voron.local)
            timeout: Default request timeout in seconds
            lookup_timeout: Timeout for catalog and single-object lookups
            transport: Optional httpx transport (used by tests)
        """
        self.address = address
        self.base_url = build_base_url(address)
        self.timeout = timeout
        self.lookup_timeout = lookup_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling limits."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_keepalive_connections=5,
                    max_connections=10,
                    keepalive_expiry=30.0,
                ),
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def query_status(self) -> dict:
        """Fetch the consolidated print status in a single request.

        Returns:
            The ``result.status`` object.

        Raises:
            PrinterUnreachableError: Transport failure or timeout.
            PrinterAuthenticationError: HTTP 401/403.
            PrinterApiNotFoundError: HTTP 404.
            PrinterConnectionError: Any other status code or a malformed body.
        """
        client = await self._get_client()
        url = "/printer/objects/query?" + "&".join(STATUS_OBJECTS)
        try:
            response = await client.get(url)
        except httpx.TransportError as e:
            raise PrinterUnreachableError(str(e) or type(e).__name__) from e

        if response.status_code in (401, 403):
            raise PrinterAuthenticationError(response.status_code)
        if response.status_code == 404:
            raise PrinterApiNotFoundError(f"{self.base_url}{url} returned 404")
        if response.status_code != 200:
            raise PrinterConnectionError(f"HTTP {response.status_code} from {self.base_url}")

        try:
            status = response.json()["result"]["status"]
        except (ValueError, KeyError, TypeError) as e:
            raise PrinterConnectionError(f"Malformed status response: {e}") from e
        if not isinstance(status, dict):
            raise PrinterConnectionError("Malformed status response: status is not an object")
        return status

    async def query_status_with_retry(self, retries: int = 0, retry_delay: float = 0.5) -> dict:
        """query_status, retrying only retryable failures.

        Args:
            retries: Extra attempts after the first one
            retry_delay: Seconds to wait between attempts
        """
        attempt = 1
        while True:
            try:
                status = await self.query_status()
                if attempt > 1:
                    logger.info("Status query succeeded on attempt %d/%d", attempt, retries + 1)
                return status
            except MoonrakerError as e:
                if not e.retryable or attempt > retries:
                    raise
                logger.warning(
                    "Status query failed (attempt %d/%d): %s. Retrying in %dms...",
                    attempt,
                    retries + 1,
                    e,
                    int(retry_delay * 1000),
                )
                # Drop pooled connections that may be stale
                await self.close()
                await asyncio.sleep(retry_delay)
                attempt += 1

    async def query_object(self, name: str) -> dict | None:
        """Query a single printer object, e.g. ``temperature_sensor chamber``.

        Returns the object's status fields, or None if unavailable.
        """
        try:
            client = await self._get_client()
            response = await client.get(
                f"/printer/objects/query?{quote(name, safe='')}", timeout=self.lookup_timeout
            )
            if response.status_code != 200:
                return None
            status = response.json().get("result", {}).get("status")
            if not status:
                return None
            entry = next(iter(status.values()))
            return entry or None
        except Exception as e:
            logger.debug("Object query for '%s' failed: %s", name, e)
            return None

    async def list_objects(self) -> list[str] | None:
        """Fetch the list of all loaded printer objects."""
        try:
            client = await self._get_client()
            response = await client.get("/printer/objects/list", timeout=self.lookup_timeout)
            if response.status_code != 200:
                return None
            objects = response.json().get("result", {}).get("objects")
            return objects if isinstance(objects, list) else None
        except Exception as e:
            logger.debug("Object list query failed: %s", e)
            return None

    async def get_file_metadata(self, filename: str) -> dict | None:
        """Fetch Moonraker's parsed metadata for a file relative to the gcodes root."""
        try:
            client = await self._get_client()
            response = await client.get(
                "/server/files/metadata",
                params={"filename": filename},
                headers={"Cache-Control": "no-cache"},
            )
            if response.status_code != 200:
                logger.debug("Metadata API returned %d for %s", response.status_code, filename)
                return None
            result = response.json().get("result")
            return result if isinstance(result, dict) else None
        except Exception as e:
            logger.debug("Metadata API error for %s: %s", filename, e)
            return None

    async def fetch_file_head(self, path: str, length: int) -> str | None:
        """Download the first ``length`` bytes of a file as text.

        Args:
            path: File path including its root, e.g. ``gcodes/benchy.gcode``
            length: Number of bytes to request (sent as a Range header)
        """
        try:
            client = await self._get_client()
            response = await client.get(
                f"/server/files/{quote(path)}",
                headers={"Range": f"bytes=0-{length - 1}"},
            )
            if response.status_code not in (200, 206):
                logger.debug("File fetch returned %d for %s", response.status_code, path)
                return None
            # Servers that ignore Range send the whole file
            return response.content[:length].decode("utf-8", errors="replace")
        except Exception as e:
            logger.debug("File fetch failed for %s: %s", path, e)
            return None
