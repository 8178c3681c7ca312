"""OAuth 2.1 server discovery primitive.

Fetches Authorization Server Metadata (RFC 8414) from the well-known path
under the server's origin. Many MCP servers never publish it, so any
failure degrades to the conventional /authorize, /token and /register
endpoints instead of raising.
"""

from __future__ import annotations

import logging
from urllib.parse import urljoin

import httpx
from pydantic import ValidationError

from mcp_client_auth.models.discovery import ServerMetadata
from mcp_client_auth.models.errors import DiscoveryError

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/oauth-authorization-server"
PROTOCOL_VERSION_HEADER = "MCP-Protocol-Version"


class MetadataResolver:
    """Resolves and caches the OAuth endpoints for one authorization origin."""

    def __init__(
        self,
        auth_base_url: str,
        protocol_version: str,
        timeout: float = 5.0,
    ):
        """Initialize the resolver.

        Args:
            auth_base_url: Scheme and host of the MCP server, path stripped
            protocol_version: Sent as the MCP-Protocol-Version header
            timeout: Bound on the discovery request in seconds
        """
        self.auth_base_url = auth_base_url.rstrip("/")
        self.protocol_version = protocol_version
        self.timeout = timeout
        self._http_client = httpx.AsyncClient(timeout=timeout)
        self._metadata: ServerMetadata | None = None

    @property
    def metadata(self) -> ServerMetadata | None:
        return self._metadata

    @property
    def discovery_url(self) -> str:
        return urljoin(self.auth_base_url, WELL_KNOWN_PATH)

    async def resolve(self) -> ServerMetadata:
        """Return server metadata, discovering it on first use.

        Never raises: discovery failures fall back to the default endpoints.
        """
        if self._metadata is not None:
            return self._metadata

        try:
            self._metadata = await self._fetch_metadata()
            logger.info(
                f"Discovered OAuth metadata for {self.auth_base_url} "
                f"(issuer {self._metadata.issuer})"
            )
        except DiscoveryError as e:
            logger.warning(
                f"OAuth metadata discovery failed, using default endpoints: {e}"
            )
            self._metadata = ServerMetadata.from_base_url(self.auth_base_url)

        return self._metadata

    def reset(self) -> None:
        """Forget cached metadata so the next resolve() fetches again."""
        self._metadata = None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    async def _fetch_metadata(self) -> ServerMetadata:
        """Fetch and parse the discovery document.

        Raises:
            DiscoveryError: On any network, status or parsing failure
        """
        url = self.discovery_url
        logger.debug(f"Fetching authorization server metadata from: {url}")

        try:
            response = await self._http_client.get(
                url,
                headers={PROTOCOL_VERSION_HEADER: self.protocol_version},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return ServerMetadata.model_validate_json(response.text)

        except httpx.HTTPStatusError as e:
            raise DiscoveryError(
                f"Metadata endpoint {url} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Failed to fetch metadata from {url}: {e}") from e
        except ValidationError as e:
            raise DiscoveryError(f"Invalid metadata from {url}: {e}") from e
