"""Abstract base class for upstream data providers."""

import logging
from abc import ABC, abstractmethod

import httpx

logger = logging.getLogger(__name__)

# Raised by parsers and pydantic when a payload has an unexpected shape
MALFORMED_PAYLOAD_ERRORS = (ValueError, TypeError, AttributeError, KeyError)


class ProviderError(Exception):
    """Raised when an upstream call fails or returns a malformed payload."""

    def __init__(self, provider: str, name: str, message: str) -> None:
        self.provider = provider
        self.name = name
        super().__init__(f"{provider}: {message} ({name})")


class PackageNotFoundError(ProviderError):
    """Raised when a package cannot be found in the registry."""

    def __init__(self, provider: str, name: str) -> None:
        super().__init__(provider, name, "package not found")


class BaseProvider(ABC):
    """Base class for upstream providers.

    Each provider is a request/response client: it issues one HTTP call,
    parses the payload into a typed model and raises ``ProviderError`` for
    transport errors, non-2xx statuses and malformed payloads alike. Retry
    and degradation are the orchestrator's job, not the provider's.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0) -> None:
        """Initialize the provider.

        Args:
            client: Optional shared httpx client. If not provided, one is
                created per request.
            timeout: Request timeout in seconds for per-request clients.
        """
        self._client = client
        self._timeout = timeout

    @property
    @abstractmethod
    def name(self) -> str:
        """Short provider name used in logs and cache keys."""
        ...

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)

    async def _get(self, url: str, package: str, headers: dict | None = None) -> httpx.Response:
        """Issue a GET request and raise ``ProviderError`` on any failure."""
        client = await self._get_client()
        try:
            response = await client.get(url, headers=headers or {})
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise PackageNotFoundError(self.name, package) from e
            raise ProviderError(self.name, package, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderError(self.name, package, f"request failed: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()

    async def _fetch_json(self, url: str, package: str) -> dict:
        """Fetch a JSON object from a URL."""
        response = await self._get(url, package)
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(self.name, package, "invalid JSON payload") from e
        if not isinstance(data, dict):
            raise ProviderError(self.name, package, "unexpected JSON payload")
        return data

    async def _fetch_text(self, url: str, package: str) -> str:
        """Fetch a text body from a URL."""
        response = await self._get(url, package)
        return response.text


def encode_package_name(name: str) -> str:
    """URL-encode a scoped package name for registry paths."""
    return name.replace("/", "%2F")
