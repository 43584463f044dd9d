"""Listing of the browser/OS environments a vendor supports."""

from collections.abc import Callable
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .common.exceptions import CatalogUnavailableError
from .common.http import Credentials, create_client, is_success
from .common.logging import get_logger

logger = get_logger(__name__)


class NormalizedEnvironment(BaseModel):
    """Vendor environment descriptor mapped to Selenium capability names.

    Accepts both snake_case names and the camelCase capability names
    (``browserName``, ``platformVersion``, ...).
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    browser_name: str
    version: str | None = None
    browser_version: str | None = None
    platform: str | None = None
    platform_name: str | None = None
    platform_version: str | None = None
    descriptor: dict[str, Any] = Field(default_factory=dict, description="Original vendor entry")


EnvironmentNormalizer = Callable[[dict[str, Any]], NormalizedEnvironment]


def normalize_passthrough(entry: dict[str, Any]) -> NormalizedEnvironment:
    """Validate an entry that already uses capability names."""
    return NormalizedEnvironment.model_validate({**entry, "descriptor": entry})


class EnvironmentCatalog:
    """Fetches and normalizes a vendor's environment listing."""

    def __init__(self, *, proxy: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.proxy = proxy
        self._transport = transport

    async def fetch_environments(
        self,
        url: str,
        credentials: Credentials | None = None,
        normalizer: EnvironmentNormalizer | None = None,
    ) -> list[NormalizedEnvironment]:
        """Fetch the listing and normalize every entry.

        Args:
            url: Environment listing URL
            credentials: Optional ``(username, access_key)`` for basic auth
            normalizer: Maps one raw entry to a NormalizedEnvironment

        Returns:
            Normalized environments in listing order

        Raises:
            CatalogUnavailableError: On a non-2xx response, a body that is not
                a JSON array, or a network failure
        """
        normalize = normalizer or normalize_passthrough

        try:
            async with create_client(
                proxy=self.proxy, credentials=credentials, transport=self._transport
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.error("Environment listing unreachable", url=url, error=str(e))
            raise CatalogUnavailableError(None, f"Could not reach {url}: {e}") from e

        if not is_success(response):
            logger.error("Environment listing unavailable", url=url, status_code=response.status_code)
            raise CatalogUnavailableError(response.status_code)

        try:
            entries = response.json()
        except ValueError as e:
            raise CatalogUnavailableError(
                response.status_code, "Environment listing is not valid JSON"
            ) from e
        if not isinstance(entries, list):
            raise CatalogUnavailableError(
                response.status_code, "Environment listing is not a JSON array"
            )

        environments = [normalize(entry) for entry in entries]
        logger.debug("Environment listing fetched", url=url, count=len(environments))
        return environments
