"""Publisher that sends batches of samples to an HTTP endpoint using httpx."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from .constants import DEFAULT_HTTP_METHOD, DEFAULT_HTTP_TIMEOUT_SEC, ICON_PUBLISH
from .models import DecodedSample
from .publisher import Listener, PublisherOptions, PublisherPipeline


@dataclass(frozen=True)
class HttpOptions:
    """HTTP endpoint settings."""
    endpoint: str
    # POST or PUT
    method: str = DEFAULT_HTTP_METHOD
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: float = DEFAULT_HTTP_TIMEOUT_SEC

    def __post_init__(self):
        method = self.method.upper()
        if method not in ('POST', 'PUT'):
            raise ValueError(f"Unsupported HTTP method: {self.method}")
        object.__setattr__(self, 'method', method)


class HttpPublisher(PublisherPipeline):
    """Sends each batch as a JSON array in a single request.

    The request body is a list of sample objects using the same camelCase
    property names as the console output.
    """

    destination = 'http'

    def __init__(
        self,
        listener: Listener,
        http_options: HttpOptions,
        options: Optional[PublisherOptions] = None,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(listener, options, logger)
        self.http_options = http_options
        self._client = client
        self._owns_client = client is None

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.http_options.timeout)
            self._owns_client = True
        self.logger.info(f"Publishing to {self.http_options.method} {self.http_options.endpoint}")

    async def publish(self, samples: List[DecodedSample]) -> None:
        if self._client is None:
            raise RuntimeError("HTTP client is not open")

        self.logger.debug(
            f"{ICON_PUBLISH} Sending {len(samples)} sample(s) to {self.http_options.endpoint}"
        )
        response = await self._client.request(
            self.http_options.method,
            self.http_options.endpoint,
            json=[sample.to_dict() for sample in samples],
            headers=self.http_options.headers
        )
        response.raise_for_status()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
