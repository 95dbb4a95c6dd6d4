# chunkget/transport.py
"""
HTTP transport: validator discovery and ranged conditional fetches over aiohttp.
"""

import asyncio
import logging
import ssl
from typing import Optional

import aiohttp
import certifi

from chunkget.errors import (
    AmbiguousValidatorError,
    MissingValidatorError,
    TransientTransportError,
    ValidatorNotOkError,
)
from chunkget.models import ByteRange, FetchResponse

logger = logging.getLogger(__name__)

USER_AGENT = 'ChunkGet/1.0'


class HttpTransport:
    """Owns the aiohttp session used for one download."""

    def __init__(self, concurrency: int = 8, user_agent: str = USER_AGENT):
        self.concurrency = concurrency
        self.user_agent = user_agent
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "HttpTransport":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self):
        """Create the client session."""
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(limit_per_host=self.concurrency, ssl=ssl_context)
        timeout = aiohttp.ClientTimeout(total=None, connect=30, sock_read=30)

        # Ranges address the stored representation, so ask for it unencoded.
        headers = {
            'User-Agent': self.user_agent,
            'Accept-Encoding': 'identity',
            'Connection': 'keep-alive'
        }
        self.session = aiohttp.ClientSession(connector=connector, timeout=timeout, headers=headers)

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def discover_validator(self, url: str) -> str:
        """Return the resource's ETag, which every chunk fetch is conditioned on."""
        logger.info("Checking if the download '%s' exists", url)
        try:
            async with self.session.head(url, allow_redirects=True) as response:
                if response.status != 200:
                    raise ValidatorNotOkError(response.status)
                etags = list(dict.fromkeys(response.headers.getall('ETag', [])))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientTransportError(f"Validator check failed: {type(e).__name__}: {e}") from e

        if not etags:
            raise MissingValidatorError()
        if len(etags) > 1:
            raise AmbiguousValidatorError(etags)
        logger.info("Resource validator: %s", etags[0])
        return etags[0]

    async def fetch(self, url: str, byte_range: ByteRange, validator: str) -> FetchResponse:
        """GET one byte range, only if the resource still matches the validator."""
        headers = {'Range': byte_range.header(), 'If-Match': validator}
        try:
            async with self.session.get(url, headers=headers) as response:
                body = await response.read()
                return FetchResponse(status=response.status, body=body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientTransportError(
                f"Fetching {byte_range.header()} failed: {type(e).__name__}: {e}") from e
