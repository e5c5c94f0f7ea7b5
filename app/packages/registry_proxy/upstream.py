"""Outbound HTTP calls to the upstream registry and token service.

Each call opens its own ``httpx.AsyncClient`` and keeps it alive until the
caller closes the returned response, so large blobs can be streamed without
buffering.
"""

from dataclasses import dataclass
from typing import AsyncIterator, Mapping, Optional

import httpx
import structlog

from .errors import UpstreamUnreachable

logger = structlog.stdlib.get_logger(__name__)

STREAM_CHUNK_SIZE = 65536


@dataclass(frozen=True)
class UpstreamTimeouts:
    """Timeouts in seconds for a single outbound call."""

    connect: float = 30.0
    read: float = 1800.0  # 30 minutes for large image downloads
    write: float = 1800.0
    pool: float = 10.0

    def to_httpx(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect,
            read=self.read,
            write=self.write,
            pool=self.pool,
        )


class UpstreamResponse:
    """A streamed upstream response together with the client that owns it."""

    def __init__(self, response: httpx.Response, client: httpx.AsyncClient):
        self._response = response
        self._client = client

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    def aiter_raw(self) -> AsyncIterator[bytes]:
        return self._response.aiter_raw(chunk_size=STREAM_CHUNK_SIZE)

    async def aread(self) -> bytes:
        return await self._response.aread()

    def json(self):
        return self._response.json()

    async def aclose(self) -> None:
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class UpstreamClient:
    """Performs one outbound HTTP call per ``send`` invocation.

    No retries and no redirect following; all branching policy belongs to
    the relay.
    """

    def __init__(
        self,
        timeouts: Optional[UpstreamTimeouts] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeouts = timeouts or UpstreamTimeouts()
        self.transport = transport

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | list[tuple[str, str]],
        params: Optional[Mapping[str, str]] = None,
        content: Optional[bytes] = None,
    ) -> UpstreamResponse:
        """Send a request and return the response with an unread body.

        Args:
            method: HTTP method
            url: Absolute target URL, query string included as-is
            headers: Headers to send
            params: Extra query parameters to encode onto ``url``
            content: Request body, if any

        Returns:
            UpstreamResponse whose body must be consumed or closed by the caller

        Raises:
            UpstreamUnreachable: If the request could not be completed
        """
        # Built directly so the client adds none of its default headers
        # (Accept, Accept-Encoding, Connection, User-Agent)
        request = httpx.Request(
            method=method,
            url=url,
            headers=headers,
            params=params,
            content=content,
            extensions={"timeout": self.timeouts.to_httpx().as_dict()},
        )
        client = httpx.AsyncClient(
            timeout=self.timeouts.to_httpx(),
            follow_redirects=False,
            transport=self.transport,
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            await client.aclose()
            logger.error(
                "Timeout calling upstream", method=method, url=url, error=str(e)
            )
            raise UpstreamUnreachable() from e
        except httpx.HTTPError as e:
            await client.aclose()
            logger.error(
                "HTTP error calling upstream", method=method, url=url, error=str(e)
            )
            raise UpstreamUnreachable() from e
        except BaseException:
            await client.aclose()
            raise

        logger.debug(
            "Upstream response received",
            method=method,
            url=url,
            status_code=response.status_code,
        )
        return UpstreamResponse(response, client)
