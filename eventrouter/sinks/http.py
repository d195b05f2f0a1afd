"""HTTP sink: POSTs batches of events to a configured endpoint.

The body is newline-delimited JSON, one envelope per line, so receivers can
stream-parse it without knowing the batch size.
"""

from __future__ import annotations

import httpx
import structlog

from eventrouter.sinks.base import BufferedSink, EventData

_log = structlog.get_logger(component="sinks.http")


class HTTPSink(BufferedSink):
    """Delivers batches by POSTing to *url*.

    Args:
        url:     Full endpoint URL.
        headers: Optional extra headers (e.g. Authorization).
        timeout: HTTP request timeout in seconds. Defaults to 10.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        buffer_size: int = 1500,
        batch_size: int = 100,
        discard_messages: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not url:
            raise ValueError("HTTP sink url must not be empty")
        super().__init__(buffer_size=buffer_size, batch_size=batch_size, discard_messages=discard_messages)
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def sink_name(self) -> str:
        return "http"

    async def _open(self) -> None:
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _deliver(self, batch: list[EventData]) -> None:
        assert self._client is not None
        body = "".join(data.to_json() + "\n" for data in batch)
        request_headers = {
            "Content-Type": "application/x-ndjson",
            **self._headers,
        }
        try:
            response = await self._client.post(self._url, content=body.encode("utf-8"), headers=request_headers)
        except httpx.TimeoutException:
            _log.warning("http_sink_request_timeout", url=self._url, events=len(batch))
            return
        except httpx.HTTPError as exc:
            _log.warning("http_sink_http_error", error=str(exc), events=len(batch))
            return
        if not response.is_success:
            _log.warning(
                "http_sink_non_2xx_response",
                status_code=response.status_code,
                body=response.text[:200],
                events=len(batch),
            )

    async def _close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
