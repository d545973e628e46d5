"""HTTP outbound endpoint — sends each message to a URL.

With ``expected_response_type`` set the endpoint is a gateway: the response
body becomes the payload sent on its output channel.  Without it the
endpoint is one-way and ends the flow once the request succeeds.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Literal, Mapping, Optional

import httpx
from pydantic import Field, field_validator

from .endpoints import Endpoint, EndpointAttributes, EndpointKind
from .message import Message

logger = logging.getLogger(__name__)

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"})
_NO_BODY = frozenset({"GET", "DELETE", "HEAD"})


class HttpOutboundAttributes(EndpointAttributes):
    """Endpoint options plus the request contract."""

    url: str
    http_method: str = Field(default="POST", alias="httpMethod")
    expected_response_type: Optional[Literal["text", "json", "bytes"]] = Field(
        default=None, alias="expectedResponseType"
    )
    timeout: float = Field(default=10.0, gt=0)

    @field_validator("url")
    @classmethod
    def _url_is_http(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("must be an http:// or https:// URL")
        return value

    @field_validator("http_method")
    @classmethod
    def _known_method(cls, value: str) -> str:
        method = value.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"must be one of {sorted(HTTP_METHODS)}")
        return method


class HttpOutbound(Endpoint):
    """``http_outbound`` — one HTTP request per message.

    The payload is the request: query parameters for GET/DELETE/HEAD when
    it is a mapping, otherwise the body (``str``/``bytes`` verbatim,
    anything else as JSON).  Non-2xx responses raise
    ``httpx.HTTPStatusError``, which the runtime reports as a
    ``DispatchError``.
    """

    kind = EndpointKind.HTTP_OUTBOUND
    requires_logic = False
    attributes_model = HttpOutboundAttributes

    def __init__(
        self,
        attributes: HttpOutboundAttributes | None = None,
        *,
        client: httpx.Client | None = None,
        **options: Any,
    ) -> None:
        super().__init__(None, attributes, **options)
        self._client = client
        self._owns_client = client is None
        self._lock = threading.Lock()

    @property
    def url(self) -> str:
        return self.attributes.url

    @property
    def http_method(self) -> str:
        return self.attributes.http_method

    @property
    def expected_response_type(self) -> str | None:
        return self.attributes.expected_response_type

    def _get_client(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(timeout=self.attributes.timeout)
            return self._client

    def _request_options(self, payload: Any) -> dict[str, Any]:
        if payload is None:
            return {}
        if self.http_method in _NO_BODY:
            return {"params": dict(payload)} if isinstance(payload, Mapping) else {}
        if isinstance(payload, (str, bytes)):
            return {"content": payload}
        return {"json": payload}

    def process(self, message: Message) -> list[Message]:
        response = self._get_client().request(
            self.http_method, self.url, **self._request_options(message.payload)
        )
        logger.debug("%s %s %s -> %d", self.name, self.http_method, self.url,
                     response.status_code)
        response.raise_for_status()
        if self.expected_response_type is None:
            return []
        if self.expected_response_type == "json":
            body = response.json()
        elif self.expected_response_type == "bytes":
            body = response.content
        else:
            body = response.text
        return [message.with_payload(body).with_headers(http_status_code=response.status_code)]

    def close(self) -> None:
        """Close the client this endpoint created (an injected one is left open)."""
        with self._lock:
            if self._owns_client and self._client is not None:
                self._client.close()
                self._client = None
