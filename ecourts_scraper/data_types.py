"""Data types passed between the portal session, interceptors and the driver.

These types are designed to be:

1. Immutable - requests are frozen dataclasses; interceptors that want to
   change a request build a new one with ``dataclasses.replace``.
2. Exhaustive - every request names the portal endpoint it targets, so the
   driver and interceptors can match on it instead of sniffing URLs.
3. Transport-agnostic - nothing here imports httpx; the session converts
   at the seam.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ecourts_scraper.common.exceptions import ParseFailed


class HttpMethod(Enum):
    """HTTP methods used against the portal."""

    GET = "GET"
    POST = "POST"


class PortalEndpoint(Enum):
    """The three endpoints a case lookup touches.

    Values:
        LANDING: Landing page; sets session cookies and carries the app token.
        CAPTCHA: Securimage challenge image bound to the current session.
        SEARCH: CNR search; answers with a JSON envelope around an HTML fragment.
    """

    LANDING = "landing"
    CAPTCHA = "captcha"
    SEARCH = "search"


# Type aliases for parameter types
QueryParams = dict[str, Any] | None
FormData = dict[str, str] | None
HeadersType = dict[str, str] | None


@dataclass(frozen=True)
class HTTPRequestParams:
    """Parameters for one HTTP request.

    :param method: HTTP method for the request.
    :param url: Absolute URL for the request.
    :param params: (optional) Query string parameters.
    :param data: (optional) Form fields, sent url-encoded.
    :param headers: (optional) Headers for this request only; the session's
        default headers are applied underneath.
    :param timeout: (optional) Seconds to wait before giving up. ``None`` uses
        the session default.
    """

    method: HttpMethod
    url: str
    params: QueryParams = None
    data: FormData = None
    headers: HeadersType = None
    timeout: float | None = None


@dataclass(frozen=True)
class PortalRequest:
    """A request to one of the portal endpoints.

    Attributes:
        request: HTTP request parameters (URL, method, headers, form data).
        endpoint: Which portal endpoint this request targets.
        cnr: The case identifier this request is made for, if any.
        expected_content_type: Prefix the response Content-Type must carry
            (``"image/"`` for the CAPTCHA); ``None`` skips the check.
        aux_data: Free-form metadata interceptors may read (attempt number,
            purpose of a landing page fetch, ...).
    """

    request: HTTPRequestParams
    endpoint: PortalEndpoint
    cnr: str | None = None
    expected_content_type: str | None = None
    aux_data: dict[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str:
        return self.request.url

    def with_headers(self, headers: dict[str, str]) -> PortalRequest:
        """Return a copy whose headers are ``headers`` layered over ours."""
        merged = {**(self.request.headers or {}), **headers}
        return replace(self, request=replace(self.request, headers=merged))


@dataclass
class Response:
    """HTTP response from the portal.

    Modeled after httpx.Response to provide a familiar interface.

    Attributes:
        status_code: HTTP status code (200, 404, etc.).
        headers: Response headers (lower-cased keys).
        content: Raw response bytes.
        text: Decoded response text.
        url: Final URL after any redirects.
        request: The PortalRequest that triggered this response.
    """

    status_code: int
    headers: dict[str, str]
    content: bytes
    text: str
    url: str
    request: PortalRequest

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    def json(self) -> Any:
        """Parse the body as JSON.

        Raises:
            ParseFailed: If the body is not valid JSON.
        """
        try:
            text = self.text or self.content.decode("utf-8")
            return json.loads(text)
        except Exception as e:
            raise ParseFailed(
                f"Failed to parse JSON: {e}",
                request_url=self.url,
                cnr=self.request.cnr,
                context={"error": str(e)},
            ) from e
