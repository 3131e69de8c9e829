"""Cookie-backed session against the eCourts portal.

The portal binds three things to one cookie jar: the anti-forgery
``app_token`` scraped from the landing page, the CAPTCHA image, and the
search POST that consumes both. ``PortalSession`` owns the jar (a single
``httpx.Client``) and the cached token, and sends every request through the
interceptor chain.
"""

import logging
import re
import time
from collections.abc import Callable

import httpx
from lxml import html as lxml_html
from lxml.etree import ParserError

from ecourts_scraper.common.exceptions import (
    HTTPStatusFailure,
    NetworkFailure,
    ParseFailed,
    RequestTimeoutException,
    TokenUnavailable,
)
from ecourts_scraper.common.interceptors import SyncInterceptor
from ecourts_scraper.common.portal_interceptors import (
    DEFAULT_USER_AGENT,
    PortalHeaderInterceptor,
)
from ecourts_scraper.config import ScraperSettings
from ecourts_scraper.data_types import (
    HttpMethod,
    HTTPRequestParams,
    PortalEndpoint,
    PortalRequest,
    Response,
)

logger = logging.getLogger(__name__)

TOKEN_MARKER = "app_token"
TOKEN_INPUT_XPATH = "//input[@name='app_token']/@value"
TOKEN_SCRIPT_PATTERN = re.compile(
    r"app_token['\"]?\s*[:=]\s*['\"]([^'\"]+)['\"]"
)


def scrape_app_token(page: str) -> str | None:
    """Pull the app token out of the landing page.

    The token is normally a hidden form input; some page versions only set
    it from inline script.
    """
    if TOKEN_MARKER not in page:
        return None
    try:
        tree = lxml_html.fromstring(page)
    except ParserError:
        tree = None
    if tree is not None:
        values = [v.strip() for v in tree.xpath(TOKEN_INPUT_XPATH)]
        for value in values:
            if value:
                return value
    match = TOKEN_SCRIPT_PATTERN.search(page)
    return match.group(1) if match else None


class PortalSession:
    """HTTP session, token cache and request pipeline for the portal.

    Args:
        settings: Base URL, timeout, proxy and token retry settings.
        interceptors: Applied after the portal header interceptor, in order
            for requests and in reverse for responses.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``.
        sleep: Used for the pause between token attempts.
    """

    def __init__(
        self,
        settings: ScraperSettings,
        interceptors: list[SyncInterceptor] | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.interceptors: list[SyncInterceptor] = [
            PortalHeaderInterceptor(
                settings.base_url, settings.user_agent or DEFAULT_USER_AGENT
            ),
            *(interceptors or []),
        ]
        self._transport = transport
        self._sleep = sleep
        self._token: str | None = None
        self._stale = True
        self._client = self._build_client()

    def _build_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.settings.timeout,
            proxy=self.settings.proxy,
            transport=self._transport,
            follow_redirects=True,
        )

    # -------------------------------------------------------------------
    # Token lifecycle
    # -------------------------------------------------------------------

    @property
    def token(self) -> str | None:
        return None if self._stale else self._token

    def mark_stale(self) -> None:
        """The portal rotates the token on every submission."""
        self._stale = True

    def reset(self) -> None:
        """Drop cookies and token together; the next cycle starts over."""
        self._client.close()
        self._client = self._build_client()
        self._token = None
        self._stale = True

    def ensure_token(self, cnr: str | None = None) -> str:
        """Return a usable token, loading the landing page if needed.

        Raises:
            TokenUnavailable: No landing page load found the token marker.
            NetworkFailure: The last attempt failed at the transport level.
        """
        if self.token is not None:
            return self.token

        attempts = self.settings.token_attempts
        last_error: NetworkFailure | None = None
        for attempt in range(1, attempts + 1):
            try:
                page = self.fetch_landing_page(cnr=cnr, attempt=attempt)
            except NetworkFailure as e:
                last_error = e
                logger.warning(
                    f"Landing page request failed "
                    f"(attempt {attempt}/{attempts}): {e}",
                    extra={"cnr": cnr, "url": e.url},
                )
                if attempt < attempts:
                    self._sleep(self.settings.token_retry_delay)
                continue

            token = scrape_app_token(page.text)
            if token:
                self._token = token
                self._stale = False
                logger.info("Retrieved new app token")
                return token
            last_error = None
            logger.error(
                f"Could not find app token in page "
                f"(attempt {attempt}/{attempts})",
                extra={"cnr": cnr},
            )

        if last_error is not None:
            last_error.cnr = last_error.cnr or cnr
            raise last_error
        raise TokenUnavailable(
            f"No app token after {attempts} landing page load(s)", cnr=cnr
        )

    # -------------------------------------------------------------------
    # Portal endpoints
    # -------------------------------------------------------------------

    def fetch_landing_page(
        self, cnr: str | None = None, attempt: int = 1
    ) -> Response:
        return self.send(
            PortalRequest(
                request=HTTPRequestParams(
                    method=HttpMethod.GET, url=self.settings.base_url
                ),
                endpoint=PortalEndpoint.LANDING,
                cnr=cnr,
                aux_data={"attempt": attempt},
            )
        )

    def fetch_captcha(self, cnr: str | None = None) -> bytes:
        """Download the CAPTCHA bound to the current session.

        Raises:
            HTTPStatusFailure: Non-200 answer.
            NetworkFailure: The answer is not an image.
        """
        url = self.settings.captcha_url
        request = PortalRequest(
            request=HTTPRequestParams(method=HttpMethod.POST, url=url),
            endpoint=PortalEndpoint.CAPTCHA,
            cnr=cnr,
            expected_content_type="image/",
        )
        response = self.send(request)
        if response.status_code != 200:
            raise HTTPStatusFailure(response.status_code, url, [200])
        if not response.content_type.startswith(request.expected_content_type):
            raise NetworkFailure(
                f"CAPTCHA endpoint returned {response.content_type or 'no content type'}",
                url=url,
                cnr=cnr,
                context={"content_type": response.content_type},
            )
        return response.content

    def search_by_cnr(self, cnr: str, captcha: str, token: str) -> dict:
        """Submit the CNR search and return the decoded JSON envelope.

        The envelope carries the detail fragment under ``casetype_list`` or
        a rejection under ``errormsg``.

        Raises:
            HTTPStatusFailure: Non-200 answer.
            ParseFailed: The body is not a JSON object.
        """
        url = self.settings.search_url
        response = self.send(
            PortalRequest(
                request=HTTPRequestParams(
                    method=HttpMethod.POST,
                    url=url,
                    data={
                        "cino": cnr,
                        "fcaptcha_code": captcha,
                        "ajax_req": "true",
                        "app_token": token,
                    },
                ),
                endpoint=PortalEndpoint.SEARCH,
                cnr=cnr,
            )
        )
        if response.status_code != 200:
            raise HTTPStatusFailure(response.status_code, url, [200])

        envelope = response.json()
        if not isinstance(envelope, dict):
            raise ParseFailed(
                "Search response is not a JSON object",
                request_url=url,
                cnr=cnr,
                context={"type": type(envelope).__name__},
            )
        return envelope

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------

    def send(self, request: PortalRequest) -> Response:
        """Run ``request`` through the interceptor chain and over HTTP.

        Raises:
            RequestTimeoutException: The portal did not answer in time.
            NetworkFailure: Any other request error, including redirect
                loops and undecodable bodies.
            HTTPStatusFailure: 5xx answer.
        """
        modified_request = request
        for interceptor in self.interceptors:
            result = interceptor.modify_request(modified_request)
            if isinstance(result, Response):
                response = result
                for resp_interceptor in reversed(self.interceptors):
                    response = resp_interceptor.modify_response(
                        response, request
                    )
                return response
            modified_request = result

        http_params = modified_request.request
        timeout = http_params.timeout or self.settings.timeout
        try:
            http_response = self._client.request(
                method=http_params.method.value,
                url=http_params.url,
                params=http_params.params,
                headers=http_params.headers,
                data=http_params.data,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutException(
                url=http_params.url, timeout_seconds=timeout
            ) from e
        except httpx.RequestError as e:
            raise NetworkFailure(
                f"Request to {http_params.url} failed: {e}",
                url=http_params.url,
                cnr=request.cnr,
            ) from e

        if http_response.status_code >= 500:
            raise HTTPStatusFailure(
                status_code=http_response.status_code,
                url=http_params.url,
                expected_codes=[200],
            )

        response = Response(
            status_code=http_response.status_code,
            headers={k.lower(): v for k, v in http_response.headers.items()},
            content=http_response.content,
            text=http_response.text,
            url=str(http_response.url),
            request=modified_request,
        )

        for interceptor in reversed(self.interceptors):
            response = interceptor.modify_response(response, request)

        return response

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "PortalSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
