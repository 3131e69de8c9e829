"""Interceptors used against the eCourts portal.

- PortalHeaderInterceptor: the browser-like headers the portal expects,
  tailored per endpoint.
- LoggingInterceptor: logs every request/response pair.
- ResponseSnapshotInterceptor: keeps the last search fragment on disk.
- MockInterceptor: serves canned responses per endpoint; used by tests and
  for replaying a saved portal answer.
"""

import json
import logging
from collections import defaultdict, deque
from collections.abc import Iterable

from ecourts_scraper.common.artifacts import LAST_RESPONSE, ArtifactStore
from ecourts_scraper.data_types import PortalEndpoint, PortalRequest, Response

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


class PortalHeaderInterceptor:
    """Adds the headers the portal checks before answering.

    Every request gets the XHR headers and a Referer on the portal. The
    CAPTCHA download asks for an image; the search POST additionally
    carries Origin and a Referer on the search page.
    """

    def __init__(self, base_url: str, user_agent: str = DEFAULT_USER_AGENT):
        self.base_url = base_url
        self.origin = base_url.split("/ecourtindia")[0].rstrip("/")
        self.user_agent = user_agent

    def headers_for(self, endpoint: PortalEndpoint) -> dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json, text/javascript, */*; q=0.01",
            "Accept-Language": "en-US,en;q=0.9",
            "X-Requested-With": "XMLHttpRequest",
            "Referer": self.base_url,
        }
        match endpoint:
            case PortalEndpoint.LANDING:
                pass
            case PortalEndpoint.CAPTCHA:
                headers["Accept"] = "image/webp,image/apng,image/*,*/*;q=0.8"
                headers["Sec-Fetch-Site"] = "same-origin"
                headers["Sec-Fetch-Mode"] = "no-cors"
                headers["Sec-Fetch-Dest"] = "image"
            case PortalEndpoint.SEARCH:
                headers["Origin"] = self.origin
                headers["Referer"] = (
                    self.base_url + "?p=cnr_status/searchByCNR"
                )
                headers["Sec-Fetch-Site"] = "same-origin"
                headers["Sec-Fetch-Mode"] = "cors"
                headers["Sec-Fetch-Dest"] = "empty"
        return headers

    def modify_request(
        self, request: PortalRequest
    ) -> PortalRequest | Response:
        # Headers set explicitly on the request win
        defaults = self.headers_for(request.endpoint)
        return request.with_headers(
            {**defaults, **(request.request.headers or {})}
        )

    def modify_response(
        self, response: Response, request: PortalRequest
    ) -> Response:
        return response


class LoggingInterceptor:
    """Logs requests and responses without modifying them."""

    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix
        self.request_count = 0
        self.response_count = 0

    def modify_request(
        self, request: PortalRequest
    ) -> PortalRequest | Response:
        self.request_count += 1
        logger.debug(
            f"{self.prefix}Request #{self.request_count}: "
            f"{request.request.method.value} {request.url}",
            extra={
                "endpoint": request.endpoint.value,
                "cnr": request.cnr,
                **request.aux_data,
            },
        )
        return request

    def modify_response(
        self, response: Response, request: PortalRequest
    ) -> Response:
        self.response_count += 1
        logger.debug(
            f"{self.prefix}Response #{self.response_count}: "
            f"{response.status_code} from {response.url}",
            extra={"endpoint": request.endpoint.value, "cnr": request.cnr},
        )
        return response


class ResponseSnapshotInterceptor:
    """Writes the HTML fragment of each search response to the artifact store.

    The fragment lives in the ``casetype_list`` field of the JSON envelope;
    a body that is not such an envelope, or whose field is not a string, is
    written as-is.
    """

    def __init__(self, store: ArtifactStore) -> None:
        self.store = store

    def modify_request(
        self, request: PortalRequest
    ) -> PortalRequest | Response:
        return request

    def modify_response(
        self, response: Response, request: PortalRequest
    ) -> Response:
        if request.endpoint is not PortalEndpoint.SEARCH:
            return response
        try:
            fragment = json.loads(response.text).get("casetype_list") or ""
        except (ValueError, AttributeError):
            fragment = response.text
        if not isinstance(fragment, str):
            fragment = response.text
        if self.store.write_text(LAST_RESPONSE, fragment):
            logger.debug(f"Saved search fragment to {LAST_RESPONSE}")
        return response


class MockInterceptor:
    """Serves canned responses instead of making HTTP requests.

    Responses are queued per endpoint and consumed in order; when an
    endpoint's queue holds a single response it is reused for every later
    request. Endpoints without queued responses pass through to HTTP.
    """

    def __init__(
        self,
        mock_responses: dict[PortalEndpoint, Response | Iterable[Response]],
    ) -> None:
        self.mock_responses: dict[PortalEndpoint, deque[Response]] = {}
        for endpoint, responses in mock_responses.items():
            if isinstance(responses, Response):
                responses = [responses]
            self.mock_responses[endpoint] = deque(responses)
        self.mock_hits: defaultdict[PortalEndpoint, int] = defaultdict(int)
        self.mock_misses = 0

    def modify_request(
        self, request: PortalRequest
    ) -> PortalRequest | Response:
        queue = self.mock_responses.get(request.endpoint)
        if not queue:
            self.mock_misses += 1
            return request
        self.mock_hits[request.endpoint] += 1
        canned = queue[0] if len(queue) == 1 else queue.popleft()
        return Response(
            status_code=canned.status_code,
            headers=dict(canned.headers),
            content=canned.content,
            text=canned.text,
            url=request.url,
            request=request,
        )

    def modify_response(
        self, response: Response, request: PortalRequest
    ) -> Response:
        return response
