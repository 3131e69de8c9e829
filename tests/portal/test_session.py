"""Tests for the portal session.

Key behaviors tested:
- The app token comes from the hidden input or inline script
- Token loading is retried a bounded number of times
- Transport errors, timeouts and 5xx answers become NetworkFailure types
- The CAPTCHA must come back as an image
- The search POST carries the CNR, CAPTCHA and token form fields
- A stale token forces a new landing page load
- Portal headers are applied per endpoint
"""

import httpx
import pytest

from ecourts_scraper.common.exceptions import (
    HTTPStatusFailure,
    NetworkFailure,
    ParseFailed,
    RequestTimeoutException,
    TokenUnavailable,
)
from ecourts_scraper.common.portal_interceptors import (
    LoggingInterceptor,
    MockInterceptor,
)
from ecourts_scraper.config import ScraperSettings
from ecourts_scraper.data_types import (
    HttpMethod,
    HTTPRequestParams,
    PortalEndpoint,
    PortalRequest,
    Response,
)
from ecourts_scraper.portal.session import PortalSession, scrape_app_token
from tests.scraper_driver.utils import FakePortal, SleepRecorder

LANDING_TOKEN = "5e1f0c2a9b7d4e36a8c1f2b3d4e5f607"


def make_session(
    settings: ScraperSettings, portal: FakePortal, **kwargs
) -> PortalSession:
    kwargs.setdefault("sleep", SleepRecorder())
    return PortalSession(settings, transport=portal.transport, **kwargs)


class TestScrapeAppToken:
    def test_hidden_input(self) -> None:
        page = '<form><input type="hidden" name="app_token" value=" abc123 "></form>'
        assert scrape_app_token(page) == "abc123"

    def test_inline_script(self) -> None:
        """Pages that set the token from script shall still yield it."""
        page = "<script>var app_token = 'fromScript42';</script>"
        assert scrape_app_token(page) == "fromScript42"

    def test_json_style_assignment(self) -> None:
        page = '<script>init({"app_token": "quoted99"});</script>'
        assert scrape_app_token(page) == "quoted99"

    def test_missing_marker(self) -> None:
        assert scrape_app_token("<html><body>Maintenance</body></html>") is None

    def test_marker_without_value(self) -> None:
        assert scrape_app_token('<input name="app_token" value="">') is None


class TestEnsureToken:
    def test_token_from_landing_page(
        self, portal_session: PortalSession, portal: FakePortal
    ) -> None:
        assert portal_session.ensure_token() == LANDING_TOKEN
        assert portal_session.token == LANDING_TOKEN
        assert len(portal.landing_requests) == 1

    def test_cached_token_reused(
        self, portal_session: PortalSession, portal: FakePortal
    ) -> None:
        portal_session.ensure_token()
        portal_session.ensure_token()
        assert len(portal.landing_requests) == 1

    def test_stale_token_refetched(
        self, portal_session: PortalSession, portal: FakePortal
    ) -> None:
        """A token marked stale shall not be reused."""
        portal_session.ensure_token()
        portal_session.mark_stale()
        assert portal_session.token is None

        portal_session.ensure_token()
        assert len(portal.landing_requests) == 2

    def test_missing_token_raises_after_attempts(
        self, settings: ScraperSettings
    ) -> None:
        """Three landing pages without the marker shall raise
        TokenUnavailable."""
        portal = FakePortal(landing_pages=["<html>Service unavailable</html>"])
        sleep = SleepRecorder()
        with make_session(settings, portal, sleep=sleep) as session:
            with pytest.raises(TokenUnavailable) as exc_info:
                session.ensure_token(cnr="KLKN010000012019")

        assert exc_info.value.cnr == "KLKN010000012019"
        assert len(portal.landing_requests) == 3
        # Only network failures are paced
        assert sleep.delays == []

    def test_network_failure_then_token(self, settings: ScraperSettings) -> None:
        portal = FakePortal(
            landing_pages=[
                httpx.ConnectError("connection refused"),
                '<input name="app_token" value="second">',
            ]
        )
        sleep = SleepRecorder()
        settings = settings.model_copy(update={"token_retry_delay": 1.5})
        with make_session(settings, portal, sleep=sleep) as session:
            assert session.ensure_token() == "second"
        assert sleep.delays == [1.5]

    def test_network_failure_on_every_attempt(
        self, settings: ScraperSettings
    ) -> None:
        """If every attempt fails in transport the NetworkFailure shall be
        raised rather than TokenUnavailable."""
        portal = FakePortal(landing_pages=[httpx.ConnectError("refused")])
        sleep = SleepRecorder()
        with make_session(settings, portal, sleep=sleep) as session:
            with pytest.raises(NetworkFailure) as exc_info:
                session.ensure_token(cnr="KLKN010000012019")

        assert not isinstance(exc_info.value, TokenUnavailable)
        assert exc_info.value.cnr == "KLKN010000012019"
        assert len(sleep.delays) == 2

    def test_reset_discards_token(
        self, portal_session: PortalSession, portal: FakePortal
    ) -> None:
        portal_session.ensure_token()
        portal_session.reset()
        assert portal_session.token is None
        portal_session.ensure_token()
        assert len(portal.landing_requests) == 2


class TestTransportErrors:
    def test_connect_error(self, settings: ScraperSettings) -> None:
        portal = FakePortal(landing_pages=[httpx.ConnectError("refused")])
        with make_session(settings, portal) as session:
            with pytest.raises(NetworkFailure) as exc_info:
                session.fetch_landing_page()
        assert exc_info.value.url == settings.base_url

    def test_timeout(self, settings: ScraperSettings) -> None:
        """A timeout shall raise RequestTimeoutException carrying the
        configured timeout."""
        portal = FakePortal(landing_pages=[httpx.ReadTimeout("slow")])
        with make_session(settings, portal) as session:
            with pytest.raises(RequestTimeoutException) as exc_info:
                session.fetch_landing_page()
        assert exc_info.value.timeout_seconds == settings.timeout
        assert isinstance(exc_info.value, NetworkFailure)

    def test_server_error(self, settings: ScraperSettings) -> None:
        portal = FakePortal(landing_pages=[httpx.Response(503, text="down")])
        with make_session(settings, portal) as session:
            with pytest.raises(HTTPStatusFailure) as exc_info:
                session.fetch_landing_page()
        assert exc_info.value.status_code == 503

    def test_redirect_loop(self, settings: ScraperSettings) -> None:
        """A portal redirecting to itself shall raise NetworkFailure."""
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                302, headers={"location": str(request.url)}
            )
        )
        session = PortalSession(
            settings, transport=transport, sleep=SleepRecorder()
        )
        with session:
            with pytest.raises(NetworkFailure) as exc_info:
                session.fetch_landing_page()
        assert isinstance(exc_info.value.__cause__, httpx.TooManyRedirects)
        assert exc_info.value.url == settings.base_url

    def test_decoding_error(self, settings: ScraperSettings) -> None:
        portal = FakePortal(
            search_bodies=[httpx.DecodingError("invalid gzip stream")]
        )
        with make_session(settings, portal) as session:
            with pytest.raises(NetworkFailure) as exc_info:
                session.search_by_cnr("KLKN010000012019", "aB3dE", "t")
        assert exc_info.value.cnr == "KLKN010000012019"


class TestCaptchaDownload:
    def test_image_returned(
        self, portal_session: PortalSession, portal: FakePortal
    ) -> None:
        content = portal_session.fetch_captcha()
        assert content.startswith(b"\x89PNG")
        request = portal.requests_to("securimage_show.php")[0]
        assert request.method == "POST"

    def test_non_image_rejected(self, settings: ScraperSettings) -> None:
        """A CAPTCHA answer that is not an image shall raise
        NetworkFailure."""
        portal = FakePortal(captcha_content_type="text/html")
        with make_session(settings, portal) as session:
            with pytest.raises(NetworkFailure) as exc_info:
                session.fetch_captcha(cnr="KLKN010000012019")
        assert exc_info.value.context["content_type"] == "text/html"

    def test_non_200_rejected(self, settings: ScraperSettings) -> None:
        portal = FakePortal(captcha_status=403)
        with make_session(settings, portal) as session:
            with pytest.raises(HTTPStatusFailure):
                session.fetch_captcha()


class TestSearch:
    def test_form_fields(
        self, portal_session: PortalSession, portal: FakePortal
    ) -> None:
        """The search POST shall carry cino, fcaptcha_code, ajax_req and
        app_token."""
        envelope = portal_session.search_by_cnr(
            "KLKN010000012019", "aB3dE", LANDING_TOKEN
        )

        assert "casetype_list" in envelope
        assert portal.search_forms() == [
            {
                "cino": "KLKN010000012019",
                "fcaptcha_code": "aB3dE",
                "ajax_req": "true",
                "app_token": LANDING_TOKEN,
            }
        ]

    def test_search_headers(
        self, portal_session: PortalSession, portal: FakePortal
    ) -> None:
        portal_session.search_by_cnr("KLKN010000012019", "aB3dE", "t")
        request = portal.requests_to("searchByCNR")[0]
        assert request.headers["origin"] == "https://portal.test"
        assert request.headers["x-requested-with"] == "XMLHttpRequest"
        assert request.headers["referer"].endswith("?p=cnr_status/searchByCNR")

    def test_non_json_body(self, settings: ScraperSettings) -> None:
        portal = FakePortal(
            search_bodies=[httpx.Response(200, text="<html>oops</html>")]
        )
        with make_session(settings, portal) as session:
            with pytest.raises(ParseFailed):
                session.search_by_cnr("KLKN010000012019", "aB3dE", "t")

    def test_json_list_body(self, settings: ScraperSettings) -> None:
        portal = FakePortal(search_bodies=[["not", "an", "object"]])
        with make_session(settings, portal) as session:
            with pytest.raises(ParseFailed):
                session.search_by_cnr("KLKN010000012019", "aB3dE", "t")

    def test_client_error_status(self, settings: ScraperSettings) -> None:
        portal = FakePortal(search_bodies=[httpx.Response(404, text="")])
        with make_session(settings, portal) as session:
            with pytest.raises(HTTPStatusFailure) as exc_info:
                session.search_by_cnr("KLKN010000012019", "aB3dE", "t")
        assert exc_info.value.status_code == 404


class TestSessionInterceptors:
    def test_captcha_headers(
        self, portal_session: PortalSession, portal: FakePortal
    ) -> None:
        portal_session.fetch_captcha()
        request = portal.requests_to("securimage_show.php")[0]
        assert request.headers["accept"].startswith("image/")
        assert request.headers["sec-fetch-dest"] == "image"
        assert "origin" not in request.headers

    def test_custom_user_agent(self, settings: ScraperSettings) -> None:
        portal = FakePortal()
        settings = settings.model_copy(update={"user_agent": "ecourts-test/1.0"})
        with make_session(settings, portal) as session:
            session.fetch_landing_page()
        assert portal.requests[0].headers["user-agent"] == "ecourts-test/1.0"

    def test_mock_interceptor_short_circuits(
        self, settings: ScraperSettings
    ) -> None:
        """A canned landing page shall be served without touching HTTP."""
        portal = FakePortal()
        canned = Response(
            status_code=200,
            headers={"content-type": "text/html"},
            content=b"",
            text='<input name="app_token" value="canned">',
            url="",
            request=None,
        )
        mock = MockInterceptor({PortalEndpoint.LANDING: canned})
        logging_interceptor = LoggingInterceptor()
        with make_session(
            settings, portal, interceptors=[logging_interceptor, mock]
        ) as session:
            assert session.ensure_token() == "canned"
            session.fetch_captcha()

        assert portal.landing_requests == []
        assert len(portal.requests) == 1
        assert mock.mock_hits[PortalEndpoint.LANDING] == 1
        assert mock.mock_misses == 1
        # The response chain still runs for short-circuited requests
        assert logging_interceptor.request_count == 2
        assert logging_interceptor.response_count == 2

    def test_mock_queue_consumed_in_order(self) -> None:
        def response(text: str) -> Response:
            return Response(
                status_code=200,
                headers={},
                content=b"",
                text=text,
                url="",
                request=None,
            )

        mock = MockInterceptor(
            {PortalEndpoint.SEARCH: [response("first"), response("second")]}
        )
        request = PortalRequest(
            request=HTTPRequestParams(
                method=HttpMethod.POST, url="https://portal.test/search"
            ),
            endpoint=PortalEndpoint.SEARCH,
        )
        texts = [mock.modify_request(request).text for _ in range(3)]
        assert texts == ["first", "second", "second"]
