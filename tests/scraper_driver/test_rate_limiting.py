"""Tests for the rate limiting interceptor.

Key behaviors tested:
- The shared cap delays requests to every endpoint
- An endpoint cap only delays that endpoint
- A 429 lowers the cap that governs the endpoint
- Retry-After holds the next request
- Canned responses placed before the limiter are not rate limited
- Stats tracking per portal endpoint
"""

import time

import httpx
import pytest
from pyrate_limiter import Duration

from ecourts_scraper.common.exceptions import HTTPStatusFailure
from ecourts_scraper.common.portal_interceptors import MockInterceptor
from ecourts_scraper.common.rate_limit_interceptor import RateLimitInterceptor
from ecourts_scraper.config import ScraperSettings
from ecourts_scraper.data_types import PortalEndpoint, Response
from ecourts_scraper.portal.session import PortalSession
from tests.scraper_driver.utils import FakePortal, SleepRecorder

CNR = "KLKN010000012019"


def make_session(
    settings: ScraperSettings, portal: FakePortal, interceptors: list
) -> PortalSession:
    return PortalSession(
        settings,
        interceptors=interceptors,
        transport=portal.transport,
        sleep=SleepRecorder(),
    )


class TestRateLimitInterceptor:
    def test_rate_limiter_delays_requests(
        self, settings: ScraperSettings
    ) -> None:
        """The shared cap shall delay requests to maintain the rate."""
        rate_limiter = RateLimitInterceptor(
            requests_per_period=2, period=Duration.SECOND
        )
        portal = FakePortal()

        with make_session(settings, portal, [rate_limiter]) as session:
            start_time = time.time()
            for _ in range(4):
                session.fetch_landing_page()
            elapsed_time = time.time() - start_time

        # Four requests at two per second: the second pair waits
        assert elapsed_time >= 0.8, (
            f"Rate limiting should delay requests (took {elapsed_time:.2f}s)"
        )
        assert len(portal.requests) == 4

        stats = rate_limiter.get_stats()
        assert stats["total_requests"] == 4
        assert stats["current_rate"] == 2
        assert stats["total_wait_time"] > 0

    def test_endpoint_cap_leaves_other_endpoints_alone(
        self, settings: ScraperSettings
    ) -> None:
        """A search cap shall delay searches but not landing page loads."""
        rate_limiter = RateLimitInterceptor(
            endpoint_limits={PortalEndpoint.SEARCH: 1},
            period=Duration.SECOND,
        )
        portal = FakePortal()

        with make_session(settings, portal, [rate_limiter]) as session:
            start_time = time.time()
            for _ in range(3):
                session.fetch_landing_page()
            landing_time = time.time() - start_time

            start_time = time.time()
            for _ in range(2):
                session.search_by_cnr(CNR, "aB3dE", "t")
            search_time = time.time() - start_time

        assert landing_time < 0.5
        assert search_time >= 0.8

    def test_per_minute_factory(self) -> None:
        shared_only = RateLimitInterceptor.per_minute(60)
        assert shared_only.shared.rate == 60
        assert shared_only.endpoint_limits == {}

        search_only = RateLimitInterceptor.per_minute(None, 10)
        assert search_only.shared is None
        assert search_only.endpoint_limits[PortalEndpoint.SEARCH].rate == 10
        assert search_only.get_stats()["current_rate"] == 10

    def test_rate_limiter_requires_a_cap(self) -> None:
        """RateLimitInterceptor shall require a shared or endpoint cap."""
        with pytest.raises(ValueError, match="Must provide"):
            RateLimitInterceptor()
        with pytest.raises(ValueError, match="Must provide"):
            RateLimitInterceptor.per_minute(None)

    def test_requests_counted_per_endpoint(
        self, settings: ScraperSettings
    ) -> None:
        rate_limiter = RateLimitInterceptor(
            requests_per_period=100, period=Duration.SECOND
        )
        portal = FakePortal()

        with make_session(settings, portal, [rate_limiter]) as session:
            token = session.ensure_token()
            session.fetch_captcha()
            session.search_by_cnr(CNR, "aB3dE", token)

        assert rate_limiter.requests_by_endpoint == {
            "landing": 1,
            "captcha": 1,
            "search": 1,
        }

    def test_empty_stats(self) -> None:
        stats = RateLimitInterceptor(requests_per_period=1).get_stats()
        assert stats["total_requests"] == 0
        assert stats["average_wait_time"] == 0.0


class TestAdaptiveRateLimiting:
    def test_429_reduces_shared_rate(self, settings: ScraperSettings) -> None:
        """A 429 shall lower the shared cap when the endpoint has none."""
        rate_limiter = RateLimitInterceptor(
            requests_per_period=10,
            period=Duration.SECOND,
            adaptive_increase=0.10,
        )
        portal = FakePortal(
            landing_pages=[httpx.Response(429, text="Too Many Requests")]
        )

        with make_session(settings, portal, [rate_limiter]) as session:
            response = session.fetch_landing_page()

        assert response.status_code == 429
        stats = rate_limiter.get_stats()
        assert stats["adaptive_reductions"] == 1
        assert stats["current_rate"] == pytest.approx(10.0 / 1.1)

    def test_429_on_search_reduces_search_cap(
        self, settings: ScraperSettings
    ) -> None:
        """A 429 on a capped endpoint shall lower that endpoint's cap only."""
        rate_limiter = RateLimitInterceptor(
            requests_per_period=30,
            endpoint_limits={PortalEndpoint.SEARCH: 10},
            period=Duration.SECOND,
        )
        portal = FakePortal(search_bodies=[httpx.Response(429, text="")])

        with make_session(settings, portal, [rate_limiter]) as session:
            with pytest.raises(HTTPStatusFailure):
                session.search_by_cnr(CNR, "aB3dE", "t")

        search_cap = rate_limiter.endpoint_limits[PortalEndpoint.SEARCH]
        assert search_cap.rate == pytest.approx(10.0 / 1.1)
        assert rate_limiter.shared.rate == 30
        assert rate_limiter.get_stats()["adaptive_reductions"] == 1

    def test_429_on_uncapped_endpoint(self, settings: ScraperSettings) -> None:
        rate_limiter = RateLimitInterceptor(
            endpoint_limits={PortalEndpoint.SEARCH: 10},
            period=Duration.SECOND,
        )
        portal = FakePortal(landing_pages=[httpx.Response(429, text="")])

        with make_session(settings, portal, [rate_limiter]) as session:
            session.fetch_landing_page()

        assert rate_limiter.get_stats()["adaptive_reductions"] == 0

    def test_adaptive_can_be_disabled(self, settings: ScraperSettings) -> None:
        """RateLimitInterceptor shall allow disabling adaptive rate
        limiting."""
        rate_limiter = RateLimitInterceptor(
            requests_per_period=2,
            period=Duration.SECOND,
            adaptive=False,
        )
        portal = FakePortal(landing_pages=[httpx.Response(429, text="")])

        with make_session(settings, portal, [rate_limiter]) as session:
            session.fetch_landing_page()

        stats = rate_limiter.get_stats()
        assert stats["adaptive_reductions"] == 0
        assert stats["current_rate"] == 2

    def test_retry_after_holds_next_request(
        self, settings: ScraperSettings
    ) -> None:
        """A Retry-After header shall hold the following request."""
        sleep = SleepRecorder()
        rate_limiter = RateLimitInterceptor(
            requests_per_period=100,
            period=Duration.SECOND,
            adaptive=False,
            sleep=sleep,
        )
        portal = FakePortal(
            landing_pages=[
                httpx.Response(429, headers={"Retry-After": "30"}, text=""),
                httpx.Response(200, text="ok"),
            ]
        )

        with make_session(settings, portal, [rate_limiter]) as session:
            session.fetch_landing_page()
            session.fetch_landing_page()

        [held] = sleep.delays
        assert 29 < held <= 30

    def test_retry_after_date_ignored(self, settings: ScraperSettings) -> None:
        sleep = SleepRecorder()
        rate_limiter = RateLimitInterceptor(
            requests_per_period=100, period=Duration.SECOND, sleep=sleep
        )
        portal = FakePortal(
            landing_pages=[
                httpx.Response(
                    429,
                    headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"},
                    text="",
                ),
                httpx.Response(200, text="ok"),
            ]
        )

        with make_session(settings, portal, [rate_limiter]) as session:
            session.fetch_landing_page()
            session.fetch_landing_page()

        assert sleep.delays == []


class TestRateLimiterInterceptorOrdering:
    def test_mock_before_rate_limiter_skips_rate_limiting(
        self, settings: ScraperSettings
    ) -> None:
        """Rate limiter shall not delay canned responses served ahead of
        it."""
        canned = Response(
            status_code=200,
            headers={"content-type": "text/html"},
            content=b"cached",
            text="cached",
            url=settings.base_url,
            request=None,
        )
        mock = MockInterceptor({PortalEndpoint.LANDING: canned})
        rate_limiter = RateLimitInterceptor(
            requests_per_period=1, period=Duration.SECOND
        )
        portal = FakePortal()

        with make_session(settings, portal, [mock, rate_limiter]) as session:
            start_time = time.time()
            texts = [session.fetch_landing_page().text for _ in range(3)]
            elapsed_time = time.time() - start_time

        assert elapsed_time < 0.5, (
            f"Canned responses should not be rate limited "
            f"(took {elapsed_time:.2f}s)"
        )
        assert texts == ["cached"] * 3
        assert portal.requests == []
        assert rate_limiter.get_stats()["total_requests"] == 0
