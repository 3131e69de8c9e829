"""Rate limiting for portal traffic.

A lookup cycle touches three endpoints: the landing page, the CAPTCHA image
and the search POST. ``RateLimitInterceptor`` can cap all of them together,
cap individual endpoints, or both. The portal throttles the search endpoint
hardest, so that is usually the one given its own cap. Fixed pacing between
cycles and between case identifiers is the driver's job; these caps sit on
top of it.

Each cap is a pyrate_limiter bucket. When the portal answers 429 the cap that
governs the endpoint is lowered, and a ``Retry-After`` header holds every
request until it expires.
"""

import logging
import time
from collections import Counter
from collections.abc import Callable, Mapping
from threading import Lock

from pyrate_limiter import Duration, Limiter, Rate

from ecourts_scraper.data_types import PortalEndpoint, PortalRequest, Response

logger = logging.getLogger(__name__)

SHARED = "portal"


class PaceLimit:
    """One request ceiling and the bucket enforcing it."""

    def __init__(self, name: str, rate: float, period: Duration) -> None:
        self.name = name
        self.rate = rate
        self.period = period
        self.reductions = 0
        self._build()

    def _build(self) -> None:
        # Sleep instead of raising when the bucket is full
        self.limiter = Limiter(
            Rate(max(1, int(self.rate)), self.period),
            max_delay=Duration.HOUR,
        )

    def acquire(self) -> None:
        self.limiter.try_acquire(self.name)

    def slow_down(self, factor: float) -> float:
        """Stretch the interval by ``factor`` and return the old rate."""
        previous = self.rate
        # A 10% longer interval is a rate of 1/1.1 of the old one
        self.rate = self.rate / (1.0 + factor)
        self.reductions += 1
        self._build()
        return previous


class RateLimitInterceptor:
    """Interceptor that caps the request rate against the portal.

    ``requests_per_period`` is shared by every endpoint. ``endpoint_limits``
    adds a cap for individual endpoints; a request must fit under both its
    endpoint's cap and the shared one. A 429 lowers the endpoint's own cap
    when it has one, otherwise the shared cap. No cap drops below one
    request per period.

    Example:
        # 30 portal requests a minute, of which at most 10 searches
        limiter = RateLimitInterceptor(
            requests_per_period=30,
            endpoint_limits={PortalEndpoint.SEARCH: 10},
        )
        session = PortalSession(settings, interceptors=[limiter])
    """

    def __init__(
        self,
        requests_per_period: float | None = None,
        endpoint_limits: Mapping[PortalEndpoint, float] | None = None,
        period: Duration = Duration.MINUTE,
        adaptive: bool = True,
        adaptive_increase: float = 0.10,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the rate limit interceptor.

        Args:
            requests_per_period: Cap shared by all endpoints.
            endpoint_limits: Caps for individual endpoints.
            period: The period both kinds of cap are counted over.
            adaptive: Whether a 429 lowers the governing cap.
            adaptive_increase: How much longer the interval gets per 429
                (0.10 = 10% slower).
            sleep: Used to wait out a ``Retry-After`` hold.

        Raises:
            ValueError: If no cap is given.
        """
        if requests_per_period is None and not endpoint_limits:
            raise ValueError(
                "Must provide requests_per_period or endpoint_limits"
            )

        self.shared = (
            PaceLimit(SHARED, requests_per_period, period)
            if requests_per_period is not None
            else None
        )
        self.endpoint_limits = {
            endpoint: PaceLimit(endpoint.value, rate, period)
            for endpoint, rate in (endpoint_limits or {}).items()
        }
        self.period = period
        self.adaptive = adaptive
        self.adaptive_increase = adaptive_increase
        self._sleep = sleep
        self._lock = Lock()
        self._hold_until = 0.0

        self.total_requests = 0
        self.total_wait_time = 0.0
        self.requests_by_endpoint: Counter[str] = Counter()

    @classmethod
    def per_minute(
        cls,
        requests_per_minute: float | None,
        search_requests_per_minute: float | None = None,
    ) -> "RateLimitInterceptor":
        endpoint_limits = (
            {PortalEndpoint.SEARCH: search_requests_per_minute}
            if search_requests_per_minute
            else None
        )
        return cls(
            requests_per_period=requests_per_minute,
            endpoint_limits=endpoint_limits,
        )

    def limits_for(self, endpoint: PortalEndpoint) -> list[PaceLimit]:
        limits = []
        if endpoint in self.endpoint_limits:
            limits.append(self.endpoint_limits[endpoint])
        if self.shared is not None:
            limits.append(self.shared)
        return limits

    def modify_request(
        self, request: PortalRequest
    ) -> PortalRequest | Response:
        """Block until the request fits under every cap that applies."""
        start_time = time.monotonic()

        hold = self._hold_until - time.monotonic()
        if hold > 0:
            logger.info(f"Holding {request.endpoint.value} for {hold:.1f}s")
            self._sleep(hold)

        with self._lock:
            for limit in self.limits_for(request.endpoint):
                limit.acquire()
            self.total_requests += 1
            self.requests_by_endpoint[request.endpoint.value] += 1

        self.total_wait_time += time.monotonic() - start_time
        return request

    def modify_response(
        self, response: Response, request: PortalRequest
    ) -> Response:
        if response.status_code != 429:
            return response
        retry_after = _retry_after_seconds(response)
        if retry_after:
            self._hold_until = max(
                self._hold_until, time.monotonic() + retry_after
            )
        if self.adaptive:
            self._reduce_rate(request.endpoint)
        return response

    def _reduce_rate(self, endpoint: PortalEndpoint) -> None:
        limits = self.limits_for(endpoint)
        if not limits:
            return
        governing = limits[0]
        with self._lock:
            old_rate = governing.slow_down(self.adaptive_increase)

        logger.warning(
            f"Rate limit '{governing.name}' reduced from {old_rate:.2f} to "
            f"{governing.rate:.2f} requests per "
            f"{'second' if self.period == Duration.SECOND else 'minute'}",
            extra={
                "endpoint": endpoint.value,
                "adaptive_reductions": governing.reductions,
            },
        )

    def get_stats(self) -> dict[str, int | float]:
        """Get statistics about rate limiting.

        ``current_rate`` is the shared cap, or the lowest endpoint cap when
        there is no shared one.
        """
        with self._lock:
            limits = list(self.endpoint_limits.values())
            if self.shared is not None:
                limits.append(self.shared)
            avg_wait = (
                self.total_wait_time / self.total_requests
                if self.total_requests > 0
                else 0.0
            )
            return {
                "total_requests": self.total_requests,
                "total_wait_time": self.total_wait_time,
                "average_wait_time": avg_wait,
                "current_rate": (
                    self.shared.rate
                    if self.shared is not None
                    else min(limit.rate for limit in limits)
                ),
                "adaptive_reductions": sum(
                    limit.reductions for limit in limits
                ),
            }


def _retry_after_seconds(response: Response) -> float:
    """Seconds from a numeric ``Retry-After`` header; dates are ignored."""
    value = response.headers.get("retry-after", "").strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        return 0.0
