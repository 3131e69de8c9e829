"""Interceptor protocol for the portal session.

An interceptor sees every portal request before it goes out and every
response after it comes back. ``PortalSession.send`` runs request hooks in
list order and response hooks in reverse. A request hook may answer the
request itself by returning a ``Response``; HTTP and the remaining request
hooks are then skipped, but the full response chain still runs.
"""

from typing import Protocol

from ecourts_scraper.data_types import PortalRequest, Response


class SyncInterceptor(Protocol):
    """Request/response hook pair applied by ``PortalSession``.

    Order matters: a ``MockInterceptor`` placed before a
    ``RateLimitInterceptor`` serves canned answers without consuming rate.
    """

    def modify_request(
        self, request: PortalRequest
    ) -> PortalRequest | Response:
        """Return the (possibly replaced) request, or a Response to answer
        it without HTTP."""
        return request

    def modify_response(
        self, response: Response, request: PortalRequest
    ) -> Response:
        """Return the (possibly replaced) response.

        ``request`` is the request as the caller built it, before any
        request hook ran.
        """
        return response
