"""Exception hierarchy for the eCourts pipeline.

Exceptions are split along the line the driver cares about: whether a fresh
token/CAPTCHA cycle could plausibly succeed.

- TransientException: retryable at the cycle level (network trouble, missing
  token, unreadable CAPTCHA, rejected credentials).
- ScraperAssumptionException: the portal returned something we could not make
  sense of. Retrying the same identifier does not help.
- CaseNotFound: the portal authoritatively said the case does not exist.
- PersistenceFailed: the write sequence for one case was rolled back.

Every exception carries the CNR it was raised for when one is known, so the
case boundary can turn it into a failure record without extra bookkeeping.
"""

from typing import Any


class ScraperException(Exception):
    """Base class for every error raised by the pipeline."""

    #: Short machine-readable failure class, used in reports and the ledger.
    failure_class: str = "error"

    def __init__(
        self,
        message: str,
        cnr: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cnr = cnr
        self.context = context or {}

    def __str__(self) -> str:
        if self.cnr:
            return f"{self.message} (cnr={self.cnr})"
        return self.message


# =============================================================================
# Retryable failures
# =============================================================================


class TransientException(ScraperException):
    """A failure that a new token/CAPTCHA cycle may get past."""

    failure_class = "transient"


class NetworkFailure(TransientException):
    """Transport or HTTP-level failure talking to the portal."""

    failure_class = "request_failed"

    def __init__(
        self,
        message: str,
        url: str = "",
        cnr: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, cnr=cnr, context=context)
        self.url = url


class RequestTimeoutException(NetworkFailure):
    """The portal did not answer within the configured timeout."""

    def __init__(self, url: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Request to {url} timed out after {timeout_seconds}s",
            url=url,
            context={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class HTTPStatusFailure(NetworkFailure):
    """The portal answered with a status code we do not accept."""

    def __init__(
        self, status_code: int, url: str, expected_codes: list[int]
    ) -> None:
        super().__init__(
            f"HTTP {status_code} from {url} (expected {expected_codes})",
            url=url,
            context={
                "status_code": status_code,
                "expected_codes": expected_codes,
            },
        )
        self.status_code = status_code
        self.expected_codes = expected_codes


class TokenUnavailable(TransientException):
    """The landing page never contained the anti-forgery token marker."""

    failure_class = "token_unavailable"


class CaptchaUnsolved(TransientException):
    """No OCR profile produced an acceptable candidate, or the portal
    rejected the submitted credentials."""

    failure_class = "captcha_unsolved"


# =============================================================================
# Terminal outcomes
# =============================================================================


class CaseNotFound(ScraperException):
    """The portal reported that no case exists for the identifier.

    Raised by the extractor. The driver turns it into a NOT_FOUND outcome,
    which counts as a success.
    """

    failure_class = "not_found"


class ScraperAssumptionException(ScraperException):
    """The portal response broke an assumption about its structure."""

    failure_class = "parse_failed"

    def __init__(
        self,
        message: str,
        request_url: str = "",
        cnr: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, cnr=cnr, context=context)
        self.request_url = request_url


class ParseFailed(ScraperAssumptionException):
    """A required field was missing or the document was malformed."""


class PersistenceFailed(ScraperException):
    """Writing a case failed and its in-flight changes were rolled back."""

    failure_class = "persistence_failed"
