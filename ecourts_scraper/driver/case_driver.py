"""Driver that carries CNRs through the portal one at a time.

For each CNR the driver acquires a token and a solved CAPTCHA from the same
session, submits the search, classifies the answer, and hands parsed
records to the repository. Every per-case failure ends up in the returned
``CaseOutcome`` (and the failure ledger); only programming errors escape
``run``.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from typing_extensions import assert_never

from ecourts_scraper.captcha.solver import CaptchaSolver
from ecourts_scraper.common.exceptions import (
    CaptchaUnsolved,
    CaseNotFound,
    NetworkFailure,
    ParseFailed,
    PersistenceFailed,
    ScraperException,
    TokenUnavailable,
    TransientException,
)
from ecourts_scraper.common.models.case import CaseRecord
from ecourts_scraper.common.models.outcome import (
    BatchReport,
    CaseOutcome,
    OutcomeStatus,
)
from ecourts_scraper.config import ScraperSettings
from ecourts_scraper.driver.states import (
    CaseQuery,
    CaseQueryResult,
    QueryState,
)
from ecourts_scraper.parsing.extractor import CaseDetailExtractor
from ecourts_scraper.persistence.failure_ledger import FailureLedger
from ecourts_scraper.persistence.repository import CaseRepository
from ecourts_scraper.portal.session import PortalSession

logger = logging.getLogger(__name__)

FAILURE_STATUSES = {
    QueryState.PARSE_FAILED: OutcomeStatus.PARSE_FAILED,
    QueryState.REQUEST_FAILED: OutcomeStatus.REQUEST_FAILED,
    QueryState.TOKEN_UNAVAILABLE: OutcomeStatus.TOKEN_UNAVAILABLE,
    QueryState.CAPTCHA_UNSOLVED: OutcomeStatus.CAPTCHA_UNSOLVED,
}


def status_for_exception(error: ScraperException) -> OutcomeStatus:
    try:
        return OutcomeStatus(error.failure_class)
    except ValueError:
        return OutcomeStatus.REQUEST_FAILED


class CaseQueryDriver:
    """Runs CNR lookups against the portal.

    Example usage:
        from tests.scraper_driver.utils import collect_results

        callback, results = collect_results()
        driver = CaseQueryDriver(settings, session, solver, on_data=callback)
        report = driver.run(["KLKN010000012019"])
    """

    def __init__(
        self,
        settings: ScraperSettings,
        session: PortalSession,
        solver: CaptchaSolver,
        extractor: CaseDetailExtractor | None = None,
        repository: CaseRepository | None = None,
        ledger: FailureLedger | None = None,
        on_data: Callable[[CaseRecord], None] | None = None,
        on_outcome: Callable[[CaseOutcome], None] | None = None,
        on_transient_exception: Callable[[TransientException], bool]
        | None = None,
        on_run_start: Callable[[str], None] | None = None,
        on_run_complete: Callable[[str, str, Exception | None], None]
        | None = None,
        stop_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the driver.

        Args:
            settings: Attempt ceilings and pacing delays.
            session: Portal session shared by every lookup in the run.
            solver: CAPTCHA OCR.
            extractor: Fragment parser; defaults to substring label matching.
            repository: Where parsed cases are written. Without one, cases
                are only scraped.
            ledger: Failure ledger; failures are only reported when absent.
            on_data: Invoked with every parsed record, before it is written.
            on_outcome: Invoked with every CaseOutcome as it is produced.
            on_transient_exception: Invoked when a cycle ends in a retryable
                failure. Return False to give up on the CNR early.
            on_run_start: Invoked with the run name when ``run`` starts.
            on_run_complete: Invoked with the run name, status
                ("completed" | "error") and the error, if any.
            stop_event: When set, ``run`` stops before the next CNR.
            sleep: Used for every pacing delay.
        """
        self.settings = settings
        self.session = session
        self.solver = solver
        self.extractor = extractor or CaseDetailExtractor()
        self.repository = repository
        self.ledger = ledger
        self.on_data = on_data
        self.on_outcome = on_outcome
        self.on_transient_exception = on_transient_exception
        self.on_run_start = on_run_start
        self.on_run_complete = on_run_complete
        self.stop_event = stop_event
        self._sleep = sleep
        self._repository_ready = False

    # -------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------

    def run(self, cnrs: Iterable[str], name: str = "cnr_batch") -> BatchReport:
        """Process ``cnrs`` in order and return the batch report."""
        if self.on_run_start:
            self.on_run_start(name)

        status = "completed"
        error: Exception | None = None
        report = BatchReport()

        try:
            report.degraded = not self.prepare_repository()
            for index, cnr in enumerate(cnrs):
                if self.stop_event and self.stop_event.is_set():
                    logger.info("Stop requested, not starting further CNRs")
                    report.stopped_early = True
                    break
                if index > 0:
                    self._sleep(self.settings.case_delay)

                outcome = self.process_case(cnr)
                report.add(outcome)
                if self.on_outcome:
                    self.on_outcome(outcome)
        except Exception as e:
            status = "error"
            error = e
            raise
        finally:
            report.finished_at = datetime.now(timezone.utc)
            if self.on_run_complete:
                self.on_run_complete(name, status, error)

        logger.info(report.summary())
        return report

    def prepare_repository(self) -> bool:
        """Initialize the repository once; on failure drop to scrape-only.

        Returns:
            Whether parsed cases will be persisted.
        """
        if self.repository is None:
            return False
        if self._repository_ready:
            return True
        try:
            self.repository.initialize()
        except PersistenceFailed as e:
            logger.error(
                f"Database unavailable, continuing without persistence: {e}",
                extra={"error_type": type(e.__cause__).__name__},
            )
            self.repository = None
            self.ledger = None
            return False
        self._repository_ready = True
        return True

    # -------------------------------------------------------------------
    # One CNR
    # -------------------------------------------------------------------

    def process_case(self, cnr: str) -> CaseOutcome:
        """Fetch, parse and persist one CNR, never raising for case-level
        failures."""
        try:
            outcome = self._process(cnr)
        except ScraperException as e:
            outcome = CaseOutcome(
                cnr=cnr, status=status_for_exception(e), reason=e.message
            )
        if outcome.failed:
            logger.warning(
                f"{cnr} failed: {outcome.status.value} ({outcome.reason})",
                extra={"cnr": cnr, "status": outcome.status.value},
            )
            self._record_failure(outcome)
        else:
            self._note_earlier_failures(outcome)
        return outcome

    def _process(self, cnr: str) -> CaseOutcome:
        result = self.fetch_case(cnr)
        match result.state:
            case QueryState.PARSED:
                pass
            case QueryState.NOT_FOUND:
                logger.info(f"Case {cnr} does not exist")
                return CaseOutcome(
                    cnr=cnr,
                    status=OutcomeStatus.NOT_FOUND,
                    attempts=result.attempts,
                )
            case (
                QueryState.PARSE_FAILED
                | QueryState.REQUEST_FAILED
                | QueryState.TOKEN_UNAVAILABLE
                | QueryState.CAPTCHA_UNSOLVED
            ):
                return CaseOutcome(
                    cnr=cnr,
                    status=FAILURE_STATUSES[result.state],
                    reason=result.reason,
                    attempts=result.attempts,
                )
            case (
                QueryState.NO_TOKEN
                | QueryState.TOKEN_READY
                | QueryState.CAPTCHA_READY
                | QueryState.SUBMITTED
            ):
                raise RuntimeError(
                    f"Lookup for {cnr} stopped in {result.state.name}"
                )
            case _:
                assert_never(result.state)

        record = result.record
        assert record is not None
        if self.on_data:
            self.on_data(record)

        if self.repository is None:
            return CaseOutcome(
                cnr=cnr, status=OutcomeStatus.SCRAPED, attempts=result.attempts
            )
        try:
            case_id = self.repository.save_case(record)
        except PersistenceFailed as e:
            return CaseOutcome(
                cnr=cnr,
                status=OutcomeStatus.PERSISTENCE_FAILED,
                reason=e.message,
                attempts=result.attempts,
            )
        return CaseOutcome(
            cnr=cnr,
            status=OutcomeStatus.PERSISTED,
            case_id=case_id,
            attempts=result.attempts,
        )

    def _record_failure(self, outcome: CaseOutcome) -> None:
        if self.ledger is None:
            return
        try:
            self.ledger.record(
                outcome.cnr, outcome.reason or outcome.status.value
            )
        except PersistenceFailed as e:
            logger.error(f"Could not update failure ledger: {e}")

    def _note_earlier_failures(self, outcome: CaseOutcome) -> None:
        if self.ledger is None:
            return
        try:
            earlier = self.ledger.attempts(outcome.cnr)
        except PersistenceFailed as e:
            logger.error(e.message)
            return
        if earlier:
            logger.info(
                f"{outcome.cnr} {outcome.status.value} after {earlier} "
                f"failed run(s)",
                extra={"cnr": outcome.cnr, "attempt_count": earlier},
            )

    def fetch_case(self, cnr: str) -> CaseQueryResult:
        """Run token/CAPTCHA/search cycles for ``cnr`` until one ends in a
        final state or the cycle limit is reached."""
        query = CaseQuery(cnr=cnr)
        max_attempts = self.settings.max_attempts
        for cycle in range(1, max_attempts + 1):
            if cycle > 1:
                if query.state is QueryState.REQUEST_FAILED:
                    self.session.reset()
                query.advance(QueryState.NO_TOKEN)
                self._sleep(self.settings.retry_delay)
            query.cycle = cycle
            logger.info(f"Attempt {cycle}/{max_attempts} for CNR {cnr}")

            self._run_cycle(query)
            if not query.retryable:
                break

            assert isinstance(query.error, TransientException)
            logger.warning(
                f"Attempt {cycle}/{max_attempts} for {cnr} ended in "
                f"{query.state.name}: {query.reason}",
                extra={"cnr": cnr, "state": query.state.value},
            )
            if self.on_transient_exception and not (
                self.on_transient_exception(query.error)
            ):
                break

        return CaseQueryResult(
            cnr=cnr,
            state=query.state,
            attempts=query.cycle,
            record=query.record,
            reason=query.reason,
            trail=tuple(query.trail),
        )

    def _run_cycle(self, query: CaseQuery) -> None:
        if not self._acquire_credentials(query):
            return
        assert query.token is not None and query.captcha is not None

        query.advance(QueryState.SUBMITTED)
        try:
            envelope = self.session.search_by_cnr(
                query.cnr, query.captcha, query.token
            )
        except NetworkFailure as e:
            query.fail(QueryState.REQUEST_FAILED, e)
            return
        except ParseFailed as e:
            query.fail(QueryState.PARSE_FAILED, e)
            return
        finally:
            self.session.mark_stale()

        if error_message := envelope.get("errormsg"):
            query.fail(
                QueryState.CAPTCHA_UNSOLVED,
                CaptchaUnsolved(f"Portal rejected the query: {error_message}"),
            )
            return

        fragment = envelope.get("casetype_list") or ""
        if not isinstance(fragment, str):
            query.fail(
                QueryState.PARSE_FAILED,
                ParseFailed(
                    f"casetype_list is {type(fragment).__name__}, not HTML",
                    request_url=self.settings.search_url,
                    cnr=query.cnr,
                ),
            )
            return
        try:
            query.record = self.extractor.parse(fragment, cnr=query.cnr)
        except CaseNotFound:
            query.record = CaseRecord.not_found(query.cnr)
            query.advance(QueryState.NOT_FOUND)
            return
        except ParseFailed as e:
            query.fail(QueryState.PARSE_FAILED, e)
            return
        query.advance(QueryState.PARSED)

    def _acquire_credentials(self, query: CaseQuery) -> bool:
        """Get a token and a solved CAPTCHA from the same session.

        Leaves the query in CAPTCHA_READY on success, or in the failure
        state of the last attempt.
        """
        attempts = self.settings.credential_attempts
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                query.advance(QueryState.NO_TOKEN)
            try:
                query.token = self.session.ensure_token(query.cnr)
                query.advance(QueryState.TOKEN_READY)
                image = self.session.fetch_captcha(query.cnr)
                query.captcha = self.solver.solve(image)
                query.advance(QueryState.CAPTCHA_READY)
                logger.info(f"Using CAPTCHA text: {query.captcha}")
                return True
            except TokenUnavailable as e:
                query.fail(QueryState.TOKEN_UNAVAILABLE, e)
            except CaptchaUnsolved as e:
                query.fail(QueryState.CAPTCHA_UNSOLVED, e)
            except NetworkFailure as e:
                query.fail(QueryState.REQUEST_FAILED, e)
                if attempt < attempts:
                    self._sleep(self.settings.token_retry_delay)

            # The next CAPTCHA must come with a fresh token
            self.session.mark_stale()
            logger.warning(
                f"Failed to get app token or CAPTCHA "
                f"(attempt {attempt}/{attempts}): {query.reason}",
                extra={"cnr": query.cnr, "state": query.state.value},
            )
        return False
