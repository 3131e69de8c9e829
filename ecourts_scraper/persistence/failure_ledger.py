import logging
from datetime import datetime

from sqlalchemy import Engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ecourts_scraper.common.exceptions import PersistenceFailed
from ecourts_scraper.persistence.schema import FailedCase

logger = logging.getLogger(__name__)

REASON_LENGTH = 255


class FailureLedger:
    """Durable record of CNRs that could not be processed.

    One row per CNR; a repeated failure bumps ``attempt_count`` and
    ``last_attempt_date`` instead of adding a row. Writes run in their own
    transaction, independent of the case that failed.
    """

    def __init__(self, engine: Engine) -> None:
        self._sessions = sessionmaker(engine)

    def record(self, cnr: str, reason: str) -> int:
        """Record a failure and return the CNR's attempt count."""
        reason = reason[:REASON_LENGTH]
        try:
            with self._sessions.begin() as session:
                row = session.scalars(
                    select(FailedCase).where(FailedCase.cnr_number == cnr)
                ).first()
                if row is None:
                    row = FailedCase(
                        cnr_number=cnr, failure_reason=reason, attempt_count=1
                    )
                    session.add(row)
                else:
                    row.attempt_count += 1
                    row.failure_reason = reason
                    row.last_attempt_date = datetime.now()
                session.flush()
                attempts = row.attempt_count
        except SQLAlchemyError as e:
            raise PersistenceFailed(
                f"Could not record failure: {e}", cnr=cnr
            ) from e
        logger.info(
            f"Recorded failure #{attempts} for {cnr}: {reason}",
            extra={"cnr": cnr, "attempt_count": attempts},
        )
        return attempts

    def attempts(self, cnr: str) -> int:
        """How many times ``cnr`` has failed so far."""
        try:
            with self._sessions() as session:
                count = session.scalars(
                    select(FailedCase.attempt_count).where(
                        FailedCase.cnr_number == cnr
                    )
                ).first()
        except SQLAlchemyError as e:
            raise PersistenceFailed(
                f"Could not read failure ledger: {e}", cnr=cnr
            ) from e
        return count or 0
