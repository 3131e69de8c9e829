"""Per-identifier outcomes and the batch report built from them."""

import json
from collections import Counter
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class OutcomeStatus(Enum):
    """How processing of one CNR ended.

    PERSISTED and NOT_FOUND are successes. SCRAPED means the case was
    extracted but the batch runs without a database. Everything else is a
    failure and lands in the failure ledger.
    """

    PERSISTED = "persisted"
    NOT_FOUND = "not_found"
    SCRAPED = "scraped"
    REQUEST_FAILED = "request_failed"
    TOKEN_UNAVAILABLE = "token_unavailable"
    CAPTCHA_UNSOLVED = "captcha_unsolved"
    PARSE_FAILED = "parse_failed"
    PERSISTENCE_FAILED = "persistence_failed"

    @property
    def is_failure(self) -> bool:
        return self not in (
            OutcomeStatus.PERSISTED,
            OutcomeStatus.NOT_FOUND,
            OutcomeStatus.SCRAPED,
        )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CaseOutcome(BaseModel):
    cnr: str
    status: OutcomeStatus
    case_id: int | None = None
    reason: str | None = None
    attempts: int = 0
    timestamp: datetime = Field(default_factory=_now)

    @property
    def failed(self) -> bool:
        return self.status.is_failure


class BatchReport(BaseModel):
    """Outcomes of a batch run, in processing order."""

    outcomes: list[CaseOutcome] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_now)
    finished_at: datetime | None = None
    stopped_early: bool = False
    degraded: bool = False

    def add(self, outcome: CaseOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def failures(self) -> list[CaseOutcome]:
        return [o for o in self.outcomes if o.failed]

    @property
    def persisted(self) -> list[CaseOutcome]:
        return [
            o for o in self.outcomes if o.status is OutcomeStatus.PERSISTED
        ]

    def counts(self) -> dict[str, int]:
        return dict(Counter(o.status.value for o in self.outcomes))

    def failures_as_json(self) -> str:
        """Serialize failed outcomes as a JSON array of
        ``{cnr, reason, status, timestamp}`` objects."""
        return json.dumps(
            [
                {
                    "cnr": o.cnr,
                    "reason": o.reason,
                    "status": o.status.value,
                    "timestamp": o.timestamp.isoformat(),
                }
                for o in self.failures
            ],
            indent=2,
        )

    def summary(self) -> str:
        counts = self.counts()
        parts = [f"{status}={n}" for status, n in sorted(counts.items())]
        return (
            f"Processed {len(self.outcomes)} CNR(s): "
            + (", ".join(parts) if parts else "nothing processed")
        )
