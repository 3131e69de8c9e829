"""Per-CNR query state machine.

A lookup walks ``NO_TOKEN -> TOKEN_READY -> CAPTCHA_READY -> SUBMITTED`` and
ends in one of the terminal states. The retryable failure states may loop
back to ``NO_TOKEN`` to start a fresh token/CAPTCHA cycle; whether they do
is the driver's decision, bounded by its attempt settings.
"""

from dataclasses import dataclass, field
from enum import Enum

from ecourts_scraper.common.exceptions import ScraperException
from ecourts_scraper.common.models.case import CaseRecord


class QueryState(Enum):
    NO_TOKEN = "no_token"
    TOKEN_READY = "token_ready"
    CAPTCHA_READY = "captcha_ready"
    SUBMITTED = "submitted"

    PARSED = "parsed"
    NOT_FOUND = "not_found"
    PARSE_FAILED = "parse_failed"
    REQUEST_FAILED = "request_failed"
    TOKEN_UNAVAILABLE = "token_unavailable"
    CAPTCHA_UNSOLVED = "captcha_unsolved"


RETRYABLE_STATES = frozenset(
    {
        QueryState.REQUEST_FAILED,
        QueryState.TOKEN_UNAVAILABLE,
        QueryState.CAPTCHA_UNSOLVED,
    }
)
FINAL_STATES = frozenset(
    {QueryState.PARSED, QueryState.NOT_FOUND, QueryState.PARSE_FAILED}
)

TRANSITIONS: dict[QueryState, frozenset[QueryState]] = {
    QueryState.NO_TOKEN: frozenset(
        {
            QueryState.TOKEN_READY,
            QueryState.TOKEN_UNAVAILABLE,
            QueryState.REQUEST_FAILED,
        }
    ),
    QueryState.TOKEN_READY: frozenset(
        {
            QueryState.CAPTCHA_READY,
            QueryState.CAPTCHA_UNSOLVED,
            QueryState.REQUEST_FAILED,
        }
    ),
    QueryState.CAPTCHA_READY: frozenset({QueryState.SUBMITTED}),
    QueryState.SUBMITTED: frozenset(
        {
            QueryState.PARSED,
            QueryState.NOT_FOUND,
            QueryState.PARSE_FAILED,
            QueryState.REQUEST_FAILED,
            QueryState.CAPTCHA_UNSOLVED,
        }
    ),
    QueryState.REQUEST_FAILED: frozenset({QueryState.NO_TOKEN}),
    QueryState.TOKEN_UNAVAILABLE: frozenset({QueryState.NO_TOKEN}),
    QueryState.CAPTCHA_UNSOLVED: frozenset({QueryState.NO_TOKEN}),
    QueryState.PARSED: frozenset(),
    QueryState.NOT_FOUND: frozenset(),
    QueryState.PARSE_FAILED: frozenset(),
}


class InvalidTransition(Exception):
    def __init__(self, cnr: str, source: QueryState, target: QueryState):
        super().__init__(
            f"Invalid transition {source.name} -> {target.name} for {cnr}"
        )
        self.cnr = cnr
        self.source = source
        self.target = target


@dataclass
class CaseQuery:
    """Everything known about one CNR lookup while it is in flight."""

    cnr: str
    state: QueryState = QueryState.NO_TOKEN
    cycle: int = 0
    token: str | None = None
    captcha: str | None = None
    record: CaseRecord | None = None
    error: ScraperException | None = None
    trail: list[QueryState] = field(
        default_factory=lambda: [QueryState.NO_TOKEN]
    )

    def advance(self, target: QueryState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(self.cnr, self.state, target)
        self.state = target
        self.trail.append(target)
        if target is QueryState.NO_TOKEN:
            self.token = None
            self.captcha = None
            self.error = None

    def fail(self, target: QueryState, error: ScraperException) -> None:
        self.advance(target)
        error.cnr = error.cnr or self.cnr
        self.error = error

    @property
    def retryable(self) -> bool:
        return self.state in RETRYABLE_STATES

    @property
    def reason(self) -> str | None:
        return self.error.message if self.error else None


@dataclass(frozen=True)
class CaseQueryResult:
    cnr: str
    state: QueryState
    attempts: int
    record: CaseRecord | None = None
    reason: str | None = None
    trail: tuple[QueryState, ...] = ()
