import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from ecourts_scraper.captcha.solver import CaptchaSolver
from ecourts_scraper.common.models.case import CaseRecord
from ecourts_scraper.config import ScraperSettings
from ecourts_scraper.parsing.extractor import CaseDetailExtractor
from ecourts_scraper.persistence.failure_ledger import FailureLedger
from ecourts_scraper.persistence.repository import CaseRepository
from ecourts_scraper.portal.session import PortalSession
from tests.scraper_driver.utils import (
    FakePortal,
    FakeRecognizer,
    SleepRecorder,
    load_fixture,
)

BASE_URL = "https://portal.test/ecourtindia_v6/"


@pytest.fixture
def settings() -> ScraperSettings:
    return ScraperSettings(
        base_url=BASE_URL,
        database_url="sqlite://",
        token_retry_delay=0,
        retry_delay=0,
        case_delay=0,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine, settings: ScraperSettings):
    repository = CaseRepository(engine, settings)
    repository.initialize()
    yield repository
    repository.session.close()


@pytest.fixture
def ledger(engine, repository: CaseRepository) -> FailureLedger:
    return FailureLedger(engine)


@pytest.fixture
def detail_fragment() -> str:
    return load_fixture("case_detail.html")


@pytest.fixture
def case_record(detail_fragment: str) -> CaseRecord:
    record = CaseDetailExtractor().extract(detail_fragment)
    assert record is not None
    return record


@pytest.fixture
def portal() -> FakePortal:
    return FakePortal()


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def portal_session(settings: ScraperSettings, portal: FakePortal, sleep):
    session = PortalSession(settings, transport=portal.transport, sleep=sleep)
    yield session
    session.close()


@pytest.fixture
def solver() -> CaptchaSolver:
    return CaptchaSolver(recognizer=FakeRecognizer("aB3dE"))
