#!/usr/bin/env python3
"""Scrape a range of CNRs from the eCourts portal into the database.

CNRs are built from an establishment code, a serial range and a year. Each
one is looked up, parsed and saved; a JSON file of the failures is written
at the end.

Usage:
    python -m scripts.scrape_cnr_range --start 1 --end 100 --year 2019

Settings not given on the command line come from ``ECOURTS_*`` environment
variables or a ``.env`` file.

Output:
    failed_cases_<timestamp>.json - CNRs that could not be processed
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from ecourts_scraper.captcha.solver import (  # noqa: E402
    CaptchaSolver,
    StandaloneCaptchaSolver,
    sample_captchas,
)
from ecourts_scraper.cnr import DEFAULT_ESTABLISHMENT, cnr_range  # noqa: E402
from ecourts_scraper.common.artifacts import ArtifactStore  # noqa: E402
from ecourts_scraper.common.exceptions import ScraperException  # noqa: E402
from ecourts_scraper.common.portal_interceptors import (  # noqa: E402
    LoggingInterceptor,
    ResponseSnapshotInterceptor,
)
from ecourts_scraper.common.rate_limit_interceptor import (  # noqa: E402
    RateLimitInterceptor,
)
from ecourts_scraper.config import ScraperSettings  # noqa: E402
from ecourts_scraper.driver.case_driver import CaseQueryDriver  # noqa: E402
from ecourts_scraper.persistence.failure_ledger import (  # noqa: E402
    FailureLedger,
)
from ecourts_scraper.persistence.repository import (  # noqa: E402
    CaseRepository,
)
from ecourts_scraper.portal.session import PortalSession  # noqa: E402

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

logger = logging.getLogger("scrape_cnr_range")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--start", type=int, default=1)
    parser.add_argument("--end", type=int, default=10000)
    parser.add_argument("--year", default="2019")
    parser.add_argument("--prefix", default=DEFAULT_ESTABLISHMENT)
    parser.add_argument("--database-url")
    parser.add_argument("--artifact-dir", type=Path)
    parser.add_argument("--max-attempts", type=int)
    parser.add_argument("--requests-per-minute", type=float)
    parser.add_argument("--search-requests-per-minute", type=float)
    parser.add_argument(
        "--sample-captchas",
        type=int,
        metavar="N",
        help="Only fetch and read N CAPTCHAs to check OCR, then exit",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("."),
        help="Where the failed-cases JSON file is written",
    )
    parser.add_argument("--log-file", type=Path, default=Path("combined.log"))
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def configure_logging(log_file: Path, verbose: bool) -> None:
    handlers: list[logging.Handler] = [
        logging.StreamHandler(),
        logging.FileHandler(log_file),
    ]
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


def build_driver(
    settings: ScraperSettings, stop_event: threading.Event
) -> CaseQueryDriver:
    artifacts = ArtifactStore(settings.artifact_dir)
    interceptors = [LoggingInterceptor(), ResponseSnapshotInterceptor(artifacts)]
    if settings.requests_per_minute or settings.search_requests_per_minute:
        interceptors.append(
            RateLimitInterceptor.per_minute(
                settings.requests_per_minute,
                settings.search_requests_per_minute,
            )
        )

    repository = CaseRepository.from_settings(settings)
    return CaseQueryDriver(
        settings=settings,
        session=PortalSession(settings, interceptors=interceptors),
        solver=CaptchaSolver(artifacts=artifacts),
        repository=repository,
        ledger=FailureLedger(repository.engine),
        stop_event=stop_event,
    )


def check_captchas(settings: ScraperSettings, count: int) -> int:
    artifacts = ArtifactStore(settings.artifact_dir)
    try:
        with PortalSession(
            settings, interceptors=[LoggingInterceptor()]
        ) as session:
            session.ensure_token()
            readings = sample_captchas(
                session.fetch_captcha,
                count,
                StandaloneCaptchaSolver(artifacts=artifacts),
            )
    except ScraperException as e:
        logger.error(f"CAPTCHA check aborted: {e}")
        return 1
    read = [r for r in readings if r is not None]
    print(f"Read {len(read)} of {count} CAPTCHA(s): {', '.join(read)}")
    return 0


def write_failures(json_text: str, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = output_dir / f"failed_cases_{timestamp}.json"
    path.write_text(json_text)
    return path


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    configure_logging(args.log_file, args.verbose)

    settings = ScraperSettings.from_env(
        database_url=args.database_url,
        artifact_dir=args.artifact_dir,
        max_attempts=args.max_attempts,
        requests_per_minute=args.requests_per_minute,
        search_requests_per_minute=args.search_requests_per_minute,
    )
    if args.sample_captchas:
        return check_captchas(settings, args.sample_captchas)

    stop_event = threading.Event()

    def request_stop(signum, frame) -> None:
        logger.warning("Interrupted; finishing the current CNR before stopping")
        stop_event.set()

    signal.signal(signal.SIGINT, request_stop)

    driver = build_driver(settings, stop_event)
    repository = driver.repository
    cnrs = cnr_range(args.start, args.end, args.year, args.prefix)
    try:
        report = driver.run(cnrs)
    except Exception as e:
        logger.exception(f"Run aborted: {e}")
        return 1
    finally:
        driver.session.close()
        if repository is not None:
            repository.close()

    print(report.summary())
    if report.failures:
        path = write_failures(report.failures_as_json(), args.output_dir)
        print(f"Wrote {len(report.failures)} failure(s) to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
