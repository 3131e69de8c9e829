"""Shared helpers for the test suite: result collection, a fake portal and a
fake OCR engine."""

import io
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import parse_qs

import httpx
from PIL import Image

from ecourts_scraper.captcha.solver import OcrProfile

FIXTURES = Path(__file__).parent.parent / "fixtures"

T = TypeVar("T")


def collect_results() -> tuple[Callable[[T], None], list[T]]:
    """Create a callback that appends to a list, and the list."""
    results: list[T] = []

    def callback(data: T) -> None:
        results.append(data)

    return callback, results


def load_fixture(name: str) -> str:
    return (FIXTURES / name).read_text()


def captcha_png(size: tuple[int, int] = (120, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, "white").save(buffer, format="PNG")
    return buffer.getvalue()


def found_envelope(fragment: str | None = None) -> dict:
    return {"casetype_list": fragment or load_fixture("case_detail.html")}


NOT_FOUND_ENVELOPE = {
    "casetype_list": '<span style="color:red;">This Case Code does not exists</span>'
}
REJECTED_ENVELOPE = {"errormsg": "Invalid Captcha"}


class FakeRecognizer:
    """Stands in for Tesseract; returns the queued readings in order and
    repeats the last one."""

    def __init__(self, *readings: str | Exception) -> None:
        self.readings = list(readings) or [""]
        self.calls: list[tuple[Image.Image, OcrProfile]] = []

    def __call__(self, image: Image.Image, profile: OcrProfile) -> str:
        self.calls.append((image, profile))
        index = min(len(self.calls) - 1, len(self.readings) - 1)
        reading = self.readings[index]
        if isinstance(reading, Exception):
            raise reading
        return reading


class FakePortal:
    """httpx handler imitating the landing page, CAPTCHA and search
    endpoints.

    ``search_bodies`` are served in order; the last one repeats. Exceptions
    in any queue are raised instead of answering.
    """

    def __init__(
        self,
        search_bodies: list[Any] | None = None,
        landing_pages: list[Any] | None = None,
        captcha_status: int = 200,
        captcha_content_type: str = "image/png",
    ) -> None:
        self.search_bodies = search_bodies or [found_envelope()]
        self.landing_pages = landing_pages or [load_fixture("landing_page.html")]
        self.captcha_status = captcha_status
        self.captcha_content_type = captcha_content_type
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_to(self, marker: str) -> list[httpx.Request]:
        return [r for r in self.requests if marker in str(r.url)]

    @property
    def landing_requests(self) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if "securimage" not in str(r.url) and "searchByCNR" not in str(r.url)
        ]

    def search_forms(self) -> list[dict[str, str]]:
        return [
            {k: v[0] for k, v in parse_qs(r.content.decode()).items()}
            for r in self.requests_to("searchByCNR")
        ]

    @staticmethod
    def _next(queue: list[Any], served: int) -> Any:
        item = queue[min(served, len(queue) - 1)]
        if isinstance(item, Exception):
            raise item
        return item

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if "securimage_show.php" in url:
            return httpx.Response(
                self.captcha_status,
                headers={"content-type": self.captcha_content_type},
                content=captcha_png(),
            )
        if "searchByCNR" in url:
            served = len(self.requests_to("searchByCNR")) - 1
            body = self._next(self.search_bodies, served)
            if isinstance(body, httpx.Response):
                return body
            return httpx.Response(
                200,
                headers={"content-type": "application/json"},
                content=json.dumps(body).encode(),
            )
        served = len(self.landing_requests) - 1
        page = self._next(self.landing_pages, served)
        if isinstance(page, httpx.Response):
            return page
        return httpx.Response(
            200, headers={"content-type": "text/html"}, text=page
        )


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
