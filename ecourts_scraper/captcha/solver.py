"""OCR for the portal's Securimage CAPTCHA.

The challenge is a short alphanumeric string on a noisy background. The
image is cleaned up with Pillow and read by Tesseract under a few
page-segmentation profiles; the first reading of plausible length wins.
"""

import io
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import pytesseract
from PIL import Image, ImageEnhance, ImageOps, UnidentifiedImageError

from ecourts_scraper.common.artifacts import (
    CAPTCHA_ORIGINAL,
    CAPTCHA_PROCESSED,
    ArtifactStore,
)
from ecourts_scraper.common.exceptions import CaptchaUnsolved

logger = logging.getLogger(__name__)

ALPHANUMERIC = (
    "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
)
NON_ALPHANUMERIC = re.compile(r"[^0-9A-Za-z]")


@dataclass(frozen=True)
class OcrProfile:
    """One Tesseract configuration to try."""

    psm: int
    oem: int = 3
    lang: str = "eng"
    whitelist: str = ALPHANUMERIC

    @property
    def tesseract_config(self) -> str:
        return (
            f"--oem {self.oem} --psm {self.psm} "
            f"-c tessedit_char_whitelist={self.whitelist}"
        )


# Single line, single word, raw line
DEFAULT_PROFILES: tuple[OcrProfile, ...] = (
    OcrProfile(psm=7),
    OcrProfile(psm=8),
    OcrProfile(psm=13),
)

Recognizer = Callable[[Image.Image, OcrProfile], str]


def tesseract_recognizer(image: Image.Image, profile: OcrProfile) -> str:
    return pytesseract.image_to_string(
        image, lang=profile.lang, config=profile.tesseract_config
    )


def clean_text(text: str) -> str:
    return NON_ALPHANUMERIC.sub("", text.strip())


class CaptchaSolver:
    """Turns a CAPTCHA image into text or raises ``CaptchaUnsolved``.

    Args:
        recognizer: Callable doing the actual OCR; defaults to Tesseract.
        profiles: Profiles tried in order.
        artifacts: Where to keep the last original and processed images.
    """

    contrast: float = 1.8
    brightness: float = 1.2
    normalize: bool = True
    min_length: int = 4
    max_length: int | None = 8

    def __init__(
        self,
        recognizer: Recognizer | None = None,
        profiles: Sequence[OcrProfile] = DEFAULT_PROFILES,
        artifacts: ArtifactStore | None = None,
    ) -> None:
        self.recognizer = recognizer or tesseract_recognizer
        self.profiles = tuple(profiles)
        self.artifacts = artifacts or ArtifactStore()

    def preprocess(self, image: Image.Image) -> Image.Image:
        """Grayscale, boost contrast and brightness, invert, upscale 2x and
        stretch the histogram."""
        processed = ImageOps.grayscale(image)
        processed = ImageEnhance.Contrast(processed).enhance(self.contrast)
        processed = ImageEnhance.Brightness(processed).enhance(
            self.brightness
        )
        processed = ImageOps.invert(processed)
        processed = processed.resize(
            (processed.width * 2, processed.height * 2), Image.LANCZOS
        )
        if self.normalize:
            processed = ImageOps.autocontrast(processed)
        return processed

    def accepts(self, candidate: str) -> bool:
        if len(candidate) < self.min_length:
            return False
        return self.max_length is None or len(candidate) <= self.max_length

    def solve(self, image_bytes: bytes) -> str:
        self.artifacts.write_bytes(CAPTCHA_ORIGINAL, image_bytes)
        try:
            with Image.open(io.BytesIO(image_bytes)) as original:
                original.load()
                processed = self.preprocess(original)
        except (UnidentifiedImageError, OSError) as e:
            raise CaptchaUnsolved(
                f"CAPTCHA image could not be decoded: {e}",
                context={"size": len(image_bytes)},
            ) from e

        if self.artifacts.enabled:
            buffer = io.BytesIO()
            processed.save(buffer, format="PNG")
            self.artifacts.write_bytes(CAPTCHA_PROCESSED, buffer.getvalue())

        readings: list[str] = []
        for profile in self.profiles:
            try:
                raw = self.recognizer(processed, profile)
            except (pytesseract.TesseractError, RuntimeError, OSError) as e:
                logger.error(f"OCR failed with psm {profile.psm}: {e}")
                continue
            candidate = clean_text(raw)
            readings.append(candidate)
            if self.accepts(candidate):
                logger.info(
                    f"Read CAPTCHA as {candidate!r} with psm {profile.psm}"
                )
                return candidate

        raise CaptchaUnsolved(
            "No OCR profile produced an acceptable CAPTCHA reading",
            context={"readings": readings},
        )


class StandaloneCaptchaSolver(CaptchaSolver):
    """Lighter enhancement without normalization, and no upper bound on the
    reading length. Used by ``sample_captchas``, which reads
    CAPTCHAs outside any search."""

    contrast = 2.0
    brightness = 1.5
    normalize = False
    max_length = None


def sample_captchas(
    fetch_image: Callable[[], bytes],
    count: int,
    solver: CaptchaSolver | None = None,
) -> list[str | None]:
    """Fetch and read ``count`` CAPTCHAs without submitting any search.

    Shows how well OCR does against the live portal. An image no profile can
    read gives ``None``; errors fetching an image propagate.
    """
    solver = solver or StandaloneCaptchaSolver()
    readings: list[str | None] = []
    for n in range(1, count + 1):
        try:
            readings.append(solver.solve(fetch_image()))
        except CaptchaUnsolved as e:
            logger.warning(f"CAPTCHA {n}/{count} unreadable: {e}")
            readings.append(None)
    return readings
