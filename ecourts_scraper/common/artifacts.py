"""Debug artifacts: the last CAPTCHA images and the last raw HTML fragment.

Artifacts are overwritten on every attempt, never accumulated, so the
directory always shows what the most recent attempt saw.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

CAPTCHA_ORIGINAL = "last_captcha_original.png"
CAPTCHA_PROCESSED = "last_captcha_processed.png"
LAST_RESPONSE = "last_response.html"


class ArtifactStore:
    """Writes named debug artifacts into a single directory.

    A store built with ``directory=None`` is disabled: every write is a no-op
    and returns ``None``. Write errors are logged, not raised.
    """

    def __init__(self, directory: Path | None = None) -> None:
        self.directory = directory
        if directory is not None:
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def enabled(self) -> bool:
        return self.directory is not None

    def write_bytes(self, name: str, content: bytes) -> Path | None:
        if self.directory is None:
            return None
        path = self.directory / name
        try:
            path.write_bytes(content)
        except OSError as e:
            logger.warning(f"Could not write debug artifact {path}: {e}")
            return None
        return path

    def write_text(self, name: str, text: str) -> Path | None:
        return self.write_bytes(name, text.encode("utf-8"))
