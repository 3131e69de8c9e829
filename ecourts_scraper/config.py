"""Runtime configuration.

Defaults reproduce the values the portal workflow was tuned with. Every
field can be overridden through an ``ECOURTS_<FIELD>`` environment variable,
and a ``.env`` file in the working directory is loaded first.
"""

import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "ECOURTS_"

DEFAULT_BASE_URL = "https://services.ecourts.gov.in/ecourtindia_v6/"


class ScraperSettings(BaseModel):
    """Settings shared by the session, the driver and the repository."""

    # Portal
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    proxy: str | None = None
    user_agent: str | None = None

    # Retry and pacing
    max_attempts: int = Field(default=1, ge=1)
    credential_attempts: int = Field(default=3, ge=1)
    token_attempts: int = Field(default=3, ge=1)
    token_retry_delay: float = Field(default=1.0, ge=0)
    retry_delay: float = Field(default=2.0, ge=0)
    case_delay: float = Field(default=2.0, ge=0)
    requests_per_minute: float | None = None
    search_requests_per_minute: float | None = None

    # Persistence
    database_url: str = "sqlite:///ecourts_cases.db"
    state_name: str = "Kerala"
    district_name: str = "Kannur"
    court_name: str = "Munsiffss Court Kuthuparamba"
    court_category_id: int = 3

    # Debugging
    artifact_dir: Path | None = None

    @property
    def captcha_url(self) -> str:
        return self.base_url + "vendor/securimage/securimage_show.php"

    @property
    def search_url(self) -> str:
        return self.base_url + "?p=cnr_status/searchByCNR/"

    @classmethod
    def from_env(cls, **overrides) -> "ScraperSettings":
        """Build settings from ``ECOURTS_*`` variables (and ``.env``).

        Keyword overrides win over the environment. Values are passed to
        pydantic as strings and coerced by field type.
        """
        load_dotenv(find_dotenv(usecwd=True))
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
