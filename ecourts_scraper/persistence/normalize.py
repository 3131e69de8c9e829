"""Turning the portal's display text into natural keys and dates."""

import re
from datetime import date, datetime

ORDINAL_SUFFIX = re.compile(r"(\d+)(st|nd|rd|th)")
DATE_FORMATS = (
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%Y-%m-%d",
    "%d %B %Y",
    "%d-%b-%Y",
)

LIST_PREFIX = re.compile(r"^\d+[\s)]+")
NON_WORD = re.compile(r"[^\w\s]")
COURT_HALL = re.compile(r"(\d+)\s*-\s*(.+)")


def parse_date(value: str | None) -> str | None:
    """Parse a portal date into ISO ``YYYY-MM-DD``, or return ``None`` if it
    is empty or unreadable.

    >>> parse_date("1st February 2020")
    '2020-02-01'
    """
    if not value:
        return None
    text = ORDINAL_SUFFIX.sub(r"\1", str(value), count=1).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def to_date(value: str | None) -> date | None:
    """``parse_date`` as a ``datetime.date``, for Date columns."""
    iso = parse_date(value)
    return date.fromisoformat(iso) if iso else None


def clean_litigant_name(name: str | None) -> str | None:
    """``"2) John Doe, Esq."`` -> ``"John Doe Esq"``."""
    if not name:
        return None
    name = LIST_PREFIX.sub("", str(name))
    cleaned = " ".join(NON_WORD.sub(" ", name).split())
    return cleaned or None


def normalize_act_name(act: str | None) -> str | None:
    """Trim the act and drop everything after the first comma, unless what
    follows is a bare year: ``"Indian Penal Code, 1860"`` stays intact."""
    if not act:
        return None
    act = act.strip()
    if act.endswith("\\"):
        act = act[:-1].strip()
    parts = [part.strip() for part in act.split(",")]
    if len(parts) > 1 and parts[1].isdigit():
        normalized = f"{parts[0]}, {parts[1]}"
    else:
        normalized = parts[0]
    return normalized or None


def normalize_section(section: str | None) -> str | None:
    if section is None:
        return None
    return str(section).strip() or None


def split_case_type(case_type: str | None) -> tuple[str, str | None] | None:
    """``"EP - Execution Petition"`` -> ``("EP", "Execution Petition")``."""
    if not case_type:
        return None
    short, _, expanded = case_type.partition(" - ")
    short = short.strip()
    if not short:
        return None
    return short, expanded.strip() or None


def parse_court_hall(text: str | None) -> tuple[str, str] | None:
    """Split ``"2-Principal Munsiff"`` into hall number and judge name."""
    if not text:
        return None
    match = COURT_HALL.search(text)
    if not match:
        return None
    return match.group(1), match.group(2).strip()
