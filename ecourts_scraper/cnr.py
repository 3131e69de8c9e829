"""CNR construction.

A CNR is the establishment code, a six-digit serial and the filing year:
``KLKN01`` + ``000001`` + ``2019``.
"""

from collections.abc import Iterator

DEFAULT_ESTABLISHMENT = "KLKN01"
SERIAL_WIDTH = 6


def generate_cnr_number(
    serial: int, year: str | int = "2019", prefix: str = DEFAULT_ESTABLISHMENT
) -> str:
    if serial < 0 or serial >= 10**SERIAL_WIDTH:
        raise ValueError(f"Serial {serial} does not fit in {SERIAL_WIDTH} digits")
    return f"{prefix}{serial:0{SERIAL_WIDTH}d}{year}"


def cnr_range(
    start: int,
    end: int,
    year: str | int = "2019",
    prefix: str = DEFAULT_ESTABLISHMENT,
) -> Iterator[str]:
    """CNRs for serials ``start`` through ``end`` inclusive."""
    for serial in range(start, end + 1):
        yield generate_cnr_number(serial, year, prefix)
