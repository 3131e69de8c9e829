"""Matching a table row's label cell against known field labels.

Detail tables put the label in the first cell and the value in the next.
Substring matching is the default; ``ExactLabelMatcher`` only accepts the
label itself.
"""

from collections.abc import Sequence
from typing import Protocol


def normalize_label(text: str) -> str:
    return " ".join(text.split()).lower()


class LabelMatcher(Protocol):
    def matches(self, cell_text: str, label: str) -> bool: ...


class SubstringLabelMatcher:
    """Case-insensitive containment: ``"Decision Date"`` matches the row
    ``"Decision Date :"``."""

    def matches(self, cell_text: str, label: str) -> bool:
        return normalize_label(label) in normalize_label(cell_text)


class ExactLabelMatcher:
    """Case-insensitive equality, ignoring surrounding colons."""

    def matches(self, cell_text: str, label: str) -> bool:
        return normalize_label(cell_text).strip(" :") == normalize_label(
            label
        )


def match_field(
    matcher: LabelMatcher,
    cell_text: str,
    table: Sequence[tuple[str, str]],
) -> str | None:
    """First field whose label matches, in table order."""
    for label, field_name in table:
        if matcher.matches(cell_text, label):
            return field_name
    return None
