"""Extraction of a case record from the CNR search fragment.

The search answers with an HTML fragment made of fixed tables, each tagged
with a class:

- ``case_details_table``: type, filing/registration numbers and the CNR.
- ``case_status_table``: hearing and decision dates, status, court hall.
- ``Petitioner_Advocate_table`` / ``Respondent_Advocate_table``: one cell
  per party, ``"<name> Advocate- <advocate>"``.
- ``acts_table``: header row, then act / section rows.
- ``history_table``, ``transfer_table``, ``IAheading``: header row, then one
  row per entry.
"""

import logging
import re
from collections.abc import Sequence

from lxml import html as lxml_html
from lxml.etree import ParserError

from ecourts_scraper.common.exceptions import CaseNotFound, ParseFailed
from ecourts_scraper.common.models.case import (
    CNR_LENGTH,
    CaseRecord,
    HistoryEntry,
    IAEntry,
    TransferEntry,
)
from ecourts_scraper.parsing.labels import (
    LabelMatcher,
    SubstringLabelMatcher,
    match_field,
)

logger = logging.getLogger(__name__)

NOT_FOUND_MARKER = "This Case Code does not exists"
DETAILS_MARKER = "Case Details"
ADVOCATE_DELIMITER = "Advocate-"

# Order matters for substring matching: earlier labels win.
CASE_DETAIL_LABELS: tuple[tuple[str, str], ...] = (
    ("case type", "case_type"),
    ("filing number", "filing_number"),
    ("registration number", "registration_number"),
    ("cnr number", "cnr_number"),
)
CASE_STATUS_LABELS: tuple[tuple[str, str], ...] = (
    ("first hearing date", "first_hearing_date"),
    ("decision date", "decision_date"),
    ("case status", "case_status"),
    ("nature of disposal", "disposal_nature"),
    ("court number and judge", "court_number_and_judge"),
    ("disposal date", "disposal_date"),
)
# Rows whose value cell is followed by a date cell
DATED_FIELDS = {
    "filing_number": "filing_date",
    "registration_number": "registration_date",
}

PARENTHESES = re.compile(r"[()]")


def _class_xpath(css_class: str) -> str:
    return (
        "//*[contains(concat(' ', normalize-space(@class), ' '), "
        f"' {css_class} ')]//tr"
    )


def cell_text(cell) -> str:
    return cell.text_content().strip()


def cell_lines(cell) -> list[str]:
    return cell_text(cell).split("\n")


def first_line(cell) -> str:
    text = cell_text(cell)
    return text.split("\n")[0].strip() or text


class CaseDetailExtractor:
    """Builds a ``CaseRecord`` from the search fragment.

    ``parse`` raises ``CaseNotFound`` for the portal's not-found page and
    ``ParseFailed`` for a fragment that is not a usable case page.
    ``extract`` returns ``None`` for both; callers tell them apart with
    ``case_missing``.
    """

    def __init__(self, matcher: LabelMatcher | None = None) -> None:
        self.matcher = matcher or SubstringLabelMatcher()

    @staticmethod
    def case_missing(fragment: str) -> bool:
        return NOT_FOUND_MARKER in fragment

    def extract(self, fragment: str) -> CaseRecord | None:
        try:
            return self.parse(fragment)
        except CaseNotFound:
            return None
        except ParseFailed as e:
            logger.error(e.message)
            return None

    def parse(self, fragment: str, cnr: str | None = None) -> CaseRecord:
        """Parse ``fragment`` into a record.

        Raises:
            CaseNotFound: The fragment is the not-found page.
            ParseFailed: No case details, malformed HTML or no CNR.
        """
        if self.case_missing(fragment):
            logger.info("Case does not exist")
            raise CaseNotFound("Portal reports no such case", cnr=cnr)
        if DETAILS_MARKER not in fragment:
            raise ParseFailed(
                "No case details found in the response", cnr=cnr
            )

        try:
            tree = lxml_html.fromstring(fragment)
        except ParserError as e:
            raise ParseFailed(
                f"Could not parse case fragment: {e}", cnr=cnr
            ) from e
        for br in tree.iter("br"):
            br.tail = "\n" + (br.tail or "")

        record = CaseRecord(html_content=fragment)
        self._labelled_rows(tree, "case_details_table", CASE_DETAIL_LABELS, record)
        self._labelled_rows(tree, "case_status_table", CASE_STATUS_LABELS, record)
        self._party(tree, "Petitioner_Advocate_table", "petitioner", record)
        self._party(tree, "Respondent_Advocate_table", "respondent", record)
        self._acts(tree, record)
        record.history = self._history(tree)
        record.transfers = self._transfers(tree)
        record.ias = self._ias(tree)
        record.synthesize_disposal_date()

        if not record.cnr_number:
            raise ParseFailed("Missing required field: CNR number", cnr=cnr)

        logger.info(
            f"Parsed case {record.cnr_number}: {len(record.history)} "
            f"history, {len(record.transfers)} transfer, "
            f"{len(record.ias)} IA entries"
        )
        return record

    def _rows(self, tree, css_class: str, skip_header: bool = False):
        rows = tree.xpath(_class_xpath(css_class))
        return rows[1:] if skip_header else rows

    def _labelled_rows(
        self,
        tree,
        css_class: str,
        labels: Sequence[tuple[str, str]],
        record: CaseRecord,
    ) -> None:
        for row in self._rows(tree, css_class):
            cols = row.xpath("./td")
            if len(cols) < 2:
                continue
            field_name = match_field(self.matcher, cell_text(cols[0]), labels)
            if field_name is None:
                continue
            value = cell_text(cols[1])
            if field_name == "cnr_number":
                value = value[:CNR_LENGTH]
            setattr(record, field_name, value)
            if field_name in DATED_FIELDS and len(cols) >= 4:
                setattr(record, DATED_FIELDS[field_name], cell_text(cols[3]))
            logger.debug(f"Found {field_name}: {value}")

    def _party(
        self, tree, css_class: str, role: str, record: CaseRecord
    ) -> None:
        # Later rows overwrite earlier ones
        for row in self._rows(tree, css_class):
            cols = row.xpath("./td")
            if not cols:
                continue
            text = cell_text(cols[0])
            if not text:
                continue
            name, delimiter, advocate = text.partition(ADVOCATE_DELIMITER)
            if delimiter:
                setattr(record, f"{role}_name", name.strip())
                setattr(record, f"{role}_advocate", advocate.strip())
            else:
                setattr(record, f"{role}_name", text)
                setattr(record, f"{role}_advocate", None)

    def _acts(self, tree, record: CaseRecord) -> None:
        for row in self._rows(tree, "acts_table", skip_header=True):
            cols = row.xpath("./td")
            if len(cols) < 2:
                continue
            act = cell_text(cols[0])
            if not act:
                continue
            record.acts.append(act)
            record.sections.append(cell_text(cols[1]) or None)

    def _history(self, tree) -> list[HistoryEntry]:
        entries = []
        for row in self._rows(tree, "history_table", skip_header=True):
            cols = row.xpath("./td")
            if len(cols) < 4:
                continue
            entry = HistoryEntry(
                judge=cell_text(cols[0]),
                business_date=cell_lines(cols[1])[0].strip(),
                hearing_date=cell_text(cols[2]),
                purpose=cell_text(cols[3]),
            )
            if any(entry.model_dump().values()):
                entries.append(entry)
        return entries

    def _transfers(self, tree) -> list[TransferEntry]:
        return [
            TransferEntry(
                registration_number=cell_text(cols[0]),
                transfer_date=cell_text(cols[1]),
                from_court=cell_text(cols[2]),
                to_court=cell_text(cols[3]),
            )
            for row in self._rows(tree, "transfer_table", skip_header=True)
            if len(cols := row.xpath("./td")) >= 4
        ]

    def _ias(self, tree) -> list[IAEntry]:
        entries = []
        for row in self._rows(tree, "IAheading", skip_header=True):
            cols = row.xpath("./td")
            if len(cols) < 5:
                continue
            next_date_purpose = cell_lines(cols[3])
            next_date = next_date_purpose[0].strip() or None
            purpose = None
            if len(next_date_purpose) > 1:
                purpose = (
                    PARENTHESES.sub("", next_date_purpose[1]).strip() or None
                )
            filed = cell_text(cols[2])
            entries.append(
                IAEntry(
                    ia_no=cell_text(cols[0]),
                    party=first_line(cols[1]),
                    filing_date=filed,
                    next_date=next_date,
                    purpose=purpose,
                    ia_status=cell_text(cols[4]),
                    classification=purpose or "General",
                    registration_date=filed,
                )
            )
        return entries
