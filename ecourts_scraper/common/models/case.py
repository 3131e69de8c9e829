from pydantic import BaseModel, Field, computed_field

CNR_LENGTH = 16
DISPOSED_STATUS = "Case disposed"


class ConsumerModel(BaseModel):
    """Base for the records the pipeline hands from one stage to the next.

    Everything here is still the portal's text: dates are the strings as
    displayed and names are uncleaned. Normalization happens when the record
    is written.
    """

    pass


class HistoryEntry(ConsumerModel):
    """One hearing in the case history table."""

    judge: str = ""
    business_date: str = ""
    hearing_date: str = ""
    purpose: str = ""


class TransferEntry(ConsumerModel):
    """One transfer of the case between courts."""

    registration_number: str = ""
    transfer_date: str = ""
    from_court: str = ""
    to_court: str = ""


class IAEntry(ConsumerModel):
    """An interlocutory application filed within the case."""

    ia_no: str = ""
    party: str = ""
    filing_date: str = ""
    next_date: str | None = None
    purpose: str | None = None
    ia_status: str = ""
    classification: str = "General"
    registration_date: str = ""
    status: str = "Online"


class CaseRecord(ConsumerModel):
    """A case as extracted from the detail fragment.

    ``acts`` and ``sections`` are row-aligned: ``sections[i]`` is the section
    listed next to ``acts[i]``, or ``None`` when that row had none.
    """

    cnr_number: str | None = None
    exists: bool = True

    case_type: str | None = None
    filing_number: str | None = None
    filing_date: str | None = None
    registration_number: str | None = None
    registration_date: str | None = None

    first_hearing_date: str | None = None
    decision_date: str | None = None
    disposal_date: str | None = None
    case_status: str | None = None
    disposal_nature: str | None = None
    court_number_and_judge: str | None = None

    petitioner_name: str | None = None
    petitioner_advocate: str | None = None
    respondent_name: str | None = None
    respondent_advocate: str | None = None

    acts: list[str] = Field(default_factory=list)
    sections: list[str | None] = Field(default_factory=list)

    history: list[HistoryEntry] = Field(default_factory=list)
    transfers: list[TransferEntry] = Field(default_factory=list)
    ias: list[IAEntry] = Field(default_factory=list)

    html_content: str | None = Field(default=None, repr=False)

    @classmethod
    def not_found(cls, cnr: str) -> "CaseRecord":
        """Marker record for a CNR the portal says does not exist."""
        return cls(cnr_number=cnr, exists=False)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def under_acts(self) -> str | None:
        return ", ".join(self.acts) or None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def under_sections(self) -> str | None:
        return ", ".join(s for s in self.sections if s) or None

    def act_sections(self) -> list[tuple[str, str | None]]:
        """Pair each act with the section on the same row."""
        return [
            (act, self.sections[i] if i < len(self.sections) else None)
            for i, act in enumerate(self.acts)
        ]

    def synthesize_disposal_date(self) -> None:
        """A disposed case without an explicit disposal date was disposed on
        its decision date."""
        if (
            self.case_status == DISPOSED_STATUS
            and not self.disposal_date
            and self.decision_date
        ):
            self.disposal_date = self.decision_date
