"""Relational schema for scraped cases.

Reference tables (states through sections) are shared between cases and
only ever grow. Everything hanging off ``cases`` belongs to its case and is
removed with it.
"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship

# SQLite only autoincrements INTEGER PRIMARY KEY columns
Id = BigInteger().with_variant(Integer(), "sqlite")

CATEGORIES = {
    1: "Supreme Court",
    2: "High Courts",
    3: "Districts Courts",
    4: "Consumer Forums",
    5: "Tribunals",
    6: "Tax Forums",
    7: "Custom Courts",
}

PETITIONER = "Petitioner"
RESPONDENT = "Respondent"


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Jurisdiction
# ---------------------------------------------------------------------------


class State(TimestampMixin, Base):
    __tablename__ = "states"

    id = Column(Id, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)


class District(TimestampMixin, Base):
    __tablename__ = "districts"

    id = Column(Id, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    state_id = Column(Id, ForeignKey("states.id"), nullable=False)


class Category(TimestampMixin, Base):
    __tablename__ = "categories"

    id = Column(Id, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)


class Court(TimestampMixin, Base):
    __tablename__ = "courts"

    id = Column(Id, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    state_id = Column(Id, ForeignKey("states.id"), nullable=False)
    district_id = Column(Id, ForeignKey("districts.id"), nullable=False)
    category_id = Column(Id, ForeignKey("categories.id"), nullable=False)


class CourtHall(TimestampMixin, Base):
    __tablename__ = "court_halls"

    id = Column(Id, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    court_id = Column(Id, ForeignKey("courts.id"))
    is_display = Column(Boolean, nullable=False, default=False)


# ---------------------------------------------------------------------------
# Shared reference entities
# ---------------------------------------------------------------------------


class CaseType(Base):
    __tablename__ = "case_types"

    id = Column(Id, primary_key=True, autoincrement=True)
    short_form = Column(String(10))
    expanded_form = Column(String(100))


class Litigant(Base):
    __tablename__ = "litigants"

    id = Column(Id, primary_key=True, autoincrement=True)
    litigant_name = Column(String(255))


class Advocate(Base):
    __tablename__ = "advocates"

    id = Column(Id, primary_key=True, autoincrement=True)
    advocate_name = Column(String(255))


class Act(TimestampMixin, Base):
    __tablename__ = "acts"

    id = Column(Id, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)


class Section(Base):
    __tablename__ = "sections"

    id = Column(Id, primary_key=True, autoincrement=True)
    section_number = Column(String(50))


class ActSection(TimestampMixin, Base):
    __tablename__ = "act_sections"
    __table_args__ = (
        UniqueConstraint("act_id", "section_id", name="unique_act_section"),
    )

    id = Column(Id, primary_key=True, autoincrement=True)
    act_id = Column(Id, ForeignKey("acts.id"), nullable=False)
    section_id = Column(Id, ForeignKey("sections.id"), nullable=False)


# ---------------------------------------------------------------------------
# Cases and their children
# ---------------------------------------------------------------------------


def _owned(target: str):
    return relationship(
        target,
        back_populates="case",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Case(TimestampMixin, Base):
    __tablename__ = "cases"

    id = Column(Id, primary_key=True, autoincrement=True)
    cnr_number = Column(String(50), index=True)
    case_type_id = Column(Id, ForeignKey("case_types.id"))
    filing_number = Column(String(20))
    filing_date = Column(Date)
    registration_number = Column(String(20))
    registration_date = Column(Date)
    case_status = Column(String(100))
    first_hearing_date = Column(Date)
    decision_date = Column(Date)
    disposal_date = Column(Date)
    disposal_nature = Column(String(255))
    court_hall_id = Column(Id, ForeignKey("court_halls.id"))

    litigants = _owned("CaseLitigant")
    acts = _owned("CaseAct")
    history = _owned("CaseHistory")
    transfers = _owned("CaseTransfer")
    ias = _owned("CaseIA")


def _case_fk(nullable: bool = True) -> Column:
    return Column(
        Id, ForeignKey("cases.id", ondelete="CASCADE"), nullable=nullable
    )


class CaseLitigant(TimestampMixin, Base):
    __tablename__ = "case_litigants"

    id = Column(Id, primary_key=True, autoincrement=True)
    case_id = _case_fk()
    litigant_id = Column(Id, ForeignKey("litigants.id"))
    advocate_id = Column(Id, ForeignKey("advocates.id"))
    party_type = Column(String(50))

    case = relationship("Case", back_populates="litigants")


class CaseAct(TimestampMixin, Base):
    __tablename__ = "case_acts"

    id = Column(Id, primary_key=True, autoincrement=True)
    case_id = _case_fk(nullable=False)
    act_id = Column(Id, ForeignKey("acts.id"), nullable=False)

    case = relationship("Case", back_populates="acts")


class CaseHistory(TimestampMixin, Base):
    __tablename__ = "case_history"

    id = Column(Id, primary_key=True, autoincrement=True)
    case_id = _case_fk()
    judge = Column(String(255))
    business_date = Column(Date)
    hearing_date = Column(Date)
    purpose = Column(Text)

    case = relationship("Case", back_populates="history")


class CaseTransfer(TimestampMixin, Base):
    __tablename__ = "case_transfers"

    id = Column(Id, primary_key=True, autoincrement=True)
    case_id = _case_fk()
    registration_number = Column(String(20))
    transfer_date = Column(Date)
    from_court = Column(String(255))
    to_court = Column(String(255))

    case = relationship("Case", back_populates="transfers")


class CaseIA(TimestampMixin, Base):
    __tablename__ = "case_ias"

    id = Column(Id, primary_key=True, autoincrement=True)
    case_id = _case_fk(nullable=False)
    ia_no = Column(String(50), nullable=False)
    classification = Column(String(255))
    ia_status = Column(String(50))
    dt_filing = Column(Date)
    dt_reg = Column(Date)
    ia_party_id = Column(Id, ForeignKey("litigants.id"))
    status = Column(String(50))
    party = Column(String(255))

    case = relationship("Case", back_populates="ias")


# ---------------------------------------------------------------------------
# Failure ledger
# ---------------------------------------------------------------------------


class FailedCase(Base):
    __tablename__ = "failed_cases"

    id = Column(Id, primary_key=True, autoincrement=True)
    cnr_number = Column(String(20), unique=True)
    failure_reason = Column(String(255))
    attempt_count = Column(Integer, nullable=False, default=1)
    last_attempt_date = Column(DateTime, server_default=func.now())
    created_at = Column(DateTime, server_default=func.now())
