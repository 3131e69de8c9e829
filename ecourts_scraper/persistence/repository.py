"""Writing extracted cases into the relational schema.

Shared reference rows (jurisdiction, case types, litigants, advocates, acts,
sections) are resolved by natural key with get-or-create, so the same name
always maps to the same id no matter how many cases mention it. Each case
is written in one transaction: either every row lands or none does.
"""

import logging
from datetime import datetime

from sqlalchemy import Engine, create_engine, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ecourts_scraper.common.exceptions import PersistenceFailed
from ecourts_scraper.common.models.case import CaseRecord
from ecourts_scraper.config import ScraperSettings
from ecourts_scraper.persistence.normalize import (
    clean_litigant_name,
    normalize_act_name,
    normalize_section,
    parse_court_hall,
    split_case_type,
    to_date,
)
from ecourts_scraper.persistence.schema import (
    CATEGORIES,
    PETITIONER,
    RESPONDENT,
    Act,
    ActSection,
    Advocate,
    Base,
    Case,
    CaseAct,
    CaseHistory,
    CaseIA,
    CaseLitigant,
    CaseTransfer,
    CaseType,
    Category,
    Court,
    CourtHall,
    District,
    Litigant,
    Section,
    State,
)

logger = logging.getLogger(__name__)


class CaseRepository:
    """Persists ``CaseRecord`` objects through one long-lived session.

    Args:
        engine: Database to write to.
        settings: Supplies the state, district and court every case is
            filed under.
    """

    def __init__(
        self, engine: Engine, settings: ScraperSettings | None = None
    ) -> None:
        self.engine = engine
        self.settings = settings or ScraperSettings()
        self.session = Session(engine)

    @classmethod
    def from_settings(cls, settings: ScraperSettings) -> "CaseRepository":
        return cls(create_engine(settings.database_url), settings)

    def initialize(self) -> None:
        """Create missing tables and seed the court categories.

        Raises:
            PersistenceFailed: The database is unreachable or rejected the
                schema.
        """
        try:
            Base.metadata.create_all(self.engine)
            for category_id, name in CATEGORIES.items():
                if self.session.get(Category, category_id) is None:
                    self.session.add(Category(id=category_id, name=name))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFailed(
                f"Could not initialize database: {e}",
                context={"url": self.engine.url.render_as_string()},
            ) from e
        logger.info("Database initialized")

    def close(self) -> None:
        self.session.close()
        self.engine.dispose()

    # -------------------------------------------------------------------
    # Case writes
    # -------------------------------------------------------------------

    def save_case(self, record: CaseRecord) -> int:
        """Write the case and all of its rows; return the new case id.

        Raises:
            ValueError: ``record`` is a not-found marker.
            PersistenceFailed: Any error during the write sequence. Nothing
                written for this case survives.
        """
        if not record.exists:
            raise ValueError(
                f"Refusing to persist not-found marker for {record.cnr_number}"
            )
        try:
            case_id = self._write_case(record)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(
                f"Failed to save case {record.cnr_number}: {e}",
                extra={"cnr": record.cnr_number},
            )
            raise PersistenceFailed(
                f"Could not save case: {e}",
                cnr=record.cnr_number,
                context={"error_type": type(e).__name__},
            ) from e
        logger.info(f"Saved case {record.cnr_number} as id {case_id}")
        return case_id

    def _write_case(self, record: CaseRecord) -> int:
        settings = self.settings
        state = self._get_or_create(State, name=settings.state_name)
        district = self._get_or_create(
            District, name=settings.district_name, state_id=state.id
        )
        court = self._get_or_create(
            Court,
            name=settings.court_name,
            state_id=state.id,
            district_id=district.id,
            defaults={"category_id": settings.court_category_id},
        )

        court_hall_id = None
        hall = parse_court_hall(record.court_number_and_judge)
        if hall is not None:
            number, judge = hall
            court_hall_id = self._get_or_create(
                CourtHall, name=number, court_id=court.id
            ).id
            # No column holds the judge yet
            logger.debug(f"Court hall {number} presided by {judge}")

        case_type_id = None
        case_type = split_case_type(record.case_type)
        if case_type is not None:
            short, expanded = case_type
            case_type_id = self._get_or_create(
                CaseType, short_form=short, defaults={"expanded_form": expanded}
            ).id

        case = Case(
            cnr_number=record.cnr_number,
            case_type_id=case_type_id,
            filing_number=record.filing_number,
            filing_date=to_date(record.filing_date),
            registration_number=record.registration_number,
            registration_date=to_date(record.registration_date),
            case_status=record.case_status,
            first_hearing_date=to_date(record.first_hearing_date),
            decision_date=to_date(record.decision_date),
            disposal_date=to_date(record.disposal_date),
            disposal_nature=record.disposal_nature,
            court_hall_id=court_hall_id,
        )
        self.session.add(case)
        self.session.flush()

        for party_type, name, advocate in (
            (PETITIONER, record.petitioner_name, record.petitioner_advocate),
            (RESPONDENT, record.respondent_name, record.respondent_advocate),
        ):
            if not name:
                continue
            case.litigants.append(
                CaseLitigant(
                    litigant_id=self._litigant_id(name),
                    advocate_id=self._advocate_id(advocate),
                    party_type=party_type,
                )
            )

        linked_acts: set[int] = set()
        for act_text, section_text in record.act_sections():
            act_name = normalize_act_name(act_text)
            if act_name is None:
                continue
            act_id = self._upsert_act(act_name)
            section_number = normalize_section(section_text)
            if section_number is not None:
                section_id = self._get_or_create(
                    Section, section_number=section_number
                ).id
                self._get_or_create(
                    ActSection, act_id=act_id, section_id=section_id
                )
            if act_id not in linked_acts:
                linked_acts.add(act_id)
                case.acts.append(CaseAct(act_id=act_id))

        for entry in record.history:
            case.history.append(
                CaseHistory(
                    judge=entry.judge or None,
                    business_date=to_date(entry.business_date),
                    hearing_date=to_date(entry.hearing_date),
                    purpose=entry.purpose or None,
                )
            )

        for transfer in record.transfers:
            case.transfers.append(
                CaseTransfer(
                    registration_number=transfer.registration_number or None,
                    transfer_date=to_date(transfer.transfer_date),
                    from_court=transfer.from_court or None,
                    to_court=transfer.to_court or None,
                )
            )

        for ia in record.ias:
            case.ias.append(
                CaseIA(
                    ia_no=ia.ia_no,
                    classification=ia.classification or "General",
                    ia_status=ia.ia_status or None,
                    dt_filing=to_date(ia.filing_date),
                    dt_reg=to_date(ia.registration_date),
                    ia_party_id=self._litigant_id(ia.party),
                    party=ia.party or None,
                    status=ia.status or "Online",
                )
            )

        self.session.flush()
        return case.id

    # -------------------------------------------------------------------
    # Reference resolution
    # -------------------------------------------------------------------

    def _get_or_create(self, model, defaults: dict | None = None, **keys):
        """Look up ``model`` by ``keys``, inserting it first if absent."""
        statement = select(model).filter_by(**keys)
        instance = self.session.scalars(statement).first()
        if instance is not None:
            return instance
        self.session.add(model(**keys, **(defaults or {})))
        self.session.flush()
        return self.session.scalars(statement).one()

    def _litigant_id(self, name: str | None) -> int | None:
        cleaned = clean_litigant_name(name)
        if cleaned is None:
            return None
        return self._get_or_create(Litigant, litigant_name=cleaned).id

    def _advocate_id(self, name: str | None) -> int | None:
        if not name:
            return None
        return self._get_or_create(Advocate, advocate_name=name).id

    def _upsert_act(self, name: str) -> int:
        """Insert the act or touch its ``updated_at``; return its id."""
        now = datetime.now()
        values = {"name": name, "created_at": now, "updated_at": now}
        table = Act.__table__
        match self.engine.dialect.name:
            case "sqlite":
                statement = (
                    sqlite_insert(table)
                    .values(**values)
                    .on_conflict_do_update(
                        index_elements=["name"], set_={"updated_at": now}
                    )
                )
            case "postgresql":
                statement = (
                    postgresql_insert(table)
                    .values(**values)
                    .on_conflict_do_update(
                        index_elements=["name"], set_={"updated_at": now}
                    )
                )
            case "mysql" | "mariadb":
                statement = (
                    mysql_insert(table)
                    .values(**values)
                    .on_duplicate_key_update(updated_at=now)
                )
            case _:
                return self._get_or_create(Act, name=name).id
        self.session.execute(statement)
        return self.session.scalars(select(Act.id).where(Act.name == name)).one()
