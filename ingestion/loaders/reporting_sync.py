"""
Propagation of assessment components into the reporting table.
"""

import asyncio
import logging
from typing import List, Optional

from sqlalchemy import and_, func, insert, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import PersistenceError
from models.reporting import AssessmentComponentConfig, ReportingAssessment, SubjectMapping
from models.roster import AssessmentComponent
from schemas.results import PropagationResult

logger = logging.getLogger(__name__)

components = AssessmentComponent.__table__
reporting = ReportingAssessment.__table__
configs = AssessmentComponentConfig.__table__
mappings = SubjectMapping.__table__

# reporting column <- assessment_components column (reported_subject comes from the mapping)
COPIED_COLUMNS = [
    "tenant_id",
    "school_id",
    "school_name",
    "region_name",
    "academic_year",
    "grade_name",
    "section_name",
    "class_name",
    "student_name",
    "register_number",
    "student_status",
    "subject_id",
    "subject_name",
    "term_id",
    "term_name",
    "component_name",
    "component_value",
    "max_value",
    "data_type",
    "calculation_method",
    "mark_grade_name",
    "mark_rubric_name",
]


class ReportingSync:
    """
    Copies qualifying assessment components into ``reporting_assessments``.

    Step 1 inserts components in the reporting grades whose component is
    active for the school, with ``reported_subject`` taken from the subject
    mapping, skipping any component already present (``source_id``). The
    presence check is part of the insert statement, so re-running against
    unchanged data inserts nothing.

    Step 2 rewrites ``reported_subject`` on existing rows whose mapping now
    yields a different value, including rows where it was NULL.
    """

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: str,
        grade_levels: Optional[List[str]] = None,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.grade_levels = list(grade_levels or settings.REPORTING_GRADE_LEVELS)
        self.timeout = timeout or settings.REPORTING_SYNC_TIMEOUT

    def _mapping_matches(self, source):
        return and_(
            mappings.c.tenant_id == source.c.tenant_id,
            mappings.c.school_id == source.c.school_id,
            mappings.c.academic_year == source.c.academic_year,
            mappings.c.grade == source.c.grade_name,
            mappings.c.subject == source.c.subject_name,
        )

    def insert_statement(self, school_id: Optional[str] = None):
        already_copied = (
            select(reporting.c.id)
            .where(reporting.c.source_id == components.c.id)
            .correlate(components)
            .exists()
        )

        joined = components.join(
            configs,
            and_(
                configs.c.tenant_id == components.c.tenant_id,
                configs.c.school_id == components.c.school_id,
                configs.c.component_name == components.c.component_name,
                configs.c.is_active.is_(True),
            )
        ).outerjoin(mappings, self._mapping_matches(components))

        conditions = [
            components.c.tenant_id == self.tenant_id,
            components.c.grade_name.in_(self.grade_levels),
            ~already_copied,
        ]
        if school_id:
            conditions.append(components.c.school_id == school_id)

        source = (
            select(
                components.c.id,
                *(components.c[name] for name in COPIED_COLUMNS),
                mappings.c.reported_subject,
            )
            .select_from(joined)
            .where(*conditions)
        )

        return insert(reporting).from_select(
            ["source_id", *COPIED_COLUMNS, "reported_subject"],
            source
        )

    def refresh_statement(self, school_id: Optional[str] = None):
        mapped_subject = (
            select(mappings.c.reported_subject)
            .where(self._mapping_matches(reporting))
            .scalar_subquery()
        )

        differs = (
            select(mappings.c.id)
            .where(
                self._mapping_matches(reporting),
                mappings.c.reported_subject.is_not(None),
                or_(
                    reporting.c.reported_subject.is_(None),
                    reporting.c.reported_subject != mappings.c.reported_subject,
                )
            )
            .exists()
        )

        conditions = [reporting.c.tenant_id == self.tenant_id, differs]
        if school_id:
            conditions.append(reporting.c.school_id == school_id)

        return (
            update(reporting)
            .where(*conditions)
            .values(reported_subject=mapped_subject, updated_at=func.now())
        )

    async def _extend_statement_timeout(self) -> None:
        dialect = getattr(getattr(self.db.bind, "dialect", None), "name", None)
        if dialect == "postgresql":
            await self.db.execute(text(f"SET LOCAL statement_timeout = {int(self.timeout * 1000)}"))

    async def _run(self, school_id: Optional[str]) -> PropagationResult:
        await self._extend_statement_timeout()
        inserted = await self.db.execute(self.insert_statement(school_id))
        refreshed = await self.db.execute(self.refresh_statement(school_id))
        return PropagationResult(
            inserted=max(inserted.rowcount or 0, 0),
            refreshed=max(refreshed.rowcount or 0, 0),
        )

    async def propagate(self, school_id: Optional[str] = None) -> PropagationResult:
        """
        Run both steps in one transaction under the extended timeout.

        Raises:
            PersistenceError: Either step failed or timed out; nothing was applied
        """
        scope = school_id or "all schools"
        try:
            result = await asyncio.wait_for(self._run(school_id), timeout=self.timeout)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            raise PersistenceError(
                "Reporting propagation failed",
                context={"tenant_id": self.tenant_id, "school_id": scope, "timeout": self.timeout},
                original_exception=e
            )

        logger.info(
            f"Reporting sync for {self.tenant_id} ({scope}): "
            f"{result.inserted} inserted, {result.refreshed} refreshed"
        )
        return result
