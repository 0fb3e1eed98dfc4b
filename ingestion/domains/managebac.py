"""
ManageBac domain syncs.

ManageBac has no school hierarchy in its API: year groups stand in for
organizations, and students, teachers and classes hang off them. The
school profile, academic years, grades and subjects are single-document
catalogue endpoints. Class memberships become ``class`` allocations.
"""

import logging
from functools import partial
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from ingestion.context import SyncContext, SyncScope
from ingestion.endpoints import (
    MANAGEBAC_ACADEMIC_YEARS,
    MANAGEBAC_CLASSES,
    MANAGEBAC_GRADES,
    MANAGEBAC_MEMBERSHIPS,
    MANAGEBAC_SCHOOL,
    MANAGEBAC_STUDENT_DETAIL,
    MANAGEBAC_STUDENTS,
    MANAGEBAC_SUBJECTS,
    MANAGEBAC_TEACHERS,
    MANAGEBAC_YEAR_GROUPS,
)
from ingestion.transformers.normalizer import normalize_all
from models.base import PersonRole
from models.catalogue import AcademicPeriod, GradeLevel, Subject
from models.roster import Allocation, OrgUnit, SchoolClass, StaffMember, Student
from schemas.results import SyncResult

logger = logging.getLogger(__name__)

ENRICHMENT_SAMPLE_SIZE = 5

# Student ids per memberships request
MEMBERSHIP_USER_BATCH = 100


# ============================================================================
# School catalogue
# ============================================================================

async def resolve_academic_year_id(ctx: SyncContext, academic_year: Optional[str]) -> Optional[str]:
    """
    ManageBac id of the first academic year whose name contains
    ``academic_year`` (e.g. "2024" matches "2024 - 2025").

    Returns None when no year is given or none matches; callers then
    sync without a year filter.
    """
    if not academic_year:
        return None

    for year in await ctx.retriever.fetch_once(MANAGEBAC_ACADEMIC_YEARS):
        if academic_year in str(year.get("name") or ""):
            year_id = year.get("id") if year.get("id") is not None else year.get("uid")
            if year_id is not None:
                return str(year_id)

    logger.warning(f"No ManageBac academic year matches '{academic_year}'; no year filter applied")
    return None


async def sync_school_details(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    school = await ctx.retriever.fetch_object(MANAGEBAC_SCHOOL)
    records, rejected = normalize_all([school], ctx.normalizer.school_details)
    persisted = await ctx.writer.write_batch(OrgUnit, records)
    return SyncResult("school_details", fetched=1, persisted=persisted, rejected=rejected)


async def sync_academic_years(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    items = await ctx.retriever.fetch_once(MANAGEBAC_ACADEMIC_YEARS)
    records, rejected = normalize_all(items, ctx.normalizer.academic_year)
    persisted = await ctx.writer.write_batch(AcademicPeriod, records)
    terms = sum(1 for record in records if record.period_type == "term")
    return SyncResult(
        "academic_years",
        fetched=len(items),
        persisted=persisted,
        rejected=rejected,
        details={"terms": terms},
    )


async def sync_grades(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    year_id = await resolve_academic_year_id(ctx, scope.academic_year)
    params = {"academic_year_id": year_id} if year_id else None

    items = await ctx.retriever.fetch_once(MANAGEBAC_GRADES, params=params)
    records, rejected = normalize_all(items, ctx.normalizer.grade_level)
    persisted = await ctx.writer.write_batch(GradeLevel, records)
    return SyncResult("grades", fetched=len(items), persisted=persisted, rejected=rejected)


async def sync_subjects(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    items = await ctx.retriever.fetch_once(MANAGEBAC_SUBJECTS)
    records, rejected = normalize_all(items, ctx.normalizer.subject)
    persisted = await ctx.writer.write_batch(Subject, records)
    return SyncResult("subjects", fetched=len(items), persisted=persisted, rejected=rejected)


# ============================================================================
# Year groups, people and classes
# ============================================================================

async def sync_year_groups(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    items = await ctx.retriever.fetch_all(MANAGEBAC_YEAR_GROUPS)
    records, rejected = normalize_all(items, ctx.normalizer.year_group)
    persisted = await ctx.writer.write_batch(OrgUnit, records)
    return SyncResult("schools", fetched=len(items), persisted=persisted, rejected=rejected)


def needs_enrichment(students: List[Dict[str, Any]]) -> bool:
    """The list endpoint sometimes returns bare summaries without year group or grade."""
    sample = students[:ENRICHMENT_SAMPLE_SIZE]
    return any(
        not (s.get("year_group_id") or s.get("yearGroupId"))
        and not (s.get("class_grade") or s.get("classGrade"))
        for s in sample
    )


async def _with_org_ids(ctx: SyncContext, records: list):
    """Attach year-group surrogate ids; returns the records and how many stayed unresolved."""
    org_ids = await ctx.resolver(OrgUnit).resolve_many(record.org_key for record in records)
    resolved = [record.model_copy(update={"org_id": org_ids.get(record.org_key)}) for record in records]
    skipped = sum(1 for record in resolved if record.org_key and record.org_id is None)
    return resolved, skipped


async def sync_students(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    params = {"active_only": "true"}
    year_id = await resolve_academic_year_id(ctx, scope.academic_year)
    if year_id:
        params["academic_year_id"] = year_id

    items = await ctx.retriever.fetch_all(MANAGEBAC_STUDENTS, params=params)

    enriched = 0
    if items and needs_enrichment(items):
        logger.info(f"Student list returned summaries only; fetching details for {len(items)} students")
        keys = [str(item["id"]) for item in items if item.get("id") is not None]
        details = await ctx.retriever.fetch_details(MANAGEBAC_STUDENT_DETAIL, keys, path_param="student_id")
        items = [{**item, **details.get(str(item.get("id")), {})} for item in items]
        enriched = len(details)

    records, rejected = normalize_all(
        items, lambda raw: ctx.normalizer.managebac_person(raw, PersonRole.STUDENT)
    )
    records, skipped = await _with_org_ids(ctx, records)
    persisted = await ctx.writer.write_batch(Student, records)

    return SyncResult(
        "students",
        fetched=len(items),
        persisted=persisted,
        skipped=skipped,
        rejected=rejected,
        details={"enriched": enriched},
    )


async def sync_teachers(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    items = await ctx.retriever.fetch_all(MANAGEBAC_TEACHERS)
    records, rejected = normalize_all(
        items, lambda raw: ctx.normalizer.managebac_person(raw, PersonRole.STAFF)
    )
    persisted = await ctx.writer.write_batch(StaffMember, records)
    return SyncResult("staff", fetched=len(items), persisted=persisted, rejected=rejected)


async def sync_classes(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    items = await ctx.retriever.fetch_all(MANAGEBAC_CLASSES)
    records, rejected = normalize_all(items, ctx.normalizer.managebac_class)
    records, skipped = await _with_org_ids(ctx, records)
    persisted = await ctx.writer.write_batch(SchoolClass, records)
    return SyncResult("classes", fetched=len(items), persisted=persisted, skipped=skipped, rejected=rejected)


# ============================================================================
# Memberships
# ============================================================================

async def _stored_keys(ctx: SyncContext, model) -> List[str]:
    result = await ctx.db.execute(
        select(model.natural_key).where(model.tenant_id == ctx.tenant.id).order_by(model.natural_key)
    )
    return list(result.scalars().all())


async def sync_memberships(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    """
    Active class memberships of the stored students, requested in batches
    of user ids. The fetched set replaces the stored class allocations of
    the same academic year; an empty fetch leaves them alone.
    """
    academic_year = scope.academic_year or ctx.tenant.academic_year
    student_keys = await _stored_keys(ctx, Student)
    if not student_keys:
        logger.warning(f"No students stored for tenant {ctx.tenant.id}; sync students first")
        return SyncResult("allocations")

    params = {"classes": "active"}
    year_id = await resolve_academic_year_id(ctx, academic_year)
    if year_id:
        params["academic_year_id"] = year_id

    items = []
    for start in range(0, len(student_keys), MEMBERSHIP_USER_BATCH):
        batch = student_keys[start:start + MEMBERSHIP_USER_BATCH]
        items.extend(await ctx.retriever.fetch_all(
            MANAGEBAC_MEMBERSHIPS, params={**params, "user_ids": ",".join(batch)}
        ))

    records, rejected = normalize_all(items, partial(ctx.normalizer.membership, academic_year=academic_year))

    people = {}
    for role, model in ((PersonRole.STUDENT, Student), (PersonRole.STAFF, StaffMember)):
        people[role] = await ctx.resolver(model).resolve_many(
            record.person_key for record in records if record.person_role == role
        )
    classes = await ctx.resolver(SchoolClass).resolve_many(record.target_key for record in records)

    resolved = [
        record.model_copy(update={
            "person_id": people[record.person_role].get(record.person_key),
            "class_id": classes.get(record.target_key),
        })
        for record in records
    ]
    skipped = sum(1 for record in resolved if record.person_id is None or record.class_id is None)

    replace_where = [
        Allocation.kind == "class",
        Allocation.academic_year == academic_year if academic_year else Allocation.academic_year.is_(None),
    ]
    persisted = await ctx.writer.write_batch(Allocation, resolved, replace_where=replace_where)
    logger.info(f"Class memberships: {persisted} persisted, {skipped} with unknown person or class")

    return SyncResult(
        "allocations",
        fetched=len(items),
        persisted=persisted,
        skipped=skipped,
        rejected=rejected,
        details={"students": len(student_keys)},
    )
