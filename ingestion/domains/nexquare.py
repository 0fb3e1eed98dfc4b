"""
Nexquare (OneRoster) domain syncs.

Each function runs fetch -> normalize -> resolve -> persist for one domain
and returns a ``SyncResult``. Schools must be synced before the domains
that reference them, and people before allocations and attendance.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from functools import partial
from typing import Dict, Iterator, List, Optional, Tuple

from core.config import settings
from ingestion.context import SyncContext, SyncScope
from ingestion.endpoints import (
    NEXQUARE_ALLOCATION_MASTER,
    NEXQUARE_CLASSES,
    NEXQUARE_DAILY_ATTENDANCE,
    NEXQUARE_DAILY_PLANS,
    NEXQUARE_SCHOOLS,
    NEXQUARE_STAFF,
    NEXQUARE_STAFF_ALLOCATIONS,
    NEXQUARE_STUDENT_ALLOCATIONS,
    NEXQUARE_STUDENT_ASSESSMENTS,
    NEXQUARE_STUDENTS,
    Endpoint,
)
from ingestion.transformers.normalizer import normalize_all
from models.base import PersonRole
from models.roster import (
    Allocation,
    AllocationMasterEntry,
    AssessmentComponent,
    AttendanceEvent,
    DailyPlan,
    OrgUnit,
    SchoolClass,
    StaffMember,
    Student,
)
from schemas.records import AssessmentRecord
from schemas.results import SyncResult

logger = logging.getLogger(__name__)

ASSESSMENT_FILE_NAME = "assessment-data"

# The timetable endpoint rejects ranges longer than a week
DAILY_PLAN_WINDOW_DAYS = 7


async def _school_org_id(ctx: SyncContext, school: str) -> Optional[int]:
    resolution = await ctx.resolver(OrgUnit).resolve_many([school])
    org_id = resolution.get(school)
    if org_id is None:
        logger.warning(f"School {school} is not stored for tenant {ctx.tenant.id}; org_id will be NULL")
    return org_id


# ============================================================================
# Organizations
# ============================================================================

async def sync_schools(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    items = await ctx.retriever.fetch_all(NEXQUARE_SCHOOLS)
    records, rejected = normalize_all(items, ctx.normalizer.school)
    if scope.school_id:
        records = [r for r in records if scope.school_id in (r.natural_key, r.identifier)]

    persisted = await ctx.writer.write_batch(OrgUnit, records)
    return SyncResult("schools", fetched=len(items), persisted=persisted, rejected=rejected)


# ============================================================================
# Per-school lists
# ============================================================================

async def _sync_per_school(
    ctx: SyncContext,
    scope: SyncScope,
    domain: str,
    endpoint: Endpoint,
    model,
    build,
) -> SyncResult:
    result = SyncResult(domain)

    for school in await ctx.school_scope(scope):
        items = await ctx.retriever.fetch_all(endpoint, path=endpoint.render(school_id=school))
        records, rejected = normalize_all(items, partial(build, school_key=school))

        org_id = await _school_org_id(ctx, school)
        if org_id is not None:
            records = [record.model_copy(update={"org_id": org_id}) for record in records]

        persisted = await ctx.writer.write_batch(model, records)
        result.add(SyncResult(
            domain,
            fetched=len(items),
            persisted=persisted,
            skipped=0 if org_id is not None else persisted,
            rejected=rejected,
        ))
        logger.info(f"{domain} for school {school}: {persisted} persisted")

    return result


async def sync_students(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    build = partial(ctx.normalizer.person, role=PersonRole.STUDENT)
    return await _sync_per_school(ctx, scope, "students", NEXQUARE_STUDENTS, Student, build)


async def sync_staff(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    build = partial(ctx.normalizer.person, role=PersonRole.STAFF)
    return await _sync_per_school(ctx, scope, "staff", NEXQUARE_STAFF, StaffMember, build)


async def sync_classes(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    return await _sync_per_school(ctx, scope, "classes", NEXQUARE_CLASSES, SchoolClass, ctx.normalizer.school_class)


# ============================================================================
# Allocations
# ============================================================================

ALLOCATION_SOURCES = (
    (PersonRole.STUDENT, NEXQUARE_STUDENT_ALLOCATIONS, Student, "identifier"),
    (PersonRole.STAFF, NEXQUARE_STAFF_ALLOCATIONS, StaffMember, None),
)

CLASS_ALLOCATION_KINDS = ("homeroom", "lesson")


async def sync_allocations(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    """
    Student and staff allocations per school.

    Each allocation set replaces the stored set for the same school, role
    and academic year(s), so withdrawn memberships disappear.
    """
    result = SyncResult("allocations")
    academic_year = scope.academic_year or ctx.tenant.academic_year

    for school in await ctx.school_scope(scope):
        for role, endpoint, person_model, alt_key in ALLOCATION_SOURCES:
            items = await ctx.retriever.fetch_all(endpoint, path=endpoint.render(school_id=school))
            records, rejected = normalize_all(
                items,
                partial(ctx.normalizer.allocations, role=role, school_key=school, academic_year=academic_year)
            )

            people = await ctx.resolver(person_model, alt_key_column=alt_key).resolve_many(
                record.person_key for record in records
            )
            classes = await ctx.resolver(SchoolClass).resolve_many(
                record.target_key for record in records if record.kind in CLASS_ALLOCATION_KINDS
            )

            resolved = [
                record.model_copy(update={
                    "person_id": people.get(record.person_key),
                    "class_id": classes.get(record.target_key) if record.kind in CLASS_ALLOCATION_KINDS else None,
                })
                for record in records
            ]
            skipped = sum(1 for record in resolved if record.person_id is None)

            years = sorted({record.academic_year for record in resolved if record.academic_year})
            replace_where = [Allocation.org_key == school, Allocation.person_role == role.value]
            if years:
                replace_where.append(Allocation.academic_year.in_(years))

            persisted = await ctx.writer.write_batch(Allocation, resolved, replace_where=replace_where)
            result.add(SyncResult(
                "allocations",
                fetched=len(items),
                persisted=persisted,
                skipped=skipped,
                rejected=rejected,
            ))
            logger.info(
                f"{role.value} allocations for school {school}: {persisted} persisted, "
                f"{skipped} with unknown {role.value}"
            )

    return result


# ============================================================================
# Attendance
# ============================================================================

def date_windows(start: date, end: date, days: int) -> Iterator[Tuple[date, date]]:
    """Split [start, end] into consecutive inclusive windows of at most ``days`` days."""
    current = start
    while current <= end:
        window_end = min(current + timedelta(days=days - 1), end)
        yield current, window_end
        current = window_end + timedelta(days=1)


async def sync_attendance(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    """Daily attendance, one date window at a time (defaults to the current month)."""
    today = date.today()
    end = scope.end_date or today
    start = scope.start_date or end.replace(day=1)
    result = SyncResult("attendance", details={"start_date": start.isoformat(), "end_date": end.isoformat()})

    for school in await ctx.school_scope(scope):
        for window_start, window_end in date_windows(start, end, settings.ATTENDANCE_WINDOW_DAYS):
            params = {
                "schoolId": school,
                "startDate": window_start.isoformat(),
                "endDate": window_end.isoformat(),
                "categoryRequired": "false",
                "rangeType": 0,
            }
            items = await ctx.retriever.fetch_all(NEXQUARE_DAILY_ATTENDANCE, params=params)
            records, rejected = normalize_all(items, partial(ctx.normalizer.attendance, school_key=school))

            students = await ctx.resolver(Student, alt_key_column="identifier").resolve_many(
                record.student_key for record in records
            )
            resolved = [
                record.model_copy(update={"student_id": students.get(record.student_key)})
                for record in records
            ]
            skipped = sum(1 for record in resolved if record.student_id is None)

            persisted = await ctx.writer.write_batch(AttendanceEvent, resolved)
            result.add(SyncResult(
                "attendance",
                fetched=len(items),
                persisted=persisted,
                skipped=skipped,
                rejected=rejected,
            ))
            logger.info(f"Attendance {window_start}..{window_end} for school {school}: {persisted} persisted")

    return result


# ============================================================================
# Allocation master and timetable
# ============================================================================

async def sync_allocation_master(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    return await _sync_per_school(
        ctx, scope, "allocation_master", NEXQUARE_ALLOCATION_MASTER, AllocationMasterEntry,
        ctx.normalizer.allocation_master_entry,
    )


async def sync_daily_plans(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    """
    Timetabled lessons per school, one week at a time (defaults to the
    week starting today). Each window's plans replace the stored plans for
    the same school and dates.
    """
    start = scope.start_date or date.today()
    end = scope.end_date or start + timedelta(days=DAILY_PLAN_WINDOW_DAYS - 1)
    result = SyncResult("daily_plans", details={"start_date": start.isoformat(), "end_date": end.isoformat()})

    for school in await ctx.school_scope(scope):
        org_id = await _school_org_id(ctx, school)

        for window_start, window_end in date_windows(start, end, DAILY_PLAN_WINDOW_DAYS):
            # "schooolId" is the provider's spelling
            params = {"fromDate": window_start.isoformat(), "toDate": window_end.isoformat(), "schooolId": school}
            items = await ctx.retriever.fetch_once(NEXQUARE_DAILY_PLANS, params=params)
            records, rejected = normalize_all(
                items, partial(ctx.normalizer.daily_plan, school_key=school, default_date=window_start)
            )

            classes = await ctx.resolver(SchoolClass).resolve_many(
                record.class_key for record in records if record.class_key
            )
            resolved = [
                record.model_copy(update={
                    "org_id": org_id,
                    "class_id": classes.get(record.class_key) if record.class_key else None,
                })
                for record in records
            ]
            skipped = sum(
                1 for record in resolved
                if record.org_id is None or (record.class_key and record.class_id is None)
            )

            replace_where = [
                DailyPlan.org_key == school,
                DailyPlan.plan_date >= window_start,
                DailyPlan.plan_date <= window_end,
            ]
            persisted = await ctx.writer.write_batch(DailyPlan, resolved, replace_where=replace_where)
            result.add(SyncResult(
                "daily_plans",
                fetched=len(items),
                persisted=persisted,
                skipped=skipped,
                rejected=rejected,
            ))
            logger.info(f"Daily plans {window_start}..{window_end} for school {school}: {persisted} persisted")

    return result


# ============================================================================
# Assessments
# ============================================================================

def group_by_grade(records: List[AssessmentRecord]) -> Dict[str, List[AssessmentRecord]]:
    groups: Dict[str, List[AssessmentRecord]] = defaultdict(list)
    for record in records:
        groups[record.grade_name or "Unknown"].append(record)
    return dict(groups)


async def sync_assessments(ctx: SyncContext, scope: SyncScope) -> SyncResult:
    """
    Student assessment export, fetched in windows and written one grade at
    a time; the reporting copy is refreshed once the school is complete.

    Windows already written stay committed if a later window fails.
    """
    result = SyncResult("assessments")
    academic_year = scope.academic_year or ctx.tenant.academic_year or str(date.today().year)

    for school in await ctx.school_scope(scope):
        params = {"schoolIds": school, "academicYear": academic_year, "fileName": ASSESSMENT_FILE_NAME}
        chunks = 0

        async for chunk in ctx.spreadsheets.iter_chunks(NEXQUARE_STUDENT_ASSESSMENTS, params=params):
            chunks += 1
            records, rejected = normalize_all(chunk.records, partial(ctx.normalizer.assessment, school_key=school))

            persisted = 0
            for grade, group in group_by_grade(records).items():
                persisted += await ctx.writer.write_batch(AssessmentComponent, group)
                logger.debug(f"Assessments grade {grade}: {len(group)} rows")

            result.add(SyncResult(
                "assessments",
                fetched=len(chunk.records),
                persisted=persisted,
                rejected=rejected,
            ))
            logger.info(
                f"Assessment window {chunks} (offset {chunk.offset}, decoded with {chunk.strategy}): "
                f"{persisted} persisted"
            )

        propagation = await ctx.reporting().propagate(school)
        result.propagated += propagation.affected

    result.details["academic_year"] = academic_year
    return result
