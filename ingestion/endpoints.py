"""
Provider endpoint catalogue.

Each endpoint carries its path template, pagination style, page size and
envelope extractor, so retrieval code never guesses at a response shape.
"""

import enum
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ingestion.envelopes import (
    Page,
    extract_academic_years,
    extract_attendance,
    extract_daily_plans,
    extract_grades,
    extract_items,
    extract_subjects,
)


class PaginationStyle(str, enum.Enum):
    OFFSET = "offset"   # offset / limit
    PAGE = "page"       # page / per_page, 1-based, may report total_pages


@dataclass(frozen=True)
class Endpoint:
    name: str
    path: str
    resource_key: Optional[str] = None
    style: PaginationStyle = PaginationStyle.OFFSET
    page_size: int = 100
    extractor: Optional[Callable[[Any, "Endpoint"], Page]] = None

    def render(self, **kwargs: Any) -> str:
        return self.path.format(**kwargs)

    def extract(self, payload: Any) -> Page:
        return (self.extractor or extract_items)(payload, self)


# ============================================================================
# Nexquare (OneRoster)
# ============================================================================

NEXQUARE_SCHOOLS = Endpoint(
    name="nexquare.schools",
    path="/nexquare/ims/oneroster/v1p1/schools",
    resource_key="orgs",
)

NEXQUARE_STUDENTS = Endpoint(
    name="nexquare.students",
    path="/ims/oneroster/v1p1/schools/{school_id}/students/",
    resource_key="users",
)

NEXQUARE_STAFF = Endpoint(
    name="nexquare.staff",
    path="/ims/oneroster/v1p1/schools/{school_id}/staff/",
    resource_key="users",
)

NEXQUARE_CLASSES = Endpoint(
    name="nexquare.classes",
    path="/ims/oneroster/v1p1/schools/{school_id}/classes/",
    resource_key="classes",
)

NEXQUARE_STUDENT_ALLOCATIONS = Endpoint(
    name="nexquare.student_allocations",
    path="/ims/oneroster/v1p1/schools/{school_id}/studentsAllocation",
    resource_key="users",
)

NEXQUARE_STAFF_ALLOCATIONS = Endpoint(
    name="nexquare.staff_allocations",
    path="/ims/oneroster/v1p1/schools/{school_id}/staffAllocation",
    resource_key="users",
)

NEXQUARE_DAILY_ATTENDANCE = Endpoint(
    name="nexquare.daily_attendance",
    path="/ims/oneroster/v1p1/getDailyAttendance",
    resource_key="attendance",
    page_size=1000,
    extractor=extract_attendance,
)

NEXQUARE_ALLOCATION_MASTER = Endpoint(
    name="nexquare.allocation_master",
    path="/ims/oneroster/v1p1/allocationMaster/{school_id}",
    resource_key="allocations",
)

NEXQUARE_DAILY_PLANS = Endpoint(
    name="nexquare.daily_plans",
    path="/ims/oneroster/v1p1/dailyPlan",
    resource_key="plans",
    extractor=extract_daily_plans,
)

NEXQUARE_STUDENT_ASSESSMENTS = Endpoint(
    name="nexquare.student_assessments",
    path="/ims/oneroster/v1p1/assessment/students",
)


# ============================================================================
# ManageBac (v2)
# ============================================================================

MANAGEBAC_YEAR_GROUPS = Endpoint(
    name="managebac.year_groups",
    path="/year-groups",
    resource_key="year_groups",
    style=PaginationStyle.PAGE,
    page_size=250,
)

MANAGEBAC_STUDENTS = Endpoint(
    name="managebac.students",
    path="/students",
    resource_key="students",
    style=PaginationStyle.PAGE,
    page_size=250,
)

MANAGEBAC_STUDENT_DETAIL = Endpoint(
    name="managebac.student_detail",
    path="/students/{student_id}",
    resource_key="student",
)

MANAGEBAC_TEACHERS = Endpoint(
    name="managebac.teachers",
    path="/teachers",
    resource_key="teachers",
    style=PaginationStyle.PAGE,
    page_size=250,
)

MANAGEBAC_CLASSES = Endpoint(
    name="managebac.classes",
    path="/classes",
    resource_key="classes",
    style=PaginationStyle.PAGE,
    page_size=250,
)

MANAGEBAC_MEMBERSHIPS = Endpoint(
    name="managebac.memberships",
    path="/memberships",
    resource_key="memberships",
    style=PaginationStyle.PAGE,
    page_size=250,
)

# Single-document catalogue endpoints (not paginated)

MANAGEBAC_SCHOOL = Endpoint(
    name="managebac.school",
    path="/school",
    resource_key="school",
)

MANAGEBAC_ACADEMIC_YEARS = Endpoint(
    name="managebac.academic_years",
    path="/school/academic-years",
    resource_key="academic_years",
    extractor=extract_academic_years,
)

MANAGEBAC_GRADES = Endpoint(
    name="managebac.grades",
    path="/school/grades",
    resource_key="grades",
    extractor=extract_grades,
)

MANAGEBAC_SUBJECTS = Endpoint(
    name="managebac.subjects",
    path="/school/subjects",
    resource_key="subjects",
    extractor=extract_subjects,
)
