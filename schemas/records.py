"""
Pydantic schemas for normalized roster records.

Records are built once from a decoded payload and never mutated: resolving
a foreign key produces a copy (``model_copy(update=...)``). Field names
match the column names of the target table so ``to_row`` can feed the
bulk writer directly.
"""

from datetime import date
from typing import Any, ClassVar, Dict, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.base import PersonRole


class RosterRecord(BaseModel):
    """Base for every record variant: a tenant-scoped natural key plus attributes."""

    model_config = ConfigDict(frozen=True)

    # Fields that shape the record but are not columns of its table
    row_exclude: ClassVar[Set[str]] = set()

    natural_key: str = Field(..., min_length=1, max_length=255)

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    def to_row(self, tenant_id: str) -> Dict[str, Any]:
        row = self.model_dump(exclude=self.row_exclude)
        row["tenant_id"] = tenant_id
        return row


class OrganizationRecord(RosterRecord):
    name: Optional[str] = None
    identifier: Optional[str] = None
    org_type: Optional[str] = None
    status: Optional[str] = None
    parent_key: Optional[str] = None
    date_last_modified: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None


class PersonRecord(RosterRecord):
    row_exclude: ClassVar[Set[str]] = {"role"}

    role: PersonRole
    identifier: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    grade: Optional[str] = None
    org_key: Optional[str] = None
    org_id: Optional[int] = None
    date_last_modified: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None


class ClassRecord(RosterRecord):
    title: Optional[str] = None
    class_code: Optional[str] = None
    class_type: Optional[str] = None
    grade: Optional[str] = None
    subject_name: Optional[str] = None
    status: Optional[str] = None
    org_key: Optional[str] = None
    org_id: Optional[int] = None
    attributes: Optional[Dict[str, Any]] = None


class AllocationRecord(RosterRecord):
    person_role: PersonRole
    person_key: str
    person_id: Optional[int] = None
    kind: str
    target_key: str
    target_name: Optional[str] = None
    class_id: Optional[int] = None
    academic_year: Optional[str] = None
    org_key: Optional[str] = None

    def to_row(self, tenant_id: str) -> Dict[str, Any]:
        row = super().to_row(tenant_id)
        row["person_role"] = self.person_role.value
        return row


class AttendanceRecord(RosterRecord):
    student_key: str
    student_id: Optional[int] = None
    attendance_date: date
    status: Optional[str] = None
    category: Optional[str] = None
    org_key: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None


class AllocationMasterRecord(RosterRecord):
    allocation_type: Optional[str] = None
    entity_type: Optional[str] = None
    entity_key: Optional[str] = None
    entity_name: Optional[str] = None
    status: Optional[str] = None
    date_last_modified: Optional[str] = None
    org_key: Optional[str] = None
    org_id: Optional[int] = None
    attributes: Optional[Dict[str, Any]] = None


class DailyPlanRecord(RosterRecord):
    plan_date: date
    lesson_key: Optional[str] = None
    lesson_name: Optional[str] = None
    subject_key: Optional[str] = None
    subject_name: Optional[str] = None
    class_key: Optional[str] = None
    class_name: Optional[str] = None
    class_id: Optional[int] = None
    cohort_key: Optional[str] = None
    cohort_name: Optional[str] = None
    teacher_key: Optional[str] = None
    teacher_name: Optional[str] = None
    location_key: Optional[str] = None
    location_name: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    period_number: Optional[int] = None
    status: Optional[str] = None
    org_key: Optional[str] = None
    org_id: Optional[int] = None
    attributes: Optional[Dict[str, Any]] = None


class AcademicPeriodRecord(RosterRecord):
    period_type: str
    name: Optional[str] = None
    program_code: Optional[str] = None
    starts_on: Optional[date] = None
    ends_on: Optional[date] = None
    parent_key: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None


class GradeLevelRecord(RosterRecord):
    name: Optional[str] = None
    label: Optional[str] = None
    code: Optional[str] = None
    program_code: Optional[str] = None
    grade_number: Optional[int] = None


class SubjectRecord(RosterRecord):
    name: Optional[str] = None
    program_code: Optional[str] = None
    group_key: Optional[str] = None
    group_name: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None


class AssessmentRecord(RosterRecord):
    """One row of the student assessment export."""

    school_id: Optional[str] = None
    school_name: Optional[str] = None
    region_name: Optional[str] = None
    student_name: Optional[str] = None
    register_number: Optional[str] = None
    student_status: Optional[str] = None
    grade_name: Optional[str] = None
    section_name: Optional[str] = None
    class_name: Optional[str] = None
    academic_year: Optional[str] = None
    subject_id: Optional[str] = None
    subject_name: Optional[str] = None
    term_id: Optional[str] = None
    term_name: Optional[str] = None
    component_name: Optional[str] = None
    component_value: Optional[str] = Field(None, max_length=500)
    max_value: Optional[float] = None
    data_type: Optional[str] = None
    calculation_method: Optional[str] = None
    mark_grade_name: Optional[str] = None
    mark_rubric_name: Optional[str] = None
