"""
Transform provider payloads into normalized roster records with Pydantic validation
"""

import hashlib
import json
import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from pydantic import ValidationError

from models.base import PersonRole
from schemas.records import (
    AcademicPeriodRecord,
    AllocationMasterRecord,
    AllocationRecord,
    AssessmentRecord,
    AttendanceRecord,
    ClassRecord,
    DailyPlanRecord,
    GradeLevelRecord,
    OrganizationRecord,
    PersonRecord,
    RosterRecord,
    SubjectRecord,
)

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=RosterRecord)

# Assessment export column -> record field
ASSESSMENT_COLUMNS = {
    "School Name": "school_name",
    "Region Name": "region_name",
    "Student Name": "student_name",
    "Register Number": "register_number",
    "Student Status": "student_status",
    "Grade Name": "grade_name",
    "Section Name": "section_name",
    "Class Name": "class_name",
    "Academic Year": "academic_year",
    "Subject ID": "subject_id",
    "Subject Name": "subject_name",
    "Term ID": "term_id",
    "Term Name": "term_name",
    "Component Name": "component_name",
    "Component Value": "component_value",
    "Max Value": "max_value",
    "Data Type": "data_type",
    "Calculation Method": "calculation_method",
    "Mark Grade Name": "mark_grade_name",
    "Mark Rubric Name": "mark_rubric_name",
}

# Allocation payload list -> (kind, name field)
ALLOCATION_SECTIONS = {
    "subject": ("subject", "subjectName"),
    "cohort": ("cohort", "cohortName"),
    "lesson": ("lesson", "lessonName"),
    "homeRoom": ("homeroom", "className"),
    "group": ("group", "groupName"),
}


def normalize_all(items: Iterable[Dict[str, Any]], build: Callable[[Dict[str, Any]], Any]) -> Tuple[List[R], int]:
    """
    Apply ``build`` to every item.

    ``build`` may return one record, a list of records, or None. Items
    that fail validation or yield nothing are counted as rejected.
    """
    records: List[R] = []
    rejected = 0
    for item in items:
        try:
            result = build(item)
        except ValidationError as e:
            rejected += 1
            logger.debug(f"Rejected item: {e.errors()[:1]}")
            continue
        if result is None:
            rejected += 1
        elif isinstance(result, list):
            records.extend(result)
        else:
            records.append(result)

    if rejected:
        logger.warning(f"Rejected {rejected} item(s) without a usable natural key or required fields")
    return records, rejected


class RosterNormalizer:
    """
    Maps raw provider items onto record schemas.

    Handles:
    - Natural key selection per provider
    - camelCase / snake_case field variants
    - Type conversion (dates, numbers)
    """

    # ========================================================================
    # Organizations
    # ========================================================================

    def school(self, raw: Dict[str, Any]) -> OrganizationRecord:
        parent = raw.get("parent") or {}
        return OrganizationRecord(
            natural_key=self._text(raw.get("sourcedId")),
            name=raw.get("name"),
            identifier=self._text(raw.get("identifier")),
            org_type=raw.get("type") or "school",
            status=raw.get("status"),
            parent_key=self._text(parent.get("sourcedId")) if isinstance(parent, dict) else None,
            date_last_modified=raw.get("dateLastModified"),
            attributes=raw.get("metadata") or None,
        )

    def year_group(self, raw: Dict[str, Any]) -> OrganizationRecord:
        return OrganizationRecord(
            natural_key=self._text(raw.get("id")),
            name=raw.get("name"),
            identifier=self._text(raw.get("grade_number") or raw.get("gradeNumber")),
            org_type="year_group",
            status="active",
            attributes={
                "grade": raw.get("grade"),
                "program": raw.get("program"),
                "student_ids": raw.get("student_ids") or raw.get("studentIds"),
            },
        )

    # ========================================================================
    # People
    # ========================================================================

    def person(self, raw: Dict[str, Any], role: PersonRole, school_key: Optional[str]) -> PersonRecord:
        given = raw.get("givenName")
        family = raw.get("familyName")
        full_name = raw.get("fullName") or " ".join(part for part in (given, family) if part) or None
        metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
        grades = raw.get("grades") if isinstance(raw.get("grades"), list) else []

        return PersonRecord(
            natural_key=self._text(raw.get("sourcedId")),
            role=role,
            identifier=self._text(raw.get("identifier")),
            given_name=given,
            family_name=family,
            full_name=full_name,
            email=raw.get("email"),
            status=raw.get("status"),
            grade=self._text(metadata.get("currentGrade") or (grades[0] if grades else None)),
            org_key=school_key,
            date_last_modified=raw.get("dateLastModified"),
            attributes=metadata or None,
        )

    def managebac_person(self, raw: Dict[str, Any], role: PersonRole) -> PersonRecord:
        def pick(snake: str, camel: str) -> Any:
            return raw.get(snake) if raw.get(snake) is not None else raw.get(camel)

        first = pick("first_name", "firstName")
        last = pick("last_name", "lastName")

        return PersonRecord(
            natural_key=self._text(raw.get("id")),
            role=role,
            identifier=self._text(
                pick("uniq_student_id", "uniqStudentId") or pick("student_id", "studentId") or raw.get("identifier")
            ),
            given_name=first,
            family_name=last,
            full_name=" ".join(part for part in (first, last) if part) or None,
            email=raw.get("email"),
            status="archived" if raw.get("archived") else "active",
            grade=self._text(pick("class_grade", "classGrade")),
            org_key=self._text(pick("year_group_id", "yearGroupId")),
            attributes={
                key: raw.get(key)
                for key in ("program", "graduating_year", "homeroom_advisor_id", "gender", "nationalities")
                if raw.get(key) is not None
            } or None,
        )

    # ========================================================================
    # Classes
    # ========================================================================

    def school_class(self, raw: Dict[str, Any], school_key: Optional[str]) -> ClassRecord:
        grades = raw.get("grades") if isinstance(raw.get("grades"), list) else []
        subjects = raw.get("subjects") if isinstance(raw.get("subjects"), list) else []
        return ClassRecord(
            natural_key=self._text(raw.get("sourcedId")),
            title=raw.get("title"),
            class_code=self._text(raw.get("classCode")),
            class_type=raw.get("classType"),
            grade=self._text(grades[0]) if grades else None,
            subject_name=self._text(subjects[0]) if subjects and not isinstance(subjects[0], dict) else None,
            status=raw.get("status"),
            org_key=school_key,
            attributes={"subjects": subjects} if subjects else None,
        )

    def managebac_class(self, raw: Dict[str, Any]) -> ClassRecord:
        subject = raw.get("subject") if isinstance(raw.get("subject"), dict) else {}
        return ClassRecord(
            natural_key=self._text(raw.get("id")),
            title=raw.get("name"),
            class_code=self._text(raw.get("uniq_id") or raw.get("uniqId")),
            class_type=raw.get("program_code") or raw.get("programCode"),
            grade=self._text(raw.get("grade")),
            subject_name=subject.get("name") or raw.get("subject_name"),
            status="archived" if raw.get("archived") else "active",
            org_key=self._text(raw.get("year_group_id") or raw.get("yearGroupId")),
        )

    # ========================================================================
    # Allocations
    # ========================================================================

    def allocations(
        self,
        raw: Dict[str, Any],
        role: PersonRole,
        school_key: Optional[str],
        academic_year: Optional[str],
    ) -> Optional[List[AllocationRecord]]:
        """One record per subject, cohort, lesson, homeroom and group entry."""
        person_key = self._text(
            raw.get("sourcedId") or raw.get("studentSourcedId") or raw.get("staffSourcedId")
        )
        if not person_key:
            return None

        year = self._text(raw.get("academicYear")) or academic_year
        records = []
        for section, (kind, name_field) in ALLOCATION_SECTIONS.items():
            for entry in raw.get(section) or []:
                if not isinstance(entry, dict):
                    continue
                target_key = self._text(entry.get("sourcedId") or entry.get("uniqueKey"))
                if not target_key:
                    continue
                records.append(AllocationRecord(
                    natural_key=f"{role.value}:{person_key}:{kind}:{target_key}:{year or ''}"[:255],
                    person_role=role,
                    person_key=person_key,
                    kind=kind,
                    target_key=target_key,
                    target_name=entry.get(name_field),
                    academic_year=year,
                    org_key=school_key,
                ))
        return records

    # ========================================================================
    # Attendance
    # ========================================================================

    def attendance(self, raw: Dict[str, Any], school_key: Optional[str]) -> Optional[AttendanceRecord]:
        student_key = self._text(
            raw.get("sourcedId") or raw.get("studentSourcedId") or raw.get("studentId") or raw.get("student_id")
        )
        attendance_date = self._parse_date(raw.get("attendanceDate") or raw.get("date"))
        if not student_key or attendance_date is None:
            return None

        status, category_code, category_name = self._attendance_status(raw)
        attributes = {key: raw.get(key) for key in ("remarks", "session") if raw.get(key) is not None}
        if category_code:
            attributes["categoryCode"] = category_code

        return AttendanceRecord(
            natural_key=f"{student_key}:{attendance_date.isoformat()}",
            student_key=student_key,
            attendance_date=attendance_date,
            status=status,
            category=category_name or category_code,
            org_key=school_key,
            attributes=attributes or None,
        )

    def _attendance_status(self, raw: Dict[str, Any]) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """
        Status text plus category code and name.

        The status arrives either as a code ("P", "A") or as an object
        carrying the code and its category.
        """
        value = raw.get("status")
        category_code = self._text(raw.get("categoryCode") or raw.get("category_code"))
        category_name = self._text(raw.get("categoryName") or raw.get("category_name"))

        if isinstance(value, dict):
            status = self._text(
                value.get("status") or value.get("code") or value.get("value") or value.get("name")
            )
            if status is None:
                status = json.dumps(value, sort_keys=True, default=str)
            category_code = category_code or self._text(
                value.get("categoryCode") or value.get("category_code") or value.get("code")
            )
            category_name = category_name or self._text(
                value.get("categoryName") or value.get("category_name") or value.get("name")
            )
        else:
            status = self._text(value or raw.get("attendanceStatus") or raw.get("attendanceCode"))

        if status:
            status = status.strip("\"'").strip() or None
        return status, category_code, category_name

    # ========================================================================
    # Allocation master and timetable
    # ========================================================================

    def allocation_master_entry(self, raw: Dict[str, Any], school_key: Optional[str]) -> AllocationMasterRecord:
        metadata = raw.get("metadata")
        return AllocationMasterRecord(
            natural_key=self._text(self._pick(raw, "sourcedId", "sourced_id")),
            allocation_type=self._text(self._pick(raw, "allocationType", "allocation_type")),
            entity_type=self._text(self._pick(raw, "entityType", "entity_type")),
            entity_key=self._text(self._pick(raw, "entitySourcedId", "entity_sourced_id")),
            entity_name=self._text(self._pick(raw, "entityName", "entity_name")),
            status=self._text(raw.get("status")),
            date_last_modified=self._text(raw.get("dateLastModified")),
            org_key=school_key,
            attributes=metadata if isinstance(metadata, dict) and metadata else None,
        )

    def daily_plan(
        self,
        raw: Dict[str, Any],
        school_key: Optional[str],
        default_date: date,
    ) -> Optional[DailyPlanRecord]:
        """
        One timetabled lesson. Keyed by date and timetable lesson; plans
        without a lesson id fall back to date, class, period and start time.
        """
        plan_date = self._parse_date(self._pick(raw, "date", "planDate", "plan_date")) or default_date
        lesson_key = self._text(self._pick(
            raw, "timetableLessonSourcedId", "timetable_lesson_sourced_id", "ttLesson", "lessonId", "lesson_id"
        ))
        class_key = self._text(self._pick(raw, "classSourcedId", "class_sourced_id", "class"))
        start_time = self._text(self._pick(raw, "startTime", "start_time"))
        period_number = self._parse_int(self._pick(raw, "periodNumber", "period_number"))

        if lesson_key:
            key = f"{plan_date.isoformat()}:{lesson_key}"
        elif class_key or start_time:
            key = f"{plan_date.isoformat()}:{class_key or ''}:{period_number or ''}:{start_time or ''}"
        else:
            return None

        metadata = raw.get("metadata")
        return DailyPlanRecord(
            natural_key=key[:255],
            plan_date=plan_date,
            lesson_key=lesson_key,
            lesson_name=self._text(self._pick(raw, "lessonName", "lesson_name")),
            subject_key=self._text(self._pick(raw, "subjectSourcedId", "subject_sourced_id", "subject")),
            subject_name=self._text(self._pick(raw, "subjectName", "subject_name")),
            class_key=class_key,
            class_name=self._text(self._pick(raw, "className", "class_name")),
            cohort_key=self._text(self._pick(raw, "cohortSourcedId", "cohort_sourced_id", "cohort")),
            cohort_name=self._text(self._pick(raw, "cohortName", "cohort_name")),
            teacher_key=self._text(self._pick(raw, "teacherSourcedId", "teacher_sourced_id", "teacher")),
            teacher_name=self._text(self._pick(raw, "teacherName", "teacher_name")),
            location_key=self._text(self._pick(raw, "locationSourcedId", "location_sourced_id", "location")),
            location_name=self._text(self._pick(raw, "locationName", "location_name")),
            start_time=start_time,
            end_time=self._text(self._pick(raw, "endTime", "end_time")),
            period_number=period_number,
            status=self._text(raw.get("status")),
            org_key=school_key,
            attributes=metadata if isinstance(metadata, dict) and metadata else None,
        )

    # ========================================================================
    # ManageBac school catalogue
    # ========================================================================

    def school_details(self, raw: Dict[str, Any]) -> OrganizationRecord:
        school_id = self._text(raw.get("id"))
        programs = raw.get("enabled_programs") if isinstance(raw.get("enabled_programs"), list) else []
        attributes = {
            key: raw.get(key)
            for key in ("country", "language", "session_in_may", "kbl_id")
            if raw.get(key) is not None
        }
        if programs:
            attributes["programs"] = [
                {"name": program.get("name"), "code": program.get("code")}
                for program in programs if isinstance(program, dict)
            ]

        return OrganizationRecord(
            natural_key=f"school:{school_id}" if school_id else None,
            name=self._text(raw.get("name")),
            identifier=self._text(raw.get("subdomain")),
            org_type="school",
            status="active",
            attributes=attributes or None,
        )

    def academic_year(self, raw: Dict[str, Any]) -> Optional[List[AcademicPeriodRecord]]:
        """The year plus one record per term; terms inherit missing dates from the year."""
        year_id = self._text(raw.get("id") or raw.get("uid"))
        if not year_id:
            return None

        program_code = self._text(raw.get("program_code"))
        starts_on, ends_on = self._academic_year_dates(raw)
        year_key = f"year:{year_id}"
        records = [AcademicPeriodRecord(
            natural_key=year_key,
            period_type="year",
            name=self._text(raw.get("name")),
            program_code=program_code,
            starts_on=starts_on,
            ends_on=ends_on,
        )]

        for term in raw.get("academic_terms") or []:
            term_id = self._text(term.get("id")) if isinstance(term, dict) else None
            if not term_id:
                continue
            records.append(AcademicPeriodRecord(
                natural_key=f"term:{term_id}",
                period_type="term",
                name=self._text(term.get("name")),
                program_code=program_code,
                starts_on=self._parse_date(term.get("starts_on")) or starts_on,
                ends_on=self._parse_date(term.get("ends_on")) or ends_on,
                parent_key=year_key,
                attributes={
                    "locked": bool(term.get("locked", False)),
                    "exam_grade": bool(term.get("exam_grade", False)),
                },
            ))
        return records

    def _academic_year_dates(self, raw: Dict[str, Any]) -> Tuple[date, date]:
        """Missing dates default to 1 August of the year in the name through 31 July after it"""
        starts_on = self._parse_date(raw.get("starts_on"))
        ends_on = self._parse_date(raw.get("ends_on"))
        if starts_on and ends_on:
            return starts_on, ends_on

        match = re.search(r"\d{4}", str(raw.get("name") or ""))
        start_year = int(match.group(0)) if match else date.today().year
        return starts_on or date(start_year, 8, 1), ends_on or date(start_year + 1, 7, 31)

    def grade_level(self, raw: Dict[str, Any]) -> GradeLevelRecord:
        program_code = self._text(raw.get("program_code"))
        code = self._text(raw.get("code"))
        key = self._text(raw.get("uid")) or (f"{program_code or ''}:{code}" if code else None)
        return GradeLevelRecord(
            natural_key=key,
            name=self._text(raw.get("name")),
            label=self._text(raw.get("label")),
            code=code,
            program_code=program_code,
            grade_number=self._parse_int(raw.get("grade_number")),
        )

    def subject(self, raw: Dict[str, Any]) -> SubjectRecord:
        group_key = self._text(raw.get("group_id"))
        return SubjectRecord(
            natural_key=self._text(raw.get("id")),
            name=self._text(raw.get("name")),
            program_code=self._text(raw.get("program_code")),
            group_key=group_key,
            group_name=self._text(raw.get("group")) if group_key else None,
            attributes={
                key: raw.get(key)
                for key in ("sl", "hl", "self_taught", "custom", "enabled", "max_phase")
                if raw.get(key) is not None
            } or None,
        )

    def membership(self, raw: Dict[str, Any], academic_year: Optional[str]) -> Optional[AllocationRecord]:
        """A ManageBac class membership as a ``class`` allocation; teachers map to staff."""
        person_key = self._text(raw.get("user_id") or raw.get("userId"))
        class_key = self._text(raw.get("class_id") or raw.get("classId"))
        if not person_key or not class_key:
            return None

        role = PersonRole.STAFF if (self._text(raw.get("role")) or "").lower() == "teacher" else PersonRole.STUDENT
        return AllocationRecord(
            natural_key=f"{role.value}:{person_key}:class:{class_key}:{academic_year or ''}"[:255],
            person_role=role,
            person_key=person_key,
            kind="class",
            target_key=class_key,
            academic_year=academic_year,
        )

    # ========================================================================
    # Assessments
    # ========================================================================

    def assessment(self, row: Dict[str, Optional[str]], school_key: Optional[str]) -> Optional[AssessmentRecord]:
        values = {field: row.get(column) for column, field in ASSESSMENT_COLUMNS.items()}
        if not values["register_number"] or not values["component_name"]:
            return None

        if values["component_value"] and len(values["component_value"]) > 500:
            values["component_value"] = values["component_value"][:500]
        values["max_value"] = self._parse_float(values["max_value"])

        key = "|".join(
            values[field] or ""
            for field in ("register_number", "academic_year", "term_id", "subject_id", "class_name", "component_name")
        )
        if len(key) > 255:
            key = hashlib.sha1(key.encode("utf-8")).hexdigest()

        return AssessmentRecord(natural_key=key, school_id=school_key, **values)

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _text(value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @staticmethod
    def _pick(raw: Dict[str, Any], *keys: str) -> Any:
        """First non-empty value among the key variants"""
        for key in keys:
            value = raw.get(key)
            if value is not None and value != "":
                return value
        return None

    @staticmethod
    def _parse_int(value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_float(value: Any) -> Optional[float]:
        """Safely parse float value"""
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _parse_date(value: Any) -> Optional[date]:
        """Dates arrive as YYYY-MM-DD or full ISO timestamps"""
        if value is None or value == "":
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        text = str(value).strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
