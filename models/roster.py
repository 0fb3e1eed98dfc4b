from sqlalchemy import Column, String, BigInteger, Date, Float, ForeignKey, Integer
from models.base import Base, RosterMixin, JSONType


class OrgUnit(RosterMixin, Base):
    """
    Schools and year groups.

    Nexquare schools are keyed by their OneRoster ``sourcedId``; ManageBac
    year groups by their numeric id.
    """
    __tablename__ = "org_units"

    name = Column(String(255), nullable=True)
    identifier = Column(String(255), nullable=True, index=True)
    org_type = Column(String(50), nullable=True)
    status = Column(String(50), nullable=True)
    parent_key = Column(String(255), nullable=True)
    date_last_modified = Column(String(50), nullable=True)
    attributes = Column(JSONType, nullable=True)


class PersonColumns(RosterMixin):
    identifier = Column(String(255), nullable=True, index=True)
    given_name = Column(String(255), nullable=True)
    family_name = Column(String(255), nullable=True)
    full_name = Column(String(500), nullable=True)
    email = Column(String(255), nullable=True)
    status = Column(String(50), nullable=True)
    grade = Column(String(100), nullable=True)
    org_key = Column(String(255), nullable=True, index=True)
    date_last_modified = Column(String(50), nullable=True)
    attributes = Column(JSONType, nullable=True)


class Student(PersonColumns, Base):
    __tablename__ = "students"

    org_id = Column(BigInteger, ForeignKey("org_units.id"), nullable=True)


class StaffMember(PersonColumns, Base):
    __tablename__ = "staff"

    org_id = Column(BigInteger, ForeignKey("org_units.id"), nullable=True)


class SchoolClass(RosterMixin, Base):
    __tablename__ = "classes"

    title = Column(String(255), nullable=True)
    class_code = Column(String(100), nullable=True)
    class_type = Column(String(50), nullable=True)
    grade = Column(String(100), nullable=True)
    subject_name = Column(String(255), nullable=True)
    status = Column(String(50), nullable=True)
    org_key = Column(String(255), nullable=True, index=True)
    org_id = Column(BigInteger, ForeignKey("org_units.id"), nullable=True)
    attributes = Column(JSONType, nullable=True)


class Allocation(RosterMixin, Base):
    """
    One membership of a student or staff member: a subject, cohort, lesson,
    homeroom or group entry of an allocation payload.
    """
    __tablename__ = "allocations"

    person_role = Column(String(20), nullable=False)
    person_key = Column(String(255), nullable=False)
    person_id = Column(BigInteger, nullable=True)
    kind = Column(String(30), nullable=False)
    target_key = Column(String(255), nullable=False)
    target_name = Column(String(255), nullable=True)
    class_id = Column(BigInteger, ForeignKey("classes.id"), nullable=True)
    academic_year = Column(String(20), nullable=True)
    org_key = Column(String(255), nullable=True)


class AttendanceEvent(RosterMixin, Base):
    __tablename__ = "attendance_events"

    student_key = Column(String(255), nullable=False)
    student_id = Column(BigInteger, ForeignKey("students.id"), nullable=True)
    attendance_date = Column(Date, nullable=False)
    status = Column(String(100), nullable=True)
    category = Column(String(100), nullable=True)
    org_key = Column(String(255), nullable=True, index=True)
    attributes = Column(JSONType, nullable=True)


class AllocationMasterEntry(RosterMixin, Base):
    """School-wide catalogue of allocatable entities (subjects, cohorts, groups)."""
    __tablename__ = "allocation_master"

    allocation_type = Column(String(50), nullable=True)
    entity_type = Column(String(50), nullable=True)
    entity_key = Column(String(255), nullable=True)
    entity_name = Column(String(255), nullable=True)
    status = Column(String(50), nullable=True)
    date_last_modified = Column(String(50), nullable=True)
    org_key = Column(String(255), nullable=True, index=True)
    org_id = Column(BigInteger, ForeignKey("org_units.id"), nullable=True)
    attributes = Column(JSONType, nullable=True)


class DailyPlan(RosterMixin, Base):
    """One timetabled lesson on one day."""
    __tablename__ = "daily_plans"

    plan_date = Column(Date, nullable=False, index=True)
    lesson_key = Column(String(255), nullable=True)
    lesson_name = Column(String(255), nullable=True)
    subject_key = Column(String(255), nullable=True)
    subject_name = Column(String(255), nullable=True)
    class_key = Column(String(255), nullable=True)
    class_name = Column(String(255), nullable=True)
    class_id = Column(BigInteger, ForeignKey("classes.id"), nullable=True)
    cohort_key = Column(String(255), nullable=True)
    cohort_name = Column(String(255), nullable=True)
    teacher_key = Column(String(255), nullable=True)
    teacher_name = Column(String(255), nullable=True)
    location_key = Column(String(255), nullable=True)
    location_name = Column(String(255), nullable=True)
    start_time = Column(String(20), nullable=True)
    end_time = Column(String(20), nullable=True)
    period_number = Column(Integer, nullable=True)
    status = Column(String(50), nullable=True)
    org_key = Column(String(255), nullable=True, index=True)
    org_id = Column(BigInteger, ForeignKey("org_units.id"), nullable=True)
    attributes = Column(JSONType, nullable=True)


class AssessmentComponent(RosterMixin, Base):
    """One row of the student assessment export."""
    __tablename__ = "assessment_components"

    school_id = Column(String(255), nullable=True, index=True)
    school_name = Column(String(255), nullable=True)
    region_name = Column(String(255), nullable=True)
    student_name = Column(String(500), nullable=True)
    register_number = Column(String(100), nullable=True)
    student_status = Column(String(50), nullable=True)
    grade_name = Column(String(100), nullable=True)
    section_name = Column(String(100), nullable=True)
    class_name = Column(String(255), nullable=True)
    academic_year = Column(String(20), nullable=True)
    subject_id = Column(String(100), nullable=True)
    subject_name = Column(String(255), nullable=True)
    term_id = Column(String(100), nullable=True)
    term_name = Column(String(255), nullable=True)
    component_name = Column(String(255), nullable=True)
    component_value = Column(String(500), nullable=True)
    max_value = Column(Float, nullable=True)
    data_type = Column(String(50), nullable=True)
    calculation_method = Column(String(100), nullable=True)
    mark_grade_name = Column(String(100), nullable=True)
    mark_rubric_name = Column(String(255), nullable=True)
