from sqlalchemy import (
    Column, String, BigInteger, Boolean, Float, DateTime, ForeignKey, UniqueConstraint, func
)
from models.base import Base, BigIntPK


class SubjectMapping(Base):
    """
    Maps a (school, academic year, grade, subject) to the subject name used
    in reports. Maintained outside the sync; read by the reporting refresh.
    """
    __tablename__ = "subject_mappings"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    school_id = Column(String(255), nullable=False)
    academic_year = Column(String(20), nullable=False)
    grade = Column(String(100), nullable=False)
    subject = Column(String(255), nullable=False)
    reported_subject = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "school_id", "academic_year", "grade", "subject",
            name="uq_subject_mappings_scope",
        ),
    )


class AssessmentComponentConfig(Base):
    """Which assessment components a school reports on."""
    __tablename__ = "assessment_component_configs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    school_id = Column(String(255), nullable=False)
    component_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "school_id", "component_name", name="uq_component_configs_scope"),
    )


class ReportingAssessment(Base):
    """
    Reporting copy of an assessment component.

    ``source_id`` is unique: a component is inserted at most once and only
    ``reported_subject`` is refreshed afterwards.
    """
    __tablename__ = "reporting_assessments"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    source_id = Column(BigInteger, ForeignKey("assessment_components.id"), nullable=False, unique=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    school_id = Column(String(255), nullable=True, index=True)
    school_name = Column(String(255), nullable=True)
    region_name = Column(String(255), nullable=True)
    academic_year = Column(String(20), nullable=True)
    grade_name = Column(String(100), nullable=True)
    section_name = Column(String(100), nullable=True)
    class_name = Column(String(255), nullable=True)
    student_name = Column(String(500), nullable=True)
    register_number = Column(String(100), nullable=True)
    student_status = Column(String(50), nullable=True)
    subject_id = Column(String(100), nullable=True)
    subject_name = Column(String(255), nullable=True)
    reported_subject = Column(String(255), nullable=True)
    term_id = Column(String(100), nullable=True)
    term_name = Column(String(255), nullable=True)
    component_name = Column(String(255), nullable=True)
    component_value = Column(String(500), nullable=True)
    max_value = Column(Float, nullable=True)
    data_type = Column(String(50), nullable=True)
    calculation_method = Column(String(100), nullable=True)
    mark_grade_name = Column(String(100), nullable=True)
    mark_rubric_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
