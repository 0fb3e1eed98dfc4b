"""
SQLAlchemy ORM models for database tables.

Models:
    base: Declarative base, shared enums and the roster column mixin
    roster: Normalized roster tables keyed by (tenant_id, natural_key)
    catalogue: School catalogue tables (academic periods, grade levels, subjects)
    reporting: Reporting copy of assessments and its mapping/config tables
    sync_run: Sync execution tracking

Database Schema:
    Roster tables carry a surrogate ``id`` plus a unique
    (tenant_id, natural_key) constraint that upserts conflict on.
    Foreign keys between roster tables are nullable: a reference the
    sync could not resolve is stored as NULL and reported as skipped.

Usage:
    from models import Student, AssessmentComponent, SyncRun
    from models.base import Base, ProviderType, SyncStatus
"""

from models.base import Base, ProviderType, SyncStatus, PersonRole
from models.roster import (
    OrgUnit,
    Student,
    StaffMember,
    SchoolClass,
    Allocation,
    AttendanceEvent,
    AllocationMasterEntry,
    DailyPlan,
    AssessmentComponent,
)
from models.catalogue import AcademicPeriod, GradeLevel, Subject
from models.reporting import SubjectMapping, AssessmentComponentConfig, ReportingAssessment
from models.sync_run import SyncRun

__all__ = [
    "Base",
    "ProviderType",
    "SyncStatus",
    "PersonRole",
    "OrgUnit",
    "Student",
    "StaffMember",
    "SchoolClass",
    "Allocation",
    "AttendanceEvent",
    "AllocationMasterEntry",
    "DailyPlan",
    "AssessmentComponent",
    "AcademicPeriod",
    "GradeLevel",
    "Subject",
    "SubjectMapping",
    "AssessmentComponentConfig",
    "ReportingAssessment",
    "SyncRun",
]
