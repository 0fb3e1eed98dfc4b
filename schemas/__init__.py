"""
Pydantic schemas and result types used throughout the sync pipeline.

Schemas:
    tenant: Tenant configuration and the tenants file loader
    records: Normalized roster records, one variant per table
    results: Per-domain and per-tenant sync results
"""

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
from schemas.results import PropagationResult, SyncResult, TenantSyncReport
from schemas.tenant import TenantConfig, load_tenants

__all__ = [
    "RosterRecord",
    "OrganizationRecord",
    "PersonRecord",
    "ClassRecord",
    "AllocationRecord",
    "AttendanceRecord",
    "AllocationMasterRecord",
    "DailyPlanRecord",
    "AcademicPeriodRecord",
    "GradeLevelRecord",
    "SubjectRecord",
    "AssessmentRecord",
    "SyncResult",
    "PropagationResult",
    "TenantSyncReport",
    "TenantConfig",
    "load_tenants",
]
