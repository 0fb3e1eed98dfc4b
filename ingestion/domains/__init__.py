"""
Domain orchestrators, one per data domain and provider.

``DOMAIN_ORDER`` is the dependency order: organizations and the school
catalogue before the people and classes that reference them, people and
classes before allocations, timetables, attendance and assessments.
"""

from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from ingestion.context import SyncContext, SyncScope
from ingestion.domains import managebac, nexquare
from models.base import ProviderType
from schemas.results import SyncResult

DomainSync = Callable[[SyncContext, SyncScope], Awaitable[SyncResult]]

DOMAIN_ORDER = [
    "school_details",
    "schools",
    "academic_years",
    "grades",
    "subjects",
    "students",
    "staff",
    "classes",
    "allocations",
    "allocation_master",
    "daily_plans",
    "attendance",
    "assessments",
]

PROVIDER_DOMAINS: Dict[ProviderType, Dict[str, DomainSync]] = {
    ProviderType.NEXQUARE: {
        "schools": nexquare.sync_schools,
        "students": nexquare.sync_students,
        "staff": nexquare.sync_staff,
        "classes": nexquare.sync_classes,
        "allocations": nexquare.sync_allocations,
        "allocation_master": nexquare.sync_allocation_master,
        "daily_plans": nexquare.sync_daily_plans,
        "attendance": nexquare.sync_attendance,
        "assessments": nexquare.sync_assessments,
    },
    ProviderType.MANAGEBAC: {
        "school_details": managebac.sync_school_details,
        "schools": managebac.sync_year_groups,
        "academic_years": managebac.sync_academic_years,
        "grades": managebac.sync_grades,
        "subjects": managebac.sync_subjects,
        "students": managebac.sync_students,
        "staff": managebac.sync_teachers,
        "classes": managebac.sync_classes,
        "allocations": managebac.sync_memberships,
    },
}


def plan_domains(provider: ProviderType, requested: Optional[Iterable[str]] = None) -> List[str]:
    """
    Requested domains in dependency order; all supported domains when none are given.

    Raises:
        ValueError: A requested domain is not supported by the provider
    """
    supported = PROVIDER_DOMAINS[provider]
    if requested is None:
        return [domain for domain in DOMAIN_ORDER if domain in supported]

    requested = set(requested)
    unknown = requested - set(supported)
    if unknown:
        raise ValueError(f"Unsupported domain(s) for {provider.value}: {', '.join(sorted(unknown))}")
    return [domain for domain in DOMAIN_ORDER if domain in requested]


def get_domain_sync(provider: ProviderType, domain: str) -> DomainSync:
    return PROVIDER_DOMAINS[provider][domain]


__all__ = [
    "DOMAIN_ORDER",
    "PROVIDER_DOMAINS",
    "DomainSync",
    "plan_domains",
    "get_domain_sync",
]
