"""
Sync pipeline components for school-information providers.

Modules:
    transport: Response classification and bounded retry
    auth: Token acquisition/caching and API-key headers
    client: Authenticated per-tenant API client
    endpoints / envelopes: Endpoint catalogue and response envelope extraction
    pagination: Sequential page loop and concurrent detail enrichment
    context: Per-tenant wiring and sync scope
    runner: Domain orchestration with run tracking
    scheduler: APScheduler integration for periodic syncs

Subpackages:
    extractors: Windowed spreadsheet export retrieval
    transformers: Payload decoding and record normalization
    loaders: Key resolution, bulk upserts and reporting propagation
    domains: Per-provider domain orchestrators

Usage:
    from ingestion.context import build_context
    from ingestion.runner import SyncRunner

    ctx = build_context(tenant, session, http, token_store)
    report = await SyncRunner(session).run_tenant(ctx, domains=["schools", "students"])
"""

from ingestion.context import SyncContext, SyncScope, build_context
from ingestion.runner import SyncRunner

__all__ = [
    "SyncRunner",
    "SyncContext",
    "SyncScope",
    "build_context",
]
