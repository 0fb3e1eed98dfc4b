from sqlalchemy import Column, String, Enum, DateTime, Float, Integer, Text, Index, func
from models.base import Base, BigIntPK, JSONType, SyncStatus


class SyncRun(Base):
    """
    One domain sync for one tenant.

    Purpose:
    - Audit trail of every sync
    - Counts reported back to the caller (fetched, persisted, skipped)
    - Error context for the terminal failure of a run
    """
    __tablename__ = "sync_runs"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)

    tenant_id = Column(String(64), nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    domain = Column(String(50), nullable=False)
    scope = Column(String(255), nullable=True)

    status = Column(Enum(SyncStatus), default=SyncStatus.PENDING, nullable=False, index=True)

    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    records_fetched = Column(Integer, default=0)
    records_persisted = Column(Integer, default=0)
    records_skipped = Column(Integer, default=0)
    records_rejected = Column(Integer, default=0)
    records_propagated = Column(Integer, default=0)

    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_sync_run_tenant_domain_started", "tenant_id", "domain", "started_at"),
    )
