from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, BigInteger, UniqueConstraint, func
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, declared_attr
import enum

Base = declarative_base()

# BIGSERIAL on PostgreSQL; SQLite only autoincrements INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class ProviderType(str, enum.Enum):
    """School-information API providers"""
    NEXQUARE = "nexquare"
    MANAGEBAC = "managebac"


class SyncStatus(str, enum.Enum):
    """Sync run status"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class PersonRole(str, enum.Enum):
    STUDENT = "student"
    STAFF = "staff"


# ============================================================================
# MIXINS
# ============================================================================

class RosterMixin:
    """
    Columns shared by every normalized roster table.

    Rows are identified by (tenant_id, natural_key); the surrogate ``id`` is
    what other tables reference. Upserts target the unique constraint.
    """

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    natural_key = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @declared_attr
    def __table_args__(cls):
        return (
            UniqueConstraint("tenant_id", "natural_key", name=f"uq_{cls.__tablename__}_tenant_key"),
        )


def conflict_columns(model) -> tuple:
    """Columns of the (tenant, natural key) unique constraint used for upserts."""
    for constraint in model.__table__.constraints:
        if isinstance(constraint, UniqueConstraint) and constraint.name.endswith("_tenant_key"):
            return tuple(column.name for column in constraint.columns)
    return ("tenant_id", "natural_key")
