"""
Load normalized records with multi-row upserts (idempotent, parameter-bounded)
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import String, delete, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import PersistenceError
from models.base import conflict_columns
from schemas.records import RosterRecord

logger = logging.getLogger(__name__)


def batch_size_for(
    parameters_per_record: int,
    parameter_ceiling: Optional[int] = None,
    headroom: Optional[int] = None,
) -> int:
    """
    Largest number of records whose bound parameters fit one statement.

    ``headroom`` parameters are held back from the ceiling; the result never
    exceeds ``ceiling // parameters_per_record``.
    """
    ceiling = parameter_ceiling or settings.DB_PARAMETER_CEILING
    headroom = settings.DB_PARAMETER_HEADROOM if headroom is None else headroom

    if parameters_per_record <= 0:
        raise ValueError("parameters_per_record must be positive")
    if parameters_per_record > ceiling:
        raise ValueError(
            f"A single record needs {parameters_per_record} parameters; ceiling is {ceiling}"
        )

    return max((ceiling - headroom) // parameters_per_record, 1)


def text_limits(model) -> Dict[str, int]:
    """Declared length of each bounded string column of a model"""
    return {
        column.name: column.type.length
        for column in model.__table__.columns
        if isinstance(column.type, String) and column.type.length
    }


class BulkWriter:
    """
    Upsert records into a roster table for one tenant.

    Ensures:
    - No duplicate rows on repeated runs (conflict on tenant + natural key)
    - No statement binds more parameters than the configured ceiling
    - All batches of one call commit together or not at all
    """

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: str,
        parameter_ceiling: Optional[int] = None,
        headroom: Optional[int] = None,
        dialect: Optional[str] = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.parameter_ceiling = parameter_ceiling or settings.DB_PARAMETER_CEILING
        self.headroom = headroom
        self._dialect = dialect

    @property
    def dialect(self) -> str:
        if self._dialect:
            return self._dialect
        name = getattr(getattr(self.db.bind, "dialect", None), "name", None)
        return name if isinstance(name, str) else "postgresql"

    def _rows(self, model, records: Sequence[RosterRecord]) -> List[Dict[str, Any]]:
        limits = text_limits(model)
        clamped = 0

        # Same key twice in one statement cannot be upserted; last one wins
        rows: Dict[str, Dict[str, Any]] = {}
        for record in records:
            row = record.to_row(self.tenant_id)
            for column, limit in limits.items():
                value = row.get(column)
                if isinstance(value, str) and len(value) > limit:
                    row[column] = value[:limit]
                    clamped += 1
            rows[record.natural_key] = row

        if clamped:
            logger.warning(f"Clamped {clamped} value(s) to the column lengths of {model.__tablename__}")
        return list(rows.values())

    def _upsert(self, model, rows: List[Dict[str, Any]]):
        insert = sqlite_insert if self.dialect == "sqlite" else pg_insert
        stmt = insert(model.__table__).values(rows)

        conflict = conflict_columns(model)
        updates = {column: stmt.excluded[column] for column in rows[0] if column not in conflict}
        updates["updated_at"] = func.now()

        return stmt.on_conflict_do_update(index_elements=list(conflict), set_=updates)

    async def write_batch(
        self,
        model,
        records: Sequence[RosterRecord],
        replace_where: Optional[Sequence[Any]] = None,
    ) -> int:
        """
        Upsert records in parameter-bounded batches inside one transaction.

        Args:
            model: Target roster model (must use the tenant/natural-key constraint)
            records: Records to write
            replace_where: When given, the tenant's rows matching these conditions
                are deleted first, in the same transaction, so rows missing from
                the new set do not linger

        Returns:
            Number of rows written

        Raises:
            PersistenceError: A batch failed; the whole call was rolled back
        """
        rows = self._rows(model, records)
        if not rows:
            return 0

        width = len(rows[0])
        size = batch_size_for(width, self.parameter_ceiling, self.headroom)
        batches = [rows[i:i + size] for i in range(0, len(rows), size)]
        table_name = model.__tablename__

        batch_index = 0
        try:
            if replace_where is not None:
                removed = await self.db.execute(
                    delete(model).where(model.tenant_id == self.tenant_id, *replace_where)
                )
                logger.debug(f"Removed {removed.rowcount} {table_name} rows before rewrite")
            for batch_index, batch in enumerate(batches):
                await self.db.execute(self._upsert(model, batch))
                logger.debug(
                    f"{table_name} batch {batch_index + 1}/{len(batches)}: {len(batch)} rows "
                    f"({len(batch) * width} parameters)"
                )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Error in {table_name} batch {batch_index + 1}/{len(batches)}; transaction rolled back")
            raise PersistenceError(
                f"Bulk write to {table_name} failed",
                context={
                    "tenant_id": self.tenant_id,
                    "table_name": table_name,
                    "batch_index": batch_index,
                    "batch_count": len(batches),
                    "batch_size": size,
                },
                original_exception=e
            )

        logger.info(f"Upserted {len(rows)} rows into {table_name} in {len(batches)} batch(es) of <= {size}")
        return len(rows)
