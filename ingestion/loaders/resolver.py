"""
Bulk resolution of natural keys to surrogate ids.
"""

import logging
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings

logger = logging.getLogger(__name__)


class Resolution(Mapping[str, int]):
    """
    Natural key -> surrogate id for the keys that matched.

    Keys with no row are absent (``resolution.get(key)`` is None) and listed
    in ``missing``; ``queries`` is the number of lookups issued.
    """

    def __init__(self, ids: Dict[str, int], missing: FrozenSet[str], queries: int):
        self._ids = ids
        self.missing = missing
        self.queries = queries

    def __getitem__(self, key: str) -> int:
        return self._ids[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __repr__(self) -> str:
        return f"Resolution(resolved={len(self._ids)}, missing={len(self.missing)}, queries={self.queries})"


class ReferenceResolver:
    """
    Resolves natural keys of one roster table for one tenant.

    Keys are deduplicated and looked up ``batch_size`` at a time with one
    ``IN`` query per batch. With ``alt_key_column`` a key also matches that
    column (students are referenced by sourced id or by identifier); a
    match on the primary key column wins.
    """

    def __init__(
        self,
        db: AsyncSession,
        model,
        tenant_id: str,
        key_column: str = "natural_key",
        alt_key_column: Optional[str] = None,
        batch_size: Optional[int] = None,
    ):
        self.db = db
        self.model = model
        self.tenant_id = tenant_id
        self.key_column = key_column
        self.alt_key_column = alt_key_column
        self.batch_size = batch_size or settings.RESOLVER_BATCH_SIZE

    async def resolve_many(self, keys: Iterable[Optional[str]]) -> Resolution:
        unique = sorted({str(key).strip() for key in keys if key is not None and str(key).strip()})

        key_col = getattr(self.model, self.key_column)
        alt_col = getattr(self.model, self.alt_key_column) if self.alt_key_column else None

        primary: Dict[str, int] = {}
        alternate: Dict[str, int] = {}
        queries = 0

        for start in range(0, len(unique), self.batch_size):
            batch = unique[start:start + self.batch_size]
            wanted = set(batch)

            if alt_col is None:
                stmt = select(self.model.id, key_col).where(
                    self.model.tenant_id == self.tenant_id,
                    key_col.in_(batch)
                )
            else:
                stmt = select(self.model.id, key_col, alt_col).where(
                    self.model.tenant_id == self.tenant_id,
                    or_(key_col.in_(batch), alt_col.in_(batch))
                )

            result = await self.db.execute(stmt)
            queries += 1

            for row in result.all():
                surrogate_id = row[0]
                if row[1] in wanted:
                    primary.setdefault(row[1], surrogate_id)
                if alt_col is not None and row[2] in wanted:
                    alternate.setdefault(row[2], surrogate_id)

        ids = {**alternate, **primary}
        missing = frozenset(key for key in unique if key not in ids)

        table = self.model.__tablename__
        logger.info(
            f"Resolved {len(ids)}/{len(unique)} {table} keys in {queries} quer{'y' if queries == 1 else 'ies'}"
        )
        if missing:
            logger.debug(f"Unresolved {table} keys: {sorted(missing)[:20]}")

        return Resolution(ids, missing, queries)
