"""Generic row access over an AsyncSession.

Every write commits on its own unless it runs inside ``transaction()``.
A failed write is rolled back before the error is re-raised so the same
RowStore keeps working for the next, independent step. Inside
``transaction()`` writes are only flushed, and the block commits once at
the end or rolls everything back.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class RowStore:
    def __init__(self, db: AsyncSession):
        self.db = db
        self._depth = 0

    # ---- reads -------------------------------------------------------------
    async def get(self, model, pk) -> Any | None:
        # always hit the database: rows removed by a bulk delete may still sit in the identity map
        stmt = select(model).where(model.id == pk).execution_options(populate_existing=True)
        return (await self.db.execute(stmt)).scalars().first()

    async def select(self, model, *, order_by=None, **eq) -> list[Any]:
        stmt = select(model)
        for col, value in eq.items():
            stmt = stmt.where(getattr(model, col) == value)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        return list((await self.db.execute(stmt)).scalars().all())

    async def first(self, model, *, order_by=None, **eq) -> Any | None:
        rows = await self.select(model, order_by=order_by, **eq)
        return rows[0] if rows else None

    async def select_in(self, model, column: str, values: Iterable[Any]) -> list[Any]:
        values = list(values)
        if not values:
            return []
        stmt = select(model).where(getattr(model, column).in_(values))
        return list((await self.db.execute(stmt)).scalars().all())

    # ---- writes ------------------------------------------------------------
    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["RowStore"]:
        """Run several writes as one unit: a single commit, or nothing at all."""
        self._depth += 1
        try:
            yield self
            if self._depth == 1:
                await self.db.commit()
        except Exception:
            if self._depth == 1:
                await self.db.rollback()
            raise
        finally:
            self._depth -= 1

    async def insert(self, *objs) -> Sequence[Any]:
        try:
            self.db.add_all(objs)
            await self._finish()
        except Exception:
            await self._abort()
            raise
        for obj in objs:
            await self.db.refresh(obj)
        return objs

    async def update(self, model, patch: dict[str, Any], **eq) -> int:
        stmt = update(model).values(**patch)
        for col, value in eq.items():
            stmt = stmt.where(getattr(model, col) == value)
        return await self._write(stmt)

    async def delete_in(self, model, column: str, values: Iterable[Any]) -> int:
        values = list(values)
        if not values:
            return 0
        stmt = delete(model).where(getattr(model, column).in_(values))
        return await self._write(stmt)

    async def _write(self, stmt) -> int:
        try:
            result = await self.db.execute(stmt.execution_options(synchronize_session=False))
            await self._finish()
        except Exception:
            await self._abort()
            raise
        return int(result.rowcount or 0)

    async def _finish(self) -> None:
        if self._depth:
            await self.db.flush()
        else:
            await self.db.commit()

    async def _abort(self) -> None:
        # inside transaction() the enclosing block owns the rollback
        if not self._depth:
            await self.db.rollback()


__all__ = ["RowStore"]
