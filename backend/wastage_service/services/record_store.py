"""Persistence for wastage rows."""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wastage_service.core.db_errors import DuplicateChallanError, is_unique_violation
from wastage_service.models.wastage import Wastage


class WastageRecordStore:
    """Reads and writes ``Wastage`` rows through one request-scoped session.

    Writes commit immediately; the unique index on ``inward_challan_id`` is the
    only guard against two rows for the same challan.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_challan_id(self, inward_challan_id: str) -> Optional[Wastage]:
        return await self.session.scalar(
            select(Wastage).where(Wastage.inward_challan_id == inward_challan_id)
        )

    async def find_by_id(self, wastage_id: int) -> Optional[Wastage]:
        return await self.session.get(Wastage, wastage_id)

    async def exists(self, wastage_id: int) -> bool:
        found = await self.session.scalar(select(Wastage.id).where(Wastage.id == wastage_id))
        return found is not None

    async def list_all_ordered_by_creation_descending(self) -> Sequence[Wastage]:
        result = await self.session.execute(
            select(Wastage).order_by(Wastage.created_at.desc(), Wastage.id.desc())
        )
        return result.scalars().all()

    async def insert(self, record: Wastage) -> Wastage:
        self.session.add(record)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            if is_unique_violation(exc):
                raise DuplicateChallanError(record.inward_challan_id) from exc
            raise
        await self.session.refresh(record)
        return record

    async def update(self, record: Wastage) -> Wastage:
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    async def delete(self, record: Wastage) -> None:
        await self.session.delete(record)
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
