"""Wastage entries recorded against inward challans."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import Mapped, mapped_column

from wastage_service.models.base import Base


class DecimalList(TypeDecorator):
    """JSON array of decimals, stored as strings so no precision is lost."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value: Optional[list[Any]], dialect) -> list[str]:
        return [str(Decimal(str(v))) for v in (value or [])]

    def process_result_value(self, value: Optional[list[Any]], dialect) -> list[Decimal]:
        return [Decimal(str(v)) for v in (value or [])]


class Wastage(Base):
    """One wastage entry per inward challan."""

    __tablename__ = "wastages"
    __table_args__ = (
        UniqueConstraint("inward_challan_id", name="uq_wastages_inward_challan_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    inward_challan_id: Mapped[str] = mapped_column(String(100), nullable=False)
    party_name: Mapped[str] = mapped_column(String(200), nullable=False)
    vehicle_no: Mapped[str] = mapped_column(String(50), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    mou_report: Mapped[list[Decimal]] = mapped_column(
        DecimalList, nullable=False, default=list
    )
    image_urls: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    # Bumped on every UPDATE; a write against an older version raises StaleDataError.
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}
