from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.cvms.models import Base
from app.cvms.utils import utcnow


class System(Base):
    """Computerized system under validation (GAMP 5 inventory entry)."""

    __tablename__ = "systems"
    __table_args__ = (
        Index("idx_systems_company_name", "company_id", "name"),
        Index("idx_systems_validation_status", "validation_status"),
        Index("idx_systems_next_revalidation", "next_revalidation_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    # Required
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    gamp_category: Mapped[str] = mapped_column(String(1), nullable=False)  # "1" | "3" | "4" | "5"

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    vendor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    version: Mapped[str | None] = mapped_column(String(128), nullable=True)
    criticality: Mapped[str | None] = mapped_column(String(16), nullable=True)  # risk_level

    gxp_impact: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    data_integrity_impact: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    bpx_relevant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    validation_status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_started")
    installation_location: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_validation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_revalidation_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    responsible_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    system_owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    process_owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
