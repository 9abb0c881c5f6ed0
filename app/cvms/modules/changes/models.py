from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.cvms.models import Base
from app.cvms.utils import utcnow


class ChangeRequest(Base):
    __tablename__ = "change_requests"
    __table_args__ = (Index("idx_change_company_status", "company_id", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    system_id: Mapped[int | None] = mapped_column(ForeignKey("systems.id", ondelete="SET NULL"), nullable=True)
    change_type: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "software_update"
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    gxp_impact: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validation_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # draft -> pending -> approved -> completed; rejected from draft/pending
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")

    requester_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    implemented_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    system = relationship("System", lazy="selectin")
    requester = relationship("User", foreign_keys=[requester_id], lazy="selectin")
    approver = relationship("User", foreign_keys=[approver_id], lazy="selectin")
