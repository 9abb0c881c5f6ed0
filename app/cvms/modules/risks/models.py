from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.cvms.models import Base
from app.cvms.utils import utcnow

if TYPE_CHECKING:
    from app.cvms.modules.rtm.models import Requirement, TestCase
    from app.cvms.modules.systems.models import System


class RiskAssessment(Base):
    __tablename__ = "risk_assessments"
    __table_args__ = (
        Index("idx_risk_company_level", "company_id", "risk_level"),
        Index("idx_risk_system", "system_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    assessment_type: Mapped[str] = mapped_column(String(16), nullable=False)  # IRA | FRA | FMEA
    system_id: Mapped[int | None] = mapped_column(ForeignKey("systems.id", ondelete="SET NULL"), nullable=True)

    # RPN factors (1..10); risk_level is always derived from them
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    severity: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    detectability: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    residual_risk: Mapped[str] = mapped_column(String(16), nullable=False, default="low")
    controls: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    assessor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewer_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    tags: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    system: Mapped["System | None"] = relationship("System", lazy="selectin")
    mitigation_actions: Mapped[list["MitigationAction"]] = relationship(
        "MitigationAction",
        back_populates="risk",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MitigationAction.created_at.desc()",
    )
    requirement_links: Mapped[list["RiskRequirementLink"]] = relationship(
        "RiskRequirementLink",
        back_populates="risk",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    test_case_links: Mapped[list["RiskTestCaseLink"]] = relationship(
        "RiskTestCaseLink",
        back_populates="risk",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def rpn(self) -> int:
        return (self.probability or 0) * (self.severity or 0) * (self.detectability or 0)


class MitigationAction(Base):
    __tablename__ = "mitigation_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    risk_id: Mapped[int] = mapped_column(ForeignKey("risk_assessments.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    responsible_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending | in_progress | completed
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    risk: Mapped[RiskAssessment] = relationship("RiskAssessment", back_populates="mitigation_actions")


class RiskRequirementLink(Base):
    __tablename__ = "risk_requirement_links"
    __table_args__ = (UniqueConstraint("risk_id", "requirement_id", name="uq_risk_requirement"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    risk_id: Mapped[int] = mapped_column(ForeignKey("risk_assessments.id", ondelete="CASCADE"), nullable=False)
    requirement_id: Mapped[int] = mapped_column(ForeignKey("requirements.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    risk: Mapped[RiskAssessment] = relationship("RiskAssessment", back_populates="requirement_links")
    requirement: Mapped["Requirement"] = relationship("Requirement", lazy="selectin")


class RiskTestCaseLink(Base):
    __tablename__ = "risk_test_case_links"
    __table_args__ = (UniqueConstraint("risk_id", "test_case_id", name="uq_risk_test_case"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    risk_id: Mapped[int] = mapped_column(ForeignKey("risk_assessments.id", ondelete="CASCADE"), nullable=False)
    test_case_id: Mapped[int] = mapped_column(ForeignKey("test_cases.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    risk: Mapped[RiskAssessment] = relationship("RiskAssessment", back_populates="test_case_links")
    test_case: Mapped["TestCase"] = relationship("TestCase", lazy="selectin")
