from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.cvms.models import Base
from app.cvms.utils import utcnow


class Requirement(Base):
    __tablename__ = "requirements"
    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_requirement_company_code"),
        Index("idx_requirement_system", "system_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    code: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "URS-001"
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str | None] = mapped_column(String(8), nullable=True)  # URS | FS | DS
    priority: Mapped[str | None] = mapped_column(String(16), nullable=True, default="medium")  # high | medium | low
    source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True, default="draft")

    system_id: Mapped[int | None] = mapped_column(ForeignKey("systems.id", ondelete="SET NULL"), nullable=True)
    project_id: Mapped[int | None] = mapped_column(ForeignKey("validation_projects.id", ondelete="SET NULL"), nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    links: Mapped[list["RTMLink"]] = relationship(
        "RTMLink",
        back_populates="requirement",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class TestCase(Base):
    __test__ = False  # keep pytest from collecting the model
    __tablename__ = "test_cases"
    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_test_case_company_code"),
        Index("idx_test_case_system", "system_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    code: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "OQ-TC-001"
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    preconditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    steps: Mapped[str | None] = mapped_column(Text, nullable=True)
    expected_results: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    result: Mapped[str | None] = mapped_column(String(16), nullable=True)  # passed | failed | blocked
    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    executed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    system_id: Mapped[int | None] = mapped_column(ForeignKey("systems.id", ondelete="SET NULL"), nullable=True)
    project_id: Mapped[int | None] = mapped_column(ForeignKey("validation_projects.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    links: Mapped[list["RTMLink"]] = relationship(
        "RTMLink",
        back_populates="test_case",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    evidence: Mapped[list["TestEvidence"]] = relationship(
        "TestEvidence",
        back_populates="test_case",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TestEvidence.created_at.desc()",
    )


class RTMLink(Base):
    __tablename__ = "rtm_links"
    __table_args__ = (UniqueConstraint("requirement_id", "test_case_id", name="uq_rtm_link"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    requirement_id: Mapped[int] = mapped_column(ForeignKey("requirements.id", ondelete="CASCADE"), nullable=False)
    test_case_id: Mapped[int] = mapped_column(ForeignKey("test_cases.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    requirement: Mapped[Requirement] = relationship("Requirement", back_populates="links", lazy="selectin")
    test_case: Mapped[TestCase] = relationship("TestCase", back_populates="links", lazy="selectin")


class TestEvidence(Base):
    __test__ = False
    __tablename__ = "test_evidence"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    test_case_id: Mapped[int] = mapped_column(ForeignKey("test_cases.id", ondelete="CASCADE"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_type: Mapped[str] = mapped_column(String(32), nullable=False, default="screenshot")

    # Stored file (optional)
    storage_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    original_filename: Mapped[str | None] = mapped_column(String(512), nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    uploaded_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    test_case: Mapped[TestCase] = relationship("TestCase", back_populates="evidence")
