from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.cvms.models import Base
from app.cvms.utils import utcnow


class TemplatePackage(Base):
    """A bundle of document templates published by one company for others to activate."""

    __tablename__ = "template_packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    system_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gamp_category: Mapped[str | None] = mapped_column(String(4), nullable=True)
    application: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    document_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cover_image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    items: Mapped[list["TemplatePackageItem"]] = relationship(
        "TemplatePackageItem",
        back_populates="package",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TemplatePackageItem.sort_order",
    )
    activations: Mapped[list["TemplatePackageActivation"]] = relationship(
        "TemplatePackageActivation",
        back_populates="package",
        cascade="all, delete-orphan",
    )
    company = relationship("Company", lazy="selectin")


class TemplatePackageItem(Base):
    __tablename__ = "template_package_items"
    __table_args__ = (UniqueConstraint("package_id", "template_id", name="uq_package_template"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("template_packages.id", ondelete="CASCADE"), nullable=False)
    template_id: Mapped[int] = mapped_column(ForeignKey("document_templates.id", ondelete="CASCADE"), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    package: Mapped[TemplatePackage] = relationship("TemplatePackage", back_populates="items")
    template = relationship("DocumentTemplate", lazy="selectin")


class TemplatePackageActivation(Base):
    __tablename__ = "template_package_activations"
    __table_args__ = (UniqueConstraint("package_id", "company_id", name="uq_package_activation_company"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("template_packages.id", ondelete="CASCADE"), nullable=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)  # requester

    requested_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # pending -> approved | rejected
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    package: Mapped[TemplatePackage] = relationship("TemplatePackage", back_populates="activations", lazy="selectin")
    company = relationship("Company", lazy="selectin")
