"""
SQLAlchemy ORM persistence models for the Certification module.

Responsibility
--------------
Persist certifications and their lines.  Lines hold frozen snapshots of
the billed budget line (contractual quantity, unit sale price) and the
cumulative progress figures exactly as the billing engine produced them.

Invariants enforced
-------------------
* ``(project_id, number)`` is unique; numbers come from the locked
  per-project sequence counter.
* ``(certification_id, budget_line_id)`` is unique.
* ``integrity_seal`` and ``previous_seal`` are written once, at issue.
* The ORM immutability listeners refuse line writes once the parent is
  not DRAFT, and header writes other than the approve/reject decision.

Audit relevance
---------------
The seal chain (``previous_seal`` -> ``integrity_seal``) makes any later
change to an issued certification's figures detectable.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from costcontrol_kernel.db.base import TrackedBase


class CertificationModel(TrackedBase):
    """
    A progress certification (billing period) of a project.

    Maps to the ``Certification`` DTO.
    """

    __tablename__ = "certifications"

    __table_args__ = (
        UniqueConstraint("project_id", "number", name="uq_certification_project_number"),
        Index("idx_certification_project", "project_id"),
        Index("idx_certification_status", "status"),
    )

    project_id: Mapped[UUID] = mapped_column(ForeignKey("projects.id"), nullable=False)
    version_id: Mapped[UUID] = mapped_column(ForeignKey("budget_versions.id"), nullable=False)
    number: Mapped[int]
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    integrity_seal: Mapped[str | None] = mapped_column(String(64), nullable=True)
    previous_seal: Mapped[str | None] = mapped_column(String(64), nullable=True)

    issued_date: Mapped[datetime | None] = mapped_column(nullable=True)
    issued_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["CertificationLineModel"]] = relationship(
        "CertificationLineModel",
        back_populates="certification",
        cascade="all, delete-orphan",
    )

    def to_dto(self):
        from costcontrol_modules.certification.models import (
            Certification,
            CertificationStatus,
        )

        return Certification(
            id=self.id,
            project_id=self.project_id,
            version_id=self.version_id,
            number=self.number,
            period_month=self.period_month,
            period_year=self.period_year,
            status=CertificationStatus(self.status),
            integrity_seal=self.integrity_seal,
            previous_seal=self.previous_seal,
            issued_date=self.issued_date,
            issued_by_id=self.issued_by_id,
            approved_by_id=self.approved_by_id,
            decided_at=self.decided_at,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<CertificationModel #{self.number} {self.period_year}-{self.period_month:02d} [{self.status}]>"


class CertificationLineModel(TrackedBase):
    """
    One budget line billed by a certification.

    Maps to the ``CertificationLine`` DTO.
    """

    __tablename__ = "certification_lines"

    __table_args__ = (
        UniqueConstraint(
            "certification_id", "budget_line_id",
            name="uq_certification_line_budget_line",
        ),
        Index("idx_certification_line_certification", "certification_id"),
        Index("idx_certification_line_budget_line", "budget_line_id"),
    )

    certification_id: Mapped[UUID] = mapped_column(
        ForeignKey("certifications.id"), nullable=False
    )
    budget_line_id: Mapped[UUID] = mapped_column(ForeignKey("budget_lines.id"), nullable=False)
    wbs_node_id: Mapped[UUID] = mapped_column(ForeignKey("wbs_nodes.id"), nullable=False)

    contractual_qty_snapshot: Mapped[Decimal]
    unit_price_snapshot: Mapped[Decimal]

    prev_progress_pct: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    period_progress_pct: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_progress_pct: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    prev_qty: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    period_qty: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_qty: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    remaining_qty: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    prev_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    period_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    certification: Mapped["CertificationModel"] = relationship(
        "CertificationModel",
        back_populates="lines",
    )

    def apply_figures(self, figures) -> None:
        """Copy a ``CertificationLineFigures`` onto this row."""
        self.budget_line_id = figures.budget_line_id
        self.wbs_node_id = figures.wbs_node_id
        self.contractual_qty_snapshot = figures.contractual_qty_snapshot
        self.unit_price_snapshot = figures.unit_price_snapshot
        self.prev_progress_pct = figures.prev_progress_pct
        self.period_progress_pct = figures.period_progress_pct
        self.total_progress_pct = figures.total_progress_pct
        self.prev_qty = figures.prev_qty
        self.period_qty = figures.period_qty
        self.total_qty = figures.total_qty
        self.remaining_qty = figures.remaining_qty
        self.prev_amount = figures.prev_amount
        self.period_amount = figures.period_amount
        self.total_amount = figures.total_amount

    def to_seal_line(self):
        from costcontrol_engines.seal import SealLine

        return SealLine(
            line_id=self.id,
            budget_line_id=self.budget_line_id,
            total_progress_pct=self.total_progress_pct,
            total_qty=self.total_qty,
            period_amount=self.period_amount,
            total_amount=self.total_amount,
        )

    def to_dto(self):
        from costcontrol_modules.certification.models import CertificationLine

        return CertificationLine(
            id=self.id,
            certification_id=self.certification_id,
            budget_line_id=self.budget_line_id,
            wbs_node_id=self.wbs_node_id,
            contractual_qty_snapshot=self.contractual_qty_snapshot,
            unit_price_snapshot=self.unit_price_snapshot,
            prev_progress_pct=self.prev_progress_pct,
            period_progress_pct=self.period_progress_pct,
            total_progress_pct=self.total_progress_pct,
            prev_qty=self.prev_qty,
            period_qty=self.period_qty,
            total_qty=self.total_qty,
            remaining_qty=self.remaining_qty,
            prev_amount=self.prev_amount,
            period_amount=self.period_amount,
            total_amount=self.total_amount,
        )

    def __repr__(self) -> str:
        return f"<CertificationLineModel {self.budget_line_id} {self.total_progress_pct}%>"
