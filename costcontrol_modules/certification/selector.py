"""
CertificationSelector -- read-only certification history.

Responsibility:
    Lists certifications, returns one certification with its lines and
    stored totals, and answers the prior-progress question the billing
    engine needs: for each budget line, the cumulative figures of the
    latest ISSUED or APPROVED certification line.

Architecture position:
    Modules > Certification.  Extends ``BaseSelector``; never writes.

Invariants:
    - DRAFT certifications never count as prior progress.
    - REJECTED certifications are skipped by the prior-progress lookup
      but stay in every listing.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select

from costcontrol_engines.progress_billing import PriorProgress
from costcontrol_kernel.db.types import ZERO
from costcontrol_kernel.exceptions import NotFoundError
from costcontrol_kernel.selectors.base import BaseSelector
from costcontrol_modules.budget.orm import BudgetLineModel
from costcontrol_modules.certification.models import (
    COUNTED_STATUSES,
    Certification,
    CertificationDetail,
    CertificationStatus,
)
from costcontrol_modules.certification.orm import CertificationLineModel, CertificationModel


class CertificationSelector(BaseSelector):
    """Query certifications and prior progress."""

    def list_certifications(
        self,
        project_id: UUID,
        status: CertificationStatus | None = None,
    ) -> list[Certification]:
        """Certifications of a project by number."""
        stmt = select(CertificationModel).where(CertificationModel.project_id == project_id)
        if status is not None:
            stmt = stmt.where(CertificationModel.status == CertificationStatus(status).value)
        rows = self.session.execute(stmt.order_by(CertificationModel.number)).scalars()
        return [row.to_dto() for row in rows]

    def get_certification(self, certification_id: UUID) -> Certification:
        cert = self.session.get(CertificationModel, certification_id)
        if cert is None:
            raise NotFoundError("Certification", str(certification_id))
        return cert.to_dto()

    def get_certification_detail(self, certification_id: UUID) -> CertificationDetail:
        """Header plus lines in budget-line order, with summed stored amounts."""
        cert = self.session.get(CertificationModel, certification_id)
        if cert is None:
            raise NotFoundError("Certification", str(certification_id))
        rows = self.session.execute(
            select(CertificationLineModel)
            .join(BudgetLineModel, BudgetLineModel.id == CertificationLineModel.budget_line_id)
            .where(CertificationLineModel.certification_id == certification_id)
            .order_by(BudgetLineModel.sort_order, BudgetLineModel.id)
        ).scalars()
        lines = tuple(row.to_dto() for row in rows)
        return CertificationDetail(
            certification=cert.to_dto(),
            lines=lines,
            period_amount_total=sum((line.period_amount for line in lines), ZERO),
            total_amount_total=sum((line.total_amount for line in lines), ZERO),
        )

    def get_prev_progress(
        self,
        project_id: UUID,
        budget_line_ids: Iterable[UUID],
    ) -> dict[UUID, PriorProgress]:
        """
        Latest counted cumulative figures per budget line.

        Lines never certified (or only in DRAFT/REJECTED certifications)
        are absent from the result; callers treat them as zero.
        """
        ids = list(budget_line_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(
                CertificationLineModel.budget_line_id,
                CertificationLineModel.total_progress_pct,
                CertificationLineModel.total_qty,
                CertificationLineModel.total_amount,
            )
            .join(
                CertificationModel,
                CertificationModel.id == CertificationLineModel.certification_id,
            )
            .where(
                CertificationModel.project_id == project_id,
                CertificationModel.status.in_([s.value for s in COUNTED_STATUSES]),
                CertificationLineModel.budget_line_id.in_(ids),
            )
            .order_by(CertificationModel.number.desc())
        ).all()

        prior: dict[UUID, PriorProgress] = {}
        for budget_line_id, pct, qty, amount in rows:
            if budget_line_id not in prior:
                prior[budget_line_id] = PriorProgress(progress_pct=pct, qty=qty, amount=amount)
        return prior

