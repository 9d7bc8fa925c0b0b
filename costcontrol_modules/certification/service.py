"""
Certification Module Service (``costcontrol_modules.certification.service``).

Responsibility
--------------
Orchestrates progress certifications against a locked budget version:
creation with gap-free numbering, progress edits while DRAFT, discarding
a DRAFT, issue with the chained integrity seal, approval or rejection,
and seal verification.

Architecture position
---------------------
**Modules layer**.  ``CertificationService`` is the sole write entry point
for certifications.  Billing math is delegated to
``ProgressBillingCalculator``, sealing to ``compute_seal``, numbering to
the kernel ``SequenceService`` and events to ``OutboxPublisher``.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on
  success, ``rollback`` and re-raise on failure).
* Only BASELINE or APPROVED versions are billed.
* One DRAFT certification per project.  Creation takes the project's
  certification counter row lock before checking, so two concurrent
  creations serialize.
* Prior progress comes from the latest ISSUED or APPROVED certification;
  DRAFT and REJECTED ones never count.
* A certification's period is never earlier than the latest counted one.
* Issued certifications are frozen; only the approve/reject decision is
  recorded on them afterwards.
* A discarded DRAFT gives its number back when it is the newest.

Failure modes
-------------
* ``StateTransitionError`` -- DRAFT version, second DRAFT, transition
  outside the workflow, no lines at issue.
* ``ImmutableCertificationError`` -- edit or delete of a non-DRAFT certification.
* ``ValidationError`` -- bad period, progress outside [0, 100], unknown
  budget line.
* ``AuthorizationError`` -- approval or rejection denied by the policy.
* ``ConcurrencyConflictError`` -- ``(project_id, number)`` collision.
* ``IntegrityError`` -- stored figures no longer match the seal.

Audit relevance
---------------
``certification.issued`` / ``.approved`` / ``.rejected`` outbox rows are
written with the status change.  Seal mismatches are logged at ERROR
with both hashes and never corrected.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.orm import Session

from costcontrol_engines.progress_billing import (
    NO_PRIOR_PROGRESS,
    LineBaseline,
    PriorProgress,
    ProgressBillingCalculator,
    unit_price_snapshot,
)
from costcontrol_engines.seal import compute_seal
from costcontrol_kernel.db.types import as_decimal
from costcontrol_kernel.domain.access import AccessPolicy
from costcontrol_kernel.domain.clock import Clock, SystemClock
from costcontrol_kernel.domain.identity import IdGenerator, UUID4Generator
from costcontrol_kernel.exceptions import (
    AuthorizationError,
    ConcurrencyConflictError,
    ImmutableCertificationError,
    IntegrityError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from costcontrol_kernel.logging_config import LogContext, get_logger
from costcontrol_kernel.services.outbox_service import OutboxPublisher
from costcontrol_kernel.services.project_service import ProjectService
from costcontrol_kernel.services.sequence_service import (
    SequenceService,
    certification_sequence,
)
from costcontrol_modules.budget.models import BILLABLE_STATUSES, VersionStatus
from costcontrol_modules.budget.orm import BudgetLineModel, BudgetVersionModel
from costcontrol_modules.certification.models import (
    COUNTED_STATUSES,
    CertificationDetail,
    CertificationStatus,
)
from costcontrol_modules.certification.orm import CertificationLineModel, CertificationModel
from costcontrol_modules.certification.selector import CertificationSelector
from costcontrol_modules.certification.workflows import (
    CERTIFICATION_WORKFLOW,
    HAS_CERTIFICATION_LINES,
)

logger = get_logger("modules.certification.service")


def _check_period(month: int, year: int) -> None:
    if not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError("period_month", month, "month must be between 1 and 12")
    if not isinstance(year, int) or not 1900 <= year <= 9999:
        raise ValidationError("period_year", year, "year is out of range")


class CertificationService:
    """
    Orchestrates certification creation, issue and decision.

    Contract
    --------
    * Public write methods return ``CertificationDetail`` DTOs.
    * ``progress_by_line`` maps budget line id -> this period's progress
      percentage.  Lines not mentioned bill 0% this period.

    Guarantees
    ----------
    * Session is committed only when the whole operation succeeds; a
      failed creation therefore returns its number to the counter.
    * Clock and id generator are injectable for deterministic tests.

    Non-goals
    ---------
    * Does NOT resolve actor roles (delegated to ``AccessPolicy``).
    * Does NOT re-seal or repair a certification that fails verification.
    """

    def __init__(
        self,
        session: Session,
        access_policy: AccessPolicy,
        clock: Clock | None = None,
        id_generator: IdGenerator | None = None,
    ):
        self._session = session
        self._access = access_policy
        self._clock = clock or SystemClock()
        self._ids = id_generator or UUID4Generator()
        self._projects = ProjectService(session)
        self._sequences = SequenceService(session)
        self._outbox = OutboxPublisher(session, clock=self._clock, id_generator=self._ids)
        self._selector = CertificationSelector(session)
        self._billing = ProgressBillingCalculator()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _lock_certification(self, certification_id: UUID) -> CertificationModel:
        cert = self._session.execute(
            select(CertificationModel)
            .where(CertificationModel.id == certification_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if cert is None:
            raise NotFoundError("Certification", str(certification_id))
        return cert

    def _require_draft(self, cert: CertificationModel) -> None:
        if cert.status != CertificationStatus.DRAFT.value:
            raise ImmutableCertificationError(str(cert.id), cert.status)

    def _lines_of(self, certification_id: UUID) -> list[CertificationLineModel]:
        return list(
            self._session.execute(
                select(CertificationLineModel)
                .where(CertificationLineModel.certification_id == certification_id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _latest_counted(
        self, project_id: UUID, exclude_id: UUID | None = None
    ) -> CertificationModel | None:
        stmt = select(CertificationModel).where(
            CertificationModel.project_id == project_id,
            CertificationModel.status.in_([s.value for s in COUNTED_STATUSES]),
        )
        if exclude_id is not None:
            stmt = stmt.where(CertificationModel.id != exclude_id)
        return self._session.execute(
            stmt.order_by(CertificationModel.number.desc()).limit(1)
        ).scalar_one_or_none()

    def _check_period_order(
        self, project_id: UUID, month: int, year: int, exclude_id: UUID | None = None
    ) -> None:
        latest = self._latest_counted(project_id, exclude_id)
        if latest is not None and (year, month) < (latest.period_year, latest.period_month):
            raise ValidationError(
                "period",
                f"{year}-{month:02d}",
                f"earlier than certification #{latest.number} "
                f"({latest.period_year}-{latest.period_month:02d})",
            )

    def _billable_version(self, project_id: UUID, version_id: UUID) -> BudgetVersionModel:
        version = self._session.get(BudgetVersionModel, version_id)
        if version is None:
            raise NotFoundError("BudgetVersion", str(version_id))
        if version.project_id != project_id:
            raise ValidationError("version_id", version_id, "version belongs to another project")
        if VersionStatus(version.status) not in BILLABLE_STATUSES:
            raise StateTransitionError(
                "BudgetVersion",
                str(version_id),
                version.status,
                "certified",
                "only baselined or approved versions can be certified",
            )
        return version

    def _baselines(self, version_id: UUID) -> list[LineBaseline]:
        lines = self._session.execute(
            select(BudgetLineModel)
            .where(BudgetLineModel.version_id == version_id)
            .order_by(BudgetLineModel.sort_order, BudgetLineModel.id)
        ).scalars()
        return [
            LineBaseline(
                budget_line_id=line.id,
                wbs_node_id=line.wbs_node_id,
                contractual_qty=line.quantity,
                unit_price=unit_price_snapshot(line.sale_price_total, line.quantity),
            )
            for line in lines
        ]

    @staticmethod
    def _progress(progress_by_line: Mapping[UUID, Decimal] | None) -> dict[UUID, Decimal]:
        return {
            line_id: as_decimal(pct) for line_id, pct in (progress_by_line or {}).items()
        }

    def _rebill(
        self,
        cert: CertificationModel,
        lines: list[CertificationLineModel],
        progress: Mapping[UUID, Decimal],
    ) -> None:
        """
        Recompute lines from their snapshots and the current prior progress.

        ``progress`` overrides the stored period percentage per budget line.
        """
        by_budget_line = {line.budget_line_id: line for line in lines}
        unknown = sorted(str(i) for i in progress if i not in by_budget_line)
        if unknown:
            raise ValidationError(
                "budget_line_id", unknown[0], "line is not part of this certification"
            )
        priors = self._selector.get_prev_progress(cert.project_id, by_budget_line)
        for budget_line_id, line in by_budget_line.items():
            figures = self._billing.bill_line(
                baseline=LineBaseline(
                    budget_line_id=budget_line_id,
                    wbs_node_id=line.wbs_node_id,
                    contractual_qty=line.contractual_qty_snapshot,
                    unit_price=line.unit_price_snapshot,
                ),
                prior=priors.get(budget_line_id, NO_PRIOR_PROGRESS),
                period_progress_pct=progress.get(budget_line_id, line.period_progress_pct),
            )
            line.apply_figures(figures)

    def _detail(self, certification_id: UUID) -> CertificationDetail:
        return self._selector.get_certification_detail(certification_id)

    # =========================================================================
    # Create / edit
    # =========================================================================

    def create_certification(
        self,
        project_id: UUID,
        version_id: UUID,
        period_month: int,
        period_year: int,
        actor_id: UUID,
        progress_by_line: Mapping[UUID, Decimal] | None = None,
        notes: str | None = None,
    ) -> CertificationDetail:
        """
        Create the project's next DRAFT certification against ``version_id``.

        Every line of the version is billed; lines absent from
        ``progress_by_line`` bill 0% this period.
        """
        try:
            with LogContext.bind(project_id=project_id, version_id=version_id, actor_id=actor_id):
                self._projects.get_project(project_id)
                self._billable_version(project_id, version_id)
                _check_period(period_month, period_year)
                progress = self._progress(progress_by_line)

                # The counter row lock serializes creation per project
                number = self._sequences.next_value(certification_sequence(project_id))

                open_draft = self._session.execute(
                    select(CertificationModel).where(
                        CertificationModel.project_id == project_id,
                        CertificationModel.status == CertificationStatus.DRAFT.value,
                    )
                ).scalars().first()
                if open_draft is not None:
                    raise StateTransitionError(
                        "Certification",
                        str(open_draft.id),
                        open_draft.status,
                        CertificationStatus.DRAFT.value,
                        f"certification #{open_draft.number} is still a draft; "
                        "issue it before starting another",
                    )
                self._check_period_order(project_id, period_month, period_year)

                baselines = self._baselines(version_id)
                priors: dict[UUID, PriorProgress] = self._selector.get_prev_progress(
                    project_id, [b.budget_line_id for b in baselines]
                )
                figures = self._billing.bill_lines(baselines, priors, progress)

                cert = CertificationModel(
                    id=self._ids.new_id(),
                    project_id=project_id,
                    version_id=version_id,
                    number=number,
                    period_month=period_month,
                    period_year=period_year,
                    status=CertificationStatus.DRAFT.value,
                    notes=notes,
                    created_by_id=actor_id,
                )
                for line_figures in figures:
                    line = CertificationLineModel(id=self._ids.new_id(), created_by_id=actor_id)
                    line.apply_figures(line_figures)
                    cert.lines.append(line)
                self._session.add(cert)
                try:
                    self._session.flush()
                except DBIntegrityError as exc:
                    raise ConcurrencyConflictError(
                        "Certification",
                        f"{project_id}#{number}",
                        "certification number already taken",
                    ) from exc

                detail = self._detail(cert.id)
                self._session.commit()
                logger.info("certification_created", extra={
                    "certification_id": str(cert.id),
                    "number": number,
                    "period": f"{period_year}-{period_month:02d}",
                    "line_count": len(figures),
                    "period_amount_total": str(detail.period_amount_total),
                })
                return detail
        except Exception:
            self._session.rollback()
            raise

    def update_line_progress(
        self,
        certification_id: UUID,
        actor_id: UUID,
        progress_by_line: Mapping[UUID, Decimal],
    ) -> CertificationDetail:
        """Change period percentages of a DRAFT certification and recompute."""
        try:
            cert = self._lock_certification(certification_id)
            self._require_draft(cert)
            lines = self._lines_of(certification_id)
            self._rebill(cert, lines, self._progress(progress_by_line))
            for line in lines:
                line.updated_by_id = actor_id
            cert.updated_by_id = actor_id
            self._session.flush()
            detail = self._detail(certification_id)
            self._session.commit()
            logger.info("certification_progress_updated", extra={
                "certification_id": str(certification_id),
                "updated_lines": len(progress_by_line),
                "period_amount_total": str(detail.period_amount_total),
            })
            return detail
        except Exception:
            self._session.rollback()
            raise

    def update_certification(
        self,
        certification_id: UUID,
        actor_id: UUID,
        notes: str | None = None,
        period_month: int | None = None,
        period_year: int | None = None,
    ) -> CertificationDetail:
        """Edit notes or period of a DRAFT certification."""
        try:
            cert = self._lock_certification(certification_id)
            self._require_draft(cert)
            if period_month is not None or period_year is not None:
                month = period_month if period_month is not None else cert.period_month
                year = period_year if period_year is not None else cert.period_year
                _check_period(month, year)
                self._check_period_order(cert.project_id, month, year, exclude_id=cert.id)
                cert.period_month = month
                cert.period_year = year
            if notes is not None:
                cert.notes = notes
            cert.updated_by_id = actor_id
            self._session.flush()
            detail = self._detail(certification_id)
            self._session.commit()
            logger.info("certification_updated", extra={
                "certification_id": str(certification_id),
            })
            return detail
        except Exception:
            self._session.rollback()
            raise

    def delete_certification(self, certification_id: UUID, actor_id: UUID) -> None:
        """
        Discard a DRAFT certification and its lines.

        Its number goes back to the project counter when it is the newest,
        so the next certification reuses it.
        """
        try:
            with LogContext.bind(certification_id=certification_id, actor_id=actor_id):
                cert = self._lock_certification(certification_id)
                self._require_draft(cert)
                project_id, number = cert.project_id, cert.number
                self._session.delete(cert)
                self._session.flush()
                released = self._sequences.release(
                    certification_sequence(project_id), number
                )
                self._session.commit()
                logger.info("certification_deleted", extra={
                    "project_id": str(project_id),
                    "number": number,
                    "number_released": released,
                })
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _transition(self, cert: CertificationModel, target: CertificationStatus, actor_id: UUID):
        transition = CERTIFICATION_WORKFLOW.find_transition(cert.status, target.value)
        if transition is None:
            raise StateTransitionError(
                "Certification",
                str(cert.id),
                cert.status,
                target.value,
                "transition not allowed",
            )
        if transition.requires_authorization and not self._access.is_authorized_for(
            actor_id, transition.authorization_action
        ):
            raise AuthorizationError(str(actor_id), transition.authorization_action)
        return transition

    def issue_certification(self, certification_id: UUID, actor_id: UUID) -> CertificationDetail:
        """
        DRAFT -> ISSUED: refresh prior progress, stamp, seal, freeze.

        The seal chains onto the previous sealed certification of the
        project, or the project salt for the first one.
        """
        try:
            with LogContext.bind(certification_id=certification_id, actor_id=actor_id):
                cert = self._lock_certification(certification_id)
                transition = self._transition(cert, CertificationStatus.ISSUED, actor_id)
                lines = self._lines_of(certification_id)
                if transition.guard is HAS_CERTIFICATION_LINES and not lines:
                    raise StateTransitionError(
                        "Certification",
                        str(cert.id),
                        cert.status,
                        CertificationStatus.ISSUED.value,
                        "a certification without lines cannot be issued",
                    )
                self._rebill(cert, lines, {})
                # Lines are written while the parent is still DRAFT
                self._session.flush()

                previous = self._session.execute(
                    select(CertificationModel.integrity_seal)
                    .where(
                        CertificationModel.project_id == cert.project_id,
                        CertificationModel.number < cert.number,
                        CertificationModel.integrity_seal.is_not(None),
                    )
                    .order_by(CertificationModel.number.desc())
                    .limit(1)
                ).scalar_one_or_none()
                if previous is None:
                    previous = self._projects.get_project(cert.project_id).seal_salt

                seal = compute_seal(
                    certification_id=cert.id,
                    number=cert.number,
                    previous_seal=previous,
                    lines=[line.to_seal_line() for line in lines],
                )
                cert.status = CertificationStatus.ISSUED.value
                cert.previous_seal = previous
                cert.integrity_seal = seal
                cert.issued_date = self._clock.now()
                cert.issued_by_id = actor_id
                cert.updated_by_id = actor_id
                self._session.flush()

                detail = self._detail(certification_id)
                self._outbox.publish(
                    event_type=transition.event_type,
                    entity_type="certification",
                    entity_id=cert.id,
                    payload={
                        "certification_id": cert.id,
                        "number": cert.number,
                        "version_id": cert.version_id,
                        "period_month": cert.period_month,
                        "period_year": cert.period_year,
                        "period_amount_total": detail.period_amount_total,
                        "total_amount_total": detail.total_amount_total,
                        "integrity_seal": seal,
                    },
                    project_id=cert.project_id,
                    actor_id=actor_id,
                )
                self._session.commit()
                logger.info("certification_issued", extra={
                    "number": cert.number,
                    "integrity_seal": seal,
                    "period_amount_total": str(detail.period_amount_total),
                })
                return detail
        except Exception:
            self._session.rollback()
            raise

    def approve_certification(
        self, certification_id: UUID, actor_id: UUID, notes: str | None = None
    ) -> CertificationDetail:
        """ISSUED -> APPROVED.  Needs ``certification.approve``."""
        return self._decide(certification_id, CertificationStatus.APPROVED, actor_id, notes)

    def reject_certification(
        self, certification_id: UUID, actor_id: UUID, notes: str | None = None
    ) -> CertificationDetail:
        """
        ISSUED -> REJECTED.  Needs ``certification.reject``.

        The certification stays in history and in the seal chain but no
        longer counts as prior progress.
        """
        return self._decide(certification_id, CertificationStatus.REJECTED, actor_id, notes)

    def _decide(
        self,
        certification_id: UUID,
        target: CertificationStatus,
        actor_id: UUID,
        notes: str | None,
    ) -> CertificationDetail:
        try:
            with LogContext.bind(certification_id=certification_id, actor_id=actor_id):
                cert = self._lock_certification(certification_id)
                transition = self._transition(cert, target, actor_id)
                cert.status = target.value
                cert.approved_by_id = actor_id
                cert.decided_at = self._clock.now()
                if notes:
                    cert.notes = f"{cert.notes}\n{notes}" if cert.notes else notes
                cert.updated_by_id = actor_id
                self._session.flush()
                self._outbox.publish(
                    event_type=transition.event_type,
                    entity_type="certification",
                    entity_id=cert.id,
                    payload={
                        "certification_id": cert.id,
                        "number": cert.number,
                        "status": target.value,
                        "integrity_seal": cert.integrity_seal,
                    },
                    project_id=cert.project_id,
                    actor_id=actor_id,
                )
                detail = self._detail(certification_id)
                self._session.commit()
                logger.info(transition.event_type.replace(".", "_"), extra={
                    "number": cert.number,
                })
                return detail
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Verification (read-only)
    # =========================================================================

    def verify_seal(self, certification_id: UUID) -> str:
        """
        Recompute the seal from stored rows and compare.

        Returns:
            The verified seal.

        Raises:
            StateTransitionError: the certification was never issued.
            IntegrityError: stored figures no longer match the seal.
        """
        cert = self._session.execute(
            select(CertificationModel)
            .where(CertificationModel.id == certification_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if cert is None:
            raise NotFoundError("Certification", str(certification_id))
        if cert.integrity_seal is None or cert.previous_seal is None:
            raise StateTransitionError(
                "Certification",
                str(cert.id),
                cert.status,
                "verified",
                "certification has not been issued",
            )
        recomputed = compute_seal(
            certification_id=cert.id,
            number=cert.number,
            previous_seal=cert.previous_seal,
            lines=[line.to_seal_line() for line in self._lines_of(cert.id)],
        )
        if recomputed != cert.integrity_seal:
            logger.error("certification_seal_mismatch", extra={
                "certification_id": str(cert.id),
                "number": cert.number,
                "stored_seal": cert.integrity_seal,
                "recomputed_seal": recomputed,
            })
            raise IntegrityError(str(cert.id), cert.integrity_seal, recomputed)
        logger.info("certification_seal_verified", extra={
            "certification_id": str(cert.id), "number": cert.number,
        })
        return recomputed

    def verify_project_chain(self, project_id: UUID) -> int:
        """
        Verify every sealed certification of a project and the links between them.

        Returns:
            Number of certifications verified.
        """
        link = self._projects.get_project(project_id).seal_salt
        sealed = self._session.execute(
            select(CertificationModel)
            .where(
                CertificationModel.project_id == project_id,
                CertificationModel.integrity_seal.is_not(None),
            )
            .order_by(CertificationModel.number)
            .execution_options(populate_existing=True)
        ).scalars().all()
        for cert in sealed:
            if cert.previous_seal != link:
                logger.error("certification_chain_broken", extra={
                    "certification_id": str(cert.id),
                    "number": cert.number,
                    "expected_previous_seal": link,
                    "stored_previous_seal": cert.previous_seal,
                })
                raise IntegrityError(str(cert.id), link, cert.previous_seal or "")
            self.verify_seal(cert.id)
            link = cert.integrity_seal
        return len(sealed)
