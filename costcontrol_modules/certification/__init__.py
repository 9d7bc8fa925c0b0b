"""
Certification Module (``costcontrol_modules.certification``).

Responsibility
--------------
Periodic progress certifications billed against a locked budget version:
per-line previous / period / cumulative progress, quantities and amounts,
the draft -> issued -> approved | rejected lifecycle, and the SHA-256
integrity seal chained across a project's certifications.

Architecture position
---------------------
**Modules layer** -- ``CertificationService`` writes (owning the
transaction), ``CertificationSelector`` reads; billing math and sealing
live in ``costcontrol_engines``.

Failure modes
-------------
* ``StateTransitionError`` for a DRAFT version, a second open draft, or a
  transition outside the workflow.
* ``ImmutableCertificationError`` for edits after issue.
* ``IntegrityError`` when stored figures no longer match the seal.
"""

from costcontrol_modules.certification.models import (
    COUNTED_STATUSES,
    Certification,
    CertificationDetail,
    CertificationLine,
    CertificationStatus,
)
from costcontrol_modules.certification.workflows import CERTIFICATION_WORKFLOW

__all__ = [
    "COUNTED_STATUSES",
    "Certification",
    "CertificationDetail",
    "CertificationLine",
    "CertificationStatus",
    "CERTIFICATION_WORKFLOW",
]
