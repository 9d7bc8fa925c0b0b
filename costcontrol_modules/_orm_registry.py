"""
Module ORM Registry (``costcontrol_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy model is imported so that ``Base.metadata``
contains its table before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  ``costcontrol_kernel.db.engine.create_tables``
imports it lazily; nothing else in the kernel may.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``costcontrol_modules.*.orm`` module.

    Kernel tables come first because module tables reference ``projects``.
    Idempotent.
    """
    import costcontrol_kernel.models  # noqa: F401
    import costcontrol_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    # fmt: off
    import costcontrol_modules.wbs.orm  # noqa: F401
    import costcontrol_modules.budget.orm  # noqa: F401
    import costcontrol_modules.certification.orm  # noqa: F401
    # fmt: on
