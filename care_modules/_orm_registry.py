"""
Module ORM Registry (``care_modules._orm_registry``).

Ensures every SQLAlchemy ORM model is imported so that ``Base.metadata``
contains its table before ``create_all()`` runs.  Scripts, the API
lifespan and ``tests/conftest.py`` all go through
``care_kernel.db.engine.create_tables()``, which calls this first.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``care_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    import care_kernel.models  # noqa: F401
    # fmt: off
    import care_modules.billing.orm  # noqa: F401
    import care_modules.budget.orm  # noqa: F401
    import care_modules.family_portal.orm  # noqa: F401
    import care_modules.ledger.orm  # noqa: F401
    import care_modules.medication.orm  # noqa: F401
    import care_modules.payroll.orm  # noqa: F401
    import care_modules.pilot_feedback.orm  # noqa: F401
    import care_modules.residents.orm  # noqa: F401
    import care_ingestion.models  # noqa: F401
    # fmt: on
