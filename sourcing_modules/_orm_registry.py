"""
Module ORM Registry (``sourcing_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy ORM model is imported so that ``Base.metadata``
holds its table definition before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  Called lazily from
``sourcing_kernel.db.engine.create_tables``; the kernel never imports it at
module load time.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``sourcing_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    import sourcing_kernel.models  # noqa: F401
    # fmt: off
    import sourcing_modules.requisitions.orm  # noqa: F401
    import sourcing_modules.quotations.orm  # noqa: F401
    import sourcing_modules.purchase_orders.orm  # noqa: F401
    import sourcing_modules.receiving.orm  # noqa: F401
    # fmt: on
