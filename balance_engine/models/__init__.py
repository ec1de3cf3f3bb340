"""ORM Models — SQLAlchemy declarative models for accounts and their audit trail.

Invariants:
    - All models inherit from Base (db/base.py)
    - Account is the only mutable row; Transaction rows are append-only

Design Decisions:
    - One file per entity
    - All models imported here so Base.metadata is complete for create_all and Alembic
"""

from balance_engine.models.account import Account  # noqa: F401
from balance_engine.models.transaction import Transaction  # noqa: F401
