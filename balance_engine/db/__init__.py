"""Database Metadata — SQLAlchemy declarative base.

Invariants:
    - Schema changes ship as Alembic revisions; Base.metadata mirrors the latest one
"""
