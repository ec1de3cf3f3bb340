"""Infrastructure Layer — database session management and structured logging.

Invariants:
    - Infrastructure never imports from services/ or api/
    - SQLAlchemy failures leave this layer as core.errors.DatabaseError
"""
