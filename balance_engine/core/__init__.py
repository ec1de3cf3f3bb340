"""Core Layer — domain types, error taxonomy, and pure retry arithmetic.

Invariants:
    - No module in core/ imports from services/, api/, or infrastructure/
    - Functions here are pure; no IO and no awaits

Design Decisions:
    - Functional core separated from the async shell that talks to the database
"""
