"""Boundary Protocols — contracts between the balance services and the storage shell.

Invariants:
    - Services never construct engines or sessions themselves
    - Every logical attempt opens its own session through a SessionFactory

Design Decisions:
    - Protocol over ABC: DatabaseSessionManager.session and plain test factories
      both satisfy it structurally
"""

from contextlib import AbstractAsyncContextManager
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession


class SessionFactory(Protocol):
    """Callable returning an async context manager that yields an AsyncSession."""
    def __call__(self) -> AbstractAsyncContextManager[AsyncSession]: ...
