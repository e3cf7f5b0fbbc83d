"""Database layer - engine, base classes and the optimistic version mixin."""

from sourcing_kernel.db.base import Base, TrackedBase, UUIDString, VersionedMixin
from sourcing_kernel.db.engine import build_engine, create_tables, drop_tables, make_session_factory

__all__ = [
    "build_engine",
    "make_session_factory",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "VersionedMixin",
    "UUIDString",
]
