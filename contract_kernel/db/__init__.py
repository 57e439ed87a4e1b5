"""Database layer - engine, base classes and append-only enforcement."""

from contract_kernel.db.base import UUID, Base, TenantScopedBase, TrackedBase, UTCDateTime, UUIDString
from contract_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TenantScopedBase",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
]
