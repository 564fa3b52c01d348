"""Persistence plumbing for the identity core."""

from .connection import (
    build_engine,
    create_session_factory,
    init_schema,
    joined_scope,
    run_in_transaction,
    session_scope,
)

__all__ = [
    "build_engine",
    "create_session_factory",
    "init_schema",
    "joined_scope",
    "run_in_transaction",
    "session_scope",
]
