"""
Database access for the credential lifecycle manager.

This module provides the connection producer, the connection guard and the
transactional statement executor.
"""

from .connection_guard import ConnectionGuard
from .db_config import ConnectionConfig, ConnectionProducer, parse_duration
from .transaction import StatementRunner, execute_statements, interrupt_connection, transaction

__all__ = [
    "ConnectionConfig",
    "ConnectionGuard",
    "ConnectionProducer",
    "StatementRunner",
    "execute_statements",
    "interrupt_connection",
    "parse_duration",
    "transaction",
]
