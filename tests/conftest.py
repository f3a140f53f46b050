"""
Shared test fixtures.

This module provides:
- Reset of process-wide config, logging and secret state
- A connection producer over a SQLite in-memory database
- Statement capture through SQLAlchemy events
- Service fixtures wired to SQLite or to connection doubles
"""

from typing import List
from unittest.mock import Mock

import pytest
from sqlalchemy import event
from sqlalchemy.engine import Connection

from dynamic_db_credentials.config import reset_config
from dynamic_db_credentials.db.connection_guard import ConnectionGuard
from dynamic_db_credentials.db.db_config import ConnectionProducer
from dynamic_db_credentials.exceptions import clear_correlation_id
from dynamic_db_credentials.services.credential_service import CredentialLifecycleService
from dynamic_db_credentials.services.revocation_policy import DefaultRevocationPolicy
from dynamic_db_credentials.utils.logger import reset_logging
from dynamic_db_credentials.utils.redaction import registered_secrets, unregister_secret
from tests.helpers import (
    ACCOUNTS_DDL,
    ADMIN_PASSWORD,
    OBJECTS_DDL,
    PING_STATEMENT,
    SQLITE_STATEMENTS,
    fixed_random,
)

# ==================== GLOBAL STATE ====================


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset config, logger, correlation id and registered secrets around every test."""
    reset_config()
    reset_logging()
    clear_correlation_id()
    yield
    reset_config()
    reset_logging()
    clear_correlation_id()
    for secret in registered_secrets():
        unregister_secret(secret)


# ==================== DATABASE FIXTURES ====================


@pytest.fixture(scope="function")
def producer() -> ConnectionProducer:
    """Connection producer over a fresh SQLite in-memory database with the test schema."""
    producer = ConnectionProducer()
    producer.initialize(
        {"connection_url": "sqlite://", "password": ADMIN_PASSWORD}, verify_connection=False
    )

    @event.listens_for(producer.engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    connection = producer.connection()
    with connection.begin():
        connection.exec_driver_sql(ACCOUNTS_DDL)
        connection.exec_driver_sql(OBJECTS_DDL)

    yield producer

    producer.close()


@pytest.fixture(scope="function")
def connection(producer: ConnectionProducer) -> Connection:
    """The producer's live connection."""
    return producer.connection()


@pytest.fixture(scope="function")
def executed_statements(producer: ConnectionProducer) -> List[str]:
    """
    Statements sent to the database from the moment the fixture is set up.

    Health-check pings are left out. Tests that read rows back should copy the
    list before doing so.
    """
    statements: List[str] = []

    def capture(conn, cursor, statement, parameters, context, executemany):
        if statement != PING_STATEMENT:
            statements.append(statement)

    event.listen(producer.engine, "before_cursor_execute", capture)
    yield statements
    if producer.engine is not None:
        event.remove(producer.engine, "before_cursor_execute", capture)


# ==================== SERVICE FIXTURES ====================


@pytest.fixture(scope="function")
def service(producer: ConnectionProducer) -> CredentialLifecycleService:
    """Lifecycle service wired to the SQLite producer with SQLite-compatible defaults."""
    return CredentialLifecycleService(
        producer=producer,
        guard=ConnectionGuard(),
        revocation_policy=DefaultRevocationPolicy(
            deactivate_statement=SQLITE_STATEMENTS.deactivate_user,
            drop_statement=SQLITE_STATEMENTS.drop_user,
        ),
        builtin_statements=SQLITE_STATEMENTS,
        random_source=fixed_random,
    )


@pytest.fixture(scope="function")
def mock_connection() -> Mock:
    """A connection double recording every statement passed to the driver."""
    connection = Mock(spec=Connection)
    connection.begin.return_value.is_active = False
    return connection


@pytest.fixture(scope="function")
def mock_producer(mock_connection: Mock) -> Mock:
    """A producer double handing out mock_connection."""
    producer = Mock(spec=ConnectionProducer)
    producer.type_name = "hdb"
    producer.connection.return_value = mock_connection
    producer.secret_values.return_value = {ADMIN_PASSWORD: "[redacted]"}
    return producer


@pytest.fixture(scope="function")
def hana_service(mock_producer: Mock) -> CredentialLifecycleService:
    """Lifecycle service with the built-in HANA statements over a connection double."""
    return CredentialLifecycleService(producer=mock_producer, random_source=fixed_random)
