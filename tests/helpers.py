"""
Test data and helpers shared across test modules.

Users are rows of an ``accounts`` table; rows of ``objects`` reference their
owner, so deleting an owner fails the same way a restricted drop fails on
dependent objects.
"""

from typing import List
from unittest.mock import Mock

from sqlalchemy.engine import Connection

from dynamic_db_credentials.config import BuiltinStatements

ADMIN_PASSWORD = "admin-secret-pw"

PING_STATEMENT = "SELECT 1"

ACCOUNTS_DDL = (
    "CREATE TABLE accounts ("
    " name TEXT PRIMARY KEY,"
    " password TEXT,"
    " valid_until TEXT,"
    " active INTEGER NOT NULL DEFAULT 1)"
)
OBJECTS_DDL = (
    "CREATE TABLE objects ("
    " id INTEGER PRIMARY KEY,"
    " owner TEXT NOT NULL REFERENCES accounts(name))"
)

CREATE_STATEMENTS = [
    "INSERT INTO accounts (name, password, valid_until) "
    "VALUES ('{{name}}', '{{password}}', '{{expiration}}')"
]

SQLITE_STATEMENTS = BuiltinStatements(
    change_password=["UPDATE accounts SET password = '{{password}}' WHERE name = '{{username}}'"],
    change_expiration=[
        "UPDATE accounts SET valid_until = '{{expiration}}' WHERE name = '{{username}}'"
    ],
    deactivate_user="UPDATE accounts SET active = 0 WHERE name = '{{name}}'",
    drop_user="DELETE FROM accounts WHERE name = '{{name}}'",
)

# Runs long enough to be interrupted by a short deadline
SLOW_QUERY = (
    "WITH RECURSIVE counter(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM counter "
    "WHERE x < 2000000000) SELECT count(*) FROM counter"
)


def fixed_random(length: int) -> str:
    """Deterministic stand-in for the random username suffix."""
    return "r" * length


def fetch_account(connection: Connection, name: str):
    """Read one account row; returns None when absent."""
    with connection.begin():
        return connection.exec_driver_sql(
            "SELECT name, password, valid_until, active FROM accounts WHERE name = ?", (name,)
        ).fetchone()


def count_accounts(connection: Connection) -> int:
    with connection.begin():
        return connection.exec_driver_sql("SELECT count(*) FROM accounts").scalar()


def insert_account(connection: Connection, name: str, password: str = "pw") -> None:
    with connection.begin():
        connection.exec_driver_sql(
            "INSERT INTO accounts (name, password) VALUES (?, ?)", (name, password)
        )


def insert_owned_object(connection: Connection, owner: str) -> None:
    with connection.begin():
        connection.exec_driver_sql("INSERT INTO objects (owner) VALUES (?)", (owner,))


def driver_statements(mock_connection: Mock) -> List[str]:
    """Statements a mock connection received, in order."""
    return [call.args[0] for call in mock_connection.exec_driver_sql.call_args_list]
