"""
Unit tests for CredentialLifecycleService.

Most tests run against SQLite through the service fixture; tests that check the
exact built-in HANA statements use a connection double.
"""

import logging
import re
import threading
from datetime import datetime, timezone

import pytest
from pydantic import SecretStr
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from dynamic_db_credentials.context.execution_context import ExecutionContext
from dynamic_db_credentials.exceptions import (
    ConfigurationError,
    ConnectionError,
    ErrorCode,
    ExecutionError,
    OperationCancelledError,
    ValidationError,
)
from dynamic_db_credentials.schemas.credential_schemas import (
    ChangeExpiration,
    ChangePassword,
    DeleteUserRequest,
    InitializeRequest,
    NewUserRequest,
    Statements,
    UpdateUserRequest,
    UsernameMetadata,
)
from tests.helpers import (
    ADMIN_PASSWORD,
    CREATE_STATEMENTS,
    count_accounts,
    driver_statements,
    fetch_account,
    insert_account,
    insert_owned_object,
)

EXPIRATION = datetime(2030, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
USERNAME_PATTERN = re.compile(r"^[A-Z0-9_]{1,127}$")


def new_user_request(statements=None, password="p-1", display_name="app", role_name="reader"):
    return NewUserRequest(
        username_config=UsernameMetadata(display_name=display_name, role_name=role_name),
        statements=Statements(commands=CREATE_STATEMENTS if statements is None else statements),
        password=SecretStr(password),
        expiration=EXPIRATION,
    )


class TestServiceBasics:
    """Test type, secret_values, initialize and close."""

    def test_type(self, service):
        """Test the backend type identifier."""
        assert service.type() == "hdb"

    def test_secret_values(self, service):
        """Test the redaction hook masks the configured password."""
        assert service.secret_values() == {ADMIN_PASSWORD: "[redacted]"}

    def test_initialize(self, service):
        """Test initialize returns the normalized config."""
        response = service.initialize(
            InitializeRequest(config={"connection_url": "sqlite://", "max_open_connections": 2})
        )

        assert response.config["max_open_connections"] == 2
        assert response.config["max_idle_connections"] == 2

    def test_initialize_invalid_config(self, service):
        """Test a config without a connection URL fails with ConfigurationError."""
        with pytest.raises(ConfigurationError):
            service.initialize(InitializeRequest(config={}))

        assert not service.guard.locked

    def test_close(self, service):
        """Test close releases the connection; later operations need initialize."""
        service.close()

        with pytest.raises(ConnectionError):
            service.delete_user(DeleteUserRequest(username="V_APP"))


class TestNewUser:
    """Test new_user."""

    def test_creates_user(self, service, connection):
        """Test the user is created with normalized password and formatted expiration."""
        response = service.new_user(new_user_request())

        assert response.username == "V_APP_READER_" + "R" * 20 + response.username[-11:]
        assert USERNAME_PATTERN.match(response.username)

        account = fetch_account(connection, response.username)
        assert account.password == "p_1"
        assert account.valid_until == "2030-01-02 03:04:05"

    def test_create_user_statement_example(self, hana_service, mock_connection):
        """Test hints ("app", "reader") and password "p-1" render as HANA DDL."""
        response = hana_service.new_user(
            new_user_request(statements=['CREATE USER {{name}} PASSWORD "{{password}}"'])
        )

        assert USERNAME_PATTERN.match(response.username)
        assert "-" not in response.username
        assert driver_statements(mock_connection) == [
            f'CREATE USER {response.username} PASSWORD "p_1"'
        ]

    def test_empty_statements(self, service, connection, executed_statements):
        """Test empty statements fail with ConfigurationError and touch nothing."""
        for statements in ([], ["", "   "]):
            with pytest.raises(ConfigurationError) as exc_info:
                service.new_user(new_user_request(statements=statements))
            assert exc_info.value.error_code == ErrorCode.MISSING_REQUIRED

        assert executed_statements == []
        assert count_accounts(connection) == 0

    def test_multi_statement_template(self, service, connection, executed_statements):
        """Test ';'-separated sub-statements run in order and blanks are skipped."""
        template = (
            CREATE_STATEMENTS[0]
            + "; UPDATE accounts SET active = 0 WHERE name = '{{name}}';  ;"
        )

        response = service.new_user(new_user_request(statements=[template]))

        assert len(executed_statements) == 2
        assert fetch_account(connection, response.username).active == 0

    def test_failure_rolls_back_everything(self, service, connection):
        """Test a failing later statement leaves no account behind."""
        statements = [CREATE_STATEMENTS[0], "GRANT nothing TO {{name}}"]

        with pytest.raises(ExecutionError):
            service.new_user(new_user_request(statements=statements))

        assert count_accounts(connection) == 0

    def test_unknown_placeholder_fails_before_execution(self, service, executed_statements):
        """Test a typo in a placeholder is rejected before any statement runs."""
        statements = [CREATE_STATEMENTS[0], "GRANT r TO {{usrname}}"]

        with pytest.raises(ConfigurationError):
            service.new_user(new_user_request(statements=statements))

        assert executed_statements == []

    def test_password_never_in_error_or_logs(self, service, caplog):
        """Test a driver error echoing the password is masked everywhere."""
        statements = ['SELECT * FROM "{{password}}"']

        with caplog.at_level(logging.DEBUG, logger="dynamic_db_credentials"):
            with pytest.raises(ExecutionError) as exc_info:
                service.new_user(new_user_request(statements=statements, password="Hunter2Secret"))

        assert "Hunter2Secret" not in str(exc_info.value)
        assert "Hunter2Secret" not in str(exc_info.value.to_dict(include_cause=True))
        assert "Hunter2Secret" not in caplog.text
        assert "[redacted]" in str(exc_info.value)

    def test_escaped_password_never_in_error(self, hana_service, mock_connection, caplog):
        """Test a driver echoing the quote-doubled password is masked as well."""
        mock_connection.exec_driver_sql.side_effect = OperationalError(
            "CREATE USER", None, Exception('invalid password near "p""w"')
        )

        with caplog.at_level(logging.DEBUG, logger="dynamic_db_credentials"):
            with pytest.raises(ExecutionError) as exc_info:
                hana_service.new_user(
                    new_user_request(
                        statements=['CREATE USER {{name}} PASSWORD "{{password}}"'],
                        password='p"w',
                    )
                )

        assert 'p""w' not in str(exc_info.value)
        assert 'p"w' not in str(exc_info.value)
        assert 'p""w' not in caplog.text
        assert "[redacted]" in str(exc_info.value)

    def test_operation_logging(self, service, caplog):
        """Test ENTER and EXIT are logged around the operation."""
        with caplog.at_level(logging.INFO, logger="dynamic_db_credentials"):
            service.new_user(new_user_request())

        assert "ENTER: CredentialLifecycleService.new_user" in caplog.text
        assert "EXIT: CredentialLifecycleService.new_user" in caplog.text
        assert "p-1" not in caplog.text
        assert "p_1" not in caplog.text


class TestUpdateUser:
    """Test update_user."""

    def test_no_changes_is_noop(self, service, producer, executed_statements, monkeypatch):
        """Test an update with neither change issues nothing and never connects."""
        calls = []
        monkeypatch.setattr(producer, "connection", lambda *args: calls.append(args))

        service.update_user(UpdateUserRequest(username="V_APP"))

        assert calls == []
        assert executed_statements == []

    def test_password_only(self, service, connection, executed_statements):
        """Test only the password branch runs."""
        insert_account(connection, "V_APP", password="old")
        executed_statements.clear()

        service.update_user(
            UpdateUserRequest(
                username="V_APP", password=ChangePassword(new_password=SecretStr("new"))
            )
        )

        assert executed_statements == [
            "UPDATE accounts SET password = 'new' WHERE name = 'V_APP'"
        ]
        account = fetch_account(connection, "V_APP")
        assert account.password == "new"
        assert account.valid_until is None

    def test_expiration_only(self, service, connection, executed_statements):
        """Test only the expiration branch runs."""
        insert_account(connection, "V_APP", password="old")
        executed_statements.clear()

        service.update_user(
            UpdateUserRequest(
                username="V_APP", expiration=ChangeExpiration(new_expiration=EXPIRATION)
            )
        )

        assert executed_statements == [
            "UPDATE accounts SET valid_until = '2030-01-02 03:04:05' WHERE name = 'V_APP'"
        ]
        assert fetch_account(connection, "V_APP").password == "old"

    def test_both_changes_share_one_transaction(self, service, connection):
        """Test a failing expiration branch rolls back the password change."""
        insert_account(connection, "V_APP", password="old")

        with pytest.raises(ExecutionError):
            service.update_user(
                UpdateUserRequest(
                    username="V_APP",
                    password=ChangePassword(new_password=SecretStr("new")),
                    expiration=ChangeExpiration(
                        new_expiration=EXPIRATION,
                        statements=Statements(commands=["UPDATE missing SET x = '{{expiration}}'"]),
                    ),
                )
            )

        assert fetch_account(connection, "V_APP").password == "old"

    def test_custom_statements(self, service, connection, executed_statements):
        """Test caller statements replace the built-in ones."""
        insert_account(connection, "V_APP")
        executed_statements.clear()

        service.update_user(
            UpdateUserRequest(
                username="V_APP",
                password=ChangePassword(
                    new_password=SecretStr("new"),
                    statements=Statements(
                        commands=[
                            "UPDATE accounts SET password = '{{password}}!' WHERE name = '{{name}}'"
                        ]
                    ),
                ),
            )
        )

        assert fetch_account(connection, "V_APP").password == "new!"

    def test_empty_password(self, service, executed_statements):
        """Test an empty new password fails validation before any statement."""
        with pytest.raises(ValidationError):
            service.update_user(
                UpdateUserRequest(
                    username="V_APP", password=ChangePassword(new_password=SecretStr(""))
                )
            )

        assert executed_statements == []

    def test_missing_expiration(self, service):
        """Test an expiration change without a value fails validation."""
        with pytest.raises(ValidationError):
            service.update_user(
                UpdateUserRequest(username="V_APP", expiration=ChangeExpiration())
            )

    def test_empty_username(self, service):
        """Test an update without a username fails validation."""
        with pytest.raises(ValidationError):
            service.update_user(
                UpdateUserRequest(username="", password=ChangePassword(new_password=SecretStr("x")))
            )

    def test_builtin_hana_statements(self, hana_service, mock_connection):
        """Test the built-in HANA statements for both branches, password first."""
        hana_service.update_user(
            UpdateUserRequest(
                username="V_APP",
                password=ChangePassword(new_password=SecretStr("New-Pass")),
                expiration=ChangeExpiration(new_expiration=EXPIRATION),
            )
        )

        assert driver_statements(mock_connection) == [
            'ALTER USER V_APP PASSWORD "New-Pass"',
            "ALTER USER V_APP VALID UNTIL '2030-01-02 03:04:05'",
        ]
        mock_connection.begin.assert_called_once_with()

    def test_escaped_password_never_in_error(self, hana_service, mock_connection):
        """Test the quote-doubled form of a rotated password is masked."""
        mock_connection.exec_driver_sql.side_effect = OperationalError(
            "ALTER USER", None, Exception("invalid password '''x'''")
        )

        with pytest.raises(ExecutionError) as exc_info:
            hana_service.update_user(
                UpdateUserRequest(
                    username="V_APP",
                    password=ChangePassword(
                        new_password=SecretStr("'x'"),
                        statements=Statements(
                            commands=["ALTER USER {{name}} PASSWORD '{{password}}'"]
                        ),
                    ),
                )
            )

        assert "''x''" not in str(exc_info.value)
        assert "[redacted]" in str(exc_info.value)


class TestDeleteUser:
    """Test delete_user."""

    def test_default_revocation(self, service, connection, executed_statements):
        """Test empty statements deactivate then drop in exactly two statements."""
        insert_account(connection, "V_APP")
        executed_statements.clear()

        service.delete_user(DeleteUserRequest(username="V_APP"))

        assert len(executed_statements) == 2
        assert executed_statements[0].startswith("UPDATE accounts SET active = 0")
        assert executed_statements[1].startswith("DELETE FROM accounts")
        assert fetch_account(connection, "V_APP") is None

    def test_default_revocation_is_atomic(self, service, connection):
        """Test a blocked drop rolls back the deactivation and surfaces the error."""
        insert_account(connection, "V_OWNER")
        insert_owned_object(connection, "V_OWNER")

        with pytest.raises(ExecutionError):
            service.delete_user(DeleteUserRequest(username="V_OWNER"))

        assert fetch_account(connection, "V_OWNER").active == 1

    def test_custom_statements(self, service, connection, executed_statements):
        """Test caller statements are rendered with the username and run."""
        insert_account(connection, "V_APP")
        executed_statements.clear()

        service.delete_user(
            DeleteUserRequest(
                username="V_APP",
                statements=Statements(commands=["DELETE FROM accounts WHERE name = '{{name}}'"]),
            )
        )

        assert executed_statements == ["DELETE FROM accounts WHERE name = 'V_APP'"]
        assert fetch_account(connection, "V_APP") is None

    def test_custom_statements_reject_other_fields(self, service):
        """Test delete statements may only reference the username."""
        with pytest.raises(ConfigurationError):
            service.delete_user(
                DeleteUserRequest(
                    username="V_APP",
                    statements=Statements(commands=["DROP USER {{name}} -- {{password}}"]),
                )
            )

    def test_builtin_hana_statements(self, hana_service, mock_connection):
        """Test the built-in revocation statements."""
        hana_service.delete_user(DeleteUserRequest(username="V_APP"))

        assert driver_statements(mock_connection) == [
            "ALTER USER V_APP DEACTIVATE USER NOW",
            "DROP USER V_APP RESTRICT",
        ]


class TestConcurrency:
    """Test guard usage and cancellation."""

    def test_guard_held_during_statements(self, service, producer):
        """Test statements only ever run while the guard is held."""
        observed = []

        def capture(*args):
            observed.append(service.guard.locked)

        event.listen(producer.engine, "before_cursor_execute", capture)
        try:
            service.new_user(new_user_request())
        finally:
            event.remove(producer.engine, "before_cursor_execute", capture)

        assert observed
        assert all(observed)
        assert not service.guard.locked

    def test_concurrent_creates_serialized(self, service, connection):
        """Test concurrent creates all succeed without sharing a transaction."""
        errors = []
        usernames = []

        def create(index):
            try:
                response = service.new_user(new_user_request(display_name=f"app{index}"))
                usernames.append(response.username)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create, args=(i,)) for i in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(set(usernames)) == 5
        assert count_accounts(connection) == 5

    def test_cancelled_context(self, service, executed_statements):
        """Test a cancelled context stops the operation before any statement."""
        context = ExecutionContext()
        context.cancel()

        with pytest.raises(OperationCancelledError):
            service.new_user(new_user_request(), context)

        assert executed_statements == []
        assert not service.guard.locked

    def test_context_keyword(self, service, connection):
        """Test the context may be passed by keyword."""
        response = service.new_user(new_user_request(), context=ExecutionContext(timeout=30))

        assert fetch_account(connection, response.username) is not None
