"""
Lifecycle operations for dynamic database users.

CredentialLifecycleService creates, rotates and revokes database users from
caller-supplied statement templates. It keeps no record of issued users: the
database is the system of record, and update/delete always take the username
from the caller.
"""

from typing import Callable, Dict, List, Optional

from sqlalchemy.engine import Connection

from ..config import BuiltinStatements, UsernamePolicy, get_config
from ..context.execution_context import ExecutionContext
from ..context.operation_context import operation
from ..context.service_decorators import guarded
from ..db.connection_guard import ConnectionGuard
from ..db.db_config import ConnectionProducer
from ..db.transaction import StatementRunner, execute_statements, transaction
from ..exceptions import validation_failed
from ..schemas.credential_schemas import (
    ChangeExpiration,
    ChangePassword,
    CreateSubstitutions,
    DeleteSubstitutions,
    DeleteUserRequest,
    DeleteUserResponse,
    ExpirationSubstitutions,
    InitializeRequest,
    InitializeResponse,
    NewUserRequest,
    NewUserResponse,
    PasswordSubstitutions,
    StatementSelection,
    Statements,
    UpdateUserRequest,
    UpdateUserResponse,
)
from ..utils.logger import get_logger
from ..utils.statement_utils import escaped_forms, render_statements
from ..utils.username_utils import (
    format_expiration,
    generate_username,
    normalize_password,
    normalize_username,
)
from .revocation_policy import DefaultRevocationPolicy


class CredentialLifecycleService:
    """
    Create, update and delete dynamic users on one target database.

    Every public operation holds the connection guard for its full duration,
    so operations never interleave with each other or with re-initialization.
    """

    def __init__(
        self,
        producer: Optional[ConnectionProducer] = None,
        guard: Optional[ConnectionGuard] = None,
        revocation_policy: Optional[DefaultRevocationPolicy] = None,
        username_policy: Optional[UsernamePolicy] = None,
        builtin_statements: Optional[BuiltinStatements] = None,
        random_source: Optional[Callable[[int], str]] = None,
    ):
        """
        Args:
            producer: Owner of the shared connection
            guard: Lock serializing operations
            revocation_policy: Used by delete_user when no statements are given
            username_policy: Username truncation, length and case rules
            builtin_statements: Defaults for password/expiration rotation
            random_source: Random suffix source for generated usernames
        """
        app_config = get_config()
        self.producer = producer or ConnectionProducer()
        self.guard = guard or ConnectionGuard()
        self.builtin_statements = builtin_statements or app_config.statements
        self.username_policy = username_policy or app_config.usernames
        self.revocation_policy = revocation_policy or DefaultRevocationPolicy(
            deactivate_statement=self.builtin_statements.deactivate_user,
            drop_statement=self.builtin_statements.drop_user,
        )
        self.random_source = random_source
        self.logger = get_logger()

    def type(self) -> str:
        """Type identifier of the backend."""
        return self.producer.type_name

    def secret_values(self) -> Dict[str, str]:
        """Secret values to mask wherever error messages might echo configuration."""
        return self.producer.secret_values()

    def _get_connection(self, context: Optional[ExecutionContext]) -> Connection:
        return self.producer.connection(context)

    def _select(
        self, statements: Statements, default: Optional[List[str]], operation_name: str
    ) -> StatementSelection:
        selection = StatementSelection.resolve(statements, default, operation=operation_name)
        self.logger.debug(
            "Statements selected",
            extra={"operation": operation_name, "source": selection.source.value},
        )
        return selection

    # ==================== INITIALIZE ====================

    @operation()
    @guarded("initialize")
    def initialize(
        self, request: InitializeRequest, context: Optional[ExecutionContext] = None
    ) -> InitializeResponse:
        """
        Configure (or reconfigure) the target database connection.

        Raises:
            ConfigurationError: If the config is invalid
            ConnectionError: If verify_connection is set and the database is unreachable
        """
        config = self.producer.initialize(request.config, request.verify_connection, context)
        return InitializeResponse(config=config)

    # ==================== CREATE ====================

    def _generate_username(self, request: NewUserRequest) -> str:
        policy = self.username_policy
        username = generate_username(
            request.username_config.display_name,
            request.username_config.role_name,
            display_name_length=policy.display_name_length,
            role_name_length=policy.role_name_length,
            max_length=policy.max_length,
            separator=policy.separator,
            uppercase=policy.uppercase,
            random_source=self.random_source,
        )
        return normalize_username(username)

    @operation()
    @guarded("new_user")
    def new_user(
        self, request: NewUserRequest, context: Optional[ExecutionContext] = None
    ) -> NewUserResponse:
        """
        Create a database user with the caller's creation statements.

        Args:
            request: Username hints, creation statements, password and expiration
            context: Deadline and cancellation

        Returns:
            NewUserResponse with the generated username

        Raises:
            ConfigurationError: If no creation statements were supplied
            GenerationError: If the username cannot be generated
            ExecutionError: If any statement or the commit fails
        """
        selection = self._select(request.statements, None, "new_user")

        username = self._generate_username(request)
        substitutions = CreateSubstitutions(
            name=username,
            password=normalize_password(request.password.get_secret_value()),
            expiration=format_expiration(request.expiration),
        )
        statements = render_statements(selection.commands, substitutions)

        connection = self._get_connection(context)
        executed = execute_statements(
            connection,
            statements,
            context,
            secrets=self._secrets(
                *substitutions.secret_values(), request.password.get_secret_value()
            ),
            operation="new_user",
        )

        self.logger.info(
            "Database user created",
            extra={"username": username, "statements_executed": executed},
        )
        return NewUserResponse(username=username)

    # ==================== UPDATE ====================

    def _password_statements(self, username: str, change: ChangePassword) -> List[str]:
        password = change.new_password.get_secret_value()
        if not username or not password:
            raise validation_failed("password", "must provide both username and password")

        selection = self._select(
            change.statements, self.builtin_statements.change_password, "update_password"
        )
        substitutions = PasswordSubstitutions(name=username, username=username, password=password)
        return render_statements(selection.commands, substitutions)

    def _expiration_statements(self, username: str, change: ChangeExpiration) -> List[str]:
        expiration = format_expiration(change.new_expiration) if change.new_expiration else ""
        if not username or not expiration:
            raise validation_failed("expiration", "must provide both username and expiration")

        selection = self._select(
            change.statements, self.builtin_statements.change_expiration, "update_expiration"
        )
        substitutions = ExpirationSubstitutions(
            name=username, username=username, expiration=expiration
        )
        return render_statements(selection.commands, substitutions)

    @operation()
    @guarded("update_user")
    def update_user(
        self, request: UpdateUserRequest, context: Optional[ExecutionContext] = None
    ) -> UpdateUserResponse:
        """
        Rotate the password and/or expiration of an existing user.

        Both changes run in one transaction: they are committed together or
        rolled back together. Nothing is executed when neither is requested.

        Raises:
            ValidationError: If a requested change lacks username or value
            ExecutionError: If any statement or the commit fails
        """
        if not request.has_changes():
            return UpdateUserResponse()

        password_statements: List[str] = []
        expiration_statements: List[str] = []
        secrets: List[str] = []
        if request.password is not None:
            password_statements = self._password_statements(request.username, request.password)
            secrets = self._secrets(request.password.new_password.get_secret_value())
        if request.expiration is not None:
            expiration_statements = self._expiration_statements(
                request.username, request.expiration
            )

        connection = self._get_connection(context)
        with transaction(connection, context, secrets, operation="update_user") as runner:
            self._run_branch(runner, "password", password_statements)
            self._run_branch(runner, "expiration", expiration_statements)

        self.logger.info(
            "Database user updated",
            extra={
                "username": request.username,
                "password_changed": request.password is not None,
                "expiration_changed": request.expiration is not None,
            },
        )
        return UpdateUserResponse()

    def _run_branch(self, runner: StatementRunner, branch: str, statements: List[str]) -> None:
        before = runner.executed
        runner.execute_all(statements)
        if statements:
            self.logger.debug(
                "Update branch executed",
                extra={"branch": branch, "statements_executed": runner.executed - before},
            )

    # ==================== DELETE ====================

    @operation()
    @guarded("delete_user")
    def delete_user(
        self, request: DeleteUserRequest, context: Optional[ExecutionContext] = None
    ) -> DeleteUserResponse:
        """
        Revoke a user with the caller's statements, or deactivate and drop it.

        Raises:
            ExecutionError: If any statement or the commit fails
        """
        if request.statements.is_empty():
            connection = self._get_connection(context)
            self.revocation_policy.revoke(connection, request.username, context)
            return DeleteUserResponse()

        selection = self._select(request.statements, None, "delete_user")
        statements = render_statements(
            selection.commands, DeleteSubstitutions(name=request.username)
        )

        connection = self._get_connection(context)
        executed = execute_statements(connection, statements, context, operation="delete_user")
        self.logger.info(
            "Database user revoked",
            extra={"username": request.username, "statements_executed": executed},
        )
        return DeleteUserResponse()

    # ==================== SHUTDOWN ====================

    def close(self, context: Optional[ExecutionContext] = None) -> None:
        """Close the connection; a later operation reconnects after initialize()."""
        with self.guard.hold(context, "close"):
            self.producer.close()

    @staticmethod
    def _secrets(*values: str) -> List[str]:
        # Rendering doubles quotes, so drivers may echo the escaped form
        return [form for value in values for form in escaped_forms(value)]
