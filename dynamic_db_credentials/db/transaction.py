"""
Run rendered statements inside one database transaction.

transaction() begins a transaction on the shared connection and yields a
StatementRunner. The transaction is committed only when the block completes;
any exception, cancellation or commit failure leaves it rolled back.
"""

from contextlib import contextmanager, nullcontext
from typing import Iterable, Optional, Sequence

from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..context.execution_context import ExecutionContext
from ..exceptions import ErrorCode, ExecutionError, OperationCancelledError
from ..utils.logger import get_logger
from ..utils.redaction import redact


def _driver_message(error: SQLAlchemyError) -> str:
    # The SQLAlchemy wrapper's str() appends the SQL, which may hold a password
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


def interrupt_connection(connection: Connection) -> None:
    """Abort the statement currently running on connection, if the driver allows it."""
    logger = get_logger()
    try:
        dbapi_connection = connection.connection.dbapi_connection
    except SQLAlchemyError as e:
        logger.warning("Cannot reach DBAPI connection to interrupt", extra={"error": str(e)})
        return

    for method in ("cancel", "interrupt"):
        abort = getattr(dbapi_connection, method, None)
        if callable(abort):
            logger.warning("Interrupting in-flight statement", extra={"method": method})
            abort()
            return
    logger.warning("Driver offers no way to interrupt a running statement")


class StatementRunner:
    """Executes statements within an open transaction."""

    def __init__(
        self,
        connection: Connection,
        context: Optional[ExecutionContext] = None,
        secrets: Iterable[str] = (),
        operation: str = "operation",
    ):
        self.connection = connection
        self.context = context
        self.secrets = [secret for secret in secrets if secret]
        self.operation = operation
        self.executed = 0
        self.logger = get_logger()

    def execute(self, statement: str) -> None:
        """
        Execute one rendered statement.

        The statement is passed to the driver as-is; values were escaped when
        the template was rendered.

        Raises:
            OperationCancelledError: If the context was cancelled or expired
            ExecutionError: If the database rejects the statement
        """
        if self.context is not None:
            self.context.check(self.operation)

        try:
            self.connection.exec_driver_sql(statement)
        except SQLAlchemyError as e:
            if self.context is not None and self.context.done:
                raise OperationCancelledError(
                    f"{self.operation} interrupted while executing statement",
                    operation=self.operation,
                    statement_index=self.executed,
                ) from None
            error_code = (
                ErrorCode.CONSTRAINT_VIOLATION
                if isinstance(e, IntegrityError)
                else ErrorCode.DATABASE_ERROR
            )
            raise ExecutionError(
                f"Failed to execute statement: {redact(_driver_message(e), self.secrets)}",
                error_code=error_code,
                operation=self.operation,
                statement_index=self.executed,
                driver_error=type(getattr(e, "orig", None) or e).__name__,
            ) from None

        self.executed += 1

    def execute_all(self, statements: Iterable[str]) -> int:
        """Execute statements in order, stopping at the first failure."""
        for statement in statements:
            self.execute(statement)
        return self.executed


@contextmanager
def transaction(
    connection: Connection,
    context: Optional[ExecutionContext] = None,
    secrets: Iterable[str] = (),
    operation: str = "operation",
):
    """
    Context manager for one logical operation's transaction.

    Usage:
        with transaction(conn, context, secrets=[password]) as runner:
            runner.execute(first)
            runner.execute(second)
            # Commits on success, rolls back on exception

    Args:
        connection: The live connection, with no transaction in progress
        context: Deadline and cancellation; interrupts the running statement
        secrets: Values to mask in surfaced error messages
        operation: Operation name for logs and errors

    Raises:
        ExecutionError: If the transaction cannot begin or commit, or a statement fails
    """
    logger = get_logger()
    secrets = list(secrets)

    try:
        tx = connection.begin()
    except SQLAlchemyError as e:
        raise ExecutionError(
            f"Failed to begin transaction: {redact(_driver_message(e), secrets)}",
            operation=operation,
        ) from None

    runner = StatementRunner(connection, context, secrets, operation)
    watch = (
        context.interrupt_on_cancel(lambda: interrupt_connection(connection))
        if context is not None
        else nullcontext()
    )
    try:
        with watch:
            yield runner

        if context is not None:
            context.check(operation)
        try:
            tx.commit()
        except SQLAlchemyError as e:
            raise ExecutionError(
                f"Failed to commit transaction: {redact(_driver_message(e), secrets)}",
                operation=operation,
                statements_executed=runner.executed,
            ) from None

        logger.debug(
            "Transaction committed",
            extra={"operation": operation, "statements_executed": runner.executed},
        )
    finally:
        if tx.is_active:
            try:
                tx.rollback()
            except SQLAlchemyError as e:
                logger.warning(
                    "Rollback failed",
                    extra={"operation": operation, "error": redact(_driver_message(e), secrets)},
                )
            else:
                logger.info(
                    "Transaction rolled back",
                    extra={"operation": operation, "statements_executed": runner.executed},
                )


def execute_statements(
    connection: Connection,
    statements: Sequence[str],
    context: Optional[ExecutionContext] = None,
    secrets: Iterable[str] = (),
    operation: str = "operation",
) -> int:
    """
    Execute all statements in a single transaction.

    Returns:
        Number of statements executed
    """
    with transaction(connection, context, secrets, operation) as runner:
        return runner.execute_all(statements)
