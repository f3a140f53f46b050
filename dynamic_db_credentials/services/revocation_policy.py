"""
Default revocation used when a delete request carries no statements.

The account is first deactivated and then dropped with RESTRICT, both in one
transaction. RESTRICT fails when the user still owns dependent objects; the
whole transaction, deactivation included, is then rolled back and the error is
surfaced. Roles whose users own objects need caller-supplied revocation
statements; this policy never force-drops.
"""

from enum import Enum
from typing import Optional

from sqlalchemy.engine import Connection

from ..config import get_config
from ..context.execution_context import ExecutionContext
from ..db.transaction import transaction
from ..exceptions import ExecutionError
from ..schemas.credential_schemas import DeleteSubstitutions
from ..utils.logger import get_logger
from ..utils.statement_utils import render_statement


class RevocationState(str, Enum):
    """States of an account during the default revocation."""

    ACTIVE = "active"
    DEACTIVATED = "deactivated"
    DROPPED = "dropped"
    DROP_FAILED = "drop_failed"


class DefaultRevocationPolicy:
    """Deactivate-then-restricted-drop, committed together or not at all."""

    def __init__(
        self,
        deactivate_statement: Optional[str] = None,
        drop_statement: Optional[str] = None,
    ):
        defaults = get_config().statements
        self.deactivate_statement = deactivate_statement or defaults.deactivate_user
        self.drop_statement = drop_statement or defaults.drop_user
        self.logger = get_logger()

    def _transition(
        self, username: str, old: RevocationState, new: RevocationState
    ) -> RevocationState:
        self.logger.info(
            "Revocation state change",
            extra={"username": username, "from_state": old.value, "to_state": new.value},
        )
        return new

    def revoke(
        self,
        connection: Connection,
        username: str,
        context: Optional[ExecutionContext] = None,
    ) -> RevocationState:
        """
        Deactivate and drop username.

        Args:
            connection: The live connection
            username: Account to revoke
            context: Deadline and cancellation

        Returns:
            RevocationState.DROPPED once the transaction is committed

        Raises:
            ExecutionError: If either step or the commit fails; nothing is kept
        """
        substitutions = DeleteSubstitutions(name=username)
        deactivate = render_statement(self.deactivate_statement, substitutions)
        drop = render_statement(self.drop_statement, substitutions)

        state = RevocationState.ACTIVE
        try:
            with transaction(connection, context, operation="revoke_user_default") as runner:
                runner.execute(deactivate)
                state = self._transition(username, state, RevocationState.DEACTIVATED)

                runner.execute(drop)
        except ExecutionError as e:
            if state == RevocationState.DEACTIVATED:
                state = self._transition(username, state, RevocationState.DROP_FAILED)
            e.add_context(username=username, revocation_state=state.value)
            raise

        return self._transition(username, state, RevocationState.DROPPED)
