import re
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import create_engine, literal_column, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..constants import HANA_TYPE_NAME
from ..context.execution_context import ExecutionContext
from ..exceptions import ConfigurationError, ConnectionError, ErrorCode
from ..utils.logger import get_logger
from ..utils.redaction import REDACTED, redact, register_secret, unregister_secret

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smh]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600}


def parse_duration(value: Union[int, float, str, None]) -> int:
    """
    Parse a duration given as seconds or as a string like ``30s``, ``5m``, ``1h``.

    Raises:
        ValueError: If the string is not a supported duration
    """
    if value is None or value == "":
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    match = _DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _DURATION_UNITS[unit]


class ConnectionConfig(BaseModel):
    """Connection settings for the target database, as stored by the host."""

    connection_url: str = Field(description="SQLAlchemy URL, may contain {{username}}/{{password}}")
    username: str = ""
    password: SecretStr = SecretStr("")
    max_open_connections: int = Field(default=4, ge=0)
    max_idle_connections: int = Field(default=0, ge=0)
    max_connection_lifetime: int = Field(default=0, description="Seconds, 0 for unlimited")
    echo: bool = False

    model_config = ConfigDict(extra="ignore")

    @field_validator("connection_url")
    def validate_connection_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("connection_url cannot be empty")
        return v.strip()

    @field_validator("max_connection_lifetime", mode="before")
    def validate_lifetime(cls, v: Any) -> int:
        return parse_duration(v)

    @model_validator(mode="after")
    def apply_pool_defaults(self) -> "ConnectionConfig":
        if self.max_open_connections == 0:
            self.max_open_connections = 4
        if self.max_idle_connections == 0 or self.max_idle_connections > self.max_open_connections:
            self.max_idle_connections = self.max_open_connections
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.connection_url.startswith("sqlite")

    def get_connection_string(self) -> str:
        """Connection URL with the credentials substituted, URL-escaped."""
        return self.connection_url.replace(
            "{{username}}", quote(self.username, safe="")
        ).replace("{{password}}", quote(self.password.get_secret_value(), safe=""))

    def to_normalized_dict(self) -> Dict[str, Any]:
        """Config as the host should persist it, defaults applied."""
        normalized = self.model_dump()
        normalized["password"] = self.password.get_secret_value()
        return normalized

    def __repr__(self) -> str:
        """String representation with masked password for security."""
        return (
            f"ConnectionConfig("
            f"connection_url='{self.connection_url}', "
            f"username='{self.username}', "
            f"password='***', "
            f"max_open_connections={self.max_open_connections}, "
            f"max_idle_connections={self.max_idle_connections}, "
            f"max_connection_lifetime={self.max_connection_lifetime})"
        )


class ConnectionProducer:
    """
    Owns the engine and the single live connection to the target database.

    The connection is opened lazily and pinged before each hand-out; a dead
    connection is replaced. Callers serialize access with ConnectionGuard.
    """

    def __init__(self, type_name: str = HANA_TYPE_NAME):
        self.type_name = type_name
        self.config: Optional[ConnectionConfig] = None
        self.engine: Optional[Engine] = None
        self._connection: Optional[Connection] = None
        self.logger = get_logger()

    @property
    def initialized(self) -> bool:
        return self.config is not None

    def _secrets(self):
        if self.config is None:
            return []
        return [self.config.password.get_secret_value()]

    def _create_engine(self, config: ConnectionConfig) -> Engine:
        connection_string = config.get_connection_string()
        if config.is_sqlite:
            return create_engine(
                connection_string,
                echo=config.echo,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            connection_string,
            echo=config.echo,
            pool_size=config.max_idle_connections,
            max_overflow=config.max_open_connections - config.max_idle_connections,
            pool_recycle=config.max_connection_lifetime or -1,
        )

    def initialize(
        self,
        raw_config: Dict[str, Any],
        verify_connection: bool,
        context: Optional[ExecutionContext] = None,
    ) -> Dict[str, Any]:
        """
        Validate config, replace any previous engine and optionally connect.

        Args:
            raw_config: Connection settings from the host
            verify_connection: Open and ping the connection before returning
            context: Deadline and cancellation for the verification

        Returns:
            The normalized config

        Raises:
            ConfigurationError: If the config is invalid
            ConnectionError: If verification fails
        """
        try:
            config = ConnectionConfig.model_validate(raw_config)
        except PydanticValidationError as e:
            fields = [".".join(str(part) for part in error["loc"]) for error in e.errors()]
            raise ConfigurationError(
                f"Invalid connection configuration: {', '.join(fields) or 'config'}",
                error_code=ErrorCode.INVALID_FORMAT,
                invalid_fields=fields,
            ) from None

        self.close()

        self.config = config
        register_secret(config.password.get_secret_value())
        try:
            self.engine = self._create_engine(config)
        except (SQLAlchemyError, ValueError, ImportError) as e:
            message = redact(str(e), self._secrets())
            unregister_secret(config.password.get_secret_value())
            self.config = None
            raise ConfigurationError(f"Unable to create engine: {message}") from None

        self.logger.info(
            "Connection producer initialized",
            extra={
                "type_name": self.type_name,
                "verify_connection": verify_connection,
                "max_open_connections": config.max_open_connections,
            },
        )

        if verify_connection:
            self.connection(context)

        return config.to_normalized_dict()

    def _ping(self, connection: Connection) -> None:
        with connection.begin():
            connection.execute(select(literal_column("1")))

    def connection(self, context: Optional[ExecutionContext] = None) -> Connection:
        """
        Return the live connection, opening or replacing it as needed.

        Raises:
            ConnectionError: If not initialized or the database is unreachable
        """
        if self.engine is None or self.config is None:
            raise ConnectionError("Connection producer is not initialized")
        if context is not None:
            context.check("connection")

        if self._connection is not None:
            try:
                self._ping(self._connection)
            except SQLAlchemyError as e:
                self.logger.warning(
                    "Connection failed health check, reconnecting",
                    extra={"error": redact(str(getattr(e, "orig", None) or e), self._secrets())},
                )
                self._close_connection()
            else:
                return self._connection

        try:
            connection = self.engine.connect()
            self._ping(connection)
        except SQLAlchemyError as e:
            raise ConnectionError(
                "Error verifying connection: "
                f"{redact(str(getattr(e, 'orig', None) or e), self._secrets())}",
                type_name=self.type_name,
            ) from None

        if not isinstance(connection, Connection):
            raise ConnectionError(
                f"Unexpected connection type: {type(connection).__name__}",
                type_name=self.type_name,
            )

        self._connection = connection
        self.logger.info("Database connection opened", extra={"type_name": self.type_name})
        return connection

    def secret_values(self) -> Dict[str, str]:
        """Map of secret value -> mask for the host's error sanitizer."""
        return {secret: REDACTED for secret in self._secrets() if secret}

    def _close_connection(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        except SQLAlchemyError as e:
            self.logger.warning("Error closing connection", extra={"error": str(e)})
        self._connection = None

    def close(self) -> None:
        """Close the connection and dispose of the engine."""
        self._close_connection()
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
        for secret in self._secrets():
            unregister_secret(secret)
        self.config = None
