import os
from dataclasses import dataclass, field
from typing import Any, Mapping

from doclink.errors import ValidationError
from doclink.retry import RetryOptions


ENV_PREFIX = "DOCLINK_"


@dataclass
class ConnectorSettings:
    """Configuration settings for a connector's MongoDB connection.

    Attributes:
        uri: MongoDB connection URI (default: "mongodb://localhost:27017")
        database_name: Optional name of the database to select once connected
        retry: Retry configuration for connection attempts
        timeout: Server selection timeout in milliseconds (default: 20000)
        connection_options: Additional keyword arguments passed to the MongoDB client.
            Example: {"tlsAllowInvalidCertificates": True}
    """
    uri: str = "mongodb://localhost:27017"
    database_name: str | None = None
    retry: RetryOptions = field(default_factory=RetryOptions)
    timeout: int = 20000
    connection_options: dict[str, Any] = field(default_factory=dict)

    def client_options(self) -> dict[str, Any]:
        return {"serverSelectionTimeoutMS": self.timeout} | self.connection_options

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, prefix: str = ENV_PREFIX) -> "ConnectorSettings":
        """Builds settings from `DOCLINK_*` environment variables, using the defaults for anything that isn't set.

        Recognized variables: `URI`, `DATABASE`, `TIMEOUT_MS`, `RETRY_ATTEMPTS`, `RETRY_BASE_DELAY` and
        `RETRY_MAX_DELAY`, each with the prefix. Delays are in seconds.

        Raises:
            ValidationError: If a numeric variable can't be parsed.
        """
        environ = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str, convert, default):
            raw = environ.get(f"{prefix}{name}")
            if raw is None or raw == "":
                return default

            try:
                return convert(raw)
            except ValueError as error:
                raise ValidationError(f"Invalid value for {prefix}{name}: {raw!r}", f"{prefix}{name}") from error

        return cls(
            uri=get("URI", str, defaults.uri),
            database_name=get("DATABASE", str, defaults.database_name),
            retry=RetryOptions(
                max_attempts=get("RETRY_ATTEMPTS", int, defaults.retry.max_attempts),
                base_delay=get("RETRY_BASE_DELAY", float, defaults.retry.base_delay),
                max_delay=get("RETRY_MAX_DELAY", float, defaults.retry.max_delay),
            ),
            timeout=get("TIMEOUT_MS", int, defaults.timeout),
        )
