"""
Connection settings shared by the four role clients.

Only the process environment is read here. Loading a .env file is the
job of load_config(), which calls python-dotenv before building the
settings.
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional


def _flag(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Field name -> (environment variable, parser)
ENV_VARS: Dict[str, tuple] = {
    "host": ("VALKEY_HOST", str),
    "port": ("VALKEY_PORT", int),
    "password": ("VALKEY_PASSWORD", str),
    "database": ("VALKEY_DATABASE", int),
    "socket_timeout": ("VALKEY_SOCKET_TIMEOUT", float),
    "socket_connect_timeout": ("VALKEY_SOCKET_CONNECT_TIMEOUT", float),
    "retry_on_timeout": ("VALKEY_RETRY_ON_TIMEOUT", _flag),
    "health_check_interval": ("VALKEY_HEALTH_CHECK_INTERVAL", int),
    "decode_responses": ("VALKEY_DECODE_RESPONSES", _flag),
}


@dataclass
class ValkeyConfig:
    """
    Where and how every role client connects.

    All four roles use one ValkeyConfig, so they always reach the same
    server and database.
    """

    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    database: int = 0
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    retry_on_timeout: bool = True
    health_check_interval: int = 30
    decode_responses: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ValkeyConfig":
        """
        Build settings from VALKEY_* variables.

        Unset or empty variables keep the field default.

        Args:
            environ: Mapping to read instead of os.environ

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name, (variable, parse) in ENV_VARS.items():
            raw = environ.get(variable)
            if raw:
                values[name] = parse(raw)
        return cls(**values)

    def as_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for valkey.asyncio.Valkey."""
        kwargs = self.as_dict()
        kwargs["db"] = kwargs.pop("database")
        if not kwargs["password"]:
            del kwargs["password"]
        return kwargs

    def __str__(self) -> str:
        masked = "***" if self.password else "None"
        return (
            f"ValkeyConfig(host={self.host}, port={self.port}, "
            f"db={self.database}, password={masked})"
        )
