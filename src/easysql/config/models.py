"""Configuration models for EasySQL.

This module defines Pydantic models for every configuration object used by
the connection layer: connection profiles (with their SSH sub-profile) and
the process-wide settings for tunnels, Redis browsing and logging.

Classes:
    BaseConfig: Base configuration class
    SSHConfig: SSH tunnel sub-profile
    ConnectionProfile: User-authored connection profile
    TunnelSettings: Local port allocation and relay settings
    RedisSettings: Key-prefix browsing settings
    LoggingConfig: Logging configuration
    CoreSettings: Process-wide settings

Example:
    >>> profile = ConnectionProfile(
    ...     id="local-pg",
    ...     engine="postgres",
    ...     host="localhost",
    ...     username="app",
    ...     password="secret",
    ...     database="app",
    ... )
    >>> profile.resolved_port
    5432
"""

import os
import re
import uuid
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    field_validator,
    model_validator,
)

from ..core.exceptions import ValidationError
from ..core.utils import ValidationUtils

EngineKind = Literal["mysql", "mariadb", "postgres", "sqlite", "mongodb", "redis", "sqlserver"]

ENGINE_ALIASES: Dict[str, str] = {
    "postgresql": "postgres",
    "pg": "postgres",
    "mssql": "sqlserver",
    "mongo": "mongodb",
}

DEFAULT_PORTS: Dict[str, int] = {
    "mysql": 3306,
    "mariadb": 3306,
    "postgres": 5432,
    "sqlserver": 1433,
    "mongodb": 27017,
    "redis": 6379,
}

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


class BaseConfig(BaseModel):
    """Base configuration class with common functionality.

    Provides validation, environment variable resolution and serialization
    with secret masking.
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        validate_default=True,
        populate_by_name=True,
        use_enum_values=True,
    )

    @model_validator(mode="before")
    @classmethod
    def resolve_environment_variables(cls, values: Any) -> Any:
        """Resolve environment variables in configuration values.

        Supports ${VAR_NAME} and ${VAR_NAME:default_value} syntax.
        """
        if not isinstance(values, dict):
            return values

        def replace_env_var(match: "re.Match[str]") -> str:
            var_spec = match.group(1)
            if ":" in var_spec:
                var_name, default = var_spec.split(":", 1)
            else:
                var_name, default = var_spec, ""
            return os.getenv(var_name, default)

        def resolve_value(value: Any) -> Any:
            if isinstance(value, str):
                return _ENV_PATTERN.sub(replace_env_var, value)
            elif isinstance(value, dict):
                return {k: resolve_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [resolve_value(item) for item in value]
            else:
                return value

        return {key: resolve_value(value) for key, value in values.items()}

    def to_dict(self, *, mask_secrets: bool = True) -> Dict[str, Any]:
        """Convert configuration to dictionary.

        Args:
            mask_secrets: Whether to mask secret values

        Returns:
            Dictionary representation of configuration
        """
        data = self.model_dump()

        def mask_value(value: Any) -> Any:
            if isinstance(value, dict):
                return {k: mask_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [mask_value(item) for item in value]
            elif isinstance(value, SecretStr):
                return "***MASKED***" if mask_secrets else value.get_secret_value()
            else:
                return value

        return mask_value(data)


class SSHConfig(BaseConfig):
    """SSH tunnel sub-profile.

    Attributes:
        host: SSH server host
        port: SSH server port
        username: SSH login user
        password: SSH password (used when no private key is given)
        private_key: Private key, either a file path or inline PEM text
        passphrase: Passphrase protecting the private key
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., min_length=1, description="SSH server host")
    port: PositiveInt = Field(22, description="SSH server port")
    username: str = Field(..., min_length=1, description="SSH user")
    password: Optional[SecretStr] = Field(None, description="SSH password")
    private_key: Optional[SecretStr] = Field(None, description="Key file path or inline PEM")
    passphrase: Optional[SecretStr] = Field(None, description="Private key passphrase")

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not ValidationUtils.validate_port(v):
            raise ValidationError(f"Invalid SSH port: {v}", code="CONFIG_INVALID")
        return v

    @model_validator(mode="after")
    def validate_credentials(self) -> "SSHConfig":
        """Require a password or a private key."""
        has_password = self.password is not None and self.password.get_secret_value() != ""
        has_key = self.private_key is not None and self.private_key.get_secret_value() != ""
        if not has_password and not has_key:
            raise ValidationError(
                "SSH tunnel requires a password or a private key",
                code="CONFIG_VALIDATION_FAILED",
                context={"ssh_host": self.host},
            )
        return self

    @property
    def has_private_key(self) -> bool:
        return self.private_key is not None and self.private_key.get_secret_value() != ""

    @property
    def is_inline_key(self) -> bool:
        """Return True if the private key is PEM text rather than a path."""
        return self.has_private_key and "-----BEGIN" in self.private_key.get_secret_value()


class ConnectionProfile(BaseConfig):
    """Connection profile as authored by the user.

    The core never persists profiles; it receives them as call parameters and
    keeps them on the registry entry for reconnection. Profiles are frozen.

    Attributes:
        id: Connection identifier (registry key)
        engine: Engine kind
        name: Display name
        host: Database host (ignored for SQLite)
        port: Database port (engine default when omitted)
        username: Database user
        password: Database password
        database: Default database/schema
        file_path: SQLite database file
        ssh: Optional SSH tunnel sub-profile
        connect_timeout: Connection timeout in seconds
        options: Additional driver options
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Connection identifier")
    engine: EngineKind = Field(..., alias="type", description="Engine kind")
    name: str = Field("", description="Display name")
    host: str = Field("localhost", description="Database host")
    port: Optional[PositiveInt] = Field(None, description="Database port")
    username: str = Field("", description="Database user")
    password: SecretStr = Field(SecretStr(""), description="Database password")
    database: Optional[str] = Field(None, description="Default database")
    file_path: Optional[str] = Field(None, description="SQLite database file")
    ssh: Optional[SSHConfig] = Field(None, description="SSH tunnel sub-profile")
    connect_timeout: PositiveInt = Field(10, description="Connect timeout in seconds")
    options: Dict[str, Any] = Field(default_factory=dict, description="Driver options")

    @field_validator("engine", mode="before")
    @classmethod
    def normalize_engine(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return ENGINE_ALIASES.get(v, v)
        return v

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not ValidationUtils.validate_connection_id(v):
            raise ValidationError(f"Invalid connection id: {v}", code="CONFIG_INVALID")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not ValidationUtils.validate_port(v):
            raise ValidationError(
                f"Invalid port number: {v}",
                code="CONFIG_INVALID",
                context={"port": v, "valid_range": "1-65535"},
            )
        return v

    @model_validator(mode="after")
    def validate_target(self) -> "ConnectionProfile":
        """Network engines need a host, SQLite needs a file."""
        if self.engine == "sqlite":
            if not self.sqlite_path:
                raise ValidationError(
                    "SQLite profile requires a database file path",
                    code="CONFIG_VALIDATION_FAILED",
                    context={"field": "file_path"},
                )
        elif not self.host.strip():
            raise ValidationError(
                "Connection profile missing required field: host",
                code="CONFIG_VALIDATION_FAILED",
                context={"field": "host", "engine": self.engine},
            )
        return self

    @property
    def resolved_host(self) -> str:
        """Host to dial; ``localhost`` is pinned to IPv4."""
        host = self.host.strip()
        return "127.0.0.1" if host == "localhost" else host

    @property
    def resolved_port(self) -> int:
        return self.port or DEFAULT_PORTS.get(self.engine, 0)

    @property
    def sqlite_path(self) -> Optional[str]:
        return self.file_path or self.database or (self.host if self.host != "localhost" else None)

    @property
    def uses_tunnel(self) -> bool:
        return self.ssh is not None and self.engine != "sqlite"

    def with_address(self, host: str, port: int) -> "ConnectionProfile":
        """Return a copy targeting another address (used for tunnels)."""
        return self.model_copy(update={"host": host, "port": port})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionProfile":
        """Build a profile from the camelCase JSON shape of the profile store.

        A missing ``id`` is replaced by a fresh uuid.

        Example:
            >>> ConnectionProfile.from_dict({
            ...     "id": "c1", "type": "mysql", "host": "db", "port": 3306,
            ...     "username": "root", "password": "pw",
            ...     "sshEnabled": True, "sshHost": "bastion", "sshUser": "ops",
            ...     "sshPassword": "x",
            ... })
        """
        payload: Dict[str, Any] = {
            "id": data.get("id") or uuid.uuid4().hex,
            "type": data.get("type") or data.get("engine"),
            "name": data.get("name", ""),
            "host": data.get("host") or "localhost",
            "port": data.get("port") or None,
            "username": data.get("username") or "",
            "password": data.get("password") or "",
            "database": data.get("database") or None,
        }
        if data.get("filePath") or data.get("file_path"):
            payload["file_path"] = data.get("filePath") or data.get("file_path")
        if data.get("connectTimeout"):
            payload["connect_timeout"] = data["connectTimeout"]

        if data.get("sshEnabled") and data.get("sshHost"):
            payload["ssh"] = {
                "host": data["sshHost"],
                "port": data.get("sshPort") or 22,
                "username": data.get("sshUser") or "",
                "password": data.get("sshPassword") or None,
                "private_key": data.get("sshKey") or None,
                "passphrase": data.get("sshPassphrase") or None,
            }
        elif isinstance(data.get("ssh"), dict):
            payload["ssh"] = data["ssh"]

        return cls(**payload)


class TunnelSettings(BaseConfig):
    """SSH tunnel settings.

    Attributes:
        bind_host: Local interface tunnels listen on
        port_range_start: First candidate local port
        port_range_end: Last candidate local port (inclusive)
        buffer_size: Relay read size in bytes
        connect_timeout: SSH connect/auth timeout in seconds
    """

    bind_host: str = Field("127.0.0.1", description="Local bind host")
    port_range_start: PositiveInt = Field(40000, description="First local port")
    port_range_end: PositiveInt = Field(40999, description="Last local port")
    buffer_size: PositiveInt = Field(16384, description="Relay buffer size")
    connect_timeout: PositiveInt = Field(10, description="SSH connect timeout")

    @model_validator(mode="after")
    def validate_range(self) -> "TunnelSettings":
        if not (
            ValidationUtils.validate_port(self.port_range_start)
            and ValidationUtils.validate_port(self.port_range_end)
        ):
            raise ValidationError("Tunnel port range must be within 1-65535")
        if self.port_range_end < self.port_range_start:
            raise ValidationError(
                f"port_range_end ({self.port_range_end}) must be >= "
                f"port_range_start ({self.port_range_start})"
            )
        return self


class RedisSettings(BaseConfig):
    """Redis browsing settings.

    Attributes:
        key_delimiter: Delimiter splitting keys into browsing prefixes
        prefix_sample_limit: Maximum number of distinct prefixes listed
        preview_size: Members fetched per list/set/hash/zset preview
        scan_count: COUNT hint for SCAN when sampling keys
        default_database_count: Logical databases assumed when CONFIG is denied
    """

    key_delimiter: str = Field(":", min_length=1, description="Key prefix delimiter")
    prefix_sample_limit: PositiveInt = Field(100, description="Max distinct prefixes")
    preview_size: PositiveInt = Field(10, description="Collection preview size")
    scan_count: PositiveInt = Field(1000, description="SCAN count hint")
    default_database_count: PositiveInt = Field(16, description="Fallback database count")


class LoggingConfig(BaseConfig):
    """Logging configuration.

    Attributes:
        level: Log level
        format: Log format (json, text)
        file_path: Log file path
        max_file_size: Maximum log file size in bytes
        backup_count: Number of backup files to keep
        console_output: Enable console output
        slow_operation_ms: Timed operations at or above this are logged at info
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", description="Logging level"
    )
    format: Literal["json", "text"] = Field("json", description="Log format")
    file_path: Optional[Path] = Field(None, description="Log file path")
    max_file_size: PositiveInt = Field(10485760, description="Max file size in bytes (10MB)")
    backup_count: int = Field(5, ge=0, description="Number of backup files")
    console_output: bool = Field(True, description="Enable console output")
    slow_operation_ms: Optional[PositiveFloat] = Field(
        1000.0, description="Threshold for slow-operation log lines, None disables"
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class CoreSettings(BaseConfig):
    """Process-wide settings for the connection layer.

    Example:
        >>> settings = CoreSettings(redis=RedisSettings(prefix_sample_limit=500))
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tunnel: TunnelSettings = Field(default_factory=TunnelSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    default_page_size: PositiveInt = Field(100, description="Default page size")
    max_page_size: PositiveInt = Field(10000, description="Largest accepted page size")

    @classmethod
    def from_env(cls, prefix: str = "EASYSQL_") -> "CoreSettings":
        """Build settings from ``EASYSQL_*`` environment variables."""
        env = os.environ
        logging_data: Dict[str, Any] = {}
        tunnel_data: Dict[str, Any] = {}
        redis_data: Dict[str, Any] = {}

        if f"{prefix}LOG_LEVEL" in env:
            logging_data["level"] = env[f"{prefix}LOG_LEVEL"]
        if f"{prefix}LOG_FORMAT" in env:
            logging_data["format"] = env[f"{prefix}LOG_FORMAT"]
        if f"{prefix}LOG_FILE" in env:
            logging_data["file_path"] = env[f"{prefix}LOG_FILE"]
        if f"{prefix}SLOW_OPERATION_MS" in env:
            logging_data["slow_operation_ms"] = float(env[f"{prefix}SLOW_OPERATION_MS"])
        if f"{prefix}TUNNEL_PORT_START" in env:
            tunnel_data["port_range_start"] = int(env[f"{prefix}TUNNEL_PORT_START"])
        if f"{prefix}TUNNEL_PORT_END" in env:
            tunnel_data["port_range_end"] = int(env[f"{prefix}TUNNEL_PORT_END"])
        if f"{prefix}REDIS_PREFIX_LIMIT" in env:
            redis_data["prefix_sample_limit"] = int(env[f"{prefix}REDIS_PREFIX_LIMIT"])

        return cls(
            logging=LoggingConfig(**logging_data),
            tunnel=TunnelSettings(**tunnel_data),
            redis=RedisSettings(**redis_data),
        )
