"""EasySQL configuration management.

This package provides type-safe configuration models for connection profiles
and the process-wide settings of the connection layer.

Classes:
    BaseConfig: Base configuration class
    ConnectionProfile: Connection profile
    SSHConfig: SSH tunnel sub-profile
    CoreSettings: Process-wide settings
    LoggingConfig: Logging configuration

Example:
    >>> from easysql.config import ConnectionProfile, CoreSettings
    >>> settings = CoreSettings.from_env()
"""

from .models import (
    DEFAULT_PORTS,
    ENGINE_ALIASES,
    BaseConfig,
    ConnectionProfile,
    CoreSettings,
    EngineKind,
    LoggingConfig,
    RedisSettings,
    SSHConfig,
    TunnelSettings,
)

__all__ = [
    "BaseConfig",
    "ConnectionProfile",
    "CoreSettings",
    "DEFAULT_PORTS",
    "ENGINE_ALIASES",
    "EngineKind",
    "LoggingConfig",
    "RedisSettings",
    "SSHConfig",
    "TunnelSettings",
]
