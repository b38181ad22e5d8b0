"""Adapter factory: validates a profile and builds an unconnected adapter."""

from typing import Optional

from ..config.models import ConnectionProfile, CoreSettings
from ..core.exceptions import ErrorCodes, ValidationError
from ..core.utils import ValidationUtils
from ..logging import get_logger
from .base import BaseAdapter
from .registry import AdapterRegistry, default_registry


class AdapterFactory:
    """Factory for creating adapters from connection profiles.

    The returned adapter is not connected; callers own ``connect()`` and
    the matching ``disconnect()``.
    """

    def __init__(
        self,
        registry: Optional[AdapterRegistry] = None,
        settings: Optional[CoreSettings] = None,
    ) -> None:
        self.logger = get_logger("easysql.database.factory")
        self.registry = registry or default_registry()
        self.settings = settings or CoreSettings()

    def create(self, profile: ConnectionProfile) -> BaseAdapter:
        """Create an adapter for ``profile``.

        Raises:
            ConfigurationError: If the engine has no registered adapter
            ValidationError: If the profile cannot be used for its engine
        """
        self._validate_profile(profile)
        adapter_class = self.registry.get_adapter_class(profile.engine)
        adapter = adapter_class(profile, settings=self.settings)

        self.logger.debug(
            "Adapter created",
            engine=profile.engine,
            connection_id=profile.id,
            adapter=adapter_class.__name__,
        )
        return adapter

    def is_supported(self, engine: str) -> bool:
        return self.registry.is_supported(engine)

    def _validate_profile(self, profile: ConnectionProfile) -> None:
        if profile.engine == "sqlite":
            return
        if not ValidationUtils.validate_port(profile.resolved_port):
            raise ValidationError(
                f"Invalid port: {profile.resolved_port}",
                code=ErrorCodes.CONFIG_VALIDATION_FAILED,
                context={"connection_id": profile.id, "valid_range": "1-65535"},
            )
