"""
Centralized UI/UX configuration.

Services fetch a shared UI/UX configuration object from the coordinator.
The configuration lives in process memory and every update bumps a version
counter starting at 1.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.core.errors import ValidationError
from app.core.logging import get_logger
from app.core.metrics import record_uiux_config_fetch

logger = get_logger(__name__)


class UIUXConfigService:
    def __init__(self):
        self._config: Optional[Dict[str, Any]] = None
        self._updated_at: Optional[datetime] = None
        self.version = 0

    @property
    def has_config(self) -> bool:
        return self._config is not None

    def update_config(self, config: Any) -> Dict[str, Any]:
        """
        Replace the configuration.

        Raises:
            ValidationError: config is not a JSON object
        """
        if not isinstance(config, dict):
            raise ValidationError(
                ["config is required and must be an object"],
                message="config is required and must be an object",
            )

        self._config = config
        self._updated_at = datetime.now(timezone.utc)
        self.version += 1

        logger.info("uiux_config_updated", version=self.version, keys=len(config))
        return {"version": self.version, "last_updated": self._updated_at.isoformat()}

    def get_config(self) -> Optional[Dict[str, Any]]:
        """Current configuration with its version, or None if never set."""
        record_uiux_config_fetch()
        if self._config is None:
            return None
        return {
            "config": self._config,
            "last_updated": self._updated_at.isoformat(),
            "version": self.version,
        }
