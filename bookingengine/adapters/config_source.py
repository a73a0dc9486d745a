"""
Calendar configuration source backed by the application config file.
"""

import logging
from typing import Dict, List, Optional

from ..config import AppConfig
from ..domain.models import BusinessCalendarConfig

logger = logging.getLogger(__name__)


class ConfigCalendarSource:
    """
    Serves resource calendars from an ``AppConfig``.

    Domain configurations are built once per resource; invalid calendars raise
    ``InvalidConfig`` on first use and are not cached.
    """

    def __init__(self, config: AppConfig):
        self.config = config
        self._cache: Dict[str, Optional[BusinessCalendarConfig]] = {}

    async def get_calendar_config(self, resource_id: str) -> Optional[BusinessCalendarConfig]:
        if resource_id not in self._cache:
            calendar = self.config.calendar_for(resource_id)
            if calendar is None:
                logger.debug("Resource '%s' is not configured", resource_id)
            self._cache[resource_id] = calendar
        return self._cache[resource_id]

    def known_resources(self) -> List[str]:
        return [resource.id for resource in self.config.resources]
