"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Dict, List, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.exceptions import InvalidConfig
from .domain.models import (
    BusinessCalendarConfig,
    DayHours,
    TimeWindow,
    format_minute,
    parse_clock_time,
)


def _validate_clock(value) -> Optional[str]:
    if value is None:
        return None
    # YAML 1.1 reads unquoted 10:30 as the base-60 integer 630.
    if isinstance(value, int):
        value = format_minute(value)
    if not isinstance(value, str):
        raise ValueError(f"Expected a HH:MM time, got {value!r}")
    parse_clock_time(value)
    return value.strip()[:5]


class DayHoursSettings(BaseModel):
    """Opening hours for one weekday."""
    open_time: str
    close_time: str
    break_start: Optional[str] = None
    break_end: Optional[str] = None

    @field_validator("open_time", "close_time", "break_start", "break_end", mode="before")
    @classmethod
    def validate_clock(cls, value) -> Optional[str]:
        """Ensure times are HH:MM."""
        return _validate_clock(value)

    @model_validator(mode="after")
    def validate_break_pair(self) -> "DayHoursSettings":
        """A break needs both ends."""
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be given together")
        return self

    def to_domain(self) -> DayHours:
        return DayHours(
            open_minute=parse_clock_time(self.open_time),
            close_minute=parse_clock_time(self.close_time),
            break_window=_break_window(self.break_start, self.break_end),
        )


class CalendarSettings(BaseModel):
    """Bookable hours of a business or of a single resource."""
    open_time: str = "09:00"
    close_time: str = "18:00"
    slot_granularity_minutes: int = 30
    break_start: Optional[str] = None
    break_end: Optional[str] = None
    open_days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5])  # Monday-Saturday
    day_hours: Dict[int, DayHoursSettings] = Field(default_factory=dict)

    @field_validator("open_time", "close_time", "break_start", "break_end", mode="before")
    @classmethod
    def validate_clock(cls, value) -> Optional[str]:
        """Ensure times are HH:MM."""
        return _validate_clock(value)

    @field_validator("slot_granularity_minutes")
    @classmethod
    def validate_granularity(cls, value: int) -> int:
        """Ensure slot granularity is positive."""
        if value <= 0:
            raise ValueError("slot_granularity_minutes must be greater than zero")
        return value

    @field_validator("open_days")
    @classmethod
    def validate_open_days(cls, value: List[int]) -> List[int]:
        """Ensure weekdays are in valid range and deduplicated."""
        invalid_days = [day for day in value if day not in range(7)]
        if invalid_days:
            raise ValueError(f"open_days must be between 0 and 6, got {invalid_days}")
        # Preserve order while removing duplicates
        seen: set[int] = set()
        deduped: List[int] = []
        for day in value:
            if day not in seen:
                deduped.append(day)
                seen.add(day)
        return deduped

    @field_validator("day_hours")
    @classmethod
    def validate_day_keys(cls, value: Dict[int, DayHoursSettings]) -> Dict[int, DayHoursSettings]:
        invalid_days = [day for day in value if day not in range(7)]
        if invalid_days:
            raise ValueError(f"day_hours keys must be between 0 and 6, got {invalid_days}")
        return value

    @model_validator(mode="after")
    def validate_break_pair(self) -> "CalendarSettings":
        """A break needs both ends."""
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be given together")
        return self

    def to_domain(self) -> BusinessCalendarConfig:
        """
        Convert to the domain configuration.

        Raises:
            InvalidConfig: If the hours are inconsistent (e.g. opening after closing)
        """
        return BusinessCalendarConfig(
            open_minute=parse_clock_time(self.open_time),
            close_minute=parse_clock_time(self.close_time),
            slot_granularity_minutes=self.slot_granularity_minutes,
            break_window=_break_window(self.break_start, self.break_end),
            open_days=frozenset(self.open_days),
            day_hours={day: hours.to_domain() for day, hours in self.day_hours.items()},
        )


class Resource(BaseModel):
    """Bookable resource (typically a staff member)."""
    id: str
    name: str = ""
    calendar: Optional[CalendarSettings] = None

    def display_name(self) -> str:
        """Get display name."""
        return self.name or self.id


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "America/Sao_Paulo"
    defaults: CalendarSettings = Field(default_factory=CalendarSettings)
    resources: List[Resource] = Field(default_factory=list)
    booking_horizon_days: Optional[int] = None
    data_file: str = "bookings.json"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            pendulum.timezone(value)
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("booking_horizon_days")
    @classmethod
    def validate_horizon(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("booking_horizon_days must not be negative")
        return value

    @field_validator("resources")
    @classmethod
    def validate_resources(cls, value: List[Resource]) -> List[Resource]:
        """Ensure resource ids and names are unique."""
        seen_ids: set[str] = set()
        seen_names: set[str] = set()
        for resource in value:
            id_key = resource.id.lower()
            name_key = resource.name.lower()
            if id_key in seen_ids:
                raise ValueError(f"Duplicate resource id detected: {resource.id}")
            if name_key and name_key in seen_names:
                raise ValueError(f"Duplicate resource name detected: {resource.name}")
            seen_ids.add(id_key)
            if name_key:
                seen_names.add(name_key)
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    def find_resource(self, identifier: str) -> Resource | None:
        """Find a resource by id or by name, case-insensitively."""
        key = identifier.lower()
        for resource in self.resources:
            if resource.id.lower() == key or (resource.name and resource.name.lower() == key):
                return resource
        return None

    def resolve_resource(self, identifier: str) -> str:
        """
        Resolve a resource identifier (id or name) to its id.

        Raises:
            ValueError: If identifier cannot be resolved
        """
        resource = self.find_resource(identifier)
        if resource is None:
            raise ValueError(
                f"Unknown resource identifier: '{identifier}'. "
                f"Use a configured resource id or name."
            )
        return resource.id

    def calendar_for(self, resource_id: str) -> BusinessCalendarConfig | None:
        """
        Calendar governing a resource.

        A resource without its own calendar follows the business defaults;
        an unknown resource has no calendar at all.
        """
        resource = self.find_resource(resource_id)
        if resource is None:
            return None
        settings = resource.calendar or self.defaults
        return settings.to_domain()

    def get_data_file_path(self, config_path: Path) -> Path:
        """Data file location, relative paths being relative to the config file."""
        data_path = Path(self.data_file)
        if data_path.is_absolute():
            return data_path
        return config_path.parent / data_path


def _break_window(start: Optional[str], end: Optional[str]) -> Optional[TimeWindow]:
    if start is None or end is None:
        return None
    try:
        return TimeWindow.from_clock(start, end)
    except ValueError as exc:
        raise InvalidConfig(f"Malformed break window {start} - {end}: {exc}") from exc


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
