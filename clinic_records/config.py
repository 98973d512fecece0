"""
Configuration module for clinic records.

Provides centralized configuration for the record store, the soft delete
engine and the patient search engine.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union, get_args, get_origin

import pytz
from pydantic import BaseModel, Field, field_validator, model_validator


class DeletionStrategy(str, Enum):
    """How a patient soft delete is carried out against the store."""

    AUTO = "auto"  # Use the atomic procedure when the store provides it
    PROCEDURE = "procedure"  # Require the atomic procedure
    CLIENT = "client"  # Always run the compensating client-side sequence


class ClinicConfig(BaseModel):
    """Central configuration for clinic records.

    Configuration Sources:
        - Programmatic settings passed to the constructor
        - Environment variables (CLINIC_ prefix) through from_env()
        - Configuration files (JSON or YAML) through from_file()

    Each source is used on its own; fields it does not set keep their
    defaults.

    Example:
        >>> config = ClinicConfig(
        ...     database_url="postgresql://clinic@db/clinic",
        ...     soft_delete_strategy="procedure",
        ... )

        Loading from environment:

        >>> import os
        >>> os.environ['CLINIC_DATABASE_URL'] = 'sqlite:///clinic.db'
        >>> config = ClinicConfig.from_env()

    Note:
        The engines receive their configuration through their constructors.
        The module-level accessors below exist for the command line front end.
    """

    # General settings
    application_name: str = Field(
        "Clinic Records", description="Name of the application"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )
    timezone: str = Field(
        "UTC", description="Clinic timezone used to decide what 'today' is"
    )

    # Record store settings
    database_url: str = Field(
        "sqlite:///./clinic_records.db", description="SQLAlchemy database URL"
    )
    database_echo: bool = Field(False, description="Echo SQL statements")

    # Soft delete settings
    soft_delete_strategy: DeletionStrategy = Field(
        DeletionStrategy.AUTO, description="Atomic procedure or client-side cascade"
    )
    verify_cascade: bool = Field(
        True, description="Re-read dependent tables after a cascade batch"
    )
    deletion_reason_max_length: int = Field(
        500, description="Maximum length of a deletion reason", gt=0
    )
    document_storage_path: Optional[str] = Field(
        None, description="Root directory of stored patient documents"
    )

    # Search settings
    default_page_size: int = Field(
        50, description="Page size when a search gives no limit", gt=0
    )
    max_page_size: int = Field(1000, description="Largest accepted page size", gt=0)
    upcoming_appointment_days: int = Field(
        7, description="Window for upcoming appointments", gt=0
    )

    # Logging
    log_level: str = Field("INFO", description="Log level for the CLI")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "staging", "production", "testing"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the timezone is known to pytz."""
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(sorted(valid_levels))}")
        return v.upper()

    @model_validator(mode="after")
    def validate_page_sizes(self) -> "ClinicConfig":
        """Default page size may not exceed the maximum."""
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_env(cls, prefix: str = "CLINIC_") -> "ClinicConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        import os

        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var not in os.environ:
                continue
            value = os.environ[env_var]

            field_type = field_info.annotation

            # Handle Optional types
            if get_origin(field_type) is Union:
                args = get_args(field_type)
                field_type = next((arg for arg in args if arg is not type(None)), str)

            try:
                if field_type == bool:
                    config_dict[field_name] = value.lower() in (
                        "true",
                        "1",
                        "yes",
                        "on",
                    )
                elif field_type == int:
                    config_dict[field_name] = int(value)
                elif isinstance(field_type, type) and issubclass(field_type, Enum):
                    config_dict[field_name] = field_type(value.lower())
                else:
                    config_dict[field_name] = value
            except (ValueError, TypeError):
                # Let model validation report the bad value
                config_dict[field_name] = value

        return cls.model_validate(config_dict)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ClinicConfig":
        """
        Load configuration from a JSON or YAML file.

        Args:
            path: Path to a .json, .yaml or .yml file

        Returns:
            Configuration instance
        """
        config_path = Path(path)
        content = config_path.read_text(encoding="utf-8")

        if config_path.suffix.lower() in (".yaml", ".yml"):
            import yaml

            data = yaml.safe_load(content) or {}
        else:
            data = json.loads(content)

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {config_path} must hold a mapping")

        return cls.model_validate(data)

    def get_store_config(self) -> Dict[str, Any]:
        """Get record store configuration."""
        return {
            "connection_string": self.database_url,
            "echo": self.database_echo,
        }


# Global configuration instance
_config: Optional[ClinicConfig] = None


def get_config() -> ClinicConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = ClinicConfig.from_env()

    return _config


def set_config(config: Optional[ClinicConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload from the environment
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> ClinicConfig:
    """
    Configure clinic records with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = ClinicConfig(**kwargs)
    else:
        config_dict = _config.model_dump()
        config_dict.update(kwargs)
        _config = ClinicConfig(**config_dict)

    return _config
