"""
Tests for clinic records configuration.
"""

import json

import pytest
from pydantic import ValidationError

from clinic_records.config import (
    ClinicConfig,
    DeletionStrategy,
    configure,
    get_config,
    set_config,
)


@pytest.fixture(autouse=True)
def reset_global_config():
    """Drop the global configuration around each test."""
    set_config(None)
    yield
    set_config(None)


class TestClinicConfig:
    """Test configuration defaults and validation."""

    def test_defaults(self):
        """Test default values."""
        config = ClinicConfig()

        assert config.environment == "production"
        assert config.timezone == "UTC"
        assert config.soft_delete_strategy == DeletionStrategy.AUTO
        assert config.verify_cascade is True
        assert config.deletion_reason_max_length == 500
        assert config.default_page_size == 50
        assert config.max_page_size == 1000
        assert config.upcoming_appointment_days == 7

    def test_environment_validation(self):
        """Test environment names are checked and normalized."""
        assert ClinicConfig(environment="Staging").environment == "staging"

        with pytest.raises(ValidationError):
            ClinicConfig(environment="qa")

    def test_timezone_validation(self):
        """Test unknown timezones are rejected."""
        assert ClinicConfig(timezone="Asia/Kolkata").timezone == "Asia/Kolkata"

        with pytest.raises(ValidationError, match="Unknown timezone"):
            ClinicConfig(timezone="Mars/Olympus_Mons")

    def test_page_sizes(self):
        """Test the default page size cannot exceed the maximum."""
        with pytest.raises(ValidationError):
            ClinicConfig(default_page_size=200, max_page_size=100)
        with pytest.raises(ValidationError):
            ClinicConfig(max_page_size=0)

    def test_log_level(self):
        """Test log levels are normalized."""
        assert ClinicConfig(log_level="debug").log_level == "DEBUG"

        with pytest.raises(ValidationError):
            ClinicConfig(log_level="chatty")

    def test_store_config(self):
        """Test store keyword arguments."""
        config = ClinicConfig(database_url="sqlite://", database_echo=True)

        assert config.get_store_config() == {
            "connection_string": "sqlite://",
            "echo": True,
        }


class TestConfigSources:
    """Test loading configuration."""

    def test_from_env(self, monkeypatch):
        """Test environment variables with the CLINIC_ prefix."""
        monkeypatch.setenv("CLINIC_DATABASE_URL", "postgresql://clinic@db/clinic")
        monkeypatch.setenv("CLINIC_SOFT_DELETE_STRATEGY", "PROCEDURE")
        monkeypatch.setenv("CLINIC_VERIFY_CASCADE", "no")
        monkeypatch.setenv("CLINIC_MAX_PAGE_SIZE", "200")
        monkeypatch.setenv("CLINIC_DOCUMENT_STORAGE_PATH", "/srv/documents")

        config = ClinicConfig.from_env()

        assert config.database_url == "postgresql://clinic@db/clinic"
        assert config.soft_delete_strategy == DeletionStrategy.PROCEDURE
        assert config.verify_cascade is False
        assert config.max_page_size == 200
        assert config.document_storage_path == "/srv/documents"

    def test_from_env_invalid_value(self, monkeypatch):
        """Test bad environment values fail validation."""
        monkeypatch.setenv("CLINIC_MAX_PAGE_SIZE", "lots")

        with pytest.raises(ValidationError):
            ClinicConfig.from_env()

    def test_from_json_file(self, tmp_path):
        """Test loading a JSON file."""
        path = tmp_path / "clinic.json"
        path.write_text(json.dumps({"timezone": "Asia/Kolkata", "default_page_size": 25}))

        config = ClinicConfig.from_file(path)

        assert config.timezone == "Asia/Kolkata"
        assert config.default_page_size == 25

    def test_from_yaml_file(self, tmp_path):
        """Test loading a YAML file."""
        path = tmp_path / "clinic.yaml"
        path.write_text("environment: development\nsoft_delete_strategy: client\n")

        config = ClinicConfig.from_file(path)

        assert config.environment == "development"
        assert config.soft_delete_strategy == DeletionStrategy.CLIENT

    def test_file_must_hold_mapping(self, tmp_path):
        """Test a file with a list is rejected."""
        path = tmp_path / "clinic.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(ValueError, match="must hold a mapping"):
            ClinicConfig.from_file(path)


class TestGlobalConfig:
    """Test the module level accessors."""

    def test_get_config_reads_environment(self, monkeypatch):
        """Test the first access loads from the environment."""
        monkeypatch.setenv("CLINIC_APPLICATION_NAME", "Beach Road Clinic")

        assert get_config().application_name == "Beach Road Clinic"
        assert get_config() is get_config()

    def test_set_config(self):
        """Test replacing the global configuration."""
        config = ClinicConfig(environment="testing")
        set_config(config)

        assert get_config() is config

    def test_configure_updates(self):
        """Test configure keeps earlier settings."""
        configure(environment="development")
        config = configure(max_page_size=100, default_page_size=10)

        assert config.environment == "development"
        assert config.max_page_size == 100
        assert get_config() is config
