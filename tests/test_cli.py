"""
Tests for Clinic Records CLI module.
"""

import asyncio
import json
from datetime import date

import pandas as pd
import pytest
from click.testing import CliRunner

from clinic_records.cli import cli
from clinic_records.config import ClinicConfig, set_config
from clinic_records.store import (
    DELETED_PATIENTS_TABLE,
    PATIENTS_TABLE,
    SQLRecordStore,
    eq,
)

PRINCIPAL = "dr-house"


def run_store(database_url, action):
    """Run an action against a freshly opened store."""

    async def _run():
        store = SQLRecordStore(database_url)
        await store.initialize()
        try:
            return await action(store)
        finally:
            await store.close()

    return asyncio.run(_run())


@pytest.fixture
def runner():
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture
def database_url(tmp_path, monkeypatch):
    """Point the global configuration at a file database."""
    monkeypatch.delenv("CLINIC_PRINCIPAL_ID", raising=False)
    url = f"sqlite:///{tmp_path / 'clinic.db'}"
    set_config(ClinicConfig(environment="testing", database_url=url))
    yield url
    set_config(None)


@pytest.fixture
def patient(database_url):
    """Insert one patient and return its row."""
    return run_store(
        database_url,
        lambda store: store.insert(
            PATIENTS_TABLE,
            {
                "user_id": PRINCIPAL,
                "name": "Asha Kumar",
                "dob": date(1990, 5, 1),
                "gender": "Female",
                "contact_phone": "+91 98400 12345",
                "contact_email": "asha@example.com",
                "preferred_contact_method": "SMS",
            },
        ),
    )


def patient_row(database_url, patient_id):
    result = run_store(
        database_url, lambda store: store.select(PATIENTS_TABLE, [eq("id", patient_id)])
    )
    return result.rows[0] if result.rows else None


def backup_ids(database_url):
    result = run_store(database_url, lambda store: store.select(DELETED_PATIENTS_TABLE))
    return [row["id"] for row in result.rows]


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_help(self, runner):
        """Test CLI help command."""
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Clinic Records" in result.output
        assert "patients" in result.output

    def test_cli_version(self, runner):
        """Test CLI version command."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "version" in result.output.lower()

    def test_cli_no_command(self, runner, database_url):
        """Test CLI with no command shows info."""
        result = runner.invoke(cli, [])
        assert result.exit_code == 0
        assert "Clinic Records" in result.output


class TestConfigCommands:
    """Test configuration-related commands."""

    def test_config_show(self, runner, database_url):
        """Test config show command."""
        result = runner.invoke(cli, ["config", "show"])
        assert result.exit_code == 0
        assert "Clinic Records Configuration" in result.output
        assert "soft_delete_strategy" in result.output

    def test_config_show_json(self, runner, database_url):
        """Test config show with JSON format."""
        result = runner.invoke(cli, ["config", "show", "--format", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["environment"] == "testing"
        assert data["soft_delete_strategy"] == "auto"

    def test_config_show_yaml(self, runner, database_url):
        """Test config show with YAML format."""
        result = runner.invoke(cli, ["config", "show", "--format", "yaml"])
        assert result.exit_code == 0
        assert "environment: testing" in result.output

    def test_config_file(self, runner, database_url, tmp_path):
        """Test loading configuration from a file."""
        config_file = tmp_path / "clinic.yaml"
        config_file.write_text(f"timezone: Asia/Kolkata\ndatabase_url: {database_url}\n")

        result = runner.invoke(
            cli, ["--config", str(config_file), "config", "show", "--format", "json"]
        )

        assert result.exit_code == 0
        assert json.loads(result.output)["timezone"] == "Asia/Kolkata"

    def test_invalid_config_file(self, runner, database_url, tmp_path):
        """Test an invalid configuration file is reported."""
        config_file = tmp_path / "clinic.json"
        config_file.write_text('{"timezone": "Mars/Olympus_Mons"}')

        result = runner.invoke(cli, ["--config", str(config_file), "config", "show"])

        assert result.exit_code == 1
        assert "Error loading configuration" in result.output


class TestDatabaseCommands:
    """Test database management commands."""

    def test_db_init(self, runner, database_url):
        """Test creating the tables."""
        result = runner.invoke(cli, ["db", "init"])
        assert result.exit_code == 0
        assert "Database ready" in result.output


class TestSearchCommands:
    """Test patient lookup commands."""

    def test_search_json(self, runner, patient):
        """Test search results as JSON with client field names."""
        result = runner.invoke(
            cli,
            ["patients", "search", "--principal", PRINCIPAL, "--term", "kumar", "--format", "json"],
        )

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["totalCount"] == 1
        assert data["hasMore"] is False
        assert data["patients"][0]["id"] == patient["id"]
        assert data["patients"][0]["phone"] == "+91 98400 12345"

    def test_search_table(self, runner, patient):
        """Test search results as a table."""
        result = runner.invoke(cli, ["patients", "search", "--principal", PRINCIPAL])

        assert result.exit_code == 0
        assert "Patients (showing 1 of 1)" in result.output

    def test_search_filters(self, runner, patient):
        """Test age and contact filters are passed through."""
        result = runner.invoke(
            cli,
            [
                "patients",
                "search",
                "--principal",
                PRINCIPAL,
                "--contact-method",
                "Email",
                "--min-age",
                "18",
            ],
        )

        assert result.exit_code == 0
        assert "No patients found matching criteria" in result.output

    def test_search_principal_from_env(self, runner, patient):
        """Test the principal can come from the environment."""
        result = runner.invoke(
            cli,
            ["patients", "search", "--format", "json"],
            env={"CLINIC_PRINCIPAL_ID": PRINCIPAL},
        )

        assert result.exit_code == 0
        assert json.loads(result.output)["totalCount"] == 1

    def test_search_requires_principal(self, runner, database_url):
        """Test the principal is mandatory."""
        result = runner.invoke(cli, ["patients", "search"])

        assert result.exit_code == 2
        assert "--principal" in result.output

    def test_search_invalid_age_range(self, runner, database_url):
        """Test invalid filters are reported."""
        result = runner.invoke(
            cli,
            ["patients", "search", "--principal", PRINCIPAL, "--min-age", "40", "--max-age", "30"],
        )

        assert result.exit_code == 1
        assert "Error searching patients" in result.output

    def test_show(self, runner, patient):
        """Test showing one patient."""
        result = runner.invoke(cli, ["patients", "show", patient["id"], "--principal", PRINCIPAL])

        assert result.exit_code == 0
        assert json.loads(result.output)["name"] == "Asha Kumar"

    def test_show_missing(self, runner, database_url):
        """Test showing an unknown patient."""
        result = runner.invoke(cli, ["patients", "show", "missing", "--principal", PRINCIPAL])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_upcoming_empty(self, runner, patient):
        """Test listing upcoming appointments when there are none."""
        result = runner.invoke(cli, ["patients", "upcoming", "--principal", PRINCIPAL])

        assert result.exit_code == 0
        assert "No patients with upcoming appointments" in result.output

    def test_stats(self, runner, patient):
        """Test patient statistics."""
        result = runner.invoke(cli, ["patients", "stats", "--principal", PRINCIPAL])

        assert result.exit_code == 0
        assert "Active patients: 1" in result.output


class TestDeletionCommands:
    """Test delete, restore and purge commands."""

    def test_delete_and_restore(self, runner, database_url, patient):
        """Test a full soft delete and restore cycle."""
        result = runner.invoke(
            cli,
            [
                "patients",
                "delete",
                patient["id"],
                "--principal",
                PRINCIPAL,
                "--reason",
                "duplicate record",
                "--yes",
            ],
        )
        assert result.exit_code == 0
        assert "Patient deleted" in result.output
        assert patient_row(database_url, patient["id"])["is_deleted"] is True

        result = runner.invoke(cli, ["patients", "deleted", "--principal", PRINCIPAL])
        assert result.exit_code == 0
        assert "Deleted Patients" in result.output

        (backup_id,) = backup_ids(database_url)
        result = runner.invoke(cli, ["patients", "restore", backup_id, "--principal", PRINCIPAL])
        assert result.exit_code == 0
        assert "restored" in result.output
        assert patient_row(database_url, patient["id"])["is_deleted"] is False

        result = runner.invoke(cli, ["patients", "restore", backup_id, "--principal", PRINCIPAL])
        assert result.exit_code == 1
        assert "Error restoring patient" in result.output

    def test_delete_requires_confirmation(self, runner, database_url, patient):
        """Test declining the prompt leaves the patient alone."""
        result = runner.invoke(
            cli, ["patients", "delete", patient["id"], "--principal", PRINCIPAL], input="n\n"
        )

        assert result.exit_code == 1
        assert patient_row(database_url, patient["id"])["is_deleted"] is False

    def test_delete_twice(self, runner, patient):
        """Test deleting an already deleted patient fails."""
        args = ["patients", "delete", patient["id"], "--principal", PRINCIPAL, "--yes"]
        runner.invoke(cli, args)

        result = runner.invoke(cli, args)

        assert result.exit_code == 1
        assert "Error deleting patient" in result.output

    def test_no_deleted_patients(self, runner, database_url):
        """Test the empty deleted list."""
        result = runner.invoke(cli, ["patients", "deleted", "--principal", PRINCIPAL])

        assert result.exit_code == 0
        assert "No deleted patients" in result.output

    def test_purge(self, runner, database_url, patient):
        """Test permanent deletion."""
        result = runner.invoke(
            cli, ["patients", "purge", patient["id"], "--principal", PRINCIPAL, "--yes"]
        )

        assert result.exit_code == 0
        assert "permanently deleted" in result.output
        assert patient_row(database_url, patient["id"]) is None


class TestAuditCommands:
    """Test audit trail commands."""

    def test_empty_trail(self, runner, patient):
        """Test a patient without entries."""
        result = runner.invoke(cli, ["audit", "trail", patient["id"], "--principal", PRINCIPAL])

        assert result.exit_code == 0
        assert "No audit entries for this patient" in result.output

    def test_trail_table(self, runner, patient):
        """Test the trail after a deletion."""
        runner.invoke(cli, ["patients", "delete", patient["id"], "--principal", PRINCIPAL, "--yes"])

        result = runner.invoke(cli, ["audit", "trail", patient["id"], "--principal", PRINCIPAL])

        assert result.exit_code == 0
        assert "Audit Trail (1 entries)" in result.output
        assert "DELETE" in result.output

    @pytest.mark.parametrize("suffix", [".csv", ".json", ".xlsx"])
    def test_export(self, runner, patient, tmp_path, suffix):
        """Test exporting the trail."""
        runner.invoke(cli, ["patients", "delete", patient["id"], "--principal", PRINCIPAL, "--yes"])
        output = tmp_path / f"trail{suffix}"

        result = runner.invoke(
            cli,
            ["audit", "trail", patient["id"], "--principal", PRINCIPAL, "--output", str(output)],
        )

        assert result.exit_code == 0
        assert "Exported 1 audit entries" in result.output
        assert output.exists()
        if suffix == ".csv":
            exported = pd.read_csv(output)
            assert exported["operation"].tolist() == ["DELETE"]

    def test_unsupported_export(self, runner, patient, tmp_path):
        """Test unknown export formats are refused."""
        result = runner.invoke(
            cli,
            [
                "audit",
                "trail",
                patient["id"],
                "--principal",
                PRINCIPAL,
                "--output",
                str(tmp_path / "trail.txt"),
            ],
        )

        assert result.exit_code == 1
        assert "Unsupported export format" in result.output


class TestDoctorCommand:
    """Test diagnostic command."""

    def test_doctor(self, runner, database_url):
        """Test doctor with a reachable database and no document storage."""
        result = runner.invoke(cli, ["doctor"])

        assert result.exit_code == 0
        assert "Database connection successful" in result.output
        assert "Atomic soft delete procedure available" in result.output
        assert "All systems operational" in result.output

    def test_doctor_missing_storage(self, runner, database_url, tmp_path):
        """Test doctor reports a missing document directory."""
        set_config(
            ClinicConfig(
                environment="testing",
                database_url=database_url,
                document_storage_path=str(tmp_path / "missing"),
            )
        )

        result = runner.invoke(cli, ["doctor"])

        assert result.exit_code == 1
        assert "Document storage missing" in result.output
