#!/usr/bin/env python3
"""
Command-line interface for Clinic Records.

Provides patient search, deletion, restoration and audit trail tools.
"""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, NoReturn, Optional, TypeVar

import click
import pandas as pd  # type: ignore[import-untyped]
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import ClinicConfig, get_config, set_config
from .exceptions import ClinicRecordsError
from .records import PatientRecords
from .search import Patient, SearchFilters
from .store import StoreError

console = Console()

T = TypeVar("T")

CLI_ERRORS = (ClinicRecordsError, StoreError, ValueError, PermissionError)


def setup_logging(level: str) -> None:
    """Send library logs through rich to stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def run_with_records(action: Callable[[PatientRecords], Awaitable[T]]) -> T:
    """Open the configured records, run one action and close them again."""

    async def _run() -> T:
        records = await PatientRecords.open(get_config())
        try:
            return await action(records)
        finally:
            await records.close()

    return asyncio.run(_run())


def fail(message: str) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


principal_option = click.option(
    "--principal",
    envvar="CLINIC_PRINCIPAL_ID",
    required=True,
    help="Owning principal (clinician) id [env: CLINIC_PRINCIPAL_ID]",
)


def patients_table(patients: List[Patient], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("DOB", style="green")
    table.add_column("Gender")
    table.add_column("Phone", style="yellow")
    table.add_column("Email", style="blue")

    for patient in patients:
        table.add_row(
            patient.id,
            patient.name,
            patient.dob.isoformat() if patient.dob else "",
            patient.gender or "",
            patient.phone or "",
            patient.email or "",
        )
    return table


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON or YAML configuration file",
)
@click.option("--log-level", help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """Clinic Records - patient search, deletion and audit trail tools."""
    try:
        if config_path:
            set_config(ClinicConfig.from_file(config_path))
        config = get_config()
    except (ValueError, OSError) as e:
        fail(f"Error loading configuration: {e}")

    setup_logging((log_level or config.log_level).upper())

    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Clinic Records[/bold blue] v{__version__}\n"
                "[dim]Patient search, deletion and audit trail tools[/dim]\n\n"
                "Use [bold]clinic --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Show clinic records configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    config_dict = get_config().to_dict()

    if format == "json":
        console.print_json(data=config_dict)
    elif format == "yaml":
        import yaml  # type: ignore[import-untyped]

        console.print(yaml.safe_dump(config_dict, default_flow_style=False))
    else:
        table = Table(title="Clinic Records Configuration", show_header=True)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        categories = {
            "General": ["application_name", "environment", "timezone", "log_level"],
            "Record Store": ["database_url", "database_echo", "document_storage_path"],
            "Soft Delete": [
                "soft_delete_strategy",
                "verify_cascade",
                "deletion_reason_max_length",
            ],
            "Search": [
                "default_page_size",
                "max_page_size",
                "upcoming_appointment_days",
            ],
        }

        for category, settings in categories.items():
            table.add_row(f"[bold]{category}[/bold]", "")
            for setting in settings:
                value = config_dict.get(setting)
                if value is None:
                    value = "[dim]Not configured[/dim]"
                elif isinstance(value, bool):
                    value = "✓" if value else "✗"
                table.add_row(f"  {setting}", str(value))

        console.print(table)


@cli.group()
def db() -> None:
    """Database management."""
    pass


@db.command("init")
def db_init() -> None:
    """Create any missing clinic tables."""

    async def _noop(records: PatientRecords) -> None:
        return None

    try:
        run_with_records(_noop)
    except CLI_ERRORS as e:
        fail(f"Error initializing database: {e}")
    console.print("[green]✓[/green] Database ready")


@cli.group()
def patients() -> None:
    """Patient search, deletion and restoration."""
    pass


@patients.command("search")
@principal_option
@click.option("--term", help="Name, phone, email or exact patient id")
@click.option("--gender", help="Exact gender")
@click.option(
    "--contact-method",
    type=click.Choice(["Email", "SMS", "None"]),
    help="Preferred contact method",
)
@click.option("--min-age", type=int, help="Minimum age in years")
@click.option("--max-age", type=int, help="Maximum age in years")
@click.option("--created-from", type=click.DateTime(), help="Created on or after")
@click.option("--created-to", type=click.DateTime(), help="Created on or before")
@click.option(
    "--sort-by",
    type=click.Choice(["name", "created_at", "updated_at"]),
    default="created_at",
)
@click.option("--sort-order", type=click.Choice(["asc", "desc"]), default="desc")
@click.option("--limit", type=int, help="Page size")
@click.option("--offset", type=int, default=0, help="Rows to skip")
@click.option("--format", type=click.Choice(["table", "json"]), default="table")
def patients_search(
    principal: str,
    term: Optional[str],
    gender: Optional[str],
    contact_method: Optional[str],
    min_age: Optional[int],
    max_age: Optional[int],
    created_from: Optional[datetime],
    created_to: Optional[datetime],
    sort_by: str,
    sort_order: str,
    limit: Optional[int],
    offset: int,
    format: str,
) -> None:
    """Search active patients."""
    filters: Dict[str, Any] = {
        "search_term": term,
        "gender": gender,
        "preferred_contact_method": contact_method,
        "sort_by": sort_by,
        "sort_order": sort_order,
        "limit": limit,
        "offset": offset,
    }
    if min_age is not None or max_age is not None:
        filters["age_range"] = {"min": min_age, "max": max_age}
    if created_from or created_to:
        filters["date_range"] = {"start": created_from, "end": created_to}

    try:
        search_filters = SearchFilters.model_validate(filters)
        result = run_with_records(
            lambda records: records.search_patients(principal, search_filters)
        )
    except CLI_ERRORS as e:
        fail(f"Error searching patients: {e}")

    if format == "json":
        console.print_json(data=result.model_dump(mode="json", by_alias=True))
        return

    if not result.patients:
        console.print("[yellow]No patients found matching criteria[/yellow]")
        return

    console.print(
        patients_table(
            result.patients,
            f"Patients (showing {len(result.patients)} of {result.total_count})",
        )
    )
    if result.has_more:
        console.print("[dim]More results available, use --offset to page[/dim]")


@patients.command("show")
@principal_option
@click.argument("patient_id")
def patients_show(principal: str, patient_id: str) -> None:
    """Show one active patient."""
    try:
        patient = run_with_records(
            lambda records: records.get_patient_by_id(patient_id, principal)
        )
    except CLI_ERRORS as e:
        fail(f"Error getting patient: {e}")

    if patient is None:
        fail(f"Patient {patient_id} not found")

    console.print_json(data=patient.model_dump(mode="json", by_alias=True))


@patients.command("delete")
@principal_option
@click.argument("patient_id")
@click.option("--reason", help="Reason for deletion")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def patients_delete(
    principal: str, patient_id: str, reason: Optional[str], yes: bool
) -> None:
    """Soft delete a patient and its clinical records."""
    if not yes:
        click.confirm(f"Delete patient {patient_id}?", abort=True)

    try:
        result = run_with_records(
            lambda records: records.soft_delete_patient(patient_id, principal, reason)
        )
    except CLI_ERRORS as e:
        fail(f"Error deleting patient: {e}")

    console.print(
        Panel.fit(
            f"[bold green]✓ Patient deleted[/bold green]\n\n"
            f"Patient: [cyan]{result.patient_id}[/cyan]\n"
            f"Backup: [cyan]{result.backup_id}[/cyan]\n"
            f"Deleted at: {result.deleted_at.isoformat()}",
            border_style="green",
        )
    )


@patients.command("restore")
@principal_option
@click.argument("backup_id")
def patients_restore(principal: str, backup_id: str) -> None:
    """Restore a deleted patient from its backup."""
    try:
        result = run_with_records(
            lambda records: records.restore_patient(backup_id, principal)
        )
    except CLI_ERRORS as e:
        fail(f"Error restoring patient: {e}")

    console.print(f"[green]✓[/green] Patient {result.patient_id} restored")


@patients.command("deleted")
@principal_option
def patients_deleted(principal: str) -> None:
    """List deleted patients, newest first."""
    try:
        backups = run_with_records(lambda records: records.get_deleted_patients(principal))
    except CLI_ERRORS as e:
        fail(f"Error listing deleted patients: {e}")

    if not backups:
        console.print("[yellow]No deleted patients[/yellow]")
        return

    table = Table(title="Deleted Patients")
    table.add_column("Backup", style="dim")
    table.add_column("Patient", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Deleted at", style="yellow")
    table.add_column("Reason")
    table.add_column("Restorable", style="magenta")

    for backup in backups:
        table.add_row(
            backup.id,
            backup.original_patient_id,
            str(backup.patient_data.get("name", "")),
            backup.deleted_at.strftime("%Y-%m-%d %H:%M:%S"),
            backup.deletion_reason or "",
            "✓" if backup.can_restore else "✗",
        )
    console.print(table)


@patients.command("purge")
@principal_option
@click.argument("patient_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def patients_purge(principal: str, patient_id: str, yes: bool) -> None:
    """Permanently delete a patient. This cannot be undone."""
    if not yes:
        click.confirm(
            f"Permanently delete patient {patient_id} and all of its records?",
            abort=True,
        )

    try:
        removed = run_with_records(
            lambda records: records.permanently_delete_patient(patient_id, principal)
        )
    except CLI_ERRORS as e:
        fail(f"Error purging patient: {e}")

    console.print(
        f"[green]✓[/green] Patient {patient_id} permanently deleted "
        f"({sum(removed.values())} rows removed)"
    )


@patients.command("upcoming")
@principal_option
@click.option("--days", type=int, help="Days ahead to look for appointments")
def patients_upcoming(principal: str, days: Optional[int]) -> None:
    """List patients with upcoming appointments."""
    try:
        found = run_with_records(
            lambda records: records.get_patients_with_upcoming_appointments(principal, days)
        )
    except CLI_ERRORS as e:
        fail(f"Error getting upcoming appointments: {e}")

    if not found:
        console.print("[yellow]No patients with upcoming appointments[/yellow]")
        return
    console.print(patients_table(found, "Patients with Upcoming Appointments"))


@patients.command("stats")
@principal_option
def patients_stats(principal: str) -> None:
    """Display patient statistics."""
    try:
        stats = run_with_records(lambda records: records.get_patient_statistics(principal))
    except CLI_ERRORS as e:
        fail(f"Error calculating statistics: {e}")

    console.print(
        Panel.fit(
            f"[bold]Patient Statistics[/bold]\n\n"
            f"Active patients: [cyan]{stats.total_patients:,}[/cyan]\n"
            f"New this month: [green]{stats.new_patients_this_month:,}[/green]\n"
            f"Upcoming appointments: [yellow]{stats.upcoming_appointments:,}[/yellow]",
            border_style="blue",
        )
    )


@cli.group()
def audit() -> None:
    """Patient audit trail."""
    pass


@audit.command("trail")
@principal_option
@click.argument("patient_id")
@click.option(
    "--output",
    type=click.Path(dir_okay=False),
    help="Export to a .csv, .json or .xlsx file",
)
def audit_trail(principal: str, patient_id: str, output: Optional[str]) -> None:
    """Show the audit trail of a patient, newest first."""
    try:
        entries = run_with_records(
            lambda records: records.get_patient_audit_trail(patient_id, principal)
        )
    except CLI_ERRORS as e:
        fail(f"Error reading audit trail: {e}")

    if output:
        output_path = Path(output)
        df = pd.DataFrame([entry.model_dump(mode="json") for entry in entries])
        suffix = output_path.suffix.lower()
        if suffix == ".json":
            df.to_json(output_path, orient="records", date_format="iso", indent=2)
        elif suffix == ".xlsx":
            df.to_excel(output_path, index=False, engine="openpyxl")
        elif suffix == ".csv":
            df.to_csv(output_path, index=False)
        else:
            fail(f"Unsupported export format: {suffix or output}")
        console.print(
            f"[green]✓ Exported {len(entries)} audit entries to {output_path}[/green]"
        )
        return

    if not entries:
        console.print("[yellow]No audit entries for this patient[/yellow]")
        return

    table = Table(title=f"Audit Trail ({len(entries)} entries)")
    table.add_column("Timestamp", style="cyan")
    table.add_column("Operation", style="yellow")
    table.add_column("Table", style="blue")
    table.add_column("Fields", style="green")
    table.add_column("IP", style="dim")

    for entry in entries:
        operation = entry.operation.value
        if operation == "DELETE":
            operation = "[red]DELETE[/red]"
        elif operation == "RESTORE":
            operation = "[green]RESTORE[/green]"
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            operation,
            entry.table_name,
            ", ".join(entry.changed_fields),
            entry.ip_address or "",
        )
    console.print(table)


@cli.command()
def doctor() -> None:
    """Run diagnostic checks on the clinic records setup."""
    console.print("[bold]Running Clinic Records diagnostics...[/bold]\n")

    checks_passed = 0
    checks_failed = 0

    # Check 1: Configuration
    try:
        config = get_config()
        console.print("[green]✓[/green] Configuration loaded successfully")
        checks_passed += 1
    except ValueError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)

    # Check 2: Database connectivity and soft delete strategy
    async def _strategy(records: PatientRecords) -> bool:
        return records.deletion.use_procedure

    try:
        atomic = run_with_records(_strategy)
        console.print("[green]✓[/green] Database connection successful")
        checks_passed += 1
        if atomic:
            console.print("[green]✓[/green] Atomic soft delete procedure available")
        else:
            console.print(
                "[yellow]⚠[/yellow] Soft delete runs client-side "
                f"(strategy: {config.soft_delete_strategy.value})"
            )
    except CLI_ERRORS as e:
        console.print(f"[red]✗[/red] Database connection failed: {e}")
        checks_failed += 1

    # Check 3: Document storage
    if config.document_storage_path:
        storage_dir = Path(config.document_storage_path)
        if storage_dir.exists() and storage_dir.is_dir():
            console.print(f"[green]✓[/green] Document storage exists: {storage_dir}")
            checks_passed += 1
        else:
            console.print(f"[red]✗[/red] Document storage missing: {storage_dir}")
            checks_failed += 1
    else:
        console.print(
            "[yellow]⚠[/yellow] No document storage configured "
            "(CLINIC_DOCUMENT_STORAGE_PATH not set)"
        )

    # Summary
    console.print("\n[bold]Summary:[/bold]")
    console.print(f"  Checks passed: [green]{checks_passed}[/green]")
    console.print(f"  Checks failed: [red]{checks_failed}[/red]")

    if checks_failed == 0:
        console.print("\n[green]✓ All systems operational[/green]")
    else:
        console.print("\n[yellow]⚠ Some issues detected - review output above[/yellow]")
        sys.exit(1)


if __name__ == "__main__":
    cli()
