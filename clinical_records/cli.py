"""Command Line Interface for the Clinical-Records service.

This module provides a CLI using Typer for saving encounters (with dependent
reconciliation) and inspecting stored encounters.
"""

from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clinical_records.domain.models import CallerContext, Encounter
from clinical_records.domain.ports import ClinicalRecordError
from clinical_records.infrastructure.audit import ChangeAuditLogger
from clinical_records.infrastructure.settings import settings
from clinical_records.main import create_encounter_service, create_storage_adapter

app = typer.Typer(
    name="clinical-records",
    help="Clinical-Records: encounter storage with dependent reconciliation",
    add_completion=False
)
console = Console()


def _caller(username: str, privileges: List[str], locations: Optional[List[int]] = None) -> CallerContext:
    return CallerContext(
        username=username,
        privileges=frozenset(privileges),
        allowed_location_ids=frozenset(locations) if locations else None,
    )


@app.command("init-db")
def init_db() -> None:
    """Create the storage schema."""
    store = create_storage_adapter()
    try:
        store.initialize_schema()
        console.print(f"[green]✓[/green] Schema initialized at {store.db_path}")
    except ClinicalRecordError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        raise typer.Exit(code=1)
    finally:
        store.close()


@app.command("save-encounter")
def save_encounter(
    encounter_file: Path = typer.Argument(..., help="JSON file describing the encounter", exists=True),
    user: str = typer.Option("admin", "--user", "-u", help="Caller username"),
    privilege: List[str] = typer.Option(
        ["Add Encounters", "Edit Encounters"], "--privilege", "-p", help="Caller privileges"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Save an encounter, reconciling its observations and orders.

    Examples:
        clinical-records save-encounter visit.json
        clinical-records save-encounter visit.json -u clerk -p "Edit Encounters"
    """
    import logging
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        encounter = Encounter.model_validate_json(encounter_file.read_text())
    except ValidationError as e:
        console.print(f"[red]✗[/red] Invalid encounter file: {escape(str(e))}")
        raise typer.Exit(code=1)

    store = create_storage_adapter()
    audit_logger = None
    if settings.audit_changes:
        audit_logger = ChangeAuditLogger(max_entries=settings.audit_max_entries)
        audit_logger.set_context(changed_by=user)
    service = create_encounter_service(store=store, audit_logger=audit_logger)
    try:
        saved = service.save_encounter(encounter, _caller(user, privilege))
    except ClinicalRecordError as e:
        console.print(f"[red]✗[/red] {type(e).__name__}: {escape(str(e))}")
        raise typer.Exit(code=1)
    finally:
        store.close()

    console.print(f"[green]✓[/green] Saved encounter {saved.encounter_id}")

    if audit_logger is None:
        return

    logs = audit_logger.get_logs()
    if logs:
        table = Table(title="Reconciled Fields")
        table.add_column("Entity", style="cyan")
        table.add_column("ID", justify="right")
        table.add_column("Field")
        table.add_column("Old")
        table.add_column("New")
        table.add_column("Change", style="magenta")
        for entry in logs:
            table.add_row(
                entry["entity"],
                str(entry["record_id"]),
                entry["field_name"],
                str(entry["old_value"]),
                str(entry["new_value"]),
                entry["change_type"],
            )
        console.print(table)
    else:
        console.print("[dim]No dependent fields changed[/dim]")


@app.command("list-encounters")
def list_encounters(
    patient_id: int = typer.Argument(..., help="Patient identifier"),
    user: str = typer.Option("admin", "--user", "-u", help="Caller username"),
    location: Optional[List[int]] = typer.Option(
        None, "--location", "-l", help="Restrict visibility to these location ids"
    ),
) -> None:
    """List a patient's encounters visible to the caller."""
    store = create_storage_adapter()
    service = create_encounter_service(store=store)
    try:
        encounters = service.get_encounters_by_patient_id(patient_id, _caller(user, [], location))
    except ClinicalRecordError as e:
        console.print(f"[red]✗[/red] {type(e).__name__}: {escape(str(e))}")
        raise typer.Exit(code=1)
    finally:
        store.close()

    if not encounters:
        console.print(f"[yellow]No encounters for patient {patient_id}[/yellow]")
        return

    table = Table(title=f"Encounters for patient {patient_id}")
    table.add_column("Encounter", justify="right", style="cyan")
    table.add_column("Date/Time")
    table.add_column("Location")
    table.add_column("Type")
    table.add_column("Obs", justify="right")
    table.add_column("Orders", justify="right")
    for encounter in encounters:
        table.add_row(
            str(encounter.encounter_id),
            encounter.encounter_datetime.isoformat() if encounter.encounter_datetime else "-",
            str(encounter.location.location_id) if encounter.location else "-",
            (encounter.encounter_type.name or str(encounter.encounter_type.encounter_type_id))
            if encounter.encounter_type else "-",
            str(len(encounter.observations)),
            str(len(encounter.orders)),
        )
    console.print(table)


@app.command("show-encounter")
def show_encounter(encounter_id: int = typer.Argument(..., help="Encounter identifier")) -> None:
    """Print a stored encounter as JSON."""
    store = create_storage_adapter()
    service = create_encounter_service(store=store)
    try:
        encounter = service.get_encounter(encounter_id)
    finally:
        store.close()

    if encounter is None:
        console.print(f"[red]✗[/red] Encounter {encounter_id} not found")
        raise typer.Exit(code=1)
    console.print_json(encounter.model_dump_json())


if __name__ == "__main__":
    app()
