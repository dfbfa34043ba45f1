"""Command Line Interface for the Offline Care Lookup tool.

This module provides a Typer CLI over the lookup core: device registration and
validation, dataset import, patient lookup, status marking and export. It is
a thin front end; all behavior lives in the core.

Security Impact:
    - Dataset commands refuse to run until the device is validated
    - Keys and passwords are read with hidden prompts when not given
"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from src.domain.device_trust import DeviceState
from src.domain.ports import LookupCoreError, Result
from src.infrastructure.logging_config import setup_logging
from src.infrastructure.settings import APP_VERSION, settings
from src.services.container import LookupApp, build_app
from src.services.patient_lookup import safe_value

app = typer.Typer(
    name="carelookup",
    help="Offline Care Lookup: pending-activity records without a network connection",
    add_completion=False
)
console = Console()

_app_instance: Optional[LookupApp] = None


def get_app() -> LookupApp:
    """Build the lookup core once per process and restore saved datasets."""
    global _app_instance
    if _app_instance is None:
        try:
            core = build_app(settings.app_config)
        except LookupCoreError as e:
            # Unreadable device state file: report it, never reset it
            console.print(f"[red]✗[/red] {e}")
            raise typer.Exit(code=1)
        core.restore_datasets()
        _app_instance = core
    return _app_instance


def _fail(result: Result) -> None:
    console.print(f"[red]✗[/red] {result.error}")
    raise typer.Exit(code=1)


def _require_validated(core: LookupApp) -> None:
    state = core.controller.state
    if state in (DeviceState.UNREGISTERED, DeviceState.REGISTERED):
        console.print(f"[red]✗[/red] Device is {state.value}; register and validate it first")
        raise typer.Exit(code=1)


def _dataset(core: LookupApp, tag: str):
    try:
        return core.dataset(tag)
    except ValueError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)


def _require_fresh_data(core: LookupApp) -> None:
    expiry = core.controller.check_expiry()
    if expiry.is_failure():
        console.print("[red]✗[/red] All datasets have expired. Contact your administrator to renew access.")
        raise typer.Exit(code=1)
    for tag in expiry.value:
        console.print(f"[yellow]⚠[/yellow] Dataset '{tag}' is expired or was never imported")


@app.command()
def register(
    institution_code: str = typer.Argument(..., help="Institution (IPS) code"),
) -> None:
    """Register this device with the validation service."""
    result = get_app().controller.register(institution_code)
    if result.is_failure():
        _fail(result)
    console.print("[green]✓[/green] Device registered. Ask your provider for the validation key.")


@app.command()
def validate(
    key: str = typer.Option(..., "--key", "-k", prompt=True, hide_input=True, help="Validation key"),
) -> None:
    """Validate the key issued by the provider."""
    result = get_app().controller.validate(key)
    if result.is_failure():
        _fail(result)
    console.print(f"[green]✓[/green] {result.value.mensaje or 'Validation successful'}")


@app.command()
def login(
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, help="Access password"),
) -> None:
    """Check the access password stored with the validation payload."""
    result = get_app().controller.login(password)
    if result.is_failure():
        _fail(result)
    console.print(f"[green]✓[/green] Welcome, {result.value}")


@app.command()
def check() -> None:
    """Re-confirm the stored device key with the validation service."""
    if get_app().controller.check_validity_remote():
        console.print("[green]✓[/green] Device key is valid")
    else:
        console.print("[red]✗[/red] Device key is not valid or could not be confirmed")
        raise typer.Exit(code=1)


@app.command()
def tokens() -> None:
    """Show the file names accepted for import today."""
    result = get_app().controller.rolling_token_window()
    if result.is_failure():
        _fail(result)
    for token in result.value:
        console.print(f"  • {token}.csv")


@app.command("import-dataset")
def import_dataset(
    tag: str = typer.Argument(..., help="Dataset tag (rocky or sigires)"),
    source: Path = typer.Argument(..., help="Export file to import", exists=True, dir_okay=False),
    skip_token_check: bool = typer.Option(
        False, "--skip-token-check", help="Accept any file name, even for datasets that require a token"
    ),
) -> None:
    """Import an export file as the new contents of a dataset."""
    core = get_app()
    _require_validated(core)
    dataset = _dataset(core, tag)

    result = core.importer.import_dataset(
        dataset,
        source,
        backing_path=core.config.storage.backing_path(tag),
        ttl_days=core.config.datasets.ttl_days[tag],
        check_token=core.config.datasets.requires_token(tag) and not skip_token_check,
    )
    if result.is_failure():
        _fail(result)
    stamp = core.store.embedded_expiry(dataset.backing_path)
    if stamp is not None and core.store.embedded_expiry_is_past(dataset.backing_path):
        console.print(f"[yellow]⚠[/yellow] The file is stamped as expired on {stamp:%d/%m/%Y}")
    console.print(
        f"[green]✓[/green] Dataset '{tag}' loaded: {result.value:,} records, "
        f"valid until {dataset.expires_at:%d/%m/%Y %H:%M}"
    )


@app.command()
def lookup(
    patient_id: str = typer.Argument(..., help="Patient identification number"),
) -> None:
    """Find a patient's pending-activity record in both datasets."""
    core = get_app()
    _require_validated(core)
    _require_fresh_data(core)

    result = core.lookup.lookup(patient_id)
    if result.is_failure():
        _fail(result)
    match = result.value

    if match.institution:
        console.print(f"[bold blue]{safe_value(match.institution, 'name_ips')}[/bold blue] "
                      f"[dim]{safe_value(match.institution, 'name_municipality')}, "
                      f"{safe_value(match.institution, 'name_department')}[/dim]")

    for tag, record in (("rocky", match.rocky), ("sigires", match.sigires)):
        if record is None:
            continue
        table = Table(title=f"{tag}", show_header=False, box=None, padding=(0, 2))
        for column in core.dataset(tag).header:
            table.add_row(f"{column}:", safe_value(record, column))
        console.print(table)


@app.command()
def mark(
    tag: str = typer.Argument(..., help="Dataset tag (rocky or sigires)"),
    patient_id: str = typer.Argument(..., help="Patient identification number"),
    undo: bool = typer.Option(False, "--undo", help="Mark as pending again"),
) -> None:
    """Mark a patient's record as handled and rewrite the dataset file."""
    core = get_app()
    _require_validated(core)
    result = core.store.update_status(_dataset(core, tag), patient_id, not undo)
    if result.is_failure():
        _fail(result)
    if result.value:
        console.print(f"[green]✓[/green] Record updated in '{tag}'")
    else:
        console.print(f"[yellow]⚠[/yellow] No record {patient_id} in '{tag}'; nothing changed")


@app.command()
def export(
    tag: str = typer.Argument(..., help="Dataset tag (rocky or sigires)"),
    destination: Optional[Path] = typer.Option(None, "--to", help="Export directory"),
) -> None:
    """Export a dataset, including statuses, to a timestamped file."""
    core = get_app()
    _require_validated(core)
    result = core.store.export(_dataset(core, tag), destination or core.config.storage.export_path)
    if result.is_failure():
        _fail(result)
    console.print(f"[green]✓[/green] Exported to {result.value}")


@app.command()
def status() -> None:
    """Display device state and dataset freshness."""
    core = get_app()
    controller = core.controller
    identity = controller.identity()

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Device state:", controller.state.value)
    info_table.add_row("Institution:", identity.institution_code or "-")
    console.print(info_table)

    datasets_table = Table(show_header=True, header_style="bold")
    datasets_table.add_column("Dataset", style="cyan")
    datasets_table.add_column("Records", justify="right")
    datasets_table.add_column("Handled", justify="right")
    datasets_table.add_column("Loaded")
    datasets_table.add_column("Expired")
    for tag, dataset in core.datasets.items():
        counts = core.store.summary(dataset)
        days = controller.days_since_loaded(tag)
        loaded = controller.last_loaded(tag) or "-"
        if days is not None:
            loaded = f"{loaded} ({days} days ago)"
        datasets_table.add_row(
            tag,
            f"{counts['total']:,}",
            f"{counts['handled']:,}",
            loaded,
            "[red]yes[/red]" if controller.is_expired(tag) else "[green]no[/green]",
        )
    console.print(datasets_table)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version information"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Offline Care Lookup."""
    if version:
        console.print(f"Offline Care Lookup v{APP_VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()
    setup_logging(
        use_json=settings.log_json,
        log_level="DEBUG" if verbose else settings.log_level,
        log_file=settings.log_file,
    )


if __name__ == "__main__":
    app()
