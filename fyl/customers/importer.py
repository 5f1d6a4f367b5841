"""
Bulk customer import from a CSV file or a public Google Sheet.

Sheet layout (first row is a header):
    A: full name   B: phone   C: city   D: province   E: address

All five columns are required. Valid rows are sent to the bulk-create
procedure in batches; the procedure decides per row whether it is created
or rejected (e.g. duplicates) and reports back.

Usage:
    from fyl.customers.importer import CustomerImporter, parse_customers_csv

    rows = parse_customers_csv(Path("clientes.csv").read_text())
    summary = CustomerImporter(client).run(rows)
"""

import csv
import io
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from supabase import Client

from config.settings import config
from fyl.backend import procedures
from fyl.backend.client import call_rpc
from fyl.errors import FYLError, RpcError
from fyl.models import CustomerImportRow

console = Console()

COLUMNS = ("full_name", "phone", "city", "province", "address")

PROVINCES = {
    "BUENOS AIRES": "Buenos Aires",
    "CAPITAL FEDERAL": "CABA",
    "CIUDAD AUTONOMA DE BUENOS AIRES": "CABA",
    "C.A.B.A.": "CABA",
    "CABA": "CABA",
    "CATAMARCA": "Catamarca",
    "CHACO": "Chaco",
    "CHUBUT": "Chubut",
    "CORDOBA": "Córdoba",
    "CÓRDOBA": "Córdoba",
    "CORRIENTES": "Corrientes",
    "ENTRE RIOS": "Entre Ríos",
    "ENTRE RÍOS": "Entre Ríos",
    "FORMOSA": "Formosa",
    "JUJUY": "Jujuy",
    "LA PAMPA": "La Pampa",
    "LA RIOJA": "La Rioja",
    "MENDOZA": "Mendoza",
    "MISIONES": "Misiones",
    "NEUQUEN": "Neuquén",
    "NEUQUÉN": "Neuquén",
    "RIO NEGRO": "Río Negro",
    "RÍO NEGRO": "Río Negro",
    "SALTA": "Salta",
    "SAN JUAN": "San Juan",
    "SAN LUIS": "San Luis",
    "SANTA CRUZ": "Santa Cruz",
    "SANTA FE": "Santa Fe",
    "SANTIAGO DEL ESTERO": "Santiago del Estero",
    "TIERRA DEL FUEGO": "Tierra del Fuego",
    "TUCUMAN": "Tucumán",
    "TUCUMÁN": "Tucumán",
}

SHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
SHEET_GID_PATTERN = re.compile(r"[#&]gid=([0-9]+)")


class SheetAccessError(FYLError):
    """The Google Sheet could not be read (bad URL, private sheet, HTTP error)."""


# =============================================================================
# PARSING
# =============================================================================


def normalize_province(province: Optional[str]) -> Optional[str]:
    """Map common spellings to the canonical province name; unknown values pass through."""
    if not province:
        return None
    return PROVINCES.get(province.strip().upper(), province)


def parse_customers_csv(content: str) -> list[CustomerImportRow]:
    """
    Read customers from CSV text.

    The header row and blank rows are skipped, as are rows without a name.
    Only the first five columns are read. row_number is the position among
    the parsed rows plus 2 (1-based, after the header).
    """
    lines = [line for line in content.splitlines() if line.strip()]
    if len(lines) < 2:
        return []

    customers = []
    for values in csv.reader(lines[1:]):
        values = [v.strip() for v in values[: len(COLUMNS)]]
        if not any(values):
            continue
        values += [""] * (len(COLUMNS) - len(values))
        row = CustomerImportRow(**dict(zip(COLUMNS, values)))
        if not row.full_name:
            continue
        row.row_number = len(customers) + 2
        customers.append(row)
    return customers


def split_valid(rows: list[CustomerImportRow]) -> tuple[list[CustomerImportRow], list[dict]]:
    """Separate valid rows from rows with missing fields (with their errors)."""
    valid, invalid = [], []
    for row in rows:
        errors = row.validation_errors()
        if errors:
            invalid.append({"row": row.row_number, "full_name": row.full_name, "errors": errors})
        else:
            valid.append(row)
    return valid, invalid


def to_rpc_payload(row: CustomerImportRow) -> dict:
    return {
        "full_name": row.full_name,
        "phone": row.phone,
        "address": row.address,
        "city": row.city,
        "province": normalize_province(row.province),
        "dni": None,
        "email": None,
    }


# =============================================================================
# GOOGLE SHEETS
# =============================================================================


def sheet_export_url(url: str) -> str:
    """
    Turn a Google Sheets link into its CSV export URL.

    Accepts /edit, /edit#gid=N, ?usp=sharing and bare /d/<id> links. The
    first sheet (gid 0) is used when the link names none.
    """
    id_match = SHEET_ID_PATTERN.search(url or "")
    if not id_match:
        raise SheetAccessError("Could not find a Google Sheet id in the URL")
    gid_match = SHEET_GID_PATTERN.search(url)
    gid = gid_match.group(1) if gid_match else "0"
    return f"https://docs.google.com/spreadsheets/d/{id_match.group(1)}/export?format=csv&gid={gid}"


async def fetch_sheet_csv(url: str, timeout: Optional[float] = None) -> str:
    """
    Download a public Google Sheet as CSV text.

    Raises:
        SheetAccessError: the sheet is not shared publicly or the request failed
    """
    csv_url = sheet_export_url(url)
    console.print(f"[cyan]Downloading CSV from {csv_url}[/cyan]")

    async with httpx.AsyncClient(follow_redirects=True) as http_client:
        try:
            response = await http_client.get(
                csv_url, timeout=timeout or config.imports.sheets_timeout_seconds
            )
        except httpx.HTTPError as e:
            raise SheetAccessError(f"Could not reach Google Sheets: {e}") from e

    if response.status_code in (400, 403):
        raise SheetAccessError(
            f"HTTP {response.status_code}: the sheet is not public. Share it as "
            "'Anyone with the link' with viewer access."
        )
    if response.status_code >= 400:
        raise SheetAccessError(f"HTTP {response.status_code}: {response.reason_phrase}")

    text = response.text
    if "Sign in" in text or "Access denied" in text:
        raise SheetAccessError("The sheet requires authentication. Share it publicly.")
    return text


# =============================================================================
# IMPORT
# =============================================================================


@dataclass
class ImportSummary:
    """Outcome of an import run."""

    total: int = 0
    valid: int = 0
    invalid: list = field(default_factory=list)
    created: int = 0
    errors: int = 0
    batches: int = 0
    dry_run: bool = False

    @property
    def processed(self) -> int:
        return self.valid


class CustomerImporter:
    """Sends validated customers to the bulk-create procedure in batches."""

    def __init__(
        self,
        client: Optional[Client],
        batch_size: Optional[int] = None,
        pause_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            client: Supabase client with the service role key (None for dry runs)
            batch_size: Customers per procedure call
            pause_seconds: Pause between batches
            sleep: Injected for tests
        """
        self.client = client
        self.batch_size = batch_size or config.imports.batch_size
        self.pause_seconds = (
            pause_seconds if pause_seconds is not None else config.imports.batch_pause_seconds
        )
        self._sleep = sleep

    def _print_invalid(self, invalid: list[dict]) -> None:
        limit = config.imports.preview_errors
        console.print(f"[yellow]⚠ {len(invalid)} rows with errors:[/yellow]")
        for entry in invalid[:limit]:
            console.print(
                f"  Row {entry['row']}: {entry['full_name'] or 'Sin nombre'} - "
                f"{', '.join(entry['errors'])}"
            )
        if len(invalid) > limit:
            console.print(f"  ... and {len(invalid) - limit} more")

    def _send_batch(self, batch: list[dict], number: int, summary: ImportSummary) -> None:
        try:
            data = call_rpc(self.client, procedures.BULK_CREATE_CUSTOMERS, {"p_customers": batch})
        except RpcError as e:
            console.print(f"[red]✗ Batch {number} failed: {e}[/red]")
            summary.errors += len(batch)
            return

        if not data:
            console.print(f"[red]✗ Batch {number}: no response from the server[/red]")
            summary.errors += len(batch)
            return

        created = int(data.get("created") or 0)
        errors = int(data.get("errors") or 0)
        summary.created += created
        summary.errors += errors
        console.print(
            f"[dim]  Batch {number}: {created} created, {errors} errors, "
            f"{int(data.get('processed') or 0)} processed[/dim]"
        )

        details = data.get("error_details")
        if errors and isinstance(details, list):
            for i, detail in enumerate(details[:5], start=1):
                name = (detail.get("customer") or {}).get("full_name") or detail.get(
                    "full_name", "Unknown customer"
                )
                message = detail.get("error") or detail.get("message") or "Unknown error"
                console.print(f"[yellow]    {i}. {name}: {message}[/yellow]")

    def run(self, rows: list[CustomerImportRow], dry_run: bool = False) -> ImportSummary:
        """
        Validate rows and import the valid ones.

        Args:
            rows: Parsed customers
            dry_run: Only validate and report, write nothing

        Returns:
            ImportSummary with created / error counts
        """
        valid, invalid = split_valid(rows)
        summary = ImportSummary(total=len(rows), valid=len(valid), invalid=invalid, dry_run=dry_run)

        console.print(f"[green]✓ {len(valid)} valid customers[/green] of {len(rows)}")
        if invalid:
            self._print_invalid(invalid)

        if dry_run or not valid:
            if not valid:
                console.print("[red]No valid customers to import[/red]")
            return summary

        payload = [to_rpc_payload(row) for row in valid]
        batches = [payload[i : i + self.batch_size] for i in range(0, len(payload), self.batch_size)]

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            console=console,
        ) as progress:
            task = progress.add_task(
                f"Importing {len(payload)} customers in {len(batches)} batches...",
                total=len(batches),
            )
            for number, batch in enumerate(batches, start=1):
                self._send_batch(batch, number, summary)
                summary.batches += 1
                progress.update(task, advance=1)
                if number < len(batches):
                    self._sleep(self.pause_seconds)

        console.print(
            f"\n[bold green]✓ Import finished:[/bold green] {summary.created} created, "
            f"{summary.errors} errors, {len(payload)} processed"
        )
        return summary
