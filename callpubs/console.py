"""Console UI for terminal output using Rich."""

from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from callpubs.config import TypePreference
from callpubs.models.publication import Publication, PublicationStatus
from callpubs.services.download_service import IntegrityReport
from callpubs.services.update_service import UpdateOutcome, UpdateResult

_STATUS_LABELS = {
    PublicationStatus.NOT_DOWNLOADED: "-",
    PublicationStatus.DOWNLOADING: "[yellow]downloading[/yellow]",
    PublicationStatus.DOWNLOADED: "[green]local[/green]",
}


class ConsoleUI:
    """Rich-based console UI for catalog display and notifications."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize console."""
        self._console = console or Console()

    @property
    def console(self) -> Console:
        return self._console

    def info(self, message: str) -> None:
        """Print an info message."""
        self._console.print(message)

    def success(self, message: str) -> None:
        """Print a success message in green."""
        self._console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        """Print a warning message in yellow."""
        self._console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        """Print an error message in red."""
        self._console.print(f"[red]Error:[/red] {message}")

    def sync_result(self, outcome: UpdateOutcome) -> None:
        """Print the summary of a sync pass."""
        if outcome.result is UpdateResult.NO_CHANGE:
            self._console.print("[green]Up to date.[/green] No changes since the last sync.")
            return
        if outcome.result is UpdateResult.FAILED:
            reason = f": {outcome.error}" if outcome.error else ""
            self.error(f"Sync failed{reason}")
            return

        for message in outcome.messages:
            self._console.print(Panel(message, title="Message", expand=False))
        deleted = len(outcome.reconcile.deleted_ids) if outcome.reconcile else 0
        self._console.print(
            f"\n[green]Done.[/green] New publications: [bold]{outcome.new_count}[/bold]"
            f", removed: [bold]{deleted}[/bold]"
        )

    def announce(self, title: str, abstract: str) -> None:
        """Print a new-publication notice."""
        self._console.print(
            Panel(abstract or "", title=f"New CALL Publication! {title}", expand=False)
        )

    def display_publications(self, publications: list[Publication], title: str = "Publications") -> None:
        """Display publications in a formatted table.

        Args:
            publications: Publications to display
            title: Table title
        """
        table = Table(title=title)
        table.add_column("ID", justify="right")
        table.add_column("Date", width=10)
        table.add_column("Type", overflow="fold")
        table.add_column("Title", overflow="fold")
        table.add_column("Local", justify="center")

        for pub in publications:
            table.add_row(
                str(pub.id),
                pub.date_published.isoformat(),
                pub.type or "-",
                pub.title,
                _STATUS_LABELS[pub.status],
            )

        self._console.print(table)
        if not publications:
            self._console.print("Nothing matches - try a different search or filter.")

    def display_publication(self, pub: Publication, document_path: Path) -> None:
        """Display one publication in detail."""
        lines = [
            f"[bold]{pub.title}[/bold]",
            f"Type: {pub.type or '-'}    Published: {pub.date_published_string}",
            f"Status: {pub.status.value}    Cover image: {'yes' if pub.cover_image else 'no'}",
            f"URL: {pub.publication_url}",
        ]
        if pub.is_downloaded:
            lines.append(f"File: {document_path}")
        if pub.abstract:
            lines.extend(["", pub.abstract])
        if pub.terms:
            lines.extend(["", f"[dim]Terms:[/dim] {pub.terms}"])
        if pub.similar:
            lines.extend(["", f"[dim]Similar:[/dim] {', '.join(str(i) for i in pub.similar)}"])
        if pub.notes:
            lines.extend(["", f"[dim]Notes:[/dim] {pub.notes}"])
        self._console.print(Panel("\n".join(lines), title=f"#{pub.id}", expand=False))

    def display_types(self, types: list[str], preferences: dict[str, TypePreference]) -> None:
        """Display publication types with their notification/download preferences."""
        table = Table(title="Publication types")
        table.add_column("Type")
        table.add_column("Notify", justify="center")
        table.add_column("Auto-download", justify="center")
        for type_name in types:
            pref = preferences.get(type_name)
            table.add_row(
                type_name,
                "yes" if pref and pref.notifications else "no",
                "yes" if pref and pref.auto_download else "no",
            )
        self._console.print(table)

    def integrity_result(self, report: IntegrityReport) -> None:
        """Print the integrity sweep summary."""
        if not report.repaired:
            self._console.print("[green]Catalog status is consistent.[/green]")
            return
        if report.orphaned_ids:
            self.warning(f"Missing local files, reset: {report.orphaned_ids}")
        if report.zombie_ids:
            self.warning(f"Stalled downloads, reset: {report.zombie_ids}")
