"""Command-line interface handlers."""

import argparse
import logging
from datetime import date
from typing import Callable, Optional

from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TaskID, TextColumn

from callpubs.config import Settings
from callpubs.console import ConsoleUI
from callpubs.events import DownloadFailed, DownloadFinished, DownloadProgress, PublicationAnnounced
from callpubs.services.update_service import UpdateResult
from callpubs.synchronizer import CatalogSynchronizer


class CallPubsCLI:
    """CLI application for callpubs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        synchronizer: Optional[CatalogSynchronizer] = None,
        ui: Optional[ConsoleUI] = None,
    ):
        """Initialize CLI.

        Args:
            settings: Application settings (loaded from disk if not provided)
            synchronizer: Catalog synchronizer (built from settings if not provided)
            ui: Console UI
        """
        self.settings = settings or (synchronizer.settings if synchronizer else Settings.load())
        self.sync = synchronizer or CatalogSynchronizer(self.settings)
        self.ui = ui or ConsoleUI()
        self.sync.events.subscribe(self._on_announced, PublicationAnnounced)

    def _on_announced(self, event: PublicationAnnounced) -> None:
        self.ui.announce(event.title, event.abstract)

    def cmd_sync(self, force: bool = False) -> bool:
        """Check for catalog updates and apply them.

        Automatic downloads started by the sync are waited for.
        """
        with self.ui.console.status("Checking for updates..."):
            outcome = self.sync.check_for_updates(force=force)
        self.ui.sync_result(outcome)
        if self.sync.downloads.in_flight_urls():
            self._wait_for_downloads()
        return outcome.result is not UpdateResult.FAILED

    def cmd_list(
        self,
        type_filter: Optional[str] = None,
        since: Optional[date] = None,
        downloaded_only: bool = False,
        sort_by: str = "date",
        ascending: bool = False,
        search: Optional[str] = None,
    ) -> None:
        """List publications, optionally searched and filtered."""
        if search:
            pubs = self.sync.repo.search(search)
            if type_filter is not None:
                pubs = [p for p in pubs if p.type == type_filter]
            if since is not None:
                pubs = [p for p in pubs if p.date_published >= since]
            if downloaded_only:
                pubs = [p for p in pubs if p.is_downloaded]
        else:
            pubs = self.sync.repo.find_all(
                type_filter=type_filter,
                since=since,
                downloaded_only=downloaded_only,
                sort_by=sort_by,
                descending=not ascending,
            )
        self.ui.display_publications(pubs, title="Local publications" if downloaded_only else "Publications")

    def cmd_show(self, publication_id: int) -> bool:
        pub = self.sync.repo.find_by_id(publication_id)
        if pub is None:
            self.ui.error(f"No publication with ID {publication_id}")
            return False
        self.ui.display_publication(pub, self.sync.downloads.document_path(pub))
        return True

    def cmd_download(self, ids: list[int]) -> bool:
        """Download documents and wait for the transfers to finish."""
        started: list[int] = []

        def start() -> None:
            started.extend(pub_id for pub_id in ids if self.sync.download_document(pub_id))

        failed = self._wait_for_downloads(start)
        skipped = [pub_id for pub_id in ids if pub_id not in started]
        if skipped:
            self.ui.warning(f"Not downloaded (unknown ID, bad URL or already downloading): {skipped}")
        return bool(started) and not failed

    def _wait_for_downloads(self, start: Optional[Callable[[], None]] = None) -> list[int]:
        """Show progress bars until in-flight transfers finish.

        Args:
            start: Starts the transfers; called once the progress observer is registered

        Returns:
            IDs whose download failed
        """
        failed: list[int] = []
        finished: list[int] = []
        tasks: dict[int, TaskID] = {}

        with Progress(
            TextColumn("[bold blue]#{task.fields[pub_id]}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=self.ui.console,
        ) as progress:

            def task_for(pub_id: int) -> TaskID:
                if pub_id not in tasks:
                    tasks[pub_id] = progress.add_task("download", total=1.0, pub_id=pub_id)
                return tasks[pub_id]

            def on_event(event) -> None:
                if isinstance(event, DownloadProgress):
                    progress.update(task_for(event.publication_id), completed=event.fraction)
                elif isinstance(event, DownloadFinished):
                    progress.update(task_for(event.publication_id), completed=1.0)
                    finished.append(event.publication_id)
                elif isinstance(event, DownloadFailed):
                    failed.append(event.publication_id)

            self.sync.events.subscribe(on_event)
            try:
                if start is not None:
                    start()
                self.sync.wait()
            finally:
                self.sync.events.unsubscribe(on_event)

        if finished:
            self.ui.success(f"Downloaded: {finished}")
        if failed:
            self.ui.error(f"Download failed: {failed}")
        return failed

    def cmd_delete(self, ids: list[int]) -> None:
        """Delete local document copies (catalog records are kept)."""
        deleted = [pub_id for pub_id in ids if self.sync.delete_local_copy(pub_id)]
        if deleted:
            self.ui.success(f"Deleted local copies: {deleted}")
        missing = [pub_id for pub_id in ids if pub_id not in deleted]
        if missing:
            self.ui.warning(f"Nothing deleted for: {missing}")

    def cmd_notes(self, publication_id: int, text: str) -> bool:
        if self.sync.set_notes(publication_id, text):
            self.ui.success(f"Notes saved for #{publication_id}")
            return True
        self.ui.error(f"No publication with ID {publication_id}")
        return False

    def cmd_verify(self) -> None:
        """Run the integrity sweep in the foreground."""
        self.ui.integrity_result(self.sync.validate_integrity())

    def cmd_types(self) -> None:
        self.ui.display_types(self.sync.repo.list_types(), self.settings.type_preferences)

    def cmd_prefs(
        self,
        type_name: str,
        notifications: Optional[bool] = None,
        auto_download: Optional[bool] = None,
    ) -> None:
        """Change and persist the preferences of one publication type."""
        if type_name not in self.sync.repo.list_types():
            self.ui.warning(f"Type '{type_name}' is not in the catalog yet")
        self.settings.set_type_preference(type_name, notifications, auto_download)
        self.settings.save_preferences()
        self.cmd_types()


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="callpubs",
        description="CALL publications: remote listing → local catalog → offline documents",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Check for catalog updates and apply them")
    sync_parser.add_argument(
        "--force",
        action="store_true",
        help="Fetch the full listing even if the server reports no change",
    )

    # list command
    list_parser = subparsers.add_parser("list", help="List publications")
    list_parser.add_argument("--type", dest="type_filter", help="Only this publication type")
    list_parser.add_argument("--since", type=_parse_date, help="Only published on or after YYYY-MM-DD")
    list_parser.add_argument("--downloaded", action="store_true", help="Only locally stored publications")
    list_parser.add_argument(
        "--sort",
        default="date",
        choices=["date", "type"],
        dest="sort_by",
        help="Sort by date published, or group by type (default: date)",
    )
    list_parser.add_argument("--asc", action="store_true", help="Oldest first")
    list_parser.add_argument("--search", help="Words to match in title, abstract or terms")

    # show command
    show_parser = subparsers.add_parser("show", help="Show one publication")
    show_parser.add_argument("id", type=int, help="Publication ID")

    # download command
    download_parser = subparsers.add_parser("download", help="Download publication documents")
    download_parser.add_argument("ids", nargs="+", type=int, help="Publication IDs")

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete local document copies")
    delete_parser.add_argument("ids", nargs="+", type=int, help="Publication IDs")

    # notes command
    notes_parser = subparsers.add_parser("notes", help="Set your notes on a publication")
    notes_parser.add_argument("id", type=int, help="Publication ID")
    notes_parser.add_argument("text", help="Notes text (empty string clears)")

    # verify command
    subparsers.add_parser("verify", help="Repair download status after crashes")

    # types command
    subparsers.add_parser("types", help="List publication types and preferences")

    # prefs command
    prefs_parser = subparsers.add_parser("prefs", help="Set preferences for a publication type")
    prefs_parser.add_argument("type_name", help="Publication type")
    prefs_parser.add_argument(
        "--notify",
        dest="notifications",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Announce new publications of this type",
    )
    prefs_parser.add_argument(
        "--auto-download",
        dest="auto_download",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Download new publications of this type automatically",
    )

    return parser


def configure_logging(level: str) -> None:
    """Send log records through Rich."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    cli = CallPubsCLI()
    ok = True
    try:
        if args.command != "verify":
            cli.sync.start()

        if args.command == "sync":
            ok = cli.cmd_sync(force=args.force)
        elif args.command == "list":
            cli.cmd_list(
                type_filter=args.type_filter,
                since=args.since,
                downloaded_only=args.downloaded,
                sort_by=args.sort_by,
                ascending=args.asc,
                search=args.search,
            )
        elif args.command == "show":
            ok = cli.cmd_show(args.id)
        elif args.command == "download":
            ok = cli.cmd_download(args.ids)
        elif args.command == "delete":
            cli.cmd_delete(args.ids)
        elif args.command == "notes":
            ok = cli.cmd_notes(args.id, args.text)
        elif args.command == "verify":
            cli.cmd_verify()
        elif args.command == "types":
            cli.cmd_types()
        elif args.command == "prefs":
            cli.cmd_prefs(args.type_name, args.notifications, args.auto_download)
    finally:
        cli.sync.close()

    return 0 if ok else 1
