import io
from datetime import date

import pytest
from rich.console import Console

from callpubs.cli import CallPubsCLI, create_parser
from callpubs.console import ConsoleUI
from callpubs.events import DownloadFailed
from callpubs.models.publication import PublicationStatus


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def cli(sync, output):
    ui = ConsoleUI(Console(file=output, width=200, color_system=None))
    return CallPubsCLI(synchronizer=sync, ui=ui)


def _serve(transport, settings, document):
    transport.add("HEAD", settings.default_service_url, status=200)
    transport.add_json(settings.default_service_url, document)


def test_parser_commands():
    parser = create_parser()

    args = parser.parse_args(["list", "--type", "Handbooks", "--since", "2017-03-01", "--asc"])
    assert args.type_filter == "Handbooks"
    assert args.since == date(2017, 3, 1)
    assert args.asc and args.sort_by == "date"

    args = parser.parse_args(["prefs", "Handbooks", "--no-notify", "--auto-download"])
    assert args.notifications is False
    assert args.auto_download is True

    args = parser.parse_args(["--log-level", "DEBUG", "download", "1", "2"])
    assert args.ids == [1, 2]
    assert args.log_level == "DEBUG"

    with pytest.raises(SystemExit):
        parser.parse_args(["list", "--since", "March"])


def test_sync_then_list(cli, settings, transport, output, make_entry, make_listing):
    _serve(
        transport,
        settings,
        make_listing([make_entry(1, title="Urban Operations")], messages=["Welcome back"]),
    )

    assert cli.cmd_sync() is True
    cli.cmd_list()

    text = output.getvalue()
    assert "New CALL Publication!" in text
    assert "Welcome back" in text
    assert "Urban Operations" in text


def test_sync_failure_reported(cli, settings, transport, output):
    transport.add("HEAD", settings.default_service_url, status=500)

    assert cli.cmd_sync() is False
    assert "Sync failed" in output.getvalue()


def test_sync_waits_for_auto_downloads(cli, settings, repo, transport, make_entry, make_listing):
    settings.set_type_preference("Handbooks", auto_download=True)
    transport.add("GET", "https://call.example.mil/docs/1.pdf", body=b"%PDF")
    _serve(transport, settings, make_listing([make_entry(1)]))

    assert cli.cmd_sync() is True
    assert repo.find_by_id(1).status is PublicationStatus.DOWNLOADED


def test_download_and_delete(cli, settings, repo, transport, output, make_entry, make_listing):
    _serve(transport, settings, make_listing([make_entry(1)]))
    cli.cmd_sync()
    transport.add("GET", "https://call.example.mil/docs/1.pdf", body=b"%PDF")

    assert cli.cmd_download([1]) is True
    assert repo.find_by_id(1).is_downloaded

    cli.cmd_delete([1])
    assert not repo.find_by_id(1).is_downloaded
    assert "Deleted local copies: [1]" in output.getvalue()


def test_download_unknown_id(cli, output):
    assert cli.cmd_download([99]) is False
    assert "Not downloaded" in output.getvalue()


def test_show_and_notes(cli, settings, transport, output, make_entry, make_listing):
    _serve(transport, settings, make_listing([make_entry(1)]))
    cli.cmd_sync()

    assert cli.cmd_notes(1, "Read before deployment") is True
    assert cli.cmd_show(1) is True
    assert "Read before deployment" in output.getvalue()
    assert cli.cmd_show(2) is False
    assert cli.cmd_notes(2, "x") is False


def test_prefs_persist(cli, settings, output):
    cli.cmd_prefs("Handbooks", notifications=False, auto_download=True)

    reloaded = type(settings).load(base_dir=settings.base_dir)
    assert reloaded.auto_download_enabled("Handbooks")
    assert not reloaded.notifications_enabled("Handbooks")
    assert "not in the catalog yet" in output.getvalue()


def test_verify_reports_consistent_catalog(cli, output):
    cli.cmd_verify()
    assert "consistent" in output.getvalue()


def test_download_failing_immediately_is_counted(cli, sync, output, monkeypatch):
    def fails_at_once(publication_id):
        sync.events.emit(DownloadFailed(publication_id, "connection reset"))
        return True

    monkeypatch.setattr(sync, "download_document", fails_at_once)

    assert cli.cmd_download([1]) is False
    assert "Download failed: [1]" in output.getvalue()
