import yaml

from callpubs.config import Settings
from callpubs.events import CatalogChanged, PublicationAnnounced
from callpubs.models.publication import PublicationStatus
from callpubs.services.update_service import UpdateResult


def _serve(transport, settings, document):
    transport.add("HEAD", settings.default_service_url, status=200)
    transport.add_json(settings.default_service_url, document)


def test_new_types_get_default_preferences(sync, settings, transport, make_entry, make_listing):
    _serve(transport, settings, make_listing([make_entry(1), make_entry(2, type="Newsletters")]))

    outcome = sync.check_for_updates()

    assert outcome.result is UpdateResult.UPDATED
    assert settings.notifications_enabled("Handbooks")
    assert not settings.auto_download_enabled("Handbooks")

    saved = yaml.safe_load(settings.preferences_path.read_text(encoding="utf-8"))
    assert saved["types"]["Newsletters"] == {"notifications": True, "auto_download": False}

    reloaded = Settings.load(base_dir=settings.base_dir)
    assert set(reloaded.type_preferences) == {"Handbooks", "Newsletters"}


def test_new_publications_are_announced(sync, settings, transport, make_entry, make_listing):
    events = []
    sync.events.subscribe(events.append)
    _serve(transport, settings, make_listing([make_entry(1, title="Urban Operations")]))

    sync.check_for_updates()

    assert CatalogChanged((1,)) in events
    announced = [e for e in events if isinstance(e, PublicationAnnounced)]
    assert announced == [PublicationAnnounced(1, "Urban Operations", "Abstract of publication 1")]


def test_updates_to_existing_publications_are_not_announced(sync, settings, transport, make_entry, make_listing):
    _serve(transport, settings, make_listing([make_entry(1)]))
    sync.check_for_updates()

    events = []
    sync.events.subscribe(events.append)
    _serve(transport, settings, make_listing([make_entry(1, title="Handbook 1 (rev)")]))
    outcome = sync.check_for_updates()

    assert outcome.result is UpdateResult.UPDATED
    assert outcome.new_ids == []
    assert events == []


def test_muted_type_is_not_announced(sync, settings, transport, make_entry, make_listing):
    settings.set_type_preference("Handbooks", notifications=False)
    events = []
    sync.events.subscribe(events.append, PublicationAnnounced)
    _serve(transport, settings, make_listing([make_entry(1)]))

    sync.check_for_updates()

    assert events == []


def test_auto_download_per_type(sync, settings, repo, transport, make_entry, make_listing):
    settings.set_type_preference("Handbooks", auto_download=True)
    transport.add("GET", "https://call.example.mil/docs/1.pdf", body=b"%PDF")
    _serve(
        transport,
        settings,
        make_listing([make_entry(1), make_entry(2, type="Newsletters")]),
    )

    sync.check_for_updates()
    assert sync.wait(timeout=5)

    assert repo.find_by_id(1).status is PublicationStatus.DOWNLOADED
    assert repo.find_by_id(2).status is PublicationStatus.NOT_DOWNLOADED
    assert (settings.documents_dir / "Handbook 1.pdf").read_bytes() == b"%PDF"


def test_process_new_publications_skips_unknown_ids(sync, settings):
    settings.set_type_preference("Handbooks", auto_download=True)
    assert sync.process_new_publications([41, 42]) == []


def test_failed_sync_announces_nothing(sync, settings, transport):
    transport.add("HEAD", settings.default_service_url, status=502)
    events = []
    sync.events.subscribe(events.append)

    outcome = sync.check_for_updates()

    assert outcome.result is UpdateResult.FAILED
    assert events == []
    assert not settings.preferences_path.exists()


def test_notes_survive_sync(sync, settings, repo, transport, make_entry, make_listing):
    _serve(transport, settings, make_listing([make_entry(1)]))
    sync.check_for_updates()
    assert sync.set_notes(1, "see annex B") is True
    assert sync.set_notes(2, "nobody") is False

    sync.check_for_updates(force=True)

    assert repo.find_by_id(1).notes == "see annex B"
