from callpubs.errors import StorageFailure
from callpubs.models.listing import UpdateListing

LAST_UPDATE = "Tue, 07 Mar 2017 08:00:00 GMT"


def _reconcile(sync, document):
    return sync.reconciler.reconcile(UpdateListing.from_json(document), LAST_UPDATE)


def test_listing_replaces_catalog(sync, repo, make_entry, make_listing):
    first = _reconcile(sync, make_listing([make_entry(1), make_entry(2), make_entry(4, similar=[1])]))
    assert first.succeeded
    assert first.new_publication_ids == [1, 2, 4]
    assert repo.similar_ids(1) == [4]

    outcome = _reconcile(sync, make_listing([make_entry(1), make_entry(2), make_entry(3, similar=[1])]))

    assert outcome.succeeded
    assert outcome.new_publication_ids == [3]
    assert outcome.deleted_ids == [4]
    assert repo.ids() == [1, 2, 3]
    assert repo.similar_ids(1) == [3]
    assert repo.find_by_id(4) is None


def test_forward_links_converge_on_later_pass(sync, repo, make_entry, make_listing):
    # 1 lists 2 as similar before 2 is stored
    document = make_listing([make_entry(1, similar=[2]), make_entry(2)])

    _reconcile(sync, document)
    assert repo.similar_ids(1) == []

    _reconcile(sync, document)
    assert repo.similar_ids(1) == [2]
    assert repo.similar_ids(2) == [1]


def test_reconcile_keeps_notes(sync, repo, make_entry, make_listing):
    _reconcile(sync, make_listing([make_entry(1)]))
    repo.set_notes(1, "brief the platoon")

    _reconcile(sync, make_listing([make_entry(1, title="Handbook 1 (2nd ed.)")]))

    pub = repo.find_by_id(1)
    assert pub.title == "Handbook 1 (2nd ed.)"
    assert pub.notes == "brief the platoon"


def test_success_advances_cursor(sync, make_entry, make_listing):
    before = sync.cursor

    outcome = _reconcile(sync, make_listing([make_entry(1)]))

    assert outcome.cursor is not None
    assert sync.cursor.last_update == LAST_UPDATE
    assert sync.cursor.service_url == before.service_url


def test_listing_service_url_replaces_endpoint(sync, make_entry, make_listing):
    _reconcile(sync, make_listing([make_entry(1)], service="https://call.example.mil/v2/pubs.json"))
    assert sync.cursor.service_url == "https://call.example.mil/v2/pubs.json"

    _reconcile(sync, make_listing([make_entry(1)], service="not a url"))
    assert sync.cursor.service_url == "https://call.example.mil/v2/pubs.json"


def test_failed_entry_keeps_cursor_and_retry_is_idempotent(
    sync, repo, make_entry, make_listing, monkeypatch
):
    before = sync.cursor
    real_upsert = repo.upsert_from_listing

    def flaky_upsert(entry):
        if entry.id == 2:
            raise StorageFailure("disk I/O error")
        return real_upsert(entry)

    monkeypatch.setattr(repo, "upsert_from_listing", flaky_upsert)
    document = make_listing([make_entry(1), make_entry(2), make_entry(3)])

    outcome = _reconcile(sync, document)
    assert not outcome.succeeded
    assert outcome.failed_ids == [2]
    assert outcome.new_publication_ids == [1, 3]
    assert sync.cursor == before

    monkeypatch.setattr(repo, "upsert_from_listing", real_upsert)
    retry = _reconcile(sync, document)

    assert retry.succeeded
    assert retry.new_publication_ids == [2]
    assert repo.ids() == [1, 2, 3]
    assert sync.cursor.last_update == LAST_UPDATE


def test_cursor_save_failure_fails_pass(sync, make_entry, make_listing, monkeypatch):
    def broken_save(cursor):
        raise StorageFailure("read-only filesystem")

    monkeypatch.setattr(sync.cursor_store, "save", broken_save)

    outcome = _reconcile(sync, make_listing([make_entry(1)]))
    assert not outcome.succeeded
    assert outcome.cursor is None


def test_cover_images_fetched_once(sync, repo, transport, make_entry, make_listing):
    image_url = "https://call.example.mil/img/1.png"
    transport.add("GET", image_url, body=b"\x89PNG-cover")
    document = make_listing([make_entry(1)])

    outcome = _reconcile(sync, document)
    assert outcome.covers_fetched == 1
    assert repo.find_by_id(1).cover_image == b"\x89PNG-cover"

    _reconcile(sync, document)
    assert len(transport.requests_for("GET", image_url)) == 1


def test_cover_failure_does_not_fail_pass(sync, repo, make_entry, make_listing):
    # no route for the image: the fake server answers 404
    outcome = _reconcile(sync, make_listing([make_entry(1), make_entry(2, image_url="")]))

    assert outcome.succeeded
    assert outcome.covers_fetched == 0
    assert not repo.has_cover_image(1)
    assert repo.ids() == [1, 2]


def test_messages_are_reported(sync, make_entry, make_listing):
    outcome = _reconcile(sync, make_listing([make_entry(1)], messages=["Server maintenance Friday"]))
    assert outcome.messages == ["Server maintenance Friday"]


def test_unreadable_catalog_fails_pass_without_raising(sync, repo, make_entry, make_listing, tmp_path):
    before = sync.cursor
    # a directory cannot be opened as a database
    repo.db_path = tmp_path

    outcome = _reconcile(sync, make_listing([make_entry(1), make_entry(2)]))

    assert not outcome.succeeded
    assert outcome.failed_ids == [1, 2]
    assert sync.cursor == before
