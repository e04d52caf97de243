import json
from datetime import date

import pytest

from callpubs.errors import MalformedPayload
from callpubs.models.listing import PublicationListing, UpdateListing


def test_parse_entry(make_entry):
    entry = PublicationListing.from_json(make_entry(7, similar=[1, 2], terms="convoy, ambush"))

    assert entry is not None
    assert entry.id == 7
    assert entry.title == "Handbook 7"
    assert entry.cover_image_url == "https://call.example.mil/img/7.png"
    assert entry.date_published == date(2017, 3, 8)
    assert entry.similar == [1, 2]
    assert entry.terms == "convoy, ambush"


@pytest.mark.parametrize(
    "overrides",
    [
        {"id": "7"},
        {"id": True},
        {"title": None},
        {"publication_url": 12},
        {"type": None},
    ],
)
def test_invalid_entry_is_rejected(make_entry, overrides):
    assert PublicationListing.from_json(make_entry(7, **overrides)) is None


def test_missing_field_is_rejected(make_entry):
    raw = make_entry(7)
    del raw["image_url"]
    assert PublicationListing.from_json(raw) is None


def test_optional_fields_default(make_entry):
    raw = make_entry(7)
    del raw["similar"]
    raw["terms"] = None
    entry = PublicationListing.from_json(raw)

    assert entry.similar == []
    assert entry.terms == ""


def test_non_integer_similar_ids_are_dropped(make_entry):
    entry = PublicationListing.from_json(make_entry(7, similar=[1, "2", None, 3, False]))
    assert entry.similar == [1, 3]


def test_update_listing_skips_bad_entries(make_entry, make_listing):
    document = make_listing(
        [make_entry(1), {"id": "bad"}, make_entry(2), "nonsense"],
        service="https://call.example.mil/v2/pubs.json",
        messages=["Welcome", 5],
    )
    listing = UpdateListing.from_bytes(json.dumps(document).encode("utf-8"))

    assert [p.id for p in listing.publications] == [1, 2]
    assert listing.ids == {1, 2}
    assert listing.skipped == 2
    assert listing.messages == ["Welcome"]
    assert listing.service == "https://call.example.mil/v2/pubs.json"


def test_update_listing_without_publications():
    listing = UpdateListing.from_json({"messages": []})
    assert listing.publications == []
    assert listing.service == ""


@pytest.mark.parametrize("body", [b"{not json", b"", b"\xff\xfe"])
def test_invalid_json_raises(body):
    with pytest.raises(MalformedPayload):
        UpdateListing.from_bytes(body)


def test_non_object_document_raises():
    with pytest.raises(MalformedPayload):
        UpdateListing.from_bytes(b"[1, 2, 3]")
