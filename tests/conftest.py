"""Shared fixtures: temp settings, a catalog, and a scripted HTTP transport."""

import io
import json
import threading
from typing import Any, Callable, Optional

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from callpubs.config import Settings
from callpubs.database.repository import PublicationRepository
from callpubs.synchronizer import CatalogSynchronizer

SERVICE_URL = "https://call.example.mil/pubs.json"
SERVER_DATE = "Mon, 06 Mar 2017 12:00:00 GMT"


class _RaisingBody(io.BytesIO):
    """Body that fails after the first read, like a dropped connection."""

    def __init__(self, first: bytes):
        super().__init__(first)
        self._reads = 0

    def read(self, *args):
        self._reads += 1
        if self._reads > 1:
            raise requests.exceptions.ChunkedEncodingError("connection dropped")
        return super().read(*args)


class FakeTransport(BaseAdapter):
    """requests transport adapter answering from a table of canned routes."""

    def __init__(self):
        super().__init__()
        self.routes: dict[tuple[str, str], dict[str, Any]] = {}
        self.sent: list[requests.PreparedRequest] = []

    def add(
        self,
        method: str,
        url: str,
        status: int = 200,
        body: bytes = b"",
        headers: Optional[dict[str, str]] = None,
        exc: Optional[Exception] = None,
        before: Optional[Callable[[], None]] = None,
        drop_after_first_read: bool = False,
    ) -> None:
        self.routes[(method.upper(), url)] = {
            "status": status,
            "body": body,
            "headers": headers or {},
            "exc": exc,
            "before": before,
            "drop": drop_after_first_read,
        }

    def add_json(self, url: str, data: Any, headers: Optional[dict[str, str]] = None) -> None:
        merged = {"Date": SERVER_DATE, "Content-Type": "application/json"}
        merged.update(headers or {})
        self.add("GET", url, body=json.dumps(data).encode("utf-8"), headers=merged)

    def requests_for(self, method: str, url: Optional[str] = None) -> list[requests.PreparedRequest]:
        return [
            r for r in self.sent
            if r.method == method.upper() and (url is None or r.url == url)
        ]

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.sent.append(request)
        route = self.routes.get((request.method, request.url))
        if route is None:
            route = {"status": 404, "body": b"not found", "headers": {}, "exc": None,
                     "before": None, "drop": False}
        if route["before"] is not None:
            route["before"]()
        if route["exc"] is not None:
            raise route["exc"]

        body = b"" if request.method == "HEAD" else route["body"]
        response = requests.Response()
        response.status_code = route["status"]
        response.headers = CaseInsensitiveDict(route["headers"])
        if "Content-Length" not in response.headers:
            response.headers["Content-Length"] = str(len(body))
        response.raw = _RaisingBody(body) if route["drop"] else io.BytesIO(body)
        response.url = request.url
        response.request = request
        response.reason = "OK" if route["status"] < 400 else "Error"
        response.connection = self
        return response

    def close(self):
        pass


def publication_entry(pub_id: int, **overrides: Any) -> dict[str, Any]:
    """A valid listing entry for *pub_id*."""
    entry = {
        "id": pub_id,
        "title": f"Handbook {pub_id}",
        "abstract": f"Abstract of publication {pub_id}",
        "image_url": f"https://call.example.mil/img/{pub_id}.png",
        "publication_url": f"https://call.example.mil/docs/{pub_id}.pdf",
        "date_published": "2017-03-0%d" % (pub_id % 9 + 1),
        "type": "Handbooks",
        "similar": [],
        "terms": "",
    }
    entry.update(overrides)
    return entry


def listing_document(entries: list[dict[str, Any]], service: str = "", messages=None) -> dict[str, Any]:
    return {"service": service, "messages": messages or [], "publications": entries}


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def session(transport) -> requests.Session:
    s = requests.Session()
    s.mount("https://", transport)
    s.mount("http://", transport)
    return s


@pytest.fixture
def settings(tmp_path) -> Settings:
    s = Settings.load(base_dir=tmp_path)
    s.update(
        default_service_url=SERVICE_URL,
        download_workers=2,
        image_workers=2,
        chunk_size=4,
        request_timeout=5.0,
    )
    return s


@pytest.fixture
def repo(settings) -> PublicationRepository:
    return PublicationRepository(settings.db_path)


@pytest.fixture
def sync(settings, repo, session):
    synchronizer = CatalogSynchronizer(settings, repo=repo, session=session)
    yield synchronizer
    synchronizer.close()


@pytest.fixture
def gate():
    """An event a route can block on until the test releases it."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def make_entry():
    return publication_entry


@pytest.fixture
def make_listing():
    return listing_document
