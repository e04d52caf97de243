"""Shared HTTP session and response checks."""

from typing import Optional

import requests

from callpubs import __version__
from callpubs.errors import NetworkFailure, ServerError

USER_AGENT = f"callpubs/{__version__}"

# Anything at or above this is a failed transfer (a 404 still carries a body)
ERROR_STATUS_THRESHOLD = 400


def build_session(user_agent: str = USER_AGENT) -> requests.Session:
    """Create the session shared by the update checker and downloads.

    Keep one session per process; do not create one per request.
    """
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent})
    return session


def check_response(response: requests.Response) -> requests.Response:
    """Return *response* if it is usable, else raise :class:`ServerError`."""
    if response.status_code >= ERROR_STATUS_THRESHOLD:
        raise ServerError(response.status_code, response.url)
    return response


def request(
    session: requests.Session,
    method: str,
    url: str,
    timeout: float,
    headers: Optional[dict[str, str]] = None,
    stream: bool = False,
) -> requests.Response:
    """Issue a request, mapping transport errors to :class:`NetworkFailure`.

    The status code is not checked; use :func:`check_response`.
    """
    try:
        return session.request(
            method,
            url,
            headers=headers,
            timeout=timeout,
            stream=stream,
            allow_redirects=True,
        )
    except requests.RequestException as e:
        raise NetworkFailure(f"{method} {url} failed: {e}") from e
