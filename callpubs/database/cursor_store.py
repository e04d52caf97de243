"""Persisted sync cursor (service endpoint + last update validator)."""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import yaml

from callpubs.errors import StorageFailure

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_URL = "https://airborne.herokuapp.com/static/call/pubs.json"
DEFAULT_LAST_UPDATE = "Wed, 01 Feb 2017 01:35:58 GMT"


@dataclass(frozen=True)
class SyncCursor:
    """Where to sync from and the cache validator of the last good sync."""

    service_url: str = DEFAULT_SERVICE_URL
    last_update: str = DEFAULT_LAST_UPDATE


class CursorStore:
    """Reads and writes the :class:`SyncCursor` as a small YAML file."""

    def __init__(self, path: Path, default: SyncCursor = SyncCursor()):
        self.path = path
        self.default = default

    def load(self) -> SyncCursor:
        """Load the cursor, falling back to defaults for anything missing.

        A missing or unreadable file is not an error; the first sync simply
        starts from the defaults.
        """
        if not self.path.exists():
            return self.default
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Cannot read sync cursor %s: %s", self.path, e)
            return self.default
        if not isinstance(data, dict):
            return self.default

        service_url = data.get("service_url")
        last_update = data.get("last_update")
        return SyncCursor(
            service_url=str(service_url) if service_url else self.default.service_url,
            last_update=str(last_update) if last_update else self.default.last_update,
        )

    def save(self, cursor: SyncCursor) -> None:
        """Write the cursor atomically (temp file + rename).

        Raises:
            StorageFailure: If the file cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {"service_url": cursor.service_url, "last_update": cursor.last_update}
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=".cursor-", suffix=".yaml", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write("# Written after each successful catalog sync\n")
                    yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageFailure(f"Cannot write sync cursor {self.path}: {e}") from e
        logger.info("Saved sync cursor: %s @ %s", cursor.service_url, cursor.last_update)
