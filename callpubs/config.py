"""Configuration management.

``Settings.load()`` builds the settings for one process. The entry point
creates it once and hands it to :class:`~callpubs.synchronizer.CatalogSynchronizer`
and the CLI; nothing reads configuration from module globals.

All user-editable configuration lives under ``.metadata/``:

* ``settings.yaml``     – default service endpoint, timeouts, worker counts
* ``preferences.yaml``  – per publication type: notifications / auto-download

``sync_cursor.yaml`` is also kept there but is written by the sync itself.
On first run, missing files are copied from ``.metadata.example/``.

The base directory is ``$CALLPUBS_HOME`` when set, else the repository root.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from callpubs.database.cursor_store import DEFAULT_LAST_UPDATE, DEFAULT_SERVICE_URL, SyncCursor
from callpubs.utils.text import DEFAULT_DOCUMENT_EXTENSION

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "CALLPUBS_HOME"


# ---------------------------------------------------------------------------
# Per-type preferences
# ---------------------------------------------------------------------------

@dataclass
class TypePreference:
    """What to do when a new publication of this type arrives."""

    notifications: bool = True
    auto_download: bool = False


# ---------------------------------------------------------------------------
# Settings dataclass
# ---------------------------------------------------------------------------

@dataclass
class Settings:
    """Application settings with runtime-mutable paths.

    Usage::

        settings = Settings.load()                  # from $CALLPUBS_HOME or repo root
        settings = Settings.load(base_dir=tmp_path)
        settings.update(request_timeout=5.0)
    """

    base_dir: Path = Path(".")
    metadata_dir: Path = Path(".metadata")
    db_path: Path = Path("catalog.db")
    documents_dir: Path = Path("documents")
    cursor_path: Path = Path(".metadata/sync_cursor.yaml")
    preferences_path: Path = Path(".metadata/preferences.yaml")

    # Network / workers
    default_service_url: str = DEFAULT_SERVICE_URL
    request_timeout: float = 20.0
    download_workers: int = 4
    image_workers: int = 8
    chunk_size: int = 64 * 1024
    document_extension: str = DEFAULT_DOCUMENT_EXTENSION

    # Per publication type
    type_preferences: dict[str, TypePreference] = field(default_factory=dict)

    # ── Computed properties ────────────────────────────────────────────

    @property
    def default_cursor(self) -> SyncCursor:
        """Cursor used before the first successful sync."""
        return SyncCursor(service_url=self.default_service_url, last_update=DEFAULT_LAST_UPDATE)

    @property
    def staging_dir(self) -> Path:
        """Where in-flight document bodies are written before being copied into place."""
        return self.documents_dir / ".partial"

    def notifications_enabled(self, type_name: Optional[str]) -> bool:
        pref = self.type_preferences.get(type_name or "")
        return pref.notifications if pref else False

    def auto_download_enabled(self, type_name: Optional[str]) -> bool:
        pref = self.type_preferences.get(type_name or "")
        return pref.auto_download if pref else False

    # ── Runtime helpers ───────────────────────────────────────────────

    def update(self, **kwargs: Any) -> None:
        """Mutate settings fields at runtime.

        >>> Settings.load().update(request_timeout=5.0)
        """
        for key, value in kwargs.items():
            if not hasattr(self, key):
                raise AttributeError(f"Settings has no field '{key}'")
            setattr(self, key, value)

    def ensure_type_defaults(self, types: Iterable[str]) -> list[str]:
        """Add default preferences for publication types seen for the first time.

        New types get notifications on and auto-download off.

        Returns:
            The types that were added
        """
        added = []
        for type_name in types:
            if type_name not in self.type_preferences:
                self.type_preferences[type_name] = TypePreference()
                added.append(type_name)
        return added

    def set_type_preference(
        self,
        type_name: str,
        notifications: Optional[bool] = None,
        auto_download: Optional[bool] = None,
    ) -> TypePreference:
        pref = self.type_preferences.setdefault(type_name, TypePreference())
        if notifications is not None:
            pref.notifications = notifications
        if auto_download is not None:
            pref.auto_download = auto_download
        return pref

    def save_preferences(self) -> None:
        """Persist per-type preferences to ``preferences.yaml``."""
        save_type_preferences(self.preferences_path, self.type_preferences)

    # ── Factory ───────────────────────────────────────────────────────

    @classmethod
    def load(cls, base_dir: Optional[Path] = None) -> "Settings":
        """Create settings from the files under *base_dir*.

        Pass *base_dir* to override the project root (defaults to
        ``$CALLPUBS_HOME``, else the repository root one level above
        ``callpubs/``).
        """
        if base_dir is None:
            env_home = os.environ.get(HOME_ENV_VAR)
            base_dir = Path(env_home) if env_home else Path(__file__).resolve().parent.parent
        base_dir = Path(base_dir)

        metadata_dir = base_dir / ".metadata"
        cls._ensure_default_files(base_dir, metadata_dir)

        raw = _load_yaml_dict(metadata_dir / "settings.yaml")
        preferences = _load_type_preferences(metadata_dir / "preferences.yaml")

        settings = cls(
            base_dir=base_dir,
            metadata_dir=metadata_dir,
            db_path=base_dir / "catalog.db",
            documents_dir=base_dir / "documents",
            cursor_path=metadata_dir / "sync_cursor.yaml",
            preferences_path=metadata_dir / "preferences.yaml",
            type_preferences=preferences,
        )

        if raw.get("service_url"):
            settings.default_service_url = str(raw["service_url"])
        for key, cast in (
            ("request_timeout", float),
            ("download_workers", int),
            ("image_workers", int),
            ("chunk_size", int),
            ("document_extension", str),
        ):
            if raw.get(key) is None:
                continue
            try:
                setattr(settings, key, cast(raw[key]))
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid %s in settings.yaml: %r", key, raw[key])

        return settings

    # ── Private ───────────────────────────────────────────────────────

    @staticmethod
    def _ensure_default_files(base_dir: Path, metadata_dir: Path) -> None:
        """Copy ``.metadata.example/`` templates when real files are missing."""
        metadata_dir.mkdir(parents=True, exist_ok=True)

        example_dir = base_dir / ".metadata.example"
        if not example_dir.exists():
            return

        for example_file in example_dir.iterdir():
            if example_file.is_file():
                target = metadata_dir / example_file.name
                if not target.exists():
                    shutil.copy2(example_file, target)
                    logger.info("Created .metadata/%s from template", example_file.name)


# ---------------------------------------------------------------------------
# YAML loaders
# ---------------------------------------------------------------------------

def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load a YAML mapping; anything else (or no file) yields ``{}``."""
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Cannot read %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def _load_type_preferences(path: Path) -> dict[str, TypePreference]:
    """Load per-type preferences from ``preferences.yaml``.

    Expected shape::

        types:
          Handbooks:
            notifications: true
            auto_download: false
    """
    data = _load_yaml_dict(path)
    raw_types = data.get("types") or {}
    if not isinstance(raw_types, dict):
        return {}

    preferences: dict[str, TypePreference] = {}
    for type_name, entry in raw_types.items():
        if not isinstance(entry, dict):
            continue
        preferences[str(type_name)] = TypePreference(
            notifications=bool(entry.get("notifications", True)),
            auto_download=bool(entry.get("auto_download", False)),
        )
    return preferences


def save_type_preferences(path: Path, preferences: dict[str, TypePreference]) -> None:
    """Persist per-type preferences to ``preferences.yaml``."""
    data: dict[str, Any] = {
        "types": {
            name: {
                "notifications": pref.notifications,
                "auto_download": pref.auto_download,
            }
            for name, pref in sorted(preferences.items())
        },
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write("# Per publication type: announce new publications / download them automatically\n")
        yaml.dump(
            data,
            f,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )
