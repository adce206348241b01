"""
Daybreak — Settings Store
=========================
JSON-backed key/value store shared by every Daybreak module.

The file is re-read on every ``get_*`` call so that edits made by another
process (a second instance, a text editor, a preferences tool) are always
picked up.  A ``QFileSystemWatcher`` turns those external edits into the same
``changed`` notifications that local writes produce.

Usage
-----
>>> store = SettingsStore()
>>> handle = store.on_change("sunrise-time", lambda key: print(key))
>>> store.set_string("sunrise-time", "06:30")
sunrise-time
>>> store.unsubscribe(handle)
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable

from PyQt6.QtCore import QObject, QFileSystemWatcher, pyqtSignal

log = logging.getLogger("Daybreak.Settings")

# ── Paths ───────────────────────────────────────────────────
CONFIG_DIR = os.path.join(
    os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config"),
    "daybreak",
)
SETTINGS_FILE = os.path.join(CONFIG_DIR, "settings.json")

# ── Keys & defaults ─────────────────────────────────────────
DEFAULTS: dict[str, Any] = {
    "enable-auto-theme":     True,
    "sunrise-time":          "07:00",
    "sunset-time":           "19:00",
    "enable-live-wallpaper": False,
    "unsplash-api-key":      "",
    "wallpaper-keywords":    "nature,landscape",
    "last-wallpaper-change": "",
}


class ConfigurationError(ValueError):
    """A setting is missing or malformed; the feature behaves as disabled."""


# ═════════════════════════════════════════════════════════════
#  SettingsStore
# ═════════════════════════════════════════════════════════════
class SettingsStore(QObject):
    """
    Persisted configuration + state blob.

    Parameters
    ----------
    path : str
        JSON file to read and write.  Missing keys fall back to *defaults*.
    watch : bool
        Install a file watcher so that writes from other processes emit
        ``changed``.  Tests pass ``False``.
    """

    changed = pyqtSignal(str)   # key whose value changed

    def __init__(
        self,
        path: str = SETTINGS_FILE,
        defaults: dict[str, Any] | None = None,
        watch: bool = True,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._path = path
        self._defaults = dict(DEFAULTS if defaults is None else defaults)
        self._callbacks: dict[int, tuple[str, Callable[[str], None]]] = {}
        self._next_handle = 1
        self._snapshot = self._load()
        self._watcher: QFileSystemWatcher | None = None

        self.changed.connect(self._dispatch)

        if watch:
            self._start_watching()

    @property
    def path(self) -> str:
        return self._path

    # ─────────────────────────────────────────────────────────
    #  Persistence
    # ─────────────────────────────────────────────────────────
    def _load(self) -> dict:
        values = dict(self._defaults)
        if os.path.exists(self._path):
            try:
                with open(self._path, "r", encoding="utf-8") as f:
                    stored = json.load(f)
                if isinstance(stored, dict):
                    values.update(stored)
                else:
                    log.warning("Ignoring non-object settings file: %s", self._path)
            except (OSError, ValueError) as exc:
                log.warning("Failed to read settings (%s) — using defaults.", exc)
        return values

    def _save(self, **updates) -> bool:
        current = self._load()
        changed_keys = [k for k, v in updates.items() if current.get(k) != v]
        current.update(updates)
        try:
            os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(current, f, indent=2)
            log.debug("Settings saved: %s", list(updates.keys()))
        except OSError as exc:
            log.error("Failed to save settings: %s", exc)
            return False

        self._snapshot = current
        for key in changed_keys:
            self.changed.emit(key)
        return True

    # ─────────────────────────────────────────────────────────
    #  Typed getters
    # ─────────────────────────────────────────────────────────
    def get(self, key: str) -> Any:
        return self._load().get(key, self._defaults.get(key))

    def get_bool(self, key: str) -> bool:
        value = self.get(key)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    def get_string(self, key: str) -> str:
        value = self.get(key)
        return "" if value is None else str(value)

    def get_int(self, key: str) -> int:
        try:
            return int(self.get(key))
        except (TypeError, ValueError):
            raise ConfigurationError(f"{key} is not an integer") from None

    def get_double(self, key: str) -> float:
        try:
            return float(self.get(key))
        except (TypeError, ValueError):
            raise ConfigurationError(f"{key} is not a number") from None

    # ── setters ─────────────────────────────────────────────
    def set_string(self, key: str, value: str) -> bool:
        return self._save(**{key: str(value)})

    def set_bool(self, key: str, value: bool) -> bool:
        return self._save(**{key: bool(value)})

    # ─────────────────────────────────────────────────────────
    #  Subscriptions
    # ─────────────────────────────────────────────────────────
    def on_change(self, key: str, callback: Callable[[str], None]) -> int:
        """Call *callback(key)* whenever *key* changes.  Returns a handle."""
        handle = self._next_handle
        self._next_handle += 1
        self._callbacks[handle] = (key, callback)
        return handle

    def unsubscribe(self, handle: int) -> None:
        self._callbacks.pop(handle, None)

    def _dispatch(self, key: str) -> None:
        # copy: callbacks may unsubscribe while we iterate
        for watched, callback in list(self._callbacks.values()):
            if watched == key:
                callback(key)

    # ─────────────────────────────────────────────────────────
    #  External edits
    # ─────────────────────────────────────────────────────────
    def _start_watching(self) -> None:
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        if not os.path.exists(self._path):
            self._save()
        self._watcher = QFileSystemWatcher([self._path], self)
        self._watcher.fileChanged.connect(self._on_file_changed)
        log.debug("Watching %s for external edits.", self._path)

    def _on_file_changed(self, path: str) -> None:
        # Editors often replace the file, which drops it from the watch list.
        if self._watcher is not None and path not in self._watcher.files():
            if os.path.exists(path):
                self._watcher.addPath(path)

        fresh = self._load()
        previous, self._snapshot = self._snapshot, fresh
        for key in sorted(set(previous) | set(fresh)):
            if previous.get(key) != fresh.get(key):
                log.debug("External change: %s", key)
                self.changed.emit(key)
