"""
Daybreak — Wallpaper Refresh
============================
Fetches a new Unsplash wallpaper at most once per day and applies it to
both the light and dark desktop backgrounds.

Pipeline (``perform_refresh``)
------------------------------
  1. fetch a random landscape photo for the configured keywords
  2. download it at 3840 px / q85
  3. write ``wallpaper-<id>.jpg`` into the user cache directory
  4. point ``picture-uri`` and ``picture-uri-dark`` at that file
  5. record today's date in ``last-wallpaper-change``

Steps 1-3 run on a ``QThread`` worker; 4-5 run back on the GUI thread.
The date marker only moves after every step succeeded, so a failed or
interrupted refresh is retried on the next tick.  Writing
``force-refresh-<anything>`` to the marker forces an immediate refresh.
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime
from typing import Callable, Optional

from PyQt6.QtCore import QObject, QThread, QTimer, QUrl, pyqtSignal

from desktop_settings import (
    BackgroundSettings,
    BackgroundVariant,
    DesktopSettingsError,
)
from settings_store import SettingsStore
from unsplash_api import ProviderError, UnsplashAPI

log = logging.getLogger("Daybreak.Wallpaper")

CHECK_INTERVAL_MS = 3_600_000
FORCE_REFRESH_PREFIX = "force-refresh-"

ORIENTATION   = "landscape"
IMAGE_WIDTH   = 3840
IMAGE_QUALITY = 85

CACHE_DIR = os.path.join(
    os.environ.get("XDG_CACHE_HOME") or os.path.expanduser("~/.cache"),
    "daybreak",
)


class StorageError(Exception):
    """The cache directory or wallpaper file could not be written."""


def parse_keywords(text: str) -> list[str]:
    """Comma-split, trim, drop empties and duplicates (first one wins)."""
    seen: list[str] = []
    for part in (text or "").split(","):
        word = part.strip()
        if word and word not in seen:
            seen.append(word)
    return seen


# ═════════════════════════════════════════════════════════════
#  FileCache
# ═════════════════════════════════════════════════════════════
class FileCache:
    """Per-user wallpaper cache.  Files are overwritten, never versioned."""

    def __init__(self, directory: str = CACHE_DIR) -> None:
        self.directory = directory

    def ensure_dir(self) -> None:
        try:
            os.makedirs(self.directory, mode=0o755, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create {self.directory}: {exc}") from None

    def write_file(self, name: str, data: bytes) -> str:
        self.ensure_dir()
        path = os.path.join(self.directory, name)
        try:
            with open(path, "wb") as f:
                f.write(data)
        except OSError as exc:
            raise StorageError(f"Cannot write {path}: {exc}") from None
        return path


# ═════════════════════════════════════════════════════════════
#  Background worker — steps 1-3 (network + disk)
# ═════════════════════════════════════════════════════════════
class _RefreshWorker(QThread):
    """Runs *job* off the GUI thread and reports ``(photo_id, path)``."""

    done  = pyqtSignal(str, str)    # (photo_id, file_path)
    error = pyqtSignal(str)

    def __init__(self, job: Callable[[], tuple[str, str]], parent=None) -> None:
        super().__init__(parent)
        self._job = job

    def run(self) -> None:
        try:
            photo_id, path = self._job()
        except (ProviderError, StorageError) as exc:
            self.error.emit(str(exc))
        except Exception as exc:
            log.exception("Unexpected refresh failure")
            self.error.emit(repr(exc))
        else:
            self.done.emit(photo_id, path)


# ═════════════════════════════════════════════════════════════
#  WallpaperRefreshPolicy
# ═════════════════════════════════════════════════════════════
class WallpaperRefreshPolicy(QObject):
    """
    Decides when a new wallpaper is due and drives the refresh pipeline
    exactly once per trigger.

    Parameters
    ----------
    settings : SettingsStore
    provider_factory
        ``factory(api_key)`` → PhotoProvider.  Defaults to :class:`UnsplashAPI`.
    background
        BackgroundApplier with ``set_background(variant, uri)``.
    cache : FileCache
    clock
        Returns the current local time (used by the timer and force path).
    threaded : bool
        Run network / disk work on a ``QThread``.  ``False`` runs the whole
        pipeline inline, which is what the tests use.
    """

    name = "WallpaperRefresh"

    refreshed = pyqtSignal(str)     # file:// URI of the new wallpaper

    def __init__(
        self,
        settings: SettingsStore,
        provider_factory: Callable[[str], object] = UnsplashAPI,
        background=None,
        cache: FileCache | None = None,
        clock: Callable[[], datetime] = datetime.now,
        threaded: bool = True,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._settings = settings
        self._provider_factory = provider_factory
        self._background = background or BackgroundSettings()
        self._cache = cache or FileCache()
        self._clock = clock
        self._threaded = threaded

        self._timer: Optional[QTimer] = None
        self._connections: list[int] = []
        self._workers: list[_RefreshWorker] = []   # prevent GC

        self._in_flight = False
        self._pending_day: Optional[date] = None

    @property
    def enabled(self) -> bool:
        return self._timer is not None

    @property
    def is_refreshing(self) -> bool:
        return self._in_flight

    # ─────────────────────────────────────────────────────────
    #  Lifecycle
    # ─────────────────────────────────────────────────────────
    def enable(self) -> None:
        if self.enabled:
            return
        if not self._settings.get_bool("enable-live-wallpaper"):
            log.debug("Live wallpaper is disabled.")
            return

        self._connections.append(
            self._settings.on_change("last-wallpaper-change", self._on_marker_changed)
        )

        self._timer = QTimer(self)
        self._timer.setInterval(CHECK_INTERVAL_MS)
        self._timer.timeout.connect(lambda: self.tick(self._clock()))
        self._timer.start()

        self.tick(self._clock())
        log.debug("Setup complete.")

    def disable(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer.deleteLater()
            self._timer = None

        for handle in self._connections:
            self._settings.unsubscribe(handle)
        self._connections = []

    # ─────────────────────────────────────────────────────────
    #  Triggers
    # ─────────────────────────────────────────────────────────
    def tick(self, now: datetime) -> bool:
        """Refresh if the marker is not today's date.  Returns True if started."""
        if not self._settings.get_bool("enable-live-wallpaper"):
            log.debug("Wallpaper check skipped: feature disabled.")
            return False
        if not self._settings.get_string("unsplash-api-key"):
            log.debug("Wallpaper check skipped: no Unsplash API key configured.")
            return False

        today = now.date().isoformat()
        last = self._settings.get_string("last-wallpaper-change")
        if last == today:
            return False

        log.debug("Needs update (last: %s, today: %s)", last or "never", today)
        return self.perform_refresh(now)

    def on_force_refresh_signal(self, marker: str) -> bool:
        if not marker.startswith(FORCE_REFRESH_PREFIX):
            return False
        log.debug("Force refresh triggered (%s).", marker)
        return self.perform_refresh()

    def _on_marker_changed(self, key: str) -> None:
        self.on_force_refresh_signal(self._settings.get_string(key))

    # ─────────────────────────────────────────────────────────
    #  Pipeline
    # ─────────────────────────────────────────────────────────
    def perform_refresh(self, now: datetime | None = None) -> bool:
        """
        Start the fetch → store → apply → record sequence.  Returns False
        when another refresh is in flight or no API key is configured.
        """
        if self._in_flight:
            log.debug("Refresh already in progress, ignoring trigger.")
            return False

        api_key = self._settings.get_string("unsplash-api-key")
        if not api_key:
            log.debug("No Unsplash API key configured.")
            return False

        keywords = parse_keywords(self._settings.get_string("wallpaper-keywords"))
        provider = self._provider_factory(api_key)

        self._in_flight = True
        self._pending_day = (now or self._clock()).date()

        def job() -> tuple[str, str]:
            return self._fetch_and_store(provider, keywords)

        if not self._threaded:
            try:
                photo_id, path = job()
            except (ProviderError, StorageError) as exc:
                self._on_failed(str(exc))
            except Exception as exc:
                log.exception("Unexpected refresh failure")
                self._on_failed(repr(exc))
            else:
                self._on_stored(photo_id, path)
            return True

        worker = _RefreshWorker(job, parent=self)
        worker.done.connect(self._on_stored)
        worker.error.connect(self._on_failed)
        worker.finished.connect(lambda w=worker: self._reap(w))
        self._workers.append(worker)
        worker.start()
        return True

    def _fetch_and_store(self, provider, keywords: list[str]) -> tuple[str, str]:
        try:
            photo = provider.fetch_random_photo(keywords, orientation=ORIENTATION)
            log.debug("Downloading wallpaper: %s", photo.id)
            data = provider.download_image_bytes(
                photo.raw_url, width=IMAGE_WIDTH, quality=IMAGE_QUALITY
            )
        finally:
            close = getattr(provider, "close", None)
            if close is not None:
                close()

        path = self._cache.write_file(f"wallpaper-{photo.id}.jpg", data)
        return photo.id, path

    def _on_stored(self, photo_id: str, path: str) -> None:
        try:
            uri = QUrl.fromLocalFile(path).toString()
            self._background.set_background(BackgroundVariant.LIGHT, uri)
            self._background.set_background(BackgroundVariant.DARK, uri)
        except DesktopSettingsError as exc:
            self._on_failed(f"Cannot apply background: {exc}")
            return

        day = self._pending_day or self._clock().date()
        if not self._settings.set_string("last-wallpaper-change", day.isoformat()):
            self._on_failed(f"Cannot record refresh date {day.isoformat()}")
            return
        self._in_flight = False
        self._pending_day = None

        log.info("Wallpaper updated successfully (%s)", photo_id)
        self.refreshed.emit(uri)

    def _on_failed(self, msg: str) -> None:
        self._in_flight = False
        self._pending_day = None
        log.error("Failed to update wallpaper: %s", msg)

    def _reap(self, worker: _RefreshWorker) -> None:
        if worker in self._workers:
            self._workers.remove(worker)
        worker.deleteLater()
