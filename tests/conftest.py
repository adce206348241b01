from __future__ import annotations

from datetime import datetime

import pytest
from PyQt6.QtCore import QCoreApplication, QObject, pyqtSignal

from desktop_settings import ColorScheme, DesktopSettingsError
from settings_store import SettingsStore
from unsplash_api import Photo, ProviderError


@pytest.fixture(scope="session", autouse=True)
def qcore_app():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def settings(tmp_path):
    return SettingsStore(str(tmp_path / "settings.json"), watch=False)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeColorScheme(QObject):
    """In-memory ThemeApplier."""

    changed = pyqtSignal(str)

    def __init__(self, scheme: ColorScheme = ColorScheme.DEFAULT) -> None:
        super().__init__()
        self.scheme = scheme
        self.applied: list[ColorScheme] = []
        self.fail = False

    def get_current_scheme(self) -> ColorScheme:
        return self.scheme

    def set_scheme(self, scheme: ColorScheme) -> None:
        if self.fail:
            raise DesktopSettingsError("dconf unavailable")
        self.scheme = scheme
        self.applied.append(scheme)
        # a real backend reports every change, including our own
        self.changed.emit(scheme.value)

    def user_sets(self, scheme: ColorScheme) -> None:
        self.scheme = scheme
        self.changed.emit(scheme.value)


class FakeProvider:
    def __init__(self, photo_id: str = "abc", data: bytes = b"\xff\xd8jpeg") -> None:
        self.photo = Photo(id=photo_id, raw_url=f"https://images.example/{photo_id}?ixid=1")
        self.data = data
        self.fetch_error: ProviderError | None = None
        self.download_error: ProviderError | None = None
        self.fetch_calls: list[tuple] = []
        self.download_calls: list[tuple] = []
        self.closed = False

    def fetch_random_photo(self, keywords, orientation="landscape"):
        self.fetch_calls.append((list(keywords), orientation))
        if self.fetch_error:
            raise self.fetch_error
        return self.photo

    def download_image_bytes(self, url, width=3840, quality=85):
        self.download_calls.append((url, width, quality))
        if self.download_error:
            raise self.download_error
        return self.data

    def close(self):
        self.closed = True


class FakeBackground:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.fail = False

    def set_background(self, variant, file_uri):
        if self.fail:
            raise DesktopSettingsError("schema missing")
        self.calls.append((variant, file_uri))
