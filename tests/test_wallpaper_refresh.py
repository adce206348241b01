import os
import threading
import time
from datetime import datetime

import pytest
from PyQt6.QtCore import QCoreApplication, QUrl

from conftest import FakeBackground, FakeClock, FakeProvider
from desktop_settings import BackgroundVariant
from settings_store import DEFAULTS, SettingsStore
from unsplash_api import ProviderError
from wallpaper_refresh import (
    FileCache,
    StorageError,
    WallpaperRefreshPolicy,
    parse_keywords,
)


@pytest.fixture
def provider():
    return FakeProvider("abc")


@pytest.fixture
def background():
    return FakeBackground()


@pytest.fixture
def cache(tmp_path):
    return FileCache(str(tmp_path / "cache" / "daybreak"))


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 2, 9, 30))


@pytest.fixture
def settings(settings):
    settings.set_bool("enable-live-wallpaper", True)
    settings.set_string("unsplash-api-key", "secret-key")
    settings.set_string("wallpaper-keywords", " nature, ,mountains,nature ")
    settings.set_string("last-wallpaper-change", "2024-01-01")
    return settings


@pytest.fixture
def policy(settings, provider, background, cache, clock):
    keys = []

    def factory(api_key):
        keys.append(api_key)
        return provider

    p = WallpaperRefreshPolicy(
        settings,
        provider_factory=factory,
        background=background,
        cache=cache,
        clock=clock,
        threaded=False,
    )
    p.api_keys = keys
    yield p
    p.disable()


def test_parse_keywords():
    assert parse_keywords(" nature, ,mountains,nature ") == ["nature", "mountains"]
    assert parse_keywords("") == []
    assert parse_keywords(",,") == []


def test_stale_marker_refreshes_end_to_end(policy, settings, provider, background, cache):
    uris = []
    policy.refreshed.connect(uris.append)

    assert policy.tick(datetime(2024, 1, 2, 9, 30)) is True

    path = os.path.join(cache.directory, "wallpaper-abc.jpg")
    with open(path, "rb") as f:
        assert f.read() == provider.data

    uri = QUrl.fromLocalFile(path).toString()
    assert background.calls == [
        (BackgroundVariant.LIGHT, uri),
        (BackgroundVariant.DARK, uri),
    ]
    assert settings.get_string("last-wallpaper-change") == "2024-01-02"
    assert uris == [uri]

    assert policy.api_keys == ["secret-key"]
    assert provider.fetch_calls == [(["nature", "mountains"], "landscape")]
    assert provider.download_calls == [(provider.photo.raw_url, 3840, 85)]
    assert provider.closed
    assert not policy.is_refreshing


def test_fresh_marker_is_noop(policy, settings, provider):
    settings.set_string("last-wallpaper-change", "2024-01-02")

    assert policy.tick(datetime(2024, 1, 2, 23, 59)) is False
    assert provider.fetch_calls == []


def test_second_tick_same_day_is_noop(policy, provider):
    policy.tick(datetime(2024, 1, 2, 6, 0))
    policy.tick(datetime(2024, 1, 2, 7, 0))
    policy.tick(datetime(2024, 1, 2, 8, 0))
    assert len(provider.fetch_calls) == 1


def test_disabled_or_unconfigured_is_skipped(policy, settings, provider):
    settings.set_bool("enable-live-wallpaper", False)
    assert policy.tick(datetime(2024, 1, 2, 9, 0)) is False

    settings.set_bool("enable-live-wallpaper", True)
    settings.set_string("unsplash-api-key", "")
    assert policy.tick(datetime(2024, 1, 2, 9, 0)) is False
    assert provider.fetch_calls == []
    assert settings.get_string("last-wallpaper-change") == "2024-01-01"


def test_force_refresh_bypasses_freshness(policy, settings, provider, clock):
    settings.set_string("last-wallpaper-change", "2024-01-02")
    policy.enable()                      # fresh: the initial tick does nothing
    assert provider.fetch_calls == []

    settings.set_string("last-wallpaper-change", "force-refresh-2024-01-02T12:00:00")

    assert len(provider.fetch_calls) == 1
    assert settings.get_string("last-wallpaper-change") == "2024-01-02"


def test_force_signal_ignores_plain_dates(policy, provider):
    assert policy.on_force_refresh_signal("2024-01-05") is False
    assert provider.fetch_calls == []


def test_fetch_failure_keeps_marker(policy, settings, provider, background):
    provider.fetch_error = ProviderError("HTTP 503", 503)

    policy.tick(datetime(2024, 1, 2, 9, 0))

    assert settings.get_string("last-wallpaper-change") == "2024-01-01"
    assert background.calls == []
    assert not policy.is_refreshing

    # next tick retries and succeeds
    provider.fetch_error = None
    assert policy.tick(datetime(2024, 1, 2, 10, 0)) is True
    assert settings.get_string("last-wallpaper-change") == "2024-01-02"


def test_download_failure_keeps_force_marker(policy, settings, provider):
    provider.download_error = ProviderError("timed out")
    settings.set_string("last-wallpaper-change", "force-refresh-x")

    policy.on_force_refresh_signal("force-refresh-x")

    assert settings.get_string("last-wallpaper-change") == "force-refresh-x"


def test_storage_failure_keeps_marker(settings, provider, background, clock, tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    policy = WallpaperRefreshPolicy(
        settings,
        provider_factory=lambda key: provider,
        background=background,
        cache=FileCache(str(blocker / "daybreak")),
        clock=clock,
        threaded=False,
    )

    policy.tick(datetime(2024, 1, 2, 9, 0))

    assert background.calls == []
    assert settings.get_string("last-wallpaper-change") == "2024-01-01"


def test_background_failure_keeps_marker(policy, settings, background):
    background.fail = True

    policy.tick(datetime(2024, 1, 2, 9, 0))

    assert settings.get_string("last-wallpaper-change") == "2024-01-01"
    assert not policy.is_refreshing


def test_in_flight_refresh_rejects_new_trigger(policy, provider):
    policy._in_flight = True
    assert policy.perform_refresh() is False
    assert policy.tick(datetime(2024, 1, 2, 9, 0)) is False
    assert provider.fetch_calls == []


def test_disable_stops_listening(policy, settings, provider):
    settings.set_string("last-wallpaper-change", "2024-01-02")
    policy.enable()
    policy.disable()
    policy.disable()

    assert not policy.enabled
    settings.set_string("last-wallpaper-change", "force-refresh-y")
    assert provider.fetch_calls == []


def test_file_cache_overwrites(tmp_path):
    cache = FileCache(str(tmp_path / "c"))
    first = cache.write_file("wallpaper-a.jpg", b"one")
    second = cache.write_file("wallpaper-a.jpg", b"two")

    assert first == second
    with open(second, "rb") as f:
        assert f.read() == b"two"


def test_file_cache_raises_storage_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(StorageError):
        FileCache(str(blocker / "sub")).ensure_dir()


def test_unrecorded_date_is_not_reported_as_success(provider, background, cache, clock, tmp_path):
    # a directory where the settings file should be: every write fails
    target = tmp_path / "settings.json"
    target.mkdir()
    store = SettingsStore(
        str(target),
        defaults={
            **DEFAULTS,
            "enable-live-wallpaper": True,
            "unsplash-api-key": "k",
            "last-wallpaper-change": "2024-01-01",
        },
        watch=False,
    )
    policy = WallpaperRefreshPolicy(
        store,
        provider_factory=lambda key: provider,
        background=background,
        cache=cache,
        clock=clock,
        threaded=False,
    )
    uris = []
    policy.refreshed.connect(uris.append)

    assert policy.tick(datetime(2024, 1, 2, 9, 0)) is True

    assert uris == []
    assert not policy.is_refreshing
    assert store.get_string("last-wallpaper-change") == "2024-01-01"


class BlockingProvider(FakeProvider):
    """Holds ``fetch_random_photo`` until ``release`` is set."""

    def __init__(self):
        super().__init__("slow")
        self.release = threading.Event()

    def fetch_random_photo(self, keywords, orientation="landscape"):
        self.release.wait(5)
        return super().fetch_random_photo(keywords, orientation)


def _pump_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        QCoreApplication.processEvents()
        time.sleep(0.01)
    return predicate()


def test_threaded_refresh_guards_against_overlap(settings, background, cache, clock):
    provider = BlockingProvider()
    policy = WallpaperRefreshPolicy(
        settings,
        provider_factory=lambda key: provider,
        background=background,
        cache=cache,
        clock=clock,
        threaded=True,
    )
    uris = []
    policy.refreshed.connect(uris.append)

    try:
        assert policy.tick(datetime(2024, 1, 2, 9, 0)) is True
        assert policy.is_refreshing
        assert policy.tick(datetime(2024, 1, 2, 9, 5)) is False
        assert policy.on_force_refresh_signal("force-refresh-x") is False
    finally:
        provider.release.set()

    assert _pump_until(lambda: not policy.is_refreshing and not policy._workers)

    assert len(provider.fetch_calls) == 1
    assert len(background.calls) == 2
    assert settings.get_string("last-wallpaper-change") == "2024-01-02"
    assert len(uris) == 1
