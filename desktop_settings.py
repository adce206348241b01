"""
Daybreak — Desktop Settings
===========================
Thin wrappers around the GNOME ``gsettings`` CLI for the two desktop
properties Daybreak drives:

  • ``org.gnome.desktop.interface color-scheme``   (light / dark theme)
  • ``org.gnome.desktop.background picture-uri[-dark]``

``ColorSchemeSettings`` also reports theme changes made by anyone else
(Settings app, Quick Settings toggle, another script) through its
``changed`` signal.  Values it wrote itself are never reported.

Dependencies: PyQt6 for the poll timer + signal; ``gsettings`` on PATH.
"""

from __future__ import annotations

import enum
import logging
import subprocess
from typing import Optional

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

log = logging.getLogger("Daybreak.Desktop")

INTERFACE_SCHEMA  = "org.gnome.desktop.interface"
BACKGROUND_SCHEMA = "org.gnome.desktop.background"

GSETTINGS_TIMEOUT = 5          # seconds
POLL_INTERVAL_MS  = 2_000


class DesktopSettingsError(RuntimeError):
    """``gsettings`` is missing, timed out or rejected the value."""


class ColorScheme(str, enum.Enum):
    DEFAULT      = "default"
    PREFER_DARK  = "prefer-dark"
    PREFER_LIGHT = "prefer-light"


class BackgroundVariant(str, enum.Enum):
    LIGHT = "picture-uri"
    DARK  = "picture-uri-dark"


# ─────────────────────────────────────────────────────────────
#  gsettings helpers
# ─────────────────────────────────────────────────────────────
def gsettings_get(schema: str, key: str) -> str:
    """Return the unquoted string value of *schema* *key*."""
    out = _run_gsettings("get", schema, key)
    return out.strip().strip("'")


def gsettings_set(schema: str, key: str, value: str) -> None:
    _run_gsettings("set", schema, key, value)


def _run_gsettings(*args: str) -> str:
    try:
        result = subprocess.run(
            ["gsettings", *args],
            capture_output=True,
            text=True,
            timeout=GSETTINGS_TIMEOUT,
            check=True,
        )
    except FileNotFoundError:
        raise DesktopSettingsError("gsettings not found on PATH") from None
    except OSError as exc:
        raise DesktopSettingsError(f"gsettings failed: {exc}") from None
    except subprocess.TimeoutExpired:
        raise DesktopSettingsError(
            f"gsettings {' '.join(args)} timed out"
        ) from None
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or f"exit {exc.returncode}"
        raise DesktopSettingsError(
            f"gsettings {' '.join(args[:3])} failed: {detail}"
        ) from None
    return result.stdout


# ═════════════════════════════════════════════════════════════
#  ColorSchemeSettings — ThemeApplier
# ═════════════════════════════════════════════════════════════
class ColorSchemeSettings(QObject):
    """
    Reads / writes the desktop colour scheme and polls it for changes
    that did not come from :meth:`set_scheme`.
    """

    changed = pyqtSignal(str)   # new colour-scheme value

    def __init__(
        self,
        poll_interval_ms: int = POLL_INTERVAL_MS,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._last_seen: Optional[str] = None
        self._poll_failed = False
        self._timer = QTimer(self)
        self._timer.setInterval(poll_interval_ms)
        self._timer.timeout.connect(self._poll)

    # ── ThemeApplier API ────────────────────────────────────
    def get_current_scheme(self) -> ColorScheme:
        value = gsettings_get(INTERFACE_SCHEMA, "color-scheme")
        self._last_seen = value
        try:
            return ColorScheme(value)
        except ValueError:
            log.debug("Unknown colour scheme %r — treating as default.", value)
            return ColorScheme.DEFAULT

    def set_scheme(self, scheme: ColorScheme) -> None:
        gsettings_set(INTERFACE_SCHEMA, "color-scheme", scheme.value)
        # Our own write must not look like an external change on next poll.
        self._last_seen = scheme.value
        log.debug("color-scheme → %s", scheme.value)

    # ── change polling ──────────────────────────────────────
    def start(self) -> None:
        try:
            self._last_seen = gsettings_get(INTERFACE_SCHEMA, "color-scheme")
        except DesktopSettingsError as exc:
            log.warning("Cannot read colour scheme: %s", exc)
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    def _poll(self) -> None:
        try:
            value = gsettings_get(INTERFACE_SCHEMA, "color-scheme")
        except DesktopSettingsError as exc:
            if not self._poll_failed:
                log.warning("Colour scheme poll failed: %s", exc)
                self._poll_failed = True
            return
        self._poll_failed = False

        if self._last_seen is not None and value != self._last_seen:
            self._last_seen = value
            self.changed.emit(value)
        else:
            self._last_seen = value


# ═════════════════════════════════════════════════════════════
#  BackgroundSettings — BackgroundApplier
# ═════════════════════════════════════════════════════════════
class BackgroundSettings:
    """Points the light or dark desktop background at a file URI."""

    def set_background(self, variant: BackgroundVariant, file_uri: str) -> None:
        gsettings_set(BACKGROUND_SCHEMA, variant.value, file_uri)
        log.debug("%s → %s", variant.value, file_uri)
