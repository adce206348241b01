"""
Daybreak — Theme Scheduler
==========================
Switches the desktop between a light (day) and a dark (night) colour
scheme at the configured sunrise / sunset times.

Rules
-----
• Daytime is the half-open window ``[sunrise, sunset)``: the sunrise minute
  is already day, the sunset minute is already night.  No midnight wrap:
  a sunset at or before sunrise yields a permanent night.
• If the user changes the theme by hand, that choice is kept until the next
  sunrise or sunset instant is crossed.
• A failed apply leaves the recorded theme untouched so the next tick
  retries.
"""

from __future__ import annotations

import enum
import logging
import re
from datetime import datetime, time, timedelta
from typing import Callable, Optional

from PyQt6.QtCore import QTimer

from desktop_settings import ColorScheme, DesktopSettingsError
from settings_store import ConfigurationError, SettingsStore

log = logging.getLogger("Daybreak.Theme")

CHECK_INTERVAL_MS = 60_000

_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


class Theme(enum.Enum):
    DAY   = ColorScheme.DEFAULT
    NIGHT = ColorScheme.PREFER_DARK

    @property
    def scheme(self) -> ColorScheme:
        return self.value

    @classmethod
    def from_scheme(cls, scheme: ColorScheme) -> "Theme":
        return cls.NIGHT if scheme == ColorScheme.PREFER_DARK else cls.DAY


# ─────────────────────────────────────────────────────────────
#  Time-of-day helpers
# ─────────────────────────────────────────────────────────────
def parse_time_of_day(text: str) -> time:
    """Parse ``HH:MM`` (24 h).  Raises :class:`ConfigurationError`."""
    m = _TIME_RE.match(text or "")
    if not m:
        raise ConfigurationError(f"invalid time of day: {text!r}")
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        raise ConfigurationError(f"time of day out of range: {text!r}")
    return time(hour, minute)


def minutes_of_day(t: time | datetime) -> int:
    return t.hour * 60 + t.minute


def is_daytime(now: time | datetime, sunrise: time, sunset: time) -> bool:
    current = minutes_of_day(now)
    return minutes_of_day(sunrise) <= current < minutes_of_day(sunset)


def crossed_boundary(last: datetime, now: datetime, boundary: time) -> bool:
    """True if a *boundary* instant lies in ``(last, now]`` (minute precision)."""
    last = last.replace(second=0, microsecond=0)
    now = now.replace(second=0, microsecond=0)
    if now <= last:
        return False
    if now - last >= timedelta(days=1):
        return True

    day = last.date()
    while day <= now.date():
        instant = datetime.combine(day, boundary, tzinfo=now.tzinfo)
        if last < instant <= now:
            return True
        day += timedelta(days=1)
    return False


# ═════════════════════════════════════════════════════════════
#  ThemeScheduler
# ═════════════════════════════════════════════════════════════
class ThemeScheduler:
    """
    Maps wall-clock time to a target theme and decides whether a manual
    override still takes precedence.

    Parameters
    ----------
    settings : SettingsStore
        Source of ``enable-auto-theme``, ``sunrise-time``, ``sunset-time``.
    applier
        ThemeApplier: ``get_current_scheme()``, ``set_scheme(scheme)`` and a
        ``changed`` signal for theme changes made elsewhere.
    clock
        Returns the current local time.
    """

    name = "ThemeScheduler"

    def __init__(
        self,
        settings: SettingsStore,
        applier,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._settings = settings
        self._applier = applier
        self._clock = clock

        self._timer: Optional[QTimer] = None
        self._connections: list[int] = []
        self._listening = False

        # ── runtime state (reset on disable) ────────────────
        self.manual_override_active = False
        self.current_applied_theme: Optional[Theme] = None
        self.last_observed: Optional[datetime] = None

    @property
    def enabled(self) -> bool:
        return self._timer is not None

    # ─────────────────────────────────────────────────────────
    #  Lifecycle
    # ─────────────────────────────────────────────────────────
    def enable(self) -> None:
        if self.enabled:
            return
        if not self._settings.get_bool("enable-auto-theme"):
            log.debug("Auto theme is disabled.")
            return

        self.current_applied_theme = self._read_current_theme()
        self._attach_listener()

        for key in ("sunrise-time", "sunset-time"):
            self._connections.append(
                self._settings.on_change(key, self._on_time_changed)
            )

        self._timer = QTimer()
        self._timer.setInterval(CHECK_INTERVAL_MS)
        self._timer.timeout.connect(lambda: self.tick(self._clock()))
        self._timer.start()

        self.tick(self._clock())
        log.debug(
            "Setup complete — sunrise %s, sunset %s.",
            self._settings.get_string("sunrise-time"),
            self._settings.get_string("sunset-time"),
        )

    def disable(self) -> None:
        if self._timer is not None:
            self._timer.stop()
            self._timer.deleteLater()
            self._timer = None

        self._detach_listener()

        for handle in self._connections:
            self._settings.unsubscribe(handle)
        self._connections = []

        self.manual_override_active = False
        self.current_applied_theme = None
        self.last_observed = None

    # ─────────────────────────────────────────────────────────
    #  Tick
    # ─────────────────────────────────────────────────────────
    def tick(self, now: datetime) -> Optional[Theme]:
        """
        Run one scheduling step.  Returns the theme applied during this
        tick, or ``None`` when nothing was applied.
        """
        if not self._settings.get_bool("enable-auto-theme"):
            return None

        try:
            sunrise = parse_time_of_day(self._settings.get_string("sunrise-time"))
            sunset = parse_time_of_day(self._settings.get_string("sunset-time"))
        except ConfigurationError as exc:
            log.warning("Skipping theme check: %s", exc)
            return None

        now = now.replace(second=0, microsecond=0)
        last, self.last_observed = self.last_observed, now

        target = Theme.DAY if is_daytime(now, sunrise, sunset) else Theme.NIGHT

        if self.manual_override_active:
            if last is None or not (
                crossed_boundary(last, now, sunrise)
                or crossed_boundary(last, now, sunset)
            ):
                return None
            self.manual_override_active = False
            self.current_applied_theme = self._read_current_theme()
            log.debug("Transition time reached, manual override cleared.")

        if self.current_applied_theme == target:
            return None

        return self._apply(target, now)

    def _apply(self, target: Theme, now: datetime) -> Optional[Theme]:
        self._detach_listener()
        try:
            self._applier.set_scheme(target.scheme)
        except DesktopSettingsError as exc:
            log.error("Failed to switch theme: %s", exc)
            return None
        finally:
            if self._timer is not None:
                self._attach_listener()

        self.current_applied_theme = target
        log.info(
            "Theme switched to %s (%s)",
            "Dark" if target is Theme.NIGHT else "Light",
            now.strftime("%H:%M"),
        )
        return target

    # ─────────────────────────────────────────────────────────
    #  Notifications
    # ─────────────────────────────────────────────────────────
    def on_external_theme_change(self, *_) -> None:
        self.manual_override_active = True
        log.debug("Manual theme change detected.")

    def _on_time_changed(self, key: str) -> None:
        log.debug("%s changed to %s", key, self._settings.get_string(key))
        self.tick(self._clock())

    def _attach_listener(self) -> None:
        if not self._listening:
            self._applier.changed.connect(self.on_external_theme_change)
            self._listening = True

    def _detach_listener(self) -> None:
        if self._listening:
            self._applier.changed.disconnect(self.on_external_theme_change)
            self._listening = False

    def _read_current_theme(self) -> Optional[Theme]:
        try:
            return Theme.from_scheme(self._applier.get_current_scheme())
        except DesktopSettingsError as exc:
            log.warning("Cannot read current theme: %s", exc)
            return None
