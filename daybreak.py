"""
Daybreak — Main Application
===========================
Background desktop companion with:
  • Automatic light / dark theme at sunrise / sunset (manual changes
    are respected until the next transition)
  • Daily Unsplash wallpaper for both light and dark backgrounds
  • Single-instance enforcement (QSharedMemory + QLocalServer IPC)
  • System tray icon (Refresh Wallpaper / Automatic Theme / Exit)

Usage:
    daybreak [--refresh-wallpaper] [--debug]
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from datetime import datetime

from PyQt6.QtCore import QSharedMemory
from PyQt6.QtGui import QAction
from PyQt6.QtNetwork import QLocalServer, QLocalSocket
from PyQt6.QtWidgets import QApplication, QMenu, QStyle, QSystemTrayIcon

from desktop_settings import ColorSchemeSettings
from settings_store import SettingsStore
from theme_scheduler import ThemeScheduler
from wallpaper_refresh import FORCE_REFRESH_PREFIX, WallpaperRefreshPolicy

log = logging.getLogger("Daybreak")

# ── Application key (shared memory + IPC) ───────────────────
APP_KEY = "Daybreak_SingleInstance_v1"

CMD_SHOW    = b"show"
CMD_REFRESH = b"refresh"


# ═════════════════════════════════════════════════════════════
#  DaybreakApp — application controller
# ═════════════════════════════════════════════════════════════
class DaybreakApp:
    """
    Wires together all modules:
      SettingsStore ← settings.json
      ThemeScheduler ← ColorSchemeSettings (gsettings)
      WallpaperRefreshPolicy ← UnsplashAPI + BackgroundSettings
      QSystemTrayIcon
    """

    def __init__(self, command: bytes = CMD_SHOW) -> None:
        # ── QApplication ────────────────────────────────────
        self.app = QApplication(sys.argv)
        self.app.setApplicationName("Daybreak")
        self.app.setQuitOnLastWindowClosed(False)

        # ── Single-instance guard ───────────────────────────
        self._shared_mem = QSharedMemory(APP_KEY)
        self._local_server: QLocalServer | None = None

        if not self._acquire_lock():
            self._signal_existing_instance(command)
            sys.exit(0)

        self._start_ipc_server()

        # ── Core modules ────────────────────────────────────
        self.settings = SettingsStore()
        self.color_scheme = ColorSchemeSettings()
        self.theme = ThemeScheduler(self.settings, self.color_scheme)
        self.wallpaper = WallpaperRefreshPolicy(self.settings)
        self.wallpaper.refreshed.connect(self._on_wallpaper_refreshed)

        self._settings_connections = [
            self.settings.on_change("enable-auto-theme", self._on_theme_toggled),
            self.settings.on_change("enable-live-wallpaper", self._on_wallpaper_toggled),
        ]

        # ── System tray ─────────────────────────────────────
        self._init_tray()

        # ── Enable modules ──────────────────────────────────
        self._enable_modules()

        if command == CMD_REFRESH:
            self._request_refresh()

        # ── Ctrl+C exit ─────────────────────────────────────
        signal.signal(signal.SIGINT, lambda *_: self._exit())

    # ─────────────────────────────────────────────────────────
    #  Module lifecycle
    # ─────────────────────────────────────────────────────────
    def _enable_modules(self) -> None:
        log.info("=== Enabling modules ===")
        self._enable_theme()
        self._enable_wallpaper()

    def _disable_modules(self) -> None:
        log.info("=== Disabling modules ===")
        for name, disable in (
            (self.wallpaper.name, self.wallpaper.disable),
            (self.theme.name, self._disable_theme),
        ):
            try:
                disable()
            except Exception as exc:
                log.error("Failed to disable %s: %s", name, exc)

    def _enable_theme(self) -> None:
        if not self.settings.get_bool("enable-auto-theme"):
            log.debug("Auto theme is disabled.")
            return
        try:
            self.color_scheme.start()
            self.theme.enable()
        except Exception as exc:
            log.error("Failed to enable %s: %s", self.theme.name, exc)

    def _disable_theme(self) -> None:
        self.theme.disable()
        self.color_scheme.stop()

    def _enable_wallpaper(self) -> None:
        try:
            self.wallpaper.enable()
        except Exception as exc:
            log.error("Failed to enable %s: %s", self.wallpaper.name, exc)

    def _on_theme_toggled(self, key: str) -> None:
        enabled = self.settings.get_bool(key)
        if enabled:
            self._enable_theme()
        else:
            self._disable_theme()
        self._theme_act.setChecked(enabled)
        log.info("Automatic theme %s.", "enabled" if enabled else "disabled")

    def _on_wallpaper_toggled(self, key: str) -> None:
        if self.settings.get_bool(key):
            self._enable_wallpaper()
        else:
            self.wallpaper.disable()
        log.info(
            "Live wallpaper %s.",
            "enabled" if self.settings.get_bool(key) else "disabled",
        )

    # ─────────────────────────────────────────────────────────
    #  Single Instance (QSharedMemory + QLocalServer IPC)
    # ─────────────────────────────────────────────────────────
    def _acquire_lock(self) -> bool:
        """
        Try to create shared memory.  If it already exists,
        another instance owns it → return False.
        """
        # Stale shared memory can survive a crash, so detach first.
        if self._shared_mem.attach():
            self._shared_mem.detach()

        if self._shared_mem.create(1):
            log.info("Single-instance lock acquired.")
            return True

        log.warning("Another instance is already running.")
        return False

    def _signal_existing_instance(self, command: bytes) -> None:
        """Forward *command* to the running instance via QLocalSocket."""
        sock = QLocalSocket()
        sock.connectToServer(APP_KEY)
        if sock.waitForConnected(1000):
            sock.write(command)
            sock.waitForBytesWritten(1000)
            sock.disconnectFromServer()
            log.info("Sent '%s' to the running instance.", command.decode())

    def _start_ipc_server(self) -> None:
        """Listen for commands from duplicate launches."""
        self._local_server = QLocalServer()
        QLocalServer.removeServer(APP_KEY)  # clean up stale socket
        if self._local_server.listen(APP_KEY):
            self._local_server.newConnection.connect(self._on_ipc_connection)
            log.info("IPC server listening on '%s'.", APP_KEY)

    def _on_ipc_connection(self) -> None:
        conn = self._local_server.nextPendingConnection()
        if conn:
            conn.waitForReadyRead(500)
            command = bytes(conn.readAll().data()).strip()
            if command == CMD_REFRESH:
                self._request_refresh()
            else:
                self._tray.showMessage("Daybreak", "Daybreak is already running.")
            conn.disconnectFromClient()
            conn.deleteLater()

    # ─────────────────────────────────────────────────────────
    #  System Tray
    # ─────────────────────────────────────────────────────────
    def _init_tray(self) -> None:
        self._tray = QSystemTrayIcon(self.app)
        self._tray.setIcon(
            self.app.style().standardIcon(QStyle.StandardPixmap.SP_DesktopIcon)
        )
        self._tray.setToolTip("Daybreak")

        # ── Context menu ────────────────────────────────────
        menu = QMenu()

        refresh_act = QAction("Refresh Wallpaper Now", self.app)
        refresh_act.triggered.connect(self._request_refresh)
        menu.addAction(refresh_act)

        self._theme_act = QAction("Automatic Theme", self.app)
        self._theme_act.setCheckable(True)
        self._theme_act.setChecked(self.settings.get_bool("enable-auto-theme"))
        self._theme_act.toggled.connect(
            lambda on: self.settings.set_bool("enable-auto-theme", on)
        )
        menu.addAction(self._theme_act)

        menu.addSeparator()

        exit_act = QAction("Exit", self.app)
        exit_act.triggered.connect(self._exit)
        menu.addAction(exit_act)

        self._menu = menu   # keep a reference; the tray does not own it
        self._tray.setContextMenu(menu)
        self._tray.show()

        log.info("System tray icon ready.")

    # ─────────────────────────────────────────────────────────
    #  Actions
    # ─────────────────────────────────────────────────────────
    def _request_refresh(self) -> None:
        if not self.settings.get_bool("enable-live-wallpaper"):
            log.warning("Live wallpaper is disabled — refresh request ignored.")
            return
        token = datetime.now().isoformat(timespec="seconds")
        self.settings.set_string(
            "last-wallpaper-change", f"{FORCE_REFRESH_PREFIX}{token}"
        )

    def _on_wallpaper_refreshed(self, uri: str) -> None:
        self._tray.setToolTip(f"Daybreak — {uri.rsplit('/', 1)[-1]}")

    # ─────────────────────────────────────────────────────────
    #  Clean shutdown
    # ─────────────────────────────────────────────────────────
    def _exit(self) -> None:
        log.info("Shutting down Daybreak…")
        self._disable_modules()
        for handle in self._settings_connections:
            self.settings.unsubscribe(handle)
        self._settings_connections = []
        self._tray.hide()
        if self._local_server:
            self._local_server.close()
        self._shared_mem.detach()
        self.app.quit()

    # ─────────────────────────────────────────────────────────
    #  Event loop
    # ─────────────────────────────────────────────────────────
    def run(self) -> int:
        log.info("Daybreak is running.  Tray icon active.")
        return self.app.exec()


# ═════════════════════════════════════════════════════════════
#  Entry point
# ═════════════════════════════════════════════════════════════
def main() -> None:
    parser = argparse.ArgumentParser(
        prog="daybreak",
        description="Automatic day/night theme and daily Unsplash wallpaper.",
    )
    parser.add_argument(
        "--refresh-wallpaper",
        action="store_true",
        help="fetch a new wallpaper now (forwarded to a running instance)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="enable debug logging"
    )
    args = parser.parse_args()

    # ── Logging ─────────────────────────────────────────────
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s  %(name)-18s  %(levelname)-5s  %(message)s",
        datefmt="%H:%M:%S",
    )

    ctrl = DaybreakApp(CMD_REFRESH if args.refresh_wallpaper else CMD_SHOW)
    sys.exit(ctrl.run())


if __name__ == "__main__":
    main()
