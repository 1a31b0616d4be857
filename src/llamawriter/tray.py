"""Menu-bar icon with status display, settings launcher and quit."""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
from pathlib import Path
from typing import Callable

import pystray
from PIL import Image, ImageDraw

from llamawriter.config import get_log_dir

logger = logging.getLogger(__name__)

APP_NAME = "LlamaWriter"

# ---------------------------------------------------------------------------
# Icon colours for each application state
# ---------------------------------------------------------------------------

_STATUS_COLORS: dict[str, str] = {
    "Ready": "#4CAF50",  # green
    "Processing...": "#9C27B0",  # purple
    "Hotkey disabled": "#9E9E9E",  # grey
    "Error": "#F44336",  # red
}

_DEFAULT_ICON_COLOR = "#4CAF50"


def create_icon_image(color: str = _DEFAULT_ICON_COLOR, size: int = 64) -> Image.Image:
    """Create a speech-bubble icon on a transparent background."""
    image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(image)
    margin = size // 8
    draw.rounded_rectangle(
        [margin, margin, size - margin, size - margin * 3],
        radius=size // 6,
        fill=color,
    )
    # Bubble tail
    draw.polygon(
        [
            (size // 3, size - margin * 3),
            (size // 3, size - margin),
            (size // 2, size - margin * 3),
        ],
        fill=color,
    )
    return image


def settings_command() -> list[str]:
    """Command line that opens the settings form in its own process."""
    return [sys.executable, "-m", "llamawriter.settings"]


class TrayApp:
    """Menu-bar application manager.

    Provides a pystray-based icon whose menu shows the current status, opens
    the settings form, opens the logs folder and quits.  :meth:`run` must be
    called on the main thread (required by the macOS backend).
    """

    def __init__(
        self,
        on_quit: Callable[[], None],
        config_path: Path | None = None,
    ) -> None:
        self._on_quit = on_quit
        self._config_path = config_path
        self._status: str = "Ready"
        self._icon: pystray.Icon | None = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def status(self) -> str:
        return self._status

    def run(self) -> None:
        """Run the menu-bar icon (**blocks** the calling thread)."""
        self._icon = pystray.Icon(
            name=APP_NAME,
            icon=create_icon_image(_STATUS_COLORS.get(self._status, _DEFAULT_ICON_COLOR)),
            title=f"{APP_NAME} - {self._status}",
            menu=self._build_menu(),
        )
        logger.info("Starting menu-bar icon")
        self._icon.run()

    def update_status(self, status: str) -> None:
        """Update the status text and icon colour."""
        self._status = status
        icon = self._icon
        if icon is None:
            return

        icon.icon = create_icon_image(_STATUS_COLORS.get(status, _DEFAULT_ICON_COLOR))
        icon.title = f"{APP_NAME} - {status}"
        icon.menu = self._build_menu()
        icon.update_menu()
        logger.debug("Tray status updated to %r", status)

    def stop(self) -> None:
        """Stop the icon and unblock :meth:`run`."""
        icon = self._icon
        if icon is not None:
            icon.stop()
            logger.info("Menu-bar icon stopped")

    # ------------------------------------------------------------------ #
    # Menu construction
    # ------------------------------------------------------------------ #

    def _build_menu(self) -> pystray.Menu:
        return pystray.Menu(
            pystray.MenuItem(f"{APP_NAME} - {self._status}", action=None, enabled=False),
            pystray.MenuItem("Settings...", self._on_settings_clicked),
            pystray.MenuItem("Open Logs Folder", self._on_logs_clicked),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem(f"Quit {APP_NAME}", self._on_quit_clicked),
        )

    # ------------------------------------------------------------------ #
    # Menu action handlers
    # ------------------------------------------------------------------ #

    def _on_settings_clicked(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        """Open the settings form.

        tkinter needs the main thread of its process, which pystray already
        owns here, so the form runs as a child process.
        """
        command = settings_command()
        if self._config_path is not None:
            command += ["--config", str(self._config_path)]
        try:
            subprocess.Popen(command)
            logger.info("Opened settings form")
        except OSError:
            logger.exception("Failed to open settings form")

    def _on_logs_clicked(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        log_dir = get_log_dir()
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            opener = "open" if sys.platform == "darwin" else "xdg-open"
            threading.Thread(
                target=subprocess.call,
                args=([opener, str(log_dir)],),
                daemon=True,
            ).start()
            logger.info("Opened logs folder: %s", log_dir)
        except OSError:
            logger.exception("Failed to open logs folder")

    def _on_quit_clicked(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        logger.info("Quit requested via tray menu")
        try:
            self._on_quit()
        except Exception:
            logger.exception("Error in on_quit callback")
        self.stop()
