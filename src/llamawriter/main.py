"""Main entry point: wires the hotkey, pipeline, client and menu-bar icon."""

from __future__ import annotations

import argparse
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from llamawriter.clipboard import Clipboard, KeySynthesizer
from llamawriter.config import AppConfig, PreferenceStore, get_log_dir, load_config
from llamawriter.hotkey import HotkeyInterceptor
from llamawriter.llm import GenerationClient
from llamawriter.pipeline import CycleState, TextSubstitutionPipeline
from llamawriter.tray import TrayApp

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class LlamaWriterApp:
    """Main application orchestrator.

    Owns the key interceptor (installed in :meth:`run`, removed on exit),
    the generation client and the substitution pipeline.  Configuration is
    read from the preference store on every trigger, so edits made in the
    settings form apply without a restart.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self._store = PreferenceStore(config_path)
        logger.info("Using preferences at %s", self._store.path)

        logger.info("Initialising generation client...")
        self._client = GenerationClient()

        logger.info("Initialising substitution pipeline...")
        self._pipeline = TextSubstitutionPipeline(
            config_provider=self._load_config,
            clipboard=Clipboard(),
            keyboard=KeySynthesizer(),
            client=self._client,
            on_state_change=self._on_state_change,
        )

        self._interceptor = HotkeyInterceptor(
            chord_provider=lambda: self._load_config().hotkey,
            on_trigger=self._pipeline.trigger,
        )

        logger.info("Initialising menu-bar icon...")
        self._tray = TrayApp(on_quit=self._on_quit, config_path=config_path)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Install the hotkey, then run the menu-bar icon until Quit."""
        try:
            if self._interceptor.start():
                self._tray.update_status("Ready")
                logger.info("LlamaWriter is ready. Press %s over selected text.", self._load_config().hotkey)
            else:
                self._tray.update_status("Hotkey disabled")

            # tray.run() blocks until the user selects Quit.
            self._tray.run()
        finally:
            self._shutdown()

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _load_config(self) -> AppConfig:
        return load_config(self._store)

    def _on_state_change(self, from_state: CycleState, to_state: CycleState) -> None:
        if to_state == CycleState.CAPTURE_STARTED:
            self._tray.update_status("Processing...")
        elif to_state == CycleState.IDLE:
            self._tray.update_status("Ready" if self._interceptor.active else "Hotkey disabled")

    def _on_quit(self) -> None:
        self._interceptor.stop()

    def _shutdown(self) -> None:
        self._interceptor.stop()
        self._client.close()
        logger.info("LlamaWriter stopped")


# ======================================================================
# Entry point
# ======================================================================


def configure_logging(debug: bool = False) -> None:
    """Log to stderr and to a rotating file under ~/.llamawriter/logs."""
    level_name = "DEBUG" if debug else os.environ.get("LLAMAWRITER_LOG_LEVEL", "INFO")
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_dir = get_log_dir()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_dir / "llamawriter.log",
                maxBytes=1_000_000,
                backupCount=3,
                encoding="utf-8",
            )
        )
    except OSError as exc:
        logger.warning("File logging disabled: %s", exc)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the LlamaWriter application."""
    parser = argparse.ArgumentParser(description="Rewrite selected text with a local LLM")
    parser.add_argument("--config", type=Path, default=None, help="preference file to use")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    args = parser.parse_args(argv)

    configure_logging(args.debug)
    app = LlamaWriterApp(config_path=args.config)
    app.run()


if __name__ == "__main__":
    main()
