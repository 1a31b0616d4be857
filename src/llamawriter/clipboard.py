"""Clipboard and synthesized-keystroke operations for the substitution pipeline."""

from __future__ import annotations

import logging
import time
from typing import Callable

import pyperclip

from llamawriter.platform import get_modifier_key_name

logger = logging.getLogger(__name__)


class Clipboard:
    """Text access to the system clipboard via pyperclip."""

    def read(self) -> str | None:
        """Return the clipboard text, or ``None`` if it cannot be read."""
        try:
            return pyperclip.paste()
        except pyperclip.PyperclipException as exc:
            logger.warning("Clipboard read failed: %s", exc)
            return None

    def write(self, text: str | None) -> None:
        """Replace the clipboard content; ``None`` clears it."""
        try:
            pyperclip.copy("" if text is None else text)
        except pyperclip.PyperclipException as exc:
            logger.warning("Clipboard write failed: %s", exc)

    def clear(self) -> None:
        self.write("")


class KeySynthesizer:
    """Injects copy/paste key combinations into the OS input stream."""

    def __init__(self) -> None:
        # pynput picks its backend at import time; defer until first use.
        from pynput.keyboard import Controller, Key

        self._keyboard = Controller()
        self._key = Key
        self._modifier = getattr(Key, get_modifier_key_name())

    def copy(self) -> None:
        """Simulate Cmd+C (Ctrl+C off macOS)."""
        self._simulate_hotkey("c")

    def paste(self) -> None:
        """Simulate Cmd+V (Ctrl+V off macOS)."""
        self._simulate_hotkey("v")

    def _simulate_hotkey(self, char: str) -> None:
        """Press modifier+char.

        Modifiers the user is still holding from the trigger chord are
        released first so they don't contaminate the simulated combo.
        """
        self._release_all_modifiers()
        time.sleep(0.05)
        self._keyboard.press(self._modifier)
        time.sleep(0.02)
        self._keyboard.press(char)
        time.sleep(0.02)
        self._keyboard.release(char)
        time.sleep(0.02)
        self._keyboard.release(self._modifier)

    def _release_all_modifiers(self) -> None:
        key = self._key
        for mod in (
            key.alt_l, key.alt_r,
            key.ctrl_l, key.ctrl_r,
            key.shift_l, key.shift_r,
            key.cmd_l, key.cmd_r,
        ):
            try:
                self._keyboard.release(mod)
            except Exception:
                logger.debug("Could not release %s", mod)


def wait_for_change(
    read: Callable[[], str | None],
    previous: str | None,
    timeout: float,
    interval: float = 0.02,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> str | None:
    """Poll *read* until it returns non-empty text different from *previous*.

    Returns the new text, or ``None`` if *timeout* seconds pass first.  The
    clipboard offers no completion signal for a synthesized copy, so this
    is a bounded poll rather than a notification.
    """
    deadline = clock() + timeout
    while True:
        text = read()
        if text and text != previous:
            return text
        if clock() >= deadline:
            return None
        sleep(interval)
