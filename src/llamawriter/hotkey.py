"""Trigger-chord parsing and the global key interceptor (pynput)."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from llamawriter.platform import IS_DARWIN, supports_event_suppression

logger = logging.getLogger(__name__)

# Canonical modifier names in display order (matches the macOS ⌃⌥⇧⌘ convention).
_MODIFIER_ORDER = ("ctrl", "alt", "shift", "cmd")

_MODIFIER_DISPLAY = {
    "ctrl": "Control",
    "alt": "Option",
    "shift": "Shift",
    "cmd": "Command",
}

_MODIFIER_ALIASES = {
    "ctrl": "ctrl",
    "control": "ctrl",
    "alt": "alt",
    "option": "alt",
    "opt": "alt",
    "shift": "shift",
    "cmd": "cmd",
    "command": "cmd",
    "win": "cmd",
    "super": "cmd",
}

_MODIFIER_GLYPHS = {
    "⌃": "ctrl",
    "⌥": "alt",
    "⇧": "shift",
    "⌘": "cmd",
}

_KEY_ALIASES = {
    "escape": "esc",
    "return": "enter",
    "pageup": "page_up",
    "pagedown": "page_down",
    "←": "left",
    "→": "right",
    "↑": "up",
    "↓": "down",
}

_SPECIAL_KEYS = {
    "space",
    "enter",
    "tab",
    "backspace",
    "delete",
    "esc",
    "up",
    "down",
    "left",
    "right",
    "home",
    "end",
    "page_up",
    "page_down",
    "insert",
    *(f"f{n}" for n in range(1, 21)),
}

# pynput Key names of modifier keys -> canonical modifier name
_KEY_TO_MODIFIER = {
    "alt": "alt",
    "alt_l": "alt",
    "alt_r": "alt",
    "alt_gr": "alt",
    "ctrl": "ctrl",
    "ctrl_l": "ctrl",
    "ctrl_r": "ctrl",
    "shift": "shift",
    "shift_l": "shift",
    "shift_r": "shift",
    "cmd": "cmd",
    "cmd_l": "cmd",
    "cmd_r": "cmd",
}

# macOS ANSI virtual key codes.  With Control or Option held, KeyCode.char is
# a control or composed character, so letters and digits are also matched by vk.
_DARWIN_VK_CHARS = {
    0x00: "a", 0x01: "s", 0x02: "d", 0x03: "f", 0x04: "h", 0x05: "g",
    0x06: "z", 0x07: "x", 0x08: "c", 0x09: "v", 0x0B: "b", 0x0C: "q",
    0x0D: "w", 0x0E: "e", 0x0F: "r", 0x10: "y", 0x11: "t", 0x12: "1",
    0x13: "2", 0x14: "3", 0x15: "4", 0x16: "6", 0x17: "5", 0x18: "=",
    0x19: "9", 0x1A: "7", 0x1B: "-", 0x1C: "8", 0x1D: "0", 0x1E: "]",
    0x1F: "o", 0x20: "u", 0x21: "[", 0x22: "i", 0x23: "p", 0x25: "l",
    0x26: "j", 0x27: "'", 0x28: "k", 0x29: ";", 0x2A: "\\", 0x2B: ",",
    0x2C: "/", 0x2D: "n", 0x2E: "m", 0x2F: ".", 0x32: "`",
}


# ---------------------------------------------------------------------------
# Chord descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Chord:
    """A trigger key plus the modifiers that must be held with it."""

    modifiers: frozenset[str]
    key: str

    def key_string(self) -> str:
        """Lower-case ``+``-joined form, e.g. ``"ctrl+shift+space"``."""
        mods = [m for m in _MODIFIER_ORDER if m in self.modifiers]
        return "+".join(mods + [self.key])


def _resolve_trigger(part: str, descriptor: str) -> str:
    part = _KEY_ALIASES.get(part, part)
    if part in _MODIFIER_ALIASES:
        raise ValueError(
            f"Trigger key {part!r} is a modifier. "
            f"The last component of {descriptor!r} must be a non-modifier key."
        )
    if part in _SPECIAL_KEYS or len(part) == 1:
        return part
    raise ValueError(f"Unknown trigger key {part!r} in hotkey {descriptor!r}")


def _parse_glyphs(descriptor: str) -> Chord:
    """Parse the recorder's glyph form, e.g. ``"⌃⇧Space"`` or ``"⌘⌥R"``."""
    modifiers: set[str] = set()
    index = 0
    while index < len(descriptor) and descriptor[index] in _MODIFIER_GLYPHS:
        modifiers.add(_MODIFIER_GLYPHS[descriptor[index]])
        index += 1
    rest = descriptor[index:].strip().lower()
    if not rest:
        raise ValueError(f"Hotkey {descriptor!r} has no trigger key")
    return Chord(frozenset(modifiers), _resolve_trigger(rest, descriptor))


def parse_hotkey(descriptor: str) -> Chord:
    """Parse a hotkey descriptor such as ``"Control+Shift+Space"``.

    Both the ``+``-joined name form (case-insensitive, with aliases such as
    ``control``, ``option`` and ``command``) and the glyph form (``⌃⇧Space``)
    are accepted.  The last component is always the trigger key.

    Raises:
        ValueError: If the descriptor is empty, names an unknown modifier or
            key, or uses a modifier as the trigger.
    """
    text = descriptor.strip()
    if not text:
        raise ValueError(f"Empty hotkey string: {descriptor!r}")

    if text[0] in _MODIFIER_GLYPHS:
        return _parse_glyphs(text)

    parts = [p.strip().lower() for p in text.split("+")]
    *modifier_parts, trigger_part = parts
    if not trigger_part:
        raise ValueError(f"Hotkey {descriptor!r} has no trigger key")

    modifiers: set[str] = set()
    for part in modifier_parts:
        canonical = _MODIFIER_ALIASES.get(part)
        if canonical is None:
            raise ValueError(
                f"Unknown modifier {part!r} in hotkey {descriptor!r}. "
                f"Supported modifiers: control, option, shift, command"
            )
        modifiers.add(canonical)

    return Chord(frozenset(modifiers), _resolve_trigger(trigger_part, descriptor))


def format_hotkey(chord: Chord) -> str:
    """Render *chord* as a human-readable descriptor (``"Control+Shift+Space"``)."""
    parts = [_MODIFIER_DISPLAY[m] for m in _MODIFIER_ORDER if m in chord.modifiers]
    if len(chord.key) == 1:
        parts.append(chord.key.upper())
    else:
        parts.append(chord.key.title())
    return "+".join(parts)


# ---------------------------------------------------------------------------
# Key-event normalisation
# ---------------------------------------------------------------------------


def _key_names(key: Any) -> set[str]:
    """Return every name the pynput *key* can be matched by."""
    names: set[str] = set()
    name = getattr(key, "name", None)  # pynput.keyboard.Key members
    if name:
        names.add(name)
        return names
    char = getattr(key, "char", None)
    if char:
        names.add(char.lower())
    vk = getattr(key, "vk", None)
    if IS_DARWIN and vk in _DARWIN_VK_CHARS:
        names.add(_DARWIN_VK_CHARS[vk])
    return names


def _modifier_of(key: Any) -> str | None:
    name = getattr(key, "name", None)
    if name is None:
        return None
    return _KEY_TO_MODIFIER.get(name)


# ---------------------------------------------------------------------------
# Interceptor
# ---------------------------------------------------------------------------


class HotkeyInterceptor:
    """System-wide key hook that fires *on_trigger* for the configured chord.

    The chord descriptor is fetched from *chord_provider* on every key-down,
    so changes made in the settings form take effect on the next keystroke.
    A matching key-down is swallowed (macOS) and *on_trigger* is called on
    the hook thread; it must return quickly.

    The hook is owned by this object: :meth:`start` installs it and
    :meth:`stop` removes it.  It can also be used as a context manager.
    """

    def __init__(
        self,
        chord_provider: Callable[[], str],
        on_trigger: Callable[[], None],
    ) -> None:
        self._chord_provider = chord_provider
        self._on_trigger = on_trigger

        # Currently held modifier names (canonical)
        self._held_modifiers: set[str] = set()
        # Whether the trigger key is held (suppresses auto-repeat re-fires)
        self._trigger_down = False
        # Set by the press handler, consumed by the OS-level intercept hook
        self._suppress_pending = False

        self._parsed: tuple[str, Chord | None] | None = None
        self._lock = threading.Lock()
        self._listener: Any = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._listener is not None

    def start(self) -> bool:
        """Install the key hook.

        Returns ``False`` (after logging) when the hook cannot be installed,
        e.g. because accessibility permission was denied; the rest of the
        application keeps running without a hotkey.
        """
        if self._listener is not None:
            logger.warning("Key interceptor already running")
            return True

        kwargs: dict[str, Any] = {}
        if supports_event_suppression():
            kwargs["darwin_intercept"] = self._darwin_intercept
        else:
            logger.warning(
                "Trigger keystroke suppression is only available on macOS; "
                "the chord will also reach the focused application"
            )

        try:
            from pynput import keyboard

            listener = keyboard.Listener(
                on_press=self._on_key_press,
                on_release=self._on_key_release,
                **kwargs,
            )
            listener.daemon = True
            listener.start()
            listener.wait()
        except Exception:
            logger.exception("Failed to install global key hook — hotkey disabled")
            return False

        if not getattr(listener, "IS_TRUSTED", True):
            logger.error(
                "Process is not trusted for accessibility — hotkey disabled. "
                "Grant access in System Settings > Privacy & Security > Accessibility."
            )
            listener.stop()
            return False

        self._listener = listener
        logger.info("Key interceptor started (hotkey %r)", self._chord_provider())
        return True

    def stop(self) -> None:
        """Remove the key hook and reset state."""
        listener = self._listener
        self._listener = None
        if listener is not None:
            listener.stop()
            logger.info("Key interceptor stopped")
        with self._lock:
            self._held_modifiers.clear()
            self._trigger_down = False
            self._suppress_pending = False

    def __enter__(self) -> HotkeyInterceptor:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _current_chord(self) -> Chord | None:
        """Parse the configured descriptor, caching by descriptor string."""
        descriptor = self._chord_provider()
        cached = self._parsed
        if cached is not None and cached[0] == descriptor:
            return cached[1]
        try:
            chord: Chord | None = parse_hotkey(descriptor)
        except ValueError as exc:
            logger.error("Configured hotkey %r is invalid: %s", descriptor, exc)
            chord = None
        else:
            logger.info("Hotkey set to %s", format_hotkey(chord))
        self._parsed = (descriptor, chord)
        return chord

    def _on_key_press(self, key: Any) -> None:
        fire = False

        with self._lock:
            self._suppress_pending = False
            mod = _modifier_of(key)
            if mod is not None:
                self._held_modifiers.add(mod)
                return

            chord = self._current_chord()
            if chord is None or chord.key not in _key_names(key):
                return
            if not chord.modifiers <= self._held_modifiers:
                return

            # Auto-repeat of a held chord is swallowed but does not re-fire.
            self._suppress_pending = True
            if not self._trigger_down:
                self._trigger_down = True
                fire = True

        # Fire outside the lock to avoid deadlocks.
        if fire:
            logger.debug("Hotkey activated")
            try:
                self._on_trigger()
            except Exception:
                logger.exception("Error in hotkey trigger callback")

    def _on_key_release(self, key: Any) -> None:
        with self._lock:
            mod = _modifier_of(key)
            if mod is not None:
                self._held_modifiers.discard(mod)
                return
            chord = self._parsed[1] if self._parsed is not None else None
            if chord is not None and chord.key in _key_names(key):
                self._trigger_down = False

    def _darwin_intercept(self, event_type: Any, event: Any) -> Any:
        """Quartz event-tap filter: returning ``None`` swallows the event.

        pynput calls this right after dispatching the same event to the
        press/release handlers.
        """
        with self._lock:
            suppress = self._suppress_pending
            self._suppress_pending = False
        if suppress:
            return None
        return event
