"""Preference persistence (TOML), config schema and settings validation."""

from __future__ import annotations

import json
import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import tomli_w

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Keys and defaults
# ---------------------------------------------------------------------------

ENDPOINT_URL_KEY = "endpoint_url"
PROMPT_TEMPLATE_KEY = "prompt_template"
HOTKEY_KEY = "hotkey"

PLACEHOLDER = "{{text}}"

DEFAULT_ENDPOINT_URL = "http://localhost:11434/api/generate"
DEFAULT_PROMPT_TEMPLATE = """\
{
    "model": "llama2",
    "prompt": "{{text}}",
    "temperature": 0.7,
    "max_tokens": 2000
}"""
DEFAULT_HOTKEY = "Control+Shift+Space"


def get_config_path() -> Path:
    """Return the path to the preference file (~/.llamawriter/config.toml)."""
    return Path.home() / ".llamawriter" / "config.toml"


def get_log_dir() -> Path:
    """Return the log directory (~/.llamawriter/logs)."""
    return Path.home() / ".llamawriter" / "logs"


# ---------------------------------------------------------------------------
# Preference store
# ---------------------------------------------------------------------------


class PreferenceStore:
    """Durable string key-value store backed by a TOML file.

    Every :meth:`set` is written to disk immediately.  The store does not
    validate values and does not know about defaults; readers supply those
    (see :func:`load_config`).
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or get_config_path()
        self._cache: tuple[tuple[int, int], dict] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> str | None:
        value = self._read_all().get(key)
        if value is None:
            return None
        if not isinstance(value, str):
            logger.warning("Preference %r is not a string (%r) — ignoring", key, value)
            return None
        return value

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Preference values must be strings, got {type(value).__name__}")
        # Re-read so keys written by another process (the settings form) survive.
        data = self._read_all()
        data[key] = value
        self._write_all(data)
        logger.debug("Preference %r updated", key)

    def _read_all(self) -> dict:
        # The key interceptor reads on every keystroke; reparse only on change.
        try:
            stat = self._path.stat()
            stamp = (stat.st_mtime_ns, stat.st_size)
        except OSError:
            return {}
        cached = self._cache
        if cached is not None and cached[0] == stamp:
            return dict(cached[1])
        try:
            with open(self._path, "rb") as f:
                data = tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as exc:
            logger.warning("Failed to read preferences from %s: %s", self._path, exc)
            return {}
        self._cache = (stamp, data)
        return dict(data)

    def _write_all(self, data: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "wb") as f:
            tomli_w.dump(data, f)
        self._cache = None


# ---------------------------------------------------------------------------
# Config schema
# ---------------------------------------------------------------------------


@dataclass
class AppConfig:
    endpoint_url: str = DEFAULT_ENDPOINT_URL
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE
    hotkey: str = DEFAULT_HOTKEY


def load_config(store: PreferenceStore) -> AppConfig:
    """Read the current configuration, falling back to defaults per key."""
    endpoint = store.get(ENDPOINT_URL_KEY)
    template = store.get(PROMPT_TEMPLATE_KEY)
    hotkey = store.get(HOTKEY_KEY)
    return AppConfig(
        endpoint_url=DEFAULT_ENDPOINT_URL if endpoint is None else endpoint,
        prompt_template=DEFAULT_PROMPT_TEMPLATE if template is None else template,
        hotkey=DEFAULT_HOTKEY if hotkey is None else hotkey,
    )


def save_config(store: PreferenceStore, config: AppConfig) -> None:
    """Write every field of *config* to *store*."""
    store.set(ENDPOINT_URL_KEY, config.endpoint_url)
    store.set(PROMPT_TEMPLATE_KEY, config.prompt_template)
    store.set(HOTKEY_KEY, config.hotkey)


# ---------------------------------------------------------------------------
# Validation helpers (settings form only; the pipeline never calls these)
# ---------------------------------------------------------------------------

# Keys the pipeline itself sends with the copy/paste modifier (cmd on macOS,
# ctrl elsewhere).
_SYNTHESIZED_KEYS = frozenset({"c", "v", "x", "a"})
_COPY_PASTE_MODIFIERS = (frozenset({"cmd"}), frozenset({"ctrl"}))


def validate_endpoint_url(url: str) -> str | None:
    """Return an error message for an unusable endpoint URL, else ``None``."""
    url = url.strip()
    if not url:
        return "Endpoint URL is required"
    try:
        result = urlparse(url)
    except ValueError:
        return "Invalid URL format"
    if result.scheme not in ("http", "https"):
        return "URL must start with http:// or https://"
    if not result.netloc:
        return "URL must include a host"
    return None


def validate_prompt_template(template: str) -> str | None:
    """Return an error message for an unusable prompt template, else ``None``."""
    try:
        json.loads(template)
    except ValueError:
        return "Invalid JSON format in prompt template"
    if PLACEHOLDER not in template:
        return f"Prompt template must contain {PLACEHOLDER} placeholder"
    return None


def validate_hotkey(descriptor: str) -> str | None:
    """Return an error message for an unusable hotkey descriptor, else ``None``."""
    from llamawriter.hotkey import parse_hotkey

    try:
        chord = parse_hotkey(descriptor)
    except ValueError as exc:
        return str(exc)
    if not chord.modifiers and len(chord.key) == 1:
        return f"{descriptor} needs a modifier, or it would fire while typing"
    # Chords match on a subset of held modifiers, so the synthesized Cmd+C
    # would also satisfy any chord on C using no other modifier.
    if chord.key in _SYNTHESIZED_KEYS and chord.modifiers in _COPY_PASTE_MODIFIERS:
        return f"{descriptor} conflicts with copy/paste and cannot be used"
    return None
