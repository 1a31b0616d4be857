"""Platform-specific details for synthesized keystrokes.

This module dispatches on ``sys.platform``; the app targets macOS, but the
copy/paste modifier is resolved for any pynput-supported platform so the
pipeline can run elsewhere.
"""

from __future__ import annotations

import sys

IS_DARWIN = sys.platform == "darwin"


def get_modifier_key_name() -> str:
    """Return the pynput ``Key`` name of the copy/paste modifier.

    ``cmd`` on macOS (Cmd+C / Cmd+V), ``ctrl`` everywhere else.
    """
    return "cmd" if IS_DARWIN else "ctrl"


def supports_event_suppression() -> bool:
    """Whether the global key hook can swallow the trigger keystroke."""
    return IS_DARWIN
