"""Settings form (tkinter) bound to the preference store.

Run as ``python -m llamawriter.settings``; the menu-bar app launches it in a
child process so tkinter owns that process's main thread.
"""

from __future__ import annotations

import argparse
import logging
import tkinter as tk
from pathlib import Path
from tkinter import ttk

from llamawriter.config import (
    ENDPOINT_URL_KEY,
    HOTKEY_KEY,
    PLACEHOLDER,
    PROMPT_TEMPLATE_KEY,
    PreferenceStore,
    load_config,
    validate_endpoint_url,
    validate_hotkey,
    validate_prompt_template,
)
from llamawriter.hotkey import Chord, format_hotkey
from llamawriter.platform import IS_DARWIN

logger = logging.getLogger(__name__)

# Tk key-event state bits.  Aqua reports Command as Mod1 and Option as Mod2;
# X11 reports Alt as Mod1 and Super as Mod4.
_STATE_SHIFT = 0x0001
_STATE_CONTROL = 0x0004
_STATE_MOD1 = 0x0008
_STATE_MOD2 = 0x0010
_STATE_MOD4 = 0x0040

_MODIFIER_KEYSYMS = {
    "shift_l", "shift_r",
    "control_l", "control_r",
    "alt_l", "alt_r",
    "meta_l", "meta_r",
    "super_l", "super_r",
    "win_l", "win_r",
    "option_l", "option_r",
    "command", "caps_lock",
}

_KEYSYM_MAP = {
    "space": "space",
    "return": "enter",
    "escape": "esc",
    "backspace": "backspace",
    "tab": "tab",
    "delete": "delete",
    "prior": "page_up",
    "next": "page_down",
    "home": "home",
    "end": "end",
    "insert": "insert",
    "up": "up",
    "down": "down",
    "left": "left",
    "right": "right",
}


def descriptor_from_key_event(keysym: str, state: int, darwin: bool = IS_DARWIN) -> str:
    """Convert a Tk key event into a canonical hotkey descriptor.

    Returns ``""`` for modifier-only presses and keys that cannot be used as
    a trigger.
    """
    keysym = keysym.lower()
    if keysym in _MODIFIER_KEYSYMS:
        return ""

    modifiers: set[str] = set()
    if state & _STATE_SHIFT:
        modifiers.add("shift")
    if state & _STATE_CONTROL:
        modifiers.add("ctrl")
    if darwin:
        if state & _STATE_MOD1:
            modifiers.add("cmd")
        if state & _STATE_MOD2:
            modifiers.add("alt")
    else:
        if state & _STATE_MOD1:
            modifiers.add("alt")
        if state & _STATE_MOD4:
            modifiers.add("cmd")

    if keysym in _KEYSYM_MAP:
        key = _KEYSYM_MAP[keysym]
    elif keysym.startswith("f") and keysym[1:].isdigit():
        key = keysym
    elif len(keysym) == 1:
        key = keysym
    else:
        return ""
    return format_hotkey(Chord(frozenset(modifiers), key))


class SettingsDialog:
    """Edits endpoint URL, prompt template and hotkey.

    Fields are validated on *Save*; problems are shown inline and nothing is
    written until every field is valid.  Saved values take effect on the
    next hotkey press, no restart needed.
    """

    def __init__(self, store: PreferenceStore) -> None:
        self._store = store

    def show(self) -> None:
        """Show the dialog (blocks until closed)."""
        config = load_config(self._store)

        root = tk.Tk()
        root.title("LlamaWriter Configuration")
        root.minsize(520, 480)
        root.attributes("-topmost", True)
        root.after(100, lambda: root.attributes("-topmost", False))

        frame = ttk.Frame(root, padding=16)
        frame.grid(row=0, column=0, sticky="nsew")
        root.columnconfigure(0, weight=1)
        root.rowconfigure(0, weight=1)
        frame.columnconfigure(0, weight=1)

        row = 0

        # -- Endpoint -------------------------------------------------------
        row = self._heading(frame, "Endpoint Configuration", row)
        endpoint_var = tk.StringVar(master=root, value=config.endpoint_url)
        ttk.Entry(frame, textvariable=endpoint_var, width=60).grid(
            row=row, column=0, sticky="ew", pady=2
        )
        row += 1
        row = self._hint(frame, "The URL of your generation endpoint (e.g. Ollama /api/generate)", row)

        # -- Hotkey ---------------------------------------------------------
        row = self._heading(frame, "Hotkey Configuration", row)
        hotkey_var = self._hotkey_field(root, frame, config.hotkey, row)
        row += 1
        row = self._hint(frame, "Click the field and press your desired key combination", row)

        # -- Prompt template ------------------------------------------------
        row = self._heading(frame, "Prompt Template", row)
        template_text = tk.Text(frame, width=60, height=12, font=("Menlo", 12), undo=True)
        template_text.insert("1.0", config.prompt_template)
        template_text.grid(row=row, column=0, sticky="nsew", pady=2)
        frame.rowconfigure(row, weight=1)
        row += 1
        row = self._hint(frame, f"Use {PLACEHOLDER} as placeholder for selected text", row)

        # -- Inline errors --------------------------------------------------
        error_var = tk.StringVar(master=root, value="")
        ttk.Label(frame, textvariable=error_var, foreground="red", wraplength=480).grid(
            row=row, column=0, sticky="w", pady=(8, 0)
        )
        row += 1

        # -- Buttons --------------------------------------------------------
        buttons = ttk.Frame(frame)
        buttons.grid(row=row, column=0, sticky="e", pady=(12, 0))
        ttk.Button(buttons, text="Cancel", command=root.destroy).pack(side="right", padx=(8, 0))
        ttk.Button(
            buttons,
            text="Save Changes",
            command=lambda: self._do_save(
                root,
                endpoint=endpoint_var.get(),
                template=template_text.get("1.0", "end-1c"),
                hotkey=hotkey_var.get(),
                error_var=error_var,
            ),
        ).pack(side="right")

        root.update_idletasks()
        w, h = root.winfo_width(), root.winfo_height()
        x = (root.winfo_screenwidth() - w) // 2
        y = (root.winfo_screenheight() - h) // 2
        root.geometry(f"+{x}+{y}")

        root.mainloop()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _do_save(
        self,
        root: tk.Tk,
        *,
        endpoint: str,
        template: str,
        hotkey: str,
        error_var: tk.StringVar,
    ) -> None:
        errors = [
            message
            for message in (
                validate_endpoint_url(endpoint),
                validate_prompt_template(template),
                validate_hotkey(hotkey),
            )
            if message
        ]
        if errors:
            error_var.set("\n".join(errors))
            return

        self._store.set(ENDPOINT_URL_KEY, endpoint.strip())
        self._store.set(PROMPT_TEMPLATE_KEY, template)
        self._store.set(HOTKEY_KEY, hotkey)
        logger.info("Settings saved to %s", self._store.path)
        root.destroy()

    @staticmethod
    def _heading(parent: ttk.Frame, text: str, row: int) -> int:
        """Insert a bold section heading and return the *next* row index."""
        lbl = ttk.Label(parent, text=text, font=("TkDefaultFont", 12, "bold"))
        lbl.grid(row=row, column=0, sticky="w", pady=(12, 4))
        return row + 1

    @staticmethod
    def _hint(parent: ttk.Frame, text: str, row: int) -> int:
        ttk.Label(parent, text=text, font=("TkDefaultFont", 10), foreground="gray").grid(
            row=row, column=0, sticky="w", pady=(0, 2)
        )
        return row + 1

    @staticmethod
    def _hotkey_field(master: tk.Tk, parent: ttk.Frame, value: str, row: int) -> tk.StringVar:
        """Add a hotkey recorder: focus the field and press a key combo."""
        var = tk.StringVar(master=master, value=value)
        entry = ttk.Entry(parent, textvariable=var, width=60)
        entry.grid(row=row, column=0, sticky="ew", pady=2)

        style = ttk.Style()
        style.configure("Recording.TEntry", fieldbackground="#e6f3ff")

        def on_focus_in(_event: tk.Event) -> None:  # type: ignore[type-arg]
            entry.configure(style="Recording.TEntry")

        def on_focus_out(_event: tk.Event) -> None:  # type: ignore[type-arg]
            entry.configure(style="TEntry")

        def on_key_press(event: tk.Event) -> str:  # type: ignore[type-arg]
            descriptor = descriptor_from_key_event(event.keysym, event.state)
            if descriptor:
                var.set(descriptor)
            return "break"  # Prevent default handling

        entry.bind("<FocusIn>", on_focus_in)
        entry.bind("<FocusOut>", on_focus_out)
        entry.bind("<KeyPress>", on_key_press)
        return var


def main(argv: list[str] | None = None) -> None:
    """Entry point for ``python -m llamawriter.settings``."""
    parser = argparse.ArgumentParser(description="LlamaWriter settings")
    parser.add_argument("--config", type=Path, default=None, help="preference file to edit")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    SettingsDialog(PreferenceStore(args.config)).show()


if __name__ == "__main__":
    main()
