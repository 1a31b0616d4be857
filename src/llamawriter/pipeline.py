"""State-machine based text substitution: copy selection, generate, paste back."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, Protocol

from llamawriter.clipboard import wait_for_change
from llamawriter.config import AppConfig
from llamawriter.llm import ConfigurationError, GenerationError

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE = "IDLE"
    CAPTURE_STARTED = "CAPTURE_STARTED"
    AWAITING_CLIPBOARD_UPDATE = "AWAITING_CLIPBOARD_UPDATE"
    REQUESTING = "REQUESTING"
    INJECTING = "INJECTING"
    RESTORING = "RESTORING"


class CycleResult(str, Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"
    NO_SELECTION = "no_selection"
    CONFIG_ERROR = "config_error"
    GENERATION_FAILED = "generation_failed"
    EMPTY_RESPONSE = "empty_response"
    ERROR = "error"


class ClipboardBackend(Protocol):
    def read(self) -> str | None: ...

    def write(self, text: str | None) -> None: ...

    def clear(self) -> None: ...


class KeyboardBackend(Protocol):
    def copy(self) -> None: ...

    def paste(self) -> None: ...


class Generator(Protocol):
    def generate(self, prompt_template: str, endpoint_url: str, text: str) -> str: ...


StateCallback = Callable[[CycleState, CycleState], None]

_NO_SNAPSHOT = object()


class TextSubstitutionPipeline:
    """Runs one substitution cycle per trigger, at most one at a time.

    The system clipboard is a single shared resource, so a trigger that
    arrives while a cycle is in flight is rejected (and logged) rather than
    queued.  Every abort restores the clipboard snapshot taken at the start
    of the cycle.
    """

    def __init__(
        self,
        config_provider: Callable[[], AppConfig],
        clipboard: ClipboardBackend,
        keyboard: KeyboardBackend,
        client: Generator,
        capture_timeout_s: float = 0.5,
        poll_interval_s: float = 0.02,
        paste_settle_s: float = 0.05,
        restore_delay_s: float = 0.1,
        on_state_change: Optional[StateCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config_provider = config_provider
        self._clipboard = clipboard
        self._keyboard = keyboard
        self._client = client
        self._capture_timeout_s = capture_timeout_s
        self._poll_interval_s = poll_interval_s
        self._paste_settle_s = paste_settle_s
        self._restore_delay_s = restore_delay_s
        self._on_state_change = on_state_change
        self._sleep = sleep

        # In-flight gate: only one cycle may own the clipboard.
        self._lock = threading.Lock()
        self._state = CycleState.IDLE

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def trigger(self) -> bool:
        """Start a cycle on a worker thread; ``False`` if one is in flight.

        Safe to call from the keyboard hook thread: it never blocks.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Substitution already in progress — ignoring trigger")
            return False
        worker = threading.Thread(
            target=self._run_locked,
            name="llamawriter-pipeline",
            daemon=True,
        )
        try:
            worker.start()
        except RuntimeError:
            self._lock.release()
            logger.exception("Could not start substitution worker")
            return False
        return True

    def run_cycle(self) -> CycleResult:
        """Run a cycle on the calling thread and return how it ended."""
        if not self._lock.acquire(blocking=False):
            logger.warning("Substitution already in progress — ignoring trigger")
            return CycleResult.REJECTED
        return self._run_locked()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _run_locked(self) -> CycleResult:
        try:
            result = self._run()
            logger.info("Substitution cycle finished: %s", result.value)
            return result
        finally:
            self._transition(CycleState.IDLE)
            self._lock.release()

    def _run(self) -> CycleResult:
        snapshot: object = _NO_SNAPSHOT
        try:
            # 1. Snapshot and clear, so a fresh copy is detectable.
            self._transition(CycleState.CAPTURE_STARTED)
            snapshot = self._clipboard.read()
            self._clipboard.clear()

            # 2. Ask the foreground app to copy its selection.
            self._transition(CycleState.AWAITING_CLIPBOARD_UPDATE)
            self._keyboard.copy()
            selected = wait_for_change(
                self._clipboard.read,
                snapshot,  # type: ignore[arg-type]
                timeout=self._capture_timeout_s,
                interval=self._poll_interval_s,
                sleep=self._sleep,
            )
            if selected is None:
                logger.info(
                    "No new selection copied within %.2fs — aborting",
                    self._capture_timeout_s,
                )
                self._restore(snapshot)
                return CycleResult.NO_SELECTION
            logger.info("Captured selection (%d chars)", len(selected))
            logger.debug("Selection: %r", selected)

            # 3. Generate.
            self._transition(CycleState.REQUESTING)
            config = self._config_provider()
            try:
                generated = self._client.generate(
                    config.prompt_template,
                    config.endpoint_url,
                    selected,
                )
            except ConfigurationError as exc:
                logger.error("Invalid configuration — aborting: %s", exc)
                self._restore(snapshot)
                return CycleResult.CONFIG_ERROR
            except GenerationError as exc:
                logger.error("Generation failed — aborting: %s", exc)
                self._restore(snapshot)
                return CycleResult.GENERATION_FAILED

            if not generated:
                logger.warning("Endpoint returned empty text — leaving selection untouched")
                self._restore(snapshot)
                return CycleResult.EMPTY_RESPONSE
            logger.debug("Generated: %r", generated)

            # 4. Paste the result over the still-active selection.
            self._transition(CycleState.INJECTING)
            self._clipboard.write(generated)
            self._sleep(self._paste_settle_s)
            self._keyboard.paste()
            self._sleep(self._restore_delay_s)

            # 5. Give the user their clipboard back.
            self._restore(snapshot)
            return CycleResult.COMPLETED
        except Exception:
            logger.exception("Substitution cycle failed")
            if snapshot is not _NO_SNAPSHOT:
                self._restore(snapshot)
            return CycleResult.ERROR

    def _restore(self, snapshot: object) -> None:
        self._transition(CycleState.RESTORING)
        self._clipboard.write(snapshot)  # type: ignore[arg-type]
        logger.debug("Restored original clipboard content")

    def _transition(self, to_state: CycleState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            try:
                self._on_state_change(from_state, to_state)
            except Exception:
                logger.exception("Error in state-change callback")
