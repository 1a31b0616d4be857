"""Tests for TextSubstitutionPipeline."""

from __future__ import annotations

import threading
import time
import types

import httpx

from llamawriter.config import AppConfig
from llamawriter.llm import ConfigurationError, GenerationClient, GenerationError
from llamawriter.pipeline import CycleResult, CycleState, TextSubstitutionPipeline

TEMPLATE = '{"model":"llama2","prompt":"{{text}}","temperature":0.7}'


# ---------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------

class FakeClipboard:
    def __init__(self, content: str | None = "original") -> None:
        self.content = content
        self.writes: list[str] = []

    def read(self) -> str | None:
        return self.content

    def write(self, text: str | None) -> None:
        self.content = "" if text is None else text
        self.writes.append(self.content)

    def clear(self) -> None:
        self.write("")


class FakeKeyboard:
    """Simulates the foreground app reacting to Cmd+C / Cmd+V."""

    def __init__(self, clipboard: FakeClipboard, selection: str | None = "hi") -> None:
        self.clipboard = clipboard
        self.selection = selection
        self.copies = 0
        self.pasted: list[str | None] = []

    def copy(self) -> None:
        self.copies += 1
        if self.selection is not None:
            self.clipboard.content = self.selection

    def paste(self) -> None:
        self.pasted.append(self.clipboard.content)


class FakeClient:
    def __init__(self, result: str = "HELLO", error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    def generate(self, prompt_template: str, endpoint_url: str, text: str) -> str:
        self.calls.append((prompt_template, endpoint_url, text))
        if self.error is not None:
            raise self.error
        return self.result


class BlockingClient(FakeClient):
    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def generate(self, prompt_template: str, endpoint_url: str, text: str) -> str:
        self.entered.set()
        assert self.release.wait(timeout=5.0)
        return super().generate(prompt_template, endpoint_url, text)


def _make_pipeline(clipboard, keyboard, client, **kwargs) -> TextSubstitutionPipeline:  # noqa: ANN001
    config = AppConfig(prompt_template=TEMPLATE)
    kwargs.setdefault("capture_timeout_s", 0.05)
    kwargs.setdefault("poll_interval_s", 0.005)
    kwargs.setdefault("paste_settle_s", 0.0)
    kwargs.setdefault("restore_delay_s", 0.0)
    return TextSubstitutionPipeline(
        config_provider=lambda: config,
        clipboard=clipboard,
        keyboard=keyboard,
        client=client,
        **kwargs,
    )


def _wait_until_idle(pipeline: TextSubstitutionPipeline, timeout: float = 3.0) -> None:
    deadline = time.monotonic() + timeout
    while pipeline.busy and time.monotonic() < deadline:
        time.sleep(0.01)
    assert not pipeline.busy


# ---------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------

def test_completed_cycle_pastes_result_and_restores_clipboard() -> None:
    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard, selection="hi")
    client = FakeClient(result="HELLO")
    pipeline = _make_pipeline(clipboard, keyboard, client)

    result = pipeline.run_cycle()

    assert result == CycleResult.COMPLETED
    assert client.calls == [(TEMPLATE, AppConfig().endpoint_url, "hi")]
    assert keyboard.pasted == ["HELLO"]
    assert clipboard.content == "original"
    assert pipeline.state == CycleState.IDLE


def test_state_transitions_follow_cycle_order() -> None:
    clipboard = FakeClipboard()
    transitions: list[tuple[CycleState, CycleState]] = []
    pipeline = _make_pipeline(
        clipboard,
        FakeKeyboard(clipboard),
        FakeClient(),
        on_state_change=lambda f, t: transitions.append((f, t)),
    )

    pipeline.run_cycle()

    assert [t for _, t in transitions] == [
        CycleState.CAPTURE_STARTED,
        CycleState.AWAITING_CLIPBOARD_UPDATE,
        CycleState.REQUESTING,
        CycleState.INJECTING,
        CycleState.RESTORING,
        CycleState.IDLE,
    ]


def test_clipboard_is_cleared_before_copy() -> None:
    clipboard = FakeClipboard("original")
    pipeline = _make_pipeline(clipboard, FakeKeyboard(clipboard), FakeClient("X"))

    pipeline.run_cycle()

    # clear, inject, restore
    assert clipboard.writes == ["", "X", "original"]


def test_end_to_end_with_http_client() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"response": "HELLO"})

    clipboard = FakeClipboard("before trigger")
    keyboard = FakeKeyboard(clipboard, selection="hi")
    with GenerationClient(transport=httpx.MockTransport(handler)) as client:
        pipeline = _make_pipeline(clipboard, keyboard, client)
        result = pipeline.run_cycle()

    assert result == CycleResult.COMPLETED
    assert requests[0].content == b'{"model":"llama2","prompt":"hi","temperature":0.7}'
    assert keyboard.pasted == ["HELLO"]
    assert clipboard.content == "before trigger"


def test_missing_snapshot_restores_to_empty() -> None:
    clipboard = FakeClipboard(None)
    pipeline = _make_pipeline(clipboard, FakeKeyboard(clipboard), FakeClient())

    assert pipeline.run_cycle() == CycleResult.COMPLETED
    assert clipboard.content == ""


# ---------------------------------------------------------------
# Abort paths (clipboard must end where it started)
# ---------------------------------------------------------------

def test_nothing_copied_aborts_and_restores() -> None:
    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard, selection=None)
    client = FakeClient()
    pipeline = _make_pipeline(clipboard, keyboard, client)

    assert pipeline.run_cycle() == CycleResult.NO_SELECTION
    assert client.calls == []
    assert keyboard.pasted == []
    assert clipboard.content == "original"


def test_selection_equal_to_snapshot_aborts() -> None:
    clipboard = FakeClipboard("same")
    keyboard = FakeKeyboard(clipboard, selection="same")
    client = FakeClient()
    pipeline = _make_pipeline(clipboard, keyboard, client)

    assert pipeline.run_cycle() == CycleResult.NO_SELECTION
    assert client.calls == []
    assert clipboard.content == "same"


def test_unreachable_endpoint_leaves_clipboard_intact() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    clipboard = FakeClipboard("precious")
    keyboard = FakeKeyboard(clipboard)
    with GenerationClient(transport=httpx.MockTransport(handler)) as client:
        pipeline = _make_pipeline(clipboard, keyboard, client)
        result = pipeline.run_cycle()

    assert result == CycleResult.GENERATION_FAILED
    assert keyboard.pasted == []
    assert clipboard.content == "precious"


def test_configuration_error_aborts_and_restores() -> None:
    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard)
    pipeline = _make_pipeline(
        clipboard, keyboard, FakeClient(error=ConfigurationError("Endpoint URL is empty"))
    )

    assert pipeline.run_cycle() == CycleResult.CONFIG_ERROR
    assert keyboard.pasted == []
    assert clipboard.content == "original"


def test_invalid_endpoint_never_reaches_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard)
    config = AppConfig(endpoint_url="", prompt_template=TEMPLATE)
    with GenerationClient(transport=httpx.MockTransport(handler)) as client:
        pipeline = TextSubstitutionPipeline(
            config_provider=lambda: config,
            clipboard=clipboard,
            keyboard=keyboard,
            client=client,
            capture_timeout_s=0.05,
            paste_settle_s=0.0,
            restore_delay_s=0.0,
        )
        assert pipeline.run_cycle() == CycleResult.CONFIG_ERROR

    assert clipboard.content == "original"


def test_parse_failure_aborts_and_restores() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not json\nstill not json\n")

    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard)
    with GenerationClient(transport=httpx.MockTransport(handler)) as client:
        pipeline = _make_pipeline(clipboard, keyboard, client)
        assert pipeline.run_cycle() == CycleResult.GENERATION_FAILED

    assert keyboard.pasted == []
    assert clipboard.content == "original"


def test_empty_generation_does_not_paste() -> None:
    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard)
    pipeline = _make_pipeline(clipboard, keyboard, FakeClient(result=""))

    assert pipeline.run_cycle() == CycleResult.EMPTY_RESPONSE
    assert keyboard.pasted == []
    assert clipboard.content == "original"


def test_unexpected_error_restores_clipboard() -> None:
    class BrokenKeyboard(FakeKeyboard):
        def paste(self) -> None:
            raise RuntimeError("event source unavailable")

    clipboard = FakeClipboard("original")
    pipeline = _make_pipeline(clipboard, BrokenKeyboard(clipboard), FakeClient())

    assert pipeline.run_cycle() == CycleResult.ERROR
    assert clipboard.content == "original"
    assert pipeline.state == CycleState.IDLE
    assert not pipeline.busy


def test_generation_error_is_not_fatal_to_next_cycle() -> None:
    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard)
    client = FakeClient(error=GenerationError("boom"))
    pipeline = _make_pipeline(clipboard, keyboard, client)

    assert pipeline.run_cycle() == CycleResult.GENERATION_FAILED
    client.error = None
    assert pipeline.run_cycle() == CycleResult.COMPLETED
    assert keyboard.pasted == ["HELLO"]


def test_state_callback_errors_do_not_break_cycle() -> None:
    def broken(from_state: CycleState, to_state: CycleState) -> None:
        raise RuntimeError("tray gone")

    clipboard = FakeClipboard("original")
    pipeline = _make_pipeline(
        clipboard, FakeKeyboard(clipboard), FakeClient(), on_state_change=broken
    )

    assert pipeline.run_cycle() == CycleResult.COMPLETED
    assert clipboard.content == "original"


# ---------------------------------------------------------------
# Overlapping triggers
# ---------------------------------------------------------------

def test_trigger_while_requesting_is_rejected() -> None:
    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard, selection="hi")
    client = BlockingClient()
    pipeline = _make_pipeline(clipboard, keyboard, client)

    assert pipeline.trigger() is True
    assert client.entered.wait(timeout=3.0)
    assert pipeline.state == CycleState.REQUESTING

    writes_before = list(clipboard.writes)
    copies_before = keyboard.copies

    assert pipeline.trigger() is False
    assert pipeline.run_cycle() == CycleResult.REJECTED
    # The rejected triggers touched neither the clipboard nor the keyboard.
    assert clipboard.writes == writes_before
    assert keyboard.copies == copies_before

    client.release.set()
    _wait_until_idle(pipeline)

    assert keyboard.copies == 1
    assert keyboard.pasted == ["HELLO"]
    assert clipboard.content == "original"
    assert pipeline.state == CycleState.IDLE


def test_new_trigger_accepted_after_cycle_finishes() -> None:
    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard)
    pipeline = _make_pipeline(clipboard, keyboard, FakeClient())

    assert pipeline.trigger() is True
    _wait_until_idle(pipeline)
    assert pipeline.trigger() is True
    _wait_until_idle(pipeline)

    assert keyboard.pasted == ["HELLO", "HELLO"]
    assert clipboard.content == "original"


class UnstartableThread:
    def __init__(self, *args, **kwargs) -> None:  # noqa: ANN002, ANN003
        pass

    def start(self) -> None:
        raise RuntimeError("can't start new thread")


def test_failed_worker_start_releases_gate(monkeypatch) -> None:  # noqa: ANN001
    import llamawriter.pipeline as pipeline_mod

    clipboard = FakeClipboard("original")
    keyboard = FakeKeyboard(clipboard)
    pipeline = _make_pipeline(clipboard, keyboard, FakeClient())
    monkeypatch.setattr(
        pipeline_mod,
        "threading",
        types.SimpleNamespace(Thread=UnstartableThread),
    )

    assert pipeline.trigger() is False
    assert not pipeline.busy

    # The gate is free again, so a later cycle still runs.
    assert pipeline.run_cycle() == CycleResult.COMPLETED
    assert keyboard.pasted == ["HELLO"]
