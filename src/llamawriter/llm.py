"""Generation client for Ollama-style text-generation endpoints."""

from __future__ import annotations

import json
import logging
from typing import Iterable, Iterator

import httpx

from llamawriter.config import PLACEHOLDER

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=10.0)


class GenerationError(Exception):
    """The endpoint could not produce generated text."""


class ConfigurationError(GenerationError):
    """The endpoint URL or prompt template is unusable; nothing was sent."""


def render_prompt(template: str, text: str) -> str:
    """Substitute every ``{{text}}`` in *template* with *text*, verbatim.

    No escaping is applied: a quote or newline in *text* lands in the body
    as-is, exactly like the template author wrote it there.
    """
    return template.replace(PLACEHOLDER, text)


# ---------------------------------------------------------------------------
# Response accumulation
# ---------------------------------------------------------------------------


class ResponseAccumulator:
    """Collects ``response`` fragments from a generation response body.

    Lines are fed in arrival order.  Each line that parses as a JSON object
    contributes its ``response`` string; malformed lines are skipped without
    touching what was already collected.  ``"done": true`` marks the end of
    a stream.  If no line yields a fragment, :meth:`finish` retries the whole
    body as a single document (covers pretty-printed, multi-line JSON).
    """

    def __init__(self) -> None:
        self._fragments: list[str] = []
        self._lines: list[str] = []
        self._matched = False
        self.done = False

    def feed(self, line: str) -> bool:
        """Consume one line; return ``True`` once the stream signalled done."""
        self._lines.append(line)
        stripped = line.strip()
        if not stripped:
            return self.done
        try:
            document = json.loads(stripped)
        except ValueError:
            logger.debug("Skipping malformed response line: %.200s", stripped)
            return self.done
        self._absorb(document)
        return self.done

    def finish(self) -> str:
        """Return the concatenated text.

        Raises:
            GenerationError: If no document carried a ``response`` field.
        """
        if not self._matched and self._lines:
            try:
                document = json.loads("\n".join(self._lines))
            except ValueError:
                document = None
            if document is not None:
                self._absorb(document)
        if not self._matched:
            raise GenerationError("No response text found in generation output")
        return "".join(self._fragments)

    def _absorb(self, document: object) -> None:
        if not isinstance(document, dict):
            logger.debug("Ignoring non-object response document: %.200r", document)
            return
        if "error" in document:
            logger.warning("Generation endpoint reported an error: %s", document["error"])
        fragment = document.get("response")
        if isinstance(fragment, str):
            self._fragments.append(fragment)
            self._matched = True
        if document.get("done") is True:
            self.done = True


def parse_generation_body(body: str) -> str:
    """Parse a complete response body (single JSON or NDJSON) into text."""
    accumulator = ResponseAccumulator()
    for line in body.split("\n"):
        if accumulator.feed(line):
            break
    return accumulator.finish()


def _decode_line(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise GenerationError("Response body is not valid UTF-8") from exc


def _iter_lines(chunks: Iterable[bytes]) -> Iterator[str]:
    """Split a byte stream on ``\\n`` and decode each line strictly as UTF-8."""
    # Only the unterminated tail is buffered; each chunk is scanned once.
    buffer = bytearray()
    for chunk in chunks:
        start = 0
        while True:
            end = chunk.find(b"\n", start)
            if end == -1:
                buffer += chunk[start:]
                break
            buffer += chunk[start:end]
            yield _decode_line(bytes(buffer))
            buffer.clear()
            start = end + 1
    if buffer:
        yield _decode_line(bytes(buffer))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GenerationClient:
    """Synchronous client: render the template, POST it, read the reply."""

    def __init__(
        self,
        timeout: httpx.Timeout | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Args:
            timeout: Per-phase request timeouts; defaults to
                :data:`DEFAULT_TIMEOUT`.
            transport: Optional httpx transport (tests use
                :class:`httpx.MockTransport`).
        """
        self._client = httpx.Client(
            timeout=timeout or DEFAULT_TIMEOUT,
            transport=transport,
        )

    def generate(self, prompt_template: str, endpoint_url: str, text: str) -> str:
        """Send *text* through *prompt_template* to *endpoint_url*.

        Returns the generated text (possibly empty if the endpoint answered
        with an empty ``response``).

        Raises:
            ConfigurationError: Empty or non-HTTP endpoint URL, or an empty
                template.  Raised before any network I/O.
            GenerationError: Transport failure, timeout, HTTP error status,
                non-UTF-8 body, or no parseable ``response`` in the body.
        """
        url = self._check_endpoint(endpoint_url)
        if not prompt_template.strip():
            raise ConfigurationError("Prompt template is empty")
        if PLACEHOLDER not in prompt_template:
            logger.warning("Prompt template has no %s placeholder; selection is not sent", PLACEHOLDER)

        body = render_prompt(prompt_template, text)
        logger.info("Sending generation request to %s (%d bytes)", url, len(body))
        logger.debug("Request payload: %s", body)

        accumulator = ResponseAccumulator()
        try:
            with self._client.stream(
                "POST",
                url,
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/json"},
            ) as response:
                if response.is_error:
                    response.read()
                    logger.error(
                        "Generation endpoint HTTP error %s: %.500s",
                        response.status_code,
                        response.text,
                    )
                    raise GenerationError(f"HTTP {response.status_code} from {url}")
                for line in _iter_lines(response.iter_bytes()):
                    if accumulator.feed(line):
                        break
        except httpx.TimeoutException as exc:
            logger.error("Generation request timed out: %s", exc)
            raise GenerationError("Generation request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("Generation request failed: %s", exc)
            raise GenerationError(f"Generation request failed: {exc}") from exc

        result = accumulator.finish()
        logger.info("Received generated text (%d chars)", len(result))
        return result

    @staticmethod
    def _check_endpoint(endpoint_url: str) -> httpx.URL:
        endpoint_url = endpoint_url.strip()
        if not endpoint_url:
            raise ConfigurationError("Endpoint URL is empty")
        try:
            url = httpx.URL(endpoint_url)
        except httpx.InvalidURL as exc:
            raise ConfigurationError(f"Invalid endpoint URL {endpoint_url!r}: {exc}") from exc
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationError(f"Endpoint URL must be http(s): {endpoint_url!r}")
        return url

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> GenerationClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
