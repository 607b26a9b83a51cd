"""Streaming response interpreter.

Drains a backend's output line by line into a text sink, detecting the
wire format from the first non-empty line:

- ``{`` or ``[``: structured JSON lines (Claude stream-json, Codex
  ``--json``, Gemini stream-json)
- ``<``: markup, passed through unparsed
- anything else: plain text, logged line by line as assistant output

Nothing touches the filesystem until that first line arrives.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol, TextIO

from .config import EngineConfig
from .errors import SinkWriteError, StreamError, StreamReadError
from .models import LogRecord, Origin, OutputFormat, SessionContext
from .store import LogWriter, SessionStore

logger = logging.getLogger(__name__)

TRUNCATION_NOTICE = "\n[WARNING: Output truncated at 10MB limit]\n"
UNKNOWN_ERROR_MESSAGE = "Unknown API error"


class LineSource(Protocol):
    async def readline(self) -> bytes | str: ...


def detect_format(first_line: str) -> OutputFormat:
    """Format from the first character of the first non-empty line."""
    if not first_line:
        return OutputFormat.EMPTY
    head = first_line[0]
    if head in "{[":
        return OutputFormat.STRUCTURED
    if head == "<":
        return OutputFormat.MARKUP
    return OutputFormat.TEXT


def _decode(raw: bytes | str) -> str:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    return text.rstrip("\r\n")


def _text_blocks(content: Any) -> str:
    if not isinstance(content, list):
        return ""
    return "".join(
        item["text"]
        for item in content
        if isinstance(item, dict) and isinstance(item.get("text"), str)
    )


def is_error_record(data: dict[str, Any]) -> bool:
    return data.get("is_error") is True or data.get("type") == "error"


def error_message(data: dict[str, Any]) -> str:
    """Message of an error record: error.message, result, message."""
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
        return error["message"]
    for key in ("result", "message"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return UNKNOWN_ERROR_MESSAGE


def is_assistant_record(data: dict[str, Any]) -> bool:
    return data.get("type") == "assistant" or data.get("role") == "assistant"


def record_session_id(data: dict[str, Any]) -> str:
    """``session_id`` (Claude) or ``sessionId`` (Codex), else empty."""
    for key in ("session_id", "sessionId"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def extract_text(data: dict[str, Any]) -> str:
    """Human-readable text of a structured record, or empty.

    Shapes tried in order:
    ``message.content[].text``, top-level ``content[].text``, a
    top-level ``content`` string on assistant records, and
    ``msg.message``.
    """
    message = data.get("message")
    if isinstance(message, dict) and "content" in message:
        return _text_blocks(message["content"])

    content = data.get("content")
    if isinstance(content, list):
        return _text_blocks(content)
    if isinstance(content, str) and data.get("role") == "assistant":
        return content

    msg = data.get("msg")
    if isinstance(msg, dict) and isinstance(msg.get("message"), str):
        return msg["message"]
    return ""


@dataclass
class DrainState:
    """Mutable per-drain state, one instance per call."""
    format: OutputFormat | None = None
    total_bytes: int = 0
    line_number: int = 0
    stream_has_error: bool = False
    pending_session_id: str = ""
    snapshot_saved: bool = False
    truncated: bool = False


class StreamInterpreter:
    """Translates one backend stream into sink text and log records."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        store: SessionStore | None = None,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._log = log or logger
        self._store = store or SessionStore(log=self._log)

    @property
    def max_output_size(self) -> int:
        return self._config.max_output_size

    async def drain(
        self,
        ctx: SessionContext,
        stream: LineSource,
        sink: TextIO,
    ) -> DrainState:
        """Consume ``stream`` until EOF or the output cap.

        May update ``ctx.session_id``; never ``ctx.conversation_id``.
        Output already written to ``sink`` is kept when this raises.

        Raises:
            StreamReadError: the stream failed or a line was too long.
            SinkWriteError: writing to ``sink`` failed.
            StreamError: the session directory or log could not be created.
        """
        state = DrainState()
        writer: LogWriter | None = None
        try:
            while True:
                try:
                    raw = await stream.readline()
                except OSError as exc:
                    raise StreamReadError(str(exc)) from exc
                if not raw:
                    break
                state.line_number += 1
                line = _decode(raw)

                if state.format is None:
                    if not line:
                        if not self._emit(sink, state, "\n", flush=True):
                            break
                        continue
                    writer = self._on_first_output(ctx, state, line)

                if state.format is OutputFormat.STRUCTURED:
                    if not self._handle_structured(ctx, state, line, sink, writer):
                        break
                elif state.format is OutputFormat.MARKUP:
                    if not self._emit(sink, state, line + "\n", flush=True):
                        break
                else:
                    if not self._emit(sink, state, line + "\n", flush=True):
                        break
                    if line:
                        writer.write_record(LogRecord(
                            session_id=ctx.session_id,
                            origin=Origin.ASSISTANT.value,
                            body=line,
                        ))
        finally:
            if writer is not None:
                writer.close()

        self._flush(sink)
        if state.format is None:
            state.format = OutputFormat.EMPTY
        elif not state.stream_has_error and not state.snapshot_saved:
            self._store.try_save_snapshot(ctx)
        return state

    # ── Line handling ─────────────────────────────────────────

    def _on_first_output(
        self, ctx: SessionContext, state: DrainState, line: str,
    ) -> LogWriter:
        state.format = detect_format(line)
        self._log.debug(
            "Detected output format: %s (first char: %r)", state.format.value, line[0],
        )
        try:
            ctx.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StreamError(f"create directory {ctx.directory}: {exc}") from exc
        self._store.try_save_snapshot(ctx)
        try:
            return LogWriter(ctx.write_log, log=self._log)
        except OSError as exc:
            raise StreamError(f"open log file {ctx.write_log}: {exc}") from exc

    def _handle_structured(
        self,
        ctx: SessionContext,
        state: DrainState,
        line: str,
        sink: TextIO,
        writer: LogWriter,
    ) -> bool:
        """Process one JSON line; False once the output cap is hit."""
        if not line.strip():
            return True
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            self._log.warning(
                "Malformed JSON at line %d (length %d): %s",
                state.line_number, len(line), exc,
            )
            self._log.debug("Malformed JSON content: %.100s", line)
            return True
        if not isinstance(data, dict):
            self._log.warning(
                "Skipping non-object JSON at line %d (%s)",
                state.line_number, type(data).__name__,
            )
            return True

        record_type = data.get("type")
        if is_error_record(data):
            state.stream_has_error = True
            if state.pending_session_id:
                self._log.debug(
                    "Discarding pending SID %s due to error in stream",
                    state.pending_session_id,
                )
                state.pending_session_id = ""
            if record_type in ("error", "result"):
                message = error_message(data)
                self._log.warning(
                    "API error response (type=%s, is_error=%s): %s",
                    record_type, data.get("is_error", False), message,
                )
                if record_type == "error":
                    return self._emit(sink, state, message + "\n", flush=True)
                return True

        # Once errored, session ids must not reach the log either
        if not state.stream_has_error and ("session_id" in data or "sessionId" in data):
            writer.write_raw(line)

        if is_assistant_record(data):
            sid = record_session_id(data)
            if sid and not state.stream_has_error:
                if sid != state.pending_session_id:
                    self._log.debug("Session established: %s", sid)
                state.pending_session_id = sid

        text = extract_text(data)

        if (
            state.pending_session_id
            and not state.stream_has_error
            and state.pending_session_id != ctx.session_id
        ):
            self._log.debug(
                "Flushing SID change: %s -> %s", ctx.session_id, state.pending_session_id,
            )
            ctx.session_id = state.pending_session_id
            state.snapshot_saved = True
            self._store.try_save_snapshot(ctx)

        if text:
            return self._emit(sink, state, text, flush="\n" in text)
        return True

    # ── Sink ──────────────────────────────────────────────────

    def _emit(self, sink: TextIO, state: DrainState, text: str, *, flush: bool) -> bool:
        """Write ``text`` unless it would cross the output cap.

        At the cap the truncation notice is written once and False is
        returned so the caller stops draining.
        """
        size = len(text.encode("utf-8"))
        if state.total_bytes + size > self.max_output_size:
            self._log.warning(
                "Output size limit reached (%d bytes), truncating response",
                self.max_output_size,
            )
            state.truncated = True
            self._write(sink, TRUNCATION_NOTICE)
            return False
        self._write(sink, text)
        state.total_bytes += size
        if flush:
            self._flush(sink)
        return True

    def _write(self, sink: TextIO, text: str) -> None:
        try:
            sink.write(text)
        except (OSError, ValueError) as exc:
            self._log.error("Failed to write output: %s", exc)
            raise SinkWriteError(str(exc)) from exc

    def _flush(self, sink: TextIO) -> None:
        try:
            sink.flush()
        except (OSError, ValueError) as exc:
            self._log.error("Failed to flush output: %s", exc)
            raise SinkWriteError(str(exc)) from exc
