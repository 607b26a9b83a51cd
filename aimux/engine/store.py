"""On-disk session state: append-only logs and the context snapshot.

Logs are JSON lines, only ever appended. The snapshot is a single JSON
object rewritten whole (last writer wins) through a temp file + rename
so a reader never observes a half-written file.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterator, TextIO

from .errors import LogCorruptError
from .models import LogRecord, Origin, SessionContext

logger = logging.getLogger(__name__)


def _fsync_dir(dir_path: Path) -> None:
    """Best-effort directory fsync so the rename itself is durable."""
    try:
        flags = os.O_RDONLY
        if hasattr(os, "O_DIRECTORY"):
            flags |= os.O_DIRECTORY
        fd = os.open(str(dir_path), flags)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        # Not supported on every platform/filesystem.
        pass


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Replace ``path`` with ``data`` as one JSON line."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent),
    )
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(data) + "\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(path.parent)
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                pass


def _iter_json_lines(path: Path) -> Iterator[dict[str, Any]]:
    """Yield parsed JSON objects, skipping blank and malformed lines."""
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                yield data


def session_id_of(record: dict[str, Any]) -> str | None:
    """``session_id`` (Claude style) or ``sessionId`` (Codex style)."""
    for key in ("session_id", "sessionId"):
        value = record.get(key)
        if isinstance(value, str):
            return value
    return None


def is_established_record(record: dict[str, Any]) -> bool:
    """True for records authored by anything other than the user.

    Covers both our own records (``from``) and verbatim backend lines
    (``type == "assistant"``).
    """
    origin = record.get("from")
    if isinstance(origin, str) and origin != Origin.USER.value:
        return True
    return record.get("type") == Origin.ASSISTANT.value


class LogWriter:
    """Append handle on one ``log.jsonl`` for the duration of a drain."""

    def __init__(self, path: Path, *, log: logging.Logger | None = None) -> None:
        self.path = Path(path)
        self._log = log or logger
        self._file: TextIO | None = open(self.path, "a", encoding="utf-8")
        self.records_written = 0

    def write_raw(self, line: str) -> None:
        """Append a backend line verbatim. Failures are logged, not raised."""
        if self._file is None:
            return
        try:
            self._file.write(line + "\n")
            self._file.flush()
            self.records_written += 1
        except OSError as exc:
            self._log.warning("Failed to write to log file %s: %s", self.path, exc)

    def write_record(self, record: LogRecord) -> None:
        self.write_raw(json.dumps(record.to_dict()))

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> LogWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SessionStore:
    """Reads and writes persisted state for session contexts."""

    def __init__(self, *, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    # ── Snapshot ──────────────────────────────────────────────

    def save_snapshot(self, ctx: SessionContext) -> None:
        write_json_atomic(ctx.snapshot_path, ctx.to_dict())
        self._log.debug("Saved context snapshot %s (sid=%s)", ctx.snapshot_path, ctx.session_id)

    def try_save_snapshot(self, ctx: SessionContext) -> bool:
        """Save, logging instead of raising on I/O failure."""
        try:
            self.save_snapshot(ctx)
            return True
        except OSError as exc:
            self._log.warning("Failed to save context %s: %s", ctx.snapshot_path, exc)
            return False

    def load_snapshot(self, path: Path) -> dict[str, Any] | None:
        """Parsed snapshot, or None when missing or unparsable."""
        try:
            raw = Path(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            self._log.warning("Failed to read context %s: %s", path, exc)
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            self._log.warning("Ignoring unparsable context %s: %s", path, exc)
            return None
        return data if isinstance(data, dict) else None

    # ── Logs ──────────────────────────────────────────────────

    def append(self, ctx: SessionContext, origin: str, body: str) -> Path:
        """Append one record to the context's write log, creating dirs."""
        path = ctx.write_log
        path.parent.mkdir(parents=True, exist_ok=True)
        record = LogRecord(session_id=ctx.session_id, origin=origin, body=body)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record.to_dict()) + "\n")
        return path

    def has_established_session(self, path: Path) -> bool:
        """True when the log holds at least one non-user record."""
        try:
            return any(is_established_record(r) for r in _iter_json_lines(path))
        except FileNotFoundError:
            return False

    def last_session_id(self, path: Path) -> str:
        """Session id from the last line of ``path``.

        Raises:
            LogCorruptError: missing/empty last line, invalid JSON, or no
                session id field.
        """
        try:
            lines = Path(path).read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as exc:
            raise LogCorruptError(path, f"unreadable: {exc}") from exc
        if not lines or not lines[-1].strip():
            raise LogCorruptError(path, "last line is empty")
        try:
            data = json.loads(lines[-1])
        except json.JSONDecodeError as exc:
            raise LogCorruptError(path, f"last line is not JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise LogCorruptError(path, "last line is not a JSON object")
        sid = session_id_of(data)
        if not sid:
            raise LogCorruptError(path, "no session ID found in last log line")
        return sid

    def read_messages(self, path: Path) -> list[LogRecord]:
        """All records of a log in file order. Raises FileNotFoundError."""
        return [LogRecord.from_dict(r) for r in _iter_json_lines(path)]
