"""Exception hierarchy for the aimux engine.

One exception per failure mode. Content errors (malformed output lines)
and backend-reported errors are logged and skipped, never raised.
"""
from __future__ import annotations

from pathlib import Path

from .models import BlockingCode, BlockingOutcome


class AimuxError(Exception):
    """Base exception for all aimux errors."""


# ── Policy denials ────────────────────────────────────────────


class PolicyDeniedError(AimuxError):
    """The call-graph validator refused the call."""
    def __init__(self, outcome: BlockingOutcome):
        if outcome.code is None:
            raise ValueError("PolicyDeniedError requires a denied outcome")
        self.outcome = outcome
        super().__init__(outcome.reason)

    @property
    def code(self) -> BlockingCode:
        return self.outcome.code  # type: ignore[return-value]

    @property
    def exit_code(self) -> int:
        return int(self.code)


# ── Configuration ─────────────────────────────────────────────


class ConfigError(AimuxError):
    """Configuration file is unreadable or invalid."""


class UnknownGenusError(ConfigError):
    """Requested genus has no configuration entry."""
    def __init__(self, genus: str, available: list[str]):
        self.genus = genus
        self.available = available
        avail_str = ", ".join(sorted(available)) if available else "none"
        super().__init__(f"invalid gen '{genus}' (valid: {avail_str})")


class InvalidParameterError(AimuxError):
    """A caller-supplied id or name fails validation."""


# ── Resolution ────────────────────────────────────────────────


class ResolutionError(AimuxError):
    """Persisted session state cannot be used."""


class LogCorruptError(ResolutionError):
    """A log's last line cannot yield a session id."""
    def __init__(self, path: Path, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"corrupt log {path}: {reason}")


class ConversationNotFoundError(ResolutionError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"conversation {conversation_id} not found")


# ── Subprocess lifecycle ──────────────────────────────────────


class LifecycleError(AimuxError):
    """Failure owning the external process."""


class PipeCreationError(LifecycleError):
    """Output pipe could not be created. Not retryable."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"create stdout pipe: {reason}")


class SpawnError(LifecycleError):
    """Executable could not be started. Not retryable."""
    def __init__(self, executable: str, reason: str):
        self.executable = executable
        self.reason = reason
        super().__init__(f"start {executable}: {reason}")


class ProcessExitError(LifecycleError):
    """Process ended non-cleanly (non-zero status or forced kill)."""
    def __init__(self, returncode: int | None, *, killed: bool = False):
        self.returncode = returncode
        self.killed = killed
        if killed:
            message = "command did not exit cleanly, killed after timeout"
        else:
            message = f"command exited with status {returncode}"
        super().__init__(message)


class ProcessTimeoutError(LifecycleError):
    """The call exceeded its deadline; the process was torn down."""
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"command timed out after {timeout_seconds:g}s")


class StreamClosedError(LifecycleError):
    """Read attempted after close or cancellation."""


# ── Stream ────────────────────────────────────────────────────


class StreamError(AimuxError):
    """Draining the output stream failed."""


class StreamReadError(StreamError):
    """Reading from the subprocess output failed."""


class LineTooLongError(StreamReadError):
    """A single output line exceeded the line-length ceiling."""
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"read stream: line exceeds {limit} bytes")


class SinkWriteError(StreamError):
    """Writing to the output sink failed."""
