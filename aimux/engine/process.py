"""Subprocess lifecycle: lazy start, deadline, cancellation, teardown.

A ``LazyProcessStream`` is prepared without side effects. The child
process is spawned on the first ``readline()``, in its own session so
the whole process group can be killed on teardown.

``close()`` runs, in order:

1. close the output pipe
2. wait up to ``close_grace_seconds`` for the child to exit
3. on expiry, SIGKILL the process group (direct child only where
   ``os.killpg`` is unavailable) and reap it

A non-zero exit status or a forced kill is reported by ``close()`` as
``ProcessExitError``.
"""
from __future__ import annotations

import asyncio
import io
import logging
import os
import signal
import time
from typing import BinaryIO, Mapping, NoReturn, Sequence, Union

from .errors import (
    LineTooLongError,
    PipeCreationError,
    ProcessExitError,
    ProcessTimeoutError,
    SpawnError,
    StreamClosedError,
    StreamReadError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30 * 60
DEFAULT_CLOSE_GRACE_SECONDS = 5.0
DEFAULT_LINE_LIMIT = 1024 * 1024

_STDIN_CHUNK = 64 * 1024

StdinSource = Union[bytes, str, BinaryIO, None]


class LazyProcessStream:
    """Line stream over a child's stdout, spawned on first read.

    The stream is in one of three states: prepared (``started`` is
    False), started, or closed. Reads after ``close()`` or ``cancel()``
    raise ``StreamClosedError``.
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        stdin: StdinSource = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        close_grace_seconds: float = DEFAULT_CLOSE_GRACE_SECONDS,
        line_limit: int = DEFAULT_LINE_LIMIT,
        log: logging.Logger | None = None,
    ) -> None:
        if not argv:
            raise ValueError("argv must not be empty")
        self.argv = list(argv)
        self.timeout = timeout
        self._stdin = stdin
        self._env = dict(env) if env is not None else None
        self._cwd = cwd
        self._close_grace = close_grace_seconds
        self._line_limit = line_limit
        self._log = log or logger

        self._deadline = time.monotonic() + timeout
        self._cancelled = asyncio.Event()
        self._proc: asyncio.subprocess.Process | None = None
        self._reader: asyncio.StreamReader | None = None
        self._transport: asyncio.ReadTransport | None = None
        self._feeder: asyncio.Task | None = None
        self._closed = False
        self._eof = False

    @property
    def started(self) -> bool:
        return self._proc is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc is not None else None

    # ── Start ─────────────────────────────────────────────────

    async def _start(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            read_fd, write_fd = os.pipe()
        except OSError as exc:
            raise PipeCreationError(str(exc)) from exc

        reader = asyncio.StreamReader(limit=self._line_limit)
        protocol = asyncio.StreamReaderProtocol(reader)
        try:
            transport, _ = await loop.connect_read_pipe(
                lambda: protocol, os.fdopen(read_fd, "rb", buffering=0),
            )
        except (OSError, ValueError) as exc:
            os.close(write_fd)
            raise PipeCreationError(str(exc)) from exc

        stdin_mode = (
            asyncio.subprocess.PIPE
            if self._stdin is not None
            else asyncio.subprocess.DEVNULL
        )
        self._log.debug("Executing: %s", " ".join(self.argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=stdin_mode,
                stdout=write_fd,
                env=self._env,
                cwd=self._cwd,
                start_new_session=True,
            )
        except OSError as exc:
            transport.close()
            raise SpawnError(self.argv[0], str(exc)) from exc
        finally:
            os.close(write_fd)

        self._proc = proc
        self._reader = reader
        self._transport = transport
        if self._stdin is not None and proc.stdin is not None:
            self._feeder = asyncio.ensure_future(self._feed_stdin(proc.stdin))

    async def _feed_stdin(self, writer: asyncio.StreamWriter) -> None:
        source = self._stdin
        try:
            if isinstance(source, str):
                writer.write(source.encode("utf-8"))
                await writer.drain()
            elif isinstance(source, (bytes, bytearray)):
                writer.write(bytes(source))
                await writer.drain()
            else:
                while True:
                    chunk = await asyncio.to_thread(source.read, _STDIN_CHUNK)
                    if not chunk:
                        break
                    if isinstance(chunk, str):
                        chunk = chunk.encode("utf-8")
                    writer.write(chunk)
                    await writer.drain()
        except (BrokenPipeError, ConnectionResetError):
            self._log.debug("Child closed stdin before all input was written")
        except OSError as exc:
            self._log.warning("Failed to feed stdin to %s: %s", self.argv[0], exc)
        finally:
            writer.close()

    # ── Read ──────────────────────────────────────────────────

    async def _read_line(self, reader: asyncio.StreamReader) -> bytes:
        """One line including its newline; the partial tail at EOF."""
        try:
            return await reader.readuntil(b"\n")
        except asyncio.LimitOverrunError as exc:
            raise LineTooLongError(self._line_limit) from exc
        except asyncio.IncompleteReadError as exc:
            return exc.partial
        except OSError as exc:
            raise StreamReadError(str(exc)) from exc

    async def readline(self) -> bytes:
        """Next line of output, or ``b""`` at end of stream.

        Raises:
            StreamClosedError: the stream was closed or cancelled.
            ProcessTimeoutError: the deadline passed; the process has
                been torn down.
            LineTooLongError: a line exceeded ``line_limit``.
        """
        if self._closed or self._cancelled.is_set():
            raise StreamClosedError("stream is closed")
        if self._proc is None:
            await self._start()
        if self._eof:
            return b""

        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            await self._expire()

        read_task = asyncio.ensure_future(self._read_line(self._reader))
        cancel_task = asyncio.ensure_future(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait(
                {read_task, cancel_task},
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_task.cancel()
            if not read_task.done():
                read_task.cancel()

        if read_task in done:
            line = read_task.result()
            if not line:
                self._eof = True
            return line
        if cancel_task in done:
            raise StreamClosedError("stream was cancelled")
        await self._expire()

    def __aiter__(self) -> LazyProcessStream:
        return self

    async def __anext__(self) -> bytes:
        line = await self.readline()
        if not line:
            raise StopAsyncIteration
        return line

    async def _expire(self) -> NoReturn:
        self._log.warning(
            "Process %s exceeded %ss deadline, tearing down",
            self.argv[0], self.timeout,
        )
        try:
            await self.close()
        except ProcessExitError as exc:
            raise ProcessTimeoutError(self.timeout) from exc
        raise ProcessTimeoutError(self.timeout)

    # ── Teardown ──────────────────────────────────────────────

    def cancel(self) -> None:
        """Unblock pending reads; ``close()`` still performs teardown."""
        self._cancelled.set()

    def _kill_process_group(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        except OSError as exc:
            self._log.warning(
                "Failed to kill process group %s, killing child only: %s", proc.pid, exc,
            )
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            except OSError as kill_exc:
                self._log.error("Failed to kill process %s: %s", proc.pid, kill_exc)

    async def close(self) -> None:
        """Tear the process down; safe to call repeatedly.

        Raises:
            ProcessExitError: the child exited non-zero or had to be
                killed. Only the first call reports it.
        """
        if self._closed:
            return
        self._closed = True
        self._cancelled.set()

        proc = self._proc
        if proc is None:
            return

        if self._transport is not None:
            self._transport.close()

        waiter = asyncio.ensure_future(proc.wait())
        done, _ = await asyncio.wait({waiter}, timeout=self._close_grace)
        killed = False
        if waiter not in done:
            self._log.warning(
                "Process %s (pid=%s) did not exit within %ss, killing process group",
                self.argv[0], proc.pid, self._close_grace,
            )
            self._kill_process_group()
            killed = True
            try:
                await asyncio.wait_for(waiter, timeout=self._close_grace)
            except asyncio.TimeoutError:
                self._log.error(
                    "Process %s (pid=%s) still running after SIGKILL, giving up",
                    self.argv[0], proc.pid,
                )

        if self._feeder is not None:
            if not self._feeder.done():
                self._feeder.cancel()
            try:
                await self._feeder
            except asyncio.CancelledError:
                pass

        if killed:
            raise ProcessExitError(proc.returncode, killed=True)
        if proc.returncode != 0:
            raise ProcessExitError(proc.returncode)

    async def __aenter__(self) -> LazyProcessStream:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def prepare(
    argv: Sequence[str],
    *,
    stdin: StdinSource = None,
    env: Mapping[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    **kwargs,
) -> LazyProcessStream:
    """Prepare an unstarted stream; nothing is spawned until the first read."""
    if isinstance(stdin, io.TextIOBase):
        stdin = stdin.buffer if hasattr(stdin, "buffer") else stdin
    return LazyProcessStream(argv, stdin=stdin, env=env, timeout=timeout, **kwargs)
