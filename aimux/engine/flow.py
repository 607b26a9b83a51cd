"""Call assembly: validate, plan the session, prepare the process.

``prepare_call`` performs no I/O beyond reading logs; the process is
only spawned when the returned stream is first read.
"""
from __future__ import annotations

import logging
import os
from typing import BinaryIO, TextIO

from . import policy
from .config import EngineConfig
from .errors import LifecycleError
from .interpreter import DrainState, StreamInterpreter
from .models import SessionContext
from .process import LazyProcessStream, StdinSource
from .prompt import build_system_prompt
from .providers import GenusRegistry, GenusSpec, PromptDelivery, render_flags
from .resolver import SessionPlan, SessionResolver
from .store import SessionStore
from .yaml_config import AimuxConfig

logger = logging.getLogger(__name__)

_SEPARATOR = "\n\n"


class PrefixedInput:
    """Readable that yields ``prefix`` and then the rest of ``source``."""

    def __init__(self, prefix: bytes, source: BinaryIO) -> None:
        self._prefix = prefix
        self._source = source

    def read(self, size: int = -1) -> bytes:
        if self._prefix:
            if size is None or size < 0:
                chunk, self._prefix = self._prefix, b""
                rest = self._source.read()
                return chunk + _as_bytes(rest)
            chunk, self._prefix = self._prefix[:size], self._prefix[size:]
            return chunk
        return _as_bytes(self._source.read(size))


def _as_bytes(data: bytes | str | None) -> bytes:
    if not data:
        return b""
    return data.encode("utf-8") if isinstance(data, str) else data


def compose_input(
    head: list[str],
    stdin: StdinSource,
) -> StdinSource:
    """Join ``head`` parts with blank lines, followed by ``stdin``."""
    text = _SEPARATOR.join(part for part in head if part)
    if stdin is None:
        return text.encode("utf-8") if text else None
    if not text:
        return stdin
    prefix = (text + _SEPARATOR).encode("utf-8")
    if isinstance(stdin, (bytes, str)):
        return prefix + _as_bytes(stdin)
    return PrefixedInput(prefix, stdin)


def model_persona(ctx: SessionContext) -> str:
    """Persona used for model selection, honoring ``AIMODEL``."""
    override = ctx.extensions.get("AIMODEL", "")
    if override:
        logger.debug(
            "Model override active: using %s instead of %s for model selection",
            override, ctx.persona,
        )
        return override
    return ctx.persona


def build_arguments(
    spec: GenusSpec,
    plan: SessionPlan,
    variables: dict[str, str],
    *,
    cmd_args: str = "",
    bash_mode: bool = False,
) -> list[str]:
    """Full argv: exe, cmd prefix, ``-c``, model, session, output, safety."""
    argv = [*spec.exe, *spec.cmd]
    if bash_mode:
        argv += ["-c", cmd_args]
    argv += render_flags(spec.args.model, variables)
    argv += plan.flags
    argv += spec.args.output
    argv += spec.args.safety
    return argv


def prepare_call(
    ctx: SessionContext,
    registry: GenusRegistry,
    config: EngineConfig,
    personas: AimuxConfig | None = None,
    cmd_args: str = "",
    stdin: StdinSource = None,
    *,
    resolver: SessionResolver | None = None,
) -> LazyProcessStream:
    """Assemble an unstarted process stream for ``ctx``.

    Raises:
        PolicyDeniedError: the call graph forbids this call.
        UnknownGenusError: ``ctx.genus`` is not configured.
        LogCorruptError: session flags cannot be derived from the logs.
    """
    policy.ensure_allowed(
        ctx, max_depth=config.max_depth, terminal_role=config.terminal_role,
    )
    spec = registry.get_or_raise(ctx.genus)
    resolver = resolver or SessionResolver()

    variables = spec.persona_vars(model_persona(ctx))
    bash_mode = spec.executable == "bash" and bool(cmd_args) and stdin is not None
    if bash_mode:
        logger.debug("Using bash -c mode: command as -c argument, stdin piped")

    plan = resolver.plan_session(ctx, spec, variables)
    argv = build_arguments(
        spec, plan, variables, cmd_args=cmd_args, bash_mode=bash_mode,
    )

    system_prompt = build_system_prompt(ctx, config, personas)
    command = "" if bash_mode else cmd_args
    if spec.prompt_delivery is PromptDelivery.STDIN:
        child_stdin = compose_input([system_prompt, command], stdin)
    else:
        if spec.prompt_delivery is PromptDelivery.FLAG:
            argv += render_flags(spec.prompt_template, {"prompt": system_prompt})
        child_stdin = compose_input([command], stdin)

    env = dict(os.environ)
    env.update(ctx.child_environment())
    timeout = config.timeout_for(ctx.extensions)
    logger.debug(
        "Prepared %s call (mode=%s, sid=%s, timeout=%ss)",
        spec.name, plan.mode.value, ctx.session_id, timeout,
    )
    return LazyProcessStream(
        argv,
        stdin=child_stdin,
        env=env,
        timeout=timeout,
        close_grace_seconds=config.close_grace_seconds,
        line_limit=config.max_line_length,
    )


async def _close_after_failure(stream: LazyProcessStream) -> None:
    try:
        await stream.close()
    except LifecycleError as exc:
        logger.warning("Subprocess cleanup after failed drain: %s", exc)


async def run_call(
    ctx: SessionContext,
    registry: GenusRegistry,
    config: EngineConfig,
    sink: TextIO,
    *,
    personas: AimuxConfig | None = None,
    cmd_args: str = "",
    stdin: StdinSource = None,
    store: SessionStore | None = None,
) -> DrainState:
    """Prepare, drain into ``sink`` and close.

    The stream is always closed. When draining fails its error wins
    over a cleanup error; otherwise a non-clean exit raises
    ``ProcessExitError`` after the output has been written.
    """
    store = store or SessionStore()
    stream = prepare_call(
        ctx, registry, config, personas, cmd_args, stdin,
        resolver=SessionResolver(store),
    )
    interpreter = StreamInterpreter(config, store)
    try:
        state = await interpreter.drain(ctx, stream, sink)
    except BaseException:
        await _close_after_failure(stream)
        raise
    await stream.close()
    return state
