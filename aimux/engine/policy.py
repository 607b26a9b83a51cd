"""Call-graph validation.

Prevents recursive self-invocation and keeps persona boundaries. Rules
are checked in order and the first match wins:

1. depth-exceeded (code 3): depth >= max depth
2. self-call (code 1): callee tag equals caller tag
3. terminal-role-violation (code 4): a terminal role is calling
4. undifferentiated-to-terminal-violation (code 5): an undifferentiated
   caller addresses the terminal role directly

Pure functions, no I/O.
"""
from __future__ import annotations

from .errors import PolicyDeniedError
from .models import (
    BlockingCode,
    BlockingOutcome,
    SessionContext,
    parse_tag,
    signature,
)

DEFAULT_MAX_DEPTH = 3
DEFAULT_TERMINAL_ROLE = "engineer"


def validate(
    ctx: SessionContext,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    terminal_role: str = DEFAULT_TERMINAL_ROLE,
) -> BlockingOutcome:
    """Decide whether ``ctx`` may call its callee."""
    if ctx.depth >= max_depth:
        return BlockingOutcome.deny(
            BlockingCode.DEPTH_EXCEEDED,
            f"recursive call depth exceeded ({ctx.depth})",
        )

    callee = ctx.callee_tag
    if callee and callee == ctx.caller_tag:
        return BlockingOutcome.deny(
            BlockingCode.SELF_CALL,
            f"you ({signature(callee)}) cannot call yourself",
        )

    if ctx.caller_tag:
        caller = parse_tag(ctx.caller_tag)
        if caller.role is not None and caller.role == terminal_role:
            return BlockingOutcome.deny(
                BlockingCode.TERMINAL_ROLE_VIOLATION,
                f"you ({signature(ctx.caller_tag)}) cannot call anyone; "
                f"ask your caller instead",
            )
        if caller.is_undifferentiated and ctx.persona == terminal_role:
            return BlockingOutcome.deny(
                BlockingCode.UNDIFFERENTIATED_TO_TERMINAL_VIOLATION,
                f"you ({signature(ctx.caller_tag)}) cannot call "
                f"{signature(callee)}; ask your team instead",
            )

    return BlockingOutcome.allow()


def ensure_allowed(
    ctx: SessionContext,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    terminal_role: str = DEFAULT_TERMINAL_ROLE,
) -> None:
    """Raise :class:`PolicyDeniedError` when :func:`validate` denies."""
    outcome = validate(ctx, max_depth=max_depth, terminal_role=terminal_role)
    if not outcome.allowed:
        raise PolicyDeniedError(outcome)
