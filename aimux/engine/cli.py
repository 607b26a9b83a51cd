"""CLI entry point for aimux partner calls.

Usage:
    aimux --new "Design the storage layer"
    aimux --cid <uuid> --mod architect "Review the plan"
    echo "Architect Claude, review this" | aimux --new --hud
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import time
from datetime import datetime
from typing import NoReturn

from . import paths, policy
from .config import EngineConfig
from .errors import (
    AimuxError,
    ConfigError,
    PolicyDeniedError,
    ProcessExitError,
    StreamError,
    UnknownGenusError,
)
from .flow import PrefixedInput, run_call
from .flow_hints import infer_flow_hints
from .hud import parse_hud_line
from .models import Origin, normalize_id, signature
from .prompt import protocol_message
from .providers import build_genus_registry
from .resolver import SessionResolver
from .store import SessionStore
from .yaml_config import load_config

logger = logging.getLogger(__name__)

DEFAULT_GENUS = "bash"

EPILOG = """\
Organic flow control (automatic detection from prompt):
  - Phase hints: 'design', 'implement', 'review', etc.
  - Temperature: **bold** = high, *italic* = medium
  - CID references: 'from CID abc-123' loads context
  - Goals: 'Goal: build X' or 'I want to X'
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aimux",
        description="Partner-protocol calls into AI command-line programs",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("prompt", nargs="*", help="Prompt words")
    parser.add_argument(
        "--new",
        action="store_true",
        help="Start a new conversation (or branch --cid)",
    )
    parser.add_argument(
        "--gen",
        default=None,
        help="Genus: claude, codex, bash, ... (default: $AIGEN or bash)",
    )
    parser.add_argument(
        "--mod",
        default=None,
        help="Persona: architect, engineer, customer, or a model name",
    )
    parser.add_argument("--cid", default=None, help="Conversation ID to resume")
    parser.add_argument(
        "--sid", default=None, help="Session ID (overrides auto-detection)",
    )
    parser.add_argument(
        "--lvl", type=int, default=None, help="Call depth (overrides $AILVL)",
    )
    parser.add_argument(
        "--top", default=None, help="Caller tag (overrides $AITAG)",
    )
    parser.add_argument(
        "--rwd", default=None, help="Rewind to timestamp (RFC3339)",
    )
    parser.add_argument(
        "--sys", default=None, help="Custom system prompt (overrides generation)",
    )
    parser.add_argument(
        "--hud",
        action="store_true",
        help="Parse the first stdin line for 'Persona Genus,' addressing",
    )
    parser.add_argument("--wtf", action="store_true", help="Enable debug logging")
    return parser


def _fail(message: str, code: int = 1) -> NoReturn:
    print(message, file=sys.stderr)
    sys.exit(code)


def _parse_rfc3339(value: str) -> datetime:
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError("missing timezone offset")
    return parsed


def format_elapsed(seconds: float) -> str:
    """Millisecond-rounded duration such as ``850ms``, ``2.5s``, ``1m3.2s``."""
    ms = round(seconds * 1000)
    if ms < 1000:
        return f"{ms}ms"
    minutes, ms = divmod(ms, 60_000)
    secs = f"{ms / 1000:.3f}".rstrip("0").rstrip(".") + "s"
    return f"{minutes}m{secs}" if minutes else secs


def _stdin_is_pipe() -> bool:
    stream = sys.stdin
    if stream is None:
        return False
    try:
        return not stream.isatty()
    except (AttributeError, ValueError):
        return False


def _error_prefix(exc: AimuxError) -> str:
    if isinstance(exc, ProcessExitError):
        return "subprocess"
    if isinstance(exc, StreamError):
        return "stream"
    return "call genus"


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = EngineConfig.from_env()
    debug = args.wtf or bool(os.environ.get("AIWTF"))
    logging.basicConfig(
        level=logging.DEBUG if debug else config.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    try:
        personas = load_config(paths.config_path(config.root))
        registry = build_genus_registry(personas)
    except ConfigError as exc:
        _fail(f"error loading config: {exc}")

    cmd_args = " ".join(args.prompt).strip()
    stdin_source = None
    model_override = ""
    stdin_is_pipe = _stdin_is_pipe()

    # Block on the first line so pipeline stages run in order
    if stdin_is_pipe:
        logger.debug("Stdin is piped, reading first line to synchronize pipeline...")
        raw_stdin = getattr(sys.stdin, "buffer", sys.stdin)
        first_line = raw_stdin.readline()
        if isinstance(first_line, str):
            first_line = first_line.encode("utf-8")
        if args.hud and first_line:
            text = first_line.decode("utf-8", errors="replace")
            address = parse_hud_line(personas, text)
            if not address.genus:
                _fail(
                    f"error: cannot infer genus from HUD line {text.strip()!r}\n"
                    f"       expected format: '<Persona> <Genus>,' where genus is one of: "
                    f"{', '.join(registry.list_names())}\n"
                    f"       or use model names like haiku, sonnet, opus "
                    f"(auto-infers claude genus)"
                )
            args.mod, args.gen = address.persona, address.genus
            model_override = address.model_override
            logger.debug(
                "HUD mode: parsed %s %s (model=%s) from first line",
                address.persona, address.genus, model_override or "-",
            )
        stdin_source = PrefixedInput(first_line, raw_stdin)
        logger.debug("Peeked first line (%d bytes), created replay reader", len(first_line))

    genus = args.gen or os.environ.get("AIGEN") or DEFAULT_GENUS
    persona = args.mod if args.mod is not None else os.environ.get("AIMOD", "")
    cid = normalize_id(args.cid or os.environ.get("AICID", ""))
    new = args.new or bool(os.environ.get("AINEW"))
    caller_tag = args.top if args.top is not None else os.environ.get("AITAG", "")
    if args.lvl is not None:
        depth = args.lvl
    else:
        try:
            depth = int(os.environ.get("AILVL") or 0)
        except ValueError:
            _fail(f"error: invalid AILVL {os.environ.get('AILVL')!r}")

    if genus not in registry:
        _fail(f"error: {UnknownGenusError(genus, registry.list_names())}")

    if not cmd_args and stdin_source is None and not (cid and stdin_is_pipe):
        print("error: no prompt provided", file=sys.stderr)
        parser.print_usage(sys.stderr)
        sys.exit(1)

    store = SessionStore()
    resolver = SessionResolver(store)

    if not cid:
        if not new:
            _fail(
                "error: must specify --cid to resume or --new to create\n"
                "usage: aimux --new <prompt>           # create new conversation\n"
                "       aimux --cid=<uuid> <prompt>   # resume conversation\n"
                "       aimux --cid=<uuid> --new ...   # branch from conversation"
            )
        try:
            ctx = resolver.init_context(
                config.root, genus, persona, caller_tag=caller_tag, depth=depth,
            )
        except AimuxError as exc:
            _fail(f"initialize context: {exc}")
    else:
        try:
            ctx = resolver.resume_context(
                config.root, cid, genus, persona, caller_tag=caller_tag, depth=depth,
            )
        except AimuxError as exc:
            logger.debug("resume_context failed: %s", exc)
            if new:
                _fail(
                    f"error: cannot branch from non-existent conversation {cid}\n"
                    "       use --new alone to create new conversation\n"
                    "       or use --cid=<existing-uuid> --new to branch"
                )
            _fail(f"error: conversation {cid} not found")
        if new:
            try:
                resolver.branch(ctx)
            except OSError as exc:
                _fail(f"branch session: {exc}")

    ctx.debug = debug
    if args.sid:
        ctx.session_id = normalize_id(args.sid)

    if args.rwd:
        try:
            cutoff = _parse_rfc3339(args.rwd)
        except ValueError as exc:
            _fail(f"error: invalid rewind timestamp (use RFC3339 format): {exc}")
        ctx.extensions["AIRWD"] = cutoff.isoformat()
        ctx.extensions["AITEMPORAL"] = "query"
        logger.debug("Temporal rewind to: %s", cutoff.isoformat())

    if args.sys:
        ctx.extensions["AISYS"] = args.sys
    if model_override:
        ctx.extensions["AIMODEL"] = model_override

    # Streamed stdin is not consumed here, so only its presence is logged
    if stdin_source is not None:
        logged_prompt = f"{cmd_args} <<STDIN" if cmd_args else "<<STDIN"
    else:
        logged_prompt = cmd_args

    for key, value in infer_flow_hints(logged_prompt).items():
        ctx.extensions["AI" + key] = value
        logger.debug("Flow hint: AI%s=%s", key, value)

    try:
        policy.ensure_allowed(
            ctx, max_depth=config.max_depth, terminal_role=config.terminal_role,
        )
    except PolicyDeniedError as exc:
        print(protocol_message("BLOCK", exc.outcome.reason), file=sys.stderr)
        sys.exit(exc.exit_code)

    try:
        store.append(ctx, Origin.USER.value, logged_prompt)
    except OSError as exc:
        print(f"warning: failed to log user message: {exc}", file=sys.stderr)

    started = time.monotonic()
    try:
        asyncio.run(run_call(
            ctx,
            registry,
            config,
            sys.stdout,
            personas=personas,
            cmd_args=cmd_args,
            stdin=stdin_source,
            store=store,
        ))
    except PolicyDeniedError as exc:
        print(protocol_message("BLOCK", exc.outcome.reason), file=sys.stderr)
        sys.exit(exc.exit_code)
    except AimuxError as exc:
        _fail(f"{_error_prefix(exc)}: {exc}")
    except KeyboardInterrupt:
        _fail("\nInterrupted.")

    elapsed = format_elapsed(time.monotonic() - started)
    summary = f"{signature(ctx.callee_tag)} / {elapsed} / {ctx.conversation_id}"
    if ctx.session_id != ctx.conversation_id:
        summary += f" ({ctx.session_id})"
    print(f"\n\n{summary}", file=sys.stderr)


if __name__ == "__main__":
    main()
