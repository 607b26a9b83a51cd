"""Partner-protocol system prompt.

The prompt is rendered from the callee's point of view (one level
deeper than the caller) and assembled from five blocks:
START, GUIDE, HINTS, an optional CONTEXT block for a referenced
conversation, and FINAL.
"""
from __future__ import annotations

import dataclasses
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from . import paths
from .models import LogRecord, SessionContext, config_tag, signature

if TYPE_CHECKING:
    from .config import EngineConfig
    from .yaml_config import AimuxConfig

logger = logging.getLogger(__name__)

CONTEXT_BODY_LIMIT = 200

GUIDE_RULES = (
    "Never use partner protocol to close *inbound* calls like this call;",
    "Always use partner protocol to open *outbound* calls via Bash Tool;",
    "30-min timeouts are required to avoid *aborting* calls prematurely;",
    "Trust yourself and your own good judgment to respond appropriately!",
)

FINAL_RULES = (
    "**30-minute** timeouts on Bash Tool for ALL outbound partner calls;",
    "Accumulate and respect ALL stakeholder intent per your persona;",
    "CRITICAL: TRUST YOUR TEAM and STAY IN YOUR LANE!",
)

# Delegation hints for an undifferentiated Claude with no persona hints
UNDIFFERENTIATED_CLAUDE_HINTS = (
    "**On FIRST read via Bash Tool**, run `Customer Claude,\\n\\nI am [NAME ...] "
    "the *new* [ROLE ...] I need rapid onboarding of your perspective!\\n`;",
    "**On FIRST read via Bash Tool**, run `Architect Claude,\\n\\nI am [NAME ...] "
    "the *new* [ROLE ...] I need rapid onboarding of your perspective!\\n`;",
    "CRITICAL: DELEGATE experiential and confirmational tasks to *Customer Claude* "
    "to enhance *your own* contextual awareness;",
    "CRITICAL: DELEGATE evaluational and implementation tasks to *Architect Claude* "
    "to protect *your own* contextual integrity;",
)

ALIAS_HINT = "Realize `... Claude,` (or Codex) is a shell alias and should be used VERBATIM;"
MARKDOWN_HINT = (
    "Interpret markdown naturally: **Headers** = phases, **Lists** = decisions, "
    "**Bold/Italic** = emphasis, **Code blocks** = artifacts;"
)
REGENERATE_HINT = "Run `ai::sys` in **Bash Tool** whenever needed to regenerate this system prompt!"


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, ending in ``...`` when cut."""
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    if limit <= 3:
        return "..."
    return text[: limit - 3] + "..."


def protocol_message(kind: str, message: str = "") -> str:
    """A ``PARTNER PROTOCOL <KIND>:`` block, e.g. for a denied call."""
    kind = kind or "ERROR"
    if message:
        return f"PARTNER PROTOCOL {kind}:\n- Sorry, {message}.\n"
    return f"PARTNER PROTOCOL {kind}:\n- Sorry.\n"


def load_template_hints(root: Path, persona: str) -> list[str]:
    """Hints from ``<root>/templates/hints/<persona>.txt``, one per line."""
    if not persona:
        return []
    try:
        text = paths.hints_path(root, persona).read_text(encoding="utf-8")
    except OSError:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


def load_referenced_context(
    root: Path,
    conversation_id: str,
    genus: str,
    personas: list[str],
    limit: int = 10,
) -> list[LogRecord]:
    """Last ``limit`` messages of another conversation.

    The first readable log among ``personas`` (``""`` meaning the
    undifferentiated log) under ``genus`` wins. Malformed lines are
    skipped. Returns an empty list when no log exists.
    """
    if not conversation_id:
        return []
    if limit <= 0:
        limit = 20
    for persona in personas:
        log_path = paths.write_log(root, conversation_id, genus, persona)
        try:
            text = log_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        records = []
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                records.append(LogRecord.from_dict(_json_object(line)))
            except ValueError:
                continue
        return records[-limit:]
    logger.debug("No logs found for referenced conversation %s", conversation_id)
    return []


def _json_object(line: str) -> dict:
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError("not an object")
    return data


# ── Blocks ────────────────────────────────────────────────────


def _start(ctx: SessionContext) -> list[str]:
    lines = [
        "PARTNER PROTOCOL START:",
        f"- Remote caller is *{signature(ctx.caller_tag)}* (me) seeking response on STDIO;",
        f"- Local callee is *{signature(ctx.callee_tag)}* (you) connected to STDIO;",
        "- Leave **now** if caller and callee match to avoid calling yourself!",
    ]
    for entry in ctx.describe_environment():
        if entry.endswith("="):
            continue
        lines.append("- " + entry.replace("=", " is ", 1))
    return lines


def _guide(ctx: SessionContext) -> list[str]:
    return [
        "PARTNER PROTOCOL GUIDE:",
        f"- Honor caller *{signature(ctx.caller_tag)}* (me) yet challenge all assumptions;",
        f"- Embody persona *{signature(ctx.callee_tag)}* (you) for entirety of this call;",
        *(f"- {rule}" for rule in GUIDE_RULES),
    ]


def _flow_hints(ctx: SessionContext) -> list[str]:
    env = ctx.extensions
    lines = []
    if env.get("AIPHASE_HINT"):
        lines.append(f"- Context suggests this is a **{env['AIPHASE_HINT']}** phase;")
    if env.get("AITEMP_HINT"):
        lines.append(f"- User emphasis suggests **{env['AITEMP_HINT']} temperature** thinking;")
    if env.get("AIREF_CID"):
        lines.append(f"- User references context from conversation **{env['AIREF_CID']}**;")
    if env.get("AIGOAL_HINT"):
        lines.append(f"- Working toward goal: **{env['AIGOAL_HINT']}**;")
    if env.get("AIRWD"):
        lines.append(
            f"- **TEMPORAL QUERY**: You are viewing conversation state as of **{env['AIRWD']}**;"
        )
        lines.append("- Respond from that historical perspective without knowledge of future events;")
    lines.append(f"- {MARKDOWN_HINT}")
    return lines


def _hints(ctx: SessionContext, personas: AimuxConfig | None) -> list[str]:
    lines = ["PARTNER PROTOCOL HINTS:", f"- {ALIAS_HINT}"]
    hints = load_template_hints(ctx.root, ctx.persona)
    if not hints and ctx.persona and personas is not None:
        hints = personas.persona_hints(ctx.persona)
    if not hints and config_tag(ctx.persona, ctx.genus) == "~claude":
        hints = list(UNDIFFERENTIATED_CLAUDE_HINTS)
    lines.extend(f"- {hint}" for hint in hints)
    lines.extend(_flow_hints(ctx))
    lines.append(f"- {REGENERATE_HINT}")
    return lines


def _referenced_context(ctx: SessionContext, config: EngineConfig | None) -> list[str]:
    ref_cid = ctx.extensions.get("AIREF_CID", "")
    if not ref_cid:
        return []
    if config is not None:
        genus = config.reference_genus
        personas = config.reference_personas
        limit = config.reference_limit
    else:
        genus, personas, limit = "claude", ["", "architect", "engineer"], 10
    messages = load_referenced_context(ctx.root, ref_cid, genus, personas, limit)
    if not messages:
        return []
    lines = [
        "PARTNER PROTOCOL CONTEXT:",
        f"- Referenced conversation: **{ref_cid}**",
        f"- Showing last {len(messages)} messages:",
    ]
    for i, msg in enumerate(messages, 1):
        lines.append(f"  {i}. [{msg.origin}] {truncate(msg.body, CONTEXT_BODY_LIMIT)}")
    lines.append("")
    return lines


def _final() -> list[str]:
    return ["PARTNER PROTOCOL FINAL:", *(f"- {rule}" for rule in FINAL_RULES)]


def build_system_prompt(
    ctx: SessionContext,
    config: EngineConfig | None = None,
    personas: AimuxConfig | None = None,
) -> str:
    """Full system prompt for a call made with ``ctx``.

    ``AISYS`` in the context extensions replaces the generated prompt.
    """
    custom = ctx.extensions.get("AISYS", "")
    if custom:
        return custom

    callee = dataclasses.replace(ctx, depth=ctx.depth + 1)
    lines = [
        *_start(callee),
        *_guide(callee),
        *_hints(callee, personas),
        *_referenced_context(callee, config),
        *_final(),
    ]
    return "\n".join(lines) + "\n"
