"""Organic flow-hint inference from prompt text.

Keys are returned without the ``AI`` prefix; callers store them as
``AI<KEY>`` context extensions.
"""
from __future__ import annotations

import re

PHASE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("review", ("review", "critique", "evaluate")),
    ("test", ("test", "verify", "check", "validate")),
    ("design", ("design", "architect", "structure", "plan")),
    ("implement", ("implement", "build", "code", "write", "create")),
)

_UUID = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
_SHORT = r"[-0-9a-z]+"

CID_PATTERNS = [
    re.compile(rf"from\s+CID[:\s]+({_UUID})", re.IGNORECASE),
    re.compile(rf"CID[:\s]+({_UUID})", re.IGNORECASE),
    re.compile(rf"\[CID[:\s]+({_UUID})\]", re.IGNORECASE),
    re.compile(rf"from\s+CID[:\s]+({_SHORT})", re.IGNORECASE),
    re.compile(rf"CID[:\s]+({_SHORT})", re.IGNORECASE),
    re.compile(rf"\[CID[:\s]+({_SHORT})\]", re.IGNORECASE),
]

GOAL_PATTERNS = [
    re.compile(r"goal:\s*(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"(?:I|we)\s+want\s+to\s+(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"(?:let'?s|lets)\s+(.+?)(?:\n|$)", re.IGNORECASE),
    re.compile(r"objective:\s*(.+?)(?:\n|$)", re.IGNORECASE),
]

GOAL_LIMIT = 100


def strip_code_blocks(text: str) -> str:
    """Drop fenced blocks and indented (4 spaces or tab) lines."""
    kept = []
    in_fence = False
    for line in text.split("\n"):
        if line.strip().startswith("```"):
            in_fence = not in_fence
            continue
        if in_fence or line.startswith("    ") or line.startswith("\t"):
            continue
        kept.append(line)
    return "\n".join(kept)


def _phase(clean: str) -> str:
    if clean.count("?") >= 3:
        return "explore"
    lowered = clean.lower()
    for phase, keywords in PHASE_KEYWORDS:
        if any(kw in lowered for kw in keywords):
            return phase
    return ""


def _temperature(prompt: str) -> str:
    bold = prompt.count("**") // 2
    italic = max(0, prompt.count("*") - bold * 4) // 2
    if bold >= 2:
        return "high"
    if bold == 1 or italic >= 1:
        return "medium"
    return ""


def extract_cid_reference(text: str) -> str:
    for pattern in CID_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return ""


def extract_goal(text: str) -> str:
    for pattern in GOAL_PATTERNS:
        match = pattern.search(text)
        if match:
            goal = match.group(1).strip()
            if len(goal) > GOAL_LIMIT:
                goal = goal[: GOAL_LIMIT - 3] + "..."
            return goal
    return ""


def infer_flow_hints(prompt: str) -> dict[str, str]:
    """Phase, temperature, referenced conversation and goal hints.

    Code blocks are ignored except for temperature, which counts
    emphasis markers over the whole prompt.
    """
    clean = strip_code_blocks(prompt)
    hints: dict[str, str] = {}
    phase = _phase(clean)
    if phase:
        hints["PHASE_HINT"] = phase
    temperature = _temperature(prompt)
    if temperature:
        hints["TEMP_HINT"] = temperature
    ref = extract_cid_reference(clean)
    if ref:
        hints["REF_CID"] = ref
    goal = extract_goal(clean)
    if goal:
        hints["GOAL_HINT"] = goal
    return hints
