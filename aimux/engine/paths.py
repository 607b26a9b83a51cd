"""Storage layout for conversations.

Pure path arithmetic, no I/O. Every location is derived from the
storage root plus (conversation id, genus, persona)::

    <root>/conversations/<cid>/<genus>/log.jsonl            undifferentiated log
    <root>/conversations/<cid>/<genus>/<persona>/log.jsonl  persona log
    <persona dir>/context.json                              snapshot
"""
from __future__ import annotations

from pathlib import Path

CONVERSATIONS_DIR = "conversations"
LOG_FILE_NAME = "log.jsonl"
CONTEXT_FILE_NAME = "context.json"
CONFIG_FILE_NAME = "config.yaml"
TEMPLATES_DIR = "templates"
HINTS_DIR = "hints"

# Stands in for an empty persona when naming the persona log, so the
# persona log of an undifferentiated call is a path that never exists.
EMPTY_PERSONA_PLACEHOLDER = "-"


def default_root() -> Path:
    return Path.home() / ".aimux"


def genus_dir(root: Path, conversation_id: str, genus: str) -> Path:
    """``<root>/conversations/<cid>/<genus>``."""
    return Path(root) / CONVERSATIONS_DIR / conversation_id / genus


def persona_dir(
    root: Path, conversation_id: str, genus: str, persona: str,
) -> Path:
    """Genus dir, or genus dir + persona when a persona is selected."""
    base = genus_dir(root, conversation_id, genus)
    if persona:
        return base / persona
    return base


def undifferentiated_log(root: Path, conversation_id: str, genus: str) -> Path:
    return genus_dir(root, conversation_id, genus) / LOG_FILE_NAME


def persona_log(
    root: Path, conversation_id: str, genus: str, persona: str,
) -> Path:
    """Persona-specific log, using the ``-`` placeholder for no persona."""
    return (
        genus_dir(root, conversation_id, genus)
        / (persona or EMPTY_PERSONA_PLACEHOLDER)
        / LOG_FILE_NAME
    )


def write_log(
    root: Path, conversation_id: str, genus: str, persona: str,
) -> Path:
    """The log a call appends to: ``<persona dir>/log.jsonl``."""
    return persona_dir(root, conversation_id, genus, persona) / LOG_FILE_NAME


def snapshot_path(
    root: Path, conversation_id: str, genus: str, persona: str,
) -> Path:
    return persona_dir(root, conversation_id, genus, persona) / CONTEXT_FILE_NAME


def config_path(root: Path) -> Path:
    return Path(root) / CONFIG_FILE_NAME


def hints_path(root: Path, persona: str) -> Path:
    return Path(root) / TEMPLATES_DIR / HINTS_DIR / f"{persona}.txt"
