"""Core data models for the aimux engine.

Session identity, log records, tag pairs and call-graph outcomes.
Single source of truth to avoid circular imports.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, NamedTuple

from . import paths

TAG_SEPARATOR = "~"
MAIN_USER = "Main User"

_IDENTIFIER_RE = re.compile(r"^[-0-9A-Za-z._]{1,64}$")
_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}"
    r"-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


# ── Identifiers ───────────────────────────────────────────────


def new_id() -> str:
    """Fresh lowercase UUID4 used for conversation and session ids."""
    return str(uuid.uuid4())


def normalize_id(value: str) -> str:
    return value.lower()


def is_valid_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value))


def is_valid_identifier(value: str) -> bool:
    """Genus/persona names: ``[-0-9A-Za-z._]{1,64}``."""
    return bool(_IDENTIFIER_RE.match(value))


# ── Tags ──────────────────────────────────────────────────────


class Tag(NamedTuple):
    """A (persona, genus) pair; persona is empty when undifferentiated."""
    persona: str
    genus: str

    @property
    def role(self) -> str | None:
        return self.persona or None

    @property
    def is_undifferentiated(self) -> bool:
        return not self.persona


def format_tag(tag: Tag) -> str:
    """Canonical text form: ``persona~genus``, or bare ``genus``."""
    if tag.persona:
        return f"{tag.persona}{TAG_SEPARATOR}{tag.genus}"
    return tag.genus


def parse_tag(text: str) -> Tag:
    """Inverse of :func:`format_tag`.

    Text without a separator is an undifferentiated tag. Text with one
    splits on the first separator.
    """
    if TAG_SEPARATOR not in text:
        return Tag("", text)
    persona, genus = text.split(TAG_SEPARATOR, 1)
    return Tag(persona, genus)


def config_tag(persona: str, genus: str) -> str:
    """``persona~genus`` always with the separator (config lookups)."""
    return f"{persona}{TAG_SEPARATOR}{genus}"


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:]


def signature(tag_text: str) -> str:
    """Human-readable name: ``architect~claude`` -> ``Architect Claude``."""
    if not tag_text or tag_text.endswith(TAG_SEPARATOR):
        return MAIN_USER
    tag = parse_tag(tag_text)
    if not tag.genus:
        return MAIN_USER
    if not tag.persona:
        return _capitalize(tag.genus)
    return f"{_capitalize(tag.persona)} {_capitalize(tag.genus)}"


# ── Log records ───────────────────────────────────────────────


class Origin(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LogRecord:
    """One line of an append-only ``log.jsonl``.

    Serialized with the on-disk keys ``session_id``, ``at``, ``from``,
    ``body`` and optional ``tags``.
    """
    session_id: str
    origin: str
    body: str
    at: datetime = field(default_factory=_utcnow)
    tags: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": self.session_id,
            "at": self.at.isoformat(),
            "from": self.origin,
            "body": self.body,
        }
        if self.tags:
            data["tags"] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogRecord:
        at_raw = data.get("at")
        try:
            at = datetime.fromisoformat(at_raw) if at_raw else _utcnow()
        except (TypeError, ValueError):
            at = _utcnow()
        return cls(
            session_id=str(data.get("session_id") or data.get("sessionId") or ""),
            origin=str(data.get("from", "")),
            body=str(data.get("body", "")),
            at=at,
            tags=data.get("tags") or None,
        )


# ── Call-graph outcomes ───────────────────────────────────────


class BlockingCode(IntEnum):
    """Denial codes; the value doubles as the process exit status."""
    SELF_CALL = 1
    DEPTH_EXCEEDED = 3
    TERMINAL_ROLE_VIOLATION = 4
    UNDIFFERENTIATED_TO_TERMINAL_VIOLATION = 5

    @property
    def slug(self) -> str:
        return self.name.lower().replace("_", "-")


@dataclass(frozen=True)
class BlockingOutcome:
    """Allowed, or denied with a code and a human-readable reason."""
    code: BlockingCode | None = None
    reason: str = ""

    @property
    def allowed(self) -> bool:
        return self.code is None

    @classmethod
    def allow(cls) -> BlockingOutcome:
        return cls()

    @classmethod
    def deny(cls, code: BlockingCode, reason: str) -> BlockingOutcome:
        return cls(code=code, reason=reason)


class OutputFormat(str, Enum):
    """Wire format detected from the first non-empty output line."""
    EMPTY = "empty"
    STRUCTURED = "json"
    MARKUP = "xml"
    TEXT = "text"


class SessionMode(str, Enum):
    FRESH = "fresh"
    RESUMING = "resuming"
    BRANCHING = "branching"


# ── Session context ───────────────────────────────────────────


@dataclass
class SessionContext:
    """Identity of one call.

    ``callee_tag`` and ``directory`` are derived and cannot be set.
    ``conversation_id`` cannot be reassigned once constructed.
    """
    conversation_id: str
    session_id: str
    genus: str
    persona: str = ""
    caller_tag: str = ""
    depth: int = 0
    debug: bool = False
    extensions: dict[str, str] = field(default_factory=dict)
    root: Path = field(default_factory=paths.default_root)

    def __post_init__(self) -> None:
        self.root = Path(self.root)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "conversation_id" and "conversation_id" in self.__dict__:
            raise AttributeError("conversation_id is immutable once a call begins")
        if name == "depth" and isinstance(value, int) and value < 0:
            raise ValueError(f"depth must be non-negative, got {value}")
        super().__setattr__(name, value)

    @property
    def tag(self) -> Tag:
        return Tag(self.persona, self.genus)

    @property
    def callee_tag(self) -> str:
        return format_tag(self.tag)

    @property
    def directory(self) -> Path:
        return paths.persona_dir(
            self.root, self.conversation_id, self.genus, self.persona,
        )

    @property
    def undifferentiated_log(self) -> Path:
        return paths.undifferentiated_log(
            self.root, self.conversation_id, self.genus,
        )

    @property
    def persona_log(self) -> Path:
        return paths.persona_log(
            self.root, self.conversation_id, self.genus, self.persona,
        )

    @property
    def write_log(self) -> Path:
        return paths.write_log(
            self.root, self.conversation_id, self.genus, self.persona,
        )

    @property
    def snapshot_path(self) -> Path:
        return paths.snapshot_path(
            self.root, self.conversation_id, self.genus, self.persona,
        )

    def child_environment(self) -> dict[str, str]:
        """``AI*`` variables seen by the subprocess.

        The callee tag becomes the child's caller and depth increments.
        """
        env = {
            "AICID": self.conversation_id,
            "AISID": self.session_id,
            "AIGEN": self.genus,
            "AIMOD": self.persona,
            "AITAG": self.callee_tag,
            "AITOP": self.caller_tag,
            "AILVL": str(self.depth + 1),
        }
        if self.debug:
            env["AIWTF"] = "1"
        return env

    def describe_environment(self) -> list[str]:
        """Sorted ``KEY=VALUE`` lines for display in the system prompt."""
        lines = [
            f"AICID={normalize_id(self.conversation_id)}",
            f"AISID={normalize_id(self.session_id)}",
            f"AITOP={self.caller_tag}",
            f"AITAG={self.callee_tag}",
            f"AIGEN={self.genus}",
            f"AIMOD={self.persona}",
            f"AILVL={self.depth}",
        ]
        if self.debug:
            lines.append("AIWTF=x")
        for key, value in self.extensions.items():
            if key.startswith("AI"):
                lines.append(f"{key}={value}")
        return sorted(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "session_id": self.session_id,
            "caller_tag": self.caller_tag,
            "callee_tag": self.callee_tag,
            "genus": self.genus,
            "persona": self.persona,
            "depth": self.depth,
            "debug": self.debug,
            "directory": str(self.directory),
            "extensions": dict(self.extensions),
        }
