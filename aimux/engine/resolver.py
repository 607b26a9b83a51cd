"""Session identity resolution.

Decides, from persisted logs and snapshots, which session id a call
uses and whether the backend should start fresh, resume, or fork.

Resolution order for the session id:

1. snapshot (``context.json``) with a non-empty session id
2. persona log with an established (non-user) record: its last line
3. undifferentiated log, only for undifferentiated calls
4. the conversation id itself
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConversationNotFoundError, InvalidParameterError
from .models import (
    SessionContext,
    SessionMode,
    is_valid_identifier,
    is_valid_uuid,
    new_id,
)
from .providers.base import GenusSpec, render_flags
from .store import SessionStore

logger = logging.getLogger(__name__)


def validate_context_params(conversation_id: str, genus: str, persona: str) -> None:
    """Reject ids and names that are unsafe as path components."""
    if conversation_id and not is_valid_uuid(conversation_id):
        raise InvalidParameterError("invalid cid: must be UUID format")
    if not is_valid_identifier(genus):
        raise InvalidParameterError(
            "invalid gen: must be alphanumeric/dash/dot/underscore, 1-64 chars"
        )
    if persona and not is_valid_identifier(persona):
        raise InvalidParameterError(
            "invalid mod: must be alphanumeric/dash/dot/underscore, 1-64 chars"
        )


@dataclass
class SessionPlan:
    """Backend session flags for the imminent call.

    ``provisional`` marks a freshly minted fork-point session id that is
    only persisted if the call produces output.
    """
    mode: SessionMode
    flags: list[str] = field(default_factory=list)
    session_id: str = ""
    provisional: bool = False


class SessionResolver:
    """Resolves session identity against on-disk state."""

    def __init__(
        self,
        store: SessionStore | None = None,
        *,
        log: logging.Logger | None = None,
    ) -> None:
        self._log = log or logger
        self._store = store or SessionStore(log=self._log)

    # ── Identity ──────────────────────────────────────────────

    def determine_session_id(self, ctx: SessionContext) -> str:
        """Session id for ``ctx``; does not modify it.

        Raises:
            LogCorruptError: a log that should supply the id has a
                malformed or missing last line.
        """
        snapshot = self._store.load_snapshot(ctx.snapshot_path)
        if snapshot:
            sid = snapshot.get("session_id")
            if isinstance(sid, str) and sid:
                self._log.debug("Found SID in context.json: %s", sid)
                return sid

        if self._store.has_established_session(ctx.persona_log):
            sid = self._store.last_session_id(ctx.persona_log)
            self._log.debug("Found SID in persona log: %s", sid)
            return sid

        if not ctx.persona and self._store.has_established_session(ctx.undifferentiated_log):
            sid = self._store.last_session_id(ctx.undifferentiated_log)
            self._log.debug("Found SID in undifferentiated log: %s", sid)
            return sid

        return ctx.conversation_id

    def classify(self, ctx: SessionContext) -> SessionMode:
        """Fresh, resuming or branching, judged from the two logs."""
        if self._store.has_established_session(ctx.persona_log):
            return SessionMode.RESUMING
        if self._store.has_established_session(ctx.undifferentiated_log):
            if ctx.persona_log.exists():
                return SessionMode.BRANCHING
            return SessionMode.RESUMING
        return SessionMode.FRESH

    def plan_session(
        self,
        ctx: SessionContext,
        spec: GenusSpec,
        variables: dict[str, str] | None = None,
    ) -> SessionPlan:
        """Render the session flags for ``spec``.

        For a fresh call whose persona log already exists while the
        session id differs from the conversation id (already a branch),
        a new session id is minted and assigned to ``ctx`` so the backend
        treats the call as a fork point. It is not persisted here.
        """
        mode = self.classify(ctx)
        sid_vars = {"sid": ctx.session_id, **(variables or {})}

        if mode is SessionMode.BRANCHING and not spec.args.branch:
            mode = SessionMode.RESUMING

        if mode is SessionMode.RESUMING:
            return SessionPlan(
                mode=mode,
                flags=render_flags(spec.args.resume, sid_vars),
                session_id=ctx.session_id,
            )
        if mode is SessionMode.BRANCHING:
            return SessionPlan(
                mode=mode,
                flags=render_flags(spec.args.branch, sid_vars),
                session_id=ctx.session_id,
            )

        provisional = False
        if ctx.persona_log.exists() and ctx.conversation_id != ctx.session_id:
            ctx.session_id = new_id()
            sid_vars["sid"] = ctx.session_id
            provisional = True
            self._log.debug(
                "Generated new SID for branching: %s (will save if call succeeds)",
                ctx.session_id,
            )
        return SessionPlan(
            mode=SessionMode.FRESH,
            flags=render_flags(spec.args.new, sid_vars),
            session_id=ctx.session_id,
            provisional=provisional,
        )

    # ── Context construction ──────────────────────────────────

    def init_context(
        self,
        root: Path,
        genus: str,
        persona: str = "",
        *,
        caller_tag: str = "",
        depth: int = 0,
    ) -> SessionContext:
        """New conversation: conversation id == session id.

        Nothing is written; directories and the snapshot appear only once
        the call produces output.
        """
        validate_context_params("", genus, persona)
        cid = new_id()
        return SessionContext(
            conversation_id=cid,
            session_id=cid,
            genus=genus,
            persona=persona,
            caller_tag=caller_tag,
            depth=depth,
            root=root,
        )

    def resume_context(
        self,
        root: Path,
        conversation_id: str,
        genus: str,
        persona: str = "",
        *,
        caller_tag: str = "",
        depth: int = 0,
    ) -> SessionContext:
        """Existing conversation; requires its snapshot to exist.

        Raises:
            ConversationNotFoundError: no snapshot for this genus/persona.
            LogCorruptError: session id cannot be read from the logs.
        """
        validate_context_params(conversation_id, genus, persona)
        ctx = SessionContext(
            conversation_id=conversation_id,
            session_id=conversation_id,
            genus=genus,
            persona=persona,
            caller_tag=caller_tag,
            depth=depth,
            root=root,
        )
        ctx.session_id = self.determine_session_id(ctx)

        if not ctx.snapshot_path.exists():
            raise ConversationNotFoundError(conversation_id)

        saved = self._store.load_snapshot(ctx.snapshot_path)
        if saved:
            extensions = saved.get("extensions")
            if isinstance(extensions, dict):
                ctx.extensions = {str(k): str(v) for k, v in extensions.items()}
            ctx.debug = bool(saved.get("debug", False))
        return ctx

    def branch(self, ctx: SessionContext) -> None:
        """Fork the conversation: new session id at depth 0, persisted now."""
        ctx.session_id = new_id()
        ctx.depth = 0
        ctx.directory.mkdir(parents=True, exist_ok=True)
        self._store.save_snapshot(ctx)
        self._log.debug("Branched conversation %s to session %s", ctx.conversation_id, ctx.session_id)
