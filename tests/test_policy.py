"""Tests for call-graph validation."""
from __future__ import annotations

import pytest

from aimux.engine.errors import PolicyDeniedError
from aimux.engine.models import BlockingCode, SessionContext
from aimux.engine.policy import ensure_allowed, validate


def _ctx(tmp_path, *, persona="", genus="claude", caller="", depth=0):
    return SessionContext(
        conversation_id="c",
        session_id="c",
        genus=genus,
        persona=persona,
        caller_tag=caller,
        depth=depth,
        root=tmp_path,
    )


class TestDepth:
    @pytest.mark.parametrize("persona", ["", "architect", "engineer"])
    @pytest.mark.parametrize("caller", ["", "claude", "customer~codex"])
    def test_depth_three_always_denied(self, tmp_path, persona, caller):
        outcome = validate(_ctx(tmp_path, persona=persona, caller=caller, depth=3))
        assert not outcome.allowed
        assert outcome.code is BlockingCode.DEPTH_EXCEEDED
        assert outcome.reason == "recursive call depth exceeded (3)"

    def test_depth_two_not_denied_for_depth(self, tmp_path):
        outcome = validate(_ctx(tmp_path, persona="architect", caller="claude", depth=2))
        assert outcome.allowed

    def test_custom_max_depth(self, tmp_path):
        ctx = _ctx(tmp_path, persona="architect", depth=1)
        assert validate(ctx, max_depth=1).code is BlockingCode.DEPTH_EXCEEDED
        assert validate(ctx, max_depth=5).allowed


class TestSelfCall:
    def test_persona_calling_itself(self, tmp_path):
        outcome = validate(
            _ctx(tmp_path, persona="architect", caller="architect~claude")
        )
        assert outcome.code is BlockingCode.SELF_CALL
        assert outcome.reason == "you (Architect Claude) cannot call yourself"

    def test_undifferentiated_calling_itself(self, tmp_path):
        outcome = validate(_ctx(tmp_path, caller="claude"))
        assert outcome.code is BlockingCode.SELF_CALL

    def test_depth_checked_before_self_call(self, tmp_path):
        outcome = validate(
            _ctx(tmp_path, persona="architect", caller="architect~claude", depth=3)
        )
        assert outcome.code is BlockingCode.DEPTH_EXCEEDED

    def test_same_persona_other_genus_allowed(self, tmp_path):
        outcome = validate(
            _ctx(tmp_path, persona="architect", genus="codex", caller="architect~claude")
        )
        assert outcome.allowed


class TestTerminalRole:
    def test_engineer_cannot_call_anyone(self, tmp_path):
        outcome = validate(
            _ctx(tmp_path, persona="architect", caller="engineer~claude")
        )
        assert outcome.code is BlockingCode.TERMINAL_ROLE_VIOLATION
        assert outcome.reason == (
            "you (Engineer Claude) cannot call anyone; ask your caller instead"
        )

    def test_undifferentiated_cannot_address_engineer(self, tmp_path):
        outcome = validate(_ctx(tmp_path, persona="engineer", caller="claude"))
        assert outcome.code is BlockingCode.UNDIFFERENTIATED_TO_TERMINAL_VIOLATION
        assert outcome.reason == (
            "you (Claude) cannot call Engineer Claude; ask your team instead"
        )

    def test_architect_may_call_engineer(self, tmp_path):
        outcome = validate(
            _ctx(tmp_path, persona="engineer", caller="architect~claude", depth=1)
        )
        assert outcome.allowed

    def test_main_user_may_call_engineer(self, tmp_path):
        assert validate(_ctx(tmp_path, persona="engineer")).allowed

    def test_custom_terminal_role(self, tmp_path):
        ctx = _ctx(tmp_path, persona="architect", caller="customer~claude")
        assert validate(ctx).allowed
        outcome = validate(ctx, terminal_role="customer")
        assert outcome.code is BlockingCode.TERMINAL_ROLE_VIOLATION


def test_validate_is_pure(tmp_path):
    ctx = _ctx(tmp_path, persona="engineer", caller="claude", depth=1)
    first = validate(ctx)
    second = validate(ctx)
    assert first == second
    assert ctx.depth == 1
    assert not (tmp_path / "conversations").exists()


def test_ensure_allowed_raises_with_exit_code(tmp_path):
    with pytest.raises(PolicyDeniedError) as exc_info:
        ensure_allowed(_ctx(tmp_path, persona="architect", caller="engineer~codex"))
    assert exc_info.value.exit_code == 4
    assert exc_info.value.code is BlockingCode.TERMINAL_ROLE_VIOLATION


def test_ensure_allowed_passes(tmp_path):
    ensure_allowed(_ctx(tmp_path, persona="architect"))
