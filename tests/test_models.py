"""Tests for identity models, tags and the storage layout."""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from aimux.engine import paths
from aimux.engine.models import (
    BlockingCode,
    LogRecord,
    SessionContext,
    Tag,
    config_tag,
    format_tag,
    is_valid_identifier,
    is_valid_uuid,
    new_id,
    normalize_id,
    parse_tag,
    signature,
)


def _ctx(tmp_path: Path, **overrides) -> SessionContext:
    fields = dict(
        conversation_id="c0ffee00-0000-4000-8000-000000000001",
        session_id="c0ffee00-0000-4000-8000-000000000001",
        genus="claude",
        persona="architect",
        caller_tag="claude",
        depth=1,
        root=tmp_path,
    )
    fields.update(overrides)
    return SessionContext(**fields)


class TestTags:
    def test_format_differentiated(self):
        assert format_tag(Tag("architect", "claude")) == "architect~claude"

    def test_format_undifferentiated(self):
        assert format_tag(Tag("", "claude")) == "claude"

    def test_parse_is_inverse_of_format(self):
        for tag in (Tag("engineer", "codex"), Tag("", "bash")):
            assert parse_tag(format_tag(tag)) == tag

    def test_parse_splits_on_first_separator(self):
        assert parse_tag("a~b~c") == Tag("a", "b~c")

    def test_role(self):
        assert Tag("engineer", "claude").role == "engineer"
        assert Tag("", "claude").role is None
        assert Tag("", "claude").is_undifferentiated

    def test_config_tag_always_has_separator(self):
        assert config_tag("", "claude") == "~claude"
        assert config_tag("architect", "claude") == "architect~claude"


@pytest.mark.parametrize(
    "tag_text, expected",
    [
        ("architect~claude", "Architect Claude"),
        ("claude", "Claude"),
        ("~claude", "Claude"),
        ("", "Main User"),
        ("~", "Main User"),
        ("architect~", "Main User"),
    ],
)
def test_signature(tag_text, expected):
    assert signature(tag_text) == expected


def test_new_id_is_lowercase_uuid():
    value = new_id()
    assert is_valid_uuid(value)
    assert value == value.lower()
    assert new_id() != value


def test_identifier_validation():
    assert is_valid_identifier("claude")
    assert is_valid_identifier("gpt-5.codex_x")
    assert not is_valid_identifier("")
    assert not is_valid_identifier("../etc")
    assert not is_valid_identifier("a" * 65)


def test_uuid_validation_accepts_either_case():
    assert is_valid_uuid("C0FFEE00-0000-4000-8000-000000000001")
    assert not is_valid_uuid("not-a-uuid")
    assert normalize_id("ABC") == "abc"


class TestSessionContext:
    def test_conversation_id_is_immutable(self, tmp_path):
        ctx = _ctx(tmp_path)
        with pytest.raises(AttributeError):
            ctx.conversation_id = "other"

    def test_session_id_is_reassignable(self, tmp_path):
        ctx = _ctx(tmp_path)
        ctx.session_id = "S2"
        assert ctx.session_id == "S2"

    def test_negative_depth_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            _ctx(tmp_path, depth=-1)
        ctx = _ctx(tmp_path)
        with pytest.raises(ValueError):
            ctx.depth = -2

    def test_callee_tag_is_derived(self, tmp_path):
        ctx = _ctx(tmp_path)
        assert ctx.callee_tag == "architect~claude"
        ctx.persona = ""
        assert ctx.callee_tag == "claude"
        with pytest.raises(AttributeError):
            ctx.callee_tag = "engineer~claude"

    def test_paths(self, tmp_path):
        ctx = _ctx(tmp_path)
        base = tmp_path / "conversations" / ctx.conversation_id / "claude"
        assert ctx.directory == base / "architect"
        assert ctx.undifferentiated_log == base / "log.jsonl"
        assert ctx.persona_log == base / "architect" / "log.jsonl"
        assert ctx.write_log == base / "architect" / "log.jsonl"
        assert ctx.snapshot_path == base / "architect" / "context.json"

    def test_undifferentiated_persona_log_uses_placeholder(self, tmp_path):
        ctx = _ctx(tmp_path, persona="")
        base = tmp_path / "conversations" / ctx.conversation_id / "claude"
        assert ctx.persona_log == base / paths.EMPTY_PERSONA_PLACEHOLDER / "log.jsonl"
        assert ctx.write_log == base / "log.jsonl"
        assert ctx.directory == base

    def test_child_environment(self, tmp_path):
        ctx = _ctx(tmp_path)
        env = ctx.child_environment()
        assert env["AITAG"] == "architect~claude"
        assert env["AITOP"] == "claude"
        assert env["AILVL"] == "2"
        assert env["AIGEN"] == "claude"
        assert env["AIMOD"] == "architect"
        assert "AIWTF" not in env
        ctx.debug = True
        assert ctx.child_environment()["AIWTF"] == "1"

    def test_describe_environment(self, tmp_path):
        ctx = _ctx(
            tmp_path,
            conversation_id="C0FFEE00-0000-4000-8000-000000000001",
            extensions={"AIPHASE_HINT": "design", "OTHER": "x"},
        )
        lines = ctx.describe_environment()
        assert lines == sorted(lines)
        assert "AICID=c0ffee00-0000-4000-8000-000000000001" in lines
        assert "AILVL=1" in lines
        assert "AIPHASE_HINT=design" in lines
        assert not any(line.startswith("OTHER") for line in lines)

    def test_to_dict(self, tmp_path):
        data = _ctx(tmp_path, extensions={"AIX": "1"}).to_dict()
        assert data["callee_tag"] == "architect~claude"
        assert data["caller_tag"] == "claude"
        assert data["extensions"] == {"AIX": "1"}
        assert data["directory"].endswith("architect")


class TestLogRecord:
    def test_to_dict_keys(self):
        at = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        record = LogRecord(session_id="S", origin="assistant", body="hi", at=at)
        assert record.to_dict() == {
            "session_id": "S",
            "at": "2025-01-02T03:04:05+00:00",
            "from": "assistant",
            "body": "hi",
        }

    def test_from_dict_accepts_camel_case_session(self):
        record = LogRecord.from_dict({"sessionId": "X", "from": "user", "body": "b"})
        assert record.session_id == "X"
        assert record.origin == "user"

    def test_from_dict_tolerates_bad_timestamp(self):
        record = LogRecord.from_dict({"session_id": "S", "at": "yesterday"})
        assert record.at.tzinfo is not None


def test_blocking_code_slugs():
    assert BlockingCode.DEPTH_EXCEEDED.slug == "depth-exceeded"
    assert int(BlockingCode.UNDIFFERENTIATED_TO_TERMINAL_VIOLATION) == 5
