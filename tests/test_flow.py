"""Tests for call assembly and end-to-end calls against stand-in genera."""
from __future__ import annotations

import io
import json

import pytest

from aimux.engine.config import EngineConfig
from aimux.engine.errors import PolicyDeniedError, ProcessExitError, UnknownGenusError
from aimux.engine.flow import PrefixedInput, compose_input, prepare_call, run_call
from aimux.engine.models import SessionContext, new_id
from aimux.engine.providers import build_genus_registry
from aimux.engine.store import SessionStore
from aimux.engine.yaml_config import AimuxConfig, default_config


def _registry(**genera):
    config = default_config()
    config.genera.update(genera)
    return build_genus_registry(config)


def _ctx(tmp_path, genus="bash", persona="", **kwargs):
    cid = new_id()
    return SessionContext(
        conversation_id=cid,
        session_id=cid,
        genus=genus,
        persona=persona,
        root=tmp_path,
        **kwargs,
    )


class TestComposeInput:
    def test_parts_joined_with_blank_lines(self):
        assert compose_input(["sys", "cmd"], b"data") == b"sys\n\ncmd\n\ndata"

    def test_empty_parts_skipped(self):
        assert compose_input(["", "cmd"], None) == b"cmd"
        assert compose_input([""], None) is None

    def test_stream_stdin_wrapped(self):
        source = io.BytesIO(b"tail")
        composed = compose_input(["head"], source)
        assert isinstance(composed, PrefixedInput)
        assert composed.read() == b"head\n\ntail"

    def test_stdin_untouched_without_head(self):
        source = io.BytesIO(b"tail")
        assert compose_input([], source) is source


class TestPrefixedInput:
    def test_sized_reads_drain_prefix_first(self):
        reader = PrefixedInput(b"abc", io.BytesIO(b"def"))
        assert reader.read(2) == b"ab"
        assert reader.read(2) == b"c"
        assert reader.read(10) == b"def"
        assert reader.read(10) == b""

    def test_text_source(self):
        reader = PrefixedInput(b"first\n", io.StringIO("rest\n"))
        assert reader.read() == b"first\nrest\n"


class TestPrepareCall:
    def test_claude_argv(self, tmp_path):
        ctx = _ctx(tmp_path, genus="claude", persona="architect")
        stream = prepare_call(ctx, _registry(), EngineConfig(root=tmp_path), default_config())
        assert not stream.started
        argv = stream.argv
        assert argv[:-2] == [
            "claude",
            "--model", "opus", "--fallback-model", "opusplan",
            "--session-id", ctx.session_id,
            "--print", "--output-format", "stream-json", "--verbose",
            "--dangerously-skip-permissions",
        ]
        assert argv[-2] == "--append-system-prompt"
        assert argv[-1].startswith("PARTNER PROTOCOL START:\n")
        assert "Architect Claude" in argv[-1]

    def test_model_override(self, tmp_path):
        ctx = _ctx(tmp_path, genus="claude", persona="architect", extensions={"AIMODEL": "haiku"})
        stream = prepare_call(ctx, _registry(), EngineConfig(root=tmp_path))
        assert stream.argv[1:5] == ["--model", "haiku", "--fallback-model", "sonnet"]

    def test_codex_resume_argv(self, tmp_path):
        ctx = _ctx(tmp_path, genus="codex", persona="engineer")
        SessionStore().append(ctx, "assistant", "earlier")
        ctx.session_id = "S"
        stream = prepare_call(ctx, _registry(), EngineConfig(root=tmp_path))
        assert stream.argv == [
            "codex", "exec",
            "--model", "gpt-5-codex", "-c", "model_reasoning_effort=medium",
            "resume", "S",
            "--json",
            "--dangerously-bypass-approvals-and-sandbox", "--skip-git-repo-check",
        ]

    def test_bash_command_mode(self, tmp_path):
        stream = prepare_call(
            _ctx(tmp_path), _registry(), EngineConfig(root=tmp_path),
            cmd_args="wc -l", stdin=b"x\n",
        )
        assert stream.argv == ["bash", "-c", "wc -l"]

    def test_timeout_override(self, tmp_path):
        ctx = _ctx(tmp_path, extensions={"AITIMEOUT": "5s"})
        stream = prepare_call(ctx, _registry(), EngineConfig(root=tmp_path), cmd_args="true")
        assert stream.timeout == 5.0

    def test_policy_checked_first(self, tmp_path):
        ctx = _ctx(tmp_path, genus="nope", depth=3)
        with pytest.raises(PolicyDeniedError):
            prepare_call(ctx, _registry(), EngineConfig(root=tmp_path))

    def test_unknown_genus(self, tmp_path):
        with pytest.raises(UnknownGenusError, match="invalid gen 'nope'"):
            prepare_call(_ctx(tmp_path, genus="nope"), _registry(), EngineConfig(root=tmp_path))


class TestRunCall:
    @pytest.mark.asyncio
    async def test_echo_stand_in(self, tmp_path):
        registry = _registry(bash={"exe": ["cat"]})
        ctx = _ctx(tmp_path)
        sink = io.StringIO()

        state = await run_call(
            ctx, registry, EngineConfig(root=tmp_path), sink, cmd_args="hello",
        )

        assert sink.getvalue() == "hello\n"
        assert state.format.value == "text"
        assert ctx.session_id == ctx.conversation_id
        records = [
            json.loads(line)
            for line in ctx.write_log.read_text(encoding="utf-8").splitlines()
        ]
        assert [(r["from"], r["body"]) for r in records] == [("assistant", "hello")]
        snapshot = SessionStore().load_snapshot(ctx.snapshot_path)
        assert snapshot["session_id"] == ctx.conversation_id

    @pytest.mark.asyncio
    async def test_bash_command_with_piped_stdin(self, tmp_path):
        ctx = _ctx(tmp_path)
        sink = io.StringIO()
        await run_call(
            ctx, _registry(), EngineConfig(root=tmp_path), sink,
            cmd_args="tr a-z A-Z", stdin=io.BytesIO(b"shout\n"),
        )
        assert sink.getvalue() == "SHOUT\n"

    @pytest.mark.asyncio
    async def test_child_environment(self, tmp_path):
        registry = _registry(probe={"exe": ["sh", "-c", 'echo "$AITAG $AILVL $AITOP"']})
        ctx = _ctx(tmp_path, genus="probe", caller_tag="architect~claude", depth=1)
        sink = io.StringIO()
        await run_call(ctx, registry, EngineConfig(root=tmp_path), sink)
        assert sink.getvalue() == "probe 2 architect~claude\n"

    @pytest.mark.asyncio
    async def test_nonzero_exit_after_output(self, tmp_path):
        registry = _registry(failing={"exe": ["sh", "-c", "echo partial; exit 2"]})
        ctx = _ctx(tmp_path, genus="failing")
        sink = io.StringIO()
        with pytest.raises(ProcessExitError) as exc_info:
            await run_call(ctx, registry, EngineConfig(root=tmp_path), sink)
        assert exc_info.value.returncode == 2
        assert sink.getvalue() == "partial\n"

    @pytest.mark.asyncio
    async def test_denied_call_spawns_nothing(self, tmp_path):
        ctx = _ctx(tmp_path, persona="engineer", caller_tag="engineer~claude")
        with pytest.raises(PolicyDeniedError) as exc_info:
            await run_call(ctx, _registry(), EngineConfig(root=tmp_path), io.StringIO())
        assert exc_info.value.exit_code == 4
        assert not (tmp_path / "conversations").exists()

    @pytest.mark.asyncio
    async def test_empty_output_leaves_no_artifacts(self, tmp_path):
        registry = _registry(quiet={"exe": ["true"]})
        ctx = _ctx(tmp_path, genus="quiet")
        sink = io.StringIO()
        await run_call(ctx, registry, EngineConfig(root=tmp_path), sink)
        assert sink.getvalue() == ""
        assert not (tmp_path / "conversations").exists()

    @pytest.mark.asyncio
    async def test_personas_config_hints_reach_stdin_prompt(self, tmp_path):
        personas = AimuxConfig(genera={"echo": {"exe": ["cat"], "args": {"prompt": "stdin"}}})
        registry = build_genus_registry(personas)
        ctx = _ctx(tmp_path, genus="echo")
        sink = io.StringIO()
        await run_call(
            ctx, registry, EngineConfig(root=tmp_path), sink,
            personas=personas, cmd_args="question",
        )
        out = sink.getvalue()
        assert out.startswith("PARTNER PROTOCOL START:\n")
        assert out.endswith("\nquestion\n")
