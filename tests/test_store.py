"""Tests for log and snapshot persistence."""
from __future__ import annotations

import json

import pytest

from aimux.engine.errors import LogCorruptError
from aimux.engine.models import LogRecord, SessionContext
from aimux.engine.store import (
    LogWriter,
    SessionStore,
    is_established_record,
    session_id_of,
    write_json_atomic,
)


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def ctx(tmp_path):
    return SessionContext(
        conversation_id="c1",
        session_id="c1",
        genus="claude",
        persona="architect",
        root=tmp_path,
    )


def _write_lines(path, *lines):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")


class TestAtomicWrite:
    def test_writes_single_json_line(self, tmp_path):
        target = tmp_path / "sub" / "context.json"
        write_json_atomic(target, {"a": 1})
        assert target.read_text(encoding="utf-8") == '{"a": 1}\n'

    def test_replaces_and_leaves_no_temp_files(self, tmp_path):
        target = tmp_path / "context.json"
        write_json_atomic(target, {"v": 1})
        write_json_atomic(target, {"v": 2})
        assert json.loads(target.read_text(encoding="utf-8")) == {"v": 2}
        assert [p.name for p in tmp_path.iterdir()] == ["context.json"]


class TestSnapshot:
    def test_round_trip(self, store, ctx):
        ctx.extensions["AIPHASE_HINT"] = "review"
        store.save_snapshot(ctx)
        data = store.load_snapshot(ctx.snapshot_path)
        assert data["session_id"] == "c1"
        assert data["extensions"] == {"AIPHASE_HINT": "review"}

    def test_missing_is_none(self, store, tmp_path):
        assert store.load_snapshot(tmp_path / "nope.json") is None

    def test_unparsable_is_none(self, store, tmp_path):
        bad = tmp_path / "context.json"
        bad.write_text("{half", encoding="utf-8")
        assert store.load_snapshot(bad) is None

    def test_try_save_reports_failure(self, store, ctx, tmp_path):
        # A regular file where the conversations directory should be
        (tmp_path / "conversations").write_text("", encoding="utf-8")
        assert store.try_save_snapshot(ctx) is False


class TestLogs:
    def test_append_creates_directories(self, store, ctx):
        path = store.append(ctx, "user", "hello")
        assert path == ctx.write_log
        record = json.loads(path.read_text(encoding="utf-8"))
        assert record["from"] == "user"
        assert record["body"] == "hello"
        assert record["session_id"] == "c1"

    def test_user_only_log_is_not_established(self, store, ctx):
        store.append(ctx, "user", "hello")
        assert not store.has_established_session(ctx.write_log)
        store.append(ctx, "assistant", "hi")
        assert store.has_established_session(ctx.write_log)

    def test_missing_log_is_not_established(self, store, tmp_path):
        assert not store.has_established_session(tmp_path / "log.jsonl")

    def test_verbatim_backend_line_is_established(self):
        assert is_established_record({"type": "assistant", "session_id": "S"})
        assert not is_established_record({"type": "system", "session_id": "S"})
        assert not is_established_record({"from": "user"})

    def test_last_session_id(self, store, tmp_path):
        log = tmp_path / "log.jsonl"
        _write_lines(
            log,
            json.dumps({"session_id": "A", "from": "user"}),
            json.dumps({"sessionId": "B", "type": "assistant"}),
        )
        assert store.last_session_id(log) == "B"

    @pytest.mark.parametrize(
        "content",
        ["", "\n", '{"from": "assistant"}\n', "not json\n", "[1, 2]\n"],
    )
    def test_last_session_id_corrupt(self, store, tmp_path, content):
        log = tmp_path / "log.jsonl"
        log.write_text(content, encoding="utf-8")
        with pytest.raises(LogCorruptError):
            store.last_session_id(log)

    def test_last_session_id_missing_file(self, store, tmp_path):
        with pytest.raises(LogCorruptError):
            store.last_session_id(tmp_path / "log.jsonl")

    def test_read_messages_skips_malformed(self, store, tmp_path):
        log = tmp_path / "log.jsonl"
        _write_lines(
            log,
            json.dumps({"session_id": "S", "from": "user", "body": "q"}),
            "garbage",
            json.dumps({"session_id": "S", "from": "assistant", "body": "a"}),
        )
        messages = store.read_messages(log)
        assert [m.body for m in messages] == ["q", "a"]
        assert [m.origin for m in messages] == ["user", "assistant"]


class TestLogWriter:
    def test_counts_records(self, tmp_path):
        path = tmp_path / "log.jsonl"
        with LogWriter(path) as writer:
            writer.write_raw('{"session_id": "S"}')
            writer.write_record(LogRecord(session_id="S", origin="assistant", body="x"))
            assert writer.records_written == 2
        lines = path.read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[1])["body"] == "x"

    def test_write_after_close_is_ignored(self, tmp_path):
        writer = LogWriter(tmp_path / "log.jsonl")
        writer.close()
        writer.write_raw("{}")
        writer.close()
        assert writer.records_written == 0


def test_session_id_of():
    assert session_id_of({"session_id": "a"}) == "a"
    assert session_id_of({"sessionId": "b"}) == "b"
    assert session_id_of({"session_id": 3}) is None
    assert session_id_of({}) is None
