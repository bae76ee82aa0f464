"""测试 CoordinationErrorLog 协调错误日志"""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest

from codeanalyzer.infrastructure.error_log import (
    CoordinationErrorLog,
    ErrorLogEntry,
    LogEntryKind,
    format_pair,
)
from codeanalyzer.infrastructure.ledger_codec import Comment


class TestErrorLogEntry:
    """ErrorLogEntry 数据类测试"""

    def test_to_dict_shape(self) -> None:
        """测试条目字段"""
        entry = ErrorLogEntry(
            kind=LogEntryKind.ERROR,
            pair=("api-quality", "security"),
            rounds_attempted=2,
            unresolved_count=1,
            detail="boom",
        )
        d = entry.to_dict()
        assert set(d) == {"timestamp", "kind", "pair", "rounds_attempted", "unresolved_count", "detail"}
        assert d["kind"] == "error"
        assert d["pair"] == ["api-quality", "security"]

    def test_from_dict(self) -> None:
        """测试反序列化"""
        entry = ErrorLogEntry.from_dict({
            "timestamp": "2024-01-15T10:30:00",
            "kind": "timeout",
            "pair": ["a", "b"],
            "rounds_attempted": 3,
            "unresolved_count": 1,
            "detail": ["Q? (From: a, Context: n/a, id: c_1)"],
        })
        assert entry.kind == LogEntryKind.TIMEOUT
        assert entry.pair == ("a", "b")

    def test_timeout_markdown_without_questions(self) -> None:
        """测试无待解决问题的超时条目"""
        entry = ErrorLogEntry(
            kind=LogEntryKind.TIMEOUT,
            pair=("a", "b"),
            rounds_attempted=3,
            unresolved_count=0,
            detail=[],
        )
        text = entry.to_markdown(max_rounds=3)
        assert "## Coordination Timeout" in text
        assert "**Rounds Attempted:** 3/3" in text
        assert "**No pending questions**" in text


class TestCoordinationErrorLog:
    """CoordinationErrorLog 单元测试"""

    @pytest.fixture
    def temp_dir(self) -> Path:
        """创建临时目录"""
        with tempfile.TemporaryDirectory() as d:
            yield Path(d)

    @pytest.fixture
    def error_log(self, temp_dir: Path) -> CoordinationErrorLog:
        """创建 CoordinationErrorLog 实例"""
        return CoordinationErrorLog(temp_dir / "output" / "error-log.md", max_rounds=3)

    def test_record_timeout(self, error_log: CoordinationErrorLog) -> None:
        """测试记录超时"""
        pending = [Comment(asking_agent="a", target_agent="b", question="Why?", context="src/x.py")]
        entry = error_log.record_timeout(("a", "b"), 3, pending)

        assert entry.kind == LogEntryKind.TIMEOUT
        assert entry.unresolved_count == 1
        assert "Why?" in entry.detail[0]
        assert error_log.timeouts == [entry]
        assert error_log.errors == []

        text = error_log.path.read_text(encoding="utf-8")
        assert text.startswith("# Code Analyzer Error Log")
        assert "**Agent Pair:** a ↔ b" in text
        assert "- Why? (From: a, Context: src/x.py" in text

    def test_record_error(self, error_log: CoordinationErrorLog) -> None:
        """测试记录错误"""
        error_log.record_error(("a", "b"), 1, 1, "Error processing question c_1 from a to b: boom")
        assert len(error_log.errors) == 1
        assert "boom" in error_log.path.read_text(encoding="utf-8")

    def test_header_written_once(self, error_log: CoordinationErrorLog) -> None:
        """测试文件头只写一次"""
        error_log.record_error(("a", "b"), 1, 1, "first")
        error_log.record_error(("a", "c"), 1, 1, "second")
        assert error_log.path.read_text(encoding="utf-8").count("# Code Analyzer Error Log") == 1

    def test_jsonl_and_replay(self, error_log: CoordinationErrorLog) -> None:
        """测试 JSON Lines 持久化与重放"""
        error_log.record_error(("a", "b"), 1, 1, "boom")
        error_log.record_timeout(("a", "c"), 3, [])

        lines = error_log.jsonl_path.read_text(encoding="utf-8").strip().split("\n")
        assert len(lines) == 2
        assert json.loads(lines[0])["kind"] == "error"

        replayed = CoordinationErrorLog(error_log.path).replay_entries()
        assert [e.kind for e in replayed] == [LogEntryKind.ERROR, LogEntryKind.TIMEOUT]
        assert replayed[1].pair == ("a", "c")

    def test_no_persist(self, temp_dir: Path) -> None:
        """测试不写文件"""
        error_log = CoordinationErrorLog(temp_dir / "error-log.md", persist=False)
        error_log.record_error(("a", "b"), 0, 1, "boom")
        assert len(error_log.entries) == 1
        assert not error_log.path.exists()

    def test_unwritable_path_does_not_raise(self, temp_dir: Path) -> None:
        """测试写入失败不抛出"""
        blocker = temp_dir / "blocker"
        blocker.write_text("not a directory")
        error_log = CoordinationErrorLog(blocker / "error-log.md")
        error_log.record_error(("a", "b"), 0, 1, "boom")
        assert len(error_log.entries) == 1

    def test_hyphenated_pair_label(self) -> None:
        """测试含连字符的 Agent 名称渲染后仍可区分"""
        assert format_pair(("api", "quality-x")) != format_pair(("api-quality", "x"))
        entry = ErrorLogEntry(
            kind=LogEntryKind.ERROR,
            pair=("api-quality", "x"),
            rounds_attempted=1,
            unresolved_count=1,
            detail="boom",
        )
        assert "**Agent Pair:** api-quality ↔ x" in entry.to_markdown()

    @pytest.mark.asyncio
    async def test_async_record(self, error_log: CoordinationErrorLog) -> None:
        """测试异步记录写入 Markdown 与 JSON Lines"""
        pending = [Comment(asking_agent="a", target_agent="b", question="Why?")]
        await asyncio.gather(
            error_log.arecord_timeout(("a", "b"), 3, pending),
            error_log.arecord_error(("a", "c"), 1, 1, "boom"),
            error_log.arecord_error(("b", "c"), 1, 1, "bang"),
        )

        assert len(error_log.timeouts) == 1
        assert len(error_log.errors) == 2
        text = error_log.path.read_text(encoding="utf-8")
        assert text.count("# Code Analyzer Error Log") == 1
        assert "- Why? (From: a, Context: n/a" in text

        replayed = CoordinationErrorLog(error_log.path).replay_entries()
        assert len(replayed) == 3
        assert {e.pair for e in replayed} == {("a", "b"), ("a", "c"), ("b", "c")}

    @pytest.mark.asyncio
    async def test_async_unwritable_path_does_not_raise(self, temp_dir: Path) -> None:
        """测试异步写入失败不抛出"""
        blocker = temp_dir / "blocker"
        blocker.write_text("not a directory")
        error_log = CoordinationErrorLog(blocker / "error-log.md")
        await error_log.arecord_error(("a", "b"), 0, 1, "boom")
        assert len(error_log.entries) == 1
