"""协调错误日志

记录协调超时和单条 Comment 处理失败。每条记录同时写入：

- ``error-log.md``：人类可读的 Markdown
- ``error-log.jsonl``：机器可读的 JSON Lines，可通过 replay_entries 恢复

协调轮次内部应使用 ``arecord_*``，文件写入通过 aiofiles 完成，不阻塞事件循环。
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles
import aiofiles.os
from loguru import logger

if TYPE_CHECKING:
    from codeanalyzer.infrastructure.ledger_codec import Comment

PAIR_SEPARATOR = " ↔ "
"""Agent 对标签的分隔符，Agent 名称中不会出现"""


def format_pair(pair: tuple[str, str]) -> str:
    """渲染 Agent 对标签"""
    return f"{pair[0]}{PAIR_SEPARATOR}{pair[1]}"


class LogEntryKind(str, Enum):
    """错误日志条目类型"""

    TIMEOUT = "timeout"
    """Agent 对的轮数预算耗尽"""

    ERROR = "error"
    """单条 Comment 处理失败"""


@dataclass
class ErrorLogEntry:
    """错误日志条目

    Attributes:
        kind: 条目类型
        pair: Agent 对
        rounds_attempted: 该 Agent 对已进行的协调轮数
        unresolved_count: 仍未解决的 Comment 数
        detail: 异常信息（error）或未解决问题列表（timeout）
        timestamp: 记录时间
    """

    kind: LogEntryKind
    pair: tuple[str, str]
    rounds_attempted: int
    unresolved_count: int
    detail: str | list[str]
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "pair": list(self.pair),
            "rounds_attempted": self.rounds_attempted,
            "unresolved_count": self.unresolved_count,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ErrorLogEntry:
        return cls(
            kind=LogEntryKind(data["kind"]),
            pair=tuple(data["pair"]),
            rounds_attempted=data["rounds_attempted"],
            unresolved_count=data["unresolved_count"],
            detail=data["detail"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )

    def to_markdown(self, max_rounds: int | None = None) -> str:
        """渲染为 Markdown 段落"""
        pair = format_pair(self.pair)
        if self.kind == LogEntryKind.TIMEOUT:
            budget = f"/{max_rounds}" if max_rounds else ""
            lines = [
                f"## Coordination Timeout - {self.timestamp.isoformat()}",
                "",
                f"**Agent Pair:** {pair}",
                f"**Rounds Attempted:** {self.rounds_attempted}{budget}",
                f"**Pending Questions:** {self.unresolved_count}",
                "",
            ]
            if self.detail:
                lines.append("**Unresolved Questions:**")
                lines.extend(f"- {item}" for item in self.detail)
            else:
                lines.append("**No pending questions**")
        else:
            lines = [
                f"## Error - {self.timestamp.isoformat()}",
                "",
                f"**Agent Pair:** {pair}",
                f"**Rounds Attempted:** {self.rounds_attempted}",
                "",
                str(self.detail),
            ]
        lines.extend(["", "---", ""])
        return "\n".join(lines)


class CoordinationErrorLog:
    """协调错误日志

    只追加。写文件失败时回退到 loguru，不会中断协调流程。

    Attributes:
        path: Markdown 日志路径
        persist: 是否写入文件
        max_rounds: 渲染超时条目时显示的轮数预算
    """

    def __init__(self, path: Path | None = None, persist: bool = True, max_rounds: int | None = None):
        self.path = Path(path) if path is not None else Path("output") / "error-log.md"
        self.persist = persist
        self.max_rounds = max_rounds
        self._entries: list[ErrorLogEntry] = []
        self._write_lock = asyncio.Lock()

    @property
    def jsonl_path(self) -> Path:
        return self.path.with_suffix(".jsonl")

    @property
    def entries(self) -> list[ErrorLogEntry]:
        return list(self._entries)

    @property
    def timeouts(self) -> list[ErrorLogEntry]:
        return [e for e in self._entries if e.kind == LogEntryKind.TIMEOUT]

    @property
    def errors(self) -> list[ErrorLogEntry]:
        return [e for e in self._entries if e.kind == LogEntryKind.ERROR]

    def record(self, entry: ErrorLogEntry) -> ErrorLogEntry:
        """追加一条记录"""
        self._entries.append(entry)
        if self.persist:
            self._persist(entry)
        return entry

    async def arecord(self, entry: ErrorLogEntry) -> ErrorLogEntry:
        """追加一条记录（异步写文件）"""
        self._entries.append(entry)
        if self.persist:
            await self._persist_async(entry)
        return entry

    def record_timeout(
        self,
        pair: tuple[str, str],
        rounds_attempted: int,
        pending: list[Comment],
    ) -> ErrorLogEntry:
        """记录协调超时，列出仍未解决的问题"""
        return self.record(self._timeout_entry(pair, rounds_attempted, pending))

    async def arecord_timeout(
        self,
        pair: tuple[str, str],
        rounds_attempted: int,
        pending: list[Comment],
    ) -> ErrorLogEntry:
        return await self.arecord(self._timeout_entry(pair, rounds_attempted, pending))

    def record_error(
        self,
        pair: tuple[str, str],
        rounds_attempted: int,
        unresolved_count: int,
        detail: str,
    ) -> ErrorLogEntry:
        """记录单条处理失败"""
        return self.record(self._error_entry(pair, rounds_attempted, unresolved_count, detail))

    async def arecord_error(
        self,
        pair: tuple[str, str],
        rounds_attempted: int,
        unresolved_count: int,
        detail: str,
    ) -> ErrorLogEntry:
        return await self.arecord(self._error_entry(pair, rounds_attempted, unresolved_count, detail))

    @staticmethod
    def _timeout_entry(pair: tuple[str, str], rounds_attempted: int, pending: list[Comment]) -> ErrorLogEntry:
        logger.warning(
            f"Coordination timeout for {format_pair(pair)} after {rounds_attempted} round(s), "
            f"{len(pending)} question(s) unresolved"
        )
        return ErrorLogEntry(
            kind=LogEntryKind.TIMEOUT,
            pair=pair,
            rounds_attempted=rounds_attempted,
            unresolved_count=len(pending),
            detail=[
                f"{c.question} (From: {c.asking_agent}, Context: {c.context or 'n/a'}, id: {c.id})"
                for c in pending
            ],
        )

    @staticmethod
    def _error_entry(
        pair: tuple[str, str],
        rounds_attempted: int,
        unresolved_count: int,
        detail: str,
    ) -> ErrorLogEntry:
        logger.error(detail)
        return ErrorLogEntry(
            kind=LogEntryKind.ERROR,
            pair=pair,
            rounds_attempted=rounds_attempted,
            unresolved_count=unresolved_count,
            detail=detail,
        )

    def _header(self) -> str:
        return f"# Code Analyzer Error Log\n\nGenerated: {datetime.now().isoformat()}\n\n---\n\n"

    def _persist(self, entry: ErrorLogEntry) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            is_new = not self.path.exists()
            with self.path.open("a", encoding="utf-8") as f:
                if is_new:
                    f.write(self._header())
                f.write(entry.to_markdown(self.max_rounds))
            with self.jsonl_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error(f"Failed to write error log {self.path}: {e}")
            logger.error(f"Error log entry: {entry.to_dict()}")

    async def _persist_async(self, entry: ErrorLogEntry) -> None:
        # 同一轮内多个 Agent 对并发记录，串行化以保证文件头只写一次、条目不交错
        async with self._write_lock:
            try:
                await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
                is_new = not await aiofiles.os.path.exists(self.path)
                async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
                    if is_new:
                        await f.write(self._header())
                    await f.write(entry.to_markdown(self.max_rounds))
                async with aiofiles.open(self.jsonl_path, "a", encoding="utf-8") as f:
                    await f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
            except OSError as e:
                logger.error(f"Failed to write error log {self.path}: {e}")
                logger.error(f"Error log entry: {entry.to_dict()}")

    def replay_entries(self) -> list[ErrorLogEntry]:
        """从 JSON Lines 文件恢复记录"""
        entries: list[ErrorLogEntry] = []
        if not self.jsonl_path.exists():
            return entries

        with self.jsonl_path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(ErrorLogEntry.from_dict(json.loads(line)))
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(f"Failed to parse error log entry: {e}")
        return entries

    def __repr__(self) -> str:
        return f"CoordinationErrorLog(path={self.path!r}, entries={len(self._entries)})"
