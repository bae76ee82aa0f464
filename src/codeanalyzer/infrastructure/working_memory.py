"""WorkingMemoryStore 工作记忆存储

每个 Agent 拥有一份 Markdown 工作记忆文档，同时充当人类可读的报告和持久化的消息队列。
同一文档的读-改-写由文档级 asyncio.Lock 串行化，读操作不加锁。
"""

from __future__ import annotations

import asyncio
import re
import warnings
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

import aiofiles
import aiofiles.os
from loguru import logger

from codeanalyzer.core.config import get_settings
from codeanalyzer.core.exceptions import (
    DocumentNotFoundError,
    ResolutionMismatchWarning,
    StorageError,
)
from codeanalyzer.infrastructure.ledger_codec import (
    COORDINATION_MARKER,
    RESULTS_MARKER,
    Comment,
    CommentStatus,
    append_to_region,
    decode_ledger,
    join_document,
    replace_in_region,
    split_document,
)

DOCUMENT_SUFFIX = "-analysis.md"

_AGENT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class ResolutionOutcome(str, Enum):
    """resolve_comment 的结果"""

    RESOLVED = "resolved"
    """本次调用完成了 pending → resolved"""

    ALREADY_RESOLVED = "already_resolved"
    """Comment 早已解决，保留第一次的回答"""

    NOT_FOUND = "not_found"
    """台账中没有该 id"""


@dataclass
class DocumentHandle:
    """工作记忆文档句柄

    Attributes:
        agent_id: 文档所属 Agent
        path: 文档路径
        lock: 文档写锁（读-改-写临界区）
    """

    agent_id: str
    """文档所属 Agent"""

    path: Path
    """文档路径"""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    """文档写锁"""


def render_template(agent_id: str, repo_path: str | None = None) -> str:
    """生成新文档的初始内容"""
    return (
        f"# {agent_id} Analysis\n\n"
        f"**Agent:** {agent_id}\n"
        f"**Repository:** {repo_path or '(unknown)'}\n"
        f"**Created:** {datetime.now().isoformat()}\n\n"
        f"{RESULTS_MARKER}\n\n"
        f"{COORDINATION_MARKER}\n"
    )


class WorkingMemoryStore:
    """工作记忆存储

    管理输出目录下所有 Agent 的文档，并为每份文档提供唯一的句柄和写锁。

    Attributes:
        root: 文档所在目录
    """

    def __init__(self, root: Path | None = None):
        """初始化存储

        Args:
            root: 文档目录（默认使用配置中的 output_dir）
        """
        self.root = Path(root) if root is not None else get_settings().output_dir
        self._handles: dict[str, DocumentHandle] = {}

    # ==================== 句柄管理 ====================

    def document_path(self, agent_id: str) -> Path:
        """获取 Agent 文档路径

        Raises:
            ValueError: agent_id 含有路径分隔符等非法字符
        """
        if not _AGENT_ID_RE.match(agent_id):
            raise ValueError(f"Invalid agent id: {agent_id!r}")
        return self.root / f"{agent_id}{DOCUMENT_SUFFIX}"

    def _handle_for(self, agent_id: str) -> DocumentHandle:
        handle = self._handles.get(agent_id)
        if handle is None:
            handle = DocumentHandle(agent_id=agent_id, path=self.document_path(agent_id))
            self._handles[agent_id] = handle
        return handle

    def get_handle(self, agent_id: str) -> DocumentHandle:
        """获取已存在文档的句柄

        Raises:
            DocumentNotFoundError: 文档不存在
        """
        if agent_id in self._handles:
            return self._handles[agent_id]
        if not self.document_path(agent_id).exists():
            raise DocumentNotFoundError(agent_id)
        return self._handle_for(agent_id)

    def discover_agents(self) -> list[str]:
        """列出目录中已有文档的 Agent（按名称排序）"""
        if not self.root.exists():
            return []
        names = {
            path.name[: -len(DOCUMENT_SUFFIX)]
            for path in self.root.glob(f"*{DOCUMENT_SUFFIX}")
            if path.is_file()
        }
        return sorted(name for name in names if _AGENT_ID_RE.match(name))

    async def create_document(self, agent_id: str, repo_path: str | None = None) -> DocumentHandle:
        """创建 Agent 文档（幂等）

        文档已存在时保持原样，只返回句柄。

        Raises:
            StorageError: 目录或文件不可写
        """
        handle = self._handle_for(agent_id)
        async with handle.lock:
            if handle.path.exists():
                return handle
            try:
                await aiofiles.os.makedirs(self.root, exist_ok=True)
                await self._write(handle, render_template(agent_id, repo_path))
            except OSError as e:
                raise StorageError(f"Cannot create working memory document {handle.path}: {e}") from e
        logger.debug(f"[{agent_id}] Created working memory document {handle.path}")
        return handle

    # ==================== 原始读写 ====================

    async def read_document(self, handle: DocumentHandle) -> str:
        """读取整个文档

        Raises:
            DocumentNotFoundError: 文档不存在
            StorageError: 文档不可读
        """
        try:
            async with aiofiles.open(handle.path, encoding="utf-8") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise DocumentNotFoundError(handle.agent_id) from e
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Cannot read working memory document {handle.path}: {e}") from e

    async def replace_document(self, handle: DocumentHandle, text: str) -> None:
        """替换整个文档"""
        async with handle.lock:
            await self._write(handle, text)

    async def _write(self, handle: DocumentHandle, text: str) -> None:
        # 先写临时文件再替换，避免留下半截文档；调用方持有 handle.lock
        tmp_path = handle.path.with_name(handle.path.name + ".tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(text)
            await aiofiles.os.replace(tmp_path, handle.path)
        except OSError as e:
            await self._discard(tmp_path)
            raise StorageError(f"Cannot write working memory document {handle.path}: {e}") from e

    @staticmethod
    async def _discard(tmp_path: Path) -> None:
        try:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
        except OSError as e:
            logger.warning(f"Cannot remove temporary file {tmp_path}: {e}")

    # ==================== 报告正文 ====================

    async def read_report_body(self, handle: DocumentHandle) -> str:
        """读取报告正文"""
        return split_document(await self.read_document(handle)).body

    async def replace_report_body(self, handle: DocumentHandle, text: str) -> None:
        """替换报告正文，协调区保持不变

        Raises:
            StorageError: 文档结构标记缺失
        """
        async with handle.lock:
            sections = split_document(await self.read_document(handle))
            sections.body = text.strip("\n")
            await self._write(handle, join_document(sections))
        logger.debug(f"[{handle.agent_id}] Report body updated ({len(text)} chars)")

    # ==================== Comment 台账 ====================

    async def read_ledger(self, handle: DocumentHandle) -> list[Comment]:
        """读取 Comment 台账

        文档不存在、结构标记缺失或协调区为空时返回空列表，从不抛出异常。
        """
        try:
            text = await self.read_document(handle)
            sections = split_document(text)
        except StorageError as e:
            logger.warning(f"[{handle.agent_id}] Ledger unavailable, treating as empty: {e}")
            return []
        return decode_ledger(sections.coordination)

    async def append_comment(self, handle: DocumentHandle, comment: Comment) -> Comment:
        """向 Agent 自己的台账追加一条 pending Comment

        Raises:
            ValueError: Comment 不属于该文档或不是 pending
            StorageError: 文档结构标记缺失或 id 重复
        """
        if comment.asking_agent != handle.agent_id:
            raise ValueError(
                f"Comment asked by '{comment.asking_agent}' cannot be stored in '{handle.agent_id}' document"
            )
        if comment.status != CommentStatus.PENDING:
            raise ValueError(f"Only pending comments can be appended, got {comment.status.value}")

        async with handle.lock:
            sections = split_document(await self.read_document(handle))
            if any(c.id == comment.id for c in decode_ledger(sections.coordination)):
                raise StorageError(f"Comment {comment.id} already exists in {handle.agent_id} ledger")
            sections.coordination = append_to_region(sections.coordination, comment)
            await self._write(handle, join_document(sections))

        logger.debug(
            f"[{handle.agent_id}] Appended comment {comment.id} for {comment.target_agent} (round {comment.round})"
        )
        return comment

    async def resolve_comment(
        self,
        handle: DocumentHandle,
        comment_id: str,
        response: str,
    ) -> ResolutionOutcome:
        """记录回答并将 Comment 标记为 resolved

        找不到 id 时发出 ResolutionMismatchWarning 并返回 NOT_FOUND；
        已解决的 Comment 不会被覆盖。

        Raises:
            StorageError: 文档不可读写或结构标记缺失
        """
        async with handle.lock:
            sections = split_document(await self.read_document(handle))
            existing = next((c for c in decode_ledger(sections.coordination) if c.id == comment_id), None)

            if existing is None:
                message = f"Comment {comment_id} not found in {handle.agent_id} ledger"
                logger.warning(f"[{handle.agent_id}] {message}")
                warnings.warn(message, ResolutionMismatchWarning, stacklevel=2)
                return ResolutionOutcome.NOT_FOUND

            if not existing.is_pending:
                logger.debug(f"[{handle.agent_id}] Comment {comment_id} already resolved, keeping first response")
                return ResolutionOutcome.ALREADY_RESOLVED

            updated = replace_in_region(sections.coordination, existing.resolve(response))
            if updated is None:
                raise StorageError(f"Comment {comment_id} block could not be located in {handle.agent_id} ledger")
            sections.coordination = updated
            await self._write(handle, join_document(sections))

        logger.debug(f"[{handle.agent_id}] Resolved comment {comment_id}")
        return ResolutionOutcome.RESOLVED

    def __repr__(self) -> str:
        return f"WorkingMemoryStore(root={self.root!r}, documents={len(self._handles)})"
