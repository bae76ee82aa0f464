"""Agent 抽象基类

协调核心只依赖 AgentFacade 能力（name / document / answer_question），
从不依赖具体的分析 Agent 类型。BaseAgent 在此之上提供工作记忆相关的便捷方法。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from loguru import logger

from codeanalyzer.core.exceptions import AgentNotInitializedError
from codeanalyzer.infrastructure.ledger_codec import Comment
from codeanalyzer.infrastructure.working_memory import DocumentHandle, WorkingMemoryStore


@runtime_checkable
class AgentFacade(Protocol):
    """协调核心需要的 Agent 能力"""

    @property
    def name(self) -> str: ...

    @property
    def document(self) -> DocumentHandle: ...

    async def answer_question(self, comment: Comment) -> str: ...


class BaseAgent(ABC):
    """分析 Agent 抽象基类

    Attributes:
        store: 工作记忆存储（attach 后可用）
        repo_path: 被分析仓库路径
    """

    def __init__(self):
        self.store: WorkingMemoryStore | None = None
        self.repo_path: str | None = None
        self._document: DocumentHandle | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Agent 标识名，在一次运行中唯一且稳定"""
        pass

    @abstractmethod
    async def answer_question(self, comment: Comment) -> str:
        """回答其他 Agent 的提问

        Args:
            comment: 提问记录（位于提问方文档中）

        Returns:
            纯文本回答

        Raises:
            AnswerProductionError: 无法生成回答
        """
        pass

    @property
    def document(self) -> DocumentHandle:
        """Agent 自己的工作记忆文档句柄

        Raises:
            AgentNotInitializedError: 尚未调用 attach()
        """
        if self._document is None:
            raise AgentNotInitializedError(self.name)
        return self._document

    @property
    def is_attached(self) -> bool:
        return self._document is not None

    def _require_store(self) -> WorkingMemoryStore:
        if self.store is None:
            raise AgentNotInitializedError(self.name)
        return self.store

    async def attach(self, store: WorkingMemoryStore, repo_path: str | None = None) -> DocumentHandle:
        """绑定工作记忆存储并创建自己的文档

        Args:
            store: 工作记忆存储
            repo_path: 被分析仓库路径（写入文档头部）

        Returns:
            文档句柄
        """
        self.store = store
        self.repo_path = repo_path
        self._document = await store.create_document(self.name, repo_path)
        logger.info(f"[{self.name}] Initialized, working file: {self._document.path}")
        return self._document

    async def ask_question(
        self,
        target_agent: str,
        question: str,
        context: str = "",
        round: int = 1,
    ) -> Comment:
        """向另一个 Agent 提问

        Comment 只写入自己的台账，由 CoordinationManager 在对应轮次投递。

        Returns:
            新建的 pending Comment
        """
        store = self._require_store()
        comment = Comment(
            asking_agent=self.name,
            target_agent=target_agent,
            question=question,
            context=context,
            round=round,
        )
        logger.info(f"[{self.name}] Asking {target_agent}: {question}")
        return await store.append_comment(self.document, comment)

    async def update_report(self, text: str) -> None:
        """替换报告正文"""
        await self._require_store().replace_report_body(self.document, text)

    async def read_report(self) -> str:
        """读取报告正文"""
        return await self._require_store().read_report_body(self.document)

    async def ledger(self) -> list[Comment]:
        """读取自己的 Comment 台账"""
        return await self._require_store().read_ledger(self.document)

    async def pending_questions(self) -> list[Comment]:
        """自己提出且尚未得到回答的问题"""
        return [c for c in await self.ledger() if c.is_pending]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, attached={self.is_attached})"
