"""基于回答生成器的分析 Agent

回答的生成委托给外部的 answer producer：一个 (question, context) -> text 的函数，
可以是同步函数（放到工作线程执行）或协程函数（例如调用较慢的外部 LLM 服务）。
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable, Union

from loguru import logger

from codeanalyzer.agents.base import BaseAgent
from codeanalyzer.core.exceptions import AnswerProductionError
from codeanalyzer.infrastructure.ledger_codec import Comment

AnswerProducer = Callable[[str, str], Union[str, Awaitable[str]]]


class AnalysisAgent(BaseAgent):
    """分析 Agent

    Attributes:
        description: Agent 职责描述
    """

    def __init__(self, name: str, answer_producer: AnswerProducer, description: str = ""):
        """初始化 Agent

        Args:
            name: Agent 标识名（如 'security', 'documentation'）
            answer_producer: 回答生成器
            description: Agent 职责描述
        """
        super().__init__()
        if not name:
            raise ValueError("Agent name must not be empty")
        self._name = name
        self._answer_producer = answer_producer
        self.description = description

    @property
    def name(self) -> str:
        return self._name

    async def answer_question(self, comment: Comment) -> str:
        """调用回答生成器回答问题

        Raises:
            AnswerProductionError: 生成器抛出异常或返回空文本
        """
        logger.debug(f"[{self.name}] Responding to {comment.asking_agent}: {comment.question}")
        try:
            if inspect.iscoroutinefunction(self._answer_producer):
                answer = await self._answer_producer(comment.question, comment.context)
            else:
                answer = await asyncio.to_thread(self._answer_producer, comment.question, comment.context)
                if inspect.isawaitable(answer):
                    answer = await answer
        except AnswerProductionError:
            raise
        except Exception as e:
            raise AnswerProductionError(self.name, comment.id, f"{type(e).__name__}: {e}") from e

        if not isinstance(answer, str) or not answer.strip():
            raise AnswerProductionError(self.name, comment.id, "answer producer returned an empty answer")
        return answer.strip()
