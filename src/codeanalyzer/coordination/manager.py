"""CoordinationManager 协调管理器

按轮次在所有 Agent 对之间投递待回答的问题：

1. 枚举所有无序 Agent 对（n 个 Agent 共 n·(n-1)/2 对）
2. 并发处理每一对的两个方向：读取提问方台账中 pending 且到期的 Comment，
   请目标 Agent 回答，再把回答写回提问方文档
3. 所有 Agent 对处理完毕（轮次屏障）后检查收敛：仍有 pending 且未达到轮数上限则进入下一轮

单条 Comment 或单个 Agent 对的失败只记录到错误日志，不会中断其他 Agent 对或整个协调过程。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Iterable

from loguru import logger

from codeanalyzer.agents.base import AgentFacade
from codeanalyzer.core.config import get_settings
from codeanalyzer.core.exceptions import AnswerProductionError, ConfigurationError
from codeanalyzer.infrastructure.error_log import CoordinationErrorLog, format_pair
from codeanalyzer.infrastructure.ledger_codec import Comment
from codeanalyzer.infrastructure.working_memory import ResolutionOutcome, WorkingMemoryStore

PairKey = tuple[str, str]


def pair_key(agent_a: str, agent_b: str) -> PairKey:
    """无序 Agent 对的规范键"""
    return (agent_a, agent_b) if agent_a <= agent_b else (agent_b, agent_a)


@dataclass
class CoordinationSummary:
    """一次协调运行的汇总"""

    rounds_run: int
    """实际运行的轮数"""

    max_rounds: int
    """每个 Agent 对的轮数预算"""

    pair_counts: dict[PairKey, int] = field(default_factory=dict)
    """各 Agent 对已进行的协调轮数"""

    pair_attempts: int = 0
    """Agent 对处理次数（不含因预算耗尽而跳过的）"""

    resolved: int = 0
    """本次运行解决的 Comment 数"""

    unresolved: int = 0
    """运行结束时仍 pending 的 Comment 数"""

    timeouts: int = 0
    """超时记录数"""

    errors: int = 0
    """错误记录数"""

    @property
    def converged(self) -> bool:
        return self.unresolved == 0

    def format_summary(self) -> str:
        """渲染各 Agent 对的轮数使用情况"""
        lines = [
            f"{format_pair(pair)}: {count}/{self.max_rounds} rounds" for pair, count in self.pair_counts.items()
        ]
        lines.append(f"Unresolved questions: {self.unresolved}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rounds_run": self.rounds_run,
            "max_rounds": self.max_rounds,
            "pair_counts": [
                {"pair": list(pair), "rounds": count} for pair, count in self.pair_counts.items()
            ],
            "pair_attempts": self.pair_attempts,
            "resolved": self.resolved,
            "unresolved": self.unresolved,
            "timeouts": self.timeouts,
            "errors": self.errors,
            "converged": self.converged,
        }


class CoordinationManager:
    """协调管理器

    轮数预算按 Agent 对计算：某一对在一轮中只要有任一方向尝试过回答（无论成功与否），
    计数加一，且每轮最多加一。

    Attributes:
        store: 工作记忆存储
        max_rounds: 每个 Agent 对的轮数预算
        answer_timeout: 单次 answer_question 的超时时间（秒）
        error_log: 错误日志
        current_round: 当前轮次（从 1 开始）
        round_counters: Agent 对 -> 已进行的协调轮数
    """

    def __init__(
        self,
        store: WorkingMemoryStore,
        max_rounds: int | None = None,
        answer_timeout: float | None = None,
        error_log: CoordinationErrorLog | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.max_rounds = settings.max_rounds if max_rounds is None else max_rounds
        self.answer_timeout = settings.answer_timeout if answer_timeout is None else answer_timeout
        if self.max_rounds < 1:
            raise ConfigurationError(f"max_rounds must be >= 1, got {self.max_rounds}")
        if self.answer_timeout <= 0:
            raise ConfigurationError(f"answer_timeout must be > 0, got {self.answer_timeout}")

        self.error_log = error_log or CoordinationErrorLog(
            settings.error_log_path(store.root),
            max_rounds=self.max_rounds,
        )
        self.reset()

    def reset(self) -> None:
        """开始新的协调会话"""
        self.current_round = 1
        self.round_counters: dict[PairKey, int] = {}
        self.pair_attempts = 0
        self._resolved = 0
        self._exhausted: set[PairKey] = set()
        self._timed_out: set[PairKey] = set()

    def get_round_count(self, key: PairKey) -> int:
        return self.round_counters.get(key, 0)

    def _increment_round_count(self, key: PairKey) -> None:
        self.round_counters[key] = min(self.get_round_count(key) + 1, self.max_rounds)

    @staticmethod
    def agent_pairs(agents: list[AgentFacade]) -> list[tuple[AgentFacade, AgentFacade]]:
        """所有无序 Agent 对"""
        return list(combinations(agents, 2))

    # ==================== 主循环 ====================

    async def run(self, agents: Iterable[AgentFacade]) -> CoordinationSummary:
        """运行协调直到收敛或轮数用尽

        Args:
            agents: 已初始化（已绑定文档）的 Agent

        Returns:
            CoordinationSummary

        Raises:
            ConfigurationError: Agent 名称重复
            AgentNotInitializedError: Agent 尚未绑定文档
        """
        agent_list = list(agents)
        names = [a.name for a in agent_list]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Agent names must be unique, got {names}")
        for agent in agent_list:
            logger.debug(f"[{agent.name}] Coordinating via {agent.document.path}")

        pairs = self.agent_pairs(agent_list)
        rounds_run = 0

        while True:
            logger.info(f"Starting coordination round {self.current_round}/{self.max_rounds} ({len(pairs)} pairs)")
            await asyncio.gather(*(self._process_pair(a, b) for a, b in pairs))
            rounds_run += 1

            pending = await self._collect_pending(agent_list)
            if not pending:
                logger.info(f"Coordination converged after round {self.current_round}")
                break
            if self.current_round >= self.max_rounds:
                logger.info(f"Coordination round budget exhausted with {len(pending)} pending question(s)")
                break
            self.current_round += 1

        await self._surface_unresolved(pending)

        summary = CoordinationSummary(
            rounds_run=rounds_run,
            max_rounds=self.max_rounds,
            pair_counts={
                pair_key(a.name, b.name): self.get_round_count(pair_key(a.name, b.name)) for a, b in pairs
            },
            pair_attempts=self.pair_attempts,
            resolved=self._resolved,
            unresolved=len(pending),
            timeouts=len(self.error_log.timeouts),
            errors=len(self.error_log.errors),
        )
        logger.info(f"Coordination summary:\n{summary.format_summary()}")
        return summary

    # ==================== Agent 对处理 ====================

    async def _process_pair(self, agent_a: AgentFacade, agent_b: AgentFacade) -> None:
        key = pair_key(agent_a.name, agent_b.name)

        if key in self._exhausted or self.get_round_count(key) >= self.max_rounds:
            self._exhausted.add(key)
            if key not in self._timed_out:
                await self._log_timeout(key, await self._pending_between(agent_a, agent_b))
            return

        self.pair_attempts += 1
        try:
            attempted = await asyncio.gather(
                self._process_direction(agent_a, agent_b),
                self._process_direction(agent_b, agent_a),
            )
        except Exception as e:
            # 单个 Agent 对失败不影响其他 Agent 对
            await self.error_log.arecord_error(
                key,
                self.get_round_count(key),
                len(await self._pending_between(agent_a, agent_b)),
                f"Coordination error between {agent_a.name} and {agent_b.name}: {e}",
            )
            return

        if sum(attempted) > 0:
            self._increment_round_count(key)

        if self.get_round_count(key) >= self.max_rounds:
            self._exhausted.add(key)
            pending = await self._pending_between(agent_a, agent_b)
            if pending:
                await self._log_timeout(key, pending)

    async def _process_direction(self, asker: AgentFacade, answerer: AgentFacade) -> int:
        """处理 asker 向 answerer 提出的到期问题

        Returns:
            本轮尝试回答的 Comment 数
        """
        due = [
            c
            for c in await self.store.read_ledger(asker.document)
            if c.is_pending
            and c.asking_agent == asker.name
            and c.target_agent == answerer.name
            and c.round <= self.current_round
        ]
        if due:
            logger.debug(f"Round {self.current_round}: {len(due)} question(s) from {asker.name} to {answerer.name}")
            await asyncio.gather(*(self._answer_one(asker, answerer, c) for c in due))
        return len(due)

    async def _answer_one(self, asker: AgentFacade, answerer: AgentFacade, comment: Comment) -> bool:
        key = pair_key(asker.name, answerer.name)
        try:
            try:
                response = await asyncio.wait_for(answerer.answer_question(comment), timeout=self.answer_timeout)
            except asyncio.TimeoutError as e:
                raise AnswerProductionError(
                    answerer.name, comment.id, f"timed out after {self.answer_timeout}s"
                ) from e
            if not isinstance(response, str) or not response.strip():
                raise AnswerProductionError(answerer.name, comment.id, "empty answer")

            outcome = await self.store.resolve_comment(asker.document, comment.id, response)
        except Exception as e:
            await self.error_log.arecord_error(
                key,
                self.get_round_count(key),
                1,
                f"Error processing question {comment.id} from {asker.name} to {answerer.name}: {e}",
            )
            return False

        if outcome == ResolutionOutcome.RESOLVED:
            self._resolved += 1
            logger.debug(f"{answerer.name} answered {asker.name}'s question {comment.id}")
            return True
        return False

    # ==================== 收敛与超时 ====================

    async def _collect_pending(self, agents: list[AgentFacade]) -> list[Comment]:
        ledgers = await asyncio.gather(*(self.store.read_ledger(a.document) for a in agents))
        return [
            c
            for agent, ledger in zip(agents, ledgers)
            for c in ledger
            if c.is_pending and c.asking_agent == agent.name
        ]

    async def _pending_between(self, agent_a: AgentFacade, agent_b: AgentFacade) -> list[Comment]:
        pending = await self._collect_pending([agent_a, agent_b])
        return [c for c in pending if c.target_agent in (agent_a.name, agent_b.name)]

    async def _log_timeout(self, key: PairKey, pending: list[Comment]) -> None:
        self._timed_out.add(key)
        await self.error_log.arecord_timeout(key, self.get_round_count(key), pending)

    async def _surface_unresolved(self, pending: list[Comment]) -> None:
        """运行结束时，把尚未进入超时日志的 pending Comment 按 Agent 对记录"""
        by_pair: dict[PairKey, list[Comment]] = {}
        for c in pending:
            by_pair.setdefault(pair_key(c.asking_agent, c.target_agent), []).append(c)
        for key, comments in by_pair.items():
            if key not in self._timed_out:
                await self._log_timeout(key, comments)

    def __repr__(self) -> str:
        return (
            f"CoordinationManager("
            f"current_round={self.current_round}, "
            f"max_rounds={self.max_rounds}, "
            f"pairs={len(self.round_counters)})"
        )
