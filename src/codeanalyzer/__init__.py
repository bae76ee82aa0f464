"""Code Analyzer - 多 Agent 仓库分析的协调层

多个分析 Agent 各自产出报告，并在定稿前通过共享的工作记忆文档互相提问。
"""

from codeanalyzer.agents import AgentFacade, AnalysisAgent, BaseAgent
from codeanalyzer.coordination import CoordinationManager, CoordinationSummary, summarize_coordination
from codeanalyzer.infrastructure import (
    Comment,
    CommentStatus,
    CoordinationErrorLog,
    WorkingMemoryStore,
)

__version__ = "0.1.0"

__all__ = [
    "AgentFacade",
    "BaseAgent",
    "AnalysisAgent",
    "Comment",
    "CommentStatus",
    "WorkingMemoryStore",
    "CoordinationErrorLog",
    "CoordinationManager",
    "CoordinationSummary",
    "summarize_coordination",
]
