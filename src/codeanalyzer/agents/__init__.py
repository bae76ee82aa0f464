"""Agent 层

- AgentFacade: 协调核心依赖的能力协议
- BaseAgent: 工作记忆相关的公共实现
- AnalysisAgent: 由回答生成器驱动的具体 Agent
"""

from codeanalyzer.agents.analysis import AnalysisAgent, AnswerProducer
from codeanalyzer.agents.base import AgentFacade, BaseAgent

__all__ = [
    "AgentFacade",
    "BaseAgent",
    "AnalysisAgent",
    "AnswerProducer",
]
