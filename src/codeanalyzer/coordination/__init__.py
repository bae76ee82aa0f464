"""Agent 间协调

- CoordinationManager: 轮次驱动的问答投递与收敛检测
- summarize_coordination: 协调情况汇总
"""

from codeanalyzer.coordination.insights import (
    CoordinationInsight,
    CoordinationInsights,
    summarize_coordination,
)
from codeanalyzer.coordination.manager import (
    CoordinationManager,
    CoordinationSummary,
    format_pair,
    pair_key,
)

__all__ = [
    "CoordinationManager",
    "CoordinationSummary",
    "pair_key",
    "format_pair",
    "CoordinationInsight",
    "CoordinationInsights",
    "summarize_coordination",
]
