"""协调情况汇总

汇总所有工作记忆文档中的提问与回答，供最终报告引用。
"""

from __future__ import annotations

from dataclasses import dataclass, field

from codeanalyzer.infrastructure.working_memory import WorkingMemoryStore

MAX_INSIGHTS = 5


@dataclass
class CoordinationInsight:
    """一条已解决的协调问答"""

    from_agent: str
    to_agent: str
    question: str
    context: str = ""


@dataclass
class CoordinationInsights:
    """协调汇总"""

    total_questions: int = 0
    resolved_questions: int = 0
    insights: list[CoordinationInsight] = field(default_factory=list)

    @property
    def resolution_rate(self) -> int:
        """解决率（整数百分比，四舍五入）"""
        if self.total_questions == 0:
            return 0
        return (self.resolved_questions * 100 * 2 + self.total_questions) // (self.total_questions * 2)

    def to_markdown(self) -> str:
        lines = [
            "**Agent Coordination Summary:**",
            f"- Total coordination questions: {self.total_questions}",
            f"- Resolved questions: {self.resolved_questions}",
            f"- Resolution rate: {self.resolution_rate}%",
            "",
        ]
        if self.insights:
            lines.append("**Key Coordination Insights:**")
            lines.extend(
                f"- {i.from_agent} → {i.to_agent}: {i.question}" for i in self.insights[:MAX_INSIGHTS]
            )
        else:
            lines.append("**No agent coordination occurred** - Agents worked independently")
        return "\n".join(lines) + "\n"


async def summarize_coordination(
    store: WorkingMemoryStore,
    agent_names: list[str] | None = None,
) -> CoordinationInsights:
    """汇总协调情况

    Args:
        store: 工作记忆存储
        agent_names: 要汇总的 Agent（默认为目录中已有文档的全部 Agent）；
                     文档不存在的 Agent 被跳过
    """
    names = agent_names if agent_names is not None else store.discover_agents()
    result = CoordinationInsights()

    for name in names:
        path = store.document_path(name)
        if not path.exists():
            continue
        comments = await store.read_ledger(store.get_handle(name))
        result.total_questions += len(comments)
        for comment in comments:
            if comment.is_pending:
                continue
            result.resolved_questions += 1
            result.insights.append(CoordinationInsight(
                from_agent=comment.asking_agent,
                to_agent=comment.target_agent,
                question=comment.question,
                context=comment.context,
            ))

    return result
