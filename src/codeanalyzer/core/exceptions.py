"""Code Analyzer 自定义异常类"""


class CodeAnalyzerError(Exception):
    """Code Analyzer 基础异常类"""

    pass


class ConfigurationError(CodeAnalyzerError):
    """配置错误"""

    pass


class StorageError(CodeAnalyzerError):
    """工作记忆文档存储错误

    文档不可读、不可写或结构标记（报告区 / 协调区边界）缺失时抛出。
    """

    pass


class DocumentNotFoundError(StorageError):
    """工作记忆文档不存在"""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Working memory document for agent '{agent_id}' does not exist")


class AnswerProductionError(CodeAnalyzerError):
    """回答生成失败

    外部回答生成器抛出异常、超时或返回空文本时抛出，对应的 Comment 保持 pending。
    """

    def __init__(self, agent_name: str, comment_id: str, reason: str):
        self.agent_name = agent_name
        self.comment_id = comment_id
        self.reason = reason
        super().__init__(f"Agent '{agent_name}' failed to answer comment {comment_id}: {reason}")


class ResolutionMismatchWarning(UserWarning):
    """resolve_comment 指定的 id 不在台账中

    非致命，提示文档可能被改写或 id 格式错误。
    """

    pass


class AgentNotInitializedError(CodeAnalyzerError):
    """Agent 尚未绑定工作记忆文档"""

    def __init__(self, agent_name: str):
        self.agent_name = agent_name
        super().__init__(f"Agent '{agent_name}' not initialized. Call attach() first.")
