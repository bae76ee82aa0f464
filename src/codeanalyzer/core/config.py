"""Code Analyzer 配置管理

使用 Pydantic Settings 管理配置，支持环境变量和 .env 文件。
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CodeAnalyzerSettings(BaseSettings):
    """Code Analyzer 全局配置"""

    model_config = SettingsConfigDict(
        env_prefix="CODE_ANALYZER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 输出路径配置
    output_dir: Path = Field(
        default=Path("./output"),
        description="工作记忆文档与错误日志的输出目录",
    )
    error_log_name: str = Field(
        default="error-log.md",
        description="协调错误日志文件名（同名 .jsonl 文件保存机器可读副本）",
    )

    # 协调配置
    max_rounds: int = Field(
        default=3,
        ge=1,
        description="每个 Agent 对允许的最大协调轮数",
    )
    answer_timeout: float = Field(
        default=120.0,
        gt=0,
        description="单次 answer_question 调用的超时时间（秒）",
    )

    # 日志配置
    log_level: str = Field(
        default="INFO",
        description="CLI 日志级别",
    )

    def error_log_path(self, root: Path | None = None) -> Path:
        """错误日志完整路径，root 缺省时使用 output_dir"""
        return (self.output_dir if root is None else Path(root)) / self.error_log_name


@lru_cache
def get_settings() -> CodeAnalyzerSettings:
    """获取全局配置（缓存）"""
    return CodeAnalyzerSettings()
