"""Code Analyzer 核心层

提供全局配置和异常定义。
"""

from .config import CodeAnalyzerSettings, get_settings
from .exceptions import (
    AgentNotInitializedError,
    AnswerProductionError,
    CodeAnalyzerError,
    ConfigurationError,
    DocumentNotFoundError,
    ResolutionMismatchWarning,
    StorageError,
)

__all__ = [
    # Config
    "CodeAnalyzerSettings",
    "get_settings",
    # Exceptions
    "CodeAnalyzerError",
    "ConfigurationError",
    "StorageError",
    "DocumentNotFoundError",
    "AnswerProductionError",
    "AgentNotInitializedError",
    "ResolutionMismatchWarning",
]
