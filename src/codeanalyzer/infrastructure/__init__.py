"""公共基础设施层

提供 Agent 协调所需的核心组件：
- WorkingMemoryStore: 工作记忆存储，每个 Agent 一份文档，文档级写锁
- ledger_codec: Comment 台账编解码
- CoordinationErrorLog: 协调超时与错误日志
"""

from codeanalyzer.infrastructure.error_log import (
    CoordinationErrorLog,
    ErrorLogEntry,
    LogEntryKind,
    format_pair,
)
from codeanalyzer.infrastructure.ledger_codec import (
    Comment,
    CommentStatus,
    decode_ledger,
    encode_ledger,
    new_comment_id,
)
from codeanalyzer.infrastructure.working_memory import (
    DocumentHandle,
    ResolutionOutcome,
    WorkingMemoryStore,
)

__all__ = [
    # Ledger
    "Comment",
    "CommentStatus",
    "new_comment_id",
    "encode_ledger",
    "decode_ledger",
    # WorkingMemoryStore
    "DocumentHandle",
    "ResolutionOutcome",
    "WorkingMemoryStore",
    # ErrorLog
    "LogEntryKind",
    "ErrorLogEntry",
    "CoordinationErrorLog",
    "format_pair",
]
