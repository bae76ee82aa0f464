"""Comment 台账编解码

工作记忆文档是 Markdown 文件，包含两个区域：

- ``## Analysis Results``：Agent 自己维护的报告正文
- ``## Coordination``：只追加的 Comment 台账

每条 Comment 编码为一个块，JSON 负载是唯一权威数据，其余行仅供人阅读::

    ### Comment c_0123456789ab
    <!-- coordination-comment {"id": "c_0123456789ab", ...} -->
    - **From:** security → **To:** documentation (round 1, pending)
    - **Question:** ...
    - **Context:** ...
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from enum import Enum

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from codeanalyzer.core.exceptions import StorageError

RESULTS_MARKER = "## Analysis Results"
COORDINATION_MARKER = "## Coordination"

_RESULTS_RE = re.compile(rf"^{re.escape(RESULTS_MARKER)}[ \t]*$", re.MULTILINE)
_COORDINATION_RE = re.compile(rf"^{re.escape(COORDINATION_MARKER)}[ \t]*$", re.MULTILINE)
_PAYLOAD_RE = re.compile(r"^<!-- coordination-comment (\{.*\}) -->[ \t]*$", re.MULTILINE)
_BLOCK_RE = re.compile(r"^### Comment [^\n]*\n.*?(?=^### Comment |\Z)", re.MULTILINE | re.DOTALL)


class CommentStatus(str, Enum):
    """Comment 状态"""

    PENDING = "pending"
    """等待目标 Agent 回答"""

    RESOLVED = "resolved"
    """已记录回答（终态）"""


def new_comment_id() -> str:
    """生成 Comment 唯一标识"""
    return f"c_{uuid.uuid4().hex[:12]}"


class Comment(BaseModel):
    """Agent 之间的一条定向提问

    只保存在提问方的工作记忆文档中，回答写回同一条记录。
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=new_comment_id,
        pattern=r"^[A-Za-z0-9_.:-]+$",
        description="Comment 唯一标识",
    )
    asking_agent: str = Field(min_length=1, description="提问方 Agent")
    target_agent: str = Field(min_length=1, description="被提问方 Agent")
    question: str = Field(description="问题内容")
    context: str = Field(default="", description="提问背景（仓库/分析中的哪一部分）")
    round: int = Field(default=1, ge=1, description="提出问题的协调轮次")
    status: CommentStatus = Field(default=CommentStatus.PENDING, description="状态")
    response: str | None = Field(default=None, description="回答（pending 时为空）")

    @model_validator(mode="after")
    def _check_consistency(self) -> Comment:
        if self.asking_agent == self.target_agent:
            raise ValueError(f"Agent '{self.asking_agent}' cannot ask itself a question")
        if self.status == CommentStatus.RESOLVED and self.response is None:
            raise ValueError("A resolved comment must carry a response")
        if self.status == CommentStatus.PENDING and self.response is not None:
            raise ValueError("A pending comment cannot carry a response")
        return self

    @property
    def is_pending(self) -> bool:
        return self.status == CommentStatus.PENDING

    def resolve(self, response: str) -> Comment:
        """返回已解决的副本

        已解决的 Comment 原样返回，保留第一次的回答。
        """
        if self.status == CommentStatus.RESOLVED:
            return self
        return self.model_copy(update={"status": CommentStatus.RESOLVED, "response": response})


@dataclass
class DocumentSections:
    """工作记忆文档的三个部分"""

    header: str
    """标题与元数据（结构标记之前的全部内容）"""

    body: str
    """报告正文"""

    coordination: str
    """协调区原始文本"""


# ==================== 文档区域 ====================


def split_document(text: str) -> DocumentSections:
    """按结构标记拆分文档

    协调区标记取最后一次出现的位置，报告正文中即使出现同名标题也不会误判。

    Raises:
        StorageError: 结构标记缺失或顺序错误
    """
    coordination_matches = list(_COORDINATION_RE.finditer(text))
    results_match = _RESULTS_RE.search(text)
    if results_match is None or not coordination_matches:
        raise StorageError(
            f"Invalid working memory document: missing sections "
            f"(results={results_match is not None}, coordination={bool(coordination_matches)})"
        )
    coordination_match = coordination_matches[-1]
    if coordination_match.start() < results_match.end():
        raise StorageError("Invalid working memory document: coordination section precedes results section")

    return DocumentSections(
        header=text[: results_match.start()],
        body=text[results_match.end() : coordination_match.start()].strip("\n"),
        coordination=text[coordination_match.end() :].strip("\n"),
    )


def join_document(sections: DocumentSections) -> str:
    """将三个部分重新拼成文档文本"""
    parts = [sections.header, RESULTS_MARKER, "\n\n"]
    if sections.body:
        parts.extend([sections.body, "\n\n"])
    parts.extend([COORDINATION_MARKER, "\n"])
    if sections.coordination:
        parts.extend(["\n", sections.coordination, "\n"])
    return "".join(parts)


# ==================== Comment 编解码 ====================


def _inline(text: str) -> str:
    # 人类可读行：单行且不能伪造负载标记
    return " ".join(text.split()).replace("<", "&lt;")


def encode_comment(comment: Comment) -> str:
    """将单条 Comment 编码为 Markdown 块"""
    payload = comment.model_dump_json().replace("<", "\\u003c").replace(">", "\\u003e")
    lines = [
        f"### Comment {comment.id}",
        f"<!-- coordination-comment {payload} -->",
        f"- **From:** {_inline(comment.asking_agent)} → **To:** {_inline(comment.target_agent)} "
        f"(round {comment.round}, {comment.status.value})",
        f"- **Question:** {_inline(comment.question)}",
    ]
    if comment.context:
        lines.append(f"- **Context:** {_inline(comment.context)}")
    if comment.response is not None:
        lines.append(f"- **Response:** {_inline(comment.response)}")
    return "\n".join(lines) + "\n"


def encode_ledger(comments: list[Comment]) -> str:
    """将 Comment 列表编码为协调区文本"""
    return "\n".join(encode_comment(c) for c in comments)


def _decode_payload(raw: str) -> Comment | None:
    try:
        return Comment.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Skipping undecodable coordination comment: {e.error_count()} validation error(s)")
        return None


def decode_ledger(text: str) -> list[Comment]:
    """解析协调区文本

    空文本返回空列表；无法解析的块记录警告后跳过；重复 id 只保留第一条。
    """
    comments: list[Comment] = []
    seen: set[str] = set()
    for match in _PAYLOAD_RE.finditer(text or ""):
        comment = _decode_payload(match.group(1))
        if comment is None:
            continue
        if comment.id in seen:
            logger.warning(f"Duplicate coordination comment id {comment.id}, keeping the first occurrence")
            continue
        seen.add(comment.id)
        comments.append(comment)
    return comments


def append_to_region(region: str, comment: Comment) -> str:
    """向协调区追加一条 Comment，保留已有文本原样"""
    block = encode_comment(comment)
    if not region.strip():
        return block
    return region.rstrip("\n") + "\n\n" + block


def replace_in_region(region: str, comment: Comment) -> str | None:
    """用新版本替换协调区中 id 相同的块

    Returns:
        替换后的文本；找不到该 id 时返回 None
    """
    for block in _BLOCK_RE.finditer(region):
        payload = _PAYLOAD_RE.search(block.group(0))
        if payload is None:
            continue
        existing = _decode_payload(payload.group(1))
        if existing is None or existing.id != comment.id:
            continue
        replacement = encode_comment(comment)
        if block.group(0).endswith("\n\n"):
            replacement += "\n"
        return region[: block.start()] + replacement + region[block.end() :]
    return None
