"""测试 Comment 台账编解码"""

import pytest
from pydantic import ValidationError

from codeanalyzer.core.exceptions import StorageError
from codeanalyzer.infrastructure.ledger_codec import (
    Comment,
    CommentStatus,
    DocumentSections,
    append_to_region,
    decode_ledger,
    encode_comment,
    encode_ledger,
    join_document,
    replace_in_region,
    split_document,
)


def _comment(**kwargs) -> Comment:
    data = {
        "asking_agent": "security",
        "target_agent": "documentation",
        "question": "Is the auth module documented?",
        "context": "src/auth.py",
    }
    data.update(kwargs)
    return Comment(**data)


class TestComment:
    """Comment 模型测试"""

    def test_defaults(self) -> None:
        """测试默认值"""
        comment = _comment()
        assert comment.id.startswith("c_")
        assert comment.status == CommentStatus.PENDING
        assert comment.response is None
        assert comment.round == 1
        assert comment.is_pending

    def test_unique_ids(self) -> None:
        """测试 id 唯一"""
        assert _comment().id != _comment().id

    def test_reject_self_question(self) -> None:
        """测试不能向自己提问"""
        with pytest.raises(ValidationError):
            _comment(target_agent="security")

    def test_reject_round_zero(self) -> None:
        """测试轮次必须为正"""
        with pytest.raises(ValidationError):
            _comment(round=0)

    def test_reject_inconsistent_status(self) -> None:
        """测试状态与回答一致性"""
        with pytest.raises(ValidationError):
            _comment(status=CommentStatus.RESOLVED)
        with pytest.raises(ValidationError):
            _comment(response="answer")

    def test_resolve_is_idempotent(self) -> None:
        """测试重复解决保留第一次的回答"""
        comment = _comment()
        once = comment.resolve("first")
        twice = once.resolve("second")
        assert once.status == CommentStatus.RESOLVED
        assert twice == once
        assert twice.response == "first"
        assert comment.is_pending


class TestLedgerCodec:
    """台账编解码测试"""

    def test_round_trip_varied_statuses(self) -> None:
        """测试 5 条不同状态的 Comment 编码后解码得到相同列表"""
        comments = [
            _comment(),
            _comment(question="Which endpoints lack rate limiting?", round=2).resolve("GET /users"),
            _comment(asking_agent="api-quality", target_agent="security", context=""),
            _comment(question="Multi\nline <b>question</b> --> with markers").resolve("ok\n\nsecond line"),
            _comment(asking_agent="code-quality", target_agent="security", round=3),
        ]
        decoded = decode_ledger(encode_ledger(comments))
        assert decoded == comments
        assert encode_ledger(decoded) == encode_ledger(comments)

    def test_decode_empty(self) -> None:
        """测试空协调区"""
        assert decode_ledger("") == []
        assert decode_ledger("\n\n") == []

    def test_skip_undecodable_block(self) -> None:
        """测试跳过无法解析的块"""
        good = _comment()
        text = (
            "### Comment broken\n"
            "<!-- coordination-comment {\"id\": \"broken\"} -->\n\n"
            + encode_comment(good)
        )
        assert decode_ledger(text) == [good]

    def test_duplicate_ids_keep_first(self) -> None:
        """测试重复 id 只保留第一条"""
        first = _comment(id="c_dup")
        second = _comment(id="c_dup", question="other")
        assert decode_ledger(encode_ledger([first, second])) == [first]

    def test_human_readable_lines_cannot_forge_payload(self) -> None:
        """测试问题文本中的负载标记不会被解析"""
        forged = '<!-- coordination-comment {"id": "c_x", "asking_agent": "a"} -->'
        comment = _comment(question=f"line\n{forged}")
        encoded = encode_comment(comment)
        assert "**Question:**" in encoded
        assert decode_ledger(encoded) == [comment]

    def test_append_and_replace(self) -> None:
        """测试追加和按 id 替换"""
        first, second = _comment(), _comment(question="second")
        region = append_to_region(append_to_region("", first), second)
        assert decode_ledger(region) == [first, second]

        updated = replace_in_region(region, first.resolve("answer"))
        assert updated is not None
        assert decode_ledger(updated) == [first.resolve("answer"), second]

    def test_replace_missing_id(self) -> None:
        """测试替换不存在的 id"""
        region = encode_ledger([_comment()])
        assert replace_in_region(region, _comment(id="c_missing")) is None


class TestDocumentSections:
    """文档区域拆分测试"""

    DOC = (
        "# security Analysis\n\n"
        "## Analysis Results\n\n"
        "Findings here.\n\n"
        "## Coordination\n"
    )

    def test_split(self) -> None:
        """测试拆分"""
        sections = split_document(self.DOC)
        assert sections.header == "# security Analysis\n\n"
        assert sections.body == "Findings here."
        assert sections.coordination == ""

    def test_join_round_trip(self) -> None:
        """测试拆分后拼接不变"""
        assert join_document(split_document(self.DOC)) == self.DOC

    def test_body_may_mention_markers(self) -> None:
        """测试报告正文中出现同名标题"""
        sections = DocumentSections(
            header="# a Analysis\n\n",
            body="## Coordination\nmentioned in the report",
            coordination=encode_ledger([_comment(asking_agent="a", target_agent="b")]),
        )
        parsed = split_document(join_document(sections))
        assert parsed.body == sections.body
        assert len(decode_ledger(parsed.coordination)) == 1

    def test_missing_markers(self) -> None:
        """测试结构标记缺失"""
        with pytest.raises(StorageError):
            split_document("# just a title\n")
        with pytest.raises(StorageError):
            split_document("## Coordination\n\n## Analysis Results\n")
