"""Tests for the message sanitizer."""

from __future__ import annotations

from crmpilot.lm.sanitizer import sanitize, summarize_invocation
from crmpilot.schemas.messages import ConversationMessage, MessageRole, ToolInvocationRecord


class TestSanitize:
    def test_plain_messages_pass_through(self) -> None:
        history = [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
        ]
        result = sanitize(history)
        assert result == [
            ConversationMessage(role=MessageRole.USER, content="Hi"),
            ConversationMessage(role=MessageRole.ASSISTANT, content="Hello!"),
        ]

    def test_none_and_empty_history(self) -> None:
        assert sanitize(None) == []
        assert sanitize([]) == []

    def test_unknown_roles_and_empty_entries_dropped(self) -> None:
        history = [
            {"role": "tool", "content": "raw"},
            {"role": "user", "content": "   "},
            None,
            {"content": "no role"},
            {"role": "user", "content": "kept"},
        ]
        result = sanitize(history)
        assert [m.content for m in result] == ["kept"]

    def test_multipart_content_keeps_text_only(self) -> None:
        history = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "first"},
                    {"type": "image", "url": "http://x"},
                    {"type": "text", "text": "second"},
                ],
            }
        ]
        assert sanitize(history)[0].content == "first\nsecond"

    def test_parts_used_when_content_missing(self) -> None:
        history = [{"role": "assistant", "parts": [{"type": "text", "text": "from parts"}]}]
        assert sanitize(history)[0].content == "from parts"

    def test_terminal_invocations_summarized(self) -> None:
        history = [
            {
                "role": "assistant",
                "content": "Here you go.",
                "toolInvocations": [
                    {
                        "toolName": "searchDeals",
                        "state": "result",
                        "result": {"deals": [{"id": "1"}, {"id": "2"}]},
                    },
                    {"toolName": "moveDeal", "state": "pending-approval", "result": None},
                ],
            }
        ]
        assert sanitize(history)[0].content == "Here you go.\n\n2 deals found."

    def test_invocation_only_entry_is_kept(self) -> None:
        history = [
            {
                "role": "assistant",
                "content": "",
                "tool_invocations": [
                    {
                        "tool_name": "moveDeal",
                        "state": "succeeded",
                        "result": {"message": 'Deal "Acme" moved to Proposal.'},
                    }
                ],
            }
        ]
        assert sanitize(history)[0].content == 'Deal "Acme" moved to Proposal.'

    def test_accepts_model_instances(self) -> None:
        history = [ConversationMessage(role=MessageRole.SYSTEM, content="note")]
        assert sanitize(history) == history

    def test_is_idempotent(self) -> None:
        history = [{"role": "user", "content": " hi "}]
        once = sanitize(history)
        assert sanitize(once) == once


class TestSummarizeInvocation:
    def test_failure(self) -> None:
        line = summarize_invocation(
            {"toolName": "getDealDetails", "result": {"success": False, "error": "Deal not found."}}
        )
        assert line == "[getDealDetails] failed: Deal not found."

    def test_nested_data_message(self) -> None:
        line = summarize_invocation(
            {"tool_name": "createDeal", "result": {"success": True, "data": {"message": "Created."}}}
        )
        assert line == "Created."

    def test_win_rate(self) -> None:
        line = summarize_invocation(
            {"tool_name": "analyzePipeline", "result": {"metrics": {"winRate": 50}}}
        )
        assert line == "Win Rate: 50%"

    def test_fallback(self) -> None:
        assert summarize_invocation({"tool_name": "x", "result": {"foo": 1}}) == "Tool x completed"

    def test_failed_state_without_result(self) -> None:
        record = ToolInvocationRecord(
            tool_name="moveDeal", state="failed", error="Stage 'Nowhere' not found."
        )
        assert summarize_invocation(record) == "[moveDeal] failed: Stage 'Nowhere' not found."

    def test_failed_state_without_error_text(self) -> None:
        line = summarize_invocation({"toolName": "moveDeal", "state": "output-error"})
        assert line == "[moveDeal] failed: unknown error"

    def test_failed_record_in_history_is_not_reported_as_completed(self) -> None:
        history = [
            ConversationMessage(
                role=MessageRole.ASSISTANT,
                content="",
                tool_invocations=(
                    ToolInvocationRecord(
                        tool_name="markDealAsWon", state="failed", error="Deal not found."
                    ),
                ),
            )
        ]
        assert sanitize(history)[0].content == "[markDealAsWon] failed: Deal not found."
