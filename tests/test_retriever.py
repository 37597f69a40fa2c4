"""
Tests for the retrieval engine and prompt assembly.
"""

import pytest

from archivist.providers.errors import NetworkError, RetrievalError
from archivist.rag.context import FOLLOW_UP_MARKER, SYSTEM_PROMPT, HistoryTurn, PromptBuilder
from archivist.rag.documents import SearchMode
from archivist.rag.retriever import QueryContext, RetrievalEngine
from archivist.rag.router import QueryType


class TestQueryContext:
    """Test follow-up query expansion."""

    def test_no_history(self):
        assert QueryContext("tell me more").get_expanded_query() == "tell me more"

    def test_uses_recent_turns(self):
        context = QueryContext("and then?", ["one", "two", "three", "four"])
        assert context.get_expanded_query() == "and then? Context: two three four"


class TestRetrievalEngine:
    """Test intent-aware retrieval."""

    @pytest.mark.asyncio
    async def test_content_question(self, retrieval, index, records):
        await index.index_records(records)

        result = await retrieval.retrieve("Find the invoice")

        assert result.query_type is QueryType.CONTENT_SEARCH
        assert result.mode is SearchMode.VECTOR
        assert result.source_ids[0] == "m4"
        assert len(result.matches) <= retrieval.max_evidence
        assert result.stats is None

    @pytest.mark.asyncio
    async def test_statistics_question_carries_stats_without_evidence(
        self, retrieval, index, records
    ):
        await index.index_records(records)

        result = await retrieval.retrieve("How many messages are there?")

        assert result.query_type is QueryType.STATISTICS
        assert result.matches == []
        assert result.stats.total_documents == 5

    @pytest.mark.asyncio
    async def test_stats_from_records_when_nothing_indexed(self, retrieval, records):
        result = await retrieval.retrieve("messages from last week", records=records)

        assert result.query_type is QueryType.DATE_RANGE
        assert result.stats.total_documents == 5

    @pytest.mark.asyncio
    async def test_follow_up_expands_with_history(self, retrieval, index, records):
        await index.index_records(records)

        result = await retrieval.retrieve("tell me more", history=["the invoice from billing"])

        assert result.query_type is QueryType.FOLLOW_UP
        assert result.source_ids[0] == "m4"
        assert len(result.matches) == retrieval.breadth_for(QueryType.FOLLOW_UP)

    def test_breadth_is_capped_by_max_evidence(self, index):
        engine = RetrievalEngine(index, max_evidence=3, breadth={QueryType.SEARCH: 2})

        assert engine.breadth_for(QueryType.SEARCH) == 2
        assert engine.breadth_for(QueryType.SUMMARY) == 3
        assert engine.breadth_for(QueryType.STATISTICS) == 0
        assert engine.breadth_for(QueryType.DRAFT) == 3

    @pytest.mark.asyncio
    async def test_unexpected_failure_becomes_retrieval_error(self, retrieval, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("index corrupted")

        monkeypatch.setattr(retrieval.index, "search", broken)

        with pytest.raises(RetrievalError):
            await retrieval.retrieve("Find the invoice")

    @pytest.mark.asyncio
    async def test_engine_errors_pass_through(self, retrieval, monkeypatch):
        async def broken(*args, **kwargs):
            raise NetworkError("refused", "ollama")

        monkeypatch.setattr(retrieval.index, "search", broken)

        with pytest.raises(NetworkError):
            await retrieval.retrieve("Find the invoice")


class TestPromptBuilder:
    """Test prompt assembly."""

    @pytest.mark.asyncio
    async def test_evidence_is_numbered_in_rank_order(self, retrieval, index, records):
        await index.index_records(records)
        result = await retrieval.retrieve("Find the invoice")

        prompts = PromptBuilder().build("Find the invoice", result)

        assert prompts.system == SYSTEM_PROMPT
        assert FOLLOW_UP_MARKER in prompts.system
        assert "RELEVANT MESSAGES:" in prompts.user
        assert "[1] From: Billing <billing@vendor.com>" in prompts.user
        assert "Subject: Invoice 1042" in prompts.user
        assert prompts.user.index("[1]") < prompts.user.index("[2]")
        assert "CURRENT QUESTION: Find the invoice" in prompts.user

    @pytest.mark.asyncio
    async def test_history_is_truncated(self, retrieval):
        result = await retrieval.retrieve("quarterly planning")
        history = [HistoryTurn("user", "x" * 50), HistoryTurn("assistant", "earlier answer")]

        prompts = PromptBuilder(history_message_chars=10).build("next", result, history)

        assert "PREVIOUS CONVERSATION:" in prompts.user
        assert f"User: {'x' * 10}\n" in prompts.user
        assert "Assistant: earlier an" in prompts.user
        assert "earlier answer" not in prompts.user
        assert "RELEVANT MESSAGES:" not in prompts.user

    @pytest.mark.asyncio
    async def test_statistics_block_and_guidance(self, retrieval, index, records):
        await index.index_records(records)
        result = await retrieval.retrieve("How many messages are there?")

        prompts = PromptBuilder().build("How many messages are there?", result)

        assert "ARCHIVE STATISTICS:" in prompts.user
        assert "Total messages: 5" in prompts.user
        assert "Unique senders: 4" in prompts.user
        assert "quote exact numbers" in prompts.user
