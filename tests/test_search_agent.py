"""
Tests for the search agent.
"""

from datetime import datetime

import pytest

from archivist.agent.search_agent import (
    MAX_RESULTS,
    SearchAgent,
    SearchPattern,
    date_window_start,
    extract_agent_keywords,
    normalize_subject,
    parse_behavioral_ids,
)
from archivist.providers.errors import GenerationFailed
from archivist.rag.router import SearchStrategy
from archivist.records import ArchiveRecord

from .conftest import FakeGenerator

NOW = datetime(2024, 6, 14, 12, 0)


def record(id, subject="Subject", body="Body", sender="Alex <alex@example.com>", timestamp=None):
    return ArchiveRecord(id=id, sender=sender, subject=subject, body=body, timestamp=timestamp)


@pytest.fixture
def agent_generator():
    return FakeGenerator()


@pytest.fixture
def agent(agent_generator):
    return SearchAgent(agent_generator, clock=lambda: NOW)


class TestHelpers:
    """Test keyword, id and date helpers."""

    def test_extract_agent_keywords(self):
        assert extract_agent_keywords("Show me the budget report!") == ["budget", "report"]

    def test_parse_behavioral_ids(self):
        response = "[m1] From: Sarah\nNONE\n[ m3 ]\nno brackets here"
        assert parse_behavioral_ids(response) == {"m1", "m3"}
        assert parse_behavioral_ids("NONE") == set()

    def test_normalize_subject(self):
        assert normalize_subject("RE:  Weekly Sync") == "weekly sync"
        assert normalize_subject("Fwd: weekly sync ") == "weekly sync"

    def test_date_windows(self):
        assert date_window_start("today", NOW) == datetime(2024, 6, 14)
        assert date_window_start("yesterday", NOW) == datetime(2024, 6, 13)
        assert date_window_start("this week", NOW) == datetime(2024, 6, 10)
        assert date_window_start("last week", NOW) == datetime(2024, 6, 7, 12, 0)
        assert date_window_start("last month", NOW) == datetime(2024, 5, 14, 12, 0)
        assert date_window_start("next year", NOW) is None

    def test_last_month_clamps_day(self):
        assert date_window_start("last month", datetime(2024, 3, 31)) == datetime(2024, 2, 29)
        assert date_window_start("last month", datetime(2024, 1, 15)) == datetime(2023, 12, 15)


class TestStrategies:
    """Test each search strategy."""

    def test_criteria_sender_and_date(self, agent, records):
        assert [r.id for r in agent.criteria_search({"sender": "sarah"}, records)] == ["m1", "m3"]
        assert [r.id for r in agent.criteria_search({"date": "last week"}, records)] == [
            "m1",
            "m2",
        ]
        assert [
            r.id for r in agent.criteria_search({"sender": "Sarah", "date": "last week"}, records)
        ] == ["m1"]

    def test_criteria_topic_and_other_windows(self, agent, records):
        assert [r.id for r in agent.criteria_search({"topic": "budget"}, records)] == ["m1"]
        assert [r.id for r in agent.criteria_search({"date": "this week"}, records)] == [
            "m1",
            "m2",
        ]
        assert [r.id for r in agent.criteria_search({"date": "yesterday"}, records)] == ["m1"]
        assert [r.id for r in agent.criteria_search({"date": "last month"}, records)] == [
            "m1",
            "m2",
            "m3",
        ]

    def test_undated_records_fail_date_criteria(self, agent):
        assert agent.criteria_search({"date": "today"}, [record("x")]) == []

    @pytest.mark.asyncio
    async def test_criteria_search_end_to_end(self, agent, agent_generator, records):
        agent_generator.responses = ["Sarah discussed the Q3 budget."]

        result = await agent.search("emails from Sarah about budget", records)

        assert result.intent.strategy is SearchStrategy.CRITERIA
        assert result.result_ids == ["m1"]
        assert result.summary == "Sarah discussed the Q3 budget."
        assert result.total_matches == 1
        assert result.timestamp == NOW
        assert agent.last_search is result

    @pytest.mark.asyncio
    async def test_topic_with_question_mark(self, agent, records):
        result = await agent.search("emails from Sarah about budget?", records)

        assert result.intent.criteria == {"sender": "Sarah", "topic": "budget"}
        assert result.result_ids == ["m1"]

    @pytest.mark.asyncio
    async def test_summary_fallback(self, agent, agent_generator, records):
        agent_generator.responses = [GenerationFailed("down", "ollama")]

        result = await agent.search("emails from Sarah", records)

        assert result.summary == "Found 2 records matching your search."

    @pytest.mark.asyncio
    async def test_no_matches_summary_skips_generation(self, agent, agent_generator, records):
        result = await agent.search("emails from Zed", records)

        assert result.results == []
        assert result.summary == "No records found matching your search."
        assert agent_generator.prompts == []

    @pytest.mark.asyncio
    async def test_behavioral_search(self, agent, agent_generator, records):
        agent_generator.responses = ["[m3]\n[m1]\n[unknown]", "Two broken promises."]

        result = await agent.search("Who promised a report and didn't deliver?", records)

        assert result.intent.strategy is SearchStrategy.BEHAVIORAL
        assert result.result_ids == ["m1", "m3"]
        assert "[m4] From: Billing <billing@vendor.com> | Subject: Invoice 1042" in (
            agent_generator.prompts[0]["prompt"]
        )

    @pytest.mark.asyncio
    async def test_behavioral_search_is_best_effort(self, agent, agent_generator, records):
        agent_generator.responses = [GenerationFailed("down", "ollama")]
        assert await agent.behavioral_search("ignored requests", records) == []

        agent_generator.responses = ["NONE"]
        assert await agent.behavioral_search("ignored requests", records) == []

    @pytest.mark.asyncio
    async def test_comparative_search(self, agent, records):
        result = await agent.search("budget vs lunch", records)

        assert result.intent.strategy is SearchStrategy.COMPARATIVE
        assert result.result_ids == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_semantic_search_without_index(self, agent, records):
        result = await agent.search("invoice payment", records)

        assert result.intent.strategy is SearchStrategy.SEMANTIC
        assert result.result_ids == ["m4"]

    @pytest.mark.asyncio
    async def test_semantic_search_through_index(self, agent_generator, index, records):
        await index.index_records(records)
        agent = SearchAgent(agent_generator, index=index, clock=lambda: NOW)

        result = await agent.search("invoice payment", records)

        assert result.result_ids[0] == "m4"

    @pytest.mark.asyncio
    async def test_results_are_capped(self, agent):
        many = [record(f"r{i}", subject="budget") for i in range(MAX_RESULTS + 10)]

        result = await agent.search("budget", many)

        assert len(result.results) == MAX_RESULTS
        assert result.total_matches == MAX_RESULTS + 10


class TestPatterns:
    """Test the named pattern catalog."""

    def test_keyword_rules(self, agent, records):
        assert [r.id for r in agent.find_unkept_promises(records)] == ["m1"]
        assert [r.id for r in agent.find_ignored_requests(records)] == ["m2"]
        assert [r.id for r in agent.find_escalating_tension(records)] == ["m3"]
        assert [r.id for r in agent.find_missed_deadlines(records)] == ["m3", "m4"]

    def test_sentiment_decline_needs_two_indicators(self, agent):
        records = [
            record("a", body="I'm concerned about this problem."),
            record("b", body="Slightly frustrated."),
        ]
        assert [r.id for r in agent.find_sentiment_decline(records)] == ["a"]

    def test_recurring_topics(self, agent):
        subjects = ["Weekly sync", "RE: Weekly sync", "Fwd: weekly sync", "re: weekly sync"]
        records = [record(f"s{i}", subject=s) for i, s in enumerate(subjects + ["Weekly Sync"])]
        records += [record(f"o{i}", subject=f"Other {i}") for i in range(4)]

        matches = agent.find_recurring_topics(records)

        assert sorted(r.id for r in matches) == ["s0", "s1", "s2", "s3", "s4"]

    @pytest.mark.asyncio
    async def test_pattern_summary_fallback(self, agent, agent_generator, records):
        agent_generator.responses = [GenerationFailed("down", "ollama")]

        result = await agent.search_for_pattern(SearchPattern.UNKEPT_PROMISES, records)

        assert result.result_ids == ["m1"]
        assert result.summary == (
            "Found 1 records matching 'Promises that weren't kept'. Most recent from Sarah Chen."
        )
        assert result.query == "Promises that weren't kept"
        assert result.intent.pattern == "unkept_promises"

    @pytest.mark.asyncio
    async def test_pattern_by_name_with_generated_summary(self, agent, agent_generator, records):
        agent_generator.responses = ["Two messages mention overdue work."]

        result = await agent.search_for_pattern("missed_deadlines", records)

        assert result.result_ids == ["m3", "m4"]
        assert result.summary == "Two messages mention overdue work."

    @pytest.mark.asyncio
    async def test_empty_pattern(self, agent, records):
        result = await agent.search_for_pattern(SearchPattern.SENTIMENT_DECLINE, records)

        assert result.results == []
        assert result.summary == (
            "No records found matching the pattern: Conversations that turned negative"
        )

    @pytest.mark.asyncio
    async def test_unknown_pattern(self, agent, records):
        with pytest.raises(ValueError):
            await agent.search_for_pattern("not_a_pattern", records)
