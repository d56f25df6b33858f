"""
End-to-end tests for the workflow engine: phase progression, deferred
history commit, gathering recovery and the ongoing-phase commands.
"""

import re

import pytest

from conftest import (
    ANSWER,
    CLARIFYING_QUESTION,
    FakeLLM,
    FakeSearch,
    make_paper,
    overlapping_results,
    plan_keywords,
    scripted_reply,
)

TOPIC = "graph neural networks for traffic forecasting"


def _listing_entries(reply: str) -> int:
    return len(re.findall(r"^\*\*\d+\. ", reply, re.MULTILINE))


class TestPhaseHelpers:
    """Test fact extraction and command matching."""

    def test_extract_level_and_purpose(self):
        from agent.phases import extract_facts
        from agent.state import Workspace

        facts = extract_facts("I'm a PhD student writing my dissertation", Workspace(topic="traffic"))

        assert facts["academic_level"] == "PhD student"
        assert facts["purpose"] == "thesis"
        assert facts["focus_area"] == "I'm a PhD student writing my dissertation"

    def test_existing_facts_not_overwritten(self):
        from agent.phases import extract_facts
        from agent.state import Workspace

        ws = Workspace(topic="traffic", clarifications={"purpose": "class assignment"})
        assert "purpose" not in extract_facts("it is for my thesis", ws)

    def test_focus_needs_topic_and_length(self):
        from agent.phases import extract_facts
        from agent.state import Workspace

        long_message = "I care mostly about short horizon urban congestion prediction"
        assert "focus_area" not in extract_facts(long_message, Workspace())
        assert "focus_area" not in extract_facts("urban congestion", Workspace(topic="traffic"))
        assert "focus_area" not in extract_facts(TOPIC, Workspace(topic=TOPIC))

    def test_graduate_levels(self):
        from agent.phases import extract_facts
        from agent.state import Workspace

        assert extract_facts("I am an undergraduate", Workspace())["academic_level"] == "undergraduate"
        assert extract_facts("graduate student here", Workspace())["academic_level"] == "graduate student"

    def test_command_matching_first_wins(self):
        from agent.phases import match_command

        assert match_command("Can you show progress and find more papers?") == "progress"
        assert match_command("List papers please") == "papers"
        assert match_command("please find more") == "more_sources"
        assert match_command("what is a good paper?") is None


class TestResearchScenario:
    """Walk one workspace from topic to ongoing Q&A."""

    @pytest.mark.asyncio
    async def test_full_workflow(self, engine, fake_llm, fake_search, store):
        from agent.phases import MORE_SOURCES_REPLY, PLAN_REQUEST_LABEL, PLAN_SENTINEL
        from agent.state import Phase

        # Topic
        first = await engine.handle_turn(None, TOPIC)
        wid = first.workspace_id
        assert first.phase == Phase.CLARIFICATION
        assert first.message == CLARIFYING_QUESTION
        assert first.source_count == 0
        assert store.load(wid).topic == TOPIC

        # Clarifications
        second = await engine.handle_turn(wid, "I want to build a model that predicts congestion for my thesis")
        assert second.phase == Phase.CLARIFICATION
        clarifications = store.load(wid).clarifications
        assert clarifications["purpose"] == "thesis"
        assert clarifications["focus_area"].startswith("I want to build")

        # Free text mentioning a plan does not start planning
        third = await engine.handle_turn(wid, "I think I need a plan for this")
        assert third.phase == Phase.CLARIFICATION

        asked = fake_llm.calls_with_system("You are a research scoping assistant")[-1][0].content
        assert f'"{CLARIFYING_QUESTION}"' in asked

        # Plan + synchronous gathering
        planned = await engine.handle_turn(wid, PLAN_SENTINEL)
        assert planned.phase == Phase.ONGOING
        assert planned.message.startswith("📋 **Research Plan**")
        assert planned.source_count == 5

        ws = store.load(wid)
        assert len(ws.plan.subtopics) >= 5
        assert len(ws.plan.keywords) >= 8
        assert ws.research_goals.startswith(f"Topic: {TOPIC}")
        assert [p.id for p in ws.sources] == [make_paper(n).id for n in (1, 2, 3, 4, 5)]
        assert set(ws.paper_insights) == ws.source_ids()
        assert fake_search.queries == plan_keywords()[:4]

        # Listing
        listing = await engine.handle_turn(wid, "show sources")
        assert _listing_entries(listing.message) == listing.source_count == 5

        # More sources returns at once; the gather runs in the background
        more = await engine.handle_turn(wid, "add more sources")
        assert more.message == MORE_SOURCES_REPLY
        assert more.message != listing.message
        await engine.wait_for_background()

        ws = store.load(wid)
        assert ws.phase == Phase.ONGOING
        assert len(ws.sources) == len(ws.source_ids()) == 5
        assert len(fake_llm.calls_with_system("Return only valid JSON")) == 5

        # History holds every exchange in order, sentinel shown by label
        history = engine.get_workspace(wid).chat_history
        assert len(history) == 12
        assert [m.content for m in history if m.role == "user"] == [
            TOPIC,
            "I want to build a model that predicts congestion for my thesis",
            "I think I need a plan for this",
            PLAN_REQUEST_LABEL,
            "show sources",
            "add more sources",
        ]
        assert [m.role for m in history] == ["user", "assistant"] * 6

    @pytest.mark.asyncio
    async def test_history_commits_on_next_turn(self, engine, store):
        first = await engine.handle_turn(None, TOPIC)
        wid = first.workspace_id

        ws = store.load(wid)
        assert ws.chat_history == []
        assert (ws.pending_user_msg, ws.pending_assistant_msg) == (TOPIC, CLARIFYING_QUESTION)

        await engine.handle_turn(wid, "mostly highways")
        ws = store.load(wid)
        assert [m.content for m in ws.chat_history] == [TOPIC, CLARIFYING_QUESTION]
        assert ws.pending_user_msg == "mostly highways"

    @pytest.mark.asyncio
    async def test_qa_uses_recent_history_and_papers(self, engine, fake_llm, store):
        from agent.state import ChatMessage, PaperInsight, Phase, Workspace

        history = []
        for i in range(8):
            history += [ChatMessage("user", f"q{i}"), ChatMessage("assistant", f"a{i}")]
        store.save(Workspace(
            workspace_id="w1",
            topic=TOPIC,
            phase=Phase.ONGOING,
            sources=[make_paper(1)],
            paper_insights={make_paper(1).id: PaperInsight(make_paper(1).id, relevance_summary="relevant")},
            chat_history=history,
        ))

        result = await engine.handle_turn("w1", "Which baseline should I beat?")

        assert result.message == ANSWER
        call = fake_llm.calls[-1]
        assert call[0].role == "system"
        assert '"Paper 1"' in call[0].content
        assert "Relevance: relevant" in call[0].content
        assert [m.content for m in call[1:-1]] == [m.content for m in history[-10:]]
        assert call[-1].content == "Which baseline should I beat?"


class TestClarificationEdges:
    """Test the plan sentinel and failure handling in clarification."""

    @pytest.mark.asyncio
    async def test_sentinel_before_topic(self, engine, store):
        from agent.phases import NO_TOPIC_REPLY, PLAN_REQUEST_LABEL, PLAN_SENTINEL
        from agent.state import Phase

        result = await engine.handle_turn(None, PLAN_SENTINEL)

        assert result.message == NO_TOPIC_REPLY
        assert result.phase == Phase.CLARIFICATION
        ws = store.load(result.workspace_id)
        assert ws.topic == ""
        assert ws.pending_user_msg == PLAN_REQUEST_LABEL

    @pytest.mark.asyncio
    async def test_handler_failure_still_flushes(self, store, index, fake_search, config):
        from agent.engine import WorkflowEngine
        from agent.state import Phase

        def broken(messages):
            raise RuntimeError("model exploded")

        engine = WorkflowEngine(store, index, FakeLLM(broken), fake_search, config)
        result = await engine.handle_turn(None, "I'm a PhD student studying traffic forecasting with graphs")

        assert result.message.startswith("Something went wrong: model exploded")
        assert result.phase == Phase.CLARIFICATION

        ws = store.load(result.workspace_id)
        assert ws.topic == "I'm a PhD student studying traffic forecasting with graphs"
        assert ws.clarifications["academic_level"] == "PhD student"
        assert ws.pending_assistant_msg == result.message
        assert index.list_ids() == [result.workspace_id]

    @pytest.mark.asyncio
    async def test_blank_reply_keeps_exchange_in_history(self, store, index, fake_search, config):
        from agent.engine import EMPTY_REPLY, WorkflowEngine

        replies = iter(["[[thinking]]", "Which horizon?", "Which region?"])
        engine = WorkflowEngine(store, index, FakeLLM(lambda messages: next(replies)), fake_search, config)

        first = await engine.handle_turn(None, TOPIC)
        wid = first.workspace_id
        assert first.message == EMPTY_REPLY

        await engine.handle_turn(wid, "mostly highways")
        await engine.handle_turn(wid, "short horizons")

        history = [(m.role, m.content) for m in engine.get_workspace(wid).chat_history]
        assert history == [
            ("user", TOPIC),
            ("assistant", EMPTY_REPLY),
            ("user", "mostly highways"),
            ("assistant", "Which horizon?"),
            ("user", "short horizons"),
            ("assistant", "Which region?"),
        ]

    @pytest.mark.asyncio
    async def test_blank_answer_in_ongoing(self, store, index, fake_search, config):
        from agent.engine import EMPTY_REPLY, WorkflowEngine
        from agent.state import Phase, Workspace

        store.save(Workspace(workspace_id="w1", topic=TOPIC, phase=Phase.ONGOING))
        engine = WorkflowEngine(store, index, FakeLLM(lambda messages: "   "), fake_search, config)

        result = await engine.handle_turn("w1", "What should I read first?")

        assert result.message == EMPTY_REPLY
        ws = store.load("w1")
        assert (ws.pending_user_msg, ws.pending_assistant_msg) == ("What should I read first?", EMPTY_REPLY)
        assert ws.has_pending()

    @pytest.mark.asyncio
    async def test_invalid_turns_touch_nothing(self, engine, store):
        from agent.errors import InvalidTurnError

        with pytest.raises(InvalidTurnError):
            await engine.handle_turn(None, "   ")
        with pytest.raises(InvalidTurnError):
            await engine.handle_turn(None, None)
        with pytest.raises(InvalidTurnError):
            await engine.handle_turn("../../etc", "hello")

        assert store.list_ids() == []

    @pytest.mark.asyncio
    async def test_interrupted_planning_reuses_plan(self, engine, fake_llm, store):
        from agent.state import Phase, ResearchPlan, Workspace

        store.save(Workspace(
            workspace_id="w1",
            topic=TOPIC,
            phase=Phase.PLANNING,
            plan=ResearchPlan(subtopics=["s"], keywords=plan_keywords(), outline=["o"]),
        ))

        result = await engine.handle_turn("w1", "hello?")

        assert result.phase == Phase.ONGOING
        assert result.source_count == 5
        assert fake_llm.calls_with_system("You are a research planning expert") == []


class TestGatheringRecovery:
    """Test turns that arrive while a workspace is gathering."""

    def _stuck(self, store, phase, insights=()):
        from agent.state import PaperInsight, ResearchPlan, Workspace

        store.save(Workspace(
            workspace_id="w1",
            topic=TOPIC,
            phase=phase,
            plan=ResearchPlan(subtopics=["s"], keywords=plan_keywords(), outline=["o"]),
            sources=[make_paper(1), make_paper(2)],
            paper_insights={pid: PaperInsight(pid) for pid in insights},
        ))

    @pytest.mark.asyncio
    async def test_complete_analyses_recover_to_ongoing(self, engine, store):
        from agent.state import Phase

        self._stuck(store, Phase.SUMMARIZING, insights=[make_paper(1).id, make_paper(2).id])

        result = await engine.handle_turn("w1", "show progress")

        assert result.phase == Phase.ONGOING
        assert "📊 **Research Progress**" in result.message
        assert "**Phase:** ongoing" in result.message
        assert not engine.is_gathering("w1")

    @pytest.mark.asyncio
    async def test_incomplete_gather_resumes_once(self, engine, fake_search, store):
        from agent.state import Phase

        self._stuck(store, Phase.GATHERING, insights=[make_paper(1).id])

        first = await engine.handle_turn("w1", "hello")
        second = await engine.handle_turn("w1", "are you done?")

        assert first.message.startswith("⏳ Still gathering papers (2 found so far)")
        assert second.phase == Phase.GATHERING
        assert engine.is_gathering("w1")

        await engine.wait_for_background()

        ws = store.load("w1")
        assert ws.phase == Phase.ONGOING
        assert [p.id for p in ws.sources] == [make_paper(n).id for n in (1, 2, 3, 4, 5)]
        assert set(ws.paper_insights) == ws.source_ids()
        assert ws.pending_user_msg == "are you done?"
        assert fake_search.queries == plan_keywords()[:4]


class FlakyAnalyzer:
    """Analyzer that dies after `fail_after` papers."""

    def __init__(self, fail_after: int):
        self.fail_after = fail_after
        self.calls = 0

    async def analyze(self, paper, context):
        from agent.state import PaperInsight

        self.calls += 1
        if self.calls > self.fail_after:
            raise RuntimeError("worker killed")
        return PaperInsight(paper_id=paper.id, key_findings="first pass")


class TestSourceGatherer:
    """Test gathering directly against the store."""

    def _planned(self, store):
        from agent.state import Phase, ResearchPlan, Workspace

        store.save(Workspace(
            workspace_id="w1",
            topic=TOPIC,
            phase=Phase.GATHERING,
            plan=ResearchPlan(subtopics=["s"], keywords=plan_keywords(), outline=["o"]),
        ))

    @pytest.mark.asyncio
    async def test_interrupted_run_is_resumable(self, store, fake_search, fake_llm, config):
        from agent.analyzer import PaperAnalyzer
        from agent.draft import LockedWriter
        from agent.gathering import SourceGatherer
        from agent.state import Phase

        self._planned(store)

        with pytest.raises(RuntimeError):
            await SourceGatherer(fake_search, FlakyAnalyzer(2), config).run(LockedWriter(store, "w1"))

        ws = store.load("w1")
        assert ws.phase == Phase.SUMMARIZING
        assert len(ws.sources) == 5
        assert len(ws.paper_insights) == 2

        gatherer = SourceGatherer(fake_search, PaperAnalyzer(fake_llm), config)
        final = await gatherer.run(LockedWriter(store, "w1"))

        assert final.phase == Phase.ONGOING
        assert len(final.sources) == len(final.source_ids()) == 5
        assert set(final.paper_insights) == final.source_ids()
        assert final.paper_insights[make_paper(1).id].key_findings == "first pass"
        assert len(fake_llm.calls) == 3

    @pytest.mark.asyncio
    async def test_analysis_limit(self, store, fake_llm, config):
        from agent.analyzer import PaperAnalyzer
        from agent.draft import LockedWriter
        from agent.gathering import SourceGatherer

        self._planned(store)
        search = FakeSearch(default=[make_paper(n) for n in range(20)])
        config.results_per_keyword = 5
        config.max_analyses = 3

        ws = await SourceGatherer(search, PaperAnalyzer(fake_llm), config).run(LockedWriter(store, "w1"))

        assert len(ws.sources) == 5
        assert len(ws.paper_insights) == 3
        assert list(ws.paper_insights) == [make_paper(n).id for n in range(3)]

    @pytest.mark.asyncio
    async def test_failing_keyword_skipped(self, store, fake_llm, config):
        from agent.analyzer import PaperAnalyzer
        from agent.gathering import SourceGatherer

        k = plan_keywords()
        search = FakeSearch(results=overlapping_results(), failing=(k[0],))
        papers = await SourceGatherer(search, PaperAnalyzer(fake_llm), config).find_papers(k)

        assert [p.id for p in papers] == [make_paper(n).id for n in (2, 4, 1, 5)]
        assert search.queries == k[:4]

    @pytest.mark.asyncio
    async def test_no_plan(self, store, fake_search, fake_llm, config):
        from agent.analyzer import PaperAnalyzer
        from agent.draft import LockedWriter
        from agent.gathering import SourceGatherer
        from agent.state import Workspace

        store.save(Workspace(workspace_id="w1", topic=TOPIC))
        gatherer = SourceGatherer(fake_search, PaperAnalyzer(fake_llm), config)

        assert await gatherer.run(LockedWriter(store, "w1")) is None
        assert fake_search.queries == []
