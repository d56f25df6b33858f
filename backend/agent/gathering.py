"""
Source Gathering and Analysis

Runs when a workspace enters `gathering`, and again whenever the user asks
for more sources:

    1. Search arXiv once per plan keyword (first few keywords only)
    2. Deduplicate by paper id, keeping first-seen order, and merge into
       the workspace's sources -> persisted immediately, phase summarizing
    3. Analyze sources that have no insight yet, persisting after each one
    4. Phase ongoing -> persisted

Each step is written durably through a StateWriter, so an interruption
keeps the sources and insights found so far. Re-running is safe: existing
sources are never duplicated and already-analyzed papers are skipped.
"""

import logging
from typing import Optional, Protocol

from agent.analyzer import PaperAnalyzer
from agent.config import WorkflowConfig
from agent.draft import StateWriter
from agent.state import (
    PaperInsight,
    Phase,
    Workspace,
    build_context_summary,
    dedupe_papers,
    merge_sources,
)
from services.arxiv import Paper

logger = logging.getLogger(__name__)


class PaperSearch(Protocol):
    async def search(self, query: str, max_results: int = 5) -> list[Paper]:
        ...


def _add_sources(papers: list[Paper]):
    def mutate(ws: Workspace) -> None:
        ws.sources = merge_sources(ws.sources, papers)
        if ws.phase == Phase.GATHERING:
            ws.advance(Phase.SUMMARIZING)
    return mutate


def _add_insight(insight: PaperInsight):
    def mutate(ws: Workspace) -> None:
        # Insights are never replaced once stored
        ws.paper_insights.setdefault(insight.paper_id, insight)
    return mutate


def _finish(ws: Workspace) -> None:
    if ws.phase in (Phase.GATHERING, Phase.SUMMARIZING):
        ws.advance(Phase.ONGOING)


class SourceGatherer:
    """Finds, deduplicates and analyzes papers for a workspace's plan."""

    def __init__(
        self,
        search: PaperSearch,
        analyzer: PaperAnalyzer,
        config: Optional[WorkflowConfig] = None,
    ):
        self.search = search
        self.analyzer = analyzer
        self.config = config or WorkflowConfig()

    async def find_papers(self, keywords: list[str]) -> list[Paper]:
        """Search each keyword and deduplicate the combined results."""
        found: list[Paper] = []
        for keyword in keywords[:self.config.max_keywords]:
            try:
                found.extend(await self.search.search(keyword, self.config.results_per_keyword))
            except Exception as e:
                logger.error(f"Search error for keyword {keyword!r}: {e}")
        logger.info(f"Fetched {len(found)} papers for {len(keywords[:self.config.max_keywords])} keywords")
        return dedupe_papers(found)

    async def run(self, writer: StateWriter) -> Optional[Workspace]:
        """
        Gather and analyze sources, persisting progress through `writer`.

        Reads the plan and sources from the writer's latest state, never
        from a snapshot taken before the run.

        Returns:
            The final persisted workspace, or None if there was nothing to do
        """
        workspace = await writer.current()
        if workspace is None or workspace.plan is None:
            logger.error("Source gathering requested but no plan found")
            return None

        logger.info(f"Gathering sources for {workspace.workspace_id} with keywords {workspace.plan.keywords[:self.config.max_keywords]}")
        papers = await self.find_papers(workspace.plan.keywords)

        workspace = await writer.apply(_add_sources(papers))
        if workspace is None:
            return None

        context = build_context_summary(workspace)
        pending = [p for p in workspace.sources if p.id not in workspace.paper_insights]
        for paper in pending[:self.config.max_analyses]:
            insight = await self.analyzer.analyze(paper, context)
            workspace = await writer.apply(_add_insight(insight))
            if workspace is None:
                return None

        workspace = await writer.apply(_finish)
        if workspace is not None:
            logger.info(
                f"Gathering complete for {workspace.workspace_id}. "
                f"Sources: {len(workspace.sources)} Insights: {len(workspace.paper_insights)}"
            )
        return workspace
