"""
Paper Analyzer

One model call per paper, turning title + abstract + research context into
a PaperInsight. Any failure yields an insight with empty fields so every
analyzed source still has an entry.
"""

import logging

from agent.llm import TextModel, as_text
from agent.processors import JSON_STRATEGIES, parse_json_object
from agent.state import ChatMessage, PaperInsight
from services.arxiv import Paper

logger = logging.getLogger(__name__)


ANALYSIS_SYSTEM_PROMPT = "Return only valid JSON, no explanation."

ANALYSIS_SCHEMA = (
    '{"relevanceSummary":"why relevant (1-2 sentences)",'
    '"keyFindings":"main contribution (1-2 sentences)",'
    '"researchImpact":"how to use this (1-2 sentences)"}'
)

# A single bracket-matching pass is enough for these short objects
_ANALYSIS_STRATEGIES = [s for s in JSON_STRATEGIES if s[0] == "bracketed"]


def _field(parsed: dict, key: str) -> str:
    value = parsed.get(key)
    return str(value).strip() if value else ""


class PaperAnalyzer:
    """Produces structured insights for individual papers."""

    def __init__(self, llm: TextModel, abstract_chars: int = 600, max_tokens: int = 512):
        self.llm = llm
        self.abstract_chars = abstract_chars
        self.max_tokens = max_tokens

    def _prompt(self, paper: Paper, context: str) -> str:
        return (
            f"Researcher context: {context}\n\n"
            f"Analyze:\nTitle: {paper.title}\n"
            f"Abstract: {paper.abstract[:self.abstract_chars]}\n\n"
            f"Return ONLY valid JSON:\n{ANALYSIS_SCHEMA}"
        )

    async def analyze(self, paper: Paper, context: str) -> PaperInsight:
        """
        Analyze one paper against the research context.

        Args:
            paper: The paper to analyze
            context: One-line research context summary

        Returns:
            PaperInsight; fields are empty if the analysis failed
        """
        try:
            raw = as_text(await self.llm.complete(
                [
                    ChatMessage(role="system", content=ANALYSIS_SYSTEM_PROMPT),
                    ChatMessage(role="user", content=self._prompt(paper, context)),
                ],
                max_tokens=self.max_tokens,
            ))
        except Exception as e:
            logger.error(f"Paper analysis failed for {paper.id}: {e}")
            return PaperInsight(paper_id=paper.id)

        parsed = parse_json_object(raw, strategies=_ANALYSIS_STRATEGIES)
        if parsed is None:
            logger.warning(f"Paper analysis for {paper.id} returned no JSON object")
            return PaperInsight(paper_id=paper.id)

        return PaperInsight(
            paper_id=paper.id,
            relevance_summary=_field(parsed, "relevanceSummary"),
            key_findings=_field(parsed, "keyFindings"),
            research_impact=_field(parsed, "researchImpact"),
        )
