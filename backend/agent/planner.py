"""
Research Plan Generator

Turns a topic and its clarification transcript into a ResearchPlan with one
model call. The model is asked for bare JSON; its answer is recovered with
the processor strategy chain, and if nothing usable comes back a
deterministic plan is built from the topic alone. Plan generation therefore
never fails and never needs a second network call.
"""

import logging
import re

from agent.llm import TextModel, as_text
from agent.processors import parse_json_object, string_list
from agent.state import ChatMessage, ResearchPlan

logger = logging.getLogger(__name__)


PLAN_SYSTEM_PROMPT = "\n".join([
    "You are a research planning expert. Generate a detailed, specific research plan based on the conversation below.",
    "Return ONLY a valid JSON object - no markdown, no backticks, no explanation, nothing else.",
    "The JSON must have exactly these keys: subtopics (array of 5-6 strings), keywords (array of 8-12 strings), outline (array of 6-8 strings).",
    "Make every item specific to the actual topic and clarifications discussed - never use generic placeholders.",
    'For keywords: use precise technical terms suitable for arXiv searches (e.g. "echocardiogram video classification CNN" not just "echocardiogram").',
])

_AI_TERMS = re.compile(r"\b(ai|artificial intelligence|machine learning|deep learning|neural)\b")
_VIDEO_TERMS = re.compile(r"\bvideos?\b")
_IMAGE_TERMS = re.compile(r"\b(image|images|imaging)\b")


def build_transcript(history: list[ChatMessage]) -> str:
    """
    Render the clarification conversation as Question/Answer lines.

    The first message only states the topic, so it is skipped.
    """
    lines = []
    for msg in history[1:]:
        label = "Question: " if msg.role == "assistant" else "Answer: "
        lines.append(label + msg.content.strip())
    return "\n".join(lines)


def _accept_plan(parsed: dict) -> bool:
    return bool(string_list(parsed.get("subtopics"))) and bool(string_list(parsed.get("keywords")))


def fallback_plan(topic: str, transcript: str = "") -> ResearchPlan:
    """
    Build a plan from the topic and simple transcript cues.

    Always returns non-empty subtopics, keywords and outline.
    """
    topic = topic.strip() or "the research topic"
    lower = transcript.lower()
    uses_ai = bool(_AI_TERMS.search(lower))
    uses_video = bool(_VIDEO_TERMS.search(lower))
    uses_image = bool(_IMAGE_TERMS.search(lower))

    if uses_video:
        modality = "video analysis"
    elif uses_image:
        modality = "image analysis"
    else:
        modality = "data analysis"

    subtopics = [
        f"{topic} fundamentals and significance",
        f"Deep learning approaches for {topic}" if uses_ai else f"Computational methods for {topic}",
        f"{modality.capitalize()} methods for {topic}",
        "Benchmark datasets and evaluation metrics",
        "Transfer learning and pre-trained model adaptation" if uses_ai else "Comparative studies and baselines",
        "Validation, deployment and open challenges",
    ]

    keywords = [
        topic,
        f"{topic} survey",
        f"{topic} {modality}",
        f"{topic} deep learning" if uses_ai else f"{topic} methods",
        f"{topic} neural network" if uses_ai else f"{topic} algorithms",
        f"{topic} benchmark",
        f"{topic} evaluation",
        f"{topic} applications",
    ]

    outline = [
        "Introduction and motivation",
        f"Background: {topic}",
        "Related work",
        "Methodology",
        "Experiments and results",
        "Discussion and limitations",
        "Conclusion and future work",
    ]

    return ResearchPlan(subtopics=subtopics, keywords=keywords, outline=outline)


class PlanGenerator:
    """Generates research plans with resilient output parsing."""

    def __init__(self, llm: TextModel, max_tokens: int = 1024):
        self.llm = llm
        self.max_tokens = max_tokens

    def _messages(self, topic: str, transcript: str) -> list[ChatMessage]:
        user_prompt = "\n".join([
            f"Research topic: {topic}",
            "",
            "Clarification conversation:",
            transcript or "(no clarification conversation yet)",
            "",
            "Generate the JSON research plan now:",
        ])
        return [
            ChatMessage(role="system", content=PLAN_SYSTEM_PROMPT),
            ChatMessage(role="user", content=user_prompt),
        ]

    async def generate(self, topic: str, history: list[ChatMessage]) -> ResearchPlan:
        """
        Generate a plan for the topic.

        Args:
            topic: Research topic
            history: Committed chat history (topic message first)

        Returns:
            A ResearchPlan; the fallback plan if the model output is unusable
        """
        transcript = build_transcript(history)

        try:
            raw = as_text(await self.llm.complete(self._messages(topic, transcript), max_tokens=self.max_tokens))
        except Exception as e:
            logger.error(f"Plan generation call failed, using fallback: {e}")
            return fallback_plan(topic, transcript)

        logger.info(f"Plan model raw output: {raw[:500]}")

        parsed = parse_json_object(raw, accept=_accept_plan)
        if parsed is None:
            logger.error(f"Plan JSON parse failed, using fallback. Raw: {raw[:200]}")
            return fallback_plan(topic, transcript)

        return ResearchPlan(
            subtopics=string_list(parsed.get("subtopics")),
            keywords=string_list(parsed.get("keywords")),
            outline=string_list(parsed.get("outline")),
        )
