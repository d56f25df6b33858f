"""
Shared fixtures: scripted stand-ins for the language model and arXiv, and a
workflow engine over a temporary data directory.
"""

import json
from typing import Callable, Optional

import pytest

from agent.config import WorkflowConfig
from agent.state import ChatMessage
from services.arxiv import Paper
from services.workspace_store import WorkspaceIndex, WorkspaceStore


PLAN_JSON = json.dumps({
    "subtopics": [
        "Spatio-temporal graph construction",
        "Graph convolution for road networks",
        "Attention-based temporal modelling",
        "Benchmark datasets (METR-LA, PEMS-BAY)",
        "Uncertainty in traffic forecasts",
        "Deployment in traffic management systems",
    ],
    "keywords": [
        "spatio-temporal graph neural network traffic",
        "graph convolution traffic forecasting",
        "diffusion convolutional recurrent network",
        "traffic speed prediction attention",
        "METR-LA benchmark",
        "road network graph learning",
        "probabilistic traffic forecasting",
        "dynamic graph traffic flow",
    ],
    "outline": [
        "Introduction",
        "Background on traffic forecasting",
        "Graph neural network architectures",
        "Datasets and metrics",
        "Experiments",
        "Discussion",
        "Conclusion",
    ],
})

ANALYSIS_JSON = json.dumps({
    "relevanceSummary": "Directly models traffic as a graph.",
    "keyFindings": "Diffusion convolution improves long-horizon accuracy.",
    "researchImpact": "Use as the main baseline.",
})

CLARIFYING_QUESTION = "Which forecasting horizon matters most to you?"
ANSWER = "DCRNN is the most cited baseline."


def make_paper(n: int, **overrides) -> Paper:
    fields = {
        "id": f"2401.{n:05d}",
        "title": f"Paper {n}",
        "authors": ["Ada Lovelace", "Alan Turing"],
        "abstract": f"Abstract of paper {n}.",
        "link": f"https://arxiv.org/abs/2401.{n:05d}",
        "published_date": "2024-01-15",
        "categories": ["cs.LG"],
    }
    fields.update(overrides)
    return Paper(**fields)


def scripted_reply(messages: list[ChatMessage]) -> str:
    """Answer like a well-behaved model, keyed on the system prompt."""
    system = next((m.content for m in messages if m.role == "system"), "")
    if system.startswith("You are a research scoping assistant"):
        return f"Assistant: {CLARIFYING_QUESTION}"
    if system.startswith("You are a research planning expert"):
        return PLAN_JSON
    if system.startswith("Return only valid JSON"):
        return f"Here you go:\n{ANALYSIS_JSON}"
    return ANSWER


class FakeLLM:
    """TextModel double that records calls and replies via `responder`."""

    def __init__(self, responder: Optional[Callable[[list[ChatMessage]], str]] = None):
        self.responder = responder or scripted_reply
        self.calls: list[list[ChatMessage]] = []

    async def complete(self, messages: list[ChatMessage], max_tokens: int = 1024) -> str:
        self.calls.append(list(messages))
        return self.responder(messages)

    def calls_with_system(self, prefix: str) -> list[list[ChatMessage]]:
        return [
            call for call in self.calls
            if any(m.role == "system" and m.content.startswith(prefix) for m in call)
        ]


class FakeSearch:
    """PaperSearch double: canned results per query, `default` otherwise."""

    def __init__(
        self,
        results: Optional[dict[str, list[Paper]]] = None,
        default: Optional[list[Paper]] = None,
        failing: tuple[str, ...] = (),
    ):
        self.results = results or {}
        self.default = default or []
        self.failing = set(failing)
        self.queries: list[str] = []

    async def search(self, query: str, max_results: int = 5) -> list[Paper]:
        self.queries.append(query)
        if query in self.failing:
            raise RuntimeError(f"search backend down for {query!r}")
        return list(self.results.get(query, self.default))[:max_results]


def plan_keywords() -> list[str]:
    return json.loads(PLAN_JSON)["keywords"]


def overlapping_results() -> dict[str, list[Paper]]:
    """Results for the first four plan keywords, with repeated ids."""
    k = plan_keywords()
    return {
        k[0]: [make_paper(1), make_paper(2), make_paper(3)],
        k[1]: [make_paper(2), make_paper(4)],
        k[2]: [make_paper(1), make_paper(5)],
        k[3]: [],
        # Beyond the keyword limit; never searched
        k[4]: [make_paper(99)],
    }


@pytest.fixture
def config(tmp_path) -> WorkflowConfig:
    return WorkflowConfig(data_dir=tmp_path)


@pytest.fixture
def store(tmp_path) -> WorkspaceStore:
    return WorkspaceStore(tmp_path)


@pytest.fixture
def index(tmp_path) -> WorkspaceIndex:
    return WorkspaceIndex(tmp_path)


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_search() -> FakeSearch:
    return FakeSearch(results=overlapping_results())


@pytest.fixture
def engine(store, index, fake_llm, fake_search, config):
    from agent.engine import WorkflowEngine

    return WorkflowEngine(store, index, fake_llm, fake_search, config)
