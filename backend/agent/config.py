"""
Workflow Configuration

Tunable limits for the research workflow. Defaults match the behaviour the
frontend expects; deployments can override the data directory and search
timeout through the environment (or a .env file).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATA_DIR = Path.home() / "scholar-scout"


@dataclass
class WorkflowConfig:
    """Configuration for the research workflow."""

    # Source gathering
    max_keywords: int = 4          # plan keywords searched per gather
    results_per_keyword: int = 5
    max_analyses: int = 8          # papers analyzed per gather

    # Prompt context
    history_window: int = 10       # turns replayed in Q&A
    context_papers: int = 8        # papers summarized in the Q&A system prompt
    abstract_chars: int = 600

    # Search timeout (seconds)
    search_timeout: float = 15.0

    # Max output tokens per call kind
    clarification_tokens: int = 256
    plan_tokens: int = 1024
    analysis_tokens: int = 512
    answer_tokens: int = 1024

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)

    @classmethod
    def from_env(cls) -> "WorkflowConfig":
        """Build a config, overriding defaults from SCOUT_* variables."""
        config = cls()

        data_dir = os.getenv("SCOUT_DATA_DIR")
        if data_dir:
            config.data_dir = Path(data_dir).expanduser()

        timeout = os.getenv("SCOUT_SEARCH_TIMEOUT")
        if timeout:
            config.search_timeout = float(timeout)

        return config
