"""
Background Refresher

Walks every indexed workspace and, for those in the ongoing phase, checks
arXiv for papers on the topic that are not yet among the sources. New
findings are delivered to the workspace as an ordinary chat turn, so they
go through the same history-commit protocol as user messages.
"""

import logging

from agent.engine import WorkflowEngine
from agent.gathering import PaperSearch
from agent.state import Phase
from services.arxiv import Paper

logger = logging.getLogger(__name__)

REFRESH_RESULTS = 5


def refresh_message(papers: list[Paper]) -> str:
    listing = "\n".join(f'- "{p.title}" ({p.published_date})' for p in papers)
    return f"[Auto-refresh] Found {len(papers)} new papers:\n{listing}\n\nPlease summarize progress."


async def refresh_workspace(engine: WorkflowEngine, search: PaperSearch, workspace_id: str) -> int:
    """
    Refresh one workspace.

    Returns:
        Number of new papers reported (0 if skipped or nothing new)
    """
    workspace = engine.store.load(workspace_id)
    if workspace is None:
        logger.info(f"No stored state for workspace {workspace_id}")
        return 0

    if not workspace.topic or workspace.phase != Phase.ONGOING:
        logger.info(f"Skipping workspace {workspace_id} (phase: {workspace.phase.value})")
        return 0

    known = workspace.source_ids()
    fresh = [p for p in await search.search(workspace.topic, REFRESH_RESULTS) if p.id not in known]
    if not fresh:
        logger.info(f'No new papers for "{workspace.topic}"')
        return 0

    logger.info(f'Found {len(fresh)} new papers for "{workspace.topic}"')
    await engine.handle_turn(workspace_id, refresh_message(fresh))
    return len(fresh)


async def refresh_all_workspaces(engine: WorkflowEngine, search: PaperSearch) -> dict:
    """
    Refresh every indexed workspace; one failure never stops the rest.

    Returns:
        {"refreshed": {id: new_paper_count}, "failed": [ids]}
    """
    ids = engine.index.list_ids()
    logger.info(f"Refreshing {len(ids)} workspace(s)")

    refreshed: dict[str, int] = {}
    failed: list[str] = []
    for workspace_id in ids:
        try:
            count = await refresh_workspace(engine, search, workspace_id)
        except Exception as e:
            logger.error(f"Failed to refresh workspace {workspace_id}: {e}")
            failed.append(workspace_id)
            continue
        if count:
            refreshed[workspace_id] = count

    logger.info(f"Refresh complete: {len(refreshed)} updated, {len(failed)} failed")
    return {"refreshed": refreshed, "failed": failed}
