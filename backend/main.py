"""
Scholar Scout Backend API

FastAPI server providing:
- Research chat turns (clarify, plan, gather, summarize, Q&A)
- Workspace state and listing
- On-demand refresh of ongoing workspaces
"""

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from functools import cache
from typing import Optional
import logging

from agent.engine import WorkflowEngine, create_engine
from agent.errors import InvalidTurnError
from agent.refresh import refresh_all_workspaces
from services.workspace_store import validate_workspace_id

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize app
app = FastAPI(
    title="Scholar Scout Backend API",
    description="Research assistant that scopes, plans and tracks arXiv literature",
    version="0.1.0"
)

# CORS for the web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@cache
def get_engine() -> WorkflowEngine:
    """Shared workflow engine (overridden in tests)."""
    return create_engine()


# ============ Request/Response Models ============

class ChatRequest(BaseModel):
    message: Optional[str] = None
    workspaceId: Optional[str] = None


class ChatResponse(BaseModel):
    message: str
    workspaceId: str
    phase: str
    sourceCount: int


# ============ Health Check ============

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "Scholar Scout Backend",
        "version": "0.1.0",
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {"status": "healthy"}


# ============ Chat Endpoints ============

@app.post("/api/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, engine: WorkflowEngine = Depends(get_engine)):
    """
    Run one chat turn.

    Omit workspaceId on the first turn; the response carries the new id.
    """
    try:
        result = await engine.handle_turn(request.workspaceId, request.message)
    except InvalidTurnError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ChatResponse(**result.to_dict())


# ============ Workspace Endpoints ============

@app.get("/api/workspace/{workspace_id}")
async def get_workspace(workspace_id: str, engine: WorkflowEngine = Depends(get_engine)):
    """Full state of one workspace."""
    try:
        validate_workspace_id(workspace_id)
    except InvalidTurnError as e:
        raise HTTPException(status_code=400, detail=str(e))

    workspace = engine.get_workspace(workspace_id)
    if workspace is None:
        raise HTTPException(status_code=404, detail="Workspace not found")

    return {
        **workspace.to_dict(),
        "gathering": engine.is_gathering(workspace_id),
    }


@app.get("/api/workspaces")
async def list_workspaces(engine: WorkflowEngine = Depends(get_engine)):
    """List indexed workspaces, newest first."""
    return {"workspaces": engine.index.entries()}


@app.post("/api/refresh")
async def refresh(engine: WorkflowEngine = Depends(get_engine)):
    """
    Check every ongoing workspace for new papers.

    Meant to be called by an external scheduler (e.g. a daily cron job).
    """
    logger.info("Starting workspace refresh")
    return await refresh_all_workspaces(engine, engine.search)


# ============ Run Server ============

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
