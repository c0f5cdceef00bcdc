import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from archscope.agent.orchestrator import AnalysisOrchestrator, AnalysisOutcome
from archscope.api.deps import SessionDep
from archscope.crud import create_project, get_project, list_project_results, list_projects
from archscope.models import (
    AnalysisResultsPublic,
    Message,
    ProjectCreate,
    ProjectPublic,
    ProjectsPublic,
)

router = APIRouter()


def get_orchestrator(session: SessionDep) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(session)


OrchestratorDep = Annotated[AnalysisOrchestrator, Depends(get_orchestrator)]


@router.post("/", response_model=ProjectPublic)
def create_new_project(*, session: SessionDep, project_in: ProjectCreate) -> Any:
    return create_project(session=session, project_in=project_in)


@router.get("/", response_model=ProjectsPublic)
def read_projects(session: SessionDep, skip: int = 0, limit: int = 100) -> Any:
    projects = list_projects(session=session, skip=skip, limit=limit)
    return ProjectsPublic(data=projects, count=len(projects))


@router.get("/{id}", response_model=ProjectPublic)
def read_project(id: uuid.UUID, session: SessionDep) -> Any:
    project = get_project(session=session, project_id=id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.get("/{id}/results", response_model=AnalysisResultsPublic)
def read_project_results(id: uuid.UUID, session: SessionDep) -> Any:
    if not get_project(session=session, project_id=id):
        raise HTTPException(status_code=404, detail="Project not found")
    results = list_project_results(session=session, project_id=id)
    return AnalysisResultsPublic(data=results, count=len(results))


@router.post("/{id}/analyze")
async def analyze_project(id: uuid.UUID, orchestrator: OrchestratorDep):
    """Start (or restart) analysis and stream progress via SSE."""
    run_version = orchestrator.claim(id)
    return EventSourceResponse(orchestrator.stream_run(id, run_version=run_version))


@router.post("/{id}/observe", response_model=AnalysisOutcome | Message)
async def observe_project(id: uuid.UUID, orchestrator: OrchestratorDep) -> Any:
    """
    Start a run if the project is waiting in `processing` with no results.
    Otherwise nothing happens.
    """
    outcome = await orchestrator.observe(id)
    if outcome is None:
        return Message(message="No analysis started")
    return outcome
