import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from archscope.agent.errors import (
    AnalysisError,
    InvalidReference,
    ModelRequestFailed,
    ProjectNotFound,
    RunInProgress,
    UpstreamUnavailable,
)
from archscope.api.main import api_router
from archscope.core.config import settings
from archscope.core.db import init_db
from archscope.core.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    logger.info("%s started (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)


@app.exception_handler(ProjectNotFound)
async def project_not_found_handler(request: Request, exc: ProjectNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Project not found"})


@app.exception_handler(RunInProgress)
async def run_in_progress_handler(request: Request, exc: RunInProgress) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(InvalidReference)
async def invalid_reference_handler(request: Request, exc: InvalidReference) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UpstreamUnavailable)
async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(ModelRequestFailed)
async def model_request_failed_handler(request: Request, exc: ModelRequestFailed) -> JSONResponse:
    status_code = exc.status if exc.kind != ModelRequestFailed.UPSTREAM else 502
    return JSONResponse(status_code=status_code, content={"error": str(exc), "kind": exc.kind})


@app.exception_handler(AnalysisError)
async def analysis_error_handler(request: Request, exc: AnalysisError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(api_router, prefix=settings.API_V1_STR)
