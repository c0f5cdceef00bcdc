import json
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import aclosing

from pydantic import BaseModel
from sqlmodel import Session

from archscope.agent.errors import AnalysisError, PartialFetchFailure, ProjectNotFound, RunInProgress
from archscope.agent.extractor import MERMAID_FENCE_OPEN, extract_artifacts
from archscope.agent.llm_client import AnalysisRequest, LLMClient
from archscope.agent.snapshot import RepositorySnapshotter
from archscope.agent.stream_decoder import StreamFrameDecoder
from archscope.crud import (
    claim_project_run,
    count_project_results,
    create_analysis_result,
    delete_project_results,
    get_project,
    holds_run_lease,
    update_project_status,
)
from archscope.models import (
    AnalysisResultCreate,
    GitHubSource,
    GoogleDriveSource,
    Project,
    ProjectStatus,
    UploadSource,
    parse_options,
    parse_sources,
)

logger = logging.getLogger(__name__)

# Projects with a run in flight in this process; checked by the auto-trigger only.
_ACTIVE_RUNS: set[uuid.UUID] = set()


class AnalysisOutcome(BaseModel):
    project_id: uuid.UUID
    status: ProjectStatus
    results_count: int = 0
    error: str | None = None


def _event(status: str, **payload) -> str:
    return json.dumps({"status": status, **payload})


def _rollback_session_safely(session: Session) -> None:
    try:
        session.rollback()
    except Exception as exc:
        logger.warning("Session rollback failed: %s", exc)


def _update_project_status_safely(
    session: Session, project_id: uuid.UUID, status: ProjectStatus, run_version: int
) -> None:
    try:
        updated = update_project_status(
            session=session, project_id=project_id, status=status, run_version=run_version
        )
        if not updated:
            logger.warning(
                "Project %s was claimed by a newer run; not setting status %s", project_id, status.value
            )
    except Exception as exc:
        logger.warning("Failed to update project %s to %s: %s", project_id, status.value, exc)


def _superseded_event() -> str:
    return _event("superseded", message="A newer analysis run took over this project.")


def failed_fetch_placeholder(url: str) -> str:
    return f"Failed to fetch {url}"


def upload_section(source: UploadSource) -> str:
    return f"--- File: {source.name} ---\n{source.content}"


class AnalysisOrchestrator:
    """
    Runs one analysis of a project: gather sources, stream the model output,
    extract diagrams, persist them, and move the project status along.
    """

    def __init__(
        self,
        session: Session,
        *,
        snapshotter: RepositorySnapshotter | None = None,
        llm: LLMClient | None = None,
    ):
        self.session = session
        self.snapshotter = snapshotter or RepositorySnapshotter()
        self.llm = llm or LLMClient()

    async def gather_sources(self, project: Project) -> tuple[str, list[PartialFetchFailure]]:
        """Build the combined source text; repository failures become placeholders."""
        sources = parse_sources(project.sources)
        sections: list[str] = []
        failures: list[PartialFetchFailure] = []

        for source in sources:
            if not isinstance(source, GitHubSource) or not source.url:
                continue
            try:
                snapshot = await self.snapshotter.snapshot(source.url)
                sections.append(snapshot.text)
            except Exception as exc:
                logger.error("Repository fetch failed for %s: %s", source.url, exc)
                failures.append(PartialFetchFailure(source.url, str(exc)))
                sections.append(failed_fetch_placeholder(source.url))

        for source in sources:
            if isinstance(source, UploadSource) and source.content:
                sections.append(upload_section(source))
            elif isinstance(source, GoogleDriveSource):
                logger.debug("Ignoring drive source %s; drive import is not available", source.name)

        return "\n\n".join(sections), failures

    def claim(self, project_id: uuid.UUID) -> int:
        """Take the per-project run lease, moving the project into `processing`."""
        project = get_project(session=self.session, project_id=project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        version = claim_project_run(
            session=self.session, project_id=project_id, expected_version=project.run_version
        )
        if version is None:
            raise RunInProgress(project_id)
        return version

    async def stream_run(
        self,
        project_id: uuid.UUID,
        *,
        run_version: int | None = None,
        raise_errors: bool = False,
    ) -> AsyncIterator[str]:
        """
        Start a run and yield JSON progress events.

        Errors are reported as a final `failed` event; with raise_errors they
        are also re-raised to the consumer after that event.
        """
        if run_version is None:
            run_version = self.claim(project_id)
        _ACTIVE_RUNS.add(project_id)
        settled = False

        try:
            yield _event("processing", message="Starting analysis...", run_version=run_version)
            removed = delete_project_results(
                session=self.session, project_id=project_id, run_version=run_version
            )
            if removed is None:
                settled = True
                logger.warning(
                    "Run %s for project %s was superseded before it started", run_version, project_id
                )
                yield _superseded_event()
                return
            if removed:
                logger.info("Removed %s previous results for project %s", removed, project_id)

            project = get_project(session=self.session, project_id=project_id)
            options = parse_options(project.analysis_options)

            yield _event("fetching_sources", message="Fetching sources...")
            content, failures = await self.gather_sources(project)
            for failure in failures:
                yield _event("source_failed", message=str(failure), source=failure.target)
            if not content.strip():
                raise AnalysisError("Project has no source content to analyze")

            yield _event("extracting_content", message="Extracting content...", chars=len(content))

            yield _event("analyzing", message="Analyzing architecture...")
            decoder = StreamFrameDecoder()
            request = AnalysisRequest(
                content=content,
                focus=options.focus,
                diagramTypes=options.diagramTypes,
                projectId=project_id,
            )
            generating = False
            deltas = decoder.iter_deltas(self.llm.stream_analysis(request))
            async with aclosing(deltas):
                async for delta in deltas:
                    yield _event("delta", delta=delta)
                    if not generating and MERMAID_FENCE_OPEN in decoder.text:
                        generating = True
                        yield _event("generating_diagrams", message="Generating diagrams...")
            if decoder.dropped_lines:
                logger.debug("Dropped %s unrecoverable event lines", decoder.dropped_lines)

            drafts = extract_artifacts(decoder.text, options.diagramTypes)

            if not holds_run_lease(session=self.session, project_id=project_id, run_version=run_version):
                settled = True
                logger.warning(
                    "Run %s for project %s was superseded; discarding output", run_version, project_id
                )
                yield _superseded_event()
                return

            for draft in drafts:
                create_analysis_result(
                    session=self.session,
                    result_in=AnalysisResultCreate(
                        project_id=project_id,
                        diagram_type=draft.diagram_type,
                        mermaid_code=draft.mermaid_code,
                        summary={"text": draft.summary} if draft.summary else None,
                    ),
                )

            final_status = ProjectStatus.completed if drafts else ProjectStatus.failed
            _update_project_status_safely(self.session, project_id, final_status, run_version)
            settled = True
            logger.info(
                "Analysis for project %s finished: %s (%s diagrams)",
                project_id,
                final_status.value,
                len(drafts),
            )
            if drafts:
                yield _event(
                    "completed",
                    message="Analysis complete",
                    results_count=len(drafts),
                    diagram_types=[draft.diagram_type for draft in drafts],
                )
            else:
                yield _event("failed", message="No diagrams were found in the model output.", results_count=0)

        except Exception as e:
            logger.error("Analysis error for project %s: %s", project_id, e, exc_info=True)
            _rollback_session_safely(self.session)
            _update_project_status_safely(self.session, project_id, ProjectStatus.failed, run_version)
            settled = True
            yield _event("failed", message=str(e), error_type=type(e).__name__)
            if raise_errors:
                raise
        finally:
            if not settled:
                # Consumer went away (disconnect or cancellation) mid-run.
                logger.warning("Analysis for project %s was abandoned; marking it failed", project_id)
                _rollback_session_safely(self.session)
                _update_project_status_safely(self.session, project_id, ProjectStatus.failed, run_version)
            _ACTIVE_RUNS.discard(project_id)

    async def run_analysis(self, project_id: uuid.UUID) -> AnalysisOutcome:
        """Run to completion without streaming; errors propagate after the project is marked failed."""
        last: dict = {}
        async for raw in self.stream_run(project_id, raise_errors=True):
            last = json.loads(raw)
        project = get_project(session=self.session, project_id=project_id)
        return AnalysisOutcome(
            project_id=project_id,
            status=project.status,
            results_count=count_project_results(session=self.session, project_id=project_id),
            error=last.get("message") if last.get("status") == "failed" else None,
        )

    async def observe(self, project_id: uuid.UUID) -> AnalysisOutcome | None:
        """
        Auto-trigger: start a run for a project sitting in `processing` with no
        results. Returns None when nothing was started.
        """
        project = get_project(session=self.session, project_id=project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        if project.status != ProjectStatus.processing or project_id in _ACTIVE_RUNS:
            return None
        if count_project_results(session=self.session, project_id=project_id):
            return None
        logger.info("Auto-starting analysis for project %s", project_id)
        return await self.run_analysis(project_id)
