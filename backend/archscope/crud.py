import uuid
from typing import Any

from sqlalchemy import delete, func, update
from sqlmodel import Session, select

from archscope.models import (
    AnalysisResult,
    AnalysisResultCreate,
    Project,
    ProjectCreate,
    ProjectStatus,
    get_datetime_utc,
)


def create_project(*, session: Session, project_in: ProjectCreate) -> Project:
    status = ProjectStatus.processing if project_in.start_analysis else ProjectStatus.draft
    db_project = Project(
        name=project_in.name,
        description=project_in.description,
        status=status,
        sources=[source.model_dump() for source in project_in.sources],
        analysis_options=project_in.analysis_options.model_dump(),
    )
    session.add(db_project)
    session.commit()
    session.refresh(db_project)
    return db_project


def get_project(*, session: Session, project_id: uuid.UUID) -> Project | None:
    return session.get(Project, project_id)


def list_projects(*, session: Session, skip: int = 0, limit: int = 100) -> list[Project]:
    statement = select(Project).order_by(Project.created_at.desc()).offset(skip).limit(limit)
    return list(session.exec(statement).all())


def append_project_source(*, session: Session, db_project: Project, source: dict[str, Any]) -> Project:
    # JSON columns are not mutation-tracked; assign a new list.
    db_project.sources = [*db_project.sources, source]
    db_project.updated_at = get_datetime_utc()
    session.add(db_project)
    session.commit()
    session.refresh(db_project)
    return db_project


def claim_project_run(
    *, session: Session, project_id: uuid.UUID, expected_version: int
) -> int | None:
    """
    Compare-and-swap the project into `processing`.

    Returns the new run version when the swap succeeded, None when another
    writer bumped the version first.
    """
    statement = (
        update(Project)
        .where(Project.id == project_id, Project.run_version == expected_version)
        .values(
            status=ProjectStatus.processing,
            run_version=expected_version + 1,
            updated_at=get_datetime_utc(),
        )
    )
    result = session.execute(statement)
    session.commit()
    if result.rowcount != 1:
        return None
    return expected_version + 1


def holds_run_lease(*, session: Session, project_id: uuid.UUID, run_version: int) -> bool:
    statement = select(Project.run_version).where(Project.id == project_id)
    current = session.exec(statement).first()
    return current == run_version


def update_project_status(
    *,
    session: Session,
    project_id: uuid.UUID,
    status: ProjectStatus,
    run_version: int | None = None,
) -> bool:
    """Set the status; when run_version is given, only if that run still holds the lease."""
    statement = update(Project).where(Project.id == project_id)
    if run_version is not None:
        statement = statement.where(Project.run_version == run_version)
    result = session.execute(statement.values(status=status, updated_at=get_datetime_utc()))
    session.commit()
    return result.rowcount == 1


def list_project_results(*, session: Session, project_id: uuid.UUID) -> list[AnalysisResult]:
    statement = (
        select(AnalysisResult)
        .where(AnalysisResult.project_id == project_id)
        .order_by(AnalysisResult.created_at)
    )
    return list(session.exec(statement).all())


def count_project_results(*, session: Session, project_id: uuid.UUID) -> int:
    statement = select(func.count()).select_from(AnalysisResult).where(
        AnalysisResult.project_id == project_id
    )
    return session.exec(statement).one()


def delete_project_results(
    *, session: Session, project_id: uuid.UUID, run_version: int | None = None
) -> int | None:
    """
    Delete every result of the project.

    With run_version, the delete only happens while that run holds the lease;
    None is returned when it does not.
    """
    statement = delete(AnalysisResult).where(AnalysisResult.project_id == project_id)
    if run_version is not None:
        if not holds_run_lease(session=session, project_id=project_id, run_version=run_version):
            return None
        lease_held = (
            select(Project.id)
            .where(Project.id == project_id, Project.run_version == run_version)
            .exists()
        )
        statement = statement.where(lease_held)
    result = session.execute(statement)
    session.commit()
    return result.rowcount


def create_analysis_result(*, session: Session, result_in: AnalysisResultCreate) -> AnalysisResult:
    db_result = AnalysisResult.model_validate(result_in)
    session.add(db_result)
    session.commit()
    session.refresh(db_result)
    return db_result