import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field as PydanticField, field_validator
from sqlalchemy import JSON, DateTime
from sqlmodel import Field, SQLModel


def get_datetime_utc() -> datetime:
    return datetime.now(timezone.utc)


DEFAULT_FOCUS = "Full Architecture"
DEFAULT_DIAGRAM_TYPES = ["Component Diagram"]


class ProjectStatus(str, Enum):
    draft = "draft"
    processing = "processing"
    completed = "completed"
    failed = "failed"


# Sources are a tagged variant keyed on "type".

class GitHubSource(BaseModel):
    type: Literal["github"] = "github"
    name: str = ""
    url: str


class UploadSource(BaseModel):
    type: Literal["upload"] = "upload"
    name: str
    content: str = ""


class GoogleDriveSource(BaseModel):
    """Accepted and stored, but not read by the pipeline yet."""
    type: Literal["google-drive"] = "google-drive"
    name: str = ""
    url: str | None = None


Source = Annotated[
    Union[GitHubSource, UploadSource, GoogleDriveSource],
    PydanticField(discriminator="type"),
]


class AnalysisOptions(BaseModel):
    focus: str = DEFAULT_FOCUS
    diagramTypes: list[str] = PydanticField(
        default_factory=lambda: list(DEFAULT_DIAGRAM_TYPES), min_length=1
    )

    @field_validator("focus")
    @classmethod
    def _default_blank_focus(cls, value: str) -> str:
        return value.strip() or DEFAULT_FOCUS


# Shared properties
class ProjectBase(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None)


# Properties to receive via API on creation
class ProjectCreate(ProjectBase):
    sources: list[Source] = Field(default_factory=list)
    analysis_options: AnalysisOptions = Field(default_factory=AnalysisOptions)
    start_analysis: bool = False


# Database model, database table inferred from class name
class Project(ProjectBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    status: ProjectStatus = Field(default=ProjectStatus.draft)
    sources: list[dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    analysis_options: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    # Bumped every time a run claims the project; see crud.claim_project_run.
    run_version: int = Field(default=0)
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )
    updated_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


# Properties to return via API, id is always required
class ProjectPublic(ProjectBase):
    id: uuid.UUID
    status: ProjectStatus
    sources: list[dict[str, Any]]
    analysis_options: dict[str, Any]
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProjectsPublic(SQLModel):
    data: list[ProjectPublic]
    count: int


class AnalysisResultBase(SQLModel):
    diagram_type: str = Field(max_length=255)
    mermaid_code: str
    summary: dict[str, Any] | None = Field(default=None, sa_type=JSON)


class AnalysisResultCreate(AnalysisResultBase):
    project_id: uuid.UUID


class AnalysisResult(AnalysisResultBase, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    # Weak reference to the owning project: no relationship attribute, just the key.
    project_id: uuid.UUID = Field(
        foreign_key="project.id", nullable=False, ondelete="CASCADE", index=True
    )
    created_at: datetime | None = Field(
        default_factory=get_datetime_utc,
        sa_type=DateTime(timezone=True),  # type: ignore
    )


class AnalysisResultPublic(AnalysisResultBase):
    id: uuid.UUID
    project_id: uuid.UUID
    created_at: datetime | None = None


class AnalysisResultsPublic(SQLModel):
    data: list[AnalysisResultPublic]
    count: int


# Generic message
class Message(SQLModel):
    message: str


def parse_sources(raw: list[dict[str, Any]]) -> list[GitHubSource | UploadSource | GoogleDriveSource]:
    """Rebuild typed sources from the JSON column."""
    parsed: list[GitHubSource | UploadSource | GoogleDriveSource] = []
    for item in raw or []:
        kind = item.get("type")
        if kind == "github":
            parsed.append(GitHubSource.model_validate(item))
        elif kind == "upload":
            parsed.append(UploadSource.model_validate(item))
        elif kind == "google-drive":
            parsed.append(GoogleDriveSource.model_validate(item))
    return parsed


def parse_options(raw: dict[str, Any] | None) -> AnalysisOptions:
    data = dict(raw or {})
    if not data.get("diagramTypes"):
        data.pop("diagramTypes", None)
    if not data.get("focus"):
        data.pop("focus", None)
    return AnalysisOptions.model_validate(data)
