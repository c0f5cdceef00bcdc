from typing import Literal

from pydantic import BaseModel, Field


class RepositoryRef(BaseModel):
    host: str = "github.com"
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class RepositoryTreeEntry(BaseModel):
    path: str
    type: Literal["blob", "tree", "commit"] = Field(description="Git object kind of the entry")
    size: int | None = None

    @property
    def is_blob(self) -> bool:
        return self.type == "blob"


class FetchedFile(BaseModel):
    path: str
    content: str
    original_length: int
    truncated: bool = False


class RepositorySnapshot(BaseModel):
    """Everything gathered for one repository; `text` is what the model sees."""
    repository: RepositoryRef
    tree: list[RepositoryTreeEntry] = Field(default_factory=list)
    selected_paths: list[str] = Field(default_factory=list)
    files: list[FetchedFile] = Field(default_factory=list)
    skipped_paths: list[str] = Field(default_factory=list)
    text: str = ""


class AnalysisResultDraft(BaseModel):
    """One extracted diagram block before it is persisted."""
    diagram_type: str
    mermaid_code: str
    summary: str | None = None
