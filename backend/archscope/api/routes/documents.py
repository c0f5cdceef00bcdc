import io
import uuid
from typing import Any

import pypdf
from fastapi import APIRouter, File, HTTPException, UploadFile

from archscope.api.deps import SessionDep
from archscope.crud import append_project_source, get_project
from archscope.models import ProjectPublic, UploadSource

router = APIRouter()

TEXT_CONTENT_TYPES = {"text/plain", "text/markdown", "text/x-markdown", "application/json"}


def extract_text_from_file(file: UploadFile, content: bytes) -> str:
    """Extracts text from a given file based on content type."""
    if file.content_type == "application/pdf":
        try:
            pdf_reader = pypdf.PdfReader(io.BytesIO(content))
            text = ""
            for page in pdf_reader.pages:
                page_text = page.extract_text()
                if page_text:
                    text += page_text + "\n"
            return text
        except Exception as e:
            raise HTTPException(status_code=400, detail=f"Failed to parse PDF: {str(e)}")

    elif file.content_type in TEXT_CONTENT_TYPES:
        try:
            return content.decode("utf-8")
        except UnicodeDecodeError:
            raise HTTPException(status_code=400, detail="File is not valid UTF-8 text")

    else:
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {file.content_type}")


@router.post("/{id}/sources/upload", response_model=ProjectPublic)
async def upload_source_document(
    id: uuid.UUID,
    session: SessionDep,
    file: UploadFile = File(...),
) -> Any:
    """
    Upload a document, resolve it to text, and attach it to the project as an
    upload source. The text is used as-is on the next analysis run.
    """
    project = get_project(session=session, project_id=id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")

    content = await file.read()
    text = extract_text_from_file(file, content)
    if not text.strip():
        raise HTTPException(status_code=400, detail="Could not extract any text from the document.")

    source = UploadSource(name=file.filename or "unknown", content=text)
    return append_project_source(session=session, db_project=project, source=source.model_dump())
