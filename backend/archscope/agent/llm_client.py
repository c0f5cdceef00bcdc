import json
import logging
import uuid
from collections.abc import AsyncIterator

import httpx
from pydantic import BaseModel, Field

from archscope.agent.errors import ModelRequestFailed
from archscope.agent.prompts.architecture import ARCHITECTURE_USER_PROMPT, build_system_prompt
from archscope.core.config import settings

logger = logging.getLogger(__name__)


class AnalysisRequest(BaseModel):
    """What the pipeline sends to the model service for one run."""
    content: str
    focus: str
    diagramTypes: list[str] = Field(min_length=1)
    projectId: uuid.UUID | None = None


def _error_message(body: str) -> str:
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return body
    error = parsed.get("error") if isinstance(parsed, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return body


class LLMClient:
    """Streaming chat-completions client for any OpenAI-compatible endpoint."""

    def __init__(
        self,
        model_name: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        max_content_chars: int | None = None,
    ):
        self.model_name = model_name or settings.MODEL_DEFAULT
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.api_key = api_key or settings.LLM_API_KEY
        self.max_content_chars = max_content_chars or settings.MODEL_CONTENT_MAX_CHARS
        self._client = client

    def build_payload(self, request: AnalysisRequest) -> dict:
        return {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": build_system_prompt(request.focus, request.diagramTypes)},
                {
                    "role": "user",
                    "content": ARCHITECTURE_USER_PROMPT.format(
                        content=request.content[: self.max_content_chars]
                    ),
                },
            ],
            "stream": True,
        }

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream_analysis(self, request: AnalysisRequest) -> AsyncIterator[bytes]:
        """
        POST the analysis request and yield the raw event-stream body.

        Raises ModelRequestFailed before yielding anything if the service
        answers with a non-2xx status. Closing the generator closes the
        connection.
        """
        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.HTTP_READ_TIMEOUT, connect=settings.HTTP_CONNECT_TIMEOUT)
        )
        logger.info(
            "Issuing streaming analysis request to model %s (project=%s, %s chars, diagrams=%s)",
            self.model_name,
            request.projectId,
            len(request.content),
            request.diagramTypes,
        )
        try:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=self.build_payload(request),
                headers=self._headers(),
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error("Model service error %s: %s", response.status_code, body[:500])
                    raise ModelRequestFailed(response.status_code, _error_message(body))
                async for chunk in response.aiter_bytes():
                    yield chunk
        finally:
            if owns_client:
                await client.aclose()
