import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_PAYLOAD = "[DONE]"


def extract_delta_content(event: Any) -> str | None:
    """Read `choices[0].delta.content` from one decoded event, if present."""
    if not isinstance(event, dict):
        return None
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    return content if isinstance(content, str) else None


class StreamFrameDecoder:
    """
    Incremental decoder for an OpenAI-style server-sent event body.

    Bytes may be fed in any chunking; only complete lines are interpreted. A
    data line that does not parse as JSON is put back at the head of the
    buffer and processing stops until more bytes arrive. Whatever is still
    unparseable when the stream ends is dropped.

    Use one instance per response.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._parts: list[str] = []
        self.done = False
        self.dropped_lines = 0

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: bytes) -> list[str]:
        """Consume one chunk of bytes and return the deltas it completed, in order."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        return self._drain(final=False)

    def flush(self) -> list[str]:
        """Signal end of input; interpret any trailing unterminated line."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        deltas = self._drain(final=True)
        self._buffer = ""
        return deltas

    def _drain(self, *, final: bool) -> list[str]:
        deltas: list[str] = []
        while not self.done:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                if not final or not self._buffer:
                    break
                line, self._buffer = self._buffer, ""
            else:
                line = self._buffer[:newline_index]
                self._buffer = self._buffer[newline_index + 1:]

            if line.endswith("\r"):
                line = line[:-1]
            if line.startswith(":") or not line.strip():
                continue
            if not line.startswith(DATA_PREFIX):
                continue

            payload = line[len(DATA_PREFIX):].strip()
            if payload == DONE_PAYLOAD:
                self.done = True
                self._buffer = ""
                break

            try:
                event = json.loads(payload)
            except json.JSONDecodeError:
                if final:
                    self.dropped_lines += 1
                    logger.debug("Dropping unparseable event line at end of stream: %.200s", payload)
                    continue
                # Probably split by the transport; wait for the rest.
                self._buffer = line + "\n" + self._buffer
                break

            content = extract_delta_content(event)
            if content:
                self._parts.append(content)
                deltas.append(content)
        return deltas

    async def iter_deltas(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
        """
        Yield deltas as chunks arrive.

        Stops reading at the terminator. If the caller stops iterating, the
        byte source is closed without being drained.
        """
        try:
            async for chunk in chunks:
                for delta in self.feed(chunk):
                    yield delta
                if self.done:
                    break
            for delta in self.flush():
                yield delta
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()
