import json


def sse_event(content: str | None = None, **delta) -> str:
    if content is not None:
        delta["content"] = content
    return "data: " + json.dumps({"choices": [{"index": 0, "delta": delta}]}) + "\n\n"


def sse_body(*deltas: str, done: bool = True) -> bytes:
    parts = [": connected\n\n", sse_event(role="assistant")]
    parts.extend(sse_event(delta) for delta in deltas)
    if done:
        parts.append("data: [DONE]\n\n")
    return "".join(parts).encode("utf-8")
