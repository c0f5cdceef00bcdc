import re

from archscope.agent.artifacts import AnalysisResultDraft

MERMAID_FENCE_OPEN = "```mermaid"

# Non-greedy so adjacent blocks never merge and a dangling opener is not a block.
MERMAID_BLOCK_RE = re.compile(r"```mermaid[ \t]*\r?\n([\s\S]*?)```")


def fallback_diagram_label(index: int) -> str:
    return f"Diagram {index + 1}"


def extract_mermaid_blocks(full_text: str) -> list[str]:
    return [match.group(1).strip() for match in MERMAID_BLOCK_RE.finditer(full_text or "")]


def extract_summary(full_text: str) -> str:
    return MERMAID_BLOCK_RE.sub("", full_text or "").strip()


def extract_artifacts(full_text: str, diagram_types: list[str]) -> list[AnalysisResultDraft]:
    """
    Split model output into one draft per mermaid block.

    Labels are assigned by position; blocks beyond the requested labels get
    "Diagram N". The text outside the blocks becomes the summary of the first
    draft.
    """
    blocks = extract_mermaid_blocks(full_text)
    drafts = [
        AnalysisResultDraft(
            diagram_type=diagram_types[index] if index < len(diagram_types) else fallback_diagram_label(index),
            mermaid_code=code,
        )
        for index, code in enumerate(blocks)
    ]
    if drafts:
        summary = extract_summary(full_text)
        if summary:
            drafts[0].summary = summary
    return drafts
