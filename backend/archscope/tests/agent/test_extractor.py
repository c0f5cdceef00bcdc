import pytest

from archscope.agent.extractor import extract_artifacts, extract_mermaid_blocks, extract_summary


def _block(body: str) -> str:
    return f"```mermaid\n{body}\n```"


COMPONENT = "graph TD\n  api[API] --> db[DB]"
SEQUENCE = "sequenceDiagram\n  Client->>API: GET /items"


def test_no_blocks_means_no_results_and_no_summary():
    text = "The repository is a small CLI.\n```python\nprint('hi')\n```"

    assert extract_artifacts(text, ["Component Diagram"]) == []


def test_blocks_are_labelled_by_position_and_summary_goes_to_first():
    text = f"{_block(COMPONENT)}\n\n{_block(SEQUENCE)}\n\nPattern: layered architecture."

    drafts = extract_artifacts(text, ["Component Diagram", "Sequence Diagram"])

    assert [d.diagram_type for d in drafts] == ["Component Diagram", "Sequence Diagram"]
    assert [d.mermaid_code for d in drafts] == [COMPONENT, SEQUENCE]
    assert drafts[0].summary == "Pattern: layered architecture."
    assert drafts[1].summary is None


@pytest.mark.parametrize(
    ("blocks", "labels"),
    [(0, 2), (1, 3), (2, 2), (3, 1), (4, 0)],
)
def test_label_assignment_counts(blocks, labels):
    requested = [f"Kind {i}" for i in range(labels)]
    text = "\n".join(_block(f"graph TD\n  n{i}") for i in range(blocks))

    drafts = extract_artifacts(text, requested)

    assert len(drafts) == blocks
    positional = [d for d in drafts if d.diagram_type.startswith("Kind ")]
    fallback = [d.diagram_type for d in drafts if d.diagram_type.startswith("Diagram ")]
    assert len(positional) == min(blocks, labels)
    assert fallback == [f"Diagram {i + 1}" for i in range(labels, blocks)]


def test_dangling_opening_fence_does_not_swallow_the_rest():
    text = (
        f"Intro.\n{_block(COMPONENT)}\nBetween.\n{_block(SEQUENCE)}\n"
        "```mermaid\ngraph LR\n  a --> b\nTrailing notes."
    )

    drafts = extract_artifacts(text, ["Component Diagram", "Sequence Diagram", "Data Flow"])

    assert [d.mermaid_code for d in drafts] == [COMPONENT, SEQUENCE]
    assert "Trailing notes." in drafts[0].summary
    assert drafts[0].summary.startswith("Intro.")


def test_adjacent_blocks_do_not_merge():
    text = _block("graph TD\n  a") + _block("graph TD\n  b")

    assert extract_mermaid_blocks(text) == ["graph TD\n  a", "graph TD\n  b"]


def test_blank_summary_is_not_attached():
    drafts = extract_artifacts(f"  \n{_block(COMPONENT)}\n\n", ["Component Diagram"])

    assert len(drafts) == 1
    assert drafts[0].summary is None


def test_extraction_is_deterministic():
    text = f"{_block(COMPONENT)}\nSummary.\n{_block(SEQUENCE)}"
    labels = ["Component Diagram"]

    assert extract_artifacts(text, labels) == extract_artifacts(text, labels)
    assert extract_summary(text) == "Summary."
