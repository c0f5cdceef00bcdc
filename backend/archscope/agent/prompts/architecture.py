DIAGRAM_INSTRUCTIONS = {
    "Component Diagram": "A Mermaid graph TD component diagram showing major components and their relationships",
    "Sequence Diagram": "A Mermaid sequenceDiagram showing key request/response flows",
    "Data Flow": "A Mermaid flowchart showing data flow between systems",
    "Class Diagram": "A Mermaid classDiagram showing key classes/models and relationships",
    "Deployment Diagram": "A Mermaid graph showing deployment architecture (servers, services, databases)",
}

ARCHITECTURE_SYSTEM_PROMPT = """
You are an expert software architect. Analyze the provided codebase and documentation to understand the architecture.

Focus area: {focus}

Generate the following diagrams as valid Mermaid code blocks (each wrapped in ```mermaid ... ```), in this order:
- {diagram_instructions}

Also provide a structured summary including:
- Detected architectural patterns (MVC, microservices, monolith, event-driven, layered, etc.)
- Key components and their responsibilities
- Technology stack
- Dependencies and integrations
- Data flow overview

Rules:
- Use VALID Mermaid syntax. Check each diagram before outputting it.
- Keep node labels short and avoid characters that break Mermaid.
- Use simple alphanumeric IDs for nodes (e.g., A, B, C or api, db, auth).
- Wrap labels in square brackets for graph diagrams: A[Label Text]
- Do NOT use parentheses or quotes inside node labels.
- Each diagram must be in its own ```mermaid code block.
- Provide the summary text AFTER the diagrams.
"""

ARCHITECTURE_USER_PROMPT = "Analyze this codebase:\n\n{content}"


def diagram_instruction(label: str) -> str:
    return DIAGRAM_INSTRUCTIONS.get(label, f"A Mermaid diagram for: {label}")


def build_system_prompt(focus: str, diagram_types: list[str]) -> str:
    instructions = "\n- ".join(diagram_instruction(label) for label in diagram_types)
    return ARCHITECTURE_SYSTEM_PROMPT.format(focus=focus, diagram_instructions=instructions).strip()
