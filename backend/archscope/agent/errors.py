class AnalysisError(Exception):
    """Base class for failures raised by the analysis pipeline."""


class InvalidReference(AnalysisError):
    """The repository URL does not look like <host>/<owner>/<repo>[.git]."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Invalid repository reference: {reference!r}")


class UpstreamUnavailable(AnalysisError):
    """The repository tree listing could not be fetched."""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"Source host error: {status} {body}".strip())


class PartialFetchFailure(AnalysisError):
    """
    A single file or a single repository source could not be fetched.

    Never escapes a run: the orchestrator records it inline as placeholder text.
    """

    def __init__(self, target: str, reason: str = ""):
        self.target = target
        self.reason = reason
        super().__init__(f"Failed to fetch {target}")


class ModelRequestFailed(AnalysisError):
    """The model service answered with a non-2xx status."""

    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    UPSTREAM = "upstream"

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        if status == 429:
            self.kind = self.RATE_LIMIT
            message = "Rate limit exceeded. Please try again later."
        elif status == 402:
            self.kind = self.QUOTA
            message = "Payment required. Please add credits."
        else:
            self.kind = self.UPSTREAM
            message = f"Model service error: {status}"
        super().__init__(message)


class RunInProgress(AnalysisError):
    """Another run claimed the project lease first."""

    def __init__(self, project_id):
        self.project_id = project_id
        super().__init__(f"Another analysis run owns project {project_id}")


class ProjectNotFound(AnalysisError, LookupError):
    def __init__(self, project_id):
        self.project_id = project_id
        super().__init__(f"Project {project_id} not found")
