import base64
import binascii
import logging
import re
from collections.abc import Sequence

import httpx

from archscope.agent.artifacts import (
    FetchedFile,
    RepositoryRef,
    RepositorySnapshot,
    RepositoryTreeEntry,
)
from archscope.agent.errors import InvalidReference, UpstreamUnavailable
from archscope.core.config import settings

logger = logging.getLogger(__name__)

PathRule = tuple[str, re.Pattern]

# Ordered for readability only: a path is selected if any rule matches.
KEY_FILE_RULES: list[PathRule] = [
    ("readme", re.compile(r"^readme\.md$", re.IGNORECASE)),
    ("package manifest", re.compile(r"^package\.json$", re.IGNORECASE)),
    ("typescript config", re.compile(r"^tsconfig\.json$", re.IGNORECASE)),
    ("compose file", re.compile(r"^docker-compose\.ya?ml$", re.IGNORECASE)),
    ("dockerfile", re.compile(r"^dockerfile$", re.IGNORECASE)),
    ("env example", re.compile(r"^\.env\.example$", re.IGNORECASE)),
    ("src entrypoint", re.compile(r"^src/(app|main|index)\.(tsx?|jsx?)$", re.IGNORECASE)),
    ("root entrypoint", re.compile(r"^(app|main|server)\.(tsx?|jsx?|py|go|rb)$", re.IGNORECASE)),
    ("routes dir", re.compile(r"^(src/)?routes/", re.IGNORECASE)),
    ("api dir", re.compile(r"^api/", re.IGNORECASE)),
    ("pages dir", re.compile(r"^src/pages/", re.IGNORECASE)),
    ("component index", re.compile(r"^src/components/.*index\.(tsx?|jsx?)$", re.IGNORECASE)),
    ("config dir", re.compile(r"^config/", re.IGNORECASE)),
    ("python requirements", re.compile(r"requirements\.txt$", re.IGNORECASE)),
    ("python project", re.compile(r"pyproject\.toml$", re.IGNORECASE)),
    ("go module", re.compile(r"go\.mod$", re.IGNORECASE)),
    ("cargo manifest", re.compile(r"Cargo\.toml$", re.IGNORECASE)),
    ("maven pom", re.compile(r"(^|/)pom\.xml$", re.IGNORECASE)),
    ("gradle build", re.compile(r"(^|/)build\.gradle(\.kts)?$", re.IGNORECASE)),
    ("gemfile", re.compile(r"(^|/)Gemfile$", re.IGNORECASE)),
    ("composer manifest", re.compile(r"(^|/)composer\.json$", re.IGNORECASE)),
]

REPO_REFERENCE_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?(?P<host>[A-Za-z0-9.-]+\.[A-Za-z]{2,})"
    r"/(?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?(?:/.*)?$"
)


def parse_repository_reference(reference: str, *, host: str | None = None) -> RepositoryRef:
    """
    Pull owner/name out of `<host>/<owner>/<repo>[.git]`, with or without a scheme.

    The host must match `host` (the configured GitHub host by default); all
    fetches go to that host's API.
    """
    expected_host = (host or settings.GITHUB_HOST).lower()
    match = REPO_REFERENCE_RE.match((reference or "").strip())
    if not match or match.group("host").lower() != expected_host:
        raise InvalidReference(reference)
    return RepositoryRef(host=expected_host, owner=match.group("owner"), name=match.group("repo"))


def match_path_rule(path: str, rules: Sequence[PathRule] = KEY_FILE_RULES) -> str | None:
    """Return the name of the first rule matching path, if any."""
    for name, pattern in rules:
        if pattern.search(path):
            return name
    return None


def truncate_content(text: str, *, threshold: int, prefix: int) -> tuple[str, bool]:
    if len(text) > threshold:
        return text[:prefix], True
    return text, False


def _decode_transport_content(payload: dict) -> str | None:
    if not isinstance(payload, dict):
        return None
    if payload.get("encoding") != "base64" or not payload.get("content"):
        return None
    raw = base64.b64decode(payload["content"].replace("\n", ""), validate=False)
    return raw.decode("utf-8", errors="replace")


def render_file_section(file: FetchedFile) -> str:
    if file.truncated:
        return (
            f"--- {file.path} (truncated, {file.original_length} chars) ---\n"
            f"{file.content}\n...[truncated]"
        )
    return f"--- {file.path} ---\n{file.content}"


def render_snapshot_text(
    repository: RepositoryRef, tree: list[RepositoryTreeEntry], files: list[FetchedFile]
) -> str:
    file_tree = "\n".join(entry.path for entry in tree if entry.is_blob)
    sections = [f"=== Repository: {repository.full_name} ===\n\n=== File Tree ===\n{file_tree}\n"]
    sections.extend(render_file_section(file) for file in files)
    return "\n\n".join(sections)


class RepositorySnapshotter:
    """
    Turns a repository URL into one bounded text blob.

    The tree listing is fetched once; then at most `max_files` rule-matching
    blobs are fetched one at a time, in listing order. A failed listing aborts
    the snapshot; a failed file is skipped.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        rules: Sequence[PathRule] | None = None,
        host: str | None = None,
        api_base: str | None = None,
        token: str | None = None,
        max_files: int | None = None,
        truncate_threshold: int | None = None,
        truncate_prefix: int | None = None,
    ):
        self._client = client
        self.rules = list(rules) if rules is not None else list(KEY_FILE_RULES)
        self.host = host or settings.GITHUB_HOST
        self.api_base = (api_base or settings.GITHUB_API_BASE).rstrip("/")
        self.token = token if token is not None else settings.GITHUB_TOKEN
        self.max_files = max_files if max_files is not None else settings.SNAPSHOT_MAX_FILES
        self.truncate_threshold = (
            truncate_threshold if truncate_threshold is not None else settings.SNAPSHOT_TRUNCATE_THRESHOLD
        )
        self.truncate_prefix = (
            truncate_prefix if truncate_prefix is not None else settings.SNAPSHOT_TRUNCATE_PREFIX
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github.v3+json", "User-Agent": "ArchScope"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _repo_url(self, repository: RepositoryRef) -> str:
        return f"{self.api_base}/repos/{repository.owner}/{repository.name}"

    def select_candidates(self, tree: list[RepositoryTreeEntry]) -> list[RepositoryTreeEntry]:
        candidates = [
            entry for entry in tree
            if entry.is_blob and match_path_rule(entry.path, self.rules) is not None
        ]
        if len(candidates) > self.max_files:
            logger.debug(
                "Dropping %s candidates beyond the %s-file cap",
                len(candidates) - self.max_files,
                self.max_files,
            )
        return candidates[: self.max_files]

    async def fetch_tree(
        self, client: httpx.AsyncClient, repository: RepositoryRef
    ) -> list[RepositoryTreeEntry]:
        url = f"{self._repo_url(repository)}/git/trees/HEAD"
        response = await client.get(url, params={"recursive": "1"}, headers=self._headers())
        if not response.is_success:
            raise UpstreamUnavailable(response.status_code, response.text)
        entries = response.json().get("tree") or []
        return [RepositoryTreeEntry.model_validate(entry) for entry in entries]

    async def fetch_file(
        self, client: httpx.AsyncClient, repository: RepositoryRef, path: str
    ) -> FetchedFile | None:
        url = f"{self._repo_url(repository)}/contents/{path}"
        try:
            response = await client.get(url, headers=self._headers())
            if not response.is_success:
                logger.debug("Skipping %s: content fetch returned %s", path, response.status_code)
                return None
            decoded = _decode_transport_content(response.json())
        except (httpx.HTTPError, ValueError, binascii.Error) as exc:
            logger.debug("Skipping %s: %s", path, exc)
            return None

        if decoded is None:
            return None
        content, truncated = truncate_content(
            decoded, threshold=self.truncate_threshold, prefix=self.truncate_prefix
        )
        return FetchedFile(path=path, content=content, original_length=len(decoded), truncated=truncated)

    async def snapshot(self, reference: str) -> RepositorySnapshot:
        repository = parse_repository_reference(reference, host=self.host)
        if self._client is not None:
            return await self._snapshot_with(self._client, repository)

        timeout = httpx.Timeout(settings.HTTP_READ_TIMEOUT, connect=settings.HTTP_CONNECT_TIMEOUT)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await self._snapshot_with(client, repository)

    async def _snapshot_with(
        self, client: httpx.AsyncClient, repository: RepositoryRef
    ) -> RepositorySnapshot:
        logger.info("Fetching tree for %s", repository.full_name)
        try:
            tree = await self.fetch_tree(client, repository)
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable(0, str(exc)) from exc

        candidates = self.select_candidates(tree)
        files: list[FetchedFile] = []
        skipped: list[str] = []
        for entry in candidates:
            fetched = await self.fetch_file(client, repository, entry.path)
            if fetched is None:
                skipped.append(entry.path)
            else:
                files.append(fetched)

        logger.info(
            "Snapshot of %s: %s tree entries, %s candidates, %s fetched, %s skipped",
            repository.full_name,
            len(tree),
            len(candidates),
            len(files),
            len(skipped),
        )
        return RepositorySnapshot(
            repository=repository,
            tree=tree,
            selected_paths=[entry.path for entry in candidates],
            files=files,
            skipped_paths=skipped,
            text=render_snapshot_text(repository, tree, files),
        )
