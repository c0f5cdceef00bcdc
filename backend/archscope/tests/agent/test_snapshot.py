import base64
import re

import httpx
import pytest

from archscope.agent.errors import InvalidReference, UpstreamUnavailable
from archscope.agent.snapshot import (
    KEY_FILE_RULES,
    RepositorySnapshotter,
    match_path_rule,
    parse_repository_reference,
)

API = "https://api.github.test"


def _content_payload(text: str) -> dict:
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    # The contents API wraps base64 at 60 columns.
    wrapped = "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60))
    return {"encoding": "base64", "content": wrapped}


class FakeGitHub:
    def __init__(self, tree: list[dict], contents: dict[str, object], tree_status: int = 200):
        self.tree = tree
        self.contents = contents
        self.tree_status = tree_status
        self.content_requests: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/git/trees/HEAD"):
            assert request.url.params["recursive"] == "1"
            if self.tree_status != 200:
                return httpx.Response(self.tree_status, text="Not Found")
            return httpx.Response(200, json={"sha": "abc", "tree": self.tree, "truncated": False})

        prefix = "/repos/acme/shop/contents/"
        assert path.startswith(prefix)
        file_path = path[len(prefix):]
        self.content_requests.append(file_path)
        value = self.contents.get(file_path)
        if isinstance(value, httpx.Response):
            return value
        if isinstance(value, dict):
            return httpx.Response(200, json=value)
        if value is None:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json=_content_payload(value))


def _snapshotter(fake: FakeGitHub, **kwargs) -> RepositorySnapshotter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    return RepositorySnapshotter(
        client,
        api_base=API,
        token="",
        max_files=kwargs.pop("max_files", 30),
        truncate_threshold=kwargs.pop("truncate_threshold", 10_000),
        truncate_prefix=kwargs.pop("truncate_prefix", 5_000),
        **kwargs,
    )


def _blob(path: str, size: int = 10) -> dict:
    return {"path": path, "type": "blob", "size": size}


@pytest.mark.parametrize(
    ("reference", "owner", "name"),
    [
        ("https://github.com/acme/shop", "acme", "shop"),
        ("https://github.com/acme/shop.git", "acme", "shop"),
        ("github.com/acme/shop/", "acme", "shop"),
        ("http://www.github.com/acme/shop/tree/main/src", "acme", "shop"),
        ("https://GitHub.com/team/svc.api.git", "team", "svc.api"),
    ],
)
def test_parse_repository_reference(reference, owner, name):
    repo = parse_repository_reference(reference)

    assert (repo.owner, repo.name) == (owner, name)


@pytest.mark.parametrize(
    "reference",
    [
        "",
        "acme/shop",
        "https://github.com/acme",
        "not a url at all",
        "https://gitlab.com/acme/shop",
        "https://github.com.evil.org/acme/shop",
    ],
)
def test_parse_repository_reference_rejects_bad_shapes(reference):
    with pytest.raises(InvalidReference):
        parse_repository_reference(reference)


@pytest.mark.parametrize(
    ("path", "selected"),
    [
        ("README.md", True),
        ("readme.MD", True),
        ("docs/README.md", False),
        ("Dockerfile", True),
        (".env.example", True),
        ("src/main.tsx", True),
        ("server.go", True),
        ("routes/users.js", True),
        ("src/routes/index.ts", True),
        ("api/handlers/user.py", True),
        ("services/billing/requirements.txt", True),
        ("backend/pyproject.toml", True),
        ("src/utils/helpers.ts", False),
        ("lib/app.py", False),
    ],
)
def test_match_path_rule(path, selected):
    assert (match_path_rule(path) is not None) is selected


def test_rules_are_pluggable():
    rules = [*KEY_FILE_RULES, ("mix project", re.compile(r"(^|/)mix\.exs$", re.IGNORECASE))]

    assert match_path_rule("mix.exs") is None
    assert match_path_rule("mix.exs", rules) == "mix project"


@pytest.mark.asyncio
async def test_snapshot_caps_fetches_at_thirty_in_listing_order():
    paths = [f"routes/handler_{i:02d}.py" for i in range(40)]
    fake = FakeGitHub(
        tree=[{"path": "routes", "type": "tree"}, *[_blob(p) for p in paths]],
        contents={p: f"# {p}" for p in paths},
    )

    snapshot = await _snapshotter(fake).snapshot("https://github.com/acme/shop")

    assert fake.content_requests == paths[:30]
    assert snapshot.selected_paths == paths[:30]
    assert len(snapshot.files) == 30
    # The listing is unfiltered, so dropped candidates still appear in the tree.
    assert "routes/handler_39.py" in snapshot.text
    assert "--- routes/handler_39.py ---" not in snapshot.text


@pytest.mark.asyncio
async def test_snapshot_truncates_large_files():
    fake = FakeGitHub(
        tree=[_blob("README.md", 12_000), _blob("package.json")],
        contents={"README.md": "x" * 12_000, "package.json": '{"name": "shop"}'},
    )

    snapshot = await _snapshotter(fake).snapshot("https://github.com/acme/shop")

    readme = snapshot.files[0]
    assert readme.truncated is True
    assert readme.original_length == 12_000
    assert len(readme.content) == 5_000
    assert "--- README.md (truncated, 12000 chars) ---\n" + "x" * 5_000 + "\n...[truncated]" in snapshot.text
    assert "x" * 5_001 not in snapshot.text
    assert '--- package.json ---\n{"name": "shop"}' in snapshot.text


@pytest.mark.asyncio
async def test_snapshot_text_layout():
    fake = FakeGitHub(
        tree=[_blob("README.md"), _blob("src/lib/util.ts"), {"path": "src", "type": "tree"}],
        contents={"README.md": "# Shop"},
    )

    snapshot = await _snapshotter(fake).snapshot("https://github.com/acme/shop.git")

    assert snapshot.text == (
        "=== Repository: acme/shop ===\n\n"
        "=== File Tree ===\nREADME.md\nsrc/lib/util.ts\n\n\n"
        "--- README.md ---\n# Shop"
    )
    assert fake.content_requests == ["README.md"]


@pytest.mark.asyncio
async def test_individual_file_failures_are_skipped():
    fake = FakeGitHub(
        tree=[_blob("README.md"), _blob("package.json"), _blob("Dockerfile"), _blob("go.mod")],
        contents={
            "README.md": httpx.Response(500, text="boom"),
            "package.json": {"encoding": "none", "content": ""},
            "Dockerfile": "FROM python:3.12",
            # go.mod missing -> 404
        },
    )

    snapshot = await _snapshotter(fake).snapshot("https://github.com/acme/shop")

    assert [f.path for f in snapshot.files] == ["Dockerfile"]
    assert snapshot.skipped_paths == ["README.md", "package.json", "go.mod"]
    assert "--- Dockerfile ---\nFROM python:3.12" in snapshot.text


@pytest.mark.asyncio
async def test_tree_failure_is_terminal():
    fake = FakeGitHub(tree=[], contents={}, tree_status=404)

    with pytest.raises(UpstreamUnavailable) as exc_info:
        await _snapshotter(fake).snapshot("https://github.com/acme/shop")

    assert exc_info.value.status == 404
    assert fake.content_requests == []


@pytest.mark.asyncio
async def test_invalid_reference_makes_no_requests():
    fake = FakeGitHub(tree=[], contents={})

    with pytest.raises(InvalidReference):
        await _snapshotter(fake).snapshot("https://github.com/acme")

    assert fake.content_requests == []


@pytest.mark.asyncio
async def test_token_is_sent_when_configured():
    seen: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(200, json={"tree": []})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    snapshotter = RepositorySnapshotter(client, api_base=API, token="secret")

    await snapshotter.snapshot("https://github.com/acme/shop")

    assert seen == ["Bearer secret"]


def test_parse_repository_reference_accepts_configured_host():
    repo = parse_repository_reference("https://git.corp.example/platform/billing", host="git.corp.example")

    assert (repo.host, repo.owner, repo.name) == ("git.corp.example", "platform", "billing")
    with pytest.raises(InvalidReference):
        parse_repository_reference("https://github.com/platform/billing", host="git.corp.example")


@pytest.mark.asyncio
async def test_foreign_host_is_rejected_without_requests():
    fake = FakeGitHub(tree=[_blob("README.md")], contents={"README.md": "# Shop"})

    with pytest.raises(InvalidReference):
        await _snapshotter(fake).snapshot("https://gitlab.com/acme/shop")

    assert fake.content_requests == []
