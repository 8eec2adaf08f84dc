"""Sourcegraph GraphQL client: keyword search, file content, definitions."""

import json
import urllib.error
import urllib.request
from dataclasses import asdict, dataclass, field

from .report import CollaboratorError

DEFAULT_ENDPOINT = "https://sourcegraph.com/.api/graphql"
DEFAULT_TIMEOUT = 30
USER_AGENT = "sourcemapt"

SEARCH_FILES_QUERY = """
query SearchFiles($query: String!) {
  search(query: $query, version: V2) {
    results {
      results {
        __typename
        ... on FileMatch {
          file { path url }
          lineMatches { lineNumber preview }
        }
      }
    }
  }
}
"""

FILE_CONTENT_QUERY = """
query FileContent($repo: String!, $rev: String!, $path: String!) {
  repository(name: $repo) {
    commit(rev: $rev) {
      file(path: $path) { content }
    }
  }
}
"""

DEFINITION_QUERY = """
query Definition($repo: String!, $rev: String!, $path: String!, $line: Int!, $character: Int!) {
  repository(name: $repo) {
    commit(rev: $rev) {
      blob(path: $path) {
        lsif {
          definitions(line: $line, character: $character) {
            nodes {
              resource {
                path
                repository { name }
                commit { oid }
              }
              range {
                start { line character }
                end { line character }
              }
            }
          }
        }
      }
    }
  }
}
"""


@dataclass
class LineMatch:
    line_number: int
    preview: str


@dataclass
class FileMatch:
    path: str
    url: str
    lines: list[LineMatch] = field(default_factory=list)


@dataclass
class SearchFilesResult:
    files: list[FileMatch] = field(default_factory=list)

    def to_json(self) -> str:
        return json.dumps(asdict(self))


@dataclass
class Resource:
    path: str
    repo: str
    revision: str


@dataclass
class Range:
    line_start: int
    char_start: int
    line_end: int
    char_end: int


@dataclass
class Definition:
    resource: Resource
    range: Range


@dataclass
class DefinitionResult:
    definitions: list[Definition]


def build_search_query(repo: str, keywords) -> str:
    """Scope an OR-search over *keywords* to exactly *repo*."""
    query = "repo:^{}$".format(repo.replace(".", r"\."))
    terms = " OR ".join(f"({k})" for k in keywords)
    return f"{query} {terms}" if terms else query


def _dig(data, *keys, what: str):
    """Walk nested dicts, raising CollaboratorError on a missing level."""
    for key in keys:
        if not isinstance(data, dict) or data.get(key) is None:
            raise CollaboratorError(f"sourcegraph response is missing {what} ({key})")
        data = data[key]
    return data


class SourcegraphClient:
    """Thin GraphQL client. One HTTP round-trip per call, no caching."""

    def __init__(
        self,
        token: str | None = None,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.token = token
        self.endpoint = endpoint
        self.timeout = timeout

    def post(self, query: str, variables: dict) -> dict:
        """Run a GraphQL document and return its ``data`` object."""
        body = json.dumps({"query": query, "variables": variables}).encode()
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        req = urllib.request.Request(
            self.endpoint, data=body, headers=headers, method="POST"
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise CollaboratorError(f"sourcegraph returned HTTP {e.code}: {e.reason}")
        except (urllib.error.URLError, OSError) as e:
            raise CollaboratorError(f"could not reach sourcegraph at {self.endpoint}: {e}")

        try:
            payload = json.loads(raw.decode("utf-8", errors="replace"))
        except json.JSONDecodeError as e:
            raise CollaboratorError(f"invalid JSON from sourcegraph: {e}")

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            messages = "; ".join(str(err.get("message", err)) for err in errors)
            raise CollaboratorError(f"sourcegraph query failed: {messages}")
        return _dig(payload, "data", what="data")

    def search_files(self, repo: str, keywords) -> SearchFilesResult:
        data = self.post(
            SEARCH_FILES_QUERY, {"query": build_search_query(repo, keywords)}
        )
        search = data.get("search")
        if not search:
            return SearchFilesResult()

        results = _dig(search, "results", "results", what="search results")
        files = []
        try:
            for result in results:
                # Commit and repository matches carry no file lines.
                if result.get("__typename") != "FileMatch":
                    continue
                files.append(
                    FileMatch(
                        path=result["file"]["path"],
                        url=result["file"]["url"],
                        lines=[
                            LineMatch(
                                line_number=lm["lineNumber"], preview=lm["preview"]
                            )
                            for lm in result.get("lineMatches") or []
                        ],
                    )
                )
        except (KeyError, TypeError, AttributeError) as e:
            raise CollaboratorError(f"malformed search result from sourcegraph: {e!r}")
        return SearchFilesResult(files=files)

    def get_file_content(self, repo: str, revision: str, path: str) -> str:
        data = self.post(FILE_CONTENT_QUERY, {"repo": repo, "rev": revision, "path": path})
        repository = _dig(data, "repository", what=f"repository {repo}")
        commit = _dig(repository, "commit", what=f"revision {revision}")
        file = _dig(commit, "file", what=f"file {path}")
        return file.get("content") or ""

    def get_definition(
        self, repo: str, revision: str, path: str, line: int, char: int
    ) -> DefinitionResult | None:
        """Look up the definition of the symbol at (*line*, *char*).

        Returns None when code intelligence has no definition for it.
        """
        data = self.post(
            DEFINITION_QUERY,
            {
                "repo": repo,
                "rev": revision,
                "path": path,
                "line": line,
                "character": char,
            },
        )
        try:
            nodes = data["repository"]["commit"]["blob"]["lsif"]["definitions"]["nodes"]
        except (KeyError, TypeError):
            return None
        if not nodes:
            return None

        definitions = []
        try:
            for node in nodes:
                res = node["resource"]
                rng = node["range"]
                definitions.append(
                    Definition(
                        resource=Resource(
                            path=res["path"],
                            repo=res["repository"]["name"],
                            revision=res["commit"]["oid"],
                        ),
                        range=Range(
                            line_start=rng["start"]["line"],
                            char_start=rng["start"]["character"],
                            line_end=rng["end"]["line"],
                            char_end=rng["end"]["character"],
                        ),
                    )
                )
        except (KeyError, TypeError) as e:
            raise CollaboratorError(f"malformed definition from sourcegraph: {e!r}")
        return DefinitionResult(definitions=definitions)
