"""Getting the failing source: a local file, or the reproduction in a GitHub issue."""

import json
import os
import re
import urllib.error
import urllib.request

from attrs import define

from icemelter.errors import RetrievalError, SetupError


ISSUE_NUMBER = re.compile(r"^#(\d+)")
TOKEN_ENV_VAR = "GITHUB_TOKEN"


@define(frozen=True)
class Issue:
    number: int
    body: str


class GitHubClient:
    """A long-lived client for the GitHub issues API.

    Construct one explicitly and pass it to ``retrieve``.
    """

    def __init__(
        self,
        token: str,
        repository: str = "rust-lang/rust",
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
    ):
        self.token = token
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_env(cls, **kwargs) -> "GitHubClient":
        token = os.environ.get(TOKEN_ENV_VAR, "")
        if not token:
            raise SetupError(f"Missing {TOKEN_ENV_VAR} environment variable")
        return cls(token, **kwargs)

    def get_json(self, path: str) -> object:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "icemelter",
            "Authorization": f"Bearer {self.token}",
        }
        req = urllib.request.Request(f"{self.api_url}{path}", headers=headers, method="GET")
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            raw = resp.read()
        return json.loads(raw.decode("utf-8", errors="replace"))

    def get_issue(self, number: int) -> Issue:
        try:
            payload = self.get_json(f"/repos/{self.repository}/issues/{number}")
        except urllib.error.HTTPError as e:
            raise RetrievalError(f"Failed to retrieve issue #{number}: HTTP {e.code}") from e
        except urllib.error.URLError as e:
            raise RetrievalError(f"Failed to retrieve issue #{number}: {e.reason}") from e
        except (OSError, ValueError) as e:
            raise RetrievalError(f"Failed to retrieve issue #{number}: {e}") from e
        if not isinstance(payload, dict):
            raise RetrievalError(f"Unexpected response for issue #{number}")
        return Issue(number=int(payload.get("number", number)), body=payload.get("body") or "")


def extract_reproduction(body: str) -> str:
    """The first ```rust block under the issue template's "### Code" heading."""
    in_code_section = False
    in_code = False
    reproduction: list[str] = []
    for line in body.splitlines():
        if in_code:
            if line.startswith("```"):
                return "\n".join(reproduction)
            reproduction.append(line)
            continue
        if line.startswith("### Code"):
            in_code_section = True
        elif line.startswith("#"):
            in_code_section = False
        elif in_code_section and line.lower().startswith("```rust"):
            in_code = True
    if in_code:
        return "\n".join(reproduction)
    raise RetrievalError("No Rust code block found under the issue's Code heading")


def read_file(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise RetrievalError(f"Failed to read file {path}: {e}") from e


def retrieve(source: str, client: GitHubClient | None = None) -> str:
    """Source text for a file path, or for an issue number written ``#1234``."""
    m = ISSUE_NUMBER.match(source)
    if m is None:
        return read_file(source)
    if client is None:
        client = GitHubClient.from_env()
    return extract_reproduction(client.get_issue(int(m.group(1))).body)
