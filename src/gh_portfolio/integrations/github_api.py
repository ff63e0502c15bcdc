from __future__ import annotations

import base64
import binascii
import datetime as dt
import json
import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import requests

from ..core.errors import ClientError
from ..core.scheduler import Priority, RequestScheduler, SchedulerConfig
from .http_client import HttpClient

API_BASE_URL = "https://api.github.com"
RAW_BASE_URL = "https://raw.githubusercontent.com"
CONFIG_FILE_PATH = "src/repo.config.json"
DEFAULT_BRANCH = "main"

_UA = "gh-portfolio (+https://github.com)"
logger = logging.getLogger(__name__)


def default_headers(token: str | None = None) -> dict[str, str]:
    headers = {
        "Accept": "application/vnd.github.v3+json",
        "User-Agent": _UA,
    }
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def _parse_iso(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    text = str(value).strip()
    # GitHub timestamps end in "Z", which fromisoformat only accepts from 3.11 on
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


@dataclass(frozen=True)
class Repo:
    name: str
    html_url: str
    fork: bool = False
    archived: bool = False
    updated_at: str | None = None

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> Repo:
        return cls(
            name=str(item.get("name") or ""),
            html_url=str(item.get("html_url") or ""),
            fork=bool(item.get("fork")),
            archived=bool(item.get("archived")),
            updated_at=item.get("updated_at") or None,
        )

    @property
    def updated(self) -> dt.datetime | None:
        return _parse_iso(self.updated_at)


@dataclass(frozen=True)
class RepoMetadata:
    name: str
    url: str
    title: str
    info: str = ""
    public_url: str = ""
    thumbnail: str | None = None
    custom_config: Any = field(default=None, compare=False)


def calculate_repo_priority(repo: Repo, *, now: dt.datetime | None = None) -> int:
    """Recently updated repositories are checked first."""
    updated = repo.updated
    if updated is None:
        return Priority.LOW
    now = now or dt.datetime.now(dt.timezone.utc)
    days = (now - updated).total_seconds() / 86400
    if days < 30:
        return Priority.HIGH
    if days < 180:
        return Priority.MEDIUM
    return Priority.LOW


def repos_url(username: str, *, per_page: int = 100) -> str:
    return f"{API_BASE_URL}/users/{quote(username)}/repos?per_page={int(per_page)}&sort=updated"


def config_url(username: str, repo_name: str) -> str:
    return f"{API_BASE_URL}/repos/{quote(username)}/{quote(repo_name)}/contents/{CONFIG_FILE_PATH}"


def thumbnail_url(username: str, repo_name: str, thumbnail: str, *, branch: str | None = None) -> str:
    return f"{RAW_BASE_URL}/{username}/{repo_name}/{branch or DEFAULT_BRANCH}/{thumbnail.lstrip('/')}"


def decode_config_content(payload: dict[str, Any]) -> dict[str, Any]:
    """Decode the base64 ``content`` of a contents-API response into the JSON config."""
    content = payload.get("content")
    if not isinstance(content, str):
        raise ValueError("contents response has no 'content' field")
    raw = content.replace("\n", "").replace("\r", "")
    try:
        text = base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError(f"config content is not valid base64 UTF-8: {exc}") from exc
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"unexpected config type: {type(data).__name__}")
    return data


def build_repo_metadata(username: str, repo: Repo, config: dict[str, Any]) -> RepoMetadata | None:
    if not config.get("published"):
        return None
    thumb = config.get("thumbnail")
    return RepoMetadata(
        name=repo.name,
        url=repo.html_url,
        title=str(config.get("title") or repo.name),
        info=str(config.get("info") or ""),
        public_url=str(config.get("publicUrl") or ""),
        thumbnail=thumbnail_url(username, repo.name, str(thumb), branch=config.get("branch")) if thumb else None,
        custom_config=config.get("customConfig"),
    )


class GitHubClient:
    """GitHub REST calls routed through a RequestScheduler."""

    def __init__(
        self,
        *,
        token: str | None = None,
        scheduler: RequestScheduler | None = None,
        http: HttpClient | None = None,
        config: SchedulerConfig | None = None,
    ) -> None:
        self.token = token
        self.headers = default_headers(token)
        self.http = http or HttpClient(requests.Session())
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or RequestScheduler(config, name="github")

    def close(self) -> None:
        if self._owns_scheduler:
            self.scheduler.close()

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def submit_get(self, url: str, *, priority: int = Priority.DEFAULT) -> Future:
        headers = dict(self.headers)
        return self.scheduler.schedule(lambda: self.http.get(url, headers=headers), priority)

    def list_repos(self, username: str, *, max_repos: int = 100) -> list[Repo]:
        """List the account's repositories, newest first, without forks or archived ones."""
        resp = self.submit_get(repos_url(username, per_page=max_repos), priority=Priority.CRITICAL).result()
        data = resp.json()
        if not isinstance(data, list):
            raise ValueError(f"unexpected repository list type: {type(data).__name__}")
        repos = [Repo.from_api(item) for item in data if isinstance(item, dict)]
        kept = [r for r in repos if r.name and not r.fork and not r.archived]
        logger.debug("repos listed user=%s total=%s kept=%s", username, len(repos), len(kept))
        return kept[: max(0, int(max_repos))]

    def submit_config_fetch(self, username: str, repo: Repo) -> Future:
        return self.submit_get(config_url(username, repo.name), priority=calculate_repo_priority(repo))


def read_config_response(fut: Future) -> dict[str, Any] | None:
    """Wait for a config fetch; a 404 means the repository has no config file."""
    try:
        resp = fut.result()
    except ClientError as exc:
        if exc.status == 404:
            return None
        raise
    payload = resp.json()
    if not isinstance(payload, dict):
        raise ValueError(f"unexpected contents response type: {type(payload).__name__}")
    return decode_config_content(payload)
