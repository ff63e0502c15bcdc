from __future__ import annotations

import dataclasses
import logging
import re
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable

from tqdm import tqdm

from ..data.cache import MemoryCache, ResultCache, cache_key
from ..integrations.github_api import (
    GitHubClient,
    Repo,
    RepoMetadata,
    build_repo_metadata,
    read_config_response,
)
from .scheduler import SchedulerConfig

_USERNAME_RE = re.compile(r"^[a-z\d](?:[a-z\d]|-(?=[a-z\d])){0,38}$", re.IGNORECASE)
logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

# process-wide default so repeated calls share results, like a browser session would
_memory_cache = MemoryCache()


@dataclass
class GetReposOptions:
    token: str | None = None
    max_repos: int = 100
    parallel: bool = True
    cache_ttl_s: float = 20 * 60
    on_progress: ProgressCallback | None = None
    show_progress: bool = False


def validate_username(username: object) -> str:
    if not isinstance(username, str) or not username.strip():
        raise ValueError("Username is required and must be a non-empty string")
    clean = username.strip()
    if not _USERNAME_RE.match(clean):
        raise ValueError(f"Invalid GitHub username format: {clean!r}")
    return clean


def _coerce_options(options: str | GetReposOptions | None) -> GetReposOptions:
    if options is None:
        return GetReposOptions()
    if isinstance(options, str):
        return GetReposOptions(token=options)
    return options


def _report(opts: GetReposOptions, pbar: tqdm | None, done: int, total: int, name: str) -> None:
    if pbar is not None:
        pbar.update(1)
    if opts.on_progress is not None:
        opts.on_progress(done, total, name)


def _collect(username: str, repo: Repo, fut: Future) -> RepoMetadata | None:
    try:
        config = read_config_response(fut)
    except Exception as exc:  # noqa: BLE001
        logger.warning("skipping repo=%s err=%s", repo.name, str(exc)[:200])
        return None
    if config is None:
        return None
    return build_repo_metadata(username, repo, config)


def _to_record(meta: RepoMetadata) -> dict[str, Any]:
    record = dataclasses.asdict(meta)
    # repos without a configured thumbnail carry no key at all
    if record.get("thumbnail") is None:
        record.pop("thumbnail", None)
    return record


def _process_parallel(client: GitHubClient, username: str, repos: list[Repo], opts: GetReposOptions) -> list[RepoMetadata]:
    # every config fetch is queued up front; the scheduler orders them by freshness
    futures = [(repo, client.submit_config_fetch(username, repo)) for repo in repos]
    out: list[RepoMetadata] = []
    pbar = tqdm(total=len(repos), desc="repos", unit="repo") if opts.show_progress else None
    try:
        for i, (repo, fut) in enumerate(futures, start=1):
            meta = _collect(username, repo, fut)
            _report(opts, pbar, i, len(repos), repo.name)
            if meta is not None:
                out.append(meta)
    finally:
        if pbar is not None:
            pbar.close()
    return out


def _process_sequential(client: GitHubClient, username: str, repos: list[Repo], opts: GetReposOptions) -> list[RepoMetadata]:
    out: list[RepoMetadata] = []
    pbar = tqdm(total=len(repos), desc="repos", unit="repo") if opts.show_progress else None
    try:
        for i, repo in enumerate(repos, start=1):
            meta = _collect(username, repo, client.submit_config_fetch(username, repo))
            _report(opts, pbar, i, len(repos), repo.name)
            if meta is not None:
                out.append(meta)
    finally:
        if pbar is not None:
            pbar.close()
    return out


def get_repos(
    username: str,
    options: str | GetReposOptions | None = None,
    *,
    client: GitHubClient | None = None,
    cache: ResultCache | None = None,
    scheduler_config: SchedulerConfig | None = None,
) -> list[dict[str, Any]]:
    """
    Find the repositories of ``username`` whose ``src/repo.config.json`` marks them
    as published, and return their display records as plain dicts.

    Passing a string as ``options`` is shorthand for ``GetReposOptions(token=...)``.
    Results are cached per account and auth mode for ``cache_ttl_s`` seconds.
    """
    clean = validate_username(username)
    opts = _coerce_options(options)
    cache = cache if cache is not None else _memory_cache
    key = cache_key(clean, authenticated=bool(opts.token))

    cached = cache.get(key, opts.cache_ttl_s)
    if cached is not None:
        logger.info("serving %s from cache (%s repos)", clean, len(cached))
        return cached

    owned = client is None
    gh = client or GitHubClient(token=opts.token, config=scheduler_config)
    try:
        repos = gh.list_repos(clean, max_repos=opts.max_repos)
        logger.info("scanning %s repositories of %s for portfolio configs", len(repos), clean)
        if opts.parallel:
            found = _process_parallel(gh, clean, repos, opts)
        else:
            found = _process_sequential(gh, clean, repos, opts)
    finally:
        if owned:
            gh.close()

    records = [_to_record(m) for m in found]
    cache.set(key, records)
    logger.info("found %s published repositories for %s", len(records), clean)
    return records
