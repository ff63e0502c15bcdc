import base64
import datetime as dt
import json
from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_response
from gh_portfolio.core.errors import ClientError
from gh_portfolio.core.portfolio import GetReposOptions, get_repos, validate_username
from gh_portfolio.core.scheduler import RequestScheduler, SchedulerConfig
from gh_portfolio.data.cache import MemoryCache
from gh_portfolio.integrations.github_api import GitHubClient, config_url, repos_url
from gh_portfolio.integrations.http_client import HttpClient


def _iso(days_ago):
    return (dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=days_ago)).isoformat()


def _contents(config):
    return {"content": base64.encodebytes(json.dumps(config).encode("utf-8")).decode("ascii")}


REPOS = [
    {"name": "site", "html_url": "https://github.com/alice/site", "updated_at": _iso(3)},
    {"name": "old-tool", "html_url": "https://github.com/alice/old-tool", "updated_at": _iso(400)},
    {"name": "draft", "html_url": "https://github.com/alice/draft", "updated_at": _iso(60)},
    {"name": "no-config", "html_url": "https://github.com/alice/no-config", "updated_at": _iso(10)},
    {"name": "broken", "html_url": "https://github.com/alice/broken", "updated_at": _iso(10)},
    {"name": "forked", "html_url": "https://github.com/alice/forked", "fork": True},
    {"name": "attic", "html_url": "https://github.com/alice/attic", "archived": True},
]


def _routes():
    return {
        repos_url("alice", per_page=100): make_response(200, body=REPOS),
        config_url("alice", "site"): make_response(
            200, body=_contents({"published": True, "title": "Site", "thumbnail": "thumb.png"})
        ),
        config_url("alice", "old-tool"): make_response(200, body=_contents({"published": True, "info": "legacy"})),
        config_url("alice", "draft"): make_response(200, body=_contents({"published": False})),
        config_url("alice", "no-config"): make_response(404),
        config_url("alice", "broken"): make_response(200, body={"content": "%%%"}),
    }


@pytest.fixture
def session():
    routes = _routes()
    sess = MagicMock(spec=requests.Session)

    def request(method, url, headers=None, timeout=None, **kwargs):
        if url not in routes:
            raise AssertionError(f"unexpected url {url}")
        return routes[url]

    sess.request.side_effect = request
    return sess


@pytest.fixture
def client(session):
    scheduler = RequestScheduler(SchedulerConfig(min_interval_s=0.0, max_concurrent=3, max_retries=0))
    gh = GitHubClient(token="secret", scheduler=scheduler, http=HttpClient(session))
    yield gh
    scheduler.close()


@pytest.mark.parametrize("parallel", [True, False])
def test_get_repos_returns_published_records(client, parallel):
    progress = []
    opts = GetReposOptions(token="secret", parallel=parallel, on_progress=lambda *a: progress.append(a))
    records = get_repos("alice", opts, client=client, cache=MemoryCache())

    assert sorted(r["name"] for r in records) == ["old-tool", "site"]
    site = next(r for r in records if r["name"] == "site")
    assert site["title"] == "Site"
    assert site["url"] == "https://github.com/alice/site"
    assert site["thumbnail"] == "https://raw.githubusercontent.com/alice/site/main/thumb.png"
    old = next(r for r in records if r["name"] == "old-tool")
    assert old["title"] == "old-tool"
    assert old["info"] == "legacy"
    assert "thumbnail" not in old

    assert len(progress) == 5
    assert progress[-1][:2] == (5, 5)


def test_forks_and_archived_repos_are_not_fetched(client, session):
    get_repos("alice", GetReposOptions(token="secret"), client=client, cache=MemoryCache())
    fetched = [c.args[1] for c in session.request.call_args_list]
    assert config_url("alice", "forked") not in fetched
    assert config_url("alice", "attic") not in fetched
    assert len(fetched) == 6


def test_authorization_header_sent(client, session):
    get_repos("alice", "secret", client=client, cache=MemoryCache())
    for call in session.request.call_args_list:
        assert call.kwargs["headers"]["Authorization"] == "token secret"


def test_results_are_cached_per_auth_mode(client, session):
    cache = MemoryCache()
    first = get_repos("alice", GetReposOptions(token="secret"), client=client, cache=cache)
    calls = session.request.call_count
    second = get_repos("alice", GetReposOptions(token="secret"), client=client, cache=cache)
    assert second == first
    assert session.request.call_count == calls

    get_repos("alice", GetReposOptions(token=None), client=client, cache=cache)
    assert session.request.call_count > calls


def test_zero_ttl_disables_cache(client, session):
    cache = MemoryCache()
    opts = GetReposOptions(token="secret", cache_ttl_s=0)
    get_repos("alice", opts, client=client, cache=cache)
    calls = session.request.call_count
    get_repos("alice", opts, client=client, cache=cache)
    assert session.request.call_count == 2 * calls


def test_max_repos_limits_config_fetches(client, session):
    routes = _routes()
    routes[repos_url("alice", per_page=2)] = routes[repos_url("alice", per_page=100)]
    session.request.side_effect = lambda method, url, **kw: routes[url]
    records = get_repos("alice", GetReposOptions(max_repos=2), client=client, cache=MemoryCache())
    assert [r["name"] for r in records] == ["site", "old-tool"]
    assert session.request.call_count == 3


def test_listing_failure_propagates(client, session):
    session.request.side_effect = lambda method, url, **kw: make_response(404)
    with pytest.raises(ClientError) as info:
        get_repos("ghost", GetReposOptions(), client=client, cache=MemoryCache())
    assert info.value.status == 404


@pytest.mark.parametrize("name", ["alice", "a", "alice-bob", "A1-b2", "  alice  "])
def test_valid_usernames(name):
    assert validate_username(name) == name.strip()


@pytest.mark.parametrize("name", ["", "   ", None, "-alice", "alice-", "al--ice", "al_ice", "a" * 40])
def test_invalid_usernames(name):
    with pytest.raises(ValueError):
        validate_username(name)
