from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path

from ..core.errors import RequestFailure
from ..core.portfolio import GetReposOptions, get_repos
from ..core.scheduler import load_scheduler_config_from_env
from ..data.cache import DEFAULT_CACHE_DIR, FileCache, MemoryCache
from ..utils.logging_utils import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gh-portfolio", description="List the published portfolio repositories of a GitHub account")
    sub = parser.add_subparsers(dest="command", required=True)

    repos = sub.add_parser("repos", help="scan an account for repositories with a published repo.config.json")
    repos.add_argument("username", help="GitHub account name")
    repos.add_argument("--token", default=None, help="personal access token (default: GITHUB_TOKEN)")
    repos.add_argument("--max-repos", type=int, default=100, help="maximum number of repositories to check")
    repos.add_argument(
        "--parallel",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="queue all config fetches at once (--no-parallel fetches one repository at a time)",
    )
    repos.add_argument("--cache-ttl", type=float, default=20 * 60, help="cache lifetime in seconds, 0 disables")
    repos.add_argument("--cache-dir", type=Path, default=DEFAULT_CACHE_DIR, help="on-disk cache directory")
    repos.add_argument("--no-disk-cache", action="store_true", help="keep results in memory only")
    repos.add_argument("--output", type=Path, default=None, help="write JSON here instead of stdout")
    repos.add_argument("--min-interval", type=float, default=None, help="minimum seconds between requests")
    repos.add_argument("--max-concurrent", type=int, default=None, help="maximum requests in flight")
    repos.add_argument("--max-retries", type=int, default=None, help="retries per request")
    repos.add_argument("--progress", action="store_true", help="show a progress bar")
    repos.add_argument("--log-level", default="INFO", help="DEBUG/INFO/WARNING/ERROR")
    repos.add_argument("--log-file", type=Path, default=None, help="optional log file")

    clear = sub.add_parser("clear-cache", help="delete cached results")
    clear.add_argument("--cache-dir", type=Path, default=DEFAULT_CACHE_DIR, help="on-disk cache directory")
    clear.add_argument("--log-level", default="INFO", help="DEBUG/INFO/WARNING/ERROR")
    clear.add_argument("--log-file", type=Path, default=None, help="optional log file")

    return parser


def _run_repos(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    config = load_scheduler_config_from_env(
        min_interval_s=args.min_interval,
        max_concurrent=args.max_concurrent,
        max_retries=args.max_retries,
    )
    token = args.token or os.environ.get("GITHUB_TOKEN") or None
    if token is None:
        logger.info("GITHUB_TOKEN not set, using unauthenticated requests (60 requests/hour)")
    options = GetReposOptions(
        token=token,
        max_repos=int(args.max_repos),
        parallel=bool(args.parallel),
        cache_ttl_s=float(args.cache_ttl),
        show_progress=bool(args.progress),
    )
    cache = MemoryCache() if args.no_disk_cache else FileCache(args.cache_dir)
    records = get_repos(args.username, options, cache=cache, scheduler_config=config)

    text = json.dumps(records, ensure_ascii=False, indent=2)
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text + "\n", encoding="utf-8")
        logger.info("saved %s records to %s", len(records), args.output)
    else:
        print(text)
    return 0


def main(argv: list[str] | None = None) -> int:
    logger = logging.getLogger(__name__)
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=str(args.log_level), log_file=args.log_file)

    if args.command == "repos":
        try:
            return _run_repos(args)
        except ValueError as exc:
            logger.error("invalid input: %s", exc)
            return 2
        except RequestFailure as exc:
            logger.error(
                "GitHub request failed kind=%s status=%s attempts=%s: %s",
                exc.kind.value,
                exc.status,
                exc.attempts,
                exc,
            )
            return 1
        except KeyboardInterrupt:
            logger.warning("interrupted")
            return 130
        except Exception:
            logger.exception("unexpected error")
            return 1

    if args.command == "clear-cache":
        removed = FileCache(args.cache_dir).clear()
        logger.info("removed %s cache entries from %s", removed, args.cache_dir)
        return 0

    parser.error(f"unknown command: {args.command}")
    return 2
