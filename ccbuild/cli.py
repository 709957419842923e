"""cc-build command line interface.

Usage:
  cc-build list  [--base-url URL] [--project-id ID] [--environment-id ID] [--token T]
                 [--limit N] [--include-non-deletable] [--json]
  cc-build prune --older-than 30d [--limit N] [--max N] [--dry-run] [connection options]

Connection options default to CC_BASE_URL, CC_PROJECT_ID, CC_ENVIRONMENT_ID
and CC_TOKEN. Exit code 0 on success, 1 on API failure or partial prune
failure, 2 on configuration errors.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from typing import List, Optional

from . import __version__
from .client import BuildClient, require_non_blank
from .commands import DEFAULT_PRUNE_LIMIT, UNLIMITED, list_builds, prune_builds
from .errors import APIError, ConfigurationError

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2


def _add_connection_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base-url", default=os.environ.get("CC_BASE_URL"), help="Commerce Cloud build API base URL (env: CC_BASE_URL)")
    p.add_argument("--project-id", default=os.environ.get("CC_PROJECT_ID"), help="Commerce Cloud project ID (env: CC_PROJECT_ID)")
    p.add_argument("--environment-id", default=os.environ.get("CC_ENVIRONMENT_ID"), help="Commerce Cloud environment ID (env: CC_ENVIRONMENT_ID)")
    p.add_argument("--token", default=os.environ.get("CC_TOKEN"), help="Commerce Cloud personal access token (env: CC_TOKEN)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cc-build", description="SAP Commerce Cloud build pruner")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    lp = sub.add_parser("list", help="List builds for a project/environment")
    _add_connection_options(lp)
    lp.add_argument("-l", "--limit", type=int, default=50, help="Maximum number of builds to fetch (default: 50)")
    lp.add_argument("--include-non-deletable", action="store_true", help="Include builds that cannot be deleted")
    lp.add_argument("--json", action="store_true", help="Render the response as JSON")

    pp = sub.add_parser("prune", help="Delete builds older than a certain age")
    _add_connection_options(pp)
    pp.add_argument("--older-than", required=True, help="Only delete builds created before now minus the given duration (e.g. 30d, P2DT3H)")
    pp.add_argument("--limit", type=int, default=DEFAULT_PRUNE_LIMIT, help=f"Maximum number of builds to inspect (default: {DEFAULT_PRUNE_LIMIT})")
    pp.add_argument("--max", type=int, default=UNLIMITED, help="Maximum number of builds to delete (default: unlimited)")
    pp.add_argument("--dry-run", action="store_true", help="Only print builds that would be deleted")
    return parser


def _create_client(args: argparse.Namespace) -> BuildClient:
    return BuildClient(
        require_non_blank(args.base_url, "--base-url or CC_BASE_URL must be provided"),
        require_non_blank(args.token, "--token or CC_TOKEN must be provided"),
    )


def _project(args: argparse.Namespace) -> str:
    return require_non_blank(args.project_id, "--project-id or CC_PROJECT_ID must be provided")


def _environment(args: argparse.Namespace) -> str:
    return require_non_blank(args.environment_id, "--environment-id or CC_ENVIRONMENT_ID must be provided")


def run_list(args: argparse.Namespace) -> int:
    try:
        client = _create_client(args)
        return list_builds(
            client,
            _project(args),
            _environment(args),
            limit=args.limit,
            include_non_deletable=args.include_non_deletable,
            as_json=args.json,
        )
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print("Listing builds interrupted", file=sys.stderr)
        return EXIT_FAILURE
    except APIError as e:
        print(f"Failed to list builds: {e}", file=sys.stderr)
        return EXIT_FAILURE


def run_prune(args: argparse.Namespace) -> int:
    try:
        client = _create_client(args)
        return prune_builds(
            client,
            _project(args),
            _environment(args),
            args.older_than,
            limit=args.limit,
            max_deletes=args.max,
            dry_run=args.dry_run,
            cancel=threading.Event(),
        )
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print("Pruning interrupted", file=sys.stderr)
        return EXIT_FAILURE
    except APIError as e:
        print(f"Failed to prune builds: {e}", file=sys.stderr)
        return EXIT_FAILURE


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    if args.command == "list":
        return run_list(args)
    return run_prune(args)


if __name__ == "__main__":
    sys.exit(main())
