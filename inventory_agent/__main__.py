#!/usr/bin/env python3
"""
CLI entry point for the GitLab Inventory Agent.

Usage:
    # Inventory one group:
    python -m inventory_agent --base-url https://gitlab.example.com --token TOKEN --group acme --out ./out

    # Inventory every group on a self-hosted instance:
    python -m inventory_agent --base-url https://gitlab.example.com --all-groups

Or with environment variables in .env file:
    python -m inventory_agent
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config import ConfigError, InventoryConfig
from .gitlab_client import AuthError
from .logging_config import setup_logging
from .orchestrator import run_inventory
from .sink import SinkError


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="inventory_agent",
        description="GitLab Inventory Agent - size projects and find name conflicts before a migration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One group, with note totals and repository sizes
  python -m inventory_agent --group acme --notes --repo-size

  # Groups listed in a file (one path per line)
  python -m inventory_agent --groups-file groups.txt --out ./output

  # Every group on a self-hosted instance (rejected for gitlab.com)
  python -m inventory_agent --base-url https://gitlab.example.com --all-groups --workers 4

Environment Variables (can be set in .env):
  GITLAB_BASE_URL                 GitLab instance URL
  GITLAB_TOKEN                    Personal Access Token (prompted for when missing)
  GITLAB_GROUP                    Group to inventory
  GITLAB_GROUPS_FILE              File listing groups to inventory
  OUTPUT_DIR                      Output directory (default: ./output)
  WORKERS                         Projects visited in parallel (default: 1)
  INCLUDE_NOTES / INCLUDE_COMMIT_COMMENTS / INCLUDE_REPO_SIZE

Required Token Scopes:
  - read_api
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Connection settings
    parser.add_argument("--base-url", metavar="URL", help="GitLab instance URL")
    parser.add_argument("--token", metavar="TOKEN", help="Personal Access Token for authentication")
    parser.add_argument(
        "--no-verify-ssl",
        action="store_true",
        help="Skip TLS certificate verification (self-signed instances)",
    )

    # Target
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--group", metavar="GROUP", help="Single group path to inventory")
    target.add_argument("--groups-file", metavar="FILE", help="File with one group path per line")
    target.add_argument(
        "--all-groups",
        action="store_true",
        help="Inventory every group on the instance (self-hosted only)",
    )

    # Output settings
    parser.add_argument("--out", metavar="DIR", type=Path, help="Output directory (default: ./output)")

    # Aggregation flags
    parser.add_argument("--notes", action="store_true", help="Sum issue and merge request notes")
    parser.add_argument(
        "--commit-comments",
        action="store_true",
        help="Sum comments on every commit (one request per commit)",
    )
    parser.add_argument("--repo-size", action="store_true", help="Report repository size in KB")

    # Throughput
    parser.add_argument("--workers", metavar="N", type=int, help="Projects visited in parallel (default: 1)")
    parser.add_argument("--per-page", metavar="N", type=int, help="Page size, 1-100 (default: 100)")

    # Logging
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (debug) logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress all output except errors")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines")
    parser.add_argument("--log-file", metavar="FILE", help="Also write logs to FILE")

    return parser.parse_args(argv)


def resolve_token(cli_token: str | None) -> str | None:
    """Token from the CLI, then the environment, then an interactive prompt."""
    if cli_token:
        return cli_token
    load_dotenv()
    token = os.getenv("GITLAB_TOKEN")
    if not token and sys.stdin.isatty():
        token = getpass.getpass("GitLab personal access token: ").strip()
    return token or None


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.quiet:
        log_level = logging.ERROR
    elif args.verbose:
        log_level = logging.DEBUG
    else:
        log_level = logging.INFO

    setup_logging(level=log_level, json_format=args.log_json, log_file=args.log_file)
    logger = logging.getLogger("inventory_agent")

    try:
        config = InventoryConfig.from_env(
            gitlab_base_url=args.base_url,
            gitlab_token=resolve_token(args.token),
            group=args.group,
            groups_file=args.groups_file,
            all_groups=True if args.all_groups else None,
            output_dir=str(args.out) if args.out else None,
            per_page=args.per_page,
            workers=args.workers,
            verify_ssl=False if args.no_verify_ssl else None,
            include_notes=True if args.notes else None,
            include_commit_comments=True if args.commit_comments else None,
            include_repo_size=True if args.repo_size else None,
        )
        logger.debug(
            f"Configuration: base_url={config.gitlab_base_url}, target={config.target_label}, "
            f"flags={config.flags}, workers={config.workers}"
        )
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Please provide required settings via CLI arguments or .env file")
        return 1

    try:
        result = run_inventory(config)
        logger.info(
            f"Inventory complete: {result['groups']} groups, {result['projects']} projects, "
            f"{result['conflicts']} name conflicts, {result['errors']} errors"
        )
        logger.info(f"Statistics: {result['stats_path']}")
        logger.info(f"Conflicts: {result['conflicts_path']}")
        return 0

    except (ConfigError, AuthError, SinkError) as e:
        logger.error(f"Inventory aborted: {e}")
        return 1

    except KeyboardInterrupt:
        logger.warning("Inventory interrupted by user")
        return 130

    except Exception as e:
        logger.exception(f"Inventory failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
