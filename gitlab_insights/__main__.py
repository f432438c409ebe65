#!/usr/bin/env python3
"""
CLI entry point for GitLab Insights.

Usage:
    # Analyze one group:
    python -m gitlab_insights --url https://gitlab.example.com --token TOKEN --group mygroup

    # Analyze every project the token can see:
    python -m gitlab_insights --url https://gitlab.example.com --token TOKEN

Or with environment variables in .env file:
    python -m gitlab_insights
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import InsightsConfig
from .logging_config import setup_structured_logging
from .orchestrator import FatalStartupError, run_insights


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="gitlab-insights",
        description="GitLab Insights - Score projects on a GitLab instance and export CSV reports and a dashboard",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze a group over the last 90 days
  gitlab-insights --url https://gitlab.example.com --token glpat-xxx --group myorg --days 90

  # Core reports only, no security data
  gitlab-insights --group myorg --no-security --core-only

  # Ignore checkpoints from an earlier, interrupted run
  gitlab-insights --force-restart

Environment Variables (can be set in .env):
  GITLAB_URL                      GitLab instance URL
  GITLAB_TOKEN                    Personal Access Token
  GITLAB_GROUP                    Group path or ID (optional - omit to analyze all visible projects)
  OUTPUT_DIR                      Output directory (default: ./output)
  LOOKBACK_DAYS                   Analysis window in days (default: 360)
  INCLUDE_SECURITY                Collect vulnerability data (default: true)
  ALL_REPORTS                     Run the extended reports (default: true)
  MAX_RETRIES                     Retries per request (default: 3)
  MIN_REQUEST_INTERVAL            Seconds between requests (default: 0.2)
  CALLS_PER_MINUTE                Request budget per minute (default: 600)
  SCORING_POLICY                  YAML file with scoring overrides
  LOG_LEVEL / LOG_JSON / LOG_FILE Logging settings

Required Token Scopes:
  - read_api
  - read_repository (for root files and .gitlab-ci.yml)
  - admin token for the full team report on self-managed instances
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # Connection settings
    parser.add_argument("--url", metavar="URL", help="GitLab instance URL (e.g., https://gitlab.com)")
    parser.add_argument("--token", metavar="TOKEN", help="Personal Access Token for authentication")
    parser.add_argument(
        "--group",
        metavar="GROUP",
        help="Group path or ID to analyze, including subgroups. If omitted, analyzes all visible projects.",
    )

    # Run signature
    parser.add_argument("--days", metavar="N", type=int, help="Lookback window in days (default: 360)")
    parser.add_argument(
        "--no-security",
        action="store_true",
        help="Skip the security scan report",
    )
    parser.add_argument(
        "--core-only",
        action="store_true",
        help="Run only the core reports (projects, security, quality, cost, team)",
    )

    # Output and resume
    parser.add_argument("--out", metavar="DIR", type=Path, help="Output directory (default: ./output)")
    parser.add_argument(
        "--force-restart",
        action="store_true",
        help="Ignore existing checkpoints and recompute every stage",
    )
    parser.add_argument("--max-projects", metavar="N", type=int, help="Analyze at most N projects (0 = all)")
    parser.add_argument(
        "--workers",
        metavar="N",
        type=int,
        help="Projects processed concurrently inside a stage (default: 1)",
    )
    parser.add_argument("--policy", metavar="FILE", help="YAML file with scoring policy overrides")

    # Logging
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (debug) logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress all output except errors")
    parser.add_argument("--log-json", action="store_true", help="Write logs as JSON lines")
    parser.add_argument("--log-file", metavar="FILE", help="Also write JSON logs to FILE")

    return parser.parse_args(argv)


def _log_level(args: argparse.Namespace, configured: str) -> int:
    if args.quiet:
        return logging.ERROR
    if args.verbose:
        return logging.DEBUG
    return getattr(logging, configured.upper(), logging.INFO)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        # Build configuration from args + env
        config = InsightsConfig.from_env(
            gitlab_url=args.url,
            gitlab_token=args.token,
            group=args.group,
            lookback_days=args.days,
            include_security=False if args.no_security else None,
            all_reports=False if args.core_only else None,
            output_dir=str(args.out) if args.out else None,
            force_restart=True if args.force_restart else None,
            max_projects=args.max_projects,
            max_workers=args.workers,
            scoring_policy=args.policy,
            log_json=True if args.log_json else None,
            log_file=args.log_file,
        )
    except ValueError as e:
        setup_structured_logging(level=_log_level(args, "INFO"))
        logger = logging.getLogger("gitlab_insights")
        logger.error(f"Configuration error: {e}")
        logger.error("Please provide required settings via CLI arguments or .env file")
        return 1

    setup_structured_logging(
        level=_log_level(args, config.log_level),
        json_format=config.log_json,
        log_file=config.log_file,
    )
    logger = logging.getLogger("gitlab_insights")
    logger.debug(
        f"Configuration: url={config.gitlab_url}, group={config.group or 'ALL'}, "
        f"days={config.lookback_days}, output={config.output_dir}"
    )

    try:
        summary = run_insights(config)

        stages = summary["stages"]
        logger.info(
            f"Analysis complete: {summary['records'].get('projects', 0)} projects, "
            f"{sum(1 for s in stages.values() if s == 'completed')} stages computed, "
            f"{sum(1 for s in stages.values() if s == 'restored')} restored, "
            f"{summary['api']['failed_calls']} failed API calls"
        )
        return 0

    except FatalStartupError as e:
        logger.error(f"Cannot start analysis: {e}")
        return 1

    except KeyboardInterrupt:
        logger.warning("Analysis interrupted by user; rerun to resume from the last checkpoint")
        return 130

    except Exception as e:
        logger.exception(f"Analysis failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
