#!/usr/bin/env python3
"""
clearnear: Docker private registry image cleaner.

Resolves every tag of one repository (or of every repository in the catalog),
plans which tags to delete under one retention strategy, and deletes the
planned digests unless --dry-run is given.

Usage examples:
  # Preview keeping the 5 newest tags of one repository
  clearnear --registry http://localhost:5000 --repo myapp --keep 5 --dry-run

  # Delete tags older than 30 days in every repository
  clearnear --registry http://localhost:5000 --older-than 30

  # Delete PR build tags
  clearnear --registry http://localhost:5000 --repo myapp --pattern '^pr-[0-9]+$'

Deleting manifests does not free disk space: run the registry's garbage
collection afterwards.
"""

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from clearnear import __version__
from clearnear.config_manager import ConfigManager
from clearnear.error_utils import ConfigurationError, RegistryError
from clearnear.executor import PlanExecutor
from clearnear.logging_utils import get_logger, log_exception, setup_logging
from clearnear.models import CleanupPlan, DeletionResult, RunSummary
from clearnear.registry_client import RegistryClient
from clearnear.report_utils import build_report, render_failures, render_plan, render_summary, save_json
from clearnear.strategy import Strategy, apply_strategy, strategy_from_options
from clearnear.tag_resolver import TagResolver

logger = get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_ERRORS = 1
EXIT_CONFIG_ERROR = 2


def non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got '{value}'")
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {number}")
    return number


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="clearnear",
        description="Docker private registry image cleaner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exactly one strategy is required: --keep, --older-than or --pattern.

Environment:
  CLEARNEAR_REGISTRY   registry URL when --registry is not given
  CLEARNEAR_CONFIG     configuration file (default: config.yaml)
  REGISTRY_USERNAME    basic auth username
  REGISTRY_PASSWORD    basic auth password
        """,
    )
    parser.add_argument("--registry", help="Registry URL (e.g., http://localhost:5000)")
    parser.add_argument("--repo", help="Repository name (omit to process all repos from catalog)")

    strategy_group = parser.add_mutually_exclusive_group()
    strategy_group.add_argument("--keep", type=non_negative_int, metavar="N",
                                help="Keep N most recent tags, delete the rest")
    strategy_group.add_argument("--older-than", type=non_negative_int, metavar="DAYS",
                                help="Delete images older than N days")
    strategy_group.add_argument("--pattern", metavar="REGEX", help="Delete tags matching this regex pattern")

    parser.add_argument("--dry-run", action="store_true", help="Preview changes without deleting")
    parser.add_argument("--config", help="Path to configuration YAML file")
    parser.add_argument("--report", nargs="?", const="", default=None, metavar="PATH",
                        help="Save plans and results as JSON (default location: reports.output_dir)")
    parser.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bars")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.registry:
        overrides["registry"] = {"url": args.registry}
    if args.no_progress:
        overrides["resolver"] = {"show_progress": False}
    return overrides


class CleanupRun:
    """Processes repositories one at a time and accumulates the run summary"""

    def __init__(self, strategy: Strategy, resolver: TagResolver, executor: PlanExecutor,
                 require_confirmation: bool = False, assume_yes: bool = False):
        self.strategy = strategy
        self.resolver = resolver
        self.executor = executor
        self.require_confirmation = require_confirmation
        self.assume_yes = assume_yes
        self.summary = RunSummary(dry_run=executor.dry_run)
        self.plans: List[CleanupPlan] = []
        self.results: List[DeletionResult] = []

    def process_repository(self, repository: str) -> Optional[CleanupPlan]:
        """Resolve, plan and (unless dry run) execute one repository. Never raises RegistryError."""
        logger.debug(f"Processing repository: {repository}")
        try:
            tags, failures = self.resolver.resolve_all_with_failures(repository)
        except RegistryError as e:
            logger.error(f"Failed to resolve tags for {repository}: {e.message}")
            self.summary.errors += 1
            return None

        self.summary.errors += len(failures)
        self.summary.repositories_processed += 1

        if not tags:
            if not failures:
                logger.debug(f"No tags found for {repository}")
                self.summary.dangling_repositories.append(repository)
            return None

        plan = apply_strategy(self.strategy, repository, tags)
        self.plans.append(plan)
        print(render_plan(plan, self.executor.dry_run))

        self.summary.tags_kept += len(plan.to_keep)
        if self.executor.dry_run:
            self.summary.tags_deleted += len(plan.to_delete)
            self.summary.deleted_digests.update(f"{repository}@{t.digest}" for t in plan.to_delete)
            return plan

        digests = self.executor.digests_to_delete(plan)
        if not digests:
            return plan
        if self.require_confirmation and not self.executor.confirm_deletion(
            len(digests), f"digests from {repository}", force=self.assume_yes
        ):
            logger.warning(f"Deletion declined for {repository}; {len(digests)} digests left in place")
            self.summary.tags_kept += len(plan.to_delete)
            return plan

        results = self.executor.execute(plan)
        self.results.extend(results)
        for result in results:
            if result.success:
                self.summary.tags_deleted += len(result.tags)
                self.summary.deleted_digests.add(f"{repository}@{result.digest}")
            else:
                self.summary.errors += 1
        return plan


def run(args: argparse.Namespace) -> int:
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    # Everything that can be wrong with the invocation fails here, before any request
    try:
        strategy = strategy_from_options(args.keep, args.older_than, args.pattern)
        cfg = ConfigManager(config_file=args.config, overrides=build_overrides(args))
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_CONFIG_ERROR

    logger.debug(f"Strategy: {strategy.describe()}")
    logger.debug(f"Registry: {cfg.get_registry_url()}")
    logger.debug(f"Dry run: {args.dry_run}")

    client = RegistryClient.from_config(cfg)
    try:
        if args.repo:
            repositories = [args.repo]
        else:
            logger.debug("No --repo specified, fetching catalog...")
            try:
                repositories = client.list_repositories()
            except RegistryError as e:
                logger.error(f"Failed to list repositories: {e}")
                return EXIT_ERRORS

        if not repositories:
            print("No repositories found.")
            return EXIT_SUCCESS

        cleanup = CleanupRun(
            strategy,
            TagResolver(client, cfg.get_max_workers(), show_progress=cfg.get_show_progress()),
            PlanExecutor(client, dry_run=args.dry_run),
            require_confirmation=cfg.requires_confirmation(),
            assume_yes=args.yes,
        )
        for repository in repositories:
            cleanup.process_repository(repository)
    finally:
        client.close()

    failures = render_failures(cleanup.results)
    if failures:
        print("\nFailed deletions:")
        print(failures)
    print(render_summary(cleanup.summary))
    cleanup.executor.log_summary(cleanup.summary)

    if args.report is not None:
        report = build_report(cleanup.summary, cleanup.plans, cleanup.results,
                              strategy.describe(), cfg.get_registry_url())
        save_json(args.report or cfg.get_output_dir() + "/", report)

    return cleanup.summary.exit_code


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    try:
        return run(args)
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return EXIT_ERRORS
    except Exception as e:
        log_exception(logger, "Unexpected error", e)
        return EXIT_ERRORS


if __name__ == "__main__":
    sys.exit(main())
