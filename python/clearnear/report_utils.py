"""
Rendering and saving of cleanup reports.

This module provides functions to:
- Render a repository's cleanup plan as a table
- Render the end-of-run summary and the garbage collection reminder
- Save plans and deletion results as a timestamped JSON report
"""
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from tabulate import tabulate

from clearnear.logging_utils import get_logger
from clearnear.models import CleanupPlan, DeletionResult, RunSummary, TagRecord
from clearnear.strategy import truncate_digest

logger = get_logger(__name__)

GC_COMMAND = "docker exec <registry-container> bin/registry garbage-collect /etc/docker/registry/config.yml"


# ============================================================================
# Text Rendering
# ============================================================================

def format_created(tag: TagRecord) -> str:
    if tag.created is None:
        return "unknown"
    return tag.created.strftime("%Y-%m-%d %H:%M:%S UTC")


def render_plan(plan: CleanupPlan, dry_run: bool = False) -> str:
    """Render one repository's plan as a header plus a table."""
    header = f"Repository: {plan.repository}"
    if dry_run:
        header = f"DRY RUN {header} (no changes will be made)"
    lines = ["", header, "-" * 60]

    rows = [["DELETE", t.tag, truncate_digest(t.digest), format_created(t)] for t in plan.to_delete]
    rows += [["KEEP", t.tag, truncate_digest(t.digest), format_created(t)] for t in plan.to_keep]
    if rows:
        lines.append(tabulate(rows, headers=["Action", "Tag", "Digest", "Created"], tablefmt="simple"))

    lines.append(f"To delete: {len(plan.to_delete)}, to keep: {len(plan.to_keep)}")
    if not plan.to_delete:
        lines.append("Nothing to delete.")
    return "\n".join(lines)


def render_summary(summary: RunSummary) -> str:
    """Render the totals line, dangling repositories and the GC reminder."""
    lines = ["", "=" * 60]
    if summary.dry_run:
        lines.append(
            f"DRY RUN SUMMARY: Would delete {summary.tags_deleted} tags "
            f"({summary.unique_digests_deleted} unique digests), keep {summary.tags_kept} tags, "
            f"{summary.errors} errors"
        )
    else:
        lines.append(
            f"SUMMARY: Deleted {summary.tags_deleted} tags "
            f"({summary.unique_digests_deleted} unique digests), kept {summary.tags_kept} tags, "
            f"{summary.errors} errors"
        )

    if summary.dangling_repositories:
        lines.append("")
        lines.append(f"Repositories with no tags ({len(summary.dangling_repositories)}):")
        lines.extend(f"  {repo}" for repo in summary.dangling_repositories)

    if (not summary.dry_run and summary.tags_deleted > 0) or summary.dangling_repositories:
        lines.append("")
        lines.append("REMINDER: Run registry garbage collection to reclaim disk space:")
        lines.append(f"  {GC_COMMAND}")
    return "\n".join(lines)


def render_failures(results: List[DeletionResult]) -> Optional[str]:
    """Table of failed deletions, or None when every deletion succeeded."""
    failed = [r for r in results if not r.success]
    if not failed:
        return None
    rows = [[r.repository, truncate_digest(r.digest), ", ".join(r.tags), r.error] for r in failed]
    return tabulate(rows, headers=["Repository", "Digest", "Tags", "Error"], tablefmt="simple")


# ============================================================================
# Report Saving Functions
# ============================================================================

def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def resolve_report_path(path: str, timestamp: Optional[str] = None) -> Path:
    """A directory (existing, or ending in a separator) gets a timestamped file name inside it."""
    p = Path(path)
    if p.is_dir() or path.endswith(("/", "\\")):
        return p / f"clearnear-report-{timestamp or get_timestamp_suffix()}.json"
    return p


def save_json(path: str, data: Dict[str, Any]) -> str:
    """
    Save data as JSON, creating parent directories.

    Returns:
        Path to the saved file
    """
    target = resolve_report_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as f:
        json.dump(data, f, indent=2)
    logger.info(f"Report saved to: {target}")
    return str(target)


def build_report(summary: RunSummary, plans: List[CleanupPlan], results: List[DeletionResult],
                 strategy_description: str, registry_url: str) -> Dict[str, Any]:
    return {
        "generated_at": datetime.now().isoformat(),
        "registry": registry_url,
        "strategy": strategy_description,
        "summary": summary.to_dict(),
        "plans": [p.to_dict() for p in plans],
        "deletions": [r.to_dict() for r in results],
    }
