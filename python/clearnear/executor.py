"""
Executes a CleanupPlan against the registry.

Deletions run sequentially in plan order, one DELETE per unique digest. A
failed deletion is recorded and the remaining digests are still attempted.
"""

from typing import Dict, List

from clearnear.error_utils import RegistryError
from clearnear.logging_utils import get_logger
from clearnear.models import CleanupPlan, DeletionResult, RunSummary
from clearnear.registry_client import RegistryClient


class PlanExecutor:
    """Applies cleanup plans and reports per-digest outcomes"""

    def __init__(self, client: RegistryClient, dry_run: bool = False):
        self.client = client
        self.dry_run = dry_run
        self.logger = get_logger(self.__class__.__name__)

    @staticmethod
    def digests_to_delete(plan: CleanupPlan) -> Dict[str, List[str]]:
        """Map each digest in the delete set to its tags, in first-seen plan order."""
        digests: Dict[str, List[str]] = {}
        for tag in plan.to_delete:
            digests.setdefault(tag.digest, []).append(tag.tag)
        return digests

    def confirm_deletion(self, count: int, item_type: str = "digests", force: bool = False) -> bool:
        """Interactive confirmation prompt

        Args:
            count: Number of items to be deleted
            item_type: Type of items (e.g., "digests")
            force: If True, skip confirmation and return True

        Returns:
            True if user confirmed, False otherwise
        """
        if force:
            self.logger.warning("Confirmation skipped (--yes)")
            return True

        print("\n" + "=" * 60)
        print("WARNING: You are about to DELETE images from the registry!")
        print("=" * 60)
        print(f"This will delete {count} {item_type}.")
        print("This action cannot be undone.")
        print("=" * 60)

        while True:
            response = input("Are you sure you want to proceed with deletion? (yes/no): ").lower().strip()
            if response in ["yes", "y"]:
                return True
            elif response in ["no", "n"]:
                return False
            else:
                print("Please enter 'yes' or 'no'.")

    def execute(self, plan: CleanupPlan) -> List[DeletionResult]:
        """Delete every unique digest of ``plan.to_delete``. Never raises for a single digest."""
        results: List[DeletionResult] = []
        for digest, tags in self.digests_to_delete(plan).items():
            if self.dry_run:
                results.append(DeletionResult(plan.repository, digest, tags, success=True, executed=False))
                continue

            try:
                self.client.delete_manifest(plan.repository, digest)
            except RegistryError as e:
                self.logger.error(f"Failed to delete digest {plan.repository}@{digest}: {e.message}")
                results.append(DeletionResult(plan.repository, digest, tags, success=False, error=e.message))
                continue

            self.logger.debug(f"Deleted digest {plan.repository}@{digest} ({', '.join(tags)})")
            results.append(DeletionResult(plan.repository, digest, tags, success=True))
        return results

    def log_summary(self, summary: RunSummary) -> None:
        """Log a standardized deletion summary"""
        mode = "DRY RUN: " if summary.dry_run else ""
        self.logger.info(f"{mode}Deletion Summary:")
        self.logger.info(f"   Repositories processed: {summary.repositories_processed}")
        self.logger.info(
            f"   {'Would delete' if summary.dry_run else 'Deleted'}: {summary.tags_deleted} tags "
            f"({summary.unique_digests_deleted} unique digests)"
        )
        self.logger.info(f"   Kept: {summary.tags_kept} tags")
        self.logger.info(f"   Errors: {summary.errors}")
        if summary.dangling_repositories:
            self.logger.info(f"   Repositories without tags: {len(summary.dangling_repositories)}")
