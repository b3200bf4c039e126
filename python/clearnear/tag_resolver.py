"""
Resolve every tag of a repository into a TagRecord (digest + creation time).

Tags are resolved concurrently through a bounded thread pool. A tag whose
digest or manifest cannot be fetched is logged and dropped; a tag whose image
config cannot be read is kept with an unknown creation time. Results come back
in completion order, not tag-list order.
"""

import concurrent.futures
from typing import List, Tuple

import tqdm

from clearnear.config_manager import MAX_RESOLVER_WORKERS
from clearnear.error_utils import RegistryError
from clearnear.logging_utils import get_logger
from clearnear.models import TagRecord
from clearnear.registry_client import RegistryClient

logger = get_logger(__name__)


class TagResolver:
    """Builds TagRecords for a repository using a RegistryClient"""

    def __init__(self, client: RegistryClient, max_workers: int = MAX_RESOLVER_WORKERS,
                 show_progress: bool = False):
        if max_workers < 1:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        self.client = client
        self.max_workers = min(max_workers, MAX_RESOLVER_WORKERS)
        self.show_progress = show_progress

    def resolve_tag(self, repository: str, tag: str) -> TagRecord:
        """Resolve one tag: digest, then manifest, then (best effort) creation time.

        Raises:
            RegistryError: if the digest or manifest cannot be fetched
        """
        digest = self.client.get_digest(repository, tag)
        manifest = self.client.get_manifest(repository, tag)

        created = None
        if manifest.config is not None:
            created = self.client.get_image_config(repository, manifest.config.digest)
            if created is None:
                logger.warning(f"Creation time unknown for {repository}:{tag}")
        else:
            logger.debug(f"Manifest for {repository}:{tag} has no config descriptor")

        return TagRecord(repository=repository, tag=tag, digest=digest, created=created)

    def resolve_all(self, repository: str) -> List[TagRecord]:
        """Resolve every tag of ``repository``.

        Returns an empty list for a repository without tags. Raises RegistryError
        only when the tag list itself cannot be fetched.
        """
        records, _ = self.resolve_all_with_failures(repository)
        return records

    def resolve_all_with_failures(self, repository: str) -> Tuple[List[TagRecord], List[Tuple[str, str]]]:
        """Like resolve_all, also returning (tag, reason) for every dropped tag."""
        # Overlapping pages can repeat a tag
        tags = list(dict.fromkeys(self.client.list_tags(repository)))
        if not tags:
            logger.debug(f"No tags found for {repository}")
            return [], []

        logger.info(f"Resolving {len(tags)} tags for {repository} (using {self.max_workers} workers)...")

        records: List[TagRecord] = []
        failures: List[Tuple[str, str]] = []
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_tag = {
                executor.submit(self.resolve_tag, repository, tag): tag
                for tag in tags
            }

            with tqdm.tqdm(total=len(tags), desc=f"Resolving {repository}", unit="tag",
                           disable=not self.show_progress) as pbar:
                for future in concurrent.futures.as_completed(future_to_tag):
                    tag = future_to_tag[future]
                    pbar.update(1)
                    try:
                        records.append(future.result())
                    except RegistryError as e:
                        failures.append((tag, e.message))
                        logger.error(f"Failed to resolve {repository}:{tag}: {e.message}")
                    except Exception as e:
                        failures.append((tag, f"{type(e).__name__}: {e}"))
                        logger.error(f"Failed to resolve {repository}:{tag}: {type(e).__name__}: {e}")

        if failures:
            logger.warning(f"Resolved {len(records)}/{len(tags)} tags for {repository}; {len(failures)} dropped")
        else:
            logger.debug(f"Resolved {len(records)}/{len(tags)} tags for {repository}")
        return records, failures
