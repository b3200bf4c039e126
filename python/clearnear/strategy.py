#!/usr/bin/env python3
"""
Cleanup strategies and the planning step that turns resolved tags into a
CleanupPlan.

Planning is two-phase: the selected strategy produces a tentative delete/keep
partition, then the shared-digest safety pass moves back to "keep" every
tentatively deleted tag whose digest is also referenced by a kept tag. A
manifest DELETE removes every tag pointing at the digest, so deleting such a
digest would also remove a tag the operator asked to keep.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Set, Tuple

from clearnear.error_utils import ConfigurationError, create_config_error
from clearnear.logging_utils import get_logger
from clearnear.models import CleanupPlan, TagRecord

logger = get_logger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)

Partition = Tuple[List[TagRecord], List[TagRecord]]


def truncate_digest(digest: str) -> str:
    """First 19 characters: 'sha256:' plus 12 hex digits."""
    return digest[:19]


class Strategy(ABC):
    """A retention policy. ``partition`` returns (to_delete, to_keep) before the safety pass."""

    @abstractmethod
    def partition(self, tags: List[TagRecord], now: datetime) -> Partition:
        raise NotImplementedError

    @abstractmethod
    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class KeepMostRecent(Strategy):
    """Keep the ``count`` newest tags; tags with unknown creation time rank oldest."""
    count: int

    def partition(self, tags: List[TagRecord], now: datetime) -> Partition:
        # Stable sort: equal timestamps keep their input order
        ordered = sorted(
            tags,
            key=lambda t: (t.created is not None, t.created or _OLDEST),
            reverse=True,
        )
        keep_count = min(self.count, len(ordered))
        return ordered[keep_count:], ordered[:keep_count]

    def describe(self) -> str:
        return f"keep the {self.count} most recent tags"


@dataclass(frozen=True)
class OlderThan(Strategy):
    """Delete tags created strictly before now - ``days``; unknown creation time is kept."""
    days: int

    def cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self.days)

    def partition(self, tags: List[TagRecord], now: datetime) -> Partition:
        cutoff = self.cutoff(now)
        to_delete, to_keep = [], []
        for tag in tags:
            if tag.created is not None and tag.created < cutoff:
                to_delete.append(tag)
            else:
                to_keep.append(tag)
        return to_delete, to_keep

    def describe(self) -> str:
        return f"delete tags older than {self.days} days"


@dataclass(frozen=True)
class MatchingPattern(Strategy):
    """Delete tags whose name matches ``pattern`` anywhere (re.search semantics)."""
    pattern: re.Pattern

    def partition(self, tags: List[TagRecord], now: datetime) -> Partition:
        to_delete, to_keep = [], []
        for tag in tags:
            if self.pattern.search(tag.tag):
                to_delete.append(tag)
            else:
                to_keep.append(tag)
        return to_delete, to_keep

    def describe(self) -> str:
        return f"delete tags matching /{self.pattern.pattern}/"


def strategy_from_options(keep: Optional[int] = None, older_than: Optional[int] = None,
                          pattern: Optional[str] = None) -> Strategy:
    """Validate the strategy selection and build the Strategy.

    Exactly one of the three options must be given.

    Raises:
        ConfigurationError: no strategy, several strategies, a negative number or an invalid regex
    """
    selected = [name for name, value in (("--keep", keep), ("--older-than", older_than), ("--pattern", pattern))
                if value is not None]
    if not selected:
        raise ConfigurationError(
            "No cleanup strategy specified. Use --keep, --older-than, or --pattern",
            suggestions=["--keep N keeps the N most recent tags",
                         "--older-than DAYS deletes tags created more than DAYS days ago",
                         "--pattern REGEX deletes tags whose name matches REGEX"],
        )
    if len(selected) > 1:
        raise ConfigurationError(f"Cleanup strategies are mutually exclusive, got: {', '.join(selected)}")

    if keep is not None:
        if keep < 0:
            raise create_config_error("keep", keep, "must be a non-negative integer")
        return KeepMostRecent(keep)

    if older_than is not None:
        if older_than < 0:
            raise create_config_error("older_than", older_than, "must be a non-negative number of days")
        max_days = (datetime.now(timezone.utc) - _OLDEST).days
        if older_than > max_days:
            raise create_config_error("older_than", older_than, f"must be at most {max_days} days")
        return OlderThan(older_than)

    try:
        compiled = re.compile(pattern)
    except re.error as e:
        raise create_config_error("pattern", pattern, f"invalid regular expression: {e}")
    return MatchingPattern(compiled)


def unique_digests(tags: Iterable[TagRecord]) -> Set[str]:
    return {t.digest for t in tags}


def count_unique_digests(tags: Iterable[TagRecord]) -> int:
    """Count unique digests in a list of TagRecords"""
    return len(unique_digests(tags))


def enforce_shared_digest_safety(to_delete: List[TagRecord], to_keep: List[TagRecord]) -> Partition:
    """Move to keep every tentatively deleted tag whose digest a kept tag references.

    Each rescued digest is warned about once, listing every rescued tag.
    """
    keep_digests = unique_digests(to_keep)
    safe_delete: List[TagRecord] = []
    rescued: List[TagRecord] = []
    rescued_tags_by_digest = {}

    for tag in to_delete:
        if tag.digest in keep_digests:
            rescued.append(tag)
            rescued_tags_by_digest.setdefault(tag.digest, []).append(tag.tag)
        else:
            safe_delete.append(tag)

    for digest, tag_names in rescued_tags_by_digest.items():
        logger.warning(
            f"Digest {truncate_digest(digest)} is shared with a kept tag; "
            f"skipping deletion of tag(s) {', '.join(repr(n) for n in tag_names)}"
        )

    return safe_delete, list(to_keep) + rescued


def apply_strategy(strategy: Strategy, repository: str, tags: List[TagRecord],
                   now: Optional[datetime] = None) -> CleanupPlan:
    """Partition ``tags`` with ``strategy`` and apply the shared-digest safety pass."""
    if now is None:
        now = datetime.now(timezone.utc)
    to_delete, to_keep = strategy.partition(list(tags), now)
    to_delete, to_keep = enforce_shared_digest_safety(to_delete, to_keep)
    return CleanupPlan(repository=repository, to_delete=to_delete, to_keep=to_keep)
