"""Registry wire documents and the records a cleanup run passes between stages."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser


MANIFEST_V2_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"


def parse_created(value: Any) -> Optional[datetime]:
    """Parse an image config ``created`` value (RFC 3339) into an aware UTC datetime.

    Returns None for missing, null or unparsable values.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        created = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        try:
            created = date_parser.parse(value)
        except (ValueError, OverflowError):
            return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    try:
        return created.astimezone(timezone.utc)
    except OverflowError:
        # Offset pushes the instant outside the datetime range
        return None


@dataclass
class ManifestConfig:
    """The ``config`` descriptor of a schema 2 manifest"""
    media_type: str
    size: int
    digest: str


@dataclass
class Manifest:
    """GET /v2/<repo>/manifests/<tag> (schema 2)"""
    schema_version: int
    config: Optional[ManifestConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Manifest":
        """Build from decoded JSON.

        Raises:
            ValueError: when the document is not a JSON object or lacks schemaVersion
        """
        if not isinstance(data, dict) or "schemaVersion" not in data:
            raise ValueError("manifest has no schemaVersion")
        config = None
        raw = data.get("config")
        if isinstance(raw, dict) and raw.get("digest"):
            config = ManifestConfig(
                media_type=raw.get("mediaType", ""),
                size=int(raw.get("size") or 0),
                digest=raw["digest"],
            )
        return cls(schema_version=int(data["schemaVersion"]), config=config)


@dataclass(frozen=True)
class TagRecord:
    """One resolved tag: immutable once built. ``created`` None means unknown."""
    repository: str
    tag: str
    digest: str
    created: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository,
            "tag": self.tag,
            "digest": self.digest,
            "created": self.created.isoformat() if self.created else None,
        }


@dataclass
class CleanupPlan:
    """Delete/keep partition of one repository's tags.

    ``to_delete`` and ``to_keep`` are disjoint, cover every resolved tag, and
    share no digest.
    """
    repository: str
    to_delete: List[TagRecord] = field(default_factory=list)
    to_keep: List[TagRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository,
            "to_delete": [t.to_dict() for t in self.to_delete],
            "to_keep": [t.to_dict() for t in self.to_keep],
        }


@dataclass
class DeletionResult:
    """Outcome of deleting one digest. ``executed`` is False on dry runs."""
    repository: str
    digest: str
    tags: List[str]
    success: bool
    executed: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository,
            "digest": self.digest,
            "tags": list(self.tags),
            "success": self.success,
            "executed": self.executed,
            "error": self.error,
        }


@dataclass
class RunSummary:
    """Totals accumulated across every processed repository"""
    dry_run: bool = False
    repositories_processed: int = 0
    tags_deleted: int = 0
    tags_kept: int = 0
    errors: int = 0
    deleted_digests: set = field(default_factory=set)
    dangling_repositories: List[str] = field(default_factory=list)

    @property
    def unique_digests_deleted(self) -> int:
        return len(self.deleted_digests)

    @property
    def exit_code(self) -> int:
        return 1 if self.errors else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "repositories_processed": self.repositories_processed,
            "tags_deleted": self.tags_deleted,
            "unique_digests_deleted": self.unique_digests_deleted,
            "tags_kept": self.tags_kept,
            "errors": self.errors,
            "dangling_repositories": list(self.dangling_repositories),
        }
