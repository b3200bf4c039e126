"""Unit tests for clearnear/tag_resolver.py"""

import threading
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from clearnear.error_utils import RegistryError, create_registry_status_error
from clearnear.models import Manifest, ManifestConfig
from clearnear.registry_client import RegistryClient
from clearnear.tag_resolver import TagResolver

CREATED = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def manifest_for(tag):
    return Manifest(schema_version=2, config=ManifestConfig("application/vnd.docker.container.image.v1+json",
                                                            100, f"sha256:cfg-{tag}"))


def make_client(tags, digests=None, created=CREATED):
    """Mock gateway where every tag resolves to digest sha256:<tag> unless overridden"""
    digests = digests or {}
    client = MagicMock(spec=RegistryClient)
    client.list_tags.return_value = tags

    def get_digest(repository, tag):
        value = digests.get(tag, f"sha256:{tag}")
        if isinstance(value, Exception):
            raise value
        return value

    client.get_digest.side_effect = get_digest
    client.get_manifest.side_effect = lambda repository, tag: manifest_for(tag)
    client.get_image_config.return_value = created
    return client


class TestTagResolverInit:
    """Tests for worker count handling"""

    def test_rejects_zero_workers(self):
        """Test that a resolver needs at least one worker"""
        with pytest.raises(ValueError):
            TagResolver(MagicMock(), max_workers=0)

    def test_caps_workers_at_ten(self):
        """Test that larger worker counts are clamped to ten"""
        assert TagResolver(MagicMock(), max_workers=50).max_workers == 10

    def test_lower_worker_count_is_kept(self):
        """Test that a smaller worker count is honored"""
        assert TagResolver(MagicMock(), max_workers=3).max_workers == 3


class TestResolveTag:
    """Tests for single tag resolution"""

    def test_builds_record(self):
        """Test that digest, manifest and config combine into a TagRecord"""
        client = make_client(["v1"])
        record = TagResolver(client).resolve_tag("app", "v1")
        assert record.repository == "app"
        assert record.tag == "v1"
        assert record.digest == "sha256:v1"
        assert record.created == CREATED
        client.get_image_config.assert_called_once_with("app", "sha256:cfg-v1")

    def test_unreadable_config_gives_unknown_created(self):
        """Test that an unreadable config leaves the creation time unknown"""
        client = make_client(["v1"], created=None)
        record = TagResolver(client).resolve_tag("app", "v1")
        assert record.created is None
        assert record.digest == "sha256:v1"

    def test_manifest_without_config_skips_config_fetch(self):
        """Test that no config blob is fetched without a config descriptor"""
        client = make_client(["v1"])
        client.get_manifest.side_effect = lambda repository, tag: Manifest(schema_version=2, config=None)
        record = TagResolver(client).resolve_tag("app", "v1")
        assert record.created is None
        client.get_image_config.assert_not_called()

    def test_digest_failure_raises(self):
        """Test that a digest failure propagates from resolve_tag"""
        client = make_client(["v1"], digests={"v1": create_registry_status_error("get_digest", 404, "app", "v1")})
        with pytest.raises(RegistryError):
            TagResolver(client).resolve_tag("app", "v1")


class TestResolveAll:
    """Tests for concurrent repository resolution"""

    def test_empty_repository(self):
        """Test that a repository without tags resolves to nothing"""
        client = make_client([])
        assert TagResolver(client).resolve_all("app") == []
        client.get_digest.assert_not_called()

    def test_resolves_every_tag(self):
        """Test that every listed tag is resolved"""
        tags = [f"v{i}" for i in range(25)]
        records = TagResolver(make_client(tags)).resolve_all("app")
        assert sorted(r.tag for r in records) == sorted(tags)

    def test_duplicate_tags_resolved_once(self):
        """Test that repeated tag names are resolved once"""
        client = make_client(["v1", "v2", "v1"])
        records = TagResolver(client).resolve_all("app")
        assert sorted(r.tag for r in records) == ["v1", "v2"]
        assert client.get_digest.call_count == 2

    def test_failed_tags_are_dropped_and_reported(self):
        """Test that a failing tag is dropped and reported with context"""
        client = make_client(
            ["v1", "v2", "v3"],
            digests={"v2": create_registry_status_error("get_digest", 500, "app", "v2")},
        )
        records, failures = TagResolver(client).resolve_all_with_failures("app")
        assert sorted(r.tag for r in records) == ["v1", "v3"]
        assert len(failures) == 1
        assert failures[0][0] == "v2"
        assert "app:v2" in failures[0][1]

    def test_unexpected_exception_is_dropped(self):
        """Test that an unexpected exception only drops its own tag"""
        client = make_client(["v1", "v2"], digests={"v1": RuntimeError("boom")})
        records, failures = TagResolver(client).resolve_all_with_failures("app")
        assert [r.tag for r in records] == ["v2"]
        assert failures == [("v1", "RuntimeError: boom")]

    def test_list_tags_failure_propagates(self):
        """Test that a tag list failure aborts the repository"""
        client = make_client([])
        client.list_tags.side_effect = create_registry_status_error("list_tags", 404, "missing")
        with pytest.raises(RegistryError):
            TagResolver(client).resolve_all("missing")

    def test_never_more_than_ten_in_flight(self):
        """Test that at most ten tags are resolved concurrently"""
        lock = threading.Lock()
        state = {"current": 0, "peak": 0}

        def slow_digest(repository, tag):
            with lock:
                state["current"] += 1
                state["peak"] = max(state["peak"], state["current"])
            time.sleep(0.01)
            with lock:
                state["current"] -= 1
            return f"sha256:{tag}"

        client = make_client([f"v{i}" for i in range(40)])
        client.get_digest.side_effect = slow_digest
        records = TagResolver(client, max_workers=10).resolve_all("app")
        assert len(records) == 40
        assert 1 <= state["peak"] <= 10
