"""
Registry client for the Docker Registry HTTP API v2.

One method per registry primitive. Every method either returns a typed result
or raises RegistryError naming the repository/tag/digest involved. Transient
failures (connection errors, 429, 5xx) are retried with exponential backoff.

Endpoints used:
  GET    /v2/_catalog                       list repositories (Link pagination)
  GET    /v2/<repo>/tags/list               list tags (Link pagination)
  HEAD   /v2/<repo>/manifests/<tag>         Docker-Content-Digest header
  GET    /v2/<repo>/manifests/<tag>         manifest, for the config blob digest
  GET    /v2/<repo>/blobs/<config-digest>   image config, for the created timestamp
  DELETE /v2/<repo>/manifests/<digest>      delete every tag pointing at digest
"""

import time
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional

import requests

from clearnear.error_utils import (
    RegistryError,
    create_registry_connection_error,
    create_registry_protocol_error,
    create_registry_status_error,
)
from clearnear.logging_utils import get_logger
from clearnear.models import MANIFEST_V2_MEDIA_TYPE, Manifest, parse_created
from clearnear.retry_utils import retry_with_backoff

logger = get_logger(__name__)


def parse_next_link(link_header: Optional[str]) -> Optional[str]:
    """Return the target of the ``<url>; rel="next"`` entry of a Link header, if any."""
    if not link_header:
        return None
    for entry in link_header.split(","):
        target, _, params = entry.partition(";")
        if 'rel="next"' not in params:
            continue
        target = target.strip()
        if target.startswith("<") and target.endswith(">"):
            return target[1:-1]
    return None


class RateLimiter:
    """Token bucket shared by every thread using one client."""

    def __init__(self, requests_per_second: float, burst_size: int):
        self.rate = requests_per_second
        self.burst = burst_size
        self._tokens = float(burst_size)
        self._last_update = time.monotonic()
        self._lock = Lock()

    def acquire(self) -> None:
        """Acquire a token, waiting if necessary."""
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_update
            self._tokens = min(self.burst, self._tokens + elapsed * self.rate)
            self._last_update = now

            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return

            wait_time = (1.0 - self._tokens) / self.rate
            logger.debug(f"Rate limiting: waiting {wait_time:.2f}s (tokens: {self._tokens:.2f})")
            time.sleep(wait_time)
            self._tokens = 0.0
            self._last_update = time.monotonic()


class RegistryClient:
    """Registry Gateway over a shared requests.Session (safe for concurrent reads)."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_tls: bool = True,
        timeout: float = 30,
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        if username and password:
            self.session.auth = (username, password)
        self.session.verify = verify_tls
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self._retry = retry_with_backoff(
            max_retries=max_retries,
            initial_delay=initial_delay,
            max_delay=max_delay,
            exponential_base=exponential_base,
            jitter=jitter,
        )

    @classmethod
    def from_config(cls, config_manager, session: Optional[requests.Session] = None) -> "RegistryClient":
        """Build a client from a ConfigManager"""
        rate_limiter = None
        if config_manager.get_rate_limit_enabled():
            rate_limiter = RateLimiter(config_manager.get_rate_limit_rps(), config_manager.get_rate_limit_burst())
        return cls(
            config_manager.get_registry_url(),
            session=session,
            username=config_manager.get_registry_username(),
            password=config_manager.get_registry_password(),
            verify_tls=config_manager.get_verify_tls(),
            timeout=config_manager.get_request_timeout(),
            rate_limiter=rate_limiter,
            max_retries=config_manager.get_max_retries(),
            initial_delay=config_manager.get_retry_initial_delay(),
            max_delay=config_manager.get_retry_max_delay(),
            exponential_base=config_manager.get_retry_exponential_base(),
            jitter=config_manager.get_retry_jitter(),
        )

    def resolve_url(self, path: str) -> str:
        """Resolve a pagination link against the base URL; absolute URLs pass through."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def _request(
        self,
        method: str,
        url: str,
        operation: str,
        repository: Optional[str] = None,
        tag: Optional[str] = None,
        digest: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """Send one request, retrying transient failures. Non-2xx raises RegistryError."""

        @self._retry
        def _send() -> requests.Response:
            if self.rate_limiter is not None:
                self.rate_limiter.acquire()
            logger.debug(f"{method} {url}")
            try:
                resp = self.session.request(method, url, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                raise create_registry_connection_error(self.base_url, operation, e, repository, tag, digest)
            if not 200 <= resp.status_code < 300:
                raise create_registry_status_error(operation, resp.status_code, repository, tag, digest)
            return resp

        return _send()

    def _json(self, resp: requests.Response, operation: str, repository: Optional[str] = None,
              tag: Optional[str] = None, digest: Optional[str] = None) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise create_registry_protocol_error(operation, f"malformed JSON body ({e})", repository, tag, digest)

    def _paginate(self, first_url: str, key: str, operation: str, repository: Optional[str] = None) -> List[str]:
        """Follow Link rel="next" headers, accumulating ``key`` from every page."""
        items: List[str] = []
        url = first_url
        seen = set()
        while url:
            if url in seen:
                raise create_registry_protocol_error(operation, f"pagination loop at {url}", repository)
            seen.add(url)

            resp = self._request("GET", url, operation, repository=repository)
            data = self._json(resp, operation, repository)
            if not isinstance(data, dict):
                raise create_registry_protocol_error(operation, "expected a JSON object", repository)
            page = data.get(key)
            if page is None:
                page = []
            if not isinstance(page, list):
                raise create_registry_protocol_error(operation, f"'{key}' is not a list", repository)
            items.extend(page)

            next_link = parse_next_link(resp.headers.get("Link"))
            url = self.resolve_url(next_link) if next_link else None
        return items

    def list_repositories(self) -> List[str]:
        """List every repository in the catalog (all pages)."""
        return self._paginate(f"{self.base_url}/v2/_catalog", "repositories", "list_repositories")

    def list_tags(self, repository: str) -> List[str]:
        """List every tag of a repository (all pages). A null tag list is empty."""
        return self._paginate(
            f"{self.base_url}/v2/{repository}/tags/list", "tags", "list_tags", repository=repository
        )

    def get_digest(self, repository: str, tag: str) -> str:
        """Return the Docker-Content-Digest of the manifest ``tag`` points at."""
        resp = self._request(
            "HEAD",
            f"{self.base_url}/v2/{repository}/manifests/{tag}",
            "get_digest",
            repository=repository,
            tag=tag,
            headers={"Accept": MANIFEST_V2_MEDIA_TYPE},
        )
        digest = resp.headers.get("Docker-Content-Digest")
        if not digest:
            raise create_registry_protocol_error(
                "get_digest", "missing Docker-Content-Digest header", repository, tag=tag
            )
        return digest

    def get_manifest(self, repository: str, tag: str) -> Manifest:
        """Fetch and parse the schema 2 manifest for ``tag``."""
        resp = self._request(
            "GET",
            f"{self.base_url}/v2/{repository}/manifests/{tag}",
            "get_manifest",
            repository=repository,
            tag=tag,
            headers={"Accept": MANIFEST_V2_MEDIA_TYPE},
        )
        data = self._json(resp, "get_manifest", repository, tag=tag)
        try:
            return Manifest.from_dict(data)
        except (ValueError, TypeError) as e:
            raise create_registry_protocol_error("get_manifest", f"malformed manifest ({e})", repository, tag=tag)

    def get_image_config(self, repository: str, config_digest: str) -> Optional[datetime]:
        """Return the image's creation time, or None when it cannot be determined.

        Never raises: an unreadable config degrades the tag to "created unknown".
        """
        try:
            resp = self._request(
                "GET",
                f"{self.base_url}/v2/{repository}/blobs/{config_digest}",
                "get_image_config",
                repository=repository,
                digest=config_digest,
            )
            data = resp.json()
        except RegistryError as e:
            logger.warning(f"Could not fetch image config {config_digest} for {repository}: {e.message}")
            return None
        except ValueError as e:
            logger.warning(f"Could not parse image config {config_digest} for {repository}: {e}")
            return None

        if not isinstance(data, dict):
            return None
        created = parse_created(data.get("created"))
        if created is None:
            logger.debug(f"Image config {config_digest} for {repository} has no usable 'created' field")
        return created

    def delete_manifest(self, repository: str, digest: str) -> None:
        """Delete the manifest ``digest``; the registry removes every tag pointing at it."""
        self._request(
            "DELETE",
            f"{self.base_url}/v2/{repository}/manifests/{digest}",
            "delete_manifest",
            repository=repository,
            digest=digest,
            headers={"Accept": MANIFEST_V2_MEDIA_TYPE},
        )

    def close(self) -> None:
        self.session.close()
