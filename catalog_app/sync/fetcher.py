"""
HTTP fetcher for authoritative catalog files.

Downloads a source file, following redirects up to a small hop limit under a
single overall deadline that also covers streaming the body, and fingerprints
the bytes with SHA-256. Retries are left to the caller.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable
from urllib.parse import urljoin, urlparse

import requests

from .errors import STAGE_FETCH, SyncError

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_REDIRECTS = 5
CHUNK_SIZE = 64 * 1024
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
USER_AGENT = "catalog-sync/1.0 (+approved product list synchronization)"


class FetchError(SyncError):
    """Raised when a source file cannot be retrieved."""

    stage = STAGE_FETCH


class FetchTimeoutError(FetchError):
    """Raised when the download exceeds its overall deadline."""


class FetchHTTPError(FetchError):
    """Raised for non-2xx responses."""

    def __init__(self, url: str, status_code: int):
        super().__init__(
            f"Fetching {url} returned HTTP {status_code}",
            details={"url": url, "status_code": status_code},
        )
        self.url = url
        self.status_code = status_code


class TooManyRedirectsError(FetchError):
    """Raised on redirect loops or when the hop limit is exceeded."""


@dataclass(frozen=True)
class FetchResult:
    content: bytes
    fingerprint: str
    final_url: str
    status_code: int
    content_type: str | None
    redirects: tuple[str, ...] = ()

    @property
    def size_bytes(self) -> int:
        return len(self.content)


def compute_fingerprint(content: bytes) -> str:
    """Return the SHA-256 hex digest identifying ``content``."""
    return hashlib.sha256(content).hexdigest()


class SourceFetcher:
    """Retrieve raw source files over HTTP(S), or from disk for ``file://`` locations."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = float(timeout)
        self.max_redirects = int(max_redirects)
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    def fetch(self, location: str) -> FetchResult:
        if not location:
            raise FetchError("Source has no fetch location configured.")

        parsed = urlparse(location)
        if parsed.scheme == "file":
            return self._read_local(Path(parsed.path))
        if parsed.scheme not in ("http", "https"):
            raise FetchError(
                f"Unsupported fetch location scheme '{parsed.scheme or '(none)'}'.",
                details={"url": location},
            )
        return self._fetch_http(location)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_http(self, location: str) -> FetchResult:
        deadline = self.clock() + self.timeout
        url = location
        visited: list[str] = []

        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise self._deadline_error(location)
            try:
                response = self.session.get(
                    url,
                    allow_redirects=False,
                    timeout=remaining,
                    headers={"User-Agent": USER_AGENT},
                    stream=True,
                )
            except requests.Timeout as exc:
                raise FetchTimeoutError(
                    f"Fetching {url} timed out: {exc}",
                    details={"url": url, "timeout_seconds": self.timeout},
                ) from exc
            except requests.RequestException as exc:
                raise FetchError(f"Fetching {url} failed: {exc}", details={"url": url}) from exc

            with response:
                if response.status_code in REDIRECT_STATUSES:
                    target = response.headers.get("Location")
                    if not target:
                        raise FetchHTTPError(url, response.status_code)
                    next_url = urljoin(url, target)
                    visited.append(url)
                    if next_url in visited:
                        raise TooManyRedirectsError(
                            f"Redirect loop detected while fetching {location}",
                            details={"url": location, "redirects": visited},
                        )
                    if len(visited) > self.max_redirects:
                        raise TooManyRedirectsError(
                            f"Fetching {location} exceeded {self.max_redirects} redirects",
                            details={"url": location, "redirects": visited},
                        )
                    self.logger.debug("Following redirect %s -> %s", url, next_url)
                    url = next_url
                    continue

                if not 200 <= response.status_code < 300:
                    raise FetchHTTPError(url, response.status_code)

                content = self._read_body(response, url, location, deadline)
                result = FetchResult(
                    content=content,
                    fingerprint=compute_fingerprint(content),
                    final_url=url,
                    status_code=response.status_code,
                    content_type=response.headers.get("Content-Type"),
                    redirects=tuple(visited),
                )
            self.logger.info(
                "Fetched source file",
                extra={
                    "catalog_sync_url": url,
                    "catalog_sync_bytes": result.size_bytes,
                    "catalog_sync_redirects": len(visited),
                    "catalog_sync_fingerprint": result.fingerprint,
                },
            )
            return result

    def _read_body(self, response, url: str, location: str, deadline: float) -> bytes:
        """Stream the body, checking the overall deadline after every chunk."""
        chunks: list[bytes] = []
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if self.clock() > deadline:
                    raise self._deadline_error(location)
                if chunk:
                    chunks.append(chunk)
        except requests.Timeout as exc:
            raise FetchTimeoutError(
                f"Fetching {url} timed out: {exc}",
                details={"url": url, "timeout_seconds": self.timeout},
            ) from exc
        except requests.RequestException as exc:
            raise FetchError(f"Reading {url} failed: {exc}", details={"url": url}) from exc
        return b"".join(chunks)

    def _deadline_error(self, location: str) -> FetchTimeoutError:
        return FetchTimeoutError(
            f"Fetching {location} exceeded {self.timeout:g}s timeout",
            details={"url": location, "timeout_seconds": self.timeout},
        )

    def _read_local(self, path: Path) -> FetchResult:
        try:
            content = path.read_bytes()
        except OSError as exc:
            raise FetchError(f"Could not read {path}: {exc}", details={"path": str(path)}) from exc
        return FetchResult(
            content=content,
            fingerprint=compute_fingerprint(content),
            final_url=path.resolve().as_uri(),
            status_code=200,
            content_type=None,
        )
