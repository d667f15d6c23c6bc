"""Image stores that supply the original, full resolution overlay images."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import FrozenSet, Protocol
from urllib.parse import quote

import httpx

from .errors import SourceAccessDeniedError, SourceNotFoundError, SourceTransientError

logger = logging.getLogger(__name__)

SOURCE_DIR_ENV = "OVERLAY_SOURCE_DIR"
SOURCE_URL_TEMPLATE_ENV = "OVERLAY_SOURCE_URL_TEMPLATE"
SOURCE_BUCKETS_ENV = "SOURCE_BUCKETS"
REQUEST_TIMEOUT_ENV = "OVERLAY_REQUEST_TIMEOUT"

DEFAULT_SOURCE_URL_TEMPLATE = "https://{bucket}.s3.amazonaws.com/{key}"
DEFAULT_REQUEST_TIMEOUT = 60.0


@dataclass(frozen=True)
class SourceLocator:
    """Bucket and key identifying an original overlay image."""

    bucket: str
    key: str

    def __str__(self) -> str:
        return f"{self.bucket}/{self.key}"


class ImageStore(Protocol):
    async def fetch(self, locator: SourceLocator) -> bytes:
        ...


def _allowed_buckets() -> FrozenSet[str]:
    raw_value = os.getenv(SOURCE_BUCKETS_ENV, "")
    return frozenset(token.strip() for token in raw_value.split(",") if token.strip())


def _request_timeout() -> httpx.Timeout:
    raw_value = os.getenv(REQUEST_TIMEOUT_ENV, "").strip()
    if not raw_value:
        return httpx.Timeout(DEFAULT_REQUEST_TIMEOUT)
    try:
        seconds = float(raw_value)
    except ValueError:
        return httpx.Timeout(DEFAULT_REQUEST_TIMEOUT)
    return httpx.Timeout(max(1.0, seconds))


def _check_bucket(locator: SourceLocator) -> None:
    allowed = _allowed_buckets()
    if allowed and locator.bucket not in allowed:
        raise SourceAccessDeniedError(
            f"bucket {locator.bucket!r} is not an allowed overlay source", locator=locator
        )


class HttpImageStore:
    """Download originals over HTTP using a ``{bucket}``/``{key}`` URL template."""

    def __init__(self, url_template: str | None = None, *, timeout: httpx.Timeout | None = None) -> None:
        template = url_template or os.getenv(SOURCE_URL_TEMPLATE_ENV, "").strip()
        self.url_template = template or DEFAULT_SOURCE_URL_TEMPLATE
        self.timeout = timeout or _request_timeout()

    def url_for(self, locator: SourceLocator) -> str:
        return self.url_template.format(bucket=locator.bucket, key=quote(locator.key, safe="/"))

    async def fetch(self, locator: SourceLocator) -> bytes:
        _check_bucket(locator)
        url = self.url_for(locator)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.get(url)
            except httpx.RequestError as exc:
                raise SourceTransientError(f"request for {locator} failed: {exc}") from exc

        if response.status_code == 404:
            raise SourceNotFoundError(f"source image {locator} not found", locator=locator)
        if response.status_code in {401, 403}:
            raise SourceAccessDeniedError(
                f"access to source image {locator} denied ({response.status_code})",
                locator=locator,
            )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SourceTransientError(
                f"source image {locator} returned {exc.response.status_code}"
            ) from exc

        logger.debug("Fetched %s (%d bytes) from %s", locator, len(response.content), url)
        return response.content


class LocalImageStore:
    """Read originals from ``<root>/<bucket>/<key>`` on the local filesystem."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def path_for(self, locator: SourceLocator) -> Path:
        root = self.root.resolve()
        candidate = (root / locator.bucket / locator.key.lstrip("/")).resolve()
        try:
            candidate.relative_to(root)
        except ValueError as exc:
            raise SourceAccessDeniedError(
                f"source image {locator} resolves outside the store root", locator=locator
            ) from exc
        return candidate

    async def fetch(self, locator: SourceLocator) -> bytes:
        _check_bucket(locator)
        path = self.path_for(locator)
        if not path.is_file():
            raise SourceNotFoundError(f"source image {locator} not found", locator=locator)
        try:
            return path.read_bytes()
        except PermissionError as exc:
            raise SourceAccessDeniedError(
                f"access to source image {locator} denied", locator=locator
            ) from exc
        except OSError as exc:
            raise SourceTransientError(f"reading source image {locator} failed: {exc}") from exc


def default_image_store() -> ImageStore:
    """Pick the local store when ``OVERLAY_SOURCE_DIR`` is set, HTTP otherwise."""

    source_dir = os.getenv(SOURCE_DIR_ENV, "").strip()
    if source_dir:
        return LocalImageStore(Path(source_dir).expanduser())
    return HttpImageStore()
