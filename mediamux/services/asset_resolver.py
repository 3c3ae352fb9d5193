"""Remote asset resolution.

Turns public URLs into local files in the shared temp namespace:
- Google Drive sharing links are rewritten to the direct-download endpoint
- Redirects are followed hop by hop (bounded)
- Drive's "confirm download" HTML interstitial is answered with its token
- The body is streamed to a uniquely named file; partial files never survive
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Iterable
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

import httpx

from mediamux.exceptions import ResolutionError
from mediamux.utils.file_utils import (
    cleanup_temp_file,
    format_file_size,
    normalize_extension,
    temp_file_path,
)

logger = logging.getLogger(__name__)

INDIRECT_LINK_HOST = "drive.google.com"
DIRECT_DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={file_id}"

# Default extensions when the URL path has none
INDIRECT_LINK_EXTENSION = ".mp4"
GENERIC_EXTENSION = ".bin"

_FILE_ID_PATH_RE = re.compile(r"/file/d/([a-zA-Z0-9_-]+)")
_FILE_ID_QUERY_RE = re.compile(r"[?&]id=([a-zA-Z0-9_-]+)")
_CONFIRM_TOKEN_RE = re.compile(r"confirm=([a-zA-Z0-9_-]+)")
_CONFIRM_INPUT_RE = re.compile(r'name="confirm"\s+value="([a-zA-Z0-9_-]+)"')
_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,5}$")


class OriginKind(str, Enum):
    """How an asset was obtained."""

    DIRECT = "direct"
    CONFIRMED_INDIRECT = "confirmed-indirect"


@dataclass(frozen=True)
class MediaReference:
    """A remote locator plus an optional explicit extension hint."""

    url: str
    extension: str | None = None


@dataclass
class ResolvedAsset:
    """A downloaded file owned by the job that requested it."""

    local_path: Path
    origin_kind: OriginKind
    byte_size: int
    source_url: str


def is_indirect_link(url: str) -> bool:
    """Check if URL is a Google Drive sharing link."""
    host = (urlsplit(url).hostname or "").lower()
    return host == INDIRECT_LINK_HOST


def to_direct_download_url(url: str) -> str:
    """
    Rewrite a Drive sharing URL to its direct-download form.

    Handles ``/file/d/<id>/view``, ``/open?id=<id>`` and ``/uc?id=<id>``.
    URLs without a recognisable id are returned unchanged.
    """
    match = _FILE_ID_PATH_RE.search(url) or _FILE_ID_QUERY_RE.search(url)
    if not match:
        return url
    return DIRECT_DOWNLOAD_URL.format(file_id=match.group(1))


def with_query_param(url: str, key: str, value: str) -> str:
    """Return ``url`` with ``key`` set to ``value`` in its query string."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    query.append((key, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def _confirm_token(response: httpx.Response, body: str) -> str | None:
    """Drive's download confirmation token: cookie, form field, then any link in the page."""
    for name, value in response.cookies.items():
        if name.startswith("download_warning"):
            return value
    match = _CONFIRM_INPUT_RE.search(body) or _CONFIRM_TOKEN_RE.search(body)
    return match.group(1) if match else None


def _extension_from_url(url: str) -> str:
    suffix = PurePosixPath(urlsplit(url).path).suffix.lower()
    return suffix if _EXTENSION_RE.match(suffix) else ""


class AssetResolver:
    """Download remote media references into ``temp_dir``."""

    def __init__(
        self,
        temp_dir: str | Path,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 120.0,
        max_hops: int = 10,
        user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
        chunk_size: int = 1024 * 1024,
    ):
        self.temp_dir = Path(temp_dir)
        self.max_hops = max_hops
        self.chunk_size = chunk_size
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=10.0),
            follow_redirects=False,
        )
        self._headers = {"User-Agent": user_agent}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AssetResolver":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def resolve(self, reference: MediaReference | str) -> ResolvedAsset:
        """
        Download one reference.

        Raises:
            ResolutionError: On invalid URL, network/HTTP failure, non-public
                Drive file, or when the hop limit is exhausted
        """
        if isinstance(reference, str):
            reference = MediaReference(url=reference)

        indirect = is_indirect_link(reference.url)
        url = to_direct_download_url(reference.url) if indirect else reference.url
        if indirect and url != reference.url:
            logger.info(f"Converted Google Drive URL: {url}")
        origin = OriginKind.DIRECT

        if urlsplit(url).scheme not in ("http", "https") or not urlsplit(url).netloc:
            raise ResolutionError(f"Invalid URL: {reference.url}", url=reference.url)

        for hop in range(self.max_hops + 1):
            try:
                async with self._client.stream("GET", url, headers=self._headers) as response:
                    location = response.headers.get("location")
                    if 300 <= response.status_code < 400 and location:
                        url = urljoin(str(response.url), location)
                        logger.info(f"Following redirect ({hop + 1}) to: {url}")
                        continue

                    content_type = response.headers.get("content-type", "")
                    if "text/html" in content_type:
                        body = (await response.aread()).decode(errors="replace")
                        token = _confirm_token(response, body) if indirect else None
                        if token:
                            url = with_query_param(url, "confirm", token)
                            origin = OriginKind.CONFIRMED_INDIRECT
                            logger.info("Confirming Google Drive download...")
                            continue
                        raise ResolutionError(
                            "Failed to download: Received HTML instead of file. "
                            "The file may not be publicly accessible.",
                            code="NOT_PUBLICLY_ACCESSIBLE",
                            url=reference.url,
                            http_status=response.status_code,
                        )

                    if response.status_code != 200:
                        raise ResolutionError(
                            f"Failed to download: HTTP {response.status_code}",
                            url=reference.url,
                            http_status=response.status_code,
                        )

                    ext = (
                        normalize_extension(reference.extension)
                        or _extension_from_url(url)
                        or (INDIRECT_LINK_EXTENSION if indirect else GENERIC_EXTENSION)
                    )
                    local_path = temp_file_path(self.temp_dir, "download", ext)
                    size = await self._stream_to_file(response, local_path)
            except httpx.TimeoutException as e:
                raise ResolutionError(
                    "Download timeout", code="RESOLUTION_TIMEOUT", url=reference.url
                ) from e
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise ResolutionError(f"Download failed: {e}", url=reference.url) from e
            except OSError as e:
                raise ResolutionError(f"File write failed: {e}", url=reference.url) from e

            logger.info(f"Downloaded: {local_path.name} ({format_file_size(size)})")
            return ResolvedAsset(
                local_path=local_path,
                origin_kind=origin,
                byte_size=size,
                source_url=reference.url,
            )

        raise ResolutionError(
            f"Too many redirects (more than {self.max_hops})",
            code="TOO_MANY_REDIRECTS",
            url=reference.url,
        )

    async def _stream_to_file(self, response: httpx.Response, local_path: Path) -> int:
        """Write the body to ``local_path``; the file is removed unless the write completes."""
        size = 0
        completed = False
        try:
            with open(local_path, "wb") as fh:
                async for chunk in response.aiter_bytes(self.chunk_size):
                    fh.write(chunk)
                    size += len(chunk)
            completed = True
        finally:
            if not completed:
                cleanup_temp_file(local_path)
        return size

    async def resolve_many(
        self, references: Iterable[MediaReference | str]
    ) -> list[ResolvedAsset]:
        """
        Download all references concurrently.

        The batch fails as a whole: on the first error every other download
        is cancelled, files that did finish are deleted, and the error is
        re-raised.
        """
        refs = list(references)
        if not refs:
            return []

        tasks = [asyncio.create_task(self.resolve(ref)) for ref in refs]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, ResolvedAsset):
                    cleanup_temp_file(outcome.local_path)
            raise
