"""Local cache for images embedded in exported documents."""

import asyncio
import html
import os
import re
from pathlib import Path
from typing import Optional, Set, Union
from urllib.parse import quote

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from ..performance import BackgroundTaskQueue
from ..remote.base import DriveCMSError
from ..utils.logging import get_logger


# URLs with a path on a *.googleusercontent.com host; &amp; entities belong to the query
ASSET_URL_PATTERN = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{2,255}\.googleusercontent\.com\b"
    r"/(?:&amp;|[-a-zA-Z0-9@:%_+.~#?&/=])*"
)

CHUNK_SIZE = 64 * 1024


class AssetDownloadError(DriveCMSError):
    """Raised when an asset cannot be downloaded into the local store."""
    pass


def derive_key(url: str) -> str:
    """Local key for an asset URL: its final path segment, query included.

    HTML entities are decoded first so a URL read from exported markup and
    the same URL as a browser requests it share one key.
    """
    return html.unescape(url).split("/")[-1]


class AssetCache:
    """Extracts, rewrites and locally stores embedded document images.

    Rewriting is purely textual and never waits on downloads; a file named
    after the derived key in ``asset_dir`` is the only record that an asset
    has been cached. Distinct URLs sharing a final path segment map to the
    same key, and only the first one is stored.
    """

    def __init__(
        self,
        asset_dir: Union[str, Path],
        service_base_url: str,
        session: Optional[ClientSession] = None,
        timeout_seconds: float = 30.0
    ):
        self.asset_dir = Path(asset_dir)
        self.service_base_url = service_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None
        self._in_flight: Set[str] = set()
        self.logger = get_logger(self.__class__.__name__)

    def extract_asset_urls(self, markup: Optional[str]) -> Set[str]:
        if not markup:
            return set()
        urls = (html.unescape(url) for url in ASSET_URL_PATTERN.findall(markup))
        # Host roots have no key to store them under
        return {url for url in urls if derive_key(url)}

    def rewrite_urls(self, markup: Optional[str]) -> str:
        """Point every asset URL in ``markup`` at this service's image route."""
        if not markup:
            return markup or ""

        def replace(match: re.Match) -> str:
            key = derive_key(match.group(0))
            if not key:
                return match.group(0)
            # Percent-encode so '&' and '#' in the key survive as one id parameter
            return f"{self.service_base_url}/getImage?id={quote(key, safe='?=')}"

        return ASSET_URL_PATTERN.sub(replace, markup)

    def asset_path(self, key: str) -> Optional[Path]:
        """Path a key is stored under, or None if the key is not a plain file name."""
        if not key or key in (".", "..") or "/" in key or os.sep in key:
            return None
        if os.altsep and os.altsep in key:
            return None
        return self.asset_dir / key

    def is_cached(self, key: str) -> bool:
        path = self.asset_path(key)
        return path is not None and path.is_file()

    def warm(self, markup: Optional[str], task_queue: BackgroundTaskQueue) -> int:
        """Queue a background download for every asset URL in ``markup``.

        Returns:
            Number of downloads submitted
        """
        urls = self.extract_asset_urls(markup)
        for url in sorted(urls):
            task_queue.submit(self.cache_asset(url), description=f"cache_asset {derive_key(url)}")
        return len(urls)

    async def cache_asset(self, url: str) -> bool:
        """Download ``url`` into the asset store unless its key is already present.

        Returns:
            True if the asset was downloaded by this call
        """
        key = derive_key(url)
        path = self.asset_path(key)
        if path is None:
            self.logger.warning("Refusing to cache asset with unusable key", url=url)
            return False

        if key in self._in_flight or path.exists():
            return False

        self._in_flight.add(key)
        try:
            await self._download(url, path)
            self.logger.info("Cached image", path=str(path))
            return True
        except AssetDownloadError as e:
            self.logger.error("Error downloading the image", path=str(path), error=str(e))
            return False
        finally:
            self._in_flight.discard(key)

    async def _download(self, url: str, path: Path) -> None:
        session = await self._get_session()
        tmp_path = path.with_name(path.name + ".part")
        try:
            async with session.head(url, allow_redirects=True) as head_response:
                if head_response.status != 200:
                    raise AssetDownloadError(
                        f"Unable to fetch the image {url}: HTTP {head_response.status}"
                    )

            async with session.get(url) as response:
                if response.status != 200:
                    raise AssetDownloadError(f"Unable to fetch the image {url}: HTTP {response.status}")

                self.asset_dir.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "wb") as f:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        f.write(chunk)
            os.replace(tmp_path, path)

        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise AssetDownloadError(f"Error downloading {url}: {e}") from e

        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    async def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(timeout=ClientTimeout(total=self.timeout_seconds))
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the HTTP session if this cache created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
