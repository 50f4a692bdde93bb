"""
Image embedding for exports.

Corporate slides reference their image by URL: a data: URL from an upload,
an http(s) URL or a local file path. Exports are self-contained, so every
image is resolved to bytes up front, concurrently, before rendering starts.
"""

import asyncio
import base64
import binascii
import logging
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import aiohttp
from aiohttp import ClientTimeout

from jira_async import run_all
from jira_config import DEFAULT_MAX_CONCURRENT, DEFAULT_REQUEST_TIMEOUT
from jsr_errors import ASSET_ERROR, ExportError

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r'^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?);base64,(?P<data>.*)$', re.DOTALL)
MAX_IMAGE_BYTES = 20 * 1024 * 1024


@dataclass(frozen=True)
class EmbeddedAsset:
    url: str
    data: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"


def decode_data_url(url: str) -> EmbeddedAsset:
    """Decode a base64 data: URL.

    Raises:
        ExportError: ASSET_ERROR if the URL is not valid base64 data

    Example:
        >>> decode_data_url("data:image/png;base64,iVBORw0KGgo=").mime_type
        'image/png'
    """
    match = _DATA_URL.match(url.strip())
    if not match:
        raise ExportError(ASSET_ERROR, "Unsupported data URL for image (base64 expected)", recoverable=False)
    try:
        data = base64.b64decode(match.group("data"), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ExportError(ASSET_ERROR, f"Invalid base64 image data: {exc}", recoverable=False) from exc
    return EmbeddedAsset(url=url, data=data, mime_type=match.group("mime") or "application/octet-stream")


def _guess_mime(name: str, header: Optional[str] = None) -> str:
    if header:
        return header.split(";")[0].strip()
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


async def _fetch_http(session: aiohttp.ClientSession, url: str) -> EmbeddedAsset:
    try:
        async with session.get(url) as resp:
            if resp.status >= 400:
                raise ExportError(ASSET_ERROR, f"Failed to fetch image {url}: HTTP {resp.status}")
            data = await resp.read()
            mime = _guess_mime(url, resp.headers.get("Content-Type"))
    except asyncio.TimeoutError as exc:
        raise ExportError(ASSET_ERROR, f"Timed out fetching image {url}") from exc
    except aiohttp.ClientError as exc:
        raise ExportError(ASSET_ERROR, f"Failed to fetch image {url}: {exc}") from exc
    return EmbeddedAsset(url=url, data=data, mime_type=mime)


def _read_file(url: str) -> EmbeddedAsset:
    path = Path(url[len("file://"):] if url.startswith("file://") else url).expanduser()
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ExportError(ASSET_ERROR, f"Failed to read image {path}: {exc}") from exc
    return EmbeddedAsset(url=url, data=data, mime_type=_guess_mime(path.name))


async def embed_image(url: str, session: Optional[aiohttp.ClientSession] = None) -> EmbeddedAsset:
    """Resolve one image reference to bytes.

    Raises:
        ExportError: ASSET_ERROR when the image cannot be loaded or is too large
    """
    if url.startswith("data:"):
        asset = decode_data_url(url)
    elif url.startswith(("http://", "https://")):
        if session is None:
            async with aiohttp.ClientSession(timeout=ClientTimeout(total=DEFAULT_REQUEST_TIMEOUT)) as own:
                asset = await _fetch_http(own, url)
        else:
            asset = await _fetch_http(session, url)
    else:
        asset = _read_file(url)
    if asset.size > MAX_IMAGE_BYTES:
        raise ExportError(ASSET_ERROR, f"Image {url[:80]} is larger than {MAX_IMAGE_BYTES} bytes", recoverable=False)
    return asset


async def collect_assets(
    urls: Iterable[str],
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    timeout: int = DEFAULT_REQUEST_TIMEOUT,
) -> Tuple[Dict[str, EmbeddedAsset], Dict[str, str]]:
    """Embed every distinct image URL concurrently.

    An image that cannot be loaded does not fail the export: it is returned
    in the failures mapping (url -> reason) and the renderer shows a
    placeholder instead.

    Returns:
        (assets by url, failure reasons by url)
    """
    unique = list(dict.fromkeys(u for u in urls if u))
    if not unique:
        return {}, {}

    assets: Dict[str, EmbeddedAsset] = {}
    failures: Dict[str, str] = {}

    async with aiohttp.ClientSession(timeout=ClientTimeout(total=timeout)) as session:

        async def load(url: str) -> None:
            try:
                assets[url] = await embed_image(url, session)
            except ExportError as exc:
                failures[url] = exc.message
                logger.warning("Failed to embed image %s: %s", url[:80], exc.message)

        await run_all([(lambda url=url: load(url)) for url in unique], max_concurrent)

    logger.info("Embedded %d of %d images", len(assets), len(unique))
    return assets, failures
