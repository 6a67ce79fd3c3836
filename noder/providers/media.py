"""
Remote media: inline images for multimodal chat requests and save
generated files to disk.

Every download goes through ``with_retry``; size limits and bad
destinations are validation errors and are never retried.
"""

import base64
import logging
import re
import time
from collections.abc import Mapping
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

import httpx

from noder.providers.errors import (
    MediaSaveError,
    NodeValidationError,
    ProviderHTTPError,
    ProviderRequestError,
)
from noder.providers.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, with_retry

logger = logging.getLogger(__name__)

MAX_IMAGE_SIZE = 20 * 1024 * 1024  # 20MB
DEFAULT_MIME_TYPE = "image/png"
DEFAULT_EXTENSION = "png"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def is_data_url(value: str) -> bool:
    return value.startswith("data:")


def is_remote_url(value: str) -> bool:
    return value.startswith(("http://", "https://"))


def encode_data_url(content: bytes, mime_type: str | None = None) -> str:
    encoded = base64.b64encode(content).decode("utf-8")
    return f"data:{mime_type or DEFAULT_MIME_TYPE};base64,{encoded}"


async def _get_once(
    url: str,
    http_client: httpx.AsyncClient | None,
    timeout: float,
    headers: Mapping[str, str] | None,
) -> httpx.Response:
    try:
        if http_client is not None:
            response = await http_client.get(
                url, headers=headers, timeout=timeout, follow_redirects=True
            )
        else:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                response = await client.get(url, headers=headers)
    except httpx.TimeoutException as e:
        raise ProviderRequestError(f"Timed out downloading {url}") from e
    except httpx.RequestError as e:
        raise ProviderRequestError(f"Failed to download {url}: {e}") from e

    if not response.is_success:
        raise ProviderHTTPError(
            f"Download failed ({response.status_code}): {url}",
            status_code=response.status_code,
            data=response.text[:500],
        )
    return response


async def fetch(
    url: str,
    *,
    http_client: httpx.AsyncClient | None = None,
    headers: Mapping[str, str] | None = None,
    timeout: float = 30.0,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    operation_name: str = "media.fetch",
) -> httpx.Response:
    """
    GET ``url``, retrying 429, 5xx, connection errors and timeouts.

    Raises:
        ProviderHTTPError: non-2xx response once retries are exhausted
        ProviderRequestError: transport failure once retries are exhausted
    """
    return await with_retry(
        lambda: _get_once(url, http_client, timeout, headers),
        max_attempts=max_attempts,
        base_delay=base_delay,
        operation_name=operation_name,
        metadata={"url": url},
    )


async def url_to_data_url(
    url: str,
    *,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> str:
    """
    Fetch ``url`` and return its content as a ``data:`` URL.

    Data URLs and non-http values are returned unchanged.

    Raises:
        NodeValidationError: the image is larger than MAX_IMAGE_SIZE
        ProviderHTTPError / ProviderRequestError: after retries
    """
    if is_data_url(url) or not is_remote_url(url):
        return url

    response = await fetch(
        url,
        http_client=http_client,
        timeout=timeout,
        max_attempts=max_attempts,
        base_delay=base_delay,
        operation_name="media.fetch_image",
    )
    if len(response.content) > MAX_IMAGE_SIZE:
        size_mb = len(response.content) / (1024 * 1024)
        raise NodeValidationError(f"Image exceeds 20MB limit ({size_mb:.1f}MB)")

    mime_type = response.headers.get("content-type", "").split(";")[0].strip() or None
    logger.debug(f"Inlined {len(response.content)} bytes from {url}")
    return encode_data_url(response.content, mime_type)


# --- saving ---


def safe_filename(name: str) -> str:
    """``name`` reduced to a single path component of safe characters."""
    path = PurePosixPath(name.replace("\\", "/").strip()).name
    stem, dot, extension = path.rpartition(".")
    if not dot:
        stem, extension = path, ""
    stem = _UNSAFE_CHARS.sub("_", stem).strip("_") or "file"
    extension = re.sub(r"[^A-Za-z0-9]", "", extension)
    return f"{stem}.{extension}" if extension else stem


def default_filename(url: str) -> str:
    """``noder-output-<unix time>.<ext>`` with the extension taken from the URL path."""
    suffix = PurePosixPath(urlparse(url).path).suffix.lstrip(".")
    extension = re.sub(r"[^A-Za-z0-9]", "", suffix) or DEFAULT_EXTENSION
    return f"noder-output-{int(time.time())}.{extension}"


def resolve_destination(base_dir: Path, destination_folder: str | None) -> Path:
    """
    Folder a file is saved into.

    Empty → ``base_dir``; absolute paths are used as given; relative paths
    are placed under ``base_dir`` with ``.`` and ``..`` segments dropped.
    """
    folder = (destination_folder or "").strip()
    if not folder:
        return base_dir
    candidate = Path(folder).expanduser()
    if candidate.is_absolute():
        return candidate
    parts = [
        part.strip()
        for part in re.split(r"[/\\]", folder)
        if part.strip() not in ("", ".", "..")
    ]
    return base_dir.joinpath(*parts)


async def save_media(
    url: str,
    *,
    base_dir: Path,
    destination_folder: str | None = None,
    filename: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    headers: Mapping[str, str] | None = None,
    timeout: float = 120.0,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> Path:
    """
    Download ``url`` and write it to disk.

    Returns:
        Absolute path of the written file

    Raises:
        ProviderHTTPError / ProviderRequestError: download failed after retries
        MediaSaveError: the folder or file could not be written
    """
    response = await fetch(
        url,
        http_client=http_client,
        headers=headers,
        timeout=timeout,
        max_attempts=max_attempts,
        base_delay=base_delay,
        operation_name="media.save",
    )

    folder = resolve_destination(base_dir, destination_folder)
    name = safe_filename(filename) if filename and filename.strip() else default_filename(url)
    target = folder / name
    try:
        folder.mkdir(parents=True, exist_ok=True)
        target.write_bytes(response.content)
    except OSError as e:
        raise MediaSaveError(f"Failed to save file: {e}") from e

    logger.info(f"Saved {len(response.content)} bytes from {url} to {target}")
    return target.resolve()
