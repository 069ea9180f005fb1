from __future__ import annotations

"""
Fetching of corpus resources.

A resource location is either an ``http(s)://`` URL, fetched with
``httpx`` under the timeouts and size limit from :mod:`config`, or a
path on the local filesystem.  Both paths end in decoded JSON; every
failure is reported as :class:`AcquisitionError` (transport) or
:class:`ParseError` (content) so the loading ladder can treat them
uniformly.
"""

import asyncio
import json
import re
from pathlib import Path
from typing import Any, Optional

import httpx
from loguru import logger

from .config import (
    HTTP_CONNECT_TIMEOUT,
    HTTP_MAX_BYTES,
    HTTP_MAX_REDIRECTS,
    HTTP_READ_TIMEOUT,
    HTTP_USER_AGENT,
)
from .errors import AcquisitionError, ParseError

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


def is_url(location: str) -> bool:
    return bool(_URL_RE.match(location or ""))


def join_location(base: str, name: str) -> str:
    """Join a resource name onto a base URL or directory."""
    if is_url(base):
        return f"{base.rstrip('/')}/{name}"
    return str(Path(base) / name)


def make_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Async HTTP client with the project's hardened defaults."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(HTTP_READ_TIMEOUT, connect=HTTP_CONNECT_TIMEOUT),
        max_redirects=HTTP_MAX_REDIRECTS,
        headers={"User-Agent": HTTP_USER_AGENT},
        transport=transport,
    )


def _decode_json(raw: bytes, location: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ParseError(f"{location}: invalid JSON ({e})") from e


async def _fetch_url(client: httpx.AsyncClient, url: str) -> bytes:
    try:
        r = await client.get(url)
    except httpx.TimeoutException as e:
        raise AcquisitionError(f"{url}: timed out") from e
    except httpx.HTTPError as e:
        raise AcquisitionError(f"{url}: {e}") from e
    if r.status_code >= 400:
        raise AcquisitionError(f"{url}: HTTP {r.status_code}")
    if len(r.content) > HTTP_MAX_BYTES:
        raise AcquisitionError(f"{url}: {len(r.content)} bytes > {HTTP_MAX_BYTES} limit")
    return r.content


async def _read_file(path: str) -> bytes:
    p = Path(path)
    try:
        return await asyncio.to_thread(p.read_bytes)
    except OSError as e:
        raise AcquisitionError(f"{path}: {e.strerror or e}") from e


async def fetch_json(location: str, client: Optional[httpx.AsyncClient] = None) -> Any:
    """
    Fetch ``location`` and decode it as JSON.

    Raises
    ------
    AcquisitionError
        The resource could not be retrieved.
    ParseError
        The resource was retrieved but is not valid JSON.
    """
    if is_url(location):
        if client is None:
            async with make_client() as own_client:
                raw = await _fetch_url(own_client, location)
        else:
            raw = await _fetch_url(client, location)
    else:
        raw = await _read_file(location)
    logger.debug("Fetched {} bytes from {}", len(raw), location)
    return _decode_json(raw, location)
