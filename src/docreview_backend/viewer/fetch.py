from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

import requests

logger = logging.getLogger(__name__)

FetchBytes = Callable[[str], Awaitable[bytes]]


def _download(url: str, session: Optional[requests.Session], timeout: float) -> bytes:
    response = (session or requests).get(url, timeout=timeout)
    response.raise_for_status()
    logger.debug("Fetched %d bytes from %s", len(response.content), url)
    return response.content


async def fetch_document_bytes(url: str, session: Optional[requests.Session] = None, timeout: float = 30.0) -> bytes:
    """
    Download a document over HTTP(S) in a worker thread.

    Raises:
        requests.HTTPError: On a non-2xx response
        requests.exceptions.RequestException: On connection problems
    """
    return await asyncio.to_thread(_download, url, session, timeout)


async def read_local_bytes(location: str) -> bytes:
    """Read a document the service stores on disk; ``file://`` prefixes are accepted."""
    path = Path(location.removeprefix("file://"))
    return await asyncio.to_thread(path.read_bytes)


async def get_document_bytes(location: str) -> bytes:
    if location.startswith(("http://", "https://")):
        return await fetch_document_bytes(location)
    return await read_local_bytes(location)
