#!/usr/bin/env python3
"""Minimal Miniflux REST API client (Basic auth).

Only implements the two calls the summarizer needs: listing unread entries and
replacing an entry's content. Each call is a single attempt; failures surface
as FeedSourceError.
"""

from asyncio import TimeoutError
from json import JSONDecodeError, dumps
from typing import List, Optional

from aiohttp import BasicAuth, ClientError, ClientResponse, ClientSession, ClientTimeout

from config import MinifluxSettings, get_logger
from errors import FeedSourceError, InvalidPayloadError
from models import Entry, parse_entries

logger = get_logger("miniflux")

UNREAD_ENTRIES_LIMIT = 100
ERROR_BODY_PREVIEW = 500


def _format_client_error(error: Exception) -> str:
    """Describe aiohttp client errors with any available status/errno."""
    parts: List[str] = [error.__class__.__name__]
    status = getattr(error, 'status', None)
    if status is not None:
        parts.append(f"status={status}")
    os_error = getattr(error, 'os_error', None)
    if os_error is not None:
        errno = getattr(os_error, 'errno', None)
        if errno is not None:
            parts.append(f"errno={errno}")
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


class MinifluxClient:
    """Async Miniflux API client.

    The client owns its ClientSession unless one is passed in. Use it as an
    async context manager so the session is closed with the invocation.
    """

    settings: MinifluxSettings
    session: Optional[ClientSession] = None

    def __init__(self, settings: MinifluxSettings, session: Optional[ClientSession] = None, timeout: int = 30) -> None:
        self.settings = settings
        self.base_url = settings.url.rstrip("/")
        self.auth = BasicAuth(settings.username, settings.password)
        self.timeout = ClientTimeout(total=timeout)
        self._owns_session = session is None
        self.session = session

    async def __aenter__(self) -> "MinifluxClient":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_session(self) -> ClientSession:
        if self.session is None:
            self.session = ClientSession(json_serialize=dumps)
            self._owns_session = True
        return self.session

    async def close(self) -> None:
        """Close the session if this client created it."""
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    def _headers(self) -> dict:
        return {'Content-Type': 'application/json'}

    async def _raise_for_status(self, response: ClientResponse, action: str) -> None:
        if 200 <= response.status < 300:
            return
        body = await response.text()
        logger.error(f"Miniflux {action} failed: HTTP {response.status} {body[:ERROR_BODY_PREVIEW]}")
        raise FeedSourceError(f"Miniflux {action} failed with HTTP {response.status}", status=response.status, body=body)

    async def get_unread_entries(self, limit: int = UNREAD_ENTRIES_LIMIT) -> List[Entry]:
        """Fetch up to `limit` unread entries."""
        session = self._ensure_session()
        url = f"{self.base_url}/v1/entries"
        params = {"status": "unread", "limit": str(limit)}
        try:
            async with session.get(url, params=params, auth=self.auth, headers=self._headers(), timeout=self.timeout) as response:
                await self._raise_for_status(response, "list unread entries")
                try:
                    payload = await response.json(content_type=None)
                except (JSONDecodeError, ValueError) as e:
                    raise InvalidPayloadError(f"Miniflux returned invalid JSON: {e}") from e
        except TimeoutError as e:
            raise FeedSourceError(f"Timed out listing unread entries from {self.base_url}") from e
        except ClientError as e:
            raise FeedSourceError(f"Error listing unread entries: {_format_client_error(e)}") from e

        entries = parse_entries(payload)
        logger.info(f"Fetched {len(entries)} unread entries")
        return entries

    async def update_entry(self, entry_id: int, content: str) -> None:
        """Replace the content of one entry."""
        session = self._ensure_session()
        url = f"{self.base_url}/v1/entries/{entry_id}"
        try:
            async with session.put(url, json={"content": content}, auth=self.auth, headers=self._headers(), timeout=self.timeout) as response:
                await self._raise_for_status(response, f"update of entry {entry_id}")
        except TimeoutError as e:
            raise FeedSourceError(f"Timed out updating entry {entry_id}") from e
        except ClientError as e:
            raise FeedSourceError(f"Error updating entry {entry_id}: {_format_client_error(e)}") from e
        logger.debug(f"Updated entry {entry_id}")
