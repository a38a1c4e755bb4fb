# store.py
"""
Store collaborator: the remote relational store holding profiles, threads and
messages. `Store` documents the contract the chat core relies on;
`RelayStore` talks to the development backend (main.py) over HTTP.
"""
import functools
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx

from config import settings
from errors import ConflictError, StoreError
from models import MessageRow, NewMessage, Profile, Thread

log = logging.getLogger(__name__)


class Store(ABC):
    @abstractmethod
    async def create_profile(self, username: str, address: str, email: Optional[str] = None) -> Profile: ...

    @abstractmethod
    async def find_profile(self, username: str, email: Optional[str] = None) -> Optional[Profile]: ...

    @abstractmethod
    async def get_profile_by_address(self, address: str) -> Optional[Profile]: ...

    @abstractmethod
    async def search_profiles(self, query: str, exclude_address: str) -> List[Profile]: ...

    @abstractmethod
    async def get_or_create_thread(self, a: str, b: str) -> Thread: ...

    @abstractmethod
    async def get_thread(self, thread_id: str) -> Optional[Thread]: ...

    @abstractmethod
    async def list_threads(self, address: str) -> List[Thread]:
        """Threads the address takes part in, most recent activity first."""

    @abstractmethod
    async def insert_message(self, message: NewMessage) -> MessageRow:
        """Insert and return the stored row (with its generated id and timestamp)."""

    @abstractmethod
    async def list_messages(self, thread_id: str) -> List[MessageRow]:
        """All rows of a thread ordered by timestamp ascending."""

    @abstractmethod
    async def latest_messages(self, thread_ids: List[str]) -> Dict[str, MessageRow]: ...

    @abstractmethod
    async def count_unread(self, thread_id: str, reader: str) -> int: ...

    @abstractmethod
    async def mark_read(self, ids: List[str]) -> List[str]:
        """Bulk read-marking; returns the ids that changed."""


def _decoded(fn):
    """Turn a response that does not fit the expected shape into StoreError."""
    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except (KeyError, TypeError, ValueError) as e:  # pydantic errors are ValueErrors
            raise StoreError(f"{fn.__name__}: malformed store response ({e})") from e
    return wrapper


class RelayStore(Store):
    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None, transport=None):
        self.base_url = (base_url or settings["store_url"]).rstrip("/")
        self.timeout = timeout if timeout is not None else float(settings.get("store_timeout_secs", 10))
        self._transport = transport  # httpx.ASGITransport in tests

    async def _request(self, method: str, path: str, **kwargs) -> Optional[dict]:
        """Returns the JSON body, or None on 404."""
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                r = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise StoreError(f"{method} {path} timed out") from e
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e

        if r.status_code == 404:
            return None
        if r.status_code >= 400:
            try:
                detail = r.json().get("detail", r.text)
            except (ValueError, AttributeError):
                detail = r.text
            log.debug("%s %s -> %s %s", method, path, r.status_code, detail)
            if r.status_code == 409:
                raise ConflictError(str(detail), status=409)
            raise StoreError(str(detail), status=r.status_code)
        try:
            return r.json()
        except ValueError as e:
            raise StoreError(f"{method} {path}: response is not JSON", status=r.status_code) from e

    async def _must(self, method: str, path: str, **kwargs) -> dict:
        data = await self._request(method, path, **kwargs)
        if data is None:
            raise StoreError(f"{method} {path}: not found", status=404)
        return data

    # -- profiles --
    @_decoded
    async def create_profile(self, username, address, email=None):
        body = {"username": username, "address": address, "email": email}
        data = await self._must("POST", "/api/profiles", json=body)
        return Profile(**data["profile"])

    @_decoded
    async def find_profile(self, username, email=None):
        params = {"username": username}
        if email is not None:
            params["email"] = email
        data = await self._request("GET", "/api/profiles", params=params)
        return Profile(**data["profile"]) if data else None

    @_decoded
    async def get_profile_by_address(self, address):
        data = await self._request("GET", f"/api/profiles/by-address/{address}")
        return Profile(**data["profile"]) if data else None

    @_decoded
    async def search_profiles(self, query, exclude_address):
        data = await self._must("GET", "/api/profiles/search", params={"q": query, "exclude": exclude_address})
        return [Profile(**p) for p in data["profiles"]]

    # -- threads --
    @_decoded
    async def get_or_create_thread(self, a, b):
        data = await self._must("POST", "/api/threads", json={"participant1": a, "participant2": b})
        return Thread(**data["thread"])

    @_decoded
    async def get_thread(self, thread_id):
        data = await self._request("GET", f"/api/threads/{thread_id}")
        return Thread(**data["thread"]) if data else None

    @_decoded
    async def list_threads(self, address):
        data = await self._must("GET", "/api/threads", params={"participant": address})
        return [Thread(**t) for t in data["threads"]]

    @_decoded
    async def count_unread(self, thread_id, reader):
        data = await self._must("GET", f"/api/threads/{thread_id}/unread", params={"reader": reader})
        return int(data["count"])

    # -- messages --
    @_decoded
    async def insert_message(self, message):
        data = await self._must("POST", "/api/messages", json=message.model_dump())
        return MessageRow(**data["message"])

    @_decoded
    async def list_messages(self, thread_id):
        data = await self._must("GET", "/api/messages", params={"thread_id": thread_id})
        return [MessageRow(**m) for m in data["messages"]]

    @_decoded
    async def latest_messages(self, thread_ids):
        if not thread_ids:
            return {}
        data = await self._must("GET", "/api/messages/latest", params=[("thread_id", t) for t in thread_ids])
        return {tid: MessageRow(**m) for tid, m in data["messages"].items()}

    @_decoded
    async def mark_read(self, ids):
        if not ids:
            return []
        data = await self._must("POST", "/api/messages/read", json={"ids": list(ids)})
        return data["ids"]
