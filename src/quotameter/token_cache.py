"""
Persistent access-token cache for multi-account providers.

Each account needs its own short-lived access token. Keeping them
on disk lets a new process reuse a still-valid token instead of
refreshing every account on start.
"""

import asyncio
import contextlib
import hashlib
import json
import os
import time
from pathlib import Path
from typing import Any, Callable, Protocol

import aiofiles
import aiofiles.os
import structlog

from quotameter.models import CachedAccessToken

logger = structlog.get_logger()

CACHE_VERSION = 1


def now_ms() -> "int":
    return int(time.time() * 1000)


def make_account_cache_key(
    refresh_token: "str",
    project_id: "str",
    email: "str | None" = None,
) -> "str":
    """
    derives a stable cache key for an account. Only a truncated
    sha256 of the refresh token contributes, so the key can be
    written to disk.
    """
    email_part = (email or "").strip().lower()
    digest = hashlib.sha256(
        f"{refresh_token}\n{project_id}".encode("utf-8")
    ).hexdigest()[:16]
    return f"{email_part}::{project_id}::{digest}"


class TokenCacheStore(Protocol):
    """
    TokenCacheStore is the backing storage for AccessTokenCache.
    load returns None when nothing has been stored yet.
    """

    async def load(self) -> "str | None": ...

    async def save(self, payload: "str") -> "None": ...


class MemoryTokenCacheStore:
    def __init__(self, payload: "str | None" = None) -> "None":
        self.payload = payload
        self.save_count = 0

    async def load(self) -> "str | None":
        return self.payload

    async def save(self, payload: "str") -> "None":
        self.payload = payload
        self.save_count += 1


class FileTokenCacheStore:
    """
    FileTokenCacheStore keeps the cache in a single JSON file.
    Writes go to a sibling temp file first and are moved into
    place, so a crash never leaves a half-written cache.
    """

    def __init__(self, path: "Path") -> "None":
        self.path = path

    async def load(self) -> "str | None":
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                return await f.read()
        except FileNotFoundError:
            return None

    async def save(self, payload: "str") -> "None":
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
            await aiofiles.os.replace(tmp_path, self.path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                await aiofiles.os.remove(tmp_path)
            raise


def _parse_cache(payload: "str | None") -> "dict[str, CachedAccessToken]":
    if payload is None:
        return {}

    try:
        data: "Any" = json.loads(payload)
    except ValueError:
        logger.warning("token_cache_corrupt")
        return {}

    if not isinstance(data, dict):
        logger.warning("token_cache_corrupt")
        return {}

    if data.get("version") != CACHE_VERSION or not isinstance(data.get("tokens"), dict):
        logger.warning("token_cache_version_mismatch", version=data.get("version"))
        return {}

    tokens: "dict[str, CachedAccessToken]" = {}
    for key, raw in data["tokens"].items():
        entry = CachedAccessToken.from_dict(raw)
        if entry is not None:
            tokens[str(key)] = entry
    return tokens


class AccessTokenCache:
    """
    AccessTokenCache maps account cache keys to cached access
    tokens.

    The backing store is read once, on first use; concurrent
    first callers all await the same load task. Every mutation
    is applied in memory first and then persisted in full under
    a lock, so concurrent set() calls for different keys cannot
    drop each other's entries.
    """

    def __init__(
        self,
        store: "TokenCacheStore",
        clock: "Callable[[], int]" = now_ms,
    ) -> "None":
        self._store = store
        self._clock = clock
        self._tokens: "dict[str, CachedAccessToken] | None" = None
        self._loading: "asyncio.Task[dict[str, CachedAccessToken]] | None" = None
        self._persist_lock: "asyncio.Lock" = asyncio.Lock()

    @classmethod
    def for_path(cls, path: "Path") -> "AccessTokenCache":
        return cls(FileTokenCacheStore(path))

    async def _load(self) -> "dict[str, CachedAccessToken]":
        try:
            payload = await self._store.load()
        except (OSError, ValueError) as e:
            logger.warning("token_cache_unreadable", error=str(e))
            payload = None
        return _parse_cache(payload)

    async def _ensure_loaded(self) -> "dict[str, CachedAccessToken]":
        if self._tokens is not None:
            return self._tokens

        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load())

        tokens = await self._loading
        if self._tokens is None:
            self._tokens = tokens
            logger.debug("token_cache_loaded", entries=len(tokens))
        return self._tokens

    async def _persist(self) -> "None":
        async with self._persist_lock:
            # snapshot taken under the lock reflects every mutation so far
            payload = json.dumps(
                {
                    "version": CACHE_VERSION,
                    "updatedAt": self._clock(),
                    "tokens": {
                        key: entry.to_dict()
                        for key, entry in (self._tokens or {}).items()
                    },
                },
                indent=2,
            )
            await self._store.save(payload)

    async def get(self, key: "str", skew_ms: "int" = 0) -> "CachedAccessToken | None":
        """
        returns the entry only if it stays valid for more than
        skew_ms from now; otherwise None.
        """
        tokens = await self._ensure_loaded()
        entry = tokens.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock() + skew_ms:
            return None
        return entry

    async def set(self, key: "str", entry: "CachedAccessToken") -> "None":
        tokens = await self._ensure_loaded()
        tokens[key] = entry
        await self._persist()

    async def clear(self) -> "None":
        self._tokens = {}
        await self._persist()
