import json
import math
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
import structlog

from quotameter.errors import SessionNotFoundError
from quotameter.models import SessionInfo, TokenBuckets, UsageRecord

logger = structlog.get_logger()

SESSION_PREFIX = "ses_"


def _number(value: "Any") -> "int | None":
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def _string(value: "Any") -> "str | None":
    return value if isinstance(value, str) else None


def parse_message(data: "Any") -> "UsageRecord | None":
    """
    converts one stored message into a UsageRecord. Returns None
    for anything that is not a usable assistant reply.
    """
    if not isinstance(data, dict) or data.get("role") != "assistant":
        return None

    time_info = data.get("time")
    created = _number(time_info.get("created")) if isinstance(time_info, dict) else None
    session_id = _string(data.get("sessionID"))
    if created is None or session_id is None:
        return None

    return UsageRecord(
        id=_string(data.get("id")) or "",
        session_id=session_id,
        provider_id=_string(data.get("providerID")),
        model_id=_string(data.get("modelID")),
        tokens=TokenBuckets.from_message(data.get("tokens")),
        created_ms=created,
    )


def _in_window(
    record: "UsageRecord", since_ms: "int | None", until_ms: "int | None"
) -> "bool":
    if since_ms is not None and record.created_ms < since_ms:
        return False
    if until_ms is not None and record.created_ms > until_ms:
        return False
    return True


async def _read_json(path: "Path") -> "Any":
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            return json.loads(await f.read())
    except (OSError, ValueError) as e:
        logger.debug("storage_file_skipped", path=str(path), error=str(e))
        return None


class OpenCodeStorage:
    """
    OpenCodeStorage reads OpenCode's on-disk message store:

     - <data_dir>/storage/message/ses_<id>/<msg>.json
     - <data_dir>/storage/session/**/ses_<id>.json

    Messages are grouped in one directory per session, which
    makes a session filter a single directory read.
    """

    def __init__(self, data_dir: "Path") -> "None":
        self._data_dir = data_dir

    @property
    def message_dir(self) -> "Path":
        return self._data_dir / "storage" / "message"

    @property
    def session_dir(self) -> "Path":
        return self._data_dir / "storage" / "session"

    async def list_session_ids(self) -> "list[str]":
        try:
            entries = await aiofiles.os.listdir(self.message_dir)
        except OSError:
            return []

        session_ids = []
        for name in entries:
            if name.startswith(SESSION_PREFIX) and await aiofiles.os.path.isdir(
                self.message_dir / name
            ):
                session_ids.append(name)
        return sorted(session_ids)

    async def _read_session_messages(
        self,
        directory: "Path",
        since_ms: "int | None",
        until_ms: "int | None",
    ) -> "list[UsageRecord]":
        names = await aiofiles.os.listdir(directory)
        records: "list[UsageRecord]" = []

        for name in sorted(names):
            if not name.endswith(".json"):
                continue
            record = parse_message(await _read_json(directory / name))
            if record is None:
                continue
            if _in_window(record, since_ms, until_ms):
                records.append(record)

        return records

    async def list_records(
        self,
        since_ms: "int | None" = None,
        until_ms: "int | None" = None,
    ) -> "list[UsageRecord]":
        records: "list[UsageRecord]" = []

        for session_id in await self.list_session_ids():
            try:
                records.extend(
                    await self._read_session_messages(
                        self.message_dir / session_id, since_ms, until_ms
                    )
                )
            except OSError as e:
                logger.debug(
                    "storage_session_skipped", session_id=session_id, error=str(e)
                )

        records.sort(key=lambda r: r.created_ms)
        logger.debug("storage_records_listed", record_count=len(records))
        return records

    async def list_records_for_session(
        self,
        session_id: "str",
        since_ms: "int | None" = None,
        until_ms: "int | None" = None,
    ) -> "list[UsageRecord]":
        if not session_id.startswith(SESSION_PREFIX) or "/" in session_id:
            raise SessionNotFoundError(session_id, "(invalid session ID format)")

        directory = self.message_dir / session_id
        if not await aiofiles.os.path.isdir(directory):
            raise SessionNotFoundError(session_id, str(directory))

        try:
            records = await self._read_session_messages(directory, since_ms, until_ms)
        except OSError:
            raise SessionNotFoundError(session_id, str(directory)) from None

        records.sort(key=lambda r: r.created_ms)
        return records

    async def read_sessions_index(self) -> "dict[str, SessionInfo]":
        index: "dict[str, SessionInfo]" = {}
        await self._visit_sessions(self.session_dir, index)
        return index

    async def _visit_sessions(
        self, directory: "Path", index: "dict[str, SessionInfo]"
    ) -> "None":
        try:
            entries = await aiofiles.os.listdir(directory)
        except OSError:
            return

        for name in sorted(entries):
            path = directory / name
            if await aiofiles.os.path.isdir(path):
                await self._visit_sessions(path, index)
                continue
            if not (name.startswith(SESSION_PREFIX) and name.endswith(".json")):
                continue

            data = await _read_json(path)
            if not isinstance(data, dict):
                continue
            session_id = _string(data.get("id"))
            if session_id is None or not session_id.startswith(SESSION_PREFIX):
                continue

            time_info = data.get("time")
            if not isinstance(time_info, dict):
                time_info = {}
            index[session_id] = SessionInfo(
                id=session_id,
                title=_string(data.get("title")),
                parent_id=_string(data.get("parentID")),
                created_ms=_number(time_info.get("created")),
                updated_ms=_number(time_info.get("updated")),
            )
