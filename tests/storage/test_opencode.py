import json
from pathlib import Path
from typing import Any

import pytest

from quotameter.aggregate import aggregate_usage
from quotameter.errors import SessionNotFoundError
from quotameter.models import TokenBuckets
from quotameter.pricing.catalog import StaticPricingCatalog
from quotameter.storage.opencode import OpenCodeStorage, parse_message


def assistant_message(
    message_id: "str",
    session_id: "str",
    created: "int",
    model_id: "str" = "claude-opus-4-5",
    **tokens: "Any",
) -> "dict[str, Any]":
    return {
        "id": message_id,
        "sessionID": session_id,
        "role": "assistant",
        "providerID": "anthropic",
        "modelID": model_id,
        "time": {"created": created, "completed": created + 10},
        "tokens": {
            "input": tokens.get("input", 0),
            "output": tokens.get("output", 0),
            "reasoning": tokens.get("reasoning", 0),
            "cache": {
                "read": tokens.get("cache_read", 0),
                "write": tokens.get("cache_write", 0),
            },
        },
    }


def write_message(data_dir: "Path", message: "dict[str, Any]") -> "None":
    directory = data_dir / "storage" / "message" / message["sessionID"]
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f"{message['id']}.json").write_text(json.dumps(message))


class TestParseMessage:
    def test_parses_assistant_reply(self) -> "None":
        record = parse_message(
            assistant_message("msg_1", "ses_a", 1000, input=10, output=5, cache_read=7)
        )
        assert record is not None
        assert record.session_id == "ses_a"
        assert record.provider_id == "anthropic"
        assert record.created_ms == 1000
        assert record.tokens == TokenBuckets(input=10, output=5, cache_read=7)

    def test_skips_user_messages(self) -> "None":
        message = assistant_message("msg_1", "ses_a", 1000)
        message["role"] = "user"
        assert parse_message(message) is None

    def test_skips_messages_without_time(self) -> "None":
        message = assistant_message("msg_1", "ses_a", 1000)
        del message["time"]
        assert parse_message(message) is None

    def test_bad_counters_count_as_zero(self) -> "None":
        message = assistant_message("msg_1", "ses_a", 1000)
        message["tokens"] = {"input": "12", "output": -4, "reasoning": True}
        record = parse_message(message)
        assert record is not None
        assert record.tokens == TokenBuckets()


class TestOpenCodeStorage:
    @pytest.mark.asyncio
    async def test_lists_records_in_time_order(self, tmp_path: "Path") -> "None":
        write_message(tmp_path, assistant_message("msg_2", "ses_b", 3000, input=2))
        write_message(tmp_path, assistant_message("msg_1", "ses_a", 2000, input=1))
        write_message(tmp_path, assistant_message("msg_0", "ses_a", 1000, input=3))

        records = await OpenCodeStorage(tmp_path).list_records()
        assert [r.created_ms for r in records] == [1000, 2000, 3000]

    @pytest.mark.asyncio
    async def test_window_bounds_are_inclusive(self, tmp_path: "Path") -> "None":
        for i, created in enumerate([1000, 2000, 3000]):
            write_message(tmp_path, assistant_message(f"msg_{i}", "ses_a", created))

        records = await OpenCodeStorage(tmp_path).list_records(2000, 3000)
        assert [r.created_ms for r in records] == [2000, 3000]

    @pytest.mark.asyncio
    async def test_skips_unreadable_files(self, tmp_path: "Path") -> "None":
        write_message(tmp_path, assistant_message("msg_1", "ses_a", 1000))
        directory = tmp_path / "storage" / "message" / "ses_a"
        (directory / "broken.json").write_text("{")
        (directory / "notes.txt").write_text("ignored")

        records = await OpenCodeStorage(tmp_path).list_records()
        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_missing_storage_is_empty(self, tmp_path: "Path") -> "None":
        assert await OpenCodeStorage(tmp_path).list_records() == []

    @pytest.mark.asyncio
    async def test_records_for_session(self, tmp_path: "Path") -> "None":
        write_message(tmp_path, assistant_message("msg_1", "ses_a", 1000))
        write_message(tmp_path, assistant_message("msg_2", "ses_b", 2000))

        records = await OpenCodeStorage(tmp_path).list_records_for_session("ses_b")
        assert [r.id for r in records] == ["msg_2"]

    @pytest.mark.asyncio
    async def test_unknown_session_raises(self, tmp_path: "Path") -> "None":
        write_message(tmp_path, assistant_message("msg_1", "ses_a", 1000))
        storage = OpenCodeStorage(tmp_path)

        with pytest.raises(SessionNotFoundError) as exc_info:
            await storage.list_records_for_session("ses_missing")
        assert exc_info.value.session_id == "ses_missing"

    @pytest.mark.asyncio
    async def test_invalid_session_id_raises(self, tmp_path: "Path") -> "None":
        storage = OpenCodeStorage(tmp_path)
        with pytest.raises(SessionNotFoundError):
            await storage.list_records_for_session("../ses_a")
        with pytest.raises(SessionNotFoundError):
            await storage.list_records_for_session("abc")

    @pytest.mark.asyncio
    async def test_session_outside_window_is_empty(self, tmp_path: "Path") -> "None":
        write_message(tmp_path, assistant_message("msg_1", "ses_a", 1000))
        records = await OpenCodeStorage(tmp_path).list_records_for_session(
            "ses_a", since_ms=5000
        )
        assert records == []

    @pytest.mark.asyncio
    async def test_reads_nested_session_index(self, tmp_path: "Path") -> "None":
        nested = tmp_path / "storage" / "session" / "project-hash"
        nested.mkdir(parents=True)
        (nested / "ses_a.json").write_text(
            json.dumps(
                {
                    "id": "ses_a",
                    "title": "Refactor config",
                    "parentID": "ses_root",
                    "time": {"created": 10, "updated": 20},
                }
            )
        )
        (nested / "ses_b.json").write_text(json.dumps({"id": "not-a-session"}))

        index = await OpenCodeStorage(tmp_path).read_sessions_index()
        assert list(index) == ["ses_a"]
        info = index["ses_a"]
        assert info.title == "Refactor config"
        assert info.parent_id == "ses_root"
        assert info.updated_ms == 20

    @pytest.mark.asyncio
    async def test_non_finite_numbers_do_not_abort_the_scan(
        self, tmp_path: "Path", catalog: "StaticPricingCatalog"
    ) -> "None":
        write_message(tmp_path, assistant_message("msg_1", "ses_a", 1000, input=10))
        # json.dumps writes these as Infinity / NaN, the same way 1e400 parses
        write_message(
            tmp_path,
            assistant_message("msg_2", "ses_a", 2000, input=float("inf"), output=3),
        )
        write_message(tmp_path, assistant_message("msg_3", "ses_a", float("nan")))

        storage = OpenCodeStorage(tmp_path)
        records = await storage.list_records()
        assert [r.id for r in records] == ["msg_1", "msg_2"]
        assert records[1].tokens == TokenBuckets(output=3)

        result = await aggregate_usage(storage, catalog)
        assert result.totals.priced.input == 10
        assert result.totals.message_count == 2


class TestParseMessageNonFinite:
    def test_overflowing_counter_counts_as_zero(self) -> "None":
        raw = (
            '{"id": "msg_1", "sessionID": "ses_a", "role": "assistant",'
            ' "time": {"created": 1000}, "tokens": {"input": 1e400, "output": 4}}'
        )
        record = parse_message(json.loads(raw))
        assert record is not None
        assert record.tokens == TokenBuckets(output=4)

    def test_nan_creation_time_is_skipped(self) -> "None":
        message = assistant_message("msg_1", "ses_a", 1000)
        message["time"]["created"] = float("nan")
        assert parse_message(message) is None
