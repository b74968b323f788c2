from typing import Protocol, Sequence

from quotameter.models import SessionInfo, UsageRecord


class UsageSource(Protocol):
    """
    UsageSource stands as the read-only view over locally
    stored assistant replies.

    list_records_for_session must raise SessionNotFoundError
    when the session has no data at all, and return an empty
    sequence when it simply has nothing inside the window.
    """

    async def list_records(
        self,
        since_ms: "int | None" = None,
        until_ms: "int | None" = None,
    ) -> "Sequence[UsageRecord]": ...

    async def list_records_for_session(
        self,
        session_id: "str",
        since_ms: "int | None" = None,
        until_ms: "int | None" = None,
    ) -> "Sequence[UsageRecord]": ...

    async def read_sessions_index(self) -> "dict[str, SessionInfo]": ...
