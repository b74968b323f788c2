import json
from pathlib import Path
from typing import Any, Sequence

import aiofiles
import structlog

from quotameter.models import AccountCredential

logger = structlog.get_logger()


def _project_id(account: "dict[str, Any]") -> "str | None":
    # older plugin versions spell the field differently
    for name in ("projectId", "projectID", "managedProjectId"):
        value = account.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def parse_accounts(data: "Any") -> "list[AccountCredential]":
    raw_accounts = data.get("accounts") if isinstance(data, dict) else None
    if not isinstance(raw_accounts, list):
        return []

    accounts: "list[AccountCredential]" = []
    for raw in raw_accounts:
        if not isinstance(raw, dict):
            continue
        refresh_token = raw.get("refreshToken")
        if not isinstance(refresh_token, str) or not refresh_token:
            continue
        email = raw.get("email")
        accounts.append(
            AccountCredential(
                refresh_token=refresh_token,
                project_id=_project_id(raw),
                email=email if isinstance(email, str) and email else None,
            )
        )
    return accounts


async def read_antigravity_accounts(
    candidate_paths: "Sequence[Path]",
) -> "list[AccountCredential]":
    """
    returns the accounts of the first candidate file holding at
    least one account with a refresh token, or an empty list.
    """
    for path in candidate_paths:
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                data = json.loads(await f.read())
        except FileNotFoundError:
            continue
        except (OSError, ValueError) as e:
            logger.warning("accounts_file_unreadable", path=str(path), error=str(e))
            continue

        accounts = parse_accounts(data)
        if accounts:
            logger.debug("accounts_loaded", path=str(path), count=len(accounts))
            return accounts

    return []
