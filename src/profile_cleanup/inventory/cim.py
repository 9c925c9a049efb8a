"""Profile inventory over the Win32_UserProfile CIM class."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import PureWindowsPath
from typing import TYPE_CHECKING, Any

from ..models import ProfileRecord
from .base import InventoryError, ProfileDeletionError

if TYPE_CHECKING:
    from .powershell import PowerShellRunner

_SID_PATTERN = re.compile(r"^S-1-[0-9]+(-[0-9]+)*$", re.IGNORECASE)

LIST_PROFILES_SCRIPT = """\
$ErrorActionPreference = 'Stop'
$profiles = @(Get-CimInstance -ClassName Win32_UserProfile -ComputerName $ComputerName | ForEach-Object {
    [pscustomobject]@{
        SID = $_.SID
        LocalPath = $_.LocalPath
        Loaded = [bool]$_.Loaded
        LastUseTime = if ($_.LastUseTime) { $_.LastUseTime.ToUniversalTime().ToString("yyyy-MM-dd'T'HH:mm:ss'+00:00'", [Globalization.CultureInfo]::InvariantCulture) } else { $null }
    }
})
ConvertTo-Json -InputObject $profiles -Compress -Depth 2
"""

DELETE_PROFILE_SCRIPT = """\
$ErrorActionPreference = 'Stop'
$target = Get-CimInstance -ClassName Win32_UserProfile -ComputerName $ComputerName -Filter "SID='{sid}'"
if (-not $target) {{ throw "Profile {sid} not found" }}
$target | Remove-CimInstance
"""


def parse_last_use_time(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; anything unparseable is None."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def parse_profiles(payload: Any, logger: logging.Logger | None = None) -> list[ProfileRecord]:
    """Turn decoded JSON from the listing script into profile records.

    Entries without a SID or a derivable name are discarded, as are repeated
    SIDs (the first occurrence wins).
    """
    if payload is None:
        return []
    if isinstance(payload, dict):
        payload = [payload]
    if not isinstance(payload, list):
        raise InventoryError(f"Unexpected profile list payload: {type(payload).__name__}")

    records: list[ProfileRecord] = []
    seen: set[str] = set()

    for item in payload:
        if not isinstance(item, dict):
            continue

        sid = str(item.get("SID") or "").strip()
        path = str(item.get("LocalPath") or "").strip()
        name = PureWindowsPath(path).name if path else ""

        if not sid or not name:
            if logger:
                logger.debug("Discarding profile without name or SID: %r", item)
            continue
        if sid.casefold() in seen:
            if logger:
                logger.debug("Discarding duplicate SID: %s", sid)
            continue
        seen.add(sid.casefold())

        records.append(
            ProfileRecord(
                name=name,
                security_id=sid,
                storage_path=path,
                last_use_time=parse_last_use_time(item.get("LastUseTime")),
                is_loaded=bool(item.get("Loaded")),
            )
        )

    return records


class CimProfileSource:
    """Lists and deletes Win32_UserProfile instances through a PowerShell runner."""

    def __init__(self, runner: PowerShellRunner, logger: logging.Logger) -> None:
        self.runner = runner
        self.logger = logger

    def list_profiles(self, host: str) -> list[ProfileRecord]:
        result = self.runner.run(host, LIST_PROFILES_SCRIPT)
        if not result.ok:
            raise InventoryError(f"Failed to enumerate profiles on {host}: {result.error_detail}")

        output = result.stdout.strip()
        if not output:
            return []

        try:
            payload = json.loads(output)
        except json.JSONDecodeError as e:
            raise InventoryError(f"Unreadable profile list from {host}: {e}") from e

        profiles = parse_profiles(payload, self.logger)
        self.logger.debug("Enumerated %d profiles on %s", len(profiles), host)
        return profiles

    def delete_profile(self, host: str, security_id: str) -> None:
        if not _SID_PATTERN.match(security_id):
            raise ProfileDeletionError(f"Refusing to delete malformed SID: {security_id!r}")

        result = self.runner.run(host, DELETE_PROFILE_SCRIPT.format(sid=security_id))
        if not result.ok:
            raise ProfileDeletionError(result.error_detail)
