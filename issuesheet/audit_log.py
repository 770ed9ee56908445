"""User-visible audit trail kept on the log tab of the spreadsheet."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

_LOGGER = logging.getLogger("issuesheet.audit")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%d %H:%M:%S")


class AuditLog:
    """Append ``[timestamp, message, detail]`` rows to the log worksheet."""

    def __init__(self, worksheet, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._worksheet = worksheet
        self._clock = clock or _utc_now

    def record(self, message: str, detail: object = "") -> List[str]:
        row = [format_timestamp(self._clock()), message, "" if detail is None else str(detail)]
        _LOGGER.info("%s %s", message, row[2])
        self._worksheet.append_row(row)
        return row


__all__ = ["AuditLog", "format_timestamp"]
