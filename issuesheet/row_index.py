"""Locate the sheet row that mirrors a given issue."""
from __future__ import annotations

from typing import Optional, Sequence


def parse_issue_id(value: object) -> Optional[int]:
    """Return the issue number held in a cell, or ``None`` for anything else.

    Sheets returns formatted values, so a number typed as ``42`` can come
    back as ``"42"`` or ``"42.0"``.
    """

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not number.is_integer():
        return None
    return int(number)


def find_row_by_issue_id(snapshot: Sequence[object], issue_id: int, *, first_row: int = 1) -> Optional[int]:
    """Return the sheet row whose id cell equals ``issue_id``, or ``None``.

    ``snapshot`` holds the id column top to bottom, its first entry being
    row ``first_row``. The first match wins.
    """

    for offset, cell in enumerate(snapshot):
        if parse_issue_id(cell) == issue_id:
            return first_row + offset
    return None


__all__ = ["find_row_by_issue_id", "parse_issue_id"]
