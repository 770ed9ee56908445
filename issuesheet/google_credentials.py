"""Validation of the Google service account used to reach the spreadsheet."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, Mapping

__all__ = [
    "CredentialsFileInvalidError",
    "REQUIRED_FIELDS",
    "load_service_account_data",
    "normalise_service_account",
]


class CredentialsFileInvalidError(Exception):
    """Raised when a service account JSON file is unreadable or incomplete."""


REQUIRED_FIELDS: Iterable[str] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "token_uri",
)


def _normalise_private_key(key: str) -> str:
    # Keys pasted through environment variables or web forms arrive with
    # literal "\n" sequences instead of line breaks.
    key = key.replace("\r\n", "\n").replace("\r", "\n").replace("\\n", "\n")
    if not key.endswith("\n"):
        key += "\n"
    return key


def _read_json(path: Path) -> Mapping[str, object]:
    try:
        raw = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Cannot read credentials file {path}: {exc}") from exc

    text = raw.strip()
    if not text:
        raise CredentialsFileInvalidError(f"Credentials file {path} is empty.")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CredentialsFileInvalidError(f"Credentials file {path} is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise CredentialsFileInvalidError(f"Credentials file {path} must contain a JSON object.")
    return payload


def normalise_service_account(payload: Mapping[str, object]) -> Dict[str, object]:
    """Return a copy of ``payload`` with required fields checked and the key repaired."""

    data: Dict[str, object] = dict(payload)
    missing = [
        name
        for name in REQUIRED_FIELDS
        if not isinstance(data.get(name), str) or not str(data.get(name)).strip()
    ]
    if data.get("type") != "service_account" and "type" not in missing:
        missing.append("type")

    if missing:
        raise CredentialsFileInvalidError(
            "Service account JSON missing fields: " + ", ".join(sorted(missing))
        )

    data["private_key"] = _normalise_private_key(str(data["private_key"]))
    return data


def load_service_account_data(path: Path) -> Dict[str, object]:
    """Read ``path`` and return validated service account data."""

    return normalise_service_account(_read_json(path))
