"""Configuration helpers for issuesheet.

Configuration comes in two layers. :class:`SyncSettings` is a small local
JSON file telling the process which spreadsheet to open and how to
authenticate against it. :class:`RuntimeConfig` is read from inside that
spreadsheet once at start-up: GitHub coordinates from the config tab and
the column layout from the columns tab. It is immutable and passed to every
component that needs it.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from issuesheet import app_paths
from issuesheet.sheets_client import parse_spreadsheet_id


logger = logging.getLogger(__name__)


SETTINGS_PATH = str(app_paths.data_path("settings.json"))
DEFAULT_CREDENTIALS_PATH = str(app_paths.data_path("credentials", "service_account.json"))

DEFAULT_ISSUES_TAB = "Issues"
DEFAULT_LOG_TAB = "Log"
DEFAULT_CONFIG_TAB = "config"
DEFAULT_COLUMNS_TAB = "columns"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

# Fixed sheet layout: row 1 holds headers, row 2 is the setup row whose
# execution cell triggers a full refresh, data starts on row 3.
SETUP_ROW = 2
START_ROW = 3
START_COLUMN = 1
INSERT_ANCHOR_ROW = START_ROW
LABEL_DROPDOWN_ROWS = 300

REQUIRED_COLUMNS: Tuple[str, ...] = (
    "ISSUE_ID",
    "TITLE",
    "LABELS",
    "ASSIGNEES",
    "COMMENT",
    "SEND_LABELS",
    "SEND_MENTION",
    "SEND_COMMENT",
    "EXECUTION",
    "URL",
)

_ENV_OVERRIDES: Mapping[str, str] = {
    "spreadsheet_id": "ISSUESHEET_SPREADSHEET_ID",
    "credential_path": "ISSUESHEET_CREDENTIALS_PATH",
    "webhook_secret": "ISSUESHEET_WEBHOOK_SECRET",
}


class ConfigurationError(Exception):
    """Raised when required configuration is missing or malformed."""


@dataclass
class SyncSettings:
    spreadsheet_id: str = ""
    credential_path: str = DEFAULT_CREDENTIALS_PATH
    issues_tab: str = DEFAULT_ISSUES_TAB
    log_tab: str = DEFAULT_LOG_TAB
    config_tab: str = DEFAULT_CONFIG_TAB
    columns_tab: str = DEFAULT_COLUMNS_TAB
    webhook_secret: str = ""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    column_mapping: Dict[str, int] = field(default_factory=dict)

    def to_json(self) -> Dict[str, object]:
        return {
            "spreadsheet_id": self.spreadsheet_id,
            "credential_path": self.credential_path,
            "issues_tab": self.issues_tab,
            "log_tab": self.log_tab,
            "config_tab": self.config_tab,
            "columns_tab": self.columns_tab,
            "webhook_secret": self.webhook_secret,
            "host": self.host,
            "port": self.port,
            "column_mapping": dict(self.column_mapping),
        }


def _ensure_settings_file(path: str) -> Dict[str, object]:
    defaults = SyncSettings().to_json()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(defaults, handle, indent=2)
        logger.info("Created default settings file at %s", path)
        return defaults

    with open(path, "r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Settings file {path} is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a JSON object.")

    merged: Dict[str, object] = dict(defaults)
    for key, value in data.items():
        if key not in defaults:
            logger.warning("Ignoring unknown settings key %r in %s", key, path)
        elif key == "port":
            try:
                merged[key] = max(1, min(65535, int(value)))
            except (TypeError, ValueError):
                merged[key] = defaults[key]
        elif key == "column_mapping" and isinstance(value, dict):
            merged[key] = value
        elif isinstance(value, str):
            merged[key] = value
    return merged


def load_sync_settings(path: str = SETTINGS_PATH) -> SyncSettings:
    """Load the local settings file, creating it with defaults when missing."""

    data = _ensure_settings_file(path)
    for key, variable in _ENV_OVERRIDES.items():
        override = os.environ.get(variable)
        if override:
            data[key] = override

    mapping = data.get("column_mapping") or {}
    settings = SyncSettings(
        spreadsheet_id=parse_spreadsheet_id(str(data.get("spreadsheet_id", ""))),
        credential_path=os.path.expanduser(str(data.get("credential_path", DEFAULT_CREDENTIALS_PATH))),
        issues_tab=str(data.get("issues_tab") or DEFAULT_ISSUES_TAB),
        log_tab=str(data.get("log_tab") or DEFAULT_LOG_TAB),
        config_tab=str(data.get("config_tab") or DEFAULT_CONFIG_TAB),
        columns_tab=str(data.get("columns_tab") or DEFAULT_COLUMNS_TAB),
        webhook_secret=str(data.get("webhook_secret") or ""),
        host=str(data.get("host") or DEFAULT_HOST),
        port=int(data.get("port") or DEFAULT_PORT),
        column_mapping=dict(ColumnLayout.parse_entries(mapping.items()).columns) if mapping else {},
    )
    return settings


def _parse_column_number(name: str, raw: object) -> int:
    if isinstance(raw, bool):
        raise ConfigurationError(f"Column {name} has an invalid index: {raw!r}")
    try:
        number = int(float(str(raw).strip()))
    except (TypeError, ValueError):
        raise ConfigurationError(f"Column {name} has an invalid index: {raw!r}") from None
    if number < 1:
        raise ConfigurationError(f"Column {name} must be a 1-based column number, got {number}")
    return number


@dataclass(frozen=True)
class ColumnLayout:
    """Symbolic column name to 1-based column number bindings."""

    columns: Tuple[Tuple[str, int], ...]

    @classmethod
    def parse_entries(cls, entries) -> "ColumnLayout":
        parsed: Dict[str, int] = {}
        for name, raw in entries:
            key = str(name or "").strip()
            if not key:
                continue
            if raw in (None, ""):
                continue
            parsed[key] = _parse_column_number(key, raw)
        return cls(columns=tuple(parsed.items()))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object]) -> "ColumnLayout":
        """Build and validate a layout, failing fast on missing required names."""

        layout = cls.parse_entries(mapping.items())
        layout.validate()
        return layout

    def validate(self) -> None:
        names = dict(self.columns)
        missing = [name for name in REQUIRED_COLUMNS if name not in names]
        if missing:
            raise ConfigurationError("Column layout is missing: " + ", ".join(missing))
        seen: Dict[int, str] = {}
        for name in REQUIRED_COLUMNS:
            number = names[name]
            if number in seen:
                raise ConfigurationError(f"Columns {seen[number]} and {name} both point at column {number}")
            seen[number] = name

    def __getitem__(self, name: str) -> int:
        for key, number in self.columns:
            if key == name:
                return number
        raise KeyError(name)

    @property
    def issue_id(self) -> int:
        return self["ISSUE_ID"]

    @property
    def title(self) -> int:
        return self["TITLE"]

    @property
    def labels(self) -> int:
        return self["LABELS"]

    @property
    def assignees(self) -> int:
        return self["ASSIGNEES"]

    @property
    def comment(self) -> int:
        return self["COMMENT"]

    @property
    def send_labels(self) -> int:
        return self["SEND_LABELS"]

    @property
    def send_mention(self) -> int:
        return self["SEND_MENTION"]

    @property
    def send_comment(self) -> int:
        return self["SEND_COMMENT"]

    @property
    def execution(self) -> int:
        return self["EXECUTION"]

    @property
    def url(self) -> int:
        return self["URL"]

    @property
    def width(self) -> int:
        return max(number for _, number in self.columns)


@dataclass(frozen=True)
class RuntimeConfig:
    owner: str
    repository: str
    access_token: str
    layout: ColumnLayout
    issues_tab: str = DEFAULT_ISSUES_TAB
    log_tab: str = DEFAULT_LOG_TAB

    def __repr__(self) -> str:
        return (
            f"RuntimeConfig(owner={self.owner!r}, repository={self.repository!r}, "
            f"issues_tab={self.issues_tab!r})"
        )


def read_key_values(rows) -> Dict[str, str]:
    """Turn config-tab rows (key in column A, value in column B) into a dict."""

    config: Dict[str, str] = {}
    for row in rows:
        if not row:
            continue
        key = str(row[0]).strip()
        if not key:
            continue
        config[key] = str(row[1]).strip() if len(row) > 1 else ""
    return config


def read_column_rows(rows) -> ColumnLayout:
    """Parse columns-tab rows below the header: name in column B, number in column C."""

    entries = []
    for row in rows[1:]:
        if len(row) < 3:
            continue
        entries.append((row[1], row[2]))
    layout = ColumnLayout.parse_entries(entries)
    layout.validate()
    return layout


def build_runtime_config(
    config_values: Mapping[str, str],
    layout: ColumnLayout,
    settings: Optional[SyncSettings] = None,
) -> RuntimeConfig:
    settings = settings or SyncSettings()
    token = os.environ.get("ISSUESHEET_GITHUB_TOKEN") or config_values.get("GITHUB_ACCESS_TOKEN", "")
    owner = config_values.get("GITHUB_OWNER", "")
    repository = config_values.get("GITHUB_REPOSITORY", "")
    missing = [
        name
        for name, value in (
            ("GITHUB_OWNER", owner),
            ("GITHUB_REPOSITORY", repository),
            ("GITHUB_ACCESS_TOKEN", token),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError("Config tab is missing: " + ", ".join(missing))

    listed_id = parse_spreadsheet_id(config_values.get("SPREADSHEET_ID", ""))
    if listed_id and settings.spreadsheet_id and listed_id != settings.spreadsheet_id:
        logger.warning(
            "Config tab lists spreadsheet %s but %s is open; SPREADSHEET_ID is ignored",
            listed_id,
            settings.spreadsheet_id,
        )
    layout.validate()
    return RuntimeConfig(
        owner=owner,
        repository=repository,
        access_token=token,
        layout=layout,
        issues_tab=settings.issues_tab,
        log_tab=settings.log_tab,
    )


def load_runtime_config(spreadsheet, settings: SyncSettings) -> RuntimeConfig:
    """Read the config and columns tabs of ``spreadsheet`` into a :class:`RuntimeConfig`."""

    config_values = read_key_values(spreadsheet.worksheet(settings.config_tab).get_values())
    if settings.column_mapping:
        layout = ColumnLayout.from_mapping(settings.column_mapping)
    else:
        layout = read_column_rows(spreadsheet.worksheet(settings.columns_tab).get_values())
    config = build_runtime_config(config_values, layout, settings)
    logger.info("Loaded configuration for %s/%s", config.owner, config.repository)
    return config


__all__ = [
    "ColumnLayout",
    "ConfigurationError",
    "INSERT_ANCHOR_ROW",
    "LABEL_DROPDOWN_ROWS",
    "REQUIRED_COLUMNS",
    "RuntimeConfig",
    "SETUP_ROW",
    "START_COLUMN",
    "START_ROW",
    "SyncSettings",
    "build_runtime_config",
    "load_runtime_config",
    "load_sync_settings",
    "read_column_rows",
    "read_key_values",
]
