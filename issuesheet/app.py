"""Wire the spreadsheet, GitHub client, engine and dispatcher together."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from issuesheet.audit_log import AuditLog
from issuesheet.dispatcher import EventDispatcher
from issuesheet.github_client import GitHubIssuesClient
from issuesheet.settings import ConfigurationError, RuntimeConfig, SyncSettings, load_runtime_config
from issuesheet.sheets_client import Spreadsheet
from issuesheet.sync_engine import SheetSyncEngine

logger = logging.getLogger(__name__)


@dataclass
class Application:
    config: RuntimeConfig
    engine: SheetSyncEngine
    dispatcher: EventDispatcher


def assemble(spreadsheet: Spreadsheet, config: RuntimeConfig, tracker=None) -> Application:
    """Build the components for ``config`` on top of an open spreadsheet."""

    if tracker is None:
        tracker = GitHubIssuesClient(config.owner, config.repository, config.access_token)
    audit_log = AuditLog(spreadsheet.worksheet(config.log_tab))
    engine = SheetSyncEngine(
        spreadsheet.worksheet(config.issues_tab),
        tracker,
        config.layout,
        audit_log=audit_log,
    )
    dispatcher = EventDispatcher(engine, issues_tab=config.issues_tab, audit_log=audit_log)
    logger.debug("Assembled sync for %s/%s on tab %s", config.owner, config.repository, config.issues_tab)
    return Application(config=config, engine=engine, dispatcher=dispatcher)


def build_application(settings: SyncSettings) -> Application:
    """Open the configured spreadsheet and load the runtime configuration from it."""

    if not settings.spreadsheet_id:
        raise ConfigurationError("No spreadsheet configured. Set spreadsheet_id or ISSUESHEET_SPREADSHEET_ID.")
    spreadsheet = Spreadsheet.connect(settings.spreadsheet_id, Path(settings.credential_path))
    config = load_runtime_config(spreadsheet, settings)
    return assemble(spreadsheet, config)


__all__ = ["Application", "assemble", "build_application"]
