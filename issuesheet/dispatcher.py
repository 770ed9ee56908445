"""Route sheet edits and GitHub webhook deliveries to the sync engine."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from issuesheet.models import Issue
from issuesheet.settings import SETUP_ROW

logger = logging.getLogger(__name__)


class MalformedInput(ValueError):
    """Raised when a webhook payload cannot be interpreted."""


def decode_payload(raw: Union[bytes, str, Mapping[str, Any]]) -> Mapping[str, Any]:
    """Return the JSON object carried by a webhook delivery."""

    if isinstance(raw, Mapping):
        return raw
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedInput(f"Webhook body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedInput("Webhook body must be a JSON object.")
    return payload


class EventDispatcher:
    """Translate the two inbound surfaces into :class:`SheetSyncEngine` calls.

    The sheet-edit surface reacts only to writes into the execution column of
    the issues tab: the setup row triggers a full refresh, any data row below
    it pushes that row's comment and labels to GitHub. The webhook surface
    dispatches on the payload's ``action``.
    """

    def __init__(
        self,
        engine,
        *,
        issues_tab: str,
        audit_log=None,
        setup_row: int = SETUP_ROW,
    ) -> None:
        self.engine = engine
        self.issues_tab = issues_tab
        self.audit_log = audit_log
        self.setup_row = setup_row
        self._webhook_handlers: Dict[str, Callable[[int, Mapping[str, Any]], object]] = {
            "closed": self._issue_closed,
            "opened": self._issue_opened,
            "reopened": self._issue_reopened,
            "created": self._comment_created,
            "labeled": self._labels_changed,
            "unlabeled": self._labels_changed,
            "assigned": self._assignees_changed,
            "unassigned": self._assignees_changed,
        }

    # ------------------------------------------------------------------
    # Sheet edits
    # ------------------------------------------------------------------
    def handle_sheet_edit(self, sheet_name: str, column: int, row: int) -> Optional[str]:
        """Run the operation bound to an edit at (column, row); return its name."""

        if sheet_name != self.issues_tab:
            return None
        if column != self.engine.layout.execution:
            return None

        if row == self.setup_row:
            logger.info("Setup trigger edited; refreshing %s", self.issues_tab)
            self.engine.install_label_dropdown()
            self.engine.full_refresh()
            return "full_refresh"
        if row > self.setup_row:
            self.engine.push_comment(row)
            self.engine.push_label_edit(row)
            return "push_row"
        return None

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------
    def handle_webhook(self, raw: Union[bytes, str, Mapping[str, Any]]) -> Optional[str]:
        """Dispatch one webhook delivery; return the action handled or ``None``."""

        payload = decode_payload(raw)
        action = payload.get("action")
        if not isinstance(action, str):
            raise MalformedInput("Webhook payload has no action.")

        handler = self._webhook_handlers.get(action)
        if handler is None:
            logger.debug("Ignoring webhook action %r", action)
            return None

        issue = payload.get("issue")
        if not isinstance(issue, Mapping):
            raise MalformedInput(f"Webhook action {action!r} carries no issue object.")
        number = issue.get("number")
        if isinstance(number, bool) or not isinstance(number, int):
            raise MalformedInput(f"Webhook issue has no integer number: {number!r}")

        logger.info("Webhook %s for issue #%s", action, number)
        handler(number, issue)
        return action

    def _issue_closed(self, number: int, issue: Mapping[str, Any]) -> object:
        return self.engine.on_issue_closed(number)

    def _issue_opened(self, number: int, issue: Mapping[str, Any]) -> object:
        return self.engine.on_issue_opened_or_reopened(number, Issue.from_payload(issue))

    def _issue_reopened(self, number: int, issue: Mapping[str, Any]) -> object:
        if self.audit_log is not None:
            self.audit_log.record("reopened", f"#{number}")
        return self._issue_opened(number, issue)

    def _comment_created(self, number: int, issue: Mapping[str, Any]) -> object:
        return self.engine.on_comment_created(number)

    def _labels_changed(self, number: int, issue: Mapping[str, Any]) -> object:
        return self.engine.on_labels_changed(number)

    def _assignees_changed(self, number: int, issue: Mapping[str, Any]) -> object:
        return self.engine.on_assignees_changed(number)


__all__ = ["EventDispatcher", "MalformedInput", "decode_payload"]
