"""Reconciliation between GitHub issues and the rows of the issue worksheet.

GitHub owns the content of issues and comments; the worksheet owns row
positions. :class:`SheetSyncEngine` is the only component that mutates rows
in response to tracker state, and it does so with three rules:

* one row per open issue, updated in place when it already exists and
  inserted at the anchor row otherwise; closing an issue deletes its row,
* labels pushed from the sheet are merged with the labels GitHub already
  has (set union), never replacing them,
* the "send" input cells are cleared once their content reached GitHub.

Only :meth:`SheetSyncEngine.full_refresh` traps errors. Every other
operation lets tracker and sheet errors propagate to the caller, and every
one of them performs its remote reads before touching the sheet.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from issuesheet.models import Issue, join_names
from issuesheet.row_index import find_row_by_issue_id, parse_issue_id
from issuesheet.settings import (
    INSERT_ANCHOR_ROW,
    LABEL_DROPDOWN_ROWS,
    START_COLUMN,
    START_ROW,
    ColumnLayout,
)

logger = logging.getLogger(__name__)

LABEL_HELP_TEXT = "Select a label from the list"

# Only the title cell holds a formula; every other cell carries GitHub user
# text and is written RAW so Sheets never evaluates it.
FORMULA_INPUT = "USER_ENTERED"


def split_labels(raw: str) -> List[str]:
    """Split the comma separated "send labels" cell into label names."""

    names: List[str] = []
    for part in (raw or "").split(","):
        name = part.strip()
        if name:
            names.append(name)
    return names


def merge_labels(current: Sequence[str], submitted: Sequence[str]) -> List[str]:
    """Return ``current`` followed by the ``submitted`` labels it did not have yet."""

    return list(dict.fromkeys([*current, *submitted]))


def format_comment(mention: str, body: str) -> str:
    """Prefix ``body`` with an ``@mention`` line when a mention is given."""

    login = (mention or "").strip().lstrip("@")
    if not login:
        return body
    return f"@{login}\n{body}"


class SheetSyncEngine:
    """Apply GitHub state to the issue worksheet and sheet edits to GitHub."""

    def __init__(
        self,
        worksheet,
        tracker,
        layout: ColumnLayout,
        *,
        audit_log=None,
        start_row: int = START_ROW,
        anchor_row: int = INSERT_ANCHOR_ROW,
        dropdown_rows: int = LABEL_DROPDOWN_ROWS,
    ) -> None:
        self.worksheet = worksheet
        self.tracker = tracker
        self.layout = layout
        self.audit_log = audit_log
        self.start_row = start_row
        self.anchor_row = anchor_row
        self.dropdown_rows = dropdown_rows

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def find_row(self, issue_id: int) -> Optional[int]:
        """Scan a fresh snapshot of the id column for ``issue_id``."""

        last_row = self.worksheet.last_row()
        if last_row < 1:
            return None
        snapshot = self.worksheet.column_values(self.layout.issue_id, 1, last_row)
        return find_row_by_issue_id(snapshot, issue_id, first_row=1)

    def _latest_comment_text(self, issue_id: int) -> Optional[str]:
        comment = self.tracker.get_latest_comment(issue_id)
        if comment is None or not comment.body:
            return None
        return comment.body

    def _issue_cells(self, issue: Issue) -> Dict[int, Any]:
        layout = self.layout
        return {
            layout.labels: issue.labels_text,
            layout.assignees: issue.assignees_text,
            layout.comment: issue.body,
            layout.url: issue.html_url,
        }

    def _refresh_row(self, issue: Issue, width: int) -> List[Any]:
        layout = self.layout
        comment = self._latest_comment_text(issue.number)
        cells: Dict[int, Any] = {
            layout.issue_id: issue.number,
            layout.title: issue.title,
            layout.labels: issue.labels_text,
            layout.assignees: issue.assignees_text,
            layout.comment: comment if comment is not None else issue.body,
            layout.url: issue.html_url,
            layout.send_labels: "",
            layout.send_mention: "",
            layout.send_comment: "",
            layout.execution: "",
        }
        return [cells.get(column, "") for column in range(START_COLUMN, width + 1)]

    def _write_issue(self, row: int, cells: Dict[int, Any], issue: Issue) -> None:
        self.worksheet.update_row_cells(row, cells)
        self.worksheet.set_cell(row, self.layout.title, issue.title_formula, value_input_option=FORMULA_INPUT)

    def _record(self, message: str, detail: object = "") -> None:
        if self.audit_log is not None:
            self.audit_log.record(message, detail)

    # ------------------------------------------------------------------
    # Pull: GitHub -> sheet
    # ------------------------------------------------------------------
    def full_refresh(self) -> bool:
        """Rewrite the data rows with every open issue, newest first.

        Nothing is written unless every issue and comment was fetched. A
        failure is logged and recorded on the audit log instead of raised.
        """

        try:
            issues = sorted(self.tracker.list_open_issues(), key=lambda issue: issue.number, reverse=True)
            width = max(self.worksheet.last_column(), self.layout.width)
            rows = [self._refresh_row(issue, width) for issue in issues]
            if rows:
                self.worksheet.set_values(self.start_row, START_COLUMN, rows)
                self.worksheet.set_values(
                    self.start_row,
                    self.layout.title,
                    [[issue.title_formula] for issue in issues],
                    value_input_option=FORMULA_INPUT,
                )
        except Exception as exc:
            logger.exception("Full refresh failed")
            try:
                self._record("Error populating sheet with issues:", exc)
            except Exception:
                logger.exception("Could not record the full refresh failure on the audit log")
            return False
        logger.info("Full refresh wrote %d issue rows from row %d", len(rows), self.start_row)
        return True

    def install_label_dropdown(self) -> List[str]:
        """Restrict the "send labels" column to the repository's label names."""

        labels = self.tracker.list_all_label_names()
        self.worksheet.set_list_validation(
            self.start_row,
            self.layout.send_labels,
            self.dropdown_rows,
            labels,
            help_text=LABEL_HELP_TEXT,
        )
        logger.info("Installed label dropdown with %d labels", len(labels))
        return labels

    def on_issue_closed(self, issue_id: int) -> Optional[int]:
        row = self.find_row(issue_id)
        if row is None:
            logger.debug("Closed issue #%s has no row", issue_id)
            return None
        self.worksheet.delete_row(row)
        logger.info("Deleted row %d for closed issue #%s", row, issue_id)
        return row

    def on_issue_opened_or_reopened(self, issue_id: int, issue: Issue) -> Optional[int]:
        """Update the issue's row in place, or insert one at the anchor row."""

        row = self.find_row(issue_id)
        if row is not None:
            self._write_issue(row, self._issue_cells(issue), issue)
            logger.info("Updated row %d for issue #%s", row, issue_id)
            return row

        cells = self._issue_cells(issue)
        cells[self.layout.issue_id] = issue_id
        self.worksheet.insert_row_before(self.anchor_row)
        self._write_issue(self.anchor_row, cells, issue)
        logger.info("Inserted row %d for issue #%s", self.anchor_row, issue_id)
        return self.anchor_row

    def on_comment_created(self, issue_id: int) -> Optional[int]:
        comment = self._latest_comment_text(issue_id)
        if comment is None:
            logger.debug("Issue #%s has no comment to show", issue_id)
            return None
        row = self.find_row(issue_id)
        if row is None:
            logger.debug("Commented issue #%s has no row", issue_id)
            return None
        self.worksheet.set_cell(row, self.layout.comment, comment)
        logger.info("Updated latest comment on row %d for issue #%s", row, issue_id)
        return row

    def on_labels_changed(self, issue_id: int) -> Optional[int]:
        labels = self.tracker.get_issue_labels(issue_id)
        row = self.find_row(issue_id)
        if row is None:
            logger.debug("Relabelled issue #%s has no row", issue_id)
            return None
        self.worksheet.set_cell(row, self.layout.labels, join_names(labels))
        logger.info("Updated labels on row %d for issue #%s", row, issue_id)
        return row

    def on_assignees_changed(self, issue_id: int) -> Optional[int]:
        issue = self.tracker.get_issue(issue_id)
        row = self.find_row(issue_id)
        if row is None:
            logger.debug("Reassigned issue #%s has no row", issue_id)
            return None
        self.worksheet.set_cell(row, self.layout.assignees, issue.assignees_text)
        logger.info("Updated assignees on row %d for issue #%s", row, issue_id)
        return row

    # ------------------------------------------------------------------
    # Push: sheet -> GitHub
    # ------------------------------------------------------------------
    def _read_row(self, row: int) -> List[str]:
        return self.worksheet.row_values(row, self.layout.width)

    def _issue_id_in(self, cells: Sequence[str], row: int) -> Optional[int]:
        issue_id = parse_issue_id(cells[self.layout.issue_id - 1])
        if issue_id is None:
            logger.warning("Row %d has no issue number; nothing to send", row)
        return issue_id

    def push_label_edit(self, row: int) -> Optional[List[str]]:
        """Add the row's "send labels" to the issue, keeping its existing labels."""

        cells = self._read_row(row)
        submitted = split_labels(cells[self.layout.send_labels - 1])
        if not submitted:
            return None
        issue_id = self._issue_id_in(cells, row)
        if issue_id is None:
            return None

        merged = merge_labels(self.tracker.get_issue_labels(issue_id), submitted)
        self.tracker.set_labels(issue_id, merged)
        self.worksheet.set_cell(row, self.layout.labels, join_names(merged))
        self.worksheet.clear_cell(row, self.layout.send_labels)
        logger.info("Pushed labels %s to issue #%s from row %d", merged, issue_id, row)
        return merged

    def push_comment(self, row: int) -> Optional[str]:
        """Post the row's "send comment" (with optional mention) to the issue."""

        cells = self._read_row(row)
        mention = cells[self.layout.send_mention - 1].strip()
        body = cells[self.layout.send_comment - 1]
        if not mention and not body.strip():
            return None
        issue_id = self._issue_id_in(cells, row)
        if issue_id is None:
            return None

        text = format_comment(mention, body)
        self.tracker.post_comment(issue_id, text)
        self.worksheet.clear_cell(row, self.layout.send_mention)
        self.worksheet.clear_cell(row, self.layout.send_comment)
        logger.info("Posted comment to issue #%s from row %d", issue_id, row)
        return text


__all__ = [
    "FORMULA_INPUT",
    "LABEL_HELP_TEXT",
    "SheetSyncEngine",
    "format_comment",
    "merge_labels",
    "split_labels",
]
