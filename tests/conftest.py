from __future__ import annotations

import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from googleapiclient.errors import HttpError

from issuesheet.audit_log import AuditLog
from issuesheet.github_client import RemoteRejected
from issuesheet.models import Comment, Issue
from issuesheet.settings import ColumnLayout
from issuesheet.sheets_client import Worksheet
from issuesheet.sync_engine import SheetSyncEngine

SPREADSHEET_ID = "sheet-123"

COLUMNS = {
    "ISSUE_ID": 1,
    "TITLE": 2,
    "LABELS": 3,
    "ASSIGNEES": 4,
    "COMMENT": 5,
    "SEND_LABELS": 6,
    "SEND_MENTION": 7,
    "SEND_COMMENT": 8,
    "EXECUTION": 9,
    "URL": 10,
}

HEADER_ROWS = [
    ["id", "title", "labels", "assignees", "comment", "add labels", "mention", "comment to send", "run", "url"],
    ["", "", "", "", "", "", "", "", "", ""],
]


# ---------------------------------------------------------------------------
# Google Sheets fake
# ---------------------------------------------------------------------------
def _column_index(letters: str) -> int:
    index = 0
    for char in letters:
        index = index * 26 + (ord(char) - 64)
    return index


def _split_range(range_spec: str) -> Tuple[str, str]:
    if "!" in range_spec:
        title, cells = range_spec.split("!", 1)
    else:
        title, cells = range_spec, ""
    title = title.strip()
    if title.startswith("'") and title.endswith("'") and len(title) >= 2:
        title = title[1:-1].replace("''", "'")
    return title, cells


class _FakeRequest:
    def __init__(self, callback):
        self._callback = callback

    def execute(self):
        return self._callback()


class _FakeValues:
    def __init__(self, service: "FakeSheetsService") -> None:
        self._service = service

    def get(self, spreadsheetId: str, range: str, majorDimension: str = "ROWS"):  # noqa: N803 - API compatibility
        return self._service._request("values.get", lambda: self._service._get(range))

    def update(self, spreadsheetId: str, range: str, valueInputOption: str, body: Dict[str, Any]):  # noqa: N803
        return self._service._request(
            "values.update", lambda: self._service._update(range, body["values"], valueInputOption)
        )

    def batchUpdate(self, spreadsheetId: str, body: Dict[str, Any]):  # noqa: N802,N803 - API compatibility
        def _apply():
            for entry in body["data"]:
                self._service._update(entry["range"], entry["values"], body["valueInputOption"])
            return {}

        return self._service._request("values.batchUpdate", _apply)

    def clear(self, spreadsheetId: str, range: str, body: Dict[str, Any]):  # noqa: N803 - API compatibility
        return self._service._request("values.clear", lambda: self._service._clear(range))

    def append(  # noqa: N803 - API compatibility
        self,
        spreadsheetId: str,
        range: str,
        valueInputOption: str,
        insertDataOption: str,
        body: Dict[str, Any],
    ):
        return self._service._request(
            "values.append", lambda: self._service._append(range, body["values"], valueInputOption)
        )


class _FakeSpreadsheets:
    def __init__(self, service: "FakeSheetsService") -> None:
        self._service = service

    def values(self) -> _FakeValues:
        return _FakeValues(self._service)

    def get(self, spreadsheetId: str, includeGridData: bool = False):  # noqa: N803 - API compatibility
        return self._service._request("spreadsheets.get", self._service._metadata)

    def batchUpdate(self, spreadsheetId: str, body: Dict[str, Any]):  # noqa: N802,N803 - API compatibility
        return self._service._request("spreadsheets.batchUpdate", lambda: self._service._structural(body))


class FakeSheetsService:
    """In-memory stand-in for ``build("sheets", "v4")`` holding several tabs."""

    def __init__(self, tabs: Optional[Dict[str, Iterable[List[Any]]]] = None) -> None:
        self.tabs: Dict[str, List[List[Any]]] = {
            title: [list(row) for row in rows] for title, rows in (tabs or {}).items()
        }
        self.sheet_ids = {title: index * 100 for index, title in enumerate(self.tabs)}
        self.validations: List[Dict[str, Any]] = []
        self.input_options: Dict[Tuple[str, int, int], str] = {}
        self.calls: List[str] = []
        self.fail_on: Optional[str] = None

    def spreadsheets(self) -> _FakeSpreadsheets:
        return _FakeSpreadsheets(self)

    # Helpers for tests --------------------------------------------------
    def rows(self, title: str) -> List[List[str]]:
        """Return the tab as displayed: strings, trailing blanks trimmed."""

        return [self._trim(row) for row in self.tabs[title]]

    def cell(self, title: str, row: int, column: int) -> str:
        grid = self.tabs[title]
        if row > len(grid) or column > len(grid[row - 1]):
            return ""
        value = grid[row - 1][column - 1]
        return "" if value is None else str(value)

    def writes(self) -> List[str]:
        return [call for call in self.calls if call not in {"values.get", "spreadsheets.get"}]

    def input_option(self, title: str, row: int, column: int) -> Optional[str]:
        """Return the ``valueInputOption`` of the last write to a cell."""

        return self.input_options.get((title, row, column))

    # Internal -----------------------------------------------------------
    def _request(self, name: str, callback):
        def _run():
            self.calls.append(name)
            if self.fail_on == name:
                raise HttpError(SimpleNamespace(status=500, reason="Backend Error"), b"{}")
            return callback()

        return _FakeRequest(_run)

    @staticmethod
    def _trim(row: List[Any]) -> List[str]:
        cells = ["" if value is None else str(value) for value in row]
        while cells and cells[-1] == "":
            cells.pop()
        return cells

    def _bounds(self, cells: str, grid: List[List[Any]]) -> Tuple[int, int, int, int]:
        if not cells:
            width = max((len(row) for row in grid), default=0)
            return 1, max(1, len(grid)), 1, max(1, width)
        match = re.fullmatch(r"([A-Z]+)(\d+)(?::([A-Z]+)(\d+))?", cells)
        if not match:
            raise AssertionError(f"Unsupported range {cells!r}")
        first_col = _column_index(match.group(1))
        first_row = int(match.group(2))
        last_col = _column_index(match.group(3)) if match.group(3) else first_col
        last_row = int(match.group(4)) if match.group(4) else first_row
        return first_row, last_row, first_col, last_col

    def _grid(self, title: str) -> List[List[Any]]:
        if title not in self.tabs:
            raise HttpError(SimpleNamespace(status=400, reason=f"Unable to parse range: {title}"), b"{}")
        return self.tabs[title]

    def _get(self, range_spec: str) -> Dict[str, Any]:
        title, cells = _split_range(range_spec)
        grid = self._grid(title)
        first_row, last_row, first_col, last_col = self._bounds(cells, grid)
        values: List[List[str]] = []
        for row_index in range(first_row, last_row + 1):
            row = grid[row_index - 1] if row_index <= len(grid) else []
            values.append(self._trim(row[first_col - 1 : last_col]))
        while values and not values[-1]:
            values.pop()
        payload: Dict[str, Any] = {"range": range_spec, "majorDimension": "ROWS"}
        if values:
            payload["values"] = values
        return payload

    def _ensure(self, grid: List[List[Any]], row: int, column: int) -> None:
        while len(grid) < row:
            grid.append([])
        line = grid[row - 1]
        while len(line) < column:
            line.append("")

    def _update(self, range_spec: str, values: List[List[Any]], option: str) -> Dict[str, Any]:
        title, cells = _split_range(range_spec)
        grid = self._grid(title)
        first_row, _, first_col, _ = self._bounds(cells or "A1", grid)
        for row_offset, line in enumerate(values):
            for col_offset, value in enumerate(line):
                row, column = first_row + row_offset, first_col + col_offset
                self._ensure(grid, row, column)
                grid[row - 1][column - 1] = value
                self.input_options[(title, row, column)] = option
        return {"updatedRange": range_spec}

    def _clear(self, range_spec: str) -> Dict[str, Any]:
        title, cells = _split_range(range_spec)
        grid = self._grid(title)
        first_row, last_row, first_col, last_col = self._bounds(cells, grid)
        for row in range(first_row, min(last_row, len(grid)) + 1):
            line = grid[row - 1]
            for column in range(first_col, min(last_col, len(line)) + 1):
                line[column - 1] = ""
        return {"clearedRange": range_spec}

    def _append(self, range_spec: str, values: List[List[Any]], option: str) -> Dict[str, Any]:
        title, _ = _split_range(range_spec)
        grid = self._grid(title)
        while grid and not self._trim(grid[-1]):
            grid.pop()
        for line in values:
            grid.append(list(line))
            for column in range(1, len(line) + 1):
                self.input_options[(title, len(grid), column)] = option
        return {"updates": {"updatedRows": len(values)}}

    def _metadata(self) -> Dict[str, Any]:
        return {
            "sheets": [
                {"properties": {"title": title, "sheetId": sheet_id}}
                for title, sheet_id in self.sheet_ids.items()
            ]
        }

    def _title_for(self, sheet_id: int) -> str:
        for title, candidate in self.sheet_ids.items():
            if candidate == sheet_id:
                return title
        raise AssertionError(f"Unknown sheetId {sheet_id}")

    def _shift_options(self, title: str, start: int, delta: int) -> None:
        """Move recorded input options of rows below ``start`` (0-based) by ``delta``."""

        shifted: Dict[Tuple[str, int, int], str] = {}
        for (tab, row, column), option in self.input_options.items():
            if tab == title and row > start:
                if delta < 0 and row <= start - delta:
                    continue
                row += delta
            shifted[(tab, row, column)] = option
        self.input_options = shifted

    def _structural(self, body: Dict[str, Any]) -> Dict[str, Any]:
        for request in body["requests"]:
            if "insertDimension" in request:
                spec = request["insertDimension"]["range"]
                grid = self.tabs[self._title_for(spec["sheetId"])]
                start, end = spec["startIndex"], spec["endIndex"]
                while len(grid) < start:
                    grid.append([])
                for _ in range(end - start):
                    grid.insert(start, [])
                self._shift_options(self._title_for(spec["sheetId"]), start, end - start)
            elif "deleteDimension" in request:
                spec = request["deleteDimension"]["range"]
                grid = self.tabs[self._title_for(spec["sheetId"])]
                del grid[spec["startIndex"] : spec["endIndex"]]
                self._shift_options(
                    self._title_for(spec["sheetId"]), spec["startIndex"], spec["startIndex"] - spec["endIndex"]
                )
            elif "setDataValidation" in request:
                self.validations.append(request["setDataValidation"])
            else:
                raise AssertionError(f"Unsupported request {request}")
        return {"replies": [{} for _ in body["requests"]]}


# ---------------------------------------------------------------------------
# GitHub fake
# ---------------------------------------------------------------------------
class FakeTracker:
    """In-memory issue tracker with the :class:`GitHubIssuesClient` surface."""

    def __init__(self) -> None:
        self.issues: Dict[int, Issue] = {}
        self.comments: Dict[int, List[Comment]] = {}
        self.vocabulary: List[str] = ["bug", "docs", "urgent"]
        self.calls: List[Tuple[str, Any]] = []
        self.failures: Dict[str, Exception] = {}

    def add_issue(self, number: int, *, comments: Iterable[str] = (), **fields: Any) -> Issue:
        fields.setdefault("title", f"Issue {number}")
        fields.setdefault("body", f"Body of {number}")
        fields.setdefault("html_url", f"https://github.com/acme/widgets/issues/{number}")
        for key in ("labels", "assignees"):
            fields[key] = tuple(fields.get(key, ()))
        issue = Issue(number=number, **fields)
        self.issues[number] = issue
        self.comments[number] = [
            Comment(id=number * 1000 + index, body=text, created_at=f"2024-01-01T00:00:{index:02d}Z", position=index)
            for index, text in enumerate(comments)
        ]
        return issue

    def _call(self, name: str, argument: Any = None) -> None:
        self.calls.append((name, argument))
        if name in self.failures:
            raise self.failures[name]

    def _issue(self, number: int) -> Issue:
        if number not in self.issues:
            raise RemoteRejected(f"GitHub GET issues/{number} failed with 404", status=404)
        return self.issues[number]

    def list_open_issues(self) -> List[Issue]:
        self._call("list_open_issues")
        return [issue for issue in self.issues.values() if issue.state == "open"]

    def get_issue(self, number: int) -> Issue:
        self._call("get_issue", number)
        return self._issue(number)

    def get_issue_labels(self, number: int) -> Tuple[str, ...]:
        self._call("get_issue_labels", number)
        return self._issue(number).labels

    def list_comments(self, number: int) -> List[Comment]:
        self._call("list_comments", number)
        return list(self.comments.get(number, []))

    def get_latest_comment(self, number: int) -> Optional[Comment]:
        self._call("get_latest_comment", number)
        comments = self.comments.get(number, [])
        return max(comments, key=Comment.sort_key) if comments else None

    def set_labels(self, number: int, labels: Iterable[str]) -> Issue:
        labels = tuple(labels)
        self._call("set_labels", (number, labels))
        issue = self._issue(number)
        updated = Issue(
            number=issue.number,
            title=issue.title,
            body=issue.body,
            html_url=issue.html_url,
            labels=labels,
            assignees=issue.assignees,
            state=issue.state,
        )
        self.issues[number] = updated
        return updated

    def post_comment(self, number: int, body: str) -> Comment:
        self._call("post_comment", (number, body))
        thread = self.comments.setdefault(number, [])
        comment = Comment(id=number * 1000 + len(thread), body=body, created_at="2024-02-01T00:00:00Z")
        thread.append(comment)
        return comment

    def list_all_label_names(self) -> List[str]:
        self._call("list_all_label_names")
        return list(self.vocabulary)

    def remote_calls(self, name: str) -> List[Any]:
        return [argument for call, argument in self.calls if call == name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def layout() -> ColumnLayout:
    return ColumnLayout.from_mapping(COLUMNS)


@pytest.fixture
def sheets_service() -> FakeSheetsService:
    return FakeSheetsService({"Issues": [list(row) for row in HEADER_ROWS], "Log": []})


@pytest.fixture
def tracker() -> FakeTracker:
    return FakeTracker()


@pytest.fixture
def issues_sheet(sheets_service: FakeSheetsService) -> Worksheet:
    return Worksheet(sheets_service, SPREADSHEET_ID, "Issues")


@pytest.fixture
def audit_log(sheets_service: FakeSheetsService) -> AuditLog:
    moment = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
    return AuditLog(Worksheet(sheets_service, SPREADSHEET_ID, "Log"), clock=lambda: moment)


@pytest.fixture
def engine(issues_sheet: Worksheet, tracker: FakeTracker, layout: ColumnLayout, audit_log: AuditLog) -> SheetSyncEngine:
    return SheetSyncEngine(issues_sheet, tracker, layout, audit_log=audit_log)


@pytest.fixture
def make_row():
    """Return a function building one sheet row from column-name keyword arguments."""

    def _make_row(**cells: Any) -> List[Any]:
        row: List[Any] = [""] * len(COLUMNS)
        for name, value in cells.items():
            row[COLUMNS[name.upper()] - 1] = value
        return row

    return _make_row
