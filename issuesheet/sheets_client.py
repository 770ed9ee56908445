"""Google Sheets access for the issue worksheet, the log tab and the config tabs.

This module centralises every direct interaction with the Google Sheets API.
It offers the small, cell-oriented surface the synchronisation engine needs
(read a range, write a range, insert or delete a row, find the last used
row, append a log row, install a dropdown) without exposing
``googleapiclient`` request objects to the rest of the package.

All public entry points raise subclasses of :class:`SheetsClientError`.
Rows and columns are 1-based, as they are displayed in the spreadsheet.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableSequence, Optional, Sequence

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from issuesheet.google_credentials import CredentialsFileInvalidError, load_service_account_data

SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets",)


class SheetsClientError(RuntimeError):
    """Base error raised for Sheets API failures."""


class SheetsCredentialsError(SheetsClientError):
    """Raised when the provided credential file is invalid or missing."""


class SheetsApiResponseError(SheetsClientError):
    """Raised when the Google API returns an error response."""


class WorksheetNotFoundError(SheetsClientError):
    """Raised when a tab title does not exist in the spreadsheet."""


def column_letter(index: int) -> str:
    """Return the spreadsheet column letter for a 1-indexed column index."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def quote_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if len(safe) >= 2 and safe[0] == safe[-1] and safe[0] in {"'", '"'}:
        safe = safe[1:-1].replace("''", "'")
    if not safe:
        raise SheetsClientError("Worksheet title must not be empty.")
    return "'" + safe.replace("'", "''") + "'"


def a1_range(title: str, range_spec: Optional[str] = None) -> str:
    if not range_spec:
        return quote_title(title)
    return f"{quote_title(title)}!{range_spec}"


def a1_cell(title: str, row: int, column: int) -> str:
    if row < 1:
        raise ValueError("Row index must be >= 1")
    return a1_range(title, f"{column_letter(column)}{row}")


def a1_block(title: str, row: int, column: int, rows: int, columns: int) -> str:
    """Return the A1 range of a ``rows`` x ``columns`` block anchored at (row, column)."""

    if row < 1:
        raise ValueError("Row index must be >= 1")
    end_row = row + max(1, rows) - 1
    end_column = column + max(1, columns) - 1
    return a1_range(title, f"{column_letter(column)}{row}:{column_letter(end_column)}{end_row}")


def parse_spreadsheet_id(value: str) -> str:
    """Normalise a spreadsheet identifier from raw input or a sheet URL."""

    if not value:
        return ""
    value = value.strip()
    if "/spreadsheets/d/" in value:
        value = value.split("/spreadsheets/d/", 1)[1]
        value = value.split("/", 1)[0]
    for separator in ("?", "#"):
        if separator in value:
            value = value.split(separator, 1)[0]
    return value


def _as_text(cell: Any) -> str:
    return "" if cell is None else str(cell)


def build_service(credential_path: Path):
    """Return an authenticated Sheets v4 service using a service account file."""

    try:
        payload = load_service_account_data(credential_path)
    except CredentialsFileInvalidError as exc:
        raise SheetsCredentialsError(str(exc)) from exc

    try:
        credentials = service_account.Credentials.from_service_account_info(payload, scopes=SCOPES)
    except ValueError as exc:
        raise SheetsCredentialsError(str(exc)) from exc

    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


class Worksheet:
    """One tab of a spreadsheet, addressed by title."""

    def __init__(self, service, spreadsheet_id: str, title: str) -> None:
        self._service = service
        self.spreadsheet_id = spreadsheet_id
        self.title = title
        self._sheet_id: Optional[int] = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _execute(self, request, description: str) -> Dict[str, Any]:
        try:
            result = request.execute()
        except HttpError as exc:
            raise SheetsApiResponseError(f"Sheets API {description} failed for '{self.title}': {exc}") from exc
        return result if isinstance(result, dict) else {}

    def _values(self):
        return self._service.spreadsheets().values()

    def _batch_update(self, requests: List[Dict[str, Any]], description: str) -> None:
        request = self._service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={"requests": requests},
        )
        self._execute(request, description)

    @property
    def sheet_id(self) -> int:
        """Numeric ``sheetId`` of the tab, needed for structural edits."""

        if self._sheet_id is None:
            request = self._service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                includeGridData=False,
            )
            metadata = self._execute(request, "spreadsheets.get")
            for sheet in metadata.get("sheets", []):
                properties = sheet.get("properties", {})
                if properties.get("title") == self.title:
                    self._sheet_id = int(properties.get("sheetId", 0))
                    break
            else:
                raise WorksheetNotFoundError(f"Worksheet '{self.title}' was not found in the spreadsheet.")
        return self._sheet_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_values(self, range_spec: Optional[str] = None) -> List[List[str]]:
        """Return the cell values of ``range_spec`` (the whole tab when omitted)."""

        request = self._values().get(
            spreadsheetId=self.spreadsheet_id,
            range=a1_range(self.title, range_spec),
            majorDimension="ROWS",
        )
        result = self._execute(request, "values.get")
        return [[_as_text(cell) for cell in row] for row in result.get("values", [])]

    def get_cell(self, row: int, column: int) -> str:
        request = self._values().get(
            spreadsheetId=self.spreadsheet_id,
            range=a1_cell(self.title, row, column),
            majorDimension="ROWS",
        )
        values = self._execute(request, "values.get").get("values", [])
        if not values or not values[0]:
            return ""
        return _as_text(values[0][0])

    def row_values(self, row: int, width: int) -> List[str]:
        """Return ``width`` cells of ``row`` starting at column A, padded with blanks."""

        values = self.get_values(f"A{row}:{column_letter(width)}{row}")
        cells = list(values[0]) if values else []
        cells.extend([""] * (width - len(cells)))
        return cells[:width]

    def last_row(self) -> int:
        """Return the index of the last row holding any value (0 for an empty tab)."""

        values = self.get_values()
        for index in range(len(values), 0, -1):
            if any(cell != "" for cell in values[index - 1]):
                return index
        return 0

    def last_column(self) -> int:
        """Return the index of the last column holding any value (0 for an empty tab)."""

        last = 0
        for row in self.get_values():
            for index in range(len(row), 0, -1):
                if row[index - 1] != "":
                    last = max(last, index)
                    break
        return last

    def column_values(self, column: int, first_row: int = 1, last_row: Optional[int] = None) -> List[str]:
        """Return one string per row for ``column`` from ``first_row`` to ``last_row``."""

        if last_row is None:
            last_row = self.last_row()
        if last_row < first_row:
            return []
        letter = column_letter(column)
        request = self._values().get(
            spreadsheetId=self.spreadsheet_id,
            range=a1_range(self.title, f"{letter}{first_row}:{letter}{last_row}"),
            majorDimension="ROWS",
        )
        rows = self._execute(request, "values.get").get("values", [])
        values = [_as_text(row[0]) if row else "" for row in rows]
        values.extend([""] * (last_row - first_row + 1 - len(values)))
        return values

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def set_values(
        self,
        row: int,
        column: int,
        values: Sequence[Sequence[Any]],
        *,
        value_input_option: str = "RAW",
    ) -> None:
        """Write a rectangular block of ``values`` with its top-left cell at (row, column).

        Values are stored as typed unless ``value_input_option`` is
        ``"USER_ENTERED"``, which lets Sheets parse formulas and numbers.
        """

        matrix = [list(line) for line in values]
        if not matrix:
            return
        width = max(len(line) for line in matrix) or 1
        request = self._values().update(
            spreadsheetId=self.spreadsheet_id,
            range=a1_block(self.title, row, column, len(matrix), width),
            valueInputOption=value_input_option,
            body={"majorDimension": "ROWS", "values": matrix},
        )
        self._execute(request, "values.update")

    def set_cell(self, row: int, column: int, value: Any, *, value_input_option: str = "RAW") -> None:
        self.set_values(row, column, [[value]], value_input_option=value_input_option)

    def update_row_cells(
        self,
        row: int,
        cells: Mapping[int, Any],
        *,
        value_input_option: str = "RAW",
    ) -> None:
        """Write several cells of one row in a single ``values.batchUpdate`` call."""

        if not cells:
            return
        data = [
            {"range": a1_cell(self.title, row, column), "values": [[value]]}
            for column, value in sorted(cells.items())
        ]
        request = self._values().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={"valueInputOption": value_input_option, "data": data},
        )
        self._execute(request, "values.batchUpdate")

    def clear_cell(self, row: int, column: int) -> None:
        request = self._values().clear(
            spreadsheetId=self.spreadsheet_id,
            range=a1_cell(self.title, row, column),
            body={},
        )
        self._execute(request, "values.clear")

    def append_row(self, values: Sequence[Any]) -> None:
        """Append ``values`` after the last used row of the tab."""

        request = self._values().append(
            spreadsheetId=self.spreadsheet_id,
            range=a1_range(self.title, "A1"),
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"majorDimension": "ROWS", "values": [list(values)]},
        )
        self._execute(request, "values.append")

    def insert_row_before(self, row: int) -> None:
        """Insert one empty row so that it becomes row ``row``, shifting the rest down."""

        if row < 1:
            raise ValueError("Row index must be >= 1")
        self._batch_update(
            [
                {
                    "insertDimension": {
                        "range": {
                            "sheetId": self.sheet_id,
                            "dimension": "ROWS",
                            "startIndex": row - 1,
                            "endIndex": row,
                        },
                        "inheritFromBefore": row > 1,
                    }
                }
            ],
            "insertDimension",
        )

    def delete_row(self, row: int) -> None:
        if row < 1:
            raise ValueError("Row index must be >= 1")
        self._batch_update(
            [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": self.sheet_id,
                            "dimension": "ROWS",
                            "startIndex": row - 1,
                            "endIndex": row,
                        }
                    }
                }
            ],
            "deleteDimension",
        )

    def set_list_validation(
        self,
        first_row: int,
        column: int,
        row_count: int,
        options: Sequence[str],
        *,
        help_text: str = "",
    ) -> None:
        """Restrict ``row_count`` cells of ``column`` to a dropdown of ``options``."""

        rule: Dict[str, Any] = {
            "condition": {
                "type": "ONE_OF_LIST",
                "values": [{"userEnteredValue": option} for option in options],
            },
            "showCustomUi": True,
            "strict": True,
        }
        if help_text:
            rule["inputMessage"] = help_text
        self._batch_update(
            [
                {
                    "setDataValidation": {
                        "range": {
                            "sheetId": self.sheet_id,
                            "startRowIndex": first_row - 1,
                            "endRowIndex": first_row - 1 + row_count,
                            "startColumnIndex": column - 1,
                            "endColumnIndex": column,
                        },
                        "rule": rule,
                    }
                }
            ],
            "setDataValidation",
        )


class Spreadsheet:
    """Factory for :class:`Worksheet` objects sharing one API service."""

    def __init__(self, service, spreadsheet_id: str) -> None:
        self._service = service
        self.spreadsheet_id = parse_spreadsheet_id(spreadsheet_id)
        self._worksheets: Dict[str, Worksheet] = {}

    @classmethod
    def connect(cls, spreadsheet_id: str, credential_path: Path) -> "Spreadsheet":
        return cls(build_service(credential_path), spreadsheet_id)

    def worksheet(self, title: str) -> Worksheet:
        if title not in self._worksheets:
            self._worksheets[title] = Worksheet(self._service, self.spreadsheet_id, title)
        return self._worksheets[title]


__all__ = [
    "SCOPES",
    "SheetsApiResponseError",
    "SheetsClientError",
    "SheetsCredentialsError",
    "Spreadsheet",
    "Worksheet",
    "WorksheetNotFoundError",
    "a1_block",
    "a1_cell",
    "a1_range",
    "build_service",
    "column_letter",
    "parse_spreadsheet_id",
    "quote_title",
]
