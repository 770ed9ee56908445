"""Value types for the GitHub objects mirrored into the spreadsheet."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, Tuple


def _names(entries: Any, key: str) -> Tuple[str, ...]:
    names: List[str] = []
    if not isinstance(entries, Sequence) or isinstance(entries, (str, bytes)):
        return ()
    for entry in entries:
        if isinstance(entry, Mapping):
            value = entry.get(key)
        else:
            value = entry
        if isinstance(value, str) and value and value not in names:
            names.append(value)
    return tuple(names)


def join_names(names: Sequence[str]) -> str:
    """Render a label or assignee list the way it is shown in a sheet cell."""

    return ", ".join(names)


@dataclass(frozen=True)
class Issue:
    """A GitHub issue as far as the sheet is concerned."""

    number: int
    title: str = ""
    body: str = ""
    html_url: str = ""
    labels: Tuple[str, ...] = ()
    assignees: Tuple[str, ...] = ()
    state: str = "open"
    is_pull_request: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Issue":
        """Build an :class:`Issue` from a REST or webhook ``issue`` object."""

        number = payload.get("number")
        if isinstance(number, bool) or not isinstance(number, int):
            raise ValueError(f"Issue payload has no integer number: {number!r}")
        return cls(
            number=number,
            title=str(payload.get("title") or ""),
            body=str(payload.get("body") or ""),
            html_url=str(payload.get("html_url") or ""),
            labels=_names(payload.get("labels"), "name"),
            assignees=_names(payload.get("assignees"), "login"),
            state=str(payload.get("state") or "open"),
            is_pull_request="pull_request" in payload,
        )

    @property
    def labels_text(self) -> str:
        return join_names(self.labels)

    @property
    def assignees_text(self) -> str:
        return join_names(self.assignees)

    @property
    def title_formula(self) -> str:
        """Return the ``HYPERLINK`` formula used for the title column."""

        url = self.html_url.replace('"', '""')
        title = self.title.replace('"', '""')
        return f'=HYPERLINK("{url}", "{title}")'


@dataclass(frozen=True)
class Comment:
    """A single issue comment; only the newest one per issue is ever displayed."""

    id: int
    body: str = ""
    created_at: str = ""
    position: int = field(default=0, compare=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], position: int = 0) -> "Comment":
        comment_id = payload.get("id")
        return cls(
            id=comment_id if isinstance(comment_id, int) and not isinstance(comment_id, bool) else 0,
            body=str(payload.get("body") or ""),
            created_at=str(payload.get("created_at") or ""),
            position=position,
        )

    def sort_key(self) -> Tuple[str, int, int]:
        return (self.created_at, self.id, self.position)


def latest_comment(comments: Sequence[Comment]) -> Optional[Comment]:
    """Return the most recently created comment, or ``None`` for an empty thread.

    ISO-8601 timestamps from GitHub sort lexically. Ties fall back to the
    higher comment id and then the later position in the listing.
    """

    if not comments:
        return None
    return max(comments, key=Comment.sort_key)


__all__ = ["Comment", "Issue", "join_names", "latest_comment"]
