"""Thin GitHub REST client for the issue, label and comment endpoints.

Every call blocks until GitHub answers. Failures are never swallowed here:
transport problems raise :class:`RemoteUnavailable` and non-success answers
raise :class:`RemoteRejected`, leaving the decision about what to do with
them to the caller.
"""

from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from issuesheet.models import Comment, Issue, latest_comment
from issuesheet.version import __version__

logger = logging.getLogger(__name__)

API_ROOT = "https://api.github.com"
MEDIA_TYPE = "application/vnd.github+json"
USER_AGENT = f"issuesheet/{__version__}"
PAGE_SIZE = 100
DEFAULT_TIMEOUT = 30.0

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')


class GitHubClientError(RuntimeError):
    """Base error raised for failed GitHub API calls."""


class RemoteUnavailable(GitHubClientError):
    """Raised when GitHub cannot be reached at the transport level."""


class RemoteRejected(GitHubClientError):
    """Raised when GitHub answers with a non-success status."""

    def __init__(self, message: str, *, status: Optional[int] = None, response_text: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.response_text = response_text


def _next_link(headers: Mapping[str, str]) -> Optional[str]:
    link = headers.get("Link") or headers.get("link") or ""
    match = _NEXT_LINK_RE.search(link)
    return match.group(1) if match else None


class GitHubIssuesClient:
    """Issue tracker client bound to a single ``owner/repository``."""

    def __init__(
        self,
        owner: str,
        repository: str,
        token: str,
        *,
        api_root: str = API_ROOT,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.owner = owner
        self.repository = repository
        self._token = token
        self._timeout = timeout
        self.base_url = (
            f"{api_root.rstrip('/')}/repos/"
            f"{urllib.parse.quote(owner, safe='')}/{urllib.parse.quote(repository, safe='')}"
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    def _url(self, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
        url = path if path.startswith("http") else f"{self.base_url}/{path.lstrip('/')}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        return url

    def _request(
        self,
        method: str,
        url: str,
        *,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Tuple[Any, Dict[str, str]]:
        headers = {
            "Accept": MEDIA_TYPE,
            "Authorization": f"Bearer {self._token}",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"

        request = urllib.request.Request(url, data=data, headers=headers, method=method)
        logger.debug("GitHub %s %s", method, url)
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:  # nosec: B310 - GitHub API
                payload = response.read()
                response_headers = dict(response.headers.items())
        except urllib.error.HTTPError as exc:
            text = ""
            try:
                text = exc.read().decode("utf-8", "replace")
            except OSError:
                pass
            raise RemoteRejected(
                f"GitHub {method} {url} failed with {exc.code}",
                status=exc.code,
                response_text=text,
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise RemoteUnavailable(f"Unable to contact GitHub for {method} {url}: {exc}") from exc

        if not payload:
            return None, response_headers
        try:
            return json.loads(payload.decode("utf-8")), response_headers
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise RemoteRejected(f"Unexpected response from GitHub for {method} {url}: {exc}") from exc

    def _get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        data, _ = self._request("GET", self._url(path, params))
        return data

    def _get_pages(self, path: str, params: Optional[Mapping[str, Any]] = None) -> List[Mapping[str, Any]]:
        query: Dict[str, Any] = {"per_page": PAGE_SIZE}
        if params:
            query.update(params)
        url: Optional[str] = self._url(path, query)
        items: List[Mapping[str, Any]] = []
        while url:
            data, headers = self._request("GET", url)
            if not isinstance(data, list):
                raise RemoteRejected(f"Expected a JSON list from {url}")
            items.extend(entry for entry in data if isinstance(entry, Mapping))
            url = _next_link(headers)
        return items

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_open_issues(self) -> List[Issue]:
        """Return every open issue, skipping pull requests."""

        issues = [Issue.from_payload(entry) for entry in self._get_pages("issues", {"state": "open"})]
        return [issue for issue in issues if not issue.is_pull_request]

    def get_issue(self, number: int) -> Issue:
        data = self._get_json(f"issues/{int(number)}")
        if not isinstance(data, Mapping):
            raise RemoteRejected(f"Unexpected issue payload for #{number}")
        return Issue.from_payload(data)

    def get_issue_labels(self, number: int) -> Tuple[str, ...]:
        """Return the labels currently applied to issue ``number``, in GitHub's order."""

        return self.get_issue(number).labels

    def list_comments(self, number: int) -> List[Comment]:
        entries = self._get_pages(f"issues/{int(number)}/comments")
        return [Comment.from_payload(entry, position) for position, entry in enumerate(entries)]

    def get_latest_comment(self, number: int) -> Optional[Comment]:
        return latest_comment(self.list_comments(number))

    def set_labels(self, number: int, labels: Iterable[str]) -> Issue:
        """Replace the full label set of issue ``number``."""

        body = {"labels": list(labels)}
        data, _ = self._request("PATCH", self._url(f"issues/{int(number)}"), body=body)
        logger.info("Set labels on #%s to %s", number, body["labels"])
        if isinstance(data, Mapping) and "number" in data:
            return Issue.from_payload(data)
        return Issue(number=int(number), labels=tuple(body["labels"]))

    def post_comment(self, number: int, body: str) -> Comment:
        data, _ = self._request("POST", self._url(f"issues/{int(number)}/comments"), body={"body": body})
        logger.info("Posted comment on #%s", number)
        if isinstance(data, Mapping):
            return Comment.from_payload(data)
        return Comment(id=0, body=body)

    def list_all_label_names(self) -> List[str]:
        """Return the repository-wide label vocabulary."""

        names: List[str] = []
        for entry in self._get_pages("labels"):
            name = entry.get("name")
            if isinstance(name, str) and name:
                names.append(name)
        return names


__all__ = [
    "GitHubClientError",
    "GitHubIssuesClient",
    "RemoteRejected",
    "RemoteUnavailable",
]
