from __future__ import annotations

import base64
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import requests

from .errors import BranchExistsError, ConflictError, RefNotFoundError, RemoteError
from .retry import RetryConfig, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
USER_AGENT = "issueflow-rest/0.3.0"
HTTP_ERROR_STATUS = 400
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_UNPROCESSABLE = 422
REQUEST_TIMEOUT = 30


class GitHubAPIError(RemoteError):
    """Raised when the GitHub REST API returns an error."""


def _path_segment(value: str) -> str:
    return quote(value, safe="/")


@dataclass
class GitHubRestClient:
    """Lightweight REST client for the GitHub operations issueflow needs."""

    token: str
    repo: str
    base_url: str = DEFAULT_API_URL
    session: requests.Session | None = None
    retry: RetryConfig | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        url = (
            path
            if path.startswith("http")
            else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        )

        def _run() -> requests.Response:
            return self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._session.headers,
                timeout=REQUEST_TIMEOUT,
            )

        response = run_with_retries(_run, cfg=self.retry)
        if response.status_code >= HTTP_ERROR_STATUS:
            raise GitHubAPIError(
                f"GitHub API {method} {url} failed with {response.status_code}",
                status=response.status_code,
                response_text=response.text,
            )
        if response.text:
            try:
                return response.json()
            except ValueError:
                return response.text
        return None

    def _paginate(
        self, path: str, *, params: dict[str, Any] | None = None
    ) -> list[Any]:
        params = dict(params or {})
        per_page = params.setdefault("per_page", 100)
        params.setdefault("page", 1)
        results: list[Any] = []
        while True:
            data = self._request("GET", path, params=params)
            if not isinstance(data, list):
                break
            results.extend(data)
            if len(data) < per_page:
                break
            params["page"] = params.get("page", 1) + 1
        return results

    # ---- Issue operations --------------------------------------------
    def list_issues(self, *, state: str = "open") -> list[dict[str, Any]]:
        params = {"state": state, "per_page": 100, "page": 1}
        data = self._paginate(f"/repos/{self.repo}/issues", params=params)
        # The issues endpoint also returns pull requests; drop them.
        return [
            entry for entry in data if isinstance(entry, dict) and "pull_request" not in entry
        ]

    def get_issue(self, number: int) -> dict[str, Any]:
        data = self._request("GET", f"/repos/{self.repo}/issues/{number}")
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Unexpected payload for issue #{number}")
        return data

    def create_issue(
        self,
        *,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        milestone: int | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = list(labels)
        if milestone is not None:
            payload["milestone"] = milestone
        data = self._request("POST", f"/repos/{self.repo}/issues", json_body=payload)
        if not isinstance(data, dict) or not isinstance(data.get("number"), int):
            raise GitHubAPIError(f"Unexpected payload creating issue {title!r}")
        return data

    def update_issue(
        self,
        *,
        number: int,
        body: str | None = None,
        labels: Iterable[str] | None = None,
        milestone: int | None = None,
        state: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {}
        if body is not None:
            payload["body"] = body
        if labels is not None:
            payload["labels"] = list(labels)
        if milestone is not None:
            payload["milestone"] = milestone
        if state is not None:
            payload["state"] = state
        if payload:
            self._request(
                "PATCH", f"/repos/{self.repo}/issues/{number}", json_body=payload
            )

    def add_comment(self, *, number: int, body: str) -> None:
        self._request(
            "POST",
            f"/repos/{self.repo}/issues/{number}/comments",
            json_body={"body": body},
        )

    # ---- Git refs / branches -----------------------------------------
    def get_branch_sha(self, branch: str) -> str:
        try:
            data = self._request(
                "GET", f"/repos/{self.repo}/git/ref/heads/{_path_segment(branch)}"
            )
        except GitHubAPIError as exc:
            if exc.status in (HTTP_NOT_FOUND, HTTP_UNPROCESSABLE):
                raise RefNotFoundError(
                    f"Ref heads/{branch} not found", status=exc.status, response_text=exc.response_text
                ) from exc
            raise
        sha = (data or {}).get("object", {}).get("sha") if isinstance(data, dict) else None
        if not isinstance(sha, str):
            raise RefNotFoundError(f"Ref heads/{branch} has no sha")
        return sha

    def create_ref(self, *, branch: str, sha: str) -> None:
        try:
            self._request(
                "POST",
                f"/repos/{self.repo}/git/refs",
                json_body={"ref": f"refs/heads/{branch}", "sha": sha},
            )
        except GitHubAPIError as exc:
            if exc.status == HTTP_UNPROCESSABLE and "already exists" in (exc.response_text or ""):
                raise BranchExistsError(
                    f"Branch {branch} already exists", status=exc.status, response_text=exc.response_text
                ) from exc
            raise

    def list_branches(self) -> list[dict[str, Any]]:
        data = self._paginate(f"/repos/{self.repo}/branches")
        return [entry for entry in data if isinstance(entry, dict)]

    def get_commit(self, ref: str) -> dict[str, Any]:
        data = self._request("GET", f"/repos/{self.repo}/commits/{_path_segment(ref)}")
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Unexpected payload for commit {ref}")
        return data

    # ---- Repository contents -----------------------------------------
    def get_file_sha(self, path: str, *, ref: str) -> str | None:
        try:
            data = self._request(
                "GET",
                f"/repos/{self.repo}/contents/{_path_segment(path)}",
                params={"ref": ref},
            )
        except GitHubAPIError as exc:
            if exc.status == HTTP_NOT_FOUND:
                return None
            raise
        sha = data.get("sha") if isinstance(data, dict) else None
        return sha if isinstance(sha, str) else None

    def put_file(
        self,
        path: str,
        content: str,
        *,
        branch: str,
        message: str,
        sha: str | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            payload["sha"] = sha
        try:
            self._request(
                "PUT", f"/repos/{self.repo}/contents/{_path_segment(path)}", json_body=payload
            )
        except GitHubAPIError as exc:
            text = exc.response_text or ""
            if exc.status == HTTP_CONFLICT or (
                exc.status == HTTP_UNPROCESSABLE and "sha" in text
            ):
                raise ConflictError(
                    f"{path} on {branch} exists with a different sha",
                    status=exc.status,
                    response_text=text,
                ) from exc
            raise

    # ---- Utilities ----------------------------------------------------
    def resolve_milestone(self, milestone: str) -> int | None:
        milestone = milestone.strip()
        if milestone.isdigit():
            return int(milestone)
        milestones = self._paginate(
            f"/repos/{self.repo}/milestones", params={"state": "all"}
        )
        for entry in milestones:
            if not isinstance(entry, dict):
                continue
            title = entry.get("title")
            if isinstance(title, str) and title.lower() == milestone.lower():
                number = entry.get("number")
                if isinstance(number, int):
                    return number
        return None


__all__ = [
    "DEFAULT_API_URL",
    "GitHubAPIError",
    "GitHubRestClient",
]
