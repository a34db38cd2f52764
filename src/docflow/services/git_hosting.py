"""
Git hosting client.

The changeset service only needs to read files, create a branch, commit files
and open a pull request. ``GitHubClient`` does this through the GitHub REST
API without a local clone.
"""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from docflow.exceptions import GitHostingError

logger = logging.getLogger(__name__)


@dataclass
class RepoFile:
    """File content at a ref, with the blob sha needed to update it."""

    path: str
    content: str
    sha: Optional[str] = None


@dataclass
class PullRequest:
    url: str
    number: int
    branch: str


class GitHostingClient(ABC):
    """Operations on a hosted repository."""

    @abstractmethod
    def get_file_content(self, repo: str, path: str, ref: str) -> Optional[RepoFile]:
        """File at ``ref``, or None when it does not exist."""
        ...

    @abstractmethod
    def create_branch(self, repo: str, branch: str, base_branch: str) -> None:
        ...

    @abstractmethod
    def commit_file(
        self,
        repo: str,
        branch: str,
        path: str,
        content: str,
        message: str,
        sha: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    def create_pull_request(
        self,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        draft: bool = True,
    ) -> PullRequest:
        ...


class GitHubClient(GitHostingClient):
    """
    GitHub REST v3 client over httpx.

    Every request carries a bearer token and a bounded timeout. Non-success
    responses raise ``GitHostingError`` with the status code.
    """

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not token:
            raise ValueError("GitHub token is required")
        self._client = httpx.Client(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> "GitHubClient":
        from docflow.config import settings

        return cls(
            token=settings.github_token,
            api_url=settings.github_api_url,
            timeout=settings.github_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _request(
        self, method: str, url: str, allow_not_found: bool = False, **kwargs: Any
    ) -> Optional[httpx.Response]:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise GitHostingError(f"GitHub request {method} {url} failed: {e}") from e

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise GitHostingError(
                f"GitHub API error {response.status_code} for {method} {url}: {detail}",
                status_code=response.status_code,
            )
        return response

    def get_file_content(self, repo: str, path: str, ref: str) -> Optional[RepoFile]:
        response = self._request(
            "GET", f"/repos/{repo}/contents/{path}", allow_not_found=True, params={"ref": ref}
        )
        if response is None:
            return None
        data = response.json()
        if isinstance(data, list) or data.get("type") != "file":
            return None
        content = base64.b64decode(data.get("content", "")).decode("utf-8")
        return RepoFile(path=path, content=content, sha=data.get("sha"))

    def create_branch(self, repo: str, branch: str, base_branch: str) -> None:
        base = self._request("GET", f"/repos/{repo}/git/ref/heads/{base_branch}").json()
        self._request(
            "POST",
            f"/repos/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": base["object"]["sha"]},
        )
        logger.info(f"Created branch {branch} from {base_branch} in {repo}")

    def commit_file(
        self,
        repo: str,
        branch: str,
        path: str,
        content: str,
        message: str,
        sha: Optional[str] = None,
    ) -> None:
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            payload["sha"] = sha
        self._request("PUT", f"/repos/{repo}/contents/{path}", json=payload)
        logger.debug(f"Committed {path} to {repo}@{branch}")

    def create_pull_request(
        self,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        draft: bool = True,
    ) -> PullRequest:
        data = self._request(
            "POST",
            f"/repos/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base, "draft": draft},
        ).json()
        logger.info(f"Opened pull request #{data['number']} on {repo}")
        return PullRequest(url=data["html_url"], number=data["number"], branch=head)
