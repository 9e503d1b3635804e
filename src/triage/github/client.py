"""GitHub API client for label, issue and comment interactions.

This module provides an async wrapper around the GitHub REST and GraphQL
APIs for:
- Listing repository labels
- Attaching labels to issues
- Opening issues (billing warnings)
- Creating comments on issues and pull requests
- Arbitrary REST calls on behalf of the engineer agent

Includes rate limiting and retry logic for API resilience.

Source:
- src/triage/github/models.py (Label)
- src/triage/github/auth.py (installation tokens)
"""

import asyncio
import logging
import random
import time
from typing import Any, Dict, List, Optional

import httpx

from src.triage.errors import UpstreamError
from src.triage.github.models import Label


logger = logging.getLogger(__name__)


LABELS_QUERY = """
query Labels($name: String!, $owner: String!) {
  repository(name: $name, owner: $owner) {
    labels(first: 100) {
      nodes {
        name
        id
      }
    }
  }
}
"""

ADD_LABELS_MUTATION = """
mutation AddLabels($issueId: ID!, $labelIds: [ID!]!) {
  addLabelsToLabelable(input: {labelIds: $labelIds, labelableId: $issueId}) {
    clientMutationId
  }
}
"""

CREATE_ISSUE_MUTATION = """
mutation CreateIssue($repoId: ID!, $title: String!, $body: String!) {
  createIssue(input: {repositoryId: $repoId, title: $title, body: $body}) {
    issue {
      id
    }
  }
}
"""


class GitHubAPIError(UpstreamError):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        http_status: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        super().__init__(message)
        self.http_status = status_code
        self.response_body = response_body
        self.request_url = request_url


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class GitHubClient:
    """Async GitHub API client with rate limiting and retry logic.

    This client implements:

    - Automatic retry with exponential backoff for transient failures
    - Rate limit handling by respecting X-RateLimit-* headers
    - GraphQL queries and mutations with error extraction
    - Support for both github.com and GitHub Enterprise Server

    Attributes:
        token: GitHub API token (installation token or PAT).
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(token="ghs_xxx") as client:
        ...     labels = await client.list_labels("acme", "widgets")
    """

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "Triage-Bot/1.0",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    def _parse_int_header(
        self,
        headers: httpx.Headers,
        name: str,
    ) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    async def _handle_rate_limit(self, response: httpx.Response) -> None:
        """Raise a RateLimitError describing when to retry.

        Raises:
            RateLimitError: Always.
        """
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            extra={"reset_at": reset_at, "retry_after": retry_after},
        )

        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, PATCH).
            path: API path (e.g., /repos/owner/repo/issues/1/comments).
            json_data: Optional JSON body for the request.
            headers: Optional per-request headers.

        Returns:
            The HTTP response from GitHub.

        Raises:
            GitHubAPIError: If the request fails after all retries.
            RateLimitError: If rate limit is exceeded.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    json=json_data,
                    headers=headers,
                )

                if response.status_code == 403:
                    remaining = self._parse_int_header(
                        response.headers,
                        "x-ratelimit-remaining",
                    )
                    if remaining == 0:
                        await self._handle_rate_limit(response)

                if response.status_code == 429:
                    await self._handle_rate_limit(response)

                if response.status_code in self.RETRYABLE_STATUS_CODES:
                    if attempt < self.max_retries:
                        delay = self._calculate_backoff(attempt)
                        logger.warning(
                            "Retryable error from GitHub API",
                            extra={
                                "status_code": response.status_code,
                                "attempt": attempt + 1,
                                "delay": delay,
                                "path": path,
                            },
                        )
                        await asyncio.sleep(delay)
                        continue

                if response.status_code >= 400:
                    error_body = response.text
                    logger.error(
                        "GitHub API error",
                        extra={
                            "status_code": response.status_code,
                            "path": path,
                            "method": method,
                            "response_body": error_body[:500],
                        },
                    )
                    raise GitHubAPIError(
                        message=f"GitHub API error: {response.status_code}",
                        status_code=response.status_code,
                        response_body=error_body,
                        request_url=str(response.url),
                    )

                return response

            except GitHubAPIError:
                raise
            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Request error, retrying",
                        extra={
                            "error": str(e),
                            "attempt": attempt + 1,
                            "delay": delay,
                            "path": path,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue

        logger.error(
            "GitHub API request failed after all retries",
            extra={
                "path": path,
                "method": method,
                "last_error": str(last_exception),
            },
        )
        raise GitHubAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_exception}",
            request_url=f"{self.base_url}{path}",
        )

    async def graphql(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run a GraphQL query or mutation.

        Args:
            query: GraphQL document.
            variables: Variables for the document.

        Returns:
            The ``data`` object of the response.

        Raises:
            GitHubAPIError: If the request fails or the response carries
                GraphQL errors.
        """
        response = await self._request(
            method="POST",
            path="/graphql",
            json_data={"query": query, "variables": variables or {}},
        )
        body = response.json()

        errors = body.get("errors")
        if errors:
            messages = "; ".join(str(e.get("message", e)) for e in errors)
            logger.error("GitHub GraphQL error", extra={"errors": messages[:500]})
            raise GitHubAPIError(
                message=f"GitHub GraphQL error: {messages}",
                status_code=response.status_code,
                response_body=response.text,
            )

        return body.get("data") or {}

    async def list_labels(self, owner: str, repo: str) -> Optional[List[Label]]:
        """List up to 100 labels of a repository.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.

        Returns:
            The labels, or None when the response has no label list.
        """
        data = await self.graphql(LABELS_QUERY, {"name": repo, "owner": owner})
        nodes = ((data.get("repository") or {}).get("labels") or {}).get("nodes")
        if nodes is None:
            return None

        labels = [Label.model_validate(node) for node in nodes if node]
        logger.debug(
            "Fetched repository labels",
            extra={"owner": owner, "repo": repo, "count": len(labels)},
        )
        return labels

    async def add_labels(self, issue_id: str, label_ids: List[str]) -> None:
        """Attach labels to an issue or pull request.

        Args:
            issue_id: GraphQL node id of the issue.
            label_ids: GraphQL node ids of the labels.
        """
        logger.info(
            "Adding labels to issue",
            extra={"issue_id": issue_id, "label_ids": label_ids},
        )
        data = await self.graphql(
            ADD_LABELS_MUTATION,
            {"issueId": issue_id, "labelIds": label_ids},
        )
        if "addLabelsToLabelable" not in data:
            raise GitHubAPIError("Could not add labels")

    async def create_issue(self, repository_id: str, title: str, body: str) -> str:
        """Open an issue in a repository.

        Args:
            repository_id: GraphQL node id of the repository.
            title: Issue title.
            body: Issue body in markdown.

        Returns:
            The GraphQL node id of the new issue.
        """
        data = await self.graphql(
            CREATE_ISSUE_MUTATION,
            {"repoId": repository_id, "title": title, "body": body},
        )
        issue = ((data.get("createIssue") or {}).get("issue")) or {}
        issue_id = issue.get("id")
        if not issue_id:
            raise GitHubAPIError("Failed to open issue")

        logger.info(
            "Issue opened",
            extra={"repository_id": repository_id, "issue_id": issue_id},
        )
        return issue_id

    async def create_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
    ) -> Dict[str, Any]:
        """Create a comment on an issue or pull request.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue or pull request number.
            body: Comment body in markdown format.

        Returns:
            The created comment data from GitHub API.
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"

        response = await self._request(
            method="POST",
            path=path,
            json_data={"body": body},
        )

        result = response.json()
        logger.info(
            "Comment created successfully",
            extra={
                "owner": owner,
                "repo": repo,
                "issue_number": issue_number,
                "comment_id": result.get("id"),
            },
        )
        return result

    async def rest(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
    ) -> Any:
        """Call an arbitrary REST endpoint.

        Args:
            method: HTTP method.
            path: API path starting with ``/``.
            body: Optional JSON body.

        Returns:
            The decoded JSON response, or None for empty responses.
        """
        if not path.startswith("/"):
            path = f"/{path}"
        response = await self._request(method=method.upper(), path=path, json_data=body)
        if not response.content:
            return None
        return response.json()
