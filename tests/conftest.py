"""Pytest configuration and shared fixtures for all tests."""

from typing import Any, Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from src.triage.metrics import TriageMetrics


WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture
def webhook_secret() -> str:
    return WEBHOOK_SECRET


@pytest.fixture
def metrics() -> TriageMetrics:
    """Metrics bound to a throwaway registry."""
    return TriageMetrics(registry=CollectorRegistry())


@pytest.fixture
def issue_payload():
    """Factory for issues.opened payloads."""

    def build(
        owner: str = "acme",
        repo: str = "widgets",
        title: str = "App crashes on login",
        body: Optional[str] = "Stack trace attached",
        number: int = 7,
        installation_id: int = 42,
    ) -> Dict[str, Any]:
        return {
            "action": "opened",
            "installation": {"id": installation_id},
            "issue": {
                "node_id": f"I_{number}",
                "number": number,
                "title": title,
                "body": body,
            },
            "repository": {
                "node_id": "R_widgets",
                "name": repo,
                "full_name": f"{owner}/{repo}",
                "owner": {"login": owner},
            },
        }

    return build


@pytest.fixture
def comment_payload(issue_payload):
    """Factory for issue_comment.created payloads."""

    def build(
        body: str = "/label",
        author_association: str = "MEMBER",
        **issue_kwargs: Any,
    ) -> Dict[str, Any]:
        payload = issue_payload(**issue_kwargs)
        payload["action"] = "created"
        payload["comment"] = {"body": body, "author_association": author_association}
        return payload

    return build


@pytest.fixture
def installation_payload():
    """Factory for installation and installation_repositories payloads."""

    def build(
        action: str = "created",
        login: str = "acme",
        repositories: Optional[List[str]] = None,
        added: Optional[List[str]] = None,
        removed: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "action": action,
            "installation": {"id": 42, "account": {"login": login}},
        }
        if repositories is not None:
            payload["repositories"] = [
                {"name": name, "full_name": f"{login}/{name}", "private": False}
                for name in repositories
            ]
        if added is not None:
            payload["repositories_added"] = [
                {"name": name, "full_name": f"{login}/{name}"} for name in added
            ]
        if removed is not None:
            payload["repositories_removed"] = [
                {"name": name, "full_name": f"{login}/{name}"} for name in removed
            ]
        return payload

    return build
