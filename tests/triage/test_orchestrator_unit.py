"""Unit tests for the WebhookService.

Drives signed deliveries through the service with an in-memory customer
repository and mocked GitHub, payment link and completion collaborators,
asserting the status and message for each path.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from src.triage.errors import (
    AuthorizationError,
    NotFoundError,
    QuotaExceededError,
    ResolutionError,
    TriageError,
    UpstreamError,
)
from src.triage.github.models import Label
from src.triage.installations.sync import InstallationSynchronizer
from src.triage.labeler.agent import LabelSelector
from src.triage.labeler.models import LabelingResult
from src.triage.orchestrator import WebhookService
from src.triage.state.memory import InMemoryCustomerRepository
from src.triage.state.repository import DatabaseError
from src.triage.usage.gate import UsageGate
from src.triage.webhook.handler import MalformedEventError
from src.triage.webhook.signature import compute_signature


def run_async(coro):
    return asyncio.run(coro)


class FakeGitHub:
    """Installation client double usable as an async context manager."""

    def __init__(self):
        self.list_labels = AsyncMock(return_value=[Label(id="1", name="bug")])
        self.add_labels = AsyncMock()
        self.create_issue = AsyncMock(return_value="I_usage")
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed = True


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def repo():
    return InMemoryCustomerRepository()


@pytest.fixture
def selector():
    mock = AsyncMock(spec=LabelSelector)
    mock.label_issue.return_value = LabelingResult(
        answer="bug", matched_label_ids=["1"], applied_label_id="1"
    )
    return mock


@pytest.fixture
def payment_links():
    links = AsyncMock()
    links.create_payment_link.return_value = "https://buy.stripe.com/x"
    return links


@pytest.fixture
def service(webhook_secret, repo, selector, github, payment_links, metrics):
    async def client_factory(installation_id):
        return github

    return WebhookService(
        webhook_secret=webhook_secret,
        repository=repo,
        synchronizer=InstallationSynchronizer(repo),
        usage_gate=UsageGate(repo, payment_links, metrics=metrics),
        label_selector=selector,
        client_factory=client_factory,
        metrics=metrics,
    )


def _deliver(service, payload, secret, event_name=None, signature=None):
    body = json.dumps(payload).encode("utf-8")
    if signature is None:
        signature = compute_signature(body, secret)
    return run_async(service.handle(body, signature, event_name))


def _seed(repo, usage=0, limit=30, warned=False):
    async def seed():
        customer = await repo.create_with_projects("acme", ["widgets"], limit)
        for _ in range(usage):
            await repo.increment_usage(customer.id)
        if warned:
            await repo.mark_usage_warned(customer.id)

    run_async(seed())


def _customer(repo):
    return run_async(repo.get_by_name("acme"))


class TestVerification:
    def test_bad_signature_is_rejected_before_any_work(
        self, service, repo, installation_payload, webhook_secret
    ):
        with pytest.raises(AuthorizationError) as exc_info:
            _deliver(
                service,
                installation_payload(repositories=["api"]),
                webhook_secret,
                signature="sha256=" + "0" * 64,
            )

        assert exc_info.value.status_code == 403
        assert _customer(repo) is None

    def test_missing_signature_is_rejected(self, service, issue_payload):
        body = json.dumps(issue_payload()).encode("utf-8")

        with pytest.raises(AuthorizationError):
            run_async(service.handle(body, None))

    def test_missing_openai_key_fails_first(self, service, issue_payload):
        service.label_selector = None
        body = json.dumps(issue_payload()).encode("utf-8")

        with pytest.raises(TriageError) as exc_info:
            run_async(service.handle(body, None))

        assert exc_info.value.status_code == 500
        assert not isinstance(exc_info.value, AuthorizationError)

    def test_invalid_json_is_malformed(self, service, webhook_secret):
        body = b"{not json"

        with pytest.raises(MalformedEventError) as exc_info:
            run_async(service.handle(body, compute_signature(body, webhook_secret)))

        assert exc_info.value.status_code == 400


class TestInstallationBranch:
    def test_created(self, service, repo, installation_payload, webhook_secret):
        response = _deliver(
            service, installation_payload(repositories=["api"]), webhook_secret, "installation"
        )

        assert (response.status_code, response.message) == (200, "Added customer acme")
        assert _customer(repo).project_names == {"api"}

    def test_deleted(self, service, repo, installation_payload, webhook_secret):
        _seed(repo)

        response = _deliver(
            service, installation_payload(action="deleted"), webhook_secret, "installation"
        )

        assert (response.status_code, response.message) == (201, "Deleted customer acme")
        assert _customer(repo) is None

    def test_repositories_added(self, service, repo, installation_payload, webhook_secret):
        response = _deliver(
            service,
            installation_payload(action="added", added=["api"], removed=[]),
            webhook_secret,
            "installation_repositories",
        )

        assert (response.status_code, response.message) == (201, "Updated repos for acme")


class TestLabelingBranch:
    def test_other_event_is_acknowledged(self, service, issue_payload, webhook_secret, selector):
        payload = issue_payload()
        payload["action"] = "closed"

        response = _deliver(service, payload, webhook_secret, "issues")

        assert (response.status_code, response.message) == (202, "Webhook received")
        selector.label_issue.assert_not_called()

    def test_issue_opened_labels_and_counts_usage(
        self, service, repo, issue_payload, webhook_secret, selector, github, metrics
    ):
        _seed(repo, usage=2)

        response = _deliver(service, issue_payload(), webhook_secret, "issues")

        assert (response.status_code, response.message) == (
            200,
            "Webhook received. Labels added.",
        )
        selector.label_issue.assert_awaited_once()
        assert _customer(repo).usage == 3
        assert github.closed
        assert metrics.labels_applied_total._value.get() == 1
        assert (
            metrics.webhook_events_total.labels(kind="issues.opened", status="200")._value.get()
            == 1
        )

    def test_unknown_customer(self, service, issue_payload, webhook_secret):
        with pytest.raises(NotFoundError) as exc_info:
            _deliver(service, issue_payload(), webhook_secret, "issues")

        assert exc_info.value.status_code == 500

    def test_comment_without_command(self, service, repo, comment_payload, webhook_secret, selector):
        _seed(repo)

        response = _deliver(
            service, comment_payload(body="thanks!"), webhook_secret, "issue_comment"
        )

        assert (response.status_code, response.message) == (202, "Non-label comment received")
        selector.label_issue.assert_not_called()
        assert _customer(repo).usage == 0

    def test_comment_from_non_collaborator(
        self, service, repo, comment_payload, webhook_secret, selector
    ):
        _seed(repo)

        response = _deliver(
            service,
            comment_payload(author_association="CONTRIBUTOR"),
            webhook_secret,
            "issue_comment",
        )

        assert (response.status_code, response.message) == (
            202,
            "Comment from non-collaborator received",
        )
        selector.label_issue.assert_not_called()

    @pytest.mark.parametrize("association", ["OWNER", "MEMBER", "COLLABORATOR"])
    def test_label_command_from_collaborator(
        self, service, repo, comment_payload, webhook_secret, association
    ):
        _seed(repo)

        response = _deliver(
            service,
            comment_payload(body="Could you /label this?", author_association=association),
            webhook_secret,
            "issue_comment",
        )

        assert response.status_code == 200
        assert _customer(repo).usage == 1

    def test_resolution_failure_leaves_usage_unchanged(
        self, service, repo, issue_payload, webhook_secret, selector
    ):
        _seed(repo, usage=1)
        selector.label_issue.side_effect = ResolutionError("Could not find labels", "x")

        with pytest.raises(ResolutionError):
            _deliver(service, issue_payload(), webhook_secret, "issues")

        assert _customer(repo).usage == 1

    def test_usage_record_failure_still_succeeds(
        self, service, repo, issue_payload, webhook_secret
    ):
        _seed(repo)
        service.usage_gate.record_usage = AsyncMock(side_effect=DatabaseError("down"))

        response = _deliver(service, issue_payload(), webhook_secret, "issues")

        assert response.status_code == 200


class TestUsageGating:
    def test_over_limit_opens_issue_once_and_refuses(
        self, service, repo, issue_payload, webhook_secret, selector, github
    ):
        _seed(repo, usage=10, limit=9)

        for _ in range(2):
            with pytest.raises(QuotaExceededError) as exc_info:
                _deliver(service, issue_payload(), webhook_secret, "issues")
            assert exc_info.value.status_code == 402

        assert github.create_issue.await_count == 1
        assert _customer(repo).usage_warned is True
        selector.label_issue.assert_not_called()

    def test_gate_applies_before_comment_checks(
        self, service, repo, comment_payload, webhook_secret
    ):
        _seed(repo, usage=10, limit=9, warned=True)

        with pytest.raises(QuotaExceededError):
            _deliver(service, comment_payload(body="hi"), webhook_secret, "issue_comment")

    def test_warning_failure_is_server_error(
        self, service, repo, issue_payload, webhook_secret, github
    ):
        _seed(repo, usage=10, limit=9)
        github.create_issue.side_effect = UpstreamError("GitHub API error: 502")

        with pytest.raises(UpstreamError) as exc_info:
            _deliver(service, issue_payload(), webhook_secret, "issues")

        assert exc_info.value.status_code == 500
        assert _customer(repo).usage_warned is False
