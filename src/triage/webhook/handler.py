"""GitHub webhook payload parsing.

This module provides the WebhookHandler class that turns a raw GitHub
delivery (the ``x-github-event`` header plus the JSON body) into one of the
typed events in models.py. Signature verification happens before parsing,
in the HTTP layer.

GitHub Webhook Payload Structure (issue_comment event, trimmed):
{
  "action": "created",
  "installation": {"id": 42},
  "issue": {"node_id": "I_kw...", "number": 7, "title": "...", "body": "..."},
  "comment": {"body": "/label", "author_association": "MEMBER"},
  "repository": {"node_id": "R_kg...", "name": "repo", "owner": {"login": "acme"}}
}
"""

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationError

from src.triage.errors import TriageError
from src.triage.webhook.models import (
    EventKind,
    InstallationEvent,
    InstallationRepositoriesEvent,
    IssueCommentEvent,
    IssueOpenedEvent,
    OtherEvent,
)

logger = logging.getLogger(__name__)


EVENT_HEADER = "x-github-event"

_EVENT_MODELS: Dict[EventKind, type[BaseModel]] = {
    EventKind.INSTALLATION_CREATED: InstallationEvent,
    EventKind.INSTALLATION_DELETED: InstallationEvent,
    EventKind.REPOSITORIES_ADDED: InstallationRepositoriesEvent,
    EventKind.REPOSITORIES_REMOVED: InstallationRepositoriesEvent,
    EventKind.ISSUE_OPENED: IssueOpenedEvent,
    EventKind.COMMENT_CREATED: IssueCommentEvent,
}


class MalformedEventError(TriageError):
    """Raised when a recognised event is missing the fields it needs."""

    status_code = 400


class WebhookHandler:
    """Parser for GitHub webhook deliveries.

    The event name comes from the ``x-github-event`` header when GitHub
    sends it; otherwise it is inferred from the payload shape. Deliveries
    the service does not act on become an OtherEvent.
    """

    def parse_event(
        self,
        payload: Any,
        event_name: Optional[str] = None,
    ):
        """Parse a webhook delivery into a typed event.

        Args:
            payload: The decoded JSON body.
            event_name: Value of the x-github-event header, if present.

        Returns:
            One of the WebhookEvent union members.

        Raises:
            MalformedEventError: If the payload is not an object, or a
                recognised event lacks required fields.
        """
        if not isinstance(payload, dict):
            raise MalformedEventError(
                f"Invalid payload: expected object, got {type(payload).__name__}"
            )

        action = payload.get("action")
        action = action if isinstance(action, str) else ""
        event = event_name or self._infer_event_name(payload, action)

        kind = self._resolve_kind(event, action)
        if kind is EventKind.OTHER:
            logger.debug(
                "Ignoring unsupported webhook event",
                extra={"event": event, "action": action},
            )
            return OtherEvent(event=event, action=action)

        data = self._extract(kind, payload)
        try:
            parsed = _EVENT_MODELS[kind].model_validate(data)
        except ValidationError as e:
            logger.warning(
                "Malformed webhook payload",
                extra={"kind": kind.value, "errors": e.error_count()},
            )
            raise MalformedEventError(
                f"Malformed {kind.value} payload"
            ) from e

        logger.info("Parsed webhook event", extra={"kind": kind.value})
        return parsed

    def _infer_event_name(self, payload: Dict[str, Any], action: str) -> str:
        """Infer the GitHub event name from the payload shape.

        Args:
            payload: The decoded JSON body.
            action: The payload action.

        Returns:
            The inferred event name, or an empty string.
        """
        if _dig(payload, "installation", "account", "login"):
            if "repositories_added" in payload or action in ("added", "removed"):
                return "installation_repositories"
            return "installation"
        if "comment" in payload and "issue" in payload:
            return "issue_comment"
        if "issue" in payload:
            return "issues"
        return ""

    def _resolve_kind(self, event: str, action: str) -> EventKind:
        """Map an event name and action onto an EventKind."""
        try:
            return EventKind(f"{event}.{action}")
        except ValueError:
            return EventKind.OTHER

    def _extract(self, kind: EventKind, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Pick the fields a given event kind is modelled with.

        Args:
            kind: The resolved event kind.
            payload: The decoded JSON body.

        Returns:
            A dictionary ready for model validation.
        """
        installation_id = _dig(payload, "installation", "id")

        if kind in (EventKind.INSTALLATION_CREATED, EventKind.INSTALLATION_DELETED):
            return {
                "kind": kind,
                "login": _dig(payload, "installation", "account", "login"),
                "installation_id": installation_id,
                "repositories": payload.get("repositories") or [],
            }

        if kind in (EventKind.REPOSITORIES_ADDED, EventKind.REPOSITORIES_REMOVED):
            return {
                "kind": kind,
                "login": _dig(payload, "installation", "account", "login"),
                "installation_id": installation_id,
                "repositories_added": payload.get("repositories_added") or [],
                "repositories_removed": payload.get("repositories_removed") or [],
            }

        issue = _mapping(payload, "issue")
        repository = _mapping(payload, "repository")
        data: Dict[str, Any] = {
            "kind": kind,
            "installation_id": installation_id,
            "issue": {
                "node_id": issue.get("node_id"),
                "number": issue.get("number"),
                "title": issue.get("title") or "",
                "body": issue.get("body"),
            },
            "repository": {
                "node_id": repository.get("node_id"),
                "name": repository.get("name"),
                "owner": _dig(repository, "owner", "login"),
            },
        }

        if kind is EventKind.COMMENT_CREATED:
            comment = payload.get("comment")
            # Anything other than an object fails CommentInfo validation
            data["comment"] = comment
            if isinstance(comment, dict):
                data["comment"] = {
                    "body": comment.get("body") or "",
                    "author_association": comment.get("author_association") or "NONE",
                }

        return data


def _dig(data: Any, *keys: str) -> Any:
    """Walk nested dictionaries, returning None on any missing level."""
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _mapping(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    """Return a nested object, or an empty one when it is absent or not an object."""
    value = data.get(key)
    return value if isinstance(value, dict) else {}
