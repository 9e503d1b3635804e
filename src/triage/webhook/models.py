"""GitHub webhook event models.

Deliveries are validated at the boundary into a tagged union keyed on
``kind`` (``<event>.<action>``). Only the fields the service acts on are
modelled; everything else in the payload is ignored.

The models use Pydantic for validation, consistent with config.py.
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    """Webhook deliveries the service distinguishes."""

    INSTALLATION_CREATED = "installation.created"
    INSTALLATION_DELETED = "installation.deleted"
    REPOSITORIES_ADDED = "installation_repositories.added"
    REPOSITORIES_REMOVED = "installation_repositories.removed"
    ISSUE_OPENED = "issues.opened"
    COMMENT_CREATED = "issue_comment.created"
    OTHER = "other"


class RepositoryRef(BaseModel):
    """Repository as listed in installation payloads."""

    name: str = Field(..., min_length=1)
    full_name: str = ""
    private: bool = False


class RepositoryInfo(BaseModel):
    """Repository an issue or comment event happened in.

    Attributes:
        node_id: GraphQL node id, used to open billing-warning issues.
        name: Repository name without owner prefix.
        owner: Login of the owning account.
    """

    node_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    owner: str = Field(..., min_length=1)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class IssueInfo(BaseModel):
    """Issue fields used for labeling."""

    node_id: str = Field(..., min_length=1)
    number: int = Field(..., gt=0)
    title: str = ""
    body: Optional[str] = None


class CommentInfo(BaseModel):
    """Comment fields used to decide whether a comment triggers labeling."""

    body: str = ""
    author_association: str = "NONE"


class InstallationEvent(BaseModel):
    """App installed on or uninstalled from an account."""

    kind: Literal[EventKind.INSTALLATION_CREATED, EventKind.INSTALLATION_DELETED]
    login: str = Field(..., min_length=1)
    installation_id: Optional[int] = None
    repositories: list[RepositoryRef] = Field(default_factory=list)


class InstallationRepositoriesEvent(BaseModel):
    """Repositories added to or removed from an installation."""

    kind: Literal[EventKind.REPOSITORIES_ADDED, EventKind.REPOSITORIES_REMOVED]
    login: str = Field(..., min_length=1)
    installation_id: Optional[int] = None
    repositories_added: list[RepositoryRef] = Field(default_factory=list)
    repositories_removed: list[RepositoryRef] = Field(default_factory=list)


class IssueOpenedEvent(BaseModel):
    """A new issue was opened."""

    kind: Literal[EventKind.ISSUE_OPENED]
    installation_id: int
    issue: IssueInfo
    repository: RepositoryInfo


class IssueCommentEvent(BaseModel):
    """A comment was created on an issue or pull request."""

    kind: Literal[EventKind.COMMENT_CREATED]
    installation_id: int
    issue: IssueInfo
    repository: RepositoryInfo
    comment: CommentInfo


class OtherEvent(BaseModel):
    """Any delivery the service acknowledges without acting on it."""

    kind: Literal[EventKind.OTHER] = EventKind.OTHER
    event: str = ""
    action: str = ""


WebhookEvent = Annotated[
    Union[
        InstallationEvent,
        InstallationRepositoriesEvent,
        IssueOpenedEvent,
        IssueCommentEvent,
        OtherEvent,
    ],
    Field(discriminator="kind"),
]

LabelingEvent = Union[IssueOpenedEvent, IssueCommentEvent]
