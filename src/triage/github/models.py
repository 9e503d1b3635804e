"""GitHub API models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Label(BaseModel):
    """A repository label as returned by the GraphQL API.

    Attributes:
        id: GraphQL node id of the label.
        name: Display name of the label.
    """

    id: str = Field(..., min_length=1)
    name: str


class InstallationToken(BaseModel):
    """Installation-scoped access token.

    Attributes:
        token: The token value.
        expires_at: When GitHub stops accepting the token.
    """

    token: str
    expires_at: Optional[datetime] = None
