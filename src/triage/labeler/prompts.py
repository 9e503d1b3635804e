"""Prompt construction for label selection."""

from typing import Iterable, Optional

MAX_BODY_LENGTH = 2000


def truncate_body(body: Optional[str], limit: int = MAX_BODY_LENGTH) -> str:
    """Cut an issue body to ``limit`` characters, appending "..." when cut.

    Args:
        body: The issue body. None is treated as empty.
        limit: Maximum number of characters kept from the body.

    Returns:
        The body, or its first ``limit`` characters followed by "...".
    """
    if not body:
        return ""
    if len(body) > limit:
        return body[:limit] + "..."
    return body


def build_label_prompt(
    repository: str,
    owner: str,
    label_names: Iterable[str],
    title: str,
    body: Optional[str],
) -> str:
    """Build the user prompt asking the model to pick labels.

    The prompt is a pure function of its inputs so the same issue and
    label set always yield the same request.

    Args:
        repository: Repository name without owner prefix.
        owner: Repository owner login.
        label_names: Names of the labels defined on the repository.
        title: Issue title.
        body: Issue body, truncated before embedding.

    Returns:
        Prompt text for the completion API.
    """
    return f"""You are tasked with labelling a GitHub issue based on its title and body.
The repository is called {repository} by {owner}.
The possible labels are: {", ".join(label_names)}.
Please choose one that represents the type of issue, examples: bug, feature request, or question.
Please choose a second label that represents the code area affected.

Here is the title of the issue: "{title}"
Here is the body of the issue: "{truncate_body(body)}"

Please answer in the format "type, category" with only the names of the labels, without explanation. For example: "bug, frontend"."""
