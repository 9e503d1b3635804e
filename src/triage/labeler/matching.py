"""Mapping model answers onto repository labels.

The model answers with free text such as "Bug, Frontend". The answer is
split into tokens and each token is matched against the repository's
label names by a pluggable LabelMatcher.
"""

from typing import List, Optional, Protocol, Sequence

from src.triage.github.models import Label


def parse_answer(answer: str) -> List[str]:
    """Split a model answer into lowercase label tokens.

    Args:
        answer: Raw completion text, e.g. "Bug, Frontend".

    Returns:
        Trimmed, lowercased, non-empty tokens in answer order.
    """
    tokens = (token.strip().lower() for token in answer.split(","))
    return [token for token in tokens if token]


class LabelMatcher(Protocol):
    """Chooses the label a single answer token refers to."""

    def match(self, token: str, labels: Sequence[Label]) -> Optional[Label]:
        """Return the matching label, or None."""
        ...


class SubstringLabelMatcher:
    """Matches the first label whose lowercased name contains the token.

    Tolerates the model answering "bug" for a label named "Type: Bug".
    Label order decides ties.
    """

    def match(self, token: str, labels: Sequence[Label]) -> Optional[Label]:
        for label in labels:
            if token in label.name.lower():
                return label
        return None


class ExactLabelMatcher:
    """Matches a label whose name equals the token, ignoring case."""

    def match(self, token: str, labels: Sequence[Label]) -> Optional[Label]:
        for label in labels:
            if label.name.lower() == token:
                return label
        return None


def resolve_label_ids(
    tokens: Sequence[str],
    labels: Sequence[Label],
    matcher: Optional[LabelMatcher] = None,
) -> List[str]:
    """Map answer tokens to label ids.

    Args:
        tokens: Parsed answer tokens.
        labels: Labels defined on the repository.
        matcher: Matching strategy. Defaults to SubstringLabelMatcher.

    Returns:
        Ids of matched labels in token order. Unmatched tokens are skipped.
    """
    matcher = matcher or SubstringLabelMatcher()
    ids = []
    for token in tokens:
        label = matcher.match(token, labels)
        if label is not None:
            ids.append(label.id)
    return ids
