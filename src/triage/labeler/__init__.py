"""Label selection for GitHub issues.

This module provides the LabelSelector, which uses an LLM to choose a
label for an issue from the labels defined on its repository.
"""

from src.triage.labeler.agent import LabelSelector
from src.triage.labeler.matching import (
    ExactLabelMatcher,
    LabelMatcher,
    SubstringLabelMatcher,
    parse_answer,
    resolve_label_ids,
)
from src.triage.labeler.models import LabelingResult
from src.triage.labeler.prompts import MAX_BODY_LENGTH, build_label_prompt, truncate_body

__all__ = [
    "ExactLabelMatcher",
    "LabelMatcher",
    "LabelSelector",
    "LabelingResult",
    "MAX_BODY_LENGTH",
    "SubstringLabelMatcher",
    "build_label_prompt",
    "parse_answer",
    "resolve_label_ids",
    "truncate_body",
]
