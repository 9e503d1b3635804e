"""Label selection result model."""

from typing import List

from pydantic import BaseModel, Field


class LabelingResult(BaseModel):
    """Outcome of labeling one issue.

    Attributes:
        answer: Raw completion text.
        matched_label_ids: Ids of every label the answer matched, in order.
        applied_label_id: The label actually attached to the issue.
    """

    answer: str
    matched_label_ids: List[str] = Field(..., min_length=1)
    applied_label_id: str
