"""LLM-based label selection for GitHub issues.

The LabelSelector lists the repository's labels, asks the completion API
to choose a type label and a code-area label, maps the answer onto the
labels with a LabelMatcher and attaches the first match to the issue.

Only the first matched label is attached; the code-area label the model
proposes is resolved but not applied.

Source:
- src/triage/labeler/prompts.py (prompt and body truncation)
- src/triage/labeler/matching.py (answer parsing and label matching)
- src/triage/config.py (openai_api_key, openai_model)
"""

import logging
from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from src.triage.deadline import with_deadline
from src.triage.errors import ResolutionError, TriageError, UpstreamError
from src.triage.github.client import GitHubClient
from src.triage.labeler.matching import LabelMatcher, parse_answer, resolve_label_ids
from src.triage.labeler.models import LabelingResult
from src.triage.labeler.prompts import build_label_prompt
from src.triage.webhook.models import IssueInfo, RepositoryInfo


logger = logging.getLogger(__name__)


class LabelSelector:
    """Chooses and attaches a label for an issue.

    Attributes:
        model_name: Chat completion model.
        timeout: Deadline in seconds for each external call.
        matcher: Strategy mapping answer tokens to labels.

    Example:
        >>> selector = LabelSelector(api_key="sk-...")
        >>> async with GitHubClient(token) as github:
        ...     result = await selector.label_issue(github, event.repository, event.issue)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = "gpt-3.5-turbo",
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        matcher: Optional[LabelMatcher] = None,
        llm: Optional[BaseChatModel] = None,
    ):
        """Initialize the label selector.

        Args:
            api_key: Completion API key. Required unless ``llm`` is given.
            model_name: Chat completion model.
            base_url: Optional OpenAI-compatible endpoint.
            timeout: Deadline in seconds for each external call.
            matcher: Label matching strategy. Defaults to substring matching.
            llm: Pre-built chat model, used instead of creating ChatOpenAI.
        """
        self.api_key = api_key
        self.model_name = model_name
        self.base_url = base_url
        self.timeout = timeout
        self.matcher = matcher
        self._llm = llm

    @property
    def llm(self) -> BaseChatModel:
        """Get the chat model, creating it if necessary."""
        if self._llm is None:
            self._llm = ChatOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                model=self.model_name,
                temperature=0.7,
                top_p=1,
                frequency_penalty=0,
                presence_penalty=0,
                n=1,
                max_tokens=200,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._llm

    async def label_issue(
        self,
        github: GitHubClient,
        repository: RepositoryInfo,
        issue: IssueInfo,
    ) -> LabelingResult:
        """Select a label for an issue and attach it.

        Args:
            github: Installation client for the repository.
            repository: Repository the issue belongs to.
            issue: The issue to label.

        Returns:
            LabelingResult with the raw answer and the applied label.

        Raises:
            UpstreamError: If labels cannot be listed, the completion
                fails, or the label cannot be attached.
            ResolutionError: If the answer matches none of the labels.
        """
        labels = await with_deadline(
            github.list_labels(repository.owner, repository.name),
            self.timeout,
            "Listing labels",
        )
        if labels is None:
            raise UpstreamError("Could not get labels")

        prompt = build_label_prompt(
            repository=repository.name,
            owner=repository.owner,
            label_names=[label.name for label in labels],
            title=issue.title,
            body=issue.body,
        )
        answer = await self._complete(prompt)

        logger.info(
            "Model answer received",
            extra={"repository": repository.full_name, "answer": answer[:200]},
        )

        label_ids = resolve_label_ids(parse_answer(answer), labels, self.matcher)
        if not label_ids:
            logger.warning(
                "No labels matched model answer",
                extra={"repository": repository.full_name, "answer": answer[:200]},
            )
            raise ResolutionError(f"Could not find labels: {answer}", answer=answer)

        try:
            await with_deadline(
                github.add_labels(issue.node_id, [label_ids[0]]),
                self.timeout,
                "Adding labels",
            )
        except TriageError as e:
            raise UpstreamError("Could not add labels", cause=e) from e

        logger.info(
            "Label applied",
            extra={
                "repository": repository.full_name,
                "issue_number": issue.number,
                "label_id": label_ids[0],
            },
        )
        return LabelingResult(
            answer=answer,
            matched_label_ids=label_ids,
            applied_label_id=label_ids[0],
        )

    async def _complete(self, prompt: str) -> str:
        """Run the completion and return its text.

        Raises:
            UpstreamError: If the call fails or returns non-text content.
        """
        try:
            response = await with_deadline(
                self.llm.ainvoke([HumanMessage(content=prompt)]),
                self.timeout,
                "OpenAI completion",
            )
        except TriageError:
            raise
        except Exception as e:
            logger.error(
                "OpenAI API error",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            raise UpstreamError(f"OpenAI API error: {e}", cause=e) from e

        if not isinstance(response.content, str):
            raise UpstreamError(
                f"OpenAI API error: unexpected response type {type(response.content)}"
            )
        return response.content
