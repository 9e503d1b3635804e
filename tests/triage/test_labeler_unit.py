"""Unit tests for label selection: prompts, matching and the selector."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, settings, strategies as st
from langchain_core.messages import AIMessage

from src.triage.errors import ResolutionError, UpstreamError, UpstreamTimeoutError
from src.triage.github.client import GitHubAPIError
from src.triage.github.models import Label
from src.triage.labeler.agent import LabelSelector
from src.triage.labeler.matching import (
    ExactLabelMatcher,
    SubstringLabelMatcher,
    parse_answer,
    resolve_label_ids,
)
from src.triage.labeler.prompts import MAX_BODY_LENGTH, build_label_prompt, truncate_body
from src.triage.webhook.models import IssueInfo, RepositoryInfo


def run_async(coro):
    return asyncio.run(coro)


LABELS = [Label(id="1", name="bug"), Label(id="2", name="frontend")]
REPOSITORY = RepositoryInfo(node_id="R_widgets", name="widgets", owner="acme")
ISSUE = IssueInfo(node_id="I_7", number=7, title="Button broken", body="Click does nothing")


def _fake_llm(answer: str = "Bug, Frontend"):
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=AIMessage(content=answer))
    return llm


def _github(labels=LABELS):
    github = AsyncMock()
    github.list_labels.return_value = labels
    return github


class TestTruncation:
    def test_long_body_is_cut_with_ellipsis(self):
        body = "x" * 5000

        truncated = truncate_body(body)

        assert len(truncated) == 2003
        assert truncated.endswith("...")

    def test_body_at_limit_is_unchanged(self):
        body = "y" * MAX_BODY_LENGTH

        assert truncate_body(body) == body

    def test_none_body_becomes_empty(self):
        assert truncate_body(None) == ""

    @settings(max_examples=100)
    @given(body=st.text(max_size=4000))
    def test_truncated_length_is_bounded(self, body):
        truncated = truncate_body(body)

        assert len(truncated) <= MAX_BODY_LENGTH + 3
        assert body.startswith(truncated.removesuffix("...")) or truncated == body


class TestPrompt:
    def test_prompt_names_repository_labels_and_issue(self):
        prompt = build_label_prompt("widgets", "acme", ["bug", "frontend"], "Title", "Body")

        assert "The repository is called widgets by acme." in prompt
        assert "The possible labels are: bug, frontend." in prompt
        assert 'Here is the title of the issue: "Title"' in prompt
        assert 'Here is the body of the issue: "Body"' in prompt
        assert '"type, category"' in prompt

    def test_prompt_is_deterministic(self):
        args = ("widgets", "acme", ["bug"], "Title", "x" * 3000)

        assert build_label_prompt(*args) == build_label_prompt(*args)

    def test_prompt_embeds_truncated_body(self):
        prompt = build_label_prompt("widgets", "acme", ["bug"], "T", "z" * 5000)

        assert "z" * 2000 + "..." in prompt
        assert "z" * 2001 not in prompt


class TestMatching:
    def test_parse_answer_trims_and_lowercases(self):
        assert parse_answer(" Bug ,  Frontend ") == ["bug", "frontend"]

    def test_parse_answer_drops_empty_tokens(self):
        assert parse_answer("bug,, ,") == ["bug"]
        assert parse_answer("") == []

    def test_ids_follow_token_order(self):
        assert resolve_label_ids(["frontend", "bug"], LABELS) == ["2", "1"]

    def test_unmatched_tokens_are_skipped(self):
        assert resolve_label_ids(["question", "bug"], LABELS) == ["1"]

    def test_substring_matches_first_containing_label(self):
        labels = [Label(id="a", name="Type: Bug"), Label(id="b", name="bug-report")]

        assert SubstringLabelMatcher().match("bug", labels).id == "a"

    def test_exact_matcher_requires_full_name(self):
        labels = [Label(id="a", name="Type: Bug"), Label(id="b", name="Bug")]

        assert ExactLabelMatcher().match("bug", labels).id == "b"
        assert ExactLabelMatcher().match("typ", labels) is None

    def test_custom_matcher_is_used(self):
        assert resolve_label_ids(["bu"], LABELS, ExactLabelMatcher()) == []


class TestLabelSelector:
    def test_attaches_only_first_match(self):
        llm = _fake_llm("Bug, Frontend")
        github = _github()
        selector = LabelSelector(llm=llm)

        result = run_async(selector.label_issue(github, REPOSITORY, ISSUE))

        github.list_labels.assert_awaited_once_with("acme", "widgets")
        github.add_labels.assert_awaited_once_with("I_7", ["1"])
        assert result.matched_label_ids == ["1", "2"]
        assert result.applied_label_id == "1"
        assert result.answer == "Bug, Frontend"

    def test_prompt_is_sent_as_single_user_message(self):
        llm = _fake_llm()
        selector = LabelSelector(llm=llm)

        run_async(selector.label_issue(_github(), REPOSITORY, ISSUE))

        messages = llm.ainvoke.await_args.args[0]
        assert len(messages) == 1
        assert messages[0].content == build_label_prompt(
            "widgets", "acme", ["bug", "frontend"], ISSUE.title, ISSUE.body
        )

    def test_no_match_raises_resolution_error(self):
        github = _github()
        selector = LabelSelector(llm=_fake_llm("question, docs"))

        with pytest.raises(ResolutionError) as exc_info:
            run_async(selector.label_issue(github, REPOSITORY, ISSUE))

        assert exc_info.value.answer == "question, docs"
        assert exc_info.value.status_code == 500
        github.add_labels.assert_not_called()

    def test_missing_labels_raises(self):
        selector = LabelSelector(llm=_fake_llm())

        with pytest.raises(UpstreamError) as exc_info:
            run_async(selector.label_issue(_github(labels=None), REPOSITORY, ISSUE))

        assert exc_info.value.message == "Could not get labels"

    def test_completion_failure_raises_upstream_error(self):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=RuntimeError("401 Unauthorized"))
        selector = LabelSelector(llm=llm)

        with pytest.raises(UpstreamError) as exc_info:
            run_async(selector.label_issue(_github(), REPOSITORY, ISSUE))

        assert exc_info.value.message.startswith("OpenAI API error")

    def test_completion_timeout_raises_timeout_error(self):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        llm = MagicMock()
        llm.ainvoke = slow
        selector = LabelSelector(llm=llm, timeout=0.01)

        with pytest.raises(UpstreamTimeoutError):
            run_async(selector.label_issue(_github(), REPOSITORY, ISSUE))

    def test_attach_failure_raises_upstream_error(self):
        github = _github()
        github.add_labels.side_effect = GitHubAPIError("Could not add labels")
        selector = LabelSelector(llm=_fake_llm())

        with pytest.raises(UpstreamError) as exc_info:
            run_async(selector.label_issue(github, REPOSITORY, ISSUE))

        assert exc_info.value.message == "Could not add labels"

    def test_default_model_settings(self):
        selector = LabelSelector(api_key="sk-test")

        llm = selector.llm

        assert llm.model_name == "gpt-3.5-turbo"
        assert llm.temperature == 0.7
        assert llm.top_p == 1
        assert llm.max_tokens == 200
        assert llm.n == 1
