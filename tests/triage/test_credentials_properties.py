"""Property and unit tests for git credential injection and redaction."""

import base64

import pytest
from hypothesis import assume, given, settings, strategies as st

from src.triage.sandbox.credentials import (
    REDACTED,
    CommandRejectedError,
    encode_credential,
    git_setup_command,
    inject_git_credentials,
    redact_credentials,
)


TOKEN = "ghp_abc123"

tokens = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_",
    min_size=8,
    max_size=40,
)
command_tails = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",)),
    max_size=80,
)


def test_encoded_credential_is_basic_pat():
    assert base64.b64decode(encode_credential(TOKEN)).decode() == f"pat:{TOKEN}"


def test_header_follows_leading_git():
    command = inject_git_credentials("git clone https://github.com/acme/widgets", TOKEN)

    assert command == (
        f'git -c http.extraHeader="AUTHORIZATION: basic {encode_credential(TOKEN)}" '
        "clone https://github.com/acme/widgets"
    )


def test_only_first_git_is_rewritten():
    command = inject_git_credentials("git log && echo 'git '", TOKEN)

    assert command.count("extraHeader") == 1
    assert command.endswith("log && echo 'git '")


@pytest.mark.parametrize("command", ["ls -la", " git status", "gitk", "echo git status"])
def test_non_git_commands_are_rejected(command):
    with pytest.raises(CommandRejectedError) as exc_info:
        inject_git_credentials(command, TOKEN)

    assert exc_info.value.status_code == 400


def test_redaction_removes_raw_and_encoded_token():
    text = f"token={TOKEN} header={encode_credential(TOKEN)}"

    redacted = redact_credentials(text, TOKEN)

    assert TOKEN not in redacted
    assert encode_credential(TOKEN) not in redacted
    assert redacted.count(REDACTED) == 2


def test_redaction_without_token_is_identity():
    assert redact_credentials("nothing to hide", "") == "nothing to hide"


def test_setup_command_sets_identity():
    command = git_setup_command("bot@example.com", "triage-bot")

    assert 'user.email "bot@example.com"' in command
    assert 'user.name "triage-bot"' in command


@settings(max_examples=100)
@given(token=tokens, tail=command_tails)
def test_injection_preserves_command_after_first_git(token, tail):
    command = "git " + tail

    injected = inject_git_credentials(command, token)
    header = f'-c http.extraHeader="AUTHORIZATION: basic {encode_credential(token)}" '

    assert injected == "git " + header + tail


@settings(max_examples=100)
@given(token=tokens, before=command_tails, after=command_tails)
def test_redacted_output_never_contains_token(token, before, after):
    assume(token not in REDACTED)
    text = before + token + after + encode_credential(token)

    assert token not in redact_credentials(text, token)
