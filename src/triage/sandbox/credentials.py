"""Git credential injection for sandbox commands.

The git tool authenticates by adding an HTTP extra header to the git
invocation instead of writing the token to disk. Only the first "git "
of a command receives the header: a command such as
``git log && echo 'git '`` must not print the credential.
"""

import base64

from src.triage.errors import TriageError

GIT_PREFIX = "git "
REDACTED = "[REDACTED]"


class CommandRejectedError(TriageError):
    """Raised when a command for the git tool does not start with "git "."""

    status_code = 400


def encode_credential(token: str) -> str:
    """Base64 of ``pat:<token>`` as used in the basic auth header."""
    return base64.b64encode(f"pat:{token}".encode("utf-8")).decode("ascii")


def inject_git_credentials(command: str, token: str) -> str:
    """Add the authorization header to the first git invocation.

    Args:
        command: Shell command that must begin with "git ".
        token: GitHub access token.

    Returns:
        The command with ``-c http.extraHeader=...`` after the first "git ".

    Raises:
        CommandRejectedError: If the command does not start with "git ".
    """
    if not command.startswith(GIT_PREFIX):
        raise CommandRejectedError('Commands must begin with "git ".')

    auth_flag = f'-c http.extraHeader="AUTHORIZATION: basic {encode_credential(token)}"'
    return command.replace(GIT_PREFIX, f"{GIT_PREFIX}{auth_flag} ", 1)


def redact_credentials(text: str, token: str) -> str:
    """Remove the token and its encoded form from command output."""
    if not token:
        return text
    return text.replace(encode_credential(token), REDACTED).replace(token, REDACTED)


def git_setup_command(email: str, username: str) -> str:
    """Global git identity setup run once per sandbox."""
    return (
        f'git config --global user.email "{email}" && '
        f'git config --global user.name "{username}"'
    )
