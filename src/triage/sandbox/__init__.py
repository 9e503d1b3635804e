"""Sandboxes for the engineer agent and git credential handling."""

from src.triage.sandbox.credentials import (
    CommandRejectedError,
    encode_credential,
    git_setup_command,
    inject_git_credentials,
    redact_credentials,
)
from src.triage.sandbox.sandbox import (
    LocalSandbox,
    LocalSandboxProvider,
    OutputMessage,
    ProcessOutput,
    Sandbox,
    SandboxError,
    SandboxProvider,
)

__all__ = [
    "CommandRejectedError",
    "LocalSandbox",
    "LocalSandboxProvider",
    "OutputMessage",
    "ProcessOutput",
    "Sandbox",
    "SandboxError",
    "SandboxProvider",
    "encode_credential",
    "git_setup_command",
    "inject_git_credentials",
    "redact_credentials",
]
