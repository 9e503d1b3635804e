"""Isolated process environments for the engineer agent.

A sandbox is provisioned from a named template, runs shell commands and
reports their output as line-tagged messages, and is closed when the
agent run ends. The bundled LocalSandboxProvider runs each command as an
async subprocess inside a disposable working directory that also serves
as the command's HOME, so global git configuration stays inside it.
Commands see only an allow-listed slice of the host environment.
"""

import asyncio
import json
import logging
import os
import shutil
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from src.triage.errors import TriageError

logger = logging.getLogger(__name__)

SANDBOX_DIR_PERMISSIONS = 0o755

# Host variables copied into sandbox commands. Everything else, service
# credentials included, stays out of the agent's reach.
DEFAULT_ENV_PASSTHROUGH = ("PATH", "LANG", "LC_ALL", "TZ")


class SandboxError(TriageError):
    """Raised when a sandbox cannot be provisioned or used."""


@dataclass
class OutputMessage:
    """One line of process output.

    Attributes:
        line: The line text without its trailing newline.
        error: True when the line came from stderr.
    """

    line: str
    error: bool = False


@dataclass
class ProcessOutput:
    """Output of a finished sandbox process.

    Attributes:
        messages: Output lines in arrival order.
        exit_code: Process exit code (-1 for timeout/OS errors).
    """

    messages: List[OutputMessage] = field(default_factory=list)
    exit_code: int = 0

    @property
    def stdout(self) -> str:
        return "\n".join(m.line for m in self.messages if not m.error)

    @property
    def stderr(self) -> str:
        return "\n".join(m.line for m in self.messages if m.error)

    def to_json(self) -> str:
        """Serialize for relaying back to the agent as a tool result."""
        return json.dumps(
            {
                "messages": [
                    {"line": m.line, "error": m.error} for m in self.messages
                ],
                "exit_code": self.exit_code,
            }
        )


LineSink = Callable[[OutputMessage], None]


@runtime_checkable
class Sandbox(Protocol):
    """A provisioned isolated environment."""

    id: str

    async def start_process(self, cmd: str) -> ProcessOutput:
        """Run a shell command to completion."""
        ...

    async def close(self) -> None:
        """Release the sandbox. Safe to call more than once."""
        ...


@runtime_checkable
class SandboxProvider(Protocol):
    """Provisions sandboxes from templates."""

    async def create(self, template: str) -> Sandbox:
        """Provision a sandbox.

        Raises:
            SandboxError: If provisioning fails.
        """
        ...


class LocalSandbox:
    """Sandbox backed by a temporary directory on the local host.

    Attributes:
        id: Sandbox identifier.
        path: Working directory commands run in.
        command_timeout: Seconds before a running command is killed.
        env_passthrough: Host environment variables visible to commands.
    """

    def __init__(
        self,
        sandbox_id: str,
        path: Path,
        command_timeout: int = 300,
        on_line: Optional[LineSink] = None,
        env_passthrough: Sequence[str] = DEFAULT_ENV_PASSTHROUGH,
    ):
        self.id = sandbox_id
        self.path = path
        self.command_timeout = command_timeout
        self.env_passthrough = tuple(env_passthrough)
        self._on_line = on_line
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start_process(self, cmd: str) -> ProcessOutput:
        """Run a shell command in the sandbox directory.

        Output lines are logged at DEBUG and passed to the line sink as
        they arrive. A command exceeding the timeout is killed.

        Args:
            cmd: Shell command line.

        Returns:
            ProcessOutput with every output line and the exit code.

        Raises:
            SandboxError: If the sandbox is already closed.
        """
        if self._closed:
            raise SandboxError(f"Sandbox {self.id} is closed")

        start_time = time.monotonic()
        messages: List[OutputMessage] = []

        try:
            process = await asyncio.create_subprocess_shell(
                cmd,
                cwd=str(self.path),
                env=self._environment(),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Failed to start sandbox process: %s", exc)
            messages.append(OutputMessage(f"Failed to start process: {exc}", error=True))
            return ProcessOutput(messages=messages, exit_code=-1)

        async def stream(reader: Optional[asyncio.StreamReader], error: bool) -> None:
            async for line in self._read_stream(reader):
                message = OutputMessage(line, error=error)
                messages.append(message)
                self._emit_line(message)

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    stream(process.stdout, False),
                    stream(process.stderr, True),
                    process.wait(),
                ),
                timeout=self.command_timeout,
            )
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            logger.error(
                "Sandbox command timed out after %ds",
                self.command_timeout,
                extra={"sandbox_id": self.id},
            )
            messages.append(
                OutputMessage(
                    f"Process timed out after {self.command_timeout}s", error=True
                )
            )
            return ProcessOutput(messages=messages, exit_code=-1)

        exit_code = process.returncode if process.returncode is not None else -1
        logger.debug(
            "Sandbox command finished with exit code %d in %.1fs",
            exit_code,
            time.monotonic() - start_time,
            extra={"sandbox_id": self.id},
        )
        return ProcessOutput(messages=messages, exit_code=exit_code)

    async def close(self) -> None:
        """Remove the sandbox directory."""
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(shutil.rmtree, self.path, True)
        logger.info("Sandbox closed", extra={"sandbox_id": self.id})

    async def __aenter__(self) -> "LocalSandbox":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _environment(self) -> Dict[str, str]:
        env = {
            name: os.environ[name]
            for name in self.env_passthrough
            if name in os.environ
        }
        env.setdefault("PATH", os.defpath)
        env["HOME"] = str(self.path)
        return env

    async def _read_stream(self, stream: Optional[asyncio.StreamReader]):
        """Yield decoded lines from an async stream."""
        if stream is None:
            return

        while True:
            raw_line = await stream.readline()
            if not raw_line:
                break
            yield raw_line.decode("utf-8", errors="replace").rstrip("\n")

    def _emit_line(self, message: OutputMessage) -> None:
        logger.debug(
            "sandbox %s %s: %s",
            self.id,
            "stderr" if message.error else "stdout",
            message.line,
        )
        if self._on_line is not None:
            self._on_line(message)


class LocalSandboxProvider:
    """Creates LocalSandbox instances under a base directory.

    Attributes:
        base_path: Root directory where sandbox directories are created.
        command_timeout: Per-command timeout handed to each sandbox.
        env_passthrough: Host environment variables handed to each sandbox.
    """

    def __init__(
        self,
        base_path: Path,
        command_timeout: int = 300,
        on_line: Optional[LineSink] = None,
        env_passthrough: Sequence[str] = DEFAULT_ENV_PASSTHROUGH,
    ):
        self.base_path = Path(base_path)
        self.command_timeout = command_timeout
        self.env_passthrough = tuple(env_passthrough)
        self._on_line = on_line

    async def create(self, template: str) -> LocalSandbox:
        """Provision a sandbox directory for a template.

        Args:
            template: Template name, recorded in the directory name.

        Returns:
            A ready LocalSandbox.

        Raises:
            SandboxError: If the directory cannot be created.
        """
        sandbox_id = f"{template}-{uuid.uuid4().hex[:12]}"
        path = self.base_path / sandbox_id

        try:
            path.mkdir(parents=True, exist_ok=False)
            path.chmod(SANDBOX_DIR_PERMISSIONS)
        except OSError as e:
            raise SandboxError(f"Failed to create sandbox: {e}") from e

        logger.info(
            "Sandbox provisioned",
            extra={"sandbox_id": sandbox_id, "template": template},
        )
        return LocalSandbox(
            sandbox_id,
            path,
            command_timeout=self.command_timeout,
            on_line=self._on_line,
            env_passthrough=self.env_passthrough,
        )
