"""Tools bound to the engineer agent.

Each tool is a LangChain StructuredTool with a Pydantic argument schema
and an async implementation returning text for the model:

- web_search: search the internet (SerpAPI)
- comment: comment on an issue or pull request
- github: call the GitHub REST API
- search_code: vector search over the customer's repository
- shell: run a shell command in the sandbox
- git: run a git command in the sandbox with credentials injected
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from src.triage.engineer.web_search import SerpAPISearch
from src.triage.github.client import GitHubClient
from src.triage.knowledge.vector import DEFAULT_NUM_RESULTS, CodeSearchClient
from src.triage.sandbox.credentials import (
    git_setup_command,
    inject_git_credentials,
    redact_credentials,
)
from src.triage.sandbox.sandbox import ProcessOutput, Sandbox

logger = logging.getLogger(__name__)

NO_CODE_RESULTS = "No results found"


class WebSearchArgs(BaseModel):
    query: str = Field(..., description="The search query")


class CommentArgs(BaseModel):
    owner: str = Field(..., description="Repository owner login")
    repo: str = Field(..., description="Repository name")
    issue_number: int = Field(..., gt=0, description="Issue or pull request number")
    body: str = Field(..., description="Comment body in markdown")


class GitHubRequestArgs(BaseModel):
    method: str = Field(..., description="HTTP method, e.g. GET or POST")
    path: str = Field(..., description="API path, e.g. /repos/{owner}/{repo}/pulls")
    body: Optional[Dict[str, Any]] = Field(None, description="JSON request body")


class SearchCodeArgs(BaseModel):
    query: str = Field(..., description="The query to search")


class CommandArgs(BaseModel):
    command: str = Field(..., description="The command to execute")


@dataclass
class EngineerContext:
    """Collaborators and identity the tools of one run operate with.

    Attributes:
        sandbox: Sandbox owned by the run.
        customer_id: Customer whose repository the run works on.
        repository: Repository name, scoping code search.
        github: Installation client for comment and github tools.
        code_search: Vector search client for search_code.
        web_search: SerpAPI client for web_search.
        git_token: Token injected into git commands.
        git_email: Commit author email.
        git_username: Commit author name.
    """

    sandbox: Sandbox
    customer_id: str
    repository: str
    github: Optional[GitHubClient] = None
    code_search: Optional[CodeSearchClient] = None
    web_search: Optional[SerpAPISearch] = None
    git_token: Optional[str] = None
    git_email: str = ""
    git_username: str = ""


class GitCommandRunner:
    """Runs git commands with credentials, configuring identity first.

    The identity setup runs once per sandbox, before the first command.
    """

    def __init__(self, sandbox: Sandbox, token: str, email: str, username: str):
        self.sandbox = sandbox
        self._token = token
        self.email = email
        self.username = username
        self._configured = False

    async def run(self, command: str) -> str:
        """Run a git command and return its redacted JSON output.

        Raises:
            CommandRejectedError: If the command does not start with "git ".
        """
        authed = inject_git_credentials(command, self._token)

        if not self._configured:
            setup = await self.sandbox.start_process(
                git_setup_command(self.email, self.username)
            )
            if setup.exit_code != 0:
                logger.warning(
                    "Git setup failed",
                    extra={"sandbox_id": self.sandbox.id, "exit_code": setup.exit_code},
                )
            self._configured = True

        output = await self.sandbox.start_process(authed)
        return redact_credentials(output.to_json(), self._token)


def format_code_results(chunks) -> str:
    """Render code search hits as JSON objects separated by blank lines."""
    if not chunks:
        return NO_CODE_RESULTS
    return "\n\n".join(
        json.dumps({"source": chunk.source, "text": chunk.text}) for chunk in chunks
    )


def build_tools(context: EngineerContext) -> List[BaseTool]:
    """Create the tools for one engineer run.

    Tools whose collaborator is not configured are left out, so the model
    is never offered a tool that cannot work.

    Args:
        context: The run's sandbox, clients and git identity.

    Returns:
        Tools in binding order.
    """
    tools: List[BaseTool] = []

    if context.web_search is not None:
        web_search = context.web_search

        async def search_web(query: str) -> str:
            return await web_search.search(query)

        tools.append(
            StructuredTool.from_function(
                coroutine=search_web,
                name="web_search",
                description=(
                    "A search engine. Useful for answering questions about "
                    "current events or documentation. Input is a search query."
                ),
                args_schema=WebSearchArgs,
            )
        )

    if context.github is not None:
        github = context.github

        async def comment(owner: str, repo: str, issue_number: int, body: str) -> str:
            result = await github.create_comment(owner, repo, issue_number, body)
            return f"Comment created: {result.get('html_url', result.get('id'))}"

        async def github_request(
            method: str, path: str, body: Optional[Dict[str, Any]] = None
        ) -> str:
            result = await github.rest(method, path, body)
            return json.dumps(result) if result is not None else "No content"

        tools.append(
            StructuredTool.from_function(
                coroutine=comment,
                name="comment",
                description="Comments on a GitHub issue or pull request.",
                args_schema=CommentArgs,
            )
        )
        tools.append(
            StructuredTool.from_function(
                coroutine=github_request,
                name="github",
                description=(
                    "Calls the GitHub REST API. Use it to read repositories, "
                    "issues and pull requests or to open pull requests."
                ),
                args_schema=GitHubRequestArgs,
            )
        )

    if context.code_search is not None:
        code_search = context.code_search

        async def search_code(query: str) -> str:
            chunks = await code_search.search_code(
                query,
                context.customer_id,
                context.repository,
                num_results=DEFAULT_NUM_RESULTS,
            )
            return format_code_results(chunks)

        tools.append(
            StructuredTool.from_function(
                coroutine=search_code,
                name="search_code",
                description=(
                    "Search the codebase by query. Uses vector similarity; "
                    "format queries to make use of this."
                ),
                args_schema=SearchCodeArgs,
            )
        )

    sandbox = context.sandbox

    async def shell(command: str) -> str:
        output: ProcessOutput = await sandbox.start_process(command)
        text = output.to_json()
        if context.git_token:
            text = redact_credentials(text, context.git_token)
        return text

    tools.append(
        StructuredTool.from_function(
            coroutine=shell,
            name="shell",
            description="Executes a shell command.",
            args_schema=CommandArgs,
        )
    )

    if context.git_token:
        git_runner = GitCommandRunner(
            sandbox, context.git_token, context.git_email, context.git_username
        )
        tools.append(
            StructuredTool.from_function(
                coroutine=git_runner.run,
                name="git",
                description=(
                    "Executes a shell command with git logged in. "
                    'Commands must begin with "git ".'
                ),
                args_schema=CommandArgs,
            )
        )

    return tools
