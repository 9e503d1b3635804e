"""Tool-calling engineer agent running inside a sandbox.

An engineer run provisions a sandbox, binds the tools, runs a
tool-calling loop seeded with the operating directive until the model
gives a final answer or the step budget runs out, and releases the
sandbox on every exit path.

Tool failures and malformed tool arguments are returned to the model as
tool messages so it can recover. Everything else ends the run with a
failed EngineerResult; the loop is never retried.

Source:
- src/triage/engineer/tools.py (build_tools, EngineerContext)
- src/triage/engineer/prompts.py (ENGINEER_SYSTEM_PROMPT)
- src/triage/sandbox/sandbox.py (SandboxProvider)
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool
from langchain_openai import ChatOpenAI

from src.triage.engineer.prompts import ENGINEER_SYSTEM_PROMPT
from src.triage.engineer.tools import EngineerContext, build_tools
from src.triage.engineer.web_search import SerpAPISearch
from src.triage.errors import TriageError
from src.triage.github.client import GitHubClient
from src.triage.knowledge.vector import CodeSearchClient
from src.triage.metrics import TriageMetrics
from src.triage.orchestrator import InstallationClientFactory
from src.triage.sandbox.sandbox import Sandbox, SandboxProvider


logger = logging.getLogger(__name__)


DEFAULT_MAX_STEPS = 15
DEFAULT_TEMPLATE = "base"


class TaskStatus(str, Enum):
    """Lifecycle of an engineer run."""

    PROVISIONED = "provisioned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TORN_DOWN = "torn_down"


@dataclass
class AgentTask:
    """State of one engineer run, owned by a single Engineer.run call.

    Attributes:
        instruction: Free-text task given to the agent.
        customer_id: Customer whose repository the run works on.
        repository: Repository name.
        tool_names: Names of the tools bound for the run.
        sandbox_id: Identifier of the provisioned sandbox.
        status: Current lifecycle status, None before provisioning.
    """

    instruction: str
    customer_id: str = ""
    repository: str = ""
    tool_names: List[str] = field(default_factory=list)
    sandbox_id: Optional[str] = None
    status: Optional[TaskStatus] = None


@dataclass
class EngineerResult:
    """Outcome of an engineer run.

    Attributes:
        success: True when the model produced a final answer.
        output: The final answer.
        error: Failure description when success is False.
        steps: Number of model calls made.
    """

    success: bool
    output: str = ""
    error: Optional[str] = None
    steps: int = 0


class StepBudgetExceededError(TriageError):
    """Raised when the model keeps calling tools past the step budget."""

    def __init__(self, steps: int):
        super().__init__(f"Step budget of {steps} exhausted without a final answer")
        self.steps = steps


class Engineer:
    """Runs free-form engineering tasks with a tool-calling LLM.

    Accepts all dependencies via constructor injection. Optional
    collaborators that are not configured leave their tool out.

    Attributes:
        sandbox_provider: Provisions a sandbox per run.
        model_name: Chat completion model.
        template: Sandbox template name.
        max_steps: Model calls allowed per run.

    Example:
        >>> engineer = Engineer(LocalSandboxProvider(Path("/tmp/sandboxes")), api_key="sk-...")
        >>> result = await engineer.run("Summarize the README", repository="api")
        >>> print(result.output)
    """

    def __init__(
        self,
        sandbox_provider: SandboxProvider,
        api_key: Optional[str] = None,
        model_name: str = "gpt-4-1106-preview",
        base_url: Optional[str] = None,
        template: str = DEFAULT_TEMPLATE,
        max_steps: int = DEFAULT_MAX_STEPS,
        timeout: float = 60.0,
        client_factory: Optional[InstallationClientFactory] = None,
        code_search: Optional[CodeSearchClient] = None,
        web_search: Optional[SerpAPISearch] = None,
        git_token: Optional[str] = None,
        git_email: str = "",
        git_username: str = "",
        llm: Optional[BaseChatModel] = None,
        metrics: Optional[TriageMetrics] = None,
    ):
        self.sandbox_provider = sandbox_provider
        self.api_key = api_key
        self.model_name = model_name
        self.base_url = base_url
        self.template = template
        self.max_steps = max_steps
        self.timeout = timeout
        self.client_factory = client_factory
        self.code_search = code_search
        self.web_search = web_search
        self.git_token = git_token
        self.git_email = git_email
        self.git_username = git_username
        self.metrics = metrics
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
                timeout=self.timeout,
            )
        return self._llm

    async def run(
        self,
        task: str,
        customer_id: str = "",
        repository: str = "",
        installation_id: Optional[int] = None,
    ) -> EngineerResult:
        """Run one task to completion.

        Args:
            task: Free-text instruction for the agent.
            customer_id: Customer whose repository code search is scoped to.
            repository: Repository name.
            installation_id: Installation for the comment and github tools.

        Returns:
            EngineerResult. Failures are reported here, never raised.
        """
        agent_task = AgentTask(
            instruction=task,
            customer_id=customer_id,
            repository=repository,
        )
        start_time = time.monotonic()
        sandbox: Optional[Sandbox] = None
        github: Optional[GitHubClient] = None

        logger.info(
            "Starting engineer run",
            extra={"customer_id": customer_id, "repository": repository},
        )

        try:
            sandbox = await self.sandbox_provider.create(self.template)
            agent_task.sandbox_id = sandbox.id
            agent_task.status = TaskStatus.PROVISIONED

            if installation_id is not None and self.client_factory is not None:
                github = await self.client_factory(installation_id)

            tools = build_tools(
                EngineerContext(
                    sandbox=sandbox,
                    customer_id=customer_id,
                    repository=repository,
                    github=github,
                    code_search=self.code_search,
                    web_search=self.web_search,
                    git_token=self.git_token,
                    git_email=self.git_email,
                    git_username=self.git_username,
                )
            )
            agent_task.tool_names = [tool.name for tool in tools]
            agent_task.status = TaskStatus.RUNNING

            output, steps = await self._run_loop(task, tools)
            agent_task.status = TaskStatus.COMPLETED
            result = EngineerResult(success=True, output=output, steps=steps)

        except StepBudgetExceededError as e:
            agent_task.status = TaskStatus.FAILED
            logger.warning(
                "Engineer run exhausted step budget",
                extra={"sandbox_id": agent_task.sandbox_id, "steps": e.steps},
            )
            result = EngineerResult(success=False, error=e.message, steps=e.steps)

        except Exception as e:
            agent_task.status = TaskStatus.FAILED
            logger.error(
                "Engineer run failed",
                extra={
                    "sandbox_id": agent_task.sandbox_id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            result = EngineerResult(success=False, error=f"{type(e).__name__}: {e}")

        finally:
            await self._release(agent_task, sandbox, github)

        duration = time.monotonic() - start_time
        if self.metrics is not None:
            self.metrics.record_engineer_run(result.success, duration)

        logger.info(
            "Engineer run finished",
            extra={
                "sandbox_id": agent_task.sandbox_id,
                "success": result.success,
                "steps": result.steps,
                "duration_seconds": round(duration, 1),
            },
        )
        return result

    async def _run_loop(self, task: str, tools: List[BaseTool]) -> Tuple[str, int]:
        """Alternate model calls and tool calls until a final answer.

        Returns:
            The final answer and the number of model calls made.

        Raises:
            StepBudgetExceededError: If max_steps calls end in tool calls.
        """
        messages: List[BaseMessage] = [
            SystemMessage(content=ENGINEER_SYSTEM_PROMPT),
            HumanMessage(content=task),
        ]
        llm_with_tools = self.llm.bind_tools(tools)
        tool_map = {tool.name: tool for tool in tools}

        for step in range(1, self.max_steps + 1):
            response = await llm_with_tools.ainvoke(messages)
            messages.append(response)

            tool_calls = getattr(response, "tool_calls", None) or []
            invalid_calls = getattr(response, "invalid_tool_calls", None) or []

            if not tool_calls and not invalid_calls:
                content = response.content
                return (content if isinstance(content, str) else str(content)), step

            for call in tool_calls:
                result = await self._call_tool(tool_map, call)
                messages.append(ToolMessage(content=result, tool_call_id=call["id"]))

            for call in invalid_calls:
                messages.append(
                    ToolMessage(
                        content=(
                            f"Could not parse arguments for {call.get('name')}: "
                            f"{call.get('error')}"
                        ),
                        tool_call_id=call.get("id") or "",
                    )
                )

        raise StepBudgetExceededError(self.max_steps)

    async def _call_tool(self, tool_map: Dict[str, BaseTool], call: Dict[str, Any]) -> str:
        """Invoke one tool call, turning failures into text for the model."""
        tool = tool_map.get(call["name"])
        if tool is None:
            return f"Unknown tool: {call['name']}"

        try:
            result = await tool.ainvoke(call["args"])
        except TriageError as e:
            result = f"Tool error: {e.message}"
        except Exception as e:
            result = f"Tool error: {e}"

        logger.info(
            "Tool call %s(%s) -> %d chars",
            call["name"],
            list(call["args"].keys()),
            len(str(result)),
        )
        return str(result)

    async def _release(
        self,
        agent_task: AgentTask,
        sandbox: Optional[Sandbox],
        github: Optional[GitHubClient],
    ) -> None:
        """Close the sandbox, then the installation client. Failures are logged."""
        if sandbox is not None:
            try:
                await sandbox.close()
            except Exception as e:
                logger.error(
                    "Failed to close sandbox",
                    extra={"sandbox_id": sandbox.id, "error": str(e)},
                )
            agent_task.status = TaskStatus.TORN_DOWN

        if github is not None:
            try:
                await github.close()
            except Exception as e:
                logger.error(
                    "Failed to close GitHub client",
                    extra={"sandbox_id": agent_task.sandbox_id, "error": str(e)},
                )
