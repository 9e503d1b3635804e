"""Sandboxed, tool-calling engineer agent."""

from src.triage.engineer.agent import (
    AgentTask,
    Engineer,
    EngineerResult,
    StepBudgetExceededError,
    TaskStatus,
)
from src.triage.engineer.tools import EngineerContext, GitCommandRunner, build_tools
from src.triage.engineer.web_search import SerpAPISearch, WebSearchError

__all__ = [
    "AgentTask",
    "Engineer",
    "EngineerContext",
    "EngineerResult",
    "GitCommandRunner",
    "SerpAPISearch",
    "StepBudgetExceededError",
    "TaskStatus",
    "WebSearchError",
    "build_tools",
]
