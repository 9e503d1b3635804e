"""GitHub issue triage and engineer agent service.

This package provides:
- GitHub webhook signature verification and event parsing
- Installation and repository synchronization for customers
- Usage gating with one-time billing warnings
- LLM-based label selection for new issues and `/label` comments
- A sandboxed, tool-calling engineer agent with git credential injection
"""
