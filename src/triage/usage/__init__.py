"""Per-customer usage gating."""

from src.triage.usage.gate import UsageGate, format_warning_body

__all__ = ["UsageGate", "format_warning_body"]
