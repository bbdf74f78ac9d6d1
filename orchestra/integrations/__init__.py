"""Integrations - external services agent output is delivered to."""

from orchestra.integrations.source_control import SourceControl, branch_name_for

__all__ = ["SourceControl", "branch_name_for"]
