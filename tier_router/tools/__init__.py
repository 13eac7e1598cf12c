"""
Tool operations for Tier Router.

Exposes switch_tier, set_auto_mode, orchestrate, get_status and
set_budget to a calling tool layer.
"""

from .operations import RouterTools, ToolResult

__all__ = ["RouterTools", "ToolResult"]
