"""Tool registry contract, local registry and built-in tools."""

from .builtins import builtin_registry, builtin_tools, safe_resolve
from .registry import LocalToolRegistry, Tool, ToolRegistry

__all__ = [
    "LocalToolRegistry",
    "Tool",
    "ToolRegistry",
    "builtin_registry",
    "builtin_tools",
    "safe_resolve",
]
