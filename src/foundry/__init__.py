"""
Foundry - validated self-extension for autonomous agents.

Lets an agent generate capability artifacts (extensions, tools, hooks,
skills), gate them through static and sandboxed validation, persist the
accepted ones, and learn from runtime failures over time.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
