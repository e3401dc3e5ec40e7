"""Pre-execution gate that blocks dangerous shell commands from Claude Code."""

__version__ = "0.1.0"
