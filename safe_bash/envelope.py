"""Parse the PreToolUse envelope Claude Code writes to the hook's stdin."""

import json
from typing import NamedTuple


class Envelope(NamedTuple):
    capability: str | None
    parameters: dict


def parse_envelope(raw):
    """Parse raw stdin bytes. Returns None if it isn't a usable envelope."""
    try:
        data = json.loads(raw)
    except ValueError:  # JSONDecodeError and UnicodeDecodeError
        return None
    if not isinstance(data, dict):
        return None
    tool_input = data.get("tool_input", {})
    if not isinstance(tool_input, dict):
        return None
    tool_name = data.get("tool_name")
    return Envelope(tool_name if isinstance(tool_name, str) else None, tool_input)


def extract_command(envelope):
    if envelope is None or envelope.capability != "Bash":
        return None
    command = envelope.parameters.get("command")
    return command if isinstance(command, str) else None


def read_command(raw):
    """Return the shell command to inspect, or None if there is nothing to inspect."""
    return extract_command(parse_envelope(raw))
