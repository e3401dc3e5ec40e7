"""Remote ruleset document: loading and schema validation.

Document shape::

    {
        "version": 1,
        "deny":  [{"pattern": "<regex>", "reason": "<text>"}, ...],
        "allow": [{"pattern": "<regex>", "reason": "<text>"}, ...]
    }

Loading never raises: a missing or broken document degrades to an empty
ruleset so the built-in rules keep working on their own.
"""

import json
import logging
import re
from pathlib import Path
from typing import NamedTuple

from safe_bash.patterns import Rule, compile_pattern

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
MAX_DOCUMENT_BYTES = 1024 * 1024  # 1 MiB


class RulesetError(ValueError):
    """A ruleset document that cannot be used."""


class RemoteRuleset(NamedTuple):
    version: int
    deny: tuple
    allow: tuple


EMPTY_RULESET = RemoteRuleset(0, (), ())


def decode_document(raw):
    """Decode raw JSON (bytes or str) into the top-level document dict."""
    if len(raw) > MAX_DOCUMENT_BYTES:
        raise RulesetError(f"document too large ({len(raw)} bytes)")
    try:
        data = json.loads(raw)
    except ValueError as e:  # JSONDecodeError and UnicodeDecodeError
        raise RulesetError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise RulesetError(f"expected JSON object, got {type(data).__name__}")
    return data


def _check_header(data):
    """Return an issue for the document-level fields, or None."""
    version = data.get("version")
    if isinstance(version, bool) or not isinstance(version, int):
        return f"'version' must be an integer, got {type(version).__name__}"
    if not 1 <= version <= SCHEMA_VERSION:
        return f"unsupported version {version} (supported: 1..{SCHEMA_VERSION})"
    for key in ("deny", "allow"):
        if not isinstance(data.get(key, []), list):
            return f"'{key}' must be an array, got {type(data[key]).__name__}"
    return None


def _check_entry(entry, where):
    """Return an issue for a single rule entry, or None if it is usable."""
    if not isinstance(entry, dict):
        return f"{where}: expected object, got {type(entry).__name__}"
    for field in ("pattern", "reason"):
        if field not in entry:
            return f"{where}: missing required field '{field}'"
        if not isinstance(entry[field], str):
            return f"{where}: '{field}' must be a string, got {type(entry[field]).__name__}"
    try:
        compile_pattern(entry["pattern"])
    except re.error as e:
        return f"{where}: invalid regex {entry['pattern']!r}: {e}"
    return None


def parse_ruleset(data, *, strict=False):
    """Build a RemoteRuleset from a decoded document.

    Document-level problems always raise RulesetError. A bad entry raises in
    strict mode and is skipped (with a warning) otherwise.
    """
    issue = _check_header(data)
    if issue:
        raise RulesetError(issue)
    tiers = {}
    for key in ("deny", "allow"):
        rules = []
        for i, entry in enumerate(data.get(key, [])):
            issue = _check_entry(entry, f"{key}[{i}]")
            if issue:
                if strict:
                    raise RulesetError(issue)
                logger.warning("Skipping remote rule %s", issue)
                continue
            rules.append(Rule(entry["pattern"], entry["reason"]))
        tiers[key] = tuple(rules)
    return RemoteRuleset(data["version"], tiers["deny"], tiers["allow"])


def load_ruleset(path):
    """Load the on-disk ruleset. Returns EMPTY_RULESET on any problem."""
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return EMPTY_RULESET
    except OSError as e:
        logger.warning("Could not read %s: %s -- using built-in rules only", path, e)
        return EMPTY_RULESET
    try:
        return parse_ruleset(decode_document(raw))
    except RulesetError as e:
        logger.warning("Ignoring %s: %s -- using built-in rules only", path, e)
        return EMPTY_RULESET


def validate_document(data):
    """Collect every issue in a decoded document. Empty list means valid."""
    issue = _check_header(data)
    if issue:
        return [issue]
    issues = []
    for key in ("deny", "allow"):
        for i, entry in enumerate(data.get(key, [])):
            where = f"{key}[{i}]"
            issue = _check_entry(entry, where)
            if issue:
                issues.append(issue)
            elif not entry["pattern"]:
                issues.append(f"{where}: 'pattern' is empty (will match ALL commands)")
    return issues
