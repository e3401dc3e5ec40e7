"""PreToolUse entry point.

Reads the tool-call envelope from stdin and exits 0 (allow) or 2 (block,
reason on stderr). Every failure that isn't a rule match fails open.

Usage:
    safe-bash-hook              # hook mode, envelope on stdin
    safe-bash-hook --validate   # check the on-disk remote ruleset
    safe-bash-hook --refresh    # fetch the remote ruleset now (what the hook spawns)
"""

import logging
import sys

from safe_bash.autoupdate import maybe_update, refresh
from safe_bash.config import load_settings
from safe_bash.engine import ALLOW, classify
from safe_bash.envelope import read_command
from safe_bash.log import setup_logging
from safe_bash.ruleset import RulesetError, decode_document, load_ruleset, validate_document

logger = logging.getLogger(__name__)

_MAX_INPUT = 10 * 1024 * 1024  # 10MB


def emit(decision, stream=None):
    """Report a decision. Returns the hook exit status."""
    if not decision.blocked:
        return 0
    stream = sys.stderr if stream is None else stream
    print(f"Blocked: {decision.reason}", file=stream)
    stream.flush()
    logger.info("BLOCKED: %s | Rule: %s", decision.segment, decision.reason)
    return 2


def decide(raw, settings):
    """Classify the command in raw stdin bytes. Any internal error allows."""
    if len(raw) > _MAX_INPUT:
        logger.warning("Input exceeds %d bytes, nothing inspected", _MAX_INPUT)
        return ALLOW
    try:
        command = read_command(raw)
        if command is None:
            return ALLOW
        return classify(command, load_ruleset(settings.patterns_path))
    except Exception:
        logger.exception("Classification failed, allowing")
        return ALLOW


def run_hook(stdin, stderr, settings):
    try:
        raw = stdin.read(_MAX_INPUT + 1)
    except (OSError, ValueError):
        logger.exception("Could not read hook input, allowing")
        raw = b""
    status = emit(decide(raw, settings), stderr)
    if settings.autoupdate:
        try:
            maybe_update(settings)
        except Exception:
            logger.exception("Ruleset update check failed")
    return status


def validate_config(settings):
    """Validate the on-disk remote ruleset.

    Output channels follow hook conventions:
      - Success (exit 0): stdout (shown in transcript)
      - Failure (exit 2): stderr (fed back to Claude)
    """
    path = settings.patterns_path
    if not path.exists():
        print(f"Remote ruleset — not installed at {path}, built-in rules only")
        return 0
    try:
        data = decode_document(path.read_bytes())
        issues = validate_document(data)
    except OSError as e:
        issues = [f"cannot read {path}: {e}"]
    except RulesetError as e:
        issues = [str(e)]

    if issues:
        print(f"Remote ruleset — validation failed: {path}", file=sys.stderr)
        for issue in issues:
            print(f"  ✗ {issue}", file=sys.stderr)
        return 2
    deny = len(data.get("deny", []))
    allow = len(data.get("allow", []))
    print(f"Remote ruleset — {deny} deny / {allow} allow rule(s) from {path}")
    return 0


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    settings = load_settings()
    setup_logging(settings)

    if "--validate" in argv:
        return validate_config(settings)
    if "--refresh" in argv:
        return 0 if refresh(settings) else 1
    return run_hook(sys.stdin.buffer, sys.stderr, settings)
