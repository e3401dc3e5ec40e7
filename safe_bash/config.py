"""Settings read from the environment, once per invocation."""

import os
import tempfile
from pathlib import Path
from typing import NamedTuple

UPDATE_URL = (
    "https://raw.githubusercontent.com/apollo-com-ph/apollo-claude/main/safe-bash-patterns.json"
)
UPDATE_INTERVAL = 3600  # 1 hour
FETCH_TIMEOUT = 5.0
PATTERNS_FILENAME = "safe-bash-patterns.json"
STATE_FILENAME = "safe-bash-patterns.state.json"
LOG_LEVELS = ("debug", "info", "warning", "off")

_FALSY = {"0", "false", "no", "off"}


class Settings(NamedTuple):
    hooks_dir: Path
    update_url: str
    update_interval: int
    fetch_timeout: float
    autoupdate: bool
    log_level: str
    log_file: Path

    @property
    def patterns_path(self):
        return self.hooks_dir / PATTERNS_FILENAME

    @property
    def state_path(self):
        return self.hooks_dir / STATE_FILENAME


def _validate_user_path(p, default):
    """Ensure path is within user's home or temp directory. Falls back to default."""
    try:
        resolved = Path(p).expanduser().resolve()
        home = Path.home().resolve()
        tmp = Path(tempfile.gettempdir()).resolve()
        if resolved.is_relative_to(home) or resolved.is_relative_to(tmp):
            return resolved
    except (OSError, ValueError):
        pass
    return default


def _number(value, default, cast):
    try:
        number = cast(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def load_settings(environ=None):
    env = os.environ if environ is None else environ
    home = Path.home()
    default_hooks = home / ".claude" / "hooks"
    default_log = home / ".claude" / "logs" / "safe-bash.log"

    hooks_dir = default_hooks
    if env.get("SAFE_BASH_HOOKS_DIR"):
        hooks_dir = _validate_user_path(env["SAFE_BASH_HOOKS_DIR"], default_hooks)
    log_file = default_log
    if env.get("SAFE_BASH_LOG_FILE"):
        log_file = _validate_user_path(env["SAFE_BASH_LOG_FILE"], default_log)

    log_level = env.get("SAFE_BASH_LOG_LEVEL", "info").lower()
    if log_level not in LOG_LEVELS:
        log_level = "info"

    return Settings(
        hooks_dir=hooks_dir,
        update_url=env.get("SAFE_BASH_UPDATE_URL") or UPDATE_URL,
        update_interval=_number(env.get("SAFE_BASH_UPDATE_INTERVAL"), UPDATE_INTERVAL, int),
        fetch_timeout=_number(env.get("SAFE_BASH_FETCH_TIMEOUT"), FETCH_TIMEOUT, float),
        autoupdate=env.get("SAFE_BASH_AUTOUPDATE", "1").strip().lower() not in _FALSY,
        log_level=log_level,
        log_file=log_file,
    )
