"""Throttled background refresh of the remote ruleset.

The hook never waits on the network. When the last fetch (or attempt) is
older than the update interval, it records the attempt and spawns
``python -m safe_bash --refresh`` detached. That worker downloads the
document, validates it strictly, and atomically renames it into place.
Readers therefore see either the old document or the new one.
"""

import contextlib
import http.client
import json
import logging
import os
import subprocess
import sys
import tempfile
import time
import urllib.parse
import urllib.request
from pathlib import Path

from safe_bash.ruleset import MAX_DOCUMENT_BYTES, RulesetError, decode_document, parse_ruleset

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = ("https", "http", "file")


def read_state(path):
    """Return the fetch state; missing or corrupt state reads as never fetched."""
    state = {"last_fetch_epoch": 0, "last_attempt_epoch": 0}
    try:
        with open(path) as f:
            raw = json.load(f)
    except (OSError, ValueError):
        return state
    if isinstance(raw, dict):
        for key in state:
            value = raw.get(key)
            if isinstance(value, int) and not isinstance(value, bool):
                state[key] = value
    return state


def atomic_write(path, data):
    """Write bytes to path via a temp file in the same directory and os.replace."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


def write_state(path, **updates):
    state = read_state(path)
    state.update(updates)
    atomic_write(path, json.dumps(state).encode())


def update_needed(state, now, interval):
    last = max(state["last_fetch_epoch"], state["last_attempt_epoch"])
    # A clock that went backwards must not freeze updates forever.
    return now - last >= interval or now < last


def fetch_document(url, timeout):
    """Download the ruleset document. Raises OSError/ValueError on failure."""
    scheme = urllib.parse.urlsplit(url).scheme
    if scheme not in _ALLOWED_SCHEMES:
        raise ValueError(f"unsupported URL scheme {scheme!r}")
    request = urllib.request.Request(url, headers={"User-Agent": "safe-bash-hook"})
    with urllib.request.urlopen(request, timeout=timeout) as response:  # noqa: S310
        data = response.read(MAX_DOCUMENT_BYTES + 1)
    if len(data) > MAX_DOCUMENT_BYTES:
        raise ValueError(f"document exceeds {MAX_DOCUMENT_BYTES} bytes")
    return data


def refresh(settings, now=None):
    """Fetch, validate and install the remote ruleset. Returns True on success.

    On any failure the existing document and last_fetch_epoch are untouched.
    """
    try:
        raw = fetch_document(settings.update_url, settings.fetch_timeout)
    except (OSError, ValueError, http.client.HTTPException) as e:  # URLError, timeouts
        logger.warning("Ruleset refresh from %s failed: %s", settings.update_url, e)
        return False
    try:
        ruleset = parse_ruleset(decode_document(raw), strict=True)
    except RulesetError as e:
        logger.warning("Rejected ruleset from %s: %s", settings.update_url, e)
        return False
    try:
        atomic_write(settings.patterns_path, raw)
        write_state(
            settings.state_path,
            last_fetch_epoch=int(time.time() if now is None else now),
        )
    except OSError as e:
        logger.warning("Could not install ruleset at %s: %s", settings.patterns_path, e)
        return False
    logger.info(
        "Installed ruleset v%d (%d deny, %d allow) from %s",
        ruleset.version,
        len(ruleset.deny),
        len(ruleset.allow),
        settings.update_url,
    )
    return True


def spawn_refresh(settings):
    """Start the refresh worker fully detached. Never waits on it."""
    env = os.environ.copy()
    env["SAFE_BASH_HOOKS_DIR"] = str(settings.hooks_dir)
    env["SAFE_BASH_UPDATE_URL"] = settings.update_url
    try:
        subprocess.Popen(  # noqa: S603
            [sys.executable, "-m", "safe_bash", "--refresh"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            env=env,
            close_fds=True,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning("Could not spawn ruleset refresh: %s", e)
        return False
    return True


def maybe_update(settings, now=None):
    """Spawn a refresh if the throttle allows one. Returns True if spawned."""
    now = int(time.time() if now is None else now)
    state = read_state(settings.state_path)
    if not update_needed(state, now, settings.update_interval):
        return False
    try:
        write_state(settings.state_path, last_attempt_epoch=now)
    except OSError as e:
        logger.warning("Could not record refresh attempt in %s: %s", settings.state_path, e)
        return False
    logger.debug("Ruleset older than %ds, spawning refresh", settings.update_interval)
    return spawn_refresh(settings)
