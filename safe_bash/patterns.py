"""Built-in deny rules and the sensitive-path test.

These rules are always active. They are checked before the remote ruleset and
no remote allow rule can override them.
"""

import functools
import re
from typing import NamedTuple


@functools.lru_cache(maxsize=None)
def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a rule pattern once per process. Raises re.error on bad regex."""
    return re.compile(pattern)


class Rule(NamedTuple):
    pattern: str
    reason: str

    def search(self, text: str) -> bool:
        return compile_pattern(self.pattern).search(text) is not None


# Destinations that make a redirect worth a segment of its own.
_SENSITIVE_PATH = re.compile(
    r"""
    ^/(?:etc|boot|sys|proc|bin|sbin|lib|lib64)(?:/|$)
  | ^/usr/(?:bin|sbin|lib|local/bin)(?:/|$)
  | ^/dev/(?:sd|hd|vd|xvd|nvme|disk|mmcblk)
  | (?:^|/)\.(?:ssh|aws|gnupg|kube|docker|azure)(?:/|$)
  | (?:^|/)\.(?:bashrc|bash_profile|bash_login|profile|zshrc|zprofile|zshenv)$
  | (?:^|/)\.(?:netrc|git-credentials|npmrc|pypirc)$
  | (?:^|/)\.env(?:\.[\w.-]+)?$
    """,
    re.VERBOSE,
)


def is_sensitive_path(path: str) -> bool:
    return bool(path) and _SENSITIVE_PATH.search(path) is not None


_SHELLS = r"(?:bash|sh|zsh|ksh|dash)"
_READERS = r"(?:cat|head|tail|less|more|bat)"
# Start of a command word: string start, or right after whitespace, a
# control operator or the opening of a substitution or subshell.
_CMD = r"(?<![^\s;|&(`])"


def _gap(stop: str, chars: str = r"[^|;&\n]") -> str:
    """Text between a command word and the argument a rule looks for.

    The gap never runs into a later occurrence of ``stop`` (the rule's own
    command word), so each character is scanned at most once per rule and
    matching stays linear however often the word repeats.
    """
    return rf"(?:(?!{stop}){chars})*"


# rm, /bin/rm, \rm, "rm" and 'rm'
_RM = r"""(?:\S*/)?[\\"']*rm["']*\s"""
_RM_ARGS = rf"\s*(?:(?!{_RM})[^\s;|&]+\s+)*?"
_FIND = r"\bfind\b"
_GIT_PUSH = _CMD + r"git\s+push\b"
_GIT_RESET = _CMD + r"git\s+reset\b"
_GIT_CHECKOUT = _CMD + r"git\s+checkout\b"
_GIT_BRANCH = _CMD + r"git\s+branch\b"
_SHELL_C = r"\b" + _SHELLS + r"\s+-c\s"
_SHELL_SCRIPT = r"""\s*(?!\s)["']?""" + _gap(_SHELL_C, r"""[^"']""")
_DOWNLOAD = r"\b(?:curl|wget)\b"
_CURL = r"\bcurl\b"
_READ = _CMD + _READERS + r"\s"
_GH_API = _CMD + r"gh\s+api\b"
_SED = _CMD + r"sed\s"
_CRONTAB = r"\bcrontab\s"

BUILTIN_DENY = (
    # ── Redirect segments: "<op> <target>" for sensitive targets ──
    Rule(
        r"^(?:&?>>?|>\|)\s*/(?:etc|boot|sys|proc|bin|sbin|lib|lib64|usr)/",
        "Destructive: write redirect into a system path",
    ),
    Rule(
        r"^(?:&?>>?|>\|)\s*/dev/(?:sd|hd|vd|xvd|nvme|disk|mmcblk)",
        "Destructive: raw write to a block device",
    ),
    Rule(
        r"^(?:&?>>?|>\|)\s*\S*\.(?:bashrc|bash_profile|bash_login|profile|zshrc|zprofile|zshenv)$",
        "Persistence: write redirect into a shell startup file",
    ),
    Rule(
        r"^(?:&?>>?|>\|)\s*\S*\.(?:ssh|aws|gnupg|kube|docker|azure)(?:/|$)",
        "Sensitive: write redirect into a credential store",
    ),
    Rule(
        r"^<>?\s*\S*(?:\.(?:ssh|aws|gnupg|kube|docker|azure)/|\.env\b|\.netrc$"
        r"|\.git-credentials$|\.npmrc$|\.pypirc$)",
        "Sensitive: input redirect from a credential file",
    ),
    # ── Destructive file deletion ──
    Rule(
        r"(?i)" + _CMD + _RM + _RM_ARGS + r"-(?=[a-z]*r)(?=[a-z]*f)[a-z]+\b",
        "Destructive file deletion: rm -rf",
    ),
    Rule(
        r"(?i)" + _CMD + _RM + _RM_ARGS + r"(?:-(?=[a-z]*r)[a-z]+|--recursive)\b",
        "Destructive file deletion: rm -r",
    ),
    Rule(r"(?i)\brmdir\b", "Destructive file deletion: rmdir"),
    Rule(_FIND + _gap(_FIND) + r"\s-delete\b", "Destructive file deletion: find -delete"),
    Rule(
        _FIND + _gap(_FIND) + r"\s-exec(?:dir)?\s+(?:\S*/)?rm\b",
        "Destructive file deletion: find -exec rm",
    ),
    Rule(r"(?i)\bshred\b", "Destructive file deletion: shred (secure file deletion)"),
    Rule(r"(?i)" + _CMD + r"truncate\s", "Destructive: truncate"),
    # ── Disk writes ──
    Rule(r"(?i)\bmkfs\b", "Destructive: mkfs (overwrites filesystem)"),
    Rule(r"(?i)\bdd\s+if=", "Destructive: dd if= (disk write)"),
    Rule(r"(?i)\bwipefs\b", "Destructive: wipefs (erases filesystem signatures)"),
    # ── Destructive git ──
    Rule(
        _GIT_PUSH + _gap(_GIT_PUSH) + r"\s(?:-(?=[a-zA-Z]*f)[a-zA-Z]+|--force)(?:\s|$)",
        "Destructive: git force push",
    ),
    Rule(_GIT_PUSH + _gap(_GIT_PUSH) + r"\s\+[\w./-]", "Destructive: git force push (+refspec)"),
    Rule(_GIT_RESET + _gap(_GIT_RESET) + r"\s--hard\b", "Destructive: git reset --hard"),
    Rule(_GIT_CHECKOUT + _gap(_GIT_CHECKOUT) + r"\s--\s", "Destructive: git checkout --"),
    Rule(r"\bgit\s+restore\b", "Destructive: git restore"),
    Rule(
        _GIT_BRANCH + _gap(_GIT_BRANCH) + r"\s(?:-D|--delete\s+(?:-f|--force))\b",
        "Destructive: git branch -D",
    ),
    Rule(r"\bgit\s+stash\s+(?:drop|clear)\b", "Destructive: git stash drop/clear"),
    # ── Permission bombs ──
    Rule(r"(?i)\bchmod\s+-R\s+0?777\b", "Dangerous: chmod -R 777"),
    Rule(r"(?i)\bchmod\s+0?777\s+/", "Dangerous: chmod 777 /"),
    # ── Shell injection / embedded dangerous commands ──
    Rule(
        r"(?i)" + _SHELL_C + _SHELL_SCRIPT + r"\brm\s+-(?:rf|fr|r)\b",
        "Shell injection: rm inside shell -c",
    ),
    Rule(
        r"(?i)" + _SHELL_C + _SHELL_SCRIPT + r"\b(?:mkfs|dd\s+if=|shred)\b",
        "Shell injection: destructive command inside shell -c",
    ),
    Rule(r"(?i)\beval\s", "Dangerous: eval execution"),
    Rule(r"(?i)\|\s*(?:sudo\s+)?(?:\S*/)?(?:bash|sh|zsh|ksh|dash|fish)\b", "Shell injection: pipe to shell"),
    Rule(
        r"(?i)" + _CMD + r"(?:bash|sh|zsh|ksh|dash|source|\.)\s+<\(\s*(?:curl|wget)\b",
        "Shell injection: shell reading a downloaded script",
    ),
    Rule(
        r"(?i)" + _DOWNLOAD + _gap(_DOWNLOAD) + r"\|\s*(?:sudo\s+)?(?:python3?|perl|ruby|node)\b",
        "Shell injection: download piped into an interpreter",
    ),
    # ── Exfiltration ──
    Rule(r"(?i)\|\s*curl\s[^|;&\n]*-X\s*POST\b", "Exfiltration: pipe to curl POST"),
    Rule(r"(?i)\|\s*curl\b", "Exfiltration: pipe to curl"),
    Rule(r"(?i)\|\s*wget\b", "Exfiltration: pipe to wget"),
    Rule(r"(?i)\b(?:nc|ncat|netcat)\s", "Exfiltration: netcat"),
    Rule(
        _CURL + _gap(_CURL) + r"\s(?:-d|--data(?:-binary|-raw|-urlencode)?|-F|--form|-T|--upload-file)"
        r"\s*['\"]?(?:\w+=)?@",
        "Exfiltration: curl uploading a local file",
    ),
    Rule(r"/dev/(?:tcp|udp)/", "Exfiltration: /dev/tcp socket"),
    # ── Sensitive file reads ──
    Rule(r"(?i)" + _READ + _gap(_READ) + r"~?/?\.?ssh/", "Sensitive: reading SSH key"),
    Rule(r"(?i)" + _READ + _gap(_READ) + r"~?/?\.?aws/", "Sensitive: reading AWS credentials"),
    Rule(r"(?i)" + _READ + _gap(_READ) + r"\.env\b", "Sensitive: reading .env file"),
    Rule(r"(?i)" + _READ + _gap(_READ) + r"\.env\.", "Sensitive: reading .env.* file"),
    Rule(r"\bprintenv\b", "Sensitive: dumping environment (printenv)"),
    # ── GitHub CLI destructive ──
    Rule(r"(?i)" + _GH_API + _gap(_GH_API) + r"-X\s*DELETE\b", "Destructive: gh api DELETE"),
    Rule(r"(?i)" + _GH_API + _gap(_GH_API) + r"-X\s*PUT\b", "Destructive: gh api PUT"),
    Rule(r"(?i)" + _GH_API + _gap(_GH_API) + r"-X\s*POST\b", "Destructive: gh api POST"),
    # ── File truncation and overwrite ──
    Rule(r"(?m)^[ \t]*>\|?[ \t]*[^\s>&]", "Destructive: file truncation (> file)"),
    Rule(r"(?:^|\|)\s*tee\s+(?!-a\b|--append\b)\S", "Destructive: tee overwrite (use tee -a)"),
    Rule(
        r"(?i)" + _SED + r"(?:" + _gap(_SED) + r"\s)?(?:-(?=[a-z]*i)[a-z]+|--in-place)\b",
        "Destructive: sed -i (in-place edit)",
    ),
    # ── System destructive ──
    Rule(r"(?<![\w:])([\w:]+)\s*\(\)\s*\{\s*\1\s*\|\s*\1\s*&", "System: fork bomb"),
    Rule(r"(?i)\bshutdown\b", "System: shutdown"),
    Rule(r"(?i)\breboot\b", "System: reboot"),
    Rule(r"(?i)" + _CMD + r"(?:halt|poweroff|init\s+[06])(?:\s|$)", "System: halt/poweroff"),
    Rule(r"(?i)\bkill\s+-9\s+-1\b", "System: kill -9 -1 (kill all processes)"),
    Rule(r"(?i)\bpkill\s+-9\s+-1\b", "System: pkill -9 -1 (kill all processes)"),
    Rule(_CRONTAB + r"(?:" + _gap(_CRONTAB) + r"\s)?-r\b", "System: crontab -r (removes all cron jobs)"),
)
