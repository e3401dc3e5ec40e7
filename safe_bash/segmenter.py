"""Shell-syntax-aware command segmentation.

A command is broken into every piece that could run on its own: the whole
string, each clause between control operators, each pipeline stage, the body
of each command/process substitution and subshell, and the script handed to
``bash -c``. Redirections into sensitive paths become segments too.

This is a lexical pass only. Nothing is expanded or executed, and malformed
input (unterminated quotes or substitutions) never raises.
"""

import re
from typing import NamedTuple

from safe_bash.patterns import is_sensitive_path

COMMAND = "command"
CLAUSE = "clause"
STAGE = "stage"
SUBSTITUTION = "substitution"
SUBSHELL = "subshell"
INLINE = "inline"
REDIRECT = "redirect"

_MAX_DEPTH = 16

# Characters that end an unquoted redirect target.
_WORD_END = frozenset(" \t\n;&|<>()")


class Segment(NamedTuple):
    text: str
    kind: str
    parent: int | None  # index of the segment this one was cut from


class _Clause(NamedTuple):
    text: str
    stages: list


class _Scan(NamedTuple):
    clauses: list
    bodies: list  # (kind, text)
    redirects: list  # (operator, target)
    cuts: list  # (start, end) of every substitution or subshell delimiter


_SHELL_KEYWORD_PREFIX = re.compile(r"^\s*(do|then|else|elif|if|while|until|!|\{)\s+")
_ENV_ASSIGNMENT = re.compile(r"^\s*[A-Za-z_]\w*=\S*\s+")
_CONTINUATION = re.compile(r"\\\n")


def strip_shell_keyword(cmd):
    """Strip leading shell control keywords from a command fragment.

    Splitting on ';' turns for/do/done and if/then/fi blocks into fragments
    with keyword prefixes:
      'do echo hi'   → 'echo hi'
      'then cat file' → 'cat file'
      'do if git reset --hard' → 'git reset --hard' (repeated)
    Keywords that don't prefix commands (for, case, done, fi, esac) are
    left alone.
    """
    while True:
        m = _SHELL_KEYWORD_PREFIX.match(cmd)
        if m:
            cmd = cmd[m.end() :]
        else:
            break
    return cmd


def strip_env_prefix(cmd):
    """Strip leading KEY=value pairs from a command.

    Bash allows `FOO=bar CMD args` where FOO is set for CMD's environment.
    Rules anchor on the command name, so we strip these prefixes first.
    """
    while True:
        m = _ENV_ASSIGNMENT.match(cmd)
        if m:
            cmd = cmd[m.end() :]
        else:
            break
    return cmd


def normalize(cmd):
    return strip_env_prefix(strip_shell_keyword(cmd)).strip()


def extract_shell_c(cmd):
    """Extract the script from bash -c '...' / sh -c '...' wrappers, or None."""
    m = re.match(r"""^\s*(?:\S*/)?(?:bash|sh|zsh|ksh|dash)\s+-c\s+(['"])(.*?)\1""", cmd, re.DOTALL)
    if m:
        return m.group(2).strip() or None
    # Unquoted (rare but possible): bash -c command
    m = re.match(r"""^\s*(?:\S*/)?(?:bash|sh|zsh|ksh|dash)\s+-c\s+([^\s'"]+)""", cmd)
    if m:
        return m.group(1).strip()
    return None


def _read_target(text, i):
    """Read the redirect target word starting at i. Returns (target, end)."""
    n = len(text)
    while i < n and text[i] in " \t":
        i += 1
    target = []
    quote = None
    while i < n:
        c = text[i]
        if quote:
            if c == quote:
                quote = None
            else:
                target.append(c)
        elif c in "'\"":
            quote = c
        elif c in _WORD_END:
            break
        else:
            target.append(c)
        i += 1
    return "".join(target), i


def _redirect_operator(text, i):
    """Return the redirect operator at position i, or None.

    Process substitution (<( and >() and fd duplication (>&2) are not
    redirects to a path. Here-docs are skipped by the caller.
    """
    rest = text[i : i + 3]
    if rest[:2] in ("<(", ">("):
        return None
    for op in ("&>>", "&>", ">>", ">|", "<>", ">", "<"):
        if rest.startswith(op):
            if text[i + len(op) : i + len(op) + 1] == "&":
                return None
            return op
    return None


def _scan(text):
    """Single left-to-right pass over text.

    Tracks open contexts on an explicit stack and splits on control operators
    only when nothing is open. Records the body of each outermost
    substitution/subshell, each redirect into a sensitive path and the
    position of every substitution or subshell delimiter at any depth.
    """
    clauses = []
    stages = []
    bodies = []
    redirects = []
    cuts = []
    stack = []
    body = None  # (kind, start index, stack depth at which it opened)
    clause_start = stage_start = 0
    n = len(text)
    i = 0

    def end_stage(end):
        stages.append(text[stage_start:end].strip())

    def end_clause(end):
        end_stage(end)
        parts = [s for s in stages if s]
        clause_text = text[clause_start:end].strip()
        if clause_text:
            clauses.append(_Clause(clause_text, parts))
        stages.clear()

    def open_body(kind, start):
        nonlocal body
        cuts.append((i, start))
        if body is None:
            body = (kind, start, len(stack))

    def close_body(end):
        nonlocal body
        cuts.append((end, end + 1))
        if body is not None and len(stack) == body[2]:
            bodies.append((body[0], text[body[1] : end]))
            body = None

    while i < n:
        c = text[i]
        top = stack[-1] if stack else None
        two = text[i : i + 2]

        if top == "'":
            if c == "'":
                stack.pop()
            i += 1
            continue

        if c == "\\":
            i += 2
            continue

        if top == '"':
            if c == '"':
                stack.pop()
            elif two == "$(":
                open_body(SUBSTITUTION, i + 2)
                stack.append("$(")
                i += 2
                continue
            elif c == "`":
                open_body(SUBSTITUTION, i + 1)
                stack.append("`")
            i += 1
            continue

        # Unquoted, possibly inside $( ), ( ) or backticks.
        if c in "'\"":
            stack.append(c)
        elif c == "`":
            if top == "`":
                stack.pop()
                close_body(i)
            else:
                open_body(SUBSTITUTION, i + 1)
                stack.append("`")
        elif two in ("$(", "<(", ">("):
            open_body(SUBSTITUTION, i + 2)
            stack.append("$(")
            i += 2
            continue
        elif c == "(":
            if stack:
                cuts.append((i, i + 1))
            else:
                open_body(SUBSHELL, i + 1)
            stack.append("(")
        elif c == ")":
            if top in ("$(", "("):
                stack.pop()
                close_body(i)
        elif not stack:
            if two in ("&&", "||"):
                end_clause(i)
                i += 2
                clause_start = stage_start = i
                continue
            if c in ";\n":
                end_clause(i)
                clause_start = stage_start = i + 1
            elif c == "|":
                end_stage(i)
                i += 2 if two == "|&" else 1
                stage_start = i
                continue
            elif c in "<>&":
                if text.startswith("<<", i):
                    while i < n and text[i] == "<":
                        i += 1
                    continue
                op = _redirect_operator(text, i)
                if op is not None:
                    target, end = _read_target(text, i + len(op))
                    if is_sensitive_path(target):
                        redirects.append((op, target))
                    i = end
                    continue
                if c == "&" and text[i - 1 : i] not in ("<", ">"):
                    # Background operator ends the clause.
                    end_clause(i)
                    clause_start = stage_start = i + 1
        i += 1

    end_clause(n)
    if body is not None:
        bodies.append((body[0], text[body[1] :]))
    return _Scan(clauses, bodies, redirects, cuts)


def _flatten(text, cuts):
    """Replace each delimiter in cuts with a newline.

    What was nested then reads as a run of plain clauses, one per body.
    """
    parts = []
    last = 0
    for start, end in cuts:
        parts.append(text[last:start])
        parts.append("\n")
        last = end
    parts.append(text[last:])
    return "".join(parts)


def _add(segments, text, kind, parent):
    segments.append(Segment(text, kind, parent))
    return len(segments) - 1


def _add_leaf(segments, text, kind, parent, depth):
    index = _add(segments, text, kind, parent)
    inner = extract_shell_c(text)
    if inner:
        _expand(segments, inner, _add(segments, inner, INLINE, index), depth + 1)
    return index


def _expand(segments, text, index, depth):
    """Append every segment found in text, children of segments[index]."""
    text = _CONTINUATION.sub(" ", text)
    scan = _scan(text)
    if depth >= _MAX_DEPTH:
        # Too deep to keep apart: every remaining body becomes a plain clause.
        for clause in _scan(_flatten(text, scan.cuts)).clauses:
            _add(segments, normalize(clause.text), CLAUSE, index)
        return
    compound = len(scan.clauses) > 1
    whole = text.strip()
    for clause in scan.clauses:
        clause_text = normalize(clause.text)
        clause_index = index
        if len(clause.stages) > 1:
            if compound or clause_text != whole:
                clause_index = _add(segments, clause_text, CLAUSE, index)
            for stage in clause.stages:
                _add_leaf(segments, normalize(stage), STAGE, clause_index, depth)
        elif compound or clause_text != whole:
            _add_leaf(segments, clause_text, CLAUSE, index, depth)
        else:
            inner = extract_shell_c(clause_text)
            if inner:
                _expand(segments, inner, _add(segments, inner, INLINE, index), depth + 1)
    for kind, body in scan.bodies:
        body = body.strip()
        if body:
            _expand(segments, body, _add(segments, body, kind, index), depth + 1)
    for op, target in scan.redirects:
        _add(segments, f"{op} {target}", REDIRECT, index)


def segment_command(command):
    """Return the segments of command. Segment 0 is always the whole string."""
    segments = [Segment(command, COMMAND, None)]
    _expand(segments, command, 0, 0)
    return segments
