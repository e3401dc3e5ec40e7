"""Decision engine: segments × tiers → allow or block.

Tiers are evaluated in order. A final tier blocks on any match. An
overridable tier lets its allow rules exempt a segment, and a deny match on a
segment is deferred to the segment's descendants when the same rule matches
one of them, so an allowed clause can't launder another clause of the same
compound command.
"""

import logging
from typing import NamedTuple

from safe_bash.patterns import BUILTIN_DENY
from safe_bash.ruleset import EMPTY_RULESET
from safe_bash.segmenter import segment_command

logger = logging.getLogger(__name__)


class Tier(NamedTuple):
    name: str
    deny: tuple
    allow: tuple
    overridable: bool


class Decision(NamedTuple):
    blocked: bool
    reason: str | None = None
    tier: str | None = None
    segment: str | None = None
    pattern: str | None = None


ALLOW = Decision(False)


def build_tiers(remote=EMPTY_RULESET):
    return [
        Tier("builtin", BUILTIN_DENY, (), False),
        Tier("remote", remote.deny, remote.allow, True),
    ]


def _first_match(rules, text):
    for rule in rules:
        if rule.search(text):
            return rule
    return None


def _descendants(segments, index):
    """Yield the segments cut (directly or transitively) from segments[index]."""
    for j in range(index + 1, len(segments)):
        parent = segments[j].parent
        while parent is not None and parent > index:
            parent = segments[parent].parent
        if parent == index:
            yield segments[j]


def evaluate(segments, tiers):
    for tier in tiers:
        for index, segment in enumerate(segments):
            if tier.overridable:
                exemption = _first_match(tier.allow, segment.text)
                if exemption is not None:
                    logger.debug(
                        "Segment %r exempted by %s allow rule %r",
                        segment.text,
                        tier.name,
                        exemption.pattern,
                    )
                    continue
            for rule in tier.deny:
                if not rule.search(segment.text):
                    continue
                if tier.overridable and any(
                    rule.search(child.text) for child in _descendants(segments, index)
                ):
                    continue
                return Decision(True, rule.reason, tier.name, segment.text, rule.pattern)
    return ALLOW


def classify(command, remote=EMPTY_RULESET):
    """Classify a shell command against the built-in and remote tiers."""
    if not command or not command.strip():
        return ALLOW
    return evaluate(segment_command(command), build_tiers(remote))
