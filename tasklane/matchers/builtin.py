import re

from .types import SLOTS, MatcherConfig

_SEVERITY = r"fatal error|fatal|error|warning|info|note"


def named_matcher(name: str, pattern: str, **kwargs) -> MatcherConfig:
    regexp = re.compile(pattern)
    groups = {slot: slot for slot in SLOTS if slot in regexp.groupindex}
    return MatcherConfig(name=name, regexp=regexp, groups=groups, **kwargs)


BUILTIN_MATCHERS = {
    # "error: src/lib.rs:10:5: message" or "src/lib.rs:10: message"
    "$generic": named_matcher(
        "$generic",
        rf"^\s*(?:(?P<severity>{_SEVERITY})(?:\[[^\]]*\])?:\s*)?"
        r"(?P<file>[^\s:][^:]*):(?P<line>\d+)(?::(?P<column>\d+))?:\s*(?P<message>.+)$",
    ),
    # "main.c:3:14: warning: unused variable"
    "$gcc": named_matcher(
        "$gcc",
        r"^(?P<file>[^\s:][^:]*):(?P<line>\d+):(?P<column>\d+):\s+"
        rf"(?P<severity>{_SEVERITY}):\s+(?P<message>.*)$",
    ),
}
