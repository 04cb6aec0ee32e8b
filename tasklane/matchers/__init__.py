from .builtin import BUILTIN_MATCHERS
from .matcher import DiagnosticStream, MatcherRegistry, severity_from_text
from .types import Diagnostic, MatcherConfig, Severity

__all__ = [
    "BUILTIN_MATCHERS",
    "Diagnostic",
    "DiagnosticStream",
    "MatcherConfig",
    "MatcherRegistry",
    "Severity",
    "severity_from_text",
]
