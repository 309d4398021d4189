#!/usr/bin/env python3
"""
Shared data types for Hookscan.

Grammars and query definitions are created once and never mutated.
Findings, reports and scores are created per scan call and discarded by the
caller; nothing here is persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class Severity(Enum):
    """Severity tag carried by a capture name prefix."""

    DANGER = "danger"
    WARN = "warn"
    TAINT = "taint"
    UNKNOWN = "unknown"

    @classmethod
    def from_capture(cls, capture_name: str) -> Optional["Severity"]:
        """
        Parse the severity prefix of a capture name.

        Returns None for intermediate captures (no severity prefix).

        Examples:
            >>> Severity.from_capture("danger.netexec")
            <Severity.DANGER: 'danger'>
            >>> Severity.from_capture("cmd1") is None
            True
        """
        for severity in (cls.DANGER, cls.WARN, cls.TAINT):
            if capture_name.startswith(severity.value + "."):
                return severity
        return None


SEVERITY_PREFIXES = tuple(s.value + "." for s in (Severity.DANGER, Severity.WARN, Severity.TAINT))


class RiskTier(Enum):
    SAFE = "safe"
    WARNING = "warning"
    DANGEROUS = "dangerous"


class Capability(Enum):
    """What a hook can reach, derived from the rule names it triggers."""

    FILESYSTEM = "filesystem"
    NETWORK = "network"
    PROCESS = "process"
    IMPORTS = "imports"
    CREDENTIALS = "credentials"

    @classmethod
    def from_capture(cls, capture_name: str) -> FrozenSet["Capability"]:
        """
        Capabilities implied by a severity-tagged capture name.

        Examples:
            >>> sorted(c.value for c in Capability.from_capture("danger.netexec"))
            ['network', 'process']
            >>> Capability.from_capture("warn.privilege")
            frozenset()
        """
        severity, _, tag = capture_name.partition(".")
        found = set()
        if "fs" in tag:
            found.add(cls.FILESYSTEM)
        if "net" in tag or tag in ("socket", "revshell"):
            found.add(cls.NETWORK)
        if "exec" in tag or "eval" in tag:
            found.add(cls.PROCESS)
        if "import" in tag:
            found.add(cls.IMPORTS)
        if "credentials" in tag or (severity == "taint" and tag == "env"):
            found.add(cls.CREDENTIALS)
        return frozenset(found)


# === ERRORS ===

class HookscanError(Exception):
    """Base class for scanner errors."""


class GrammarLoadError(HookscanError):
    """A grammar could not be loaded. Scoped to one language."""

    def __init__(self, language_id: str, reason: str = ""):
        self.language_id = language_id
        self.reason = reason
        message = f"Failed to load grammar for '{language_id}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class UnsupportedLanguageError(GrammarLoadError):
    """The language id is not one the registry knows about."""

    def __init__(self, language_id: str):
        super().__init__(language_id, "unsupported language")


class QuerySyntaxError(HookscanError):
    """A rule file failed to compile. Scoped to that one file."""

    def __init__(self, language_id: str, file_id: str, reason: str = ""):
        self.language_id = language_id
        self.file_id = file_id
        self.reason = reason
        super().__init__(f"{language_id}/{file_id}: {reason}" if reason else f"{language_id}/{file_id}")


# === GRAMMARS & QUERIES ===

@dataclass(frozen=True)
class Grammar:
    language_id: str
    language: Any  # tree_sitter.Language


@dataclass(frozen=True)
class QueryDefinition:
    """A compiled rule file. Only exists after a successful compile."""

    language_id: str
    file_id: str
    source: str
    query: Any  # tree_sitter.Query
    capture_names: Tuple[str, ...]
    capture_severities: Dict[str, Severity] = field(default_factory=dict)
    capture_capabilities: Dict[str, FrozenSet[Capability]] = field(default_factory=dict)

    def severity_for(self, capture_name: str) -> Optional[Severity]:
        return self.capture_severities.get(capture_name)

    def capabilities_for(self, capture_name: str) -> FrozenSet[Capability]:
        return self.capture_capabilities.get(capture_name, frozenset())

    def rule_id(self, capture_name: str) -> str:
        return f"{self.file_id}:{capture_name}"


# === SCAN OUTPUT ===

@dataclass(frozen=True)
class Capture:
    name: str
    start_byte: int
    end_byte: int
    text: str
    start_point: Tuple[int, int] = (0, 0)


@dataclass(frozen=True)
class Finding:
    rule_id: str
    severity: Severity
    start_byte: int
    end_byte: int
    start_point: Tuple[int, int] = (0, 0)
    snippet: str = ""
    capabilities: FrozenSet[Capability] = frozenset()

    @property
    def line(self) -> int:
        """1-based line number of the finding."""
        return self.start_point[0] + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule_id,
            "severity": self.severity.value,
            "range": [self.start_byte, self.end_byte],
            "line": self.line,
            "snippet": self.snippet,
        }


@dataclass
class ScanResult:
    hook: str
    findings: List[Finding] = field(default_factory=list)


@dataclass(frozen=True)
class RiskScore:
    value: int
    tier: RiskTier


@dataclass(frozen=True)
class HookDescriptor:
    """A hook as supplied by the caller. The language id is always explicit."""

    name: str
    event: str
    source: str
    language: str
    description: Optional[str] = None
    file_path: Optional[str] = None


@dataclass
class HookReport:
    """Per-hook output: findings, score and tier, or an error."""

    hook: HookDescriptor
    findings: List[Finding] = field(default_factory=list)
    score: Optional[int] = None
    tier: Optional[RiskTier] = None
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.hook.name

    @property
    def rule_ids(self) -> List[str]:
        """Distinct rule ids in first-seen order."""
        seen: Dict[str, None] = {}
        for finding in self.findings:
            seen.setdefault(finding.rule_id, None)
        return list(seen)

    @property
    def capabilities(self) -> List[Capability]:
        """Capabilities across all findings, in Capability declaration order."""
        found = set()
        for finding in self.findings:
            found |= finding.capabilities
        return [c for c in Capability if c in found]

    def has_capability(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.hook.name,
            "event": self.hook.event,
            "language": self.hook.language,
            "score": self.score,
            "tier": self.tier.value if self.tier else None,
            "capabilities": [c.value for c in self.capabilities],
            "findings": [f.to_dict() for f in self.findings],
            "error": self.error,
        }


@dataclass
class BatchSummary:
    total: int = 0
    tiers: Dict[str, int] = field(default_factory=lambda: {t.value: 0 for t in RiskTier})
    errors: int = 0
    cancelled: int = 0
    worst_tier: Optional[RiskTier] = None


__all__ = [
    'Severity',
    'SEVERITY_PREFIXES',
    'RiskTier',
    'Capability',
    'HookscanError',
    'GrammarLoadError',
    'UnsupportedLanguageError',
    'QuerySyntaxError',
    'Grammar',
    'QueryDefinition',
    'Capture',
    'Finding',
    'ScanResult',
    'RiskScore',
    'HookDescriptor',
    'HookReport',
    'BatchSummary',
]
