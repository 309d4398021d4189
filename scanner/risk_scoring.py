#!/usr/bin/env python3
"""
Risk scoring for hook scan findings.

Each distinct rule id that fired in a hook contributes its severity weight
once, no matter how often it matched. The total is clamped to 0-100 and
mapped onto a fixed tier:

    0-29    safe
    30-69   warning
    70-100  dangerous
"""

from typing import Dict, Iterable, Mapping, Optional, Union

from scan_types import BatchSummary, Finding, HookReport, RiskScore, RiskTier, Severity

MAX_SCORE = 100

# Points added to a hook's score per distinct rule id
DEFAULT_SEVERITY_WEIGHTS: Dict[Severity, int] = {
    Severity.DANGER: 70,   # Pipe-to-shell, eval, rm -rf, os.system
    Severity.WARN: 30,     # File writes, env access, network calls, unparseable source
    Severity.TAINT: 10,    # Sensitive values flowing somewhere
    Severity.UNKNOWN: 0,
}

# Tier thresholds (fixed): lower bound inclusive
RISK_THRESHOLDS = {
    "safe": (0, 29),
    "warning": (30, 69),
    "dangerous": (70, MAX_SCORE),
}

WARNING_THRESHOLD = RISK_THRESHOLDS["warning"][0]
DANGEROUS_THRESHOLD = RISK_THRESHOLDS["dangerous"][0]

_TIER_ORDER = {RiskTier.SAFE: 0, RiskTier.WARNING: 1, RiskTier.DANGEROUS: 2}


def validate_weights(weights: Mapping[Severity, int]) -> None:
    """
    Check a severity weight table against the scoring policy.

    Raises:
        ValueError: If a weight is negative or not an int, if the ordering
                    danger > warn > taint is broken, or if a single danger
                    finding could not reach the dangerous tier.
    """
    for severity in (Severity.DANGER, Severity.WARN, Severity.TAINT):
        if severity not in weights:
            raise ValueError(f"Missing weight for {severity.value}")
    for severity, weight in weights.items():
        if not isinstance(weight, int) or isinstance(weight, bool) or weight < 0:
            raise ValueError(f"Weight for {severity.value} must be a non-negative integer, got {weight!r}")
    if not weights[Severity.DANGER] > weights[Severity.WARN] > weights[Severity.TAINT]:
        raise ValueError("Weights must satisfy danger > warn > taint")
    if weights[Severity.DANGER] < DANGEROUS_THRESHOLD:
        raise ValueError(f"danger weight must be at least {DANGEROUS_THRESHOLD}")


def get_severity_weight(severity: Union[Severity, str], weights: Optional[Mapping[Severity, int]] = None) -> int:
    """
    Get numeric weight for a severity tag.

    Examples:
        >>> get_severity_weight(Severity.DANGER)
        70
        >>> get_severity_weight("warn")
        30
        >>> get_severity_weight("invalid")
        0
    """
    if weights is None:
        weights = DEFAULT_SEVERITY_WEIGHTS
    if not isinstance(severity, Severity):
        try:
            severity = Severity(str(severity).lower())
        except ValueError:
            return 0
    return weights.get(severity, 0)


def score(findings: Iterable[Finding], weights: Optional[Mapping[Severity, int]] = None) -> int:
    """
    Score a hook's findings.

    Args:
        findings: Findings from one scan (order does not matter)
        weights: Severity weight table (defaults to DEFAULT_SEVERITY_WEIGHTS)

    Returns:
        Integer in [0, 100]
    """
    per_rule: Dict[str, int] = {}
    for finding in findings:
        weight = get_severity_weight(finding.severity, weights)
        if weight > per_rule.get(finding.rule_id, -1):
            per_rule[finding.rule_id] = weight
    return max(0, min(sum(per_rule.values()), MAX_SCORE))


def classify(value: int) -> RiskTier:
    """
    Map a score onto its tier.

    Examples:
        >>> classify(29)
        <RiskTier.SAFE: 'safe'>
        >>> classify(30)
        <RiskTier.WARNING: 'warning'>
        >>> classify(70)
        <RiskTier.DANGEROUS: 'dangerous'>
    """
    if value >= DANGEROUS_THRESHOLD:
        return RiskTier.DANGEROUS
    if value >= WARNING_THRESHOLD:
        return RiskTier.WARNING
    return RiskTier.SAFE


def risk_score(findings: Iterable[Finding], weights: Optional[Mapping[Severity, int]] = None) -> RiskScore:
    value = score(findings, weights)
    return RiskScore(value=value, tier=classify(value))


def _tier_value(tier) -> str:
    if isinstance(tier, RiskTier):
        return tier.value
    return str(tier).lower() if tier is not None else ""


def risk_emoji(tier) -> str:
    """
    Get the display symbol for a tier. Unknown tiers get '❓'.

    Examples:
        >>> risk_emoji(RiskTier.DANGEROUS)
        '🔴'
        >>> risk_emoji("bogus")
        '❓'
    """
    emojis = {
        "safe": "✅",
        "warning": "⚠️",
        "dangerous": "🔴",
    }
    return emojis.get(_tier_value(tier), "❓")


def get_risk_color(tier) -> str:
    """Get ANSI color code for a tier."""
    colors = {
        "safe": "\033[92m",       # Green
        "warning": "\033[93m",    # Yellow
        "dangerous": "\033[91m",  # Red
    }
    return colors.get(_tier_value(tier), "\033[0m")


def format_risk_display(value: int, tier) -> str:
    """
    Format score and tier for display.

    Examples:
        >>> format_risk_display(35, "warning")
        '\\033[93mWARNING\\033[0m (35/100)'
    """
    color = get_risk_color(tier)
    reset = "\033[0m"
    return f"{color}{_tier_value(tier).upper()}{reset} ({value}/100)"


def get_risk_description(tier) -> str:
    descriptions = {
        "safe": "No risky behavior detected.",
        "warning": "Some risky operations detected. Review before trusting this hook.",
        "dangerous": "Dangerous behavior detected. Do not install without reading the source.",
    }
    return descriptions.get(_tier_value(tier), "Unknown risk level.")


def worse_tier(a: Optional[RiskTier], b: Optional[RiskTier]) -> Optional[RiskTier]:
    if a is None:
        return b
    if b is None:
        return a
    return a if _TIER_ORDER[a] >= _TIER_ORDER[b] else b


def summarize_batch(reports: Iterable[HookReport]) -> BatchSummary:
    """
    Aggregate per-hook reports: counts per tier and the worst tier overall.

    Hooks that errored or were cancelled are counted separately and do not
    affect the worst tier.
    """
    summary = BatchSummary()
    for report in reports:
        summary.total += 1
        if report.error == "cancelled":
            summary.cancelled += 1
            continue
        if report.error is not None or report.tier is None:
            summary.errors += 1
            continue
        summary.tiers[report.tier.value] += 1
        summary.worst_tier = worse_tier(summary.worst_tier, report.tier)
    return summary


__all__ = [
    'MAX_SCORE',
    'DEFAULT_SEVERITY_WEIGHTS',
    'RISK_THRESHOLDS',
    'WARNING_THRESHOLD',
    'DANGEROUS_THRESHOLD',
    'validate_weights',
    'get_severity_weight',
    'score',
    'classify',
    'risk_score',
    'risk_emoji',
    'get_risk_color',
    'format_risk_display',
    'get_risk_description',
    'worse_tier',
    'summarize_batch',
]
