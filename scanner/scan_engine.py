#!/usr/bin/env python3
"""
Hookscan Scan Engine

Parses hook source with the grammar for an explicit language id and runs
every compiled rule file for that language against the tree.

Output order is fixed: rule file order, then match order within the file,
then capture order within the match. Scanning the same source twice gives
the same findings in the same order.

A hook whose source does not parse cleanly still completes: the engine
reports one warn-tier sentinel finding and keeps scanning the
error-tolerant tree. One bad hook never stops a batch.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from tree_sitter import QueryCursor

from grammar_registry import GrammarRegistry
from query_library import QueryLibrary
from risk_scoring import DEFAULT_SEVERITY_WEIGHTS, risk_score, validate_weights
from scan_types import (
    Capture,
    Finding,
    GrammarLoadError,
    HookDescriptor,
    HookReport,
    QueryDefinition,
    ScanResult,
    Severity,
)

logger = logging.getLogger(__name__)

SENTINEL_RULE_ID = "engine:warn.unparseable"
CANCELLED = "cancelled"
SNIPPET_LIMIT = 120


def _snippet(text: str) -> str:
    text = text.strip()
    if len(text) > SNIPPET_LIMIT:
        return text[:SNIPPET_LIMIT] + "..."
    return text


def _node_text(node, data: bytes) -> str:
    return data[node.start_byte:node.end_byte].decode('utf-8', errors='replace')


def _first_error_node(root):
    """Depth-first search for the first ERROR or missing node."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return node
        if node.has_error:
            stack.extend(reversed(node.children))
    return root


class ScanEngine:
    """Runs compiled rule files over hook source and scores the results."""

    def __init__(
        self,
        registry: GrammarRegistry,
        library: QueryLibrary,
        weights: Optional[Mapping[Severity, int]] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Args:
            registry: Grammar registry (shared, read-only once loaded)
            library: Query library for the same registry
            weights: Severity weight table for scoring
            max_workers: Default thread count for batch scans
        """
        if weights is None:
            weights = DEFAULT_SEVERITY_WEIGHTS
        validate_weights(weights)
        self.registry = registry
        self.library = library
        self.weights = dict(weights)
        self.max_workers = max_workers

    # === SINGLE HOOK ===

    def scan(self, source: str, language_id: str) -> List[Finding]:
        """
        Scan hook source.

        Args:
            source: Hook source text
            language_id: Explicit language id (never inferred here)

        Returns:
            Findings in deterministic order

        Raises:
            GrammarLoadError: If the grammar for language_id cannot be loaded
        """
        lang = self.registry.normalize(language_id)
        definitions = self.library.load_queries(lang)
        parser = self.registry.new_parser(lang)

        # Lone surrogates (e.g. from JSON "\ud800") pass through as raw bytes
        data = source.encode('utf-8', errors='surrogatepass')
        tree = parser.parse(data)
        root = tree.root_node

        findings: List[Finding] = []
        if root.has_error:
            findings.append(self._sentinel(root, data))

        for definition in definitions:
            for capture, severity in self._captures(definition, root, data):
                findings.append(Finding(
                    rule_id=definition.rule_id(capture.name),
                    severity=severity,
                    start_byte=capture.start_byte,
                    end_byte=capture.end_byte,
                    start_point=capture.start_point,
                    snippet=_snippet(capture.text),
                    capabilities=definition.capabilities_for(capture.name),
                ))
        return findings

    def _captures(self, definition: QueryDefinition, root, data: bytes) -> Iterator[tuple]:
        """Yield (Capture, Severity) for severity-tagged captures; intermediates are dropped."""
        order = {name: i for i, name in enumerate(definition.capture_names)}
        cursor = QueryCursor(definition.query)
        for _pattern_index, captures in cursor.matches(root):
            for name in sorted(captures, key=lambda n: order.get(n, len(order))):
                severity = definition.severity_for(name)
                if severity is None:
                    continue
                for node in sorted(captures[name], key=lambda n: (n.start_byte, n.end_byte)):
                    yield Capture(
                        name=name,
                        start_byte=node.start_byte,
                        end_byte=node.end_byte,
                        text=_node_text(node, data),
                        start_point=(node.start_point[0], node.start_point[1]),
                    ), severity

    def _sentinel(self, root, data: bytes) -> Finding:
        node = _first_error_node(root)
        return Finding(
            rule_id=SENTINEL_RULE_ID,
            severity=Severity.WARN,
            start_byte=node.start_byte,
            end_byte=node.end_byte,
            start_point=(node.start_point[0], node.start_point[1]),
            snippet=_snippet(_node_text(node, data)),
        )

    def scan_result(self, hook: HookDescriptor) -> ScanResult:
        return ScanResult(hook=hook.name, findings=self.scan(hook.source, hook.language))

    def scan_hook(self, hook: HookDescriptor) -> HookReport:
        """
        Scan, score and classify one hook.

        A grammar failure for the hook's language is reported on the
        returned HookReport instead of being raised.
        """
        try:
            result = self.scan_result(hook)
        except GrammarLoadError as e:
            logger.warning(f"Cannot scan hook {hook.name}: {e}")
            return HookReport(hook=hook, error=str(e))

        risk = risk_score(result.findings, self.weights)
        return HookReport(hook=hook, findings=result.findings, score=risk.value, tier=risk.tier)

    # === BATCH ===

    def scan_batch(
        self,
        hooks: Sequence[HookDescriptor],
        max_workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[HookReport]:
        """
        Scan many hooks concurrently.

        Args:
            hooks: Hooks to scan
            max_workers: Thread count (defaults to the engine setting)
            cancel_event: When set, hooks not yet started are skipped and
                          reported with error "cancelled". A scan already
                          running is never interrupted.

        Returns:
            One HookReport per hook, in input order
        """
        hooks = list(hooks)
        if not hooks:
            return []

        def run(hook: HookDescriptor) -> HookReport:
            if cancel_event is not None and cancel_event.is_set():
                return HookReport(hook=hook, error=CANCELLED)
            return self.scan_hook(hook)

        workers = max_workers or self.max_workers
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="hookscan") as pool:
            futures = [pool.submit(run, hook) for hook in hooks]

        reports = []
        for hook, future in zip(hooks, futures):
            try:
                reports.append(future.result())
            except Exception as e:
                logger.exception(f"Scan failed for hook {hook.name}")
                reports.append(HookReport(hook=hook, error=f"{type(e).__name__}: {e}"))
        return reports

    # === SETTINGS HOOKS ===

    def scan_settings_hooks(
        self,
        settings: Mapping[str, Any],
        default_language: str = "bash",
        max_workers: Optional[int] = None,
    ) -> Dict[str, HookReport]:
        """
        Scan inline hooks declared in a settings mapping.

        Expects {"hooks": {event: [config, ...]}} where a config may carry
        inline "code" (or a "command" string) and/or a nested "hooks" list.

        Returns:
            Reports keyed by hook path, e.g. "PreToolUse[0].inline" or
            "PostToolUse[1].hooks[0].inline"
        """
        hooks = list(iter_settings_hooks(settings, default_language))
        reports = self.scan_batch(hooks, max_workers=max_workers)
        return {report.name: report for report in reports}


def _inline_source(entry: Mapping[str, Any]) -> Optional[str]:
    for key in ("code", "command"):
        value = entry.get(key)
        if isinstance(value, str):
            return value
    return None


def iter_settings_hooks(settings: Mapping[str, Any], default_language: str = "bash") -> Iterator[HookDescriptor]:
    """Yield a HookDescriptor per inline hook in a settings mapping. Malformed entries are skipped."""
    if not isinstance(settings, Mapping):
        return
    hooks_config = settings.get("hooks")
    if not isinstance(hooks_config, Mapping):
        return

    for event, configs in hooks_config.items():
        if not isinstance(configs, list):
            continue
        for i, config in enumerate(configs):
            if not isinstance(config, Mapping):
                continue

            source = _inline_source(config)
            if source is not None:
                yield HookDescriptor(
                    name=f"{event}[{i}].inline",
                    event=str(event),
                    source=source,
                    language=str(config.get("language") or default_language),
                    description=config.get("description"),
                )

            nested = config.get("hooks")
            if not isinstance(nested, list):
                continue
            for j, hook in enumerate(nested):
                if not isinstance(hook, Mapping):
                    continue
                source = _inline_source(hook)
                if source is None:
                    continue
                yield HookDescriptor(
                    name=f"{event}[{i}].hooks[{j}].inline",
                    event=str(event),
                    source=source,
                    language=str(hook.get("language") or default_language),
                    description=hook.get("description"),
                )


__all__ = [
    'SENTINEL_RULE_ID',
    'CANCELLED',
    'ScanEngine',
    'iter_settings_hooks',
]
