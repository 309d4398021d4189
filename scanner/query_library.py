#!/usr/bin/env python3
"""
Query Library for Hookscan.

Loads tree-sitter rule files (queries/<language>/*.scm) and compiles them
against the language grammar, with caching. A rule file that fails to compile
is dropped from the active set; the others are unaffected.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from tree_sitter import Query, QueryError

from grammar_registry import SUPPORTED_LANGUAGES, GrammarRegistry
from scan_types import Capability, QueryDefinition, QuerySyntaxError, Severity

logger = logging.getLogger(__name__)

RULE_FILE_SUFFIX = ".scm"


class QueryLibrary:
    """Loads and caches compiled rule files per language."""

    def __init__(self, registry: GrammarRegistry, queries_dir: Optional[Path] = None):
        """
        Initialize query library.

        Args:
            registry: Grammar registry used to compile rule files.
            queries_dir: Directory holding one sub-directory per language.
                         Defaults to ../queries relative to this file.
        """
        if queries_dir is None:
            queries_dir = Path(__file__).parent.parent / "queries"

        self.registry = registry
        self.queries_dir = Path(queries_dir)
        self._cache: Dict[str, List[QueryDefinition]] = {}
        self._errors: Dict[str, Dict[str, str]] = {}
        self._locks: Dict[str, threading.Lock] = {lang: threading.Lock() for lang in SUPPORTED_LANGUAGES}

    def rule_files(self, language_id: str) -> List[Path]:
        """
        List rule files for a language, sorted by file name.

        Returns:
            Paths of *.scm files; empty if the language has no directory.
        """
        lang_dir = self.queries_dir / self.registry.normalize(language_id)
        if not lang_dir.is_dir():
            return []
        return sorted(
            (p for p in lang_dir.iterdir() if p.is_file() and p.suffix == RULE_FILE_SUFFIX),
            key=lambda p: p.name,
        )

    def compile(self, language_id: str, file_id: str, source: str) -> QueryDefinition:
        """
        Compile one rule file.

        Args:
            language_id: Language the rule file targets
            file_id: Rule file name (e.g. '10-pipe-to-shell.scm')
            source: Query source in tree-sitter query syntax

        Returns:
            Compiled QueryDefinition with capture names in query order

        Raises:
            GrammarLoadError: If the grammar cannot be loaded
            QuerySyntaxError: If the pattern source is empty or malformed
        """
        lang = self.registry.normalize(language_id)
        grammar = self.registry.load_language(lang)

        if not source.strip():
            raise QuerySyntaxError(lang, file_id, "empty rule file")

        try:
            query = Query(grammar.language, source)
        except QueryError as e:
            raise QuerySyntaxError(lang, file_id, str(e)) from e

        capture_names = tuple(query.capture_name(i) for i in range(query.capture_count))
        severities = {}
        capabilities = {}
        for name in capture_names:
            severity = Severity.from_capture(name)
            if severity is not None:
                severities[name] = severity
                capabilities[name] = Capability.from_capture(name)

        return QueryDefinition(
            language_id=lang,
            file_id=file_id,
            source=source,
            query=query,
            capture_names=capture_names,
            capture_severities=severities,
            capture_capabilities=capabilities,
        )

    def load_queries(self, language_id: str) -> List[QueryDefinition]:
        """
        Load every compilable rule file for a language.

        Returns:
            QueryDefinitions ordered by file name. Files that fail to compile
            are logged, recorded in errors() and left out.

        Raises:
            GrammarLoadError: If the grammar cannot be loaded
        """
        lang = self.registry.normalize(language_id)

        # Check cache first
        cached = self._cache.get(lang)
        if cached is not None:
            return cached

        with self._locks[lang]:
            cached = self._cache.get(lang)
            if cached is not None:
                return cached

            self.registry.load_language(lang)

            definitions: List[QueryDefinition] = []
            errors: Dict[str, str] = {}
            for path in self.rule_files(lang):
                try:
                    source = path.read_text(encoding='utf-8')
                    definitions.append(self.compile(lang, path.name, source))
                except QuerySyntaxError as e:
                    logger.error(f"Skipping rule file {e}")
                    errors[path.name] = e.reason
                except (OSError, UnicodeDecodeError) as e:
                    logger.error(f"Skipping unreadable rule file {lang}/{path.name}: {e}")
                    errors[path.name] = str(e)

            self._errors[lang] = errors
            self._cache[lang] = definitions
            logger.debug(f"Loaded {len(definitions)} {lang} rule files ({len(errors)} failed)")
            return definitions

    def errors(self, language_id: str) -> Dict[str, str]:
        """Compile errors from the last load, keyed by file name."""
        return dict(self._errors.get(self.registry.normalize(language_id), {}))

    def get_rule_count(self) -> Dict[str, int]:
        """Count active rule files per already-loaded language."""
        return {lang: len(defs) for lang, defs in sorted(self._cache.items())}

    def clear_cache(self):
        """Clear the compiled query cache. Useful for testing or live reloading."""
        self._cache.clear()
        self._errors.clear()
