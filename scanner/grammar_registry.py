#!/usr/bin/env python3
"""
Grammar Registry for Tree-sitter

Loads one tree-sitter Language per supported language id, lazily and at most
once, and hands out fresh parsers for it.
"""

import logging
import threading
from typing import Callable, Dict, List, Mapping, Optional

from tree_sitter import Parser
from tree_sitter_language_pack import get_language

from scan_types import Grammar, GrammarLoadError, UnsupportedLanguageError

logger = logging.getLogger(__name__)

SUPPORTED_LANGUAGES = ("bash", "javascript", "python", "typescript")


class GrammarRegistry:
    """
    Registry for hook language grammars.

    Supports:
    - Python
    - Bash
    - JavaScript
    - TypeScript

    Owned by the process entry point and passed to the scan engine. Entries
    are populated on first use and never replaced; a failed load is not
    cached, so a later call retries.
    """

    def __init__(
        self,
        aliases: Optional[Mapping[str, str]] = None,
        loader: Optional[Callable[[str], object]] = None,
    ):
        """
        Args:
            aliases: Extra language id aliases (e.g. {"sh": "bash"})
            loader: Callable returning a tree_sitter.Language for a canonical
                    id. Defaults to tree_sitter_language_pack.get_language.
        """
        self._aliases: Dict[str, str] = {k.lower(): v.lower() for k, v in (aliases or {}).items()}
        self._loader = loader or get_language
        self._grammars: Dict[str, Grammar] = {}
        self._locks: Dict[str, threading.Lock] = {lang: threading.Lock() for lang in SUPPORTED_LANGUAGES}

    def normalize(self, language_id: str) -> str:
        """
        Resolve aliases to a canonical language id.

        Raises:
            UnsupportedLanguageError: If the id is not a supported language
        """
        key = (language_id or "").strip().lower()
        key = self._aliases.get(key, key)
        if key not in SUPPORTED_LANGUAGES:
            raise UnsupportedLanguageError(language_id)
        return key

    def supports_language(self, language_id: str) -> bool:
        try:
            self.normalize(language_id)
        except UnsupportedLanguageError:
            return False
        return True

    def load_language(self, language_id: str) -> Grammar:
        """
        Get the grammar for a language, loading it on first use.

        Raises:
            GrammarLoadError: If the grammar is missing or corrupt
        """
        lang = self.normalize(language_id)

        grammar = self._grammars.get(lang)
        if grammar is not None:
            return grammar

        with self._locks[lang]:
            grammar = self._grammars.get(lang)
            if grammar is not None:
                return grammar

            try:
                language = self._loader(lang)
            except Exception as e:
                logger.warning(f"Failed to load {lang} grammar: {e}")
                raise GrammarLoadError(lang, str(e)) from e
            if language is None:
                raise GrammarLoadError(lang, "loader returned no grammar")

            grammar = Grammar(language_id=lang, language=language)
            self._grammars[lang] = grammar
            logger.debug(f"Loaded {lang} grammar")
            return grammar

    def new_parser(self, language_id: str) -> Parser:
        """Create a parser for one scan. Parsers are not shared between threads."""
        grammar = self.load_language(language_id)
        return Parser(grammar.language)

    def loaded_languages(self) -> List[str]:
        return sorted(self._grammars)

    @property
    def supported_languages(self) -> List[str]:
        return list(SUPPORTED_LANGUAGES)
