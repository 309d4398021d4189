#!/usr/bin/env python3
"""
Query Validator for Hookscan

Compiles every bundled rule file against its grammar and checks capture
naming conventions. Used as a CI gate:

    hookscan-validate            # or: python scanner/query_validator.py

Exit codes:
  0 = every rule file compiled (capture-name warnings do not fail the run)
  1 = at least one rule file or grammar failed to load
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from grammar_registry import GrammarRegistry
from query_library import QueryLibrary
from scan_types import SEVERITY_PREFIXES, GrammarLoadError, QuerySyntaxError
from scanner_config import DEFAULT_INTERMEDIATE_CAPTURES, load_config


def validate_capture_names(
    names: Iterable[str],
    intermediates: Sequence[str] = DEFAULT_INTERMEDIATE_CAPTURES,
    file_id: str = "",
) -> List[str]:
    """
    Check capture names against the naming convention.

    A name is accepted if it starts with a severity prefix (danger., warn.,
    taint.) or exactly matches an allow-listed intermediate capture.

    Args:
        names: Capture names from one compiled rule file
        intermediates: Allow-listed intermediate capture names
        file_id: Rule file name, used in warning text

    Returns:
        One warning string per unaccepted name (empty list if all are fine)

    Examples:
        >>> validate_capture_names(["danger.exec", "cmd"])
        []
        >>> validate_capture_names(["oops"], file_id="x.scm")
        ['Unusual capture name in x.scm: @oops']
    """
    allowed = set(intermediates)
    warnings = []
    for name in names:
        if name.startswith(SEVERITY_PREFIXES) or name in allowed:
            continue
        where = f" in {file_id}" if file_id else ""
        warnings.append(f"Unusual capture name{where}: @{name}")
    return warnings


@dataclass
class FileReport:
    file_id: str
    capture_count: int = 0
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class LanguageReport:
    language_id: str
    files: List[FileReport] = field(default_factory=list)
    grammar_error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def compiled(self) -> int:
        return sum(1 for f in self.files if f.error is None)

    @property
    def errors(self) -> int:
        return sum(1 for f in self.files if f.error is not None) + (1 if self.grammar_error else 0)

    @property
    def warning_count(self) -> int:
        return len(self.warnings) + sum(len(f.warnings) for f in self.files)


@dataclass
class ValidationReport:
    languages: Dict[str, LanguageReport] = field(default_factory=dict)

    @property
    def total_files(self) -> int:
        return sum(len(r.files) for r in self.languages.values())

    @property
    def total_compiled(self) -> int:
        return sum(r.compiled for r in self.languages.values())

    @property
    def total_errors(self) -> int:
        return sum(r.errors for r in self.languages.values())

    @property
    def total_warnings(self) -> int:
        return sum(r.warning_count for r in self.languages.values())

    @property
    def ok(self) -> bool:
        return self.total_errors == 0

    def format_text(self) -> str:
        lines = ["🔍 Tree-sitter Query Validator", "================================", ""]
        for lang, report in self.languages.items():
            lines.append(f"📝 Validating {lang.upper()} queries...")
            if report.grammar_error:
                lines.append(f"❌ Failed to load {lang} grammar: {report.grammar_error}")
                lines.append("")
                continue
            for warning in report.warnings:
                lines.append(f"⚠️  {warning}")
            for f in report.files:
                if f.error is None:
                    lines.append(f"  ✅ {f.file_id}: {f.capture_count} captures")
                else:
                    lines.append(f"  ❌ {f.file_id}: {f.error}")
                for warning in f.warnings:
                    lines.append(f"  ⚠️  {warning}")
            if report.errors == 0:
                lines.append(f"✅ {lang}: {report.compiled} queries compiled successfully")
            else:
                lines.append(f"❌ {lang}: {report.errors}/{len(report.files)} queries failed")
            lines.append("")

        lines.append("📊 Summary:")
        lines.append("===========")
        lines.append(f"Total queries processed: {self.total_files}")
        lines.append(f"✅ Successful: {self.total_compiled}")
        lines.append(f"❌ Errors: {self.total_errors}")
        lines.append(f"⚠️  Warnings: {self.total_warnings}")
        return "\n".join(lines)


def validate_language(
    library: QueryLibrary,
    language_id: str,
    intermediates: Sequence[str] = DEFAULT_INTERMEDIATE_CAPTURES,
) -> LanguageReport:
    """Compile every rule file of one language, bypassing the runtime cache."""
    lang = library.registry.normalize(language_id)
    report = LanguageReport(language_id=lang)

    try:
        library.registry.load_language(lang)
    except GrammarLoadError as e:
        report.grammar_error = e.reason or str(e)
        return report

    paths = library.rule_files(lang)
    if not paths:
        report.warnings.append(f"No queries found for {lang}")
        return report

    for path in paths:
        file_report = FileReport(file_id=path.name)
        try:
            source = path.read_text(encoding='utf-8')
            definition = library.compile(lang, path.name, source)
        except QuerySyntaxError as e:
            file_report.error = e.reason
        except (OSError, UnicodeDecodeError) as e:
            file_report.error = str(e)
        else:
            file_report.capture_count = len(definition.capture_names)
            file_report.warnings = validate_capture_names(definition.capture_names, intermediates, path.name)
        report.files.append(file_report)

    return report


def validate_library(
    library: QueryLibrary,
    languages: Optional[Iterable[str]] = None,
    intermediates: Sequence[str] = DEFAULT_INTERMEDIATE_CAPTURES,
) -> ValidationReport:
    """
    Validate every bundled rule file.

    Args:
        library: Query library pointing at the rules directory
        languages: Languages to check (default: all supported)
        intermediates: Allow-listed intermediate capture names

    Returns:
        ValidationReport with per-language results
    """
    if languages is None:
        languages = library.registry.supported_languages
    report = ValidationReport()
    for lang in languages:
        lang_report = validate_language(library, lang, intermediates)
        report.languages[lang_report.language_id] = lang_report
    return report


def main(argv: Optional[List[str]] = None) -> int:
    """CI entry point. Returns the process exit code."""
    if argv is None:
        argv = sys.argv[1:]

    config = load_config()
    queries_dir = Path(argv[0]) if argv else config.queries_dir

    registry = GrammarRegistry(aliases=config.language_aliases)
    library = QueryLibrary(registry, queries_dir=queries_dir)
    report = validate_library(library, intermediates=config.intermediate_captures)

    print(report.format_text())
    if not report.ok:
        print(f"\n❌ Validation failed with {report.total_errors} error(s)")
        return 1
    print("\n🎉 All queries validated successfully!")
    return 0


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
