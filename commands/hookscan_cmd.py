#!/usr/bin/env python3
"""
Hookscan Command Handler

Commands:
  hookscan scan <source> [--show-safe] [--details] [--json]
  hookscan list <source> [--type EVENT] [--risk TIER]
  hookscan view <source> <hook name>
  hookscan validate [queries dir]
  hookscan help

<source> is a stack JSON file ({"hooks": [...], "settings": {...}}) or a
directory of hook scripts (e.g. .claude/hooks).

Run from a checkout (not installed as a console script):
  python commands/hookscan_cmd.py scan .claude/hooks

Exit codes:
  0 = Success
  1 = Dangerous hook found (scan), hook not found (view), bad input,
      or rule validation failure (validate)
"""

import io
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

sys.path.insert(0, str(Path(__file__).parent.parent / "scanner"))

from grammar_registry import GrammarRegistry
from query_library import QueryLibrary
from query_validator import main as validate_main
from risk_scoring import format_risk_display, get_risk_description, risk_emoji, summarize_batch
from scan_engine import ScanEngine, iter_settings_hooks
from scan_types import HookDescriptor, HookReport, RiskTier
from scanner_config import load_config

# Fix Windows console encoding for Unicode output
if sys.platform == "win32":
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

VERSION = "0.1.0"

HOOK_EXTENSIONS = {
    '.py': 'python',
    '.sh': 'bash',
    '.bash': 'bash',
    '.js': 'javascript',
    '.mjs': 'javascript',
    '.cjs': 'javascript',
    '.ts': 'typescript',
}


class InputError(Exception):
    """Bad command-line input or unreadable hook source."""


# === HOOK LOADING ===

def language_for_filename(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    return HOOK_EXTENSIONS.get(Path(filename).suffix.lower())


def infer_hook_type(name: str) -> str:
    """Guess the lifecycle event from a hook's file name."""
    lower = name.lower()
    if 'post-tool' in lower or 'posttool' in lower:
        return 'PostToolUse'
    if 'pre-tool' in lower or 'pretool' in lower:
        return 'PreToolUse'
    if 'session-start' in lower or 'sessionstart' in lower:
        return 'SessionStart'
    if 'session-end' in lower or 'sessionend' in lower:
        return 'SessionEnd'
    if 'user-prompt' in lower or 'prompt' in lower:
        return 'UserPromptSubmit'
    if 'notification' in lower:
        return 'Notification'
    if 'subagent-stop' in lower or 'subagentstop' in lower:
        return 'SubagentStop'
    if 'pre-compact' in lower or 'precompact' in lower:
        return 'PreCompact'
    if 'stop' in lower:
        return 'Stop'
    return 'PreToolUse'


def hooks_from_stack(data: dict) -> List[HookDescriptor]:
    """
    Build hook descriptors from stack JSON.

    File hooks come from data["hooks"]; inline hooks from
    data["settings"]["hooks"]. Hooks whose language cannot be determined
    keep an empty language id and are reported as unscannable.
    """
    hooks = []
    for entry in data.get('hooks') or []:
        if not isinstance(entry, dict) or not isinstance(entry.get('content'), str):
            continue
        name = str(entry.get('name', ''))
        file_path = entry.get('filePath') or entry.get('file_path')
        language = (
            entry.get('language')
            or language_for_filename(file_path)
            or language_for_filename(name)
            or ''
        )
        hooks.append(HookDescriptor(
            name=name,
            event=str(entry.get('type') or infer_hook_type(name)),
            source=entry['content'],
            language=language,
            description=entry.get('description'),
            file_path=file_path,
        ))

    settings = data.get('settings')
    if isinstance(settings, dict):
        hooks.extend(iter_settings_hooks(settings))
    return hooks


def hooks_from_directory(directory: Path) -> List[HookDescriptor]:
    """
    Build hook descriptors from a directory of hook scripts.

    A file that cannot be read is skipped with a warning; invalid UTF-8 is
    decoded with replacement characters and still scanned.
    """
    hooks = []
    for path in sorted(directory.iterdir()):
        language = language_for_filename(path.name)
        if not path.is_file() or language is None:
            continue
        try:
            raw = path.read_bytes()
        except OSError as e:
            print(f"⚠️  Skipping unreadable hook {path}: {e}", file=sys.stderr)
            continue
        try:
            content = raw.decode('utf-8')
        except UnicodeDecodeError:
            print(f"⚠️  Hook {path} is not valid UTF-8, scanning with replacement characters", file=sys.stderr)
            content = raw.decode('utf-8', errors='replace')
        hooks.append(HookDescriptor(
            name=path.stem,
            event=infer_hook_type(path.stem),
            source=content,
            language=language,
            file_path=str(path),
        ))
    return hooks


def load_hooks(source: str) -> List[HookDescriptor]:
    path = Path(source)
    if path.is_dir():
        return hooks_from_directory(path)
    if not path.exists():
        raise InputError(f"Stack file not found: {source}")
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, json.JSONDecodeError) as e:
        raise InputError(f"Cannot read stack file {source}: {e}") from e
    if not isinstance(data, dict):
        raise InputError(f"Stack file {source} is not a JSON object")
    return hooks_from_stack(data)


def build_engine() -> ScanEngine:
    try:
        config = load_config()
    except ValueError as e:
        raise InputError(f"Invalid configuration: {e}") from e
    registry = GrammarRegistry(aliases=config.language_aliases)
    library = QueryLibrary(registry, queries_dir=config.queries_dir)
    return ScanEngine(registry, library, weights=config.severity_weights, max_workers=config.max_workers)


# === DISPLAY ===

def generate_safety_report(reports: List[HookReport], details: bool = False) -> str:
    """Format per-hook results as a text report."""
    lines = []
    for report in reports:
        hook = report.hook
        if report.error:
            lines.append(f"  {risk_emoji(None)} {hook.name} ({hook.event}) not scanned: {report.error}")
            continue
        lines.append(f"  {risk_emoji(report.tier)} {hook.name} ({hook.event}) risk: {report.score}")
        for rule_id in report.rule_ids:
            lines.append(f"    • {rule_id}")
        if hook.description:
            lines.append(f"    Description: {hook.description}")
        if details:
            lines.append(f"    Risk Level: {format_risk_display(report.score, report.tier)}")
            lines.append(f"    {get_risk_description(report.tier)}")
            capabilities = ", ".join(c.value for c in report.capabilities) or "none"
            lines.append(f"    Capabilities: {capabilities}")
            for finding in report.findings:
                lines.append(f"      line {finding.line}: [{finding.severity.value}] {finding.snippet}")
    return "\n".join(lines)


def _option_value(args: List[str], flag: str) -> Optional[str]:
    if flag in args:
        i = args.index(flag)
        if i + 1 < len(args):
            return args[i + 1]
        raise InputError(f"Missing value for {flag}")
    return None


def _positional(args: List[str]) -> List[str]:
    result = []
    skip = False
    for arg in args:
        if skip:
            skip = False
            continue
        if arg in ('--type', '--risk'):
            skip = True
            continue
        if arg.startswith('--'):
            continue
        result.append(arg)
    return result


# === COMMANDS ===

def cmd_scan(args: List[str]) -> int:
    positional = _positional(args)
    source = positional[0] if positional else '.claude/hooks'
    hooks = load_hooks(source)

    if not hooks:
        print("No hooks found to scan")
        return 0

    engine = build_engine()
    reports = engine.scan_batch(hooks)
    summary = summarize_batch(reports)

    if '--json' in args:
        print(json.dumps({
            'hooks': [r.to_dict() for r in reports],
            'summary': {
                'total': summary.total,
                'tiers': summary.tiers,
                'errors': summary.errors,
                'worst_tier': summary.worst_tier.value if summary.worst_tier else None,
            },
        }, indent=2, ensure_ascii=False))
        return 1 if summary.worst_tier == RiskTier.DANGEROUS else 0

    print(f"🔍 Scanning {len(hooks)} hooks for security issues...")
    to_show = reports if '--show-safe' in args else [r for r in reports if r.tier != RiskTier.SAFE]

    if not to_show:
        print("✅ All hooks are safe")
    else:
        print("\n📊 Scan Results:")
        print(generate_safety_report(to_show, details='--details' in args))

    print()
    print(f"  Safe: {summary.tiers['safe']}  Warning: {summary.tiers['warning']}  "
          f"Dangerous: {summary.tiers['dangerous']}  Not scanned: {summary.errors}")
    return 1 if summary.worst_tier == RiskTier.DANGEROUS else 0


def cmd_list(args: List[str]) -> int:
    positional = _positional(args)
    source = positional[0] if positional else '.claude/hooks'
    hook_type = _option_value(args, '--type')
    risk = _option_value(args, '--risk')

    hooks = load_hooks(source)
    if not hooks:
        print("No hooks found")
        return 0

    reports = build_engine().scan_batch(hooks)
    if hook_type:
        reports = [r for r in reports if r.hook.event == hook_type]
    if risk:
        reports = [r for r in reports if r.tier is not None and r.tier.value == risk.lower()]

    if not reports:
        print("No hooks match the specified filters")
        return 0

    print(f"📋 Found {len(reports)} hooks:")
    for report in reports:
        tier = report.tier.value if report.tier else "not scanned"
        print(f"  • {report.hook.name} ({report.hook.event}) {risk_emoji(report.tier)} {tier}")
        if report.hook.description:
            print(f"    {report.hook.description}")
        if report.hook.file_path:
            print(f"    📁 {report.hook.file_path}")
    return 0


def cmd_view(args: List[str]) -> int:
    positional = _positional(args)
    if len(positional) < 2:
        print("Usage: hookscan view <source> <hook name>")
        return 1
    source, hook_name = positional[0], positional[1]

    hooks = [h for h in load_hooks(source) if h.name == hook_name]
    if not hooks:
        print(f"❌ Hook \"{hook_name}\" not found", file=sys.stderr)
        return 1
    hook = hooks[0]

    print(f"\n📋 Hook: {hook.name}")
    print(f"Type: {hook.event}")
    print(f"Language: {hook.language or 'unknown'}")
    if hook.description:
        print(f"Description: {hook.description}")
    print("\n📁 Content:")
    print(hook.source)

    report = build_engine().scan_hook(hook)
    print("\n🔍 Safety Analysis:")
    print(generate_safety_report([report], details=True))
    return 0


def cmd_validate(args: List[str]) -> int:
    try:
        return validate_main(_positional(args))
    except ValueError as e:
        raise InputError(f"Invalid configuration: {e}") from e


def cmd_help(args: Optional[List[str]] = None) -> int:
    print(f"""
Hookscan v{VERSION}
Static safety scanner for shared assistant hooks

Commands:
  hookscan scan <source> [--show-safe] [--details] [--json]
  hookscan list <source> [--type EVENT] [--risk safe|warning|dangerous]
  hookscan view <source> <hook name>
  hookscan validate [queries dir]
  hookscan help

<source> is a stack JSON file or a directory of hook scripts
(default: .claude/hooks).

Tiers:
  ✅ safe       score 0-29
  ⚠️  warning    score 30-69
  🔴 dangerous  score 70-100

Hook code is never executed. Results are a best-effort lint.
""")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    if not argv:
        return cmd_help()

    subcommand = argv[0].lower()
    commands = {
        "scan": cmd_scan,
        "list": cmd_list,
        "ls": cmd_list,
        "view": cmd_view,
        "show": cmd_view,
        "validate": cmd_validate,
        "help": cmd_help,
        "-h": cmd_help,
        "--help": cmd_help,
    }

    handler = commands.get(subcommand)
    if handler is None:
        print(f"Unknown command: {subcommand}")
        print("Use 'hookscan help' for available commands.")
        return 1

    try:
        return handler(argv[1:])
    except InputError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
