#!/usr/bin/env python3
"""
Configuration loader for Hookscan.

Reads config/scanner.yaml (or the file named by HOOKSCAN_CONFIG) with
caching. A missing or unreadable file falls back to built-in defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from risk_scoring import DEFAULT_SEVERITY_WEIGHTS, validate_weights
from scan_types import Severity

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "HOOKSCAN_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "scanner.yaml"
DEFAULT_QUERIES_DIR = Path(__file__).parent.parent / "queries"

# Captures used only to narrow a match. Never surfaced as findings.
DEFAULT_INTERMEDIATE_CAPTURES: Tuple[str, ...] = (
    'mod', 'func', 'method', 'name', 'cmd', 'arg', 'flag', 'target',
    'url_var', 'url_template', 'constructor', 'require_func', 'module_name',
    'http_lib', 'cp_alias', 'exp', 'subst', 'obj', 'attr', 'key_var', 'key',
    'module_var', 'module_str', 'path_var', 'mode', 'path', 'dest', 'ctor',
    'cmd1', 'cmd2', 'sudo', 'dl', 'kwarg', 'cmd_var', 'cmd_str', 'url_expr',
    'http', 'client', 'conn_type', 'pkg', 'info.fs',
)

DEFAULT_LANGUAGE_ALIASES: Dict[str, str] = {
    'py': 'python',
    'python3': 'python',
    'sh': 'bash',
    'shell': 'bash',
    'zsh': 'bash',
    'js': 'javascript',
    'node': 'javascript',
    'ts': 'typescript',
}


@dataclass
class ScannerConfig:
    severity_weights: Dict[Severity, int] = field(default_factory=lambda: dict(DEFAULT_SEVERITY_WEIGHTS))
    intermediate_captures: Tuple[str, ...] = DEFAULT_INTERMEDIATE_CAPTURES
    language_aliases: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_LANGUAGE_ALIASES))
    queries_dir: Path = DEFAULT_QUERIES_DIR
    max_workers: Optional[int] = None


def _parse_weights(raw: dict) -> Dict[Severity, int]:
    weights = dict(DEFAULT_SEVERITY_WEIGHTS)
    for key, value in raw.items():
        try:
            severity = Severity(str(key).lower())
        except ValueError:
            raise ValueError(f"Unknown severity in weight table: {key!r}") from None
        weights[severity] = value
    validate_weights(weights)
    return weights


def config_from_dict(data: dict, base_dir: Optional[Path] = None) -> ScannerConfig:
    """
    Build a ScannerConfig from a parsed YAML mapping.

    Args:
        data: Mapping with any of severity_weights, intermediate_captures,
              language_aliases, queries_dir, max_workers.
        base_dir: Directory that a relative queries_dir is resolved against.

    Raises:
        ValueError: If the weight table breaks the scoring policy.
    """
    config = ScannerConfig()

    if data.get('severity_weights'):
        config.severity_weights = _parse_weights(data['severity_weights'])

    if data.get('intermediate_captures'):
        config.intermediate_captures = tuple(str(c) for c in data['intermediate_captures'])

    if data.get('language_aliases'):
        aliases = dict(DEFAULT_LANGUAGE_ALIASES)
        aliases.update({str(k).lower(): str(v).lower() for k, v in data['language_aliases'].items()})
        config.language_aliases = aliases

    if data.get('queries_dir'):
        queries_dir = Path(data['queries_dir'])
        if not queries_dir.is_absolute() and base_dir is not None:
            queries_dir = base_dir / queries_dir
        config.queries_dir = queries_dir

    if data.get('max_workers') is not None:
        config.max_workers = int(data['max_workers'])

    return config


_cache: Dict[Path, ScannerConfig] = {}


def load_config(path: Optional[Path] = None) -> ScannerConfig:
    """
    Load scanner configuration.

    Args:
        path: YAML file to read. Defaults to $HOOKSCAN_CONFIG, then
              config/scanner.yaml next to the scanner package.

    Returns:
        ScannerConfig (defaults if the file is missing or unreadable).
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    path = Path(path)

    if path in _cache:
        return _cache[path]

    if not path.exists():
        logger.debug("No config at %s, using defaults", path)
        return ScannerConfig()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to load %s: %s", path, e)
        return ScannerConfig()

    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top level is not a mapping", path)
        return ScannerConfig()

    config = config_from_dict(data, base_dir=path.parent)
    _cache[path] = config
    return config


def clear_cache():
    """Clear the config cache. Useful for testing."""
    _cache.clear()


__all__ = [
    'CONFIG_ENV_VAR',
    'DEFAULT_CONFIG_PATH',
    'DEFAULT_QUERIES_DIR',
    'DEFAULT_INTERMEDIATE_CAPTURES',
    'DEFAULT_LANGUAGE_ALIASES',
    'ScannerConfig',
    'config_from_dict',
    'load_config',
    'clear_cache',
]
