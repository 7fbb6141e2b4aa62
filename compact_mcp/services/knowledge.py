"""
Language knowledge loader.

Serves the Compact facts the checks depend on (standard library builtins and
types, example snippets, compiler-output hints, common fixes) from the YAML
files in compact_mcp/knowledge/.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List

import yaml

logger = logging.getLogger("compact_mcp.knowledge")

KNOWLEDGE_DIR = Path(__file__).resolve().parent.parent / "knowledge"

# YAML file cache: filename -> parsed dict
_yaml_cache: Dict[str, Dict[str, Any]] = {}


def _load_yaml(filename: str) -> Dict[str, Any]:
    """Load and cache a YAML file from compact_mcp/knowledge/."""
    if filename in _yaml_cache:
        return _yaml_cache[filename]
    try:
        with open(KNOWLEDGE_DIR / filename, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"[KB] Failed to load {filename}: {e}")
        raise
    _yaml_cache[filename] = data
    logger.debug(f"[KB] Loaded {filename}")
    return data


def language() -> Dict[str, Any]:
    return _load_yaml("compact_language.yaml")


def stdlib_module() -> str:
    return language()["stdlib"]["module"]


def stdlib_builtins() -> frozenset:
    return frozenset(language()["stdlib"]["builtins"])


def stdlib_type_names() -> List[str]:
    return [t["name"] for t in language()["stdlib"]["types"]]


def stdlib_type_pattern() -> re.Pattern:
    """
    Word-bounded, case-sensitive pattern for standard library type names.
    Generic-only types (Map, Set, ...) must be followed by '<' to count, so a
    plain identifier like `Set` in prose or a `CounterHelper` struct never matches.
    """
    alternatives = []
    for t in language()["stdlib"]["types"]:
        name = re.escape(t["name"])
        alternatives.append(rf"\b{name}\s*<" if t.get("generic") else rf"\b{name}\b")
    return re.compile("|".join(alternatives))


def stdlib_import_pattern() -> re.Pattern:
    aliases = "|".join(re.escape(a) for a in language()["stdlib"]["include_aliases"])
    return re.compile(rf'\bimport\s+{re.escape(stdlib_module())}\b|\binclude\s+"(?:{aliases})"')


def example(name: str) -> str:
    return language()["examples"][name]


def output_hints() -> List[Dict[str, str]]:
    return language()["output_hints"]


def common_fixes() -> List[Dict[str, Any]]:
    return language()["common_fixes"]
