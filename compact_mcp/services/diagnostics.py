"""
diagnostics.py: Compact compiler output → structured diagnostics

Compiler output is untrusted text. Everything here degrades gracefully:
unrecognized output becomes a single unlocated diagnostic rather than an error.

Typical compiler failure:
    Exception: /tmp/compact-validate-.../contract.compact line 8 char 1:
      parse error: found keyword "circuit" looking for a statement
"""

import logging
import re
from typing import List, Optional, Tuple

from compact_mcp.models import CommonFix, CompilerDiagnostic, ErrorCategory
from compact_mcp.services import knowledge
from compact_mcp.utils.compact_source import LineIndex

logger = logging.getLogger("compact_mcp.diagnostics")

_ERROR_MARKER = re.compile(r"error:\s*(.+)", re.IGNORECASE)
_WARNING_MARKER = re.compile(r"warning:\s*(.+)", re.IGNORECASE)
# "line 8", "at line 8", "line 8 char 1", "line 8, column 1", "file.compact:8:1"
_LOCATION = re.compile(
    r"\bline\s*(\d+)(?:\s*,?\s*(?:char|col(?:umn)?)\s*(\d+))?|:(\d+):(\d+)",
    re.IGNORECASE,
)
_EXPECTED = re.compile(
    r"expected\s+['\"`]?([^'\"`,]+?)['\"`]?,?\s*(?:found|got)\s+['\"`]?([^'\"`]+)['\"`]?",
    re.IGNORECASE,
)
_RAW_FALLBACK_CHARS = 500


def _locate(region: str) -> Tuple[Optional[int], Optional[int]]:
    m = _LOCATION.search(region)
    if not m:
        return None, None
    line = m.group(1) or m.group(3)
    column = m.group(2) or m.group(4)
    return int(line), int(column) if column else None


def source_context(source_lines: List[str], line: Optional[int]) -> Optional[str]:
    """The offending line with up to one line either side, as "<n>: <text>"."""
    if not line or line < 1 or line > len(source_lines):
        return None
    start = max(0, line - 2)
    end = min(len(source_lines), line + 1)
    return "\n".join(f"{i + 1}: {source_lines[i]}" for i in range(start, end))


def _is_header(line: str) -> bool:
    # Compact prints "<file> line N char M:" on its own line ahead of the message.
    return line.rstrip().endswith(":")


def _marker_location(lines: List[str], rows: List[int], k: int) -> Tuple[Optional[int], Optional[int]]:
    """
    Location for the k-th marker, searched in order:
    the marker's own line, the lines after it up to the next marker (minus the
    next marker's header line), then a header line directly above it.
    """
    row = rows[k]
    has_next = k + 1 < len(rows)
    tail = lines[row + 1:rows[k + 1] if has_next else len(lines)]
    if has_next and tail and _is_header(tail[-1]):
        tail = tail[:-1]

    regions = [lines[row], "\n".join(tail)]
    above = row - 1
    if above >= 0 and (k == 0 or above > rows[k - 1]) and _is_header(lines[above]):
        regions.append(lines[above])

    for region in regions:
        line, column = _locate(region)
        if line is not None:
            return line, column
    return None, None


def parse_diagnostics(output: str, source: str) -> Tuple[List[CompilerDiagnostic], List[str]]:
    """
    Split raw compiler output on error markers into line-addressed diagnostics.

    Each marker owns its own line and the lines after it; a
    "<file> line N char M:" header directly above it is used when neither
    carries a location.

    Returns:
        (errors, suggestions)
    """
    errors: List[CompilerDiagnostic] = []
    suggestions: List[str] = []
    source_lines = source.split("\n")

    markers = list(_ERROR_MARKER.finditer(output))
    output_lines = output.split("\n")
    index = LineIndex(output)
    rows = [index.line_of(m.start()) - 1 for m in markers]
    for i, m in enumerate(markers):
        message = m.group(1).strip()

        line, column = _marker_location(output_lines, rows, i)
        errors.append(CompilerDiagnostic(
            line=line,
            column=column,
            message=message,
            severity="error",
            source_context=source_context(source_lines, line),
        ))

        expected = _EXPECTED.search(message)
        if expected:
            suggestions.append(
                f'Expected "{expected.group(1).strip()}" but found "{expected.group(2).strip()}". Check your syntax.'
            )

    if not errors and output.strip():
        errors.append(CompilerDiagnostic(message=output.strip()[:_RAW_FALLBACK_CHARS], severity="error"))

    for hint in knowledge.output_hints():
        if hint["contains"] in output:
            suggestions.append(hint["suggestion"])

    logger.debug(f"[Diagnostics] {len(errors)} error(s), {len(suggestions)} suggestion(s)")
    return errors, suggestions


def parse_warnings(output: str) -> List[str]:
    return [m.group(1).strip() for m in _WARNING_MARKER.finditer(output)]


# ─── Categorization ─────────────────────────────────────────────────

_CATEGORIES = [
    (
        lambda o: "parse error" in o or "looking for" in o,
        ErrorCategory(
            category="syntax_error",
            title="Syntax Error",
            explanation="The contract has invalid syntax that the parser cannot understand",
            solution="Check for missing semicolons, brackets, or typos near the indicated line",
        ),
    ),
    (
        lambda o: "type" in o and ("mismatch" in o or "expected" in o),
        ErrorCategory(
            category="type_error",
            title="Type Error",
            explanation="There is a type mismatch in your contract",
            solution="Ensure variable types match expected types in operations",
        ),
    ),
    (
        lambda o: "undefined" in o or "not found" in o or "unknown" in o,
        ErrorCategory(
            category="reference_error",
            title="Reference Error",
            explanation="The contract references something that doesn't exist",
            solution="Check that all variables, types, and functions are properly defined or imported",
        ),
    ),
    (
        lambda o: "import" in o or "include" in o or "module" in o,
        ErrorCategory(
            category="import_error",
            title="Import Error",
            explanation="There is a problem with an import or include statement",
            solution="Verify import paths and ensure required libraries are available",
        ),
    ),
    (
        lambda o: "circuit" in o or "witness" in o or "ledger" in o,
        ErrorCategory(
            category="structure_error",
            title="Contract Structure Error",
            explanation="There is an issue with the contract structure (circuits, witnesses, or ledger)",
            solution="Review the contract structure against Compact documentation",
        ),
    ),
]

_UNKNOWN = ErrorCategory(
    category="unknown_error",
    title="Compilation Failed",
    explanation="The compiler encountered an error",
    solution="Review the error message and check Compact documentation",
)


def categorize(output: str) -> ErrorCategory:
    """Classify the whole raw output; the first matching category wins."""
    lowered = output.lower()
    for matches, category in _CATEGORIES:
        if matches(lowered):
            return category.model_copy()
    return _UNKNOWN.model_copy()


def common_fixes(errors: List[CompilerDiagnostic]) -> List[CommonFix]:
    messages = " ".join(e.message.lower() for e in errors)
    return [
        CommonFix(pattern=entry["pattern"], fix=entry["fix"])
        for entry in knowledge.common_fixes()
        if any(k in messages for k in entry["keywords"])
    ]
