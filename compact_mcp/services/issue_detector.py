"""
issue_detector.py: Deterministic Compact pitfall detector

Runs on the scanner output, BEFORE (and independently of) compilation.
Flags patterns the scanner accepts but that either:
  • fail in the real compiler (module-level const, Void, ledger blocks), or
  • misbehave in the proving backend (division, undisclosed witness data).

Every rule matches on the masked source, so nothing inside a comment or a
string literal can fire. Rules are independent; one that raises is logged
and skipped, the others still run.

Usage:
    from compact_mcp.services.issue_detector import get_issue_detector

    issues = get_issue_detector().detect(scan(code))
    # → [PotentialIssue(kind=..., severity=..., message=..., suggestion=..., line=...)]
"""

from __future__ import annotations

import logging
import re
from typing import Iterator

from compact_mcp import config
from compact_mcp.models import IssueKind, IssueSeverity, PotentialIssue
from compact_mcp.services import knowledge
from compact_mcp.services.scanner import CodeBlock, ScanResult
from compact_mcp.utils.compact_source import brace_spans, extract_balanced, in_spans, strip_comments

logger = logging.getLogger("compact_mcp.issue_detector")

ERROR = IssueSeverity.ERROR
WARNING = IssueSeverity.WARNING


# ── Internal helpers ──────────────────────────────────────────────────────────

def _issue(kind: IssueKind, severity: IssueSeverity, message: str, suggestion: str, line: int) -> PotentialIssue:
    return PotentialIssue(kind=kind, severity=severity, message=message, suggestion=suggestion, line=line)


def _bodies(scan: ScanResult, blocks: list[CodeBlock]) -> Iterator[tuple[CodeBlock, str]]:
    """(block, masked body) pairs. Offsets in the body are relative to block.body_start."""
    for block in blocks:
        yield block, scan.masked[block.body_start:block.body_end]


def _line_in(scan: ScanResult, block: CodeBlock, rel: int) -> int:
    return scan.lines.line_of(block.body_start + rel)


def _word(name: str) -> re.Pattern:
    """`name` as a whole identifier, not a member access (`x.name`)."""
    return re.compile(rf"(?<![.\w]){re.escape(name)}\b")


def _assignment(name: str) -> re.Pattern:
    """`name = ...` / `name += ...`, capturing the right-hand side up to ';'."""
    return re.compile(rf"(?<![.\w]){re.escape(name)}\s*[+\-]?=(?![=>])([^;]*)")


def _without_disclosed(text: str) -> str:
    """Blank every `disclose( ... )` call so what it wraps no longer counts as a use."""
    pattern = re.compile(r"\bdisclose\s*\(")
    pos = 0
    while True:
        m = pattern.search(text, pos)
        if not m:
            return text
        block = extract_balanced(text, m.end() - 1)
        if block is None:
            return text
        text = text[:m.start()] + " " * (block.close + 1 - m.start()) + text[block.close + 1:]
        pos = block.close + 1


def _param_name(param: str) -> str:
    return param.split(":", 1)[0].strip()


def _witness_bound(body: str, witness_names: set[str]) -> dict[str, int]:
    """Locals bound directly to a witness call: `const q = getQuotient(...)` → {"q": offset}."""
    bound: dict[str, int] = {}
    for m in re.finditer(r"\bconst\s+(\w+)(?:\s*:\s*[^=;]+)?\s*=\s*(\w+)\s*\(", body):
        if m.group(2) in witness_names:
            bound.setdefault(m.group(1), m.start())
    return bound


# ── Rule implementations ──────────────────────────────────────────────────────

def _check_module_level_const(scan: ScanResult) -> list[PotentialIssue]:
    """`const` is only valid inside a circuit body."""
    issues = []
    spans = brace_spans(scan.masked)
    for m in re.finditer(r"\bconst\s+(\w+)", scan.masked):
        if in_spans(m.start(), spans):
            continue
        name = m.group(1)
        issues.append(_issue(
            IssueKind.MODULE_LEVEL_CONST, ERROR,
            f"Module-level const '{name}' is not supported in Compact",
            f"Use a pure circuit instead: `pure circuit {name}(): <Type> {{ return <value>; }}`",
            scan.lines.line_of(m.start()),
        ))
    return issues


def _check_stdlib_name_collision(scan: ScanResult) -> list[PotentialIssue]:
    """A user circuit named like a builtin shadows it, but only once the library is imported."""
    if not knowledge.stdlib_import_pattern().search(strip_comments(scan.text)):
        return []
    builtins = knowledge.stdlib_builtins()
    return [
        _issue(
            IssueKind.STDLIB_NAME_COLLISION, ERROR,
            f"Circuit '{c.name}' conflicts with the {knowledge.stdlib_module()} builtin '{c.name}'",
            f"Rename the circuit (e.g. 'my{c.name[:1].upper()}{c.name[1:]}') or drop it and use the builtin",
            c.line,
        )
        for c in scan.structure.circuits
        if c.name in builtins
    ]


def _check_sealed_export_conflict(scan: ScanResult) -> list[PotentialIssue]:
    issues = []
    sealed = [l for l in scan.structure.ledger_items if l.is_sealed]
    if not sealed:
        return issues
    exported = [b for b in scan.circuit_blocks if b.is_exported]
    for block, body in _bodies(scan, exported):
        for item in sealed:
            m = _assignment(item.name).search(body)
            if not m:
                continue
            issues.append(_issue(
                IssueKind.SEALED_EXPORT_CONFLICT, ERROR,
                f"Exported circuit '{block.name}' modifies sealed ledger field '{item.name}'",
                f"Sealed fields can only be set once, in the constructor. "
                f"Move the assignment into `constructor(...) {{ {item.name} = disclose(...); }}`",
                _line_in(scan, block, m.start()),
            ))
    return issues


def _check_missing_constructor(scan: ScanResult) -> list[PotentialIssue]:
    sealed = [l for l in scan.structure.ledger_items if l.is_sealed]
    if not sealed or scan.constructors:
        return []
    names = ", ".join(l.name for l in sealed)
    return [_issue(
        IssueKind.MISSING_CONSTRUCTOR, WARNING,
        f"Contract has sealed ledger fields ({names}) but no constructor",
        "Add a constructor that initializes the sealed fields: "
        "`constructor(v: <Type>) { field = disclose(v); }`",
        sealed[0].line,
    )]


def _check_unsupported_division(scan: ScanResult) -> list[PotentialIssue]:
    issues = []
    for block, body in _bodies(scan, scan.circuit_blocks):
        pos = body.find("/")
        if pos == -1:
            continue
        issues.append(_issue(
            IssueKind.UNSUPPORTED_DIVISION, WARNING,
            f"Division operator '/' is not supported inside circuit '{block.name}'",
            "Compute the quotient off-chain with a witness and verify it in the circuit: "
            "`const q = getQuotient(a, b); assert(q * b + r == a, \"bad quotient\");`",
            _line_in(scan, block, pos),
        ))
    return issues


def _check_invalid_counter_access(scan: ScanResult) -> list[PotentialIssue]:
    issues = []
    for item in scan.structure.ledger_items:
        if item.type != "Counter":
            continue
        for m in re.finditer(rf"(?<![.\w]){re.escape(item.name)}\s*\.\s*value\b", scan.masked):
            issues.append(_issue(
                IssueKind.INVALID_COUNTER_ACCESS, ERROR,
                f"Counter '{item.name}' has no .value property",
                f"Read it with `{item.name}.read()` and change it with "
                f"`{item.name}.increment(n)` / `{item.name}.decrement(n)`",
                scan.lines.line_of(m.start()),
            ))
    return issues


def _check_potential_overflow(scan: ScanResult) -> list[PotentialIssue]:
    """
    Heuristic: a local bound to a witness call, then multiplied inside an
    assert (the divide-off-chain-and-verify pattern) with no Field cast.
    No type-width analysis is done, so both misses and false alarms are possible.
    """
    issues = []
    witness_names = {w.name for w in scan.structure.witnesses}
    if not witness_names:
        return issues
    for block, body in _bodies(scan, scan.circuit_blocks):
        bound = _witness_bound(body, witness_names)
        if not bound:
            continue
        for m in re.finditer(r"\bassert\b([^;]*)", body):
            expr = m.group(1)
            if "*" not in expr or re.search(r"\bas\s+Field\b", expr):
                continue
            hit = next((q for q in bound if _word(q).search(expr)), None)
            if hit is None:
                continue
            issues.append(_issue(
                IssueKind.POTENTIAL_OVERFLOW, WARNING,
                f"Witness-provided '{hit}' is multiplied inside an assert in circuit '{block.name}'; "
                f"the product may overflow its Uint width",
                "Cast the operands to Field before multiplying, e.g. "
                f"`assert(({hit} as Field) * (b as Field) == (a as Field), \"...\")`",
                _line_in(scan, block, m.start()),
            ))
            break
    return issues


def _check_undisclosed_witness_conditional(scan: ScanResult) -> list[PotentialIssue]:
    issues = []
    witness_names = {w.name for w in scan.structure.witnesses}
    if not witness_names:
        return issues
    for block, body in _bodies(scan, scan.circuit_blocks):
        tainted = list(witness_names) + list(_witness_bound(body, witness_names))
        for m in re.finditer(r"\bif\s*\(", body):
            cond = extract_balanced(body, m.end() - 1)
            if cond is None:
                continue
            visible = _without_disclosed(cond.body)
            hit = next((name for name in tainted if _word(name).search(visible)), None)
            if hit is None:
                continue
            issues.append(_issue(
                IssueKind.UNDISCLOSED_WITNESS_CONDITIONAL, WARNING,
                f"Witness value '{hit}' is used in a conditional in circuit '{block.name}' without disclose()",
                f"Bind the disclosed value to a local first: "
                f"`const revealed = disclose({hit}); if (revealed ...) {{ ... }}`",
                _line_in(scan, block, m.start()),
            ))
    return issues


def _check_undisclosed_constructor_param(scan: ScanResult) -> list[PotentialIssue]:
    issues = []
    ledger = [l.name for l in scan.structure.ledger_items]
    if not ledger:
        return issues
    for block, body in _bodies(scan, scan.constructors):
        params = [p for p in (_param_name(p) for p in block.params) if p]
        for field in ledger:
            for m in _assignment(field).finditer(body):
                rhs = _without_disclosed(m.group(1))
                param = next((p for p in params if _word(p).search(rhs)), None)
                if param is None:
                    continue
                issues.append(_issue(
                    IssueKind.UNDISCLOSED_CONSTRUCTOR_PARAM, WARNING,
                    f"Constructor parameter '{param}' is assigned to ledger field '{field}' without disclose()",
                    f"Wrap the parameter: `{field} = disclose({param});`",
                    _line_in(scan, block, m.start()),
                ))
    return issues


def _check_deprecated_ledger_block(scan: ScanResult) -> list[PotentialIssue]:
    return [
        _issue(
            IssueKind.DEPRECATED_LEDGER_BLOCK, ERROR,
            "Deprecated `ledger { ... }` block syntax",
            "Declare each field separately: `export ledger counter: Counter;`",
            scan.lines.line_of(m.start()),
        )
        for m in re.finditer(r"\bledger\s*\{", scan.masked)
    ]


def _check_invalid_void_type(scan: ScanResult) -> list[PotentialIssue]:
    return [
        _issue(
            IssueKind.INVALID_VOID_TYPE, ERROR,
            "'Void' is not a Compact type",
            "Use `[]` for circuits that return nothing: `circuit f(): [] { ... }`",
            scan.lines.line_of(m.start()),
        )
        for m in re.finditer(r":\s*Void\b", scan.masked)
    ]


def _check_invalid_pragma_format(scan: ScanResult) -> list[PotentialIssue]:
    m = re.search(r"\bpragma\s+language_version\b[^;]*?(\d+\.\d+\.\d+)", strip_comments(scan.text))
    if not m:
        return []
    return [_issue(
        IssueKind.INVALID_PRAGMA_FORMAT, ERROR,
        f"Pragma uses a patch version ({m.group(1)}); language versions are major.minor",
        f"Use: `{config.RECOMMENDED_PRAGMA}`",
        scan.lines.line_of(m.start()),
    )]


def _check_deprecated_cell_wrapper(scan: ScanResult) -> list[PotentialIssue]:
    return [
        _issue(
            IssueKind.DEPRECATED_CELL_WRAPPER, ERROR,
            "The Cell<T> wrapper is deprecated",
            "Use the type directly: `export ledger value: Field;`",
            scan.lines.line_of(m.start()),
        )
        for m in re.finditer(r"\bCell\s*<", scan.masked)
    ]


def _check_unexported_enum(scan: ScanResult) -> list[PotentialIssue]:
    return [
        _issue(
            IssueKind.UNEXPORTED_ENUM, WARNING,
            f"Enum '{e.name}' is not exported and cannot be used from TypeScript",
            f"Export it: `export enum {e.name} {{ ... }}`",
            e.line,
        )
        for e in scan.structure.enums
        if not e.is_exported
    ]


# ── Main IssueDetector class ──────────────────────────────────────────────────

class IssueDetector:
    """
    Deterministic Compact pitfall detector.

    Runs every rule and returns the full list; never stops at the first error.
    """

    RULES = [
        _check_module_level_const,
        _check_stdlib_name_collision,
        _check_sealed_export_conflict,
        _check_missing_constructor,
        _check_unsupported_division,
        _check_invalid_counter_access,
        _check_potential_overflow,             # heuristic
        _check_undisclosed_witness_conditional,
        _check_undisclosed_constructor_param,
        _check_deprecated_ledger_block,
        _check_invalid_void_type,
        _check_invalid_pragma_format,
        _check_deprecated_cell_wrapper,
        _check_unexported_enum,
    ]

    def detect(self, scan: ScanResult) -> list[PotentialIssue]:
        """Issues ordered by line, then by rule order."""
        issues: list[PotentialIssue] = []
        for rule_fn in self.RULES:
            try:
                issues.extend(rule_fn(scan))
            except Exception as exc:
                logger.warning(f"[IssueDetector] Rule {rule_fn.__name__} raised: {exc}")

        issues.sort(key=lambda i: i.line or 0)
        for i in issues:
            logger.debug(f"[IssueDetector] {i.kind.value} L{i.line}: {i.message}")
        return issues


# ── Module-level singleton ────────────────────────────────────────────────────

_detector_instance: IssueDetector | None = None


def get_issue_detector() -> IssueDetector:
    global _detector_instance
    if _detector_instance is None:
        _detector_instance = IssueDetector()
    return _detector_instance
