"""
scanner.py: Compact LexicalScanner

Turns raw Compact source into declarations without a grammar:
pragma version, imports, circuits, witnesses, ledger items, type aliases,
structs and enums, plus the circuit / constructor bodies the issue rules need.

All pattern matching runs on a masked copy of the source (comments and string
contents blanked, offsets preserved), so commented-out code never produces a
declaration and every reported line points at the first character of the
matched construct. Payload text (types, parameters) is sliced from the
original source.

Usage:
    from compact_mcp.services.scanner import scan

    result = scan(code)
    result.structure.circuits   # → [Circuit(name=..., params=[...], line=...)]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from compact_mcp.models import (
    Circuit,
    ContractExports,
    ContractStats,
    ContractStructure,
    EnumDef,
    LedgerItem,
    Struct,
    TypeAlias,
    Witness,
)
from compact_mcp.utils.compact_source import (
    LineIndex,
    extract_balanced,
    mask_source,
    split_top_level,
    strip_comments,
)

logger = logging.getLogger("compact_mcp.scanner")


# ── Patterns ──────────────────────────────────────────────────────────────────

# >= and <= are tried before > and < through the optional '='.
_PRAGMA = re.compile(r"\bpragma\s+language_version\s*(?:>=?|<=?|==|~)?\s*([\d.]+)")
_IMPORT = re.compile(r'\bimport\s+(\w+)|\binclude\s+"([^"]+)"')

_CIRCUIT = re.compile(r"\b(?:(export)\s+)?(?:(pure)\s+)?circuit\s+(\w+)\s*(?:<[^<>(]*>\s*)?\(")
_WITNESS = re.compile(r"\b(?:(export)\s+)?witness\s+(\w+)\s*(?:<[^<>(:]*>\s*)?")
_LEDGER = re.compile(r"\b(?:(export)\s+)?(?:(sealed)\s+)?ledger\s+(\w+)\s*:\s*([^;]+)")
_TYPE_ALIAS = re.compile(r"\b(?:(export)\s+)?type\s+(\w+)\s*(?:<[^=;]*>\s*)?=\s*([^;]+)")
_STRUCT = re.compile(r"\b(?:(export)\s+)?struct\s+(\w+)\s*(?:<[^{;]*>\s*)?\{")
_ENUM = re.compile(r"\b(?:(export)\s+)?enum\s+(\w+)\s*\{")
_CONSTRUCTOR = re.compile(r"\bconstructor\s*\(")

_RETURN_TYPE = re.compile(r"\s*:\s*([^{\n;]+)")
_WITNESS_TYPE = re.compile(r"\s*:\s*([^;]+)")
_BODY_OR_END = re.compile(r"[{;]")


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CodeBlock:
    """A circuit or constructor with its body offsets into the source."""
    kind: str  # "circuit" | "constructor"
    name: str
    params: list[str]
    is_exported: bool
    line: int
    body_start: int  # first character after '{'
    body_end: int    # offset of the closing '}'


@dataclass
class ScanResult:
    text: str
    masked: str
    lines: LineIndex
    language_version: Optional[str]
    imports: list[str]
    structure: ContractStructure
    circuit_blocks: list[CodeBlock] = field(default_factory=list)
    constructors: list[CodeBlock] = field(default_factory=list)

    @property
    def exports(self) -> ContractExports:
        s = self.structure
        return ContractExports(
            circuits=[c.name for c in s.circuits if c.is_exported],
            witnesses=[w.name for w in s.witnesses if w.is_exported],
            ledger=[l.name for l in s.ledger_items if l.is_exported],
        )

    @property
    def stats(self) -> ContractStats:
        s = self.structure
        exports = self.exports
        return ContractStats(
            line_count=self.lines.line_count,
            circuit_count=len(s.circuits),
            witness_count=len(s.witnesses),
            ledger_count=len(s.ledger_items),
            type_count=len(s.types),
            struct_count=len(s.structs),
            enum_count=len(s.enums),
            exported_circuits=len(exports.circuits),
            exported_witnesses=len(exports.witnesses),
            exported_ledger=len(exports.ledger),
        )

    @property
    def summary(self) -> str:
        s = self.structure
        parts = []
        for count, label in (
            (len(s.circuits), "circuit(s)"),
            (len(s.witnesses), "witness(es)"),
            (len(s.ledger_items), "ledger item(s)"),
            (len(s.types), "type alias(es)"),
            (len(s.structs), "struct(s)"),
            (len(s.enums), "enum(s)"),
        ):
            if count > 0:
                parts.append(f"{count} {label}")
        return ", ".join(parts) if parts else "Empty contract"


# ── Extractors ────────────────────────────────────────────────────────────────

def extract_language_version(code: str) -> Optional[str]:
    """Version literal from the pragma, unchanged (e.g. '0.16'), or None."""
    m = _PRAGMA.search(strip_comments(code))
    return m.group(1) if m else None


def extract_imports(code: str) -> list[str]:
    """`import Name` modules and `include "path"` targets, in source order."""
    return [m.group(1) or m.group(2) for m in _IMPORT.finditer(strip_comments(code))]


def _span_text(text: str, m: re.Match, group: int) -> str:
    return text[m.start(group):m.end(group)].strip()


def _body_after(masked: str, pos: int) -> Optional[tuple[int, int]]:
    """(body_start, body_end) of the `{...}` that follows `pos`, unless a ';' comes first."""
    m = _BODY_OR_END.search(masked, pos)
    if not m or m.group(0) != "{":
        return None
    block = extract_balanced(masked, m.start())
    if block is None:
        return None
    return block.open + 1, block.close


def _extract_circuits(text: str, masked: str, lines: LineIndex) -> tuple[list[Circuit], list[CodeBlock]]:
    circuits: list[Circuit] = []
    blocks: list[CodeBlock] = []
    for m in _CIRCUIT.finditer(masked):
        paren = extract_balanced(text, m.end() - 1)
        if paren is None:
            logger.debug(f"[Scanner] Unbalanced parameter list for circuit '{m.group(3)}'")
            continue
        after = paren.close + 1
        rt = _RETURN_TYPE.match(masked, after)
        return_type = _span_text(text, rt, 1) if rt else "[]"
        line = lines.line_of(m.start())
        circuit = Circuit(
            name=m.group(3),
            params=split_top_level(strip_comments(paren.body)),
            return_type=return_type or "[]",
            is_exported=m.group(1) == "export",
            is_pure=m.group(2) == "pure",
            line=line,
        )
        circuits.append(circuit)

        body = _body_after(masked, rt.end() if rt else after)
        if body:
            blocks.append(CodeBlock(
                kind="circuit",
                name=circuit.name,
                params=circuit.params,
                is_exported=circuit.is_exported,
                line=line,
                body_start=body[0],
                body_end=body[1],
            ))
    return circuits, blocks


def _extract_witnesses(text: str, masked: str, lines: LineIndex) -> list[Witness]:
    witnesses: list[Witness] = []
    for m in _WITNESS.finditer(masked):
        pos = m.end()
        params: list[str] = []
        if pos < len(masked) and masked[pos] == "(":
            paren = extract_balanced(text, pos)
            if paren is None:
                continue
            params = split_top_level(strip_comments(paren.body))
            pos = paren.close + 1
        tm = _WITNESS_TYPE.match(masked, pos)
        if not tm:
            continue
        witnesses.append(Witness(
            name=m.group(2),
            type=_span_text(text, tm, 1),
            params=params,
            is_exported=m.group(1) == "export",
            line=lines.line_of(m.start()),
        ))
    return witnesses


def _extract_ledger(text: str, masked: str, lines: LineIndex) -> list[LedgerItem]:
    return [
        LedgerItem(
            name=m.group(3),
            type=_span_text(text, m, 4),
            is_exported=m.group(1) == "export",
            is_sealed=m.group(2) == "sealed",
            line=lines.line_of(m.start()),
        )
        for m in _LEDGER.finditer(masked)
    ]


def _extract_types(text: str, masked: str, lines: LineIndex) -> list[TypeAlias]:
    return [
        TypeAlias(
            name=m.group(2),
            definition=_span_text(text, m, 3),
            is_exported=m.group(1) == "export",
            line=lines.line_of(m.start()),
        )
        for m in _TYPE_ALIAS.finditer(masked)
    ]


def _block_members(text: str, open_brace: int) -> Optional[list[str]]:
    """Comma (or semicolon) separated members of the `{...}` at `open_brace`."""
    block = extract_balanced(text, open_brace)
    if block is None:
        return None
    members: list[str] = []
    for item in split_top_level(strip_comments(block.body), ","):
        members.extend(split_top_level(item, ";"))
    return members


def _extract_structs(text: str, masked: str, lines: LineIndex) -> list[Struct]:
    structs: list[Struct] = []
    for m in _STRUCT.finditer(masked):
        fields = _block_members(text, m.end() - 1)
        if fields is None:
            continue
        structs.append(Struct(
            name=m.group(2),
            fields=fields,
            is_exported=m.group(1) == "export",
            line=lines.line_of(m.start()),
        ))
    return structs


def _extract_enums(text: str, masked: str, lines: LineIndex) -> list[EnumDef]:
    enums: list[EnumDef] = []
    for m in _ENUM.finditer(masked):
        variants = _block_members(text, m.end() - 1)
        if variants is None:
            continue
        enums.append(EnumDef(
            name=m.group(2),
            variants=variants,
            is_exported=m.group(1) == "export",
            line=lines.line_of(m.start()),
        ))
    return enums


def _extract_constructors(text: str, masked: str, lines: LineIndex) -> list[CodeBlock]:
    blocks: list[CodeBlock] = []
    for m in _CONSTRUCTOR.finditer(masked):
        paren = extract_balanced(text, m.end() - 1)
        if paren is None:
            continue
        body = _body_after(masked, paren.close + 1)
        if body is None:
            continue
        blocks.append(CodeBlock(
            kind="constructor",
            name="constructor",
            params=split_top_level(strip_comments(paren.body)),
            is_exported=False,
            line=lines.line_of(m.start()),
            body_start=body[0],
            body_end=body[1],
        ))
    return blocks


# ── Entry point ───────────────────────────────────────────────────────────────

def scan(code: str) -> ScanResult:
    """
    Scan Compact source into declarations. Pure and deterministic: the same
    text always yields identical results. A source with no declarations is
    a valid, empty result.
    """
    masked = mask_source(code)
    lines = LineIndex(code)

    circuits, circuit_blocks = _extract_circuits(code, masked, lines)
    structure = ContractStructure(
        circuits=circuits,
        witnesses=_extract_witnesses(code, masked, lines),
        ledger_items=_extract_ledger(code, masked, lines),
        types=_extract_types(code, masked, lines),
        structs=_extract_structs(code, masked, lines),
        enums=_extract_enums(code, masked, lines),
    )
    result = ScanResult(
        text=code,
        masked=masked,
        lines=lines,
        language_version=extract_language_version(code),
        imports=extract_imports(code),
        structure=structure,
        circuit_blocks=circuit_blocks,
        constructors=_extract_constructors(code, masked, lines),
    )
    logger.debug(f"[Scanner] {result.summary}")
    return result
