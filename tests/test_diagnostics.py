import pytest
from compact_mcp.models import CompilerDiagnostic
from compact_mcp.services.diagnostics import (
    categorize,
    common_fixes,
    parse_diagnostics,
    parse_warnings,
    source_context,
)

SOURCE = """pragma language_version >= 0.16;
import CompactStandardLibrary;
export circuit broken(): [] {
  const x = 1
}
"""


def test_compact_exception_format():
    output = (
        "Exception: /tmp/compact-validate-1700000000000-ab12/contract.compact line 3 char 5:\n"
        '  parse error: found keyword "circuit" looking for a statement\n'
    )
    errors, _ = parse_diagnostics(output, SOURCE)

    assert len(errors) == 1
    err = errors[0]
    assert err.line == 3
    assert err.column == 5
    assert err.message == 'found keyword "circuit" looking for a statement'
    assert err.severity == "error"
    assert err.source_context == (
        "2: import CompactStandardLibrary;\n"
        "3: export circuit broken(): [] {\n"
        "4:   const x = 1"
    )


def test_colon_location_format():
    errors, _ = parse_diagnostics("contract.compact:4:14: error: unexpected token", SOURCE)
    assert errors[0].line == 4
    assert errors[0].column == 14
    assert errors[0].message == "unexpected token"


def test_each_marker_gets_its_own_location():
    output = "error: first problem at line 2\nerror: second problem at line 4\n"
    errors, _ = parse_diagnostics(output, SOURCE)
    assert [e.line for e in errors] == [2, 4]
    assert errors[1].column is None


def test_location_on_following_line_stays_with_its_error():
    output = "error: unexpected token\n  at line 2\nerror: bad type\n  at line 4\n"
    errors, _ = parse_diagnostics(output, SOURCE)
    assert [(e.message, e.line) for e in errors] == [("unexpected token", 2), ("bad type", 4)]


def test_header_lines_belong_to_the_error_below():
    output = (
        "Exception: contract.compact line 3 char 5:\n"
        "  parse error: found \"}\" looking for an expression\n"
        "Exception: contract.compact line 4 char 1:\n"
        "  parse error: found keyword \"const\" looking for a statement\n"
    )
    errors, _ = parse_diagnostics(output, SOURCE)
    assert [(e.line, e.column) for e in errors] == [(3, 5), (4, 1)]


def test_unlocated_error_does_not_borrow_previous_location():
    output = "error: first at line 2\n  at line 3\nerror: second without location\n"
    errors, _ = parse_diagnostics(output, SOURCE)
    assert [e.line for e in errors] == [2, None]


def test_location_outside_source_has_no_context():
    errors, _ = parse_diagnostics("error: bad thing at line 99", SOURCE)
    assert errors[0].line == 99
    assert errors[0].source_context is None


def test_expected_found_suggestion():
    _, suggestions = parse_diagnostics("error: expected ';', found '}' at line 5", SOURCE)
    assert 'Expected ";" but found "}". Check your syntax.' in suggestions


def test_unrecognized_output_falls_back_to_raw_text():
    errors, _ = parse_diagnostics("Segmentation fault (core dumped)", SOURCE)
    assert errors == [CompilerDiagnostic(message="Segmentation fault (core dumped)")]

    errors, _ = parse_diagnostics("x" * 1000, SOURCE)
    assert len(errors[0].message) == 500


def test_empty_output():
    assert parse_diagnostics("", SOURCE) == ([], [])
    assert parse_diagnostics("  \n", SOURCE) == ([], [])


def test_output_hints():
    _, suggestions = parse_diagnostics("error: Cell is not a known type", SOURCE)
    assert any(".value" in s for s in suggestions)


def test_parse_warnings():
    output = "warning: unused variable x\nsomething else\nWarning: shadowed name y\n"
    assert parse_warnings(output) == ["unused variable x", "shadowed name y"]
    assert parse_warnings("") == []


def test_source_context_bounds():
    lines = ["a", "b", "c"]
    assert source_context(lines, 1) == "1: a\n2: b"
    assert source_context(lines, 3) == "2: b\n3: c"
    assert source_context(lines, 0) is None
    assert source_context(lines, None) is None


@pytest.mark.parametrize("output,category", [
    ('parse error: found keyword "circuit" looking for a statement', "syntax_error"),
    ("error: type mismatch between Field and Boolean", "type_error"),
    ("error: identifier foo is undefined", "reference_error"),
    ("error: cannot import module Foo", "import_error"),
    ("error: circuit bar has no body", "structure_error"),
    ("error: something odd happened", "unknown_error"),
])
def test_categorize(output, category):
    assert categorize(output).category == category


def test_categorize_returns_fresh_copies():
    first = categorize("parse error")
    first.title = "changed"
    assert categorize("parse error").title == "Syntax Error"


def test_common_fixes():
    fixes = common_fixes([CompilerDiagnostic(message="Counter increment failed")])
    assert [f.pattern for f in fixes] == ["Counter initialization error"]
    assert common_fixes([CompilerDiagnostic(message="nothing relevant here")]) == []
    assert common_fixes([]) == []
