from compact_mcp.utils.compact_source import (
    LineIndex,
    brace_spans,
    extract_balanced,
    in_spans,
    mask_source,
    split_top_level,
    strip_comments,
)


def test_mask_preserves_offsets_and_lines():
    source = 'ledger a: Field; // note {\n/* block\n } */ const s = "x { y";\n'
    masked = mask_source(source)

    assert len(masked) == len(source)
    assert masked.count("\n") == source.count("\n")
    assert "{" not in masked
    assert "note" not in masked
    assert masked.index("const") == source.index("const")
    assert '"     "' in masked


def test_strip_comments_keeps_strings():
    source = 'include "std"; // include "old.compact"'
    stripped = strip_comments(source)
    assert 'include "std"' in stripped
    assert "old.compact" not in stripped


def test_extract_balanced_skips_strings_and_comments():
    source = 'struct S { a: Opaque<"}">, // }\n b: Field /* } */ }'
    block = extract_balanced(source, source.index("{"))

    assert block is not None
    assert block.close == len(source) - 1
    assert "b: Field" in block.body


def test_extract_balanced_nested_and_escaped():
    source = 'f(a, g(b, "\\")"), c) tail'
    block = extract_balanced(source, 1)
    assert block.body == 'a, g(b, "\\")"), c'


def test_extract_balanced_unterminated():
    assert extract_balanced("circuit f(a: Field", 9) is None
    assert extract_balanced("no opener", 0) is None


def test_split_top_level_nesting():
    assert split_top_level("a: Map<Field, Uint<64>>, b: [Field, Boolean], c: Field") == [
        "a: Map<Field, Uint<64>>",
        "b: [Field, Boolean]",
        "c: Field",
    ]


def test_split_top_level_function_type_and_strings():
    assert split_top_level("f: (a: Field, b: Field) => Boolean, x: Field") == [
        "f: (a: Field, b: Field) => Boolean",
        "x: Field",
    ]
    assert split_top_level('data: Opaque<"a, b">') == ['data: Opaque<"a, b">']


def test_split_top_level_drops_empty_items():
    assert split_top_level(" A,\n B,\n ") == ["A", "B"]
    assert split_top_level("") == []


def test_line_index():
    index = LineIndex("a\nbb\n\nc")
    assert index.line_count == 4
    assert index.line_of(0) == 1
    assert index.line_of(2) == 2
    assert index.line_of(5) == 3
    assert index.line_of(6) == 4


def test_brace_spans_and_membership():
    masked = "const a = 1;\ncircuit f() { const b = { }; }\nconst c = 2;"
    spans = brace_spans(masked)

    assert len(spans) == 1
    assert not in_spans(masked.index("const a"), spans)
    assert in_spans(masked.index("const b"), spans)
    assert not in_spans(masked.index("const c"), spans)
