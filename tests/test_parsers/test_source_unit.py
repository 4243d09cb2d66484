"""Tests for SourceUnit text views, segmentation and the shared syntax tree."""

from unittest.mock import patch

import pytest

from auditlens.analyzers.tree_walk import iter_nodes
from auditlens.errors import ParseFailure
from auditlens.parsers.source_unit import LANGUAGES, SourceUnit, mask_source, match_delimiter
from auditlens.parsers.tree_sitter_loader import get_parser


class TestMasking:
    """Test comment and string masking."""

    def test_mask_keeps_offsets(self):
        """Masking blanks comments and strings without moving any character."""
        text = 'let a = "x//y"; // note\nb /* c */ d\n'

        masked, comments = mask_source(text, LANGUAGES["move"])

        assert len(masked) == len(text)
        assert masked.count("\n") == text.count("\n")
        assert masked.startswith('let a = "    ";')
        assert "note" not in masked
        assert "/*" not in masked
        assert masked.split("\n")[1].strip().startswith("b")
        assert comments == [(16, "// note"), (26, "/* c */")]

    def test_vyper_docstring_is_not_a_comment(self):
        """A # inside a triple-quoted string is not a comment."""
        text = 'def f():\n    """doc # not comment"""\n    x = 1  # real\n'
        unit = SourceUnit(text, "vyper")

        assert len(unit.comments) == 1
        comment = unit.comments[0]
        assert comment.text == "# real"
        assert (comment.line, comment.col) == (3, 12)
        assert "not comment" not in unit.masked

    def test_match_delimiter(self):
        """Nested delimiters are balanced; an unclosed one runs to the end."""
        assert match_delimiter("f(a(b))", 1, "(", ")") == 6
        assert match_delimiter("{ { }", 0) == 5


class TestPositions:
    """Test offset and line/column conversion."""

    def test_position_and_offset(self):
        """Positions are 1-based and offset() inverts position()."""
        unit = SourceUnit("ab\ncd\n", "move")

        assert unit.position(0) == (1, 1)
        assert unit.position(3) == (2, 1)
        assert unit.position(4) == (2, 2)
        assert unit.offset(2, 2) == 4

    def test_crlf_lines(self):
        """Carriage returns are stripped from line views but kept in offsets."""
        unit = SourceUnit("a\r\nb\r\n", "move")

        assert unit.lines == ["a", "b", ""]
        assert unit.position(3) == (2, 1)


class TestFunctionSegmentation:
    """Test function discovery for text languages."""

    def test_move_skips_declarations(self):
        """Native functions and struct declarations without a body are not functions."""
        source = '''module 0x1::m {
    struct Coin<phantom T> has store {
        value: u64,
    }

    native fun hash(bytes: vector<u8>): vector<u8>;

    public fun pay(account: &signer) {
        other::vault::deposit(account, 1);
    }
}
'''
        blocks = SourceUnit(source, "move").functions()

        assert [b.name for b in blocks] == ["pay"]
        assert "deposit" in blocks[0].body

    def test_move_entry_header(self):
        """Move headers keep their visibility and entry modifiers."""
        source = '''module 0x1::m {
    public entry fun deposit(account: &signer) {
        let x = 1;
    }

    fun helper(): u64 { 1 }
}
'''
        unit = SourceUnit(source, "move")
        blocks = unit.functions()

        assert [b.name for b in blocks] == ["deposit", "helper"]
        assert blocks[0].header.startswith("public entry fun deposit")
        assert unit.function_at(unit.masked.index("let x")) is blocks[0]
        assert unit.function_at(0) is None

    def test_vyper_decorators_and_bodies(self):
        """Vyper functions collect decorators and end at the dedent."""
        source = '''@external
@nonreentrant("lock")
def withdraw(amount: uint256):
    self.total -= amount
    send(msg.sender, amount)


@internal
def _helper() -> uint256: return 1
'''
        blocks = SourceUnit(source, "vyper").functions()

        assert [b.name for b in blocks] == ["withdraw", "_helper"]
        assert blocks[0].decorators[0] == "@external"
        assert blocks[0].decorators[1].startswith("@nonreentrant")
        assert blocks[0].start == 0
        assert "send(" in blocks[0].body
        assert "_helper" not in blocks[0].body
        assert blocks[1].decorators == ("@internal",)
        assert blocks[1].body.strip() == "return 1"

    def test_tree_languages_have_no_text_functions(self):
        """Go, Rust and Solidity are segmented by their syntax tree instead."""
        assert SourceUnit("package main\n\nfunc f() {}\n", "go").functions() == []
        assert SourceUnit("contract C {\n    function f() external {}\n}\n", "solidity").functions() == []


class TestStatements:
    """Test statement segmentation."""

    def test_struct_literal_does_not_open_a_block(self):
        """The braces of Coin<u64> { value } belong to the let statement."""
        source = '''module 0x1::m {
    fun make(account: &signer, v: u64) {
        let c = Coin<u64> { value: v };
        if (v > 0) {
            move_to(account, c);
        }
    }
}
'''
        unit = SourceUnit(source, "move")
        statements = unit.statements(unit.functions()[0])

        assert [s.text for s in statements] == ["let c = Coin<u64> { value: v }", "if (v > 0)", "move_to(account, c)"]
        assert [s.depth for s in statements] == [0, 0, 1]

    def test_vyper_continuation_lines(self):
        """Open brackets join continuation lines into one statement."""
        source = '''@external
def f(a: uint256):
    x: uint256 = foo(
        a,
        1,
    )
    if x > 0:
        self.total = x
'''
        unit = SourceUnit(source, "vyper")
        statements = unit.statements(unit.functions()[0])

        assert len(statements) == 3
        assert statements[0].text.startswith("x: uint256 = foo(")
        assert statements[0].text.endswith(")")
        assert [s.depth for s in statements] == [0, 0, 1]


class TestSyntaxTree:
    """Test the memoised tree-sitter tree."""

    def test_tree_parsed_once(self):
        """Every access after the first reuses the same tree."""
        with patch("auditlens.parsers.source_unit.get_parser", wraps=get_parser) as spy:
            unit = SourceUnit("package main\n\nfunc f() {}\n", "go")
            first = unit.tree
            second = unit.tree

        assert first is second
        assert spy.call_count == 1
        assert first.root_node.type == "source_file"

    def test_parse_failure_is_memoised(self, sample_go_broken):
        """A broken source raises the same failure without parsing again."""
        with patch("auditlens.parsers.source_unit.get_parser", wraps=get_parser) as spy:
            unit = SourceUnit(sample_go_broken, "go", "broken.go")
            with pytest.raises(ParseFailure) as first:
                unit.tree
            with pytest.raises(ParseFailure) as second:
                unit.tree

        assert spy.call_count == 1
        assert first.value is second.value
        assert "syntax error" in str(first.value)
        assert first.value.line is not None

    def test_text_language_has_no_tree(self):
        """Text-only languages report a parse failure instead of a tree."""
        unit = SourceUnit("module 0x1::m {}", "move")

        assert not unit.has_grammar
        with pytest.raises(ParseFailure, match="No syntax tree available for Move source"):
            unit.tree

    def test_positions_count_characters(self):
        """Node positions and text slices handle multi-byte characters."""
        unit = SourceUnit('package main\n\nfunc f() { _ = "éé"; g() }\n', "go")
        call = next(n for n in iter_nodes(unit.tree.root_node) if n.type == "call_expression")

        assert unit.node_position(call) == (3, 22)
        assert unit.text_between(call.start_byte, call.end_byte) == "g()"
