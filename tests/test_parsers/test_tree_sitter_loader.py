"""Tests for the process-wide grammar loader."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from auditlens.errors import ParseFailure
from auditlens.parsers.tree_sitter_loader import (
    get_language,
    get_parser,
    loaded_grammars,
    reset_languages,
)


@pytest.fixture
def fresh_languages():
    """Start and finish with no grammars loaded."""
    reset_languages()
    yield
    reset_languages()


class TestGrammarLoading:
    """Test once-per-process grammar initialisation."""

    def test_language_is_shared(self, fresh_languages):
        """Repeated lookups return the same Language object."""
        assert get_language("go") is get_language("go")

    def test_reset_forgets_grammars(self, fresh_languages):
        """reset_languages clears the loaded set."""
        get_language("rust")
        assert loaded_grammars() == ["rust"]

        reset_languages()

        assert loaded_grammars() == []

    def test_concurrent_first_use(self, fresh_languages):
        """Concurrent first callers all observe one Language object."""
        with ThreadPoolExecutor(max_workers=8) as pool:
            languages = list(pool.map(lambda _: get_language("go"), range(16)))

        assert len({id(language) for language in languages}) == 1
        assert loaded_grammars() == ["go"]

    def test_unknown_grammar(self, fresh_languages):
        """A grammar with no registered wheel is a parse failure."""
        with pytest.raises(ParseFailure, match="No tree-sitter grammar registered for 'cobol'"):
            get_language("cobol")

        assert loaded_grammars() == []


class TestParsers:
    """Test per-request parsers."""

    def test_fresh_parser_per_call(self):
        """Parsers are not shared between requests."""
        first = get_parser("rust")
        second = get_parser("rust")

        assert first is not second
        assert first.parse(b"fn main() {}\n").root_node.type == "source_file"

    def test_solidity_grammar(self):
        """Solidity sources parse with the Solidity grammar."""
        tree = get_parser("solidity").parse(b"pragma solidity ^0.8.0;\n\ncontract C {}\n")

        assert tree.root_node.type == "source_file"
        assert not tree.root_node.has_error
        assert [c.type for c in tree.root_node.named_children] == ["pragma_directive", "contract_declaration"]
