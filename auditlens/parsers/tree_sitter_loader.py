"""Process-wide tree-sitter grammar setup.

Grammars are loaded once per process. Concurrent first callers are
serialised on a module lock and all observe the same ``Language`` object;
later callers take the lock-free fast path. Parsers are cheap and not
thread-safe, so a fresh ``Parser`` is handed out per request.
"""

import logging
import threading
from typing import Callable

import tree_sitter_go
import tree_sitter_rust
import tree_sitter_solidity
from tree_sitter import Language, Parser

from auditlens.errors import ParseFailure

logger = logging.getLogger(__name__)

# grammar tag -> capsule factory exported by the grammar wheel
GRAMMARS: dict[str, Callable[[], object]] = {
    "go": tree_sitter_go.language,
    "rust": tree_sitter_rust.language,
    "solidity": tree_sitter_solidity.language,
}

_languages: dict[str, Language] = {}
_lock = threading.Lock()


def get_language(grammar: str) -> Language:
    """Return the loaded ``Language`` for a grammar tag, loading it once."""
    language = _languages.get(grammar)
    if language is not None:
        return language

    with _lock:
        language = _languages.get(grammar)
        if language is None:
            language = _load_language(grammar)
            _languages[grammar] = language
    return language


def get_parser(grammar: str) -> Parser:
    """Create a parser bound to the shared grammar."""
    return Parser(get_language(grammar))


def loaded_grammars() -> list[str]:
    return sorted(_languages)


def reset_languages() -> None:
    """Forget loaded grammars so the next request initialises them again."""
    with _lock:
        _languages.clear()


def _load_language(grammar: str) -> Language:
    factory = GRAMMARS.get(grammar)
    if factory is None:
        raise ParseFailure(f"No tree-sitter grammar registered for '{grammar}'")
    try:
        language = Language(factory())
    except Exception as e:
        logger.error(f"Failed to initialize tree-sitter {grammar} grammar: {e}")
        raise ParseFailure(f"tree-sitter {grammar} grammar unavailable: {e}") from e
    logger.info(f"Initialized tree-sitter {grammar} grammar")
    return language
