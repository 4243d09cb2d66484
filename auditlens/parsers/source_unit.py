"""Request-scoped access to one source file.

A ``SourceUnit`` wraps the raw text of a single analysis request and exposes
the derived views detectors work on:

- ``masked``: the text with comment bodies and string contents blanked out,
  so regexes only see code while offsets stay aligned with the raw text
- ``comments``: the comments removed by masking
- ``functions()``: function blocks, by brace matching or indentation
- ``tree``: the tree-sitter syntax tree, for languages that have a grammar

Every view is computed at most once per unit. The syntax tree in particular is
parsed exactly once and shared by all tree detectors of the request.
"""

import logging
import re
import threading
from bisect import bisect_right
from dataclasses import dataclass
from functools import cached_property
from typing import Optional

from auditlens.errors import ParseFailure
from auditlens.parsers.tree_sitter_loader import get_parser

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LanguageSpec:
    """Lexical facts about a subject language."""

    tag: str
    name: str
    line_comment: str = "//"
    block_comments: bool = True
    quotes: tuple[str, ...] = ('"',)
    triple_quotes: bool = False
    blocks: Optional[str] = "braces"  # braces, indent, or None for tree languages
    grammar: Optional[str] = None


LANGUAGES: dict[str, LanguageSpec] = {
    "move": LanguageSpec(tag="move", name="Move"),
    "solidity": LanguageSpec(
        tag="solidity",
        name="Solidity",
        quotes=('"', "'"),
        blocks=None,
        grammar="solidity",
    ),
    "vyper": LanguageSpec(
        tag="vyper",
        name="Vyper",
        line_comment="#",
        block_comments=False,
        quotes=('"', "'"),
        triple_quotes=True,
        blocks="indent",
    ),
    "go": LanguageSpec(tag="go", name="Go", blocks=None, grammar="go"),
    "rust": LanguageSpec(tag="rust", name="Rust", blocks=None, grammar="rust"),
}


@dataclass(frozen=True)
class AnalysisOptions:
    """Tunable bounds shared by every detector of a request."""

    reentrancy_window: int = 3
    call_safety_lookback: int = 3

    @classmethod
    def from_settings(cls, settings) -> "AnalysisOptions":
        return cls(
            reentrancy_window=settings.reentrancy_window,
            call_safety_lookback=settings.call_safety_lookback,
        )


@dataclass(frozen=True)
class Comment:
    """A comment found in the source."""

    offset: int
    line: int
    col: int
    text: str


@dataclass(frozen=True)
class Statement:
    """A statement-sized slice of a function body (masked text)."""

    start: int
    end: int
    text: str
    depth: int  # nesting below the function body, 0 = top level


@dataclass(frozen=True)
class FunctionBlock:
    """A function found by text segmentation."""

    name: str
    start: int  # first character of the header (decorators included)
    name_offset: int
    body_start: int
    body_end: int
    header: str
    body: str
    decorators: tuple[str, ...] = ()

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.body_end


# Function headers for brace-delimited text languages.
_BRACE_HEADERS = {
    "move": re.compile(
        r"\b(?:public(?:\s*\(\s*\w+\s*\))?\s+)?(?:entry\s+)?(?:inline\s+)?(?:native\s+)?"
        r"fun\s+(?P<name>\w+)"
    ),
}

_VYPER_DEF = re.compile(r"^(?P<indent>[ \t]*)def\s+(?P<name>\w+)\s*\(", re.MULTILINE)

# A "{" opening a struct literal (``Coin<T> { value }``) rather than a block.
_INLINE_BRACE_PREFIX = re.compile(r"\b[A-Z]\w*\s*(?:<[^<>{};]*>)?\s*$")


def mask_source(text: str, spec: LanguageSpec) -> tuple[str, list[tuple[int, str]]]:
    """Blank out comments and string contents, keeping every offset stable.

    Returns the masked text and the ``(offset, text)`` of each comment.
    """
    chars = list(text)
    comments: list[tuple[int, str]] = []
    i, n = 0, len(text)

    def blank(start: int, end: int) -> None:
        for k in range(start, min(end, n)):
            if chars[k] != "\n":
                chars[k] = " "

    while i < n:
        if spec.triple_quotes and text.startswith(('"""', "'''"), i):
            delim = text[i:i + 3]
            end = text.find(delim, i + 3)
            end = n if end == -1 else end
            blank(i + 3, end)
            i = end + 3
        elif text.startswith(spec.line_comment, i):
            end = text.find("\n", i)
            end = n if end == -1 else end
            comments.append((i, text[i:end]))
            blank(i, end)
            i = end
        elif spec.block_comments and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            comments.append((i, text[i:end]))
            blank(i, end)
            i = end
        elif text[i] in spec.quotes:
            quote = text[i]
            j = i + 1
            while j < n and text[j] != quote and text[j] != "\n":
                j += 2 if text[j] == "\\" else 1
            blank(i + 1, j)
            i = j + 1
        else:
            i += 1

    return "".join(chars), comments


def match_delimiter(text: str, open_index: int, opener: str = "{", closer: str = "}") -> int:
    """Index of the delimiter closing ``text[open_index]``, or ``len(text)``."""
    depth = 0
    for i in range(open_index, len(text)):
        ch = text[i]
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i
    return len(text)


class SourceUnit:
    """Raw text plus lazily built, request-scoped views of it."""

    def __init__(
        self,
        text: str,
        language: str,
        file_path: str = "",
        options: Optional[AnalysisOptions] = None,
    ):
        self.text = text
        self.language = language
        self.file_path = file_path
        self.options = options or AnalysisOptions()
        self.spec = LANGUAGES.get(language) or LanguageSpec(tag=language, name=language, blocks=None)
        self._tree = None
        self._tree_error: Optional[ParseFailure] = None
        self._tree_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Text views
    # ------------------------------------------------------------------

    @cached_property
    def lines(self) -> list[str]:
        return [line.rstrip("\r") for line in self.text.split("\n")]

    @cached_property
    def _line_starts(self) -> list[int]:
        starts = [0]
        starts.extend(m.end() for m in re.finditer("\n", self.text))
        return starts

    @cached_property
    def _masked(self) -> tuple[str, list[Comment]]:
        masked, raw_comments = mask_source(self.text, self.spec)
        comments = []
        for offset, text in raw_comments:
            line, col = self.position(offset)
            comments.append(Comment(offset=offset, line=line, col=col, text=text))
        return masked, comments

    @property
    def masked(self) -> str:
        return self._masked[0]

    @property
    def comments(self) -> list[Comment]:
        return self._masked[1]

    @cached_property
    def masked_lines(self) -> list[str]:
        return [line.rstrip("\r") for line in self.masked.split("\n")]

    def position(self, offset: int) -> tuple[int, int]:
        """1-based ``(line, col)`` of a character offset."""
        index = bisect_right(self._line_starts, offset) - 1
        return index + 1, offset - self._line_starts[index] + 1

    def offset(self, line: int, col: int = 1) -> int:
        return self._line_starts[line - 1] + col - 1

    # ------------------------------------------------------------------
    # Function segmentation
    # ------------------------------------------------------------------

    def functions(self) -> list[FunctionBlock]:
        return self._functions

    @cached_property
    def _functions(self) -> list[FunctionBlock]:
        if self.spec.blocks == "braces":
            return self._brace_functions()
        if self.spec.blocks == "indent":
            return self._indent_functions()
        return []

    def function_at(self, offset: int) -> Optional[FunctionBlock]:
        for block in self._functions:
            if block.contains(offset):
                return block
        return None

    def _brace_functions(self) -> list[FunctionBlock]:
        pattern = _BRACE_HEADERS.get(self.language)
        if pattern is None:
            return []

        masked = self.masked
        blocks: list[FunctionBlock] = []
        pos = 0
        while True:
            m = pattern.search(masked, pos)
            if not m:
                break
            name = m.group("name")
            cursor = m.end()
            while cursor < len(masked) and masked[cursor].isspace():
                cursor += 1
            if cursor < len(masked) and masked[cursor] == "(":
                cursor = match_delimiter(masked, cursor, "(", ")") + 1
            else:
                pos = m.end()
                continue

            body_open = self._find_body_open(masked, cursor)
            if body_open is None:
                pos = max(cursor, m.end())
                continue

            body_close = match_delimiter(masked, body_open)
            blocks.append(
                FunctionBlock(
                    name=name,
                    start=m.start(),
                    name_offset=m.start("name"),
                    body_start=body_open + 1,
                    body_end=body_close,
                    header=masked[m.start():body_open],
                    body=masked[body_open + 1:body_close],
                )
            )
            pos = body_close + 1
        return blocks

    @staticmethod
    def _find_body_open(masked: str, cursor: int) -> Optional[int]:
        """First ``{`` outside parentheses, unless a ``;`` ends the declaration."""
        depth = 0
        for i in range(cursor, len(masked)):
            ch = masked[i]
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
            elif depth == 0 and ch == ";":
                return None
            elif depth == 0 and ch == "{":
                return i
        return None

    def _indent_functions(self) -> list[FunctionBlock]:
        masked = self.masked
        lines = self.masked_lines
        blocks: list[FunctionBlock] = []

        for m in _VYPER_DEF.finditer(masked):
            def_line, _ = self.position(m.start())
            indent = len(m.group("indent").expandtabs())

            decorators: list[str] = []
            start = m.start()
            index = def_line - 2
            while index >= 0 and lines[index].strip().startswith("@"):
                decorators.insert(0, lines[index].strip())
                start = self.offset(index + 1, 1)
                index -= 1

            paren_close = match_delimiter(masked, m.end() - 1, "(", ")")
            colon = masked.find(":", paren_close)
            if colon == -1:
                continue
            line_end = masked.find("\n", colon)
            line_end = len(masked) if line_end == -1 else line_end

            if masked[colon + 1:line_end].strip():
                body_start, body_end = colon + 1, line_end
            else:
                body_start = min(line_end + 1, len(masked))
                body_end = body_start
                body_line, _ = self.position(body_start)
                for line_index in range(body_line - 1, len(lines)):
                    line = lines[line_index]
                    if not line.strip():
                        continue
                    expanded = line.expandtabs()
                    if len(expanded) - len(expanded.lstrip()) <= indent:
                        break
                    body_end = self.offset(line_index + 1, 1) + len(line)

            blocks.append(
                FunctionBlock(
                    name=m.group("name"),
                    start=start,
                    name_offset=m.start("name"),
                    body_start=body_start,
                    body_end=body_end,
                    header=masked[start:body_start],
                    body=masked[body_start:body_end],
                    decorators=tuple(decorators),
                )
            )
        return blocks

    # ------------------------------------------------------------------
    # Statement segmentation
    # ------------------------------------------------------------------

    def statements(self, block: FunctionBlock) -> list[Statement]:
        """Split a function body into statements, in source order."""
        if self.spec.blocks == "indent":
            return self._indent_statements(block)
        return self._brace_statements(block)

    def _brace_statements(self, block: FunctionBlock) -> list[Statement]:
        masked = self.masked
        statements: list[Statement] = []
        depth = 0
        parens = 0
        seg_start = block.body_start
        i = block.body_start

        def emit(end: int) -> None:
            raw = masked[seg_start:end]
            text = raw.strip()
            if text:
                lead = len(raw) - len(raw.lstrip())
                statements.append(Statement(seg_start + lead, end, text, depth))

        while i < block.body_end:
            ch = masked[i]
            if ch == "(":
                parens += 1
            elif ch == ")":
                parens = max(0, parens - 1)
            elif parens == 0 and ch == "{":
                if _INLINE_BRACE_PREFIX.search(masked, seg_start, i):
                    i = match_delimiter(masked, i) + 1
                    continue
                emit(i)
                depth += 1
                seg_start = i + 1
            elif parens == 0 and ch == "}":
                emit(i)
                depth = max(0, depth - 1)
                seg_start = i + 1
            elif parens == 0 and ch == ";":
                emit(i)
                seg_start = i + 1
            i += 1
        emit(block.body_end)
        return statements

    def _indent_statements(self, block: FunctionBlock) -> list[Statement]:
        masked = self.masked
        statements: list[Statement] = []
        indents: list[int] = []
        offset = block.body_start

        pending_start: Optional[int] = None
        pending_depth = 0
        parens = 0
        for raw_line in masked[block.body_start:block.body_end].split("\n"):
            line_start = offset
            offset += len(raw_line) + 1
            if not raw_line.strip() and pending_start is None:
                continue

            if pending_start is None:
                indent = len(raw_line) - len(raw_line.lstrip())
                while indents and indent < indents[-1]:
                    indents.pop()
                if not indents or indent > indents[-1]:
                    indents.append(indent)
                pending_start = line_start + indent
                pending_depth = len(indents) - 1

            parens += raw_line.count("(") + raw_line.count("[") - raw_line.count(")") - raw_line.count("]")
            if parens > 0:
                continue
            parens = 0
            end = line_start + len(raw_line.rstrip())
            statements.append(
                Statement(pending_start, end, masked[pending_start:end].strip(), pending_depth)
            )
            pending_start = None
        return statements

    # ------------------------------------------------------------------
    # Syntax tree
    # ------------------------------------------------------------------

    @property
    def has_grammar(self) -> bool:
        return self.spec.grammar is not None

    @property
    def tree(self):
        """The tree-sitter tree, parsed on first access and then shared.

        Raises ``ParseFailure`` when no tree can be built; the failure is
        remembered so later accesses do not parse again.
        """
        with self._tree_lock:
            if self._tree is None and self._tree_error is None:
                try:
                    self._tree = self._parse_tree()
                except ParseFailure as e:
                    logger.warning(f"Parse failed for {self.file_path or '<source>'}: {e}")
                    self._tree_error = e
        if self._tree_error is not None:
            raise self._tree_error
        return self._tree

    def _parse_tree(self):
        if self.spec.grammar is None:
            raise ParseFailure(f"No syntax tree available for {self.spec.name} source")

        parser = get_parser(self.spec.grammar)
        try:
            tree = parser.parse(self.text.encode("utf-8"))
        except Exception as e:
            raise ParseFailure(f"{self.spec.name} parser error: {e}") from e

        if tree.root_node.has_error:
            line, col = self._first_error_position(tree.root_node)
            raise ParseFailure(f"syntax error at line {line}, column {col}", line=line, col=col)
        return tree

    def _first_error_position(self, root) -> tuple[int, int]:
        stack = [root]
        while stack:
            node = stack.pop()
            if node.type == "ERROR" or node.is_missing:
                return self.node_position(node)
            stack.extend(reversed(node.children))
        return 1, 1

    @cached_property
    def _encoded(self) -> bytes:
        return self.text.encode("utf-8")

    def text_between(self, start_byte: int, end_byte: int) -> str:
        """Raw text between two tree-sitter byte offsets."""
        if self.text.isascii():
            return self.text[start_byte:end_byte]
        return self._encoded[start_byte:end_byte].decode("utf-8", errors="replace")

    def node_position(self, node) -> tuple[int, int]:
        """1-based ``(line, col)`` of a tree node, in characters."""
        if self.text.isascii():
            return self.position(node.start_byte)
        prefix = self._encoded[:node.start_byte].decode("utf-8", errors="ignore")
        return self.position(len(prefix))
