"""Traversal helpers for tree-sitter syntax trees."""

import re
from typing import Iterator, Optional

from auditlens.analyzers.base import Hit
from auditlens.parsers.source_unit import SourceUnit

COMMENT_TYPES = frozenset({"comment", "line_comment", "block_comment"})
STATEMENT_CONTAINERS = frozenset({
    "block", "statement_list", "source_file", "declaration_list",
    "function_body", "block_statement", "contract_body", "unchecked",
})
FUNCTION_TYPES = frozenset({
    "function_declaration", "method_declaration", "func_literal", "function_item",
    "function_definition", "modifier_definition", "constructor_definition", "fallback_receive_definition",
})
STRING_TYPES = frozenset({
    "interpreted_string_literal", "raw_string_literal", "string_literal",
    "string", "hex_string_literal", "unicode_string_literal",
})
LITERAL_TYPES = frozenset({"int_literal", "float_literal", "integer_literal", "number_literal"}) | STRING_TYPES

# Solidity wraps each expression and statement in a single-child node.
WRAPPER_TYPES = frozenset({"expression", "statement"})


def iter_nodes(node) -> Iterator:
    """Yield ``node`` and every descendant, depth first in source order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def node_text(node) -> str:
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def unwrap(node):
    """Descend through wrapper nodes to the node that carries the syntax."""
    while node is not None and node.type in WRAPPER_TYPES and node.named_child_count == 1:
        node = node.named_children[0]
    return node


def parent_of(node):
    """Parent of ``node``, skipping wrapper nodes."""
    parent = node.parent
    while parent is not None and parent.type in WRAPPER_TYPES:
        parent = parent.parent
    return parent


def same_node(a, b) -> bool:
    return (
        a is not None
        and b is not None
        and a.type == b.type
        and a.start_byte == b.start_byte
        and a.end_byte == b.end_byte
    )


def enclosing(node, types) -> Optional[object]:
    """Nearest proper ancestor whose type is in ``types``."""
    parent = node.parent
    while parent is not None:
        if parent.type in types:
            return parent
        parent = parent.parent
    return None


def enclosing_function(node):
    return enclosing(node, FUNCTION_TYPES)


def statement_of(node):
    """The statement that contains ``node`` directly inside a block."""
    current = node
    while current.parent is not None and current.parent.type not in STATEMENT_CONTAINERS:
        current = current.parent
    return current


def block_statements(block) -> list:
    """Named statements of a block, flattening Go's ``statement_list``."""
    if block is None:
        return []
    statements = []
    for child in block.named_children:
        if child.type == "statement_list":
            statements.extend(block_statements(child))
        elif child.type not in COMMENT_TYPES:
            statements.append(child)
    return statements


def _siblings(statement) -> tuple[list, int]:
    parent = statement.parent
    if parent is None:
        return [], -1
    siblings = [c for c in parent.named_children if c.type not in COMMENT_TYPES]
    for index, sibling in enumerate(siblings):
        if same_node(sibling, statement):
            return siblings, index
    return siblings, -1


def following_statements(statement, limit: int) -> list:
    siblings, index = _siblings(statement)
    if index < 0:
        return []
    return siblings[index + 1:index + 1 + limit]


def preceding_statements(statement, limit: int) -> list:
    siblings, index = _siblings(statement)
    if index <= 0:
        return []
    return siblings[max(0, index - limit):index]


def function_name(function) -> str:
    name = function.child_by_field_name("name")
    if name is not None:
        return node_text(name)
    special = re.match(r"(?:function\s+)?(constructor|receive|fallback)\b", node_text(function))
    return special.group(1) if special else "<anonymous>"


def callee_text(call) -> str:
    """Text of the called expression of a ``call_expression``."""
    return node_text(call.child_by_field_name("function"))


def callee_name(call) -> str:
    """Final identifier of the callee, e.g. ``Do`` for ``client.Do``."""
    text = re.sub(r"::<.*>$", "", callee_text(call))
    parts = re.split(r"[.:]+", text)
    return parts[-1] if parts else text


def is_string(node) -> bool:
    node = unwrap(node)
    return node is not None and node.type in STRING_TYPES


def is_literal(node) -> bool:
    node = unwrap(node)
    return node is not None and node.type in LITERAL_TYPES


def hit_at(unit: SourceUnit, node, message: str, suggestion: Optional[str] = None) -> Hit:
    line, col = unit.node_position(node)
    return Hit(line=line, col=col, message=message, suggestion=suggestion)


def line_of(unit: SourceUnit, node) -> int:
    return unit.node_position(node)[0]


def attributes_of(item) -> list[str]:
    """Rust attribute items written directly above ``item``."""
    attributes = []
    sibling = item.prev_named_sibling
    while sibling is not None and sibling.type in ("attribute_item", "line_comment", "block_comment"):
        if sibling.type == "attribute_item":
            attributes.append(node_text(sibling))
        sibling = sibling.prev_named_sibling
    return attributes


def is_top_level_statement(node, function) -> bool:
    """Whether ``node``'s statement sits directly in ``function``'s body."""
    if function is None:
        return False
    body = function.child_by_field_name("body")
    container = statement_of(node).parent
    if container is not None and container.type == "statement_list":
        container = container.parent
    return same_node(container, body)


def operator_of(node) -> str:
    """Operator token of a binary, unary, update or compound assignment node."""
    operator = node.child_by_field_name("operator")
    if operator is not None:
        return node_text(operator)
    for child in node.children:
        if not child.is_named and child.type not in ("(", ")"):
            return child.type
    return ""


def body_of(function):
    body = function.child_by_field_name("body")
    if body is None:
        body = next((c for c in function.named_children if c.type in ("function_body", "block")), None)
    return body


# ----------------------------------------------------------------------
# Solidity
# ----------------------------------------------------------------------

CALL_OPTIONS = re.compile(r"\s*\{[^{}]*\}\s*$")


def call_target(call) -> str:
    """Callee text without ``{value: ...}`` call options."""
    return CALL_OPTIONS.sub("", callee_text(call))


def modifiers_of(function) -> list[str]:
    """Modifier invocations written on a function header."""
    return [node_text(c) for c in function.named_children if c.type == "modifier_invocation"]


def visibility_of(function) -> Optional[str]:
    for child in function.named_children:
        if child.type == "visibility":
            return node_text(child)
    return None


def mutability_of(function) -> Optional[str]:
    for child in function.named_children:
        if child.type == "state_mutability":
            return node_text(child)
    return None


def in_unchecked(node) -> bool:
    """Whether ``node`` sits inside an ``unchecked { }`` block."""
    parent = node.parent
    while parent is not None and parent.type not in FUNCTION_TYPES:
        if parent.type in ("unchecked", "unchecked_block"):
            return True
        if parent.type == "block_statement":
            marker = parent.prev_sibling
            if (
                any(c.type == "unchecked" for c in parent.children)
                or (marker is not None and marker.type == "unchecked")
                or node_text(parent).startswith("unchecked")
            ):
                return True
        parent = parent.parent
    return False
