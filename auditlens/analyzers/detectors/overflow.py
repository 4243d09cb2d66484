"""Integer overflow: raw arithmetic without a guard."""

import re

from auditlens.analyzers.base import Category, detector
from auditlens.analyzers.patterns import arithmetic_ops, hit_at
from auditlens.analyzers.tree_walk import (
    enclosing_function,
    function_name,
    hit_at as node_hit,
    in_unchecked,
    is_literal,
    is_string,
    iter_nodes,
    node_text,
    operator_of,
    parent_of,
    preceding_statements,
    statement_of,
    unwrap,
)

ARITHMETIC = frozenset({"+", "-", "*"})
COMPOUND = frozenset({"+=", "-=", "*="})
ASSIGNMENT_TYPES = frozenset({"assignment_statement", "compound_assignment_expr", "augmented_assignment_expression"})

MOVE_GUARD = re.compile(r"\boverflow_(?:add|sub|mul)\b|\bchecked_\w+|\bMAX_U\d+\b|\bU\d+_MAX\b")
SOLIDITY_PRAGMA = re.compile(r"\bpragma\s+solidity\s+([^;]*)")
SOLIDITY_SAFEMATH = re.compile(r"\bSafeMath\b|\.\s*(?:add|sub|mul|tryAdd|trySub|tryMul)\s*\(")
VYPER_UNCHECKED = re.compile(r"\b(?P<fn>unsafe_(?:add|sub|mul|div))\s*\(|@unchecked\b|\bunchecked\s*:")
GO_GUARD = re.compile(
    r"\bmath\.(?:Max|Min)\w*|\bbits\.(?:Add|Sub|Mul)\w*|\b\w*[Oo]verflow\w*|\bSafe(?:Add|Sub|Mul)\w*"
)
RUST_GUARD = re.compile(r"\b(?:checked|saturating|wrapping|overflowing)_\w+|::(?:MAX|MIN)\b")


def _checked_by_default(constraint: str) -> bool:
    """Solidity 0.8 and later revert on overflow."""
    m = re.search(r"(\d+)\.(\d+)", constraint)
    if not m:
        return False
    major, minor = int(m.group(1)), int(m.group(2))
    return major > 0 or minor >= 8


@detector(Category.OVERFLOW, "move")
def move_overflow(unit):
    """Raw + - * in function bodies with no overflow helper or MAX bound nearby."""
    lines = unit.masked_lines
    for block in unit.functions():
        for offset, op in arithmetic_ops(unit.masked, block.body_start, block.body_end):
            line, _ = unit.position(offset)
            context = lines[line - 1] + "\n" + (lines[line - 2] if line > 1 else "")
            if MOVE_GUARD.search(context):
                continue
            yield hit_at(
                unit,
                offset,
                f"Possible integer overflow: raw '{op}' in {block.name} is not guarded",
                "Use overflow_add/overflow_sub/overflow_mul or check the operands against MAX_U64 first.",
            )


@detector(Category.OVERFLOW, "vyper")
def vyper_overflow(unit):
    """unsafe_* builtins and unchecked sections that switch off Vyper's checks."""
    for m in VYPER_UNCHECKED.finditer(unit.masked):
        if m.group("fn"):
            message = f"{m.group('fn')}() skips Vyper's built-in overflow check"
        else:
            message = "Unchecked section disables Vyper's built-in overflow checks"
        yield hit_at(unit, m.start(), message, "Prefer checked arithmetic unless the bounds are proven.")


def _arithmetic_parent(node) -> bool:
    parent = parent_of(node)
    return parent is not None and parent.type == "binary_expression" and operator_of(parent) in ARITHMETIC


def _string_operand(node) -> bool:
    node = unwrap(node)
    if node is None:
        return False
    if node.type == "parenthesized_expression" and node.named_children:
        return _string_operand(node.named_children[0])
    if is_string(node):
        return True
    if node.type == "binary_expression" and operator_of(node) == "+":
        return _string_operand(node.child_by_field_name("left")) or _string_operand(
            node.child_by_field_name("right")
        )
    return False


def _arithmetic_nodes(root):
    """Outermost arithmetic expressions, compound assignments and increments."""
    for node in iter_nodes(root):
        if node.type == "binary_expression":
            op = operator_of(node)
            if op not in ARITHMETIC or _arithmetic_parent(node):
                continue
            left = node.child_by_field_name("left")
            right = node.child_by_field_name("right")
            if _string_operand(left) or _string_operand(right):
                continue
            if is_literal(left) and is_literal(right):
                continue
            yield node, op
        elif node.type in ASSIGNMENT_TYPES:
            op = operator_of(node)
            if op not in COMPOUND:
                continue
            right = node.child_by_field_name("right")
            if right is not None and any(is_string(n) for n in iter_nodes(right)):
                continue
            yield node, op
        elif node.type == "update_expression":
            yield node, operator_of(node)


def _guarded(node, guard: re.Pattern) -> bool:
    statement = statement_of(node)
    context = [statement] + preceding_statements(statement, 1)
    return any(guard.search(node_text(n)) for n in context)


def _solidity_checked(root) -> bool:
    """Whether a pragma pins the compiler to 0.8 or later."""
    for node in root.named_children:
        if node.type == "pragma_directive":
            m = SOLIDITY_PRAGMA.search(node_text(node))
            if m and _checked_by_default(m.group(1)):
                return True
    return False


@detector(Category.OVERFLOW, "solidity", strategy="tree")
def solidity_overflow(root, unit):
    """Arithmetic outside unchecked blocks and SafeMath when the compiler predates 0.8."""
    if _solidity_checked(root):
        return
    for node, op in _arithmetic_nodes(root):
        if in_unchecked(node) or SOLIDITY_SAFEMATH.search(node_text(statement_of(node))):
            continue
        function = enclosing_function(node)
        owner = function_name(function) if function is not None else "<top level>"
        yield node_hit(
            unit,
            node,
            f"Possible integer overflow: '{op}' in {owner} is neither in an unchecked block nor using SafeMath",
            "Compile with Solidity >=0.8 or use SafeMath for arithmetic on untrusted values.",
        )


@detector(Category.OVERFLOW, "go", strategy="tree")
def go_overflow(root, unit):
    """Integer arithmetic that wraps silently."""
    for node, op in _arithmetic_nodes(root):
        if _guarded(node, GO_GUARD):
            continue
        yield node_hit(
            unit,
            node,
            f"Integer '{op}' wraps silently on overflow",
            "Check operand bounds (math.MaxInt64, bits.Add64) before the operation.",
        )


@detector(Category.OVERFLOW, "rust", strategy="tree")
def rust_overflow(root, unit):
    """Arithmetic not spelled as checked, saturating or wrapping."""
    for node, op in _arithmetic_nodes(root):
        if _guarded(node, RUST_GUARD):
            continue
        yield node_hit(
            unit,
            node,
            f"Arithmetic '{op}' panics in debug builds and wraps in release builds on overflow",
            "Use checked_*, saturating_* or wrapping_* arithmetic explicitly.",
        )
