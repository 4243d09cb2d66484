"""Reentrancy: state written after an external call, without a lock."""

import re
from typing import Callable, Optional

from auditlens.analyzers.base import Category, detector
from auditlens.analyzers.patterns import (
    GO_EXTERNAL_CALL,
    RUST_EXTERNAL_CALL,
    VYPER_EXTERNAL_CALL,
    function_statements,
    hit_at,
    move_external_calls,
    solidity_call_name,
    statements_after,
)
from auditlens.analyzers.tree_walk import (
    body_of,
    call_target,
    callee_text,
    enclosing_function,
    function_name,
    hit_at as node_hit,
    iter_nodes,
    line_of,
    modifiers_of,
    node_text,
    following_statements,
    operator_of,
    statement_of,
    unwrap,
)
from auditlens.parsers.source_unit import FunctionBlock, SourceUnit, Statement

SUGGESTION = "Update state before making the external call (checks-effects-interactions) or add a reentrancy guard."

MOVE_SEND = re.compile(r"\b(?P<name>send|transfer|deposit|withdraw)\s*(?:<[^;{}()]*>)?\s*\(")
MOVE_STATE_WRITE = re.compile(
    r"^(?!let\b)(?:\*\s*[\w.&()<>:\s]+?|[A-Za-z_]\w*(?:\.\w+)+)\s*[+\-*]?=(?!=)"
    r"|\bmove_to\s*(?:<[^;{}()]*>)?\s*\("
)
MOVE_LOCK = re.compile(r"\b(?:lock|locked|unlock|mutex|reentrancy_guard|reentrancy_lock)\b", re.IGNORECASE)

SOLIDITY_GUARD = re.compile(r"\bnonReentrant\b|\bnoReentrancy\b|\b(?:_?locked|_status|reentrancyLock|mutex)\b")
SOLIDITY_ASSIGNMENTS = frozenset({"assignment_expression", "augmented_assignment_expression"})
SOLIDITY_STORAGE = re.compile(r"\bstorage\b")

VYPER_GUARD = re.compile(r"@nonreentrant\b")
VYPER_PRAGMA_GUARD = re.compile(r"#\s*pragma\s+nonreentrancy\s+on\b")
VYPER_STATE_WRITE = re.compile(
    r"^self\.\w+(?:\s*\[[^\n]*?\]|\.\w+)*\s*(?:[+\-*/%|&^]|<<|>>|//)?=(?!=)"
    r"|^self\.\w+(?:\.\w+)*\.(?:append|pop)\s*\("
)

GO_LOCK = re.compile(r"\.(?:Lock|RLock)\(\)")
GO_STATE_TARGETS = frozenset({"selector_expression", "index_expression", "unary_expression"})

RUST_LOCK = re.compile(
    r"\.lock\(\)|\.write\(\)|\bReentrancyGuard\b|\breentrancy\w*|\bnon_reentrant\b|\block(?:ed)?\b"
)
RUST_STATE_TARGETS = frozenset({"field_expression", "index_expression", "unary_expression"})


def _text_reentrancy(
    unit: SourceUnit,
    find_call: Callable[[SourceUnit, Statement], Optional[tuple[int, str]]],
    writes_state: Callable[[FunctionBlock, str], bool],
    guarded: Callable[[FunctionBlock], bool],
):
    window = unit.options.reentrancy_window
    for block, statements in function_statements(unit):
        if guarded(block):
            continue
        for index, statement in enumerate(statements):
            call = find_call(unit, statement)
            if call is None:
                continue
            offset, name = call
            for later in statements_after(statements, index, window):
                if writes_state(block, later.text):
                    write_line, _ = unit.position(later.start)
                    yield hit_at(
                        unit,
                        offset,
                        f"Possible reentrancy: {block.name} calls {name} before updating state at line {write_line}",
                        SUGGESTION,
                    )
                    break


def _first(pattern: re.Pattern, unit: SourceUnit, statement: Statement) -> Optional[re.Match]:
    return pattern.search(unit.masked, statement.start, statement.end)


def _move_call(unit, statement):
    m = _first(MOVE_SEND, unit, statement)
    if m:
        return m.start(), m.group("name")
    for m in move_external_calls(unit.masked, statement.start, statement.end):
        return m.start(), f"{m.group('module')}::{m.group('function')}"
    return None


@detector(Category.REENTRANCY, "move")
def move_reentrancy(unit):
    """Cross-module calls and transfers followed by a global write, without a lock."""
    return _text_reentrancy(
        unit,
        _move_call,
        lambda block, text: bool(MOVE_STATE_WRITE.search(text)),
        lambda block: bool(MOVE_LOCK.search(block.body)),
    )


def _vyper_call(unit, statement):
    m = _first(VYPER_EXTERNAL_CALL, unit, statement)
    if not m:
        return None
    name = m.group("builtin") or m.group("keyword") or m.group("iface") or m.group("member")
    return m.start(), name


@detector(Category.REENTRANCY, "vyper")
def vyper_reentrancy(unit):
    """send/raw_call and interface calls followed by a self.* write, without @nonreentrant."""
    if VYPER_PRAGMA_GUARD.search(unit.text):
        return []
    return _text_reentrancy(
        unit,
        _vyper_call,
        lambda block, text: bool(VYPER_STATE_WRITE.search(text)),
        lambda block: any(VYPER_GUARD.search(d) for d in block.decorators),
    )


def _writes_state(statement, assignment_types, targets) -> bool:
    for node in iter_nodes(statement):
        if node.type in assignment_types:
            left = node.child_by_field_name("left")
            if left is None:
                continue
            candidates = left.named_children if left.type == "expression_list" else [left]
            if any(c.type in targets for c in candidates):
                return True
        elif node.type in ("inc_statement", "dec_statement") and node.named_children:
            if node.named_children[0].type in targets:
                return True
    return False


def _tree_reentrancy(root, unit, is_external, lock, assignment_types, targets):
    window = unit.options.reentrancy_window
    for node in iter_nodes(root):
        if node.type != "call_expression" or not is_external(callee_text(node)):
            continue
        function = enclosing_function(node)
        if function is not None and lock.search(node_text(function)):
            continue
        statement = statement_of(node)
        for later in following_statements(statement, window):
            if _writes_state(later, assignment_types, targets):
                owner = function_name(function) if function is not None else "<top level>"
                yield node_hit(
                    unit,
                    node,
                    f"Possible reentrancy: {owner} calls {callee_text(node)} before updating state "
                    f"at line {line_of(unit, later)}",
                    SUGGESTION,
                )
                break


def _root_identifier(node) -> Optional[str]:
    """``balances`` for ``balances[msg.sender].total``."""
    node = unwrap(node)
    while node is not None and node.type != "identifier" and node.named_children:
        node = unwrap(node.named_children[0])
    return node_text(node) if node is not None and node.type == "identifier" else None


def _solidity_locals(function) -> set[str]:
    """Parameters and local variables, leaving out storage pointers."""
    names = set()
    for node in iter_nodes(function):
        if node.type not in ("parameter", "variable_declaration") or SOLIDITY_STORAGE.search(node_text(node)):
            continue
        name = node.child_by_field_name("name")
        if name is None:
            identifiers = [c for c in node.named_children if c.type == "identifier"]
            name = identifiers[-1] if identifiers else None
        if name is not None:
            names.add(node_text(name))
    return names


def _solidity_write_target(node) -> Optional[str]:
    if node.type in SOLIDITY_ASSIGNMENTS:
        return _root_identifier(node.child_by_field_name("left"))
    if node.type == "update_expression" or (node.type == "unary_expression" and operator_of(node) == "delete"):
        operand = node.child_by_field_name("argument")
        if operand is None and node.named_children:
            operand = node.named_children[0]
        return _root_identifier(operand)
    return None


def _solidity_writes_state(statement, local_names: set[str]) -> bool:
    for node in iter_nodes(statement):
        target = _solidity_write_target(node)
        if target is not None and target not in local_names:
            return True
    return False


def _solidity_guarded(function) -> bool:
    if any(SOLIDITY_GUARD.search(m) for m in modifiers_of(function)):
        return True
    return bool(SOLIDITY_GUARD.search(node_text(body_of(function))))


@detector(Category.REENTRANCY, "solidity", strategy="tree")
def solidity_reentrancy(root, unit):
    """External calls followed by a state write, in functions without a reentrancy guard."""
    window = unit.options.reentrancy_window
    for node in iter_nodes(root):
        if node.type != "call_expression":
            continue
        name = solidity_call_name(call_target(node))
        function = enclosing_function(node)
        if name is None or function is None or _solidity_guarded(function):
            continue
        local_names = _solidity_locals(function)
        for later in following_statements(statement_of(node), window):
            if _solidity_writes_state(later, local_names):
                yield node_hit(
                    unit,
                    node,
                    f"Possible reentrancy: {function_name(function)} calls {name} before updating state "
                    f"at line {line_of(unit, later)}",
                    SUGGESTION,
                )
                break


@detector(Category.REENTRANCY, "go", strategy="tree")
def go_reentrancy(root, unit):
    """Client and RPC calls followed by a field or pointer write, without a mutex."""
    return _tree_reentrancy(
        root,
        unit,
        lambda callee: bool(GO_EXTERNAL_CALL.search(callee)),
        GO_LOCK,
        ("assignment_statement",),
        GO_STATE_TARGETS,
    )


@detector(Category.REENTRANCY, "rust", strategy="tree")
def rust_reentrancy(root, unit):
    """invoke and cross-contract calls followed by a field write, without a lock."""
    return _tree_reentrancy(
        root,
        unit,
        lambda callee: bool(RUST_EXTERNAL_CALL.search(callee)),
        RUST_LOCK,
        ("assignment_expression", "compound_assignment_expr"),
        RUST_STATE_TARGETS,
    )
