"""Call safety: external calls not preceded by an authorization check."""

from auditlens.analyzers.base import Category, detector
from auditlens.analyzers.patterns import (
    GO_EXTERNAL_CALL,
    RUST_EXTERNAL_CALL,
    VYPER_EXTERNAL_CALL,
    function_statements,
    has_auth,
    hit_at,
    move_external_calls,
    solidity_call_name,
    statements_before,
)
from auditlens.analyzers.tree_walk import (
    call_target,
    callee_text,
    enclosing_function,
    function_name,
    hit_at as node_hit,
    iter_nodes,
    modifiers_of,
    node_text,
    preceding_statements,
    same_node,
    statement_of,
)

SUGGESTION = "Verify the caller (signer, owner or role) before calling into other code."

CONDITION_TYPES = frozenset({
    "if_statement", "if_expression", "while_expression", "for_statement", "while_statement",
})


def _text_call_safety(unit, find_calls):
    lookback = unit.options.call_safety_lookback
    for block, statements in function_statements(unit):
        if has_auth(unit.language, block.header):
            continue
        for index, statement in enumerate(statements):
            for offset, name in find_calls(unit, statement):
                context = [s.text for s in statements_before(statements, index, lookback)]
                context.append(unit.masked[statement.start:offset])
                if has_auth(unit.language, "\n".join(context)):
                    continue
                yield hit_at(
                    unit,
                    offset,
                    f"{name} is called in {block.name} without a preceding authorization check",
                    SUGGESTION,
                )


def _move_calls(unit, statement):
    return [
        (m.start(), f"{m.group('module')}::{m.group('function')}")
        for m in move_external_calls(unit.masked, statement.start, statement.end)
    ]


def _vyper_calls(unit, statement):
    calls = []
    for m in VYPER_EXTERNAL_CALL.finditer(unit.masked, statement.start, statement.end):
        name = m.group("builtin") or m.group("keyword") or m.group("iface") or m.group("member")
        calls.append((m.start(), name))
    return calls


@detector(Category.CALL_SAFETY, "move")
def move_call_safety(unit):
    """Calls into other modules with no signer or role check shortly before."""
    return _text_call_safety(unit, _move_calls)


@detector(Category.CALL_SAFETY, "vyper")
def vyper_call_safety(unit):
    """send/raw_call and interface calls with no msg.sender check shortly before."""
    return _text_call_safety(unit, _vyper_calls)


def _enclosing_conditions(node, function) -> list[str]:
    """Conditions of the branches and loops that contain ``node``."""
    conditions = []
    parent = node.parent
    while parent is not None and not same_node(parent, function):
        if parent.type in CONDITION_TYPES:
            conditions.append(node_text(parent.child_by_field_name("condition")))
        parent = parent.parent
    return conditions


def _unauthorized_calls(root, unit, call_name):
    """``(call, name, function)`` for external calls with no auth check in reach."""
    lookback = unit.options.call_safety_lookback
    for node in iter_nodes(root):
        if node.type != "call_expression":
            continue
        name = call_name(node)
        if name is None:
            continue
        function = enclosing_function(node)
        statement = statement_of(node)
        context = [node_text(s) for s in preceding_statements(statement, lookback)]
        context.append(unit.text_between(statement.start_byte, node.start_byte))
        context.extend(_enclosing_conditions(node, function))
        if function is not None:
            context.append(node_text(function.child_by_field_name("parameters")))
            context.extend(modifiers_of(function))
        if has_auth(unit.language, "\n".join(context)):
            continue
        yield node, name, function


def _matching_callee(pattern):
    def call_name(node):
        callee = callee_text(node)
        return callee if pattern.search(callee) else None

    return call_name


@detector(Category.CALL_SAFETY, "solidity", strategy="tree")
def solidity_call_safety(root, unit):
    """Low-level, value and interface calls with no only* modifier or msg.sender check."""
    calls = _unauthorized_calls(root, unit, lambda node: solidity_call_name(call_target(node)))
    for node, name, function in calls:
        owner = function_name(function) if function is not None else "<top level>"
        yield node_hit(unit, node, f"{name} is called in {owner} without a preceding authorization check", SUGGESTION)


@detector(Category.CALL_SAFETY, "go", strategy="tree")
def go_call_safety(root, unit):
    """Outbound HTTP and RPC calls with no authentication check before them."""
    for node, callee, _ in _unauthorized_calls(root, unit, _matching_callee(GO_EXTERNAL_CALL)):
        yield node_hit(unit, node, f"{callee} is called without a preceding authorization check", SUGGESTION)


@detector(Category.CALL_SAFETY, "rust", strategy="tree")
def rust_call_safety(root, unit):
    """invoke and cross-contract calls with no signer or owner check before them."""
    for node, callee, _ in _unauthorized_calls(root, unit, _matching_callee(RUST_EXTERNAL_CALL)):
        yield node_hit(unit, node, f"{callee} is called without a preceding authorization check", SUGGESTION)
