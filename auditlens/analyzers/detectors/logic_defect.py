"""Logic defects: unconditional failures, dead loops, swallowed errors, unfinished code."""

import re

from auditlens.analyzers.base import Category, detector
from auditlens.analyzers.patterns import brace_regions, hit_at
from auditlens.analyzers.tree_walk import (
    COMMENT_TYPES,
    FUNCTION_TYPES,
    attributes_of,
    block_statements,
    body_of,
    call_target,
    callee_name,
    enclosing,
    enclosing_function,
    function_name,
    hit_at as node_hit,
    is_top_level_statement,
    iter_nodes,
    node_text,
    unwrap,
)

TODO_MARKER = re.compile(r"\b(?P<marker>TODO|FIXME|XXX|HACK)\b")
TODO_SUGGESTION = "Finish or remove the unimplemented logic before deployment."

MOVE_ASSERT_FALSE = re.compile(r"\bassert!\s*\(\s*false\b")
MOVE_INFINITE_LOOP = re.compile(r"\bwhile\s*\(\s*true\s*\)\s*\{|\bloop\s*\{")
MOVE_LOOP_EXIT = re.compile(r"\b(?:break|return|abort)\b")
MOVE_OPTION_EXTRACT = re.compile(
    r"\boption::(?P<fn>extract|destroy_some|borrow_mut|borrow)\s*(?:<[^;{}()]*>)?\s*\("
    r"|\.\s*(?P<method>extract|destroy_some)\s*\("
)
MOVE_OPTION_CHECK = re.compile(r"\b(?:option::)?is_(?:some|none)\b")

SOLIDITY_LOW_LEVEL = re.compile(r"\.\s*(?P<fn>call|send|delegatecall|staticcall)$")
SOLIDITY_ALWAYS_FAILS = re.compile(r"^(?:(?:require|assert)\s*\(\s*false\b|revert\b)")
SOLIDITY_LOOP_EXIT = re.compile(r"\b(?:break|return|revert)\b")

VYPER_ASSERT_FALSE = re.compile(r"\bassert\s+False\b")
VYPER_IGNORED_RAW_CALL = re.compile(r"^raw_call\s*\(.*\brevert_on_failure\s*=\s*False\b", re.DOTALL)

GO_ERR_CHECK = re.compile(r"\berr\s*!=\s*nil\b")
GO_MUST = re.compile(r"^Must(?:[A-Z]\w*)?$")
GO_LOOP_EXIT = re.compile(r"\b(?:break|return|goto)\b|\bos\.Exit\(|\bpanic\(|\blog\.Fatal")

RUST_ACCESSORS = frozenset({"unwrap", "expect"})
RUST_LOOP_EXIT = re.compile(r"\b(?:break|return)\b|\?\s*;|\bprocess::exit\b|\bpanic!")
RUST_CHECKED = frozenset({"call_expression", "macro_invocation", "loop_expression", "match_arm", "if_expression"})
RUST_TEST_ATTR = re.compile(r"#\[\s*(?:test|tokio::test|cfg\s*\(\s*test\s*\))")


def _todo_comments(unit):
    for comment in unit.comments:
        m = TODO_MARKER.search(comment.text)
        if m:
            yield hit_at(
                unit,
                comment.offset + m.start(),
                f"{m.group('marker')} comment marks unfinished logic",
                TODO_SUGGESTION,
            )


def _infinite_loops(unit, opener, exits, language_name):
    masked = unit.masked
    for start, end in brace_regions(masked, opener):
        if not exits.search(masked, start, end):
            yield hit_at(
                unit,
                start,
                f"{language_name} loop never exits: no break or return inside an always-true loop",
                "Add an exit condition or bound the loop.",
            )


@detector(Category.LOGIC_DEFECT, "move")
def move_logic_defect(unit):
    """assert!(false), unconditional aborts, unchecked option extraction, dead loops and TODOs."""
    hits = []
    masked = unit.masked
    for block in unit.functions():
        for m in MOVE_ASSERT_FALSE.finditer(masked, block.body_start, block.body_end):
            hits.append(hit_at(unit, m.start(), f"assert!(false) in {block.name} always aborts",
                               "Replace with a real condition or remove the dead branch."))
        for statement in unit.statements(block):
            if statement.depth == 0 and re.match(r"abort\b", statement.text):
                hits.append(hit_at(unit, statement.start, f"abort in {block.name} runs unconditionally",
                                   "Guard the abort with a condition or use assert! with a check."))
        if not MOVE_OPTION_CHECK.search(block.body):
            for m in MOVE_OPTION_EXTRACT.finditer(masked, block.body_start, block.body_end):
                name = m.group("fn") or m.group("method")
                hits.append(hit_at(unit, m.start(), f"option {name} in {block.name} aborts when the value is none",
                                   "Check option::is_some before extracting, or provide a default."))
    hits.extend(_infinite_loops(unit, MOVE_INFINITE_LOOP, MOVE_LOOP_EXIT, "Move"))
    hits.extend(_todo_comments(unit))
    return sorted(hits, key=lambda h: (h.line, h.col))


@detector(Category.LOGIC_DEFECT, "vyper")
def vyper_logic_defect(unit):
    """assert False, pass-only bodies, unconditional raises and unchecked raw_call results."""
    hits = []
    for m in VYPER_ASSERT_FALSE.finditer(unit.masked):
        hits.append(hit_at(unit, m.start(), "assert False always reverts",
                           "Replace with a real condition or remove the dead branch."))
    for block in unit.functions():
        statements = unit.statements(block)
        if [s.text for s in statements] == ["pass"]:
            hits.append(hit_at(unit, block.name_offset, f"Function {block.name} body is only pass",
                               "Implement the function or remove it."))
        for statement in statements:
            if statement.depth == 0 and re.match(r"raise\b", statement.text):
                hits.append(hit_at(unit, statement.start, f"raise in {block.name} runs unconditionally",
                                   "Guard the raise with a condition."))
            if VYPER_IGNORED_RAW_CALL.match(statement.text):
                hits.append(hit_at(unit, statement.start,
                                   f"raw_call with revert_on_failure=False ignores the result in {block.name}",
                                   "Capture the success flag and assert on it."))
    hits.extend(_todo_comments(unit))
    return sorted(hits, key=lambda h: (h.line, h.col))


def _empty_block(block) -> bool:
    return block is not None and not block_statements(block)


def _catch_body(clause):
    body = clause.child_by_field_name("body")
    if body is None:
        body = next((c for c in reversed(clause.named_children) if c.type == "block_statement"), None)
    return body


def _endless_loop(node) -> bool:
    """``while (true)`` or ``for (;;)``."""
    if node.type == "while_statement":
        condition = node_text(node.child_by_field_name("condition")).strip("() \t\n")
        return condition == "true"
    if node.type == "for_statement":
        condition = node_text(node.child_by_field_name("condition")).strip("; \t\n")
        return condition in ("", "true")
    return False


def _ignored_low_level_call(statement):
    """The low-level call an expression statement makes and discards."""
    expression = unwrap(statement.named_children[0]) if statement.named_children else None
    if expression is None or expression.type != "call_expression":
        return None
    return SOLIDITY_LOW_LEVEL.search(call_target(expression))


@detector(Category.LOGIC_DEFECT, "solidity", strategy="tree")
def solidity_logic_defect(root, unit):
    """Empty branches and catches, ignored low-level calls, unconditional reverts, dead loops and TODOs."""
    hits = []
    for node in iter_nodes(root):
        if node.type == "if_statement":
            body = unwrap(node.child_by_field_name("body"))
            if body is not None and body.type == "block_statement" and _empty_block(body):
                hits.append(node_hit(unit, node, "Empty if block: the branch has no effect",
                                     "Implement the branch or remove the condition."))
        elif node.type == "catch_clause":
            if _empty_block(_catch_body(node)):
                hits.append(node_hit(unit, node, "Empty catch block silently swallows the failure",
                                     "Handle or re-raise the failure in the catch block."))
        elif node.type == "expression_statement":
            ignored = _ignored_low_level_call(node)
            function = enclosing_function(node)
            if ignored and function is not None:
                hits.append(node_hit(unit, node,
                                     f"Return value of low-level {ignored.group('fn')} is ignored in {function_name(function)}",
                                     "Check the returned success flag, e.g. (bool ok, ) = ...; require(ok);"))
        elif node.type in FUNCTION_TYPES:
            for statement in block_statements(body_of(node)):
                if SOLIDITY_ALWAYS_FAILS.match(node_text(unwrap(statement))):
                    hits.append(node_hit(unit, statement, f"{function_name(node)} always reverts",
                                         "Guard the revert with a condition."))
        elif _endless_loop(node):
            if not SOLIDITY_LOOP_EXIT.search(node_text(node.child_by_field_name("body"))):
                hits.append(node_hit(unit, node,
                                     "Solidity loop never exits: no break or return inside an always-true loop",
                                     "Add an exit condition or bound the loop."))
        elif node.type == "comment":
            m = TODO_MARKER.search(node_text(node))
            if m:
                hits.append(node_hit(unit, node, f"{m.group('marker')} comment marks unfinished logic", TODO_SUGGESTION))
    return sorted(hits, key=lambda h: (h.line, h.col))


@detector(Category.LOGIC_DEFECT, "go", strategy="tree")
def go_logic_defect(root, unit):
    """Ignored errors, unconditional panics, Must* helpers, endless loops and TODOs."""
    for node in iter_nodes(root):
        if node.type == "if_statement":
            condition = node.child_by_field_name("condition")
            if GO_ERR_CHECK.search(node_text(condition)) and _empty_block(node.child_by_field_name("consequence")):
                yield node_hit(unit, node, "if err != nil has an empty body; the error is ignored",
                               "Return, wrap or log the error.")
        elif node.type == "call_expression":
            name = callee_name(node)
            function = enclosing_function(node)
            if node_text(node.child_by_field_name("function")) == "panic" and is_top_level_statement(node, function):
                yield node_hit(unit, node, "panic runs unconditionally in the function body",
                               "Return an error instead of panicking.")
            elif GO_MUST.match(name) and function is not None:
                yield node_hit(unit, node, f"{name} panics instead of returning an error",
                               "Call the non-Must variant and handle the error.")
        elif node.type == "for_statement":
            body = node.child_by_field_name("body")
            header = [c for c in node.named_children if c.type not in COMMENT_TYPES]
            if len(header) == 1 and body is not None and not GO_LOOP_EXIT.search(node_text(body)):
                yield node_hit(unit, node, "Infinite for loop has no break or return",
                               "Add an exit condition or bound the loop.")
        elif node.type == "comment":
            m = TODO_MARKER.search(node_text(node))
            if m:
                yield node_hit(unit, node, f"{m.group('marker')} comment marks unfinished logic", TODO_SUGGESTION)


def _in_test_code(node) -> bool:
    function = enclosing_function(node)
    if function is not None and any(RUST_TEST_ATTR.search(a) for a in attributes_of(function)):
        return True
    module = enclosing(node, ("mod_item",))
    while module is not None:
        if any(RUST_TEST_ATTR.search(a) for a in attributes_of(module)):
            return True
        module = enclosing(module, ("mod_item",))
    return False


def _macro_name(node) -> str:
    return re.split(r"::", node_text(node.child_by_field_name("macro")))[-1]


def _empty_arm(value) -> bool:
    if value is None:
        return False
    if value.type == "unit_expression":
        return True
    return value.type == "block" and not block_statements(value)


@detector(Category.LOGIC_DEFECT, "rust", strategy="tree")
def rust_logic_defect(root, unit):
    """unwrap/expect, todo!, unconditional panics, endless loops and swallowed errors outside tests."""
    for node in iter_nodes(root):
        if node.type in COMMENT_TYPES:
            m = TODO_MARKER.search(node_text(node))
            if m:
                yield node_hit(unit, node, f"{m.group('marker')} comment marks unfinished logic", TODO_SUGGESTION)
            continue
        if node.type not in RUST_CHECKED or _in_test_code(node):
            continue

        if node.type == "call_expression":
            function = node.child_by_field_name("function")
            if function is not None and function.type == "field_expression":
                method = node_text(function.child_by_field_name("field"))
                if method in RUST_ACCESSORS:
                    yield node_hit(unit, function.child_by_field_name("field"),
                                   f".{method}() panics when the value is missing",
                                   "Propagate with ? or handle the None/Err case explicitly.")
        elif node.type == "macro_invocation":
            name = _macro_name(node)
            if name in ("todo", "unimplemented"):
                yield node_hit(unit, node, f"{name}! panics when reached", TODO_SUGGESTION)
            elif name in ("panic", "unreachable") and is_top_level_statement(node, enclosing_function(node)):
                yield node_hit(unit, node, f"{name}! runs unconditionally in the function body",
                               "Return an error instead of panicking.")
        elif node.type == "loop_expression":
            if not RUST_LOOP_EXIT.search(node_text(node.child_by_field_name("body"))):
                yield node_hit(unit, node, "loop never exits: no break or return inside",
                               "Add an exit condition or bound the loop.")
        elif node.type == "match_arm":
            pattern = node_text(node.child_by_field_name("pattern"))
            if pattern.startswith("Err") and _empty_arm(node.child_by_field_name("value")):
                yield node_hit(unit, node, "Err arm has an empty body; the error is swallowed",
                               "Handle, log or propagate the error.")
        elif node.type == "if_expression":
            condition = node.child_by_field_name("condition")
            if (
                condition is not None
                and condition.type == "let_condition"
                and node_text(condition.child_by_field_name("pattern")).startswith("Err")
                and _empty_arm(node.child_by_field_name("consequence"))
            ):
                yield node_hit(unit, node, "if let Err(..) has an empty body; the error is swallowed",
                               "Handle, log or propagate the error.")
