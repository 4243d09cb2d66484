"""Freeze bypass: direct mutable access that skips a freeze or pause guard."""

import re

from auditlens.analyzers.base import Category, detector
from auditlens.analyzers.patterns import hit_at
from auditlens.analyzers.tree_walk import (
    call_target,
    callee_name,
    callee_text,
    enclosing,
    enclosing_function,
    function_name,
    hit_at as node_hit,
    iter_nodes,
    node_text,
)

SUGGESTION = "Route the mutation through the guarded entry point, or check the frozen/paused flag first."

FREEZE_PATH = re.compile(r"freeze|frozen|pause", re.IGNORECASE)

MOVE_ACCESS = re.compile(
    r"\b(?P<kind>borrow_global_mut|move_from)\s*<(?P<resource>[^<>();]+(?:<[^<>();]*>)?)>"
    r"|\bborrow_global\s*<(?P<borrowed>[^<>();]+(?:<[^<>();]*>)?)>\s*\([^;]*?\)\s*\.\s*borrow_mut\s*\("
)
MOVE_FREEZE_CHECK = re.compile(
    r"\b(?:is_frozen|frozen|is_paused|paused|assert_not_frozen|assert_not_paused|check_frozen|not_frozen)\b"
)

SOLIDITY_LOW_LEVEL = re.compile(r"\.\s*(?P<fn>delegatecall|call)$")
SOLIDITY_SSTORE = re.compile(r"^sstore\s*\(")
SOLIDITY_FREEZE_CHECK = re.compile(
    r"\bwhenNot(?:Paused|Frozen)\b|\bnotFrozen\b|\b_requireNotPaused\s*\("
    r"|\brequire\s*\(\s*!\s*(?:_?paused|_?frozen|isFrozen\w*|isPaused\w*)"
)

VYPER_LOW_LEVEL = re.compile(r"\b(?P<fn>raw_call|send|selfdestruct)\s*\(")
VYPER_FREEZE_CHECK = re.compile(r"\bassert\s+not\s+self\.(?:paused|frozen|is_paused|is_frozen)\b")

GO_BYPASS_CALL = re.compile(r"^(?:Bypass\w*|Force\w*|\w*Unchecked\w*|Unsafe\w*)$")
GO_FREEZE_CHECK = re.compile(r"\b(?:IsFrozen|Frozen|IsPaused|Paused|CheckFrozen|RequireNotFrozen)\w*\b")

RUST_RAW_ACCESS = frozenset({
    "get_unchecked_mut", "get_unchecked", "from_raw_parts_mut", "from_raw_parts", "transmute",
    "try_borrow_mut_data", "borrow_mut_data", "try_borrow_mut_lamports", "borrow_mut_lamports",
})
RUST_FREEZE_CHECK = re.compile(
    r"\b(?:is_frozen|frozen|is_paused|paused|require_not_frozen|check_frozen|when_not_paused)\b"
)


def _text_guarded(unit, offset, check: re.Pattern) -> bool:
    block = unit.function_at(offset)
    if block is None:
        return False
    return bool(FREEZE_PATH.search(block.name) or check.search(block.header) or check.search(block.body))


@detector(Category.FREEZE_BYPASS, "move")
def move_freeze_bypass(unit):
    """borrow_global_mut, move_from and borrow_mut outside a frozen check."""
    for m in MOVE_ACCESS.finditer(unit.masked):
        if _text_guarded(unit, m.start(), MOVE_FREEZE_CHECK):
            continue
        if m.group("kind"):
            message = f"{m.group('kind')}<{m.group('resource').strip()}> touches global state directly and can bypass freeze protection"
        else:
            message = f"borrow_global<{m.group('borrowed').strip()}> followed by borrow_mut() can bypass freeze protection"
        yield hit_at(unit, m.start(), message, SUGGESTION)


@detector(Category.FREEZE_BYPASS, "vyper")
def vyper_freeze_bypass(unit):
    """raw_call, send and selfdestruct in functions that never assert the paused flag."""
    for m in VYPER_LOW_LEVEL.finditer(unit.masked):
        if _text_guarded(unit, m.start(), VYPER_FREEZE_CHECK):
            continue
        yield hit_at(unit, m.start(), f"{m.group('fn')}() can skip the frozen flag check", SUGGESTION)


def _tree_guarded(node, check: re.Pattern) -> bool:
    function = enclosing_function(node)
    if function is None:
        return False
    return bool(FREEZE_PATH.search(function_name(function)) or check.search(node_text(function)))


def _writes_storage(assembly) -> bool:
    return any(
        node.type == "yul_function_call" and SOLIDITY_SSTORE.match(node_text(node))
        for node in iter_nodes(assembly)
    )


@detector(Category.FREEZE_BYPASS, "solidity", strategy="tree")
def solidity_freeze_bypass(root, unit):
    """Low-level call/delegatecall and sstore in assembly outside a whenNotFrozen-style guard."""
    for node in iter_nodes(root):
        if node.type == "call_expression":
            m = SOLIDITY_LOW_LEVEL.search(call_target(node))
            if m is None or _tree_guarded(node, SOLIDITY_FREEZE_CHECK):
                continue
            yield node_hit(unit, node, f"Low-level .{m.group('fn')}() can bypass freeze checks such as whenNotFrozen",
                           SUGGESTION)
        elif node.type == "assembly_statement":
            if _writes_storage(node) and not _tree_guarded(node, SOLIDITY_FREEZE_CHECK):
                yield node_hit(unit, node, "Inline assembly writes storage with sstore, bypassing freeze checks",
                               SUGGESTION)


@detector(Category.FREEZE_BYPASS, "go", strategy="tree")
def go_freeze_bypass(root, unit):
    """unsafe.Pointer and Bypass/Force/Unsafe helpers outside a frozen check."""
    for node in iter_nodes(root):
        if node.type != "call_expression":
            continue
        callee = callee_text(node)
        if callee == "unsafe.Pointer":
            message = "unsafe.Pointer conversion bypasses type safety and any freeze guard"
        elif GO_BYPASS_CALL.match(callee_name(node)):
            message = f"{callee}() may bypass the freeze mechanism"
        else:
            continue
        if _tree_guarded(node, GO_FREEZE_CHECK):
            continue
        yield node_hit(unit, node, message, SUGGESTION)


@detector(Category.FREEZE_BYPASS, "rust", strategy="tree")
def rust_freeze_bypass(root, unit):
    """unsafe blocks, static mut and raw account access outside a frozen check."""
    for node in iter_nodes(root):
        if node.type == "unsafe_block":
            if not _tree_guarded(node, RUST_FREEZE_CHECK):
                yield node_hit(unit, node, "unsafe block can bypass borrow checks and freeze protection", SUGGESTION)
        elif node.type == "static_item":
            if any(c.type == "mutable_specifier" for c in node.children):
                name = node_text(node.child_by_field_name("name"))
                yield node_hit(unit, node, f"static mut {name} is global mutable state outside any guard", SUGGESTION)
        elif node.type == "call_expression":
            name = callee_name(node)
            if name not in RUST_RAW_ACCESS or enclosing(node, ("unsafe_block",)) is not None:
                continue
            if _tree_guarded(node, RUST_FREEZE_CHECK):
                continue
            yield node_hit(unit, node, f"{name}() gives raw mutable access that can bypass freeze checks", SUGGESTION)
