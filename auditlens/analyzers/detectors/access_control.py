"""Access control: publicly invocable functions without any authorization."""

import re

from auditlens.analyzers.base import Category, detector
from auditlens.analyzers.patterns import has_auth, hit_at
from auditlens.analyzers.tree_walk import (
    attributes_of,
    body_of,
    block_statements,
    enclosing,
    function_name,
    hit_at as node_hit,
    iter_nodes,
    modifiers_of,
    mutability_of,
    node_text,
    visibility_of,
)

MOVE_ENTRY = re.compile(r"\bentry\b|\bpublic\s*\(\s*script\s*\)")

GO_HANDLER = re.compile(r"\bhttp\.ResponseWriter\b|\*gin\.Context\b|\becho\.Context\b|\*fiber\.Ctx\b")
GO_HANDLER_TYPES = frozenset({"function_declaration", "method_declaration", "func_literal"})

RUST_ENTRY_ATTR = re.compile(
    r"#\[\s*(?:(?:actix_web|rocket|axum_macros)::)?(?:get|post|put|delete|patch|route)\b"
    r"|#\[\s*ink\s*\(\s*message\b"
    r"|#\[\s*pallet::(?:call|call_index|weight)\b"
)
RUST_PROGRAM_ATTR = re.compile(r"#\[\s*(?:anchor_lang::)?program\s*\]")
RUST_GUARD_ATTR = re.compile(r"#\[\s*(?:guard|has_role|protect|access_control|requires?_role|authorize)\b")
RUST_AUTH_EXTRACTOR = re.compile(
    r"\b(?:Claims|AuthUser|AdminUser|AuthenticatedUser|BearerAuth|Identity|JwtClaims|Signer)\b"
)
RUST_BODY_AUTH = re.compile(r"\bguard::|\bis_admin\s*\(\s*\)")
RUST_ANCHOR_CONTEXT = re.compile(r"Context\s*<\s*(?:'\w+\s*,\s*)*(?P<accounts>\w+)")
RUST_ANCHOR_CHECKS = re.compile(r"\bSigner\s*<|\bhas_one\b|\bconstraint\s*=")


def vyper_exposed(block) -> bool:
    decorators = " ".join(block.decorators)
    if not re.search(r"@(?:external|public)\b", decorators):
        return False
    if re.search(r"@(?:view|pure|internal|constant)\b", decorators):
        return False
    return block.name not in ("__init__",)


@detector(Category.ACCESS_CONTROL, "move")
def move_access_control(unit):
    """Entry functions that never check their signer or a role."""
    for block in unit.functions():
        if not MOVE_ENTRY.search(block.header):
            continue
        if has_auth("move", block.body):
            continue
        yield hit_at(
            unit,
            block.name_offset,
            f"Entry function {block.name} does not verify its signer or role",
            "Assert the signer's address (or role) before mutating state.",
        )


def _solidity_state_changing(function) -> bool:
    """Public or external, neither view nor pure, with a non-empty body."""
    if function.type != "function_definition":
        return False
    if visibility_of(function) not in ("public", "external"):
        return False
    if mutability_of(function) in ("view", "pure", "constant"):
        return False
    return bool(block_statements(body_of(function)))


@detector(Category.ACCESS_CONTROL, "solidity", strategy="tree")
def solidity_access_control(root, unit):
    """Public state-changing functions with no only* modifier or msg.sender check."""
    for node in iter_nodes(root):
        if not _solidity_state_changing(node):
            continue
        header = "\n".join(modifiers_of(node))
        if has_auth("solidity", header) or has_auth("solidity", node_text(body_of(node))):
            continue
        name = function_name(node)
        yield node_hit(
            unit,
            node.child_by_field_name("name") or node,
            f"Function {name} is externally callable and has no access control (no only* modifier or msg.sender check)",
            "Restrict the function with onlyOwner/onlyRole or require(msg.sender == owner).",
        )


@detector(Category.ACCESS_CONTROL, "vyper")
def vyper_access_control(unit):
    """External functions with no msg.sender check in the body."""
    for block in unit.functions():
        if not vyper_exposed(block) or block.name == "__default__":
            continue
        if has_auth("vyper", block.body):
            continue
        yield hit_at(
            unit,
            block.name_offset,
            f"External function {block.name} has no access control",
            "Add assert msg.sender == self.owner (or a role check) at the top of the function.",
        )


@detector(Category.ACCESS_CONTROL, "go", strategy="tree")
def go_access_control(root, unit):
    """HTTP handlers that never authenticate the request."""
    for node in iter_nodes(root):
        if node.type not in GO_HANDLER_TYPES:
            continue
        if not GO_HANDLER.search(node_text(node.child_by_field_name("parameters"))):
            continue
        if has_auth("go", node_text(node.child_by_field_name("body"))):
            continue
        name = function_name(node) if node.type != "func_literal" else "<anonymous handler>"
        anchor = node.child_by_field_name("name") or node
        yield node_hit(
            unit,
            anchor,
            f"HTTP handler {name} does not authenticate the request",
            "Authenticate the caller in the handler or wrap it in an auth middleware.",
        )


def _in_program_module(function) -> bool:
    module = enclosing(function, ("mod_item",))
    return module is not None and any(RUST_PROGRAM_ATTR.search(a) for a in attributes_of(module))


def _anchor_accounts_checked(root, parameters: str) -> bool:
    m = RUST_ANCHOR_CONTEXT.search(parameters)
    if not m:
        return False
    for node in iter_nodes(root):
        if node.type == "struct_item" and node_text(node.child_by_field_name("name")) == m.group("accounts"):
            return bool(RUST_ANCHOR_CHECKS.search(node_text(node)))
    return False


@detector(Category.ACCESS_CONTROL, "rust", strategy="tree")
def rust_access_control(root, unit):
    """Route handlers, ink! messages and Anchor instructions with no auth."""
    for node in iter_nodes(root):
        if node.type != "function_item":
            continue
        attributes = attributes_of(node)
        is_public = any(c.type == "visibility_modifier" for c in node.children)
        entry = any(RUST_ENTRY_ATTR.search(a) for a in attributes) or (
            is_public and _in_program_module(node)
        )
        if not entry:
            continue

        parameters = node_text(node.child_by_field_name("parameters"))
        body = node_text(node.child_by_field_name("body"))
        if (
            any(RUST_GUARD_ATTR.search(a) for a in attributes)
            or RUST_AUTH_EXTRACTOR.search(parameters)
            or RUST_BODY_AUTH.search(body)
            or has_auth("rust", body)
            or _anchor_accounts_checked(root, parameters)
        ):
            continue
        yield node_hit(
            unit,
            node.child_by_field_name("name") or node,
            f"Entry point {function_name(node)} has no access control",
            "Require an authenticated extractor, guard attribute or signer check.",
        )
