"""Randomness misuse: predictable values used as a source of randomness."""

import re
from typing import Optional

from auditlens.analyzers.base import Category, detector
from auditlens.analyzers.patterns import (
    assigned_name,
    balanced_call_args,
    function_statements,
    hit_at,
    is_random_name,
)
from auditlens.analyzers.tree_walk import (
    FUNCTION_TYPES,
    body_of,
    callee_text,
    function_name,
    hit_at as node_hit,
    iter_nodes,
    node_text,
    operator_of,
    parent_of,
    same_node,
)

SUGGESTION = "Use a verifiable randomness source (VRF, commit-reveal or the chain's randomness API)."

MOVE_TX_RANDOM = re.compile(r"\bTransactionContext::random\b")
MOVE_CHAIN_VALUE = re.compile(
    r"\btimestamp::now_(?:seconds|microseconds)\s*\(|\bblock::get_current_block_height\s*\("
    r"|\btx_context::(?:epoch\w*|digest)\s*\(|\bclock::timestamp_ms\s*\("
)
MOVE_HASH = re.compile(r"\b(?:(?:std::)?hash::sha[23]_256|aptos_hash::\w+|keccak256)\s*\(")

SOLIDITY_CHAIN_VALUE = re.compile(r"block\.(?:timestamp|number|difficulty|prevrandao|coinbase|gaslimit)")
SOLIDITY_BLOCKHASH = re.compile(r"(?:block\.)?blockhash")
SOLIDITY_SENDER = re.compile(r"msg\.sender|tx\.origin")
SOLIDITY_HASH = re.compile(r"keccak256|sha256|sha3|ripemd160")
SOLIDITY_STATEMENT_TYPES = frozenset({
    "expression_statement", "variable_declaration_statement", "return_statement", "emit_statement",
})

VYPER_CHAIN_VALUE = re.compile(
    r"\bblock\.(?:timestamp|number|difficulty|prevrandao|coinbase|prevhash)\b|\bblockhash\s*\("
)
VYPER_SENDER = re.compile(r"\bmsg\.sender\b|\btx\.origin\b")
VYPER_HASH = re.compile(r"\b(?:keccak256|sha256|sha3)\s*\(")

GO_WEAK_IMPORTS = frozenset({'"math/rand"', '"math/rand/v2"'})
GO_SEED_CALL = re.compile(r"^(?:rand\.Seed|rand\.NewSource|rand\.NewPCG|rand\.NewChaCha8)$")
GO_CHAIN_VALUE = re.compile(
    r"\btime\.Now\(\)|\b(?:BlockTime|BlockHeight|BlockHash)\(\)|\bblock\.(?:Time|Number)\b"
    r"|\bHeader\(\)\.(?:Time|Height)\b"
)
GO_HASH_CALL = re.compile(
    r"(?:sha256\.Sum256|sha512\.Sum\w*|md5\.Sum|Keccak256\w*|sha3\.\w+|blake2b\.Sum\w*|fnv\.New\w*)$"
)
FIXED_SEED = re.compile(r"^\(\s*-?\d+\s*\)$")

RUST_WEAK_RNG = re.compile(r"(?:^|::)(?:thread_rng|random)(?:::<[^>]*>)?$|\bSmallRng::\w+$")
RUST_SEEDED_RNG = re.compile(r"(?:^|::)(?:seed_from_u64|from_seed)$")
RUST_CHAIN_VALUE = re.compile(
    r"\bClock::get\(\)|\bunix_timestamp\b|\benv\.block\.(?:time|height)\b|\bblock_timestamp\s*\("
    r"|\bblock_number\s*\(|\brandom_seed\s*\(|\bSystemTime::now\(\)"
)
RUST_HASH_CALL = re.compile(r"(?:^|::|\.)(?:hash|hashv|keccak\w*|sha256\w*|blake\w*|digest)$")


def _inside_hash(masked: str, hash_pattern: re.Pattern, start: int, end: int, offset: int) -> bool:
    for m in hash_pattern.finditer(masked, start, end):
        open_index = m.end() - 1
        args = balanced_call_args(masked, open_index)
        if open_index < offset <= open_index + len(args):
            return True
    return False


def _text_randomness(unit, chain_value, hash_pattern, sender: Optional[re.Pattern] = None):
    """Chain values folded into a hash, reduced with ``%`` or stored as a random value."""
    masked = unit.masked
    for block, statements in function_statements(unit):
        tainted: dict[str, str] = {}
        for statement in statements:
            target = assigned_name(statement.text)
            random_target = bool(target and is_random_name(target))
            modulo = "%" in statement.text
            sources = list(chain_value.finditer(masked, statement.start, statement.end))

            reported = False
            for m in sources:
                if random_target or modulo or _inside_hash(masked, hash_pattern, statement.start, statement.end, m.start()):
                    yield hit_at(
                        unit,
                        m.start(),
                        f"{m.group(0).rstrip('( ')} is predictable and is used as randomness in {block.name}",
                        SUGGESTION,
                    )
                    reported = True
                    break

            if not reported and sender is not None:
                m = sender.search(masked, statement.start, statement.end)
                if m and (
                    random_target
                    or modulo
                    or _inside_hash(masked, hash_pattern, statement.start, statement.end, m.start())
                ):
                    yield hit_at(
                        unit,
                        m.start(),
                        f"{m.group(0)} is caller-controlled and is used as randomness in {block.name}",
                        SUGGESTION,
                    )
                    reported = True

            if not reported and tainted and (random_target or modulo or hash_pattern.search(statement.text)):
                for name, origin in tainted.items():
                    if re.search(rf"\b{re.escape(name)}\b", statement.text) and name != target:
                        yield hit_at(
                            unit,
                            statement.start,
                            f"{name} (from {origin}) is predictable and is used as randomness in {block.name}",
                            SUGGESTION,
                        )
                        reported = True
                        break

            if sources and target and not reported:
                tainted[target] = sources[0].group(0).rstrip("( ")


@detector(Category.RANDOMNESS_MISUSE, "move")
def move_randomness_misuse(unit):
    """TransactionContext::random and chain timestamps used as random values."""
    hits = [
        hit_at(unit, m.start(), "TransactionContext::random() is predictable and open to manipulation", SUGGESTION)
        for m in MOVE_TX_RANDOM.finditer(unit.masked)
    ]
    hits.extend(_text_randomness(unit, MOVE_CHAIN_VALUE, MOVE_HASH))
    return sorted(hits, key=lambda h: (h.line, h.col))


@detector(Category.RANDOMNESS_MISUSE, "vyper")
def vyper_randomness_misuse(unit):
    """Block values and msg.sender hashed, reduced with % or stored as a random value."""
    return _text_randomness(unit, VYPER_CHAIN_VALUE, VYPER_HASH, VYPER_SENDER)


def _solidity_statements(body):
    """Statements of a function body in source order, with branch and loop conditions."""
    for node in iter_nodes(body):
        if node.type in SOLIDITY_STATEMENT_TYPES:
            yield node
        elif node.type in ("if_statement", "while_statement", "do_while_statement"):
            condition = node.child_by_field_name("condition")
            if condition is not None:
                yield condition


def _chain_value(node) -> Optional[str]:
    """``block.timestamp``, ``blockhash`` or ``now`` when ``node`` reads one."""
    if node.type == "member_expression" and SOLIDITY_CHAIN_VALUE.fullmatch(node_text(node)):
        return node_text(node)
    if node.type == "call_expression" and SOLIDITY_BLOCKHASH.fullmatch(callee_text(node)):
        return callee_text(node)
    if node.type == "identifier" and node_text(node) == "now":
        parent = parent_of(node)
        if parent is None or parent.type != "member_expression":
            return "now"
    return None


def _hash_call(node) -> bool:
    return node.type == "call_expression" and bool(SOLIDITY_HASH.fullmatch(callee_text(node)))


def _hashed(node, statement) -> bool:
    """Whether ``node`` is an argument of a hash call within ``statement``."""
    parent = node.parent
    while parent is not None and not same_node(parent, statement):
        if _hash_call(parent):
            return True
        parent = parent.parent
    return False


@detector(Category.RANDOMNESS_MISUSE, "solidity", strategy="tree")
def solidity_randomness_misuse(root, unit):
    """Block values and msg.sender hashed, reduced with % or stored as a random value."""
    for function in iter_nodes(root):
        if function.type not in FUNCTION_TYPES:
            continue
        name = function_name(function)
        tainted: dict[str, str] = {}
        for statement in _solidity_statements(body_of(function)):
            nodes = list(iter_nodes(statement))
            target = assigned_name(node_text(statement))
            random_target = bool(target and is_random_name(target))
            modulo = any(n.type == "binary_expression" and operator_of(n) == "%" for n in nodes)
            sources = []
            for n in nodes:
                value = _chain_value(n)
                if value:
                    sources.append((n, value))

            reported = False
            for node, value in sources:
                if random_target or modulo or _hashed(node, statement):
                    yield node_hit(unit, node, f"{value} is predictable and is used as randomness in {name}", SUGGESTION)
                    reported = True
                    break

            if not reported:
                for node in nodes:
                    if node.type != "member_expression" or not SOLIDITY_SENDER.fullmatch(node_text(node)):
                        continue
                    if random_target or modulo or _hashed(node, statement):
                        yield node_hit(
                            unit,
                            node,
                            f"{node_text(node)} is caller-controlled and is used as randomness in {name}",
                            SUGGESTION,
                        )
                        reported = True
                        break

            if not reported and tainted and (random_target or modulo or any(_hash_call(n) for n in nodes)):
                used = {node_text(n) for n in nodes if n.type == "identifier"}
                for variable, origin in tainted.items():
                    if variable in used and variable != target:
                        yield node_hit(
                            unit,
                            statement,
                            f"{variable} (from {origin}) is predictable and is used as randomness in {name}",
                            SUGGESTION,
                        )
                        reported = True
                        break

            if sources and target and not reported:
                tainted[target] = sources[0][1]


def _modulo_of_chain_value(node, chain_value: re.Pattern) -> bool:
    return (
        node.type == "binary_expression"
        and node_text(node.child_by_field_name("operator")) == "%"
        and bool(chain_value.search(node_text(node.child_by_field_name("left"))))
    )


def _random_binding(node, chain_value: re.Pattern) -> bool:
    """``seed := time.Now()...`` or ``let seed = Clock::get()...``."""
    if node.type in ("short_var_declaration", "assignment_statement"):
        left = node_text(node.child_by_field_name("left"))
        right = node_text(node.child_by_field_name("right"))
    elif node.type == "let_declaration":
        left = node_text(node.child_by_field_name("pattern"))
        right = node_text(node.child_by_field_name("value"))
    else:
        return False
    if "%" in right:
        return False
    names = re.findall(r"[A-Za-z_]\w*", left)
    return any(is_random_name(n) for n in names) and bool(chain_value.search(right))


@detector(Category.RANDOMNESS_MISUSE, "go", strategy="tree")
def go_randomness_misuse(root, unit):
    """math/rand, predictable seeds and clock values used as random numbers."""
    for node in iter_nodes(root):
        if node.type == "import_spec":
            path = node_text(node.child_by_field_name("path"))
            if path in GO_WEAK_IMPORTS:
                yield node_hit(unit, node, f"{path} is not a cryptographically secure generator",
                               "Use crypto/rand for security-sensitive randomness.")
        elif node.type == "call_expression":
            callee = callee_text(node)
            arguments = node_text(node.child_by_field_name("arguments"))
            if GO_SEED_CALL.match(callee) and (FIXED_SEED.match(arguments) or GO_CHAIN_VALUE.search(arguments)):
                kind = "fixed" if FIXED_SEED.match(arguments) else "time-derived"
                yield node_hit(unit, node, f"{callee} uses a {kind} seed, so the sequence is predictable",
                               "Seed from crypto/rand or use crypto/rand directly.")
            elif GO_HASH_CALL.search(callee) and GO_CHAIN_VALUE.search(arguments):
                yield node_hit(unit, node, f"Hashing a chain or clock value with {callee} does not produce randomness",
                               SUGGESTION)
        elif _modulo_of_chain_value(node, GO_CHAIN_VALUE) or _random_binding(node, GO_CHAIN_VALUE):
            yield node_hit(unit, node, "A clock or block value is used as a random number", SUGGESTION)


@detector(Category.RANDOMNESS_MISUSE, "rust", strategy="tree")
def rust_randomness_misuse(root, unit):
    """thread_rng, seeded generators and clock or block values used as random numbers."""
    for node in iter_nodes(root):
        if node.type == "call_expression":
            callee = callee_text(node)
            arguments = node_text(node.child_by_field_name("arguments"))
            if RUST_WEAK_RNG.search(callee):
                yield node_hit(unit, node, f"{callee}() is not a cryptographically secure generator",
                               "Use OsRng or a chain-provided randomness source.")
            elif RUST_SEEDED_RNG.search(callee):
                kind = "fixed" if FIXED_SEED.match(arguments) else "caller-supplied"
                yield node_hit(unit, node, f"{callee} uses a {kind} seed, so the sequence is predictable",
                               "Seed from OsRng or use a verifiable randomness source.")
            elif RUST_HASH_CALL.search(callee) and RUST_CHAIN_VALUE.search(arguments):
                yield node_hit(unit, node, f"Hashing a chain or clock value with {callee} does not produce randomness",
                               SUGGESTION)
        elif _modulo_of_chain_value(node, RUST_CHAIN_VALUE) or _random_binding(node, RUST_CHAIN_VALUE):
            yield node_hit(unit, node, "A clock or block value is used as a random number", SUGGESTION)
