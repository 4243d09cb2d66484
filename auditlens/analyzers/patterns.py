"""Text-scanning helpers and vocabulary shared by several detectors.

Patterns run against ``SourceUnit.masked`` so comments and string contents
never match. Offsets into the masked text are offsets into the raw text.
"""

import re
from typing import Iterator, Optional

from auditlens.analyzers.base import Hit
from auditlens.parsers.source_unit import FunctionBlock, SourceUnit, Statement


def hit_at(unit: SourceUnit, offset: int, message: str, suggestion: Optional[str] = None) -> Hit:
    line, col = unit.position(offset)
    return Hit(line=line, col=col, message=message, suggestion=suggestion)


# ----------------------------------------------------------------------
# Arithmetic
# ----------------------------------------------------------------------

ARITHMETIC_OP = re.compile(r"(?<=[\w\)\]])[ \t]*(?P<op>[+\-*])(?P<assign>=)?(?=[ \t]*[\w\(\[])")
INCREMENT_OP = re.compile(r"(?<=[\w\]])(?P<op>\+\+|--)|(?P<pre>\+\+|--)(?=[A-Za-z_])")

# Words that end an expression-less position, so a following sign is unary.
_UNARY_CONTEXT = frozenset({
    "return", "abort", "else", "in", "assert", "and", "or", "not",
    "emit", "revert", "case", "yield", "if", "while", "let", "mut",
})


def arithmetic_ops(text: str, start: int = 0, end: Optional[int] = None) -> list[tuple[int, str]]:
    """``(offset, operator)`` of every binary ``+ - *`` (and ``op=``, ``++``, ``--``)."""
    end = len(text) if end is None else end
    found: list[tuple[int, str]] = []
    for m in ARITHMETIC_OP.finditer(text, start, end):
        previous = re.search(r"(\w+)[ \t]*$", text[max(start, m.start() - 24):m.start() + 1])
        if previous and previous.group(1) in _UNARY_CONTEXT:
            continue
        found.append((m.start("op"), m.group("op") + (m.group("assign") or "")))
    for m in INCREMENT_OP.finditer(text, start, end):
        name = "op" if m.group("op") else "pre"
        found.append((m.start(name), m.group(name)))
    found.sort()
    return found


# ----------------------------------------------------------------------
# Function and statement windows
# ----------------------------------------------------------------------

def function_statements(unit: SourceUnit) -> Iterator[tuple[FunctionBlock, list[Statement]]]:
    for block in unit.functions():
        yield block, unit.statements(block)


def statements_after(statements: list[Statement], index: int, count: int) -> list[Statement]:
    return statements[index + 1:index + 1 + count]


def statements_before(statements: list[Statement], index: int, count: int) -> list[Statement]:
    return statements[max(0, index - count):index]


def brace_regions(masked: str, opener: re.Pattern) -> list[tuple[int, int]]:
    """``(start, end)`` spans of blocks introduced by ``opener`` (ending in ``{``)."""
    regions = []
    for m in opener.finditer(masked):
        open_index = m.end() - 1
        depth = 0
        end = len(masked)
        for i in range(open_index, len(masked)):
            if masked[i] == "{":
                depth += 1
            elif masked[i] == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        regions.append((m.start(), end))
    return regions


def balanced_call_args(masked: str, open_index: int) -> str:
    """Text between the parenthesis at ``open_index`` and its partner."""
    depth = 0
    for i in range(open_index, len(masked)):
        if masked[i] == "(":
            depth += 1
        elif masked[i] == ")":
            depth -= 1
            if depth == 0:
                return masked[open_index + 1:i]
    return masked[open_index + 1:]


# ----------------------------------------------------------------------
# Shared vocabulary
# ----------------------------------------------------------------------

# Move modules whose functions are local utilities rather than calls into
# another account's code.
MOVE_LOCAL_MODULES = frozenset({
    "vector", "signer", "option", "error", "string", "bcs", "hash", "aptos_hash",
    "debug", "math64", "math128", "fixed_point32", "fixed_point64", "type_info",
    "simple_map", "smart_vector", "table", "table_with_length", "event", "from_bcs",
    "object", "features", "timestamp", "clock", "tx_context", "ascii", "utf8", "math",
    "bit_vector", "comparator", "string_utils", "dynamic_field",
})

MOVE_MODULE_CALL = re.compile(
    r"\b(?:0x[0-9a-fA-F]+::|\w+::)?(?P<module>[a-z_]\w*)::(?P<function>[a-z_]\w*)"
    r"\s*(?:<[^;{}()]*>)?\s*\("
)

SOLIDITY_EXTERNAL_CALL = re.compile(
    r"\.\s*(?P<lowlevel>call|delegatecall|staticcall)\s*[{(]"
    r"|\.\s*(?P<value>send|transfer)\s*\("
    r"|\b[A-Z]\w*\s*\(\s*[\w.\[\]]+\s*\)\s*\.\s*(?P<iface>\w+)\s*[({]"
    r"|\b(?!(?:msg|block|tx|abi|this|super|type|bytes|string)\b)[a-z_]\w*\s*\.\s*"
    r"(?!(?:add|sub|mul|div|mod|push|pop|length|encode\w*|decode|selector|balance|code|codehash"
    r"|toString|toHexString|contains|remove|at|values|get|set|tryGet|current|increment|decrement)\b)"
    r"(?P<member>\w+)\s*\("
)

VYPER_EXTERNAL_CALL = re.compile(
    r"\b(?P<builtin>raw_call|send|create_minimal_proxy_to|create_forwarder_to|create_copy_of"
    r"|create_from_blueprint)\s*\("
    r"|\b(?P<keyword>extcall|staticcall)\s+"
    r"|\b[A-Z]\w*\s*\(\s*[\w.\[\]]+\s*\)\s*\.\s*(?P<iface>\w+)\s*\("
    r"|\bself\.\w+\s*\.\s*(?!(?:append|pop)\b)(?P<member>\w+)\s*\("
)

GO_EXTERNAL_CALL = re.compile(
    r"^(?:http|\w*[Cc]lient\w*)\.(?:Do|Get|Post|PostForm|Head)$"
    r"|\.(?:Do|Call|CallContext|Invoke|Send|SendTransaction|Transfer|TransferFrom|Execute)$"
)

RUST_EXTERNAL_CALL = re.compile(
    r"(?:^|::|\.)(?:invoke|invoke_signed|call|transfer|send|execute|cross_contract_call)$"
    r"|(?:^|::)ext_\w+"
    r"|^Promise::new$"
)

AUTH_CHECK = {
    "move": re.compile(
        r"\bhas_role\b|\bassert!\s*\(\s*(?:signer::address_of|[^,;]*(?:owner|admin|signer|authority|sender))"
        r"|\bif\s*\([^)]*signer|\bE_NOT_\w+|\bE?UNAUTHORIZED\b|\bonly_\w+\s*\("
        r"|\b(?:check|assert|ensure)_\w*(?:owner|admin|role|auth)\w*\s*\("
        r"|\bis_\w*(?:owner|admin|authorized)\w*\s*\("
    ),
    "solidity": re.compile(
        r"\bonly[A-Z]\w*|\bmsg\.sender\s*[!=]=|[!=]=\s*msg\.sender\b|\bhasRole\s*\(|\b_check(?:Owner|Role)\s*\("
        r"|\brequiresAuth\b|\bauth\b|\bisAuthorized\w*\s*\(|\b_msgSender\(\)\s*[!=]=|[!=]=\s*_msgSender\(\)"
    ),
    "vyper": re.compile(
        r"\bmsg\.sender\s*[!=]=|[!=]=\s*msg\.sender\b|\bmsg\.sender\s+(?:not\s+)?in\s+self\."
        r"|\bhas_role\b|\bself\._?(?:only|check|assert)_\w+\s*\("
    ),
    "go": re.compile(
        r"\b(?:[Aa]uthenticate|[Aa]uthorize|VerifyToken|ValidateToken|IsAdmin|HasRole|RequireRole"
        r"|CheckPermission|AuthMiddleware|IsAuthenticated|RequireAuth)\w*\b"
        r"|\.Get\(\s*\"Authorization\"|GetHeader\(\s*\"Authorization\""
    ),
    "rust": re.compile(
        r"\bis_signer\b|\brequire_auth\w*\b|\bpredecessor_account_id\b|\binfo\.sender\b"
        r"|\bensure_(?:signed|root)\b|\bhas_role\b|\bonly_owner\b|\b(?:assert|check|require)_owner\b"
        r"|\bis_admin\s*\(|\bcaller\(\)\s*==|==\s*self\.env\(\)\.caller\(\)|\bSigner<|\bguard::"
    ),
}


def move_external_calls(text: str, start: int = 0, end: Optional[int] = None) -> Iterator[re.Match]:
    """Calls into other modules, skipping local utility modules."""
    end = len(text) if end is None else end
    for m in MOVE_MODULE_CALL.finditer(text, start, end):
        if m.group("module") not in MOVE_LOCAL_MODULES:
            yield m


def solidity_call_name(target: str) -> Optional[str]:
    """Name of the external call made through ``target``, e.g. ``call`` for ``msg.sender.call``."""
    text = target + "("
    for m in SOLIDITY_EXTERNAL_CALL.finditer(text):
        if m.end() == len(text):
            return m.group("lowlevel") or m.group("value") or m.group("iface") or m.group("member")
    return None


def has_auth(language: str, text: str) -> bool:
    return bool(AUTH_CHECK[language].search(text))


# ----------------------------------------------------------------------
# Randomness vocabulary
# ----------------------------------------------------------------------

RANDOM_WORDS = frozenset({
    "rand", "random", "randomness", "rng", "seed", "winner", "lottery",
    "lucky", "dice", "entropy", "roll", "shuffle", "jackpot",
})

ASSIGN_TARGET = re.compile(r"(?P<name>[A-Za-z_]\w*)\s*(?::[^=;\n]*)?=(?![=>])")


def is_random_name(name: str) -> bool:
    """Whether an identifier reads as a random value (``winnerIndex``, ``rand_seed``)."""
    words = re.findall(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])", name)
    return any(word.lower() in RANDOM_WORDS for word in words)


def assigned_name(text: str) -> Optional[str]:
    m = ASSIGN_TARGET.search(text)
    return m.group("name") if m else None
