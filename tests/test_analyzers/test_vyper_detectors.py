"""Tests for the Vyper detectors."""

from auditlens.analyzers import Category, analyze_sync


def by_category(findings, category):
    return [f for f in findings if f.category == category]


class TestVyperOverflow:
    """Test Vyper arithmetic checks."""

    def test_unsafe_builtin_flagged(self, sample_vyper_vulnerable):
        """unsafe_add skips the built-in overflow check."""
        findings = by_category(analyze_sync("vyper", sample_vyper_vulnerable, "vault.vy"), Category.OVERFLOW)

        assert len(findings) == 1
        assert findings[0].line == 26
        assert findings[0].message == "unsafe_add() skips Vyper's built-in overflow check"

    def test_plain_arithmetic_is_checked(self):
        """Vyper checks ordinary arithmetic, so it is not reported."""
        source = '''
total: uint256

@internal
def grow(amount: uint256):
    self.total = self.total + amount * 2
'''
        assert analyze_sync("vyper", source, "grow.vy") == []


class TestVyperReentrancy:
    """Test Vyper call-before-write checks."""

    def test_send_before_write(self, sample_vyper_vulnerable):
        """send() followed by a storage write is reported."""
        findings = by_category(analyze_sync("vyper", sample_vyper_vulnerable, "vault.vy"), Category.REENTRANCY)

        assert len(findings) == 1
        assert findings[0].line == 15
        assert "withdraw calls send before updating state at line 16" in findings[0].message

    def test_nonreentrant_decorator(self, sample_vyper_vulnerable):
        """@nonreentrant protects the function."""
        source = sample_vyper_vulnerable.replace(
            "@external\ndef withdraw",
            '@external\n@nonreentrant("lock")\ndef withdraw',
        )

        assert by_category(analyze_sync("vyper", source, "vault.vy"), Category.REENTRANCY) == []

    def test_module_pragma(self, sample_vyper_vulnerable):
        """The module-wide nonreentrancy pragma protects every function."""
        source = "# pragma nonreentrancy on\n" + sample_vyper_vulnerable

        assert by_category(analyze_sync("vyper", source, "vault.vy"), Category.REENTRANCY) == []


class TestVyperCallSafety:
    """Test Vyper external-call authorization checks."""

    def test_send_without_sender_check(self, sample_vyper_vulnerable):
        """send() from an unchecked external function is reported."""
        findings = by_category(analyze_sync("vyper", sample_vyper_vulnerable, "vault.vy"), Category.CALL_SAFETY)

        assert len(findings) == 1
        assert findings[0].message.startswith("send is called in withdraw")

    def test_owner_assert_before_call(self):
        """assert msg.sender == self.owner satisfies the check."""
        source = '''
owner: address

@external
def sweep(to: address):
    assert msg.sender == self.owner
    send(to, self.balance)
'''
        findings = analyze_sync("vyper", source, "sweep.vy")

        assert by_category(findings, Category.CALL_SAFETY) == []
        assert by_category(findings, Category.ACCESS_CONTROL) == []


class TestVyperAccessControl:
    """Test Vyper access control checks."""

    def test_external_functions_flagged(self, sample_vyper_vulnerable):
        """External functions without checks are reported; __init__ and internals are not."""
        findings = by_category(analyze_sync("vyper", sample_vyper_vulnerable, "vault.vy"), Category.ACCESS_CONTROL)

        names = [f.message.split()[2] for f in findings]
        assert names == ["withdraw", "roll", "fast_add"]
        assert [f.line for f in findings] == [13, 20, 25]

    def test_view_functions_not_flagged(self):
        """@view functions cannot change state."""
        source = '''
total: uint256

@view
@external
def get_total() -> uint256:
    return self.total
'''
        assert analyze_sync("vyper", source, "view.vy") == []


class TestVyperLogicDefect:
    """Test Vyper logic defect checks."""

    def test_pass_only_body(self, sample_vyper_vulnerable):
        """A function whose body is only pass is reported."""
        findings = by_category(analyze_sync("vyper", sample_vyper_vulnerable, "vault.vy"), Category.LOGIC_DEFECT)

        assert len(findings) == 1
        assert findings[0].message == "Function _later body is only pass"

    def test_assert_false_and_ignored_raw_call(self):
        """assert False, unconditional raise and ignored raw_call results are reported."""
        source = '''
@internal
def stop():
    assert False


@internal
def ping(target: address):
    raw_call(target, b"", revert_on_failure=False)


@internal
def fail():
    # TODO: real error
    raise "not implemented"
'''
        findings = by_category(analyze_sync("vyper", source, "logic.vy"), Category.LOGIC_DEFECT)

        assert [f.line for f in findings] == [4, 9, 14, 15]
        assert findings[0].message == "assert False always reverts"
        assert "revert_on_failure=False" in findings[1].message
        assert findings[2].message == "TODO comment marks unfinished logic"
        assert findings[3].message == "raise in fail runs unconditionally"

    def test_conditional_raise_not_flagged(self):
        """A raise inside a branch is normal control flow."""
        source = '''
@internal
def check(value: uint256):
    if value == 0:
        raise "zero"
'''
        assert analyze_sync("vyper", source, "check.vy") == []


class TestVyperRandomness:
    """Test Vyper randomness checks."""

    def test_timestamp_modulo(self, sample_vyper_vulnerable):
        """block.timestamp reduced with % is reported."""
        findings = by_category(analyze_sync("vyper", sample_vyper_vulnerable, "vault.vy"), Category.RANDOMNESS_MISUSE)

        assert len(findings) == 1
        assert findings[0].line == 21
        assert findings[0].message.startswith("block.timestamp is predictable")

    def test_sender_hash_as_random(self):
        """Hashing msg.sender into a random value is reported."""
        source = '''
@internal
def pick() -> uint256:
    rand: bytes32 = keccak256(concat(convert(msg.sender, bytes32), b""))
    return convert(rand, uint256)
'''
        findings = by_category(analyze_sync("vyper", source, "pick.vy"), Category.RANDOMNESS_MISUSE)

        assert len(findings) == 1
        assert findings[0].message.startswith("msg.sender is caller-controlled")


class TestVyperFreezeBypass:
    """Test Vyper freeze bypass checks."""

    def test_send_flagged(self, sample_vyper_vulnerable):
        """send() outside a freeze guard is reported."""
        findings = by_category(analyze_sync("vyper", sample_vyper_vulnerable, "vault.vy"), Category.FREEZE_BYPASS)

        assert len(findings) == 1
        assert findings[0].message == "send() can skip the frozen flag check"

    def test_paused_assert_guards(self):
        """assert not self.paused guards the call."""
        source = '''
paused: bool

@internal
def pay(to: address, amount: uint256):
    assert not self.paused
    send(to, amount)
'''
        assert by_category(analyze_sync("vyper", source, "pay.vy"), Category.FREEZE_BYPASS) == []
