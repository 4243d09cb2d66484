"""Tests for the detector framework: findings, containment and registration."""

import pytest

from auditlens.analyzers.base import (
    CATALOG,
    CATEGORY_ORDER,
    Analyzer,
    Category,
    Detector,
    Finding,
    Hit,
    detector,
)
from auditlens.analyzers.registry import build_default_registry, get_registry
from auditlens.parsers.source_unit import SourceUnit


def replace_detector(language: str, category: Category, body, strategy: str = "text") -> Analyzer:
    """Analyzer for ``language`` with one detector swapped out."""
    detectors = [
        Detector(category, language, body, strategy) if d.category == category else d
        for d in get_registry().get(language).detectors
    ]
    return Analyzer(language, detectors)


class TestCategory:
    """Test the category enumeration."""

    def test_category_order(self):
        """Categories are reported in a fixed order."""
        assert [c.value for c in CATEGORY_ORDER] == [
            "Overflow",
            "Reentrancy",
            "CallSafety",
            "AccessControl",
            "LogicDefect",
            "RandomnessMisuse",
            "FreezeBypass",
        ]

    def test_category_is_string(self):
        """Categories compare equal to their wire names."""
        assert Category.CALL_SAFETY == "CallSafety"


class TestFinding:
    """Test the Finding record."""

    def test_to_dict_uses_wire_names(self):
        """to_dict() produces the camelCase wire shape."""
        finding = Finding(
            file_path="a.move",
            line=3,
            col=9,
            category=Category.OVERFLOW,
            message="raw '+'",
            suggestion="use checked math",
        )

        assert finding.to_dict() == {
            "filePath": "a.move",
            "line": 3,
            "col": 9,
            "category": "Overflow",
            "message": "raw '+'",
            "suggestion": "use checked math",
        }

    def test_optional_fields_default_to_none(self):
        """col and suggestion are optional."""
        finding = Finding(file_path="a.go", line=1, category=Category.LOGIC_DEFECT, message="x")

        assert finding.col is None
        assert finding.suggestion is None

    def test_findings_are_immutable(self):
        """Findings cannot be modified after creation."""
        finding = Finding(file_path="a.go", line=1, category=Category.LOGIC_DEFECT, message="x")

        with pytest.raises(AttributeError):
            finding.line = 2


class TestDetector:
    """Test running a single detector."""

    def test_hits_are_stamped(self):
        """Hits become findings with the detector's category and the file path."""
        det = Detector(Category.REENTRANCY, "move", lambda unit: [Hit(line=2, col=5, message="m", suggestion="s")])

        findings = det.run(SourceUnit("module m {}", "move", "m.move"))

        assert findings == [
            Finding(file_path="m.move", line=2, col=5, category=Category.REENTRANCY, message="m", suggestion="s")
        ]

    def test_none_result_means_no_findings(self):
        """A body returning None reports nothing."""
        det = Detector(Category.OVERFLOW, "move", lambda unit: None)

        assert det.run(SourceUnit("module m {}", "move")) == []

    def test_unknown_strategy_rejected(self):
        """Only text and tree strategies exist."""
        with pytest.raises(ValueError, match="Unknown detector strategy"):
            Detector(Category.OVERFLOW, "move", lambda unit: [], strategy="bytecode")

    def test_coroutine_body_sync(self):
        """Coroutine bodies are awaited by run()."""

        async def body(unit):
            return [Hit(line=1, col=1, message="async")]

        det = Detector(Category.OVERFLOW, "move", body)

        assert [f.message for f in det.run(SourceUnit("x", "move"))] == ["async"]

    @pytest.mark.asyncio
    async def test_coroutine_body_async(self):
        """Coroutine bodies are awaited by run_async()."""

        async def body(unit):
            return [Hit(line=1, col=1, message="async")]

        det = Detector(Category.OVERFLOW, "move", body)

        findings = await det.run_async(SourceUnit("x", "move"))
        assert [f.message for f in findings] == ["async"]

    @pytest.mark.asyncio
    async def test_coroutine_body_sync_inside_running_loop(self):
        """run() still awaits a coroutine body when called from async code."""

        async def body(unit):
            return [Hit(line=1, col=1, message="nested")]

        det = Detector(Category.OVERFLOW, "move", body)

        findings = det.run(SourceUnit("x", "move"))

        assert [f.message for f in findings] == ["nested"]
        assert findings[0].category == Category.OVERFLOW

    @pytest.mark.asyncio
    async def test_analyze_sync_inside_running_loop(self, sample_move_vulnerable):
        """analyze_sync() with a coroutine detector works from async code."""

        async def body(unit):
            return [Hit(line=3, col=1, message="from coroutine")]

        analyzer = replace_detector("move", Category.LOGIC_DEFECT, body)

        findings = analyzer.analyze_sync(sample_move_vulnerable, "vault.move")

        logic = [f for f in findings if f.category == Category.LOGIC_DEFECT]
        assert [f.message for f in logic] == ["from coroutine"]
        assert any(f.category == Category.REENTRANCY for f in findings)

    def test_failure_is_contained(self):
        """An exception in a body becomes one diagnostic finding."""

        def body(unit):
            raise RuntimeError("boom")

        det = Detector(Category.CALL_SAFETY, "solidity", body)

        findings = det.run(SourceUnit("contract C {}", "solidity", "C.sol"))

        assert len(findings) == 1
        assert findings[0].category == Category.CALL_SAFETY
        assert findings[0].message == "CallSafety detector failed: RuntimeError: boom"
        assert findings[0].line == 1
        assert findings[0].col is None
        assert findings[0].file_path == "C.sol"

    def test_failure_while_iterating_is_contained(self):
        """A generator body failing part way is contained too."""

        def body(unit):
            yield Hit(line=1, col=1, message="first")
            raise KeyError("missing")

        det = Detector(Category.LOGIC_DEFECT, "vyper", body)

        findings = det.run(SourceUnit("x = 1", "vyper"))

        assert len(findings) == 1
        assert findings[0].message.startswith("LogicDefect detector failed: KeyError")

    def test_tree_detector_without_grammar_is_contained(self):
        """A tree detector on a text-only language reports a parse failure."""
        det = Detector(Category.OVERFLOW, "move", lambda root, unit: [], strategy="tree")

        findings = det.run(SourceUnit("module m {}", "move"))

        assert len(findings) == 1
        assert "Overflow checks skipped" in findings[0].message


class TestAnalyzerContainment:
    """Test that one failing detector does not affect the others."""

    def test_failing_detector_does_not_stop_others(self, sample_rust_vulnerable):
        """Other categories still report when one detector fails."""

        def broken(root, unit):
            raise ValueError("bad node")

        analyzer = replace_detector("rust", Category.OVERFLOW, broken, strategy="tree")

        findings = analyzer.analyze_sync(sample_rust_vulnerable, "lib.rs")

        overflow = [f for f in findings if f.category == Category.OVERFLOW]
        assert len(overflow) == 1
        assert overflow[0].message == "Overflow detector failed: ValueError: bad node"
        assert any(f.category == Category.LOGIC_DEFECT for f in findings)
        assert any(f.category == Category.FREEZE_BYPASS for f in findings)

    @pytest.mark.asyncio
    async def test_failing_detector_async(self, sample_solidity_vulnerable):
        """Containment holds for the async path."""

        async def broken(unit):
            raise RuntimeError("boom")

        analyzer = replace_detector("solidity", Category.REENTRANCY, broken)

        findings = await analyzer.analyze(sample_solidity_vulnerable, "Lottery.sol")

        reentrancy = [f for f in findings if f.category == Category.REENTRANCY]
        assert [f.message for f in reentrancy] == ["Reentrancy detector failed: RuntimeError: boom"]
        assert any(f.category == Category.OVERFLOW for f in findings)

    def test_parse_failure_reported_once_per_category(self, sample_go_broken):
        """Unparseable Go yields one diagnostic per category."""
        findings = get_registry().get("go").analyze_sync(sample_go_broken, "main.go")

        assert [f.category for f in findings] == list(CATEGORY_ORDER)
        for finding in findings:
            assert finding.message.startswith(
                f"Go source could not be parsed; {finding.category.value} checks skipped"
            )
            assert finding.line >= 1
            assert finding.col >= 1
            assert finding.file_path == "main.go"
        assert len({(f.line, f.col) for f in findings}) == 1

    def test_solidity_parse_failure_reported_once_per_category(self):
        """Unparseable Solidity yields one diagnostic per category."""
        source = "pragma solidity ^0.8.0;\n\ncontract C {\n    function f( external {\n}\n"

        findings = get_registry().get("solidity").analyze_sync(source, "C.sol")

        assert [f.category for f in findings] == list(CATEGORY_ORDER)
        for finding in findings:
            assert finding.message.startswith(
                f"Solidity source could not be parsed; {finding.category.value} checks skipped"
            )
            assert finding.file_path == "C.sol"


class TestAnalyzerValidation:
    """Test Analyzer construction rules."""

    def test_requires_all_categories_in_order(self):
        """Detectors must cover every category in order."""
        detectors = list(get_registry().get("move").detectors)

        with pytest.raises(ValueError, match="one detector per category"):
            Analyzer("move", list(reversed(detectors)))

        with pytest.raises(ValueError, match="one detector per category"):
            Analyzer("move", detectors[:-1])

    def test_rejects_other_language_detectors(self):
        """Detectors must belong to the analyzer's language."""
        detectors = list(get_registry().get("move").detectors)
        detectors[0] = get_registry().get("vyper").detectors[0]

        with pytest.raises(ValueError, match="other languages"):
            Analyzer("move", detectors)


class TestRegistration:
    """Test the @detector decorator."""

    def test_duplicate_registration_rejected(self):
        """A second detector for the same category and language is an error."""
        with pytest.raises(ValueError, match="Duplicate detector for Overflow/go"):
            detector(Category.OVERFLOW, "go", strategy="tree")(lambda root, unit: [])

    def test_incomplete_language_rejected(self):
        """The registry refuses a language missing some categories."""
        key = (Category.OVERFLOW, "testlang")
        try:
            detector(Category.OVERFLOW, "testlang")(lambda unit: [])
            assert CATALOG[key].language == "testlang"

            with pytest.raises(ValueError, match="testlang has no detector for"):
                build_default_registry()
        finally:
            CATALOG.pop(key, None)

    def test_every_pair_registered(self):
        """Each language has a detector for each category."""
        for language in ("move", "solidity", "vyper", "go", "rust"):
            for category in CATEGORY_ORDER:
                assert (category, language) in CATALOG
