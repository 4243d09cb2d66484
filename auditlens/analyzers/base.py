"""Finding model, detector contract and per-language analyzer."""

import asyncio
import inspect
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from auditlens.errors import ParseFailure
from auditlens.parsers.source_unit import AnalysisOptions, SourceUnit

logger = logging.getLogger(__name__)


class Category(str, Enum):
    """Vulnerability classes, declared in reporting order."""

    OVERFLOW = "Overflow"
    REENTRANCY = "Reentrancy"
    CALL_SAFETY = "CallSafety"
    ACCESS_CONTROL = "AccessControl"
    LOGIC_DEFECT = "LogicDefect"
    RANDOMNESS_MISUSE = "RandomnessMisuse"
    FREEZE_BYPASS = "FreezeBypass"


CATEGORY_ORDER: tuple[Category, ...] = tuple(Category)


@dataclass(frozen=True)
class Finding:
    """One reported issue."""

    file_path: str
    line: int
    category: Category
    message: str
    col: Optional[int] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "filePath": self.file_path,
            "line": self.line,
            "col": self.col,
            "category": self.category.value,
            "message": self.message,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class Hit:
    """A match yielded by a detector body, before category and file are stamped on."""

    line: int
    col: Optional[int]
    message: str
    suggestion: Optional[str] = None


class Detector:
    """One category check for one language.

    Text bodies are called as ``body(unit)``; tree bodies as
    ``body(root_node, unit)``. A body returns (or yields) ``Hit`` records and
    may be a coroutine function.
    """

    STRATEGIES = ("text", "tree")

    def __init__(
        self,
        category: Category,
        language: str,
        body: Callable[..., Any],
        strategy: str = "text",
    ):
        if strategy not in self.STRATEGIES:
            raise ValueError(f"Unknown detector strategy: {strategy}")
        self.category = category
        self.language = language
        self.body = body
        self.strategy = strategy

    def __repr__(self) -> str:
        return f"Detector({self.category.value}, {self.language}, {self.strategy})"

    def _invoke(self, unit: SourceUnit) -> Any:
        if self.strategy == "tree":
            return self.body(unit.tree.root_node, unit)
        return self.body(unit)

    def run(self, unit: SourceUnit) -> list[Finding]:
        """Run the body synchronously, containing any failure.

        A coroutine body gets its own event loop, on a worker thread when the
        caller is already inside a running loop.
        """
        try:
            result = self._invoke(unit)
            if inspect.isawaitable(result):
                result = _run_coroutine(_await(result))
            return self._stamp(unit, result)
        except ParseFailure as e:
            return [self._parse_failure(unit, e)]
        except Exception as e:
            logger.exception(f"{self!r} failed on {unit.file_path or '<source>'}")
            return [self._detector_failure(unit, e)]

    async def run_async(self, unit: SourceUnit) -> list[Finding]:
        """Run the body from async code, awaiting coroutine bodies."""
        try:
            result = self._invoke(unit)
            if inspect.isawaitable(result):
                result = await result
            return self._stamp(unit, result)
        except ParseFailure as e:
            return [self._parse_failure(unit, e)]
        except Exception as e:
            logger.exception(f"{self!r} failed on {unit.file_path or '<source>'}")
            return [self._detector_failure(unit, e)]

    def _stamp(self, unit: SourceUnit, hits: Optional[Iterable[Hit]]) -> list[Finding]:
        return [
            Finding(
                file_path=unit.file_path,
                line=hit.line,
                category=self.category,
                message=hit.message,
                col=hit.col,
                suggestion=hit.suggestion,
            )
            for hit in (hits or ())
        ]

    def _parse_failure(self, unit: SourceUnit, error: ParseFailure) -> Finding:
        return Finding(
            file_path=unit.file_path,
            line=error.line or 1,
            col=error.col or 1,
            category=self.category,
            message=(
                f"{unit.spec.name} source could not be parsed; "
                f"{self.category.value} checks skipped: {error}"
            ),
            suggestion="Fix the syntax error so the file can be analyzed.",
        )

    def _detector_failure(self, unit: SourceUnit, error: Exception) -> Finding:
        return Finding(
            file_path=unit.file_path,
            line=1,
            col=None,
            category=self.category,
            message=f"{self.category.value} detector failed: {type(error).__name__}: {error}",
        )


async def _await(awaitable):
    return await awaitable


def _run_coroutine(coroutine):
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coroutine)
    with ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coroutine).result()


# (category, language) -> Detector, filled by the @detector decorator
CATALOG: dict[tuple[Category, str], Detector] = {}


def detector(category: Category, language: str, strategy: str = "text"):
    """Register a detector body for one (category, language) pair."""

    def register(body: Callable[..., Any]) -> Callable[..., Any]:
        key = (category, language)
        if key in CATALOG:
            raise ValueError(f"Duplicate detector for {category.value}/{language}")
        CATALOG[key] = Detector(category, language, body, strategy)
        return body

    return register


class Analyzer:
    """The seven detectors of one language, run in category order."""

    def __init__(
        self,
        language: str,
        detectors: Iterable[Detector],
        options: Optional[AnalysisOptions] = None,
    ):
        self.language = language
        self.detectors = tuple(detectors)
        self.options = options or AnalysisOptions()

        categories = tuple(d.category for d in self.detectors)
        if categories != CATEGORY_ORDER:
            raise ValueError(
                f"Analyzer for {language} needs one detector per category in order "
                f"{[c.value for c in CATEGORY_ORDER]}, got {[c.value for c in categories]}"
            )
        mismatched = [d for d in self.detectors if d.language != language]
        if mismatched:
            raise ValueError(f"Analyzer for {language} given detectors for other languages: {mismatched}")

    def source_unit(self, source: str, file_path: str = "") -> SourceUnit:
        return SourceUnit(source, self.language, file_path, self.options)

    async def analyze(self, source: str, file_path: str = "") -> list[Finding]:
        unit = self.source_unit(source, file_path)
        results = await asyncio.gather(*(d.run_async(unit) for d in self.detectors))
        return self._collect(results)

    def analyze_sync(self, source: str, file_path: str = "") -> list[Finding]:
        unit = self.source_unit(source, file_path)
        return self._collect([d.run(unit) for d in self.detectors])

    def _collect(self, results: list[list[Finding]]) -> list[Finding]:
        findings: list[Finding] = []
        for detector_, found in zip(self.detectors, results):
            findings.extend(found)
            logger.debug(
                f"{self.language}: {detector_.category.value} produced {len(found)} "
                f"finding(s), {len(findings)} total"
            )
        return findings
