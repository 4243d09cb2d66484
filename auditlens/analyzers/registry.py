"""Language registry and the analysis entry point.

The registry maps a language tag to its ``Analyzer`` and is read-only once
built. ``analyze`` validates the request, resolves the analyzer and returns
the findings in category order.
"""

import logging
from functools import lru_cache
from types import MappingProxyType
from typing import Optional

from auditlens.analyzers import detectors  # noqa: F401
from auditlens.analyzers.base import CATALOG, CATEGORY_ORDER, Analyzer, Finding
from auditlens.config import get_settings
from auditlens.errors import InvalidInputError, UnsupportedLanguageError
from auditlens.parsers.source_unit import LANGUAGES, AnalysisOptions

logger = logging.getLogger(__name__)


class LanguageRegistry:
    """Read-only mapping of language tag to Analyzer."""

    def __init__(self, analyzers: dict[str, Analyzer]):
        self._analyzers = MappingProxyType(dict(analyzers))

    @property
    def languages(self) -> list[str]:
        return list(self._analyzers)

    def __contains__(self, tag: object) -> bool:
        return isinstance(tag, str) and tag in self._analyzers

    def get(self, tag: str) -> Analyzer:
        analyzer = self._analyzers.get(tag)
        if analyzer is None:
            raise UnsupportedLanguageError(tag)
        return analyzer


def _catalog_languages() -> list[str]:
    known = list(LANGUAGES)
    catalogued = {language for _, language in CATALOG}
    return [tag for tag in known if tag in catalogued] + sorted(catalogued - set(known))


def build_default_registry(options: Optional[AnalysisOptions] = None) -> LanguageRegistry:
    """Build one Analyzer per catalogued language."""
    analyzers = {}
    for language in _catalog_languages():
        missing = [c.value for c in CATEGORY_ORDER if (c, language) not in CATALOG]
        if missing:
            raise ValueError(f"Language {language} has no detector for: {', '.join(missing)}")
        analyzers[language] = Analyzer(
            language,
            [CATALOG[(category, language)] for category in CATEGORY_ORDER],
            options,
        )
    logger.info(f"Registered analyzers for: {', '.join(analyzers)}")
    return LanguageRegistry(analyzers)


@lru_cache
def get_registry() -> LanguageRegistry:
    """Get the process-wide registry, configured from settings."""
    return build_default_registry(AnalysisOptions.from_settings(get_settings()))


def _resolve(
    language_tag: str,
    source: str,
    file_path: str,
    registry: Optional[LanguageRegistry],
) -> Analyzer:
    if not isinstance(language_tag, str) or not language_tag:
        raise InvalidInputError("language must be a non-empty string")
    if not isinstance(source, str):
        raise InvalidInputError("source must be a string")
    if not isinstance(file_path, str):
        raise InvalidInputError("file_path must be a string")
    return (registry or get_registry()).get(language_tag)


async def analyze(
    language_tag: str,
    source: str,
    file_path: str = "",
    registry: Optional[LanguageRegistry] = None,
) -> list[Finding]:
    """Analyze one source file and return its findings in category order.

    Raises:
        InvalidInputError: the tag, source or file path is malformed
        UnsupportedLanguageError: no analyzer is registered for the tag
    """
    analyzer = _resolve(language_tag, source, file_path, registry)
    if not source:
        return []
    logger.debug(f"Analyzing {file_path or '<source>'} as {language_tag} ({len(source)} chars)")
    return await analyzer.analyze(source, file_path)


def analyze_sync(
    language_tag: str,
    source: str,
    file_path: str = "",
    registry: Optional[LanguageRegistry] = None,
) -> list[Finding]:
    """Synchronous form of ``analyze``."""
    analyzer = _resolve(language_tag, source, file_path, registry)
    if not source:
        return []
    logger.debug(f"Analyzing {file_path or '<source>'} as {language_tag} ({len(source)} chars)")
    return analyzer.analyze_sync(source, file_path)


async def analyze_move(source: str, file_path: str = "") -> list[Finding]:
    return await analyze("move", source, file_path)


async def analyze_solidity(source: str, file_path: str = "") -> list[Finding]:
    return await analyze("solidity", source, file_path)


async def analyze_vyper(source: str, file_path: str = "") -> list[Finding]:
    return await analyze("vyper", source, file_path)


async def analyze_go(source: str, file_path: str = "") -> list[Finding]:
    return await analyze("go", source, file_path)


async def analyze_rust(source: str, file_path: str = "") -> list[Finding]:
    return await analyze("rust", source, file_path)
