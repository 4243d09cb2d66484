"""Analysis engine."""

from auditlens.analyzers.base import CATALOG, CATEGORY_ORDER, Analyzer, Category, Detector, Finding, Hit
from auditlens.analyzers.registry import (
    LanguageRegistry,
    analyze,
    analyze_go,
    analyze_move,
    analyze_rust,
    analyze_solidity,
    analyze_sync,
    analyze_vyper,
    build_default_registry,
    get_registry,
)

__all__ = [
    "CATALOG",
    "CATEGORY_ORDER",
    "Analyzer",
    "Category",
    "Detector",
    "Finding",
    "Hit",
    "LanguageRegistry",
    "analyze",
    "analyze_go",
    "analyze_move",
    "analyze_rust",
    "analyze_solidity",
    "analyze_sync",
    "analyze_vyper",
    "build_default_registry",
    "get_registry",
]
