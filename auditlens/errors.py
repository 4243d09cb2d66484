"""Error types raised by the analysis engine."""

from typing import Optional


class AnalysisError(Exception):
    """Base class for analysis errors."""


class UnsupportedLanguageError(AnalysisError):
    """No analyzer is registered for the requested language tag."""

    def __init__(self, language: str):
        self.language = language
        super().__init__(f"Unsupported language: {language}")


class InvalidInputError(AnalysisError, ValueError):
    """The analysis request itself is malformed."""


class ParseFailure(AnalysisError):
    """A syntax tree could not be built for the source."""

    def __init__(self, message: str, line: Optional[int] = None, col: Optional[int] = None):
        self.line = line
        self.col = col
        super().__init__(message)
