"""
memory_errors.py

Error types raised while parsing and analyzing memory programs.

Two families exist:
- PositionedError: carries the source line/column of the offending
  statement (AnalysisError, ParseError). These are the errors a host
  shell shows to the user.
- InternalError: positionless failures coming from the type system or
  the heap allocator. The analyzer wraps them into an AnalysisError
  carrying the position of the statement that triggered them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class MemoryVisualizerError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ============================================================
#  Positionless errors
# ============================================================

class InternalError(MemoryVisualizerError):
    """A failure without a source position (type lookup, allocator)."""

    def __str__(self) -> str:
        return f"Error: {self.message}"


class AllocatorError(InternalError):
    """Raised by the heap allocator (out of bounds, growth refused...)."""


# ============================================================
#  Positioned errors
# ============================================================

class PositionedError(MemoryVisualizerError):
    """An error attached to a line (1-based) and column (0-based)."""

    label = "Error"

    def __init__(self, message: str, line: int, column: int) -> None:
        super().__init__(message)
        self.line = line
        self.column = column

    def __str__(self) -> str:
        return f"{self.label}: {self.message} (Line: {self.line} Col: {self.column})"

    def to_dict(self) -> Dict[str, Any]:
        """Return the error in the shape a host shell renders."""
        return {
            "error": {
                "message": str(self),
                "line_number": self.line,
                "column_number": self.column,
            }
        }


class AnalysisErrorKind(Enum):
    """Classification of analysis errors."""
    TYPE_MISMATCH = "type_mismatch"
    UNDECLARED = "undeclared"
    DUPLICATE = "duplicate"
    UNINITIALIZED = "uninitialized"
    INVALID_OPERATION = "invalid_operation"
    NULL_DEREFERENCE = "null_dereference"
    DELETE_STACK = "delete_stack"
    DELETE_NULL = "delete_null"
    DELETE_DANGLING = "delete_dangling"
    ALLOCATION = "allocation"
    INTERNAL = "internal"


class AnalysisError(PositionedError):
    """Raised by the analyzer when a statement is invalid."""

    label = "Analyzer Error"

    def __init__(
        self,
        message: str,
        line: int,
        column: int,
        kind: AnalysisErrorKind = AnalysisErrorKind.INVALID_OPERATION,
    ) -> None:
        super().__init__(message, line, column)
        self.kind = kind

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["error"]["kind"] = self.kind.value
        return data


class ParseError(PositionedError):
    """Raised by the lexer and parser on malformed source."""

    label = "Parser Error"
