"""
type_system.py

Semantic types of the memory language.

A declared type keyword (``int``, ``float``, ``char``, ``double``,
``bool``) maps to a Type with a fixed byte size and a zero value used to
pre-fill fresh heap allocations.
"""

from __future__ import annotations

from enum import Enum

from memory_errors import InternalError
from statement_ast import Lit, LiteralKind, TokenKind


class Type(Enum):
    """Types supported by the language. The value is the C keyword."""
    INTEGER = "int"
    FLOAT = "float"
    CHAR = "char"
    DOUBLE = "double"
    BOOL = "bool"

    @classmethod
    def from_token(cls, kind: TokenKind) -> Type:
        """Convert a type keyword token to a Type.

        Raises:
            InternalError: If the token is not a type keyword
        """
        try:
            return _TOKEN_TYPES[kind]
        except KeyError:
            raise InternalError("Invalid Type") from None

    @property
    def keyword(self) -> str:
        """C spelling of the type."""
        return self.value

    def is_type(self, kind: TokenKind) -> bool:
        """Check whether a type keyword token names this type."""
        return _TOKEN_TYPES.get(kind) is self

    def is_correct_literal(self, lit: Lit) -> bool:
        """Check whether a literal may be stored in this type.

        Float literals are accepted by both float and double since the
        language has no distinct double literal.
        """
        if lit.kind is LiteralKind.INT:
            return self is Type.INTEGER
        if lit.kind is LiteralKind.BOOL:
            return self is Type.BOOL
        if lit.kind is LiteralKind.FLOAT:
            return self in (Type.FLOAT, Type.DOUBLE)
        return self is Type.CHAR

    def get_size(self) -> int:
        """Size of the type in bytes."""
        return _SIZES[self]

    def get_garbage_value(self) -> str:
        """Display text of a freshly allocated, never written value."""
        return _GARBAGE_VALUES[self]

    def __str__(self) -> str:
        return self.value


_TOKEN_TYPES = {
    TokenKind.KW_INT: Type.INTEGER,
    TokenKind.KW_FLOAT: Type.FLOAT,
    TokenKind.KW_CHAR: Type.CHAR,
    TokenKind.KW_DOUBLE: Type.DOUBLE,
    TokenKind.KW_BOOL: Type.BOOL,
}

_SIZES = {
    Type.INTEGER: 4,
    Type.FLOAT: 4,
    Type.CHAR: 1,
    Type.DOUBLE: 8,
    Type.BOOL: 1,
}

_GARBAGE_VALUES = {
    Type.INTEGER: "0",
    Type.FLOAT: "0.0",
    Type.CHAR: "'\\0'",
    Type.DOUBLE: "0.0",
    Type.BOOL: "false",
}
