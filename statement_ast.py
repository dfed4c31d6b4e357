"""
statement_ast.py

Statement and expression nodes consumed by the analyzer.

The parser in source_parser produces these nodes; any other front end
can build them directly. Every statement carries the 1-based line and
the 0-based column of the identifier it acts on so errors can point
back into the source.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from memory_errors import ParseError


# ============================================================
#  Tokens
# ============================================================

class TokenKind(Enum):
    """Kinds of lexical tokens. The value is the display text."""
    KW_INT = "int"
    KW_FLOAT = "float"
    KW_CHAR = "char"
    KW_DOUBLE = "double"
    KW_BOOL = "bool"
    KW_RETURN = "return"

    NEW = "new"
    DELETE = "delete"
    NULL = "nullptr"

    AMPERSAND = "&"
    ASTERISK = "*"
    EQ = "="
    SEMICOLON = ";"
    LPAREN = "("
    RPAREN = ")"
    LBRACE = "{"
    RBRACE = "}"

    INT = "integer literal"
    FLOAT = "float literal"
    CHAR = "char literal"
    BOOL = "bool literal"
    IDENTIFIER = "identifier"

    EOF = "EOF"

    def __str__(self) -> str:
        return self.value


TYPE_KEYWORDS = (
    TokenKind.KW_INT,
    TokenKind.KW_FLOAT,
    TokenKind.KW_CHAR,
    TokenKind.KW_DOUBLE,
    TokenKind.KW_BOOL,
)


# ============================================================
#  Expressions
# ============================================================

class LiteralKind(Enum):
    """Kinds of literal values."""
    INT = "int"
    FLOAT = "float"
    CHAR = "char"
    BOOL = "bool"


@dataclass(frozen=True)
class Lit:
    """A typed literal value.

    Attributes:
        kind: Literal kind
        value: Python value (int, float, str of the char, bool)
    """
    kind: LiteralKind
    value: Any

    @classmethod
    def integer(cls, value: int) -> Lit:
        return cls(LiteralKind.INT, int(value))

    @classmethod
    def floating(cls, value: float) -> Lit:
        return cls(LiteralKind.FLOAT, float(value))

    @classmethod
    def char(cls, value: str) -> Lit:
        return cls(LiteralKind.CHAR, value)

    @classmethod
    def boolean(cls, value: bool) -> Lit:
        return cls(LiteralKind.BOOL, bool(value))

    @classmethod
    def parse(cls, text: str) -> Lit:
        """Parse the canonical text of a literal back into a Lit.

        Tries integer, float, quoted char and bool, in that order.

        Raises:
            ParseError: If the text is not a literal
        """
        try:
            return cls.integer(int(text))
        except ValueError:
            pass

        try:
            return cls.floating(float(text))
        except ValueError:
            pass

        if len(text) >= 2 and text.startswith("'") and text.endswith("'"):
            return cls.char(text[1:-1])

        if text in ("true", "false"):
            return cls.boolean(text == "true")

        raise ParseError("Invalid literal", 0, 0)

    def __str__(self) -> str:
        """Return the canonical text stored in symbols and heap blocks."""
        if self.kind is LiteralKind.BOOL:
            return "true" if self.value else "false"
        if self.kind is LiteralKind.CHAR:
            return f"'{self.value}'"
        if self.kind is LiteralKind.FLOAT:
            return repr(self.value)
        return str(self.value)


@dataclass(frozen=True)
class Ident:
    """A reference to a named symbol."""
    name: str

    def __str__(self) -> str:
        return self.name


Expr = Union[Lit, Ident]


# ============================================================
#  Statements
# ============================================================

class Statement:
    """Base class of all statements."""

    line: int
    column: int


@dataclass(frozen=True)
class VariableDeclaration(Statement):
    """``T x = value;``"""
    var_type: TokenKind
    var_name: str
    value: Expr
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.var_type} {self.var_name} = {self.value};"


@dataclass(frozen=True)
class VariableDeclarationWithoutAssignment(Statement):
    """``T x;``"""
    var_type: TokenKind
    var_name: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.var_type} {self.var_name};"


@dataclass(frozen=True)
class VariableAssignment(Statement):
    """``x = value;`` (also ``p = q;`` between two pointers)."""
    var_name: str
    new_value: Expr
    line: int
    column: int
    assignment_column: int = 0

    def __str__(self) -> str:
        return f"{self.var_name} = {self.new_value};"


@dataclass(frozen=True)
class PointerDeclaration(Statement):
    """``T* p = &x;``"""
    base_type: TokenKind
    pointer_name: str
    value: Expr
    line: int
    column: int

    def __str__(self) -> str:
        target = f"&{self.value}" if isinstance(self.value, Ident) else str(self.value)
        return f"{self.base_type}* {self.pointer_name} = {target};"


@dataclass(frozen=True)
class PointerDeclarationHeap(Statement):
    """``T* p = new T;``"""
    base_type: TokenKind
    pointer_name: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.base_type}* {self.pointer_name} = new {self.base_type};"


@dataclass(frozen=True)
class PointerDeclarationNull(Statement):
    """``T* p = nullptr;``"""
    base_type: TokenKind
    pointer_name: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.base_type}* {self.pointer_name} = nullptr;"


@dataclass(frozen=True)
class PointerAssignment(Statement):
    """``p = &x;``"""
    pointer_name: str
    new_value: Expr
    line: int
    column: int

    def __str__(self) -> str:
        target = f"&{self.new_value}" if isinstance(self.new_value, Ident) else str(self.new_value)
        return f"{self.pointer_name} = {target};"


@dataclass(frozen=True)
class PointerAssignmentHeap(Statement):
    """``p = new T;``"""
    pointer_name: str
    new_type: TokenKind
    line: int
    column: int
    new_type_column: int = 0

    def __str__(self) -> str:
        return f"{self.pointer_name} = new {self.new_type};"


@dataclass(frozen=True)
class PointerAssignmentNull(Statement):
    """``p = nullptr;``"""
    pointer_name: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.pointer_name} = nullptr;"


@dataclass(frozen=True)
class Deref(Statement):
    """``*p = value;``"""
    pointer_name: str
    new_value: Expr
    line: int
    column: int
    new_value_column: int = 0

    def __str__(self) -> str:
        return f"*{self.pointer_name} = {self.new_value};"


@dataclass(frozen=True)
class Delete(Statement):
    """``delete p;``"""
    pointer_name: str
    line: int
    column: int

    def __str__(self) -> str:
        return f"delete {self.pointer_name};"
