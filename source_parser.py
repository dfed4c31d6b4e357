"""
source_parser.py

Lexer and recursive-descent parser for the C-like statement language.

Grammar (``T`` is one of int, float, double, char, bool):

    T x;            T x = lit|ident;         x = lit|ident;
    T* p = &x;      T* p = new T;            T* p = nullptr;
    p = &x;         p = new T;               p = nullptr;
    *p = lit|ident; delete p;

``//`` starts a comment running to the end of the line. A program may be
wrapped in ``int main() { ... }``; ``return`` statements are accepted
and ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from memory_errors import ParseError
from statement_ast import (
    TYPE_KEYWORDS,
    Delete,
    Deref,
    Expr,
    Ident,
    Lit,
    PointerAssignment,
    PointerAssignmentHeap,
    PointerAssignmentNull,
    PointerDeclaration,
    PointerDeclarationHeap,
    PointerDeclarationNull,
    Statement,
    TokenKind,
    VariableAssignment,
    VariableDeclaration,
    VariableDeclarationWithoutAssignment,
)


# ============================================================
#  Lexer
# ============================================================

@dataclass(frozen=True)
class Token:
    """A lexical token with its 1-based line and 0-based column."""
    kind: TokenKind
    text: str
    line: int
    column: int


KEYWORDS = {
    "int": TokenKind.KW_INT,
    "float": TokenKind.KW_FLOAT,
    "char": TokenKind.KW_CHAR,
    "double": TokenKind.KW_DOUBLE,
    "bool": TokenKind.KW_BOOL,
    "return": TokenKind.KW_RETURN,
    "new": TokenKind.NEW,
    "delete": TokenKind.DELETE,
    "nullptr": TokenKind.NULL,
    "true": TokenKind.BOOL,
    "false": TokenKind.BOOL,
}

PUNCTUATION = {
    "&": TokenKind.AMPERSAND,
    "*": TokenKind.ASTERISK,
    "=": TokenKind.EQ,
    ";": TokenKind.SEMICOLON,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    "{": TokenKind.LBRACE,
    "}": TokenKind.RBRACE,
}

# Order matters: floats before ints so "1.5" is one token
TOKEN_REGEX = re.compile(
    r"""
    (?P<newline>\n)
  | (?P<space>[ \t\r\f\v]+)
  | (?P<comment>//[^\n]*)
  | (?P<float>(?:\d+(?:\.\d+)?|\.\d+)[eE][+-]?\d+|\d+\.\d+|\.\d+)
  | (?P<int>\d+)
  | (?P<char>'(?:\\.|[^'\\\n])')
  | (?P<word>[A-Za-z_]\w*)
  | (?P<punct>[&*=;(){}])
    """,
    re.VERBOSE,
)


class Lexer:
    """Splits source text into tokens, dropping whitespace and comments."""

    def __init__(self, text: str) -> None:
        self.text = text

    def tokenize(self) -> List[Token]:
        """Return every token of the text followed by an EOF token.

        Raises:
            ParseError: On a character that starts no token
        """
        tokens: List[Token] = []
        pos = 0
        line = 1
        line_start = 0

        while pos < len(self.text):
            match = TOKEN_REGEX.match(self.text, pos)
            column = pos - line_start
            if match is None:
                raise ParseError(f"Unexpected character `{self.text[pos]}`", line, column)

            group = match.lastgroup
            value = match.group()
            pos = match.end()

            if group == "newline":
                line += 1
                line_start = pos
            elif group in ("space", "comment"):
                continue
            elif group == "word":
                tokens.append(Token(KEYWORDS.get(value, TokenKind.IDENTIFIER), value, line, column))
            elif group == "punct":
                tokens.append(Token(PUNCTUATION[value], value, line, column))
            else:
                kind = {"float": TokenKind.FLOAT, "int": TokenKind.INT, "char": TokenKind.CHAR}[group]
                tokens.append(Token(kind, value, line, column))

        tokens.append(Token(TokenKind.EOF, "", line, pos - line_start))
        return tokens


# ============================================================
#  Parser
# ============================================================

class Parser:
    """Recursive-descent parser producing statements from tokens."""

    def __init__(self, tokens: List[Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    # ------------- Token helpers ------------- #

    def peek(self, offset: int = 0) -> Token:
        index = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[index]

    def advance(self) -> Token:
        token = self.peek()
        if token.kind is not TokenKind.EOF:
            self.pos += 1
        return token

    def accept(self, kind: TokenKind) -> Optional[Token]:
        if self.peek().kind is kind:
            return self.advance()
        return None

    def expect(self, kind: TokenKind) -> Token:
        token = self.peek()
        if token.kind is not kind:
            raise ParseError(
                f"Expected to consume `{kind}`, but found `{token.kind}`", token.line, token.column
            )
        return self.advance()

    def expect_identifier(self, context: str = "") -> Token:
        token = self.peek()
        if token.kind is not TokenKind.IDENTIFIER:
            raise ParseError(
                f"Expected identifier{context} but found `{token.kind}`", token.line, token.column
            )
        return self.advance()

    def expect_type(self) -> Token:
        token = self.peek()
        if token.kind not in TYPE_KEYWORDS:
            raise ParseError(
                f"Expected type after `new` but found `{token.kind}`", token.line, token.column
            )
        return self.advance()

    # ------------- Program ------------- #

    def parse(self) -> List[Statement]:
        """Parse the whole token stream.

        Raises:
            ParseError: On the first syntax error
        """
        if self._at_main():
            for kind in (TokenKind.KW_INT, TokenKind.IDENTIFIER, TokenKind.LPAREN,
                         TokenKind.RPAREN, TokenKind.LBRACE):
                self.expect(kind)
            statements = self._block(TokenKind.RBRACE)
            self.expect(TokenKind.RBRACE)
        else:
            statements = self._block(TokenKind.EOF)

        self.expect(TokenKind.EOF)
        return statements

    def _at_main(self) -> bool:
        return (
            self.peek().kind is TokenKind.KW_INT
            and self.peek(1).kind is TokenKind.IDENTIFIER
            and self.peek(1).text == "main"
            and self.peek(2).kind is TokenKind.LPAREN
        )

    def _block(self, end: TokenKind) -> List[Statement]:
        statements: List[Statement] = []
        while self.peek().kind not in (end, TokenKind.EOF):
            if self.peek().kind is TokenKind.KW_RETURN:
                self._skip_return()
                continue
            statements.append(self.statement())
        return statements

    def _skip_return(self) -> None:
        self.expect(TokenKind.KW_RETURN)
        if self.peek().kind is not TokenKind.SEMICOLON:
            self.expression()
        self.expect(TokenKind.SEMICOLON)

    # ------------- Statements ------------- #

    def statement(self) -> Statement:
        token = self.peek()
        if token.kind in TYPE_KEYWORDS:
            return self._declaration()
        if token.kind is TokenKind.ASTERISK:
            return self._deref()
        if token.kind is TokenKind.IDENTIFIER:
            return self._assignment()
        if token.kind is TokenKind.DELETE:
            return self._delete()
        raise ParseError(f"Expected statement but found `{token.kind}`", token.line, token.column)

    def _declaration(self) -> Statement:
        type_token = self.advance()
        is_pointer = self.accept(TokenKind.ASTERISK) is not None
        ident = self.expect_identifier()
        var_type = type_token.kind
        line = type_token.line

        if not is_pointer:
            if self.accept(TokenKind.SEMICOLON):
                return VariableDeclarationWithoutAssignment(var_type, ident.text, line, ident.column)
            self.expect(TokenKind.EQ)
            value = self.expression()
            self.expect(TokenKind.SEMICOLON)
            return VariableDeclaration(var_type, ident.text, value, line, ident.column)

        self.expect(TokenKind.EQ)

        if self.accept(TokenKind.NEW):
            new_type = self.expect_type()
            if new_type.kind is not var_type:
                raise ParseError(f"Expected a pointer to {var_type}", new_type.line, new_type.column)
            self.expect(TokenKind.SEMICOLON)
            return PointerDeclarationHeap(var_type, ident.text, line, ident.column)

        if self.accept(TokenKind.NULL):
            self.expect(TokenKind.SEMICOLON)
            return PointerDeclarationNull(var_type, ident.text, line, ident.column)

        token = self.peek()
        if token.kind is not TokenKind.AMPERSAND:
            raise ParseError(
                f"Expected reference operator but found `{token.kind}`", token.line, token.column
            )
        self.advance()
        target = self.expect_identifier(" after reference operator")
        self.expect(TokenKind.SEMICOLON)
        return PointerDeclaration(var_type, ident.text, Ident(target.text), line, ident.column)

    def _deref(self) -> Statement:
        star = self.expect(TokenKind.ASTERISK)
        ident = self.expect_identifier(" after dereference operator `*`,")
        self.expect(TokenKind.EQ)
        value_column = self.peek().column
        value = self.expression()
        self.expect(TokenKind.SEMICOLON)
        return Deref(ident.text, value, star.line, ident.column, value_column)

    def _assignment(self) -> Statement:
        ident = self.advance()
        eq = self.expect(TokenKind.EQ)

        if self.accept(TokenKind.NEW):
            new_type = self.expect_type()
            self.expect(TokenKind.SEMICOLON)
            return PointerAssignmentHeap(
                ident.text, new_type.kind, ident.line, ident.column, new_type.column
            )

        if self.accept(TokenKind.NULL):
            self.expect(TokenKind.SEMICOLON)
            return PointerAssignmentNull(ident.text, ident.line, ident.column)

        if self.accept(TokenKind.AMPERSAND):
            target = self.expect_identifier(" after reference operator")
            self.expect(TokenKind.SEMICOLON)
            return PointerAssignment(ident.text, Ident(target.text), ident.line, ident.column)

        value = self.expression()
        self.expect(TokenKind.SEMICOLON)
        return VariableAssignment(ident.text, value, ident.line, ident.column, eq.column)

    def _delete(self) -> Statement:
        keyword = self.expect(TokenKind.DELETE)
        ident = self.expect_identifier(" after delete operator `delete`,")
        self.expect(TokenKind.SEMICOLON)
        return Delete(ident.text, keyword.line, ident.column)

    # ------------- Expressions ------------- #

    def expression(self) -> Expr:
        """Parse a literal or an identifier."""
        token = self.peek()

        if token.kind is TokenKind.IDENTIFIER:
            self.advance()
            return Ident(token.text)

        if token.kind is TokenKind.INT:
            self.advance()
            return Lit.integer(int(token.text))

        if token.kind is TokenKind.FLOAT:
            self.advance()
            return Lit.floating(float(token.text))

        if token.kind is TokenKind.CHAR:
            self.advance()
            return Lit.char(token.text[1:-1])

        if token.kind is TokenKind.BOOL:
            self.advance()
            return Lit.boolean(token.text == "true")

        raise ParseError(f"Expected expression but found `{token.kind}`", token.line, token.column)


def parse_source(text: str) -> List[Statement]:
    """Tokenize and parse a program.

    Raises:
        ParseError: On the first lexical or syntax error
    """
    return Parser(Lexer(text).tokenize()).parse()
