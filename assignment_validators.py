"""
assignment_validators.py

Type checking and resolution of right-hand sides.

Right-hand sides are limited to a literal or the name of another
symbol. These helpers are shared by the analyzer's variable, pointer and
dereference handlers; every failure is raised as an AnalysisError
carrying the position handed in by the caller.
"""

from __future__ import annotations

from typing import Mapping, Optional, Union

from memory_errors import AnalysisError, AnalysisErrorKind, ParseError
from memory_model import Literal, Symbol, Variable
from statement_ast import Expr, Ident, Lit
from type_system import Type


def literal_fits(vtype: Type, text: str) -> bool:
    """Check whether stored literal text may be copied into ``vtype``."""
    try:
        return vtype.is_correct_literal(Lit.parse(text))
    except ParseError:
        return False


def _initialized_variable(
    name: str,
    symbols: Mapping[str, Symbol],
    line: int,
    column: int,
    category_message: str,
) -> Variable:
    symbol = symbols.get(name)
    if symbol is None:
        raise AnalysisError(
            f"Variable `{name}` not found!", line, column, AnalysisErrorKind.UNDECLARED
        )
    if not isinstance(symbol, Variable):
        raise AnalysisError(category_message, line, column, AnalysisErrorKind.INVALID_OPERATION)
    if symbol.value is None:
        raise AnalysisError(
            f"Variable `{name}` not initialized!", line, column, AnalysisErrorKind.UNINITIALIZED
        )
    return symbol


def _unexpected_expression(value: object, line: int, column: int) -> AnalysisError:
    return AnalysisError(
        f"Expected a identifier or literal but found `{value}`",
        line,
        column,
        AnalysisErrorKind.INVALID_OPERATION,
    )


def validate_variable_assignment(
    value: Expr,
    var_name: str,
    var_type: Type,
    symbols: Mapping[str, Symbol],
    line: int,
    column: int,
) -> str:
    """Validate a value assigned to a variable.

    A literal must be compatible with the variable's type. An identifier
    must name an initialized variable whose value is compatible; its
    current value is copied.

    Args:
        value: Literal or identifier being assigned
        var_name: Name of the variable assigned to
        var_type: Declared type of that variable
        symbols: Current symbol table
        line: Source line of the statement
        column: Source column reported on failure

    Returns:
        The canonical text of the new value

    Raises:
        AnalysisError: If the assignment is invalid
    """
    if isinstance(value, Lit):
        if not var_type.is_correct_literal(value):
            raise AnalysisError(
                f"Cannot assign `{value}` to variable `{var_name}` (incorrect type)",
                line,
                column,
                AnalysisErrorKind.TYPE_MISMATCH,
            )
        return str(value)

    if isinstance(value, Ident):
        source = _initialized_variable(
            value.name, symbols, line, column, "Can only assign variables to variables!"
        )
        if not literal_fits(var_type, source.value):
            raise AnalysisError(
                f"Cannot assign `{source.value}` to variable `{var_name}` (incorrect type)",
                line,
                column,
                AnalysisErrorKind.TYPE_MISMATCH,
            )
        return source.value

    raise _unexpected_expression(value, line, column)


def validate_pointer_assignment(
    value: Expr,
    symbols: Mapping[str, Symbol],
    line: int,
    column: int,
    pointer_type: Optional[Type] = None,
    pointer_name: Optional[str] = None,
) -> Union[Variable, Literal]:
    """Validate the target of a stack pointer.

    Pointers may point to a declared variable or hold a literal. When
    ``pointer_type`` is given the target must have that type.

    Returns:
        The variable pointed to, or a Literal

    Raises:
        AnalysisError: If the target is invalid
    """
    if isinstance(value, Lit):
        if pointer_type is not None and not pointer_type.is_correct_literal(value):
            raise AnalysisError(
                f"Cannot assign `{value}` to pointer `{pointer_name}` (incorrect type)",
                line,
                column,
                AnalysisErrorKind.TYPE_MISMATCH,
            )
        return Literal(value=str(value))

    if isinstance(value, Ident):
        symbol = symbols.get(value.name)
        if symbol is None:
            raise AnalysisError(
                f"Variable `{value.name}` not found!", line, column, AnalysisErrorKind.UNDECLARED
            )
        if not isinstance(symbol, Variable):
            raise AnalysisError(
                "Pointers can only point to variables or literals!",
                line,
                column,
                AnalysisErrorKind.INVALID_OPERATION,
            )
        if pointer_type is not None and symbol.vtype is not pointer_type:
            raise AnalysisError(
                f"Cannot assign `&{value.name}` ({symbol.vtype}*) to pointer "
                f"`{pointer_name}` ({pointer_type}*) (incorrect type)",
                line,
                column,
                AnalysisErrorKind.TYPE_MISMATCH,
            )
        return symbol

    raise _unexpected_expression(value, line, column)


def resolve_deref_value(
    value: Expr,
    pointer_type: Type,
    pointer_name: str,
    symbols: Mapping[str, Symbol],
    line: int,
    column: int,
) -> str:
    """Resolve the value written through ``*pointer_name``.

    Returns:
        The canonical text of the value to store

    Raises:
        AnalysisError: If the value is unknown, uninitialized or mistyped
    """
    if isinstance(value, Lit):
        text = str(value)
        fits = pointer_type.is_correct_literal(value)
    elif isinstance(value, Ident):
        source = _initialized_variable(
            value.name, symbols, line, column, "Can only assign variables to pointers!"
        )
        text = source.value
        fits = literal_fits(pointer_type, text)
    else:
        raise _unexpected_expression(value, line, column)

    if not fits:
        raise AnalysisError(
            f"Cannot assign `{text}` to pointer `{pointer_name}` (incorrect type)",
            line,
            column,
            AnalysisErrorKind.TYPE_MISMATCH,
        )
    return text
