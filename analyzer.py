"""
analyzer.py

Statement interpreter over a symbol table and a simulated heap.

The analyzer folds an ordered list of statements into a stack (an
insertion-ordered symbol table) and a heap (a HeapAllocator), checking
every statement against the type system and the pointer state machine:

    Stack ──(p = new T)──> Heap ──(delete p)──> Dangling
      ^                     │                      │
      └──(p = &x)───────────┴──(p = nullptr)──> Null

Leaving Heap without a delete leaks the block; leaving Dangling drops
the pointer's dangling record from the freed block.

Usage:
    from analyzer import Analyzer
    from hint_store import InMemoryHintStore

    store = InMemoryHintStore()
    snapshot = asyncio.run(Analyzer().analyze(statements, store))
    snapshot.print()
"""

from __future__ import annotations

import asyncio
import copy
import logging
import random
from typing import Callable, Dict, Iterable, List, MutableMapping, Optional

from assignment_validators import (
    resolve_deref_value,
    validate_pointer_assignment,
    validate_variable_assignment,
)
from heap_allocator import AllocatorConfig, HeapAllocator, create_allocator
from hint_store import HintStore, InMemoryHintStore
from memory_errors import (
    AllocatorError,
    AnalysisError,
    AnalysisErrorKind,
    InternalError,
)
from memory_model import (
    AllocationType,
    HeapBlock,
    HeapBlockState,
    Literal,
    MemorySnapshot,
    Pointer,
    Symbol,
    Variable,
)
from statement_ast import (
    Delete,
    Deref,
    Ident,
    PointerAssignment,
    PointerAssignmentHeap,
    PointerAssignmentNull,
    PointerDeclaration,
    PointerDeclarationHeap,
    PointerDeclarationNull,
    Statement,
    VariableAssignment,
    VariableDeclaration,
    VariableDeclarationWithoutAssignment,
)
from source_parser import parse_source
from type_system import Type

logger = logging.getLogger(__name__)

SymbolTable = Dict[str, Symbol]
Hints = MutableMapping[str, int]


class Analyzer:
    """Interprets statements and produces memory snapshots.

    A fresh symbol table and allocator are created for every run; only
    the hints map outlives it.

    Attributes:
        config: Configuration of the allocator created for each run
    """

    def __init__(
        self,
        config: Optional[AllocatorConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        """Initialize the analyzer.

        Args:
            config: Allocator configuration (defaults to AllocatorConfig())
            rng: Random generator for heap placement, overriding config.seed
        """
        self.config = config if config is not None else AllocatorConfig()
        self._rng = rng
        self._handlers: Dict[type, Callable[..., None]] = {
            VariableDeclaration: self._variable_declaration,
            VariableDeclarationWithoutAssignment: self._variable_declaration_without_assignment,
            VariableAssignment: self._variable_assignment,
            PointerDeclaration: self._pointer_declaration,
            PointerDeclarationHeap: self._pointer_declaration_heap,
            PointerDeclarationNull: self._pointer_declaration_null,
            PointerAssignment: self._pointer_assignment,
            PointerAssignmentHeap: self._pointer_assignment_heap,
            PointerAssignmentNull: self._pointer_assignment_null,
            Deref: self._deref,
            Delete: self._delete,
        }

    # ------------- Entry points ------------- #

    async def analyze(
        self,
        statements: Iterable[Statement],
        store: HintStore,
        on_step: Optional[Callable[[MemorySnapshot], None]] = None,
    ) -> MemorySnapshot:
        """Analyze statements, reading and persisting hints through a store.

        The store's lock is held from reading the hints until the updated
        hints are written back. Hints are not written when analysis fails.

        Raises:
            AnalysisError: On the first invalid statement
        """
        async with store.lock:
            hints = await store.get_hints()
            snapshot = self.run(statements, hints, on_step)
            await store.set_hints(hints)
        return snapshot

    def run(
        self,
        statements: Iterable[Statement],
        hints: Optional[Hints] = None,
        on_step: Optional[Callable[[MemorySnapshot], None]] = None,
    ) -> MemorySnapshot:
        """Fold the statements into a final snapshot.

        Args:
            statements: Statements in program order
            hints: Pointer name to address hints, updated in place
            on_step: Called with a snapshot after every statement

        Returns:
            The final stack and heap

        Raises:
            AnalysisError: On the first invalid statement
        """
        hints = hints if hints is not None else {}
        symbols: SymbolTable = {}
        allocator = create_allocator(self.config, self._rng)

        step = 0
        for step, statement in enumerate(statements, start=1):
            self.analyze_statement(statement, symbols, allocator, hints)
            if on_step is not None:
                on_step(self._snapshot(step, str(statement), symbols, allocator))

        self._clean_hints(hints, symbols)
        return self._snapshot(step, "Final state", symbols, allocator)

    def trace(
        self,
        statements: Iterable[Statement],
        hints: Optional[Hints] = None,
    ) -> List[MemorySnapshot]:
        """Return the snapshot after each statement, for step-by-step viewing.

        Step ids start at 1; each description is the statement's source text.
        """
        steps: List[MemorySnapshot] = []
        self.run(statements, hints, on_step=steps.append)
        return steps

    def analyze_statement(
        self,
        statement: Statement,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        """Apply one statement to the symbol table and the heap.

        Positionless errors from the type system or the allocator are
        reported at the statement's position.

        Raises:
            AnalysisError: If the statement is invalid
        """
        handler = self._handlers.get(type(statement))
        if handler is None:
            raise AnalysisError(
                f"Unsupported statement `{statement}`",
                getattr(statement, "line", 0),
                getattr(statement, "column", 0),
            )

        logger.debug("Line %d: %s", statement.line, statement)
        try:
            handler(statement, symbols, allocator, hints)
        except AllocatorError as e:
            logger.info("Allocation failed on line %d: %s", statement.line, e.message)
            raise AnalysisError(
                e.message, statement.line, statement.column, AnalysisErrorKind.ALLOCATION
            ) from e
        except InternalError as e:
            raise AnalysisError(
                e.message, statement.line, statement.column, AnalysisErrorKind.INTERNAL
            ) from e
        except AnalysisError as e:
            logger.info("Analysis stopped: %s", e)
            raise

    # ------------- Helpers ------------- #

    def _snapshot(
        self,
        step_id: int,
        description: str,
        symbols: SymbolTable,
        allocator: HeapAllocator,
    ) -> MemorySnapshot:
        return MemorySnapshot(
            step_id=step_id,
            description=description,
            stack=[copy.deepcopy(s) for s in symbols.values()],
            heap=allocator.get_heap(),
            heap_size=allocator.size,
        )

    @staticmethod
    def _clean_hints(hints: Hints, symbols: SymbolTable) -> None:
        """Drop hints for names no longer on the stack."""
        for name in list(hints):
            if name not in symbols:
                del hints[name]

    @staticmethod
    def _ensure_undeclared(label: str, name: str, symbols: SymbolTable, statement: Statement) -> None:
        if name in symbols:
            raise AnalysisError(
                f"{label} `{name}` already declared!",
                statement.line,
                statement.column,
                AnalysisErrorKind.DUPLICATE,
            )

    @staticmethod
    def _lookup_pointer(
        name: str,
        symbols: SymbolTable,
        statement: Statement,
        misuse_message: str,
        misuse_column: Optional[int] = None,
    ) -> Pointer:
        symbol = symbols.get(name)
        if symbol is None:
            raise AnalysisError(
                f"Pointer `{name}` not found!",
                statement.line,
                statement.column,
                AnalysisErrorKind.UNDECLARED,
            )
        if not isinstance(symbol, Pointer):
            raise AnalysisError(
                misuse_message,
                statement.line,
                statement.column if misuse_column is None else misuse_column,
                AnalysisErrorKind.INVALID_OPERATION,
            )
        return symbol

    @staticmethod
    def _sharers(pointer: Pointer, symbols: SymbolTable, *states: AllocationType) -> List[Pointer]:
        """Other pointers in one of ``states`` referencing the same heap block."""
        return [
            s for s in symbols.values()
            if isinstance(s, Pointer)
            and s is not pointer
            and s.allocation_type in states
            and s.heap_address is not None
            and s.heap_address == pointer.heap_address
        ]

    @staticmethod
    def _block_sharers(pointer: Pointer, symbols: SymbolTable, allocator: HeapAllocator) -> List[Pointer]:
        """Other Heap or Dangling pointers into the block holding ``pointer``'s address.

        Matches by block rather than by address, so a dangling pointer into
        the middle of a reused block sees writes made through its owner.
        """
        target = allocator.unit(pointer.heap_address)
        sharers = []
        for other in symbols.values():
            if (
                not isinstance(other, Pointer)
                or other is pointer
                or other.allocation_type not in (AllocationType.HEAP, AllocationType.DANGLING)
                or other.heap_address is None
            ):
                continue
            unit = allocator.unit(other.heap_address)
            if unit.address == target.address and unit.state is target.state:
                sharers.append(other)
        return sharers

    def _release_target(self, pointer: Pointer, symbols: SymbolTable, allocator: HeapAllocator) -> None:
        """Detach a pointer from its heap block before it is reassigned.

        A Heap pointer leaks its block unless another pointer still
        reaches it, in which case ownership passes to that pointer. A
        Dangling pointer drops its record from the freed block.
        """
        address = pointer.heap_address
        if address is None:
            return

        if pointer.allocation_type is AllocationType.HEAP:
            sharers = self._sharers(pointer, symbols, AllocationType.HEAP)
            if not sharers:
                allocator.leak(address, pointer.value_size)
                return
            unit = allocator.unit(address)
            if unit.owner == pointer.name:
                allocator.write(
                    address,
                    HeapBlock(
                        address=address,
                        size=unit.size,
                        state=HeapBlockState.ALLOCATED,
                        owner=sharers[0].name,
                        metadata=unit.metadata,
                    ),
                )
        elif pointer.allocation_type is AllocationType.DANGLING:
            allocator.remove_dangling_pointer(address, pointer.name)

    @staticmethod
    def _point_at(pointer: Pointer, target: Symbol) -> None:
        pointer.allocation_type = AllocationType.STACK
        pointer.heap_address = None
        if isinstance(target, Variable):
            pointer.pointee = target.name
            pointer.value = None
        elif isinstance(target, Literal):
            pointer.pointee = None
            pointer.value = target.value

    @staticmethod
    def _allocate(name: str, ptype: Type, allocator: HeapAllocator, hints: Hints) -> int:
        return allocator.allocate_and_write(
            name, ptype.get_size(), hints, metadata=ptype.get_garbage_value()
        )

    # ------------- Variable statements ------------- #

    def _variable_declaration(
        self,
        statement: VariableDeclaration,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        vtype = Type.from_token(statement.var_type)
        value = validate_variable_assignment(
            statement.value, statement.var_name, vtype, symbols, statement.line, statement.column
        )
        self._ensure_undeclared("Variable", statement.var_name, symbols, statement)
        symbols[statement.var_name] = Variable(vtype, statement.var_name, value, vtype.get_size())

    def _variable_declaration_without_assignment(
        self,
        statement: VariableDeclarationWithoutAssignment,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        self._ensure_undeclared("Variable", statement.var_name, symbols, statement)
        vtype = Type.from_token(statement.var_type)
        symbols[statement.var_name] = Variable(vtype, statement.var_name, None, vtype.get_size())

    def _variable_assignment(
        self,
        statement: VariableAssignment,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        symbol = symbols.get(statement.var_name)
        if symbol is None:
            raise AnalysisError(
                f"Variable `{statement.var_name}` not found!",
                statement.line,
                statement.column,
                AnalysisErrorKind.UNDECLARED,
            )

        if isinstance(symbol, Variable):
            symbol.value = validate_variable_assignment(
                statement.new_value,
                statement.var_name,
                symbol.vtype,
                symbols,
                statement.line,
                statement.column,
            )
            return

        if isinstance(symbol, Pointer) and isinstance(statement.new_value, Ident):
            source = symbols.get(statement.new_value.name)
            if isinstance(source, Pointer):
                self._copy_pointer(symbol, source, symbols, allocator, statement)
                return

        raise AnalysisError(
            f"Invalid use case of assignment operator for symbol `{statement.var_name}`",
            statement.line,
            statement.assignment_column,
            AnalysisErrorKind.INVALID_OPERATION,
        )

    def _copy_pointer(
        self,
        target: Pointer,
        source: Pointer,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        statement: VariableAssignment,
    ) -> None:
        """``p = q``: p takes over whatever q points to."""
        if source.ptype is not target.ptype:
            raise AnalysisError(
                f"Cannot assign `{source.name}` ({source.ptype}*) to pointer "
                f"`{target.name}` ({target.ptype}*) (incorrect type)",
                statement.line,
                statement.column,
                AnalysisErrorKind.TYPE_MISMATCH,
            )
        if source is target:
            return

        self._release_target(target, symbols, allocator)

        target.allocation_type = source.allocation_type
        target.heap_address = source.heap_address
        target.pointee = source.pointee
        target.value = source.value

        if source.allocation_type is AllocationType.DANGLING and source.heap_address is not None:
            allocator.insert_dangling_pointer(source.heap_address, target.name)

    # ------------- Pointer declarations ------------- #

    def _pointer_declaration(
        self,
        statement: PointerDeclaration,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        self._ensure_undeclared("Pointer", statement.pointer_name, symbols, statement)
        ptype = Type.from_token(statement.base_type)
        target = validate_pointer_assignment(
            statement.value,
            symbols,
            statement.line,
            statement.column,
            ptype,
            statement.pointer_name,
        )
        pointer = Pointer(ptype, statement.pointer_name, value_size=ptype.get_size())
        self._point_at(pointer, target)
        symbols[statement.pointer_name] = pointer

    def _pointer_declaration_heap(
        self,
        statement: PointerDeclarationHeap,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        self._ensure_undeclared("Pointer", statement.pointer_name, symbols, statement)
        ptype = Type.from_token(statement.base_type)
        address = self._allocate(statement.pointer_name, ptype, allocator, hints)
        symbols[statement.pointer_name] = Pointer(
            ptype,
            statement.pointer_name,
            value=ptype.get_garbage_value(),
            heap_address=address,
            allocation_type=AllocationType.HEAP,
            value_size=ptype.get_size(),
        )

    def _pointer_declaration_null(
        self,
        statement: PointerDeclarationNull,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        self._ensure_undeclared("Pointer", statement.pointer_name, symbols, statement)
        ptype = Type.from_token(statement.base_type)
        symbols[statement.pointer_name] = Pointer(
            ptype,
            statement.pointer_name,
            allocation_type=AllocationType.NULL,
            value_size=ptype.get_size(),
        )

    # ------------- Pointer assignments ------------- #

    def _pointer_assignment(
        self,
        statement: PointerAssignment,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        pointer = self._lookup_pointer(
            statement.pointer_name,
            symbols,
            statement,
            f"Invalid use case of assignment operator for symbol `{statement.pointer_name}`",
        )
        target = validate_pointer_assignment(
            statement.new_value,
            symbols,
            statement.line,
            statement.column,
            pointer.ptype,
            pointer.name,
        )
        self._release_target(pointer, symbols, allocator)
        self._point_at(pointer, target)

    def _pointer_assignment_heap(
        self,
        statement: PointerAssignmentHeap,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        pointer = self._lookup_pointer(
            statement.pointer_name,
            symbols,
            statement,
            f"Invalid use case of assignment operator for symbol `{statement.pointer_name}`",
        )
        if not pointer.ptype.is_type(statement.new_type):
            raise AnalysisError(
                f"Cannot assign `new {statement.new_type}` to pointer "
                f"`{statement.pointer_name}` (incorrect type)",
                statement.line,
                statement.new_type_column,
                AnalysisErrorKind.TYPE_MISMATCH,
            )

        self._release_target(pointer, symbols, allocator)
        address = self._allocate(pointer.name, pointer.ptype, allocator, hints)

        pointer.allocation_type = AllocationType.HEAP
        pointer.heap_address = address
        pointer.pointee = None
        pointer.value = pointer.ptype.get_garbage_value()

    def _pointer_assignment_null(
        self,
        statement: PointerAssignmentNull,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        pointer = self._lookup_pointer(
            statement.pointer_name,
            symbols,
            statement,
            f"Invalid use case of assignment operator for symbol `{statement.pointer_name}`",
        )
        self._release_target(pointer, symbols, allocator)
        pointer.allocation_type = AllocationType.NULL
        pointer.heap_address = None
        pointer.pointee = None
        pointer.value = None

    # ------------- Dereference and delete ------------- #

    def _deref(
        self,
        statement: Deref,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        name = statement.pointer_name
        pointer = self._lookup_pointer(name, symbols, statement, f"Cannot dereference non-pointer `{name}`")

        if pointer.allocation_type is AllocationType.NULL:
            raise AnalysisError(
                f"Cannot dereference null pointer `{name}`",
                statement.line,
                statement.column,
                AnalysisErrorKind.NULL_DEREFERENCE,
            )

        value = resolve_deref_value(
            statement.new_value,
            pointer.ptype,
            name,
            symbols,
            statement.line,
            statement.new_value_column,
        )

        # Writes through a dangling pointer land on the freed block
        if pointer.allocation_type in (AllocationType.HEAP, AllocationType.DANGLING):
            if pointer.heap_address is None:
                raise AnalysisError(
                    f"Heap pointer not found for `{name}`",
                    statement.line,
                    statement.column,
                    AnalysisErrorKind.INTERNAL,
                )
            allocator.update_metadata(pointer.heap_address, value)
            pointer.value = value
            for other in self._block_sharers(pointer, symbols, allocator):
                other.value = value
            return

        if pointer.pointee is None:
            pointer.value = value
            return

        target = symbols.get(pointer.pointee)
        if isinstance(target, Variable):
            target.value = value

    def _delete(
        self,
        statement: Delete,
        symbols: SymbolTable,
        allocator: HeapAllocator,
        hints: Hints,
    ) -> None:
        name = statement.pointer_name
        pointer = self._lookup_pointer(name, symbols, statement, f"Cannot delete non-pointer `{name}`")

        refusals = {
            AllocationType.STACK: ("stack", AnalysisErrorKind.DELETE_STACK),
            AllocationType.NULL: ("null", AnalysisErrorKind.DELETE_NULL),
            AllocationType.DANGLING: ("dangling", AnalysisErrorKind.DELETE_DANGLING),
        }
        if pointer.allocation_type in refusals:
            label, kind = refusals[pointer.allocation_type]
            raise AnalysisError(
                f"Cannot delete {label} pointer `{name}`", statement.line, statement.column, kind
            )

        address = pointer.heap_address
        if address is None:
            raise AnalysisError(
                f"Heap pointer not found for `{name}`",
                statement.line,
                statement.column,
                AnalysisErrorKind.INTERNAL,
            )

        aliases = self._sharers(pointer, symbols, AllocationType.HEAP)
        allocator.free(address, pointer.value_size)
        for dangling in [pointer] + aliases:
            dangling.allocation_type = AllocationType.DANGLING
            allocator.insert_dangling_pointer(address, dangling.name)


def analyze_source(
    source: str,
    store: Optional[HintStore] = None,
    config: Optional[AllocatorConfig] = None,
    rng: Optional[random.Random] = None,
) -> MemorySnapshot:
    """Parse and analyze a program in one call.

    Must not be called from a running event loop; await
    ``Analyzer.analyze`` there instead.

    Args:
        source: Program text
        store: Hint store to read and update (a fresh in-memory one by default)
        config: Allocator configuration
        rng: Random generator for heap placement

    Raises:
        ParseError: If the source does not parse
        AnalysisError: On the first invalid statement
    """
    statements = parse_source(source)
    store = store if store is not None else InMemoryHintStore()
    return asyncio.run(Analyzer(config, rng).analyze(statements, store))
