"""
memory_model.py

Data model of an analyzed program's memory, with console rendering.

This module provides:
- Stack symbols: Variable, Pointer and Literal
- HeapBlock records produced by the heap allocator
- MemorySnapshot, the stack + heap state after a statement
- Console rendering with configurable output
- diff_snapshots for step-by-step comparison

Example:
    >>> from analyzer import analyze_source
    >>> snapshot = analyze_source("int x = 5; int* p = &x;")
    >>> snapshot.print()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from type_system import Type


# ============================================================
#  Configuration du rendu console
# ============================================================

@dataclass
class ConsoleRenderConfig:
    """Configuration for console rendering output.

    Attributes:
        pointer_arrow: Symbol to use for pointer visualization (→ or ->)
        show_addresses_hex: Display addresses in hexadecimal format
        address_width: Minimum number of hex digits for addresses
        show_unallocated: Include unallocated heap regions in the heap table
        compact_mode: Use more compact output format
    """
    pointer_arrow: str = "→"
    show_addresses_hex: bool = True
    address_width: int = 4
    show_unallocated: bool = True
    compact_mode: bool = False


# Instance globale de configuration
render_config = ConsoleRenderConfig()


def format_address(address: int) -> str:
    """Format a heap address according to render_config."""
    if render_config.show_addresses_hex:
        return f"0x{address:0{render_config.address_width}x}"
    return str(address)


# ============================================================
#  Heap
# ============================================================

class HeapBlockState(Enum):
    """State of a heap unit."""
    UNALLOCATED = "Unallocated"
    ALLOCATED = "Allocated"
    FREE = "Free"
    LEAKED = "Leaked"


UNALLOCATED_METADATA = "Unallocated Block"
FREE_METADATA = "Free Block"
LEAKED_METADATA = "Leaked Block"


@dataclass
class HeapBlock:
    """One unit of simulated heap memory, or one logical block in a snapshot.

    Attributes:
        address: Start address of the logical block this unit belongs to
        size: Size of that block in bytes
        state: Unallocated, Allocated, Free or Leaked
        owner: Identifier of the pointer owning the block
        dangling_pointers: Names of pointers still referencing the block after it was freed
        metadata: Current display value or a tag such as "Free Block"
    """
    address: int
    size: int
    state: HeapBlockState = HeapBlockState.UNALLOCATED
    owner: Optional[str] = None
    dangling_pointers: List[str] = field(default_factory=list)
    metadata: str = UNALLOCATED_METADATA

    @classmethod
    def unallocated(cls) -> HeapBlock:
        """Create an empty unit."""
        return cls(address=-1, size=0)

    @property
    def end(self) -> int:
        """Last address covered by the block (inclusive)."""
        return self.address + self.size - 1

    def copy(self) -> HeapBlock:
        """Return an independent copy of the block."""
        return HeapBlock(
            address=self.address,
            size=self.size,
            state=self.state,
            owner=self.owner,
            dangling_pointers=list(self.dangling_pointers),
            metadata=self.metadata,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "size": self.size,
            "state": self.state.value,
            "owner": self.owner,
            "dangling_pointers": list(self.dangling_pointers),
            "metadata": self.metadata,
        }


# ============================================================
#  Stack symbols
# ============================================================

class AllocationType(Enum):
    """What a pointer currently refers to."""
    STACK = "Stack"
    HEAP = "Heap"
    DANGLING = "Dangling"
    NULL = "Null"


POINTER_SIZE = 4


@dataclass
class Variable:
    """A typed stack variable.

    Attributes:
        vtype: Declared type
        name: Variable name
        value: Canonical literal text, None while uninitialized
        size: Size in bytes
    """
    vtype: Type
    name: str
    value: Optional[str]
    size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "Variable",
            "vtype": self.vtype.keyword,
            "name": self.name,
            "value": self.value,
            "size": self.size,
        }


@dataclass
class Pointer:
    """A typed pointer living on the stack.

    Attributes:
        ptype: Pointed-to type
        name: Pointer name
        pointee: Name of the stack variable pointed to (Stack pointers only)
        value: Literal pointee or the value last written through the pointer
        heap_address: Address of the heap block (Heap and Dangling pointers)
        allocation_type: Stack, Heap, Dangling or Null
        pointer_size: Size of the pointer itself in bytes
        value_size: Size of the pointed-to value in bytes
    """
    ptype: Type
    name: str
    pointee: Optional[str] = None
    value: Optional[str] = None
    heap_address: Optional[int] = None
    allocation_type: AllocationType = AllocationType.NULL
    pointer_size: int = POINTER_SIZE
    value_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "Pointer",
            "ptype": self.ptype.keyword,
            "name": self.name,
            "pointee": self.pointee,
            "value": self.value,
            "heap_address": self.heap_address,
            "allocation_type": self.allocation_type.value,
            "pointer_size": self.pointer_size,
            "value_size": self.value_size,
        }


@dataclass
class Literal:
    """A bare value used as a transient right-hand side."""
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": "Literal", "value": self.value}


Symbol = Union[Variable, Pointer, Literal]


def symbol_name(symbol: Symbol) -> Optional[str]:
    """Return the name of a symbol, None for literals."""
    if isinstance(symbol, (Variable, Pointer)):
        return symbol.name
    return None


# ============================================================
#  MemorySnapshot
# ============================================================

@dataclass
class MemorySnapshot:
    """Stack and heap state of an analyzed program at a point in time.

    Attributes:
        step_id: Index of the statement this snapshot follows (0 = before any)
        description: Human-readable description (usually the statement)
        stack: Stack symbols in declaration order
        heap: Heap blocks in address order
        heap_size: Size of the simulated address space
    """
    step_id: int
    description: Optional[str]
    stack: List[Symbol] = field(default_factory=list)
    heap: List[HeapBlock] = field(default_factory=list)
    heap_size: int = 0

    # ------------- Lookup ------------- #

    def get_symbol(self, name: str) -> Optional[Symbol]:
        """Get a stack symbol by name."""
        for symbol in self.stack:
            if symbol_name(symbol) == name:
                return symbol
        return None

    def get_block(self, address: int) -> Optional[HeapBlock]:
        """Get the heap block containing an address."""
        for block in self.heap:
            if block.address <= address <= block.end:
                return block
        return None

    def find_pointers_to(self, address: int) -> List[str]:
        """Names of the pointers whose heap address is the given address."""
        return [
            s.name for s in self.stack
            if isinstance(s, Pointer) and s.heap_address == address
        ]

    def blocks_in_state(self, state: HeapBlockState) -> List[HeapBlock]:
        """All heap blocks in a given state."""
        return [b for b in self.heap if b.state is state]

    def total_allocated_size(self) -> int:
        """Bytes currently held by allocated blocks."""
        return sum(b.size for b in self.blocks_in_state(HeapBlockState.ALLOCATED))

    def total_leaked_size(self) -> int:
        """Bytes lost to leaked blocks."""
        return sum(b.size for b in self.blocks_in_state(HeapBlockState.LEAKED))

    # ------------- Rendering ------------- #

    def describe_value(self, symbol: Symbol) -> str:
        """Format the value column of a stack symbol."""
        if isinstance(symbol, Literal):
            return symbol.value
        if isinstance(symbol, Variable):
            return symbol.value if symbol.value is not None else "<uninitialized>"

        arrow = render_config.pointer_arrow
        if symbol.allocation_type is AllocationType.NULL:
            return "nullptr"
        if symbol.allocation_type is AllocationType.STACK:
            target = symbol.pointee if symbol.pointee is not None else symbol.value
            return f"{arrow} {target}"

        addr = format_address(symbol.heap_address) if symbol.heap_address is not None else "?"
        if symbol.allocation_type is AllocationType.DANGLING:
            return f"{arrow} {addr} (dangling)"
        return f"{arrow} {addr} ({symbol.value})"

    def stack_to_console(self) -> str:
        """Render the stack to console format."""
        lines: List[str] = []
        lines.append("=== Stack ===")
        if not self.stack:
            lines.append("(empty stack)")
            return "\n".join(lines)

        header = f"{'Name':12} {'Type':8} {'Size':5} {'Kind':10} {'Value'}"
        lines.append(header)
        lines.append("-" * len(header))

        for symbol in self.stack:
            if isinstance(symbol, Variable):
                type_name, size, kind = symbol.vtype.keyword, symbol.size, "variable"
            elif isinstance(symbol, Pointer):
                type_name = f"{symbol.ptype.keyword}*"
                size = symbol.pointer_size
                kind = symbol.allocation_type.value.lower()
            else:
                type_name, size, kind = "", 0, "literal"
            name = symbol_name(symbol) or ""
            lines.append(f"{name:12} {type_name:8} {size:<5} {kind:10} {self.describe_value(symbol)}")

        return "\n".join(lines)

    def heap_to_console(self) -> str:
        """Render the heap to console format."""
        lines: List[str] = []
        lines.append("=== Heap ===")

        allocated = self.blocks_in_state(HeapBlockState.ALLOCATED)
        leaked = self.blocks_in_state(HeapBlockState.LEAKED)
        lines.append(
            f"Size: {self.heap_size} bytes, allocated: {len(allocated)} blocks "
            f"({self.total_allocated_size()} bytes), leaked: {len(leaked)} blocks "
            f"({self.total_leaked_size()} bytes)"
        )
        if not render_config.compact_mode:
            lines.append("")

        header = f"{'Address':10} {'Size':5} {'State':12} {'Owner':14} {'Value'}"
        lines.append(header)
        lines.append("-" * len(header))

        for block in self.heap:
            if block.state is HeapBlockState.UNALLOCATED and not render_config.show_unallocated:
                continue
            owner = block.owner or ""
            lines.append(
                f"{format_address(block.address):10} {block.size:<5} "
                f"{block.state.value:12} {owner:14} {block.metadata}"
            )
            if block.dangling_pointers and not render_config.compact_mode:
                lines.append(f"  └─ dangling: {', '.join(block.dangling_pointers)}")

        return "\n".join(lines)

    def to_console(self) -> str:
        """Render the complete snapshot to console format."""
        lines: List[str] = []
        lines.append("=" * 70)
        if self.description:
            lines.append(f" Step {self.step_id}: {self.description}")
        else:
            lines.append(f" Step {self.step_id}")
        lines.append("=" * 70)
        lines.append("")
        lines.append(self.stack_to_console())
        lines.append("")
        lines.append(self.heap_to_console())
        return "\n".join(lines)

    def print(self) -> None:
        """Print the snapshot to console."""
        print(self.to_console())

    def to_dict(self) -> Dict[str, Any]:
        """Return the snapshot in the shape a host shell renders."""
        return {
            "stack": [s.to_dict() for s in self.stack],
            "heap": [b.to_dict() for b in self.heap],
        }


# ============================================================
#  Utility functions
# ============================================================

def diff_snapshots(old: MemorySnapshot, new: MemorySnapshot) -> str:
    """Create a textual diff between two snapshots.

    Args:
        old: Earlier snapshot
        new: Later snapshot

    Returns:
        A string describing the changes
    """
    changes: List[str] = []
    changes.append(f"=== Changes from Step {old.step_id} to Step {new.step_id} ===")
    changes.append("")

    # Stack changes
    stack_changes = []
    for symbol in new.stack:
        name = symbol_name(symbol)
        if name is None:
            continue
        before = old.get_symbol(name)
        if before is None:
            stack_changes.append(f"  + Declared {name} = {new.describe_value(symbol)}")
            continue
        old_value = old.describe_value(before)
        new_value = new.describe_value(symbol)
        if old_value != new_value:
            stack_changes.append(f"  ~ Changed {name}: {old_value} → {new_value}")

    for symbol in old.stack:
        name = symbol_name(symbol)
        if name is not None and new.get_symbol(name) is None:
            stack_changes.append(f"  - Removed {name}")

    if stack_changes:
        changes.append("Stack:")
        changes.extend(stack_changes)
        changes.append("")

    # Heap changes, keyed by block start
    heap_changes = []
    old_blocks = {b.address: b for b in old.heap if b.state is not HeapBlockState.UNALLOCATED}
    for block in new.heap:
        if block.state is HeapBlockState.UNALLOCATED:
            continue
        addr = format_address(block.address)
        before = old_blocks.get(block.address)
        if before is None or (
            before.state is not HeapBlockState.ALLOCATED
            and block.state is HeapBlockState.ALLOCATED
        ):
            heap_changes.append(f"  + Allocated {block.size} bytes at {addr} for {block.owner}")
        elif before.state is not block.state:
            if block.state is HeapBlockState.FREE:
                heap_changes.append(f"  - Freed block at {addr}")
            elif block.state is HeapBlockState.LEAKED:
                heap_changes.append(f"  ! Leaked block at {addr}")
        elif before.metadata != block.metadata:
            heap_changes.append(f"  ~ Changed block at {addr}: {before.metadata} → {block.metadata}")

        if before is not None and before.dangling_pointers != block.dangling_pointers:
            heap_changes.append(
                f"  ~ Dangling references at {addr}: {', '.join(block.dangling_pointers) or '(none)'}"
            )

    if new.heap_size != old.heap_size:
        heap_changes.append(f"  ^ Heap grew from {old.heap_size} to {new.heap_size} bytes")

    if heap_changes:
        changes.append("Heap:")
        changes.extend(heap_changes)
        changes.append("")

    if len(changes) == 2:  # Only header and empty line
        changes.append("(no changes)")

    return "\n".join(changes)
