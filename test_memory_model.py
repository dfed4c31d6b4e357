"""
test_memory_model.py

Unit tests for snapshots, console rendering and diffs.
"""

import pytest

from memory_model import (
    AllocationType,
    HeapBlock,
    HeapBlockState,
    Literal,
    MemorySnapshot,
    Pointer,
    Variable,
    diff_snapshots,
    format_address,
    render_config,
    symbol_name,
)
from type_system import Type


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture(autouse=True)
def default_render_config():
    """Restore the global render configuration after each test."""
    saved = vars(render_config).copy()
    yield
    for key, value in saved.items():
        setattr(render_config, key, value)


@pytest.fixture
def stack_snapshot():
    """Snapshot with a variable and a stack pointer."""
    return MemorySnapshot(
        step_id=2,
        description="int* p = &x;",
        stack=[
            Variable(Type.INTEGER, "x", "5", 4),
            Pointer(Type.INTEGER, "p", pointee="x", allocation_type=AllocationType.STACK, value_size=4),
        ],
        heap=[HeapBlock(address=0, size=20)],
        heap_size=20,
    )


@pytest.fixture
def heap_snapshot():
    """Snapshot with one allocated block, one leaked block and a dangling pointer."""
    return MemorySnapshot(
        step_id=5,
        description="delete q;",
        stack=[
            Pointer(Type.INTEGER, "p", value="7", heap_address=4,
                    allocation_type=AllocationType.HEAP, value_size=4),
            Pointer(Type.INTEGER, "q", value="0", heap_address=12,
                    allocation_type=AllocationType.DANGLING, value_size=4),
        ],
        heap=[
            HeapBlock(address=0, size=4, state=HeapBlockState.LEAKED,
                      owner="Leaked Block", metadata="Leaked Block"),
            HeapBlock(address=4, size=4, state=HeapBlockState.ALLOCATED, owner="p", metadata="7"),
            HeapBlock(address=8, size=4),
            HeapBlock(address=12, size=4, state=HeapBlockState.FREE,
                      dangling_pointers=["q"], metadata="Free Block"),
            HeapBlock(address=16, size=4),
        ],
        heap_size=20,
    )


# ============================================================
# Symbol Tests
# ============================================================

class TestSymbols:
    """Tests for stack symbols."""

    def test_symbol_name(self):
        assert symbol_name(Variable(Type.BOOL, "b", None, 1)) == "b"
        assert symbol_name(Pointer(Type.BOOL, "p")) == "p"
        assert symbol_name(Literal("1")) is None

    def test_pointer_defaults(self):
        pointer = Pointer(Type.CHAR, "c")
        assert pointer.allocation_type is AllocationType.NULL
        assert pointer.pointer_size == 4
        assert pointer.heap_address is None

    def test_to_dict(self):
        data = Pointer(Type.DOUBLE, "d", heap_address=8, allocation_type=AllocationType.HEAP).to_dict()
        assert data["kind"] == "Pointer"
        assert data["ptype"] == "double"
        assert data["allocation_type"] == "Heap"
        assert Variable(Type.INTEGER, "x", "1", 4).to_dict()["kind"] == "Variable"
        assert Literal("3").to_dict() == {"kind": "Literal", "value": "3"}


# ============================================================
# HeapBlock Tests
# ============================================================

class TestHeapBlock:
    """Tests for HeapBlock."""

    def test_unallocated(self):
        block = HeapBlock.unallocated()
        assert block.state is HeapBlockState.UNALLOCATED
        assert block.metadata == "Unallocated Block"
        assert block.size == 0

    def test_end(self):
        assert HeapBlock(address=4, size=8).end == 11

    def test_copy_is_independent(self):
        block = HeapBlock(address=0, size=4, dangling_pointers=["p"])
        clone = block.copy()
        clone.dangling_pointers.append("q")
        assert block.dangling_pointers == ["p"]
        assert clone == HeapBlock(address=0, size=4, dangling_pointers=["p", "q"])

    def test_to_dict(self):
        data = HeapBlock(address=4, size=4, state=HeapBlockState.ALLOCATED, owner="p", metadata="1").to_dict()
        assert data == {
            "address": 4,
            "size": 4,
            "state": "Allocated",
            "owner": "p",
            "dangling_pointers": [],
            "metadata": "1",
        }


# ============================================================
# MemorySnapshot Tests
# ============================================================

class TestMemorySnapshot:
    """Tests for snapshot queries."""

    def test_get_symbol(self, stack_snapshot):
        assert stack_snapshot.get_symbol("x").value == "5"
        assert stack_snapshot.get_symbol("missing") is None

    def test_get_block_by_contained_address(self, heap_snapshot):
        assert heap_snapshot.get_block(6).owner == "p"
        assert heap_snapshot.get_block(99) is None

    def test_find_pointers_to(self, heap_snapshot):
        assert heap_snapshot.find_pointers_to(4) == ["p"]
        assert heap_snapshot.find_pointers_to(12) == ["q"]

    def test_sizes(self, heap_snapshot):
        assert heap_snapshot.total_allocated_size() == 4
        assert heap_snapshot.total_leaked_size() == 4
        assert len(heap_snapshot.blocks_in_state(HeapBlockState.UNALLOCATED)) == 2

    def test_to_dict(self, stack_snapshot):
        data = stack_snapshot.to_dict()
        assert set(data) == {"stack", "heap"}
        assert [s["name"] for s in data["stack"]] == ["x", "p"]
        assert data["heap"][0]["state"] == "Unallocated"


# ============================================================
# Rendering Tests
# ============================================================

class TestRendering:
    """Tests for console rendering."""

    def test_format_address(self):
        assert format_address(12) == "0x000c"
        render_config.show_addresses_hex = False
        assert format_address(12) == "12"

    def test_describe_value(self, stack_snapshot, heap_snapshot):
        assert stack_snapshot.describe_value(stack_snapshot.get_symbol("x")) == "5"
        assert stack_snapshot.describe_value(stack_snapshot.get_symbol("p")) == "→ x"
        assert heap_snapshot.describe_value(heap_snapshot.get_symbol("p")) == "→ 0x0004 (7)"
        assert heap_snapshot.describe_value(heap_snapshot.get_symbol("q")) == "→ 0x000c (dangling)"
        assert heap_snapshot.describe_value(Pointer(Type.INTEGER, "n")) == "nullptr"
        assert heap_snapshot.describe_value(Variable(Type.INTEGER, "u", None, 4)) == "<uninitialized>"

    def test_custom_arrow(self, stack_snapshot):
        render_config.pointer_arrow = "->"
        assert stack_snapshot.describe_value(stack_snapshot.get_symbol("p")) == "-> x"

    def test_stack_to_console(self, stack_snapshot):
        output = stack_snapshot.stack_to_console()
        assert "=== Stack ===" in output
        assert "int*" in output
        assert "→ x" in output

    def test_empty_stack(self):
        assert "(empty stack)" in MemorySnapshot(step_id=0, description=None).stack_to_console()

    def test_heap_to_console(self, heap_snapshot):
        output = heap_snapshot.heap_to_console()
        assert "=== Heap ===" in output
        assert "leaked: 1 blocks (4 bytes)" in output
        assert "dangling: q" in output
        assert "Leaked Block" in output

    def test_hide_unallocated(self, heap_snapshot):
        render_config.show_unallocated = False
        assert "Unallocated" not in heap_snapshot.heap_to_console()

    def test_compact_mode_hides_dangling_lines(self, heap_snapshot):
        render_config.compact_mode = True
        assert "dangling: q" not in heap_snapshot.heap_to_console()

    def test_to_console_header(self, stack_snapshot):
        output = stack_snapshot.to_console()
        assert "Step 2: int* p = &x;" in output

    def test_print(self, stack_snapshot, capsys):
        stack_snapshot.print()
        assert "=== Heap ===" in capsys.readouterr().out


# ============================================================
# diff_snapshots Tests
# ============================================================

class TestDiffSnapshots:
    """Tests for diff_snapshots."""

    def test_no_changes(self, stack_snapshot):
        assert "(no changes)" in diff_snapshots(stack_snapshot, stack_snapshot)

    def test_declared_and_changed(self, stack_snapshot):
        before = MemorySnapshot(
            step_id=1,
            description="int x = 1;",
            stack=[Variable(Type.INTEGER, "x", "1", 4)],
            heap_size=20,
        )
        diff = diff_snapshots(before, stack_snapshot)
        assert "Changes from Step 1 to Step 2" in diff
        assert "+ Declared p = → x" in diff
        assert "~ Changed x: 1 → 5" in diff

    def test_removed(self, stack_snapshot):
        after = MemorySnapshot(step_id=3, description=None, stack=[], heap_size=20)
        assert "- Removed x" in diff_snapshots(stack_snapshot, after)

    def test_heap_changes(self, heap_snapshot):
        before = MemorySnapshot(
            step_id=4,
            description=None,
            heap=[
                HeapBlock(address=0, size=4, state=HeapBlockState.ALLOCATED, owner="p", metadata="0"),
                HeapBlock(address=4, size=4, state=HeapBlockState.ALLOCATED, owner="p", metadata="0"),
                HeapBlock(address=8, size=4),
                HeapBlock(address=12, size=4, state=HeapBlockState.ALLOCATED, owner="q", metadata="0"),
            ],
            heap_size=16,
        )
        diff = diff_snapshots(before, heap_snapshot)
        assert "! Leaked block at 0x0000" in diff
        assert "~ Changed block at 0x0004: 0 → 7" in diff
        assert "- Freed block at 0x000c" in diff
        assert "~ Dangling references at 0x000c: q" in diff
        assert "^ Heap grew from 16 to 20 bytes" in diff

    def test_allocation(self, heap_snapshot):
        before = MemorySnapshot(step_id=0, description=None, heap=[HeapBlock(address=0, size=20)], heap_size=20)
        diff = diff_snapshots(before, heap_snapshot)
        assert "+ Allocated 4 bytes at 0x0004 for p" in diff
