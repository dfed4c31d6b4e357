"""
test_heap_allocator.py

Unit tests for the simulated heap allocators.
"""

import logging
import random

import pytest

from heap_allocator import (
    AllocatorConfig,
    FirstFitHeapAllocator,
    HeapAllocator,
    create_allocator,
    strategies,
)
from memory_errors import AllocatorError
from memory_model import HeapBlock, HeapBlockState


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def rng():
    """Create a seeded random generator."""
    return random.Random(1234)


@pytest.fixture
def heap(rng):
    """Create a fixed 20-byte random heap."""
    return HeapAllocator(20, rng=rng)


@pytest.fixture
def first_fit():
    """Create a fixed 20-byte first-fit heap."""
    return FirstFitHeapAllocator(20)


def block(address, size, owner="p", metadata="0"):
    return HeapBlock(
        address=address,
        size=size,
        state=HeapBlockState.ALLOCATED,
        owner=owner,
        metadata=metadata,
    )


def overlaps_free_list(allocator, first, last):
    return any(start <= last and first <= end for start, end in allocator.free_list)


# ============================================================
# Construction Tests
# ============================================================

class TestConstruction:
    """Tests for allocator construction."""

    def test_empty_heap(self, heap):
        """Test a fresh heap is one free range and one unallocated block."""
        assert heap.size == 20
        assert heap.free_list == [(0, 19)]
        blocks = heap.get_heap()
        assert len(blocks) == 1
        assert blocks[0].address == 0
        assert blocks[0].size == 20
        assert blocks[0].state is HeapBlockState.UNALLOCATED
        heap.check_invariants()

    def test_rejects_non_positive_size(self):
        """Test that an empty heap is refused."""
        with pytest.raises(AllocatorError, match="positive"):
            HeapAllocator(0)

    def test_rejects_size_over_cap(self):
        """Test that the initial size must respect max_size."""
        with pytest.raises(AllocatorError, match="maximum size"):
            HeapAllocator(32, max_size=16)

    def test_free_list_is_a_copy(self, heap):
        """Test that callers cannot corrupt the free list."""
        heap.free_list.append((100, 200))
        assert heap.free_list == [(0, 19)]


# ============================================================
# Allocation Tests
# ============================================================

class TestAllocation:
    """Tests for allocate and allocate_and_write."""

    def test_allocation_inside_previous_free_range(self, rng):
        """Test that a block comes from one free range and leaves the free list."""
        heap = HeapAllocator(64, rng=rng)
        for size in (4, 1, 8, 2):
            before = heap.free_list
            address, chosen = heap.allocate(size)
            last = address + size - 1
            assert chosen == address
            assert any(start <= address and last <= end for start, end in before)
            assert not overlaps_free_list(heap, address, last)

    def test_invariants_hold_across_operations(self):
        """Test the free-list invariant over many seeded runs."""
        for seed in range(25):
            allocator = HeapAllocator.new_infinite(20, rng=random.Random(seed))
            hints = {}
            placed = {}
            for name, size in (("a", 4), ("b", 1), ("c", 8), ("d", 4), ("e", 8)):
                placed[name] = (allocator.allocate_and_write(name, size, hints), size)
                allocator.check_invariants()

            allocator.free(*placed["b"])
            allocator.check_invariants()
            allocator.leak(*placed["c"])
            allocator.check_invariants()
            allocator.allocate_and_write("f", 2, hints)
            allocator.check_invariants()

    def test_blocks_do_not_overlap(self, rng):
        """Test that live blocks never share a unit."""
        heap = HeapAllocator.new_infinite(20, rng=rng)
        hints = {}
        used = set()
        for index, size in enumerate((4, 4, 1, 8, 1)):
            address = heap.allocate_and_write(f"p{index}", size, hints)
            units = set(range(address, address + size))
            assert not units & used
            used |= units

    def test_write_materializes_every_unit(self, heap):
        """Test that every unit of a block describes the whole block."""
        address = heap.allocate_and_write("p", 4, {}, metadata="0")
        for i in range(address, address + 4):
            unit = heap.unit(i)
            assert unit.address == address
            assert unit.size == 4
            assert unit.state is HeapBlockState.ALLOCATED
            assert unit.owner == "p"
            assert unit.metadata == "0"

    def test_rejects_empty_allocation(self, heap):
        """Test that zero-byte blocks are refused."""
        with pytest.raises(AllocatorError):
            heap.allocate(0)

    def test_insufficient_memory_on_fixed_heap(self, rng):
        """Test that a full fixed heap refuses further allocations."""
        allocator = HeapAllocator(4, rng=rng)
        assert allocator.allocate_and_write("a", 4, {}) == 0
        with pytest.raises(AllocatorError, match="Insufficient memory"):
            allocator.allocate(1)

    def test_bounded_placement_falls_back_to_range_start(self):
        """Test that a range exactly large enough is used from its start."""
        for seed in range(10):
            allocator = HeapAllocator(8, rng=random.Random(seed), placement_attempts=1)
            address, _ = allocator.allocate(8)
            assert address == 0


# ============================================================
# Hint Tests
# ============================================================

class TestHints:
    """Tests for starting-pointer hints."""

    def test_chosen_address_is_recorded(self, heap):
        """Test that a fresh placement is remembered."""
        hints = {}
        address = heap.allocate_and_write("p", 4, hints)
        assert hints == {"p": address}

    def test_hint_is_reused(self, rng):
        """Test that a remembered address is reused on a fresh heap."""
        hints = {}
        address = HeapAllocator(20, rng=rng).allocate_and_write("p", 4, hints)

        again = HeapAllocator(20, rng=random.Random(99)).allocate_and_write("p", 4, hints)
        assert again == address
        assert hints == {"p": address}

    def test_taken_hint_is_replaced(self, heap):
        """Test that an occupied hint falls back to a fresh placement."""
        heap.write(8, block(8, 4, owner="q"))
        hints = {"p": 8}
        address = heap.allocate_and_write("p", 4, hints)
        assert address not in range(5, 12)
        assert hints["p"] == address

    def test_hint_past_end_is_ignored(self, heap):
        """Test that a hint leaving no room for the block is not used."""
        hints = {"p": 18}
        address = heap.allocate_and_write("p", 4, hints)
        assert address + 3 < 20
        assert hints["p"] == address


# ============================================================
# Growth Tests
# ============================================================

class TestGrowth:
    """Tests for heap growth."""

    def test_grows_when_full(self, rng):
        """Test that an infinite heap doubles when an allocation does not fit."""
        allocator = HeapAllocator.new_infinite(4, rng=rng)
        allocator.allocate_and_write("a", 4, {})
        address = allocator.allocate_and_write("b", 4, {})
        assert allocator.size == 8
        assert address == 4
        allocator.check_invariants()

    def test_grows_at_least_by_request(self, rng):
        """Test that growth covers requests larger than the growth factor gives."""
        allocator = HeapAllocator.new_infinite(2, rng=rng)
        allocator.allocate_and_write("a", 2, {})
        allocator.allocate_and_write("b", 8, {})
        assert allocator.size == 10

    def test_size_is_monotonic(self, rng):
        """Test that the heap never shrinks."""
        allocator = HeapAllocator.new_infinite(4, rng=rng)
        sizes = [allocator.size]
        hints = {}
        for index in range(10):
            address = allocator.allocate_and_write(f"p{index}", 4, hints)
            if index % 3 == 0:
                allocator.free(address, 4)
            sizes.append(allocator.size)
        assert sizes == sorted(sizes)

    def test_growth_is_capped(self, rng):
        """Test growth up to max_size, then refusal."""
        allocator = HeapAllocator(4, infinite_memory=True, max_size=6, rng=rng)
        allocator.allocate_and_write("a", 4, {})
        allocator.allocate_and_write("b", 2, {})
        assert allocator.size == 6

        with pytest.raises(AllocatorError, match="would exceed maximum size limit"):
            allocator.allocate(1)
        assert allocator.size == 6

    def test_fixed_heap_does_not_grow(self, rng):
        """Test that growth is refused when infinite memory is disabled."""
        allocator = HeapAllocator(4, rng=rng)
        with pytest.raises(AllocatorError, match="Insufficient memory"):
            allocator.allocate(8)
        assert allocator.size == 4

    def test_write_past_end_grows(self, rng):
        """Test that an out-of-bounds write grows an infinite heap."""
        allocator = HeapAllocator.new_infinite(4, rng=rng)
        allocator.write(6, block(6, 2, owner="x"))
        assert allocator.size == 8
        assert allocator.free_list == [(0, 3), (4, 5)]
        allocator.check_invariants()

    def test_write_past_end_fails_on_fixed_heap(self, rng):
        """Test that an out-of-bounds write fails on a fixed heap."""
        allocator = HeapAllocator(4, rng=rng)
        with pytest.raises(AllocatorError, match="out of bounds"):
            allocator.write(2, block(2, 4))

    def test_growth_is_logged(self, rng, caplog):
        """Test that growth is reported at INFO level."""
        allocator = HeapAllocator.new_infinite(4, rng=rng)
        allocator.allocate_and_write("a", 4, {})
        with caplog.at_level(logging.INFO, logger="heap_allocator"):
            allocator.allocate_and_write("b", 1, {})
        assert "Heap resized from 4 to 8 bytes" in caplog.text


# ============================================================
# Free / Leak Tests
# ============================================================

class TestFreeAndLeak:
    """Tests for free, leak and dangling bookkeeping."""

    def test_free_returns_range(self, first_fit):
        """Test that a freed block is free and reusable."""
        address = first_fit.allocate_and_write("p", 4, {})
        first_fit.free(address, 4)
        unit = first_fit.unit(address)
        assert unit.state is HeapBlockState.FREE
        assert unit.owner is None
        assert unit.metadata == "Free Block"
        assert first_fit.free_list == [(0, 19)]
        first_fit.check_invariants()

    def test_double_free(self, heap):
        """Test that freeing a block twice is refused."""
        address = heap.allocate_and_write("p", 4, {})
        heap.free(address, 4)
        with pytest.raises(AllocatorError, match="Double free"):
            heap.free(address, 4)
        heap.check_invariants()

    def test_free_out_of_bounds(self, heap):
        """Test that freeing outside the heap is refused."""
        with pytest.raises(AllocatorError, match="out of bounds"):
            heap.free(18, 4)

    def test_leaked_memory_is_never_reused(self, rng):
        """Test that leaked units never come back from allocate."""
        allocator = HeapAllocator(20, rng=rng)
        leaked = allocator.allocate_and_write("p", 4, {})
        allocator.leak(leaked, 4)
        allocator.check_invariants()

        unit = allocator.unit(leaked)
        assert unit.state is HeapBlockState.LEAKED
        assert unit.owner == "Leaked Block"

        addresses = []
        for index in range(16):
            addresses.append(allocator.allocate_and_write(f"q{index}", 1, {}))
        assert not set(addresses) & set(range(leaked, leaked + 4))

        with pytest.raises(AllocatorError, match="Insufficient memory"):
            allocator.allocate(1)

    def test_update_metadata(self, heap):
        """Test writing a value into a block."""
        address = heap.allocate_and_write("p", 4, {}, metadata="0")
        heap.update_metadata(address, "42")
        assert all(heap.unit(i).metadata == "42" for i in range(address, address + 4))

    def test_update_metadata_without_block(self, first_fit):
        """Test that writing where no block exists is refused."""
        with pytest.raises(AllocatorError, match="no block at address"):
            first_fit.update_metadata(3, "1")

    def test_update_metadata_inside_reused_block(self, first_fit):
        """Test writing through an address inside a block that starts earlier."""
        first_fit.allocate_and_write("c", 1, {})
        first_fit.allocate_and_write("p", 4, {})
        first_fit.free(0, 1)
        first_fit.free(1, 4)
        assert first_fit.allocate_and_write("q", 8, {}, metadata="0.0") == 0

        first_fit.update_metadata(1, "1")
        assert [first_fit.unit(i).metadata for i in range(8)] == ["1"] * 8
        assert first_fit.unit(8).state is HeapBlockState.UNALLOCATED
        assert first_fit.unit(8).metadata == "Unallocated Block"

        first_fit.insert_dangling_pointer(3, "r")
        assert all("r" in first_fit.unit(i).dangling_pointers for i in range(8))
        assert first_fit.unit(8).dangling_pointers == []

    def test_update_metadata_skips_reused_units(self, first_fit):
        """Test that units taken over by a later block keep their own value."""
        first_fit.allocate_and_write("a", 8, {})
        first_fit.free(0, 8)
        first_fit.allocate_and_write("b", 2, {}, metadata="7")

        first_fit.update_metadata(5, "9")
        assert [first_fit.unit(i).metadata for i in range(8)] == ["7", "7"] + ["9"] * 6
        first_fit.check_invariants()

    def test_dangling_pointers(self, first_fit):
        """Test recording and forgetting dangling references."""
        address = first_fit.allocate_and_write("p", 4, {})
        first_fit.free(address, 4)
        first_fit.insert_dangling_pointer(address, "p")
        first_fit.insert_dangling_pointer(address, "p")
        first_fit.insert_dangling_pointer(address, "q")
        assert first_fit.unit(address).dangling_pointers == ["p", "q"]

        first_fit.remove_dangling_pointer(address, "p")
        assert first_fit.unit(address + 3).dangling_pointers == ["q"]

    def test_dangling_survives_reuse(self, first_fit):
        """Test that reallocating a freed block keeps its dangling references."""
        address = first_fit.allocate_and_write("p", 4, {})
        first_fit.free(address, 4)
        first_fit.insert_dangling_pointer(address, "p")

        again = first_fit.allocate_and_write("q", 4, {})
        assert again == address
        assert first_fit.unit(again).dangling_pointers == ["p"]
        assert first_fit.unit(again).owner == "q"


# ============================================================
# Snapshot Tests
# ============================================================

class TestGetHeap:
    """Tests for the display records built by get_heap."""

    def test_blocks_in_address_order(self, first_fit):
        """Test one record per logical block plus the unallocated tail."""
        first_fit.allocate_and_write("p", 4, {}, metadata="1")
        first_fit.allocate_and_write("q", 4, {}, metadata="2")
        blocks = first_fit.get_heap()
        assert [(b.address, b.size, b.state) for b in blocks] == [
            (0, 4, HeapBlockState.ALLOCATED),
            (4, 4, HeapBlockState.ALLOCATED),
            (8, 12, HeapBlockState.UNALLOCATED),
        ]
        assert [b.owner for b in blocks[:2]] == ["p", "q"]

    def test_partially_reused_block_is_split(self, first_fit):
        """Test that a freed block overwritten in its middle renders as runs."""
        first_fit.write(0, block(0, 8, owner="a"))
        first_fit.free(0, 8)
        first_fit.write(2, block(2, 2, owner="b"))

        blocks = first_fit.get_heap()
        assert [(b.address, b.size, b.state) for b in blocks] == [
            (0, 2, HeapBlockState.FREE),
            (2, 2, HeapBlockState.ALLOCATED),
            (4, 4, HeapBlockState.FREE),
            (8, 12, HeapBlockState.UNALLOCATED),
        ]
        first_fit.check_invariants()

    def test_records_are_copies(self, first_fit):
        """Test that mutating a record leaves the heap untouched."""
        first_fit.allocate_and_write("p", 4, {})
        first_fit.get_heap()[0].metadata = "changed"
        assert first_fit.get_heap()[0].metadata != "changed"


# ============================================================
# Strategy Tests
# ============================================================

class TestStrategies:
    """Tests for strategy selection and coalescing."""

    def test_first_fit_coalesces(self):
        """Test that adjacent free ranges merge in the first-fit heap."""
        allocator = FirstFitHeapAllocator(12)
        for name in "abc":
            allocator.allocate_and_write(name, 4, {})
        allocator.free(0, 4)
        allocator.free(4, 4)
        assert allocator.free_list == [(0, 7)]
        assert allocator.allocate(8)[0] == 0

    def test_random_does_not_coalesce(self, rng):
        """Test that fragmentation stays visible in the random heap."""
        allocator = HeapAllocator(12, rng=rng)
        for index, name in enumerate("abc"):
            allocator.write(index * 4, block(index * 4, 4, owner=name))
        allocator.free(0, 4)
        allocator.free(4, 4)
        assert allocator.free_list == [(0, 3), (4, 7)]
        with pytest.raises(AllocatorError, match="Insufficient memory"):
            allocator.allocate(8)

    def test_create_allocator(self):
        """Test building allocators from configuration."""
        allocator = create_allocator(AllocatorConfig(initial_size=32, strategy="first_fit"))
        assert isinstance(allocator, FirstFitHeapAllocator)
        assert allocator.size == 32
        assert type(create_allocator()) is HeapAllocator
        assert create_allocator().size == 20

    def test_create_allocator_seed_is_reproducible(self):
        """Test that a seeded configuration places blocks the same way."""
        config = AllocatorConfig(seed=5)
        first = create_allocator(config).allocate_and_write("p", 4, {})
        second = create_allocator(config).allocate_and_write("p", 4, {})
        assert first == second

    def test_unknown_strategy(self):
        """Test that unknown strategy names are refused."""
        with pytest.raises(ValueError, match="Unknown allocation strategy"):
            create_allocator(AllocatorConfig(strategy="best_fit"))

    def test_strategies(self):
        """Test the strategy registry."""
        assert set(strategies()) == {"random", "first_fit"}
