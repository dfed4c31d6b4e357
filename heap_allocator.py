"""
heap_allocator.py

Simulated heap allocator.

The heap is a byte-indexed address space materialized one HeapBlock per
unit: every unit of a logical block carries the block's start address,
size, state and metadata. A sorted free list of inclusive ``(start, end)``
ranges tracks where new blocks may go.

Two placement strategies are available:
- HeapAllocator: picks a random start inside a fitting free range so
  allocations scatter the way a real allocator's do. Freed ranges are not
  coalesced, which keeps fragmentation visible.
- FirstFitHeapAllocator: places blocks at the start of the first fitting
  range and coalesces adjacent free ranges.

Both can grow the address space on demand.

Example:
    >>> allocator = HeapAllocator.new_infinite(20)
    >>> hints = {}
    >>> address = allocator.allocate_and_write("p", 4, hints, metadata="0")
    >>> allocator.get_heap()
"""

from __future__ import annotations

import bisect
import logging
import random
from dataclasses import dataclass
from typing import Dict, List, MutableMapping, Optional, Tuple

from memory_errors import AllocatorError, InternalError
from memory_model import (
    FREE_METADATA,
    LEAKED_METADATA,
    UNALLOCATED_METADATA,
    HeapBlock,
    HeapBlockState,
)

logger = logging.getLogger(__name__)

FreeRange = Tuple[int, int]

_RELEASED_STATES = (HeapBlockState.UNALLOCATED, HeapBlockState.FREE)


# ============================================================
#  Configuration
# ============================================================

@dataclass
class AllocatorConfig:
    """Configuration of the heap allocator used by an analysis.

    Attributes:
        initial_size: Size of the address space in bytes before any growth
        infinite_memory: Grow the address space when an allocation does not fit
        growth_factor: Multiplier applied to the size when growing
        max_size: Hard cap on the size (None means unlimited)
        strategy: "random" or "first_fit"
        placement_attempts: Random starts drawn in a range before falling back to its first unit
        seed: Seed of the random generator (None for a nondeterministic one)
    """
    initial_size: int = 20
    infinite_memory: bool = True
    growth_factor: float = 2.0
    max_size: Optional[int] = None
    strategy: str = "random"
    placement_attempts: int = 32
    seed: Optional[int] = None


# ============================================================
#  Random allocator
# ============================================================

class HeapAllocator:
    """Allocator placing blocks at random offsets inside free ranges.

    Attributes:
        infinite_memory: Whether the heap grows when an allocation fails
        growth_factor: Factor by which the heap size is multiplied when growing
        max_size: Optional maximum heap size
        placement_attempts: Bound on random start redraws within one range
    """

    def __init__(
        self,
        size: int,
        infinite_memory: bool = False,
        growth_factor: float = 2.0,
        max_size: Optional[int] = None,
        rng: Optional[random.Random] = None,
        placement_attempts: int = 32,
    ) -> None:
        """Initialize an empty heap.

        Args:
            size: Initial size of the address space in bytes
            infinite_memory: Grow the heap when an allocation does not fit
            growth_factor: Multiplier applied when growing
            max_size: Optional hard cap on the heap size
            rng: Random generator used for placement
            placement_attempts: Bound on random start redraws within one range

        Raises:
            AllocatorError: If the size is not positive or exceeds max_size
        """
        if size <= 0:
            raise AllocatorError("Heap size must be positive")
        if max_size is not None and size > max_size:
            raise AllocatorError("Heap size exceeds the maximum size limit")

        self._heap: List[HeapBlock] = [HeapBlock.unallocated() for _ in range(size)]
        self._size = size
        self._free_list: List[FreeRange] = [(0, size - 1)]
        self.infinite_memory = infinite_memory
        self.growth_factor = growth_factor
        self.max_size = max_size
        self.placement_attempts = max(1, placement_attempts)
        self._rng = rng if rng is not None else random.Random()

    @classmethod
    def new_infinite(
        cls,
        initial_size: int,
        growth_factor: float = 2.0,
        max_size: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> HeapAllocator:
        """Create an allocator that grows on demand."""
        return cls(initial_size, True, growth_factor, max_size, rng)

    # ------------- Introspection ------------- #

    @property
    def size(self) -> int:
        """Current size of the address space in bytes."""
        return self._size

    @property
    def free_list(self) -> List[FreeRange]:
        """Copy of the free list, sorted by address."""
        return list(self._free_list)

    def unit(self, address: int) -> HeapBlock:
        """Return a copy of the unit record at an address."""
        self._check_address(address, "read")
        return self._heap[address].copy()

    def check_invariants(self) -> None:
        """Verify that the free list is sorted, disjoint and matches unit states.

        Raises:
            InternalError: If the free list and the units disagree
        """
        listed = [False] * self._size
        previous_end = -1
        for start, end in self._free_list:
            if start > end or start <= previous_end or end >= self._size:
                raise InternalError(f"Malformed free list: {self._free_list}")
            previous_end = end
            for i in range(start, end + 1):
                if self._heap[i].state not in _RELEASED_STATES:
                    raise InternalError(
                        f"Unit {i} is {self._heap[i].state.value} but listed as free"
                    )
                listed[i] = True

        for i, unit in enumerate(self._heap):
            if unit.state in _RELEASED_STATES and not listed[i]:
                raise InternalError(f"Unit {i} is {unit.state.value} but missing from the free list")

    # ------------- Growth ------------- #

    def _resize_heap(self, required_size: int) -> None:
        """Grow the heap so that at least ``required_size`` new bytes exist.

        Raises:
            AllocatorError: If growth is disabled or would exceed max_size
        """
        if not self.infinite_memory:
            raise AllocatorError("Infinite memory is disabled")

        new_size = max(int(self._size * self.growth_factor), self._size + required_size)
        if self.max_size is not None and new_size > self.max_size:
            if self.max_size < self._size + required_size:
                raise AllocatorError("Cannot resize heap: would exceed maximum size limit")
            new_size = self.max_size

        if new_size <= self._size:
            raise AllocatorError("Cannot resize heap: new size is not larger than current size")

        old_size = self._size
        self._heap.extend(HeapBlock.unallocated() for _ in range(new_size - old_size))
        self._size = new_size
        self._release_range(old_size, new_size - 1)

        logger.info("Heap resized from %d to %d bytes", old_size, new_size)

    # ------------- Allocation ------------- #

    def allocate(
        self,
        size: int,
        preferred_address: Optional[int] = None,
    ) -> Tuple[int, Optional[int]]:
        """Reserve ``size`` bytes in the free list.

        Args:
            size: Size of the block in bytes
            preferred_address: Start to reuse if it is still free

        Returns:
            Tuple of (address, chosen start). The chosen start is set when
            the address was picked by the allocator rather than taken
            from ``preferred_address``, so callers can remember it.

        Raises:
            AllocatorError: If no range fits and the heap cannot grow
        """
        if size <= 0:
            raise AllocatorError(f"Cannot allocate a block of {size} bytes")

        placed = self._place(size, preferred_address)
        if placed is not None:
            return placed

        if not self.infinite_memory:
            raise AllocatorError("Insufficient memory")

        logger.info("Allocation of %d bytes failed, attempting to resize heap", size)
        try:
            self._resize_heap(size)
        except AllocatorError as e:
            raise AllocatorError(f"Failed to resize heap: {e.message}") from e

        placed = self._place(size, preferred_address)
        if placed is None:
            raise AllocatorError("Insufficient memory")
        return placed

    def _place(
        self,
        size: int,
        preferred_address: Optional[int],
    ) -> Optional[Tuple[int, Optional[int]]]:
        if preferred_address is not None and not self._is_free(
            preferred_address, preferred_address + size - 1
        ):
            # Another block took the remembered address
            logger.debug("Preferred address %d is no longer free", preferred_address)
            preferred_address = None

        for index, (start, end) in enumerate(self._free_list):
            if end - start + 1 < size:
                continue

            if preferred_address is not None:
                if not start <= preferred_address <= end:
                    continue
                address, chosen = preferred_address, None
            else:
                address = self._choose_start(start, end, size)
                chosen = address

            self._split(index, address, size)
            logger.debug("Placed %d bytes at %d, free list: %s", size, address, self._free_list)
            return address, chosen

        return None

    def _choose_start(self, start: int, end: int, size: int) -> int:
        """Draw a random start in ``[start, end]`` leaving room for ``size``."""
        if start == end:
            return start

        pointer = self._rng.randrange(start, end)
        attempts = 1
        while end - pointer + 1 < size:
            if attempts >= self.placement_attempts:
                return start
            pointer = self._rng.randint(start, end)
            attempts += 1
        return pointer

    def _split(self, index: int, address: int, size: int) -> None:
        start, end = self._free_list[index]
        leftovers: List[FreeRange] = []
        if address > start:
            leftovers.append((start, address - 1))
        if address + size - 1 < end:
            leftovers.append((address + size, end))
        self._free_list[index:index + 1] = leftovers

    def _is_free(self, first: int, last: int) -> bool:
        return any(start <= first and last <= end for start, end in self._free_list)

    def _overlaps_free(self, first: int, last: int) -> bool:
        return any(start <= last and first <= end for start, end in self._free_list)

    def _reserve(self, first: int, last: int) -> None:
        """Remove ``[first, last]`` from the free list."""
        remaining: List[FreeRange] = []
        for start, end in self._free_list:
            if end < first or start > last:
                remaining.append((start, end))
                continue
            if start < first:
                remaining.append((start, first - 1))
            if end > last:
                remaining.append((last + 1, end))
        self._free_list = remaining

    def _release_range(self, first: int, last: int) -> None:
        """Return ``[first, last]`` to the free list."""
        bisect.insort(self._free_list, (first, last))

    # ------------- Block materialization ------------- #

    def _check_address(self, address: int, operation: str) -> None:
        if address < 0 or address >= self._size:
            raise AllocatorError(f"Invalid {operation} operation: out of bounds")

    def _check_range(self, address: int, size: int, operation: str) -> None:
        if size <= 0 or address < 0 or address + size - 1 >= self._size:
            raise AllocatorError(f"Invalid {operation} operation: out of bounds")

    def _block_units(self, address: int, operation: str) -> List[int]:
        """Indices of the units of the block containing ``address``.

        The address may point inside the block, e.g. a dangling pointer
        into a freed block since reused by a larger one starting earlier.
        Units of the recorded span that a later block took over are skipped.
        """
        self._check_address(address, operation)
        unit = self._heap[address]
        if unit.state is HeapBlockState.UNALLOCATED or unit.size == 0:
            raise AllocatorError(f"Invalid {operation} operation: no block at address {address}")
        start, end = unit.address, unit.address + unit.size - 1
        if start < 0 or end >= self._size:
            raise AllocatorError(f"Invalid {operation} operation: out of bounds")
        return [
            i for i in range(start, end + 1)
            if self._heap[i].address == start and self._heap[i].state is unit.state
        ]

    def _dangling_in(self, first: int, last: int) -> List[str]:
        names: List[str] = []
        for i in range(first, last + 1):
            for name in self._heap[i].dangling_pointers:
                if name not in names:
                    names.append(name)
        return names

    def _materialize(self, address: int, size: int, state: HeapBlockState,
                     owner: Optional[str], metadata: str) -> None:
        last = address + size - 1
        dangling = self._dangling_in(address, last)
        for i in range(address, last + 1):
            self._heap[i] = HeapBlock(
                address=address,
                size=size,
                state=state,
                owner=owner,
                dangling_pointers=list(dangling),
                metadata=metadata,
            )

    def write(self, address: int, block: HeapBlock) -> None:
        """Materialize an allocated block on ``[address, address + size)``.

        Dangling-pointer names already recorded on those units are kept.

        Args:
            address: Start of the block
            block: Block whose size, owner and metadata are written

        Raises:
            AllocatorError: If the range is out of bounds and the heap cannot grow
        """
        if block.size <= 0 or address < 0:
            raise AllocatorError("Invalid write operation: out of bounds")

        end = address + block.size - 1
        if end >= self._size:
            if not self.infinite_memory:
                raise AllocatorError("Invalid write operation: out of bounds")
            logger.info("Write operation out of bounds, attempting to resize heap")
            try:
                self._resize_heap(end + 1 - self._size)
            except AllocatorError as e:
                raise AllocatorError(f"Failed to resize heap for write operation: {e.message}") from e

        self._materialize(address, block.size, HeapBlockState.ALLOCATED, block.owner, block.metadata)
        self._reserve(address, end)

    def allocate_and_write(
        self,
        identifier: str,
        size: int,
        hints: MutableMapping[str, int],
        metadata: str = "",
    ) -> int:
        """Allocate a block for a pointer and write it, consulting address hints.

        Args:
            identifier: Name of the owning pointer
            size: Size of the block in bytes
            hints: Pointer name to address map, updated with the chosen address
            metadata: Initial display value of the block

        Returns:
            Start address of the block
        """
        address, chosen = self.allocate(size, hints.get(identifier))
        if chosen is not None:
            hints[identifier] = chosen

        self.write(
            address,
            HeapBlock(
                address=address,
                size=size,
                state=HeapBlockState.ALLOCATED,
                owner=identifier,
                metadata=metadata,
            ),
        )
        return address

    def free(self, address: int, size: int) -> None:
        """Mark a block as free and return it to the free list.

        Raises:
            AllocatorError: If the range is out of bounds or already free
        """
        self._check_range(address, size, "free")
        last = address + size - 1
        if self._overlaps_free(address, last):
            raise AllocatorError(f"Double free of block at address {address}")

        self._materialize(address, size, HeapBlockState.FREE, None, FREE_METADATA)
        self._release_range(address, last)
        logger.debug("Freed %d bytes at %d, free list: %s", size, address, self._free_list)

    def leak(self, address: int, size: int) -> None:
        """Mark a block as leaked. Leaked memory never returns to the free list.

        Raises:
            AllocatorError: If the range is out of bounds
        """
        self._check_range(address, size, "leak")
        self._materialize(address, size, HeapBlockState.LEAKED, LEAKED_METADATA, LEAKED_METADATA)
        self._reserve(address, address + size - 1)
        logger.debug("Leaked %d bytes at %d", size, address)

    def update_metadata(self, address: int, metadata: str) -> None:
        """Overwrite the display value of every unit of the block containing ``address``.

        Raises:
            AllocatorError: If the address is out of bounds or holds no block
        """
        for i in self._block_units(address, "metadata update"):
            self._heap[i].metadata = metadata

    def insert_dangling_pointer(self, address: int, identifier: str) -> None:
        """Record that ``identifier`` still references the block containing ``address``.

        Raises:
            AllocatorError: If the address is out of bounds or holds no block
        """
        for i in self._block_units(address, "dangling pointers update"):
            if identifier not in self._heap[i].dangling_pointers:
                self._heap[i].dangling_pointers.append(identifier)

    def remove_dangling_pointer(self, address: int, identifier: str) -> None:
        """Forget that ``identifier`` references the freed block at ``address``.

        A name dangles into at most one place, so it is removed from every
        unit still listing it, including units since reused by other blocks.

        Raises:
            AllocatorError: If the address is out of bounds
        """
        self._check_address(address, "dangling pointers update")
        for unit in self._heap:
            if identifier in unit.dangling_pointers:
                unit.dangling_pointers.remove(identifier)

    # ------------- Snapshot ------------- #

    def get_heap(self) -> List[HeapBlock]:
        """Build one record per logical block, in address order.

        Contiguous unallocated units are merged into a single synthetic
        block. A block partially reused by a later allocation is split
        into the runs still carrying it.

        Returns:
            Copies of the block records
        """
        blocks: List[HeapBlock] = []
        current: Optional[HeapBlock] = None
        current_key: Optional[tuple] = None

        for index, unit in enumerate(self._heap):
            if unit.state is HeapBlockState.UNALLOCATED:
                key: tuple = (HeapBlockState.UNALLOCATED,)
            else:
                key = (unit.state, unit.address)

            if current is not None and key == current_key:
                current.size += 1
                continue

            if current is not None:
                blocks.append(current)

            if unit.state is HeapBlockState.UNALLOCATED:
                current = HeapBlock(address=index, size=1, metadata=UNALLOCATED_METADATA)
            else:
                current = unit.copy()
                current.address = index
                current.size = 1
            current_key = key

        if current is not None:
            blocks.append(current)
        return blocks


# ============================================================
#  First-fit allocator
# ============================================================

class FirstFitHeapAllocator(HeapAllocator):
    """Allocator placing blocks at the start of the first fitting range.

    Adjacent free ranges are coalesced whenever memory is released.
    """

    def _choose_start(self, start: int, end: int, size: int) -> int:
        return start

    def _release_range(self, first: int, last: int) -> None:
        super()._release_range(first, last)
        merged: List[FreeRange] = []
        for start, end in self._free_list:
            if merged and merged[-1][1] + 1 >= start:
                merged[-1] = (merged[-1][0], max(merged[-1][1], end))
            else:
                merged.append((start, end))
        self._free_list = merged


_STRATEGIES = {
    "random": HeapAllocator,
    "first_fit": FirstFitHeapAllocator,
}


def create_allocator(
    config: Optional[AllocatorConfig] = None,
    rng: Optional[random.Random] = None,
) -> HeapAllocator:
    """Create the allocator described by a configuration.

    Args:
        config: Allocator configuration (defaults to AllocatorConfig())
        rng: Random generator overriding ``config.seed``

    Raises:
        ValueError: If the strategy is unknown
    """
    config = config if config is not None else AllocatorConfig()
    try:
        allocator_cls = _STRATEGIES[config.strategy]
    except KeyError:
        raise ValueError(
            f"Unknown allocation strategy '{config.strategy}' "
            f"(expected one of: {', '.join(_STRATEGIES)})"
        ) from None

    return allocator_cls(
        config.initial_size,
        infinite_memory=config.infinite_memory,
        growth_factor=config.growth_factor,
        max_size=config.max_size,
        rng=rng if rng is not None else random.Random(config.seed),
        placement_attempts=config.placement_attempts,
    )


def strategies() -> Dict[str, type]:
    """Available placement strategies by name."""
    return dict(_STRATEGIES)
