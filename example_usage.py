"""
example_usage.py

Walkthrough of the analyzer on a small C program: stack variables,
stack and heap pointers, a leak, a dangling pointer, writes through a
freed block, and the error reported for an invalid delete.
"""

import asyncio
import json
import random

from analyzer import Analyzer
from heap_allocator import AllocatorConfig
from hint_store import InMemoryHintStore
from memory_errors import AnalysisError
from memory_model import HeapBlockState, MemorySnapshot, diff_snapshots, render_config
from source_parser import parse_source


PROGRAM = """
int main() {
    int x = 10;
    int* p = &x;
    *p = 25;

    int* h = new int;
    *h = 7;
    h = new int;        // first block leaks

    int* q = new int;
    int* r = nullptr;
    r = q;              // r shares q's block
    delete q;           // q and r dangle
    *r = 99;            // write through a dangling pointer

    r = nullptr;
    return 0;
}
"""


def main():
    """Run the walkthrough."""
    print("=" * 70)
    print("memviz - Analyzer Walkthrough")
    print("=" * 70)
    print(PROGRAM)

    render_config.pointer_arrow = "→"
    render_config.show_addresses_hex = True

    statements = parse_source(PROGRAM)
    analyzer = Analyzer(AllocatorConfig(seed=7))

    # Step by step
    steps = analyzer.trace(statements)
    previous = MemorySnapshot(step_id=0, description="Program start", heap_size=analyzer.config.initial_size)
    for step in steps:
        step.print()
        print()
        print(diff_snapshots(previous, step))
        print("\n" + "=" * 70 + "\n")
        previous = step

    final = steps[-1]

    # Memory analysis
    print("=" * 70)
    print("Memory Analysis at the end:")
    print("=" * 70)
    print(f"Heap size: {final.heap_size} bytes")
    print(f"Allocated: {final.total_allocated_size()} bytes")
    print(f"Leaked: {final.total_leaked_size()} bytes")
    for block in final.blocks_in_state(HeapBlockState.FREE):
        if block.dangling_pointers:
            print(f"  Freed block at {block.address} still referenced by {', '.join(block.dangling_pointers)}")
    print("\n" + "=" * 70 + "\n")

    # Hints keep heap addresses stable across re-analysis
    print("=" * 70)
    print("Re-analyzing with a shared hint store:")
    print("=" * 70)
    store = InMemoryHintStore()
    first = asyncio.run(Analyzer(rng=random.Random(1)).analyze(statements, store))
    second = asyncio.run(Analyzer(rng=random.Random(2)).analyze(statements, store))
    print(f"Hints: {asyncio.run(store.get_hints())}")
    print(f"q placed at {first.get_symbol('q').heap_address}, then at {second.get_symbol('q').heap_address}")
    print("\n" + "=" * 70 + "\n")

    # Errors carry the statement position
    print("=" * 70)
    print("Invalid delete:")
    print("=" * 70)
    try:
        analyzer.run(parse_source("int x = 1;\nint* p = &x;\ndelete p;\n"))
    except AnalysisError as e:
        print(e)
        print(json.dumps(e.to_dict(), indent=2))
    print("\n" + "=" * 70 + "\n")

    print("Example complete!")


if __name__ == "__main__":
    main()
