#!/usr/bin/env python3
"""
memviz CLI - stack and heap visualizer for small C-like programs.

Analyzes a source file statement by statement and prints the final
stack and heap, or every intermediate step with the changes between
them.

Usage:
    memviz program.c                       # Final state
    memviz program.c --steps               # Every step with diffs
    memviz program.c --json                # Host-shell JSON
    memviz program.c --hints hints.json    # Keep heap addresses stable across runs
    memviz program.c --fixed-heap 16       # Fixed 16-byte heap, no growth
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from analyzer import Analyzer
from heap_allocator import AllocatorConfig, strategies
from hint_store import HintStore, InMemoryHintStore, JsonFileHintStore
from memory_errors import MemoryVisualizerError, PositionedError
from memory_model import MemorySnapshot, diff_snapshots, render_config
from source_parser import parse_source

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: '{text}'") from None
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return value


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser"""
    parser = argparse.ArgumentParser(
        prog="memviz",
        description="memviz - visualize the stack and heap of a small C-like program",
    )

    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "file",
        help="Source file to analyze"
    )
    parser.add_argument(
        "--hints",
        metavar="PATH",
        help="JSON file keeping starting-pointer hints between runs"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON"
    )
    parser.add_argument(
        "--steps",
        action="store_true",
        help="Print every step instead of only the final state"
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for heap placement (default: random)"
    )
    parser.add_argument(
        "--fixed-heap",
        type=_positive_int,
        metavar="SIZE",
        help="Use a fixed-size heap of SIZE bytes that never grows"
    )
    parser.add_argument(
        "--strategy",
        default="random",
        choices=sorted(strategies()),
        help="Heap placement strategy (default: random)"
    )
    parser.add_argument(
        "--compact",
        action="store_true",
        help="Compact console output"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log allocator and analyzer decisions"
    )

    return parser


def build_config(args: argparse.Namespace) -> AllocatorConfig:
    """Map command-line options onto an allocator configuration."""
    config = AllocatorConfig(strategy=args.strategy, seed=args.seed)
    if args.fixed_heap is not None:
        config.initial_size = args.fixed_heap
        config.infinite_memory = False
    return config


def build_store(args: argparse.Namespace) -> HintStore:
    if args.hints:
        return JsonFileHintStore(args.hints)
    return InMemoryHintStore()


def print_steps(steps: List[MemorySnapshot], initial_size: int) -> None:
    previous = MemorySnapshot(step_id=0, description="Initial state", heap_size=initial_size)
    for step in steps:
        step.print()
        print()
        print(diff_snapshots(previous, step))
        print()
        previous = step


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    render_config.compact_mode = args.compact

    try:
        source = Path(args.file).read_text(encoding="utf-8")
    except OSError as e:
        print(f"Error reading file: {e}", file=sys.stderr)
        return 1

    config = build_config(args)
    store = build_store(args)
    steps: List[MemorySnapshot] = []

    try:
        statements = parse_source(source)
        logger.debug("Parsed %d statements from %s", len(statements), args.file)
        snapshot = asyncio.run(
            Analyzer(config).analyze(statements, store, on_step=steps.append)
        )
    except PositionedError as e:
        if args.json:
            print(json.dumps(e.to_dict(), indent=2))
        else:
            print(e, file=sys.stderr)
        return 1
    except MemoryVisualizerError as e:
        print(e, file=sys.stderr)
        return 1

    if args.json:
        if args.steps:
            document = [
                {"step": s.step_id, "statement": s.description, **s.to_dict()} for s in steps
            ]
            print(json.dumps(document, indent=2))
        else:
            print(json.dumps(snapshot.to_dict(), indent=2))
        return 0

    if args.steps:
        print_steps(steps, config.initial_size)
    else:
        snapshot.print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
