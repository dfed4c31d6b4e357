"""
hint_store.py

Storage of starting-pointer hints between analyses.

A hint maps a pointer name to the heap address its block was placed at,
so that re-analyzing a slightly edited program keeps addresses stable.
The hints outlive a single analysis and are owned by the host:

- InMemoryHintStore keeps them in process (desktop shell).
- JsonFileHintStore persists them in a JSON document under one fixed
  key (the analogue of browser local storage).

Each store owns an asyncio.Lock; the analyzer holds it around the
read / analyze / write sequence so concurrent analyses never interleave
their updates.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

logger = logging.getLogger(__name__)

STARTING_POINTERS_KEY = "starting_pointers"

Hints = Dict[str, int]


class HintStore(ABC):
    """Read/write capability over the persisted hints map."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()

    @abstractmethod
    async def get_hints(self) -> Hints:
        """Return a copy of the stored hints."""

    @abstractmethod
    async def set_hints(self, hints: Mapping[str, int]) -> None:
        """Replace the stored hints."""


class InMemoryHintStore(HintStore):
    """Hints kept in process memory."""

    def __init__(self, hints: Optional[Mapping[str, int]] = None) -> None:
        super().__init__()
        self._hints: Hints = dict(hints) if hints else {}

    async def get_hints(self) -> Hints:
        return dict(self._hints)

    async def set_hints(self, hints: Mapping[str, int]) -> None:
        self._hints = dict(hints)


class JsonFileHintStore(HintStore):
    """Hints persisted in a JSON document.

    The document is an object holding the map under ``key``; other keys
    are preserved when writing. File access runs in a worker thread so
    the event loop is not blocked while the store lock is held.
    """

    def __init__(self, path: Union[str, Path], key: str = STARTING_POINTERS_KEY) -> None:
        super().__init__()
        self.path = Path(path)
        self.key = key

    def _read_document(self) -> Dict[str, object]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable hint file %s: %s", self.path, e)
            return {}
        if not isinstance(document, dict):
            logger.warning("Ignoring hint file %s: not a JSON object", self.path)
            return {}
        return document

    def _write_document(self, hints: Mapping[str, int]) -> None:
        document = self._read_document()
        document[self.key] = dict(hints)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(document, indent=2), encoding="utf-8")

    async def get_hints(self) -> Hints:
        document = await asyncio.to_thread(self._read_document)
        stored = document.get(self.key, {})
        if not isinstance(stored, dict):
            logger.warning("Ignoring malformed hints under '%s' in %s", self.key, self.path)
            return {}
        return {
            name: address for name, address in stored.items()
            if isinstance(address, int) and not isinstance(address, bool) and address >= 0
        }

    async def set_hints(self, hints: Mapping[str, int]) -> None:
        await asyncio.to_thread(self._write_document, dict(hints))
