"""
Engine instance pool keyed by language set.

At most one engine exists per key. Callers sharing a key serialize on that
key's lock, so a lease is exclusive for the duration of one call. Engines are
created lazily on first checkout (100-500ms for Tesseract) and recreated
lazily after being invalidated.
"""

import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from ..errors import ErrorContext, InitializationError, OcrError
from ..models import OcrInstanceKey
from .engine import EngineFactory, OcrEngine, tesseract_factory

log = logging.getLogger(__name__)

_lease_ids = itertools.count(1)


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    engine: OcrEngine | None = None
    stale: bool = False


@dataclass
class Lease:
    """Exclusive checkout of one pooled engine."""
    key: OcrInstanceKey
    engine: OcrEngine
    lease_id: int = field(default_factory=lambda: next(_lease_ids))
    released: bool = False


class InstancePool:
    def __init__(self, factory: EngineFactory = tesseract_factory):
        self._factory = factory
        self._slots: dict[OcrInstanceKey, _Slot] = {}
        self._registry_lock = asyncio.Lock()

    async def _slot(self, key: OcrInstanceKey) -> _Slot:
        async with self._registry_lock:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            return slot

    async def checkout(self, key: "str | OcrInstanceKey") -> Lease:
        """Wait until the key's engine is free and lease it, creating it if needed."""
        key = OcrInstanceKey.of(key)
        slot = await self._slot(key)
        await slot.lock.acquire()
        try:
            if slot.engine is None or slot.stale:
                slot.engine = await self._create(key)
                slot.stale = False
        except BaseException:
            slot.lock.release()
            raise
        return Lease(key=key, engine=slot.engine)

    def release(self, lease: Lease) -> None:
        """Return a lease. Each lease is released exactly once."""
        if lease.released:
            raise ValueError(f"lease {lease.lease_id} for {lease.key} already released")
        slot = self._slots.get(lease.key)
        if slot is None or not slot.lock.locked():
            raise ValueError(f"lease {lease.lease_id} for {lease.key} is not checked out")
        lease.released = True
        slot.lock.release()

    def invalidate(self, lease: Lease) -> None:
        """Recreate this lease's engine on the next checkout."""
        slot = self._slots.get(lease.key)
        if slot is not None and slot.engine is lease.engine:
            slot.stale = True
            log.warning("Engine for %s marked for recreation", lease.key)

    @asynccontextmanager
    async def lease(self, key: "str | OcrInstanceKey") -> AsyncIterator[Lease]:
        held = await self.checkout(key)
        try:
            yield held
        finally:
            self.release(held)

    async def _create(self, key: OcrInstanceKey) -> OcrEngine:
        log.info("Creating OCR engine for languages: %s", key)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._factory, key)
        except OcrError:
            raise
        except Exception as e:
            raise InitializationError(
                f"engine creation failed: {e}",
                context=ErrorContext(language_key=str(key)),
            ) from e

    # ─── housekeeping ───

    def size(self) -> int:
        """Number of keys with a live engine."""
        return sum(1 for s in self._slots.values() if s.engine is not None)

    def keys(self) -> list[str]:
        return sorted(str(k) for k, s in self._slots.items() if s.engine is not None)

    def is_leased(self, key: "str | OcrInstanceKey") -> bool:
        slot = self._slots.get(OcrInstanceKey.of(key))
        return bool(slot and slot.lock.locked())

    def discard(self, key: "str | OcrInstanceKey") -> bool:
        """Drop an idle engine. Returns False when it is leased or absent."""
        key = OcrInstanceKey.of(key)
        slot = self._slots.get(key)
        if slot is None or slot.engine is None or slot.lock.locked():
            return False
        slot.engine = None
        log.info("Removed OCR engine for languages: %s", key)
        return True

    def clear(self) -> int:
        """Drop every idle engine; returns how many were dropped."""
        count = sum(self.discard(k) for k in list(self._slots))
        if count:
            log.info("Cleared %d OCR engines", count)
        return count
