"""Toolchain availability and acquisition per target triple."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..errors import ToolchainMissing

if TYPE_CHECKING:
    from ..compilation.backends.base import CompilerBackend

logger = logging.getLogger(__name__)


class ToolchainManager:
    """Ensures a backend can build for a triple before compilation starts.

    A missing toolchain is acquired once when ``auto_acquire`` is enabled and
    then re-checked. Otherwise ToolchainMissing is raised, which only fails
    the compilation unit for that triple.
    """

    def __init__(self, backend: CompilerBackend, auto_acquire: bool = False) -> None:
        self.backend = backend
        self.auto_acquire = auto_acquire
        self._ready: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}

    async def ensure(self, target_triple: str) -> None:
        """Make sure the toolchain for ``target_triple`` is usable.

        Raises:
            ToolchainMissing: If it is unavailable and could not be acquired
        """
        if target_triple in self._ready:
            return
        lock = self._locks.setdefault(target_triple, asyncio.Lock())
        async with lock:
            if target_triple in self._ready:
                return
            if await self.backend.toolchain_available(target_triple):
                self._ready.add(target_triple)
                return

            if not self.auto_acquire:
                raise ToolchainMissing(target_triple, "auto-acquisition disabled")

            logger.info(f"Acquiring toolchain for {target_triple}")
            acquired = await self.backend.acquire(target_triple)
            if acquired and await self.backend.toolchain_available(target_triple):
                logger.info(f"Toolchain for {target_triple} acquired")
                self._ready.add(target_triple)
                return
            raise ToolchainMissing(target_triple, "acquisition failed")
