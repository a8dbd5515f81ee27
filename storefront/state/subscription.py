from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, List, Optional

logger = logging.getLogger(__name__)


class SubscriptionManager:
    """Keeps at most one live subscription, tied to one identity.

    Each ``start`` gets a fresh generation. ``stop`` bumps the generation
    before cancelling the pump task, so anything a cancelled stream still
    manages to emit is dropped instead of reaching ``on_snapshot``.
    """

    def __init__(
        self,
        on_snapshot: Callable[[List[Any]], None],
        on_error: Callable[[Exception], None],
        name: str = "subscription",
    ):
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._name = name
        self._generation = 0
        self._identity: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_active_for(self, identity: str) -> bool:
        return self.is_active and self._identity == identity

    def start(self, identity: str, stream: Callable[[], AsyncIterator[List[Any]]]) -> bool:
        """Subscribe for ``identity``; returns False when already live for it."""
        if self.is_active_for(identity):
            return False

        self.stop()
        self._identity = identity
        generation = self._generation
        self._task = asyncio.create_task(
            self._pump(generation, stream()),
            name=f"{self._name}:{identity}:{generation}",
        )
        logger.info("%s started for %s (generation %d)", self._name, identity, generation)
        return True

    def stop(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        identity, self._identity = self._identity, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("%s stopped for %s", self._name, identity)

    async def _pump(self, generation: int, stream: AsyncIterator[List[Any]]) -> None:
        try:
            async for snapshot in stream:
                if generation != self._generation:
                    logger.debug("%s dropped a stale emission (generation %d)", self._name, generation)
                    break
                self._on_snapshot(snapshot)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation == self._generation:
                logger.warning("%s failed: %s", self._name, exc)
                self._identity = None
                self._on_error(exc)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
