import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from curator.core.errors import UpstreamUnavailable
from curator.services.catalog.provider import CatalogProvider

VersionListener = Callable[[int], Awaitable[None] | None]


class CatalogVersionSignal:
    """
    Monotonically increasing catalog version.

    The version can be pushed with ``notify`` or pulled from the provider
    with ``poll``. Listeners are called once per increase; a version that is
    not newer than the current one is ignored.
    """

    def __init__(self, provider: CatalogProvider, poll_seconds: float = 60):
        self.provider = provider
        self.poll_seconds = poll_seconds
        self.version = 0
        self._listeners: list[VersionListener] = []
        self._task: asyncio.Task | None = None

    def subscribe(self, listener: VersionListener) -> None:
        self._listeners.append(listener)

    async def notify(self, version: int) -> bool:
        """Record an externally announced version. Returns True if it was newer."""
        if version <= self.version:
            return False
        previous, self.version = self.version, version
        logger.info(f"Catalog version advanced {previous} -> {version}")
        for listener in self._listeners:
            result = listener(version)
            if asyncio.iscoroutine(result):
                await result
        return True

    async def poll(self) -> int:
        version = await self.provider.get_version()
        await self.notify(version)
        return self.version

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.poll_seconds)
            try:
                await self.poll()
            except UpstreamUnavailable as e:
                # Keep serving the current snapshot until the source is back
                logger.warning(f"Catalog version poll failed: {e}")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
