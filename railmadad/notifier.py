# Propagates writes made by other processes into a forced view reload

import asyncio
import logging
from typing import Callable, Dict, Optional

from . import config
from .errors import ComplaintError
from .store import ComplaintRepository

logger = logging.getLogger(__name__)


class ChangeNotifier:
    """Polls the store's generation and refreshes subscribed views.

    A change is any backend write this process's repository did not make.
    Views are reloaded wholesale; nothing is merged object by object.
    """

    def __init__(self, repository: ComplaintRepository, interval: Optional[float] = None):
        self.repository = repository
        self.interval = config.CHANGE_POLL_SECONDS if interval is None else interval
        self._task: Optional[asyncio.Task] = None
        self._watched: Dict[int, Callable[[], None]] = {}

    def watch(self, lifecycle) -> Callable[[], None]:
        """Refresh ``lifecycle`` whenever another writer changes the store."""
        def on_external_change():
            logger.info("Storage change detected, refreshing complaints for %s",
                        lifecycle.caller.email or "guest")
            lifecycle.refresh()

        unsubscribe = self.repository.subscribe(on_external_change)
        self._watched[id(lifecycle)] = unsubscribe
        return unsubscribe

    def unwatch(self, lifecycle) -> None:
        unsubscribe = self._watched.pop(id(lifecycle), None)
        if unsubscribe:
            unsubscribe()

    def poll_once(self) -> bool:
        try:
            return self.repository.check_for_external_change()
        except ComplaintError as e:
            logger.error("Change check failed: %s", e)
            return False

    async def _loop(self) -> None:
        while True:
            self.poll_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._loop(), name="change-notifier")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
