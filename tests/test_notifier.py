import asyncio

import pytest

from conftest import STATION_FIELDS
from railmadad.errors import PersistenceError
from railmadad.notifier import ChangeNotifier
from railmadad.store import ComplaintRepository

pytestmark = pytest.mark.asyncio


class BrokenBackend:
    def load(self):
        return []

    def save(self, records):
        pass

    def generation(self):
        raise PersistenceError("store offline")


class TestChangeNotifier:
    async def test_other_tab_write_refreshes_view(self, make_lifecycle, passenger, repository, backend):
        notifier = ChangeNotifier(repository, interval=0)
        mine = make_lifecycle(passenger)
        notifier.watch(mine)

        other_tab = make_lifecycle(passenger, repo=ComplaintRepository(backend))
        c = await other_tab.create(STATION_FIELDS)
        assert mine.get_by_id(c.id) is None

        assert notifier.poll_once()
        assert mine.get_by_id(c.id) is not None
        assert not notifier.poll_once()

    async def test_own_write_does_not_fire(self, make_lifecycle, passenger, repository):
        notifier = ChangeNotifier(repository, interval=0)
        mine = make_lifecycle(passenger)
        notifier.watch(mine)
        await mine.create(STATION_FIELDS)
        assert not notifier.poll_once()

    async def test_unwatch(self, make_lifecycle, passenger, repository, backend):
        notifier = ChangeNotifier(repository, interval=0)
        mine = make_lifecycle(passenger)
        notifier.watch(mine)
        notifier.unwatch(mine)
        c = await make_lifecycle(passenger, repo=ComplaintRepository(backend)).create(STATION_FIELDS)
        notifier.poll_once()
        assert mine.get_by_id(c.id) is None

    async def test_poll_failure_is_logged(self):
        notifier = ChangeNotifier(ComplaintRepository(BrokenBackend()), interval=0)
        assert not notifier.poll_once()

    async def test_background_loop(self, make_lifecycle, passenger, repository, backend):
        notifier = ChangeNotifier(repository, interval=0.01)
        mine = make_lifecycle(passenger)
        notifier.watch(mine)
        notifier.start()
        assert notifier.running
        c = await make_lifecycle(passenger, repo=ComplaintRepository(backend)).create(STATION_FIELDS)
        for _ in range(100):
            if mine.get_by_id(c.id) is not None:
                break
            await asyncio.sleep(0.01)
        assert mine.get_by_id(c.id) is not None
        await notifier.stop()
        assert not notifier.running
