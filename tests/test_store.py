import json

import pytest

from conftest import PASSENGER_EMAIL, STATION_FIELDS
from railmadad.errors import PersistenceError
from railmadad.identifiers import new_id
from railmadad.lifecycle import build_complaint
from railmadad.store import (
    ComplaintRepository, JsonFileBackend, MemoryBackend, MongoBackend, build_backend,
)


def make(description="dirty platform", area="STATION"):
    fields = dict(STATION_FIELDS, description=description, complaint_area=area)
    return build_complaint(fields, complaint_id=new_id(area), owner_email=PASSENGER_EMAIL)


class FakeCollection:
    """Just enough of a pymongo collection for the single-document store."""

    def __init__(self):
        self.docs = {}

    def find_one(self, query, projection=None):
        doc = self.docs.get(query["_id"])
        return dict(doc) if doc else None

    def update_one(self, query, update, upsert=False):
        doc = self.docs.setdefault(query["_id"], {"_id": query["_id"]})
        doc.update(json.loads(json.dumps(update["$set"])))
        for key, inc in update.get("$inc", {}).items():
            doc[key] = doc.get(key, 0) + inc


# ═══════════════════════════════════════════════════════════════════════════════
# BACKENDS
# ═══════════════════════════════════════════════════════════════════════════════

class TestMemoryBackend:
    def test_empty_by_default(self):
        assert MemoryBackend().load() == []

    def test_generation_advances_on_save(self):
        backend = MemoryBackend()
        before = backend.generation()
        backend.save([{"id": "x"}])
        assert backend.generation() != before
        assert backend.load() == [{"id": "x"}]

    def test_load_returns_a_copy(self):
        backend = MemoryBackend([{"id": "x"}])
        backend.load()[0]["id"] = "changed"
        assert backend.load() == [{"id": "x"}]

    def test_unserializable_records_raise(self):
        with pytest.raises(PersistenceError):
            MemoryBackend().save([{"id": object()}])


class TestJsonFileBackend:
    def test_missing_file_is_empty(self, tmp_path):
        backend = JsonFileBackend(tmp_path / "complaints.json")
        assert backend.load() == []
        assert backend.generation() is None

    def test_save_and_load(self, tmp_path):
        backend = JsonFileBackend(tmp_path / "nested" / "complaints.json")
        backend.save([{"id": "CMP-ABCDE-1234"}])
        assert backend.load() == [{"id": "CMP-ABCDE-1234"}]
        assert backend.generation() is not None

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "complaints.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceError):
            JsonFileBackend(path).load()

    def test_non_array_raises(self, tmp_path):
        path = tmp_path / "complaints.json"
        path.write_text('{"id": "x"}', encoding="utf-8")
        with pytest.raises(PersistenceError):
            JsonFileBackend(path).load()

    def test_generation_tracks_content(self, tmp_path):
        backend = JsonFileBackend(tmp_path / "complaints.json")
        backend.save([{"id": "a"}])
        first = backend.generation()
        backend.save([{"id": "b"}])
        assert backend.generation() != first


class TestMongoBackend:
    def test_round_trip_and_generation(self):
        backend = MongoBackend(FakeCollection(), document_id="complaints")
        assert backend.load() == []
        assert backend.generation() == 0
        backend.save([{"id": "a"}])
        backend.save([{"id": "b"}])
        assert backend.load() == [{"id": "b"}]
        assert backend.generation() == 2

    def test_non_array_document_raises(self):
        collection = FakeCollection()
        collection.docs["complaints"] = {"_id": "complaints", "data": {"id": "a"}}
        with pytest.raises(PersistenceError):
            MongoBackend(collection, document_id="complaints").load()


class TestBuildBackend:
    def test_memory(self):
        assert isinstance(build_backend("memory"), MemoryBackend)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            build_backend("redis")


# ═══════════════════════════════════════════════════════════════════════════════
# REPOSITORY
# ═══════════════════════════════════════════════════════════════════════════════

class TestMergeWrite:
    def test_new_records_go_to_front(self, repository):
        first, second = make("first"), make("second")
        repository.merge_write([first])
        repository.merge_write([second])
        assert [c.id for c in repository.load_all()] == [second.id, first.id]

    def test_existing_record_replaced_in_place(self, repository):
        a, b = make("a"), make("b")
        repository.merge_write([a])
        repository.merge_write([b])
        repository.merge_write([a.model_copy(update={"description": "a, edited"})])
        loaded = repository.load_all()
        assert [c.id for c in loaded] == [b.id, a.id]
        assert loaded[1].description == "a, edited"

    def test_two_writers_do_not_lose_each_others_records(self, backend):
        tab_one = ComplaintRepository(backend)
        tab_two = ComplaintRepository(backend)
        a, b = make("from tab one"), make("from tab two")
        tab_one.merge_write([a])
        tab_two.merge_write([b])
        assert {c.id for c in tab_one.load_all()} == {a.id, b.id}

    def test_unreadable_records_survive_writes(self):
        backend = MemoryBackend([{"id": "legacy-1", "complaintArea": "BUS"}])
        repository = ComplaintRepository(backend)
        assert repository.load_all() == []
        repository.merge_write([make()])
        assert any(raw.get("id") == "legacy-1" for raw in backend.load())

    def test_persistence_failure_propagates(self, tmp_path):
        path = tmp_path / "complaints.json"
        path.write_text("garbage", encoding="utf-8")
        repository = ComplaintRepository(JsonFileBackend(path))
        with pytest.raises(PersistenceError):
            repository.merge_write([make()])
        assert path.read_text(encoding="utf-8") == "garbage"


class TestSaveAll:
    def test_rewrites_whole_blob(self, repository, backend):
        old, kept = make("old"), make("kept")
        repository.merge_write([old, kept])
        repository.save_all([kept])
        assert [raw["id"] for raw in backend.load()] == [kept.id]

    def test_drops_unreadable_records(self):
        backend = MemoryBackend([{"id": "legacy-1", "complaintArea": "BUS"}])
        replacement = make()
        ComplaintRepository(backend).save_all([replacement])
        assert [raw["id"] for raw in backend.load()] == [replacement.id]

    def test_own_write_does_not_notify(self, repository):
        calls = []
        repository.subscribe(lambda: calls.append(1))
        repository.save_all([make()])
        assert not repository.check_for_external_change()
        assert calls == []


class TestReadsAndRemove:
    def test_get_and_exists(self, repository):
        c = make()
        repository.merge_write([c])
        assert repository.get(c.id) == c
        assert repository.exists(c.id)
        assert repository.get("CMP-ZZZZZ-0000") is None

    def test_remove(self, repository):
        a, b = make("a"), make("b")
        repository.merge_write([a, b])
        assert repository.remove([a.id]) == 1
        assert not repository.exists(a.id)
        assert repository.exists(b.id)

    def test_remove_missing_does_not_write(self, repository, backend):
        generation = backend.generation()
        assert repository.remove(["CMP-ZZZZZ-0000"]) == 0
        assert backend.generation() == generation


class TestChangeSignal:
    def test_own_writes_are_not_external(self, repository):
        calls = []
        repository.subscribe(lambda: calls.append(1))
        repository.merge_write([make()])
        assert not repository.check_for_external_change()
        assert calls == []

    def test_other_writer_detected(self, backend):
        mine, theirs = ComplaintRepository(backend), ComplaintRepository(backend)
        calls = []
        mine.subscribe(lambda: calls.append(1))
        theirs.merge_write([make()])
        assert mine.check_for_external_change()
        assert calls == [1]
        assert not mine.check_for_external_change()

    def test_write_after_external_change_notifies(self, backend):
        mine, theirs = ComplaintRepository(backend), ComplaintRepository(backend)
        calls = []
        mine.subscribe(lambda: calls.append(1))
        theirs.merge_write([make()])
        mine.merge_write([make()])
        assert calls == [1]
        assert len(mine.load_all()) == 2

    def test_unsubscribe(self, backend):
        mine, theirs = ComplaintRepository(backend), ComplaintRepository(backend)
        calls = []
        unsubscribe = mine.subscribe(lambda: calls.append(1))
        unsubscribe()
        theirs.merge_write([make()])
        mine.check_for_external_change()
        assert calls == []

    def test_failing_subscriber_does_not_block_others(self, backend):
        mine, theirs = ComplaintRepository(backend), ComplaintRepository(backend)
        calls = []

        def broken():
            raise RuntimeError("boom")

        mine.subscribe(broken)
        mine.subscribe(lambda: calls.append(1))
        theirs.merge_write([make()])
        assert mine.check_for_external_change()
        assert calls == [1]
