from conftest import STATION_FIELDS, PASSENGER_EMAIL
from railmadad.identifiers import is_valid_crn, new_id
from railmadad.lifecycle import build_complaint
from railmadad.models import Status
from railmadad.seed import COMPLAINTS, build_seed_complaints, import_complaints


class TestSeedData:
    def test_every_entry_builds(self):
        complaints = build_seed_complaints()
        assert len(complaints) == len(COMPLAINTS)
        assert all(is_valid_crn(c.id) for c in complaints)
        assert {c.complaint_area for c in complaints} == {
            "TRAIN", "STATION", "SUGGESTIONS", "ENQUIRY", "RAIL_ANUBHAV"}

    def test_analysed_entries_are_in_progress(self):
        analysed = [c for c in build_seed_complaints() if c.analysis is not None]
        assert analysed
        assert all(c.status == Status.IN_PROGRESS and c.assigned_to for c in analysed)


class TestImport:
    def test_merge_keeps_existing(self, repository):
        existing = build_complaint(STATION_FIELDS, complaint_id=new_id("STATION"), owner_email=PASSENGER_EMAIL)
        repository.merge_write([existing])
        import_complaints(repository)
        assert repository.exists(existing.id)
        assert len(repository.load_all()) == len(COMPLAINTS) + 1

    def test_reset_replaces_store(self, repository):
        existing = build_complaint(STATION_FIELDS, complaint_id=new_id("STATION"), owner_email=PASSENGER_EMAIL)
        repository.merge_write([existing])
        written = import_complaints(repository, reset=True)
        assert not repository.exists(existing.id)
        assert [c.id for c in repository.load_all()] == [c.id for c in written]
